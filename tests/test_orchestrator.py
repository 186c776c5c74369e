from __future__ import annotations

import asyncio
import json

import pytest

from llm.base import TextDelta, ToolCallRequest
from relay.errors import GenerationError
from relay.orchestrator import ConversationOrchestrator, SessionState
from relay.registry import SessionRegistry
from tools.builtin import BUILTIN_TOOLS

from conftest import FakeClock, FakeLLM

SETUP = {
    "type": "setup",
    "callSid": "CA100",
    "from": "+41790000000",
    "to": "+41440000000",
    "customParameters": {"callReference": "abc123"},
}
PROMPT = {"type": "prompt", "voicePrompt": "Hello", "lang": "en-US", "last": True}


class Harness:
    def __init__(self, catalog, llm=None) -> None:
        self.llm = llm or FakeLLM()
        self.registry = SessionRegistry()
        self.clock = FakeClock()
        self.frames: list[dict] = []
        self.errors: list = []
        self.session = ConversationOrchestrator(
            llm=self.llm,
            catalog=catalog,
            registry=self.registry,
            send=self._send,
            tools=BUILTIN_TOOLS,
            on_error=self._on_error,
            silence_tick_seconds=3600,
            clock=self.clock,
        )

    async def _send(self, frame: dict) -> None:
        self.frames.append(frame)

    async def _on_error(self, call_sid, error) -> None:
        self.errors.append((call_sid, error))

    async def feed(self, *frames) -> None:
        for frame in frames:
            await self.session.incoming_message(json.dumps(frame))
        await self.session.drain()


class SlowEndHarness(Harness):
    """Holds the end frame on the wire while a silence tick is queued."""

    def __init__(self, catalog, llm=None, *, last_step: bool = False) -> None:
        super().__init__(catalog, llm)
        self.last_step = last_step

    async def _send(self, frame: dict) -> None:
        if frame["type"] == "end":
            watchdog = self.session.watchdog
            if self.last_step:
                watchdog.state.current_message_index = len(watchdog.config.messages) - 1
            self.clock.now += watchdog.config.seconds_threshold * 10
            await self.session._schedule_tick()
            await asyncio.sleep(0.05)
        self.frames.append(frame)


def test_setup_activates_and_registers(catalog):
    harness = Harness(catalog)

    async def _run():
        await harness.feed(SETUP)
        return await harness.registry.get("CA100")

    registered = asyncio.run(_run())

    session = harness.session
    assert session.state is SessionState.ACTIVE
    assert registered is session
    assert session.engine.context == catalog.get_context("defaultContext")
    assert session.engine.tool_context.metadata == {"callReference": "abc123"}
    assert session.watchdog.running is True


def test_setup_selects_context_and_manifest(catalog):
    harness = Harness(catalog)
    setup = dict(SETUP, customParameters={"contextKey": "supportContext", "manifestKey": "supportToolManifest"})

    asyncio.run(harness.feed(setup))

    engine = harness.session.engine
    assert engine.context == catalog.get_context("supportContext")
    assert sorted(engine.router.tool_names) == ["end-call", "live-agent-handoff"]


def test_unknown_selectors_fall_back_to_defaults(catalog):
    harness = Harness(catalog)
    setup = dict(SETUP, customParameters={"contextKey": "nope", "manifestKey": "nope"})

    asyncio.run(harness.feed(setup))

    engine = harness.session.engine
    assert engine.context == catalog.get_context("defaultContext")
    assert "send-dtmf" in engine.router.tool_names


def test_frames_before_setup_and_malformed_frames_are_dropped(catalog):
    harness = Harness(catalog)

    async def _run():
        await harness.session.incoming_message("{not json")
        await harness.feed(PROMPT, {"type": "setup"})

    asyncio.run(_run())

    assert harness.session.state is SessionState.INIT
    assert harness.llm.calls == []
    assert len(harness.registry) == 0


def test_prompt_streams_tokens(catalog):
    harness = Harness(catalog, FakeLLM([TextDelta("Hi "), TextDelta("there")]))

    asyncio.run(harness.feed(SETUP, PROMPT))

    assert harness.frames == [
        {"type": "text", "token": "Hi ", "last": False},
        {"type": "text", "token": "there", "last": True},
    ]
    assert harness.llm.calls[0]["messages"][-1] == {"role": "user", "content": "Hello"}


def test_partial_prompt_is_ignored(catalog):
    harness = Harness(catalog)

    asyncio.run(harness.feed(SETUP, dict(PROMPT, last=False)))

    assert harness.llm.calls == []


def test_dtmf_is_forwarded_as_user_content(catalog):
    harness = Harness(catalog)

    asyncio.run(harness.feed(SETUP, {"type": "dtmf", "digit": "5"}))

    assert harness.llm.calls[0]["messages"][-1] == {"role": "user", "content": "DTMF: 5"}


def test_prompts_are_answered_in_order(catalog):
    harness = Harness(catalog, FakeLLM([TextDelta("first")], [TextDelta("second")]))

    asyncio.run(harness.feed(SETUP, PROMPT, dict(PROMPT, voicePrompt="Again")))

    assert [frame["token"] for frame in harness.frames] == ["first", "second"]
    second_history = harness.llm.calls[1]["messages"]
    assert [m["content"] for m in second_history[1:]] == ["Hello", "first", "Again"]


def test_repeated_setup_is_ignored(catalog):
    harness = Harness(catalog)

    asyncio.run(harness.feed(SETUP, dict(SETUP, callSid="CA200")))

    assert harness.session.call_sid == "CA100"
    assert harness.registry.call_sids() == ["CA100"]


def test_prompt_resets_silence_but_info_does_not(catalog):
    harness = Harness(catalog)
    watchdog_messages = catalog.silence_detection.messages

    async def _run():
        await harness.feed(SETUP)
        harness.clock.now = 15
        await harness.feed(PROMPT)
        harness.clock.now = 20
        after_prompt = await harness.session.watchdog.tick()
        harness.clock.now = 33
        await harness.feed({"type": "info", "label": "tokensPlayed"})
        harness.clock.now = 35
        after_info = await harness.session.watchdog.tick()
        return after_prompt, after_info

    after_prompt, after_info = asyncio.run(_run())

    assert after_prompt is None
    assert after_info.token == watchdog_messages[0]
    assert harness.frames[-1] == {"type": "text", "token": watchdog_messages[0], "last": True}


def test_watchdog_exhaustion_ends_and_closes_session(catalog):
    harness = Harness(catalog)
    count = len(catalog.silence_detection.messages)
    threshold = catalog.silence_detection.seconds_threshold

    async def _run():
        await harness.feed(SETUP)
        for step in range(1, count + 1):
            harness.clock.now = step * threshold
            await harness.session.watchdog.tick()
        await harness.session.drain()

    asyncio.run(_run())

    assert [frame["type"] for frame in harness.frames] == ["text"] * (count - 1) + ["end"]
    assert json.loads(harness.frames[-1]["handoffData"])["reasonCode"] == "unresponsive"
    assert harness.session.state is SessionState.CLOSED
    assert len(harness.registry) == 0


def test_end_call_tool_sends_end_after_goodbye_and_closes(catalog):
    llm = FakeLLM(
        [ToolCallRequest("call_1", "end-call", '{"summary": "Caller is done"}')],
        [TextDelta("Goodbye!")],
    )
    harness = Harness(catalog, llm)

    asyncio.run(harness.feed(SETUP, PROMPT))

    assert harness.frames[0] == {"type": "text", "token": "Goodbye!", "last": True}
    assert harness.frames[1]["type"] == "end"
    assert harness.session.state is SessionState.CLOSED
    assert len(harness.registry) == 0


def test_silence_detection_tool_toggles_watchdog(catalog):
    llm = FakeLLM(
        [ToolCallRequest("call_1", "set-silence-detection", '{"enabled": false}')],
        [TextDelta("Take your time.")],
    )
    harness = Harness(catalog, llm)

    asyncio.run(harness.feed(SETUP, PROMPT))

    assert harness.frames[0] == {"type": "setSilenceDetection", "enabled": False}
    assert harness.session.watchdog.running is False


def test_generation_error_reported_and_session_stays_active(catalog):
    harness = Harness(catalog, FakeLLM([RuntimeError("provider down")], [TextDelta("Back")]))

    asyncio.run(harness.feed(SETUP, PROMPT, PROMPT))

    assert len(harness.errors) == 1
    call_sid, error = harness.errors[0]
    assert call_sid == "CA100"
    assert isinstance(error, GenerationError)
    assert harness.session.state is SessionState.ACTIVE
    assert harness.frames == [{"type": "text", "token": "Back", "last": True}]


def test_interrupt_reaches_engine(catalog):
    harness = Harness(catalog)

    asyncio.run(harness.feed(SETUP, {"type": "interrupt", "utteranceUntilInterrupt": "Hel"}))

    assert harness.session.engine.interrupted is True


def test_cleanup_is_idempotent_and_drops_later_frames(catalog):
    harness = Harness(catalog)

    async def _run():
        await harness.feed(SETUP)
        await harness.session.cleanup()
        await harness.session.cleanup()
        await harness.session.incoming_message(json.dumps(PROMPT))

    asyncio.run(_run())

    assert harness.session.state is SessionState.CLOSED
    assert harness.session.watchdog.running is False
    assert len(harness.registry) == 0
    assert harness.llm.calls == []


def test_out_of_band_updates_reach_engine(catalog):
    harness = Harness(catalog)

    async def _run():
        await harness.feed(SETUP)
        await harness.session.update_context("Only talk about billing.")
        await harness.session.update_tools(catalog.get_manifest("supportToolManifest"))
        await harness.session.insert_message("system", "Call status update")

    asyncio.run(_run())

    engine = harness.session.engine
    assert engine.context == "Only talk about billing."
    assert "send-dtmf" not in engine.router.tool_names
    assert engine.history[-1] == {"role": "system", "content": "Call status update"}


@pytest.mark.parametrize("last_step", [False, True])
def test_silence_tick_during_end_flush_sends_nothing_after_end(catalog, last_step):
    llm = FakeLLM(
        [ToolCallRequest("call_1", "end-call", '{"summary": "Caller is done"}')],
        [TextDelta("Goodbye!")],
    )
    harness = SlowEndHarness(catalog, llm, last_step=last_step)

    asyncio.run(harness.feed(SETUP, PROMPT))

    assert [frame["type"] for frame in harness.frames] == ["text", "end"]
    assert json.loads(harness.frames[-1]["handoffData"]).get("reasonCode") != "unresponsive"
    assert harness.session.state is SessionState.CLOSED


def test_cleanup_cancels_running_and_queued_turns(catalog):
    async def _run():
        started = asyncio.Event()
        stalled = asyncio.Event()
        harness = Harness(catalog, FakeLLM([TextDelta("Let me check"), started.set, stalled.wait]))
        await harness.session.incoming_message(json.dumps(SETUP))
        await harness.session.incoming_message(json.dumps(PROMPT))
        await asyncio.wait_for(started.wait(), timeout=1)
        await harness.session.incoming_message(json.dumps(PROMPT))
        await harness.session._queue.join()
        turns = list(harness.session._generations)

        await harness.session.cleanup()
        await asyncio.gather(*turns, return_exceptions=True)
        await harness.session.drain()
        return harness, turns

    harness, turns = asyncio.run(_run())

    assert len(turns) == 2
    assert all(turn.cancelled() for turn in turns)
    assert len(harness.llm.calls) == 1
    assert harness.llm.closed == 1
    assert harness.frames == []
