"""Per-call session state machine for the ConversationRelay protocol."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import Any

from llm.base import BaseLLMClient
from prompts.catalog import AssetCatalog
from relay.errors import GenerationError, ProtocolError
from relay.registry import SessionRegistry
from relay.response_engine import StreamingResponseEngine
from relay.schemas import (
    DtmfMessage,
    EndMessage,
    GatewayErrorMessage,
    InfoMessage,
    InterruptMessage,
    OutgoingMessage,
    PromptMessage,
    SetupMessage,
    SilenceDetectionMessage,
    TextMessage,
    parse_incoming_message,
)
from relay.silence_watchdog import SilenceMessage, SilenceWatchdog
from relay.state_utils import dtmf_prompt
from relay.tool_router import ToolContext, ToolImplementation, ToolRouter

LOGGER = logging.getLogger(__name__)

Transport = Callable[[dict[str, Any]], Awaitable[None]]
ErrorCallback = Callable[[str | None, GenerationError], Awaitable[None]]

_MESSAGE = "message"
_TICK = "tick"
_STOP = "stop"


class SessionState(str, Enum):
    INIT = "init"
    ACTIVE = "active"
    TERMINATING = "terminating"
    CLOSED = "closed"


class ConversationOrchestrator:
    """Coordinates one call: protocol frames in, tokens and control frames out.

    Inbound frames and silence ticks share one queue drained by a single actor
    task, so watchdog state and session transitions never interleave. The LLM
    turn runs in a child task so an ``interrupt`` frame can be handled while a
    stream is in flight; turns are chained so only one is ever active.
    """

    def __init__(
        self,
        *,
        llm: BaseLLMClient,
        catalog: AssetCatalog,
        registry: SessionRegistry,
        send: Transport,
        tools: Mapping[str, ToolImplementation],
        on_error: ErrorCallback | None = None,
        temperature: float = 0.2,
        max_tool_rounds: int = 5,
        silence_tick_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._llm = llm
        self._catalog = catalog
        self._registry = registry
        self._send = send
        self._tools = tools
        self._on_error = on_error
        self._temperature = temperature
        self._max_tool_rounds = max_tool_rounds
        self._silence_tick_seconds = silence_tick_seconds
        self._clock = clock

        self._queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        self._send_lock = asyncio.Lock()
        self._actor: asyncio.Task | None = None
        self._generation: asyncio.Task | None = None
        self._generations: set[asyncio.Task] = set()

        self.state = SessionState.INIT
        self.call_sid: str | None = None
        self.setup: SetupMessage | None = None
        self.engine: StreamingResponseEngine | None = None
        self.watchdog: SilenceWatchdog | None = None

    # Lifecycle

    def start(self) -> None:
        if self._actor is None:
            self._actor = asyncio.create_task(self._run())

    async def incoming_message(self, raw: str | bytes | dict[str, Any]) -> None:
        """Queue one inbound frame for processing."""

        if self.state is SessionState.CLOSED:
            LOGGER.debug("Dropping frame for closed session %s", self.call_sid)
            return
        self.start()
        await self._queue.put((_MESSAGE, raw))

    async def drain(self) -> None:
        """Wait until queued frames and the current turn have been processed."""

        while True:
            await self._queue.join()
            generation = self._generation
            if generation is not None and not generation.done():
                await asyncio.gather(generation, return_exceptions=True)
                continue
            if self._queue.empty():
                return

    async def cleanup(self) -> None:
        """Tear the session down; safe to call repeatedly."""

        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        LOGGER.info("Cleaning up session for call %s", self.call_sid)

        if self.watchdog is not None:
            self.watchdog.cleanup()
        if self.engine is not None:
            self.engine.cleanup()
        if self.call_sid:
            await self._registry.remove(self.call_sid, self)

        current = asyncio.current_task()
        for task in list(self._generations):
            if task is not current and not task.done():
                task.cancel()
        if self._actor is not None and not self._actor.done():
            self._queue.put_nowait((_STOP, None))

    # Out-of-band control

    async def update_context(self, context: str) -> None:
        await self._require_engine().update_context(context)

    async def update_tools(self, manifest: Mapping[str, Any]) -> None:
        await self._require_engine().update_tools(manifest)

    async def insert_message(self, role: str, content: str) -> None:
        await self._require_engine().insert_message(role, content)

    def _require_engine(self) -> StreamingResponseEngine:
        if self.engine is None or self.state is not SessionState.ACTIVE:
            raise ProtocolError(f"Session {self.call_sid} is not active")
        return self.engine

    # Actor

    async def _run(self) -> None:
        while True:
            kind, payload = await self._queue.get()
            try:
                if kind == _STOP or self.state is SessionState.CLOSED:
                    break
                if kind == _MESSAGE:
                    await self._handle_message(payload)
                elif kind == _TICK and self.watchdog is not None:
                    await self.watchdog.tick()
            except Exception as exc:
                LOGGER.exception("Session %s failed to process %s: %s", self.call_sid, kind, exc)
            finally:
                self._queue.task_done()
        # Release anyone waiting in drain() for frames that will never run.
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

    async def _schedule_tick(self) -> None:
        if self.state is not SessionState.CLOSED:
            await self._queue.put((_TICK, None))

    async def _handle_message(self, raw: Any) -> None:
        try:
            message = parse_incoming_message(raw)
        except ProtocolError as exc:
            LOGGER.warning("Dropping frame for call %s: %s", self.call_sid, exc.detail)
            return

        if self.state is SessionState.INIT:
            if not isinstance(message, SetupMessage):
                LOGGER.warning("Dropping %s frame received before setup", message.type)
                return
            try:
                await self._handle_setup(message)
            except ProtocolError as exc:
                LOGGER.warning("Rejecting setup frame: %s", exc.detail)
            return

        if self.state is not SessionState.ACTIVE:
            LOGGER.debug("Dropping %s frame in state %s", message.type, self.state.value)
            return

        if isinstance(message, PromptMessage):
            if not message.last:
                return
            LOGGER.info("Prompt on call %s: %s", self.call_sid, message.voice_prompt)
            self._reset_watchdog()
            self._start_generation("user", message.voice_prompt)
        elif isinstance(message, DtmfMessage):
            LOGGER.info("DTMF on call %s: %s", self.call_sid, message.digit)
            self._reset_watchdog()
            self._start_generation("user", dtmf_prompt(message.digit))
        elif isinstance(message, InterruptMessage):
            LOGGER.info(
                "Caller interrupted on call %s after %r",
                self.call_sid,
                message.utterance_until_interrupt,
            )
            if self.engine is not None:
                self.engine.interrupt()
        elif isinstance(message, InfoMessage):
            LOGGER.debug("Info frame on call %s: %s", self.call_sid, message.model_dump())
        elif isinstance(message, GatewayErrorMessage):
            LOGGER.error("Gateway reported an error on call %s: %s", self.call_sid, message.description)
        elif isinstance(message, SetupMessage):
            LOGGER.warning("Ignoring repeated setup frame for call %s", self.call_sid)

    async def _handle_setup(self, message: SetupMessage) -> None:
        if not message.call_sid:
            raise ProtocolError("Setup frame is missing callSid")

        self.call_sid = message.call_sid
        self.setup = message
        params = message.custom_parameters
        assets = self._catalog.session_assets(params.get("contextKey"), params.get("manifestKey"))

        router = ToolRouter(self._tools, assets.manifest)
        self.engine = StreamingResponseEngine(
            self._llm,
            router,
            context=assets.context,
            listen_mode=assets.listen_mode,
            temperature=self._temperature,
            max_tool_rounds=self._max_tool_rounds,
            tool_context=ToolContext(
                call_sid=message.call_sid,
                catalog=self._catalog,
                metadata=dict(params),
            ),
        )
        self.engine.set_handler(self)

        config = assets.silence_detection
        self.watchdog = SilenceWatchdog(
            config, tick_seconds=self._silence_tick_seconds, clock=self._clock
        )
        if config.enabled:
            self.watchdog.start(self._on_silence_message, schedule_tick=self._schedule_tick)

        await self._registry.register(message.call_sid, self)
        self.state = SessionState.ACTIVE
        LOGGER.info("Session active for call %s (%s -> %s)", self.call_sid, message.from_number, message.to_number)

    def _reset_watchdog(self) -> None:
        if self.watchdog is not None and self.watchdog.running:
            self.watchdog.reset()

    def _start_generation(self, role: str, content: str) -> None:
        previous = self._generation
        task = asyncio.create_task(self._generate_after(previous, role, content))
        self._generation = task
        self._generations.add(task)
        task.add_done_callback(self._generations.discard)

    async def _generate_after(self, previous: asyncio.Task | None, role: str, content: str) -> None:
        if previous is not None and not previous.done():
            # wait() leaves the earlier turn running if this one is cancelled.
            await asyncio.wait({previous})
        if self.state is not SessionState.ACTIVE or self.engine is None:
            return
        await self.engine.generate_response(role, content)

    # Outbound

    async def _transmit(self, message: OutgoingMessage) -> None:
        if self.state is not SessionState.ACTIVE:
            LOGGER.debug("Not sending %s on %s session %s", message.type, self.state.value, self.call_sid)
            return
        async with self._send_lock:
            await self._send(message.to_wire())

    async def _terminate(self, message: EndMessage) -> None:
        if self.state is not SessionState.ACTIVE:
            LOGGER.debug("Ignoring %s on %s session %s", message.type, self.state.value, self.call_sid)
            return
        self.state = SessionState.TERMINATING
        # No reminder or second end may follow the end frame.
        if self.watchdog is not None:
            self.watchdog.stop()
        LOGGER.info("Ending call %s: %s", self.call_sid, message.handoff_data)
        async with self._send_lock:
            await self._send(message.to_wire())
        await self.cleanup()

    async def _on_silence_message(self, message: SilenceMessage) -> None:
        if isinstance(message, EndMessage):
            await self._terminate(message)
        else:
            await self._transmit(message)

    # ResponseHandler

    async def content(self, message: TextMessage) -> None:
        await self._transmit(message)

    async def tool_message(self, message: OutgoingMessage) -> None:
        if isinstance(message, EndMessage):
            await self._terminate(message)
            return
        if isinstance(message, SilenceDetectionMessage) and self.watchdog is not None:
            if message.enabled and not self.watchdog.running:
                self.watchdog.start(self._on_silence_message, schedule_tick=self._schedule_tick)
            elif not message.enabled:
                self.watchdog.stop()
        await self._transmit(message)

    async def error(self, error: GenerationError) -> None:
        if self._on_error is None:
            LOGGER.error("Generation failed on call %s: %s", self.call_sid, error.detail)
            return
        await self._on_error(self.call_sid, error)
