"""Streaming LLM turn execution with tool calls, listen mode and interruption."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from llm.base import BaseLLMClient, TextDelta, ToolCallRequest
from relay.errors import GenerationError
from relay.schemas import DeliveryClass, OutgoingMessage, TextMessage
from relay.state_utils import (
    HistoryEntry,
    assistant_tool_call_entry,
    build_llm_messages,
    normalize_role,
    tool_result_entry,
)
from relay.tool_router import ToolContext, ToolRouter

LOGGER = logging.getLogger(__name__)


class ResponseHandler(Protocol):
    """Receives everything a generation wants to put on the wire."""

    async def content(self, message: TextMessage) -> None: ...

    async def tool_message(self, message: OutgoingMessage) -> None: ...

    async def error(self, error: GenerationError) -> None: ...


class StreamingResponseEngine:
    """Owns one call's conversation history and drives the LLM stream.

    A generation is one user (or system) entry followed by as many streamed
    rounds as the model needs to finish its tool calls. Text deltas go out one
    behind the stream so the terminal delta can carry ``last=True``; delayed
    tool messages are held until that terminal token has been handed over.
    """

    def __init__(
        self,
        llm: BaseLLMClient,
        router: ToolRouter,
        *,
        context: str = "",
        listen_mode: bool = False,
        temperature: float = 0.2,
        max_tool_rounds: int = 5,
        tool_context: ToolContext | None = None,
    ) -> None:
        self._llm = llm
        self._router = router
        self._context = context
        self._temperature = temperature
        self._max_tool_rounds = max_tool_rounds
        self._history: list[HistoryEntry] = []
        self._handler: ResponseHandler | None = None
        self._closed = False
        self.tool_context = tool_context or ToolContext(call_sid=None)
        self.tool_context.engine = self
        self.listen_mode = listen_mode
        self.interrupted = False
        self.pending_terminal_message: OutgoingMessage | None = None
        self.generation_sequence = 0

    def set_handler(self, handler: ResponseHandler) -> None:
        self._handler = handler

    @property
    def history(self) -> list[HistoryEntry]:
        return [dict(entry) for entry in self._history]

    @property
    def context(self) -> str:
        return self._context

    @property
    def router(self) -> ToolRouter:
        return self._router

    def interrupt(self) -> None:
        LOGGER.info("Generation %d interrupted", self.generation_sequence)
        self.interrupted = True

    def set_listen_mode(self, enabled: bool) -> None:
        LOGGER.info("Listen mode %s", "enabled" if enabled else "disabled")
        self.listen_mode = enabled

    async def update_context(self, context: str) -> None:
        LOGGER.info("Updating context (%d characters)", len(context))
        self._context = context

    async def update_tools(self, manifest: Mapping[str, Any]) -> None:
        self._router.load_manifest(manifest)

    async def insert_message(self, role: str, content: str) -> None:
        """Add an entry to history without generating a response."""

        self._history.append({"role": normalize_role(role), "content": content})

    def cleanup(self) -> None:
        self._closed = True
        self.interrupted = True
        self.pending_terminal_message = None
        self._handler = None

    def _is_stale(self, sequence: int) -> bool:
        return self._closed or self.interrupted or sequence != self.generation_sequence

    async def generate_response(self, role: str, content: str) -> None:
        if self._closed:
            LOGGER.warning("Ignoring generation request on a closed session")
            return

        self._history.append({"role": normalize_role(role), "content": content})
        self.generation_sequence += 1
        sequence = self.generation_sequence
        self.interrupted = False
        self.pending_terminal_message = None

        try:
            completed = await self._run_rounds(sequence)
        except Exception as exc:
            LOGGER.exception("Generation %d failed: %s", sequence, exc)
            self.pending_terminal_message = None
            if self._handler is not None:
                await self._handler.error(GenerationError(str(exc) or exc.__class__.__name__))
            return

        pending, self.pending_terminal_message = self.pending_terminal_message, None
        if not completed:
            if pending is not None:
                LOGGER.info("Discarding pending %s message after interruption", pending.type)
            return
        if pending is not None and self._handler is not None:
            LOGGER.info("Flushing pending %s message after final token", pending.type)
            await self._handler.tool_message(pending)

    async def _run_rounds(self, sequence: int) -> bool:
        """Stream until the model stops calling tools; False when cut short."""

        buffered: str | None = None
        emitted = False
        for round_index in range(self._max_tool_rounds + 1):
            spoken: list[str] = []
            called_tools = False
            stream = self._llm.stream_chat(
                build_llm_messages(self._context, self._history),
                tools=self._router.openai_tools(),
                temperature=self._temperature,
            )
            try:
                async for event in stream:
                    if self._is_stale(sequence):
                        break
                    if isinstance(event, TextDelta):
                        spoken.append(event.text)
                        if self.listen_mode:
                            continue
                        if buffered is not None:
                            await self._emit_text(buffered, last=False)
                            emitted = True
                        buffered = event.text
                    elif isinstance(event, ToolCallRequest):
                        if buffered is not None:
                            await self._emit_text(buffered, last=False)
                            emitted = True
                            buffered = None
                        await self._run_tool(event, "".join(spoken) if not called_tools else None)
                        called_tools = True
            finally:
                await stream.aclose()

            if self._is_stale(sequence):
                if spoken and not called_tools:
                    self._history.append({"role": "assistant", "content": "".join(spoken)})
                return False
            if not called_tools:
                self._history.append({"role": "assistant", "content": "".join(spoken)})
                break
            if round_index == self._max_tool_rounds:
                LOGGER.warning("Stopping after %d tool rounds without a final answer", round_index)

        # A turn that already started speaking is closed even if listen mode came on.
        if not self.listen_mode or emitted:
            await self._emit_text(buffered or "", last=True)
        return True

    async def _run_tool(self, call: ToolCallRequest, spoken: str | None) -> None:
        result = await self._router.execute(call.name, call.arguments, self.tool_context)
        self._history.append(
            assistant_tool_call_entry(call.call_id, call.name, call.arguments, content=spoken)
        )
        self._history.append(tool_result_entry(call.call_id, result.message))

        outgoing = result.outgoing_message
        if outgoing is None or result.delivery is DeliveryClass.NONE:
            return
        if result.delivery is DeliveryClass.IMMEDIATE:
            if self._handler is not None:
                await self._handler.tool_message(outgoing)
            return
        if self.pending_terminal_message is not None:
            LOGGER.warning(
                "Keeping earlier pending %s message, dropping %s from %s",
                self.pending_terminal_message.type,
                outgoing.type,
                call.name,
            )
            return
        self.pending_terminal_message = outgoing

    async def _emit_text(self, token: str, *, last: bool) -> None:
        if self._handler is not None:
            await self._handler.content(TextMessage(token=token, last=last))
