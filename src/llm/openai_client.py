"""OpenAI (or OpenAI-compatible) streaming chat client."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from typing import Any

from openai import AsyncOpenAI

from config.settings import get_settings
from llm.base import BaseLLMClient, StreamEvent, TextDelta, ToolCallRequest

LOGGER = logging.getLogger(__name__)


class OpenAIClient(BaseLLMClient):
    """Wrapper for the OpenAI Chat Completions streaming API.

    A self-hosted vLLM server exposes the same API, so it is reached through
    this client by pointing ``base_url`` at it.
    """

    def __init__(self, client: AsyncOpenAI | None = None) -> None:
        settings = get_settings()
        if client is None:
            if not settings.llm_api_key and settings.llm_provider == "openai":
                raise ValueError("LLM API key must be configured for OpenAI client.")
            client = AsyncOpenAI(
                api_key=settings.llm_api_key or "not-needed",
                base_url=settings.llm_endpoint or None,
            )
        self._client = client
        self._model = settings.llm_model

    async def stream_chat(
        self,
        messages: Iterable[dict[str, Any]],
        *,
        tools: Sequence[dict[str, Any]] | None = None,
        temperature: float = 0.1,
    ) -> AsyncIterator[StreamEvent]:
        request: dict[str, Any] = {
            "model": self._model,
            "messages": list(messages),
            "temperature": temperature,
            "stream": True,
        }
        if tools:
            request["tools"] = list(tools)

        stream = await self._client.chat.completions.create(**request)
        # Tool call fragments arrive keyed by index and are only complete at finish.
        pending: dict[int, dict[str, str]] = {}
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta is not None:
                    if delta.content:
                        yield TextDelta(delta.content)
                    for fragment in delta.tool_calls or []:
                        slot = pending.setdefault(
                            fragment.index, {"id": "", "name": "", "arguments": ""}
                        )
                        if fragment.id:
                            slot["id"] = fragment.id
                        if fragment.function is not None:
                            if fragment.function.name:
                                slot["name"] += fragment.function.name
                            if fragment.function.arguments:
                                slot["arguments"] += fragment.function.arguments
                if choice.finish_reason is not None and pending:
                    for call in _drain(pending):
                        yield call
            for call in _drain(pending):
                yield call
        finally:
            await stream.close()


def _drain(pending: dict[int, dict[str, str]]) -> list[ToolCallRequest]:
    calls = [
        ToolCallRequest(
            call_id=slot["id"] or f"call_{index}",
            name=slot["name"],
            arguments=slot["arguments"] or "{}",
        )
        for index, slot in sorted(pending.items())
    ]
    pending.clear()
    return calls
