"""Shared abstractions for language model clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True, slots=True)
class TextDelta:
    """A fragment of spoken text produced by the model."""

    text: str


@dataclass(frozen=True, slots=True)
class ToolCallRequest:
    """A fully assembled function call requested by the model."""

    call_id: str
    name: str
    arguments: str


StreamEvent = Union[TextDelta, ToolCallRequest]


class BaseLLMClient(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    def stream_chat(
        self,
        messages: Iterable[dict[str, Any]],
        *,
        tools: Sequence[dict[str, Any]] | None = None,
        temperature: float = 0.1,
    ) -> AsyncIterator[StreamEvent]:
        """Stream text deltas and tool calls for a chat-style request.

        Implementations are async generators; closing the generator early must
        release the underlying provider stream.
        """
