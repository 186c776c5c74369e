"""Direct text chats with the response engine, outside of any phone call."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from relay.errors import GenerationError
from relay.response_engine import StreamingResponseEngine
from relay.schemas import OutgoingMessage, TextMessage

LOGGER = logging.getLogger(__name__)

EngineFactory = Callable[[], StreamingResponseEngine]


class TranscriptCollector:
    """Response handler that joins text tokens into one reply."""

    def __init__(self) -> None:
        self.tokens: list[str] = []
        self.errors: list[GenerationError] = []

    @property
    def text(self) -> str:
        return "".join(self.tokens)

    async def content(self, message: TextMessage) -> None:
        if message.token:
            self.tokens.append(message.token)

    async def tool_message(self, message: OutgoingMessage) -> None:
        # There is no gateway to act on control frames in a plain chat.
        LOGGER.info("Chat turn produced a %s frame; not forwarded", message.type)

    async def error(self, error: GenerationError) -> None:
        self.errors.append(error)


@dataclass
class ChatSession:
    session_id: str
    engine: StreamingResponseEngine
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def reply(self, role: str, message: str) -> str:
        """Run one turn and return the collected text; raises GenerationError on failure."""

        collector = TranscriptCollector()
        # One turn at a time per session, so replies never mix tokens.
        async with self.lock:
            self.engine.set_handler(collector)
            await self.engine.generate_response(role, message)
        if collector.errors:
            raise collector.errors[0]
        return collector.text


class ConversationStore:
    """In-memory map of chat session id to its engine.

    Sessions live until the process stops; like the call registry this is
    single-process state.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._sessions: dict[str, ChatSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def get(self, session_id: str) -> ChatSession | None:
        async with self._lock:
            return self._sessions.get(session_id)

    async def get_or_create(self, session_id: str | None, build: EngineFactory) -> ChatSession:
        """Return the known session for ``session_id`` or open a new one under a fresh id."""

        async with self._lock:
            if session_id and session_id in self._sessions:
                LOGGER.debug("Continuing chat session %s", session_id)
                return self._sessions[session_id]
            session = ChatSession(session_id=str(uuid.uuid4()), engine=build())
            self._sessions[session.session_id] = session
        LOGGER.info("Opened chat session %s (%d open)", session.session_id, len(self._sessions))
        return session

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.engine.cleanup()
