from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from relay.errors import SessionNotFoundError

if TYPE_CHECKING:  # pragma: no cover
    from relay.orchestrator import ConversationOrchestrator

LOGGER = logging.getLogger(__name__)


class SessionRegistry:
    """In-memory map of call SID to live orchestrator.

    Note: This is a single-process registry. For multi-worker deployments the
    transport must pin a call's WebSocket and control requests to one worker.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._sessions: dict[str, ConversationOrchestrator] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def call_sids(self) -> list[str]:
        return list(self._sessions)

    async def register(self, call_sid: str, session: ConversationOrchestrator) -> None:
        async with self._lock:
            previous = self._sessions.get(call_sid)
            if previous is not None and previous is not session:
                LOGGER.warning("Replacing existing session for call %s", call_sid)
            self._sessions[call_sid] = session
        LOGGER.info("Registered session for call %s (%d active)", call_sid, len(self._sessions))

    async def get(self, call_sid: str) -> ConversationOrchestrator | None:
        async with self._lock:
            return self._sessions.get(call_sid)

    async def require(self, call_sid: str) -> ConversationOrchestrator:
        session = await self.get(call_sid)
        if session is None:
            raise SessionNotFoundError(f"Session not found for call SID: {call_sid}")
        return session

    async def remove(self, call_sid: str, session: ConversationOrchestrator | None = None) -> bool:
        """Drop a session; with ``session`` given, only if it is still the registered one."""

        async with self._lock:
            current = self._sessions.get(call_sid)
            if current is None or (session is not None and current is not session):
                return False
            del self._sessions[call_sid]
        LOGGER.info("Removed session for call %s (%d active)", call_sid, len(self._sessions))
        return True

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            await session.cleanup()
