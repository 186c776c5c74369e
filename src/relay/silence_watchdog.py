"""Silence monitoring with escalating reminders and call termination."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Union

from relay.schemas import EndMessage, SilenceDetectionConfig, TextMessage

LOGGER = logging.getLogger(__name__)

SilenceMessage = Union[TextMessage, EndMessage]
MessageCallback = Callable[[SilenceMessage], Awaitable[None]]
TickScheduler = Callable[[], Awaitable[None]]


@dataclass(slots=True)
class WatchdogState:
    last_activity: float = 0.0
    current_message_index: int = 0
    running: bool = False


class SilenceWatchdog:
    """Escalates through reminder messages while the caller stays silent.

    Every ``secondsThreshold`` seconds without qualifying activity is one
    escalation step. Each step but the last speaks the next configured
    message; the step that exhausts the sequence ends the call. With N
    messages the call therefore ends after N silent windows; the last
    configured message is never spoken, it only sizes the sequence.

    The timer does not evaluate anything itself: it calls ``schedule_tick``
    so the owning session can run :meth:`tick` in its own serialized order.
    """

    def __init__(
        self,
        config: SilenceDetectionConfig,
        *,
        tick_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.state = WatchdogState()
        self._tick_seconds = tick_seconds
        self._clock = clock
        self._on_message: MessageCallback | None = None
        self._timer: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self.state.running

    def start(self, on_message: MessageCallback, *, schedule_tick: TickScheduler | None = None) -> None:
        """Begin monitoring; ``schedule_tick`` defaults to evaluating in the timer task."""

        self._on_message = on_message
        self.state.last_activity = self._clock()
        self.state.current_message_index = 0
        self.state.running = True
        if self._timer is None or self._timer.done():
            self._timer = asyncio.create_task(self._run_timer(schedule_tick or self.tick))
        LOGGER.info(
            "Silence monitoring started (threshold=%ss, %d messages)",
            self.config.seconds_threshold,
            len(self.config.messages),
        )

    async def _run_timer(self, fire: TickScheduler) -> None:
        while self.state.running:
            await asyncio.sleep(self._tick_seconds)
            if not self.state.running:
                break
            await fire()

    async def tick(self) -> SilenceMessage | None:
        """Evaluate silence once; returns the message emitted, if any."""

        if not self.state.running:
            return None

        now = self._clock()
        elapsed = now - self.state.last_activity
        if elapsed < self.config.seconds_threshold:
            return None

        step = self.state.current_message_index + 1
        LOGGER.info(
            "Silence breaker: no activity for %.1fs (step %d/%d)",
            elapsed,
            step,
            max(len(self.config.messages), 1),
        )
        message: SilenceMessage
        if step >= len(self.config.messages):
            self.state.current_message_index = len(self.config.messages)
            self._stop_timer()
            LOGGER.info("Ending call after exhausting silence reminder messages")
            message = EndMessage.with_data(
                reasonCode="unresponsive",
                reason="The caller was not speaking",
            )
        else:
            message = TextMessage(
                token=self.config.messages[self.state.current_message_index],
                last=True,
            )
            self.state.current_message_index += 1
            self.state.last_activity = now

        if self._on_message is not None:
            await self._on_message(message)
        return message

    def reset(self) -> None:
        """Record qualifying activity: fresh window and no escalation."""

        self.state.last_activity = self._clock()
        self.state.current_message_index = 0
        LOGGER.debug("Silence timer and message index reset")

    def stop(self) -> None:
        """Pause monitoring but keep the callback so it can be started again."""

        if self.state.running:
            LOGGER.info("Silence monitoring stopped")
        self._stop_timer()

    def cleanup(self) -> None:
        self._stop_timer()
        self._on_message = None

    def _stop_timer(self) -> None:
        self.state.running = False
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()
