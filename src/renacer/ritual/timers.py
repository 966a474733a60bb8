"""Cancellable phase timeouts.

A timeout is registered when a phase is entered and cancelled when the
phase is left, so a timer can never fire into a finished session.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class TimeoutScheduler(Protocol):
    """Schedules a callback after ``delay`` seconds."""

    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class AsyncioTimeoutScheduler:
    """Timeout scheduler backed by ``loop.call_later``."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def schedule(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        logger.debug("Scheduling phase timeout", extra={"delay_seconds": delay})
        return loop.call_later(delay, callback)


class PhaseTimer:
    """Holds at most one armed timeout for the open phase."""

    def __init__(self, scheduler: TimeoutScheduler) -> None:
        self._scheduler = scheduler
        self._handle: Optional[TimerHandle] = None
        self._token = 0

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self, delay: float, callback: Callable[[], None]) -> None:
        self.cancel()
        self._token += 1
        token = self._token

        def _fire() -> None:
            # A stale handle that slipped past cancel() must not fire.
            if token != self._token:
                return
            self._handle = None
            callback()

        self._handle = self._scheduler.schedule(delay, _fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._token += 1
