"""Discrete domain events and a fire-and-forget subscriber feed."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List


logger = logging.getLogger(__name__)


class EventType:
    """Names of events published by the ritual engine."""

    SESSION_STARTED = "session-started"
    PHASE_CHANGED = "phase-changed"
    ANCHOR_DETECTED = "anchor-detected"
    PHASE_RETRY = "phase-retry"
    PHASE_SKIPPED = "phase-skipped"
    SESSION_PAUSED = "session-paused"
    SESSION_RESUMED = "session-resumed"
    SESSION_COMPLETED = "session-completed"
    SESSION_ABANDONED = "session-abandoned"
    ACHIEVEMENT_UNLOCKED = "achievement-unlocked"


@dataclass(frozen=True)
class DomainEvent:
    type: str
    session_id: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)


Subscriber = Callable[[DomainEvent], None]


class EventBus:
    """Delivers events to subscribers in subscription order.

    Subscribers are feedback sinks: an exception raised by one of them is
    logged and never reaches the engine or the other subscribers.
    """

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: DomainEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:  # noqa: BLE001 - sinks are fire-and-forget
                logger.warning(
                    "Event subscriber failed",
                    extra={"event_type": event.type, "session_id": event.session_id},
                    exc_info=True,
                )

    def emit(self, event_type: str, session_id: str = "", **payload: Any) -> DomainEvent:
        event = DomainEvent(type=event_type, session_id=session_id, payload=payload)
        self.publish(event)
        return event


class EventRecorder:
    """Subscriber that keeps every event it receives. Handy for snapshots."""

    def __init__(self) -> None:
        self.events: List[DomainEvent] = []

    def __call__(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[DomainEvent]:
        return [event for event in self.events if event.type == event_type]
