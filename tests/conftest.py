"""Shared fixtures and fakes for the ritual engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, List

import pytest

from renacer.errors import PersistenceError
from renacer.persistence import InMemoryPersistenceGateway
from renacer.ritual.events import EventBus, EventRecorder
from renacer.ritual.models import PhaseSpec, RitualDefinition


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = datetime(2024, 3, 10, 9, 0, 0)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeHandle:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Records scheduled timeouts; tests fire them explicitly."""

    def __init__(self) -> None:
        self.handles: List[FakeHandle] = []

    def schedule(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
        handle = FakeHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> List[FakeHandle]:
        return [handle for handle in self.handles if not handle.cancelled]

    def fire_pending(self) -> int:
        fired = 0
        for handle in self.pending:
            handle.cancelled = True
            handle.callback()
            fired += 1
        return fired


class FailingGateway(InMemoryPersistenceGateway):
    """In-memory gateway whose writes fail while ``fail`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.fail = True

    def save(self, key: str, data: bytes) -> None:
        if self.fail:
            raise PersistenceError("disk full", key=key)
        super().save(key, data)


def sequential_ids(prefix: str = "session") -> Callable[[], str]:
    counter = {"value": 0}

    def _next() -> str:
        counter["value"] += 1
        return f"{prefix}-{counter['value']}"

    return _next


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def events(bus: EventBus) -> EventRecorder:
    recorder = EventRecorder()
    bus.subscribe(recorder)
    return recorder


@pytest.fixture
def gateway() -> InMemoryPersistenceGateway:
    return InMemoryPersistenceGateway()


@pytest.fixture
def three_phase_definition() -> RitualDefinition:
    """Three voice-gated phases, two of three anchors needed in each."""
    return RitualDefinition(
        id="liberation",
        title="Ritual de Liberación",
        phases=(
            PhaseSpec(
                id="recognition",
                required_anchors=("te reconozco", "reconozco el dolor", "acepto lo que pasó"),
                min_anchor_matches=2,
                max_retries=2,
            ),
            PhaseSpec(
                id="liberation",
                required_anchors=("te libero", "te reconozco", "te suelto"),
                min_anchor_matches=2,
                max_retries=2,
            ),
            PhaseSpec(
                id="sealing",
                required_anchors=("estoy en paz", "así es", "gracias"),
                min_anchor_matches=2,
                max_retries=2,
            ),
        ),
    )


@pytest.fixture
def mixed_definition() -> RitualDefinition:
    """Timed breathing phase followed by a skippable voice phase and a closing phase."""
    return RitualDefinition(
        id="karmic",
        title="Liberación Kármica",
        phases=(
            PhaseSpec(id="breathing", is_voice_gated=False, timeout_seconds=60),
            PhaseSpec(
                id="liberation",
                required_anchors=("libero este karma", "me libero"),
                min_anchor_matches=1,
                max_retries=1,
                skippable=True,
                timeout_seconds=120,
            ),
            PhaseSpec(id="sealing", required_anchors=("estoy en paz",), min_anchor_matches=1, max_retries=0),
        ),
    )
