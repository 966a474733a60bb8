"""Facade folding finished sessions into ledger, progress and achievements."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from renacer.errors import PersistenceError
from renacer.persistence import PersistenceGateway, progress_key
from renacer.progress.achievements import (
    DEFAULT_ACHIEVEMENTS,
    Achievement,
    AchievementEvaluator,
    AchievementSpec,
)
from renacer.progress.aggregator import ProgressAggregator, ProgressRecord
from renacer.progress.points import PointsRecord, compute_points
from renacer.progress.recorder import SessionRecorder
from renacer.ritual.events import EventBus
from renacer.ritual.models import LedgerEntry, RitualSession

logger = logging.getLogger(__name__)


@dataclass
class SessionOutcome:
    """What recording one finished session produced."""

    entry: Optional[LedgerEntry]
    progress: Optional[ProgressRecord] = None
    overall: Optional[ProgressRecord] = None
    unlocked: List[Achievement] = field(default_factory=list)
    points: Optional[PointsRecord] = None

    @property
    def recorded(self) -> bool:
        return self.entry is not None


class ProgressService:
    """Wires recorder, aggregator and achievement evaluator over one gateway."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        definition_ids: Iterable[str] = (),
        bus: Optional[EventBus] = None,
        today: Callable[[], date] = date.today,
        clock: Callable[[], datetime] = datetime.now,
        points_per_level: int = 100,
        achievements: Sequence[AchievementSpec] = DEFAULT_ACHIEVEMENTS,
    ) -> None:
        self._gateway = gateway
        self._definition_ids: Tuple[str, ...] = tuple(definition_ids)
        self.recorder = SessionRecorder(gateway)
        self.aggregator = ProgressAggregator(today=today)
        self.evaluator = AchievementEvaluator(gateway, catalog=achievements, bus=bus, clock=clock)
        self._points_per_level = points_per_level

    def ledger(self, definition_id: Optional[str] = None) -> List[LedgerEntry]:
        if definition_id is not None:
            return list(self.recorder.ledger(definition_id))
        return self.recorder.entries(self._definition_ids)

    def progress(self, definition_id: str) -> ProgressRecord:
        return self.aggregator.compute(definition_id, self.recorder.ledger(definition_id))

    def overall(self) -> ProgressRecord:
        return self.aggregator.compute_overall(self.ledger())

    def achievements(self) -> List[Achievement]:
        return self.evaluator.achievements()

    def points(self) -> PointsRecord:
        return compute_points(
            self.ledger(),
            self.evaluator.achievements(),
            points_per_level=self._points_per_level,
        )

    def record_session(self, session: RitualSession, *, after_rating: Optional[int] = None) -> SessionOutcome:
        """Fold a terminal session in and re-derive everything downstream.

        Every in-memory step runs even if a write fails; the first
        ``PersistenceError`` is raised once the outcome is computed, with
        the outcome attached as ``exc.outcome``.
        """
        pending: Optional[PersistenceError] = None
        try:
            entry = self.recorder.record(session, after_rating=after_rating)
        except PersistenceError as exc:
            pending = exc
            entry = self._entry_for(session)
        if entry is None:
            return SessionOutcome(entry=None)

        progress = self.progress(entry.definition_id)
        try:
            self._gateway.save(progress_key(entry.definition_id), self.aggregator.encode(progress))
        except PersistenceError as exc:
            logger.warning("Progress cache write failed", extra={"definition_id": entry.definition_id})
            pending = pending or exc

        ledger = self.ledger()
        overall = self.aggregator.compute_overall(ledger)
        unlocked = self.evaluator.evaluate(overall, ledger, persist=False)
        try:
            self.evaluator.flush()
        except PersistenceError as exc:
            pending = pending or exc

        outcome = SessionOutcome(
            entry=entry,
            progress=progress,
            overall=overall,
            unlocked=unlocked,
            points=self.points(),
        )
        if pending is not None:
            pending.outcome = outcome
            raise pending
        return outcome

    def flush(self) -> None:
        """Retry every pending write."""
        self.recorder.flush()
        self.evaluator.flush()

    def _entry_for(self, session: RitualSession) -> Optional[LedgerEntry]:
        for entry in self.recorder.ledger(session.definition_id):
            if entry.id == session.id:
                return entry
        return None
