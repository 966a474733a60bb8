"""Progress records derived purely from the ledger.

Nothing here is stored independently: a ``ProgressRecord`` is recomputed
from ledger entries on demand and the cached copy under
``ritual.progress.<id>`` can always be thrown away.
"""

from __future__ import annotations

import json
from datetime import date, timedelta
from typing import Callable, Iterable, List, Optional, Set

from pydantic import BaseModel, ConfigDict

from renacer.ritual.models import LedgerEntry


class ProgressRecord(BaseModel):
    """Aggregate metrics for one definition (or all of them when ``definition_id`` is None)."""

    model_config = ConfigDict(frozen=True)

    definition_id: Optional[str] = None
    completed_runs: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_completion_date: Optional[date] = None
    average_duration_seconds: float = 0.0
    total_duration_seconds: float = 0.0
    average_emotional_improvement: Optional[float] = None
    validations: int = 0


def current_streak(days: Set[date], today: date) -> int:
    """Consecutive days with a completion, walking back from ``today``."""
    streak = 0
    day = today
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak


def longest_streak(days: Set[date]) -> int:
    longest = 0
    for day in days:
        if day - timedelta(days=1) in days:
            continue
        run = 1
        while day + timedelta(days=run) in days:
            run += 1
        longest = max(longest, run)
    return longest


class ProgressAggregator:
    """Recomputes progress records from ledger entries.

    ``today`` is injectable so streaks are reproducible in tests.
    """

    def __init__(self, today: Callable[[], date] = date.today) -> None:
        self._today = today

    def compute(self, definition_id: str, ledger: Iterable[LedgerEntry]) -> ProgressRecord:
        entries = [entry for entry in ledger if entry.definition_id == definition_id]
        return self._summarize(definition_id, entries)

    def compute_overall(self, ledger: Iterable[LedgerEntry]) -> ProgressRecord:
        return self._summarize(None, list(ledger))

    def _summarize(self, definition_id: Optional[str], entries: List[LedgerEntry]) -> ProgressRecord:
        if not entries:
            return ProgressRecord(definition_id=definition_id)
        days = {entry.completion_date for entry in entries}
        durations = [entry.duration_seconds for entry in entries]
        improvements = [
            entry.emotional_improvement for entry in entries if entry.emotional_improvement is not None
        ]
        total = sum(durations)
        return ProgressRecord(
            definition_id=definition_id,
            completed_runs=len(entries),
            current_streak=current_streak(days, self._today()),
            longest_streak=longest_streak(days),
            last_completion_date=max(days),
            average_duration_seconds=round(total / len(entries), 3),
            total_duration_seconds=round(total, 3),
            average_emotional_improvement=(
                round(sum(improvements) / len(improvements), 3) if improvements else None
            ),
            validations=sum(entry.validations for entry in entries),
        )

    @staticmethod
    def encode(record: ProgressRecord) -> bytes:
        """Canonical JSON bytes; identical records encode identically."""
        return json.dumps(
            record.model_dump(mode="json"), sort_keys=True, separators=(",", ":")
        ).encode("utf-8")
