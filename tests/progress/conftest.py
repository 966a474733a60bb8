"""Builders for completed sessions and ledger entries."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Optional

import pytest

from renacer.ritual.models import LedgerEntry, PhaseResult, RitualSession, SessionState

TODAY = date(2024, 3, 10)


def build_session(
    session_id: str,
    *,
    definition_id: str = "liberation",
    day: date = TODAY,
    minutes: float = 12,
    before: Optional[int] = None,
    state: SessionState = SessionState.COMPLETED,
    skipped: bool = False,
) -> RitualSession:
    started = datetime.combine(day, time(9, 0))
    results = [
        PhaseResult(
            phase_id="liberation",
            detected_anchors=("te libero", "te suelto"),
            min_anchor_matches=2,
            accuracy=0.6667,
            passed=True,
        )
    ]
    if skipped:
        results.append(PhaseResult(phase_id="protection", skipped=True, failure="skipped"))
    return RitualSession(
        id=session_id,
        definition_id=definition_id,
        state=state,
        current_phase_index=len(results),
        started_at=started,
        completed_at=started + timedelta(minutes=minutes) if state is SessionState.COMPLETED else None,
        ended_at=started + timedelta(minutes=minutes),
        phase_results=results,
        before_rating=before,
        abandon_reason="user_abandoned" if state is SessionState.ABANDONED else None,
    )


def build_entry(session_id: str, *, after: Optional[int] = None, **kwargs) -> LedgerEntry:
    return LedgerEntry.from_session(build_session(session_id, **kwargs), after_rating=after)


@pytest.fixture
def make_session():
    return build_session


@pytest.fixture
def make_entry():
    return build_entry
