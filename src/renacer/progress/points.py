"""Points and levels derived from the ledger and unlocked achievements."""

from __future__ import annotations

from typing import Iterable

from pydantic import BaseModel, ConfigDict

from renacer.progress.aggregator import current_streak
from renacer.ritual.models import LedgerEntry

BASE_POINTS = 50
LONG_SESSION_SECONDS = 10 * 60
LONG_SESSION_BONUS = 25
IMPROVEMENT_BONUS = 30
FULL_VOICE_BONUS = 20
STREAK_POINTS_PER_DAY = 5
STREAK_BONUS_CAP = 50


class PointsRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_points: int = 0
    achievement_points: int = 0
    total_points: int = 0
    level: int = 1
    experience_to_next_level: int = 0


def session_points(entry: LedgerEntry, streak: int) -> int:
    """Points for one completed session given the streak reached that day."""
    points = BASE_POINTS
    if entry.duration_seconds >= LONG_SESSION_SECONDS:
        points += LONG_SESSION_BONUS
    improvement = entry.emotional_improvement
    if improvement is not None and improvement > 0:
        points += IMPROVEMENT_BONUS
    if entry.all_voice_phases_passed:
        points += FULL_VOICE_BONUS
    if streak > 1:
        points += min(streak * STREAK_POINTS_PER_DAY, STREAK_BONUS_CAP)
    return points


def compute_points(
    ledger: Iterable[LedgerEntry],
    achievements: Iterable = (),
    *,
    points_per_level: int = 100,
) -> PointsRecord:
    """Total points, level and experience left, from scratch.

    ``achievements`` are ``Achievement`` states; only unlocked ones count.
    """
    entries = list(ledger)
    days = {entry.completion_date for entry in entries}
    earned = sum(session_points(entry, current_streak(days, entry.completion_date)) for entry in entries)
    rewards = sum(a.reward_points for a in achievements if a.unlocked)
    total = earned + rewards
    level = total // points_per_level + 1
    return PointsRecord(
        session_points=earned,
        achievement_points=rewards,
        total_points=total,
        level=level,
        experience_to_next_level=level * points_per_level - total,
    )
