"""Ledger, derived progress, achievements and points."""

from .achievements import (
    DEFAULT_ACHIEVEMENTS,
    Achievement,
    AchievementEvaluator,
    AchievementRule,
    AchievementSpec,
)
from .aggregator import ProgressAggregator, ProgressRecord, current_streak, longest_streak
from .points import PointsRecord, compute_points
from .recorder import SessionRecorder, decode_ledger, encode_ledger
from .service import ProgressService, SessionOutcome

__all__ = [
    "DEFAULT_ACHIEVEMENTS",
    "Achievement",
    "AchievementEvaluator",
    "AchievementRule",
    "AchievementSpec",
    "PointsRecord",
    "ProgressAggregator",
    "ProgressRecord",
    "ProgressService",
    "SessionOutcome",
    "SessionRecorder",
    "compute_points",
    "current_streak",
    "decode_ledger",
    "encode_ledger",
    "longest_streak",
]
