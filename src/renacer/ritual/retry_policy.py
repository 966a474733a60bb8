"""Per-phase retry budget for voice-gated phases."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict

from renacer.ritual.models import PhaseSpec

logger = logging.getLogger(__name__)


@dataclass
class RetryBudget:
    """Counts failed attempts per phase of one session.

    A failed phase re-opens at most ``max_retries`` times, so it gets
    ``max_retries + 1`` attempts in total. ``max_retries=0`` abandons on the
    first failure.
    """

    failures: Dict[str, int] = field(default_factory=dict)

    def attempts(self, phase_id: str) -> int:
        """Attempt number of the currently open attempt (1-based)."""
        return self.failures.get(phase_id, 0) + 1

    def record_failure(self, phase: PhaseSpec) -> bool:
        """Register a failed attempt; return True if the phase may re-open."""
        failed = self.failures.get(phase.id, 0) + 1
        self.failures[phase.id] = failed
        can_retry = failed <= phase.max_retries
        logger.debug(
            "Phase attempt failed",
            extra={
                "phase_id": phase.id,
                "failed_attempts": failed,
                "max_retries": phase.max_retries,
                "can_retry": can_retry,
            },
        )
        return can_retry

    def remaining(self, phase: PhaseSpec) -> int:
        return max(0, phase.max_retries - self.failures.get(phase.id, 0))
