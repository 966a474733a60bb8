"""Domain models for guided ritual sessions.

Definitions are data-only: one generic sequencer drives every ritual flavor
from a ``RitualDefinition`` made of ordered ``PhaseSpec`` entries. Sessions,
phase results and ledger entries serialize to plain JSON through pydantic so
the same ledger always encodes to the same bytes.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SessionState(str, Enum):
    """Ritual session lifecycle states."""

    NOT_STARTED = "not_started"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"  # Terminal, folded into the ledger
    ABANDONED = "abandoned"  # Terminal, never folded into the ledger


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.ABANDONED})


class PhaseSpec(BaseModel):
    """One gated step of a ritual.

    Attributes:
        id: Phase identifier, unique within its definition
        required_anchors: Phrases the user must speak
        min_anchor_matches: Anchors needed for a passing verdict
        timeout_seconds: Timer armed on phase entry (required when not voice gated)
        is_voice_gated: Whether advancing needs a passing voice verdict
        max_retries: Failed attempts tolerated before the session is abandoned
        skippable: Whether the user may explicitly skip the phase
        expected_text: Full letter text, enables reading accuracy
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    required_anchors: Tuple[str, ...] = ()
    min_anchor_matches: int = Field(default=0, ge=0)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    is_voice_gated: bool = True
    max_retries: int = Field(default=3, ge=0, le=10)
    skippable: bool = False
    expected_text: Optional[str] = None

    @model_validator(mode="after")
    def _check_thresholds(self) -> "PhaseSpec":
        if self.min_anchor_matches > len(self.required_anchors):
            raise ValueError(
                f"phase '{self.id}': min_anchor_matches ({self.min_anchor_matches}) "
                f"exceeds the number of required anchors ({len(self.required_anchors)})"
            )
        if len(set(self.required_anchors)) != len(self.required_anchors):
            raise ValueError(f"phase '{self.id}': duplicate anchors")
        if self.is_voice_gated:
            if self.min_anchor_matches < 1:
                raise ValueError(f"phase '{self.id}': voice-gated phases need min_anchor_matches >= 1")
        else:
            if self.min_anchor_matches != 0:
                raise ValueError(f"phase '{self.id}': timed phases cannot require anchors")
            if self.timeout_seconds is None:
                raise ValueError(f"phase '{self.id}': timed phases need timeout_seconds")
        return self


class RitualDefinition(BaseModel):
    """Ordered phases of one ritual flavor."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str = ""
    phases: Tuple[PhaseSpec, ...] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_unique_phases(self) -> "RitualDefinition":
        ids = [phase.id for phase in self.phases]
        if len(set(ids)) != len(ids):
            raise ValueError(f"definition '{self.id}': duplicate phase ids")
        return self

    def phase(self, phase_id: str) -> PhaseSpec:
        for phase in self.phases:
            if phase.id == phase_id:
                return phase
        raise KeyError(phase_id)

    @property
    def voice_gated_phases(self) -> List[PhaseSpec]:
        return [phase for phase in self.phases if phase.is_voice_gated]


class PhaseResult(BaseModel):
    """Outcome of one phase attempt. Written exactly once, never mutated."""

    model_config = ConfigDict(frozen=True)

    phase_id: str
    detected_anchors: Tuple[str, ...] = ()
    missing_anchors: Tuple[str, ...] = ()
    min_anchor_matches: int = Field(default=0, ge=0)
    accuracy: float = Field(default=0.0, ge=0.0, le=1.0)
    passed: bool = False
    duration_seconds: float = Field(default=0.0, ge=0.0)
    attempt: int = Field(default=1, ge=1)
    skipped: bool = False
    failure: Optional[str] = None
    reading_accuracy: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _passed_needs_anchors(self) -> "PhaseResult":
        if self.passed and len(self.detected_anchors) < self.min_anchor_matches:
            raise ValueError(
                f"phase '{self.phase_id}': passed with {len(self.detected_anchors)} "
                f"anchors, {self.min_anchor_matches} required"
            )
        if self.passed and self.skipped:
            raise ValueError(f"phase '{self.phase_id}': a skipped phase cannot pass")
        return self

    @classmethod
    def auto_pass(cls, phase: PhaseSpec, *, duration_seconds: float, attempt: int = 1) -> "PhaseResult":
        """Result for a timed phase whose timer elapsed."""
        return cls(
            phase_id=phase.id,
            min_anchor_matches=phase.min_anchor_matches,
            accuracy=1.0,
            passed=True,
            duration_seconds=duration_seconds,
            attempt=attempt,
        )

    @classmethod
    def failed(
        cls,
        phase: PhaseSpec,
        *,
        detected_anchors: Tuple[str, ...] = (),
        duration_seconds: float = 0.0,
        attempt: int = 1,
        failure: str = "validation",
    ) -> "PhaseResult":
        """Failing result, used for capability errors and timeouts."""
        detected = tuple(a for a in phase.required_anchors if a in set(detected_anchors))
        return cls(
            phase_id=phase.id,
            detected_anchors=detected,
            missing_anchors=tuple(a for a in phase.required_anchors if a not in detected),
            min_anchor_matches=phase.min_anchor_matches,
            accuracy=anchor_ratio(len(detected), len(phase.required_anchors)),
            passed=False,
            duration_seconds=duration_seconds,
            attempt=attempt,
            failure=failure,
        )

    @classmethod
    def skipped_phase(
        cls,
        phase: PhaseSpec,
        *,
        detected_anchors: Tuple[str, ...] = (),
        duration_seconds: float = 0.0,
        attempt: int = 1,
    ) -> "PhaseResult":
        base = cls.failed(
            phase,
            detected_anchors=detected_anchors,
            duration_seconds=duration_seconds,
            attempt=attempt,
            failure="skipped",
        )
        return base.model_copy(update={"skipped": True})

    @property
    def is_validation(self) -> bool:
        """True for a passing verdict backed by spoken anchors."""
        return self.passed and bool(self.detected_anchors)


class RitualSession(BaseModel):
    """Live session state. Only ``PhaseSequencer`` mutates it."""

    id: str
    definition_id: str
    state: SessionState = SessionState.NOT_STARTED
    current_phase_index: int = Field(default=0, ge=0)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    phase_results: List[PhaseResult] = Field(default_factory=list)
    before_rating: Optional[int] = Field(default=None, ge=1, le=5)
    abandon_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class LedgerEntry(BaseModel):
    """Immutable record of one completed session."""

    model_config = ConfigDict(frozen=True)

    id: str
    definition_id: str
    started_at: datetime
    completed_at: datetime
    phase_results: Tuple[PhaseResult, ...] = ()
    before_rating: Optional[int] = Field(default=None, ge=1, le=5)
    after_rating: Optional[int] = Field(default=None, ge=1, le=5)

    @classmethod
    def from_session(cls, session: RitualSession, *, after_rating: Optional[int] = None) -> "LedgerEntry":
        if session.state is not SessionState.COMPLETED:
            raise ValueError(f"session {session.id} is {session.state.value}, not completed")
        if session.started_at is None or session.completed_at is None:
            raise ValueError(f"session {session.id} has no start or completion time")
        return cls(
            id=session.id,
            definition_id=session.definition_id,
            started_at=session.started_at,
            completed_at=session.completed_at,
            phase_results=tuple(session.phase_results),
            before_rating=session.before_rating,
            after_rating=after_rating,
        )

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.completed_at - self.started_at).total_seconds())

    @property
    def completion_date(self) -> date:
        return self.completed_at.date()

    @property
    def emotional_improvement(self) -> Optional[int]:
        if self.before_rating is None or self.after_rating is None:
            return None
        return self.after_rating - self.before_rating

    @property
    def validations(self) -> int:
        return sum(1 for result in self.phase_results if result.is_validation)

    @property
    def all_voice_phases_passed(self) -> bool:
        """Every voice-backed attempt that ended a phase passed (no skips)."""
        return not any(result.skipped for result in self.phase_results) and self.validations > 0


def anchor_ratio(detected: int, required: int) -> float:
    """Fraction of required anchors that were detected."""
    if required <= 0:
        return 1.0
    return round(detected / required, 4)
