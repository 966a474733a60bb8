"""Generic phase sequencer driving any ritual definition.

The sequencer owns the session state machine: phase order, transition
legality, pause/resume/abandon, and the retry-or-abandon policy applied to
failed phase results. Every operation validates the transition first and
mutates afterwards, so a rejected operation leaves the session untouched.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

from renacer.audit import AuditLogger
from renacer.errors import CapabilityError, InvalidTransition
from renacer.ritual.events import EventBus, EventType
from renacer.ritual.models import (
    PhaseResult,
    PhaseSpec,
    RitualDefinition,
    RitualSession,
    SessionState,
)
from renacer.ritual.retry_policy import RetryBudget
from renacer.ritual.state_machine import SessionStateValidator
from renacer.ritual.timers import PhaseTimer, TimeoutScheduler

logger = logging.getLogger(__name__)

ABANDON_RETRIES_EXHAUSTED = "retries_exhausted"
ABANDON_PHASE_TIMEOUT = "phase_timeout"


def _new_session_id() -> str:
    return uuid.uuid4().hex


class PhaseSequencer:
    """Drives one ritual session through the phases of its definition."""

    def __init__(
        self,
        *,
        bus: Optional[EventBus] = None,
        scheduler: Optional[TimeoutScheduler] = None,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] = _new_session_id,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self._bus = bus or EventBus()
        self._timer = PhaseTimer(scheduler) if scheduler is not None else None
        self._clock = clock
        self._id_factory = id_factory
        self._audit = audit
        self._validator = SessionStateValidator(audit_logger=audit, clock=clock)
        self._definition: Optional[RitualDefinition] = None
        self._session: Optional[RitualSession] = None
        self._budget = RetryBudget()
        self._carried: Tuple[str, ...] = ()
        self._phase_entered_at: Optional[datetime] = None
        self._paused_at: Optional[datetime] = None
        self._paused_seconds = 0.0
        # Invoked when the open phase's timer elapses. The engine replaces
        # it to route timeouts through its command queue.
        self.timeout_handler: Callable[[], None] = self.handle_timeout

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def definition(self) -> Optional[RitualDefinition]:
        return self._definition

    @property
    def state(self) -> SessionState:
        return self._session.state if self._session else SessionState.NOT_STARTED

    @property
    def carried_anchors(self) -> Tuple[str, ...]:
        """Anchors detected by earlier attempts of the current phase."""
        return self._carried

    @property
    def transitions(self):
        return self._validator.history

    def snapshot(self) -> Optional[RitualSession]:
        """Deep copy of the session; callers cannot mutate live state."""
        return self._session.model_copy(deep=True) if self._session else None

    def current_phase(self) -> Optional[PhaseSpec]:
        """Phase awaiting a result, or None once the session is terminal."""
        session = self._require_session("current_phase")
        if session.is_terminal:
            return None
        return self._definition.phases[session.current_phase_index]

    def current_attempt(self) -> int:
        phase = self.current_phase()
        return self._budget.attempts(phase.id) if phase else 0

    def remaining_retries(self) -> int:
        phase = self.current_phase()
        return self._budget.remaining(phase) if phase else 0

    def phase_elapsed_seconds(self) -> float:
        """Seconds spent in the current attempt, paused time excluded."""
        if self._phase_entered_at is None:
            return 0.0
        end = self._paused_at or self._clock()
        elapsed = (end - self._phase_entered_at).total_seconds() - self._paused_seconds
        return max(0.0, elapsed)

    def progress(self) -> float:
        """Share of phases already passed or skipped."""
        if self._session is None or self._definition is None:
            return 0.0
        if self._session.state is SessionState.COMPLETED:
            return 1.0
        return round(self._session.current_phase_index / len(self._definition.phases), 4)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start(
        self,
        definition: RitualDefinition,
        *,
        before_rating: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> RitualSession:
        if self._session is not None:
            raise InvalidTransition(
                "This sequencer already drives a session",
                from_state=self._session.state.value,
                operation="start",
            )
        new_id = session_id or self._id_factory()
        self._validator.check(new_id, SessionState.NOT_STARTED, SessionState.ACTIVE, operation="start")
        session = RitualSession(
            id=new_id,
            definition_id=definition.id,
            before_rating=before_rating,
        )
        session.state = SessionState.ACTIVE
        session.started_at = self._clock()
        self._definition = definition
        self._session = session
        self._validator.record(
            new_id,
            SessionState.NOT_STARTED,
            SessionState.ACTIVE,
            reason="start",
            metadata={"definition_id": definition.id},
        )
        logger.info(
            "Ritual session started",
            extra={"session_id": new_id, "definition_id": definition.id, "phases": len(definition.phases)},
        )
        self._bus.emit(EventType.SESSION_STARTED, new_id, definition_id=definition.id)
        self._enter_phase(from_phase=None)
        return self.snapshot()

    def advance(self, result: PhaseResult) -> RitualSession:
        """Apply a finalized result for the current phase."""
        session = self.require_active("advance")
        phase = self._definition.phases[session.current_phase_index]
        if result.phase_id != phase.id:
            raise InvalidTransition(
                f"Result for phase '{result.phase_id}' but phase '{phase.id}' is open",
                from_state=session.state.value,
                operation="advance",
            )
        if result.passed and len(result.detected_anchors) < phase.min_anchor_matches:
            raise InvalidTransition(
                f"Result for phase '{phase.id}' passed below its anchor threshold",
                from_state=session.state.value,
                operation="advance",
            )
        if result.skipped and not phase.skippable:
            raise InvalidTransition(
                f"Phase '{phase.id}' cannot be skipped",
                from_state=session.state.value,
                operation="skip",
            )

        if result.passed or result.skipped:
            self._append(result)
            self._move_forward(phase)
            return self.snapshot()

        self._append(result)
        if self._budget.record_failure(phase):
            self._retry(phase, result.detected_anchors)
        else:
            self._terminate(
                SessionState.ABANDONED,
                reason=ABANDON_RETRIES_EXHAUSTED,
                metadata={"phase_id": phase.id},
            )
        return self.snapshot()

    def skip(self) -> RitualSession:
        """Leave the current phase without passing it, when the phase allows it."""
        session = self.require_active("skip")
        phase = self._definition.phases[session.current_phase_index]
        if not phase.skippable:
            raise InvalidTransition(
                f"Phase '{phase.id}' cannot be skipped",
                from_state=session.state.value,
                operation="skip",
            )
        result = PhaseResult.skipped_phase(
            phase,
            detected_anchors=self._carried,
            duration_seconds=self.phase_elapsed_seconds(),
            attempt=self._budget.attempts(phase.id),
        )
        self._bus.emit(EventType.PHASE_SKIPPED, session.id, phase_id=phase.id)
        return self.advance(result)

    def record_capability_failure(
        self,
        error: CapabilityError,
        *,
        detected_anchors: Iterable[str] = (),
    ) -> RitualSession:
        """Turn a transcription failure into a failed attempt of the current phase."""
        session = self.require_active("record_capability_failure")
        phase = self._definition.phases[session.current_phase_index]
        if not phase.is_voice_gated:
            logger.debug("Ignoring capability failure in a timed phase", extra={"phase_id": phase.id})
            return self.snapshot()
        logger.warning(
            "Transcription capability failed during phase",
            extra={
                "session_id": session.id,
                "phase_id": phase.id,
                "failure": error.failure_kind,
                "attempt": self._budget.attempts(phase.id),
            },
        )
        result = PhaseResult.failed(
            phase,
            detected_anchors=tuple(detected_anchors) + self._carried,
            duration_seconds=self.phase_elapsed_seconds(),
            attempt=self._budget.attempts(phase.id),
            failure=error.failure_kind,
        )
        return self.advance(result)

    def handle_timeout(self, result: Optional[PhaseResult] = None) -> Optional[RitualSession]:
        """Apply the timeout policy to the current phase.

        Timed phases auto-pass. Voice-gated phases take the finalized verdict
        (or an empty one): passing advances, anything else abandons.
        """
        if self._session is None or self._session.state is not SessionState.ACTIVE:
            logger.debug("Ignoring timeout outside an active session")
            return None
        session = self._session
        phase = self._definition.phases[session.current_phase_index]
        attempt = self._budget.attempts(phase.id)
        elapsed = self.phase_elapsed_seconds()

        if not phase.is_voice_gated:
            return self.advance(PhaseResult.auto_pass(phase, duration_seconds=elapsed, attempt=attempt))

        verdict = result or PhaseResult.failed(
            phase,
            detected_anchors=self._carried,
            duration_seconds=elapsed,
            attempt=attempt,
            failure="timeout",
        )
        if verdict.phase_id != phase.id:
            raise InvalidTransition(
                f"Timeout verdict for phase '{verdict.phase_id}' but phase '{phase.id}' is open",
                from_state=session.state.value,
                operation="timeout",
            )
        if verdict.passed:
            return self.advance(verdict)

        self._validator.check(session.id, session.state, SessionState.ABANDONED, operation="timeout")
        self._append(verdict)
        self._terminate(
            SessionState.ABANDONED,
            reason=ABANDON_PHASE_TIMEOUT,
            metadata={"phase_id": phase.id},
        )
        return self.snapshot()

    def pause(self) -> RitualSession:
        session = self._require_session("pause")
        self._validator.check(session.id, session.state, SessionState.PAUSED, operation="pause")
        self._cancel_timer()
        self._paused_at = self._clock()
        self._set_state(SessionState.PAUSED, reason="pause")
        self._bus.emit(EventType.SESSION_PAUSED, session.id, phase_id=self._phase_id())
        return self.snapshot()

    def resume(self) -> RitualSession:
        session = self._require_session("resume")
        self._validator.check(session.id, session.state, SessionState.ACTIVE, operation="resume")
        if self._paused_at is not None:
            self._paused_seconds += (self._clock() - self._paused_at).total_seconds()
            self._paused_at = None
        self._set_state(SessionState.ACTIVE, reason="resume")
        phase = self._definition.phases[session.current_phase_index]
        if phase.timeout_seconds is not None:
            self._arm_timer(max(0.0, phase.timeout_seconds - self.phase_elapsed_seconds()))
        self._bus.emit(EventType.SESSION_RESUMED, session.id, phase_id=phase.id)
        return self.snapshot()

    def abandon(self, reason: str = "user_abandoned") -> RitualSession:
        session = self._require_session("abandon")
        self._validator.check(session.id, session.state, SessionState.ABANDONED, operation="abandon")
        self._terminate(SessionState.ABANDONED, reason=reason)
        return self.snapshot()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_session(self, operation: str) -> RitualSession:
        if self._session is None:
            raise InvalidTransition(
                "No session has been started",
                from_state=SessionState.NOT_STARTED.value,
                operation=operation,
            )
        return self._session

    def require_active(self, operation: str) -> RitualSession:
        session = self._require_session(operation)
        if session.state is not SessionState.ACTIVE:
            logger.error(
                "Operation rejected",
                extra={"session_id": session.id, "from_state": session.state.value, "operation": operation},
            )
            raise InvalidTransition(
                f"Cannot {operation} a {session.state.value} session",
                from_state=session.state.value,
                operation=operation,
            )
        return session

    def _phase_id(self) -> Optional[str]:
        phase = self.current_phase()
        return phase.id if phase else None

    def _append(self, result: PhaseResult) -> None:
        session = self._session
        session.phase_results.append(result)
        logger.debug(
            "Phase result recorded",
            extra={
                "session_id": session.id,
                "phase_id": result.phase_id,
                "passed": result.passed,
                "detected": len(result.detected_anchors),
                "attempt": result.attempt,
            },
        )
        if self._audit is not None:
            self._audit.record_session_event(
                session_id=session.id,
                action="phase_result",
                status="skipped" if result.skipped else ("passed" if result.passed else "failed"),
                definition_id=session.definition_id,
                phase_id=result.phase_id,
                attempt=result.attempt,
                metadata={"detected": len(result.detected_anchors), "failure": result.failure},
            )

    def _move_forward(self, phase: PhaseSpec) -> None:
        session = self._session
        self._cancel_timer()
        next_index = session.current_phase_index + 1
        session.current_phase_index = next_index
        if next_index >= len(self._definition.phases):
            self._validator.check(session.id, session.state, SessionState.COMPLETED, operation="complete")
            self._terminate(SessionState.COMPLETED, reason="all_phases_passed")
            return
        self._enter_phase(from_phase=phase.id)

    def _retry(self, phase: PhaseSpec, detected: Tuple[str, ...]) -> None:
        session = self._session
        carried = set(self._carried) | set(detected)
        self._carried = tuple(a for a in phase.required_anchors if a in carried)
        self._reset_phase_clock()
        if phase.timeout_seconds is not None:
            self._arm_timer(phase.timeout_seconds)
        logger.info(
            "Phase re-opened for retry",
            extra={
                "session_id": session.id,
                "phase_id": phase.id,
                "attempt": self._budget.attempts(phase.id),
                "preserved": len(self._carried),
            },
        )
        self._bus.emit(
            EventType.PHASE_RETRY,
            session.id,
            phase_id=phase.id,
            attempt=self._budget.attempts(phase.id),
            preserved=list(self._carried),
            remaining_retries=self._budget.remaining(phase),
        )

    def _enter_phase(self, *, from_phase: Optional[str]) -> None:
        session = self._session
        phase = self._definition.phases[session.current_phase_index]
        self._carried = ()
        self._reset_phase_clock()
        if phase.timeout_seconds is not None:
            self._arm_timer(phase.timeout_seconds)
        self._bus.emit(
            EventType.PHASE_CHANGED,
            session.id,
            from_phase=from_phase,
            to_phase=phase.id,
            index=session.current_phase_index,
            voice_gated=phase.is_voice_gated,
        )

    def _reset_phase_clock(self) -> None:
        self._phase_entered_at = self._clock()
        self._paused_at = None
        self._paused_seconds = 0.0

    def _arm_timer(self, delay: float) -> None:
        if self._timer is None:
            return
        self._timer.arm(delay, lambda: self.timeout_handler())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()

    def _set_state(self, to_state: SessionState, *, reason: str, metadata: Optional[dict] = None) -> None:
        session = self._session
        from_state = session.state
        session.state = to_state
        self._validator.record(session.id, from_state, to_state, reason=reason, metadata=metadata)

    def _terminate(self, to_state: SessionState, *, reason: str, metadata: Optional[dict] = None) -> None:
        session = self._session
        self._cancel_timer()
        now = self._clock()
        if to_state is SessionState.COMPLETED:
            session.completed_at = now
        else:
            session.abandon_reason = reason
        session.ended_at = now
        self._carried = ()
        self._phase_entered_at = None
        self._paused_at = None
        self._set_state(to_state, reason=reason, metadata=metadata)
        if to_state is SessionState.COMPLETED:
            logger.info(
                "Ritual session completed",
                extra={"session_id": session.id, "definition_id": session.definition_id},
            )
            self._bus.emit(EventType.SESSION_COMPLETED, session.id, definition_id=session.definition_id)
        else:
            logger.info(
                "Ritual session abandoned",
                extra={"session_id": session.id, "definition_id": session.definition_id, "reason": reason},
            )
            self._bus.emit(
                EventType.SESSION_ABANDONED,
                session.id,
                definition_id=session.definition_id,
                reason=reason,
            )


def replay(
    definition: RitualDefinition,
    results: List[PhaseResult],
    *,
    clock: Callable[[], datetime],
    session_id: str,
    before_rating: Optional[int] = None,
) -> RitualSession:
    """Feed ``results`` into a fresh sequencer and return the final session."""
    sequencer = PhaseSequencer(clock=clock, id_factory=lambda: session_id)
    sequencer.start(definition, before_rating=before_rating)
    for result in results:
        if sequencer.state is not SessionState.ACTIVE:
            break
        sequencer.advance(result)
    return sequencer.snapshot()
