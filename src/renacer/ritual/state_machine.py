"""State transition validation for ritual sessions.

Every session state change goes through ``SessionStateValidator`` so that
illegal moves are rejected before anything is mutated, and every accepted
move can be written to the audit trail.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Optional, TYPE_CHECKING

from renacer.errors import InvalidTransition
from renacer.ritual.models import SessionState

if TYPE_CHECKING:
    from renacer.audit import AuditLogger


logger = logging.getLogger(__name__)


VALID_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.NOT_STARTED: frozenset({
        SessionState.ACTIVE,  # start
    }),
    SessionState.ACTIVE: frozenset({
        SessionState.PAUSED,  # pause
        SessionState.COMPLETED,  # last phase passed
        SessionState.ABANDONED,  # abandon, retries exhausted, timeout
    }),
    SessionState.PAUSED: frozenset({
        SessionState.ACTIVE,  # resume
        SessionState.ABANDONED,  # abandon while paused
    }),
    SessionState.COMPLETED: frozenset(),
    SessionState.ABANDONED: frozenset(),
}


@dataclass
class StateTransition:
    """Records one validated session state transition."""

    session_id: str
    from_state: SessionState
    to_state: SessionState
    timestamp: datetime
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_valid(self) -> bool:
        """Check if transition is allowed by VALID_TRANSITIONS."""
        return self.to_state in VALID_TRANSITIONS.get(self.from_state, frozenset())


class SessionStateValidator:
    """Validates state transitions and keeps their history.

    Unlike job lifecycles, ritual sessions have no idempotent same-state
    moves: pausing a paused session is an invalid transition.
    """

    def __init__(
        self,
        audit_logger: Optional["AuditLogger"] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._audit = audit_logger
        self._clock = clock
        self._history: List[StateTransition] = []

    @property
    def history(self) -> List[StateTransition]:
        return list(self._history)

    def check(
        self,
        session_id: str,
        from_state: SessionState,
        to_state: SessionState,
        *,
        operation: str,
    ) -> None:
        """Raise ``InvalidTransition`` if the move is illegal. Records nothing."""
        if to_state not in VALID_TRANSITIONS.get(from_state, frozenset()):
            logger.error(
                "Invalid state transition",
                extra={
                    "session_id": session_id,
                    "from_state": from_state.value,
                    "to_state": to_state.value,
                    "operation": operation,
                },
            )
            raise InvalidTransition(
                f"Cannot {operation} a {from_state.value} session",
                from_state=from_state.value,
                operation=operation,
            )

    def record(
        self,
        session_id: str,
        from_state: SessionState,
        to_state: SessionState,
        *,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StateTransition:
        """Record an already checked transition and audit it."""
        transition = StateTransition(
            session_id=session_id,
            from_state=from_state,
            to_state=to_state,
            timestamp=self._clock(),
            reason=reason,
            metadata=metadata or {},
        )
        self._history.append(transition)
        logger.debug(
            "Session state transition",
            extra={
                "session_id": session_id,
                "from_state": from_state.value,
                "to_state": to_state.value,
                "reason": reason,
            },
        )

        if self._audit:
            from renacer.audit import AuditEvent

            self._audit.record(
                AuditEvent(
                    session_id=session_id,
                    source="state_machine",
                    action=f"transition_{from_state.value}_to_{to_state.value}",
                    status="validated",
                    timestamp=transition.timestamp,
                    metadata={"reason": reason, **transition.metadata},
                )
            )
        return transition


def is_terminal(state: SessionState) -> bool:
    return not VALID_TRANSITIONS.get(state)
