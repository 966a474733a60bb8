"""Guided ritual engine: definitions, phase sequencing and voice anchors."""

from .catalog import RitualCatalog, load_definitions
from .engine import RitualEngine
from .events import DomainEvent, EventBus, EventRecorder, EventType
from .matcher import ListeningWindow, VoiceAnchorMatcher, normalize_text, reading_accuracy
from .models import (
    LedgerEntry,
    PhaseResult,
    PhaseSpec,
    RitualDefinition,
    RitualSession,
    SessionState,
)
from .sequencer import PhaseSequencer
from .state_machine import VALID_TRANSITIONS, SessionStateValidator, StateTransition
from .timers import AsyncioTimeoutScheduler, PhaseTimer

__all__ = [
    "AsyncioTimeoutScheduler",
    "DomainEvent",
    "EventBus",
    "EventRecorder",
    "EventType",
    "LedgerEntry",
    "ListeningWindow",
    "PhaseResult",
    "PhaseSequencer",
    "PhaseSpec",
    "PhaseTimer",
    "RitualCatalog",
    "RitualDefinition",
    "RitualEngine",
    "RitualSession",
    "SessionState",
    "SessionStateValidator",
    "StateTransition",
    "VALID_TRANSITIONS",
    "VoiceAnchorMatcher",
    "load_definitions",
    "normalize_text",
    "reading_accuracy",
]
