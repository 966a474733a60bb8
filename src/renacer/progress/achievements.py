"""Badge rules over aggregate progress, unlocked exactly once.

Rules are data: an ``AchievementRule`` names a predicate kind and its
parameters, so catalogs can be declared without code. Evaluation is
monotonic. Once unlocked, an achievement is never re-evaluated or revoked.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from renacer.errors import PersistenceError
from renacer.persistence import ACHIEVEMENTS_KEY, PersistenceGateway
from renacer.progress.aggregator import ProgressRecord
from renacer.ritual.events import EventBus, EventType
from renacer.ritual.models import LedgerEntry

logger = logging.getLogger(__name__)

RuleKind = Literal[
    "rituals_completed",
    "streak_days",
    "total_minutes",
    "emotional_improvement",
    "validations_recorded",
    "definition_completed",
]


class AchievementRule(BaseModel):
    """Parameterized predicate over progress metrics."""

    model_config = ConfigDict(frozen=True)

    kind: RuleKind
    count: int = Field(default=1, ge=1)
    minutes: float = Field(default=0.0, ge=0.0)
    average: float = 0.0
    min_sessions: int = Field(default=1, ge=1)
    definition_ids: Tuple[str, ...] = ()


class AchievementSpec(BaseModel):
    """Catalog entry describing one badge."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str
    description: str = ""
    reward_points: int = Field(default=0, ge=0)
    rule: AchievementRule


class Achievement(BaseModel):
    """Unlock state of one badge, as persisted under ``ritual.achievements``."""

    id: str
    title: str = ""
    reward_points: int = 0
    unlocked: bool = False
    unlocked_at: Optional[datetime] = None


@dataclass(frozen=True)
class AchievementContext:
    """Everything a rule may look at."""

    overall: ProgressRecord
    ledger: Tuple[LedgerEntry, ...] = ()
    completions_by_definition: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def build(cls, overall: ProgressRecord, ledger: Iterable[LedgerEntry]) -> "AchievementContext":
        entries = tuple(ledger)
        counts: Dict[str, int] = {}
        for entry in entries:
            counts[entry.definition_id] = counts.get(entry.definition_id, 0) + 1
        return cls(overall=overall, ledger=entries, completions_by_definition=counts)


def rule_satisfied(rule: AchievementRule, context: AchievementContext) -> bool:
    overall = context.overall
    if rule.kind == "rituals_completed":
        return overall.completed_runs >= rule.count
    if rule.kind == "streak_days":
        return overall.current_streak >= rule.count
    if rule.kind == "total_minutes":
        return overall.total_duration_seconds / 60.0 >= rule.minutes
    if rule.kind == "emotional_improvement":
        improvements = [
            entry.emotional_improvement
            for entry in context.ledger
            if entry.emotional_improvement is not None
        ]
        if len(improvements) < rule.min_sessions:
            return False
        return sum(improvements) / len(improvements) >= rule.average
    if rule.kind == "validations_recorded":
        return overall.validations >= rule.count
    if rule.kind == "definition_completed":
        return bool(rule.definition_ids) and all(
            context.completions_by_definition.get(definition_id, 0) >= rule.count
            for definition_id in rule.definition_ids
        )
    raise ValueError(f"Unknown achievement rule kind: {rule.kind}")


def _spec(achievement_id: str, title: str, description: str, reward: int, **rule) -> AchievementSpec:
    return AchievementSpec(
        id=achievement_id,
        title=title,
        description=description,
        reward_points=reward,
        rule=AchievementRule(**rule),
    )


BUILTIN_DEFINITION_IDS = ("liberation", "karmic", "forgiveness_letter", "cord_cutting")

DEFAULT_ACHIEVEMENTS: Tuple[AchievementSpec, ...] = (
    _spec("first_ritual", "Primer Paso", "Complete your first ritual", 50,
          kind="rituals_completed", count=1),
    _spec("consistent_liberator", "Liberador Constante", "Complete 7 rituals", 100,
          kind="rituals_completed", count=7),
    _spec("liberation_master", "Maestro de la Liberación", "Complete 30 rituals", 300,
          kind="rituals_completed", count=30),
    _spec("streak_3", "Racha de 3 días", "Practice three days in a row", 75,
          kind="streak_days", count=3),
    _spec("streak_7", "Semana de Liberación", "Practice seven days in a row", 150,
          kind="streak_days", count=7),
    _spec("streak_21", "Hábito Sagrado", "Practice twenty-one days in a row", 400,
          kind="streak_days", count=21),
    _spec("quality_time", "Tiempo de Calidad", "Spend 300 minutes in rituals", 120,
          kind="total_minutes", minutes=300),
    _spec("emotional_transformation", "Transformación Emocional",
          "Improve your mood by 2 points on average over 5 sessions", 200,
          kind="emotional_improvement", average=2.0, min_sessions=5),
    _spec("voice_master", "Maestro de la Voz", "Record 25 voice validations", 150,
          kind="validations_recorded", count=25),
    _spec("rebirth", "Renacimiento", "Complete every built-in ritual at least once", 250,
          kind="definition_completed", definition_ids=BUILTIN_DEFINITION_IDS),
)


def encode_achievements(achievements: Sequence[Achievement]) -> bytes:
    payload = [achievement.model_dump(mode="json") for achievement in achievements]
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class AchievementEvaluator:
    """Evaluates locked achievements after each ledger append."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        catalog: Sequence[AchievementSpec] = DEFAULT_ACHIEVEMENTS,
        bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._gateway = gateway
        self._catalog = tuple(catalog)
        self._bus = bus
        self._clock = clock
        self._state: Dict[str, Achievement] = self._load()
        self._dirty = False

    @property
    def catalog(self) -> Tuple[AchievementSpec, ...]:
        return self._catalog

    @property
    def dirty(self) -> bool:
        return self._dirty

    def _load(self) -> Dict[str, Achievement]:
        state = {
            spec.id: Achievement(id=spec.id, title=spec.title, reward_points=spec.reward_points)
            for spec in self._catalog
        }
        data = self._gateway.load(ACHIEVEMENTS_KEY)
        if not data:
            return state
        try:
            stored = [Achievement.model_validate(item) for item in json.loads(data.decode("utf-8"))]
        except (UnicodeDecodeError, json.JSONDecodeError, TypeError, ValidationError) as exc:
            raise PersistenceError(
                f"Stored achievements are unreadable: {exc}", key=ACHIEVEMENTS_KEY
            ) from exc
        for item in stored:
            current = state.get(item.id)
            if current is not None and item.unlocked:
                current.unlocked = True
                current.unlocked_at = item.unlocked_at
        return state

    def achievements(self) -> List[Achievement]:
        return [self._state[spec.id].model_copy() for spec in self._catalog]

    def unlocked(self) -> List[Achievement]:
        return [achievement for achievement in self.achievements() if achievement.unlocked]

    def evaluate(
        self,
        overall: ProgressRecord,
        ledger: Iterable[LedgerEntry],
        *,
        persist: bool = True,
    ) -> List[Achievement]:
        """Unlock every locked achievement whose rule now holds.

        Returns the achievements unlocked by this call. Raises
        ``PersistenceError`` if saving fails; the unlocks remain in memory.
        With ``persist=False`` the caller is responsible for ``flush()``.
        """
        context = AchievementContext.build(overall, ledger)
        newly: List[Achievement] = []
        for spec in self._catalog:
            state = self._state[spec.id]
            if state.unlocked:
                continue
            if not rule_satisfied(spec.rule, context):
                continue
            state.unlocked = True
            state.unlocked_at = self._clock()
            newly.append(state.model_copy())
            logger.info("Achievement unlocked", extra={"achievement_id": spec.id})
            if self._bus is not None:
                self._bus.emit(
                    EventType.ACHIEVEMENT_UNLOCKED,
                    achievement_id=spec.id,
                    title=spec.title,
                    reward_points=spec.reward_points,
                )
        if newly:
            self._dirty = True
            if persist:
                self.flush()
        return newly

    def flush(self) -> None:
        if not self._dirty:
            return
        try:
            self._gateway.save(ACHIEVEMENTS_KEY, encode_achievements(self.achievements()))
        except PersistenceError:
            logger.warning("Achievement write failed, retry pending")
            raise
        self._dirty = False
