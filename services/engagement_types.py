"""
Engagement Engine Types

Enums, immutable lookup tables and record types shared by every engine
component. Tables are read-only (MappingProxyType / tuples) so they can be
shared freely across concurrent evaluations.

Persisted rows live in models.py; the engine only ever sees the records
defined here, mapped in and out by repositories.py.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional


class ActionType(str, Enum):
    """Kinds of social investment a user can log."""
    TEXT = "text"
    CALL = "call"
    IN_PERSON = "in_person"

    @property
    def weight(self) -> int:
        return ACTION_WEIGHTS[self]


# Investment value of each action type. Fixed; an action's weight never changes.
ACTION_WEIGHTS: Mapping[ActionType, int] = MappingProxyType({
    ActionType.TEXT: 1,
    ActionType.CALL: 3,
    ActionType.IN_PERSON: 6,
})

ACTION_LABELS: Mapping[ActionType, str] = MappingProxyType({
    ActionType.TEXT: "Message",
    ActionType.CALL: "Call",
    ActionType.IN_PERSON: "In-person",
})

# Older interaction rows used a wider vocabulary
LEGACY_ACTION_TYPES: Mapping[str, ActionType] = MappingProxyType({
    "text": ActionType.TEXT,
    "call": ActionType.CALL,
    "in_person": ActionType.IN_PERSON,
    "in_person_1on1": ActionType.IN_PERSON,
    "other": ActionType.TEXT,  # Conservative default
})

# Minimum summed weight for a calendar day to count as valid.
VALID_DAY_THRESHOLD = 1


def map_legacy_action_type(value: str) -> ActionType:
    """Map a stored interaction type (old or new vocabulary) to an ActionType."""
    try:
        return LEGACY_ACTION_TYPES[value]
    except KeyError:
        raise ValueError(f"Unknown action type: {value!r}") from None


class CatchupFrequency(str, Enum):
    """Expected cadence between catch-ups for a connection."""
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    BIANNUALLY = "biannually"
    ANNUALLY = "annually"


FREQUENCY_DAYS: Mapping[CatchupFrequency, int] = MappingProxyType({
    CatchupFrequency.DAILY: 1,
    CatchupFrequency.WEEKLY: 7,
    CatchupFrequency.BIWEEKLY: 14,
    CatchupFrequency.MONTHLY: 30,
    CatchupFrequency.QUARTERLY: 90,
    CatchupFrequency.BIANNUALLY: 180,
    CatchupFrequency.ANNUALLY: 365,
})

DEFAULT_CADENCE_DAYS = 30


class RelationshipStrength(str, Enum):
    """5-tier relationship strength, best to worst."""
    FLOURISHING = "flourishing"
    STRONG = "strong"
    STABLE = "stable"
    THINNING = "thinning"
    DECAYING = "decaying"

    @property
    def rank(self) -> int:
        """0 for decaying up to 4 for flourishing."""
        return STRENGTH_RANK[self]

    @property
    def is_fading(self) -> bool:
        return self in (RelationshipStrength.THINNING, RelationshipStrength.DECAYING)


STRENGTH_RANK: Mapping[RelationshipStrength, int] = MappingProxyType({
    RelationshipStrength.DECAYING: 0,
    RelationshipStrength.THINNING: 1,
    RelationshipStrength.STABLE: 2,
    RelationshipStrength.STRONG: 3,
    RelationshipStrength.FLOURISHING: 4,
})

STRENGTH_LABELS: Mapping[RelationshipStrength, str] = MappingProxyType({
    RelationshipStrength.FLOURISHING: "Flourishing",
    RelationshipStrength.STRONG: "Strong",
    RelationshipStrength.STABLE: "Stable",
    RelationshipStrength.THINNING: "Thinning",
    RelationshipStrength.DECAYING: "Decaying",
})

# Tier used for a connection that has never been contacted, on both the
# derived and the persisted path.
NEVER_CONTACTED_STRENGTH = RelationshipStrength.STABLE


class RingTier(str, Enum):
    CORE = "core"
    OUTER = "outer"


CORE_RING_MAX = 7


class LifecycleState(str, Enum):
    ACTIVE = "active"
    PENDING_ACTION = "pending_action"
    ARCHIVED = "archived"


class InsightType(str, Enum):
    """Weekly pattern insight categories."""
    CONTACT_NOT_DEPTH = "contact_not_depth"
    GOOD_DEPTH = "good_depth"
    SPORADIC = "sporadic"
    CONSISTENT = "consistent"
    ESCALATING = "escalating"


# Tone: honest, supportive, loss-aware, non-gamified
INSIGHT_MESSAGES: Mapping[InsightType, str] = MappingProxyType({
    InsightType.CONTACT_NOT_DEPTH: "You're maintaining contact, not building depth.",
    InsightType.GOOD_DEPTH: "You're investing in deep, meaningful connections.",
    InsightType.SPORADIC: "Your connection patterns are sporadic this week.",
    InsightType.CONSISTENT: "You are building strong, consistent habits.",
    InsightType.ESCALATING: "You're investing more in your relationships!",
})

TEXT_TO_CALL_MESSAGE = "Text keeps contact. Calls build connection."
CALL_TO_IN_PERSON_MESSAGE = "Calls maintain. In-person moments create bonds."
DECAY_WARNING_MESSAGE = "Relationships don't break. They thin."


@dataclass(frozen=True)
class EscalationStep:
    level: int
    action_type: ActionType
    label: str
    suggestion: str


ESCALATION_LADDER = (
    EscalationStep(1, ActionType.TEXT, "Send a text", "Start with a quick text"),
    EscalationStep(2, ActionType.CALL, "Make a call", "Try giving them a call"),
    EscalationStep(3, ActionType.IN_PERSON, "Meet in person", "Plan to meet in person"),
)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Action:
    """A logged action. Weight is derived from the type and cannot be overridden."""
    id: str
    user_id: str
    connection_id: Optional[str]
    type: ActionType
    date: date
    note: Optional[str] = None
    weight: int = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "type", ActionType(self.type))
        object.__setattr__(self, "weight", ACTION_WEIGHTS[self.type])

    @property
    def has_note(self) -> bool:
        return bool(self.note and self.note.strip())


@dataclass
class DailyHabitLog:
    user_id: str
    date: date
    total_weight: int = 0
    action_count: int = 0
    is_valid_day: bool = False
    highest_action: Optional[ActionType] = None


@dataclass
class ConnectionHealth:
    connection_id: str
    user_id: str
    ring_tier: RingTier = RingTier.OUTER
    ring_position: Optional[int] = None
    current_strength: RelationshipStrength = NEVER_CONTACTED_STRENGTH
    previous_strength: Optional[RelationshipStrength] = None
    strength_changed_at: Optional[datetime] = None
    days_since_action: Optional[int] = None
    decay_started_at: Optional[datetime] = None
    last_action_date: Optional[date] = None
    last_action_type: Optional[ActionType] = None
    lifecycle_state: LifecycleState = LifecycleState.ACTIVE
    pending_action_since: Optional[datetime] = None
    last_nudge_level: int = 0
    last_nudge_at: Optional[datetime] = None
    total_actions_logged: int = 0
    total_weight_accumulated: int = 0
    # Recovery history (thinning/decaying -> stable or better)
    recovery_count: int = 0
    last_recovered_at: Optional[datetime] = None


@dataclass
class UserStreak:
    user_id: str
    current_streak: int = 0
    longest_streak: int = 0
    last_interaction_date: Optional[date] = None
    streak_started_at: Optional[date] = None
    freezes_used_this_week: int = 0
    week_freeze_reset_date: Optional[date] = None
    # Valid-days run, written separately from the interaction streak
    valid_days_streak: int = 0
    longest_valid_days: int = 0
    last_valid_day_date: Optional[date] = None


@dataclass(frozen=True)
class Connection:
    """Read-only view of a stored connection."""
    id: str
    user_id: str
    name: str
    catchup_frequency: Optional[str] = None
    last_interaction_date: Optional[date] = None
    next_catchup_date: Optional[date] = None


class AchievementCategory(str, Enum):
    STREAK = "streak"
    CONSISTENCY = "consistency"
    RECOVERY = "recovery"
    QUALITY = "quality"


@dataclass(frozen=True)
class AchievementDefinition:
    """Static reference data; the catalogue lives in achievement_evaluator."""
    id: str
    name: str
    description: str
    category: AchievementCategory
    threshold_value: int
    threshold_type: str
    is_per_contact: bool = False


@dataclass
class UserAchievement:
    """Progress toward / unlock of one definition. Unique on (user_id, achievement_id, connection_id)."""
    user_id: str
    achievement_id: str
    connection_id: Optional[str] = None
    current_progress: int = 0
    is_unlocked: bool = False
    unlocked_at: Optional[datetime] = None

    @property
    def key(self):
        return (self.user_id, self.achievement_id, self.connection_id)
