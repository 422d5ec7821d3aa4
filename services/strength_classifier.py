"""
Strength Tier Classifier

Maps recency against a connection's expected cadence to one of five tiers:

    flourishing > strong > stable > thinning > decaying

Two paths:
    Derived (stateless)  - ratio = days_since_contact / cadence_days, banded.
                           Boundary ratios belong to the better tier.
    Stateful (persisted) - when a ConnectionHealth row exists its tier is
                           authoritative until the next recompute, which
                           rolls previous_strength and maintains the
                           decay_started_at anchor.

decay_started_at is stamped the first time a connection drops into
thinning/decaying and cleared on recovery; user-facing copy ("thinning for
12 days") counts from it.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Optional, Union
import logging

from services.engagement_types import (
    Action,
    ActionType,
    CALL_TO_IN_PERSON_MESSAGE,
    CatchupFrequency,
    ConnectionHealth,
    DECAY_WARNING_MESSAGE,
    ESCALATION_LADDER,
    EscalationStep,
    LifecycleState,
    NEVER_CONTACTED_STRENGTH,
    RelationshipStrength,
    TEXT_TO_CALL_MESSAGE,
)
from services.recency import days_since, frequency_to_days

logger = logging.getLogger(__name__)


# (upper ratio bound inclusive, tier), checked in order
STRENGTH_RATIO_BANDS = (
    (0.5, RelationshipStrength.FLOURISHING),  # well ahead of schedule
    (1.0, RelationshipStrength.STRONG),       # on track
    (1.5, RelationshipStrength.STABLE),       # slightly behind
    (2.5, RelationshipStrength.THINNING),     # noticeably overdue
)

# Days without action after which a decaying connection needs a decision
# (reinvest / downgrade / replace / archive).
PENDING_ACTION_DAYS = 30

# Copy thresholds
WEAKENING_DAYS = 7

MAX_NUDGE_LEVEL = 3


def derive_strength_from_recency(
    days_since_contact: Optional[int],
    cadence: Union[CatchupFrequency, str, None],
) -> RelationshipStrength:
    """Stateless tier from recency / cadence."""
    if days_since_contact is None:
        return NEVER_CONTACTED_STRENGTH

    ratio = days_since_contact / frequency_to_days(cadence)
    for upper, tier in STRENGTH_RATIO_BANDS:
        if ratio <= upper:
            return tier
    return RelationshipStrength.DECAYING


def resolve_strength(
    health: Optional[ConnectionHealth],
    days_since_contact: Optional[int],
    cadence: Union[CatchupFrequency, str, None],
) -> RelationshipStrength:
    """Persisted tier when a health row exists, derived tier otherwise."""
    if health is not None:
        return health.current_strength
    return derive_strength_from_recency(days_since_contact, cadence)


@dataclass
class HealthRecompute:
    """Outcome of one stateful recompute."""
    health: ConnectionHealth
    previous: RelationshipStrength
    current: RelationshipStrength
    changed: bool
    recovered: bool       # thinning/decaying -> stable or better
    decay_started: bool   # anchor stamped in this step


def recompute_connection_health(
    health: ConnectionHealth,
    days_since_contact: Optional[int],
    cadence: Union[CatchupFrequency, str, None],
    now: datetime,
) -> HealthRecompute:
    """
    Recompute a persisted health row against fresh recency.

    Returns a new row; the input is not mutated.
    """
    previous = health.current_strength
    current = derive_strength_from_recency(days_since_contact, cadence)
    changed = current != previous

    updated = replace(health, days_since_action=days_since_contact)
    recovered = False
    decay_started = False

    if changed:
        updated.previous_strength = previous
        updated.current_strength = current
        updated.strength_changed_at = now

    if current.is_fading:
        if updated.decay_started_at is None:
            updated.decay_started_at = now
            decay_started = True
    else:
        recovered = previous.is_fading
        updated.decay_started_at = None
        if recovered:
            updated.recovery_count += 1
            updated.last_recovered_at = now

    updated = _apply_lifecycle(updated, days_since_contact, now)

    if changed:
        logger.info(
            f"Connection {health.connection_id} strength {previous.value} -> {current.value} "
            f"(days_since={days_since_contact}, recovered={recovered})"
        )

    return HealthRecompute(
        health=updated,
        previous=previous,
        current=current,
        changed=changed,
        recovered=recovered,
        decay_started=decay_started,
    )


def _apply_lifecycle(
    health: ConnectionHealth,
    days_since_contact: Optional[int],
    now: datetime,
) -> ConnectionHealth:
    # Archived connections are managed by the user, never by the engine
    if health.lifecycle_state == LifecycleState.ARCHIVED:
        return health

    if is_pending_action(days_since_contact, health.current_strength):
        if health.lifecycle_state != LifecycleState.PENDING_ACTION:
            health.lifecycle_state = LifecycleState.PENDING_ACTION
            health.pending_action_since = now
    elif health.lifecycle_state == LifecycleState.PENDING_ACTION and not health.current_strength.is_fading:
        health.lifecycle_state = LifecycleState.ACTIVE
        health.pending_action_since = None
    return health


def apply_action_to_health(health: ConnectionHealth, action: Action) -> ConnectionHealth:
    """Fold a newly logged action into the running totals of a health row."""
    updated = replace(
        health,
        total_actions_logged=health.total_actions_logged + 1,
        total_weight_accumulated=health.total_weight_accumulated + action.weight,
    )
    if updated.last_action_date is None or action.date >= updated.last_action_date:
        updated.last_action_date = action.date
        updated.last_action_type = action.type
    # A logged action answers whatever nudge was outstanding
    updated.last_nudge_level = 0
    return updated


def is_pending_action(
    days_since_contact: Optional[int],
    strength: RelationshipStrength,
) -> bool:
    """A decaying connection left alone for 30+ days needs a user decision."""
    return (
        strength == RelationshipStrength.DECAYING
        and days_since_contact is not None
        and days_since_contact >= PENDING_ACTION_DAYS
    )


def decay_day_count(
    days_since_action: Optional[int],
    decay_started_at: Optional[datetime],
    now: Union[date, datetime],
) -> Optional[int]:
    """Days to quote in "thinning for N days" copy."""
    if decay_started_at is not None:
        return days_since(decay_started_at, now)
    return days_since_action


def decay_status_message(
    days_since_action: Optional[int],
    strength: RelationshipStrength,
) -> str:
    if days_since_action is None:
        return "Never connected"
    if strength == RelationshipStrength.FLOURISHING:
        return "Connection is flourishing"
    if strength == RelationshipStrength.DECAYING:
        return DECAY_WARNING_MESSAGE
    if days_since_action >= WEAKENING_DAYS:
        return f"{days_since_action} days since last connection"
    return "Connection is healthy"


def get_escalation_nudge(last_nudge_level: int) -> Optional[EscalationStep]:
    """
    Next rung of the text -> call -> in-person ladder.

    Never blocks low-effort actions, only suggests; None once the top rung
    has been offered.
    """
    if last_nudge_level >= MAX_NUDGE_LEVEL:
        return None
    next_level = max(1, last_nudge_level + 1)
    for step in ESCALATION_LADDER:
        if step.level == next_level:
            return step
    return None


def get_escalation_message(action_type: ActionType) -> Optional[str]:
    """Copy nudging one step deeper than the action just logged."""
    if action_type.weight <= ActionType.TEXT.weight:
        return TEXT_TO_CALL_MESSAGE
    if action_type.weight <= ActionType.CALL.weight:
        return CALL_TO_IN_PERSON_MESSAGE
    return None  # Already at high depth
