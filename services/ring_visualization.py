"""
Ring Visualization Mapper

Turns a connection's tier and recency into render parameters for the
two-ring contact view. Fuller, more opaque rings mean frequent recent
contact; thinner, more transparent rings mean time has passed. Colors are
stable per contact name so a person keeps their palette across sessions
and devices.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union

from services.engagement_types import ActionType, RelationshipStrength
from services.strength_classifier import decay_day_count


# (inner, outer)
RING_PALETTES: Tuple[Tuple[str, str], ...] = (
    ("#5F7A6A", "#2F4C5F"),  # moss + inkblue
    ("#4A7A96", "#2F4C5F"),  # teal + inkblue
    ("#7A6A5F", "#5F4C3A"),  # warm brown + deep brown
    ("#6A5F7A", "#4C3A5F"),  # lavender + deep purple
    ("#7A5F6A", "#5F3A4C"),  # rose + deep rose
    ("#5F7A7A", "#3A5F5F"),  # sage + deep teal
    ("#6E8A5E", "#3F5F3A"),  # forest + deep forest
    ("#8A7A5E", "#5F5040"),  # amber + deep amber
)

# Warning palettes for thinning/decaying, still unique per person
FADING_PALETTES: Tuple[Tuple[str, str], ...] = (
    ("#C46A4A", "#8A4A35"),  # ember
    ("#B5543A", "#7A3A28"),  # terracotta
    ("#C47A5A", "#8A5540"),  # warm ember
)

DEFAULT_PALETTE = RING_PALETTES[0]

STRENGTH_BASE_FILL: Mapping[RelationshipStrength, float] = MappingProxyType({
    RelationshipStrength.FLOURISHING: 92,
    RelationshipStrength.STRONG: 78,
    RelationshipStrength.STABLE: 58,
    RelationshipStrength.THINNING: 35,
    RelationshipStrength.DECAYING: 18,
})

STRENGTH_BASE_OPACITY: Mapping[RelationshipStrength, float] = MappingProxyType({
    RelationshipStrength.FLOURISHING: 0.90,
    RelationshipStrength.STRONG: 0.75,
    RelationshipStrength.STABLE: 0.58,
    RelationshipStrength.THINNING: 0.42,
    RelationshipStrength.DECAYING: 0.30,
})

STATUS_LABELS: Mapping[RelationshipStrength, str] = MappingProxyType({
    RelationshipStrength.FLOURISHING: "Flourishing",
    RelationshipStrength.STRONG: "Strong",
    RelationshipStrength.STABLE: "Stable",
    RelationshipStrength.THINNING: "Needs attention",
    RelationshipStrength.DECAYING: "Fading",
})

# Recency boost over the first week
RECENCY_BOOST_DAYS = 7
MAX_FILL_BOOST = 12.0
MAX_OPACITY_BOOST = 0.2

# Staleness penalty after two weeks
STALENESS_AFTER_DAYS = 14
FILL_PENALTY_PER_DAY = 0.5
MAX_FILL_PENALTY = 15.0
OPACITY_PENALTY_PER_DAY = 0.005
MAX_OPACITY_PENALTY = 0.15

MIN_FILL, MAX_FILL = 8.0, 100.0
MIN_OPACITY, MAX_OPACITY = 0.2, 1.0
OUTER_OPACITY_FACTOR = 0.55

PULSE_AFTER_DECAY_DAYS = 3
PULSE_OVERDUE_DAYS = 21

# Stand-in for "never contacted" when rendering
NO_CONTACT_DAYS = 999


def hash_string(value: str) -> int:
    """
    Stable non-negative 32-bit hash: h = h*31 + code unit, wrapped to int32.

    Iterates UTF-16 code units so every client computes the same palette
    index for the same name.
    """
    h = 0
    data = value.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def get_contact_palette(name: str) -> Tuple[str, str]:
    return RING_PALETTES[hash_string(name) % len(RING_PALETTES)]


def get_fading_palette(name: str) -> Tuple[str, str]:
    return FADING_PALETTES[hash_string(name) % len(FADING_PALETTES)]


@dataclass(frozen=True)
class RingVisualization:
    fill_percent: float
    inner_opacity: float
    outer_opacity: float
    inner_color: str
    outer_color: str
    should_pulse: bool
    status_label: str
    strength_class: str              # healthy | moderate | fading


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def strength_class(strength: RelationshipStrength) -> str:
    if strength in (RelationshipStrength.FLOURISHING, RelationshipStrength.STRONG):
        return "healthy"
    if strength.is_fading:
        return "fading"
    return "moderate"


def calculate_ring_visualization(
    strength: RelationshipStrength,
    days_since_action: Optional[int],
    decay_started_at: Optional[datetime] = None,
    contact_name: Optional[str] = None,
) -> RingVisualization:
    """Ring parameters from tier AND recency; two contacts in one tier still differ by how recent."""
    days = NO_CONTACT_DAYS if days_since_action is None else days_since_action

    recency_ratio = 1 - days / RECENCY_BOOST_DAYS if days <= RECENCY_BOOST_DAYS else 0.0
    fill_boost = recency_ratio * MAX_FILL_BOOST
    opacity_boost = recency_ratio * MAX_OPACITY_BOOST

    fill_penalty = 0.0
    opacity_penalty = 0.0
    if days > STALENESS_AFTER_DAYS:
        overdue = days - STALENESS_AFTER_DAYS
        fill_penalty = min(MAX_FILL_PENALTY, overdue * FILL_PENALTY_PER_DAY)
        opacity_penalty = min(MAX_OPACITY_PENALTY, overdue * OPACITY_PENALTY_PER_DAY)

    fill = _clamp(STRENGTH_BASE_FILL[strength] + fill_boost - fill_penalty, MIN_FILL, MAX_FILL)
    inner_opacity = _clamp(
        STRENGTH_BASE_OPACITY[strength] + opacity_boost - opacity_penalty, MIN_OPACITY, MAX_OPACITY
    )

    if contact_name and strength.is_fading:
        inner_color, outer_color = get_fading_palette(contact_name)
    elif contact_name:
        inner_color, outer_color = get_contact_palette(contact_name)
    else:
        inner_color, outer_color = DEFAULT_PALETTE

    should_pulse = (
        (decay_started_at is not None and days >= PULSE_AFTER_DECAY_DAYS)
        or days >= PULSE_OVERDUE_DAYS
    )

    return RingVisualization(
        fill_percent=fill,
        inner_opacity=inner_opacity,
        outer_opacity=inner_opacity * OUTER_OPACITY_FACTOR,
        inner_color=inner_color,
        outer_color=outer_color,
        should_pulse=should_pulse,
        status_label=STATUS_LABELS[strength],
        strength_class=strength_class(strength),
    )


_ACTION_VERBS = {
    ActionType.TEXT: "messaged",
    ActionType.CALL: "called",
    ActionType.IN_PERSON: "met",
}


def _time_text(days: int) -> str:
    if days == 0:
        return "today"
    if days == 1:
        return "yesterday"
    if days < 7:
        return f"{days} days ago"
    if days < 14:
        return "last week"
    if days < 30:
        return f"{days // 7} weeks ago"
    return f"{days // 30} months ago"


def get_ring_status_description(
    strength: RelationshipStrength,
    days_since_action: Optional[int],
    last_action_type: Optional[ActionType],
    decay_started_at: Optional[datetime] = None,
    now: Union[date, datetime, None] = None,
) -> str:
    """Copy for the ring status dialog."""
    days = NO_CONTACT_DAYS if days_since_action is None else days_since_action
    time_text = _time_text(days)

    if last_action_type is not None:
        verb = _ACTION_VERBS.get(ActionType(last_action_type), "connected with them")
        last_contact = f"You {verb} {time_text}."
    elif days == 0:
        last_contact = "You were in touch today."
    elif days >= NO_CONTACT_DAYS:
        last_contact = "No contact recorded yet."
    else:
        last_contact = f"Last contact was {time_text}."

    if strength == RelationshipStrength.FLOURISHING:
        return (f"{last_contact} This connection is thriving: frequent, meaningful "
                f"contact keeps the ring full and bright.")
    if strength == RelationshipStrength.STRONG:
        return f"{last_contact} A strong connection. Keep showing up and the rings stay full."
    if strength == RelationshipStrength.STABLE:
        return (f"{last_contact} Steady but there's room to deepen. More regular contact "
                f"will fill the rings further.")
    if strength == RelationshipStrength.THINNING:
        decay_days = decay_day_count(days, decay_started_at, now or datetime.now(timezone.utc))
        plural = "" if decay_days == 1 else "s"
        return (f"{last_contact} This connection has been thinning for {decay_days} day{plural}. "
                f"Reaching out now makes a real difference.")
    return (f"{last_contact} The connection is fading. Even a short message can reverse this; "
            f"the rings respond quickly to contact.")
