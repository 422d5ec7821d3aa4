"""
Weekly Pattern Analyzer

Scores a trailing 7-day window of actions on three axes and picks one insight:

    depth_score       - share of the window's weight that came from calls or
                        in-person time (texts keep contact, they don't build depth)
    variety_score     - distinct action types used, out of three
    consistency_score - how many days were valid AND how evenly they are spread;
                        four valid days in a row score lower than four spaced out

Insight precedence (first match wins):
    contact_not_depth  depth < 30 with at least 3 actions logged
    good_depth         depth >= 60
    sporadic           consistency < 30
    escalating         total weight > 1.2x a non-zero previous week
    consistent         otherwise
"""

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from math import ceil
from typing import Dict, Iterable, List, Optional, Sequence

from services.daily_habit import is_valid_day
from services.engagement_types import (
    Action,
    ActionType,
    INSIGHT_MESSAGES,
    InsightType,
    RelationshipStrength,
    TEXT_TO_CALL_MESSAGE,
)
from services.strength_classifier import get_escalation_nudge

WINDOW_DAYS = 7

DEEP_ACTION_TYPES = frozenset({ActionType.CALL, ActionType.IN_PERSON})

# Insight cutoffs
LOW_DEPTH_SCORE = 30
MIN_ACTIONS_FOR_DEPTH_INSIGHT = 3
GOOD_DEPTH_SCORE = 60
SPORADIC_CONSISTENCY_SCORE = 30
ESCALATION_RATIO = 1.2

# Suggestion cutoffs
SUGGEST_DEPTH_BELOW = 40
SUGGEST_VARIETY_BELOW = 40
MAX_SUGGESTIONS = 5
MAX_STRUGGLING_CONNECTIONS = 3


@dataclass
class WeeklyPattern:
    week_start: date
    week_end: date
    depth_score: int                   # 0-100, higher = more calls / in-person
    variety_score: int                 # 0-100, higher = more diverse actions
    consistency_score: int             # 0-100, higher = more regular
    insight_type: InsightType
    insight_message: str
    valid_days: int
    total_weight: int
    action_breakdown: Dict[ActionType, int] = field(default_factory=dict)
    dominant_action_type: Optional[ActionType] = None


def _window(actions: Iterable[Action], start: date, end: date) -> List[Action]:
    return [a for a in actions if start <= a.date <= end]


def depth_score(actions: Sequence[Action]) -> int:
    total = sum(a.weight for a in actions)
    if total == 0:
        return 0
    deep = sum(a.weight for a in actions if a.type in DEEP_ACTION_TYPES)
    return min(100, round(deep / total * 100))


def variety_score(actions: Sequence[Action]) -> int:
    distinct = len({a.type for a in actions})
    return min(100, round(distinct / len(ActionType) * 100))


def consistency_score(valid_day_offsets: Sequence[int], window_days: int = WINDOW_DAYS) -> int:
    """
    Coverage of valid days scaled by how evenly they are spread.

    Evenness compares the longest run of empty days (window edges included)
    with the shortest achievable longest run for the same number of valid
    days: 1.0 when perfectly spread, lower as days cluster.
    """
    days = sorted(set(valid_day_offsets))
    n = len(days)
    if n == 0:
        return 0
    if n >= window_days:
        return 100

    gaps = [days[0]]
    gaps += [b - a - 1 for a, b in zip(days, days[1:])]
    gaps.append(window_days - 1 - days[-1])
    longest = max(gaps)
    ideal = ceil((window_days - n) / (n + 1))
    evenness = (ideal + 1) / (longest + 1)

    coverage = n / window_days
    return min(100, round(coverage * (0.5 + 0.5 * evenness) * 100))


def classify_insight(
    depth: int,
    consistency: int,
    action_count: int,
    total_weight: int,
    previous_week_weight: int,
) -> InsightType:
    if depth < LOW_DEPTH_SCORE and action_count >= MIN_ACTIONS_FOR_DEPTH_INSIGHT:
        return InsightType.CONTACT_NOT_DEPTH
    if depth >= GOOD_DEPTH_SCORE:
        return InsightType.GOOD_DEPTH
    if consistency < SPORADIC_CONSISTENCY_SCORE:
        return InsightType.SPORADIC
    if previous_week_weight > 0 and total_weight > previous_week_weight * ESCALATION_RATIO:
        return InsightType.ESCALATING
    return InsightType.CONSISTENT


def analyze_weekly_pattern(
    actions: Iterable[Action],
    window_end: date,
    previous_week_actions: Iterable[Action] = (),
) -> WeeklyPattern:
    """Score the 7 days ending on window_end (inclusive)."""
    start = window_end - timedelta(days=WINDOW_DAYS - 1)
    week = _window(actions, start, window_end)

    prev_start = start - timedelta(days=WINDOW_DAYS)
    prev_end = start - timedelta(days=1)
    previous_weight = sum(a.weight for a in _window(previous_week_actions, prev_start, prev_end))

    breakdown: Dict[ActionType, int] = {t: 0 for t in ActionType}
    weight_by_day: Dict[date, int] = defaultdict(int)
    for action in week:
        breakdown[action.type] += 1
        weight_by_day[action.date] += action.weight

    valid_offsets = [
        (day - start).days for day, weight in weight_by_day.items() if is_valid_day(weight)
    ]
    total_weight = sum(weight_by_day.values())

    depth = depth_score(week)
    variety = variety_score(week)
    consistency = consistency_score(valid_offsets)
    insight = classify_insight(depth, consistency, len(week), total_weight, previous_weight)

    dominant = None
    if week:
        # Most frequent; ties go to the deeper type
        counts = Counter(a.type for a in week)
        dominant = max(counts, key=lambda t: (counts[t], t.weight))

    return WeeklyPattern(
        week_start=start,
        week_end=window_end,
        depth_score=depth,
        variety_score=variety,
        consistency_score=consistency,
        insight_type=insight,
        insight_message=INSIGHT_MESSAGES[insight],
        valid_days=len(valid_offsets),
        total_weight=total_weight,
        action_breakdown=breakdown,
        dominant_action_type=dominant,
    )


@dataclass
class ConnectionSnapshot:
    """What the review needs to know about one connection."""
    id: str
    name: str
    strength: RelationshipStrength
    last_action_type: Optional[ActionType] = None
    days_since_action: Optional[int] = None
    last_nudge_level: int = 0


@dataclass
class SuggestedAction:
    action_type: ActionType
    reason: str
    priority: str                      # high | medium | low
    target_connection_id: Optional[str] = None
    target_connection_name: Optional[str] = None


def generate_suggested_actions(
    pattern: WeeklyPattern,
    connections: Iterable[ConnectionSnapshot],
) -> List[SuggestedAction]:
    """Suggestions for the weekly review: struggling connections first, then habit nudges."""
    suggestions: List[SuggestedAction] = []

    # Worst first; stable sort keeps caller order within a tier
    neediest = sorted(connections, key=lambda c: c.strength.rank)[:MAX_STRUGGLING_CONNECTIONS]
    for conn in neediest:
        if not conn.strength.is_fading:
            continue
        step = get_escalation_nudge(conn.last_nudge_level)
        if step is None:
            continue
        decaying = conn.strength == RelationshipStrength.DECAYING
        suggestions.append(SuggestedAction(
            action_type=step.action_type,
            reason="Relationship needs attention" if decaying else "Prevent decay",
            priority="high" if decaying else "medium",
            target_connection_id=conn.id,
            target_connection_name=conn.name,
        ))

    if pattern.depth_score < SUGGEST_DEPTH_BELOW:
        suggestions.append(SuggestedAction(
            action_type=ActionType.CALL,
            reason=TEXT_TO_CALL_MESSAGE,
            priority="medium",
        ))

    if pattern.variety_score < SUGGEST_VARIETY_BELOW:
        for candidate in (ActionType.CALL, ActionType.IN_PERSON):
            if candidate != pattern.dominant_action_type:
                suggestions.append(SuggestedAction(
                    action_type=candidate,
                    reason="Try varying your connection methods",
                    priority="low",
                ))
                break

    return suggestions[:MAX_SUGGESTIONS]
