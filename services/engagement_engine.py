"""
Engagement Engine

Runs one qualifying event through every component:

    log action -> re-score the day -> streak (valid days only)
               -> valid-days run -> connection health recompute
               -> achievements

and exposes the read paths the presentation layer needs (weekly review,
ring parameters, batch decay refresh). Storage is reached only through the
repository Protocols, so any implementation with the same shape works.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple, Union
import logging
import uuid

from core.exceptions import ConnectionNotFoundError
from services.achievement_evaluator import (
    ACHIEVEMENT_CATALOGUE,
    AchievementService,
    EvaluationResult,
    QUALITY_WINDOW_DAYS,
    build_progress_signals,
)
from services.daily_habit import ValidDaysSummary, score_day, summarize_valid_days
from services.engagement_types import (
    Action,
    ActionType,
    Connection,
    ConnectionHealth,
    DailyHabitLog,
    LifecycleState,
)
from services.recency import days_since, frequency_to_days
from services.repository_interfaces import (
    ActionRepository,
    ConnectionHealthRepository,
    ConnectionRepository,
    DailyHabitLogRepository,
    UserAchievementRepository,
    UserRepository,
    UserStreakRepository,
)
from services.ring_visualization import RingVisualization, calculate_ring_visualization
from services.strength_classifier import (
    HealthRecompute,
    apply_action_to_health,
    get_escalation_message,
    recompute_connection_health,
    resolve_strength,
)
from services.streak_engine import StreakService, StreakTransition, require_user
from services.weekly_pattern import (
    ConnectionSnapshot,
    SuggestedAction,
    WINDOW_DAYS,
    WeeklyPattern,
    analyze_weekly_pattern,
    generate_suggested_actions,
)

logger = logging.getLogger(__name__)

# Longest consistency badge, in cycles; sizes the action history to load
_MAX_CYCLE_THRESHOLD = max(
    (a.threshold_value for a in ACHIEVEMENT_CATALOGUE if a.is_per_contact), default=1
)

# First window of daily logs read for the valid-days run; doubled while the
# run reaches its edge
_VALID_DAYS_WINDOW = 32


@dataclass
class ActionOutcome:
    """Everything that changed because one action was logged."""
    action: Action
    daily_log: DailyHabitLog
    valid_days: ValidDaysSummary
    streak: Optional[StreakTransition]
    health: HealthRecompute
    achievements: EvaluationResult
    escalation_message: Optional[str] = None


@dataclass
class WeeklyReview:
    pattern: WeeklyPattern
    suggestions: List[SuggestedAction] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EngagementEngine:
    def __init__(
        self,
        users: UserRepository,
        connections: ConnectionRepository,
        actions: ActionRepository,
        daily_logs: DailyHabitLogRepository,
        healths: ConnectionHealthRepository,
        streaks: UserStreakRepository,
        achievements: UserAchievementRepository,
    ):
        self.users = users
        self.connections = connections
        self.actions = actions
        self.daily_logs = daily_logs
        self.healths = healths
        self.streaks = streaks
        self.streak_service = StreakService(streaks, users)
        self.achievement_service = AchievementService(achievements, users)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def log_action(
        self,
        user_id: str,
        connection_id: str,
        action_type: Union[ActionType, str],
        action_date: date,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ActionOutcome:
        require_user(user_id, self.users)
        now = now or _utcnow()
        connection = self._owned_connection(user_id, connection_id)

        action = Action(
            id=str(uuid.uuid4()),
            user_id=user_id,
            connection_id=connection.id,
            type=ActionType(action_type),
            date=action_date,
            note=note,
        )
        self.actions.add(action)
        logger.info(
            f"Logged {action.type.value} (weight {action.weight}) for user {user_id} "
            f"connection {connection.id} on {action_date}"
        )

        daily_log = score_day(user_id, action_date, self.actions.list_between(user_id, action_date, action_date))
        self.daily_logs.upsert(daily_log)

        streak = None
        if daily_log.is_valid_day:
            streak = self.streak_service.record_interaction(user_id, action_date)
        valid_days = self.valid_days_summary(user_id, now.date(), record=True)

        health = self.healths.get(connection.id) or ConnectionHealth(
            connection_id=connection.id, user_id=user_id
        )
        health = apply_action_to_health(health, action)
        recompute = recompute_connection_health(
            health,
            days_since(health.last_action_date, now),
            connection.catchup_frequency,
            now,
        )
        self.healths.save(recompute.health)

        current_streak = streak.streak.current_streak if streak else None
        achievements = self.evaluate_achievements(user_id, now, current_streak)

        return ActionOutcome(
            action=action,
            daily_log=daily_log,
            valid_days=valid_days,
            streak=streak,
            health=recompute,
            achievements=achievements,
            escalation_message=get_escalation_message(action.type),
        )

    def valid_days_summary(self, user_id: str, today: date, record: bool = False) -> ValidDaysSummary:
        """
        Current run of consecutive valid days, the longest run seen and the
        rolling 7-day count. With record=True the run is written back to the
        user's streak row.
        """
        require_user(user_id, self.users)
        stored = self.streak_service.get_or_create(user_id, today)

        window = _VALID_DAYS_WINDOW
        while True:
            logs = self.daily_logs.list_between(user_id, today - timedelta(days=window - 1), today)
            summary = summarize_valid_days(logs, today, stored.longest_valid_days)
            if summary.valid_days_streak < window - 1:
                break
            window *= 2
        if summary.last_valid_date is None:
            summary.last_valid_date = stored.last_valid_day_date

        if record:
            self.streaks.save_valid_days(
                user_id,
                summary.valid_days_streak,
                summary.longest_valid_days,
                summary.last_valid_date,
            )
        return summary

    def refresh_connection_health(self, user_id: str, now: Optional[datetime] = None) -> List[HealthRecompute]:
        """
        Recompute every connection against the clock.

        Decay happens with no action logged, so this runs on a schedule;
        recoveries found here also feed the achievement evaluator.
        """
        require_user(user_id, self.users)
        now = now or _utcnow()
        results = []
        for connection in self.connections.list_for_user(user_id):
            health = self.healths.get(connection.id) or ConnectionHealth(
                connection_id=connection.id,
                user_id=user_id,
                last_action_date=connection.last_interaction_date,
            )
            recompute = recompute_connection_health(
                health,
                days_since(health.last_action_date, now),
                connection.catchup_frequency,
                now,
            )
            if recompute.health != health:
                self.healths.save(recompute.health)
            results.append(recompute)

        changed = sum(1 for r in results if r.changed)
        if changed:
            logger.info(f"Health refresh for user {user_id}: {changed}/{len(results)} tiers changed")
        return results

    def evaluate_achievements(
        self,
        user_id: str,
        now: Optional[datetime] = None,
        current_streak: Optional[int] = None,
    ) -> EvaluationResult:
        require_user(user_id, self.users)
        now = now or _utcnow()
        today = now.date()

        if current_streak is None:
            current_streak = self.streak_service.get_or_create(user_id, today).current_streak

        connections = self.connections.list_for_user(user_id)
        healths = self.healths.list_for_user(user_id)
        archived = {h.connection_id for h in healths if h.lifecycle_state == LifecycleState.ARCHIVED}
        cadences = {c.id: c.catchup_frequency for c in connections if c.id not in archived}

        longest_cycle = max((frequency_to_days(c) for c in cadences.values()), default=0)
        lookback = max(QUALITY_WINDOW_DAYS, longest_cycle * (_MAX_CYCLE_THRESHOLD + 1))
        actions = self.actions.list_between(user_id, today - timedelta(days=lookback), today)

        signals = build_progress_signals(now, current_streak, actions, cadences, healths)
        return self.achievement_service.evaluate(user_id, signals)

    # ------------------------------------------------------------------
    # Read paths
    # ------------------------------------------------------------------

    def weekly_review(self, user_id: str, window_end: date) -> WeeklyReview:
        require_user(user_id, self.users)
        start = window_end - timedelta(days=2 * WINDOW_DAYS - 1)
        actions = self.actions.list_between(user_id, start, window_end)
        pattern = analyze_weekly_pattern(actions, window_end, previous_week_actions=actions)

        now = datetime.combine(window_end, datetime.max.time(), tzinfo=timezone.utc)
        snapshots = []
        for connection in self.connections.list_for_user(user_id):
            health = self.healths.get(connection.id)
            if health is not None and health.lifecycle_state == LifecycleState.ARCHIVED:
                continue
            last = health.last_action_date if health else connection.last_interaction_date
            days = days_since(last, now)
            snapshots.append(ConnectionSnapshot(
                id=connection.id,
                name=connection.name,
                strength=resolve_strength(health, days, connection.catchup_frequency),
                last_action_type=health.last_action_type if health else None,
                days_since_action=days,
                last_nudge_level=health.last_nudge_level if health else 0,
            ))

        return WeeklyReview(pattern=pattern, suggestions=generate_suggested_actions(pattern, snapshots))

    def ring_for(
        self, user_id: str, connection_id: str, now: Optional[datetime] = None
    ) -> Tuple[Connection, RingVisualization]:
        require_user(user_id, self.users)
        now = now or _utcnow()
        connection = self._owned_connection(user_id, connection_id)
        health = self.healths.get(connection.id)

        last = health.last_action_date if health else connection.last_interaction_date
        days = days_since(last, now)
        strength = resolve_strength(health, days, connection.catchup_frequency)
        ring = calculate_ring_visualization(
            strength,
            days,
            health.decay_started_at if health else None,
            connection.name,
        )
        return connection, ring

    def _owned_connection(self, user_id: str, connection_id: str) -> Connection:
        connection = self.connections.get(connection_id)
        if connection is None or connection.user_id != user_id:
            raise ConnectionNotFoundError(connection_id)
        return connection
