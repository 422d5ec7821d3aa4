"""
Achievement Evaluator

Unlocks badges from a fixed catalogue against a snapshot of progress signals.

    streak       global        current daily streak >= 7/30/90/180/365
    consistency  per contact   consecutive cadence cycles met >= 3/6/12
    recovery     global        a thinning/decaying connection restored;
                               3 restorations inside 30 days;
                               forest health dipping below 50% then above 80%
    quality      global        5+ in-person in 30 days; 10+ memory notes in
                               30 days; every action type inside 7 days

Evaluation is idempotent. The pure planner skips rows that are already
unlocked or whose progress is unchanged, and AchievementService checks the
(user_id, achievement_id, connection_id) key in storage before every insert.
Storage holds one row per key (a partial unique index covers the global
badges), and an evaluator that loses the insert or the unlock update to a
concurrent one does not report the badge a second time.

Writing an unlock is not allowed to fail the action that triggered it:
persistence errors are logged and handed back as pending writes for an
out-of-band retry.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
import logging

from core.config import settings
from core.exceptions import AchievementPersistenceError, DuplicateAchievementError
from services.engagement_types import (
    Action,
    ActionType,
    AchievementCategory,
    AchievementDefinition,
    CatchupFrequency,
    ConnectionHealth,
    LifecycleState,
    RelationshipStrength,
    UserAchievement,
)
from services.recency import frequency_to_days
from services.repository_interfaces import UserAchievementRepository, UserRepository
from services.streak_engine import require_user

logger = logging.getLogger(__name__)


ACHIEVEMENT_CATALOGUE = (
    # Streak
    AchievementDefinition("week_warrior", "Week Warrior", "Maintained a 7-day connection streak",
                          AchievementCategory.STREAK, 7, "streak_days"),
    AchievementDefinition("monthly_maintainer", "Monthly Maintainer", "Maintained a 30-day connection streak",
                          AchievementCategory.STREAK, 30, "streak_days"),
    AchievementDefinition("quarterly_connector", "Quarterly Connector", "Maintained a 90-day connection streak",
                          AchievementCategory.STREAK, 90, "streak_days"),
    AchievementDefinition("half_year_hero", "Half-Year Hero", "Maintained a 180-day connection streak",
                          AchievementCategory.STREAK, 180, "streak_days"),
    AchievementDefinition("year_round_friend", "Year-Round Friend", "Maintained a 365-day connection streak",
                          AchievementCategory.STREAK, 365, "streak_days"),
    # Per-contact consistency
    AchievementDefinition("on_track", "On Track", "Met your connection frequency for 3 consecutive cycles",
                          AchievementCategory.CONSISTENCY, 3, "cycles", is_per_contact=True),
    AchievementDefinition("rhythm_master", "Rhythm Master", "Met your connection frequency for 6 consecutive cycles",
                          AchievementCategory.CONSISTENCY, 6, "cycles", is_per_contact=True),
    AchievementDefinition("unbreakable_bond", "Unbreakable Bond", "Met your connection frequency for 12 consecutive cycles",
                          AchievementCategory.CONSISTENCY, 12, "cycles", is_per_contact=True),
    # Recovery
    AchievementDefinition("second_chance", "Second Chance", "Restored a fading connection to healthy",
                          AchievementCategory.RECOVERY, 1, "recoveries"),
    # Counts distinct connections restored in the window: each connection
    # contributes its latest recovery (ConnectionHealth.last_recovered_at).
    AchievementDefinition("phoenix_rising", "Phoenix Rising", "Restored 3 fading connections in 30 days",
                          AchievementCategory.RECOVERY, 3, "recoveries_30d"),
    # Step 1: forest health fell below 50%. Step 2: it climbed back above 80%.
    AchievementDefinition("forest_healer", "Forest Healer", "Brought forest health from below 50% to above 80%",
                          AchievementCategory.RECOVERY, 2, "forest_recovery"),
    # Quality
    AchievementDefinition("quality_time", "Quality Time", "Had 5+ in-person interactions in 30 days",
                          AchievementCategory.QUALITY, 5, "in_person_30d"),
    AchievementDefinition("deep_listener", "Deep Listener", "Added memory notes to 10+ interactions in 30 days",
                          AchievementCategory.QUALITY, 10, "memories_30d"),
    AchievementDefinition("variety_connector", "Variety Connector", "Used every interaction type in 7 days",
                          AchievementCategory.QUALITY, len(ActionType), "types_7d"),
)

ACHIEVEMENTS_BY_ID: Mapping[str, AchievementDefinition] = {a.id: a for a in ACHIEVEMENT_CATALOGUE}

RECOVERY_WINDOW_DAYS = 30
QUALITY_WINDOW_DAYS = 30
VARIETY_WINDOW_DAYS = 7

FOREST_LOW_BAND = 50.0
FOREST_HIGH_BAND = 80.0

# Per-connection contribution to forest health (0-100)
FOREST_TIER_SCORES: Mapping[RelationshipStrength, float] = {
    RelationshipStrength.FLOURISHING: 100.0,
    RelationshipStrength.STRONG: 75.0,
    RelationshipStrength.STABLE: 40.0,
    RelationshipStrength.THINNING: 40.0,
    RelationshipStrength.DECAYING: 10.0,
}


@dataclass
class ProgressSignals:
    """Everything the evaluator reads. Built by build_progress_signals() or by hand."""
    now: datetime
    current_streak: int = 0
    cycle_streaks: Dict[str, int] = field(default_factory=dict)   # connection_id -> cycles
    total_recoveries: int = 0
    recovery_times: List[datetime] = field(default_factory=list)   # latest per connection
    forest_health: Optional[float] = None
    in_person_30d: int = 0
    memories_30d: int = 0
    types_7d: int = 0


# ---------------------------------------------------------------------------
# Signal builders
# ---------------------------------------------------------------------------

def consecutive_cycles_met(
    action_dates: Iterable[date],
    cadence: Union[CatchupFrequency, str, None],
    today: date,
) -> int:
    """
    Consecutive cadence periods, counting back from today, with at least one action.

    The period ending today is still open: it counts when already met but
    does not break the run when it isn't yet.
    """
    dates = sorted(set(action_dates))
    if not dates:
        return 0
    length = frequency_to_days(cadence)
    earliest = dates[0]
    date_set = set(dates)

    def met(end: date) -> bool:
        return any((end - timedelta(days=i)) in date_set for i in range(length))

    cycles = 0
    end = today
    if not met(end):
        end -= timedelta(days=length)
    while end >= earliest and met(end):
        cycles += 1
        end -= timedelta(days=length)
    return cycles


def _in_window(d: date, today: date, days: int) -> bool:
    return today - timedelta(days=days - 1) <= d <= today


def count_actions_in_window(
    actions: Iterable[Action],
    today: date,
    days: int,
    action_type: Optional[ActionType] = None,
    with_note: bool = False,
) -> int:
    return sum(
        1 for a in actions
        if _in_window(a.date, today, days)
        and (action_type is None or a.type == action_type)
        and (not with_note or a.has_note)
    )


def distinct_types_in_window(actions: Iterable[Action], today: date, days: int) -> int:
    return len({a.type for a in actions if _in_window(a.date, today, days)})


def recoveries_in_window(recovery_times: Iterable[datetime], now: datetime, days: int) -> int:
    cutoff = now - timedelta(days=days)
    return sum(1 for t in recovery_times if cutoff <= t <= now)


def forest_health_score(strengths: Iterable[RelationshipStrength]) -> Optional[float]:
    """Average per-connection health, 0-100. None when there are no connections."""
    scores = [FOREST_TIER_SCORES[s] for s in strengths]
    if not scores:
        return None
    return round(sum(scores) / len(scores), 1)


def build_progress_signals(
    now: datetime,
    current_streak: int,
    actions: Sequence[Action],
    cadence_by_connection: Mapping[str, Union[CatchupFrequency, str, None]],
    healths: Iterable[ConnectionHealth] = (),
) -> ProgressSignals:
    """
    Snapshot the evaluator's inputs from raw rows.

    `actions` should reach back far enough to cover the longest cadence
    cycles of interest; windowed quality counts only look at the last 30 days.
    """
    today = now.date()
    by_connection: Dict[str, List[date]] = {cid: [] for cid in cadence_by_connection}
    for action in actions:
        if action.connection_id in by_connection:
            by_connection[action.connection_id].append(action.date)

    healths = [h for h in healths if h.lifecycle_state != LifecycleState.ARCHIVED]

    return ProgressSignals(
        now=now,
        current_streak=current_streak,
        cycle_streaks={
            cid: consecutive_cycles_met(dates, cadence_by_connection[cid], today)
            for cid, dates in by_connection.items()
        },
        total_recoveries=sum(h.recovery_count for h in healths),
        recovery_times=[h.last_recovered_at for h in healths if h.last_recovered_at is not None],
        forest_health=forest_health_score(h.current_strength for h in healths),
        in_person_30d=count_actions_in_window(actions, today, QUALITY_WINDOW_DAYS, ActionType.IN_PERSON),
        memories_30d=count_actions_in_window(actions, today, QUALITY_WINDOW_DAYS, with_note=True),
        types_7d=distinct_types_in_window(actions, today, VARIETY_WINDOW_DAYS),
    )


# ---------------------------------------------------------------------------
# Pure planner
# ---------------------------------------------------------------------------

@dataclass
class AchievementUpdate:
    """One row write the evaluator wants performed."""
    user_id: str
    definition: AchievementDefinition
    connection_id: Optional[str]
    progress: int
    unlock: bool

    @property
    def key(self):
        return (self.user_id, self.definition.id, self.connection_id)


def _global_progress(
    definition: AchievementDefinition,
    signals: ProgressSignals,
    existing: Optional[UserAchievement],
) -> int:
    kind = definition.threshold_type
    if kind == "streak_days":
        return signals.current_streak
    if kind == "recoveries":
        return max(signals.total_recoveries, len(signals.recovery_times))
    if kind == "recoveries_30d":
        return recoveries_in_window(signals.recovery_times, signals.now, RECOVERY_WINDOW_DAYS)
    if kind == "forest_recovery":
        # Latched two-step progress; the stored row remembers the dip
        step = existing.current_progress if existing else 0
        health = signals.forest_health
        if health is None:
            return step
        if step == 0 and health < FOREST_LOW_BAND:
            return 1
        if step >= 1 and health > FOREST_HIGH_BAND:
            return 2
        return step
    if kind == "in_person_30d":
        return signals.in_person_30d
    if kind == "memories_30d":
        return signals.memories_30d
    if kind == "types_7d":
        return signals.types_7d
    logger.warning(f"Unknown achievement threshold type {kind!r} on {definition.id}")
    return 0


def evaluate_achievements(
    user_id: str,
    signals: ProgressSignals,
    existing: Iterable[UserAchievement],
    catalogue: Sequence[AchievementDefinition] = ACHIEVEMENT_CATALOGUE,
) -> List[AchievementUpdate]:
    """
    Plan progress writes and unlocks. Pure; performs no I/O.

    Unlocked rows are final. Rows whose progress would not change are skipped,
    so a second call with the same signals and the first call's results
    applied returns an empty plan.
    """
    rows = {(a.achievement_id, a.connection_id): a for a in existing}
    updates: List[AchievementUpdate] = []

    for definition in catalogue:
        if definition.is_per_contact:
            targets = [(cid, cycles) for cid, cycles in sorted(signals.cycle_streaks.items())]
        else:
            targets = [(None, None)]

        for connection_id, cycles in targets:
            row = rows.get((definition.id, connection_id))
            if row is not None and row.is_unlocked:
                continue

            if definition.is_per_contact:
                progress = cycles
            else:
                progress = _global_progress(definition, signals, row)

            unlock = progress >= definition.threshold_value
            if row is not None and row.current_progress == progress and not unlock:
                continue
            if row is None and progress == 0:
                continue

            updates.append(AchievementUpdate(
                user_id=user_id,
                definition=definition,
                connection_id=connection_id,
                progress=progress,
                unlock=unlock,
            ))
    return updates


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

@dataclass
class PendingAchievementWrite:
    update: AchievementUpdate
    attempts: int
    last_error: str


@dataclass
class EvaluationResult:
    newly_unlocked: List[AchievementDefinition] = field(default_factory=list)
    # (achievement_id, connection_id); per-contact badges can unlock for several connections at once
    unlocked_keys: List[Tuple[str, Optional[str]]] = field(default_factory=list)
    progress_updated: int = 0
    pending_writes: List[PendingAchievementWrite] = field(default_factory=list)


class AchievementService:
    """Applies evaluator plans to storage with existence checks before insert."""

    def __init__(
        self,
        achievements: UserAchievementRepository,
        users: Optional[UserRepository] = None,
        catalogue: Sequence[AchievementDefinition] = ACHIEVEMENT_CATALOGUE,
    ):
        self.achievements = achievements
        self.users = users
        self.catalogue = catalogue

    def evaluate(self, user_id: str, signals: ProgressSignals) -> EvaluationResult:
        require_user(user_id, self.users)

        existing = self.achievements.list_for_user(user_id)
        plan = evaluate_achievements(user_id, signals, existing, self.catalogue)
        result = EvaluationResult()

        for update in plan:
            try:
                unlocked = self._apply(update, signals.now)
            except AchievementPersistenceError as exc:
                logger.exception(
                    "Achievement write failed user_id=%s achievement=%s connection=%s; queued for retry",
                    user_id, update.definition.id, update.connection_id,
                    extra={
                        "user_id": user_id,
                        "achievement_id": update.definition.id,
                        "connection_id": update.connection_id,
                    },
                )
                result.pending_writes.append(
                    PendingAchievementWrite(update=update, attempts=1, last_error=exc.detail)
                )
                continue
            self._record(result, update, unlocked)

        if result.newly_unlocked:
            logger.info(
                "Achievements unlocked user_id=%s ids=%s",
                user_id, [a.id for a in result.newly_unlocked],
            )
        return result

    def retry_pending(
        self, pending: Iterable[PendingAchievementWrite], now: datetime
    ) -> EvaluationResult:
        """Out-of-band retry of writes that failed earlier; gives up after the configured attempts."""
        result = EvaluationResult()
        for item in pending:
            try:
                unlocked = self._apply(item.update, now)
            except AchievementPersistenceError as exc:
                attempts = item.attempts + 1
                if attempts >= settings.ACHIEVEMENT_WRITE_RETRY_ATTEMPTS:
                    logger.error(
                        "Dropping achievement write after %s attempts user_id=%s achievement=%s: %s",
                        attempts, item.update.user_id, item.update.definition.id, exc.detail,
                    )
                    continue
                result.pending_writes.append(
                    PendingAchievementWrite(update=item.update, attempts=attempts, last_error=exc.detail)
                )
                continue
            self._record(result, item.update, unlocked)
        return result

    @staticmethod
    def _record(result: EvaluationResult, update: AchievementUpdate, unlocked: bool) -> None:
        if unlocked:
            result.newly_unlocked.append(update.definition)
            result.unlocked_keys.append((update.definition.id, update.connection_id))
        else:
            result.progress_updated += 1

    def _apply(self, update: AchievementUpdate, now: datetime) -> bool:
        """Perform one planned write. Returns True only if this call unlocked the row."""
        user_id, achievement_id, connection_id = update.key
        row = self.achievements.find(user_id, achievement_id, connection_id)

        if row is None:
            fresh = UserAchievement(
                user_id=user_id,
                achievement_id=achievement_id,
                connection_id=connection_id,
                current_progress=update.progress,
                is_unlocked=update.unlock,
                unlocked_at=now if update.unlock else None,
            )
            try:
                self.achievements.insert(fresh)
                return update.unlock
            except DuplicateAchievementError:
                # Lost an insert race; fall through to the row that won
                row = self.achievements.find(user_id, achievement_id, connection_id)
                if row is None:
                    raise AchievementPersistenceError(achievement_id, "row vanished after duplicate insert")

        if row.is_unlocked:
            return False

        if update.unlock:
            row.current_progress = update.progress
            row.is_unlocked = True
            row.unlocked_at = now
            return self.achievements.mark_unlocked(row)

        self.achievements.update_progress(user_id, achievement_id, connection_id, update.progress)
        return False
