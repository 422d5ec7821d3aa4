"""
Streak Engine

Daily continuity counter with two forgiveness rules:

    Freeze       - one missed day (gap of exactly 2) is forgiven at most
                   once per rolling 7-day window. A second gap of 2 inside
                   the window breaks the streak.
    Weekend flex - Friday through Sunday count as one contact window, so a
                   gap of up to 3 days starting on Fri/Sat/Sun continues the
                   streak without spending a freeze.

apply_interaction() is the pure transition. StreakService wraps it in an
optimistic read-modify-write per user: two interactions flushed together
from an offline queue must not both read the same last_interaction_date.
"""

from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Optional
import logging

from core.config import settings
from core.exceptions import InvalidUserError, StreakConflictError
from services.engagement_types import UserStreak
from services.repository_interfaces import UserRepository, UserStreakRepository

logger = logging.getLogger(__name__)


STREAK_MILESTONES = (7, 30, 90, 180, 365)

FREEZES_PER_WEEK = 1
FREEZE_WINDOW_DAYS = 7
FREEZE_GAP_DAYS = 2
WEEKEND_FLEX_MAX_GAP = 3

# date.weekday(): Friday=4, Saturday=5, Sunday=6
WEEKEND_FLEX_WEEKDAYS = frozenset({4, 5, 6})


class StreakOutcome(str, Enum):
    STARTED = "started"
    SAME_DAY = "same_day"
    CONTINUED = "continued"
    FROZEN = "frozen"
    WEEKEND_FLEX = "weekend_flex"
    BROKEN = "broken"
    OUT_OF_ORDER = "out_of_order"


@dataclass
class StreakTransition:
    """Result of applying one interaction to a streak."""
    previous: UserStreak
    streak: UserStreak
    outcome: StreakOutcome
    milestone_reached: Optional[int] = None

    @property
    def changed(self) -> bool:
        return self.previous != self.streak


def is_weekend_flex_day(d: date) -> bool:
    return d.weekday() in WEEKEND_FLEX_WEEKDAYS


def apply_interaction(streak: UserStreak, interaction_date: date) -> StreakTransition:
    """Pure streak transition for a qualifying interaction on interaction_date."""
    previous = replace(streak)
    last = streak.last_interaction_date

    # Backdated entries never rewrite history that has already been counted
    if last is not None and interaction_date < last:
        return StreakTransition(previous, replace(streak), StreakOutcome.OUT_OF_ORDER)

    s = replace(streak)

    if (
        s.week_freeze_reset_date is None
        or (interaction_date - s.week_freeze_reset_date).days >= FREEZE_WINDOW_DAYS
    ):
        s.freezes_used_this_week = 0
        s.week_freeze_reset_date = interaction_date

    if last is None:
        s.current_streak = 1
        s.streak_started_at = interaction_date
        outcome = StreakOutcome.STARTED
    elif interaction_date == last:
        outcome = StreakOutcome.SAME_DAY
    else:
        gap = (interaction_date - last).days
        if gap == 1:
            s.current_streak += 1
            outcome = StreakOutcome.CONTINUED
        elif gap == FREEZE_GAP_DAYS:
            if s.freezes_used_this_week < FREEZES_PER_WEEK:
                s.freezes_used_this_week += 1
                s.current_streak += 1
                outcome = StreakOutcome.FROZEN
            else:
                s.current_streak = 1
                s.streak_started_at = interaction_date
                outcome = StreakOutcome.BROKEN
        elif gap <= WEEKEND_FLEX_MAX_GAP and is_weekend_flex_day(last):
            s.current_streak += 1
            outcome = StreakOutcome.WEEKEND_FLEX
        else:
            s.current_streak = 1
            s.streak_started_at = interaction_date
            outcome = StreakOutcome.BROKEN

    s.longest_streak = max(s.longest_streak, s.current_streak)
    s.last_interaction_date = interaction_date

    milestone = None
    if s.current_streak != previous.current_streak and s.current_streak in STREAK_MILESTONES:
        milestone = s.current_streak

    return StreakTransition(previous, s, outcome, milestone)


def next_milestone(current_streak: int) -> Optional[int]:
    for milestone in STREAK_MILESTONES:
        if current_streak < milestone:
            return milestone
    return None


def days_to_next_milestone(current_streak: int) -> Optional[int]:
    milestone = next_milestone(current_streak)
    if milestone is None:
        return None
    return milestone - current_streak


def is_streak_at_risk(streak: UserStreak, today: date) -> bool:
    """A live streak with nothing logged today."""
    if streak.current_streak == 0 or streak.last_interaction_date is None:
        return False
    return streak.last_interaction_date != today


def streak_status_message(streak: UserStreak, today: date) -> str:
    if streak.current_streak == 0:
        return "Start your streak today!"

    if streak.last_interaction_date == today:
        remaining = days_to_next_milestone(streak.current_streak)
        if remaining == 1:
            return "One more day to your next milestone!"
        if remaining is not None and remaining <= 3:
            return f"{remaining} days to your next milestone!"
        return "Keep it going!"

    if streak.freezes_used_this_week < FREEZES_PER_WEEK:
        return "Log a catch-up to keep your streak!"
    return "Your streak is at risk!"


class StreakService:
    """
    Serialized read-modify-write of a user's streak row.

    The write is conditional on last_interaction_date being unchanged since
    the read; on conflict the row is re-read and the transition recomputed.
    """

    def __init__(
        self,
        streaks: UserStreakRepository,
        users: Optional[UserRepository] = None,
        max_retries: Optional[int] = None,
    ):
        self.streaks = streaks
        self.users = users
        self.max_retries = max_retries or settings.STREAK_UPDATE_MAX_RETRIES

    def get_or_create(self, user_id: str, today: date) -> UserStreak:
        existing = self.streaks.get(user_id)
        if existing is not None:
            return existing
        return self.streaks.create(UserStreak(user_id=user_id, week_freeze_reset_date=today))

    def record_interaction(self, user_id: str, interaction_date: date) -> StreakTransition:
        require_user(user_id, self.users)

        for attempt in range(1, self.max_retries + 1):
            current = self.get_or_create(user_id, interaction_date)
            transition = apply_interaction(current, interaction_date)

            if not transition.changed:
                return transition

            if self.streaks.save_if_unchanged(transition.streak, current.last_interaction_date):
                logger.info(
                    "Streak updated user_id=%s outcome=%s current=%s longest=%s freezes=%s",
                    user_id,
                    transition.outcome.value,
                    transition.streak.current_streak,
                    transition.streak.longest_streak,
                    transition.streak.freezes_used_this_week,
                )
                return transition

            logger.warning(
                "Streak write conflict user_id=%s attempt=%s/%s; re-reading",
                user_id, attempt, self.max_retries,
            )

        raise StreakConflictError(user_id, self.max_retries)


def require_user(user_id: Optional[str], users: Optional[UserRepository] = None) -> None:
    """All progress is keyed by user identity; refuse to evaluate without one."""
    if not user_id:
        raise InvalidUserError()
    if users is not None and not users.exists(user_id):
        raise InvalidUserError(user_id)
