"""
Daily Habit Scorer

Aggregates one user's same-day weighted actions into a DailyHabitLog row.
The row is derived data: recompute it whenever that day's actions change.

A day is valid when its summed weight reaches VALID_DAY_THRESHOLD (1), so a
single text already keeps the day alive.

The valid-days streak runs alongside the interaction streak in
streak_engine but has no freeze or weekend flex. It is derived from the
stored logs, so a backdated action that fills a gap joins the runs.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Optional

from services.engagement_types import (
    Action,
    ActionType,
    DailyHabitLog,
    VALID_DAY_THRESHOLD,
)
from services.streak_engine import next_milestone

WEEKLY_WINDOW_DAYS = 7


def is_valid_day(total_weight: float) -> bool:
    return total_weight >= VALID_DAY_THRESHOLD


def find_highest_action(actions: Iterable[Action]) -> Optional[ActionType]:
    """Heaviest action type present; ties resolve to the heavier type by construction."""
    highest: Optional[ActionType] = None
    for action in actions:
        if highest is None or action.weight > highest.weight:
            highest = action.type
    return highest


def score_day(user_id: str, day: date, actions: Iterable[Action]) -> DailyHabitLog:
    """Build the habit log for `day` from any iterable of the user's actions."""
    todays: List[Action] = [
        a for a in actions if a.date == day and a.user_id == user_id
    ]
    total = sum(a.weight for a in todays)
    return DailyHabitLog(
        user_id=user_id,
        date=day,
        total_weight=total,
        action_count=len(todays),
        is_valid_day=is_valid_day(total),
        highest_action=find_highest_action(todays),
    )


def points_to_valid_day(total_weight: float) -> float:
    """Weight still missing before today counts; 0 once valid."""
    return max(0.0, VALID_DAY_THRESHOLD - total_weight)


def calculate_valid_days_streak(logs: Iterable[DailyHabitLog], today: date) -> int:
    """
    Consecutive valid days ending today (or yesterday, if today has no log yet).

    An invalid day or a missing calendar day ends the run.
    """
    by_date = {log.date: log for log in logs}
    cursor = today
    if cursor not in by_date:
        cursor = today - timedelta(days=1)

    streak = 0
    while True:
        log = by_date.get(cursor)
        if log is None or not log.is_valid_day:
            break
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def count_valid_days(logs: Iterable[DailyHabitLog], start: date, end: date) -> int:
    """Valid days with start <= date <= end."""
    return sum(1 for log in logs if start <= log.date <= end and log.is_valid_day)


@dataclass
class ValidDaysSummary:
    valid_days_streak: int
    longest_valid_days: int
    last_valid_date: Optional[date]
    weekly_valid_days: int   # rolling 7 days ending today


def summarize_valid_days(
    logs: Iterable[DailyHabitLog], today: date, previous_longest: int = 0
) -> ValidDaysSummary:
    logs = list(logs)
    streak = calculate_valid_days_streak(logs, today)
    valid_dates = [log.date for log in logs if log.is_valid_day and log.date <= today]
    return ValidDaysSummary(
        valid_days_streak=streak,
        longest_valid_days=max(previous_longest, streak),
        last_valid_date=max(valid_dates) if valid_dates else None,
        weekly_valid_days=count_valid_days(logs, today - timedelta(days=WEEKLY_WINDOW_DAYS - 1), today),
    )


def is_valid_days_streak_at_risk(
    valid_days_streak: int, last_valid_date: Optional[date], today: date
) -> bool:
    """A live run with no valid day logged yet today."""
    if valid_days_streak == 0 or last_valid_date is None:
        return False
    return last_valid_date != today


def valid_days_streak_message(
    valid_days_streak: int,
    last_valid_date: Optional[date],
    today_progress: float,
    today: date,
) -> str:
    if valid_days_streak == 0:
        if today_progress > 0:
            return f"{points_to_valid_day(today_progress):.1f} more points to start your streak!"
        return "Log an action to start your streak!"

    if is_valid_day(today_progress) or last_valid_date == today:
        milestone = next_milestone(valid_days_streak)
        if milestone is not None:
            remaining = milestone - valid_days_streak
            if remaining <= 3:
                plural = "" if remaining == 1 else "s"
                return f"{remaining} day{plural} to {milestone}-day milestone!"
        return f"{valid_days_streak} valid days and counting!"

    if today_progress > 0:
        return f"{points_to_valid_day(today_progress):.1f} more points to keep your streak!"
    return "Log an action to protect your streak!"
