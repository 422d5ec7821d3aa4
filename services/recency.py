"""
Recency Calculator

Day-difference arithmetic and cadence lookup for the engagement engine.

Two day counts exist and are deliberately NOT symmetric:
    days_since  - time-sensitive: floor(elapsed / 24h). A contact at 18:00
                  yesterday is 0 days ago at 09:00 today.
    days_until  - date-only: time components are dropped before subtracting,
                  so "due tomorrow" never flips to "due today" mid-afternoon.

A missing date is a valid sentinel (never contacted / never scheduled) and
yields None rather than raising.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

from services.engagement_types import (
    CatchupFrequency,
    DEFAULT_CADENCE_DAYS,
    FREQUENCY_DAYS,
)

DateLike = Union[date, datetime, str, None]

SECONDS_PER_DAY = 86400


def parse_date(value: DateLike) -> Optional[Union[date, datetime]]:
    """Accept a date, datetime, ISO-8601 string or None."""
    if value is None or isinstance(value, (date, datetime)):
        return value
    text = value.strip()
    if not text:
        return None
    if len(text) == 10:
        return date.fromisoformat(text)
    # Python < 3.11 doesn't accept a trailing Z
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def to_date(value: DateLike) -> Optional[date]:
    """Calendar date of a value, dropping any time component."""
    parsed = parse_date(value)
    if isinstance(parsed, datetime):
        return parsed.date()
    return parsed


def _to_datetime(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.combine(value, datetime.min.time())
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def days_since(value: DateLike, now: Union[date, datetime]) -> Optional[int]:
    """Whole days elapsed from value to now (floor of elapsed seconds / day)."""
    parsed = parse_date(value)
    if parsed is None:
        return None
    elapsed = _to_datetime(now) - _to_datetime(parsed)
    return int(elapsed.total_seconds() // SECONDS_PER_DAY)


def days_until(value: DateLike, today: Union[date, datetime]) -> Optional[int]:
    """Calendar days from today until value; negative when overdue."""
    target = to_date(value)
    if target is None:
        return None
    return (target - to_date(today)).days


def days_between(first: DateLike, second: DateLike) -> int:
    """Absolute number of calendar days between two dates."""
    return abs((to_date(second) - to_date(first)).days)


def frequency_to_days(cadence: Union[CatchupFrequency, str, None]) -> int:
    """Expected days between catch-ups; unknown cadences fall back to 30."""
    if cadence is None:
        return DEFAULT_CADENCE_DAYS
    try:
        return FREQUENCY_DAYS[CatchupFrequency(cadence)]
    except ValueError:
        return DEFAULT_CADENCE_DAYS


def week_start_date(value: Union[date, datetime]) -> date:
    """Monday of the week containing value."""
    d = to_date(value)
    return d - timedelta(days=d.weekday())


def format_relative_date(value: DateLike, now: Union[date, datetime]) -> str:
    days = days_since(value, now)
    if days is None:
        return ""
    if days <= 0:
        return "Today"
    if days == 1:
        return "Yesterday"
    if days < 7:
        return f"{days} days ago"
    if days < 14:
        return "1 week ago"
    if days < 30:
        return f"{days // 7} weeks ago"
    if days < 60:
        return "1 month ago"
    return f"{days // 30} months ago"


@dataclass
class MaintenanceGap:
    """How far a connection is from its expected cadence."""
    gap: int                # days past due; negative when ahead
    status: str             # ahead | on_track | behind | overdue | never_contacted
    message: str
    progress_percent: float


def calculate_maintenance_gap(
    last_interaction: DateLike,
    cadence: Union[CatchupFrequency, str, None],
    now: Union[date, datetime],
) -> MaintenanceGap:
    frequency_days = frequency_to_days(cadence)
    since = days_since(last_interaction, now)

    if since is None:
        return MaintenanceGap(
            gap=frequency_days,
            status="never_contacted",
            message="You haven't connected yet - reach out anytime!",
            progress_percent=0.0,
        )

    gap = since - frequency_days
    progress = min(100.0, max(0.0, since / frequency_days * 100))

    if gap < -7:
        return MaintenanceGap(gap, "ahead", "You're ahead of schedule!", progress)
    if gap <= 0:
        return MaintenanceGap(gap, "on_track", "On track with your connection goal", progress)
    if gap <= 7:
        return MaintenanceGap(gap, "behind", f"{gap} days behind - time to reach out", 100.0)
    return MaintenanceGap(
        gap, "overdue", f"{gap} days overdue - they'd love to hear from you!", 100.0
    )
