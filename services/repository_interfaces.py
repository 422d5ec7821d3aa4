"""
Storage interfaces the engine depends on.

One typed repository per entity. The engine never sees a query client or a
table name; repositories.py provides the SQLAlchemy implementations and
tests may substitute any object with the same shape.
"""
from datetime import date
from typing import List, Optional, Protocol

from services.engagement_types import (
    Action,
    Connection,
    ConnectionHealth,
    DailyHabitLog,
    UserAchievement,
    UserStreak,
)


class UserRepository(Protocol):
    def exists(self, user_id: str) -> bool:
        """True when the user is known to storage."""
        ...


class ConnectionRepository(Protocol):
    def get(self, connection_id: str) -> Optional[Connection]:
        ...

    def list_for_user(self, user_id: str) -> List[Connection]:
        ...


class ActionRepository(Protocol):
    def add(self, action: Action) -> None:
        ...

    def list_between(self, user_id: str, start: date, end: date) -> List[Action]:
        """Actions with start <= action.date <= end, oldest first."""
        ...

    def list_for_connection(self, connection_id: str) -> List[Action]:
        ...


class DailyHabitLogRepository(Protocol):
    def upsert(self, log: DailyHabitLog) -> None:
        ...

    def list_between(self, user_id: str, start: date, end: date) -> List[DailyHabitLog]:
        ...


class ConnectionHealthRepository(Protocol):
    def get(self, connection_id: str) -> Optional[ConnectionHealth]:
        ...

    def list_for_user(self, user_id: str) -> List[ConnectionHealth]:
        ...

    def save(self, health: ConnectionHealth) -> None:
        ...


class UserStreakRepository(Protocol):
    def get(self, user_id: str) -> Optional[UserStreak]:
        ...

    def create(self, streak: UserStreak) -> UserStreak:
        """Insert a fresh row; returns the stored row if one appeared concurrently."""
        ...

    def save_if_unchanged(
        self, streak: UserStreak, expected_last_interaction: Optional[date]
    ) -> bool:
        """
        Write `streak` only if the stored last_interaction_date still equals
        `expected_last_interaction`. False means another writer got there first.
        """
        ...

    def save_valid_days(
        self,
        user_id: str,
        valid_days_streak: int,
        longest_valid_days: int,
        last_valid_day_date: Optional[date],
    ) -> None:
        """Leaves the interaction-streak columns alone; never lowers longest_valid_days."""
        ...


class UserAchievementRepository(Protocol):
    def find(
        self, user_id: str, achievement_id: str, connection_id: Optional[str]
    ) -> Optional[UserAchievement]:
        """The row for the unique key, or None."""
        ...

    def list_for_user(self, user_id: str) -> List[UserAchievement]:
        ...

    def insert(self, achievement: UserAchievement) -> None:
        """Raises DuplicateAchievementError if the unique key already exists."""
        ...

    def update_progress(
        self,
        user_id: str,
        achievement_id: str,
        connection_id: Optional[str],
        progress: int,
    ) -> None:
        ...

    def mark_unlocked(self, achievement: UserAchievement) -> bool:
        """False when the row was already unlocked by someone else."""
        ...
