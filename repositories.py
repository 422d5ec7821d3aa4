"""
SQLAlchemy implementations of the engine's repository Protocols.

Each repository owns short-lived sessions from a session factory and maps
rows to and from the engine records in services.engagement_types, so no
ORM object ever leaks into the engine.
"""
from datetime import date, datetime, timezone
from typing import List, Optional
import logging

from sqlalchemy import and_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from core.database import get_session_factory
from core.exceptions import AchievementPersistenceError, DuplicateAchievementError
from models import (
    ActionRow,
    ConnectionHealthRow,
    ConnectionRow,
    DailyHabitLogRow,
    User,
    UserAchievementRow,
    UserStreakRow,
)
from services.engagement_types import (
    Action,
    ActionType,
    Connection,
    ConnectionHealth,
    DailyHabitLog,
    LifecycleState,
    RelationshipStrength,
    RingTier,
    UserAchievement,
    UserStreak,
    map_legacy_action_type,
)

logger = logging.getLogger(__name__)


def _aware(value):
    """SQLite hands back naive datetimes; stored values are always UTC."""
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _SqlRepository:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or get_session_factory()


class SqlUserRepository(_SqlRepository):
    def exists(self, user_id: str) -> bool:
        with self.session_factory() as session:
            return session.query(User.id).filter(User.id == user_id).first() is not None


def _to_connection(row: ConnectionRow) -> Connection:
    return Connection(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        catchup_frequency=row.catchup_frequency,
        last_interaction_date=row.last_interaction_date,
        next_catchup_date=row.next_catchup_date,
    )


class SqlConnectionRepository(_SqlRepository):
    def get(self, connection_id: str) -> Optional[Connection]:
        with self.session_factory() as session:
            row = session.get(ConnectionRow, connection_id)
            return _to_connection(row) if row else None

    def list_for_user(self, user_id: str) -> List[Connection]:
        with self.session_factory() as session:
            rows = (
                session.query(ConnectionRow)
                .filter(ConnectionRow.user_id == user_id)
                .order_by(ConnectionRow.created_at, ConnectionRow.id)
                .all()
            )
            return [_to_connection(r) for r in rows]


def _to_action(row: ActionRow) -> Action:
    return Action(
        id=row.id,
        user_id=row.user_id,
        connection_id=row.connection_id,
        type=map_legacy_action_type(row.action_type),
        date=row.action_date,
        note=row.memory_note,
    )


class SqlActionRepository(_SqlRepository):
    def add(self, action: Action) -> None:
        with self.session_factory() as session:
            session.add(ActionRow(
                id=action.id,
                user_id=action.user_id,
                connection_id=action.connection_id,
                action_type=action.type.value,
                action_weight=action.weight,
                action_date=action.date,
                memory_note=action.note,
            ))
            if action.connection_id:
                # Keep the connection's denormalized last-contact date current
                session.execute(
                    update(ConnectionRow)
                    .where(ConnectionRow.id == action.connection_id)
                    .where(
                        (ConnectionRow.last_interaction_date.is_(None))
                        | (ConnectionRow.last_interaction_date < action.date)
                    )
                    .values(last_interaction_date=action.date)
                )
            session.commit()

    def list_between(self, user_id: str, start: date, end: date) -> List[Action]:
        with self.session_factory() as session:
            rows = (
                session.query(ActionRow)
                .filter(
                    ActionRow.user_id == user_id,
                    ActionRow.action_date >= start,
                    ActionRow.action_date <= end,
                )
                .order_by(ActionRow.action_date, ActionRow.created_at)
                .all()
            )
            return [_to_action(r) for r in rows]

    def list_for_connection(self, connection_id: str) -> List[Action]:
        with self.session_factory() as session:
            rows = (
                session.query(ActionRow)
                .filter(ActionRow.connection_id == connection_id)
                .order_by(ActionRow.action_date, ActionRow.created_at)
                .all()
            )
            return [_to_action(r) for r in rows]


class SqlDailyHabitLogRepository(_SqlRepository):
    def upsert(self, log: DailyHabitLog) -> None:
        with self.session_factory() as session:
            row = (
                session.query(DailyHabitLogRow)
                .filter(DailyHabitLogRow.user_id == log.user_id, DailyHabitLogRow.log_date == log.date)
                .first()
            )
            if row is None:
                row = DailyHabitLogRow(user_id=log.user_id, log_date=log.date)
                session.add(row)
            row.total_weight = log.total_weight
            row.action_count = log.action_count
            row.is_valid_day = log.is_valid_day
            row.highest_action = log.highest_action.value if log.highest_action else None
            session.commit()

    def list_between(self, user_id: str, start: date, end: date) -> List[DailyHabitLog]:
        with self.session_factory() as session:
            rows = (
                session.query(DailyHabitLogRow)
                .filter(
                    DailyHabitLogRow.user_id == user_id,
                    DailyHabitLogRow.log_date >= start,
                    DailyHabitLogRow.log_date <= end,
                )
                .order_by(DailyHabitLogRow.log_date)
                .all()
            )
            return [
                DailyHabitLog(
                    user_id=r.user_id,
                    date=r.log_date,
                    total_weight=r.total_weight,
                    action_count=r.action_count,
                    is_valid_day=r.is_valid_day,
                    highest_action=ActionType(r.highest_action) if r.highest_action else None,
                )
                for r in rows
            ]


_HEALTH_FIELDS = (
    "ring_position", "strength_changed_at", "days_since_action", "decay_started_at",
    "last_action_date", "pending_action_since", "last_nudge_level", "last_nudge_at",
    "total_actions_logged", "total_weight_accumulated", "recovery_count", "last_recovered_at",
)


def _to_health(row: ConnectionHealthRow) -> ConnectionHealth:
    health = ConnectionHealth(
        connection_id=row.connection_id,
        user_id=row.user_id,
        ring_tier=RingTier(row.ring_tier),
        current_strength=RelationshipStrength(row.current_strength),
        previous_strength=RelationshipStrength(row.previous_strength) if row.previous_strength else None,
        last_action_type=map_legacy_action_type(row.last_action_type) if row.last_action_type else None,
        lifecycle_state=LifecycleState(row.lifecycle_state),
    )
    for name in _HEALTH_FIELDS:
        setattr(health, name, _aware(getattr(row, name)))
    return health


class SqlConnectionHealthRepository(_SqlRepository):
    def get(self, connection_id: str) -> Optional[ConnectionHealth]:
        with self.session_factory() as session:
            row = (
                session.query(ConnectionHealthRow)
                .filter(ConnectionHealthRow.connection_id == connection_id)
                .first()
            )
            return _to_health(row) if row else None

    def list_for_user(self, user_id: str) -> List[ConnectionHealth]:
        with self.session_factory() as session:
            rows = (
                session.query(ConnectionHealthRow)
                .filter(ConnectionHealthRow.user_id == user_id)
                .order_by(ConnectionHealthRow.id)
                .all()
            )
            return [_to_health(r) for r in rows]

    def save(self, health: ConnectionHealth) -> None:
        with self.session_factory() as session:
            row = (
                session.query(ConnectionHealthRow)
                .filter(ConnectionHealthRow.connection_id == health.connection_id)
                .first()
            )
            if row is None:
                row = ConnectionHealthRow(connection_id=health.connection_id, user_id=health.user_id)
                session.add(row)
            row.ring_tier = health.ring_tier.value
            row.current_strength = health.current_strength.value
            row.previous_strength = health.previous_strength.value if health.previous_strength else None
            row.last_action_type = health.last_action_type.value if health.last_action_type else None
            row.lifecycle_state = health.lifecycle_state.value
            for name in _HEALTH_FIELDS:
                setattr(row, name, getattr(health, name))
            session.commit()


def _to_streak(row: UserStreakRow) -> UserStreak:
    return UserStreak(
        user_id=row.user_id,
        current_streak=row.current_streak,
        longest_streak=row.longest_streak,
        last_interaction_date=row.last_interaction_date,
        streak_started_at=row.streak_started_at,
        freezes_used_this_week=row.freezes_used_this_week,
        week_freeze_reset_date=row.week_freeze_reset_date,
        valid_days_streak=row.valid_days_streak,
        longest_valid_days=row.longest_valid_days,
        last_valid_day_date=row.last_valid_day_date,
    )


class SqlUserStreakRepository(_SqlRepository):
    def get(self, user_id: str) -> Optional[UserStreak]:
        with self.session_factory() as session:
            row = session.query(UserStreakRow).filter(UserStreakRow.user_id == user_id).first()
            return _to_streak(row) if row else None

    def create(self, streak: UserStreak) -> UserStreak:
        with self.session_factory() as session:
            session.add(UserStreakRow(
                user_id=streak.user_id,
                current_streak=streak.current_streak,
                longest_streak=streak.longest_streak,
                last_interaction_date=streak.last_interaction_date,
                streak_started_at=streak.streak_started_at,
                freezes_used_this_week=streak.freezes_used_this_week,
                week_freeze_reset_date=streak.week_freeze_reset_date,
                valid_days_streak=streak.valid_days_streak,
                longest_valid_days=streak.longest_valid_days,
                last_valid_day_date=streak.last_valid_day_date,
            ))
            try:
                session.commit()
            except IntegrityError:
                # Another writer created the row first; theirs wins
                session.rollback()
                logger.debug(f"Streak row for user {streak.user_id} created concurrently")
                existing = self.get(streak.user_id)
                if existing is None:
                    raise
                return existing
        return streak

    def save_if_unchanged(
        self, streak: UserStreak, expected_last_interaction: Optional[date]
    ) -> bool:
        if expected_last_interaction is None:
            guard = UserStreakRow.last_interaction_date.is_(None)
        else:
            guard = UserStreakRow.last_interaction_date == expected_last_interaction

        with self.session_factory() as session:
            result = session.execute(
                update(UserStreakRow)
                .where(and_(UserStreakRow.user_id == streak.user_id, guard))
                .values(
                    current_streak=streak.current_streak,
                    longest_streak=streak.longest_streak,
                    last_interaction_date=streak.last_interaction_date,
                    streak_started_at=streak.streak_started_at,
                    freezes_used_this_week=streak.freezes_used_this_week,
                    week_freeze_reset_date=streak.week_freeze_reset_date,
                )
            )
            session.commit()
            return result.rowcount == 1

    def save_valid_days(
        self,
        user_id: str,
        valid_days_streak: int,
        longest_valid_days: int,
        last_valid_day_date: Optional[date],
    ) -> None:
        with self.session_factory() as session:
            session.execute(
                update(UserStreakRow)
                .where(UserStreakRow.user_id == user_id)
                .values(valid_days_streak=valid_days_streak, last_valid_day_date=last_valid_day_date)
            )
            # Longest only ever grows, whatever order writers land in
            session.execute(
                update(UserStreakRow)
                .where(UserStreakRow.user_id == user_id)
                .where(UserStreakRow.longest_valid_days < longest_valid_days)
                .values(longest_valid_days=longest_valid_days)
            )
            session.commit()


def _to_achievement(row: UserAchievementRow) -> UserAchievement:
    return UserAchievement(
        user_id=row.user_id,
        achievement_id=row.achievement_id,
        connection_id=row.connection_id,
        current_progress=row.current_progress,
        is_unlocked=row.is_unlocked,
        unlocked_at=_aware(row.unlocked_at),
    )


class SqlUserAchievementRepository(_SqlRepository):
    """Write failures surface as AchievementPersistenceError so callers can queue a retry."""

    @staticmethod
    def _key_filter(user_id: str, achievement_id: str, connection_id: Optional[str]):
        conn_clause = (
            UserAchievementRow.connection_id.is_(None)
            if connection_id is None
            else UserAchievementRow.connection_id == connection_id
        )
        return and_(
            UserAchievementRow.user_id == user_id,
            UserAchievementRow.achievement_id == achievement_id,
            conn_clause,
        )

    def find(
        self, user_id: str, achievement_id: str, connection_id: Optional[str]
    ) -> Optional[UserAchievement]:
        with self.session_factory() as session:
            row = (
                session.query(UserAchievementRow)
                .filter(self._key_filter(user_id, achievement_id, connection_id))
                .first()
            )
            return _to_achievement(row) if row else None

    def list_for_user(self, user_id: str) -> List[UserAchievement]:
        with self.session_factory() as session:
            rows = (
                session.query(UserAchievementRow)
                .filter(UserAchievementRow.user_id == user_id)
                .order_by(UserAchievementRow.id)
                .all()
            )
            return [_to_achievement(r) for r in rows]

    def insert(self, achievement: UserAchievement) -> None:
        with self.session_factory() as session:
            session.add(UserAchievementRow(
                user_id=achievement.user_id,
                achievement_id=achievement.achievement_id,
                connection_id=achievement.connection_id,
                current_progress=achievement.current_progress,
                is_unlocked=achievement.is_unlocked,
                unlocked_at=achievement.unlocked_at,
            ))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise DuplicateAchievementError(achievement.achievement_id, achievement.connection_id)
            except SQLAlchemyError as e:
                session.rollback()
                raise AchievementPersistenceError(achievement.achievement_id, str(e)) from e

    def update_progress(
        self,
        user_id: str,
        achievement_id: str,
        connection_id: Optional[str],
        progress: int,
    ) -> None:
        with self.session_factory() as session:
            try:
                session.execute(
                    update(UserAchievementRow)
                    .where(self._key_filter(user_id, achievement_id, connection_id))
                    .where(UserAchievementRow.is_unlocked.is_(False))
                    .values(current_progress=progress)
                )
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise AchievementPersistenceError(achievement_id, str(e)) from e

    def mark_unlocked(self, achievement: UserAchievement) -> bool:
        with self.session_factory() as session:
            try:
                result = session.execute(
                    update(UserAchievementRow)
                    .where(self._key_filter(
                        achievement.user_id, achievement.achievement_id, achievement.connection_id
                    ))
                    .where(UserAchievementRow.is_unlocked.is_(False))
                    .values(
                        current_progress=achievement.current_progress,
                        is_unlocked=True,
                        unlocked_at=achievement.unlocked_at,
                    )
                )
                session.commit()
                return result.rowcount == 1
            except SQLAlchemyError as e:
                session.rollback()
                raise AchievementPersistenceError(achievement.achievement_id, str(e)) from e
