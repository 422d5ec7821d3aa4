from sqlalchemy import Column, Integer, Boolean, CheckConstraint, Date, DateTime, ForeignKey, Text, String, Index, UniqueConstraint, text
from sqlalchemy.sql import func
from core.database import Base
import uuid


def _uuid() -> str:
    return str(uuid.uuid4())


# Ids are stored as 36-char strings so the same schema runs on Postgres and SQLite.


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    display_name = Column(Text, nullable=True)


class ConnectionRow(Base):
    __tablename__ = "connections"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    # daily | weekly | biweekly | monthly | quarterly | biannually | annually; anything else reads as monthly
    catchup_frequency = Column(Text, nullable=True)
    last_interaction_date = Column(Date, nullable=True)
    next_catchup_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class ActionRow(Base):
    __tablename__ = "actions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    connection_id = Column(String(36), ForeignKey("connections.id", ondelete="SET NULL"), nullable=True)
    action_type = Column(Text, nullable=False)  # text | call | in_person (legacy names mapped on read)
    action_weight = Column(Integer, nullable=False)
    action_date = Column(Date, nullable=False)
    memory_note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_actions_user_date", "user_id", "action_date"),
        Index("ix_actions_connection_id", "connection_id"),
        CheckConstraint("action_weight IN (1, 3, 6)", name="ck_actions_weight"),
    )


class DailyHabitLogRow(Base):
    __tablename__ = "daily_habit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    log_date = Column(Date, nullable=False)
    total_weight = Column(Integer, nullable=False, default=0)
    action_count = Column(Integer, nullable=False, default=0)
    is_valid_day = Column(Boolean, nullable=False, default=False)
    highest_action = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "log_date", name="uq_daily_habit_log_user_date"),
    )


class ConnectionHealthRow(Base):
    __tablename__ = "connection_health"

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(String(36), ForeignKey("connections.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    ring_tier = Column(Text, nullable=False, default="outer")  # core | outer
    ring_position = Column(Integer, nullable=True)

    current_strength = Column(Text, nullable=False, default="stable")
    previous_strength = Column(Text, nullable=True)
    strength_changed_at = Column(DateTime(timezone=True), nullable=True)
    days_since_action = Column(Integer, nullable=True)
    # Stamped on first drop into thinning/decaying, cleared on recovery
    decay_started_at = Column(DateTime(timezone=True), nullable=True)

    last_action_date = Column(Date, nullable=True)
    last_action_type = Column(Text, nullable=True)

    lifecycle_state = Column(Text, nullable=False, default="active")  # active | pending_action | archived
    pending_action_since = Column(DateTime(timezone=True), nullable=True)

    last_nudge_level = Column(Integer, nullable=False, default=0)
    last_nudge_at = Column(DateTime(timezone=True), nullable=True)

    total_actions_logged = Column(Integer, nullable=False, default=0)
    total_weight_accumulated = Column(Integer, nullable=False, default=0)

    recovery_count = Column(Integer, nullable=False, default=0)
    last_recovered_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("connection_id", name="uq_connection_health_connection"),
    )


class UserStreakRow(Base):
    __tablename__ = "user_streaks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    current_streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    last_interaction_date = Column(Date, nullable=True)
    streak_started_at = Column(Date, nullable=True)
    freezes_used_this_week = Column(Integer, nullable=False, default=0)
    week_freeze_reset_date = Column(Date, nullable=True)
    valid_days_streak = Column(Integer, nullable=False, default=0)
    longest_valid_days = Column(Integer, nullable=False, default=0)
    last_valid_day_date = Column(Date, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_user_streaks_user"),
        CheckConstraint("current_streak <= longest_streak", name="ck_user_streaks_longest"),
    )


class UserAchievementRow(Base):
    __tablename__ = "user_achievements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    achievement_id = Column(Text, nullable=False)
    # Set only for per-contact badges
    connection_id = Column(String(36), ForeignKey("connections.id", ondelete="CASCADE"), nullable=True)
    current_progress = Column(Integer, nullable=False, default=0)
    is_unlocked = Column(Boolean, nullable=False, default=False)
    unlocked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # NULL connection_id never collides in a plain unique index, so global
    # badges get their own partial one.
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", "connection_id", name="uq_user_achievements_key"),
        Index(
            "uq_user_achievements_global",
            "user_id",
            "achievement_id",
            unique=True,
            sqlite_where=text("connection_id IS NULL"),
            postgresql_where=text("connection_id IS NULL"),
        ),
        Index("ix_user_achievements_unlocked", "user_id", "is_unlocked"),
    )
