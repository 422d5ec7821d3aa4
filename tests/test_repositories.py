"""
Tests for the SQLAlchemy repositories

Round-trips between engine records and rows, plus the guarantees the
services lean on: conditional streak writes and unique achievement keys.
"""
import pytest
from datetime import date, datetime, timezone

from core.exceptions import DuplicateAchievementError
from models import ActionRow
from services.engagement_types import (
    Action,
    ActionType,
    ConnectionHealth,
    DailyHabitLog,
    LifecycleState,
    RelationshipStrength,
    UserAchievement,
    UserStreak,
)

DAY = date(2025, 3, 3)
NOW = datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc)


class TestUsersAndConnections:

    def test_user_exists(self, repos, test_user):
        assert repos.users.exists(test_user)
        assert not repos.users.exists("nobody")

    def test_connection_round_trip(self, repos, test_user, make_connection):
        connection_id = make_connection(test_user, name="Priya", catchup_frequency="monthly")

        connection = repos.connections.get(connection_id)

        assert connection.name == "Priya"
        assert connection.catchup_frequency == "monthly"
        assert [c.id for c in repos.connections.list_for_user(test_user)] == [connection_id]
        assert repos.connections.get("missing") is None


class TestActions:

    def test_add_and_list(self, repos, test_user, make_connection):
        connection_id = make_connection(test_user)
        repos.actions.add(Action("a1", test_user, connection_id, ActionType.CALL, DAY, note="Talked about the move"))
        repos.actions.add(Action("a2", test_user, connection_id, ActionType.TEXT, date(2025, 3, 10)))

        listed = repos.actions.list_between(test_user, DAY, DAY)

        assert len(listed) == 1
        assert listed[0].weight == 3
        assert listed[0].note == "Talked about the move"
        assert len(repos.actions.list_for_connection(connection_id)) == 2

    def test_connection_last_interaction_only_moves_forward(self, repos, test_user, make_connection):
        connection_id = make_connection(test_user)
        repos.actions.add(Action("a1", test_user, connection_id, ActionType.TEXT, date(2025, 3, 10)))
        repos.actions.add(Action("a2", test_user, connection_id, ActionType.TEXT, DAY))

        assert repos.connections.get(connection_id).last_interaction_date == date(2025, 3, 10)

    def test_legacy_type_names_read_back(self, repos, session_factory, test_user):
        with session_factory() as session:
            session.add(ActionRow(id="legacy", user_id=test_user, action_type="in_person_1on1",
                                  action_weight=6, action_date=DAY))
            session.commit()

        (action,) = repos.actions.list_between(test_user, DAY, DAY)
        assert action.type == ActionType.IN_PERSON


class TestDailyLogs:

    def test_upsert_replaces_same_day(self, repos, test_user):
        repos.daily_logs.upsert(DailyHabitLog(test_user, DAY, 1, 1, True, ActionType.TEXT))
        repos.daily_logs.upsert(DailyHabitLog(test_user, DAY, 4, 2, True, ActionType.CALL))

        (log,) = repos.daily_logs.list_between(test_user, DAY, DAY)
        assert log.total_weight == 4
        assert log.highest_action == ActionType.CALL


class TestConnectionHealth:

    def test_round_trip(self, repos, test_user, make_connection):
        connection_id = make_connection(test_user)
        health = ConnectionHealth(
            connection_id=connection_id,
            user_id=test_user,
            current_strength=RelationshipStrength.THINNING,
            previous_strength=RelationshipStrength.STABLE,
            decay_started_at=NOW,
            last_action_date=DAY,
            last_action_type=ActionType.CALL,
            lifecycle_state=LifecycleState.ACTIVE,
            total_actions_logged=3,
            recovery_count=1,
        )

        repos.healths.save(health)
        repos.healths.save(health)

        assert repos.healths.get(connection_id) == health
        assert len(repos.healths.list_for_user(test_user)) == 1


class TestStreaks:

    def test_create_is_idempotent(self, repos, test_user):
        first = repos.streaks.create(UserStreak(user_id=test_user, week_freeze_reset_date=DAY))
        second = repos.streaks.create(UserStreak(user_id=test_user, current_streak=0))

        assert first.week_freeze_reset_date == DAY
        assert second.week_freeze_reset_date == DAY

    def test_conditional_save(self, repos, test_user):
        repos.streaks.create(UserStreak(user_id=test_user))
        moved = UserStreak(user_id=test_user, current_streak=1, longest_streak=1, last_interaction_date=DAY)

        assert repos.streaks.save_if_unchanged(moved, None)
        assert not repos.streaks.save_if_unchanged(moved, None)
        assert repos.streaks.get(test_user).last_interaction_date == DAY


class TestAchievements:

    def test_duplicate_per_contact_insert_rejected(self, repos, test_user, make_connection):
        connection_id = make_connection(test_user)
        row = UserAchievement(test_user, "on_track", connection_id, 3, True, NOW)
        repos.achievements.insert(row)

        with pytest.raises(DuplicateAchievementError):
            repos.achievements.insert(row)

    def test_progress_never_touches_unlocked_rows(self, repos, test_user):
        repos.achievements.insert(UserAchievement(test_user, "week_warrior", None, 7, True, NOW))

        repos.achievements.update_progress(test_user, "week_warrior", None, 2)

        assert repos.achievements.find(test_user, "week_warrior", None).current_progress == 7

    def test_mark_unlocked(self, repos, test_user):
        repos.achievements.insert(UserAchievement(test_user, "quality_time", None, 4))
        repos.achievements.mark_unlocked(UserAchievement(test_user, "quality_time", None, 5, True, NOW))

        stored = repos.achievements.find(test_user, "quality_time", None)
        assert stored.is_unlocked
        assert stored.current_progress == 5
        assert stored.unlocked_at == NOW

    def test_duplicate_global_insert_rejected(self, repos, test_user):
        row = UserAchievement(test_user, "week_warrior", None, 7, True, NOW)
        repos.achievements.insert(row)

        with pytest.raises(DuplicateAchievementError):
            repos.achievements.insert(row)
        assert len(repos.achievements.list_for_user(test_user)) == 1

    def test_same_global_badge_for_different_users(self, repos, test_user, session_factory):
        from models import User
        with session_factory() as session:
            session.add(User(id="second-user"))
            session.commit()

        repos.achievements.insert(UserAchievement(test_user, "week_warrior", None, 7, True, NOW))
        repos.achievements.insert(UserAchievement("second-user", "week_warrior", None, 7, True, NOW))

        assert repos.achievements.find("second-user", "week_warrior", None).is_unlocked

    def test_mark_unlocked_only_once(self, repos, test_user):
        repos.achievements.insert(UserAchievement(test_user, "quality_time", None, 4))
        unlocked = UserAchievement(test_user, "quality_time", None, 5, True, NOW)

        assert repos.achievements.mark_unlocked(unlocked)
        assert not repos.achievements.mark_unlocked(unlocked)


class TestValidDaysColumns:

    def test_save_valid_days_keeps_interaction_streak(self, repos, test_user):
        repos.streaks.create(UserStreak(user_id=test_user, current_streak=2, longest_streak=4,
                                        last_interaction_date=DAY))

        repos.streaks.save_valid_days(test_user, 3, 3, DAY)

        stored = repos.streaks.get(test_user)
        assert (stored.valid_days_streak, stored.longest_valid_days, stored.last_valid_day_date) == (3, 3, DAY)
        assert (stored.current_streak, stored.longest_streak) == (2, 4)

    def test_longest_valid_days_never_drops(self, repos, test_user):
        repos.streaks.create(UserStreak(user_id=test_user))
        repos.streaks.save_valid_days(test_user, 5, 5, DAY)

        repos.streaks.save_valid_days(test_user, 1, 2, DAY)

        stored = repos.streaks.get(test_user)
        assert stored.valid_days_streak == 1
        assert stored.longest_valid_days == 5
