"""
End-to-end tests for the Engagement Engine over the SQL repositories
"""
import pytest
from datetime import date, datetime, time, timedelta, timezone

from core.exceptions import ConnectionNotFoundError, InvalidUserError
from services.engagement_engine import EngagementEngine
from services.engagement_types import (
    ActionType,
    CALL_TO_IN_PERSON_MESSAGE,
    RelationshipStrength,
)
from services.streak_engine import StreakOutcome

MON = date(2025, 3, 3)


def _noon(d):
    return datetime.combine(d, time(12, 0), tzinfo=timezone.utc)


@pytest.fixture
def engine(repos):
    return EngagementEngine(
        users=repos.users,
        connections=repos.connections,
        actions=repos.actions,
        daily_logs=repos.daily_logs,
        healths=repos.healths,
        streaks=repos.streaks,
        achievements=repos.achievements,
    )


class TestLogAction:

    def test_first_action_flows_through_every_component(self, engine, repos, test_user, make_connection):
        connection_id = make_connection(test_user, catchup_frequency="weekly")

        outcome = engine.log_action(test_user, connection_id, ActionType.CALL, MON, now=_noon(MON))

        assert outcome.action.weight == 3
        assert outcome.daily_log.total_weight == 3
        assert outcome.daily_log.is_valid_day
        assert outcome.streak.outcome == StreakOutcome.STARTED
        assert outcome.health.current == RelationshipStrength.FLOURISHING
        assert outcome.achievements.newly_unlocked == []
        assert outcome.escalation_message == CALL_TO_IN_PERSON_MESSAGE

        stored = repos.healths.get(connection_id)
        assert stored.total_actions_logged == 1
        assert stored.last_action_type == ActionType.CALL
        assert repos.streaks.get(test_user).current_streak == 1

    def test_same_day_actions_accumulate(self, engine, repos, test_user, make_connection):
        connection_id = make_connection(test_user)
        engine.log_action(test_user, connection_id, "text", MON, now=_noon(MON))
        outcome = engine.log_action(test_user, connection_id, "call", MON, now=_noon(MON))

        assert outcome.daily_log.total_weight == 4
        assert outcome.daily_log.highest_action == ActionType.CALL
        assert outcome.streak.outcome == StreakOutcome.SAME_DAY
        assert repos.streaks.get(test_user).current_streak == 1

    def test_week_warrior_unlocks_once(self, engine, repos, test_user, make_connection):
        connection_id = make_connection(test_user, catchup_frequency="daily")
        unlocked = []
        for offset in range(8):
            day = MON + timedelta(days=offset)
            outcome = engine.log_action(test_user, connection_id, ActionType.TEXT, day, now=_noon(day))
            unlocked.append([a.id for a in outcome.achievements.newly_unlocked])

        assert "week_warrior" in unlocked[6]
        assert all("week_warrior" not in ids for i, ids in enumerate(unlocked) if i != 6)
        assert repos.achievements.find(test_user, "week_warrior", None).is_unlocked

    def test_backdated_action_does_not_rewrite_streak(self, engine, repos, test_user, make_connection):
        connection_id = make_connection(test_user)
        engine.log_action(test_user, connection_id, ActionType.TEXT, MON + timedelta(days=1),
                          now=_noon(MON + timedelta(days=1)))

        outcome = engine.log_action(test_user, connection_id, ActionType.TEXT, MON,
                                    now=_noon(MON + timedelta(days=1)))

        assert outcome.streak.outcome == StreakOutcome.OUT_OF_ORDER
        assert repos.streaks.get(test_user).last_interaction_date == MON + timedelta(days=1)

    def test_unknown_user(self, engine, test_user, make_connection):
        connection_id = make_connection(test_user)
        with pytest.raises(InvalidUserError):
            engine.log_action("ghost", connection_id, ActionType.TEXT, MON)

    def test_connection_must_belong_to_user(self, engine, session_factory, test_user, make_connection):
        from models import User
        with session_factory() as session:
            session.add(User(id="other-user"))
            session.commit()
        foreign = make_connection("other-user")

        with pytest.raises(ConnectionNotFoundError):
            engine.log_action(test_user, foreign, ActionType.TEXT, MON)
        with pytest.raises(ConnectionNotFoundError):
            engine.log_action(test_user, "missing", ActionType.TEXT, MON)


class TestDecayAndRecovery:

    def test_refresh_then_recovery_unlocks_second_chance(self, engine, repos, test_user, make_connection):
        connection_id = make_connection(test_user, catchup_frequency="weekly")
        engine.log_action(test_user, connection_id, ActionType.TEXT, MON, now=_noon(MON))

        later = MON + timedelta(days=20)
        (refresh,) = engine.refresh_connection_health(test_user, now=_noon(later))
        assert refresh.current == RelationshipStrength.DECAYING
        assert repos.healths.get(connection_id).decay_started_at == _noon(later)

        outcome = engine.log_action(test_user, connection_id, ActionType.IN_PERSON, later, now=_noon(later))

        assert outcome.health.recovered
        assert repos.healths.get(connection_id).decay_started_at is None
        assert "second_chance" in [a.id for a in outcome.achievements.newly_unlocked]

    def test_never_contacted_connection_refreshes_to_stable(self, engine, test_user, make_connection):
        make_connection(test_user)
        (refresh,) = engine.refresh_connection_health(test_user, now=_noon(MON))
        assert refresh.current == RelationshipStrength.STABLE
        assert not refresh.changed


class TestReadPaths:

    def test_weekly_review(self, engine, test_user, make_connection):
        close = make_connection(test_user, name="Jo", catchup_frequency="weekly")
        make_connection(test_user, name="Alex", catchup_frequency="weekly",
                        last_interaction_date=MON - timedelta(days=30))
        for offset in (0, 1, 2):
            day = MON + timedelta(days=offset)
            engine.log_action(test_user, close, ActionType.TEXT, day, now=_noon(day))

        review = engine.weekly_review(test_user, MON + timedelta(days=6))

        assert review.pattern.valid_days == 3
        assert review.pattern.depth_score == 0
        assert review.suggestions[0].target_connection_name == "Alex"
        assert review.suggestions[0].priority == "high"

    def test_ring_for(self, engine, test_user, make_connection):
        connection_id = make_connection(test_user, name="Jo", catchup_frequency="weekly")
        engine.log_action(test_user, connection_id, ActionType.CALL, MON, now=_noon(MON))

        connection, ring = engine.ring_for(test_user, connection_id, now=_noon(MON))

        assert connection.name == "Jo"
        assert ring.status_label == "Flourishing"
        assert ring.fill_percent == 100
        assert not ring.should_pulse


class TestValidDaysRun:

    def _log(self, engine, user_id, connection_id, day, now_day=None):
        return engine.log_action(user_id, connection_id, ActionType.TEXT, day, now=_noon(now_day or day))

    def test_run_grows_and_is_stored(self, engine, repos, test_user, make_connection):
        connection_id = make_connection(test_user)
        for offset in range(3):
            outcome = self._log(engine, test_user, connection_id, MON + timedelta(days=offset))

        assert outcome.valid_days.valid_days_streak == 3
        assert outcome.valid_days.longest_valid_days == 3
        assert outcome.valid_days.weekly_valid_days == 3
        stored = repos.streaks.get(test_user)
        assert stored.valid_days_streak == 3
        assert stored.last_valid_day_date == MON + timedelta(days=2)

    def test_gap_restarts_run_but_keeps_longest(self, engine, repos, test_user, make_connection):
        connection_id = make_connection(test_user)
        for offset in range(3):
            self._log(engine, test_user, connection_id, MON + timedelta(days=offset))

        outcome = self._log(engine, test_user, connection_id, MON + timedelta(days=5))

        assert outcome.valid_days.valid_days_streak == 1
        assert outcome.valid_days.longest_valid_days == 3
        assert repos.streaks.get(test_user).longest_valid_days == 3

    def test_backdated_day_joins_the_run(self, engine, test_user, make_connection):
        connection_id = make_connection(test_user)
        self._log(engine, test_user, connection_id, MON)
        self._log(engine, test_user, connection_id, MON + timedelta(days=2))

        outcome = self._log(engine, test_user, connection_id, MON + timedelta(days=1),
                            now_day=MON + timedelta(days=2))

        assert outcome.valid_days.valid_days_streak == 3

    def test_read_only_summary(self, engine, repos, test_user, make_connection):
        connection_id = make_connection(test_user)
        self._log(engine, test_user, connection_id, MON)

        summary = engine.valid_days_summary(test_user, MON + timedelta(days=1))

        assert summary.valid_days_streak == 1
        assert summary.last_valid_date == MON


class TestBootstrap:

    def test_engine_over_given_session_factory(self, session_factory, test_user, make_connection):
        import logging
        from bootstrap import create_engagement_engine

        root = logging.getLogger()
        saved = list(root.handlers), root.level
        try:
            built = create_engagement_engine(session_factory)
            assert len(root.handlers) == 1
        finally:
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])

        connection_id = make_connection(test_user)
        outcome = built.log_action(test_user, connection_id, ActionType.CALL, MON, now=_noon(MON))
        assert outcome.daily_log.total_weight == 3
