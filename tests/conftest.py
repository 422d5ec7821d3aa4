"""
Pytest configuration and fixtures

Every test that touches storage gets its own in-memory SQLite database.
Nothing created during one test is visible to another.
"""
import pytest
import sys
import os
from uuid import uuid4
from datetime import date

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database import Base, build_engine, build_session_factory, init_db
from models import ConnectionRow, User
from repositories import (
    SqlActionRepository,
    SqlConnectionHealthRepository,
    SqlConnectionRepository,
    SqlDailyHabitLogRepository,
    SqlUserAchievementRepository,
    SqlUserRepository,
    SqlUserStreakRepository,
)


@pytest.fixture(scope="function")
def db_engine():
    """Fresh schema per test; dropped afterwards."""
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def repos(session_factory):
    """All SQL repositories sharing one database."""
    class Repos:
        users = SqlUserRepository(session_factory)
        connections = SqlConnectionRepository(session_factory)
        actions = SqlActionRepository(session_factory)
        daily_logs = SqlDailyHabitLogRepository(session_factory)
        healths = SqlConnectionHealthRepository(session_factory)
        streaks = SqlUserStreakRepository(session_factory)
        achievements = SqlUserAchievementRepository(session_factory)

    return Repos


@pytest.fixture
def test_user(session_factory):
    """A stored user id."""
    user_id = str(uuid4())
    with session_factory() as session:
        session.add(User(id=user_id, display_name="Test User"))
        session.commit()
    return user_id


@pytest.fixture
def make_connection(session_factory):
    """Factory storing a connection for a user; returns its id."""
    def _make(user_id, name="Sam", catchup_frequency="weekly", last_interaction_date=None):
        connection_id = str(uuid4())
        with session_factory() as session:
            session.add(ConnectionRow(
                id=connection_id,
                user_id=user_id,
                name=name,
                catchup_frequency=catchup_frequency,
                last_interaction_date=last_interaction_date,
            ))
            session.commit()
        return connection_id

    return _make


@pytest.fixture
def monday():
    """A known Monday: 2025-03-03."""
    return date(2025, 3, 3)
