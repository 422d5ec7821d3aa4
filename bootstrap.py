"""
Process entry point: logging, schema and a SQL-backed EngagementEngine.

    from bootstrap import create_engagement_engine
    engine = create_engagement_engine()
"""
from typing import Optional
import logging

from sqlalchemy.orm import sessionmaker

from core.config import settings
from core.database import get_session_factory, init_db
from core.logging import setup_logging
from repositories import (
    SqlActionRepository,
    SqlConnectionHealthRepository,
    SqlConnectionRepository,
    SqlDailyHabitLogRepository,
    SqlUserAchievementRepository,
    SqlUserRepository,
    SqlUserStreakRepository,
)
from services.engagement_engine import EngagementEngine

logger = logging.getLogger(__name__)


def create_engagement_engine(
    session_factory: Optional[sessionmaker] = None,
    configure_logging: bool = True,
    create_schema: bool = False,
) -> EngagementEngine:
    if configure_logging:
        setup_logging()

    if session_factory is None:
        session_factory = get_session_factory()
        if create_schema:
            init_db()

    engine = EngagementEngine(
        users=SqlUserRepository(session_factory),
        connections=SqlConnectionRepository(session_factory),
        actions=SqlActionRepository(session_factory),
        daily_logs=SqlDailyHabitLogRepository(session_factory),
        healths=SqlConnectionHealthRepository(session_factory),
        streaks=SqlUserStreakRepository(session_factory),
        achievements=SqlUserAchievementRepository(session_factory),
    )
    logger.info(f"Engagement engine ready (environment={settings.ENVIRONMENT})")
    return engine
