"""
Database connection management for the storage adapter.

The engine itself never touches the database; only repositories.py does,
through the session factory built here.
"""
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)

Base = declarative_base()

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def build_engine(database_url: Optional[str] = None) -> Engine:
    """Create an engine; pooled for server databases, single shared connection for in-memory SQLite."""
    url = database_url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=settings.DB_ECHO, **kwargs)
    else:
        engine = create_engine(
            url,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=settings.DB_POOL_RECYCLE,
            pool_pre_ping=True,  # Verify connections before using
            echo=settings.DB_ECHO,
        )

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        logger.debug("New database connection established")

    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        expire_on_commit=False,  # Prevent lazy loading issues
    )


def get_session_factory() -> sessionmaker:
    """Lazily build the process-wide session factory from settings."""
    global _engine, _session_factory
    if _session_factory is None:
        _engine = build_engine()
        _session_factory = build_session_factory(_engine)
    return _session_factory


def init_db(engine: Optional[Engine] = None) -> None:
    """Create all engine tables (idempotent)."""
    import models  # noqa: F401  registers tables on Base.metadata

    target = engine or _engine
    if target is None:
        get_session_factory()
        target = _engine
    Base.metadata.create_all(bind=target)
    logger.info("Engagement tables ensured")
