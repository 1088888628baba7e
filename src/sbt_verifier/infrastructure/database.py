"""Database connection and session management for the SBT Verifier."""

from typing import Generator

import structlog
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from sbt_verifier.config import settings

logger = structlog.get_logger(__name__)

# Base class for all ORM models
Base = declarative_base()

# Global engine and session factory (created on first use)
_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def create_db_engine(database_url: str | None = None) -> Engine:
    """
    Create a SQLAlchemy engine with connection pooling.

    Args:
        database_url: Connection URL. If None, uses settings.database_url

    Returns:
        Configured SQLAlchemy engine
    """
    url = database_url or settings.database_url

    logger.info("creating_database_engine", database_url=url.split("@")[-1])  # Hide credentials

    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, echo=settings.debug)

    engine = create_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,  # Verify connections before using
        pool_recycle=3600,
        echo=settings.debug,
    )

    # Session expiry is compared in SQL, so the server must agree on UTC
    @event.listens_for(engine, "connect")
    def set_postgresql_session(dbapi_conn, connection_record):  # type: ignore
        cursor = dbapi_conn.cursor()
        cursor.execute("SET timezone='UTC'")
        cursor.execute("SET statement_timeout='30000'")
        cursor.close()

    return engine


def get_engine() -> Engine:
    """Get the global engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    """Get the global session factory, creating it on first use."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _session_factory


def dispose_engine() -> None:
    """Close every pooled connection and forget the global engine."""
    global _engine, _session_factory
    if _engine is not None:
        logger.info("disposing_database_engine")
        _engine.dispose()
        _engine = None
        _session_factory = None


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency for database sessions.

    Repositories commit their own writes; this only scopes the session
    to the request.

    Yields:
        Database session
    """
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


def init_db(engine: Engine | None = None) -> None:
    """
    Create all tables.

    WARNING: This should only be used for testing. In production, use Alembic migrations.
    """
    # Register models on Base.metadata
    from sbt_verifier.infrastructure import models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())


def drop_all_tables(engine: Engine | None = None) -> None:
    """
    Drop all tables in the database.

    WARNING: This is destructive and should only be used for testing.
    """
    from sbt_verifier.infrastructure import models  # noqa: F401

    Base.metadata.drop_all(bind=engine or get_engine())
