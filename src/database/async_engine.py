"""Async database engine with connection pooling.

Provides async SQLAlchemy engine configuration for PostgreSQL (production)
and SQLite (development and tests), plus session management.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool
from sqlalchemy import event, text

from config.database import DatabaseSettings, get_database_settings

logger = logging.getLogger(__name__)


# Global engine instance (lazy initialization)
_async_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def create_engine(settings: Optional[DatabaseSettings] = None) -> AsyncEngine:
    """
    Create an async SQLAlchemy engine with connection pooling.

    Args:
        settings: Database settings. If None, loads from environment.

    Returns:
        AsyncEngine: Configured async engine instance.
    """
    settings = settings or get_database_settings()

    logger.info(
        "Creating async database engine",
        extra={
            "driver": settings.driver,
            "database": settings.name if settings.is_postgres else str(settings.sqlite_path),
        }
    )

    if settings.is_sqlite:
        pool_class = NullPool
        pool_kwargs = {}
    else:
        pool_class = AsyncAdaptedQueuePool
        pool_kwargs = {
            "pool_size": settings.pool_size,
            "max_overflow": settings.max_overflow,
            "pool_timeout": settings.pool_timeout,
            "pool_recycle": settings.pool_recycle,
            "pool_pre_ping": settings.pool_pre_ping,
        }

    engine = create_async_engine(
        settings.async_url,
        echo=settings.echo_sql,
        poolclass=pool_class,
        connect_args=settings.get_connect_args(),
        **pool_kwargs,
    )

    _setup_engine_events(engine, settings)

    return engine


def _setup_engine_events(engine: AsyncEngine, settings: DatabaseSettings) -> None:
    """
    Set up SQLAlchemy engine event listeners.

    Args:
        engine: The async engine instance.
        settings: Database settings.
    """
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        logger.debug("Database connection established")

        if settings.is_sqlite:
            cursor = dbapi_connection.cursor()
            # WAL mode lets the dashboard read while workers write
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()


def get_session_factory(
    engine: Optional[AsyncEngine] = None,
    settings: Optional[DatabaseSettings] = None
) -> async_sessionmaker[AsyncSession]:
    """
    Create an async session factory.

    Args:
        engine: Optional engine instance.
        settings: Optional database settings.

    Returns:
        async_sessionmaker: Factory for creating async sessions.
    """
    engine = engine or get_async_engine(settings)

    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_async_engine(settings: Optional[DatabaseSettings] = None) -> AsyncEngine:
    """
    Get or create the global async engine instance.

    Args:
        settings: Optional database settings.

    Returns:
        AsyncEngine: The global async engine instance.
    """
    global _async_engine

    if _async_engine is None:
        _async_engine = create_engine(settings)

    return _async_engine


def get_async_session_factory(
    settings: Optional[DatabaseSettings] = None
) -> async_sessionmaker[AsyncSession]:
    """
    Get or create the global async session factory.

    Args:
        settings: Optional database settings.

    Returns:
        async_sessionmaker: The global session factory.
    """
    global _async_session_factory

    if _async_session_factory is None:
        _async_session_factory = get_session_factory(get_async_engine(settings))

    return _async_session_factory


@asynccontextmanager
async def get_async_session(
    settings: Optional[DatabaseSettings] = None
) -> AsyncGenerator[AsyncSession, None]:
    """
    Get an async database session as a context manager.

    Usage:
        async with get_async_session() as session:
            result = await session.execute(query)

    Args:
        settings: Optional database settings.

    Yields:
        AsyncSession: Database session that auto-commits/rollbacks.
    """
    session_factory = get_async_session_factory(settings)
    session = session_factory()

    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def check_database_connection(
    settings: Optional[DatabaseSettings] = None
) -> bool:
    """
    Check if the database is accessible.

    Returns:
        bool: True if database is accessible, False otherwise.
    """
    try:
        engine = get_async_engine(settings)
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection check passed")
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False


async def init_database(
    settings: Optional[DatabaseSettings] = None,
    engine: Optional[AsyncEngine] = None,
) -> None:
    """
    Create the class event table and its indexes if they do not exist.

    Args:
        settings: Optional database settings.
        engine: Engine to use instead of the global one.
    """
    engine = engine or get_async_engine(settings)

    from database.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database schema initialized")


async def close_database() -> None:
    """
    Close the database engine and cleanup connections.

    Should be called during worker shutdown.
    """
    global _async_engine, _async_session_factory

    if _async_engine is not None:
        logger.info("Closing database engine")
        await _async_engine.dispose()
        _async_engine = None
        _async_session_factory = None
        logger.info("Database engine closed")
