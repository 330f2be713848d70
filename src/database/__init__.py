"""
Database layer for the notification pipeline.

Provides:
- SQLAlchemy ORM model for the class event log
- Async engine and session management
- The class event repository (event store)
"""

from .models import Base, ClassEventRecord, JSONB

from .async_engine import (
    create_engine,
    get_async_engine,
    get_async_session,
    get_async_session_factory,
    get_session_factory,
    check_database_connection,
    init_database,
    close_database,
)

__all__ = [
    # Models
    "Base",
    "ClassEventRecord",
    "JSONB",
    # Async engine
    "create_engine",
    "get_async_engine",
    "get_async_session",
    "get_async_session_factory",
    "get_session_factory",
    "check_database_connection",
    "init_database",
    "close_database",
]
