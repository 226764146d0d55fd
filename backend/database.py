"""
Database configuration and connection management.

This module sets up SQLAlchemy with async SQLite support (aiosqlite) by
default and provides session management utilities.
"""

import logging

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from config import settings

# Create declarative base for models
Base = declarative_base()


def set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign keys on SQLite so tool/link rows cascade with their server."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str, **kwargs) -> AsyncEngine:
    """
    Create an async engine, registering the SQLite pragma hook when needed.

    Args:
        database_url: SQLAlchemy async URL
        **kwargs: Extra create_async_engine arguments (poolclass, ...)

    Returns:
        AsyncEngine instance
    """
    kwargs.setdefault("poolclass", NullPool)
    new_engine = create_async_engine(database_url, echo=False, future=True, **kwargs)
    if database_url.startswith("sqlite"):
        event.listen(new_engine.sync_engine, "connect", set_sqlite_pragma)
    return new_engine


# Create async engine
# SQL echo stays off; use LOG_LEVEL=DEBUG for SQLAlchemy logs if needed
engine = build_engine(settings.database_url)

# Create session maker
async_session_maker = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def create_tables(target: AsyncEngine = None):
    """Create all database tables."""
    # Import models to ensure they're registered
    import models  # noqa

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logging.info("Database tables created successfully")


async def check_database_health() -> bool:
    """
    Check if database connection is healthy.

    Returns:
        bool: True if database is accessible, False otherwise
    """
    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logging.error(f"Database health check failed: {e}")
        return False


async def close_database():
    """Dispose the engine so pending writes are flushed before exit."""
    await engine.dispose()
    logging.info("Database engine disposed")
