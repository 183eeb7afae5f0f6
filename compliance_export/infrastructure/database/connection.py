# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Export history database connection management using SQLAlchemy async.

Uses SQLAlchemy 2.0 async API with asyncpg driver.

Example:
    from compliance_export.infrastructure.database.connection import (
        init_history_database,
        get_history_session,
    )

    # Initialize at application startup
    await init_history_database(settings)

    # Use in the history store
    async with get_history_session() as session:
        session.add(record)
"""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from compliance_export.infrastructure.database.models import Base

if TYPE_CHECKING:
    from compliance_export.core.config.settings import Settings

# Module-level state for the history database connection
_history_engine: Optional[AsyncEngine] = None
_history_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


class DatabaseError(Exception):
    """Base exception for database operations.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying SQLAlchemy or database error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


async def init_history_database(settings: "Settings", create_tables: bool = True) -> None:
    """Initialize the history database connection pool.

    Args:
        settings: Application settings containing database configuration.
        create_tables: Create the history table if it does not exist.

    Raises:
        DatabaseError: If the pool or the table cannot be created.
    """
    global _history_engine, _history_sessionmaker

    try:
        _history_engine = create_async_engine(
            settings.history_db.url,
            pool_size=settings.history_db.pool_size,
            max_overflow=settings.history_db.max_overflow,
            pool_pre_ping=True,
            pool_recycle=1800,
            echo=settings.history_db.echo,
        )

        _history_sessionmaker = async_sessionmaker(
            bind=_history_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

        if create_tables:
            async with _history_engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to initialize history database connection", e) from e


async def close_history_database() -> None:
    """Close the history database connection pool."""
    global _history_engine, _history_sessionmaker

    if _history_engine is not None:
        await _history_engine.dispose()
        _history_engine = None
        _history_sessionmaker = None


def get_history_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Get the history database sessionmaker.

    Raises:
        DatabaseError: If the database has not been initialized.
    """
    if _history_sessionmaker is None:
        raise DatabaseError(
            "History database not initialized. Call init_history_database() first."
        )
    return _history_sessionmaker


@asynccontextmanager
async def get_history_session() -> AsyncIterator[AsyncSession]:
    """Get an async session for the history database.

    The session is committed on success and rolled back on exception.

    Yields:
        AsyncSession for database operations.

    Raises:
        DatabaseError: If the database has not been initialized or
            if a database operation fails.
    """
    sessionmaker = get_history_sessionmaker()

    async with sessionmaker() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise DatabaseError("Database operation failed", e) from e
        except Exception:
            await session.rollback()
            raise


async def check_history_database_connection() -> bool:
    """Check if the history database is reachable.

    Returns:
        True if the database is reachable, False otherwise.
    """
    if _history_engine is None:
        return False

    try:
        async with _history_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False
