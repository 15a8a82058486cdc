"""Database configuration and session management.

Features:
- Async SQLAlchemy with connection pooling (asyncpg)
- Slow transaction logging at WARNING
- Connection error logging with masked strings
- Transaction failure logging with rollback context
- Standalone session scopes for background pipeline work
"""

import re
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import get_settings
from app.core.logging import db_logger, get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


def to_async_url(db_url: str) -> str:
    """Rewrite a postgres:// DSN for the asyncpg driver."""
    if db_url.startswith("postgres://"):
        return db_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if db_url.startswith("postgresql://"):
        return db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return db_url


class DatabaseManager:
    """Manages database connections and sessions."""

    def __init__(self) -> None:
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init_db() first.")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call init_db() first.")
        return self._session_factory

    def init_db(self) -> None:
        """Initialize database engine and session factory."""
        settings = get_settings()
        db_url = to_async_url(str(settings.database_url))

        try:
            self._engine = create_async_engine(
                db_url,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_timeout=settings.db_pool_timeout,
                pool_pre_ping=True,
                echo=settings.debug,
                # asyncpg takes 'ssl', not libpq's 'sslmode'
                connect_args={
                    "timeout": settings.db_connect_timeout,
                    "command_timeout": settings.db_command_timeout,
                    **({"ssl": "require"} if settings.environment == "production" else {}),
                },
            )

            self._session_factory = async_sessionmaker(
                bind=self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )

            logger.info("Database engine initialized successfully")

        except Exception as e:
            db_logger.connection_error(e, db_url)
            raise

    async def close(self) -> None:
        """Close database connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connections closed")

    async def check_connection(self) -> bool:
        """Check if database connection is healthy."""
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            settings = get_settings()
            db_logger.connection_error(e, str(settings.database_url))
            return False


db_manager = DatabaseManager()


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session dependency: commit on success, rollback on error."""
    async with session_scope(context="Request session") as session:
        yield session


@asynccontextmanager
async def session_scope(
    context: str = "Background session",
) -> AsyncGenerator[AsyncSession, None]:
    """Open a session from the global factory and commit it on exit.

    Background pipeline work uses this instead of request sessions so each
    write commits independently of the HTTP request that started the run.
    """
    settings = get_settings()
    threshold_ms = settings.db_slow_query_threshold_ms

    async with db_manager.session_factory() as session:
        start_time = time.monotonic()
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            db_logger.transaction_failure(
                e,
                table=_extract_table_from_error(e),
                context=context,
            )
            raise
        finally:
            duration_ms = (time.monotonic() - start_time) * 1000
            if duration_ms > threshold_ms:
                db_logger.slow_query(query=context, duration_ms=duration_ms)


def _extract_table_from_error(error: Exception) -> str | None:
    """Try to extract table name from SQLAlchemy error."""
    error_str = str(error)
    patterns = [
        r'relation "([^"]+)"',
        r"table '([^']+)'",
        r'INSERT INTO "?([^\s"]+)"?',
        r'UPDATE "?([^\s"]+)"?',
        r'DELETE FROM "?([^\s"]+)"?',
    ]
    for pattern in patterns:
        match = re.search(pattern, error_str, re.IGNORECASE)
        if match:
            return match.group(1)
    return None
