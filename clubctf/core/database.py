"""
ClubCTF Engine - Database Configuration
Async SQLAlchemy setup (PostgreSQL in production, SQLite for local runs and tests)
"""

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from clubctf.core.config import get_settings
from clubctf.core.exceptions import EngineError, TransientFailure
from clubctf.models.base import Base

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, applying pool sizing only where the driver supports it."""
    settings = get_settings()
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo, connect_args={"timeout": 30})
    return create_async_engine(
        url,
        echo=echo,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory shared by the app and the tests."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(url: str | None = None) -> None:
    """
    Initialize the engine and create all tables.
    Should be called during application startup.
    """
    global _engine, _session_factory
    settings = get_settings()
    _engine = build_engine(url or settings.database_url, echo=settings.database_echo)
    _session_factory = build_session_factory(_engine)
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """
    Close database connections.
    Should be called during application shutdown.
    """
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions.

    Services own their transactions, so the session is only closed here.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    async with _session_factory() as session:
        yield session


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a unit of work as one transaction.

    Commits on success. Storage errors roll back and surface as
    TransientFailure; anything else rolls back and propagates unchanged.
    A rollback expires every instance loaded in the session, so work that
    must survive an expected conflict belongs in a savepoint.
    """
    try:
        yield session
        await session.commit()
    except EngineError:
        await session.rollback()
        raise
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("Storage error, transaction rolled back: %s", exc)
        raise TransientFailure() from exc
    except Exception:
        await session.rollback()
        raise
