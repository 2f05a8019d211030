"""
RepoChat Database Layer

Lazily created asyncpg engine and session factory.

Two kinds of session draw from the same pool:
    - request sessions, yielded by the ``get_db`` FastAPI dependency
    - ingestion sessions, opened by the orchestrator from
      ``get_session_factory()`` so a run can outlive its HTTP request

Connections are pre-pinged: ingestion runs are long and a pooled
connection may have been dropped by the server in the meantime.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from repochat.core.config import settings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """The process-wide engine, created on first call."""
    global _engine  # noqa: PLW0603
    if _engine is None:
        _engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
        logger.info(
            "Database engine created: %s@%s:%s/%s (pool=%d+%d)",
            settings.POSTGRES_USER,
            settings.POSTGRES_HOST,
            settings.POSTGRES_PORT,
            settings.POSTGRES_DB,
            settings.DB_POOL_SIZE,
            settings.DB_MAX_OVERFLOW,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Session maker bound to the engine.

    ``expire_on_commit=False``: records returned by the stores stay
    readable after their write committed.
    """
    global _session_factory  # noqa: PLW0603
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session for ``Depends(get_db)``."""
    async with get_session_factory()() as session:
        yield session


async def dispose_engine() -> None:
    """Close pooled connections; the next ``get_engine()`` starts fresh."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Database engine disposed")
