"""
Async engine and transactional sessions.

One session is one unit of work: it commits when the caller finishes
without error and rolls back otherwise. PostgreSQL runs through asyncpg
with a bounded connection pool; SQLite (aiosqlite) is used for local runs
and the test suite.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def _engine_options() -> dict:
    options: dict = {"echo": settings.database_echo, "pool_pre_ping": True}
    if not settings.is_sqlite:
        options |= {
            "pool_size": settings.database_pool_size,
            "max_overflow": settings.database_max_overflow,
            "pool_recycle": 300,
            "pool_timeout": 30,
        }
    return options


engine = create_async_engine(settings.database_url_async, **_engine_options())

# Loaded rows stay usable after commit; services flush explicitly
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """
    Transactional unit of work: COMMIT when the block completes, ROLLBACK
    on any exception. Used directly by scripts and through get_session by
    the API.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
            logger.debug("Transaction committed")
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database error, transaction rolled back: {e}")
            raise
        except Exception as e:
            await session.rollback()
            logger.error(f"Error during request, transaction rolled back: {e}")
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides one transactional session per request.

    A release status update and its notification fan-out, or a usage event
    and its dedup check, therefore commit or roll back together.
    """
    async with session_scope() as session:
        yield session


async def init_db() -> None:
    """Create missing tables (development and local SQLite runs)."""
    from ..models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
