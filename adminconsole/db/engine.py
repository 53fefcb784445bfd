"""Async database engine, session factory, and lifespan management.

Uses SQLAlchemy 2.0 async with asyncpg driver against the managed backend's
Postgres. Redis client for the shared rate-limit store.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import TypeVar

import redis.asyncio as aioredis
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from adminconsole.config import settings
from adminconsole.errors import UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ── Async PostgreSQL engine ──────────────────────────────────────────

engine: AsyncEngine = create_async_engine(
    settings.db.database_url,
    echo=settings.log_level == "DEBUG",
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
    pool_recycle=3600,
)

# ── Session factory ──────────────────────────────────────────────────

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for FastAPI: yields an async DB session.

    Usage:
        @router.get("/example")
        async def handler(db: AsyncSession = Depends(get_session)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Per-call timeout + bounded retry ─────────────────────────────────

# Connection-level failures only; statement errors are not retried
_TRANSIENT = (asyncio.TimeoutError, OperationalError, InterfaceError, ConnectionError)


async def run_read(db: AsyncSession, operation: str, call: Callable[[], Awaitable[T]]) -> T:
    """Run an idempotent store read with a timeout, retrying once.

    `call` must build a fresh awaitable on every invocation. Before the retry
    the session is rolled back, which discards the aborted transaction and
    releases an invalidated connection. Any failure after the retry is raised
    as UpstreamError.
    """
    timeout = settings.db.db_statement_timeout
    for attempt in (1, 2):
        try:
            return await asyncio.wait_for(call(), timeout=timeout)
        except _TRANSIENT as exc:
            if attempt == 2:
                raise UpstreamError(operation, exc) from exc
            logger.warning("Store read %s failed (%r), retrying once", operation, exc)
            try:
                await db.rollback()
            except Exception as rollback_exc:
                raise UpstreamError(operation, rollback_exc) from exc
        except UpstreamError:
            raise
        except Exception as exc:
            raise UpstreamError(operation, exc) from exc
    raise AssertionError("unreachable")


async def run_write(operation: str, call: Callable[[], Awaitable[T]]) -> T:
    """Run a store write with a timeout. Writes are never retried."""
    try:
        return await asyncio.wait_for(call(), timeout=settings.db.db_statement_timeout)
    except UpstreamError:
        raise
    except Exception as exc:
        raise UpstreamError(operation, exc) from exc


# ── Redis client ─────────────────────────────────────────────────────

redis_client: aioredis.Redis = aioredis.from_url(
    settings.db.redis_url,
    decode_responses=True,
)


# ── Lifespan helpers ─────────────────────────────────────────────────


async def close_db() -> None:
    """Dispose database engine and Redis connections.

    Called during FastAPI lifespan shutdown.
    """
    await engine.dispose()
    await redis_client.aclose()


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[None, None]:
    """Context manager for database lifecycle.

    Tables are owned by the managed backend, so startup does not create them.
    """
    try:
        yield
    finally:
        await close_db()
