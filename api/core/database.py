"""Database engine, session, and pool management.

One AsyncEngine per process (created by the app lifespan or the CLI).
Sessions are unit-of-work scoped: a request, one CLI command, or one pass
of the background repair loop. Each commits once at the end, so a
check-in and the streak record it produced land together or not at all.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, NamedTuple, TypedDict

from fastapi import Depends, Request
from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import QueuePool

from core.config import get_settings
from core.logger import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    pass


class PoolStatus(NamedTuple):
    """Connection pool status for health checks."""

    pool_size: int
    checked_out: int
    overflow: int
    checked_in: int


class HealthCheckResult(TypedDict):
    """Return type for comprehensive_health_check."""

    database: bool
    pool: PoolStatus | None


def _setup_pool_event_listeners(engine: AsyncEngine) -> None:
    pool = engine.sync_engine.pool
    if not isinstance(pool, QueuePool):
        return

    @event.listens_for(pool, "checkout")
    def _on_checkout(dbapi_conn, connection_record, connection_proxy):
        overflow = pool.overflow()
        if overflow > 0:
            logger.warning(
                "db.pool.overflow",
                db_pool_checked_out=pool.checkedout(),
                db_pool_size=pool.size(),
                db_pool_overflow_count=overflow,
            )


def create_engine() -> AsyncEngine:
    settings = get_settings()

    engine = create_async_engine(
        settings.database_url,
        echo=settings.db_echo,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_pool_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        # pool_recycle handles staleness; pre-ping conflicts with asyncpg's
        # transaction state tracking
        pool_pre_ping=False,
        connect_args={
            "server_settings": {
                "statement_timeout": str(settings.db_statement_timeout_ms)
            }
        },
    )

    _setup_pool_event_listeners(engine)

    try:
        from core.telemetry import instrument_sqlalchemy_engine

        instrument_sqlalchemy_engine(engine)
    except Exception:
        logger.warning("database.observability_setup.failed", exc_info=True)

    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


async def _commit(session: AsyncSession) -> None:
    """Commit, reporting a lost connection as an unavailable store."""
    # Deferred: repositories imports models, which imports this module
    from repositories.protocols import StoreUnavailableError

    try:
        await session.commit()
    except IntegrityError:
        raise
    except (DBAPIError, TimeoutError, OSError) as e:
        logger.error("db.commit.failed", error=str(e), error_type=type(e).__name__)
        raise StoreUnavailableError(f"commit failed: {type(e).__name__}") from e


async def _rollback_quietly(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except Exception as rollback_err:
        logger.warning("db.rollback.failed", error=str(rollback_err))


@asynccontextmanager
async def session_scope(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Unit of work: commit on success, roll back and re-raise on error.

    Do NOT call commit() inside the scope; use flush() if you need
    generated IDs before the end.
    """
    async with session_maker() as session:
        try:
            yield session
            await _commit(session)
        except Exception:
            await _rollback_quietly(session)
            raise


async def get_db(request: Request) -> AsyncGenerator[AsyncSession]:
    """Request-scoped session from the app's session maker."""
    async with session_scope(request.app.state.session_maker) as session:
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db)]


async def check_db_connection(engine: AsyncEngine) -> None:
    """Verify database is reachable (30s timeout)."""
    async with asyncio.timeout(30):
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.rollback()


async def init_db(engine: AsyncEngine) -> None:
    """Verify database is reachable. Schema managed via migrations."""
    logger.info("db.connectivity.verifying")
    await check_db_connection(engine)
    logger.info("db.connectivity.verified")


async def dispose_engine(engine: AsyncEngine) -> None:
    await engine.dispose()
    logger.info("db.engine.disposed")


def get_pool_status(engine: AsyncEngine) -> PoolStatus | None:
    """Returns pool status, or None if pool is not a QueuePool."""
    pool = engine.sync_engine.pool

    if isinstance(pool, QueuePool):
        return PoolStatus(
            pool_size=pool.size(),
            checked_out=pool.checkedout(),
            overflow=pool.overflow(),
            checked_in=pool.checkedin(),
        )
    return None


async def comprehensive_health_check(engine: AsyncEngine) -> HealthCheckResult:
    """Run database connectivity and pool status checks.

    An unreachable database is reported, not raised.
    """
    database_ok = True
    try:
        await check_db_connection(engine)
    except Exception as e:
        database_ok = False
        logger.warning("db.health_check.failed", error=str(e))

    return {"database": database_ok, "pool": get_pool_status(engine)}
