"""
Price Sweep - Database Access

Async SQLAlchemy engine plus a thin executor that retries known-transient
PostgreSQL failures (admin shutdown, too many connections, connection
failure) with backoff. Any other database error surfaces as PersistenceError
and ends the run.
"""

from __future__ import annotations

from typing import Any, Callable, Sequence

import structlog
from sqlalchemy import Row
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.sql import Executable

from pricesweep.config import Settings
from pricesweep.errors import PersistenceError
from pricesweep.pipeline.retry import RetryPolicy, jittered_linear

logger = structlog.get_logger(__name__)

# admin_shutdown, crash_shutdown, too_many_connections, connection_failure,
# connection_exception, protocol_violation
TRANSIENT_SQLSTATES = frozenset({"57P01", "57P02", "53300", "08006", "08000", "08P01"})
DB_RETRY_ATTEMPTS = 5


def sqlstate_of(error: DBAPIError) -> str | None:
    orig = error.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_transient_db_error(error: BaseException) -> bool:
    if not isinstance(error, DBAPIError):
        return False
    if error.connection_invalidated:
        return True
    return sqlstate_of(error) in TRANSIENT_SQLSTATES


def create_db_engine(config: Settings) -> AsyncEngine:
    """
    Create the async engine.

    The pool is sized above the worker count so workers never starve each
    other for connections.
    """
    pool_size = max(config.DB_POOL_SIZE, config.CONCURRENCY + 2)
    logger.info("database_engine_initializing", pool_size=pool_size)

    kwargs: dict[str, Any] = {"echo": False, "pool_pre_ping": True}
    if not config.DATABASE_URL.startswith("sqlite"):
        kwargs.update(pool_size=pool_size, max_overflow=2)
    return create_async_engine(config.DATABASE_URL, **kwargs)


class Database:
    """
    Retrying executor over an AsyncEngine.

    Each call runs in its own transaction (engine.begin()).
    """

    def __init__(self, engine: AsyncEngine, retry_policy: RetryPolicy | None = None) -> None:
        self.engine = engine
        self._retry = retry_policy or RetryPolicy(
            max_attempts=DB_RETRY_ATTEMPTS,
            backoff=jittered_linear(step=0.2, jitter=0.3),
            retryable=is_transient_db_error,
            name="database",
        )

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    async def _guarded(self, operation: Callable[[], Any]) -> Any:
        try:
            return await self._retry.run(operation)
        except SQLAlchemyError as e:
            code = sqlstate_of(e) if isinstance(e, DBAPIError) else None
            logger.error(
                "database_error",
                error=str(e).splitlines()[0] if str(e) else type(e).__name__,
                error_type=type(e).__name__,
                sqlstate=code,
            )
            raise PersistenceError(str(e)) from e

    async def execute(self, statement: Executable) -> int:
        """Execute a write; returns the affected row count."""

        async def run() -> int:
            async with self.engine.begin() as conn:
                result = await conn.execute(statement)
                return result.rowcount

        return await self._guarded(run)

    async def fetch_all(self, statement: Executable) -> Sequence[Row[Any]]:
        async def run() -> Sequence[Row[Any]]:
            async with self.engine.begin() as conn:
                result = await conn.execute(statement)
                return result.all()

        return await self._guarded(run)

    async def run_sync(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run fn(sync_connection, *args) inside a transaction (inspector work)."""

        async def run() -> Any:
            async with self.engine.begin() as conn:
                return await conn.run_sync(fn, *args)

        return await self._guarded(run)
