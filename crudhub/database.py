import asyncio
import time
from typing import Any, Mapping, Sequence

from sqlalchemy import event, text
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from crudhub.core.config import Settings
from crudhub.core.logging_config import get_logger
from crudhub.core.metrics import MetricsRegistry
from crudhub.operations import (
    DATABASE_UNAVAILABLE,
    DatabaseOperation,
    Failure,
    QueryResult,
    Success,
)

logger = get_logger(__name__, target="postgresql")

# Failures the envelope turns into a Failure result instead of raising
DATABASE_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)


def create_engine(settings: Settings, **overrides: Any) -> AsyncEngine:
    """Build the async engine; acquisition waits at most db_pool_timeout."""
    url = settings.sqlalchemy_url
    options: dict[str, Any] = {
        "echo": False,
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_timeout": settings.db_pool_timeout,
    }
    if url.startswith("postgresql+asyncpg"):
        options["connect_args"] = {"timeout": settings.db_connect_timeout}
    options.update(overrides)
    return create_async_engine(url, **options)


class PoolMetricsHooks:
    """
    Keeps database_connections_active equal to the number of open physical
    connections in the pool.

    Hooks can be attached to an engine before metrics exist; until bind() is
    called the events are ignored.
    """

    def __init__(self, metrics: MetricsRegistry | None = None, host: str | None = None):
        self.metrics = metrics
        self.host = host

    def bind(self, metrics: MetricsRegistry) -> None:
        self.metrics = metrics

    def attach(self, engine: AsyncEngine) -> None:
        target = engine.sync_engine
        event.listen(target, "connect", self._on_connect)
        event.listen(target, "close", self._on_close)
        event.listen(target, "close_detached", self._on_close_detached)

    def detach(self, engine: AsyncEngine) -> None:
        target = engine.sync_engine
        for name, fn in (
            ("connect", self._on_connect),
            ("close", self._on_close),
            ("close_detached", self._on_close_detached),
        ):
            if event.contains(target, name, fn):
                event.remove(target, name, fn)

    def on_connect(self) -> None:
        if self.metrics is None:
            return
        self.metrics.database_connections_active.inc()
        logger.info("Database connection established", host=self.host)

    def on_remove(self) -> None:
        if self.metrics is None:
            return
        self.metrics.database_connections_active.dec()
        logger.info("Database connection removed", host=self.host)

    # SQLAlchemy listener signatures
    def _on_connect(self, dbapi_connection, connection_record):
        self.on_connect()

    def _on_close(self, dbapi_connection, connection_record):
        self.on_remove()

    def _on_close_detached(self, dbapi_connection):
        self.on_remove()


class QueryExecutor:
    """
    The envelope every database call goes through.

    One call means one pooled connection, one duration observation and one
    success-or-error count, whatever happens in between.
    """

    def __init__(self, engine: AsyncEngine, metrics: MetricsRegistry):
        self.engine = engine
        self.metrics = metrics

    async def execute(
        self,
        operation: DatabaseOperation,
        statement: str,
        params: Mapping[str, Any] | None = None,
    ) -> QueryResult[Sequence[RowMapping]]:
        """
        Run one parameterized statement.

        Args:
            operation: label used for metrics, logs and the failure message
            statement: SQL text with ``:name`` placeholders
            params: bound parameter values

        Returns:
            Success with the returned rows (empty for no match), or Failure
        """
        started = time.perf_counter()
        logger.info("Calling database", query=str(operation))

        acquired = False
        try:
            async with self.engine.connect() as conn:
                acquired = True
                result = await conn.execute(text(statement), dict(params or {}))
                rows = result.mappings().all() if result.returns_rows else []
                await conn.commit()
        except DATABASE_ERRORS as e:
            self.metrics.observe_query(
                str(operation), "error", time.perf_counter() - started
            )
            detail = str(e) or type(e).__name__
            logger.error("Database query failed", query=str(operation), error=detail)
            message = operation.failure_message if acquired else DATABASE_UNAVAILABLE
            return Failure(message=message, error_detail=detail)

        self.metrics.observe_query(
            str(operation), "success", time.perf_counter() - started
        )
        return Success(rows)

    async def ping(self) -> None:
        """Round-trip ``SELECT 1``; raises on failure."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def dispose(self) -> None:
        await self.engine.dispose()
