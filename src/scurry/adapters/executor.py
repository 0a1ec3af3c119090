"""Parameterized SQL execution with row and time limits.

``QueryExecutor`` is the only component that touches a database.  It never
raises on SQL failure: driver errors and timeouts come back in
``QueryResult.error`` with zeroed metrics so callers (the sync engine, the
HTTP layer, the CLI) can aggregate them.

Usage:
    from scurry.adapters.executor import QueryExecutor

    executor = QueryExecutor()
    result = await executor.execute(conn, "SELECT * FROM users", limit=50)
    if result.error:
        ...
    await executor.close()
"""

import asyncio
import logging
import time
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine

from scurry.adapters.dialect import build_insert, build_multi_row_insert
from scurry.adapters.pool import PoolManager
from scurry.config.models import ConnectionDescriptor, Settings, get_settings

logger = logging.getLogger(__name__)


class QueryResult(BaseModel):
    """Outcome of one statement.

    Attributes:
        columns: Column names in result order.
        rows: Rows as column -> value dicts (raw driver values).
        row_count: Rows returned, or rows affected for writes.
        execution_time_ms: Wall time; 0 when ``error`` is set.
        error: Driver or timeout message, ``None`` on success.
        affected_rows: Rows changed by a non-SELECT statement.
        truncated: More rows were available than the applied limit.
    """

    columns: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    execution_time_ms: float = 0
    error: str | None = None
    affected_rows: int | None = None
    truncated: bool = False

    @property
    def success(self) -> bool:
        return self.error is None


class RowError(BaseModel):
    """A row that failed during a batched insert (1-based ``row``)."""

    row: int
    error: str


class BatchInsertResult(BaseModel):
    inserted_rows: int = 0
    total_rows: int = 0
    errors: list[RowError] = Field(default_factory=list)


def _error_message(exc: BaseException) -> str:
    # Driver errors carry the underlying DB-API message on .orig
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        return str(exc.orig)
    return str(exc) or exc.__class__.__name__


class QueryExecutor:
    """Runs SQL against pooled connections.

    Each statement runs in its own ``engine.begin()`` block, so it commits
    independently and its connection is released even on timeout.

    Args:
        pools: Engine cache; a private ``PoolManager`` is created if omitted.
        settings: Limits (``max_query_rows``, ``default_query_timeout_ms``).
    """

    def __init__(
        self,
        pools: PoolManager | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.pools = pools or PoolManager(max_pools=self.settings.max_connection_pools)

    @property
    def max_rows(self) -> int:
        return self.settings.max_query_rows

    def _effective_limit(self, limit: int | None) -> int:
        if limit is None or limit <= 0:
            return self.max_rows
        return min(limit, self.max_rows)

    def _effective_timeout_ms(
        self, connection: ConnectionDescriptor, timeout_ms: int | None
    ) -> int:
        if timeout_ms:
            return timeout_ms
        if connection.timeout_ms:
            return connection.timeout_ms
        return self.settings.default_query_timeout_ms

    async def execute(
        self,
        connection: ConnectionDescriptor,
        sql: str,
        params: list[Any] | tuple[Any, ...] | None = None,
        limit: int | None = None,
        timeout_ms: int | None = None,
    ) -> QueryResult:
        """Execute one statement and return its rows or affected count.

        Args:
            connection: Target database.
            sql: SQL text using the dialect's positional placeholders.
            params: Positional parameter values.
            limit: Maximum rows to return, capped at ``max_rows``.
            timeout_ms: Per-query timeout; falls back to the connection's
                ``timeout_ms`` and then ``Settings.default_query_timeout_ms``.

        Returns:
            ``QueryResult``; ``error`` is set instead of raising.
        """
        row_limit = self._effective_limit(limit)
        timeout = self._effective_timeout_ms(connection, timeout_ms)
        start = time.perf_counter()

        try:
            engine = await self.pools.get_engine(connection)
            result = await asyncio.wait_for(
                self._run(engine, sql, params, row_limit), timeout=timeout / 1000
            )
        except asyncio.TimeoutError:
            logger.warning("Query on %s timed out after %sms", connection.id, timeout)
            return QueryResult(
                error=(
                    f"Query timed out after {timeout / 1000:g} seconds. "
                    "Consider adding a LIMIT clause or optimizing your query."
                )
            )
        except Exception as e:
            logger.debug("Query on %s failed: %s", connection.id, e)
            return QueryResult(error=_error_message(e))

        result.execution_time_ms = round((time.perf_counter() - start) * 1000, 3)
        return result

    async def _run(
        self,
        engine: AsyncEngine,
        sql: str,
        params: list[Any] | tuple[Any, ...] | None,
        row_limit: int,
    ) -> QueryResult:
        async with engine.begin() as conn:
            if params:
                cursor = await conn.exec_driver_sql(sql, tuple(params))
            else:
                # The driver must not %-format parameterless SQL (aiomysql)
                cursor = await conn.exec_driver_sql(
                    sql, execution_options={"no_parameters": True}
                )

            if cursor.returns_rows:
                columns = list(cursor.keys())
                fetched = cursor.fetchmany(row_limit + 1)
                truncated = len(fetched) > row_limit
                rows = [dict(zip(columns, row)) for row in fetched[:row_limit]]
                return QueryResult(
                    columns=columns,
                    rows=rows,
                    row_count=len(rows),
                    truncated=truncated,
                )

            affected = max(cursor.rowcount, 0)
            return QueryResult(
                columns=["affected_rows"],
                rows=[{"affected_rows": affected}],
                row_count=affected,
                affected_rows=affected,
            )

    # ------------------------------------------------------------------
    # Batched insert
    # ------------------------------------------------------------------

    async def insert_rows_batched(
        self,
        connection: ConnectionDescriptor,
        table: str,
        columns: list[str],
        rows: list[list[Any]],
        batch_size: int | None = None,
    ) -> BatchInsertResult:
        """Insert *rows* in multi-row chunks, falling back to per-row inserts.

        When a chunk fails, every row of that chunk is retried on its own so
        one bad row does not sink its neighbours.  Failures are reported with
        their 1-based position in *rows*.
        """
        size = batch_size or self.settings.import_batch_size
        outcome = BatchInsertResult(total_rows=len(rows))

        for offset in range(0, len(rows), size):
            chunk = rows[offset:offset + size]
            sql, params = build_multi_row_insert(table, columns, chunk, connection.dialect)
            result = await self.execute(connection, sql, params)
            if result.error is None:
                outcome.inserted_rows += len(chunk)
                continue

            logger.info(
                "Batch at row %d failed (%s); retrying %d rows individually",
                offset + 1, result.error, len(chunk),
            )
            for i, row in enumerate(chunk):
                sql, params = build_insert(table, dict(zip(columns, row)), connection.dialect)
                single = await self.execute(connection, sql, params)
                if single.error is None:
                    outcome.inserted_rows += 1
                else:
                    outcome.errors.append(RowError(row=offset + i + 1, error=single.error))

        return outcome

    async def close(self) -> None:
        """Dispose every pool owned by this executor."""
        await self.pools.dispose_all()
