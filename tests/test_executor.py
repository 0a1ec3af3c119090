"""Tests for QueryExecutor against real SQLite files.

Verifies row limits and truncation, affected-row reporting for writes,
error capture without raising, timeouts and batched inserts with per-row
fallback.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import event

from scurry.adapters.executor import QueryExecutor, QueryResult
from scurry.adapters.pool import PoolManager
from scurry.config.models import ConnectionDescriptor, Settings


# ============================================================================
# Test Group 1: Reads and writes
# ============================================================================


class TestExecute:
    """Single statement execution."""

    @pytest.mark.asyncio
    async def test_select_returns_rows(self, executor, sqlite_conn, run_sql) -> None:
        """Rows come back as dicts in column order."""
        conn = sqlite_conn("db")
        await run_sql(
            conn,
            "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)",
            "INSERT INTO users (id, name) VALUES (1, 'alice'), (2, 'bob')",
        )

        result = await executor.execute(conn, "SELECT id, name FROM users ORDER BY id")

        assert result.success is True
        assert result.columns == ["id", "name"]
        assert result.rows == [{"id": 1, "name": "alice"}, {"id": 2, "name": "bob"}]
        assert result.row_count == 2
        assert result.truncated is False
        assert result.execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_params_bind_positionally(self, executor, sqlite_conn, run_sql) -> None:
        """Parameters are bound, never interpolated."""
        conn = sqlite_conn("db")
        await run_sql(conn, "CREATE TABLE t (v TEXT)")

        await executor.execute(conn, "INSERT INTO t (v) VALUES (?)", ["x'); DROP TABLE t; --"])
        result = await executor.execute(conn, "SELECT v FROM t")

        assert result.rows == [{"v": "x'); DROP TABLE t; --"}]

    @pytest.mark.asyncio
    async def test_parameterless_sql_not_formatted(self, executor, sqlite_conn, run_sql) -> None:
        """SQL without params reaches the cursor with no parameters to format.

        Format-paramstyle drivers apply ``%`` to the SQL whenever they receive
        a parameter tuple, even an empty one, so ``LIKE '%x'`` must be sent
        bare.
        """
        conn = sqlite_conn("db")
        await run_sql(
            conn,
            "CREATE TABLE users (email TEXT)",
            "INSERT INTO users VALUES ('a@x.com'), ('b@y.org')",
        )
        engine = await executor.pools.get_engine(conn)
        seen: list[tuple[object, bool]] = []

        def record(connection, cursor, statement, parameters, context, executemany):
            seen.append((parameters, context.no_parameters))

        event.listen(engine.sync_engine, "before_cursor_execute", record)
        try:
            result = await executor.execute(
                conn, "SELECT email FROM users WHERE email LIKE '%@x.com'"
            )
            await executor.execute(conn, "SELECT email FROM users WHERE email = ?", ["b@y.org"])
        finally:
            event.remove(engine.sync_engine, "before_cursor_execute", record)

        assert result.rows == [{"email": "a@x.com"}]
        assert seen[0][1] is True
        assert not seen[0][0]
        assert tuple(seen[1][0]) == ("b@y.org",)
        assert seen[1][1] is False

    @pytest.mark.asyncio
    async def test_limit_truncates(self, executor, sqlite_conn, run_sql) -> None:
        """More rows than the limit sets truncated."""
        conn = sqlite_conn("db")
        await run_sql(
            conn,
            "CREATE TABLE n (i INTEGER)",
            "INSERT INTO n (i) VALUES (1), (2), (3), (4), (5)",
        )

        result = await executor.execute(conn, "SELECT i FROM n ORDER BY i", limit=3)

        assert result.row_count == 3
        assert [r["i"] for r in result.rows] == [1, 2, 3]
        assert result.truncated is True

    @pytest.mark.asyncio
    async def test_exact_limit_not_truncated(self, executor, sqlite_conn, run_sql) -> None:
        """Exactly limit rows is not truncation."""
        conn = sqlite_conn("db")
        await run_sql(conn, "CREATE TABLE n (i INTEGER)", "INSERT INTO n (i) VALUES (1), (2)")

        result = await executor.execute(conn, "SELECT i FROM n", limit=2)

        assert result.row_count == 2
        assert result.truncated is False

    @pytest.mark.asyncio
    async def test_limit_capped_by_settings(self, sqlite_conn, run_sql, executor) -> None:
        """A caller limit above max_query_rows is capped."""
        conn = sqlite_conn("db")
        await run_sql(conn, "CREATE TABLE n (i INTEGER)")
        values = ", ".join(f"({i})" for i in range(150))
        await run_sql(conn, f"INSERT INTO n (i) VALUES {values}")

        result = await executor.execute(conn, "SELECT i FROM n", limit=1000)

        assert result.row_count == executor.max_rows == 100
        assert result.truncated is True

    @pytest.mark.asyncio
    async def test_write_reports_affected_rows(self, executor, sqlite_conn, run_sql) -> None:
        """Non-returning statements report affected rows."""
        conn = sqlite_conn("db")
        await run_sql(
            conn,
            "CREATE TABLE t (id INTEGER PRIMARY KEY, v TEXT)",
            "INSERT INTO t (id, v) VALUES (1, 'a'), (2, 'a'), (3, 'b')",
        )

        result = await executor.execute(conn, "UPDATE t SET v = ? WHERE v = ?", ["z", "a"])

        assert result.affected_rows == 2
        assert result.row_count == 2
        assert result.columns == ["affected_rows"]
        assert result.rows == [{"affected_rows": 2}]

    @pytest.mark.asyncio
    async def test_error_captured_not_raised(self, executor, sqlite_conn) -> None:
        """Driver errors land in QueryResult.error with zeroed metrics."""
        result = await executor.execute(sqlite_conn("db"), "SELECT * FROM missing_table")

        assert result.success is False
        assert "missing_table" in result.error
        assert result.rows == []
        assert result.execution_time_ms == 0

    @pytest.mark.asyncio
    async def test_timeout_message(self, sqlite_conn) -> None:
        """A slow statement comes back as a timeout error."""

        async def slow(*args, **kwargs) -> QueryResult:
            await asyncio.sleep(1)
            return QueryResult()

        pools = PoolManager(max_pools=2)
        executor = QueryExecutor(pools=pools, settings=Settings())
        executor._run = slow  # type: ignore[method-assign]

        result = await executor.execute(sqlite_conn("db"), "SELECT 1", timeout_ms=20)
        await executor.close()

        assert result.error.startswith("Query timed out after 0.02 seconds.")

    @pytest.mark.asyncio
    async def test_connection_timeout_override(self, sqlite_conn) -> None:
        """The per-connection timeout is used when no call timeout is given."""
        executor = QueryExecutor(pools=AsyncMock(), settings=Settings())
        conn = ConnectionDescriptor(id="c", dialect="sqlite", database="x.db", timeout_ms=1234)

        assert executor._effective_timeout_ms(conn, None) == 1234
        assert executor._effective_timeout_ms(conn, 50) == 50
        assert executor._effective_timeout_ms(sqlite_conn("d"), None) == 30_000


# ============================================================================
# Test Group 2: Batched insert
# ============================================================================


class TestBatchedInsert:
    """Multi-row chunks with per-row fallback."""

    @pytest.mark.asyncio
    async def test_all_rows_inserted(self, executor, sqlite_conn, run_sql) -> None:
        """Rows are inserted across several chunks."""
        conn = sqlite_conn("db")
        await run_sql(conn, "CREATE TABLE t (id INTEGER PRIMARY KEY, v TEXT)")

        rows = [[i, f"v{i}"] for i in range(1, 8)]
        outcome = await executor.insert_rows_batched(conn, "t", ["id", "v"], rows)

        assert outcome.inserted_rows == 7
        assert outcome.total_rows == 7
        assert outcome.errors == []
        count = await executor.execute(conn, "SELECT COUNT(*) AS n FROM t")
        assert count.rows == [{"n": 7}]

    @pytest.mark.asyncio
    async def test_bad_row_isolated(self, executor, sqlite_conn, run_sql) -> None:
        """A failing chunk is retried row by row and the bad row reported."""
        conn = sqlite_conn("db")
        await run_sql(
            conn,
            "CREATE TABLE t (id INTEGER PRIMARY KEY, v TEXT NOT NULL)",
        )

        rows = [[1, "a"], [2, None], [3, "c"], [4, "d"]]
        outcome = await executor.insert_rows_batched(conn, "t", ["id", "v"], rows, batch_size=3)

        assert outcome.inserted_rows == 3
        assert len(outcome.errors) == 1
        assert outcome.errors[0].row == 2
        assert "NOT NULL" in outcome.errors[0].error
