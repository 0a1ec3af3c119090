"""Shared fixtures: SQLite-backed connections and a real query executor."""

from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path

import pytest
import pytest_asyncio

from scurry.adapters.executor import QueryExecutor
from scurry.config.models import ConnectionDescriptor, Settings


@pytest.fixture
def settings() -> Settings:
    """Settings with small limits so truncation is easy to hit."""
    return Settings(max_query_rows=100, comparison_limit=50, import_batch_size=3)


@pytest_asyncio.fixture
async def executor(settings: Settings) -> AsyncIterator[QueryExecutor]:
    """QueryExecutor whose pools are disposed after each test."""
    ex = QueryExecutor(settings=settings)
    yield ex
    await ex.close()


@pytest.fixture
def sqlite_conn(tmp_path: Path) -> Callable[[str], ConnectionDescriptor]:
    """Factory for SQLite connections on files under tmp_path."""

    def make(conn_id: str) -> ConnectionDescriptor:
        return ConnectionDescriptor(
            id=conn_id,
            dialect="sqlite",
            name=conn_id,
            database=str(tmp_path / f"{conn_id}.db"),
        )

    return make


@pytest.fixture
def run_sql(executor: QueryExecutor) -> Callable[..., Awaitable[None]]:
    """Run setup statements on a connection, failing the test on any error."""

    async def run(conn: ConnectionDescriptor, *statements: str) -> None:
        for sql in statements:
            result = await executor.execute(conn, sql)
            assert result.error is None, f"{sql}: {result.error}"

    return run
