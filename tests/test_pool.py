"""Tests for PoolManager: lazy engine creation, LRU eviction and tunnels.

No test opens a database connection; engines are only created and
disposed.
"""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from scurry.adapters.pool import PoolManager, create_async_engine_pooled
from scurry.config.models import ConnectionDescriptor, TunnelConfig
from scurry.errors import ConfigError


def _sqlite(tmp_path: Path, conn_id: str) -> ConnectionDescriptor:
    return ConnectionDescriptor(
        id=conn_id, dialect="sqlite", database=str(tmp_path / f"{conn_id}.db")
    )


def _postgres(tunnel: bool = False) -> ConnectionDescriptor:
    return ConnectionDescriptor(
        id="pg",
        dialect="postgresql",
        host="db.internal",
        database="app",
        username="app",
        tunnel=TunnelConfig(host="bastion", username="deploy") if tunnel else None,
    )


# ============================================================================
# Test Group 1: Engine factory
# ============================================================================


class TestCreateAsyncEnginePooled:
    """Per-dialect engine defaults."""

    @pytest.mark.asyncio
    async def test_postgres_pool_settings(self) -> None:
        """Server engines get a sized pool."""
        engine = create_async_engine_pooled(
            "postgresql+asyncpg://app@db.internal:5432/app", "postgresql"
        )
        try:
            assert engine.dialect.name == "postgresql"
            assert engine.pool.size() == 5
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_kwargs_override(self) -> None:
        """Caller kwargs win over defaults."""
        engine = create_async_engine_pooled(
            "postgresql+asyncpg://app@db.internal:5432/app", "postgresql", pool_size=2
        )
        try:
            assert engine.pool.size() == 2
        finally:
            await engine.dispose()


# ============================================================================
# Test Group 2: PoolManager
# ============================================================================


class TestPoolManager:
    """Engine caching per connection id."""

    @pytest.mark.asyncio
    async def test_engine_reused(self, tmp_path: Path) -> None:
        """The same connection id returns the same engine."""
        pools = PoolManager(max_pools=5)
        conn = _sqlite(tmp_path, "a")
        try:
            first = await pools.get_engine(conn)
            second = await pools.get_engine(conn)

            assert first is second
            assert "a" in pools
            assert pools.stats()["active_pools"] == 1
        finally:
            await pools.dispose_all()

    @pytest.mark.asyncio
    async def test_lru_eviction(self, tmp_path: Path) -> None:
        """Past max_pools the least recently used engine is dropped."""
        pools = PoolManager(max_pools=2)
        a, b, c = (_sqlite(tmp_path, x) for x in "abc")
        try:
            await pools.get_engine(a)
            await pools.get_engine(b)
            await pools.get_engine(a)  # b is now least recently used
            await pools.get_engine(c)

            assert pools.stats() == {
                "active_pools": 2,
                "max_pools": 2,
                "connection_ids": ["a", "c"],
            }
            assert "b" not in pools
        finally:
            await pools.dispose_all()

    @pytest.mark.asyncio
    async def test_dispose(self, tmp_path: Path) -> None:
        """dispose reports whether a pool existed."""
        pools = PoolManager(max_pools=5)
        await pools.get_engine(_sqlite(tmp_path, "a"))

        assert await pools.dispose("a") is True
        assert await pools.dispose("a") is False
        assert "a" not in pools

    @pytest.mark.asyncio
    async def test_dispose_all(self, tmp_path: Path) -> None:
        """dispose_all empties the cache."""
        pools = PoolManager(max_pools=5)
        await pools.get_engine(_sqlite(tmp_path, "a"))
        await pools.get_engine(_sqlite(tmp_path, "b"))

        await pools.dispose_all()

        assert pools.stats()["connection_ids"] == []

    def test_max_pools_default(self) -> None:
        """max_pools falls back to settings."""
        assert PoolManager().max_pools >= 1


# ============================================================================
# Test Group 3: SSH tunnels
# ============================================================================


class TestTunnel:
    """Connections that require a tunnel."""

    @pytest.mark.asyncio
    async def test_missing_opener(self) -> None:
        """Without a tunnel opener the connection is a config error."""
        pools = PoolManager(max_pools=5)

        with pytest.raises(ConfigError, match="requires an SSH tunnel"):
            await pools.get_engine(_postgres(tunnel=True))

        assert "pg" not in pools

    @pytest.mark.asyncio
    async def test_opener_rewrites_address(self) -> None:
        """The engine dials the local end of the tunnel."""
        opener = AsyncMock()
        opener.open.return_value = ("127.0.0.1", 40022)
        pools = PoolManager(max_pools=5, tunnel_opener=opener)
        conn = _postgres(tunnel=True)
        try:
            engine = await pools.get_engine(conn)

            opener.open.assert_awaited_once_with(conn)
            assert engine.url.host == "127.0.0.1"
            assert engine.url.port == 40022
            assert engine.url.database == "app"
        finally:
            await pools.dispose_all()

    @pytest.mark.asyncio
    async def test_no_tunnel_keeps_address(self) -> None:
        """Connections without a tunnel dial the configured host."""
        opener = AsyncMock()
        pools = PoolManager(max_pools=5, tunnel_opener=opener)
        try:
            engine = await pools.get_engine(_postgres())

            opener.open.assert_not_awaited()
            assert engine.url.host == "db.internal"
            assert engine.url.port == 5432
        finally:
            await pools.dispose_all()
