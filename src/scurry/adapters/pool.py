"""Per-connection SQLAlchemy async engine pools.

One ``AsyncEngine`` per connection id, created lazily on first use and
reused across requests.  When more than ``max_pools`` engines are open the
least recently used one is disposed.

Usage:
    from scurry.adapters.pool import PoolManager

    pools = PoolManager(max_pools=50)
    engine = await pools.get_engine(connection)
    ...
    await pools.dispose_all()
"""

import asyncio
import logging
import ssl
from collections import OrderedDict
from typing import Any, Protocol

from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from scurry.adapters.dialect import Dialect, driver_url, get_dialect
from scurry.config.models import ConnectionDescriptor, get_settings
from scurry.errors import ConfigError

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 5


class TunnelOpener(Protocol):
    """Opens an SSH tunnel and returns the local ``(host, port)`` to dial."""

    async def open(self, connection: ConnectionDescriptor) -> tuple[str, int]: ...


def create_async_engine_pooled(
    url: URL | str, dialect: Dialect | str, ssl_enabled: bool = False, **kwargs: Any
) -> AsyncEngine:
    """Create an async SQLAlchemy engine with connection pooling.

    Default pool settings for server dialects:

    - ``pool_size=5`` / ``max_overflow=10`` (from ``Settings``)
    - ``pool_pre_ping=True``: Validate connections before checkout.
    - ``pool_recycle=300``: Recycle connections every 5 minutes.

    SQLite engines take SQLAlchemy's default pool for aiosqlite and no
    sizing arguments.

    Args:
        url: SQLAlchemy async URL (see ``driver_url``).
        dialect: Dialect of the target database.
        ssl_enabled: Require TLS on the driver connection.
        **kwargs: Forwarded to ``create_async_engine``, overriding defaults.

    Returns:
        Configured ``AsyncEngine``.
    """
    d = get_dialect(dialect)

    if d is Dialect.SQLITE:
        return create_async_engine(url, **{"echo": False, **kwargs})

    settings = get_settings()
    connect_args: dict[str, Any] = {}
    if d is Dialect.POSTGRESQL:
        connect_args["timeout"] = CONNECT_TIMEOUT_SECONDS
        if ssl_enabled:
            connect_args["ssl"] = "require"
    else:
        connect_args["connect_timeout"] = CONNECT_TIMEOUT_SECONDS
        if ssl_enabled:
            connect_args["ssl"] = ssl.create_default_context()

    defaults: dict[str, Any] = {
        "pool_size": settings.pool_size,
        "max_overflow": settings.max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "echo": False,
        "connect_args": connect_args,
    }
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}

    return create_async_engine(url, **merged)


class PoolManager:
    """LRU cache of ``AsyncEngine`` objects keyed by connection id.

    Safe for concurrent use from one event loop: engine creation is
    serialized by a lock so two requests never build two pools for the
    same connection.

    Args:
        max_pools: Maximum number of open engines (default from
            ``Settings.max_connection_pools``).
        tunnel_opener: Collaborator used for connections with an enabled
            ``tunnel``.  Such connections fail without one.
        **engine_kwargs: Forwarded to ``create_async_engine_pooled``.
    """

    def __init__(
        self,
        max_pools: int | None = None,
        tunnel_opener: TunnelOpener | None = None,
        **engine_kwargs: Any,
    ) -> None:
        self.max_pools = max_pools or get_settings().max_connection_pools
        self._tunnel_opener = tunnel_opener
        self._engine_kwargs = engine_kwargs
        self._engines: OrderedDict[str, AsyncEngine] = OrderedDict()
        self._lock = asyncio.Lock()

    async def get_engine(self, connection: ConnectionDescriptor) -> AsyncEngine:
        """Return the pooled engine for *connection*, creating it on first use."""
        engine = self._engines.get(connection.id)
        if engine is not None:
            self._engines.move_to_end(connection.id)
            return engine

        async with self._lock:
            engine = self._engines.get(connection.id)
            if engine is not None:
                self._engines.move_to_end(connection.id)
                return engine

            engine = await self._create_engine(connection)
            self._engines[connection.id] = engine
            logger.info(
                "Created %s pool for connection %s", connection.dialect.value, connection.id
            )

            while len(self._engines) > self.max_pools:
                evicted_id, evicted = self._engines.popitem(last=False)
                logger.info("Evicting least recently used pool %s", evicted_id)
                await evicted.dispose()

            return engine

    async def _create_engine(self, connection: ConnectionDescriptor) -> AsyncEngine:
        url = driver_url(connection)

        if connection.tunnel is not None and connection.tunnel.enabled:
            if self._tunnel_opener is None:
                raise ConfigError(
                    f"Connection '{connection.id}' requires an SSH tunnel "
                    "but no tunnel opener is configured"
                )
            local_host, local_port = await self._tunnel_opener.open(connection)
            url = url.set(host=local_host, port=local_port)

        return create_async_engine_pooled(
            url, connection.dialect, ssl_enabled=connection.ssl, **self._engine_kwargs
        )

    async def dispose(self, connection_id: str) -> bool:
        """Close and forget the pool for *connection_id*.

        Returns:
            True if a pool existed.
        """
        engine = self._engines.pop(connection_id, None)
        if engine is None:
            return False
        await engine.dispose()
        logger.info("Disposed pool for connection %s", connection_id)
        return True

    async def dispose_all(self) -> None:
        """Close every pool (application shutdown)."""
        while self._engines:
            _, engine = self._engines.popitem(last=False)
            await engine.dispose()

    def stats(self) -> dict[str, Any]:
        """Open pool count, capacity and ids in LRU order (oldest first)."""
        return {
            "active_pools": len(self._engines),
            "max_pools": self.max_pools,
            "connection_ids": list(self._engines.keys()),
        }

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._engines
