"""Connection registry loading from scurry.toml.

File format::

    [connections.local]
    dialect = "sqlite"
    database = "./data/app.db"

    [connections.staging]
    dialect = "postgresql"
    host = "db.internal"
    database = "app"
    username = "app"
    password = "secret"
"""

import tomllib
from pathlib import Path

from pydantic import ValidationError

from scurry.config.models import ConnectionDescriptor, ConnectionsConfig, get_settings
from scurry.errors import ConfigError, ConnectionNotFoundError, ScurryError


def load_connections(config_path: Path | str | None = None) -> ConnectionsConfig:
    """Load the connection registry from a TOML file.

    Args:
        config_path: Path to scurry.toml (default: ``Settings.config_file``
            relative to the working directory).

    Returns:
        ConnectionsConfig with every declared connection.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ConfigError: If an entry is malformed.
    """
    path = Path(config_path) if config_path is not None else Path(get_settings().config_file)

    if not path.exists():
        raise FileNotFoundError(
            f"Connection config not found: {path}\n"
            f"Create it with one [connections.<id>] table per database."
        )

    with open(path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {path.name}: {e}") from e

    connections: dict[str, ConnectionDescriptor] = {}
    for conn_id, entry in data.get("connections", {}).items():
        if not isinstance(entry, dict):
            raise ConfigError(f"Connection '{conn_id}' must be a table")
        if "id" in entry:
            # The table name is the id
            raise ConfigError(f"Connection '{conn_id}' must not set 'id'")
        try:
            connections[conn_id] = ConnectionDescriptor(id=conn_id, **entry)
        except ValidationError as e:
            raise ConfigError(f"Invalid connection '{conn_id}': {e}") from e
        except ScurryError as e:
            raise ConfigError(f"Invalid connection '{conn_id}': {e}") from e

    return ConnectionsConfig(connections=connections)


class TomlConnectionRegistry:
    """``ConnectionRegistry`` backed by a loaded ``ConnectionsConfig``.

    Owner filtering mirrors the hosted registry: when *owner_id* is given,
    only connections owned by that user (or with no owner) are returned.
    """

    def __init__(self, config: ConnectionsConfig):
        self._config = config

    @classmethod
    def from_file(cls, config_path: Path | str | None = None) -> "TomlConnectionRegistry":
        return cls(load_connections(config_path))

    async def get_connection_by_id(
        self, connection_id: str, owner_id: str | None = None
    ) -> ConnectionDescriptor | None:
        conn = self._config.connections.get(connection_id)
        if conn is None:
            return None
        if owner_id is not None and conn.owner_id not in (None, owner_id):
            return None
        return conn

    def require(self, connection_id: str, role: str = "") -> ConnectionDescriptor:
        """Synchronous lookup for the CLI; raises when the id is unknown."""
        conn = self._config.connections.get(connection_id)
        if conn is None:
            raise ConnectionNotFoundError(connection_id, role)
        return conn

    def list_connections(self) -> list[ConnectionDescriptor]:
        return list(self._config.connections.values())
