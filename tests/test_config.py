"""Tests for connection config loading, the TOML registry and Settings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from scurry.adapters.dialect import Dialect
from scurry.config.loader import TomlConnectionRegistry, load_connections
from scurry.config.models import ConnectionDescriptor, Settings, TunnelConfig
from scurry.errors import ConfigError, ConnectionNotFoundError, UnsupportedDialectError

VALID_TOML = """
[connections.local]
dialect = "sqlite"
database = "./data/app.db"

[connections.staging]
type = "postgresql"
name = "Staging"
host = "db.internal"
database = "app"
username = "app"
password = "secret"
ssl = true
owner_id = "u1"

[connections.legacy]
dialect = "mariadb"
host = "10.0.0.5"
port = 3307
database = "shop"

[connections.legacy.tunnel]
host = "bastion.example.com"
username = "deploy"
"""


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "scurry.toml"
    path.write_text(text)
    return path


# ============================================================================
# Test Group 1: ConnectionDescriptor
# ============================================================================


class TestConnectionDescriptor:
    """Model-level validation."""

    def test_type_alias_and_default_port(self) -> None:
        """'type' is accepted for the dialect and the port defaults per engine."""
        conn = ConnectionDescriptor(id="c", type="mysql", database="shop")
        assert conn.dialect is Dialect.MYSQL
        assert conn.port == 3306

    def test_sqlite_port_zero(self) -> None:
        """SQLite has no port."""
        assert ConnectionDescriptor(id="c", dialect="sqlite", database="a.db").port == 0

    def test_unknown_dialect(self) -> None:
        """Unknown engines are rejected with the offending tag."""
        with pytest.raises(UnsupportedDialectError, match="Unsupported database type: oracle"):
            ConnectionDescriptor(id="c", dialect="oracle", database="x")

    def test_frozen(self) -> None:
        """Descriptors can't be mutated after construction."""
        conn = ConnectionDescriptor(id="c", dialect="sqlite", database="a.db")
        with pytest.raises(ValidationError):
            conn.database = "b.db"


# ============================================================================
# Test Group 2: load_connections
# ============================================================================


class TestLoadConnections:
    """Loading scurry.toml."""

    def test_loads_all_entries(self, tmp_path: Path) -> None:
        """Every [connections.<id>] table becomes a descriptor keyed by id."""
        config = load_connections(_write(tmp_path, VALID_TOML))

        assert set(config.connections) == {"local", "staging", "legacy"}

        staging = config.connections["staging"]
        assert staging.id == "staging"
        assert staging.dialect is Dialect.POSTGRESQL
        assert staging.port == 5432
        assert staging.ssl is True
        assert staging.owner_id == "u1"

        legacy = config.connections["legacy"]
        assert legacy.port == 3307
        assert legacy.tunnel == TunnelConfig(host="bastion.example.com", username="deploy")
        assert legacy.tunnel.port == 22

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file raises FileNotFoundError with the path."""
        with pytest.raises(FileNotFoundError, match="Connection config not found"):
            load_connections(tmp_path / "missing.toml")

    def test_invalid_toml(self, tmp_path: Path) -> None:
        """Syntax errors become ConfigError."""
        with pytest.raises(ConfigError, match="Invalid TOML in scurry.toml"):
            load_connections(_write(tmp_path, "[connections.local\n"))

    def test_entry_not_a_table(self, tmp_path: Path) -> None:
        """Scalar entries under [connections] are rejected."""
        with pytest.raises(ConfigError, match="Connection 'local' must be a table"):
            load_connections(_write(tmp_path, '[connections]\nlocal = "sqlite"\n'))

    def test_entry_sets_id(self, tmp_path: Path) -> None:
        """An explicit id key is a config error, not a TypeError."""
        text = '[connections.local]\nid = "other"\ndialect = "sqlite"\ndatabase = "a.db"\n'
        with pytest.raises(ConfigError, match="Connection 'local' must not set 'id'"):
            load_connections(_write(tmp_path, text))

    def test_missing_required_field(self, tmp_path: Path) -> None:
        """Pydantic validation errors are wrapped with the connection id."""
        with pytest.raises(ConfigError, match="Invalid connection 'local'"):
            load_connections(_write(tmp_path, '[connections.local]\ndialect = "sqlite"\n'))

    def test_unknown_dialect_wrapped(self, tmp_path: Path) -> None:
        """Unsupported engines are reported as config errors."""
        text = '[connections.o]\ndialect = "oracle"\ndatabase = "x"\n'
        with pytest.raises(ConfigError, match="Invalid connection 'o'"):
            load_connections(_write(tmp_path, text))

    def test_empty_file(self, tmp_path: Path) -> None:
        """A file without connections yields an empty registry."""
        assert load_connections(_write(tmp_path, "")).connections == {}

    def test_default_path_from_settings(self, tmp_path: Path, monkeypatch) -> None:
        """Without an explicit path the file is found via Settings.config_file."""
        _write(tmp_path, VALID_TOML)
        monkeypatch.chdir(tmp_path)

        assert "local" in load_connections().connections


# ============================================================================
# Test Group 3: TomlConnectionRegistry
# ============================================================================


class TestTomlConnectionRegistry:
    """Lookups with owner filtering."""

    @pytest.fixture
    def registry(self, tmp_path: Path) -> TomlConnectionRegistry:
        return TomlConnectionRegistry.from_file(_write(tmp_path, VALID_TOML))

    @pytest.mark.asyncio
    async def test_owner_filter(self, registry: TomlConnectionRegistry) -> None:
        """Owned connections are only visible to their owner."""
        assert await registry.get_connection_by_id("staging", "u1") is not None
        assert await registry.get_connection_by_id("staging", "u2") is None
        assert await registry.get_connection_by_id("staging") is not None

    @pytest.mark.asyncio
    async def test_unowned_visible_to_everyone(self, registry: TomlConnectionRegistry) -> None:
        """Connections without owner_id are shared."""
        conn = await registry.get_connection_by_id("local", "anyone")
        assert conn is not None
        assert conn.dialect is Dialect.SQLITE

    @pytest.mark.asyncio
    async def test_unknown_id(self, registry: TomlConnectionRegistry) -> None:
        """Unknown ids resolve to None."""
        assert await registry.get_connection_by_id("ghost") is None

    def test_require(self, registry: TomlConnectionRegistry) -> None:
        """require returns the descriptor or raises with the role in the message."""
        assert registry.require("legacy").database == "shop"

        with pytest.raises(ConnectionNotFoundError, match="^Source connection not found$"):
            registry.require("ghost", "source")
        with pytest.raises(ConnectionNotFoundError, match="^Connection not found$"):
            registry.require("ghost")

    def test_list_connections(self, registry: TomlConnectionRegistry) -> None:
        """Connections are listed in file order."""
        assert [c.id for c in registry.list_connections()] == ["local", "staging", "legacy"]


# ============================================================================
# Test Group 4: Settings
# ============================================================================


class TestSettings:
    """Environment-driven runtime limits."""

    def test_defaults(self, monkeypatch) -> None:
        """Defaults match the documented limits."""
        for name in ("MAX_QUERY_ROWS", "SCURRY_MAX_QUERY_ROWS", "DEFAULT_QUERY_TIMEOUT"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings()

        assert settings.max_query_rows == 10_000
        assert settings.default_query_timeout_ms == 30_000
        assert settings.max_connection_pools == 50
        assert settings.comparison_limit == 1_000

    def test_legacy_env_names(self, monkeypatch) -> None:
        """Unprefixed variables are honored."""
        monkeypatch.setenv("MAX_QUERY_ROWS", "250")
        monkeypatch.setenv("DEFAULT_QUERY_TIMEOUT", "5000")

        settings = Settings()

        assert settings.max_query_rows == 250
        assert settings.default_query_timeout_ms == 5000

    def test_prefixed_env_names(self, monkeypatch) -> None:
        """SCURRY_-prefixed variables are honored."""
        monkeypatch.setenv("SCURRY_MAX_CONNECTION_POOLS", "3")
        monkeypatch.setenv("SCURRY_COMPARISON_LIMIT", "20")

        settings = Settings()

        assert settings.max_connection_pools == 3
        assert settings.comparison_limit == 20

    def test_keyword_construction(self) -> None:
        """Fields can be set by name in code."""
        assert Settings(max_query_rows=7).max_query_rows == 7
