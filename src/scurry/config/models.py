"""Pydantic models for connection configuration and runtime settings."""

from functools import lru_cache
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from scurry.adapters.dialect import Dialect, default_port, get_dialect


# ============================================================================
# Connection Models
# ============================================================================


class TunnelConfig(BaseModel):
    """SSH tunnel settings for reaching a database host.

    The tunnel itself is opened by an external collaborator (see
    ``scurry.adapters.pool.TunnelOpener``).
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    host: str
    port: int = 22
    username: str
    password: str | None = None
    private_key: str | None = None


class ConnectionDescriptor(BaseModel):
    """A database connection, immutable once an operation starts.

    Example:
        >>> conn = ConnectionDescriptor(id="c1", dialect="sqlite", database="app.db")
        >>> conn.port
        0
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    dialect: Dialect = Field(validation_alias=AliasChoices("dialect", "type"))
    name: str = ""
    host: str = "localhost"
    port: int | None = None
    database: str
    username: str | None = None
    password: str | None = None
    ssl: bool = False
    timeout_ms: int | None = None  # per-connection query timeout override
    owner_id: str | None = None
    tunnel: TunnelConfig | None = None

    @field_validator("dialect", mode="before")
    @classmethod
    def _resolve_dialect(cls, value: Any) -> Dialect:
        return get_dialect(value)

    @model_validator(mode="after")
    def _fill_default_port(self) -> "ConnectionDescriptor":
        if self.port is None:
            object.__setattr__(self, "port", default_port(self.dialect))
        return self


class ConnectionsConfig(BaseModel):
    """Complete connection registry loaded from scurry.toml."""

    connections: dict[str, ConnectionDescriptor] = Field(default_factory=dict)


# ============================================================================
# Runtime Settings
# ============================================================================


class Settings(BaseSettings):
    """Runtime limits and defaults.

    Each field reads ``SCURRY_<NAME>`` and, where one exists, the legacy
    unprefixed environment variable (``MAX_QUERY_ROWS``, ...).
    """

    model_config = SettingsConfigDict(env_prefix="SCURRY_", populate_by_name=True)

    max_query_rows: int = Field(
        default=10_000,
        validation_alias=AliasChoices("SCURRY_MAX_QUERY_ROWS", "MAX_QUERY_ROWS"),
    )
    default_query_timeout_ms: int = Field(
        default=30_000,
        validation_alias=AliasChoices(
            "SCURRY_DEFAULT_QUERY_TIMEOUT", "DEFAULT_QUERY_TIMEOUT"
        ),
    )
    max_connection_pools: int = Field(
        default=50,
        validation_alias=AliasChoices(
            "SCURRY_MAX_CONNECTION_POOLS", "MAX_CONNECTION_POOLS"
        ),
    )
    pool_size: int = 5
    max_overflow: int = 10
    comparison_limit: int = 1_000
    search_max_results: int = 500
    import_batch_size: int = 100
    query_rate_limit_per_minute: int = 100
    schema_rate_limit_per_minute: int = 200
    config_file: str = "scurry.toml"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
