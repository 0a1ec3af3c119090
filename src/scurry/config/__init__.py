"""Configuration management: connection registry, TOML loading, settings.

Usage:
    >>> from scurry.config import load_connections, ConnectionDescriptor, get_settings
"""

from scurry.config.loader import TomlConnectionRegistry, load_connections
from scurry.config.models import (
    ConnectionDescriptor,
    ConnectionsConfig,
    Settings,
    TunnelConfig,
    get_settings,
)

__all__ = [
    "load_connections",
    "TomlConnectionRegistry",
    "ConnectionDescriptor",
    "ConnectionsConfig",
    "TunnelConfig",
    "Settings",
    "get_settings",
]
