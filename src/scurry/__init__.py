"""scurry: multi-engine SQL client core.

Pooled async query execution over PostgreSQL, MySQL/MariaDB and SQLite,
schema introspection, team permission checks on SQL, and row-level table
comparison and sync between connections.

Usage:
    from scurry import QueryExecutor, ConnectionDescriptor
    from scurry import SchemaIntrospector, compare_tables, sync_table
    from scurry import validate_query, ConnectionPermission
"""

__version__ = "0.1.0"

# Adapters
from scurry.adapters.dialect import Dialect
from scurry.adapters.executor import BatchInsertResult, QueryExecutor, QueryResult
from scurry.adapters.pool import PoolManager

# Config
from scurry.config.loader import TomlConnectionRegistry, load_connections
from scurry.config.models import ConnectionDescriptor, Settings, get_settings

# Permissions
from scurry.permissions import (
    ConnectionPermission,
    ValidationResult,
    detect_dangerous_query,
    filter_allowed_columns,
    filter_allowed_tables,
    validate_query,
)

# Schema
from scurry.schema import (
    SchemaIntrospector,
    SyncResult,
    TableComparison,
    calculate_row_diffs,
    compare_tables,
    execute_sync,
    sync_table,
)

# Search
from scurry.search import SearchRequest, SearchResult, search_table

__all__ = [
    # Adapters
    "BatchInsertResult",
    "Dialect",
    "PoolManager",
    "QueryExecutor",
    "QueryResult",
    # Config
    "ConnectionDescriptor",
    "Settings",
    "TomlConnectionRegistry",
    "get_settings",
    "load_connections",
    # Permissions
    "ConnectionPermission",
    "ValidationResult",
    "detect_dangerous_query",
    "filter_allowed_columns",
    "filter_allowed_tables",
    "validate_query",
    # Schema
    "SchemaIntrospector",
    "SyncResult",
    "TableComparison",
    "calculate_row_diffs",
    "compare_tables",
    "execute_sync",
    "sync_table",
    # Search
    "SearchRequest",
    "SearchResult",
    "search_table",
]
