"""Schema introspection, row comparison and sync.

Usage:
    >>> from scurry.schema import calculate_row_diffs, SchemaIntrospector, sync_table
"""

from scurry.schema.comparator import (
    calculate_row_diffs,
    diffs_to_changed_columns_map,
    diffs_to_status_map,
    serialize_primary_key,
    summarize_diffs,
)
from scurry.schema.ddl import generate_create_table_sql
from scurry.schema.introspector import SchemaIntrospector, resolve_table_name, validate_columns
from scurry.schema.models import (
    ActivityEvent,
    ColumnDefinition,
    ComparisonSummary,
    DiffStatus,
    ForeignKeyRef,
    IndexInfo,
    Relationship,
    RowDiffEntry,
    SyncContent,
    SyncRequest,
    SyncResult,
    SyncScope,
    SyncState,
    TableComparison,
    TableInfo,
    TableStructure,
)
from scurry.schema.sync import (
    compare_tables,
    count_sync_operations,
    execute_sync,
    generate_sync_sql,
    sync_table,
)

__all__ = [
    # Comparator
    "calculate_row_diffs",
    "diffs_to_changed_columns_map",
    "diffs_to_status_map",
    "serialize_primary_key",
    "summarize_diffs",
    # DDL
    "generate_create_table_sql",
    # Introspector
    "SchemaIntrospector",
    "resolve_table_name",
    "validate_columns",
    # Models
    "ActivityEvent",
    "ColumnDefinition",
    "ComparisonSummary",
    "DiffStatus",
    "ForeignKeyRef",
    "IndexInfo",
    "Relationship",
    "RowDiffEntry",
    "SyncContent",
    "SyncRequest",
    "SyncResult",
    "SyncScope",
    "SyncState",
    "TableComparison",
    "TableInfo",
    "TableStructure",
    # Sync
    "compare_tables",
    "count_sync_operations",
    "execute_sync",
    "generate_sync_sql",
    "sync_table",
]
