"""Pydantic models for schema introspection, row diffs and sync.

This module contains schema-domain models:
- Introspection models: TableInfo, ColumnDefinition, IndexInfo,
  ForeignKeyRef, Relationship, TableStructure
- Diff models: DiffStatus, RowDiffEntry, ComparisonSummary, TableComparison
- Sync models: SyncScope, SyncContent, SyncState, SyncRequest, SyncResult,
  ActivityEvent

Connection models (ConnectionDescriptor) live in scurry.config.models.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Schema Introspection Models
# ============================================================================


class TableInfo(BaseModel):
    """A table or view visible on a connection."""

    name: str
    schema_name: str | None = None
    type: Literal["table", "view"] = "table"
    row_count: int | None = None


class ForeignKeyRef(BaseModel):
    """One column of a foreign key constraint.

    Example:
        >>> fk = ForeignKeyRef(column_name="user_id", referenced_table="users",
        ...                    referenced_column="id")
        >>> fk.constraint_name is None
        True
    """

    constraint_name: str | None = None
    column_name: str
    referenced_table: str
    referenced_column: str


class ColumnDefinition(BaseModel):
    """Schema for a database column.

    Example:
        >>> col = ColumnDefinition(name="id", native_type="integer", is_primary_key=True)
        >>> col.nullable
        True
    """

    name: str
    native_type: str
    nullable: bool = True
    is_primary_key: bool = False
    is_foreign_key: bool = False
    auto_increment: bool = False
    default_value: str | None = None
    foreign_key_reference: ForeignKeyRef | None = None


class IndexInfo(BaseModel):
    """Schema for a database index."""

    name: str
    columns: list[str] = Field(default_factory=list)
    unique: bool = False
    primary: bool = False


class Relationship(BaseModel):
    """A foreign key edge between two tables."""

    from_table: str
    from_column: str
    to_table: str
    to_column: str


class TableStructure(BaseModel):
    """Columns plus best-effort indexes of one table."""

    table: str
    columns: list[ColumnDefinition] = Field(default_factory=list)
    indexes: list[IndexInfo] = Field(default_factory=list)

    @property
    def primary_key_columns(self) -> list[str]:
        """Primary key column names in table order."""
        return [c.name for c in self.columns if c.is_primary_key]


# ============================================================================
# Row Diff Models
# ============================================================================


class DiffStatus(str, Enum):
    MATCH = "match"
    DIFFERENT = "different"
    SOURCE_ONLY = "source-only"
    TARGET_ONLY = "target-only"


class RowDiffEntry(BaseModel):
    """Classification of one primary key across source and target.

    ``changed_columns`` is non-empty only for ``different`` entries.
    """

    primary_key: dict[str, Any]
    primary_key_signature: str
    status: DiffStatus
    changed_columns: set[str] = Field(default_factory=set)
    source_row: dict[str, Any] | None = None
    target_row: dict[str, Any] | None = None


class ComparisonSummary(BaseModel):
    """Per-status counts of a diff."""

    total: int = 0
    match: int = 0
    different: int = 0
    source_only: int = 0
    target_only: int = 0

    @property
    def in_sync(self) -> bool:
        return self.different == 0 and self.source_only == 0


class TableComparison(BaseModel):
    """Result of comparing one table across two connections.

    ``truncated`` is True when either side had more rows than the
    comparison limit, in which case the diff covers only the first rows.
    """

    table_name: str
    target_table_name: str
    primary_key_columns: list[str] = Field(default_factory=list)
    columns: list[str] = Field(default_factory=list)
    diffs: list[RowDiffEntry] = Field(default_factory=list)
    summary: ComparisonSummary = Field(default_factory=ComparisonSummary)
    target_exists: bool = True
    truncated: bool = False
    error: str | None = None


# ============================================================================
# Sync Models
# ============================================================================


class SyncScope(str, Enum):
    SELECTED = "selected"
    TABLE = "table"


class SyncContent(str, Enum):
    DATA = "data"
    STRUCTURE = "structure"
    BOTH = "both"

    @property
    def includes_structure(self) -> bool:
        return self in (SyncContent.STRUCTURE, SyncContent.BOTH)

    @property
    def includes_data(self) -> bool:
        return self in (SyncContent.DATA, SyncContent.BOTH)


class SyncState(str, Enum):
    VALIDATING = "validating"
    CREATING_TABLE = "creating-table"
    DIFFING = "diffing"
    APPLYING = "applying"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncRequest(BaseModel):
    """Caller-supplied, single-use sync request."""

    model_config = ConfigDict(frozen=True)

    source_connection_id: str
    target_connection_id: str
    table_name: str
    target_table_name: str | None = None
    scope: SyncScope = SyncScope.TABLE
    content: SyncContent = SyncContent.DATA
    selected_row_keys: list[str] | None = None
    team_id: str | None = None


class SyncResult(BaseModel):
    """Result of a sync operation.

    Attributes:
        success: No fatal error and no per-row failures.
        state: Final state (``completed`` or ``failed``).
        inserted_count: Rows inserted into the target.
        updated_count: Rows updated in the target.
        table_created: Target table was created by this sync.
        rows_affected: Sum of driver-reported affected rows.
        errors: Per-row error messages (the sync continues past them).
        error: Fatal error that stopped the sync before or during apply.
        failed_state: State the sync was in when ``error`` occurred.
        truncated: Only the first ``comparison_limit`` rows by primary key were
            compared; source-only rows are not inserted when the target read
            was cut short.
        execution_time_ms: Wall time of the whole request.
    """

    success: bool = False
    state: SyncState = SyncState.VALIDATING
    inserted_count: int = 0
    updated_count: int = 0
    table_created: bool = False
    rows_affected: int = 0
    errors: list[str] = Field(default_factory=list)
    error: str | None = None
    failed_state: SyncState | None = None
    truncated: bool = False
    execution_time_ms: float = 0

    def fail(self, message: str) -> "SyncResult":
        """Mark the result as failed with a fatal *message*."""
        self.success = False
        self.failed_state = self.state
        self.state = SyncState.FAILED
        self.error = message
        return self


class ActivityEvent(BaseModel):
    """An auditable action, handed to the ``ActivityLogger`` collaborator."""

    action: str  # data_inserted, data_updated, table_created
    resource_type: str = "connection"
    resource_id: str
    user_id: str | None = None
    team_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
