"""Pydantic models for permission profiles and query validation results."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ALL_TABLES = "all"


class ViolationType(str, Enum):
    """Machine-readable reason a query or request was denied."""

    NO_PERMISSION = "no-permission"
    VIEW_DENIED = "view-denied"
    WRITE_DENIED = "write-denied"
    TABLE_DENIED = "table-denied"
    COLUMN_DENIED = "column-denied"


class StatementClass(str, Enum):
    READ = "read"
    WRITE = "write"
    DDL = "ddl"

    @property
    def is_mutating(self) -> bool:
        return self is not StatementClass.READ


class ConnectionPermission(BaseModel):
    """What a team member may do on one shared connection.

    Table and column names are stored lowercased; every lookup is
    case-insensitive.

    Example:
        >>> perm = ConnectionPermission(connection_id="c1", allowed_tables={"Users"},
        ...                             column_restrictions={"users": {"SSN"}})
        >>> perm.allows_table("USERS"), sorted(perm.hidden_columns("users"))
        (True, ['ssn'])
    """

    model_config = ConfigDict(frozen=True)

    connection_id: str
    can_view: bool = True
    can_edit: bool = False
    allowed_tables: frozenset[str] | Literal["all"] = ALL_TABLES
    column_restrictions: dict[str, frozenset[str]] = Field(default_factory=dict)

    @field_validator("allowed_tables", mode="before")
    @classmethod
    def _normalize_tables(cls, value):
        # None is the stored form of "every table"
        if value is None or value == ALL_TABLES:
            return ALL_TABLES
        return frozenset(str(t).lower() for t in value)

    @field_validator("column_restrictions", mode="before")
    @classmethod
    def _normalize_restrictions(cls, value):
        if value is None:
            return {}
        if isinstance(value, list):
            # [{"table_name": ..., "hidden_columns": [...]}, ...]
            value = {item["table_name"]: item["hidden_columns"] for item in value}
        return {
            str(table).lower(): frozenset(str(c).lower() for c in cols)
            for table, cols in value.items()
        }

    @property
    def all_tables(self) -> bool:
        return self.allowed_tables == ALL_TABLES

    def allows_table(self, table: str) -> bool:
        if self.all_tables:
            return True
        return table.lower() in self.allowed_tables

    def hidden_columns(self, table: str) -> frozenset[str]:
        return self.column_restrictions.get(table.lower(), frozenset())


class PermissionProfile(BaseModel):
    """A named, reusable bundle of per-connection permissions for a team."""

    id: str
    team_id: str
    name: str
    description: str | None = None
    connections: dict[str, ConnectionPermission] = Field(default_factory=dict)


class MemberPermissionAssignment(BaseModel):
    """Links a team member to a profile and/or custom per-connection permissions."""

    team_id: str
    user_id: str
    profile_id: str | None = None
    custom_permissions: list[ConnectionPermission] | None = None


class ValidationResult(BaseModel):
    """Outcome of ``validate_query``.

    Example:
        >>> ValidationResult(allowed=True).violation_type is None
        True
    """

    allowed: bool
    reason: str | None = None
    violation_type: ViolationType | None = None
    statement_class: StatementClass | None = None
    tables: list[str] = Field(default_factory=list)
