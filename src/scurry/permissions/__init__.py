"""Team permissions: effective permission lookup and query validation.

Usage:
    >>> from scurry.permissions import validate_query, filter_allowed_tables
    >>> from scurry.permissions import detect_dangerous_query
"""

from scurry.permissions.dangerous import (
    DangerLevel,
    DangerousQueryInfo,
    DangerType,
    contains_multiple_statements,
    detect_dangerous_query,
)
from scurry.permissions.models import (
    ALL_TABLES,
    ConnectionPermission,
    MemberPermissionAssignment,
    PermissionProfile,
    StatementClass,
    ValidationResult,
    ViolationType,
)
from scurry.permissions.provider import (
    AssignmentStore,
    InMemoryPermissionStore,
    PermissionProvider,
    StoredPermissionProvider,
    get_effective_permission,
    resolve_effective_permission,
)
from scurry.permissions.validator import (
    classify_statement,
    extract_table_names,
    filter_allowed_columns,
    filter_allowed_tables,
    validate_query,
)

__all__ = [
    # Models
    "ALL_TABLES",
    "ConnectionPermission",
    "MemberPermissionAssignment",
    "PermissionProfile",
    "StatementClass",
    "ValidationResult",
    "ViolationType",
    # Provider
    "AssignmentStore",
    "InMemoryPermissionStore",
    "PermissionProvider",
    "StoredPermissionProvider",
    "get_effective_permission",
    "resolve_effective_permission",
    # Validator
    "classify_statement",
    "extract_table_names",
    "filter_allowed_columns",
    "filter_allowed_tables",
    "validate_query",
    # Dangerous queries
    "DangerLevel",
    "DangerType",
    "DangerousQueryInfo",
    "contains_multiple_statements",
    "detect_dangerous_query",
]
