"""Exception taxonomy for scurry.

Four families of failure:

- **Configuration errors** -- unsupported dialect, missing primary key,
  invalid identifier, malformed config.  Fatal, never retried.
- **Access errors** -- unknown connection, no access to a connection,
  permission denied for a table/column/statement class.
- **Execution errors** -- a single SQL statement fails.  These are *not*
  raised by the query executor; they are returned in result objects.
- **Cross-dialect errors** -- source and target dialects differ in a sync.

Usage:
    from scurry.errors import MissingPrimaryKeyError, PermissionDeniedError
"""


class ScurryError(Exception):
    """Base class for all scurry errors."""

    pass


# ============================================================================
# Configuration errors
# ============================================================================


class ConfigError(ScurryError):
    """Raised when scurry.toml or a connection entry is invalid."""

    pass


class UnsupportedDialectError(ScurryError):
    """Raised when a dialect tag is not one of mysql/mariadb/postgresql/sqlite."""

    def __init__(self, dialect: object):
        super().__init__(f"Unsupported database type: {dialect}")
        self.dialect = dialect


class InvalidIdentifierError(ScurryError):
    """Raised when a table or column name fails identifier validation."""

    def __init__(self, name: object):
        super().__init__(f"Invalid identifier: {name}")
        self.name = name


class MissingPrimaryKeyError(ScurryError):
    """Raised when a diff or sync is requested for a table without a primary key."""

    def __init__(self, table: str | None = None, action: str = "sync"):
        subject = f"Table '{table}'" if table else "Table"
        super().__init__(
            f"{subject} has no primary key. Cannot {action} without primary key."
        )
        self.table = table


# ============================================================================
# Access errors
# ============================================================================


class ConnectionNotFoundError(ScurryError):
    """Raised when a connection id cannot be resolved."""

    def __init__(self, connection_id: str, role: str = ""):
        label = f"{role.capitalize()} connection" if role else "Connection"
        super().__init__(f"{label} not found")
        self.connection_id = connection_id


class AccessDeniedError(ScurryError):
    """Raised when the user has no access to a connection at all."""

    pass


class PermissionDeniedError(ScurryError):
    """Raised when a permission profile forbids the requested operation.

    ``violation_type`` is machine-readable (``write-denied``,
    ``table-denied``, ...) so callers can render a precise message.
    """

    def __init__(self, message: str, violation_type: str | None = None):
        super().__init__(message)
        self.violation_type = violation_type


class RateLimitExceededError(ScurryError):
    """Raised when a caller exceeds its sliding-window request budget."""

    def __init__(self, key: str, limit: int, window_seconds: float, retry_after: float):
        super().__init__(
            f"Rate limit exceeded for '{key}': {limit} requests per "
            f"{window_seconds:g}s. Retry in {retry_after:.1f}s."
        )
        self.key = key
        self.limit = limit
        self.retry_after = retry_after


# ============================================================================
# Schema / sync errors
# ============================================================================


class IntrospectionError(ScurryError):
    """Raised when a catalog query fails."""

    pass


class CrossDialectSyncError(ScurryError):
    """Raised when source and target connections use different dialects."""

    def __init__(self, source: str, target: str):
        super().__init__(
            "Cannot sync between different database types "
            f"({source} -> {target}). Use comparison view only."
        )
        self.source = source
        self.target = target


class TargetTableMissingError(ScurryError):
    """Raised when the target table is absent and structure sync is disabled."""

    def __init__(self, table: str):
        super().__init__(
            f'Table "{table}" does not exist in target database. '
            'Enable "Table structure" sync to create it.'
        )
        self.table = table


class SearchValidationError(ScurryError):
    """Raised when a table search request fails its preconditions."""

    pass


class TableNotFoundError(ScurryError):
    """Raised when a table is not present on a connection."""

    def __init__(self, table: str, role: str = ""):
        where = f" in {role} database" if role else ""
        super().__init__(f'Table "{table}" does not exist{where}')
        self.table = table
