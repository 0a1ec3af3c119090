"""Substring search over selected columns of one table.

Every searched column is cast to text and matched with ``LIKE`` (``ILIKE``
on PostgreSQL) against ``%term%``. Requests are validated before any SQL is
built, and hidden columns are removed from both the searched columns and
the returned rows.

Usage:
    >>> request = SearchRequest(table="users", columns=["name", "email"], term="ali")
    >>> result = await search_table(executor, conn, request)
    >>> result.search_meta.has_more
    False
"""

import logging
from typing import Any

from pydantic import BaseModel, Field

from scurry.adapters.dialect import build_search_query, validate_identifier
from scurry.adapters.executor import QueryExecutor
from scurry.config.models import ConnectionDescriptor, get_settings
from scurry.errors import PermissionDeniedError, SearchValidationError
from scurry.permissions.models import ConnectionPermission, ViolationType
from scurry.permissions.validator import filter_allowed_columns, filter_allowed_tables

logger = logging.getLogger(__name__)

MIN_TERM_LENGTH = 3
DEFAULT_SEARCH_LIMIT = 100


class SearchRequest(BaseModel):
    """A table search as supplied by the caller.

    ``limit`` of None means the default page size; anything above the
    configured maximum is capped, not rejected.
    """

    table: str
    columns: list[str] = Field(default_factory=list)
    term: str
    limit: int | None = None
    offset: int = 0


class SearchMeta(BaseModel):
    search_term: str
    search_columns: list[str]
    offset: int
    limit: int
    has_more: bool


class SearchResult(BaseModel):
    """Rows matching a search plus the echoed search parameters."""

    columns: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    execution_time_ms: float = 0
    error: str | None = None
    search_meta: SearchMeta


def validate_search_request(request: SearchRequest, max_results: int | None = None) -> SearchRequest:
    """Check a search request and return it with ``limit`` resolved.

    Args:
        request: Caller-supplied request
        max_results: Upper bound for ``limit`` (default: settings.search_max_results)

    Returns:
        Copy of *request* with a concrete, capped ``limit``

    Raises:
        SearchValidationError: Term shorter than 3 characters after
            stripping, no columns, an invalid identifier, a non-positive
            limit or a negative offset.
    """
    if not request.term or len(request.term.strip()) < MIN_TERM_LENGTH:
        raise SearchValidationError(f"Search term must be at least {MIN_TERM_LENGTH} characters")
    if not request.columns:
        raise SearchValidationError("At least one column must be specified for search")
    if not validate_identifier(request.table):
        raise SearchValidationError(f"Invalid table name: {request.table}")
    invalid = [c for c in request.columns if not validate_identifier(c)]
    if invalid:
        raise SearchValidationError(f"Invalid column names: {', '.join(invalid)}")

    if max_results is None:
        max_results = get_settings().search_max_results
    limit = DEFAULT_SEARCH_LIMIT if request.limit is None else request.limit
    if limit < 1:
        raise SearchValidationError("limit must be a positive integer")
    if request.offset < 0:
        raise SearchValidationError("offset must not be negative")

    return request.model_copy(update={"limit": min(limit, max_results)})


async def search_table(
    executor: QueryExecutor,
    conn: ConnectionDescriptor,
    request: SearchRequest,
    permission: ConnectionPermission | None = None,
) -> SearchResult:
    """Run a validated search on *conn*.

    Args:
        executor: Query executor
        conn: Connection to search
        request: Search request; validated before anything runs
        permission: Effective permission for team connections; None for
            personal connections (no filtering)

    Returns:
        SearchResult. Execution failures are reported in ``error``.

    Raises:
        SearchValidationError: Request fails validation.
        PermissionDeniedError: Table not allowed, or every requested column
            is hidden.
    """
    request = validate_search_request(request)
    columns = list(request.columns)

    if permission is not None:
        if not filter_allowed_tables([request.table], permission):
            raise PermissionDeniedError(
                "You do not have access to this table", ViolationType.TABLE_DENIED.value
            )
        columns = filter_allowed_columns(request.table, columns, permission)
        if not columns:
            raise PermissionDeniedError(
                "You do not have access to any of the specified columns",
                ViolationType.COLUMN_DENIED.value,
            )

    sql, params = build_search_query(
        request.table,
        columns,
        f"%{request.term.strip()}%",
        request.limit,
        request.offset,
        conn.dialect,
    )
    result = await executor.execute(conn, sql, params, limit=request.limit)

    result_columns = result.columns
    rows = result.rows
    if permission is not None and result.columns:
        result_columns = filter_allowed_columns(request.table, result.columns, permission)
        rows = [{c: row.get(c) for c in result_columns} for row in rows]

    if result.error:
        logger.info("Search on %s.%s failed: %s", conn.id, request.table, result.error)

    return SearchResult(
        columns=result_columns,
        rows=rows,
        row_count=len(rows),
        execution_time_ms=result.execution_time_ms,
        error=result.error,
        search_meta=SearchMeta(
            search_term=request.term,
            search_columns=columns,
            offset=request.offset,
            limit=request.limit,
            has_more=result.error is None and len(rows) == request.limit,
        ),
    )
