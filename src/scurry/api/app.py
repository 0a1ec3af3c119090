"""FastAPI application exposing query execution, schema browsing, search and sync.

Every JSON response carries an ``error`` key (null on success). Failures map
to status codes: 400 bad request, 401 unauthenticated, 403 no access or
permission denied (``permissionError: true`` for the latter), 404 unknown
connection, 429 rate limited, 500 execution failure.

Connections used without a ``teamId`` are personal: the user must own them
and no permission profile applies. With a ``teamId`` every request is
checked against the member's effective permission first.

Usage:
    >>> from scurry.api import create_app, Services
    >>> app = create_app(Services(users=..., connections=..., access=...,
    ...                           permissions=...))
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import UUID

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from scurry.adapters.executor import QueryResult
from scurry.api.deps import CurrentUser, Services, get_services
from scurry.config.models import ConnectionDescriptor
from scurry.errors import (
    AccessDeniedError,
    ConnectionNotFoundError,
    CrossDialectSyncError,
    IntrospectionError,
    InvalidIdentifierError,
    MissingPrimaryKeyError,
    PermissionDeniedError,
    RateLimitExceededError,
    ScurryError,
    SearchValidationError,
    TableNotFoundError,
    TargetTableMissingError,
    UnsupportedDialectError,
)
from scurry.permissions.models import ConnectionPermission, ViolationType
from scurry.permissions.validator import filter_allowed_tables, validate_query
from scurry.schema.models import SyncContent, SyncScope, SyncState, TableComparison
from scurry.schema.sync import compare_tables, sync_table
from scurry.search import SearchRequest, search_table, validate_search_request
from scurry.security.rate_limiter import rate_limit_key

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ApiError(Exception):
    """An HTTP error with a message and optional extra response fields."""

    def __init__(self, status_code: int, message: str, **extra: Any):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.extra = extra


# First match wins, so subclasses come before their bases
ERROR_STATUS: list[tuple[type[ScurryError], int]] = [
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (AccessDeniedError, status.HTTP_403_FORBIDDEN),
    (ConnectionNotFoundError, status.HTTP_404_NOT_FOUND),
    (TableNotFoundError, status.HTTP_404_NOT_FOUND),
    (RateLimitExceededError, status.HTTP_429_TOO_MANY_REQUESTS),
    (SearchValidationError, status.HTTP_400_BAD_REQUEST),
    (MissingPrimaryKeyError, status.HTTP_400_BAD_REQUEST),
    (CrossDialectSyncError, status.HTTP_400_BAD_REQUEST),
    (TargetTableMissingError, status.HTTP_400_BAD_REQUEST),
    (InvalidIdentifierError, status.HTTP_400_BAD_REQUEST),
    (UnsupportedDialectError, status.HTTP_400_BAD_REQUEST),
    (IntrospectionError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def status_for_error(exc: ScurryError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


class ApiModel(BaseModel):
    """Request body accepting camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QueryExecuteBody(ApiModel):
    connection_id: str
    sql: str = Field(min_length=1)
    limit: int | None = Field(default=None, ge=1, le=10000)
    team_id: str | None = None


class CompareBody(ApiModel):
    source_connection_id: str
    target_connection_id: str
    table_name: str = Field(min_length=1)
    target_table_name: str | None = None
    team_id: str | None = None


class SyncExecuteBody(CompareBody):
    scope: SyncScope = SyncScope.TABLE
    content: SyncContent = SyncContent.DATA
    selected_row_keys: list[str] | None = None


def serialize_value(value: Any) -> Any:
    """Convert a driver value to a JSON-compatible one.

    UUIDs become strings, temporal values ISO 8601 strings, decimals
    strings (no precision loss) and binary values hex strings.
    """
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    return value


def serialize_row(row: dict[str, Any] | None) -> dict[str, Any] | None:
    if row is None:
        return None
    return {k: serialize_value(v) for k, v in row.items()}


def query_payload(result: QueryResult) -> dict[str, Any]:
    return {
        "columns": result.columns,
        "rows": [serialize_row(r) for r in result.rows],
        "rowCount": result.row_count,
        "executionTimeMs": result.execution_time_ms,
        "affectedRows": result.affected_rows,
        "truncated": result.truncated,
        "error": result.error,
    }


def comparison_payload(comparison: TableComparison) -> dict[str, Any]:
    summary = comparison.summary
    return {
        "tableName": comparison.table_name,
        "targetTableName": comparison.target_table_name,
        "primaryKeyColumns": comparison.primary_key_columns,
        "columns": comparison.columns,
        "targetExists": comparison.target_exists,
        "total": summary.total,
        "match": summary.match,
        "different": summary.different,
        "sourceOnly": summary.source_only,
        "targetOnly": summary.target_only,
        "diffs": [
            {
                "primaryKey": serialize_row(d.primary_key),
                "primaryKeySignature": d.primary_key_signature,
                "status": d.status.value,
                "changedColumns": sorted(d.changed_columns),
                "sourceRow": serialize_row(d.source_row),
                "targetRow": serialize_row(d.target_row),
            }
            for d in comparison.diffs
        ],
        "truncated": comparison.truncated,
        "error": comparison.error,
    }


_EMPTY_QUERY = {"columns": [], "rows": [], "rowCount": 0, "executionTimeMs": 0}


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


async def _require_user(services: Services, request: Request) -> CurrentUser:
    user = await services.users.get_current_user(request)
    if user is None:
        raise ApiError(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    return user


async def _resolve_connection(
    services: Services,
    user: CurrentUser,
    connection_id: str,
    team_id: str | None,
    role: str = "",
) -> ConnectionDescriptor:
    """Check workspace access and load the connection.

    Team connections are looked up without an owner filter; personal ones
    must belong to the user.
    """
    access = await services.access.validate_connection_access(user.id, connection_id, team_id)
    if not access.is_valid:
        if role:
            raise AccessDeniedError(f"Access denied to {role} connection")
        raise AccessDeniedError(access.error or "Access denied")

    owner_id = None if team_id else user.id
    connection = await services.connections.get_connection_by_id(connection_id, owner_id)
    if connection is None:
        raise ConnectionNotFoundError(connection_id, role)
    return connection


async def _team_permission(
    services: Services, user: CurrentUser, team_id: str, connection_id: str
) -> ConnectionPermission | None:
    return await services.permissions.get_effective_permissions(user.id, team_id, connection_id)


async def _check_table_access(
    services: Services,
    user: CurrentUser,
    team_id: str | None,
    connection: ConnectionDescriptor,
    table: str,
    write: bool = False,
) -> None:
    """Require read (or write) access to a whole table on a team connection.

    Raises:
        PermissionDeniedError: The member's permission doesn't cover it.
    """
    if not team_id:
        return
    permission = await _team_permission(services, user, team_id, connection.id)
    if permission is None:
        raise PermissionDeniedError(
            "No permission assigned for this connection", ViolationType.NO_PERMISSION.value
        )
    if not permission.can_view:
        raise PermissionDeniedError(
            "You do not have view permission for this connection",
            ViolationType.VIEW_DENIED.value,
        )
    if write and not permission.can_edit:
        raise PermissionDeniedError(
            "You do not have edit permission for this connection",
            ViolationType.WRITE_DENIED.value,
        )
    if not filter_allowed_tables([table], permission):
        raise PermissionDeniedError(
            f"You do not have access to table: {table}", ViolationType.TABLE_DENIED.value
        )
    if permission.hidden_columns(table):
        raise PermissionDeniedError(
            f"Cannot read all rows of table {table} because some columns are restricted",
            ViolationType.COLUMN_DENIED.value,
        )


def _rate_limit(services: Services, user: CurrentUser, limit_type: str) -> None:
    services.rate_limiter.check_or_raise(rate_limit_key(limit_type, user.id), limit_type)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def create_app(services: Services) -> FastAPI:
    """Build the API around *services*.

    Pools owned by ``services.executor`` are disposed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await services.executor.close()

    app = FastAPI(title="scurry", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code, content={**exc.extra, "error": exc.message}
        )

    @app.exception_handler(ScurryError)
    async def scurry_error_handler(request: Request, exc: ScurryError) -> JSONResponse:
        code = status_for_error(exc)
        content: dict[str, Any] = {"error": str(exc)}
        headers = None
        if isinstance(exc, PermissionDeniedError):
            content.update(_EMPTY_QUERY)
            content["permissionError"] = True
            content["violationType"] = exc.violation_type
        elif isinstance(exc, RateLimitExceededError):
            headers = {"Retry-After": str(max(1, int(exc.retry_after + 0.999)))}
        if code >= 500:
            logger.error("Request to %s failed: %s", request.url.path, exc)
        return JSONResponse(status_code=code, content=content, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Validation failed", "details": jsonable_encoder(exc.errors())},
        )

    # -- query ----------------------------------------------------------------

    @app.post("/api/query/execute")
    async def execute_query(
        body: QueryExecuteBody, request: Request, services: Services = Depends(get_services)
    ) -> JSONResponse:
        user = await _require_user(services, request)
        _rate_limit(services, user, "query_execution")
        connection = await _resolve_connection(services, user, body.connection_id, body.team_id)

        if body.team_id:
            permission = await _team_permission(services, user, body.team_id, connection.id)
            validation = validate_query(body.sql, permission, connection.dialect)
            if not validation.allowed:
                raise PermissionDeniedError(
                    validation.reason or "Permission denied",
                    validation.violation_type.value if validation.violation_type else None,
                )

        result = await services.executor.execute(connection, body.sql, limit=body.limit)
        code = status.HTTP_200_OK if result.success else status.HTTP_500_INTERNAL_SERVER_ERROR
        return JSONResponse(status_code=code, content=query_payload(result))

    # -- schema ---------------------------------------------------------------

    @app.get("/api/schema/tables")
    async def list_tables(
        request: Request,
        connection_id: str = Query(alias="connectionId"),
        team_id: str | None = Query(default=None, alias="teamId"),
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        user = await _require_user(services, request)
        _rate_limit(services, user, "schema_fetch")
        connection = await _resolve_connection(services, user, connection_id, team_id)

        tables = await services.introspector.fetch_tables(connection)
        if team_id:
            permission = await _team_permission(services, user, team_id, connection.id)
            allowed = set(filter_allowed_tables([t.name for t in tables], permission))
            tables = [t for t in tables if t.name in allowed]

        return JSONResponse(
            content={
                "tables": [
                    {
                        "name": t.name,
                        "schema": t.schema_name,
                        "type": t.type,
                        "rowCount": t.row_count,
                    }
                    for t in tables
                ],
                "error": None,
            }
        )

    @app.get("/api/schema/tables/{table}/search")
    async def search_rows(
        table: str,
        request: Request,
        connection_id: str = Query(alias="connectionId"),
        search: str = Query(default=""),
        columns: list[str] = Query(default=[]),
        limit: int | None = Query(default=None),
        offset: int = Query(default=0),
        team_id: str | None = Query(default=None, alias="teamId"),
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        # Validated before anything touches the database
        search_request = SearchRequest(
            table=table, columns=columns, term=search, limit=limit, offset=offset
        )
        validate_search_request(search_request, services.settings.search_max_results)

        user = await _require_user(services, request)
        _rate_limit(services, user, "schema_fetch")
        connection = await _resolve_connection(services, user, connection_id, team_id)
        permission = (
            await _team_permission(services, user, team_id, connection.id) if team_id else None
        )
        if team_id and permission is None:
            raise PermissionDeniedError(
                "No permission assigned for this connection", ViolationType.NO_PERMISSION.value
            )

        result = await search_table(services.executor, connection, search_request, permission)
        meta = result.search_meta
        code = status.HTTP_200_OK if result.error is None else status.HTTP_500_INTERNAL_SERVER_ERROR
        return JSONResponse(
            status_code=code,
            content={
                "columns": result.columns,
                "rows": [serialize_row(r) for r in result.rows],
                "rowCount": result.row_count,
                "executionTimeMs": result.execution_time_ms,
                "searchMeta": {
                    "searchTerm": meta.search_term,
                    "searchColumns": meta.search_columns,
                    "offset": meta.offset,
                    "limit": meta.limit,
                    "hasMore": meta.has_more,
                },
                "error": result.error,
            },
        )

    # -- sync -----------------------------------------------------------------

    @app.post("/api/sync/compare")
    async def compare(
        body: CompareBody, request: Request, services: Services = Depends(get_services)
    ) -> JSONResponse:
        user = await _require_user(services, request)
        _rate_limit(services, user, "query_execution")
        source = await _resolve_connection(
            services, user, body.source_connection_id, body.team_id, "source"
        )
        target = await _resolve_connection(
            services, user, body.target_connection_id, body.team_id, "target"
        )
        await _check_table_access(services, user, body.team_id, source, body.table_name)
        await _check_table_access(
            services, user, body.team_id, target, body.target_table_name or body.table_name
        )

        comparison = await compare_tables(
            services.executor,
            services.introspector,
            source,
            target,
            body.table_name,
            target_table_name=body.target_table_name,
            comparison_limit=services.settings.comparison_limit,
        )
        code = (
            status.HTTP_200_OK
            if comparison.error is None
            else status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        return JSONResponse(status_code=code, content=comparison_payload(comparison))

    @app.post("/api/sync/execute")
    async def execute_sync_request(
        body: SyncExecuteBody, request: Request, services: Services = Depends(get_services)
    ) -> JSONResponse:
        user = await _require_user(services, request)
        _rate_limit(services, user, "query_execution")
        source = await _resolve_connection(
            services, user, body.source_connection_id, body.team_id, "source"
        )
        target = await _resolve_connection(
            services, user, body.target_connection_id, body.team_id, "target"
        )
        await _check_table_access(services, user, body.team_id, source, body.table_name)
        await _check_table_access(
            services,
            user,
            body.team_id,
            target,
            body.target_table_name or body.table_name,
            write=True,
        )

        result = await sync_table(
            services.executor,
            services.introspector,
            source,
            target,
            body.table_name,
            scope=body.scope,
            content=body.content,
            selected_keys=body.selected_row_keys,
            target_table_name=body.target_table_name,
            comparison_limit=services.settings.comparison_limit,
            activity_logger=services.activity,
            user_id=user.id,
            team_id=body.team_id,
        )

        code = status.HTTP_200_OK
        if result.error is not None:
            code = (
                status.HTTP_400_BAD_REQUEST
                if result.failed_state is SyncState.VALIDATING
                else status.HTTP_500_INTERNAL_SERVER_ERROR
            )
        return JSONResponse(
            status_code=code,
            content={
                "success": result.success,
                "state": result.state.value,
                "insertedCount": result.inserted_count,
                "updatedCount": result.updated_count,
                "tableCreated": result.table_created,
                "rowsAffected": result.rows_affected,
                "errors": result.errors,
                "truncated": result.truncated,
                "executionTimeMs": result.execution_time_ms,
                "error": result.error,
            },
        )

    return app
