"""One-directional table sync between two connections of the same dialect.

Rows are matched by primary key.  Source-only rows are inserted into the
target; rows that differ are updated column by column.  Target-only rows
are never deleted and matching rows are never written, so running a sync
twice performs no writes the second time.

Two entry points:

1. ``execute_sync``: apply an already computed diff.
2. ``sync_table``: the full request state machine
   ``validating -> (creating-table) -> diffing -> applying -> completed | failed``,
   including target table creation and reading both sides.

Every INSERT/UPDATE commits independently.  A failing row is recorded in
``SyncResult.errors`` and the sync moves on to the next row.

Usage:
    from scurry.schema.sync import compare_tables, sync_table
    from scurry.schema.models import SyncContent, SyncScope

    comparison = await compare_tables(executor, introspector, src, dst, "users")

    result = await sync_table(
        executor, introspector, src, dst, "users",
        scope=SyncScope.TABLE,
        content=SyncContent.BOTH,
    )
    print(result.inserted_count, result.updated_count, result.errors)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence
from typing import Any, Protocol

from scurry.adapters.dialect import (
    Dialect,
    build_insert,
    build_select_all,
    build_update,
    render_preview,
)
from scurry.adapters.executor import QueryExecutor
from scurry.config.models import ConnectionDescriptor
from scurry.errors import (
    CrossDialectSyncError,
    MissingPrimaryKeyError,
    ScurryError,
    TableNotFoundError,
    TargetTableMissingError,
)
from scurry.schema.comparator import calculate_row_diffs, summarize_diffs
from scurry.schema.ddl import generate_create_table_sql
from scurry.schema.introspector import SchemaIntrospector
from scurry.schema.models import (
    ActivityEvent,
    DiffStatus,
    RowDiffEntry,
    SyncContent,
    SyncResult,
    SyncScope,
    SyncState,
    TableComparison,
    TableStructure,
)

logger = logging.getLogger(__name__)


class ActivityLogger(Protocol):
    """Records auditable events (external collaborator)."""

    async def log_activity(self, event: ActivityEvent) -> None: ...


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _filter_by_scope(
    diffs: Iterable[RowDiffEntry],
    scope: SyncScope,
    selected_keys: Iterable[str] | None,
) -> list[RowDiffEntry]:
    """Entries that a sync with *scope* is allowed to act on.

    ``selected`` keeps only the caller's signatures (none when no keys were
    given); ``table`` keeps every entry.
    """
    if scope is SyncScope.SELECTED:
        wanted = set(selected_keys or ())
        return [d for d in diffs if d.primary_key_signature in wanted]
    return list(diffs)


def _insert_values(entry: RowDiffEntry) -> dict[str, Any]:
    return dict(entry.source_row or {})


def _update_values(entry: RowDiffEntry) -> dict[str, Any]:
    source = entry.source_row or {}
    # Sorted for a stable SET column order
    return {col: source.get(col) for col in sorted(entry.changed_columns)}


def _check_same_dialect(source: ConnectionDescriptor, target: ConnectionDescriptor) -> Dialect:
    if source.dialect is not target.dialect:
        raise CrossDialectSyncError(source.dialect.value, target.dialect.value)
    return source.dialect


async def _log(activity_logger: ActivityLogger | None, event: ActivityEvent) -> None:
    if activity_logger is None:
        return
    try:
        await activity_logger.log_activity(event)
    except Exception as e:
        # Best-effort: the write already committed
        logger.warning("Failed to record activity %s: %s", event.action, e)


async def _resolve_source(
    introspector: SchemaIntrospector,
    source: ConnectionDescriptor,
    table_name: str,
) -> TableStructure:
    resolved = await introspector.validate_table_exists(source, table_name)
    if resolved is None:
        raise TableNotFoundError(table_name, "source")
    structure = await introspector.fetch_table_structure(source, resolved)
    if not structure.primary_key_columns:
        raise MissingPrimaryKeyError(resolved)
    return structure


class _ReadError(Exception):
    pass


async def _read_rows(
    executor: QueryExecutor,
    conn: ConnectionDescriptor,
    table: str,
    limit: int,
    side: str,
    primary_key_columns: Sequence[str],
) -> tuple[list[dict[str, Any]], bool]:
    # Both sides are windowed by primary key so truncated reads line up.
    # One extra row so the executor can tell us the table was truncated.
    sql = build_select_all(table, conn.dialect, limit + 1, list(primary_key_columns))
    result = await executor.execute(conn, sql, limit=limit)
    if result.error is not None:
        raise _ReadError(f"{side.capitalize()} query failed: {result.error}")
    return result.rows, result.truncated


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def count_sync_operations(
    diffs: Iterable[RowDiffEntry],
    scope: SyncScope = SyncScope.TABLE,
    selected_keys: Iterable[str] | None = None,
) -> dict[str, int]:
    """Count the writes a sync would perform.

    Returns:
        ``{"inserts": n, "updates": n, "deletes": 0}``; deletes are always
        zero since sync never removes target rows.
    """
    scoped = _filter_by_scope(diffs, scope, selected_keys)
    return {
        "inserts": sum(1 for d in scoped if d.status is DiffStatus.SOURCE_ONLY),
        "updates": sum(
            1 for d in scoped if d.status is DiffStatus.DIFFERENT and d.changed_columns
        ),
        "deletes": 0,
    }


def generate_sync_sql(
    table_name: str,
    primary_key_columns: Sequence[str],
    diffs: Iterable[RowDiffEntry],
    dialect: Dialect | str,
    scope: SyncScope = SyncScope.TABLE,
    selected_keys: Iterable[str] | None = None,
) -> list[str]:
    """Preview the statements a sync would run, with values inlined.

    Each statement is preceded by a ``-- INSERT for PK: ...`` or
    ``-- UPDATE for PK: ...`` comment line.  For display only.
    """
    statements: list[str] = []
    scoped = _filter_by_scope(diffs, scope, selected_keys)

    for entry in scoped:
        if entry.status is DiffStatus.SOURCE_ONLY and entry.source_row:
            sql, params = build_insert(table_name, _insert_values(entry), dialect)
            statements.append(f"-- INSERT for PK: {entry.primary_key_signature}")
            statements.append(render_preview(sql, params, dialect) + ";")

    for entry in scoped:
        if entry.status is DiffStatus.DIFFERENT and entry.changed_columns:
            sql, params = build_update(
                table_name,
                _update_values(entry),
                list(primary_key_columns),
                entry.primary_key,
                dialect,
            )
            statements.append(f"-- UPDATE for PK: {entry.primary_key_signature}")
            statements.append(render_preview(sql, params, dialect) + ";")

    return statements


async def execute_sync(
    executor: QueryExecutor,
    source_conn: ConnectionDescriptor,
    target_conn: ConnectionDescriptor,
    table_name: str,
    primary_key_columns: Sequence[str],
    diffs: Iterable[RowDiffEntry],
    scope: SyncScope = SyncScope.TABLE,
    content: SyncContent = SyncContent.DATA,
    selected_keys: Iterable[str] | None = None,
    target_table_name: str | None = None,
) -> SyncResult:
    """Apply a computed diff to the target table.

    INSERTs for ``source-only`` entries run first, then UPDATEs for
    ``different`` entries, one statement at a time.  ``match`` and
    ``target-only`` entries are never touched.

    Args:
        executor: Query executor for the target writes.
        source_conn: Source connection (only its dialect is used here).
        target_conn: Target connection written to.
        table_name: Source table name.
        primary_key_columns: Key columns used in UPDATE ... WHERE.
        diffs: Output of ``calculate_row_diffs``.
        scope: ``selected`` restricts to *selected_keys*; ``table`` applies
            every qualifying entry.
        content: Rows are written only when content includes data.
        selected_keys: Primary key signatures chosen by the user.
        target_table_name: Target table (defaults to *table_name*).

    Returns:
        ``SyncResult`` with counts and per-row errors.  A dialect mismatch
        yields a failed result with no writes.
    """
    start = time.perf_counter()
    result = SyncResult(state=SyncState.VALIDATING)

    try:
        dialect = _check_same_dialect(source_conn, target_conn)
        if not primary_key_columns:
            raise MissingPrimaryKeyError(table_name)
    except ScurryError as e:
        result.fail(str(e))
        result.execution_time_ms = round((time.perf_counter() - start) * 1000, 3)
        return result

    target_table = target_table_name or table_name
    result.state = SyncState.APPLYING

    if content.includes_data:
        scoped = _filter_by_scope(diffs, scope, selected_keys)

        for entry in scoped:
            if entry.status is not DiffStatus.SOURCE_ONLY or not entry.source_row:
                continue
            try:
                sql, params = build_insert(target_table, _insert_values(entry), dialect)
                outcome = await executor.execute(target_conn, sql, params)
            except Exception as e:
                result.errors.append(f"Insert error for PK {entry.primary_key_signature}: {e}")
                continue
            if outcome.error is not None:
                result.errors.append(
                    f"Insert error for PK {entry.primary_key_signature}: {outcome.error}"
                )
            else:
                result.inserted_count += 1
                result.rows_affected += outcome.affected_rows or 0

        for entry in scoped:
            if entry.status is not DiffStatus.DIFFERENT or not entry.changed_columns:
                continue
            try:
                sql, params = build_update(
                    target_table,
                    _update_values(entry),
                    list(primary_key_columns),
                    entry.primary_key,
                    dialect,
                )
                outcome = await executor.execute(target_conn, sql, params)
            except Exception as e:
                result.errors.append(f"Update error for PK {entry.primary_key_signature}: {e}")
                continue
            if outcome.error is not None:
                result.errors.append(
                    f"Update error for PK {entry.primary_key_signature}: {outcome.error}"
                )
            else:
                result.updated_count += 1
                result.rows_affected += outcome.affected_rows or 0

    result.state = SyncState.COMPLETED
    result.success = not result.errors
    result.execution_time_ms = round((time.perf_counter() - start) * 1000, 3)

    logger.info(
        "Synced %s -> %s.%s: %d inserted, %d updated, %d errors",
        source_conn.id, target_conn.id, target_table,
        result.inserted_count, result.updated_count, len(result.errors),
    )
    return result


async def compare_tables(
    executor: QueryExecutor,
    introspector: SchemaIntrospector,
    source_conn: ConnectionDescriptor,
    target_conn: ConnectionDescriptor,
    table_name: str,
    target_table_name: str | None = None,
    comparison_limit: int | None = None,
) -> TableComparison:
    """Diff the first ``comparison_limit`` rows of a table on two connections.

    Raises:
        TableNotFoundError: If the source table does not exist.
        MissingPrimaryKeyError: If the source table has no primary key.
        IntrospectionError: If a catalog query fails.

    Returns:
        ``TableComparison``.  When the target table is missing, every
        source row is ``source-only`` and ``target_exists`` is False.  Row
        read failures are reported in ``error``.
    """
    limit = comparison_limit or executor.settings.comparison_limit

    structure = await _resolve_source(introspector, source_conn, table_name)
    source_table = structure.table
    target_lookup = await introspector.validate_table_exists(
        target_conn, target_table_name or source_table
    )

    comparison = TableComparison(
        table_name=source_table,
        target_table_name=target_lookup or target_table_name or source_table,
        primary_key_columns=structure.primary_key_columns,
        columns=[c.name for c in structure.columns],
        target_exists=target_lookup is not None,
    )

    try:
        source_rows, source_truncated = await _read_rows(
            executor, source_conn, source_table, limit, "source",
            comparison.primary_key_columns,
        )
        target_rows: list[dict[str, Any]] = []
        target_truncated = False
        if target_lookup is not None:
            target_rows, target_truncated = await _read_rows(
                executor, target_conn, target_lookup, limit, "target",
                comparison.primary_key_columns,
            )
    except (_ReadError, ScurryError) as e:
        comparison.error = str(e)
        return comparison

    comparison.diffs = calculate_row_diffs(
        comparison.primary_key_columns, source_rows, target_rows, comparison.columns
    )
    comparison.summary = summarize_diffs(comparison.diffs)
    comparison.truncated = source_truncated or target_truncated
    return comparison


async def sync_table(
    executor: QueryExecutor,
    introspector: SchemaIntrospector,
    source_conn: ConnectionDescriptor,
    target_conn: ConnectionDescriptor,
    table_name: str,
    scope: SyncScope = SyncScope.TABLE,
    content: SyncContent = SyncContent.DATA,
    selected_keys: Iterable[str] | None = None,
    target_table_name: str | None = None,
    comparison_limit: int | None = None,
    activity_logger: ActivityLogger | None = None,
    user_id: str | None = None,
    team_id: str | None = None,
) -> SyncResult:
    """Run a complete sync request.

    Validation (dialects, source table, primary key, target table
    existence) happens before any write.  A missing target table is
    created from the source structure only when *content* includes
    structure; otherwise the request fails with ``TargetTableMissingError``'s
    message and nothing is touched.

    Returns:
        ``SyncResult``.  On a fatal error ``state`` is ``failed``,
        ``failed_state`` names the phase and ``error`` the reason.
    """
    start = time.perf_counter()
    limit = comparison_limit or executor.settings.comparison_limit
    result = SyncResult(state=SyncState.VALIDATING)

    def finish() -> SyncResult:
        result.execution_time_ms = round((time.perf_counter() - start) * 1000, 3)
        return result

    # -- validating ---------------------------------------------------------
    try:
        dialect = _check_same_dialect(source_conn, target_conn)
        structure = await _resolve_source(introspector, source_conn, table_name)
        target_table = await introspector.validate_table_exists(
            target_conn, target_table_name or structure.table
        )
        if target_table is None and not content.includes_structure:
            raise TargetTableMissingError(target_table_name or structure.table)
    except ScurryError as e:
        logger.info("Sync of %s rejected: %s", table_name, e)
        result.fail(str(e))
        return finish()

    source_table = structure.table
    primary_key_columns = structure.primary_key_columns

    # -- creating-table -----------------------------------------------------
    if target_table is None:
        result.state = SyncState.CREATING_TABLE
        target_table = target_table_name or source_table
        try:
            ddl = generate_create_table_sql(
                target_table, structure.columns, structure.indexes, dialect
            )
        except ScurryError as e:
            result.fail(f"Failed to create table in target: {e}")
            return finish()

        logger.info("Creating table in target %s: %s", target_conn.id, ddl)
        created = await executor.execute(target_conn, ddl)
        if created.error is not None:
            result.fail(f"Failed to create table in target: {created.error}")
            return finish()

        result.table_created = True
        await _log(
            activity_logger,
            ActivityEvent(
                action="table_created",
                resource_id=target_conn.id,
                user_id=user_id,
                team_id=team_id,
                metadata={
                    "syncOperation": True,
                    "tableCreated": True,
                    "sourceConnectionId": source_conn.id,
                    "tableName": target_table,
                },
            ),
        )

    if not content.includes_data:
        result.state = SyncState.COMPLETED
        result.success = True
        return finish()

    # -- diffing ------------------------------------------------------------
    result.state = SyncState.DIFFING
    columns = [c.name for c in structure.columns]
    try:
        source_rows, source_truncated = await _read_rows(
            executor, source_conn, source_table, limit, "source", primary_key_columns
        )
        target_rows: list[dict[str, Any]] = []
        target_truncated = False
        if not result.table_created:
            target_rows, target_truncated = await _read_rows(
                executor, target_conn, target_table, limit, "target", primary_key_columns
            )
    except (_ReadError, ScurryError) as e:
        result.fail(str(e))
        return finish()

    diffs = calculate_row_diffs(primary_key_columns, source_rows, target_rows, columns)
    result.truncated = source_truncated or target_truncated
    if target_truncated:
        # Source-only rows may already exist past the target window
        diffs = [d for d in diffs if d.status is not DiffStatus.SOURCE_ONLY]
    if result.truncated:
        logger.warning(
            "Sync of %s covered only the first %d rows by primary key", source_table, limit
        )

    # -- applying -----------------------------------------------------------
    result.state = SyncState.APPLYING
    applied = await execute_sync(
        executor,
        source_conn,
        target_conn,
        source_table,
        primary_key_columns,
        diffs,
        scope=scope,
        content=content,
        selected_keys=selected_keys,
        target_table_name=target_table,
    )
    result.inserted_count = applied.inserted_count
    result.updated_count = applied.updated_count
    result.rows_affected = applied.rows_affected
    result.errors = applied.errors
    result.state = SyncState.COMPLETED
    result.success = not result.errors

    for action, count in (
        ("data_inserted", result.inserted_count),
        ("data_updated", result.updated_count),
    ):
        if count > 0:
            await _log(
                activity_logger,
                ActivityEvent(
                    action=action,
                    resource_id=target_conn.id,
                    user_id=user_id,
                    team_id=team_id,
                    metadata={
                        "syncOperation": True,
                        "sourceConnectionId": source_conn.id,
                        "tableName": target_table,
                        "rowCount": count,
                    },
                ),
            )

    return finish()
