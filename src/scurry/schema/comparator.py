"""Row comparison by primary key.

Classifies every primary key seen on either side of a table comparison as
``match``, ``different``, ``source-only`` or ``target-only``.
Pure logic -- no I/O, no database connections.

Usage:
    from scurry.schema.comparator import calculate_row_diffs, summarize_diffs

    diffs = calculate_row_diffs(
        ["id"],
        source_rows=[{"id": 1, "name": "a"}, {"id": 2, "name": "b"}],
        target_rows=[{"id": 1, "name": "a"}],
        columns=["id", "name"],
    )
    summary = summarize_diffs(diffs)
"""

import json
from collections.abc import Iterable, Sequence
from typing import Any

from scurry.errors import MissingPrimaryKeyError
from scurry.schema.models import ComparisonSummary, DiffStatus, RowDiffEntry


def serialize_primary_key(primary_key_columns: Sequence[str], row: dict[str, Any]) -> str:
    """Stable JSON signature of the primary key values of *row*.

    Keys appear in ``primary_key_columns`` order, so the same row always
    serializes to the same string regardless of the row dict's key order.

    Examples:
        >>> serialize_primary_key(["id"], {"name": "a", "id": 1})
        '{"id":1}'
        >>> serialize_primary_key(["b", "a"], {"a": 1, "b": 2})
        '{"b":2,"a":1}'
    """
    subset = {col: row.get(col) for col in primary_key_columns}
    return json.dumps(subset, default=str, separators=(",", ":"), ensure_ascii=False)


def values_equal(a: Any, b: Any) -> bool:
    """Null-aware deep equality for two cell values.

    ``None`` equals only ``None``; a bool never equals a non-bool (so
    ``True`` and ``1`` differ); dicts and lists compare structurally.
    """
    if a is None or b is None:
        return a is None and b is None
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(values_equal(a[k], b[k]) for k in a)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    return a == b


def calculate_row_diffs(
    primary_key_columns: Sequence[str],
    source_rows: Iterable[dict[str, Any]],
    target_rows: Iterable[dict[str, Any]],
    columns: Sequence[str],
) -> list[RowDiffEntry]:
    """Diff two row sets by primary key in one pass.

    Target rows are indexed by signature; each source row is then looked up
    once.  Non-key *columns* are compared with ``values_equal``.  Target
    signatures never claimed by a source row are emitted last as
    ``target-only``.

    Args:
        primary_key_columns: Primary key column names (at least one).
        source_rows: Rows read from the source table.
        target_rows: Rows read from the target table.
        columns: Every column to compare; key columns are skipped.

    Returns:
        One ``RowDiffEntry`` per distinct signature: source order first,
        then unmatched target rows in target order.

    Raises:
        MissingPrimaryKeyError: If ``primary_key_columns`` is empty.
    """
    if not primary_key_columns:
        raise MissingPrimaryKeyError(action="compare rows")

    key_set = set(primary_key_columns)
    compared = [c for c in columns if c not in key_set]

    target_index: dict[str, dict[str, Any]] = {}
    for row in target_rows:
        target_index.setdefault(serialize_primary_key(primary_key_columns, row), row)

    diffs: list[RowDiffEntry] = []
    seen: set[str] = set()

    for source_row in source_rows:
        signature = serialize_primary_key(primary_key_columns, source_row)
        if signature in seen:
            continue
        seen.add(signature)
        primary_key = {col: source_row.get(col) for col in primary_key_columns}

        target_row = target_index.get(signature)
        if target_row is None:
            diffs.append(
                RowDiffEntry(
                    primary_key=primary_key,
                    primary_key_signature=signature,
                    status=DiffStatus.SOURCE_ONLY,
                    source_row=source_row,
                )
            )
            continue

        changed = {
            col for col in compared
            if not values_equal(source_row.get(col), target_row.get(col))
        }
        diffs.append(
            RowDiffEntry(
                primary_key=primary_key,
                primary_key_signature=signature,
                status=DiffStatus.DIFFERENT if changed else DiffStatus.MATCH,
                changed_columns=changed,
                source_row=source_row,
                target_row=target_row,
            )
        )

    for signature, target_row in target_index.items():
        if signature in seen:
            continue
        diffs.append(
            RowDiffEntry(
                primary_key={col: target_row.get(col) for col in primary_key_columns},
                primary_key_signature=signature,
                status=DiffStatus.TARGET_ONLY,
                target_row=target_row,
            )
        )

    return diffs


def summarize_diffs(diffs: Iterable[RowDiffEntry]) -> ComparisonSummary:
    """Count diff entries per status."""
    summary = ComparisonSummary()
    for entry in diffs:
        summary.total += 1
        match entry.status:
            case DiffStatus.MATCH:
                summary.match += 1
            case DiffStatus.DIFFERENT:
                summary.different += 1
            case DiffStatus.SOURCE_ONLY:
                summary.source_only += 1
            case DiffStatus.TARGET_ONLY:
                summary.target_only += 1
    return summary


def diffs_to_status_map(diffs: Iterable[RowDiffEntry]) -> dict[str, DiffStatus]:
    """Signature -> status lookup, e.g. for row highlighting."""
    return {d.primary_key_signature: d.status for d in diffs}


def diffs_to_changed_columns_map(diffs: Iterable[RowDiffEntry]) -> dict[str, set[str]]:
    """Signature -> changed column names, for ``different`` entries only."""
    return {
        d.primary_key_signature: set(d.changed_columns)
        for d in diffs
        if d.status is DiffStatus.DIFFERENT
    }
