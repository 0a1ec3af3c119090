"""Detection of destructive SQL that should be confirmed before running.

Each statement is checked after comments are stripped, so a ``DROP TABLE``
hidden behind ``SELECT 1;`` is still reported. Statements are inspected on
the sqlglot tree, so qualified and aliased names are caught; regex patterns
cover statements sqlglot cannot parse. Critical operations (dropping a
database or table, truncating) ask the user to type the affected object's
name to confirm.

Usage:
    >>> from scurry.permissions.dangerous import detect_dangerous_query
    >>> info = detect_dangerous_query("DROP TABLE users")
    >>> info.level, info.affected_object, info.requires_typing_to_confirm
    (<DangerLevel.CRITICAL: 'critical'>, 'users', True)
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from pydantic import BaseModel
from sqlglot import exp

from scurry.adapters.dialect import Dialect
from scurry.permissions.sqltext import parse_statement, split_statements


class DangerLevel(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    SAFE = "safe"


class DangerType(str, Enum):
    DROP_TABLE = "drop_table"
    DROP_DATABASE = "drop_database"
    DROP_INDEX = "drop_index"
    TRUNCATE = "truncate"
    DELETE_ALL = "delete_all"
    UPDATE_ALL = "update_all"
    ALTER_TABLE = "alter_table"


class DangerousQueryInfo(BaseModel):
    """What makes a query dangerous and how to confirm it."""

    is_dangerous: bool = False
    level: DangerLevel = DangerLevel.SAFE
    type: DangerType | None = None
    affected_object: str | None = None
    message: str = ""
    requires_confirmation: bool = False
    requires_typing_to_confirm: bool = False


@dataclass(frozen=True)
class _DangerPattern:
    pattern: re.Pattern
    type: DangerType
    level: DangerLevel
    message: Callable[[re.Match], str]


_NAME = r"[`\"']?(\w+)[`\"']?"

# Fallback for statements sqlglot cannot parse; the first match wins
DANGEROUS_PATTERNS: list[_DangerPattern] = [
    _DangerPattern(
        re.compile(rf"^\s*DROP\s+(?:DATABASE|SCHEMA)\s+(?:IF\s+EXISTS\s+)?{_NAME}\s*$", re.I),
        DangerType.DROP_DATABASE,
        DangerLevel.CRITICAL,
        lambda m: f'This will permanently delete the entire database "{m[1]}" and all its data.',
    ),
    _DangerPattern(
        re.compile(rf"^\s*DROP\s+TABLE\s+(?:IF\s+EXISTS\s+)?{_NAME}\s*$", re.I),
        DangerType.DROP_TABLE,
        DangerLevel.CRITICAL,
        lambda m: f'This will permanently delete the table "{m[1]}" and all its data.',
    ),
    _DangerPattern(
        re.compile(r"^\s*DROP\s+TABLE\s+(?:IF\s+EXISTS\s+)?(.+?)\s*$", re.I | re.S),
        DangerType.DROP_TABLE,
        DangerLevel.CRITICAL,
        lambda m: f"This will permanently delete the table(s): {m[1]}.",
    ),
    _DangerPattern(
        re.compile(rf"^\s*TRUNCATE\s+(?:TABLE\s+)?{_NAME}\s*$", re.I),
        DangerType.TRUNCATE,
        DangerLevel.CRITICAL,
        lambda m: f'This will delete ALL rows from "{m[1]}". This cannot be rolled back.',
    ),
    _DangerPattern(
        re.compile(rf"^\s*DROP\s+INDEX\s+(?:IF\s+EXISTS\s+)?{_NAME}", re.I),
        DangerType.DROP_INDEX,
        DangerLevel.WARNING,
        lambda m: f'This will drop the index "{m[1]}", which may affect query performance.',
    ),
    _DangerPattern(
        re.compile(rf"^\s*DELETE\s+FROM\s+{_NAME}\s*$", re.I),
        DangerType.DELETE_ALL,
        DangerLevel.WARNING,
        lambda m: f'This will delete ALL rows from "{m[1]}" (no WHERE clause).',
    ),
    _DangerPattern(
        re.compile(rf"^\s*DELETE\s+FROM\s+{_NAME}\s+WHERE\s+(?:1\s*=\s*1|true)\s*$", re.I),
        DangerType.DELETE_ALL,
        DangerLevel.WARNING,
        lambda m: f'This will delete ALL rows from "{m[1]}" (WHERE clause always true).',
    ),
    _DangerPattern(
        re.compile(rf"^\s*UPDATE\s+{_NAME}\s+SET\s+(?:(?!\bWHERE\b).)+$", re.I | re.S),
        DangerType.UPDATE_ALL,
        DangerLevel.WARNING,
        lambda m: f'This will update ALL rows in "{m[1]}" (no WHERE clause).',
    ),
    _DangerPattern(
        re.compile(rf"^\s*ALTER\s+TABLE\s+{_NAME}\s+DROP\s+(?:COLUMN\s+)?{_NAME}", re.I),
        DangerType.ALTER_TABLE,
        DangerLevel.WARNING,
        lambda m: f'This will permanently remove column "{m[2]}" from table "{m[1]}".',
    ),
]


def _make_info(
    danger_type: DangerType, level: DangerLevel, affected_object: str, message: str
) -> DangerousQueryInfo:
    return DangerousQueryInfo(
        is_dangerous=True,
        level=level,
        type=danger_type,
        affected_object=affected_object,
        message=message,
        requires_confirmation=True,
        requires_typing_to_confirm=level is DangerLevel.CRITICAL,
    )


def _object_names(tree: exp.Expression) -> list[str]:
    """Names of the tables (or schemas) a statement targets, unqualified."""
    names: list[str] = []
    for table in tree.find_all(exp.Table):
        name = table.name or table.text("db")
        if name and name not in names:
            names.append(name)
    return names


def _kind(node: exp.Expression) -> str:
    return (node.args.get("kind") or "").upper()


def _always_true(where: exp.Expression | None) -> bool:
    if where is None:
        return False
    condition = where.this
    if isinstance(condition, exp.Boolean):
        return condition.this is True
    return (
        isinstance(condition, exp.EQ)
        and isinstance(condition.left, exp.Literal)
        and condition.left == condition.right
    )


def _match_tree(tree: exp.Expression) -> DangerousQueryInfo | None:
    """Danger for a parsed statement, or None when it is safe."""
    if isinstance(tree, exp.Drop):
        names = _object_names(tree)
        if not names:
            return None
        name = ", ".join(names)
        if _kind(tree) in ("DATABASE", "SCHEMA"):
            return _make_info(
                DangerType.DROP_DATABASE,
                DangerLevel.CRITICAL,
                name,
                f'This will permanently delete the entire database "{name}" and all its data.',
            )
        if _kind(tree) == "TABLE":
            message = (
                f'This will permanently delete the table "{name}" and all its data.'
                if len(names) == 1
                else f"This will permanently delete the table(s): {name}."
            )
            return _make_info(DangerType.DROP_TABLE, DangerLevel.CRITICAL, name, message)
        if _kind(tree) == "INDEX":
            return _make_info(
                DangerType.DROP_INDEX,
                DangerLevel.WARNING,
                names[0],
                f'This will drop the index "{names[0]}", which may affect query performance.',
            )
        return None

    if isinstance(tree, exp.TruncateTable):
        names = _object_names(tree)
        if not names:
            return None
        name = ", ".join(names)
        return _make_info(
            DangerType.TRUNCATE,
            DangerLevel.CRITICAL,
            name,
            f'This will delete ALL rows from "{name}". This cannot be rolled back.',
        )

    if isinstance(tree, exp.Alter):
        table = tree.this.name if isinstance(tree.this, exp.Table) else ""
        for action in tree.args.get("actions") or []:
            if isinstance(action, exp.Drop) and _kind(action) == "COLUMN":
                column = action.find(exp.Column, exp.Table)
                column_name = column.name if column is not None else ""
                return _make_info(
                    DangerType.ALTER_TABLE,
                    DangerLevel.WARNING,
                    table,
                    f'This will permanently remove column "{column_name}" from table "{table}".',
                )
        return None

    if isinstance(tree, (exp.Delete, exp.Update)):
        where = tree.args.get("where")
        if where is not None and not _always_true(where):
            return None
        target = tree.this if isinstance(tree.this, exp.Table) else tree.find(exp.Table)
        table = target.name if target is not None else ""
        reason = "WHERE clause always true" if where is not None else "no WHERE clause"
        if isinstance(tree, exp.Delete):
            return _make_info(
                DangerType.DELETE_ALL,
                DangerLevel.WARNING,
                table,
                f'This will delete ALL rows from "{table}" ({reason}).',
            )
        return _make_info(
            DangerType.UPDATE_ALL,
            DangerLevel.WARNING,
            table,
            f'This will update ALL rows in "{table}" ({reason}).',
        )

    return None


def _match_statement(
    statement: str, dialect: Dialect | str | None = None
) -> DangerousQueryInfo | None:
    tree = parse_statement(statement, dialect)
    if tree is not None:
        return _match_tree(tree)
    return _match_pattern(statement)


def _match_pattern(statement: str) -> DangerousQueryInfo | None:
    for danger in DANGEROUS_PATTERNS:
        match = danger.pattern.match(statement)
        if match is None:
            continue
        return _make_info(
            danger.type, danger.level, re.sub(r"[`\"']", "", match[1]), danger.message(match)
        )
    return None


def detect_dangerous_query(sql: str, dialect: Dialect | str | None = None) -> DangerousQueryInfo:
    """Report the most severe destructive statement in *sql*.

    Args:
        sql: One or more SQL statements
        dialect: Dialect used to parse; None uses sqlglot's generic dialect

    Returns:
        DangerousQueryInfo; ``is_dangerous`` is False and ``level`` is
        ``safe`` when nothing matched. Among several dangerous statements a
        critical one is reported before any warning.
    """
    first_warning: DangerousQueryInfo | None = None
    for statement in split_statements(sql):
        info = _match_statement(statement, dialect)
        if info is None:
            continue
        if info.level is DangerLevel.CRITICAL:
            return info
        if first_warning is None:
            first_warning = info
    return first_warning or DangerousQueryInfo()


def contains_multiple_statements(sql: str) -> bool:
    """True when *sql* holds more than one statement (a trailing ``;`` doesn't count)."""
    return len(split_statements(sql)) > 1
