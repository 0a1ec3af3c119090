"""Query validation against a member's effective permission.

Every statement in a (possibly multi-statement) SQL string is parsed with
sqlglot and checked in order: view permission, statement class against
``can_edit``, referenced tables against ``allowed_tables`` and referenced
columns against ``column_restrictions``. Statements sqlglot cannot parse
fall back to keyword heuristics over comment-stripped text; a statement the
heuristics cannot place is treated as a write.

Usage:
    >>> from scurry.permissions import ConnectionPermission, validate_query
    >>> perm = ConnectionPermission(connection_id="c1", allowed_tables={"orders"})
    >>> validate_query("SELECT * FROM users", perm).violation_type
    <ViolationType.TABLE_DENIED: 'table-denied'>
"""

import logging
import re

from sqlglot import exp

from scurry.adapters.dialect import Dialect
from scurry.permissions.models import (
    ConnectionPermission,
    StatementClass,
    ValidationResult,
    ViolationType,
)
from scurry.permissions.sqltext import mask_string_literals, parse_statement, split_statements

logger = logging.getLogger(__name__)


# ============================================================================
# Statement classification
# ============================================================================

_DDL_NODES = (exp.Create, exp.Drop, exp.Alter, exp.TruncateTable)
_WRITE_NODES = (exp.Insert, exp.Update, exp.Delete, exp.Merge)
_READ_ROOTS = (exp.Query, exp.Describe)

_READ_KEYWORDS = {"select", "with", "show", "describe", "desc", "explain", "values"}
_WRITE_KEYWORDS = {"insert", "update", "delete", "replace", "merge", "upsert", "copy", "load"}
_DDL_KEYWORDS = {"create", "drop", "alter", "truncate", "rename", "grant", "revoke", "comment"}

_SEVERITY = {StatementClass.READ: 0, StatementClass.WRITE: 1, StatementClass.DDL: 2}

_FIRST_WORD_RE = re.compile(r"^\s*\(*\s*([a-zA-Z]+)")

# EXPLAIN and its options, up to the statement being explained
_EXPLAIN_PREFIX_RE = re.compile(
    r"^\s*explain\b"
    r"(?:\s*\([^)]*\)|\s+(?:analyze|analyse|verbose|extended|partitions"
    r"|query\s+plan|format\s*=\s*\w+))*\s*",
    re.IGNORECASE,
)
_STATEMENT_KEYWORDS = _READ_KEYWORDS | _WRITE_KEYWORDS | _DDL_KEYWORDS


def _classify_by_keyword(statement: str) -> StatementClass:
    match = _FIRST_WORD_RE.match(statement)
    if not match:
        return StatementClass.WRITE
    keyword = match.group(1).lower()
    if keyword == "pragma":
        # PRAGMA name = value changes settings; bare PRAGMA name reads them
        return StatementClass.WRITE if "=" in statement else StatementClass.READ
    if keyword in _READ_KEYWORDS:
        if keyword == "with" and re.search(
            r"\b(insert|update|delete)\b", mask_string_literals(statement), re.IGNORECASE
        ):
            return StatementClass.WRITE
        return StatementClass.READ
    if keyword in _WRITE_KEYWORDS:
        return StatementClass.WRITE
    if keyword in _DDL_KEYWORDS:
        return StatementClass.DDL
    return StatementClass.WRITE


def _classify_tree(tree: exp.Expression) -> StatementClass | None:
    if isinstance(tree, _DDL_NODES):
        return StatementClass.DDL
    if tree.find(exp.Into) is not None:
        # SELECT ... INTO creates a table
        return StatementClass.DDL
    if isinstance(tree, _WRITE_NODES) or tree.find(*_WRITE_NODES) is not None:
        return StatementClass.WRITE
    if isinstance(tree, _READ_ROOTS):
        return StatementClass.READ
    return None


def _explained_statement(statement: str) -> str | None:
    """The statement wrapped by EXPLAIN, or None if *statement* doesn't wrap one.

    ``EXPLAIN users`` (MySQL's table description) wraps nothing.
    """
    match = _EXPLAIN_PREFIX_RE.match(statement)
    if match is None:
        return None
    inner = statement[match.end():]
    first = _FIRST_WORD_RE.match(inner)
    if first is None or first.group(1).lower() not in _STATEMENT_KEYWORDS:
        return None
    return inner


def _classify_statement(
    statement: str, tree: exp.Expression | None, dialect: Dialect | str | None = None
) -> StatementClass:
    if tree is not None:
        cls = _classify_tree(tree)
        if cls is not None:
            return cls
    # EXPLAIN ANALYZE runs the statement, so it takes that statement's class
    explained = _explained_statement(statement)
    if explained is not None:
        return _classify_statement(explained, parse_statement(explained, dialect), dialect)
    return _classify_by_keyword(statement)


def classify_statement(sql: str, dialect: Dialect | str | None = None) -> StatementClass:
    """Classify SQL as read, write or DDL.

    Multi-statement strings take the most severe class of any statement,
    so ``SELECT 1; DROP TABLE t`` is DDL.

    Args:
        sql: One or more SQL statements
        dialect: Dialect used to parse; None uses sqlglot's generic dialect

    Returns:
        StatementClass of the most severe statement (READ for empty input)
    """
    result = StatementClass.READ
    for statement in split_statements(sql):
        cls = _classify_statement(statement, parse_statement(statement, dialect), dialect)
        if _SEVERITY[cls] > _SEVERITY[result]:
            result = cls
    return result


# ============================================================================
# Table and column extraction
# ============================================================================

_TABLE_PATTERNS = [
    re.compile(r"\bfrom\s+([\w.`\"\[\]]+)", re.IGNORECASE),
    re.compile(r"\bjoin\s+([\w.`\"\[\]]+)", re.IGNORECASE),
    re.compile(r"\binto\s+([\w.`\"\[\]]+)", re.IGNORECASE),
    re.compile(r"^\s*update\s+([\w.`\"\[\]]+)", re.IGNORECASE),
    re.compile(r"\btable\s+(?:if\s+(?:not\s+)?exists\s+)?([\w.`\"\[\]]+)", re.IGNORECASE),
]


def _bare_name(name: str) -> str:
    """Last segment of a possibly qualified, possibly quoted name, lowercased."""
    last = name.split(".")[-1]
    return last.strip('`"[]').lower()


def _tables_by_regex(statement: str) -> list[str]:
    text = mask_string_literals(statement)
    found: list[str] = []
    for pattern in _TABLE_PATTERNS:
        for match in pattern.finditer(text):
            name = _bare_name(match.group(1))
            if name and name not in found:
                found.append(name)
    return found


def _tables_in_tree(tree: exp.Expression) -> list[str]:
    cte_names = {cte.alias_or_name.lower() for cte in tree.find_all(exp.CTE)}
    found: list[str] = []
    for table in tree.find_all(exp.Table):
        name = table.name.lower()
        if name and name not in cte_names and name not in found:
            found.append(name)
    return found


def extract_table_names(sql: str, dialect: Dialect | str | None = None) -> list[str]:
    """Lowercased names of every table referenced by *sql*, in first-seen order.

    CTE names are not tables and are skipped. Schema qualifiers are dropped
    (``public.users`` is ``users``).
    """
    found: list[str] = []
    for statement in split_statements(sql):
        tree = parse_statement(statement, dialect)
        names = _tables_in_tree(tree) if tree is not None else _tables_by_regex(statement)
        for name in names:
            if name not in found:
                found.append(name)
    return found


def _alias_map(tree: exp.Expression) -> dict[str, str]:
    aliases: dict[str, str] = {}
    for table in tree.find_all(exp.Table):
        name = table.name.lower()
        aliases[name] = name
        aliases[table.alias_or_name.lower()] = name
    return aliases


def _star_tables(tree: exp.Expression, aliases: dict[str, str], tables: list[str]) -> list[str]:
    """Tables whose columns are pulled in by ``*`` or ``t.*`` projections."""
    starred: list[str] = []
    for select in tree.find_all(exp.Select):
        for projection in select.expressions:
            if isinstance(projection, exp.Star):
                targets = tables
            elif isinstance(projection, exp.Column) and isinstance(projection.this, exp.Star):
                qualifier = projection.table.lower()
                targets = [aliases.get(qualifier, qualifier)] if qualifier else tables
            else:
                continue
            starred.extend(t for t in targets if t not in starred)
    return starred


def _column_violation(
    tree: exp.Expression | None,
    statement: str,
    tables: list[str],
    permission: ConnectionPermission,
) -> str | None:
    restricted = [t for t in tables if permission.hidden_columns(t)]
    if not restricted:
        return None

    if tree is None:
        # Without an AST, any mention of a hidden column name denies
        text = mask_string_literals(statement)
        for table in restricted:
            if re.search(r"\bselect\s+(?:\w+\.)?\*", text, re.IGNORECASE):
                return (
                    f"Cannot use SELECT * on table {table} because some columns are "
                    "restricted. Please specify columns explicitly."
                )
            words = {w.lower() for w in re.findall(r"[A-Za-z_][A-Za-z0-9_]*", text)}
            for column in sorted(permission.hidden_columns(table) & words):
                return f"You do not have access to column: {table}.{column}"
        return None

    aliases = _alias_map(tree)
    for table in _star_tables(tree, aliases, tables):
        if permission.hidden_columns(table):
            return (
                f"Cannot use SELECT * on table {table} because some columns are "
                "restricted. Please specify columns explicitly."
            )

    for column in tree.find_all(exp.Column):
        if isinstance(column.this, exp.Star):
            continue
        name = column.name.lower()
        qualifier = column.table.lower()
        candidates = [aliases.get(qualifier, qualifier)] if qualifier else tables
        for table in candidates:
            if name in permission.hidden_columns(table):
                return f"You do not have access to column: {table}.{name}"
    return None


# ============================================================================
# Validation
# ============================================================================


def _deny(
    reason: str,
    violation: ViolationType,
    statement_class: StatementClass | None = None,
    tables: list[str] | None = None,
    connection_id: str | None = None,
) -> ValidationResult:
    logger.info("Query denied on connection %s: %s: %s", connection_id, violation.value, reason)
    return ValidationResult(
        allowed=False,
        reason=reason,
        violation_type=violation,
        statement_class=statement_class,
        tables=tables or [],
    )


def validate_query(
    sql: str,
    permission: ConnectionPermission | None,
    dialect: Dialect | str | None = None,
) -> ValidationResult:
    """Validate SQL against an effective permission.

    Checks run in order and the first failure wins: permission present,
    ``can_view``, write/DDL statements need ``can_edit``, every referenced
    table must be allowed, and no hidden column may be referenced (which
    includes ``SELECT *`` over a table with hidden columns).

    Args:
        sql: SQL text, possibly several statements
        permission: Effective permission for the connection, or None
        dialect: Connection dialect, used for parsing

    Returns:
        ValidationResult; ``allowed`` is False with ``reason`` and
        ``violation_type`` set on denial
    """
    if permission is None:
        return _deny("No permission assigned for this connection", ViolationType.NO_PERMISSION)

    conn_id = permission.connection_id
    if not permission.can_view:
        return _deny(
            "You do not have view permission for this connection",
            ViolationType.VIEW_DENIED,
            connection_id=conn_id,
        )

    parsed = [(stmt, parse_statement(stmt, dialect)) for stmt in split_statements(sql)]

    statement_class = StatementClass.READ
    for stmt, tree in parsed:
        cls = _classify_statement(stmt, tree, dialect)
        if _SEVERITY[cls] > _SEVERITY[statement_class]:
            statement_class = cls

    if statement_class.is_mutating and not permission.can_edit:
        return _deny(
            "You do not have edit permission for this connection",
            ViolationType.WRITE_DENIED,
            statement_class,
            connection_id=conn_id,
        )

    all_tables: list[str] = []
    per_statement: list[tuple[str, exp.Expression | None, list[str]]] = []
    for stmt, tree in parsed:
        tables = _tables_in_tree(tree) if tree is not None else _tables_by_regex(stmt)
        per_statement.append((stmt, tree, tables))
        all_tables.extend(t for t in tables if t not in all_tables)

    for table in all_tables:
        if not permission.allows_table(table):
            return _deny(
                f"You do not have access to table: {table}",
                ViolationType.TABLE_DENIED,
                statement_class,
                all_tables,
                connection_id=conn_id,
            )

    for stmt, tree, tables in per_statement:
        reason = _column_violation(tree, stmt, tables, permission)
        if reason:
            return _deny(
                reason, ViolationType.COLUMN_DENIED, statement_class, all_tables, connection_id=conn_id
            )

    return ValidationResult(allowed=True, statement_class=statement_class, tables=all_tables)


def filter_allowed_tables(
    table_names: list[str], permission: ConnectionPermission | None
) -> list[str]:
    """Tables the permission lets the member see, in input order and case."""
    if permission is None or not permission.can_view:
        return []
    if permission.all_tables:
        return list(table_names)
    return [name for name in table_names if permission.allows_table(name)]


def filter_allowed_columns(
    table: str, column_names: list[str], permission: ConnectionPermission | None
) -> list[str]:
    """Columns of *table* minus the permission's hidden columns."""
    if permission is None or not permission.can_view:
        return []
    hidden = permission.hidden_columns(table)
    if not hidden:
        return list(column_names)
    return [name for name in column_names if name.lower() not in hidden]
