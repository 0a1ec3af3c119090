"""Dialect adapter: identifier quoting, placeholders, and statement builders.

Every piece of dialect-specific SQL text in scurry is produced here.  Other
modules never hand-build quoted identifiers or parameter markers; they call
the builders below and pass the resulting ``(sql, params)`` pair to the
query executor.

Pure functions, no I/O.

Usage:
    from scurry.adapters.dialect import Dialect, build_insert, quote_identifier

    sql, params = build_insert("users", {"id": 1, "name": "a"}, Dialect.POSTGRESQL)
    # 'INSERT INTO "users" ("id", "name") VALUES ($1, $2)', [1, 'a']
"""

from __future__ import annotations

import re
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy.engine import URL

from scurry.errors import InvalidIdentifierError, UnsupportedDialectError

if TYPE_CHECKING:
    from scurry.config.models import ConnectionDescriptor


class Dialect(str, Enum):
    """Supported database engines."""

    MYSQL = "mysql"
    MARIADB = "mariadb"
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"


DEFAULT_PORTS: dict[Dialect, int] = {
    Dialect.MYSQL: 3306,
    Dialect.MARIADB: 3306,
    Dialect.POSTGRESQL: 5432,
    Dialect.SQLITE: 0,
}

# SQLAlchemy async driver per dialect
DRIVERS: dict[Dialect, str] = {
    Dialect.MYSQL: "mysql+aiomysql",
    Dialect.MARIADB: "mysql+aiomysql",
    Dialect.POSTGRESQL: "postgresql+asyncpg",
    Dialect.SQLITE: "sqlite+aiosqlite",
}

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

_TRUE_STRINGS = frozenset({"true", "1", "yes", "t"})


def get_dialect(tag: Dialect | str) -> Dialect:
    """Resolve a dialect tag (case-insensitive) to a ``Dialect``.

    Raises:
        UnsupportedDialectError: If the tag is not a supported engine.
    """
    if isinstance(tag, Dialect):
        return tag
    try:
        return Dialect(str(tag).strip().lower())
    except ValueError:
        raise UnsupportedDialectError(tag) from None


def default_port(dialect: Dialect | str) -> int:
    """Default TCP port for a dialect (0 for file-based SQLite)."""
    return DEFAULT_PORTS[get_dialect(dialect)]


# ------------------------------------------------------------------
# Identifiers and placeholders
# ------------------------------------------------------------------


def validate_identifier(name: str) -> bool:
    """Return True if *name* is a safe table/column identifier.

    Letters, digits and underscores, starting with a letter or underscore.
    One dot is allowed for schema-qualified names (``public.users``).
    """
    if not name or not isinstance(name, str):
        return False
    return _IDENTIFIER_RE.match(name) is not None


def _quote_part(part: str, dialect: Dialect) -> str:
    match dialect:
        case Dialect.MYSQL | Dialect.MARIADB:
            return f"`{part}`"
        case Dialect.POSTGRESQL | Dialect.SQLITE:
            return f'"{part}"'
    raise UnsupportedDialectError(dialect)


def quote_identifier(name: str, dialect: Dialect | str) -> str:
    """Quote an identifier for *dialect*.

    Backticks for MySQL/MariaDB, double quotes for PostgreSQL/SQLite.
    Schema-qualified names are quoted per part.

    Raises:
        InvalidIdentifierError: If *name* fails ``validate_identifier``.
        UnsupportedDialectError: For an unknown dialect tag.

    Examples:
        >>> quote_identifier("users", "mysql")
        '`users`'
        >>> quote_identifier("public.users", "postgresql")
        '"public"."users"'
    """
    d = get_dialect(dialect)
    if not validate_identifier(name):
        raise InvalidIdentifierError(name)
    return ".".join(_quote_part(part, d) for part in name.split("."))


def placeholder(index: int, dialect: Dialect | str) -> str:
    """Positional parameter marker for the 1-based parameter *index*.

    ``$N`` for PostgreSQL (asyncpg), ``?`` for SQLite (aiosqlite) and
    ``%s`` for MySQL/MariaDB (aiomysql), i.e. the native positional
    paramstyle of each async driver.
    """
    match get_dialect(dialect):
        case Dialect.POSTGRESQL:
            return f"${index}"
        case Dialect.SQLITE:
            return "?"
        case Dialect.MYSQL | Dialect.MARIADB:
            return "%s"
    raise UnsupportedDialectError(dialect)


def text_cast(column_sql: str, dialect: Dialect | str) -> str:
    """Cast an already-quoted column to a text type for LIKE matching."""
    match get_dialect(dialect):
        case Dialect.MYSQL | Dialect.MARIADB:
            return f"CAST({column_sql} AS CHAR)"
        case _:
            return f"CAST({column_sql} AS TEXT)"


def like_operator(dialect: Dialect | str) -> str:
    """Case-insensitive match operator: ILIKE on PostgreSQL, LIKE elsewhere."""
    return "ILIKE" if get_dialect(dialect) is Dialect.POSTGRESQL else "LIKE"


# ------------------------------------------------------------------
# Raw text -> native value coercion
# ------------------------------------------------------------------


def coerce_value(value: str | None, native_type: str) -> Any:
    """Convert raw imported text into a value for a column of *native_type*.

    - empty / None -> ``None``
    - INT types -> ``int`` (unparseable -> ``None``)
    - DECIMAL / NUMERIC / REAL / FLOAT / DOUBLE -> ``float`` (unparseable -> ``None``)
    - BOOLEAN / BOOL / TINYINT(1) -> ``True`` for true/1/yes/t, else ``False``
    - anything else -> the string unchanged

    Examples:
        >>> coerce_value("42", "BIGINT")
        42
        >>> coerce_value("yes", "boolean")
        True
        >>> coerce_value("", "TEXT") is None
        True
    """
    if value is None or value == "":
        return None

    upper = native_type.strip().upper()

    if upper in ("BOOLEAN", "BOOL", "TINYINT(1)"):
        return value.strip().lower() in _TRUE_STRINGS

    if "INT" in upper:
        try:
            return int(value.strip(), 10)
        except ValueError:
            return None

    if any(t in upper for t in ("DECIMAL", "NUMERIC", "REAL", "FLOAT", "DOUBLE")):
        try:
            return float(value.strip())
        except ValueError:
            return None

    return value


# ------------------------------------------------------------------
# Statement builders
# ------------------------------------------------------------------


def build_where_clause(
    primary_key_columns: list[str],
    row: dict[str, Any],
    dialect: Dialect | str,
    start_index: int = 1,
) -> tuple[str, list[Any], int]:
    """Build a parameterized ``a = ? AND b = ?`` fragment.

    ``None`` values become ``IS NULL`` and consume no parameter.

    Returns:
        ``(sql_fragment, params, next_index)``
    """
    conditions: list[str] = []
    params: list[Any] = []
    index = start_index

    for col in primary_key_columns:
        quoted = quote_identifier(col, dialect)
        value = row.get(col)
        if value is None:
            conditions.append(f"{quoted} IS NULL")
        else:
            conditions.append(f"{quoted} = {placeholder(index, dialect)}")
            params.append(value)
            index += 1

    return " AND ".join(conditions), params, index


def build_set_clause(
    updates: dict[str, Any],
    dialect: Dialect | str,
    start_index: int = 1,
) -> tuple[str, list[Any], int]:
    """Build a parameterized ``a = ?, b = ?`` fragment for UPDATE.

    Returns:
        ``(sql_fragment, params, next_index)``
    """
    parts: list[str] = []
    params: list[Any] = []
    index = start_index

    for col, value in updates.items():
        parts.append(f"{quote_identifier(col, dialect)} = {placeholder(index, dialect)}")
        params.append(value)
        index += 1

    return ", ".join(parts), params, index


def build_insert(
    table: str,
    values: dict[str, Any],
    dialect: Dialect | str,
) -> tuple[str, list[Any]]:
    """Build a single-row parameterized INSERT."""
    quoted_table = quote_identifier(table, dialect)
    columns = list(values.keys())
    quoted_columns = ", ".join(quote_identifier(c, dialect) for c in columns)
    markers = ", ".join(placeholder(i + 1, dialect) for i in range(len(columns)))
    sql = f"INSERT INTO {quoted_table} ({quoted_columns}) VALUES ({markers})"
    return sql, list(values.values())


def build_multi_row_insert(
    table: str,
    columns: list[str],
    rows: list[list[Any]],
    dialect: Dialect | str,
) -> tuple[str, list[Any]]:
    """Build one INSERT carrying several rows of positional values.

    Each entry of *rows* must have ``len(columns)`` values.
    """
    quoted_table = quote_identifier(table, dialect)
    quoted_columns = ", ".join(quote_identifier(c, dialect) for c in columns)

    groups: list[str] = []
    params: list[Any] = []
    width = len(columns)
    for row_index, row in enumerate(rows):
        markers = [
            placeholder(row_index * width + col_index + 1, dialect)
            for col_index in range(width)
        ]
        groups.append(f"({', '.join(markers)})")
        params.extend(row)

    sql = f"INSERT INTO {quoted_table} ({quoted_columns}) VALUES {', '.join(groups)}"
    return sql, params


def build_update(
    table: str,
    updates: dict[str, Any],
    primary_key_columns: list[str],
    row_identifier: dict[str, Any],
    dialect: Dialect | str,
) -> tuple[str, list[Any]]:
    """Build ``UPDATE t SET ... WHERE <pk>`` with SET params before WHERE params."""
    quoted_table = quote_identifier(table, dialect)
    set_sql, set_params, next_index = build_set_clause(updates, dialect, 1)
    where_sql, where_params, _ = build_where_clause(
        primary_key_columns, row_identifier, dialect, next_index
    )
    sql = f"UPDATE {quoted_table} SET {set_sql} WHERE {where_sql}"
    return sql, set_params + where_params


def build_delete(
    table: str,
    primary_key_columns: list[str],
    row: dict[str, Any],
    dialect: Dialect | str,
) -> tuple[str, list[Any]]:
    """Build ``DELETE FROM t WHERE <pk>``."""
    quoted_table = quote_identifier(table, dialect)
    where_sql, params, _ = build_where_clause(primary_key_columns, row, dialect)
    return f"DELETE FROM {quoted_table} WHERE {where_sql}", params


def build_select_all(
    table: str,
    dialect: Dialect | str,
    limit: int | None = None,
    order_by: list[str] | None = None,
) -> str:
    """``SELECT * FROM t [ORDER BY ...] [LIMIT n]`` quoted for *dialect*.

    Examples:
        >>> build_select_all("users", "postgresql", 10, ["id"])
        'SELECT * FROM "users" ORDER BY "id" LIMIT 10'
    """
    sql = f"SELECT * FROM {quote_identifier(table, dialect)}"
    if order_by:
        sql += " ORDER BY " + ", ".join(quote_identifier(c, dialect) for c in order_by)
    if limit is not None:
        sql += f" LIMIT {int(limit)}"
    return sql


def build_search_query(
    table: str,
    columns: list[str],
    pattern: str,
    limit: int,
    offset: int,
    dialect: Dialect | str,
) -> tuple[str, list[Any]]:
    """Build a paginated ``LIKE``/``ILIKE`` search over *columns*.

    Every column is cast to text so numeric and date columns match too.
    """
    d = get_dialect(dialect)
    operator = like_operator(d)
    conditions: list[str] = []
    for i, col in enumerate(columns):
        cast = text_cast(quote_identifier(col, d), d)
        conditions.append(f"{cast} {operator} {placeholder(i + 1, d)}")

    n = len(columns)
    sql = (
        f"SELECT * FROM {quote_identifier(table, d)} "
        f"WHERE {' OR '.join(conditions)} "
        f"LIMIT {placeholder(n + 1, d)} OFFSET {placeholder(n + 2, d)}"
    )
    params: list[Any] = [pattern] * n + [limit, offset]
    return sql, params


# ------------------------------------------------------------------
# Driver URLs
# ------------------------------------------------------------------


def driver_url(connection: ConnectionDescriptor) -> URL:
    """Build the SQLAlchemy async URL for a connection descriptor.

    SQLite uses ``database`` as the file path.
    """
    d = get_dialect(connection.dialect)
    if d is Dialect.SQLITE:
        return URL.create(DRIVERS[d], database=connection.database)

    return URL.create(
        DRIVERS[d],
        username=connection.username,
        password=connection.password,
        host=connection.host,
        port=connection.port or DEFAULT_PORTS[d],
        database=connection.database,
    )


def escape_value_for_display(value: Any) -> str:
    """Render a value as a SQL literal for previews only, never for execution."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("'", "''")
    if len(escaped) > 100:
        return f"'{escaped[:97]}...'"
    return f"'{escaped}'"


def render_preview(sql: str, params: list[Any], dialect: Dialect | str) -> str:
    """Inline *params* into *sql* for display.

    The output is for previews only; execute the parameterized form.
    """
    d = get_dialect(dialect)
    if d is Dialect.POSTGRESQL:
        # Highest index first so $1 doesn't clobber $10
        for index in range(len(params), 0, -1):
            sql = sql.replace(f"${index}", escape_value_for_display(params[index - 1]))
        return sql

    marker = placeholder(1, d)
    pieces = sql.split(marker)
    rendered = [pieces[0]]
    for i, piece in enumerate(pieces[1:]):
        value = escape_value_for_display(params[i]) if i < len(params) else marker
        rendered.append(value + piece)
    return "".join(rendered)
