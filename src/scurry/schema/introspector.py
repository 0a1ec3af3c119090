"""Multi-dialect schema introspection through the query executor.

This module queries the live database catalog and normalizes the results
into the shared models of ``scurry.schema.models``:
- Tables and views (information_schema, sqlite_master)
- Columns, data types, nullability, defaults, primary/foreign key flags
- Indexes (information_schema.STATISTICS, pg_catalog, PRAGMA index_list)
- Foreign keys and database-wide relationships

Every catalog query goes through ``QueryExecutor`` so introspection shares
the connection pools, timeouts and row limits of ordinary queries.

Usage:
    from scurry.schema.introspector import SchemaIntrospector

    introspector = SchemaIntrospector(executor)
    tables = await introspector.fetch_tables(conn)
    table = await introspector.validate_table_exists(conn, "Users")  # 'users'
    structure = await introspector.fetch_table_structure(conn, table)
"""

import logging
from collections.abc import Iterable
from typing import Any

from scurry.adapters.dialect import Dialect, placeholder, quote_identifier
from scurry.adapters.executor import QueryExecutor
from scurry.config.models import ConnectionDescriptor
from scurry.errors import IntrospectionError, UnsupportedDialectError
from scurry.schema.models import (
    ColumnDefinition,
    ForeignKeyRef,
    IndexInfo,
    Relationship,
    TableInfo,
    TableStructure,
)

logger = logging.getLogger(__name__)

POSTGRES_SCHEMA = "public"


# ------------------------------------------------------------------
# Pure helpers
# ------------------------------------------------------------------


def resolve_table_name(name: str, tables: Iterable[str | TableInfo]) -> str | None:
    """Return the stored spelling of *name*, matched case-insensitively.

    An exact match wins over a case-insensitive one, so engines with
    case-sensitive names still resolve ``Users`` and ``users`` separately.

    Examples:
        >>> resolve_table_name("USERS", ["orders", "users"])
        'users'
        >>> resolve_table_name("missing", ["users"]) is None
        True
    """
    names = [t.name if isinstance(t, TableInfo) else t for t in tables]
    if name in names:
        return name
    lowered = name.lower()
    for candidate in names:
        if candidate.lower() == lowered:
            return candidate
    return None


def validate_columns(names: Iterable[str], columns: Iterable[str | ColumnDefinition]) -> list[str]:
    """Return the entries of *names* that are not columns of the table."""
    known = {c.name if isinstance(c, ColumnDefinition) else c for c in columns}
    return [n for n in names if n not in known]


def _sqlite_auto_increment(column_type: str, is_pk: bool, create_sql: str) -> bool:
    # INTEGER PRIMARY KEY is a rowid alias and auto-increments without the keyword
    if not is_pk:
        return False
    return column_type.upper() == "INTEGER" or "AUTOINCREMENT" in create_sql.upper()


def _postgres_auto_increment(default_value: str | None) -> bool:
    if not isinstance(default_value, str):
        return False
    return default_value.startswith("nextval(") or "_seq'" in default_value


class SchemaIntrospector:
    """Introspects tables, columns, indexes and foreign keys of any dialect.

    Catalog failures raise ``IntrospectionError``, except for the index
    lookup used by ``fetch_table_structure`` which degrades to an empty list
    (see ``fetch_indexes_best_effort``).

    Args:
        executor: Shared query executor.
    """

    def __init__(self, executor: QueryExecutor):
        self._executor = executor

    async def _query(
        self,
        conn: ConnectionDescriptor,
        sql: str,
        params: list[Any] | None = None,
    ) -> list[dict[str, Any]]:
        result = await self._executor.execute(conn, sql, params)
        if result.error is not None:
            raise IntrospectionError(result.error)
        return result.rows

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    async def fetch_tables(self, conn: ConnectionDescriptor) -> list[TableInfo]:
        """List tables and views, ordered by name."""
        match conn.dialect:
            case Dialect.MYSQL | Dialect.MARIADB:
                rows = await self._query(
                    conn,
                    f"""
                    SELECT TABLE_NAME AS name, TABLE_TYPE AS type, TABLE_ROWS AS row_count
                    FROM information_schema.TABLES
                    WHERE TABLE_SCHEMA = {placeholder(1, conn.dialect)}
                    ORDER BY TABLE_NAME
                    """,
                    [conn.database],
                )
                return [
                    TableInfo(
                        name=r["name"],
                        type="view" if r["type"] == "VIEW" else "table",
                        row_count=int(r["row_count"] or 0),
                    )
                    for r in rows
                ]

            case Dialect.POSTGRESQL:
                rows = await self._query(
                    conn,
                    f"""
                    SELECT table_name AS name, table_type AS type
                    FROM information_schema.tables
                    WHERE table_schema = {placeholder(1, conn.dialect)}
                    ORDER BY table_name
                    """,
                    [POSTGRES_SCHEMA],
                )
                return [
                    TableInfo(
                        name=r["name"],
                        schema_name=POSTGRES_SCHEMA,
                        type="view" if r["type"] == "VIEW" else "table",
                    )
                    for r in rows
                ]

            case Dialect.SQLITE:
                rows = await self._query(
                    conn,
                    """
                    SELECT name, type FROM sqlite_master
                    WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%'
                    ORDER BY name
                    """,
                )
                return [
                    TableInfo(name=r["name"], type="view" if r["type"] == "view" else "table")
                    for r in rows
                ]

        raise UnsupportedDialectError(conn.dialect)

    async def validate_table_exists(self, conn: ConnectionDescriptor, name: str) -> str | None:
        """Return the canonical stored table name, or ``None`` if absent.

        Callers use the returned name (never the raw user input) in
        subsequent SQL.
        """
        return resolve_table_name(name, await self.fetch_tables(conn))

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    async def fetch_columns(self, conn: ConnectionDescriptor, table: str) -> list[ColumnDefinition]:
        """Columns of *table* in ordinal order, with foreign key references attached."""
        match conn.dialect:
            case Dialect.MYSQL | Dialect.MARIADB:
                columns = await self._fetch_mysql_columns(conn, table)
            case Dialect.POSTGRESQL:
                columns = await self._fetch_postgres_columns(conn, table)
            case Dialect.SQLITE:
                columns = await self._fetch_sqlite_columns(conn, table)
            case _:
                raise UnsupportedDialectError(conn.dialect)

        foreign_keys = {fk.column_name: fk for fk in await self.fetch_foreign_keys(conn, table)}
        return [
            col.model_copy(
                update={
                    "is_foreign_key": True,
                    "foreign_key_reference": foreign_keys[col.name],
                }
            )
            if col.name in foreign_keys
            else col
            for col in columns
        ]

    async def _fetch_mysql_columns(
        self, conn: ConnectionDescriptor, table: str
    ) -> list[ColumnDefinition]:
        rows = await self._query(
            conn,
            f"""
            SELECT COLUMN_NAME AS name, COLUMN_TYPE AS type, IS_NULLABLE AS nullable,
                   COLUMN_DEFAULT AS default_value, COLUMN_KEY AS column_key, EXTRA AS extra
            FROM information_schema.COLUMNS
            WHERE TABLE_SCHEMA = {placeholder(1, conn.dialect)}
              AND TABLE_NAME = {placeholder(2, conn.dialect)}
            ORDER BY ORDINAL_POSITION
            """,
            [conn.database, table],
        )
        return [
            ColumnDefinition(
                name=r["name"],
                native_type=r["type"],
                nullable=r["nullable"] == "YES",
                default_value=r["default_value"],
                is_primary_key=r["column_key"] == "PRI",
                auto_increment="auto_increment" in (r["extra"] or "").lower(),
            )
            for r in rows
        ]

    async def _fetch_postgres_columns(
        self, conn: ConnectionDescriptor, table: str
    ) -> list[ColumnDefinition]:
        p1, p2 = placeholder(1, conn.dialect), placeholder(2, conn.dialect)
        rows = await self._query(
            conn,
            f"""
            SELECT c.column_name AS name, c.data_type AS type, c.is_nullable AS nullable,
                   c.column_default AS default_value,
                   (pk.column_name IS NOT NULL) AS is_primary_key
            FROM information_schema.columns c
            LEFT JOIN (
                SELECT ku.column_name
                FROM information_schema.table_constraints tc
                JOIN information_schema.key_column_usage ku
                  ON tc.constraint_name = ku.constraint_name
                 AND tc.table_schema = ku.table_schema
                WHERE tc.constraint_type = 'PRIMARY KEY'
                  AND tc.table_schema = {p1} AND tc.table_name = {p2}
            ) pk ON c.column_name = pk.column_name
            WHERE c.table_schema = {p1} AND c.table_name = {p2}
            ORDER BY c.ordinal_position
            """,
            [POSTGRES_SCHEMA, table],
        )
        return [
            ColumnDefinition(
                name=r["name"],
                native_type=r["type"],
                nullable=r["nullable"] == "YES",
                default_value=r["default_value"],
                is_primary_key=bool(r["is_primary_key"]),
                auto_increment=_postgres_auto_increment(r["default_value"]),
            )
            for r in rows
        ]

    async def _fetch_sqlite_columns(
        self, conn: ConnectionDescriptor, table: str
    ) -> list[ColumnDefinition]:
        quoted = quote_identifier(table, conn.dialect)
        rows = await self._query(conn, f"PRAGMA table_info({quoted})")
        schema_rows = await self._query(
            conn,
            f"SELECT sql FROM sqlite_master WHERE type = 'table' AND name = {placeholder(1, conn.dialect)}",
            [table],
        )
        create_sql = (schema_rows[0]["sql"] or "") if schema_rows else ""

        return [
            ColumnDefinition(
                name=r["name"],
                native_type=r["type"] or "unknown",
                nullable=r["notnull"] == 0,
                default_value=r["dflt_value"],
                is_primary_key=r["pk"] > 0,
                auto_increment=_sqlite_auto_increment(r["type"] or "", r["pk"] == 1, create_sql),
            )
            for r in rows
        ]

    async def fetch_primary_key_columns(self, conn: ConnectionDescriptor, table: str) -> list[str]:
        """Primary key column names of *table* in column order."""
        return [c.name for c in await self.fetch_columns(conn, table) if c.is_primary_key]

    # ------------------------------------------------------------------
    # Indexes
    # ------------------------------------------------------------------

    async def fetch_indexes(self, conn: ConnectionDescriptor, table: str) -> list[IndexInfo]:
        """Indexes of *table*, including the primary key index where the engine has one."""
        match conn.dialect:
            case Dialect.MYSQL | Dialect.MARIADB:
                rows = await self._query(
                    conn,
                    f"""
                    SELECT INDEX_NAME AS name,
                           GROUP_CONCAT(COLUMN_NAME ORDER BY SEQ_IN_INDEX) AS columns,
                           NOT NON_UNIQUE AS is_unique
                    FROM information_schema.STATISTICS
                    WHERE TABLE_SCHEMA = {placeholder(1, conn.dialect)}
                      AND TABLE_NAME = {placeholder(2, conn.dialect)}
                    GROUP BY INDEX_NAME, NON_UNIQUE
                    ORDER BY INDEX_NAME
                    """,
                    [conn.database, table],
                )
                return [
                    IndexInfo(
                        name=r["name"],
                        columns=str(r["columns"]).split(","),
                        unique=bool(r["is_unique"]),
                        primary=r["name"] == "PRIMARY",
                    )
                    for r in rows
                ]

            case Dialect.POSTGRESQL:
                rows = await self._query(
                    conn,
                    f"""
                    SELECT i.relname AS name,
                           array_agg(a.attname ORDER BY array_position(ix.indkey, a.attnum)) AS columns,
                           ix.indisunique AS is_unique,
                           ix.indisprimary AS is_primary
                    FROM pg_class t
                    JOIN pg_index ix ON t.oid = ix.indrelid
                    JOIN pg_class i ON i.oid = ix.indexrelid
                    JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(ix.indkey)
                    WHERE t.relname = {placeholder(1, conn.dialect)} AND t.relkind = 'r'
                    GROUP BY i.relname, ix.indisunique, ix.indisprimary
                    ORDER BY i.relname
                    """,
                    [table],
                )
                return [
                    IndexInfo(
                        name=r["name"],
                        columns=list(r["columns"]),
                        unique=bool(r["is_unique"]),
                        primary=bool(r["is_primary"]),
                    )
                    for r in rows
                ]

            case Dialect.SQLITE:
                quoted = quote_identifier(table, conn.dialect)
                index_rows = await self._query(conn, f"PRAGMA index_list({quoted})")
                indexes: list[IndexInfo] = []
                for idx in index_rows:
                    info = await self._query(
                        conn, f"PRAGMA index_info({quote_identifier(idx['name'], conn.dialect)})"
                    )
                    indexes.append(
                        IndexInfo(
                            name=idx["name"],
                            columns=[c["name"] for c in info],
                            unique=idx["unique"] == 1,
                            primary=idx["origin"] == "pk",
                        )
                    )
                return indexes

        raise UnsupportedDialectError(conn.dialect)

    async def fetch_indexes_best_effort(
        self, conn: ConnectionDescriptor, table: str
    ) -> list[IndexInfo]:
        """Indexes of *table*, or ``[]`` when the catalog lookup fails.

        Indexes are supplementary metadata: a failure here is logged and
        must not fail the column fetch it accompanies.
        """
        try:
            return await self.fetch_indexes(conn, table)
        except IntrospectionError as e:
            logger.warning("Could not fetch indexes for %s on %s: %s", table, conn.id, e)
            return []

    async def fetch_table_structure(
        self, conn: ConnectionDescriptor, table: str
    ) -> TableStructure:
        """Columns plus best-effort indexes of *table*."""
        columns = await self.fetch_columns(conn, table)
        indexes = await self.fetch_indexes_best_effort(conn, table)
        return TableStructure(table=table, columns=columns, indexes=indexes)

    # ------------------------------------------------------------------
    # Foreign keys
    # ------------------------------------------------------------------

    async def fetch_foreign_keys(self, conn: ConnectionDescriptor, table: str) -> list[ForeignKeyRef]:
        """Foreign key columns of *table*."""
        match conn.dialect:
            case Dialect.MYSQL | Dialect.MARIADB:
                rows = await self._query(
                    conn,
                    f"""
                    SELECT CONSTRAINT_NAME AS constraint_name, COLUMN_NAME AS column_name,
                           REFERENCED_TABLE_NAME AS referenced_table,
                           REFERENCED_COLUMN_NAME AS referenced_column
                    FROM information_schema.KEY_COLUMN_USAGE
                    WHERE TABLE_SCHEMA = {placeholder(1, conn.dialect)}
                      AND TABLE_NAME = {placeholder(2, conn.dialect)}
                      AND REFERENCED_TABLE_NAME IS NOT NULL
                    ORDER BY CONSTRAINT_NAME, ORDINAL_POSITION
                    """,
                    [conn.database, table],
                )
                return [ForeignKeyRef(**r) for r in rows]

            case Dialect.POSTGRESQL:
                p1, p2 = placeholder(1, conn.dialect), placeholder(2, conn.dialect)
                rows = await self._query(
                    conn,
                    f"""
                    SELECT tc.constraint_name, kcu.column_name,
                           ccu.table_name AS referenced_table,
                           ccu.column_name AS referenced_column
                    FROM information_schema.table_constraints AS tc
                    JOIN information_schema.key_column_usage AS kcu
                      ON tc.constraint_name = kcu.constraint_name
                     AND tc.table_schema = kcu.table_schema
                    JOIN information_schema.constraint_column_usage AS ccu
                      ON ccu.constraint_name = tc.constraint_name
                     AND ccu.table_schema = tc.table_schema
                    WHERE tc.constraint_type = 'FOREIGN KEY'
                      AND tc.table_schema = {p1} AND tc.table_name = {p2}
                    """,
                    [POSTGRES_SCHEMA, table],
                )
                return [ForeignKeyRef(**r) for r in rows]

            case Dialect.SQLITE:
                quoted = quote_identifier(table, conn.dialect)
                rows = await self._query(conn, f"PRAGMA foreign_key_list({quoted})")
                return [
                    ForeignKeyRef(
                        constraint_name=f"fk_{table}_{r['from']}",
                        column_name=r["from"],
                        referenced_table=r["table"],
                        referenced_column=r["to"],
                    )
                    for r in rows
                ]

        raise UnsupportedDialectError(conn.dialect)

    async def fetch_all_relationships(self, conn: ConnectionDescriptor) -> list[Relationship]:
        """Every foreign key edge in the database, ordered by source table."""
        match conn.dialect:
            case Dialect.MYSQL | Dialect.MARIADB:
                rows = await self._query(
                    conn,
                    f"""
                    SELECT TABLE_NAME AS from_table, COLUMN_NAME AS from_column,
                           REFERENCED_TABLE_NAME AS to_table,
                           REFERENCED_COLUMN_NAME AS to_column
                    FROM information_schema.KEY_COLUMN_USAGE
                    WHERE TABLE_SCHEMA = {placeholder(1, conn.dialect)}
                      AND REFERENCED_TABLE_NAME IS NOT NULL
                    ORDER BY TABLE_NAME, COLUMN_NAME
                    """,
                    [conn.database],
                )
                return [Relationship(**r) for r in rows]

            case Dialect.POSTGRESQL:
                rows = await self._query(
                    conn,
                    f"""
                    SELECT tc.table_name AS from_table, kcu.column_name AS from_column,
                           ccu.table_name AS to_table, ccu.column_name AS to_column
                    FROM information_schema.table_constraints AS tc
                    JOIN information_schema.key_column_usage AS kcu
                      ON tc.constraint_name = kcu.constraint_name
                     AND tc.table_schema = kcu.table_schema
                    JOIN information_schema.constraint_column_usage AS ccu
                      ON ccu.constraint_name = tc.constraint_name
                     AND ccu.table_schema = tc.table_schema
                    WHERE tc.constraint_type = 'FOREIGN KEY'
                      AND tc.table_schema = {placeholder(1, conn.dialect)}
                    ORDER BY tc.table_name, kcu.column_name
                    """,
                    [POSTGRES_SCHEMA],
                )
                return [Relationship(**r) for r in rows]

            case Dialect.SQLITE:
                relationships: list[Relationship] = []
                for table in await self.fetch_tables(conn):
                    if table.type != "table":
                        continue
                    for fk in await self.fetch_foreign_keys(conn, table.name):
                        relationships.append(
                            Relationship(
                                from_table=table.name,
                                from_column=fk.column_name,
                                to_table=fk.referenced_table,
                                to_column=fk.referenced_column,
                            )
                        )
                return relationships

        raise UnsupportedDialectError(conn.dialect)
