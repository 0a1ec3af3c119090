"""CREATE TABLE synthesis from introspected source structure.

Used by sync when the target table does not exist and structure sync is
enabled.  Only single-table creation is supported: columns, primary key
and non-primary unique indexes.  Foreign keys and secondary indexes are
not carried over.

Usage:
    from scurry.schema.ddl import generate_create_table_sql

    sql = generate_create_table_sql("users", columns, indexes, Dialect.MYSQL)
"""

import re
from dataclasses import dataclass, field

from scurry.adapters.dialect import Dialect, get_dialect, quote_identifier
from scurry.schema.models import ColumnDefinition, IndexInfo

_NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?$")
_KEYWORD_DEFAULTS = frozenset({"null", "true", "false"})


def format_default(default_value: str) -> str:
    """Render an introspected default as a DEFAULT clause expression.

    Quoted literals, numbers, keywords, timestamp functions and other
    function calls are kept verbatim; bare text is quoted.

    Examples:
        >>> format_default("CURRENT_TIMESTAMP")
        'CURRENT_TIMESTAMP'
        >>> format_default("active")
        "'active'"
        >>> format_default("0")
        '0'
    """
    value = default_value.strip()
    if value.startswith("'") or value.startswith("("):
        return value
    if _NUMERIC_RE.match(value) or value.lower() in _KEYWORD_DEFAULTS:
        return value
    if "CURRENT_TIMESTAMP" in value.upper() or value.upper() == "NOW()" or "(" in value:
        return value
    return "'" + value.replace("'", "''") + "'"


@dataclass
class CreateTablePlan:
    """A table to be created on the target connection.

    Example:
        plan = CreateTablePlan(table="users", columns=cols, indexes=idx,
                               dialect=Dialect.POSTGRESQL)
        plan.to_sql()
        # 'CREATE TABLE "users" (\\n  "id" integer NOT NULL, ...)'
    """

    table: str
    columns: list[ColumnDefinition]
    indexes: list[IndexInfo] = field(default_factory=list)
    dialect: Dialect = Dialect.POSTGRESQL

    @property
    def primary_key_columns(self) -> list[str]:
        return [c.name for c in self.columns if c.is_primary_key]

    @property
    def unique_indexes(self) -> list[IndexInfo]:
        return [idx for idx in self.indexes if idx.unique and not idx.primary and idx.columns]

    def _column_sql(self, col: ColumnDefinition) -> str:
        definition = f"{quote_identifier(col.name, self.dialect)} {col.native_type}"
        if not col.nullable:
            definition += " NOT NULL"

        if col.default_value is not None:
            # Sequence defaults reference objects that don't exist on the target
            if not (self.dialect is Dialect.POSTGRESQL and col.auto_increment):
                definition += f" DEFAULT {format_default(col.default_value)}"

        if col.auto_increment and self.dialect in (Dialect.MYSQL, Dialect.MARIADB):
            definition += " AUTO_INCREMENT"
        return definition

    def _unique_sql(self, idx: IndexInfo) -> str:
        cols = ", ".join(quote_identifier(c, self.dialect) for c in idx.columns)
        match self.dialect:
            case Dialect.MYSQL | Dialect.MARIADB:
                return f"UNIQUE KEY {quote_identifier(idx.name, self.dialect)} ({cols})"
            case Dialect.POSTGRESQL:
                return f"CONSTRAINT {quote_identifier(idx.name, self.dialect)} UNIQUE ({cols})"
            case _:
                # SQLite reserves sqlite_* names for its auto indexes
                return f"UNIQUE ({cols})"

    def to_sql(self) -> str:
        """Generate the CREATE TABLE statement."""
        parts = [self._column_sql(col) for col in self.columns]

        pk = self.primary_key_columns
        if pk:
            parts.append(
                f"PRIMARY KEY ({', '.join(quote_identifier(c, self.dialect) for c in pk)})"
            )

        parts.extend(self._unique_sql(idx) for idx in self.unique_indexes)

        body = ",\n  ".join(parts)
        return f"CREATE TABLE {quote_identifier(self.table, self.dialect)} (\n  {body}\n)"


def generate_create_table_sql(
    table: str,
    columns: list[ColumnDefinition],
    indexes: list[IndexInfo],
    dialect: Dialect | str,
) -> str:
    """CREATE TABLE for *table* with the given source columns and indexes."""
    return CreateTablePlan(
        table=table, columns=columns, indexes=indexes, dialect=get_dialect(dialect)
    ).to_sql()
