"""Lexical SQL helpers shared by the permission gate and the danger detector.

Most of these work on raw text, not an AST, and are used both before
parsing (comment stripping) and as the fallback path when sqlglot cannot
parse a statement. ``parse_statement`` is the one shared entry into sqlglot.
"""

from __future__ import annotations

import logging

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from scurry.adapters.dialect import Dialect, get_dialect

logger = logging.getLogger(__name__)

# sqlglot dialect names
SQLGLOT_DIALECTS: dict[Dialect, str] = {
    Dialect.MYSQL: "mysql",
    Dialect.MARIADB: "mysql",
    Dialect.POSTGRESQL: "postgres",
    Dialect.SQLITE: "sqlite",
}


def sqlglot_dialect(dialect: Dialect | str | None) -> str | None:
    """sqlglot's name for *dialect*; ``None`` selects its generic dialect."""
    if dialect is None:
        return None
    return SQLGLOT_DIALECTS[get_dialect(dialect)]


def parse_statement(statement: str, dialect: Dialect | str | None = None) -> exp.Expression | None:
    """Parse one statement, or None when sqlglot can't produce a real AST.

    Statements sqlglot only recognizes as opaque commands (``EXPLAIN`` on
    most dialects, ``PRAGMA``, ...) also return None so callers use their
    text fallback.
    """
    try:
        tree = sqlglot.parse_one(statement, read=sqlglot_dialect(dialect))
    except SqlglotError as e:
        logger.debug("sqlglot could not parse statement, using text fallback: %s", e)
        return None
    if tree is None or isinstance(tree, exp.Command):
        return None
    return tree


def strip_sql_comments(sql: str) -> str:
    """Strip ``--`` line and ``/* */`` block comments, preserving quoted text."""
    if not isinstance(sql, str) or not sql:
        return ""

    out: list[str] = []
    i = 0
    quote: str | None = None
    in_line_comment = False
    block_depth = 0

    while i < len(sql):
        ch = sql[i]
        nxt = sql[i + 1] if i + 1 < len(sql) else ""

        if in_line_comment:
            if ch == "\n":
                in_line_comment = False
                out.append("\n")
            i += 1
            continue

        if block_depth > 0:
            if ch == "/" and nxt == "*":
                block_depth += 1
                i += 2
                continue
            if ch == "*" and nxt == "/":
                block_depth -= 1
                i += 2
                continue
            out.append("\n" if ch == "\n" else " ")
            i += 1
            continue

        if quote is not None:
            out.append(ch)
            if ch == quote:
                if nxt == quote:  # Escaped quote
                    out.append(nxt)
                    i += 2
                    continue
                quote = None
            i += 1
            continue

        if ch in ("'", '"', "`"):
            quote = ch
            out.append(ch)
            i += 1
            continue

        if ch == "-" and nxt == "-":
            in_line_comment = True
            i += 2
            continue

        if ch == "/" and nxt == "*":
            block_depth = 1
            out.append(" ")
            i += 2
            continue

        out.append(ch)
        i += 1

    return "".join(out)


def split_statements(sql: str) -> list[str]:
    """Split on semicolons outside quotes; comments are removed first.

    Empty statements (e.g. a trailing ``;``) are dropped.

    Examples:
        >>> split_statements("SELECT 1; SELECT ';'")
        ['SELECT 1', "SELECT ';'"]
    """
    text = strip_sql_comments(sql)
    statements: list[str] = []
    current: list[str] = []
    quote: str | None = None

    i = 0
    while i < len(text):
        ch = text[i]
        if quote is not None:
            current.append(ch)
            if ch == quote:
                if i + 1 < len(text) and text[i + 1] == quote:
                    current.append(quote)
                    i += 2
                    continue
                quote = None
            i += 1
            continue
        if ch in ("'", '"', "`"):
            quote = ch
        if ch == ";":
            statements.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1

    statements.append("".join(current))
    return [s.strip() for s in statements if s.strip()]


def mask_string_literals(sql: str) -> str:
    """Replace the contents of single-quoted literals with nothing.

    ``WHERE note = 'from users'`` becomes ``WHERE note = ''`` so keyword
    scans don't see words inside values.
    """
    out: list[str] = []
    in_literal = False
    i = 0
    while i < len(sql):
        ch = sql[i]
        if in_literal:
            if ch == "'":
                if i + 1 < len(sql) and sql[i + 1] == "'":
                    i += 2
                    continue
                in_literal = False
                out.append(ch)
            i += 1
            continue
        if ch == "'":
            in_literal = True
        out.append(ch)
        i += 1
    return "".join(out)
