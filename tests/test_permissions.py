"""Tests for team permissions.

Covers statement classification, table extraction, query validation
against a ConnectionPermission, table/column filtering and effective
permission resolution from profiles and custom assignments.
"""

import pytest

from scurry.permissions import (
    ConnectionPermission,
    InMemoryPermissionStore,
    MemberPermissionAssignment,
    PermissionProfile,
    StatementClass,
    StoredPermissionProvider,
    ViolationType,
    classify_statement,
    extract_table_names,
    filter_allowed_columns,
    filter_allowed_tables,
    get_effective_permission,
    resolve_effective_permission,
    validate_query,
)
from scurry.permissions.sqltext import mask_string_literals, split_statements, strip_sql_comments


def _perm(**kwargs) -> ConnectionPermission:
    kwargs.setdefault("connection_id", "conn-1")
    return ConnectionPermission(**kwargs)


# ============================================================================
# Test Group 1: Lexical helpers
# ============================================================================


class TestSqlText:
    """Comment stripping, statement splitting and literal masking."""

    def test_strip_comments_keeps_quoted_text(self) -> None:
        """Comment markers inside literals survive."""
        sql = "SELECT '-- not a comment' -- real comment\nFROM t /* block */"
        stripped = strip_sql_comments(sql)
        assert "'-- not a comment'" in stripped
        assert "real comment" not in stripped
        assert "block" not in stripped

    def test_split_ignores_semicolons_in_literals(self) -> None:
        """Semicolons inside quotes don't split."""
        assert split_statements("SELECT 1; SELECT ';'") == ["SELECT 1", "SELECT ';'"]

    def test_split_handles_doubled_quotes(self) -> None:
        """An escaped '' stays inside its literal."""
        assert split_statements("SELECT 'it''s; fine'; SELECT 2") == [
            "SELECT 'it''s; fine'",
            "SELECT 2",
        ]

    def test_split_drops_empty_statements(self) -> None:
        """Trailing semicolons and comment-only statements vanish."""
        assert split_statements("SELECT 1;; -- done\n;") == ["SELECT 1"]

    def test_mask_string_literals(self) -> None:
        """Literal contents are blanked."""
        assert mask_string_literals("WHERE note = 'from users'") == "WHERE note = ''"


# ============================================================================
# Test Group 2: Statement classification
# ============================================================================


class TestClassifyStatement:
    """Read / write / DDL classification."""

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT * FROM users",
            "select id from users where name = 'drop table x'",
            "WITH recent AS (SELECT id FROM orders) SELECT * FROM recent",
            "SHOW TABLES",
        ],
    )
    def test_reads(self, sql: str) -> None:
        """Queries and catalog lookups are reads."""
        assert classify_statement(sql) is StatementClass.READ

    @pytest.mark.parametrize(
        "sql",
        [
            "INSERT INTO users (id) VALUES (1)",
            "UPDATE users SET name = 'x' WHERE id = 1",
            "DELETE FROM users",
        ],
    )
    def test_writes(self, sql: str) -> None:
        """DML statements are writes."""
        assert classify_statement(sql) is StatementClass.WRITE

    @pytest.mark.parametrize(
        "sql",
        [
            "DROP TABLE users",
            "CREATE TABLE t (id INT)",
            "ALTER TABLE users ADD COLUMN age INT",
            "TRUNCATE TABLE users",
        ],
    )
    def test_ddl(self, sql: str) -> None:
        """Schema-changing statements are DDL."""
        assert classify_statement(sql) is StatementClass.DDL

    def test_most_severe_statement_wins(self) -> None:
        """A DROP hidden after a SELECT makes the batch DDL."""
        assert classify_statement("SELECT 1; DROP TABLE users") is StatementClass.DDL

    def test_comment_hidden_keyword_ignored(self) -> None:
        """Keywords inside comments are not statements."""
        assert classify_statement("-- DROP TABLE users\nSELECT 1") is StatementClass.READ

    def test_pragma_assignment_is_write(self) -> None:
        """PRAGMA with a value changes settings."""
        assert classify_statement("PRAGMA foreign_keys = ON", "sqlite") is StatementClass.WRITE
        assert classify_statement("PRAGMA table_info(users)", "sqlite") is StatementClass.READ

    @pytest.mark.parametrize(
        "sql, dialect",
        [
            ("EXPLAIN SELECT * FROM users", "postgresql"),
            ("EXPLAIN QUERY PLAN SELECT * FROM users", "sqlite"),
            ("EXPLAIN FORMAT=JSON SELECT * FROM users", "mysql"),
            ("EXPLAIN users", "mysql"),
        ],
    )
    def test_explain_of_read_is_read(self, sql: str, dialect: str) -> None:
        """Explaining a query or describing a table is a read."""
        assert classify_statement(sql, dialect) is StatementClass.READ

    @pytest.mark.parametrize(
        "sql, dialect",
        [
            ("EXPLAIN ANALYZE DELETE FROM users", "postgresql"),
            ("EXPLAIN (ANALYZE, BUFFERS) UPDATE users SET name = 'x'", "postgresql"),
            ("EXPLAIN ANALYZE INSERT INTO users (id) VALUES (1)", None),
            ("EXPLAIN DELETE FROM users", "mysql"),
        ],
    )
    def test_explain_takes_wrapped_statement_class(self, sql: str, dialect: str | None) -> None:
        """EXPLAIN ANALYZE executes its statement, so a wrapped write is a write."""
        assert classify_statement(sql, dialect) is StatementClass.WRITE

    @pytest.mark.parametrize("dialect", [None, "postgresql"])
    def test_select_into_is_ddl(self, dialect: str | None) -> None:
        """SELECT ... INTO creates a table."""
        assert classify_statement("SELECT * INTO newt FROM users", dialect) is StatementClass.DDL

    def test_unknown_statement_is_write(self) -> None:
        """Statements that can't be placed are treated as writes."""
        assert classify_statement("FROBNICATE everything") is StatementClass.WRITE

    def test_empty_input_is_read(self) -> None:
        """No statements means nothing to deny."""
        assert classify_statement("") is StatementClass.READ


class TestExtractTableNames:
    """Referenced table extraction."""

    def test_join_and_schema_qualifier(self) -> None:
        """Joined tables are found and schema prefixes dropped."""
        tables = extract_table_names(
            "SELECT * FROM public.users u JOIN orders o ON o.user_id = u.id"
        )
        assert tables == ["users", "orders"]

    def test_cte_names_skipped(self) -> None:
        """CTE names are not tables."""
        tables = extract_table_names(
            "WITH recent AS (SELECT id FROM orders) SELECT id FROM recent"
        )
        assert tables == ["orders"]

    def test_lowercased_and_deduplicated(self) -> None:
        """Names are lowercased and listed once."""
        assert extract_table_names("SELECT 1 FROM Users; SELECT 2 FROM USERS") == ["users"]


# ============================================================================
# Test Group 3: Query validation
# ============================================================================


class TestValidateQuery:
    """validate_query checks in order and reports the first failure."""

    def test_no_permission(self) -> None:
        """A missing permission denies everything."""
        result = validate_query("SELECT 1", None)
        assert result.allowed is False
        assert result.violation_type is ViolationType.NO_PERMISSION
        assert result.reason == "No permission assigned for this connection"

    def test_view_denied(self) -> None:
        """can_view=False denies before looking at the SQL."""
        result = validate_query("SELECT * FROM users", _perm(can_view=False))
        assert result.violation_type is ViolationType.VIEW_DENIED

    def test_drop_without_edit_is_write_denied(self) -> None:
        """DDL with can_edit=False is write-denied."""
        result = validate_query("DROP TABLE users", _perm(can_edit=False))
        assert result.allowed is False
        assert result.violation_type is ViolationType.WRITE_DENIED
        assert result.reason == "You do not have edit permission for this connection"
        assert result.statement_class is StatementClass.DDL

    @pytest.mark.parametrize(
        "sql",
        [
            "EXPLAIN ANALYZE DELETE FROM users",
            "EXPLAIN ANALYZE UPDATE users SET name = 'x'",
            "SELECT * INTO newt FROM users",
        ],
    )
    def test_read_only_member_cannot_write_through_read_forms(self, sql: str) -> None:
        """Statements that look like reads but write are write-denied."""
        result = validate_query(sql, _perm(can_edit=False), "postgresql")
        assert result.allowed is False
        assert result.violation_type is ViolationType.WRITE_DENIED

    def test_plain_explain_allowed_read_only(self) -> None:
        """EXPLAIN of a SELECT stays a read."""
        result = validate_query("EXPLAIN SELECT * FROM users", _perm(can_edit=False), "postgresql")
        assert result.allowed is True
        assert result.statement_class is StatementClass.READ

    def test_insert_with_edit_allowed(self) -> None:
        """Writes pass when can_edit is set."""
        result = validate_query("INSERT INTO users (id) VALUES (1)", _perm(can_edit=True))
        assert result.allowed is True
        assert result.statement_class is StatementClass.WRITE
        assert result.tables == ["users"]

    def test_table_denied(self) -> None:
        """Tables outside allowed_tables are denied with the table name."""
        perm = _perm(allowed_tables={"users"})
        result = validate_query("SELECT id FROM orders", perm)
        assert result.violation_type is ViolationType.TABLE_DENIED
        assert result.reason == "You do not have access to table: orders"

    def test_allowed_tables_case_insensitive(self) -> None:
        """Table matching ignores case."""
        perm = _perm(allowed_tables={"Users"})
        assert validate_query("SELECT id FROM USERS", perm).allowed is True

    def test_select_star_with_hidden_columns(self) -> None:
        """SELECT * over a table with hidden columns is column-denied."""
        perm = _perm(column_restrictions={"users": {"ssn"}})
        result = validate_query("SELECT * FROM users", perm)
        assert result.violation_type is ViolationType.COLUMN_DENIED
        assert result.reason == (
            "Cannot use SELECT * on table users because some columns are restricted. "
            "Please specify columns explicitly."
        )

    def test_hidden_column_reference(self) -> None:
        """Naming a hidden column is denied."""
        perm = _perm(column_restrictions={"users": {"ssn"}})
        result = validate_query("SELECT id, ssn FROM users", perm)
        assert result.violation_type is ViolationType.COLUMN_DENIED
        assert result.reason == "You do not have access to column: users.ssn"

    def test_hidden_column_through_alias(self) -> None:
        """Aliased qualifiers resolve to the real table."""
        perm = _perm(column_restrictions={"users": {"ssn"}})
        result = validate_query("SELECT u.ssn FROM users u", perm)
        assert result.reason == "You do not have access to column: users.ssn"

    def test_visible_columns_allowed(self) -> None:
        """Explicit visible columns pass."""
        perm = _perm(column_restrictions={"users": {"ssn"}})
        result = validate_query("SELECT id, name FROM users WHERE id = 1", perm)
        assert result.allowed is True
        assert result.reason is None

    def test_multi_statement_checked_as_a_whole(self) -> None:
        """A denied table in any statement denies the batch."""
        perm = _perm(allowed_tables={"users"})
        result = validate_query("SELECT id FROM users; SELECT id FROM secrets", perm)
        assert result.violation_type is ViolationType.TABLE_DENIED
        assert "secrets" in result.reason


# ============================================================================
# Test Group 4: Filtering
# ============================================================================


class TestFilters:
    """Table and column visibility filters."""

    def test_filter_tables_keeps_order_and_case(self) -> None:
        """Allowed tables are returned as given."""
        perm = _perm(allowed_tables={"users", "orders"})
        assert filter_allowed_tables(["Orders", "secrets", "users"], perm) == [
            "Orders",
            "users",
        ]

    def test_filter_tables_all(self) -> None:
        """'all' passes every table."""
        assert filter_allowed_tables(["a", "b"], _perm()) == ["a", "b"]

    def test_filter_tables_without_view(self) -> None:
        """No view permission or no permission hides everything."""
        assert filter_allowed_tables(["a"], _perm(can_view=False)) == []
        assert filter_allowed_tables(["a"], None) == []

    def test_filter_columns(self) -> None:
        """Hidden columns are removed case-insensitively."""
        perm = _perm(column_restrictions={"Users": {"SSN"}})
        assert filter_allowed_columns("users", ["id", "ssn", "name"], perm) == ["id", "name"]

    def test_column_restrictions_list_form(self) -> None:
        """Stored list form normalizes to the dict form."""
        perm = _perm(column_restrictions=[{"table_name": "users", "hidden_columns": ["ssn"]}])
        assert perm.hidden_columns("USERS") == frozenset({"ssn"})

    def test_none_allowed_tables_means_all(self) -> None:
        """None is the stored form of every table."""
        assert _perm(allowed_tables=None).all_tables is True


# ============================================================================
# Test Group 5: Effective permission resolution
# ============================================================================


class TestEffectivePermission:
    """Custom permissions win over the assigned profile."""

    def _profile(self) -> PermissionProfile:
        return PermissionProfile(
            id="analyst",
            team_id="t1",
            name="Analyst",
            connections={"conn-1": _perm(can_edit=False)},
        )

    def test_unassigned_member(self) -> None:
        """No assignment means no permission."""
        assert resolve_effective_permission(None, self._profile(), "conn-1") is None

    def test_profile_permission(self) -> None:
        """The profile entry for the connection applies."""
        assignment = MemberPermissionAssignment(team_id="t1", user_id="u1", profile_id="analyst")
        perm = resolve_effective_permission(assignment, self._profile(), "conn-1")
        assert perm is not None and perm.can_edit is False

    def test_custom_overrides_profile(self) -> None:
        """A custom permission for the connection wins."""
        assignment = MemberPermissionAssignment(
            team_id="t1",
            user_id="u1",
            profile_id="analyst",
            custom_permissions=[_perm(can_edit=True)],
        )
        perm = resolve_effective_permission(assignment, self._profile(), "conn-1")
        assert perm.can_edit is True

    def test_profile_without_connection(self) -> None:
        """A profile with no entry for the connection grants nothing."""
        assignment = MemberPermissionAssignment(team_id="t1", user_id="u1", profile_id="analyst")
        assert resolve_effective_permission(assignment, self._profile(), "conn-2") is None

    @pytest.mark.asyncio
    async def test_stored_provider(self) -> None:
        """StoredPermissionProvider resolves through the store."""
        store = InMemoryPermissionStore()
        store.add_profile(self._profile())
        store.assign(MemberPermissionAssignment(team_id="t1", user_id="u1", profile_id="analyst"))
        provider = StoredPermissionProvider(store)

        perm = await get_effective_permission(provider, "u1", "t1", "conn-1")
        assert perm is not None
        assert perm.connection_id == "conn-1"
        assert await get_effective_permission(provider, "u2", "t1", "conn-1") is None
