"""CLI for browsing, querying, comparing and syncing configured databases.

Connections are read from ``scurry.toml`` (see ``scurry.config.loader``).

Usage:
    scurry connections
    scurry tables local
    scurry query local "SELECT * FROM users" --limit 20
    scurry compare staging local users
    scurry sync staging local users --dry-run
    scurry sync staging local users --content both
    scurry sync staging local users --keys '{"id":1}' '{"id":7}'

Commands:
    connections - List configured connections
    tables      - List tables on a connection
    query       - Run SQL on a connection
    compare     - Diff a table between two connections
    sync        - Copy missing/changed rows from source to target
"""

import argparse
import asyncio
import sys

from rich.console import Console
from rich.table import Table

from scurry.adapters.executor import QueryExecutor
from scurry.config.loader import TomlConnectionRegistry
from scurry.errors import ConfigError, ScurryError
from scurry.permissions.dangerous import DangerLevel, detect_dangerous_query
from scurry.schema.introspector import SchemaIntrospector
from scurry.schema.models import DiffStatus, SyncContent, SyncScope
from scurry.schema.sync import (
    compare_tables,
    count_sync_operations,
    generate_sync_sql,
    sync_table,
)

console = Console()

STATUS_STYLES = {
    DiffStatus.MATCH: "dim",
    DiffStatus.DIFFERENT: "yellow",
    DiffStatus.SOURCE_ONLY: "green",
    DiffStatus.TARGET_ONLY: "cyan",
}


def _load_registry(args: argparse.Namespace) -> TomlConnectionRegistry | None:
    try:
        return TomlConnectionRegistry.from_file(args.config)
    except (FileNotFoundError, ConfigError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return None


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_tables(args: argparse.Namespace) -> int:
    """List tables and views on one connection."""
    registry = _load_registry(args)
    if registry is None:
        return 1

    executor = QueryExecutor()
    try:
        conn = registry.require(args.connection)
        tables = await SchemaIntrospector(executor).fetch_tables(conn)
    except ScurryError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    finally:
        await executor.close()

    table = Table(title=f"Tables on {args.connection}", show_header=True, header_style="bold")
    table.add_column("Name")
    table.add_column("Type", style="dim")
    table.add_column("Schema", style="dim")
    for t in tables:
        table.add_row(t.name, t.type, t.schema_name or "")
    console.print(table)
    return 0


async def _async_query(args: argparse.Namespace) -> int:
    """Run SQL on a connection and render the result.

    Destructive statements need ``--yes``; critical ones (dropping or
    truncating) need ``--confirm-name`` set to the affected object.

    Args:
        args: Parsed arguments with connection, sql, limit, yes and
            confirm_name.

    Returns:
        0 on success, 1 on failure or a missing confirmation.
    """
    registry = _load_registry(args)
    if registry is None:
        return 1
    try:
        conn = registry.require(args.connection)
    except ScurryError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    danger = detect_dangerous_query(args.sql, conn.dialect)
    if danger.is_dangerous:
        color = "red" if danger.level is DangerLevel.CRITICAL else "yellow"
        label = danger.level.value.upper()
        console.print(f"[bold {color}]{label}[/bold {color}] {danger.message}")
        if danger.requires_typing_to_confirm:
            if args.confirm_name != danger.affected_object:
                console.print(
                    f"[dim]To run it, add[/dim] [cyan]--confirm-name {danger.affected_object}[/cyan]"
                )
                return 1
        elif not args.yes:
            console.print("[dim]To run it, add[/dim] [cyan]--yes[/cyan]")
            return 1

    executor = QueryExecutor()
    try:
        result = await executor.execute(conn, args.sql, limit=args.limit)
    except ScurryError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    finally:
        await executor.close()

    if result.error:
        console.print(f"[bold red]x[/bold red] {result.error}")
        return 1

    table = Table(show_header=True, header_style="bold")
    for col in result.columns:
        table.add_column(col)
    for row in result.rows:
        table.add_row(*["NULL" if row.get(c) is None else str(row.get(c)) for c in result.columns])
    console.print(table)

    summary = f"{result.row_count} row(s) in {result.execution_time_ms:.1f} ms"
    if result.truncated:
        summary += " [yellow](truncated)[/yellow]"
    console.print(f"[dim]{summary}[/dim]")
    return 0


async def _async_compare(args: argparse.Namespace) -> int:
    """Diff one table between two connections and print the summary."""
    registry = _load_registry(args)
    if registry is None:
        return 1

    executor = QueryExecutor()
    try:
        source = registry.require(args.source, "source")
        target = registry.require(args.target, "target")
        comparison = await compare_tables(
            executor,
            SchemaIntrospector(executor),
            source,
            target,
            args.table,
            target_table_name=args.target_table,
        )
    except ScurryError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    finally:
        await executor.close()

    if comparison.error:
        console.print(f"[red]Error: {comparison.error}[/red]")
        return 1

    summary = comparison.summary
    table = Table(
        title=f"{comparison.table_name}: {args.source} -> {args.target}",
        show_header=True,
        header_style="bold",
    )
    table.add_column("Status")
    table.add_column("Rows", justify="right")
    for status, count in (
        (DiffStatus.MATCH, summary.match),
        (DiffStatus.DIFFERENT, summary.different),
        (DiffStatus.SOURCE_ONLY, summary.source_only),
        (DiffStatus.TARGET_ONLY, summary.target_only),
    ):
        table.add_row(status.value, str(count), style=STATUS_STYLES[status])
    console.print(table)

    if not comparison.target_exists:
        console.print(
            f"[yellow]Table {comparison.target_table_name} does not exist on {args.target}.[/yellow]"
        )
    if comparison.truncated:
        console.print(
            "[yellow]Only the first rows were compared (comparison limit reached).[/yellow]"
        )

    if args.verbose:
        for diff in comparison.diffs:
            if diff.status is DiffStatus.MATCH:
                continue
            changed = ""
            if diff.changed_columns:
                changed = f" ({', '.join(sorted(diff.changed_columns))})"
            style = STATUS_STYLES[diff.status]
            console.print(
                f"  [{style}]{diff.status.value}[/{style}] {diff.primary_key_signature}{changed}"
            )
    return 0


async def _async_sync(args: argparse.Namespace) -> int:
    """Sync one table from source to target.

    With ``--keys`` only the listed primary key signatures are synced.
    ``--dry-run`` prints the planned statements and changes nothing.

    Args:
        args: Parsed arguments with source, target, table, target_table,
            content, keys and dry_run.

    Returns:
        0 on success, 1 on failure.
    """
    registry = _load_registry(args)
    if registry is None:
        return 1

    scope = SyncScope.SELECTED if args.keys else SyncScope.TABLE
    content = SyncContent(args.content)

    executor = QueryExecutor()
    introspector = SchemaIntrospector(executor)
    try:
        source = registry.require(args.source, "source")
        target = registry.require(args.target, "target")

        if args.dry_run:
            comparison = await compare_tables(
                executor, introspector, source, target, args.table,
                target_table_name=args.target_table,
            )
            if comparison.error:
                console.print(f"[red]Error: {comparison.error}[/red]")
                return 1
            counts = count_sync_operations(comparison.diffs, scope, args.keys)
            if not comparison.target_exists:
                if content.includes_structure:
                    note = "would be created"
                else:
                    note = "is missing (use --content both)"
                console.print(
                    f"[yellow]Target table {comparison.target_table_name} {note}.[/yellow]"
                )

            plan = Table(title="Sync Plan", show_header=True, header_style="bold")
            plan.add_column("Table", style="dim")
            plan.add_column("Insert", justify="right", style="green")
            plan.add_column("Update", justify="right", style="yellow")
            plan.add_row(
                comparison.target_table_name,
                str(counts["inserts"]) if counts["inserts"] else "-",
                str(counts["updates"]) if counts["updates"] else "-",
            )
            console.print(plan)

            if content.includes_data:
                for statement in generate_sync_sql(
                    comparison.target_table_name,
                    comparison.primary_key_columns,
                    comparison.diffs,
                    target.dialect,
                    scope,
                    args.keys,
                ):
                    console.print(statement, markup=False, highlight=False)
            console.print("[bold yellow]DRY RUN[/bold yellow] - No changes made.")
            return 0

        console.print("Syncing data...", style="dim")
        result = await sync_table(
            executor,
            introspector,
            source,
            target,
            args.table,
            scope=scope,
            content=content,
            selected_keys=args.keys,
            target_table_name=args.target_table,
        )
    except ScurryError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    finally:
        await executor.close()

    if result.error:
        console.print(f"[bold red]x[/bold red] {result.error}")
        return 1

    if result.table_created:
        console.print("[green]Created target table.[/green]")
    console.print(
        f"Inserted [green]{result.inserted_count}[/green], "
        f"updated [yellow]{result.updated_count}[/yellow] "
        f"({result.rows_affected} rows affected) in {result.execution_time_ms:.0f} ms"
    )
    for error in result.errors:
        console.print(f"  [red]{error}[/red]")
    if result.truncated:
        console.print(
            "[yellow]Only the first rows by primary key were synced (comparison limit reached).[/yellow]"
        )

    if result.success:
        console.print("[bold green]v[/bold green] Sync complete.")
        return 0
    console.print(f"[bold red]x[/bold red] Sync finished with {len(result.errors)} error(s).")
    return 1


# ============================================================================
# Sync command wrappers
# ============================================================================


def cmd_connections(args: argparse.Namespace) -> int:
    """List configured connections.

    Reads only the local TOML config, no database calls.
    """
    registry = _load_registry(args)
    if registry is None:
        return 1

    table = Table(title="Connections", show_header=True, header_style="bold")
    table.add_column("Id", style="bold cyan")
    table.add_column("Name")
    table.add_column("Dialect")
    table.add_column("Location", style="dim")
    for conn in registry.list_connections():
        if conn.dialect.value == "sqlite":
            location = conn.database
        else:
            location = f"{conn.host}:{conn.port}/{conn.database}"
        table.add_row(conn.id, conn.name, conn.dialect.value, location)
    console.print(table)
    return 0


def cmd_tables(args: argparse.Namespace) -> int:
    return asyncio.run(_async_tables(args))


def cmd_query(args: argparse.Namespace) -> int:
    return asyncio.run(_async_query(args))


def cmd_compare(args: argparse.Namespace) -> int:
    return asyncio.run(_async_compare(args))


def cmd_sync(args: argparse.Namespace) -> int:
    """Sync a table between connections.

    Wraps the async implementation with ``asyncio.run()``.

    Returns:
        0 on success, 1 on failure.
    """
    return asyncio.run(_async_sync(args))


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scurry",
        description="Multi-engine SQL client: query, compare and sync databases",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the connections file (default: scurry.toml)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_connections = subparsers.add_parser("connections", help="List configured connections")
    p_connections.set_defaults(func=cmd_connections)

    p_tables = subparsers.add_parser("tables", help="List tables on a connection")
    p_tables.add_argument("connection", help="Connection id")
    p_tables.set_defaults(func=cmd_tables)

    p_query = subparsers.add_parser("query", help="Run SQL on a connection")
    p_query.add_argument("connection", help="Connection id")
    p_query.add_argument("sql", help="SQL to run")
    p_query.add_argument("--limit", type=int, default=None, help="Maximum rows to return")
    p_query.add_argument("--yes", action="store_true", help="Run destructive statements")
    p_query.add_argument(
        "--confirm-name",
        default=None,
        help="Name of the table/database a critical statement affects",
    )
    p_query.set_defaults(func=cmd_query)

    p_compare = subparsers.add_parser("compare", help="Diff a table between two connections")
    p_compare.add_argument("source", help="Source connection id")
    p_compare.add_argument("target", help="Target connection id")
    p_compare.add_argument("table", help="Table name")
    p_compare.add_argument("--target-table", default=None, help="Table name on the target")
    p_compare.add_argument("-v", "--verbose", action="store_true", help="List every differing row")
    p_compare.set_defaults(func=cmd_compare)

    p_sync = subparsers.add_parser("sync", help="Sync a table from source to target")
    p_sync.add_argument("source", help="Source connection id")
    p_sync.add_argument("target", help="Target connection id")
    p_sync.add_argument("table", help="Table name")
    p_sync.add_argument("--target-table", default=None, help="Table name on the target")
    p_sync.add_argument(
        "--content",
        choices=[c.value for c in SyncContent],
        default=SyncContent.DATA.value,
        help="What to sync: rows, table structure, or both (default: data)",
    )
    p_sync.add_argument(
        "--keys",
        nargs="+",
        default=None,
        help='Primary key signatures to sync, e.g. \'{"id":1}\' (default: whole table)',
    )
    p_sync.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the planned statements without changing anything",
    )
    p_sync.set_defaults(func=cmd_sync)

    return parser


def main() -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
