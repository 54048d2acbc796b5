"""Query and inspection commands: query, tables, load."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.table import Table

from quack.cli import _load_config, _open_db, _resolve_project, app, console


@app.command()
def query(
    sql: Annotated[str, typer.Argument(help="SQL query to execute")],
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
    limit: Annotated[Optional[int], typer.Option("--limit", "-n", help="Max rows to return")] = None,
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Run an ad-hoc SQL query against the project database."""
    import duckdb

    from quack.engine.query import QueryTimeoutError, run_query

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir)

    if not sql.strip():
        console.print("[red]Empty query. Provide a SQL statement to execute.[/red]")
        raise typer.Exit(1)

    with _open_db(config) as db:
        try:
            result = run_query(
                db,
                sql,
                limit=limit or config.query.default_limit,
                timeout=config.query.timeout_seconds,
                max_limit=config.query.max_limit,
            )
        except (duckdb.Error, QueryTimeoutError, ValueError) as e:
            console.print(f"[red]Query error:[/red] {e}")
            raise typer.Exit(1)

    columns = [c["name"] for c in result["columns"]]
    if json_output:
        data = [dict(zip(columns, row)) for row in result["rows"]]
        typer.echo(json.dumps(data, indent=2, default=str))
        return

    table = Table(show_lines=len(columns) > 8)
    for col in columns:
        table.add_column(col, no_wrap=False, max_width=60)
    for row in result["rows"]:
        table.add_row(*[str(v) for v in row])
    console.print(table)
    suffix = " (truncated)" if result["truncated"] else ""
    console.print(f"[dim]{len(result['rows'])} of {result['row_count']} rows{suffix}[/dim]")


@app.command()
def tables(
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """List user tables in the project database."""
    from quack.engine.catalog import list_tables, list_tracked_tables

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir)

    with _open_db(config) as db:
        names = list_tables(db)
        tracked = {t["name"].lower(): t for t in list_tracked_tables(db)}

    if not names:
        console.print("[yellow]No tables yet.[/yellow]")
        return

    table = Table(title="Tables")
    table.add_column("Name", style="bold")
    table.add_column("Source file")
    for name in names:
        info = tracked.get(name.lower())
        table.add_row(name, (info or {}).get("source_file_id") or "[dim]-[/dim]")
    console.print(table)


@app.command()
def load(
    csv_file: Annotated[Path, typer.Argument(help="CSV file to load")],
    table_name: Annotated[Optional[str], typer.Option("--table", "-t", help="Table name (default: file name)")] = None,
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Store a local CSV file and create a table from it."""
    import duckdb

    from quack.engine.catalog import check_new_table_name, create_table_from_file, import_local_file
    from quack.engine.utils import sanitize_table_name

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir)
    name = table_name or sanitize_table_name(csv_file.stem)

    with _open_db(config) as db:
        try:
            check_new_table_name(db, name)
            stored = import_local_file(db, config.upload_dir, csv_file)
            result = create_table_from_file(db, stored["id"], name)
        except (FileNotFoundError, LookupError, ValueError, duckdb.Error) as e:
            console.print(f"[red]Load failed:[/red] {e}")
            raise typer.Exit(1)
        count = db.fetchone(f'SELECT COUNT(*) FROM "{result["table_name"]}"')

    console.print(f"[green]Created table {result['table_name']} ({count[0]} rows)[/green]")
