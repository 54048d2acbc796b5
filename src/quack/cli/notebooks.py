"""Notebook commands: list, export, import."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.table import Table

from quack.cli import _load_config, _open_db, _resolve_project, app, console

notebook_app = typer.Typer(name="notebook", help="List, export and import notebooks.")
app.add_typer(notebook_app)


@notebook_app.command("list")
def notebook_list(
    kind: Annotated[Optional[str], typer.Option("--kind", "-k", help="notebook or document")] = None,
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """List notebooks, most recently updated first."""
    from quack.engine.notebooks import list_notebooks

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir)

    with _open_db(config) as db:
        try:
            notebooks = list_notebooks(db, kind=kind)
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)

    if not notebooks:
        console.print("[yellow]No notebooks yet.[/yellow]")
        return

    table = Table(title="Notebooks")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Kind")
    table.add_column("Updated")
    for nb in notebooks:
        table.add_row(nb.id, nb.name, nb.kind, str(nb.updated_at or ""))
    console.print(table)


@notebook_app.command("export")
def notebook_export(
    notebook_id: Annotated[str, typer.Argument(help="Notebook id")],
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Output file")] = None,
    data_mode: Annotated[str, typer.Option("--data-mode", help="none, query-results, referenced-tables or full-db")] = "referenced-tables",
    markdown: Annotated[bool, typer.Option("--markdown", help="Export as markdown instead of .quackdb")] = False,
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Export a notebook to a .quackdb archive (or markdown)."""
    from quack.engine.export import ARCHIVE_SUFFIX, DataPolicy, export_notebook, export_notebook_markdown

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir)

    try:
        policy = DataPolicy(data_mode)
    except ValueError:
        console.print(f"[red]Unknown data mode: {data_mode}[/red]")
        raise typer.Exit(1)

    with _open_db(config) as db:
        if markdown:
            text = export_notebook_markdown(db, notebook_id)
            if text is None:
                console.print(f"[red]Notebook '{notebook_id}' not found[/red]")
                raise typer.Exit(1)
            target = output or Path.cwd() / f"{notebook_id}.md"
            target.write_text(text)
            console.print(f"[green]Wrote {target}[/green]")
            return

        try:
            result = export_notebook(db, notebook_id, config.export_dir, policy=policy)
        except Exception as e:
            console.print(f"[red]Export failed:[/red] {e}")
            raise typer.Exit(1)

    if result is None:
        console.print(f"[red]Notebook '{notebook_id}' not found[/red]")
        raise typer.Exit(1)

    target = output or Path.cwd() / f"{notebook_id}{ARCHIVE_SUFFIX}"
    shutil.move(str(result.path), target)
    console.print(f"[green]Exported '{result.notebook.name}' to {target}[/green]")
    if result.tables:
        console.print(f"  Tables: {', '.join(result.tables)}")
    for warning in result.warnings:
        console.print(f"  [yellow]{warning}[/yellow]")


@notebook_app.command("import")
def notebook_import(
    archive: Annotated[Path, typer.Argument(help=".quackdb archive to import")],
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Import a notebook (and its tables) from a .quackdb archive."""
    from quack.engine.export import ARCHIVE_SUFFIX
    from quack.engine.importer import import_notebook

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir)

    if not archive.exists():
        console.print(f"[red]File not found: {archive}[/red]")
        raise typer.Exit(1)
    if archive.suffix != ARCHIVE_SUFFIX:
        console.print(f"[red]File must be a {ARCHIVE_SUFFIX} file[/red]")
        raise typer.Exit(1)

    with _open_db(config) as db:
        try:
            result = import_notebook(db, archive.read_bytes(), config.export_dir)
        except Exception as e:
            console.print(f"[red]Import failed:[/red] {e}")
            raise typer.Exit(1)

    if result is None:
        console.print("[red]No notebook found in import file[/red]")
        raise typer.Exit(1)

    console.print(f"[green]Imported '{result.notebook.name}' as {result.notebook.id}[/green]")
    console.print(f"  Cells: {len(result.notebook.cells)}")
    if result.tables:
        console.print(f"  Tables created: {', '.join(result.tables)}")
    if result.skipped:
        console.print(f"  [dim]Kept existing: {', '.join(result.skipped)}[/dim]")
    for warning in result.warnings:
        console.print(f"  [yellow]{warning}[/yellow]")
