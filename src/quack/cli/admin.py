"""Project commands: init, serve."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer

from quack.cli import _load_config, _resolve_project, app, console


@app.command()
def init(
    name: Annotated[str, typer.Argument(help="Project name")] = "my-notebooks",
    directory: Annotated[Optional[Path], typer.Option("--dir", "-d", help="Target directory")] = None,
) -> None:
    """Scaffold a new quack project."""
    from quack.config import CONFIG_FILENAME, CONFIG_TEMPLATE

    target = directory or Path.cwd() / name
    target.mkdir(parents=True, exist_ok=True)

    config_path = target / CONFIG_FILENAME
    if config_path.exists():
        console.print(f"[yellow]{CONFIG_FILENAME} already exists in {target}[/yellow]")
        raise typer.Exit(1)

    for d in ("data/uploads", "data/exports"):
        (target / d).mkdir(parents=True, exist_ok=True)
    config_path.write_text(CONFIG_TEMPLATE.format(name=name))
    (target / ".gitignore").write_text(
        "data/*.duckdb\ndata/*.duckdb.wal\ndata/uploads/\ndata/exports/\n"
    )

    console.print(f"[green]Created project '{name}' in {target}[/green]")
    console.print("Next: [bold]quack serve[/bold]")


@app.command()
def serve(
    host: Annotated[Optional[str], typer.Option(help="Host to bind to")] = None,
    port: Annotated[Optional[int], typer.Option(help="Port to bind to")] = None,
    project_dir: Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")] = None,
) -> None:
    """Start the API server."""
    import uvicorn

    from quack.server.app import create_app

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir)
    host = host or config.server.host
    port = port or config.server.port

    console.print(f"[dim]Database: {config.db_path}[/dim]")
    console.print(f"[bold]Starting quack server at http://{host}:{port}[/bold]")
    uvicorn.run(create_app(config), host=host, port=port)
