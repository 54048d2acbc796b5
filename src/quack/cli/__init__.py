"""CLI interface for quack.

Split into modules by command group. The Typer app and shared helpers live
here; each module registers its commands.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import typer
from rich.console import Console

from quack.config import CONFIG_FILENAME, AppConfig

app = typer.Typer(
    name="quack",
    help="Local-first SQL notebooks on DuckDB.",
    no_args_is_help=True,
)
console = Console()


def _resolve_project(project_dir: Path | None = None) -> Path:
    project_dir = project_dir or Path.cwd()
    if not (project_dir / CONFIG_FILENAME).exists():
        console.print(f"[red]No {CONFIG_FILENAME} found in {project_dir}[/red]")
        console.print("Run [bold]quack init[/bold] to create a new project.")
        raise typer.Exit(1)
    return project_dir


def _load_config(project_dir: Path) -> AppConfig:
    from quack import setup_logging
    from quack.config import load_config

    config = load_config(project_dir)
    setup_logging(config.log_level)
    return config


@contextmanager
def _open_db(config: AppConfig) -> Iterator:
    """Open the project database for the duration of one command."""
    from quack.engine.database import Database

    with Database(config.db_path) as db:
        yield db


# Import submodules so they register their commands on `app`.
from quack.cli import admin  # noqa: E402, F401
from quack.cli import notebooks  # noqa: E402, F401
from quack.cli import query  # noqa: E402, F401
