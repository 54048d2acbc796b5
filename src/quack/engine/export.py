"""Notebook export: portable .quackdb archives and markdown.

An archive is a DuckDB database file holding the notebook row, its cells, and
depending on the data policy the provenance metadata plus a copy of the user
tables the notebook needs. It is built by attaching a fresh file to the live
session, copying into it with ``CREATE TABLE ... AS SELECT`` and detaching.

Data tables are best-effort: a table that cannot be copied (for example
because it was dropped after the cell was written) is skipped with a warning
and the export still succeeds. Anything else that fails removes the partial
archive and re-raises.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path

import duckdb

from quack.engine.catalog import list_tables
from quack.engine.database import Database
from quack.engine.notebooks import Notebook, get_notebook
from quack.engine.sql_analysis import extract_table_refs
from quack.engine.utils import generate_id, is_system_table, quote_identifier

logger = logging.getLogger("quack.export")

ARCHIVE_SUFFIX = ".quackdb"
EXPORT_ALIAS = "export"

# Required archive tables, filtered to the exported notebook
NOTEBOOK_TABLE = "_notebooks"
CELL_TABLE = "_notebook_cells"
# Provenance metadata, copied in full
PROVENANCE_TABLES = ("_files", "_tables")
# Saved queries, only travel with full-db exports
QUERY_TABLES = ("_queries", "_query_tables")


class DataPolicy(str, enum.Enum):
    """How much table data an archive carries."""

    NONE = "none"
    QUERY_RESULTS = "query-results"
    REFERENCED_TABLES = "referenced-tables"
    FULL_DB = "full-db"

    @property
    def copies_referenced(self) -> bool:
        return self in (DataPolicy.QUERY_RESULTS, DataPolicy.REFERENCED_TABLES)


@dataclass
class ExportResult:
    path: Path
    notebook: Notebook
    policy: DataPolicy
    tables: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def referenced_tables(notebook: Notebook) -> list[str]:
    """Union of the tables referenced by every SQL cell, in first-seen order."""
    seen: set[str] = set()
    tables: list[str] = []
    for cell in notebook.sql_cells:
        for name in sorted(extract_table_refs(cell.sql_text or "")):
            if name.lower() not in seen:
                seen.add(name.lower())
                tables.append(name)
    return tables


def _copy_table(db: Database, alias: str, source: str, where: str = "", params=None) -> None:
    db.execute(
        f"CREATE TABLE {alias}.{quote_identifier(source)} AS "
        f"SELECT * FROM {quote_identifier(source)}{where}",
        params,
    )


def _copy_data_tables(
    db: Database,
    alias: str,
    names: list[str],
    result: ExportResult,
) -> None:
    for name in names:
        if is_system_table(name):
            continue
        try:
            _copy_table(db, alias, name)
        except duckdb.Error as e:
            message = f"Skipped table '{name}': {e}"
            logger.warning("Export of %s: %s", result.notebook.id, message)
            result.warnings.append(message)
        else:
            result.tables.append(name)


def export_notebook(
    db: Database,
    notebook_id: str,
    export_dir: Path,
    policy: DataPolicy | str = DataPolicy.REFERENCED_TABLES,
) -> ExportResult | None:
    """Build a .quackdb archive for a notebook. Returns None if it does not exist.

    The archive is complete, detached and closed when this returns; deleting
    it after delivery is up to the caller.
    """
    policy = DataPolicy(policy)
    notebook = get_notebook(db, notebook_id)
    if notebook is None:
        return None

    export_dir.mkdir(parents=True, exist_ok=True)
    archive_path = export_dir / f"{generate_id()}{ARCHIVE_SUFFIX}"
    result = ExportResult(path=archive_path, notebook=notebook, policy=policy)

    try:
        with db.attached(archive_path, EXPORT_ALIAS) as alias:
            _copy_table(db, alias, NOTEBOOK_TABLE, " WHERE id = ?", [notebook_id])
            _copy_table(db, alias, CELL_TABLE, " WHERE notebook_id = ?", [notebook_id])

            if policy is not DataPolicy.NONE:
                for table in PROVENANCE_TABLES:
                    _copy_table(db, alias, table)

            if policy.copies_referenced:
                _copy_data_tables(db, alias, referenced_tables(notebook), result)
            elif policy is DataPolicy.FULL_DB:
                for table in QUERY_TABLES:
                    _copy_table(db, alias, table)
                _copy_data_tables(db, alias, list_tables(db), result)
    except BaseException:
        logger.exception("Export of notebook %s failed", notebook_id)
        _remove_archive(archive_path)
        raise

    logger.info(
        "Exported notebook %s to %s (policy=%s, tables=%d, skipped=%d)",
        notebook_id,
        archive_path.name,
        policy.value,
        len(result.tables),
        len(result.warnings),
    )
    return result


def _remove_archive(path: Path) -> None:
    # DuckDB may leave a write-ahead log next to the file
    for candidate in (path, path.with_name(path.name + ".wal")):
        try:
            candidate.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove partial archive %s: %s", candidate, e)


# --- Markdown ---


def export_notebook_markdown(
    db: Database,
    notebook_id: str,
    chart_images: dict[str, str] | None = None,
) -> str | None:
    """Render a notebook as markdown. Returns None if it does not exist.

    ``chart_images`` maps cell ids to image data URIs rendered by the UI;
    matching SQL cells get a chart image after their code block.
    """
    notebook = get_notebook(db, notebook_id)
    if notebook is None:
        return None
    chart_images = chart_images or {}

    blocks = [f"# {notebook.name}"]
    if notebook.markdown and notebook.markdown.strip():
        blocks.append(notebook.markdown.strip())

    for cell in notebook.cells:
        if cell.cell_type == "markdown":
            if cell.markdown_text and cell.markdown_text.strip():
                blocks.append(cell.markdown_text.strip())
        elif cell.cell_type == "sql":
            if cell.sql_text and cell.sql_text.strip():
                blocks.append(f"```sql\n{cell.sql_text.strip()}\n```")
            image = chart_images.get(cell.id)
            if image:
                blocks.append(f"![Chart]({image})")

    return "\n\n".join(blocks) + "\n"
