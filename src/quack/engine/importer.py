"""Notebook import from .quackdb archives.

Import never reuses identities from the archive: the notebook and every cell
get fresh ids, so the same archive can be imported any number of times, even
into the database it came from. Data tables are merged first-writer-wins: a
table that already exists in the live database is left untouched and the
archive's copy is skipped.

Workflow: save upload -> attach read-only -> notebook + cells -> tables -> detach.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import duckdb

from quack.engine.catalog import list_tables, table_exists, track_table
from quack.engine.database import Database
from quack.engine.export import ARCHIVE_SUFFIX, CELL_TABLE, NOTEBOOK_TABLE
from quack.engine.notebooks import Notebook, get_notebook, insert_cell
from quack.engine.utils import generate_id, is_system_table, quote_identifier

logger = logging.getLogger("quack.import")

IMPORT_ALIAS = "import"

# (notebook table, cell table, cell -> notebook column, kind)
_NOTEBOOK_SOURCES = (
    (NOTEBOOK_TABLE, CELL_TABLE, "notebook_id", "notebook"),
    # Archives written by the older document export
    ("_documents", "_document_cells", "document_id", "document"),
)


@dataclass
class ImportResult:
    notebook: Notebook
    tables: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "notebook": self.notebook.to_dict(),
            "tables": list(self.tables),
            "skipped": list(self.skipped),
            "warnings": list(self.warnings),
        }


def _read_notebook(
    db: Database, alias: str, archive_tables: list[str]
) -> tuple[dict[str, Any], list[dict[str, Any]], str] | None:
    """Read the first notebook row and its ordered cells from the archive."""
    present = {t.lower() for t in archive_tables}
    for nb_table, cell_table, fk, kind in _NOTEBOOK_SOURCES:
        if nb_table not in present:
            continue
        rows = db.query(f"SELECT * FROM {alias}.{quote_identifier(nb_table)}")
        if not rows:
            return None
        if len(rows) > 1:
            logger.warning("Archive holds %d notebooks, importing the first", len(rows))
        original = rows[0]
        cells: list[dict[str, Any]] = []
        if cell_table in present:
            cells = db.query(
                f"SELECT * FROM {alias}.{quote_identifier(cell_table)} "
                f"WHERE {fk} = ? ORDER BY cell_index ASC",
                [original["id"]],
            )
        return original, cells, original.get("kind") or kind
    return None


def _insert_notebook(
    db: Database,
    original: dict[str, Any],
    cells: list[dict[str, Any]],
    kind: str,
) -> str:
    new_id = generate_id()
    with db.transaction():
        db.execute(
            "INSERT INTO _notebooks (id, kind, name, markdown) VALUES (?, ?, ?, ?)",
            [new_id, kind, original["name"], original.get("markdown")],
        )
        for cell in cells:
            insert_cell(db, new_id, int(cell["cell_index"]), cell)
    return new_id


def _merge_tables(db: Database, alias: str, archive_tables: list[str], result: ImportResult) -> None:
    for name in archive_tables:
        if table_exists(db, name):
            logger.info("Table %s already exists, keeping the live copy", name)
            result.skipped.append(name)
            continue
        try:
            db.execute(
                f"CREATE TABLE {quote_identifier(name)} AS "
                f"SELECT * FROM {alias}.{quote_identifier(name)}"
            )
        except duckdb.Error as e:
            message = f"Skipped table '{name}': {e}"
            logger.warning("Import: %s", message)
            result.warnings.append(message)
            continue
        track_table(db, name)
        result.tables.append(name)


def import_notebook(db: Database, data: bytes, export_dir: Path) -> ImportResult | None:
    """Import a notebook archive into the live database.

    Returns None when the archive holds no notebook. A file that cannot be
    attached, or notebook/cell rows that cannot be written, abort the import
    with nothing written. The uploaded temp file is removed on every path.
    """
    export_dir.mkdir(parents=True, exist_ok=True)
    temp_path = export_dir / f"temp_{generate_id()}{ARCHIVE_SUFFIX}"
    temp_path.write_bytes(data)

    try:
        with db.attached(temp_path, IMPORT_ALIAS, read_only=True) as alias:
            archive_tables = list_tables(db, catalog=IMPORT_ALIAS, include_system=True)
            found = _read_notebook(db, alias, archive_tables)
            if found is None:
                logger.info("No notebook found in uploaded archive")
                return None

            original, cells, kind = found
            new_id = _insert_notebook(db, original, cells, kind)
            result = ImportResult(notebook=Notebook(id=new_id, name=original["name"]))

            data_tables = [t for t in archive_tables if not is_system_table(t)]
            _merge_tables(db, alias, data_tables, result)
    finally:
        for candidate in (temp_path, temp_path.with_name(temp_path.name + ".wal")):
            try:
                candidate.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not remove temp archive %s: %s", candidate, e)

    notebook = get_notebook(db, new_id)
    if notebook is None:
        raise RuntimeError(f"Notebook {new_id} vanished right after import")
    result.notebook = notebook
    logger.info(
        "Imported notebook %s as %s (%d cells, %d tables, %d skipped)",
        original["id"],
        new_id,
        len(notebook.cells),
        len(result.tables),
        len(result.skipped),
    )
    return result
