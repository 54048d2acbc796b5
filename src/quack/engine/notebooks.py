"""Notebook persistence: notebooks (and documents) with their ordered cells.

Notebooks and the older "document" entity are the same thing stored in one
table with a ``kind`` column. Cells are owned by their notebook: they are
replaced wholesale on update and deleted with it, so ``cell_index`` is always
dense and zero-based.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping

from quack.engine.database import Database
from quack.engine.utils import generate_id

logger = logging.getLogger("quack.notebooks")

CELL_TYPES = ("sql", "markdown")
NOTEBOOK_KINDS = ("notebook", "document")

_UNSET: Any = object()


@dataclass
class Cell:
    """A single SQL or markdown cell."""

    id: str
    notebook_id: str
    cell_index: int
    cell_type: str  # "sql" or "markdown"
    sql_text: str | None = None
    markdown_text: str | None = None
    chart_config: str | None = None  # opaque, owned by the UI
    selected_tables: list[str] = field(default_factory=list)
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "notebook_id": self.notebook_id,
            "cell_index": self.cell_index,
            "cell_type": self.cell_type,
            "sql_text": self.sql_text,
            "markdown_text": self.markdown_text,
            "chart_config": self.chart_config,
            "selected_tables": list(self.selected_tables),
            "created_at": _isoformat(self.created_at),
        }


@dataclass
class Notebook:
    """A notebook row; ``cells`` is filled when loaded with its cells."""

    id: str
    name: str
    kind: str = "notebook"
    markdown: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    cells: list[Cell] = field(default_factory=list)

    @property
    def sql_cells(self) -> list[Cell]:
        return [c for c in self.cells if c.cell_type == "sql" and c.sql_text]

    def to_dict(self, include_cells: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "markdown": self.markdown,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }
        if include_cells:
            data["cells"] = [c.to_dict() for c in self.cells]
        return data


def _isoformat(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def parse_selected_tables(raw: Any) -> list[str]:
    """Decode the stored JSON list of selected tables; anything malformed is empty."""
    if raw is None or raw == "":
        return []
    if isinstance(raw, list):
        return [str(t) for t in raw]
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("Ignoring malformed selected_tables value: %r", raw)
        return []
    if not isinstance(value, list):
        return []
    return [str(t) for t in value]


def _dump_selected_tables(tables: Iterable[str] | str | None) -> str | None:
    if tables is None:
        return None
    if isinstance(tables, str):
        tables = parse_selected_tables(tables)
    return json.dumps(list(tables))


def _row_to_cell(row: Mapping[str, Any]) -> Cell:
    return Cell(
        id=row["id"],
        notebook_id=row["notebook_id"],
        cell_index=int(row["cell_index"]),
        cell_type=row["cell_type"],
        sql_text=row.get("sql_text"),
        markdown_text=row.get("markdown_text"),
        chart_config=row.get("chart_config"),
        selected_tables=parse_selected_tables(row.get("selected_tables")),
        created_at=row.get("created_at"),
    )


def _row_to_notebook(row: Mapping[str, Any]) -> Notebook:
    return Notebook(
        id=row["id"],
        name=row["name"],
        kind=row.get("kind") or "notebook",
        markdown=row.get("markdown"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _check_kind(kind: str) -> str:
    if kind not in NOTEBOOK_KINDS:
        raise ValueError(f"Invalid notebook kind: {kind!r} (expected one of {NOTEBOOK_KINDS})")
    return kind


def insert_cell(
    db: Database,
    notebook_id: str,
    cell_index: int,
    cell: Mapping[str, Any],
) -> str:
    """Insert one cell under ``notebook_id`` with a fresh id. Returns the id."""
    cell_type = cell.get("cell_type")
    if cell_type not in CELL_TYPES:
        raise ValueError(f"Invalid cell type: {cell_type!r} (expected one of {CELL_TYPES})")
    cell_id = generate_id()
    db.execute(
        """
        INSERT INTO _notebook_cells
            (id, notebook_id, cell_index, cell_type, sql_text, markdown_text,
             chart_config, selected_tables)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            cell_id,
            notebook_id,
            cell_index,
            cell_type,
            cell.get("sql_text"),
            cell.get("markdown_text"),
            cell.get("chart_config"),
            _dump_selected_tables(cell.get("selected_tables")),
        ],
    )
    return cell_id


def _replace_cells(db: Database, notebook_id: str, cells: Iterable[Mapping[str, Any]]) -> None:
    db.execute("DELETE FROM _notebook_cells WHERE notebook_id = ?", [notebook_id])
    for index, cell in enumerate(cells):
        insert_cell(db, notebook_id, index, cell)


def get_notebook(db: Database, notebook_id: str, kind: str | None = None) -> Notebook | None:
    """Load a notebook with its cells ordered by position, or None."""
    rows = db.query("SELECT * FROM _notebooks WHERE id = ?", [notebook_id])
    if not rows:
        return None
    notebook = _row_to_notebook(rows[0])
    if kind is not None and notebook.kind != kind:
        return None
    cell_rows = db.query(
        "SELECT * FROM _notebook_cells WHERE notebook_id = ? ORDER BY cell_index ASC",
        [notebook_id],
    )
    notebook.cells = [_row_to_cell(r) for r in cell_rows]
    return notebook


def list_notebooks(db: Database, kind: str | None = None) -> list[Notebook]:
    """List notebooks (without cells), most recently updated first."""
    if kind is None:
        rows = db.query("SELECT * FROM _notebooks ORDER BY updated_at DESC")
    else:
        rows = db.query(
            "SELECT * FROM _notebooks WHERE kind = ? ORDER BY updated_at DESC",
            [_check_kind(kind)],
        )
    return [_row_to_notebook(r) for r in rows]


def create_notebook(
    db: Database,
    name: str,
    markdown: str | None = None,
    cells: Iterable[Mapping[str, Any]] | None = None,
    kind: str = "notebook",
) -> Notebook:
    """Create a notebook with optional cells, indexed in the given order."""
    name = name.strip()
    if not name:
        raise ValueError("Notebook name is required")
    _check_kind(kind)

    notebook_id = generate_id()
    with db.transaction():
        db.execute(
            "INSERT INTO _notebooks (id, kind, name, markdown) VALUES (?, ?, ?, ?)",
            [notebook_id, kind, name, markdown],
        )
        for index, cell in enumerate(cells or []):
            insert_cell(db, notebook_id, index, cell)
    logger.info("Created %s %s (%s)", kind, notebook_id, name)
    notebook = get_notebook(db, notebook_id)
    if notebook is None:
        raise RuntimeError(f"Notebook {notebook_id} vanished right after creation")
    return notebook


def update_notebook(
    db: Database,
    notebook_id: str,
    name: str | None = None,
    markdown: str | None = _UNSET,
    cells: Iterable[Mapping[str, Any]] | None = None,
) -> Notebook | None:
    """Update name/markdown and, when ``cells`` is given, replace every cell.

    Leaving ``markdown`` out keeps the current value; passing None clears it.
    Returns None if the notebook does not exist.
    """
    existing = get_notebook(db, notebook_id)
    if existing is None:
        return None

    with db.transaction():
        if cells is not None:
            _replace_cells(db, notebook_id, cells)
        if name or markdown is not _UNSET or cells is not None:
            db.execute(
                "UPDATE _notebooks SET name = ?, markdown = ?, updated_at = current_timestamp "
                "WHERE id = ?",
                [
                    (name or "").strip() or existing.name,
                    existing.markdown if markdown is _UNSET else markdown,
                    notebook_id,
                ],
            )
    return get_notebook(db, notebook_id)


def delete_notebook(db: Database, notebook_id: str) -> bool:
    """Delete a notebook and all its cells. Returns False if it did not exist."""
    row = db.fetchone("SELECT COUNT(*) FROM _notebooks WHERE id = ?", [notebook_id])
    if not row or row[0] == 0:
        return False
    with db.transaction():
        db.execute("DELETE FROM _notebook_cells WHERE notebook_id = ?", [notebook_id])
        db.execute("DELETE FROM _notebooks WHERE id = ?", [notebook_id])
    logger.info("Deleted notebook %s", notebook_id)
    return True
