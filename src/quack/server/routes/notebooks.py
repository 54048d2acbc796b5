"""Notebook CRUD, export and import endpoints."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse, Response
from pydantic import BaseModel, Field
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool

from quack.engine.export import (
    ARCHIVE_SUFFIX,
    DataPolicy,
    export_notebook,
    export_notebook_markdown,
)
from quack.engine.importer import import_notebook
from quack.engine.notebooks import (
    create_notebook,
    delete_notebook,
    get_notebook,
    list_notebooks,
    update_notebook,
)
from quack.server.deps import Config, Db, _require_found

logger = logging.getLogger("quack.server")

router = APIRouter()


# --- Pydantic models ---


class CellModel(BaseModel):
    cell_type: str = Field(..., pattern=r"^(sql|markdown)$")
    sql_text: str | None = Field(default=None, max_length=1_000_000)
    markdown_text: str | None = Field(default=None, max_length=1_000_000)
    chart_config: str | None = None
    selected_tables: list[str] = Field(default_factory=list)


class CreateNotebookRequest(BaseModel):
    name: str = Field(..., max_length=500)
    markdown: str | None = None
    kind: Literal["notebook", "document"] = "notebook"
    cells: list[CellModel] = Field(default_factory=list)


class UpdateNotebookRequest(BaseModel):
    name: str | None = Field(default=None, max_length=500)
    markdown: str | None = None
    cells: list[CellModel] | None = None


class ExportRequest(BaseModel):
    format: Literal["quackdb", "markdown"] = "quackdb"
    data_mode: DataPolicy = DataPolicy.REFERENCED_TABLES
    chart_images: dict[str, str] | None = None


# --- Helpers ---


def _download_name(name: str, suffix: str) -> str:
    safe = "".join(c if c.isalnum() or c in " -_." else "_" for c in name).strip()
    return f"{safe or 'notebook'}{suffix}"


def _remove_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove exported archive %s: %s", path, e)


# --- Notebook endpoints ---


@router.get("/api/notebooks")
def list_notebooks_endpoint(db: Db, kind: str | None = None) -> list[dict]:
    """List notebooks without their cells."""
    try:
        notebooks = list_notebooks(db, kind=kind)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return [nb.to_dict(include_cells=False) for nb in notebooks]


@router.post("/api/notebooks", status_code=201)
def create_notebook_endpoint(req: CreateNotebookRequest, db: Db) -> dict:
    try:
        notebook = create_notebook(
            db,
            req.name,
            markdown=req.markdown,
            cells=[c.model_dump() for c in req.cells],
            kind=req.kind,
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    return notebook.to_dict()


@router.get("/api/notebooks/{notebook_id}")
def get_notebook_endpoint(notebook_id: str, db: Db) -> dict:
    return _require_found(get_notebook(db, notebook_id), "Notebook").to_dict()


@router.put("/api/notebooks/{notebook_id}")
def update_notebook_endpoint(notebook_id: str, req: UpdateNotebookRequest, db: Db) -> dict:
    """Update a notebook; a ``cells`` list replaces every existing cell."""
    kwargs = {}
    if "markdown" in req.model_fields_set:
        kwargs["markdown"] = req.markdown
    cells = [c.model_dump() for c in req.cells] if req.cells is not None else None
    try:
        notebook = update_notebook(db, notebook_id, name=req.name, cells=cells, **kwargs)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return _require_found(notebook, "Notebook").to_dict()


@router.delete("/api/notebooks/{notebook_id}")
def delete_notebook_endpoint(notebook_id: str, db: Db) -> dict:
    if not delete_notebook(db, notebook_id):
        raise HTTPException(404, "Notebook not found")
    return {"success": True}


# --- Export / import ---


@router.post("/api/notebooks/{notebook_id}/export")
def export_notebook_endpoint(
    notebook_id: str, db: Db, config: Config, req: ExportRequest | None = None
) -> Response:
    """Export as a downloadable .quackdb archive or as markdown."""
    req = req or ExportRequest()
    if req.format == "markdown":
        markdown = export_notebook_markdown(db, notebook_id, req.chart_images)
        notebook = _require_found(get_notebook(db, notebook_id), "Notebook")
        _require_found(markdown, "Notebook")
        filename = _download_name(notebook.name, ".md")
        return Response(
            content=markdown,
            media_type="text/markdown",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    try:
        result = export_notebook(db, notebook_id, config.export_dir, policy=req.data_mode)
    except Exception as e:
        raise HTTPException(500, f"Export failed: {e}")
    result = _require_found(result, "Notebook")
    # The archive only exists to be downloaded once
    return FileResponse(
        path=str(result.path),
        media_type="application/octet-stream",
        filename=_download_name(result.notebook.name, ARCHIVE_SUFFIX),
        background=BackgroundTask(_remove_file, result.path),
    )


@router.post("/api/notebooks/import")
async def import_notebook_endpoint(request: Request, db: Db, config: Config) -> dict:
    """Import a notebook from an uploaded .quackdb archive (multipart ``file``)."""
    form = await request.form()
    upload = form.get("file")
    if upload is None or isinstance(upload, str):
        raise HTTPException(400, "No file provided")
    if not (upload.filename or "").endswith(ARCHIVE_SUFFIX):
        raise HTTPException(400, f"File must be a {ARCHIVE_SUFFIX} file")

    data = await upload.read()
    if len(data) > config.server.max_upload_bytes:
        raise HTTPException(413, "File too large")
    try:
        result = await run_in_threadpool(import_notebook, db, data, config.export_dir)
    except Exception as e:
        raise HTTPException(500, f"Import failed: {e}")
    if result is None:
        raise HTTPException(400, "No notebook found in import file")
    return result.to_dict()
