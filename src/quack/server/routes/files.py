"""CSV upload, stored file listing, and table endpoints."""

from __future__ import annotations

import logging
from typing import Literal

import duckdb
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from quack.engine.catalog import (
    append_file_to_table,
    create_table_from_file,
    describe_table,
    list_files,
    list_tables,
    list_tracked_tables,
    preview_table,
    store_upload,
    table_exists,
)
from quack.server.deps import Config, Db, _validate_identifier

logger = logging.getLogger("quack.server")

router = APIRouter()


# --- Pydantic models ---


class CreateTableRequest(BaseModel):
    file_id: str = Field(..., min_length=1)
    table_name: str | None = Field(default=None, max_length=200)
    mode: Literal["create", "append"] = "create"
    target_table: str | None = Field(default=None, max_length=200)


# --- Files ---


@router.post("/api/files/upload")
async def upload_file(request: Request, db: Db, config: Config) -> dict:
    """Upload a CSV file (multipart ``file``) into the upload directory."""
    form = await request.form()
    upload = form.get("file")
    if upload is None or isinstance(upload, str):
        raise HTTPException(400, "No file provided")

    content = await upload.read()
    if len(content) > config.server.max_upload_bytes:
        raise HTTPException(413, "File too large")
    try:
        stored = await run_in_threadpool(
            store_upload, db, config.upload_dir, upload.filename or "", content
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"file_id": stored["id"], "filename": stored["filename"], "size": len(content)}


@router.get("/api/files")
def list_files_endpoint(db: Db) -> dict:
    files = list_files(db)
    for f in files:
        f["uploaded_at"] = str(f["uploaded_at"]) if f["uploaded_at"] else None
    return {"files": files}


# --- Tables ---


@router.post("/api/tables")
def create_table(req: CreateTableRequest, db: Db) -> dict:
    """Create a table from a stored file, or append the file to an existing table."""
    if req.mode == "append":
        if not req.target_table:
            raise HTTPException(400, "target_table is required when mode is append")
        target = _validate_identifier(req.target_table, "target table")
        try:
            return append_file_to_table(db, req.file_id, target)
        except LookupError as e:
            raise HTTPException(404, str(e))
        except duckdb.Error as e:
            raise HTTPException(500, f"Failed to append to table: {e}")

    if not req.table_name:
        raise HTTPException(400, "file_id and table_name are required")
    name = _validate_identifier(req.table_name, "table name")
    try:
        return create_table_from_file(db, req.file_id, name)
    except LookupError as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    except duckdb.Error as e:
        raise HTTPException(500, f"Failed to create table: {e}")


@router.get("/api/tables")
def list_tables_endpoint(db: Db) -> dict:
    """Live user tables, with provenance for the ones quack created."""
    tracked = {t["name"].lower(): t for t in list_tracked_tables(db)}
    tables = []
    for name in list_tables(db):
        info = tracked.get(name.lower())
        tables.append({
            "name": name,
            "table_id": info["id"] if info else None,
            "source_file_id": info["source_file_id"] if info else None,
        })
    return {"tables": tables}


@router.get("/api/tables/{table_name}/schema")
def table_schema(table_name: str, db: Db) -> dict:
    _validate_identifier(table_name, "table name")
    if not table_exists(db, table_name):
        raise HTTPException(404, "Table not found")
    return {"columns": describe_table(db, table_name)}


@router.get("/api/tables/{table_name}/preview")
def table_preview(table_name: str, db: Db, limit: int = 100) -> dict:
    _validate_identifier(table_name, "table name")
    if not table_exists(db, table_name):
        raise HTTPException(404, "Table not found")
    limit = min(max(limit, 1), 1000)
    return preview_table(db, table_name, limit)
