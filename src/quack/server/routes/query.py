"""Ad-hoc SQL execution and saving query results as tables."""

from __future__ import annotations

import logging

import duckdb
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from quack.engine.catalog import create_table_from_query
from quack.engine.query import (
    QueryTimeoutError,
    TableAccessError,
    is_syntax_error,
    run_query,
    sanitize_sql,
)
from quack.engine.sql_analysis import validate_table_access
from quack.server.deps import Config, Db, _validate_identifier

logger = logging.getLogger("quack.server")

router = APIRouter()


# --- Pydantic models ---


class QueryRequest(BaseModel):
    sql: str = Field(default="", max_length=100_000)
    limit: int | None = None
    # Present for notebook cells: the tables the cell may read
    selected_tables: list[str] | None = None


class SaveToTableRequest(BaseModel):
    sql: str = Field(default="", max_length=100_000)
    table_name: str = Field(default="", max_length=200)
    allowed_tables: list[str] | None = None


# --- Query endpoint ---


@router.post("/api/query/execute")
def execute_query(req: QueryRequest, db: Db, config: Config) -> dict:
    """Run a query with the configured row limit and timeout."""
    if not req.sql.strip():
        raise HTTPException(400, "SQL is required")
    try:
        result = run_query(
            db,
            req.sql,
            limit=req.limit if req.limit is not None else config.query.default_limit,
            timeout=config.query.timeout_seconds,
            selected_tables=req.selected_tables,
            max_limit=config.query.max_limit,
        )
    except TableAccessError as e:
        raise HTTPException(400, str(e))
    except QueryTimeoutError as e:
        raise HTTPException(408, str(e))
    except duckdb.Error as e:
        logger.warning("Query failed: %s", e)
        if is_syntax_error(e):
            raise HTTPException(400, str(e))
        raise HTTPException(500, f"Failed to execute query: {e}")
    return {"result": result}


@router.post("/api/query/save-to-table")
def save_to_table(req: SaveToTableRequest, db: Db) -> dict:
    """Materialize a query's full result into a new tracked table."""
    sql = sanitize_sql(req.sql)
    if not sql:
        raise HTTPException(400, "SQL is required")
    if not req.table_name.strip():
        raise HTTPException(400, "table_name is required")
    name = _validate_identifier(req.table_name.strip(), "table name")
    if req.allowed_tables is not None:
        check = validate_table_access(sql, req.allowed_tables)
        if not check.valid:
            raise HTTPException(403, check.error)
    try:
        return create_table_from_query(db, sql, name)
    except ValueError as e:
        raise HTTPException(400, str(e))
    except duckdb.Error as e:
        logger.warning("Save to table failed: %s", e)
        raise HTTPException(400, str(e))
