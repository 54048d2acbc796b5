"""Saved query endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from quack.engine.queries import (
    create_query,
    delete_query,
    get_query,
    list_queries,
    update_query,
)
from quack.server.deps import Db, _require_found

router = APIRouter()


class CreateQueryRequest(BaseModel):
    name: str = Field(default="", max_length=500)
    sql: str = Field(default="", max_length=100_000)


class UpdateQueryRequest(BaseModel):
    name: str | None = Field(default=None, max_length=500)
    sql: str | None = Field(default=None, max_length=100_000)


@router.post("/api/queries", status_code=201)
def create_query_endpoint(req: CreateQueryRequest, db: Db) -> dict:
    try:
        return create_query(db, req.name, req.sql)
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.get("/api/queries")
def list_queries_endpoint(db: Db) -> dict:
    return {"queries": list_queries(db)}


@router.get("/api/queries/{query_id}")
def get_query_endpoint(query_id: str, db: Db) -> dict:
    return _require_found(get_query(db, query_id), "Query")


@router.put("/api/queries/{query_id}")
def update_query_endpoint(query_id: str, req: UpdateQueryRequest, db: Db) -> dict:
    try:
        query = update_query(db, query_id, name=req.name, sql=req.sql)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return _require_found(query, "Query")


@router.delete("/api/queries/{query_id}")
def delete_query_endpoint(query_id: str, db: Db) -> dict:
    if not delete_query(db, query_id):
        raise HTTPException(404, "Query not found")
    return {"success": True}
