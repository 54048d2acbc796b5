"""Saved queries and the table references derived from their SQL.

``_query_tables`` is derived data: it is recomputed from the SQL every time a
query is created or its SQL changes, and never edited directly.
"""

from __future__ import annotations

import logging
from typing import Any

from quack.engine.catalog import list_tables
from quack.engine.database import Database
from quack.engine.sql_analysis import extract_table_refs, normalize_table_refs
from quack.engine.utils import generate_id

logger = logging.getLogger("quack.queries")


def _store_table_references(db: Database, query_id: str, sql: str) -> None:
    db.execute("DELETE FROM _query_tables WHERE query_id = ?", [query_id])
    for table_name in normalize_table_refs(extract_table_refs(sql)):
        db.execute(
            "INSERT INTO _query_tables (query_id, table_name) VALUES (?, ?)",
            [query_id, table_name],
        )


def get_table_references(db: Database, query_id: str) -> list[str]:
    rows = db.fetchall(
        "SELECT table_name FROM _query_tables WHERE query_id = ? ORDER BY table_name",
        [query_id],
    )
    return [r[0] for r in rows]


def _missing_table_warnings(db: Database, tables: list[str]) -> list[str]:
    existing = {t.lower() for t in list_tables(db)}
    return [f"Table '{t}' does not exist" for t in tables if t.lower() not in existing]


def get_query(db: Database, query_id: str) -> dict[str, Any] | None:
    """A saved query with its referenced tables and missing-table warnings."""
    rows = db.query("SELECT * FROM _queries WHERE id = ?", [query_id])
    if not rows:
        return None
    query = rows[0]
    query["referenced_tables"] = get_table_references(db, query_id)
    warnings = _missing_table_warnings(db, query["referenced_tables"])
    if warnings:
        query["warnings"] = warnings
    return query


def list_queries(db: Database) -> list[dict[str, Any]]:
    rows = db.fetchall("SELECT id FROM _queries ORDER BY updated_at DESC")
    return [q for q in (get_query(db, r[0]) for r in rows) if q is not None]


def create_query(db: Database, name: str, sql: str) -> dict[str, Any]:
    name, sql = name.strip(), sql.strip()
    if not name or not sql:
        raise ValueError("name and sql are required")
    query_id = generate_id()
    with db.transaction():
        db.execute(
            "INSERT INTO _queries (id, name, sql) VALUES (?, ?, ?)",
            [query_id, name, sql],
        )
        _store_table_references(db, query_id, sql)
    logger.info("Saved query %s (%s)", query_id, name)
    return get_query(db, query_id)


def update_query(
    db: Database,
    query_id: str,
    name: str | None = None,
    sql: str | None = None,
) -> dict[str, Any] | None:
    """Rename a query and/or change its SQL. Returns None if it does not exist."""
    if name is None and sql is None:
        raise ValueError("name or sql is required")
    existing = db.fetchone("SELECT name, sql FROM _queries WHERE id = ?", [query_id])
    if existing is None:
        return None

    new_name = name.strip() if name is not None else existing[0]
    new_sql = sql.strip() if sql is not None else existing[1]
    with db.transaction():
        db.execute(
            "UPDATE _queries SET name = ?, sql = ?, updated_at = current_timestamp WHERE id = ?",
            [new_name, new_sql, query_id],
        )
        if sql is not None:
            _store_table_references(db, query_id, new_sql)
    return get_query(db, query_id)


def delete_query(db: Database, query_id: str) -> bool:
    row = db.fetchone("SELECT COUNT(*) FROM _queries WHERE id = ?", [query_id])
    if not row or row[0] == 0:
        return False
    with db.transaction():
        db.execute("DELETE FROM _query_tables WHERE query_id = ?", [query_id])
        db.execute("DELETE FROM _queries WHERE id = ?", [query_id])
    return True
