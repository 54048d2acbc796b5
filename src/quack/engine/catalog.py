"""Stored files, tracked user tables, and live table introspection.

``_files`` records every uploaded CSV, ``_tables`` records the tables quack
created from them (or from a query). Neither is the source of truth for which
tables exist: that is the live DuckDB catalog, read by :func:`list_tables`.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any

import duckdb

from quack.engine.database import Database
from quack.engine.utils import (
    generate_id,
    is_system_table,
    quote_identifier,
    quote_literal,
    serialize_value,
    validate_identifier,
)

logger = logging.getLogger("quack.catalog")


# --- Live introspection ---


def list_tables(
    db: Database,
    catalog: str | None = None,
    include_system: bool = False,
) -> list[str]:
    """List tables in the ``main`` schema of the live database or an attached one.

    Reads ``information_schema.tables`` first. If that fails, falls back to
    ``SHOW TABLES`` for the live database and ``duckdb_tables()`` for an
    attached catalog. Metadata tables (``_`` prefix) are left out unless
    ``include_system`` is set.
    """
    try:
        if catalog is None:
            rows = db.fetchall(
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_catalog = current_database() AND table_schema = 'main' "
                "ORDER BY table_name"
            )
        else:
            rows = db.fetchall(
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_catalog = ? AND table_schema = 'main' "
                "ORDER BY table_name",
                [catalog],
            )
    except duckdb.Error as e:
        logger.warning("Table listing via information_schema failed, falling back: %s", e)
        if catalog is None:
            rows = db.fetchall("SHOW TABLES")
        else:
            rows = db.fetchall(
                "SELECT table_name FROM duckdb_tables() "
                "WHERE database_name = ? AND schema_name = 'main' ORDER BY table_name",
                [catalog],
            )

    names = [str(row[0]) for row in rows if row and row[0]]
    if include_system:
        return names
    return [n for n in names if not is_system_table(n)]


def table_exists(db: Database, name: str) -> bool:
    """Whether a table or view named ``name`` exists in the live ``main`` schema.

    DuckDB identifiers are case-insensitive, so the match is too.
    """
    row = db.fetchone(
        "SELECT COUNT(*) FROM information_schema.tables "
        "WHERE table_catalog = current_database() AND table_schema = 'main' "
        "AND lower(table_name) = lower(?)",
        [name],
    )
    return bool(row and row[0])


def describe_table(db: Database, name: str) -> list[dict[str, str]]:
    """Column names and types of a live table, in ordinal order."""
    validate_identifier(name, "table name")
    rows = db.fetchall(
        "SELECT column_name, data_type FROM information_schema.columns "
        "WHERE table_catalog = current_database() AND table_schema = 'main' "
        "AND lower(table_name) = lower(?) ORDER BY ordinal_position",
        [name],
    )
    return [{"name": r[0], "type": r[1]} for r in rows]


def preview_table(db: Database, name: str, limit: int = 100) -> dict[str, Any]:
    """First ``limit`` rows of a table plus its total row count."""
    validate_identifier(name, "table name")
    columns, rows = db.fetch(f"SELECT * FROM {quote_identifier(name)} LIMIT {int(limit)}")
    count = db.fetchone(f"SELECT COUNT(*) FROM {quote_identifier(name)}")
    return {
        "columns": [{"name": c, "type": t} for c, t in columns],
        "rows": [[serialize_value(v) for v in r] for r in rows],
        "row_count": int(count[0]) if count else 0,
    }


# --- Stored files ---


def register_file(db: Database, filename: str, path: str | Path) -> dict[str, Any]:
    """Record an uploaded file that is already on disk."""
    file_id = generate_id()
    db.execute(
        "INSERT INTO _files (id, filename, path) VALUES (?, ?, ?)",
        [file_id, filename, str(path)],
    )
    return get_file(db, file_id)


def store_upload(db: Database, upload_dir: Path, filename: str, data: bytes) -> dict[str, Any]:
    """Write uploaded bytes under ``upload_dir`` and record them in ``_files``."""
    safe_name = Path(filename).name  # strip any directory components
    if not safe_name or safe_name.startswith("."):
        raise ValueError(f"Invalid filename: {filename!r}")
    upload_dir.mkdir(parents=True, exist_ok=True)
    target = upload_dir / f"{generate_id()}_{safe_name}"
    target.write_bytes(data)
    try:
        return register_file(db, safe_name, target)
    except Exception:
        target.unlink(missing_ok=True)
        raise


def import_local_file(db: Database, upload_dir: Path, source: Path) -> dict[str, Any]:
    """Copy a local CSV into the upload directory and record it."""
    if not source.exists():
        raise FileNotFoundError(f"File not found: {source}")
    upload_dir.mkdir(parents=True, exist_ok=True)
    target = upload_dir / f"{generate_id()}_{source.name}"
    shutil.copyfile(source, target)
    return register_file(db, source.name, target)


def get_file(db: Database, file_id: str) -> dict[str, Any] | None:
    rows = db.query("SELECT * FROM _files WHERE id = ?", [file_id])
    return rows[0] if rows else None


def list_files(db: Database) -> list[dict[str, Any]]:
    return db.query("SELECT * FROM _files ORDER BY uploaded_at DESC")


# --- Tracked tables ---


def track_table(db: Database, name: str, source_file_id: str | None = None) -> str:
    """Record a system-created table in ``_tables``; returns the existing id if tracked."""
    row = db.fetchone("SELECT id FROM _tables WHERE name = ?", [name])
    if row:
        return row[0]
    table_id = generate_id()
    db.execute(
        "INSERT INTO _tables (id, name, source_file_id) VALUES (?, ?, ?)",
        [table_id, name, source_file_id],
    )
    return table_id


def list_tracked_tables(db: Database) -> list[dict[str, Any]]:
    return db.query(
        "SELECT id, name, source_file_id, created_at FROM _tables ORDER BY created_at DESC"
    )


def check_new_table_name(db: Database, table_name: str) -> str:
    """Raise ValueError unless ``table_name`` is valid, unreserved and unused."""
    validate_identifier(table_name, "table name")
    if is_system_table(table_name):
        raise ValueError(f"Table names starting with '_' are reserved: {table_name!r}")
    if table_exists(db, table_name):
        raise ValueError(f"Table already exists: {table_name}")
    return table_name


def create_table_from_file(db: Database, file_id: str, table_name: str) -> dict[str, Any]:
    """Materialize a stored CSV into a new table and track it.

    Raises LookupError if the file is unknown and ValueError for an invalid or
    already existing table name.
    """
    check_new_table_name(db, table_name)
    stored = get_file(db, file_id)
    if stored is None:
        raise LookupError(f"File not found: {file_id}")

    db.execute(
        f"CREATE TABLE {quote_identifier(table_name)} AS "
        f"SELECT * FROM read_csv_auto({quote_literal(stored['path'])})"
    )
    table_id = track_table(db, table_name, file_id)
    logger.info("Created table %s from %s", table_name, stored["filename"])
    return {"table_id": table_id, "table_name": table_name}


def append_file_to_table(db: Database, file_id: str, target_table: str) -> dict[str, Any]:
    """Append the rows of a stored CSV to an existing table."""
    validate_identifier(target_table, "target table")
    stored = get_file(db, file_id)
    if stored is None:
        raise LookupError(f"File not found: {file_id}")
    if not table_exists(db, target_table):
        raise LookupError(f"Target table not found: {target_table}")

    before = db.fetchone(f"SELECT COUNT(*) FROM {quote_identifier(target_table)}")
    db.execute(
        f"INSERT INTO {quote_identifier(target_table)} "
        f"SELECT * FROM read_csv_auto({quote_literal(stored['path'])})"
    )
    after = db.fetchone(f"SELECT COUNT(*) FROM {quote_identifier(target_table)}")
    return {
        "table_name": target_table,
        "rows_appended": int(after[0]) - int(before[0]),
    }


def create_table_from_query(db: Database, sql: str, table_name: str) -> dict[str, Any]:
    """Save the result of a query as a new tracked table."""
    check_new_table_name(db, table_name)
    db.execute(f"CREATE TABLE {quote_identifier(table_name)} AS {sql}")
    table_id = track_table(db, table_name)
    count = db.fetchone(f"SELECT COUNT(*) FROM {quote_identifier(table_name)}")
    return {"table_id": table_id, "table_name": table_name, "row_count": int(count[0])}
