"""DuckDB connection management and the metadata schema.

A :class:`Database` owns the single connection of the process. It is created
and closed by whoever composes the application (the server lifespan or a CLI
command) and handed to the engine functions explicitly.

DuckDB connections are not safe for concurrent use, so every statement runs
under one re-entrant lock, and an interrupt only reaches the connection when
the requesting thread owns the statement in flight. Attaching an auxiliary database file is session
state shared by every caller, so :meth:`Database.attached` additionally holds
a per-alias lock for the whole attach/operate/detach unit: two exports can
never interleave their ``ATTACH ... AS export`` / ``DETACH export``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import duckdb

from quack.engine.utils import quote_identifier, quote_literal, validate_identifier

logger = logging.getLogger("quack.database")


def connect(db_path: str | Path, read_only: bool = False) -> duckdb.DuckDBPyConnection:
    """Open a DuckDB connection to the given path."""
    db_path = str(db_path)
    conn = duckdb.connect(db_path, read_only=read_only)
    conn.execute("SET enable_progress_bar = false")
    return conn


def ensure_meta_tables(conn: duckdb.DuckDBPyConnection) -> None:
    """Create the metadata tables for files, tables, notebooks and saved queries."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS _files (
            id          VARCHAR PRIMARY KEY,
            filename    VARCHAR NOT NULL,
            path        VARCHAR NOT NULL,
            uploaded_at TIMESTAMP DEFAULT current_timestamp
        )
    """)
    # source_file_id points at _files.id; not declared as a foreign key so
    # provenance rows survive being copied between databases.
    conn.execute("""
        CREATE TABLE IF NOT EXISTS _tables (
            id             VARCHAR PRIMARY KEY,
            name           VARCHAR NOT NULL UNIQUE,
            source_file_id VARCHAR,
            created_at     TIMESTAMP DEFAULT current_timestamp
        )
    """)
    # Notebooks and documents share one table, told apart by kind
    conn.execute("""
        CREATE TABLE IF NOT EXISTS _notebooks (
            id         VARCHAR PRIMARY KEY,
            kind       VARCHAR NOT NULL DEFAULT 'notebook',
            name       VARCHAR NOT NULL,
            markdown   VARCHAR,
            created_at TIMESTAMP DEFAULT current_timestamp,
            updated_at TIMESTAMP DEFAULT current_timestamp
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS _notebook_cells (
            id              VARCHAR PRIMARY KEY,
            notebook_id     VARCHAR NOT NULL,
            cell_index      INTEGER NOT NULL,
            cell_type       VARCHAR NOT NULL,
            sql_text        VARCHAR,
            markdown_text   VARCHAR,
            chart_config    VARCHAR,
            selected_tables VARCHAR,
            created_at      TIMESTAMP DEFAULT current_timestamp
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS _queries (
            id         VARCHAR PRIMARY KEY,
            name       VARCHAR NOT NULL,
            sql        VARCHAR NOT NULL,
            created_at TIMESTAMP DEFAULT current_timestamp,
            updated_at TIMESTAMP DEFAULT current_timestamp
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS _query_tables (
            query_id   VARCHAR NOT NULL,
            table_name VARCHAR NOT NULL
        )
    """)


class Database:
    """Explicitly opened handle around the one DuckDB connection."""

    def __init__(self, path: str | Path) -> None:
        self.path = str(path)
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._lock = threading.RLock()
        # Thread currently holding the statement lock, guarded separately so
        # it can be read while a statement runs.
        self._owner: int | None = None
        self._owner_guard = threading.Lock()
        self._alias_locks: dict[str, threading.Lock] = {}
        self._alias_guard = threading.Lock()

    # -- lifecycle --

    def open(self) -> Database:
        """Open the connection and make sure the metadata schema exists."""
        with self._lock:
            if self._conn is not None:
                return self
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = connect(self.path)
            ensure_meta_tables(self._conn)
            logger.debug("Opened database %s", self.path)
        return self

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
            logger.debug("Closed database %s", self.path)

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self) -> Database:
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise RuntimeError(f"Database {self.path} is not open")
        return self._conn

    # -- statements --

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        """Run a statement, discarding any result."""
        with self.exclusive():
            self.conn.execute(sql, params)

    def fetchall(self, sql: str, params: Sequence[Any] | None = None) -> list[tuple]:
        with self.exclusive():
            return self.conn.execute(sql, params).fetchall()

    def fetchone(self, sql: str, params: Sequence[Any] | None = None) -> tuple | None:
        with self.exclusive():
            return self.conn.execute(sql, params).fetchone()

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        """Run a query and return rows as dicts keyed by column name."""
        with self.exclusive():
            result = self.conn.execute(sql, params)
            columns = [desc[0] for desc in result.description]
            return [dict(zip(columns, row)) for row in result.fetchall()]

    def fetch(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        limit: int | None = None,
    ) -> tuple[list[tuple[str, str]], list[tuple]]:
        """Run a query and return ``(columns, rows)``.

        Columns are ``(name, type)`` pairs. With ``limit`` only that many rows
        are fetched from the result.
        """
        with self.exclusive():
            result = self.conn.execute(sql, params)
            if result.description is None:
                return [], []
            columns = [(desc[0], str(desc[1])) for desc in result.description]
            rows = result.fetchmany(limit) if limit is not None else result.fetchall()
            return columns, rows

    @contextmanager
    def exclusive(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Hold the statement lock for the enclosed block.

        The calling thread is recorded as the owner of the connection while
        the block runs, so :meth:`interrupt` can tell whose statement it
        would cancel. Nested use from the same thread is allowed.
        """
        with self._lock:
            with self._owner_guard:
                previous = self._owner
                self._owner = threading.get_ident()
            try:
                yield self.conn
            finally:
                with self._owner_guard:
                    self._owner = previous

    def interrupt(self, owner: int) -> bool:
        """Interrupt the running statement if thread ``owner`` holds the connection.

        Returns False without touching the connection when another thread's
        statement is running (or nothing is), so a caller cannot cancel work
        it does not own.
        """
        with self._owner_guard:
            if self._conn is None or self._owner != owner:
                return False
            self._conn.interrupt()
            return True

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        """Run the enclosed statements atomically."""
        with self.exclusive():
            self.conn.execute("BEGIN TRANSACTION")
            try:
                yield self
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            self.conn.execute("COMMIT")

    # -- attached databases --

    def _alias_lock(self, alias: str) -> threading.Lock:
        with self._alias_guard:
            lock = self._alias_locks.get(alias)
            if lock is None:
                lock = threading.Lock()
                self._alias_locks[alias] = lock
            return lock

    @contextmanager
    def attached(
        self,
        path: str | Path,
        alias: str,
        read_only: bool = False,
    ) -> Iterator[str]:
        """Attach a database file under ``alias`` for the enclosed block.

        Yields the quoted alias for building qualified names. The file is
        always detached on exit, including when the block raises.
        """
        validate_identifier(alias, "alias")
        quoted = quote_identifier(alias)
        options = " (READ_ONLY)" if read_only else ""
        with self._alias_lock(alias):
            self.execute(f"ATTACH {quote_literal(str(path))} AS {quoted}{options}")
            logger.debug("Attached %s as %s", path, alias)
            try:
                yield quoted
            except BaseException:
                self._detach_quietly(alias)
                raise
            self.execute(f"DETACH {quoted}")
            logger.debug("Detached %s", alias)

    def _detach_quietly(self, alias: str) -> None:
        """Detach on an error path without masking the original exception."""
        try:
            self.execute(f"DETACH {quote_identifier(alias)}")
        except duckdb.Error as e:
            logger.warning("Failed to detach %s after error: %s", alias, e)

    def is_attached(self, alias: str) -> bool:
        row = self.fetchone(
            "SELECT COUNT(*) FROM duckdb_databases() WHERE database_name = ?",
            [alias],
        )
        return bool(row and row[0])
