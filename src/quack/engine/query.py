"""Ad-hoc and cell query execution with a row limit and a timeout."""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Iterable

from quack.engine.database import Database
from quack.engine.sql_analysis import validate_table_access
from quack.engine.utils import serialize_value

logger = logging.getLogger("quack.query")

DEFAULT_LIMIT = 1000
MAX_LIMIT = 10_000
DEFAULT_TIMEOUT_SECONDS = 30.0

_TRAILING_SEMICOLONS = re.compile(r";+\s*$")
_SYNTAX_ERROR = re.compile(r"syntax error|parser error", re.IGNORECASE)


class QueryTimeoutError(Exception):
    """The query ran longer than the configured timeout and was interrupted."""


class TableAccessError(ValueError):
    """The query references tables outside the cell's selected tables."""


def sanitize_sql(sql: str) -> str:
    """Strip whitespace and trailing semicolons so the SQL can be wrapped."""
    return _TRAILING_SEMICOLONS.sub("", sql.strip())


def clamp_limit(limit: Any, default: int = DEFAULT_LIMIT, maximum: int = MAX_LIMIT) -> int:
    try:
        value = int(limit if limit is not None else default)
    except (TypeError, ValueError):
        return default
    return min(max(value, 1), maximum)


def is_syntax_error(exc: BaseException) -> bool:
    return bool(_SYNTAX_ERROR.search(str(exc)))


def _execute(db: Database, sql: str, limit: int, cancelled: threading.Event) -> dict[str, Any] | None:
    # Count and page run as one unit so a timeout never lands between them
    with db.exclusive():
        if cancelled.is_set():
            return None
        count = db.fetchone(f"SELECT COUNT(*) FROM ({sql}) AS subquery")
        columns, rows = db.fetch(f"SELECT * FROM ({sql}) AS subquery LIMIT {limit}")
    row_count = int(count[0]) if count else len(rows)
    return {
        "columns": [{"name": name, "type": type_} for name, type_ in columns],
        "rows": [[serialize_value(v) for v in row] for row in rows],
        "truncated": row_count > len(rows),
        "row_count": row_count,
    }


def run_query(
    db: Database,
    sql: str,
    limit: Any = DEFAULT_LIMIT,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    selected_tables: Iterable[str] | None = None,
    max_limit: int = MAX_LIMIT,
) -> dict[str, Any]:
    """Run a read query and return ``columns``, ``rows``, ``truncated`` and ``row_count``.

    When ``selected_tables`` is given (a notebook cell), the SQL may only
    reference those tables; a violation raises :class:`TableAccessError`
    before anything runs. A query still running after ``timeout`` seconds is
    interrupted and :class:`QueryTimeoutError` is raised. DuckDB errors
    propagate unchanged.
    """
    sql = sanitize_sql(sql)
    if not sql:
        raise ValueError("SQL is required")
    if selected_tables is not None:
        check = validate_table_access(sql, list(selected_tables))
        if not check.valid:
            raise TableAccessError(check.error)
    limit = clamp_limit(limit, maximum=max_limit)

    cancelled = threading.Event()
    outcome: dict[str, Any] = {}
    errors: list[Exception] = []

    def _worker() -> None:
        try:
            outcome["data"] = _execute(db, sql, limit, cancelled)
        except Exception as e:
            errors.append(e)

    thread = threading.Thread(target=_worker, daemon=True)
    thread.start()
    thread.join(timeout=timeout)

    if thread.is_alive():
        # A worker still queued behind another statement sees the flag and
        # never runs; one already running is interrupted. Other threads'
        # statements are left alone.
        cancelled.set()
        if db.interrupt(thread.ident):
            # Let the interrupted statement unwind so the connection is free again
            thread.join(timeout=5)
        logger.warning("Query timed out after %ss", timeout)
        raise QueryTimeoutError(f"Query timed out after {timeout:g}s")
    if errors:
        raise errors[0]
    return outcome["data"]
