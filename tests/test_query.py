"""Tests for ad-hoc query execution."""

from __future__ import annotations

import duckdb
import pytest

from quack.engine.query import (
    QueryTimeoutError,
    TableAccessError,
    clamp_limit,
    is_syntax_error,
    run_query,
    sanitize_sql,
)


@pytest.fixture
def orders_db(db):
    db.execute("CREATE TABLE orders AS SELECT range AS id, range * 2 AS amount FROM range(5)")
    return db


def test_simple_query(db):
    result = run_query(db, "SELECT 42 AS answer")
    assert [c["name"] for c in result["columns"]] == ["answer"]
    assert result["rows"] == [[42]]
    assert result["row_count"] == 1
    assert result["truncated"] is False


def test_limit_and_total_count(orders_db):
    result = run_query(orders_db, "SELECT * FROM orders", limit=2)
    assert len(result["rows"]) == 2
    assert [c["name"] for c in result["columns"]] == ["id", "amount"]
    assert result["row_count"] == 5
    assert result["truncated"] is True


def test_trailing_semicolons(db):
    assert run_query(db, "SELECT 1 AS x;; \n")["rows"] == [[1]]


def test_empty_sql(db):
    with pytest.raises(ValueError):
        run_query(db, "  ;  ")


def test_selected_tables_enforced(orders_db):
    with pytest.raises(TableAccessError, match="'orders'"):
        run_query(orders_db, "SELECT * FROM orders", selected_tables=["customers"])


def test_selected_tables_allowed(orders_db):
    result = run_query(orders_db, "SELECT * FROM ORDERS", selected_tables=["orders"])
    assert result["row_count"] == 5


def test_empty_selection_rejected(db):
    with pytest.raises(TableAccessError, match="No tables are selected"):
        run_query(db, "SELECT 1", selected_tables=[])


def test_syntax_error_propagates(db):
    with pytest.raises(duckdb.Error) as exc_info:
        run_query(db, "SELEC 1")
    assert is_syntax_error(exc_info.value)


def test_values_serialized(db):
    result = run_query(db, "SELECT DATE '2024-01-31' AS d, [1, 2] AS l, NULL AS n")
    assert result["rows"] == [["2024-01-31", [1, 2], None]]


def test_timeout_interrupts(db):
    sql = "SELECT SUM(a.range * b.range) FROM range(200000) a, range(200000) b"
    with pytest.raises(QueryTimeoutError):
        run_query(db, sql, timeout=0.5)
    # The connection is free again after the interrupt
    assert db.fetchone("SELECT 1")[0] == 1


class _InterruptSpy:
    """Wraps a DuckDB connection and counts interrupt() calls."""

    def __init__(self, conn):
        self._conn = conn
        self.interrupts = 0

    def interrupt(self):
        self.interrupts += 1
        self._conn.interrupt()

    def __getattr__(self, name):
        return getattr(self._conn, name)


def test_timeout_while_queued_leaves_other_statement_alone(db):
    spy = _InterruptSpy(db.conn)
    db._conn = spy

    # Another caller holds the connection, so the query never gets to run
    with db.exclusive():
        with pytest.raises(QueryTimeoutError):
            run_query(db, "SELECT 1", timeout=0.2)
        assert spy.interrupts == 0
        assert db.fetchone("SELECT 42")[0] == 42


def test_sanitize_sql():
    assert sanitize_sql("  SELECT 1 ;;  ") == "SELECT 1"


@pytest.mark.parametrize(
    "value,expected",
    [(None, 1000), (0, 1), (-5, 1), (50, 50), (10**9, 10_000), ("abc", 1000), ("25", 25)],
)
def test_clamp_limit(value, expected):
    assert clamp_limit(value) == expected
