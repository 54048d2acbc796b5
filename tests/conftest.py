from __future__ import annotations

import duckdb
import pytest

from quack.engine.database import Database


@pytest.fixture
def db(tmp_path):
    """An open database in a fresh temp directory."""
    database = Database(tmp_path / "quack.duckdb").open()
    yield database
    database.close()


@pytest.fixture
def export_dir(tmp_path):
    return tmp_path / "exports"


@pytest.fixture
def without_table_listing(monkeypatch):
    """Make ``information_schema.tables`` listings fail on the given databases."""

    def _break(*databases: Database) -> None:
        for database in databases:

            def fetchall(sql, params=None, _original=database.fetchall):
                if "information_schema.tables" in sql:
                    raise duckdb.CatalogException("information_schema.tables is unavailable")
                return _original(sql, params)

            monkeypatch.setattr(database, "fetchall", fetchall)

    return _break
