"""Tests for the quack CLI."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from quack.cli import app
from quack.config import load_config
from quack.engine.database import Database
from quack.engine.notebooks import create_notebook

runner = CliRunner()


@pytest.fixture
def project(tmp_path, monkeypatch):
    for name in ("QUACK_DB_PATH", "QUACK_UPLOAD_DIR", "QUACK_EXPORT_DIR", "QUACK_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    target = tmp_path / "demo"
    result = runner.invoke(app, ["init", "demo", "--dir", str(target)])
    assert result.exit_code == 0, result.output
    return target


def test_init_scaffolds_project(project):
    assert (project / "quack.yml").exists()
    assert (project / "data" / "uploads").is_dir()
    assert load_config(project).name == "demo"


def test_init_refuses_existing(project):
    result = runner.invoke(app, ["init", "demo", "--dir", str(project)])
    assert result.exit_code == 1


def test_missing_project(tmp_path):
    result = runner.invoke(app, ["tables", "-p", str(tmp_path)])
    assert result.exit_code == 1
    assert "No quack.yml" in result.output


def test_query_json(project):
    result = runner.invoke(app, ["query", "SELECT 42 AS answer", "--json", "-p", str(project)])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == [{"answer": 42}]


def test_query_table_output(project):
    result = runner.invoke(app, ["query", "SELECT 'hello' AS greeting", "-p", str(project)])
    assert result.exit_code == 0, result.output
    assert "hello" in result.output


def test_query_error(project):
    result = runner.invoke(app, ["query", "SELEC 1", "-p", str(project)])
    assert result.exit_code == 1
    assert "Query error" in result.output


def test_load_and_tables(project, tmp_path):
    csv_path = tmp_path / "orders.csv"
    csv_path.write_text("id,amount\n1,10\n2,20\n")

    result = runner.invoke(app, ["load", str(csv_path), "-p", str(project)])
    assert result.exit_code == 0, result.output
    assert "orders" in result.output

    result = runner.invoke(app, ["tables", "-p", str(project)])
    assert result.exit_code == 0
    assert "orders" in result.output


def test_load_digit_leading_filename(project, tmp_path):
    csv_path = tmp_path / "2024_sales.csv"
    csv_path.write_text("id,amount\n1,10\n")

    result = runner.invoke(app, ["load", str(csv_path), "-p", str(project)])
    assert result.exit_code == 0, result.output
    assert "t_2024_sales" in result.output


def test_load_reserved_name_stores_nothing(project, tmp_path):
    csv_path = tmp_path / "orders.csv"
    csv_path.write_text("id\n1\n")

    result = runner.invoke(app, ["load", str(csv_path), "-t", "_orders", "-p", str(project)])
    assert result.exit_code == 1
    assert "reserved" in result.output

    with Database(load_config(project).db_path) as db:
        assert db.fetchone("SELECT COUNT(*) FROM _files")[0] == 0


def test_notebook_list_empty(project):
    result = runner.invoke(app, ["notebook", "list", "-p", str(project)])
    assert result.exit_code == 0
    assert "No notebooks yet" in result.output


def test_notebook_export_import(project, tmp_path):
    config = load_config(project)
    with Database(config.db_path) as db:
        db.execute("CREATE TABLE orders AS SELECT 1 AS id")
        nb = create_notebook(
            db, "Sales", cells=[{"cell_type": "sql", "sql_text": "SELECT * FROM orders"}]
        )

    archive = tmp_path / "sales.quackdb"
    result = runner.invoke(
        app, ["notebook", "export", nb.id, "-o", str(archive), "-p", str(project)]
    )
    assert result.exit_code == 0, result.output
    assert archive.exists()

    result = runner.invoke(app, ["notebook", "import", str(archive), "-p", str(project)])
    assert result.exit_code == 0, result.output
    assert "Imported 'Sales'" in result.output

    with Database(config.db_path) as db:
        names = [r[0] for r in db.fetchall("SELECT name FROM _notebooks")]
    assert names == ["Sales", "Sales"]


def test_notebook_export_markdown(project, tmp_path):
    config = load_config(project)
    with Database(config.db_path) as db:
        nb = create_notebook(db, "Notes", markdown="hello")

    out = tmp_path / "notes.md"
    result = runner.invoke(
        app, ["notebook", "export", nb.id, "--markdown", "-o", str(out), "-p", str(project)]
    )
    assert result.exit_code == 0, result.output
    assert out.read_text() == "# Notes\n\nhello\n"


def test_notebook_export_missing(project):
    result = runner.invoke(app, ["notebook", "export", "missing", "-p", str(project)])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_notebook_import_wrong_suffix(project, tmp_path):
    bad = tmp_path / "notes.txt"
    bad.write_text("x")
    result = runner.invoke(app, ["notebook", "import", str(bad), "-p", str(project)])
    assert result.exit_code == 1
