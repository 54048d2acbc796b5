"""Tests for the FastAPI backend."""

import threading
import time

import duckdb
import pytest
from fastapi.testclient import TestClient

from quack.config import load_config
from quack.server.app import create_app

ORDERS_CSV = b"id,customer,amount\n1,alice,10\n2,bob,20\n3,carol,30\n"


@pytest.fixture
def project(tmp_path, monkeypatch):
    """Create a minimal test project."""
    for name in ("QUACK_DB_PATH", "QUACK_UPLOAD_DIR", "QUACK_EXPORT_DIR", "QUACK_QUERY_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    (tmp_path / "quack.yml").write_text(
        """
name: test
database:
  path: data/test.duckdb
"""
    )
    return tmp_path


@pytest.fixture
def client(project):
    app = create_app(load_config(project))
    with TestClient(app) as client:
        yield client


def _upload(client, name="orders.csv", content=ORDERS_CSV) -> str:
    resp = client.post("/api/files/upload", files={"file": (name, content, "text/csv")})
    assert resp.status_code == 200
    return resp.json()["file_id"]


def _create_orders(client) -> None:
    file_id = _upload(client)
    resp = client.post("/api/tables", json={"file_id": file_id, "table_name": "orders"})
    assert resp.status_code == 200


def _create_notebook(client, **body) -> dict:
    body.setdefault("name", "Sales")
    resp = client.post("/api/notebooks", json=body)
    assert resp.status_code == 201
    return resp.json()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


# --- Files and tables ---


def test_upload_and_list_files(client):
    _upload(client)
    resp = client.get("/api/files")
    assert resp.status_code == 200
    assert [f["filename"] for f in resp.json()["files"]] == ["orders.csv"]


def test_upload_without_file(client):
    resp = client.post("/api/files/upload", data={"other": "x"})
    assert resp.status_code == 400


def test_upload_waiting_on_database_does_not_block_server(client):
    db = client.app.state.db
    uploaded = threading.Event()
    health = {}

    def _send_upload():
        _upload(client)
        uploaded.set()

    def _health():
        health["status"] = client.get("/health").status_code

    uploader = threading.Thread(target=_send_upload)
    with db.exclusive():
        uploader.start()
        time.sleep(0.3)
        checker = threading.Thread(target=_health)
        checker.start()
        checker.join(timeout=5)
        assert health.get("status") == 200
        assert not uploaded.is_set()
    uploader.join(timeout=10)
    assert uploaded.is_set()


def test_create_table_and_inspect(client):
    _create_orders(client)

    tables = client.get("/api/tables").json()["tables"]
    assert [t["name"] for t in tables] == ["orders"]
    assert tables[0]["source_file_id"] is not None

    schema = client.get("/api/tables/orders/schema").json()
    assert [c["name"] for c in schema["columns"]] == ["id", "customer", "amount"]

    preview = client.get("/api/tables/orders/preview", params={"limit": 2}).json()
    assert preview["row_count"] == 3
    assert len(preview["rows"]) == 2


def test_append_to_table(client):
    _create_orders(client)
    file_id = _upload(client, "more.csv", b"id,customer,amount\n4,dan,40\n")
    resp = client.post(
        "/api/tables", json={"file_id": file_id, "mode": "append", "target_table": "orders"}
    )
    assert resp.status_code == 200
    assert resp.json()["rows_appended"] == 1


def test_table_errors(client):
    file_id = _upload(client)
    assert client.post("/api/tables", json={"file_id": file_id, "table_name": "bad-name"}).status_code == 400
    assert client.post("/api/tables", json={"file_id": "nope", "table_name": "orders"}).status_code == 404
    assert client.post("/api/tables", json={"file_id": file_id, "mode": "append"}).status_code == 400
    assert client.get("/api/tables/missing/schema").status_code == 404
    assert client.get("/api/tables/bad-name/preview").status_code == 400


# --- Query ---


def test_execute_query(client):
    _create_orders(client)
    resp = client.post("/api/query/execute", json={"sql": "SELECT * FROM orders;", "limit": 2})
    assert resp.status_code == 200
    result = resp.json()["result"]
    assert result["row_count"] == 3
    assert result["truncated"] is True
    assert len(result["rows"]) == 2


def test_execute_query_access_denied(client):
    _create_orders(client)
    resp = client.post(
        "/api/query/execute",
        json={"sql": "SELECT * FROM orders", "selected_tables": ["customers"]},
    )
    assert resp.status_code == 400
    assert "'orders'" in resp.json()["detail"]


def test_execute_query_errors(client):
    assert client.post("/api/query/execute", json={"sql": "  "}).status_code == 400
    resp = client.post("/api/query/execute", json={"sql": "SELEC 1"})
    assert resp.status_code == 400


def test_save_to_table(client):
    _create_orders(client)
    resp = client.post(
        "/api/query/save-to-table",
        json={"sql": "SELECT * FROM orders WHERE amount > 15", "table_name": "big_orders"},
    )
    assert resp.status_code == 200
    assert resp.json()["row_count"] == 2

    again = client.post(
        "/api/query/save-to-table",
        json={"sql": "SELECT 1", "table_name": "big_orders"},
    )
    assert again.status_code == 400
    assert "already exists" in again.json()["detail"]

    denied = client.post(
        "/api/query/save-to-table",
        json={"sql": "SELECT * FROM orders", "table_name": "copy", "allowed_tables": ["other"]},
    )
    assert denied.status_code == 403


# --- Notebooks ---


def test_notebook_crud(client):
    nb = _create_notebook(
        client,
        markdown="intro",
        cells=[{"cell_type": "sql", "sql_text": "SELECT 1", "selected_tables": ["orders"]}],
    )
    assert len(nb["cells"]) == 1

    listed = client.get("/api/notebooks").json()
    assert [n["id"] for n in listed] == [nb["id"]]
    assert "cells" not in listed[0]

    resp = client.put(
        f"/api/notebooks/{nb['id']}",
        json={
            "name": "Renamed",
            "cells": [
                {"cell_type": "markdown", "markdown_text": "a"},
                {"cell_type": "sql", "sql_text": "SELECT 2"},
            ],
        },
    )
    assert resp.status_code == 200
    updated = resp.json()
    assert updated["name"] == "Renamed"
    assert updated["markdown"] == "intro"
    assert [c["cell_index"] for c in updated["cells"]] == [0, 1]

    assert client.delete(f"/api/notebooks/{nb['id']}").json() == {"success": True}
    assert client.get(f"/api/notebooks/{nb['id']}").status_code == 404
    assert client.delete(f"/api/notebooks/{nb['id']}").status_code == 404


def test_notebook_validation(client):
    assert client.post("/api/notebooks", json={"name": " "}).status_code == 400
    resp = client.post(
        "/api/notebooks", json={"name": "x", "cells": [{"cell_type": "python"}]}
    )
    assert resp.status_code == 422
    assert client.put("/api/notebooks/missing", json={"name": "x"}).status_code == 404


def test_export_and_import_archive(client, project):
    _create_orders(client)
    nb = _create_notebook(
        client, cells=[{"cell_type": "sql", "sql_text": "SELECT * FROM orders"}]
    )

    resp = client.post(f"/api/notebooks/{nb['id']}/export", json={"format": "quackdb"})
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/octet-stream"
    assert "Sales.quackdb" in resp.headers["content-disposition"]
    archive = resp.content
    assert archive
    # Delivered archives are deleted after sending
    assert list((project / "data" / "exports").glob("*.quackdb")) == []

    resp = client.post(
        "/api/notebooks/import",
        files={"file": ("Sales.quackdb", archive, "application/octet-stream")},
    )
    assert resp.status_code == 200
    imported = resp.json()
    assert imported["notebook"]["id"] != nb["id"]
    assert imported["notebook"]["name"] == "Sales"
    assert imported["notebook"]["cells"][0]["sql_text"] == "SELECT * FROM orders"
    assert imported["skipped"] == ["orders"]
    assert len(client.get("/api/notebooks").json()) == 2


def test_export_markdown(client):
    nb = _create_notebook(client, cells=[{"cell_type": "sql", "sql_text": "SELECT 1"}])
    cell_id = nb["cells"][0]["id"]
    resp = client.post(
        f"/api/notebooks/{nb['id']}/export",
        json={"format": "markdown", "chart_images": {cell_id: "data:image/png;base64,AA"}},
    )
    assert resp.status_code == 200
    assert resp.text.startswith("# Sales\n")
    assert "```sql\nSELECT 1\n```" in resp.text
    assert "![Chart](data:image/png;base64,AA)" in resp.text


def test_export_errors(client):
    assert client.post("/api/notebooks/missing/export", json={}).status_code == 404
    nb = _create_notebook(client)
    bad = client.post(f"/api/notebooks/{nb['id']}/export", json={"data_mode": "everything"})
    assert bad.status_code == 422


def test_import_errors(client, tmp_path):
    resp = client.post(
        "/api/notebooks/import", files={"file": ("notes.txt", b"hello", "text/plain")}
    )
    assert resp.status_code == 400

    resp = client.post(
        "/api/notebooks/import", files={"file": ("bad.quackdb", b"not a database", "application/octet-stream")}
    )
    assert resp.status_code == 500
    assert resp.json()["detail"].startswith("Import failed:")

    empty = tmp_path / "empty.quackdb"
    conn = duckdb.connect(str(empty))
    conn.execute("CREATE TABLE t AS SELECT 1 AS x")
    conn.close()
    resp = client.post(
        "/api/notebooks/import",
        files={"file": ("empty.quackdb", empty.read_bytes(), "application/octet-stream")},
    )
    assert resp.status_code == 400


# --- Saved queries ---


def test_saved_queries(client):
    resp = client.post("/api/queries", json={"name": "Q", "sql": "SELECT * FROM orders"})
    assert resp.status_code == 201
    q = resp.json()
    assert q["referenced_tables"] == ["orders"]
    assert q["warnings"] == ["Table 'orders' does not exist"]

    assert client.get(f"/api/queries/{q['id']}").json()["name"] == "Q"
    assert [x["id"] for x in client.get("/api/queries").json()["queries"]] == [q["id"]]

    updated = client.put(f"/api/queries/{q['id']}", json={"sql": "SELECT * FROM a JOIN b ON 1=1"}).json()
    assert updated["referenced_tables"] == ["a", "b"]
    assert client.put(f"/api/queries/{q['id']}", json={}).status_code == 400

    assert client.delete(f"/api/queries/{q['id']}").status_code == 200
    assert client.get(f"/api/queries/{q['id']}").status_code == 404
    assert client.post("/api/queries", json={"name": "", "sql": ""}).status_code == 400
