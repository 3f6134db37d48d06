"""
Shared pytest fixtures for the ABAP Documentation Workbench test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - workspace: Pre-created Workspace via the API
    - upload: helper that posts files to a workspace
    - make_zip: helper that builds an in-memory ZIP archive
    - make_docx: helper that builds an in-memory Word template
"""

import io
import zipfile

import pytest
from docx import Document

from app import create_app
from app.models import db as _db


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def workspace(client):
    """Create and return a test Workspace via the API."""
    res = client.post("/api/v1/workspaces", json={"name": "ZWM_PACKAGE"})
    assert res.status_code == 201
    return res.get_json()


@pytest.fixture()
def upload(client):
    """Return a helper: upload(wid, {"name.abap": "text" | b"bytes"}, replace=False)."""

    def _upload(wid, files: dict, replace: bool = False):
        data = {
            "files": [
                (io.BytesIO(body.encode("utf-8") if isinstance(body, str) else body), name)
                for name, body in files.items()
            ],
        }
        if replace:
            data["replace"] = "1"
        return client.post(
            f"/api/v1/workspaces/{wid}/files",
            data=data,
            content_type="multipart/form-data",
        )

    return _upload


@pytest.fixture()
def make_zip():
    """Return a helper that builds ZIP bytes from {path: str | bytes}."""

    def _make_zip(entries: dict, compression: int = zipfile.ZIP_STORED) -> bytes:
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", compression=compression) as zf:
            for path, body in entries.items():
                if path.endswith("/"):
                    zf.writestr(zipfile.ZipInfo(path), b"")
                else:
                    zf.writestr(path, body)
        return buf.getvalue()

    return _make_zip


@pytest.fixture()
def make_docx():
    """Return a helper that builds a small Word template as bytes."""

    def _make_docx(title: str = "Technical Specification Template") -> bytes:
        doc = Document()
        doc.add_heading(title, level=0)
        doc.add_heading("1. Overview", level=1)
        doc.add_paragraph("Describe the business purpose.", style="List Bullet")
        doc.add_heading("2. Data Model", level=1)
        table = doc.add_table(rows=2, cols=2)
        table.cell(0, 0).text = "Field"
        table.cell(0, 1).text = "Type"
        table.cell(1, 0).text = "LGPLA"
        table.cell(1, 1).text = "CHAR 18"
        buf = io.BytesIO()
        doc.save(buf)
        return buf.getvalue()

    return _make_docx
