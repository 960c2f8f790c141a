"""Shared pytest fixtures."""

from __future__ import annotations

from unittest.mock import patch

import pytest
import yaml

from ragchat.db.connection import Database
from ragchat.db.schema import create_collections, initialize

TEST_DIMENSIONS = 3


@pytest.fixture(autouse=True)
def isolated_config(tmp_path_factory, monkeypatch):
    """Keep the user's ~/.ragchat config and env overrides out of every test."""
    monkeypatch.setattr(
        "ragchat.config._GLOBAL_CONFIG_PATH",
        tmp_path_factory.mktemp("home") / "config.yaml",
    )
    for var in ("OLLAMA_BASE_URL", "OLLAMA_MODEL", "RAGCHAT_EMBEDDING_MODEL", "RAGCHAT_DB"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema and 3-dim collections, closed after test."""
    db = Database(tmp_path / ".ragchat.db")
    conn = db.connect()
    initialize(conn)
    create_collections(conn, TEST_DIMENSIONS, TEST_DIMENSIONS)
    yield conn
    conn.close()


@pytest.fixture
def bare_db(tmp_path):
    """DB with bookkeeping tables only (no collections yet)."""
    db = Database(tmp_path / ".ragchat.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


# ---------------------------------------------------------------------------
# CLI fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project(tmp_path, monkeypatch):
    """Initialized project in the CWD: ragchat.yaml plus a 3-dim database."""
    monkeypatch.chdir(tmp_path)
    (tmp_path / "ragchat.yaml").write_text(
        yaml.dump(
            {
                "embedding": {"dimensions": TEST_DIMENSIONS, "image_dimensions": TEST_DIMENSIONS},
                "health": {"retries": 0},
            }
        ),
        encoding="utf-8",
    )
    with Database(tmp_path / ".ragchat.db") as conn:
        initialize(conn)
        create_collections(conn, TEST_DIMENSIONS, TEST_DIMENSIONS)
    return tmp_path


@pytest.fixture
def fake_embeddings():
    """Patch text and image embedding so no model server is needed."""
    with (
        patch("ragchat.rag.llm_client.embed", return_value=[1.0, 0.0, 0.0]) as embed,
        patch("ragchat.rag.llm_client.embed_image", return_value=[1.0, 0.0, 0.0]),
    ):
        yield embed


@pytest.fixture
def services_up():
    """Generation service reachable; the vector store probe stays real."""
    with patch("ragchat.chat.pipeline.probe_generation_service", return_value=True) as probe:
        yield probe
