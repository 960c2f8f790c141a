"""Tests for sqlite-vec table management."""

from __future__ import annotations

import pytest

from ragchat.db.vectors import certainty_from_distance, ensure_vec_table, vec_table_name


def test_vec_table_name():
    assert vec_table_name("text_documents") == "vec_text_documents"


def test_ensure_vec_table_creates_table(bare_db):
    table = ensure_vec_table(bare_db, "notes", 4)
    row = bare_db.execute(
        "SELECT name FROM sqlite_master WHERE name=?", (table,)
    ).fetchone()
    assert row is not None


def test_ensure_vec_table_idempotent(bare_db):
    first = ensure_vec_table(bare_db, "notes", 4)
    second = ensure_vec_table(bare_db, "notes", 4)
    assert first == second


def test_ensure_vec_table_rejects_bad_name(bare_db):
    with pytest.raises(ValueError, match="Invalid collection name"):
        ensure_vec_table(bare_db, "notes; DROP TABLE x", 4)


def test_ensure_vec_table_rejects_zero_dimensions(bare_db):
    with pytest.raises(ValueError, match="dimensions"):
        ensure_vec_table(bare_db, "notes", 0)


@pytest.mark.parametrize(
    "distance,expected",
    [(0.0, 1.0), (0.2, 0.9), (1.0, 0.5), (2.0, 0.0), (2.5, 0.0), (-0.1, 1.0)],
)
def test_certainty_from_distance(distance, expected):
    assert certainty_from_distance(distance) == pytest.approx(expected)
