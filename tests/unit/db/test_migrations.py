"""Tests for the forward-only migration runner."""

from __future__ import annotations

import sqlite3

from ragchat.db.migrations import MIGRATIONS, current_version, run_migrations


def _conn() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    return conn


def test_run_migrations_creates_app_state():
    conn = _conn()
    run_migrations(conn)
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='app_state'"
    ).fetchone()
    assert row is not None


def test_run_migrations_records_latest_version():
    conn = _conn()
    run_migrations(conn)
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == MIGRATIONS[-1][0]


def test_run_migrations_is_idempotent():
    conn = _conn()
    run_migrations(conn)
    run_migrations(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)


def test_migration_versions_ascending():
    versions = [v for v, _ in MIGRATIONS]
    assert versions == sorted(versions)
    assert len(set(versions)) == len(versions)


def test_current_version_fresh_database_is_zero():
    assert current_version(_conn()) == 0


def test_run_migrations_returns_new_version():
    conn = _conn()
    assert run_migrations(conn) == MIGRATIONS[-1][0]
    assert current_version(conn) == MIGRATIONS[-1][0]
