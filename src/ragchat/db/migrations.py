"""Forward-only migrations for ragchat's bookkeeping tables.

Only ``app_state`` (the persisted conversation state) is migration-managed.
The collections and their vec tables are created on demand by
:func:`ragchat.db.schema.create_collections`, because their dimensions come
from the embedding config.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_APP_STATE = """
CREATE TABLE IF NOT EXISTS app_state (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  DATETIME NOT NULL DEFAULT (datetime('now'))
);
"""

# Append-only. executescript() commits any open transaction first.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_APP_STATE),
]


def current_version(conn: sqlite3.Connection) -> int:
    """Highest applied migration, or 0 for a fresh database."""
    conn.execute(_CREATE_SCHEMA_VERSION)
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] or 0


def run_migrations(conn: sqlite3.Connection) -> int:
    """Apply pending migrations in version order. Returns the new version."""
    current = current_version(conn)
    conn.commit()

    for version, sql in MIGRATIONS:
        if version <= current:
            continue
        conn.executescript(sql)
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
        conn.commit()
        logger.debug("Applied migration %d", version)
        current = version
    return current
