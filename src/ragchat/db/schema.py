"""Collection DDL and initialization.

A collection is a plain table holding the stored objects plus a paired
sqlite-vec table keyed by the same rowid. Both must exist for the
collection to count as initialized.
"""

from __future__ import annotations

import logging
import sqlite3

from ragchat.db.migrations import run_migrations
from ragchat.db.vectors import ensure_vec_table, vec_table_name

logger = logging.getLogger(__name__)

TEXT_COLLECTION = "text_documents"
IMAGE_COLLECTION = "image_documents"

_CREATE_TEXT_DOCUMENTS = f"""
CREATE TABLE IF NOT EXISTS {TEXT_COLLECTION} (
    chunk_id        TEXT NOT NULL UNIQUE,
    source          TEXT NOT NULL,
    title           TEXT NOT NULL DEFAULT '',
    content         TEXT NOT NULL,
    chunk_index     INTEGER NOT NULL,
    total_chunks    INTEGER NOT NULL,
    metadata        TEXT NOT NULL DEFAULT '{{}}',
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_CREATE_TEXT_SOURCE_INDEX = f"""
CREATE INDEX IF NOT EXISTS idx_{TEXT_COLLECTION}_source ON {TEXT_COLLECTION}(source)
"""

_CREATE_IMAGE_DOCUMENTS = f"""
CREATE TABLE IF NOT EXISTS {IMAGE_COLLECTION} (
    id              TEXT NOT NULL UNIQUE,
    filename        TEXT NOT NULL,
    mime_type       TEXT NOT NULL,
    caption         TEXT NOT NULL DEFAULT '',
    image           TEXT NOT NULL,
    metadata        TEXT NOT NULL DEFAULT '{{}}',
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""


def initialize(conn: sqlite3.Connection) -> int:
    """Bring the bookkeeping tables up to date. Returns the schema version."""
    return run_migrations(conn)


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone()
    return row is not None


def collection_status(conn: sqlite3.Connection) -> dict[str, bool]:
    """Return ``{collection_name: exists}`` for both collections."""
    return {
        name: _table_exists(conn, name) and _table_exists(conn, vec_table_name(name))
        for name in (TEXT_COLLECTION, IMAGE_COLLECTION)
    }


def create_collections(
    conn: sqlite3.Connection, text_dimensions: int, image_dimensions: int
) -> list[str]:
    """Create whichever collections are missing. Returns the names created."""
    status = collection_status(conn)
    created: list[str] = []

    if not status[TEXT_COLLECTION]:
        conn.execute(_CREATE_TEXT_DOCUMENTS)
        conn.execute(_CREATE_TEXT_SOURCE_INDEX)
        ensure_vec_table(conn, TEXT_COLLECTION, text_dimensions)
        created.append(TEXT_COLLECTION)

    if not status[IMAGE_COLLECTION]:
        conn.execute(_CREATE_IMAGE_DOCUMENTS)
        ensure_vec_table(conn, IMAGE_COLLECTION, image_dimensions)
        created.append(IMAGE_COLLECTION)

    conn.commit()
    for name in created:
        logger.info("Created %s collection", name)
    return created


def drop_collections(conn: sqlite3.Connection) -> None:
    """Drop both collections and their vec tables (used to reset a project)."""
    for name in (TEXT_COLLECTION, IMAGE_COLLECTION):
        conn.execute(f"DROP TABLE IF EXISTS {vec_table_name(name)}")
        conn.execute(f"DROP TABLE IF EXISTS {name}")
    conn.commit()
