"""sqlite-vec virtual table management for the document collections."""

from __future__ import annotations

import re
import sqlite3


def vec_table_name(collection: str) -> str:
    """Return the vec table name paired with *collection*."""
    return f"vec_{collection}"


def ensure_vec_table(conn: sqlite3.Connection, collection: str, dimensions: int) -> str:
    """Create the cosine-distance vec table for *collection* if it doesn't exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        collection: Collection table name, e.g. ``text_documents``.
        dimensions: Embedding vector dimensions (e.g. 768 for nomic-embed-text).

    Returns:
        The vec table name.
    """
    if not re.fullmatch(r"[a-z0-9_]+", collection):
        raise ValueError(f"Invalid collection name '{collection}'.")
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(collection)
    existing = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()

    if existing is None:
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING vec0("
            f"embedding float[{dimensions}] distance_metric=cosine)"
        )
        conn.commit()

    return table


def certainty_from_distance(distance: float) -> float:
    """Map a cosine distance in [0, 2] to a similarity certainty in [0, 1]."""
    return max(0.0, min(1.0, 1.0 - distance / 2.0))
