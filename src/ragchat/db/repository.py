"""Repository pattern for all ragchat database operations.

Single interface for: text chunks, images, vec similarity search and the
key-value application state. The connection is owned by the caller.
"""

from __future__ import annotations

import json
import sqlite3

from ragchat.db.models import DocumentChunk, ImageRecord
from ragchat.db.schema import IMAGE_COLLECTION, TEXT_COLLECTION
from ragchat.db.vectors import certainty_from_distance, vec_table_name

_TEXT_COLUMNS = "rowid, chunk_id, source, title, content, chunk_index, total_chunks, metadata, created_at"
_IMAGE_COLUMNS = "rowid, id, filename, mime_type, caption, image, metadata, created_at"

_UPSERT_STATE = """
INSERT INTO app_state (key, value) VALUES (?, ?)
ON CONFLICT(key) DO UPDATE SET
    value = excluded.value,
    updated_at = datetime('now')
"""


class Repository:
    """Data access layer for all ragchat database entities.

    Wraps an open sqlite3.Connection with sqlite-vec loaded. Collection
    methods assume the collections exist (see ragchat.db.schema).
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # ------------------------------------------------------------------
    # Text documents
    # ------------------------------------------------------------------

    def add_chunk(self, chunk: DocumentChunk, embedding: list[float]) -> int:
        """Insert a chunk and its embedding in one transaction. Returns the rowid."""
        with self._conn:
            cur = self._conn.execute(
                f"""
                INSERT INTO {TEXT_COLLECTION}
                    (chunk_id, source, title, content, chunk_index, total_chunks, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    chunk.chunk_id,
                    chunk.source_id,
                    chunk.title,
                    chunk.content,
                    chunk.chunk_index,
                    chunk.total_chunks,
                    chunk.metadata_json,
                ),
            )
            rowid = cur.lastrowid
            self._conn.execute(
                f"INSERT INTO {vec_table_name(TEXT_COLLECTION)}(rowid, embedding) VALUES (?, ?)",
                (rowid, json.dumps(embedding)),
            )
        return rowid

    def list_chunks_by_source(self, source: str) -> list[DocumentChunk]:
        """Return every chunk stored for *source*, in chunk order."""
        rows = self._conn.execute(
            f"SELECT {_TEXT_COLUMNS} FROM {TEXT_COLLECTION} WHERE source = ? "
            "ORDER BY created_at, chunk_index",
            (source,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def list_sources(self) -> list[tuple[str, str, int]]:
        """Return ``[(source, title, chunk_count), ...]`` ordered by source."""
        rows = self._conn.execute(
            f"SELECT source, MAX(title) AS title, COUNT(*) AS n FROM {TEXT_COLLECTION} "
            "GROUP BY source ORDER BY source"
        ).fetchall()
        return [(r["source"], r["title"], r["n"]) for r in rows]

    def delete_chunks_by_source(self, source: str) -> int:
        """Delete chunks + embeddings for *source*. Returns the number of chunks removed."""
        rowids = [
            r[0]
            for r in self._conn.execute(
                f"SELECT rowid FROM {TEXT_COLLECTION} WHERE source = ?", (source,)
            ).fetchall()
        ]
        if not rowids:
            return 0
        placeholders = ",".join("?" * len(rowids))
        with self._conn:
            self._conn.execute(
                f"DELETE FROM {vec_table_name(TEXT_COLLECTION)} WHERE rowid IN ({placeholders})",  # noqa: S608
                rowids,
            )
            self._conn.execute(
                f"DELETE FROM {TEXT_COLLECTION} WHERE rowid IN ({placeholders})",  # noqa: S608
                rowids,
            )
        return len(rowids)

    def search_chunks(
        self, embedding: list[float], limit: int = 5
    ) -> list[tuple[DocumentChunk, float]]:
        """Nearest-neighbour search. Returns (chunk, certainty) best-first."""
        results: list[tuple[DocumentChunk, float]] = []
        for rowid, certainty in self._knn(TEXT_COLLECTION, embedding, limit):
            row = self._conn.execute(
                f"SELECT {_TEXT_COLUMNS} FROM {TEXT_COLLECTION} WHERE rowid = ?", (rowid,)
            ).fetchone()
            if row is not None:
                results.append((_row_to_chunk(row), certainty))
        return results

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def add_image(self, image: ImageRecord, embedding: list[float]) -> int:
        """Insert an image and its embedding in one transaction. Returns the rowid."""
        with self._conn:
            cur = self._conn.execute(
                f"""
                INSERT INTO {IMAGE_COLLECTION}
                    (id, filename, mime_type, caption, image, metadata)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    image.id,
                    image.filename,
                    image.mime_type,
                    image.caption,
                    image.image_b64,
                    json.dumps(image.metadata, sort_keys=True),
                ),
            )
            rowid = cur.lastrowid
            self._conn.execute(
                f"INSERT INTO {vec_table_name(IMAGE_COLLECTION)}(rowid, embedding) VALUES (?, ?)",
                (rowid, json.dumps(embedding)),
            )
        return rowid

    def get_image(self, image_id: str) -> ImageRecord | None:
        """Return an image by id, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_IMAGE_COLUMNS} FROM {IMAGE_COLLECTION} WHERE id = ?", (image_id,)
        ).fetchone()
        return _row_to_image(row) if row else None

    def list_images(self) -> list[ImageRecord]:
        """Return all images, oldest first."""
        rows = self._conn.execute(
            f"SELECT {_IMAGE_COLUMNS} FROM {IMAGE_COLLECTION} ORDER BY created_at, rowid"
        ).fetchall()
        return [_row_to_image(r) for r in rows]

    def delete_image(self, image_id: str) -> bool:
        """Delete an image + embedding. Returns False if no such image."""
        row = self._conn.execute(
            f"SELECT rowid FROM {IMAGE_COLLECTION} WHERE id = ?", (image_id,)
        ).fetchone()
        if row is None:
            return False
        with self._conn:
            self._conn.execute(
                f"DELETE FROM {vec_table_name(IMAGE_COLLECTION)} WHERE rowid = ?", (row[0],)
            )
            self._conn.execute(f"DELETE FROM {IMAGE_COLLECTION} WHERE rowid = ?", (row[0],))
        return True

    def search_images(
        self, embedding: list[float], limit: int = 5
    ) -> list[tuple[ImageRecord, float]]:
        """Nearest-neighbour image search. Returns (image, certainty) best-first."""
        results: list[tuple[ImageRecord, float]] = []
        for rowid, certainty in self._knn(IMAGE_COLLECTION, embedding, limit):
            row = self._conn.execute(
                f"SELECT {_IMAGE_COLUMNS} FROM {IMAGE_COLLECTION} WHERE rowid = ?", (rowid,)
            ).fetchone()
            if row is not None:
                results.append((_row_to_image(row), certainty))
        return results

    # ------------------------------------------------------------------
    # Application state (key-value)
    # ------------------------------------------------------------------

    def get_state(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT value FROM app_state WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        self.set_states({key: value})

    def set_states(self, items: dict[str, str]) -> None:
        """Upsert several keys in one transaction (all or nothing)."""
        with self._conn:
            self._conn.executemany(_UPSERT_STATE, list(items.items()))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _knn(
        self, collection: str, embedding: list[float], limit: int
    ) -> list[tuple[int, float]]:
        rows = self._conn.execute(
            f"SELECT rowid, distance FROM {vec_table_name(collection)} "
            "WHERE embedding MATCH ? ORDER BY distance LIMIT ?",
            (json.dumps(embedding), limit),
        ).fetchall()
        return [(r["rowid"], certainty_from_distance(r["distance"])) for r in rows]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_chunk(row: sqlite3.Row) -> DocumentChunk:
    return DocumentChunk(
        chunk_id=row["chunk_id"],
        content=row["content"],
        source_id=row["source"],
        title=row["title"],
        chunk_index=row["chunk_index"],
        total_chunks=row["total_chunks"],
        metadata=json.loads(row["metadata"]),
        created_at=row["created_at"],
    )


def _row_to_image(row: sqlite3.Row) -> ImageRecord:
    return ImageRecord(
        id=row["id"],
        filename=row["filename"],
        mime_type=row["mime_type"],
        image_b64=row["image"],
        caption=row["caption"],
        metadata=json.loads(row["metadata"]),
        created_at=row["created_at"],
    )
