"""SQLite connection layer with the sqlite-vec extension loaded."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec


class Database:
    """Project database holding the text and image collections.

    Args:
        db_path: Path to the SQLite database file.
        timeout: Seconds to wait on a locked database before failing.
        create: Create the file when missing. Probes pass ``False`` so that
            checking a project never leaves an empty database behind.
    """

    def __init__(self, db_path: Path | str, timeout: float = 5.0, create: bool = True) -> None:
        self.db_path = Path(db_path)
        self.timeout = timeout
        self.create = create
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, and return the connection.

        Raises:
            sqlite3.OperationalError: If ``create`` is False and the file
                does not exist.
        """
        if self.create:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        else:
            conn = sqlite3.connect(
                f"{self.db_path.resolve().as_uri()}?mode=rw", timeout=self.timeout, uri=True
            )
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None


def vec_version(conn: sqlite3.Connection) -> str:
    """Version string of the loaded sqlite-vec extension (e.g. ``v0.1.6``)."""
    return conn.execute("SELECT vec_version()").fetchone()[0]
