"""Workspace database: one SQLite file for the registry, chunks, vectors and cache.

sqlite-vec is loaded on every connection so the vec0 tables live beside the
relational ones.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

_PRAGMAS: tuple[tuple[str, str], ...] = (
    ("foreign_keys", "ON"),
    ("journal_mode", "WAL"),
    ("busy_timeout", "5000"),
)


class Database:
    """Opens connections to the ``.repolens.db`` file.

    Args:
        db_path: Path to the SQLite database file (created if missing).
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Return a new connection with sqlite-vec loaded and pragmas applied.

        The connection may be used from a worker thread (the CLI ingests off
        the main thread so Ctrl-C stays responsive); callers must not use it
        from two threads at once.
        """
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        _load_sqlite_vec(conn)
        for name, value in _PRAGMAS:
            conn.execute(f"PRAGMA {name} = {value}")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


def _load_sqlite_vec(conn: sqlite3.Connection) -> None:
    conn.enable_load_extension(True)
    try:
        sqlite_vec.load(conn)
    finally:
        conn.enable_load_extension(False)


def sqlite_vec_version(conn: sqlite3.Connection) -> str:
    """Version string of the loaded sqlite-vec extension, e.g. ``v0.1.6``."""
    return conn.execute("SELECT vec_version()").fetchone()[0]
