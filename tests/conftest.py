"""Shared pytest fixtures."""

from __future__ import annotations

import sqlite3

import pytest

from repolens.db.connection import Database
from repolens.db.schema import initialize


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".repolens.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


class FlakyConnection:
    """Delegates to a real connection; statements containing *marker* fail
    with ``sqlite3.OperationalError`` once *after* of them have succeeded."""

    def __init__(self, conn: sqlite3.Connection, marker: str, after: int = 0) -> None:
        self._conn = conn
        self._marker = marker
        self._after = after
        self.matched = 0

    def execute(self, sql, params=()):
        if self._marker in sql:
            self.matched += 1
            if self.matched > self._after:
                raise sqlite3.OperationalError("disk I/O error")
        return self._conn.execute(sql, params)

    def __getattr__(self, name):
        return getattr(self._conn, name)


@pytest.fixture
def flaky_db(tmp_db):
    """Factory: ``flaky_db(marker, after)`` wraps ``tmp_db`` in a FlakyConnection."""

    def make(marker: str, after: int = 0) -> FlakyConnection:
        return FlakyConnection(tmp_db, marker, after)

    return make


@pytest.fixture(autouse=True)
def _no_global_config(tmp_path, monkeypatch):
    """Keep the developer's ~/.repolens/config.yaml out of every test."""
    monkeypatch.setattr("repolens.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global-config.yaml")
    for var in ("REPOLENS_EMBEDDING_MODEL", "REPOLENS_GENERATION_MODEL", "REPOLENS_MAX_CHUNKS"):
        monkeypatch.delenv(var, raising=False)
