"""Tests for the Database connection layer."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from repolens.db.connection import Database, sqlite_vec_version


def test_connect_creates_file(tmp_path):
    db_path = tmp_path / ".repolens.db"
    conn = Database(db_path).connect()
    conn.close()
    assert db_path.exists()


def test_sqlite_vec_loads(tmp_path):
    conn = Database(tmp_path / ".repolens.db").connect()
    version = sqlite_vec_version(conn)
    conn.close()
    assert version.startswith("v")


def test_foreign_keys_enabled(tmp_path):
    conn = Database(tmp_path / ".repolens.db").connect()
    assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
    conn.close()


def test_wal_journal_mode(tmp_path):
    conn = Database(tmp_path / ".repolens.db").connect()
    assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
    conn.close()


def test_row_factory_set(tmp_path):
    conn = Database(tmp_path / ".repolens.db").connect()
    conn.execute("CREATE TABLE t (x INTEGER)")
    conn.execute("INSERT INTO t VALUES (42)")
    row = conn.execute("SELECT x FROM t").fetchone()
    conn.close()
    assert row["x"] == 42


def test_connection_usable_from_worker_thread(tmp_path):
    # The CLI runs ingestion in a worker thread over the same connection.
    conn = Database(tmp_path / ".repolens.db").connect()
    result: list[int] = []
    worker = threading.Thread(target=lambda: result.append(conn.execute("SELECT 7").fetchone()[0]))
    worker.start()
    worker.join()
    conn.close()
    assert result == [7]


def test_context_manager_closes_connection(tmp_path):
    db = Database(tmp_path / ".repolens.db")
    with db as conn:
        conn.execute("CREATE TABLE t (x INTEGER)")
    with pytest.raises(Exception):
        conn.execute("SELECT 1")


def test_context_manager_accepts_path_str(tmp_path):
    db = Database(str(tmp_path / ".repolens.db"))
    assert isinstance(db.db_path, Path)
    with db as conn:
        assert conn.execute("SELECT 1").fetchone()[0] == 1
