"""Tests for the repolens cache commands."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

from typer.testing import CliRunner

from repolens.cli.main import app
from repolens.rag.cache import ResponseCache
from repolens.services import open_connection

runner = CliRunner()

REPO = "https://github.com/acme/widgets"


def test_purge_removes_only_expired(tmp_path: Path):
    db_path = tmp_path / ".repolens.db"
    conn = open_connection(db_path)
    past = datetime.now(timezone.utc) - timedelta(days=3)
    ResponseCache(conn, clock=lambda: past).put("workflow", REPO, "workflow", "old")
    ResponseCache(conn).put("architecture", REPO, "architecture", "fresh")
    conn.close()

    result = runner.invoke(app, ["cache", "purge", "--db", str(db_path)])
    assert result.exit_code == 0, result.output
    assert "Purged 1 expired cache entries" in result.output

    conn = open_connection(db_path)
    assert ResponseCache(conn).stats() == (1, 0)
    conn.close()


def test_purge_without_database(tmp_path: Path):
    result = runner.invoke(app, ["cache", "purge", "--db", str(tmp_path / "missing.db")])
    assert result.exit_code == 1
    assert "No database found" in result.output
