"""Tests for the repolens files command."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from repolens.cli.main import app
from repolens.db.chunk_store import ChunkStore
from repolens.db.models import Chunk, make_chunk_id
from repolens.db.registry import RepositoryRegistry
from repolens.services import open_connection

runner = CliRunner()

REPO = "https://github.com/acme/widgets"


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / ".repolens.db"


def _chunk(path: str, index: int) -> Chunk:
    return Chunk(
        id=make_chunk_id(REPO, path, index),
        repository_id=REPO,
        file_path=path,
        chunk_index=index,
        start=0,
        end=4,
        token_count=1,
        text="code",
    )


def _seed(db_path: Path, status: str = "ingested") -> None:
    conn = open_connection(db_path)
    registry = RepositoryRegistry(conn)
    token = registry.claim(REPO, "acme", "widgets")
    ChunkStore(conn).insert_many([
        _chunk("src/b.ts", 0),
        _chunk("src/a.ts", 0),
        _chunk("src/a.ts", 1),
    ])
    if status == "ingested":
        registry.mark_ingested(REPO, token, file_count=2, chunk_count=3)
    elif status == "failed":
        registry.mark_failed(REPO, token)
    conn.close()


def test_files_lists_sorted_paths(db_path):
    _seed(db_path)
    result = runner.invoke(app, ["files", REPO, "--db", str(db_path)])
    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[:2] == ["src/a.ts", "src/b.ts"]
    assert "2 files" in result.output


def test_files_accepts_other_url_spellings(db_path):
    _seed(db_path)
    result = runner.invoke(app, ["files", REPO + ".git", "--db", str(db_path)])
    assert result.exit_code == 0, result.output
    assert "src/a.ts" in result.output


def test_files_unknown_repository(db_path):
    _seed(db_path)
    result = runner.invoke(app, ["files", "https://github.com/acme/other", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "src/a.ts" not in result.output


def test_files_failed_repository_is_gated(db_path):
    _seed(db_path, status="failed")
    result = runner.invoke(app, ["files", REPO, "--db", str(db_path)])
    assert result.exit_code == 1
    assert "src/a.ts" not in result.output


def test_files_without_database(db_path):
    result = runner.invoke(app, ["files", REPO, "--db", str(db_path)])
    assert result.exit_code == 1
    assert "No database found" in result.output
