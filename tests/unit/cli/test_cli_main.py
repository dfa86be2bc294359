"""Tests for the repolens CLI entry point."""

from __future__ import annotations

import logging

import pytest
from typer.testing import CliRunner

from repolens.cli.main import app, configure_logging

runner = CliRunner()


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_version_flag_exits_zero() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "repolens" in result.output


def test_version_command() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.startswith("repolens ")


def test_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("ingest", "ask", "feature", "status", "files", "cache"):
        assert command in result.output


def test_verbose_selects_debug() -> None:
    configure_logging(verbose=True)
    assert logging.getLogger().level == logging.DEBUG


def test_default_level_from_config(tmp_path, monkeypatch) -> None:
    (tmp_path / "repolens.yaml").write_text("logging:\n  level: info\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    configure_logging(verbose=False)
    assert logging.getLogger().level == logging.INFO


def test_bad_config_falls_back_to_warning(tmp_path, monkeypatch) -> None:
    (tmp_path / "repolens.yaml").write_text("logging:\n  level: loud\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    configure_logging(verbose=False)
    assert logging.getLogger().level == logging.WARNING
