"""Shared command setup: config loading, API key checks, opening the database."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from repolens.cli.errors import err_config, err_no_api_key, err_no_db
from repolens.config import ConfigError, RepolensConfig, load_config
from repolens.ingest.sources import canonical_repository_url
from repolens.rag.llm_client import provider_of, validate_api_key
from repolens.services import Services, build_services


def load_config_or_exit(console: Console) -> RepolensConfig:
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)


def require_api_keys(console: Console, *models: str) -> None:
    """Exit with an actionable message unless every model's API key is set."""
    for model in models:
        try:
            validate_api_key(model)
        except EnvironmentError:
            console.print(err_no_api_key(provider_of(model)))
            raise typer.Exit(1)


def open_existing(console: Console, cfg: RepolensConfig, db: Path) -> Services:
    """Build services over *db*, which must already exist."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)
    return build_services(cfg, db)


def repository_key(repository: str, local: bool = False) -> str:
    """Canonical registry id: normalized https URLs, local checkouts as absolute paths."""
    candidate = repository.strip()
    if candidate.lower().startswith(("http://", "https://")):
        return canonical_repository_url(candidate)
    path = Path(candidate).expanduser()
    if local or path.is_dir():
        return str(path.resolve())
    return candidate
