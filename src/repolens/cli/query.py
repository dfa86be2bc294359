"""repolens ask / feature: retrieval-augmented answers about an ingested repository.

Usage:
  repolens ask https://github.com/acme/widgets "Where is the config loaded?"
  repolens feature explain_file https://github.com/acme/widgets --file src/app.ts
  repolens feature architecture https://github.com/acme/widgets
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from repolens.cli.context import load_config_or_exit, open_existing, repository_key, require_api_keys
from repolens.cli.errors import err_for
from repolens.errors import RepolensError
from repolens.rag.engine import RagEngine
from repolens.rag.features import FEATURES, ask_repo, run_feature
from repolens.services import DEFAULT_DB

console = Console()


def ask_cmd(
    repository: Annotated[str, typer.Argument(help="Ingested repository (URL or local path).")],
    question: Annotated[str, typer.Argument(help="Question about the repository.")],
    db: Annotated[Path, typer.Option("--db", help="Path to .repolens.db.")] = DEFAULT_DB,
) -> None:
    """Ask a free-form question about an ingested repository."""
    repository_id = repository_key(repository)
    _answer(db, lambda engine: ask_repo(engine, repository_id, question))


def feature_cmd(
    name: Annotated[
        str,
        typer.Argument(help=f"Feature: {', '.join(sorted(FEATURES))}."),
    ],
    repository: Annotated[str, typer.Argument(help="Ingested repository (URL or local path).")],
    file: Annotated[
        str | None,
        typer.Option("--file", help="Repository-relative file path (explain_file, unit_tests, improvements)."),
    ] = None,
    db: Annotated[Path, typer.Option("--db", help="Path to .repolens.db.")] = DEFAULT_DB,
) -> None:
    """Run a repository feature (explanation, diagram, tests, review)."""
    repository_id = repository_key(repository)
    _answer(db, lambda engine: run_feature(engine, name, repository_id, file_path=file))


def _answer(db: Path, run: Callable[[RagEngine], str]) -> None:
    cfg = load_config_or_exit(console)
    require_api_keys(console, cfg.embedding.model, cfg.generation.model)

    services = open_existing(console, cfg, db)
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            prog.add_task("Retrieving and generating…", total=None)
            answer = run(services.engine())
    except RepolensError as exc:
        console.print(err_for(exc))
        raise typer.Exit(1)
    finally:
        services.close()

    typer.echo(answer)
