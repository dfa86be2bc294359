"""repolens files: the file paths an ingested repository can be queried by.

Usage:
  repolens files https://github.com/acme/widgets
  repolens feature explain_file https://github.com/acme/widgets --file <one of them>
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from repolens.cli.context import load_config_or_exit, open_existing, repository_key
from repolens.cli.errors import err_for
from repolens.errors import RepolensError
from repolens.services import DEFAULT_DB

console = Console()


def files_cmd(
    repository: Annotated[str, typer.Argument(help="Ingested repository (URL or local path).")],
    db: Annotated[Path, typer.Option("--db", help="Path to .repolens.db.")] = DEFAULT_DB,
) -> None:
    """List the ingested files of a repository."""
    repository_id = repository_key(repository)
    cfg = load_config_or_exit(console)
    services = open_existing(console, cfg, db)
    try:
        paths = services.engine().list_files(repository_id)
    except RepolensError as exc:
        console.print(err_for(exc))
        raise typer.Exit(1)
    finally:
        services.close()

    if not paths:
        console.print(f"[yellow]{repository_id} was ingested without any files.[/]")
        return
    for path in paths:
        typer.echo(path)
    console.print(f"[dim]{len(paths)} files[/]")
