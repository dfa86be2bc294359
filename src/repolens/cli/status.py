"""repolens status: ingested repositories and response cache overview."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from repolens.cli.context import load_config_or_exit, repository_key
from repolens.cli.errors import err_no_db
from repolens.db.connection import sqlite_vec_version
from repolens.db.models import RepoStatus, RepositoryRecord
from repolens.services import DEFAULT_DB, build_services

console = Console()

_STATUS_STYLE = {
    RepoStatus.INGESTED: "[green]✓ ingested[/]",
    RepoStatus.PENDING: "[yellow]… pending[/]",
    RepoStatus.FAILED: "[red]✗ failed[/]",
}


def status_cmd(
    repository: Annotated[
        str | None,
        typer.Argument(help="Show only this repository."),
    ] = None,
    db: Annotated[Path, typer.Option("--db", help="Path to .repolens.db.")] = DEFAULT_DB,
) -> None:
    """Show ingested repositories and cache statistics."""
    if not db.exists():
        console.print(
            Panel(err_no_db(str(db)), title="[bold]Repositories[/]", expand=False)
        )
        raise typer.Exit(0)

    cfg = load_config_or_exit(console)
    services = build_services(cfg, db)
    try:
        if repository is not None:
            record = services.registry.get(repository_key(repository))
            records = [record] if record is not None else []
        else:
            records = services.registry.list_all()
        live, expired = services.cache.stats()
        vector_count = services.vector_index.count()
        vec_version = sqlite_vec_version(services.conn)
    finally:
        services.close()

    if not records:
        message = (
            f"[yellow]'{repository}' has not been ingested.[/]" if repository else "[yellow]No repositories ingested yet.[/]"
        )
        console.print(
            Panel(
                f"{message}\n  Run:  repolens ingest <repository>",
                title="[bold]Repositories[/]",
                expand=False,
            )
        )
    else:
        console.print(_repository_table(records))

    console.print(
        Panel(
            f"Embedding model: {cfg.embedding.model}  ({vector_count} vectors, sqlite-vec {vec_version})\n"
            f"Cache: {live} live · {expired} expired  (version {cfg.cache.version})",
            title="[bold]Index & Cache[/]",
            expand=False,
        )
    )


def _repository_table(records: list[RepositoryRecord]) -> Table:
    table = Table(title="Repositories", show_header=True, header_style="bold")
    table.add_column("Repository", style="bold")
    table.add_column("Status")
    table.add_column("Branch")
    table.add_column("Files", justify="right")
    table.add_column("Chunks", justify="right")
    table.add_column("Ingested at")
    for record in records:
        table.add_row(
            record.repository_id,
            _STATUS_STYLE.get(record.status, record.status.value),
            record.default_branch,
            str(record.file_count),
            str(record.chunk_count),
            record.ingested_at or "",
        )
    return table
