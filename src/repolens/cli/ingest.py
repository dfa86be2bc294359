"""repolens ingest: fetch, chunk, embed and index a repository into .repolens.db.

Repository sources:
  https://github.com/<owner>/<name>   → GitHub REST API (GITHUB_TOKEN optional)
  --local <path>                      → a checkout on disk

Ctrl-C cancels between batches; the repository stays pending and can be
re-ingested immediately.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Annotated, TypeVar

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from repolens.cli.context import load_config_or_exit, repository_key, require_api_keys
from repolens.cli.errors import err_cancelled, err_for
from repolens.db.models import RepoStatus
from repolens.errors import IngestionCancelled, RepolensError
from repolens.ingest.orchestrator import IngestResult
from repolens.services import DEFAULT_DB, build_services, make_fetcher

console = Console()

T = TypeVar("T")


def ingest_cmd(
    repository: Annotated[
        str,
        typer.Argument(help="GitHub URL (https://github.com/owner/name) or, with --local, a directory."),
    ],
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Delete existing data and re-ingest."),
    ] = False,
    local: Annotated[
        bool,
        typer.Option("--local", help="Treat REPOSITORY as a local checkout."),
    ] = False,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .repolens.db (created if missing)."),
    ] = DEFAULT_DB,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompts."),
    ] = False,
) -> None:
    """Ingest a repository so it can be queried."""
    cfg = load_config_or_exit(console)
    require_api_keys(console, cfg.embedding.model)

    repository_id = repository_key(repository, local=local)

    services = build_services(cfg, db)
    try:
        existing = services.registry.get(repository_id)
        if force and existing is not None and existing.status == RepoStatus.INGESTED and not yes:
            console.print(
                f"[bold]{repository_id}[/] is ingested "
                f"({existing.file_count} files, {existing.chunk_count} chunks)."
            )
            if not typer.confirm("  Delete its data and re-ingest?", default=False):
                console.print("  [dim]Skipped.[/]")
                raise typer.Exit(0)

        console.print(f"\n[bold]→ {repository_id}[/]")
        cancel = threading.Event()
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            task = prog.add_task("Starting…", total=None)
            ingestor = services.ingestor(
                make_fetcher(cfg, local=local),
                on_progress=lambda message: prog.update(task, description=message),
            )
            try:
                result = _run_cancellable(
                    lambda: ingestor.ingest(repository_id, force=force, cancel=cancel),
                    cancel,
                )
            except IngestionCancelled:
                console.print(err_cancelled(repository_id))
                raise typer.Exit(130)
            except RepolensError as exc:
                console.print(err_for(exc))
                raise typer.Exit(1)
    finally:
        services.close()

    _report(result)


def _run_cancellable(fn: Callable[[], T], cancel: threading.Event) -> T:
    """Run *fn* in a worker thread; Ctrl-C sets *cancel* and waits for it to stop."""
    with ThreadPoolExecutor(max_workers=1) as pool:
        future = pool.submit(fn)
        while True:
            try:
                return future.result(timeout=0.2)
            except TimeoutError:
                continue
            except KeyboardInterrupt:
                cancel.set()
                console.print("[yellow]Cancelling after the current batch…[/]")
                return future.result()


def _report(result: IngestResult) -> None:
    if result.already_ingested:
        console.print(
            f"  [dim]↷ Already ingested ({result.file_count} files, "
            f"{result.chunk_count} chunks). Use --force to re-ingest.[/]"
        )
        return
    console.print(f"  [green]✓[/] {result.file_count} files, {result.chunk_count} chunks")
    if result.truncated:
        console.print("  [yellow]⚠ Chunk limit reached; later files were not ingested.[/]")

