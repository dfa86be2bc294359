"""repolens cache CLI commands.

Commands:
  repolens cache purge   Delete expired response cache entries
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from repolens.cli.context import load_config_or_exit, open_existing
from repolens.services import DEFAULT_DB

console = Console()

cache_app = typer.Typer(
    name="cache",
    help="Manage the response cache.",
    add_completion=False,
)


@cache_app.command("purge")
def cache_purge_cmd(
    db: Annotated[Path, typer.Option("--db", help="Path to .repolens.db.")] = DEFAULT_DB,
) -> None:
    """Delete expired cache entries."""
    cfg = load_config_or_exit(console)
    services = open_existing(console, cfg, db)
    try:
        removed = services.cache.purge_expired()
    finally:
        services.close()
    console.print(f"[green]✓[/] Purged {removed} expired cache entries")
