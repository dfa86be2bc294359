"""repolens CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from repolens.cli.cache import cache_app
from repolens.cli.files import files_cmd
from repolens.cli.ingest import ingest_cmd
from repolens.cli.query import ask_cmd, feature_cmd
from repolens.cli.status import status_cmd
from repolens.config import ConfigError, load_config


def _installed_version() -> str:
    try:
        return importlib.metadata.version("repolens")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"repolens {_installed_version()}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    """Route library logs through Rich on stderr.

    ``--verbose`` selects DEBUG; otherwise ``logging.level`` from config
    (default WARNING) applies.
    """
    if verbose:
        level = "DEBUG"
    else:
        try:
            level = load_config().logging.level
        except ConfigError:
            # The command itself reports the config error.
            level = "WARNING"
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=False, show_path=False)],
        force=True,
    )


app = typer.Typer(
    name="repolens",
    help=(
        "repolens: ask questions about a source repository.\n\n"
        "  repolens ingest   Fetch, chunk, embed and index a repository.\n"
        "  repolens ask      Ask a free-form question about it.\n"
        "  repolens feature  Explain a file, draw the architecture, suggest tests or improvements.\n"
        "  repolens files    List the ingested files (values for --file)."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logs."),
    ] = False,
) -> None:
    """repolens: ask questions about a source repository."""
    configure_logging(verbose)


app.command("ingest")(ingest_cmd)
app.command("ask")(ask_cmd)
app.command("feature")(feature_cmd)
app.command("status")(status_cmd)
app.command("files")(files_cmd)
app.add_typer(cache_app, name="cache")


@app.command("version")
def version_cmd() -> None:
    """Show the installed repolens version."""
    typer.echo(f"repolens {_installed_version()}")


if __name__ == "__main__":
    app()
