"""repolens command-line interface (Typer)."""
