"""repolens rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Library failures are dispatched on ``RepolensError.kind``, never on message text.

Usage:
    from repolens.cli.errors import err_for
    console.print(err_for(exc))
    raise typer.Exit(1)
"""

from __future__ import annotations

from repolens.errors import ErrorKind, PreconditionError, RepolensError

_ENV_MAP = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "azure": "AZURE_API_KEY",
}


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = _ENV_MAP.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".repolens.db") -> str:
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  repolens ingest <repository>"
    )


def err_config(message: str) -> str:
    return f"[red]Error:[/] Invalid configuration.\n  {message}"


def err_precondition(exc: PreconditionError) -> str:
    repo = exc.repository_id or "<repository>"
    if exc.status == "pending":
        hint = (
            "  Wait for the running ingestion to finish, or retry later:\n"
            f"    repolens ingest {repo}"
        )
    elif exc.status == "failed":
        hint = f"  Run:  repolens ingest {repo} --force"
    else:
        hint = f"  Run:  repolens ingest {repo}"
    return f"[red]Error:[/] {exc.message}\n{hint}"


def err_not_found(exc: RepolensError) -> str:
    repo = exc.repository_id or "<repository>"
    return (
        f"[yellow]Not found:[/] {exc.message}\n"
        f"  Check the path, or re-ingest:  repolens ingest {repo} --force"
    )


def err_consistency(exc: RepolensError) -> str:
    repo = exc.repository_id or "<repository>"
    return (
        f"[red]Error:[/] {exc.message}\n"
        "  The vector index and chunk store are out of sync.\n"
        f"  Run:  repolens ingest {repo} --force"
    )


def err_upstream(exc: RepolensError) -> str:
    return (
        f"[red]Error:[/] {exc.message}\n"
        "  This is usually temporary. Try the command again."
    )


def err_malformed(exc: RepolensError) -> str:
    return (
        f"[yellow]Warning:[/] {exc.message}\n"
        "  The model answered in an unexpected shape. Try the command again."
    )


def err_cancelled(repository_id: str) -> str:
    return (
        f"[yellow]Cancelled:[/] ingestion of '{repository_id}' was stopped.\n"
        f"  It stays pending and can be retried:  repolens ingest {repository_id}"
    )


def err_for(exc: RepolensError) -> str:
    """Message for any library error, chosen by its kind."""
    if exc.kind == ErrorKind.PRECONDITION and isinstance(exc, PreconditionError):
        return err_precondition(exc)
    if exc.kind == ErrorKind.NOT_FOUND:
        return err_not_found(exc)
    if exc.kind == ErrorKind.CONSISTENCY:
        return err_consistency(exc)
    if exc.kind == ErrorKind.MALFORMED_RESPONSE:
        return err_malformed(exc)
    return err_upstream(exc)
