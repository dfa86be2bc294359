"""Source fetchers: produce the ordered ``(path, text)`` list for a repository.

Two implementations share the same filter policy (extension allow-list,
file-count cap, per-file size limit):

  GithubFetcher          GitHub REST API: default branch -> recursive tree -> contents
  LocalDirectoryFetcher  a checkout on disk, walked in sorted order

Security:
- Only ``https://github.com/<owner>/<name>`` URLs are accepted by the GitHub fetcher.
- ``GITHUB_TOKEN`` is read from the environment, never from config files.
- Timeout: 30 seconds per request.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import re
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from repolens.errors import NotFoundError, PreconditionError, UpstreamError

logger = logging.getLogger(__name__)

_USER_AGENT = "repolens/0.1"
_API_BASE = "https://api.github.com"
_TIMEOUT = 30  # seconds
_GITHUB_URL_RE = re.compile(r"github\.com[/:]([^/\s]+)/([^/\s]+?)(?:\.git)?/?$", re.IGNORECASE)

DEFAULT_EXTENSIONS: tuple[str, ...] = (".js", ".ts", ".jsx", ".tsx", ".py")

# Directories never descended into by the local fetcher.
_SKIP_DIRS = frozenset(
    ["node_modules", "dist", "build", "vendor", "__pycache__", "venv", ".venv", "coverage"]
)


@dataclass
class SourceFile:
    path: str
    text: str


@dataclass
class RepositorySnapshot:
    """Eligible files of one repository, in fetch order."""

    files: list[SourceFile] = field(default_factory=list)
    default_branch: str = "main"


class SourceFetcher(Protocol):
    def fetch(self, repository_id: str) -> RepositorySnapshot: ...


@dataclass
class FetchLimits:
    """Filter policy shared by every fetcher."""

    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS
    max_files: int = 50
    max_file_size_bytes: int = 500_000

    def allows(self, path: str) -> bool:
        return path.lower().endswith(tuple(e.lower() for e in self.extensions))


def canonical_repository_url(url: str) -> str:
    """One spelling per remote repository.

    The scheme becomes ``https``, the host is lower-cased, and a trailing
    slash or ``.git`` suffix is dropped:
    ``http://GitHub.com/acme/widgets.git/`` -> ``https://github.com/acme/widgets``.
    """
    parts = urllib.parse.urlsplit(url.strip())
    path = parts.path.rstrip("/").removesuffix(".git").rstrip("/")
    return f"https://{parts.netloc.lower()}{path}"


def parse_repository_id(repository_id: str) -> tuple[str, str]:
    """Return ``(owner, name)`` for a GitHub URL or a local checkout path.

    Examples:
        "https://github.com/acme/widgets.git" -> ("acme", "widgets")
        "/src/acme/widgets"                   -> ("acme", "widgets")

    Raises:
        PreconditionError: *repository_id* is empty or not recognisable.
    """
    clean = repository_id.strip()
    if not clean:
        raise PreconditionError("Repository identifier is empty")

    match = _GITHUB_URL_RE.search(clean)
    if match:
        return match.group(1), match.group(2)
    if clean.startswith(("http://", "https://")):
        raise PreconditionError(
            f"Invalid GitHub URL: {repository_id}", repository_id=repository_id
        )

    path = Path(clean).expanduser()
    name = path.name.removesuffix(".git")
    owner = path.parent.name or "local"
    if not name:
        raise PreconditionError(
            f"Cannot derive a repository name from '{repository_id}'",
            repository_id=repository_id,
        )
    return owner, name


def _apply_limits(
    candidates: Iterable[str], limits: FetchLimits, repository_id: str
) -> list[str]:
    eligible = [p for p in candidates if limits.allows(p)]
    if len(eligible) > limits.max_files:
        logger.warning(
            "%s has %d eligible files; truncating to %d",
            repository_id,
            len(eligible),
            limits.max_files,
        )
    return eligible[: limits.max_files]


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------


class GithubFetcher:
    """Fetch eligible files of a public (or token-accessible) GitHub repository.

    Args:
        limits: Extension / count / size policy.
        token: Bearer token; defaults to the ``GITHUB_TOKEN`` env var.
        opener: ``urllib`` opener (injectable for tests).
    """

    def __init__(
        self,
        limits: FetchLimits | None = None,
        token: str | None = None,
        opener: urllib.request.OpenerDirector | None = None,
    ) -> None:
        self._limits = limits or FetchLimits()
        self._token = token if token is not None else os.environ.get("GITHUB_TOKEN", "")
        self._opener = opener or urllib.request.build_opener()

    def fetch(self, repository_id: str) -> RepositorySnapshot:
        owner, name = parse_repository_id(repository_id)
        repo_path = f"/repos/{_quote(owner)}/{_quote(name)}"

        try:
            meta = self._get_json(repo_path)
            branch = str(meta.get("default_branch") or "main")
            tree = self._get_json(f"{repo_path}/git/trees/{_quote(branch)}?recursive=1")
        except urllib.error.HTTPError as exc:
            raise _translate_http_error(exc, repository_id) from exc
        except urllib.error.URLError as exc:
            raise UpstreamError(
                f"Failed to reach GitHub for {repository_id}: {exc.reason}",
                repository_id=repository_id,
            ) from exc

        if tree.get("truncated"):
            logger.warning("GitHub returned a truncated tree for %s", repository_id)

        blobs = [item["path"] for item in tree.get("tree", []) if item.get("type") == "blob"]
        paths = _apply_limits(blobs, self._limits, repository_id)
        logger.info("Fetching %d files from %s/%s", len(paths), owner, name)

        files: list[SourceFile] = []
        for path in paths:
            try:
                text = self._get_content(f"{repo_path}/contents/{_quote(path, safe='/')}")
            except (urllib.error.URLError, ValueError, KeyError) as exc:
                logger.warning("Skipping %s: could not fetch content (%s)", path, exc)
                continue
            if len(text) > self._limits.max_file_size_bytes:
                logger.warning("Skipping %s: file too large (%d bytes)", path, len(text))
                continue
            files.append(SourceFile(path=path, text=text))

        return RepositorySnapshot(files=files, default_branch=branch)

    def _get_content(self, api_path: str) -> str:
        data = self._get_json(api_path)
        raw = base64.b64decode(data["content"])
        return raw.decode("utf-8", errors="replace")

    def _get_json(self, api_path: str) -> dict:
        headers = {"Accept": "application/vnd.github+json", "User-Agent": _USER_AGENT}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        request = urllib.request.Request(f"{_API_BASE}{api_path}", headers=headers)
        with self._opener.open(request, timeout=_TIMEOUT) as response:
            return json.loads(response.read().decode("utf-8"))


def _quote(value: str, safe: str = "") -> str:
    return urllib.parse.quote(value, safe=safe)


def _translate_http_error(exc: urllib.error.HTTPError, repository_id: str) -> Exception:
    if exc.code == 403:
        return UpstreamError(
            "GitHub rate limit exceeded. Set the GITHUB_TOKEN environment variable.",
            repository_id=repository_id,
        )
    if exc.code == 404:
        return NotFoundError(
            "Repository not found. Check the URL and ensure it is public.",
            repository_id=repository_id,
        )
    return UpstreamError(
        f"GitHub request failed with HTTP {exc.code} for {repository_id}",
        repository_id=repository_id,
    )


# ---------------------------------------------------------------------------
# Local checkout
# ---------------------------------------------------------------------------


class LocalDirectoryFetcher:
    """Read eligible files from a directory on disk.

    Paths in the snapshot are POSIX-style and relative to the directory root.
    Hidden entries and vendored/build directories are skipped.
    """

    def __init__(self, limits: FetchLimits | None = None, max_depth: int = 10) -> None:
        self._limits = limits or FetchLimits()
        self._max_depth = max_depth

    def fetch(self, repository_id: str) -> RepositorySnapshot:
        root = Path(repository_id).expanduser()
        if not root.is_dir():
            raise NotFoundError(
                f"Local repository '{repository_id}' is not a directory",
                repository_id=repository_id,
            )

        found = [p.relative_to(root).as_posix() for p in self._scan_dir(root, depth=0)]
        paths = _apply_limits(found, self._limits, repository_id)

        files: list[SourceFile] = []
        for rel in paths:
            full = root / rel
            try:
                size = full.stat().st_size
                if size > self._limits.max_file_size_bytes:
                    logger.warning("Skipping %s: file too large (%d bytes)", rel, size)
                    continue
                text = full.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                logger.warning("Skipping %s: could not read file (%s)", rel, exc)
                continue
            files.append(SourceFile(path=rel, text=text))

        return RepositorySnapshot(files=files, default_branch=_local_branch(root))

    def _scan_dir(self, directory: Path, depth: int) -> list[Path]:
        if depth > self._max_depth:
            return []
        try:
            entries = sorted(directory.iterdir())
        except PermissionError:
            logger.warning("Permission denied: %s", directory)
            return []
        files: list[Path] = []
        for entry in entries:
            if entry.name.startswith("."):
                continue
            if entry.is_file():
                files.append(entry)
            elif entry.is_dir() and entry.name not in _SKIP_DIRS:
                files.extend(self._scan_dir(entry, depth + 1))
        return files


def _local_branch(root: Path) -> str:
    """Branch named in ``.git/HEAD``, or ``main`` when it cannot be read."""
    head = root / ".git" / "HEAD"
    try:
        content = head.read_text(encoding="utf-8").strip()
    except OSError:
        return "main"
    prefix = "ref: refs/heads/"
    return content[len(prefix):] if content.startswith(prefix) else "main"
