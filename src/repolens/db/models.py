"""Domain models for the repolens storage layer."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from enum import Enum

# Characters the vector index accepts in record ids.
_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_MAX_READABLE_ID = 200


class RepoStatus(str, Enum):
    PENDING = "pending"
    INGESTED = "ingested"
    FAILED = "failed"


@dataclass
class RepositoryRecord:
    repository_id: str
    owner: str
    name: str
    status: RepoStatus = RepoStatus.PENDING
    default_branch: str = "main"
    file_count: int = 0
    chunk_count: int = 0
    ingested_at: str | None = None
    claimed_at: str | None = None
    updated_at: str | None = None


@dataclass
class Chunk:
    """A contiguous slice of one file's text.

    ``start``/``end`` are character offsets into the (redacted) file text,
    half-open. ``text`` is ``file_text[start:end]`` with surrounding
    whitespace stripped.
    """

    id: str
    repository_id: str
    file_path: str
    chunk_index: int
    start: int
    end: int
    token_count: int
    text: str
    created_at: str | None = None


@dataclass
class VectorRecord:
    id: str
    vector: list[float]
    repository_id: str
    file_path: str
    chunk_index: int


@dataclass
class VectorMatch:
    id: str
    score: float
    file_path: str
    chunk_index: int


@dataclass
class CacheEntry:
    cache_key: str
    feature: str
    repository_id: str
    target: str
    response: str
    created_at: str
    expires_at: str


def make_chunk_id(repository_id: str, file_path: str, chunk_index: int) -> str:
    """Deterministic chunk / vector record id for ``(repository, file, index)``.

    The readable prefix is sanitized to ``[A-Za-z0-9_-]``; the digest keeps
    paths that sanitize to the same prefix (``a/b.ts`` vs ``a_b.ts``) apart.
    """
    digest = hashlib.sha256(f"{repository_id}\n{file_path}".encode("utf-8")).hexdigest()[:16]
    readable = _UNSAFE_ID_CHARS.sub("_", f"{_repo_slug(repository_id)}-{file_path}")
    return f"{readable[:_MAX_READABLE_ID]}-{digest}-{chunk_index}"


def _repo_slug(repository_id: str) -> str:
    """``https://github.com/acme/widgets`` -> ``acme_widgets``."""
    parts = [p for p in re.split(r"[/\\]", repository_id.rstrip("/\\")) if p]
    tail = parts[-2:] if len(parts) >= 2 else parts
    return "_".join(tail).removesuffix(".git")
