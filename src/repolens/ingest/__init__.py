"""repolens ingest pipeline: fetchers, redaction, chunker, embedder, orchestrator."""

from repolens.ingest.chunker import Chunker
from repolens.ingest.embedder import Embedder
from repolens.ingest.orchestrator import IngestResult, RepositoryIngestor
from repolens.ingest.redact import redact_secrets
from repolens.ingest.sources import (
    FetchLimits,
    GithubFetcher,
    LocalDirectoryFetcher,
    RepositorySnapshot,
    SourceFile,
    parse_repository_id,
)

__all__ = [
    "Chunker",
    "Embedder",
    "FetchLimits",
    "GithubFetcher",
    "IngestResult",
    "LocalDirectoryFetcher",
    "RepositoryIngestor",
    "RepositorySnapshot",
    "SourceFile",
    "parse_repository_id",
    "redact_secrets",
]
