"""Wiring of the storage, ingestion and retrieval components.

Every collaborator is constructed here and passed in explicitly; nothing in
the library holds a module-level client.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path

from repolens.config import RepolensConfig
from repolens.db.chunk_store import ChunkStore
from repolens.db.connection import Database
from repolens.db.registry import RepositoryRegistry
from repolens.db.schema import initialize
from repolens.db.vector_index import VectorIndex
from repolens.ingest.chunker import Chunker
from repolens.ingest.embedder import Embedder
from repolens.ingest.orchestrator import ProgressCallback, RepositoryIngestor
from repolens.ingest.sources import FetchLimits, GithubFetcher, LocalDirectoryFetcher, SourceFetcher
from repolens.rag.cache import ResponseCache
from repolens.rag.engine import Generator, RagEngine
from repolens.rag.llm_client import LiteLLMGenerator

DEFAULT_DB = Path(".repolens.db")


@dataclass
class Services:
    conn: sqlite3.Connection
    config: RepolensConfig
    registry: RepositoryRegistry
    chunk_store: ChunkStore
    vector_index: VectorIndex
    embedder: Embedder
    cache: ResponseCache
    generator: Generator

    def engine(self) -> RagEngine:
        return RagEngine(
            registry=self.registry,
            chunk_store=self.chunk_store,
            vector_index=self.vector_index,
            embedder=self.embedder,
            generator=self.generator,
            cache=self.cache,
            non_cacheable=self.config.retrieval.non_cacheable,
        )

    def ingestor(
        self,
        fetcher: SourceFetcher,
        on_progress: ProgressCallback | None = None,
    ) -> RepositoryIngestor:
        chunking = self.config.chunking
        return RepositoryIngestor(
            registry=self.registry,
            chunk_store=self.chunk_store,
            vector_index=self.vector_index,
            embedder=self.embedder,
            fetcher=fetcher,
            chunker=Chunker(
                chunk_size=chunking.chunk_size,
                overlap=chunking.overlap,
                chars_per_token=chunking.chars_per_token,
                newline_lookahead=chunking.newline_lookahead,
            ),
            max_chunks=self.config.ingest.max_chunks,
            pending_timeout_seconds=self.config.ingest.pending_timeout_seconds,
            on_progress=on_progress,
        )

    def close(self) -> None:
        self.conn.close()


def open_connection(db_path: Path) -> sqlite3.Connection:
    """Open (or create) the workspace database and run migrations."""
    conn = Database(db_path).connect()
    initialize(conn)
    return conn


def make_fetcher(config: RepolensConfig, local: bool = False) -> SourceFetcher:
    limits = FetchLimits(
        extensions=tuple(config.ingest.extensions),
        max_files=config.ingest.max_files,
        max_file_size_bytes=config.ingest.max_file_size_bytes,
    )
    if local:
        return LocalDirectoryFetcher(limits)
    return GithubFetcher(limits)


def build_services(
    config: RepolensConfig,
    db_path: Path = DEFAULT_DB,
    *,
    conn: sqlite3.Connection | None = None,
    generator: Generator | None = None,
) -> Services:
    """Construct every component from *config* over one database connection."""
    conn = conn if conn is not None else open_connection(db_path)
    return Services(
        conn=conn,
        config=config,
        registry=RepositoryRegistry(conn),
        chunk_store=ChunkStore(conn),
        vector_index=VectorIndex(
            conn,
            config.embedding.model,
            config.embedding.dimensions,
            batch_size=config.vector_index.batch_size,
        ),
        embedder=Embedder(
            config.embedding.model,
            batch_size=config.embedding.batch_size,
            dimensions=config.embedding.dimensions,
        ),
        cache=ResponseCache(
            conn,
            ttl_seconds=max(1, int(config.cache.ttl_hours * 3600)),
            version=config.cache.version,
        ),
        generator=generator
        or LiteLLMGenerator(
            config.generation.model,
            temperature=config.generation.temperature,
            max_tokens=config.generation.max_tokens,
        ),
    )
