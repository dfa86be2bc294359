"""Retrieval engine: gate, cache, embed, search, hydrate, prompt, generate.

  1. Registry gate: the repository must be ``ingested``.
  2. Cache lookup; a live entry short-circuits everything below.
  3. Embed the query text.
  4. Top-K vector search (optionally one file); no matches -> NotFoundError.
  5. Hydrate from the chunk store, keeping vector rank order.
  6. Build the prompt from the labelled chunks and call the model once.
  7. Write the answer through to the cache (unless the feature is non-cacheable).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Protocol

from repolens.db.chunk_store import ChunkStore
from repolens.db.models import RepoStatus
from repolens.db.registry import RepositoryRegistry
from repolens.db.vector_index import VectorIndex
from repolens.errors import MalformedResponseError, NotFoundError, PreconditionError
from repolens.ingest.embedder import Embedder
from repolens.rag.cache import ResponseCache
from repolens.rag.retriever import format_labels, reconcile_matches

logger = logging.getLogger(__name__)

PromptBuilder = Callable[[Sequence[str]], str]
Postprocess = Callable[[str], str]

DEFAULT_NON_CACHEABLE: frozenset[str] = frozenset(["ask_repo"])


class Generator(Protocol):
    def complete(self, prompt: str) -> str: ...


class RagEngine:
    """Answer feature queries over one ingested repository at a time.

    Args:
        registry: Repository state rows (the precondition gate).
        chunk_store: Full chunk text store.
        vector_index: Index built with the same model as *embedder*.
        embedder: Query embedder.
        generator: Generative model client.
        cache: Response cache.
        non_cacheable: Feature names whose answers are never cached.
    """

    def __init__(
        self,
        registry: RepositoryRegistry,
        chunk_store: ChunkStore,
        vector_index: VectorIndex,
        embedder: Embedder,
        generator: Generator,
        cache: ResponseCache,
        non_cacheable: Iterable[str] = DEFAULT_NON_CACHEABLE,
    ) -> None:
        self._registry = registry
        self._chunks = chunk_store
        self._index = vector_index
        self._embedder = embedder
        self._generator = generator
        self._cache = cache
        self.non_cacheable = frozenset(non_cacheable)

    def query(
        self,
        repository_id: str,
        feature: str,
        query_text: str,
        prompt_builder: PromptBuilder,
        target: str = "",
        top_k: int = 8,
        file_path: str | None = None,
        postprocess: Postprocess | None = None,
    ) -> str:
        """Run one retrieval-augmented query and return the answer text.

        Raises:
            PreconditionError: Repository unknown, pending, failed, or otherwise not ingested.
            NotFoundError: The vector index returned no matches.
            ConsistencyError: None of the matches has stored chunk text.
            UpstreamError: Embedding, index or model call failed.
            MalformedResponseError: Empty model output, or *postprocess* rejected it.
        """
        self.require_ingested(repository_id)

        cacheable = feature not in self.non_cacheable
        if cacheable:
            cached = self._cache.get(feature, repository_id, target)
            if cached is not None:
                logger.info("Cache hit for %s on %s", feature, repository_id)
                return cached

        logger.info("Generating query embedding for feature: %s", feature)
        vector = self._embedder.embed_query(query_text)

        logger.info("Querying vector index (top_k=%d)", top_k)
        matches = self._index.query(vector, repository_id, top_k, file_path=file_path)
        if not matches:
            raise NotFoundError(
                "No relevant chunks found in the vector index. "
                "The repository may need to be re-ingested.",
                repository_id=repository_id,
            )

        chunks_by_id = self._chunks.get_many([m.id for m in matches])
        retrieved = reconcile_matches(matches, chunks_by_id, repository_id=repository_id)

        prompt = prompt_builder(format_labels(retrieved))
        logger.info("Calling generative model for feature: %s", feature)
        answer = self._generator.complete(prompt).strip()
        if not answer:
            raise MalformedResponseError(
                "The model returned an empty response.", repository_id=repository_id
            )
        if postprocess is not None:
            answer = postprocess(answer)

        if cacheable:
            self._cache.put(feature, repository_id, target, answer)
        return answer

    def require_ingested(self, repository_id: str) -> None:
        """Fail fast unless the repository's registry status is ``ingested``."""
        record = self._registry.get(repository_id)
        if record is None:
            raise PreconditionError(
                f"Repository not found: {repository_id}. Ingest it first.",
                repository_id=repository_id,
            )
        if record.status == RepoStatus.PENDING:
            raise PreconditionError(
                f"Repository ingestion is still in progress: {repository_id}.",
                repository_id=repository_id,
                status=record.status.value,
            )
        if record.status == RepoStatus.FAILED:
            raise PreconditionError(
                f"Repository ingestion previously failed: {repository_id}. "
                "Re-ingest it with force.",
                repository_id=repository_id,
                status=record.status.value,
            )
        if record.status != RepoStatus.INGESTED:
            raise PreconditionError(
                f"Repository is not ingested: {repository_id}.",
                repository_id=repository_id,
                status=str(record.status),
            )

    def require_file(self, repository_id: str, file_path: str) -> None:
        """Validate *file_path* and check it is part of the ingested repository.

        Raises:
            PreconditionError: The path is absolute or contains ``..``.
            NotFoundError: No chunk of that file was ingested.
        """
        if file_path.startswith(("/", "\\")) or ".." in file_path.replace("\\", "/").split("/"):
            raise PreconditionError(
                f"Invalid file path '{file_path}': use a path relative to the repository root.",
                repository_id=repository_id,
            )
        self.require_ingested(repository_id)
        if not self._chunks.has_file(repository_id, file_path):
            raise NotFoundError(
                f"File '{file_path}' was not found in the ingested repository.",
                repository_id=repository_id,
            )

    def list_files(self, repository_id: str) -> list[str]:
        """Sorted paths of every file the repository's chunks came from."""
        self.require_ingested(repository_id)
        return self._chunks.list_files(repository_id)
