"""Repository ingestion: fetch, redact, chunk, embed, index, store, finalize.

State machine per repository: ``absent -> pending -> {ingested, failed}``.

  1. Claim the registry row as ``pending`` (compare-and-swap; a live claim
     held by another attempt is a precondition error). The claim token is
     checked before every write batch and required to finalize.
  2. Tear down any prior vectors and chunks for the repository.
  3. Fetch eligible files, redact secrets, chunk up to the global ceiling.
  4. Embed every chunk text in order.
  5. Upsert one vector record per chunk (same id).
  6. Replace the repository's chunks in the chunk store.
  7. Mark the row ``ingested`` with final counts.

Any failure in 2-6 marks the row ``failed``. Cancellation leaves it
``pending`` with the claim released. An attempt whose stale claim was taken
over stops at its next write with a precondition error and leaves the row to
the new holder. Nothing is retried here; callers re-invoke ``ingest`` and the
steps are idempotent.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from repolens.db.chunk_store import ChunkStore
from repolens.db.models import Chunk, RepoStatus, VectorRecord
from repolens.db.registry import RepositoryRegistry
from repolens.db.vector_index import VectorIndex
from repolens.errors import IngestionCancelled, PreconditionError, RepolensError, UpstreamError
from repolens.ingest.chunker import Chunker
from repolens.ingest.embedder import Embedder
from repolens.ingest.redact import redact_secrets
from repolens.ingest.sources import SourceFetcher, SourceFile, parse_repository_id

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


@dataclass
class IngestResult:
    repository_id: str
    status: RepoStatus
    file_count: int
    chunk_count: int
    already_ingested: bool = False
    truncated: bool = False


class RepositoryIngestor:
    """Coordinate one ingestion attempt per call.

    Args:
        registry: Repository state rows.
        chunk_store: Full chunk text store.
        vector_index: Nearest-neighbour index for the embedding model.
        embedder: Document/query embedder (same model as the index).
        fetcher: Source of ``(path, text)`` files.
        chunker: Chunker; defaults to 400-token windows with 50-token overlap.
        max_chunks: Global chunk ceiling per repository.
        pending_timeout_seconds: Age after which a ``pending`` claim is stale.
        on_progress: Optional callback receiving short stage descriptions.
    """

    def __init__(
        self,
        registry: RepositoryRegistry,
        chunk_store: ChunkStore,
        vector_index: VectorIndex,
        embedder: Embedder,
        fetcher: SourceFetcher,
        chunker: Chunker | None = None,
        max_chunks: int = 2000,
        pending_timeout_seconds: int = 3600,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        if max_chunks < 1:
            raise ValueError("max_chunks must be >= 1")
        self._registry = registry
        self._chunks = chunk_store
        self._index = vector_index
        self._embedder = embedder
        self._fetcher = fetcher
        self._chunker = chunker or Chunker()
        self._max_chunks = max_chunks
        self._pending_timeout = pending_timeout_seconds
        self._on_progress = on_progress

    def ingest(
        self,
        repository_id: str,
        force: bool = False,
        cancel: threading.Event | None = None,
    ) -> IngestResult:
        """Ingest *repository_id*; a no-op if already ingested and not *force*.

        Raises:
            PreconditionError: Another ingestion of the repository holds a live claim.
            IngestionCancelled: *cancel* was set; the row stays ``pending``.
            RepolensError: Any failure in fetch/embed/index/store (row marked ``failed``).
        """
        owner, name = parse_repository_id(repository_id)

        existing = self._registry.get(repository_id)
        if existing is not None and existing.status == RepoStatus.INGESTED and not force:
            logger.info("%s already ingested (%d chunks); skipping", repository_id, existing.chunk_count)
            return IngestResult(
                repository_id=repository_id,
                status=existing.status,
                file_count=existing.file_count,
                chunk_count=existing.chunk_count,
                already_ingested=True,
            )

        token = self._registry.claim(repository_id, owner, name, self._pending_timeout)
        if token is None:
            raise PreconditionError(
                f"Ingestion of {repository_id} is already in progress.",
                repository_id=repository_id,
                status=RepoStatus.PENDING.value,
            )

        try:
            if existing is not None:
                self._teardown(repository_id)
            result = self._build(repository_id, token, cancel)
        except IngestionCancelled:
            logger.warning("Ingestion of %s cancelled; left pending", repository_id)
            if not self._registry.release(repository_id, token):
                logger.warning("Claim on %s was already taken over", repository_id)
            raise
        except RepolensError:
            self._abandon(repository_id, token)
            raise
        except Exception as exc:
            logger.error("Ingestion of %s failed: %s", repository_id, exc)
            self._abandon(repository_id, token)
            raise UpstreamError(f"Ingestion failed: {exc}", repository_id=repository_id) from exc

        logger.info(
            "Ingestion complete for %s: %d files, %d chunks",
            repository_id,
            result.file_count,
            result.chunk_count,
        )
        return result

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _build(
        self, repository_id: str, token: str, cancel: threading.Event | None
    ) -> IngestResult:
        self._progress("Fetching files…")
        snapshot = self._fetcher.fetch(repository_id)
        _check_cancel(cancel, repository_id)
        logger.info("Ingesting %d files from %s", len(snapshot.files), repository_id)

        chunks, file_count, truncated = self._chunk_files(repository_id, snapshot.files, cancel)
        if not chunks:
            logger.warning("%s produced no chunks", repository_id)

        def embed_checkpoint(number: int, total: int) -> None:
            self._progress(f"Embedding batch {number}/{total}…")
            _check_cancel(cancel, repository_id)

        vectors = self._embedder.embed_documents([c.text for c in chunks], on_batch=embed_checkpoint)
        if len(vectors) != len(chunks):
            raise UpstreamError(
                f"Embedder returned {len(vectors)} vectors for {len(chunks)} chunks",
                repository_id=repository_id,
            )

        def upsert_checkpoint(number: int, total: int) -> None:
            self._progress(f"Upserting vectors {number}/{total}…")
            _check_cancel(cancel, repository_id)
            self._check_claim(repository_id, token)

        records = [
            VectorRecord(
                id=chunk.id,
                vector=vector,
                repository_id=repository_id,
                file_path=chunk.file_path,
                chunk_index=chunk.chunk_index,
            )
            for chunk, vector in zip(chunks, vectors)
        ]
        self._check_claim(repository_id, token)
        self._index.upsert(records, on_batch=upsert_checkpoint)

        self._progress("Writing chunks…")
        self._check_claim(repository_id, token)
        self._chunks.replace_for_repository(repository_id, chunks)

        self._registry.mark_ingested(
            repository_id,
            token,
            file_count=file_count,
            chunk_count=len(chunks),
            default_branch=snapshot.default_branch,
        )
        return IngestResult(
            repository_id=repository_id,
            status=RepoStatus.INGESTED,
            file_count=file_count,
            chunk_count=len(chunks),
            truncated=truncated,
        )

    def _chunk_files(
        self,
        repository_id: str,
        files: Sequence[SourceFile],
        cancel: threading.Event | None,
    ) -> tuple[list[Chunk], int, bool]:
        """Redact and chunk *files* in order, stopping exactly at the ceiling.

        Returns ``(chunks, files_processed, truncated)``.
        """
        chunks: list[Chunk] = []
        processed = 0
        truncated = False
        for source in files:
            _check_cancel(cancel, repository_id)
            if len(chunks) >= self._max_chunks:
                truncated = True
                break
            text = redact_secrets(source.text)
            if text != source.text:
                logger.debug("Redacted secrets in %s", source.path)
            file_chunks = self._chunker.chunk(text, source.path, repository_id)
            room = self._max_chunks - len(chunks)
            if len(file_chunks) > room:
                file_chunks = file_chunks[:room]
                truncated = True
            chunks.extend(file_chunks)
            processed += 1
            if truncated:
                break

        if truncated:
            logger.warning(
                "Chunk limit (%d) reached for %s; stopping early after %d files",
                self._max_chunks,
                repository_id,
                processed,
            )
        return chunks, processed, truncated

    def _teardown(self, repository_id: str) -> None:
        """Delete every stored vector and chunk of *repository_id*.

        Index ids are included so vectors that never reached the chunk store
        (an attempt that died between upsert and store) are removed too.
        """
        self._progress("Removing previous data…")
        ids = self._chunks.ids_for_repository(repository_id)
        known = set(ids)
        ids.extend(i for i in self._index.ids_for_repository(repository_id) if i not in known)
        removed = self._index.delete(ids)
        dropped = self._chunks.delete_for_repository(repository_id)
        logger.info(
            "Cleaned up %d old vectors and %d chunks for %s", removed, dropped, repository_id
        )

    def _check_claim(self, repository_id: str, token: str) -> None:
        if not self._registry.holds(repository_id, token):
            raise PreconditionError(
                f"Ingestion of {repository_id} lost its claim to another attempt.",
                repository_id=repository_id,
                status=RepoStatus.PENDING.value,
            )

    def _abandon(self, repository_id: str, token: str) -> None:
        if not self._registry.mark_failed(repository_id, token):
            logger.warning(
                "Claim on %s was taken over; leaving its status to the new attempt",
                repository_id,
            )

    def _progress(self, message: str) -> None:
        if self._on_progress is not None:
            self._on_progress(message)


def _check_cancel(cancel: threading.Event | None, repository_id: str) -> None:
    if cancel is not None and cancel.is_set():
        raise IngestionCancelled(repository_id)
