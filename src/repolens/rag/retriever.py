"""Hydration of vector matches against the chunk store.

The vector index and the chunk store are written separately, so they can
drift apart. ``reconcile_matches`` is the single place that policy lives:
ids missing from the chunk store are dropped, and an empty result means the
repository must be re-ingested.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from repolens.db.models import Chunk, VectorMatch
from repolens.errors import ConsistencyError

logger = logging.getLogger(__name__)


@dataclass
class RetrievedChunk:
    """A hydrated chunk with the similarity score of its vector match."""

    chunk: Chunk
    score: float

    def label(self) -> str:
        """Provenance-labelled text handed to prompt builders."""
        return (
            f"--- File: {self.chunk.file_path} "
            f"(chunk {self.chunk.chunk_index}, score: {self.score:.3f}) ---\n"
            f"{self.chunk.text}"
        )


def reconcile_matches(
    matches: Sequence[VectorMatch],
    chunks_by_id: Mapping[str, Chunk],
    repository_id: str | None = None,
) -> list[RetrievedChunk]:
    """Join *matches* with their chunks, in match (rank) order.

    Raises:
        ConsistencyError: None of the matched ids exist in the chunk store.
    """
    hydrated: list[RetrievedChunk] = []
    missing: list[str] = []
    for match in matches:
        chunk = chunks_by_id.get(match.id)
        if chunk is None:
            missing.append(match.id)
            continue
        hydrated.append(RetrievedChunk(chunk=chunk, score=match.score))

    if missing:
        logger.warning(
            "Dropped %d vector matches with no stored chunk text: %s",
            len(missing),
            ", ".join(missing),
        )
    if not hydrated:
        raise ConsistencyError(
            "Chunk text not found in the chunk store. Re-ingest the repository.",
            repository_id=repository_id,
        )
    return hydrated


def format_labels(retrieved: Sequence[RetrievedChunk]) -> list[str]:
    return [r.label() for r in retrieved]
