"""Embedder: batched document embeddings and single query embeddings via LiteLLM.

Both modes use the same model so query vectors live in the document space.
Providers that distinguish the two input kinds (Cohere) get ``input_type``
``search_document`` / ``search_query``.

No retries here: a failed batch aborts the caller's ingestion attempt.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

import litellm

from repolens.errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 96

_INPUT_TYPE_PROVIDERS = frozenset(["cohere", "cohere_chat", "bedrock"])


class Embedder:
    """Convert texts to fixed-dimension vectors.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        batch_size: Max texts per ``litellm.embedding()`` call.
        dimensions: Expected vector length; ``None`` skips the check.
    """

    def __init__(
        self,
        model: str,
        batch_size: int = DEFAULT_BATCH_SIZE,
        dimensions: int | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.model = model
        self.batch_size = batch_size
        self.dimensions = dimensions

    def embed_documents(
        self,
        texts: Sequence[str],
        on_batch: Callable[[int, int], None] | None = None,
    ) -> list[list[float]]:
        """Embed *texts* in order; the i-th vector belongs to the i-th text."""
        vectors: list[list[float]] = []
        total = (len(texts) + self.batch_size - 1) // self.batch_size
        for number, start in enumerate(range(0, len(texts), self.batch_size), start=1):
            batch = list(texts[start : start + self.batch_size])
            logger.info("Embedding batch %d of %d", number, total)
            vectors.extend(self._embed(batch, "search_document"))
            if on_batch is not None:
                on_batch(number, total)
        return vectors

    def embed_query(self, text: str) -> list[float]:
        return self._embed([text], "search_query")[0]

    def _embed(self, batch: list[str], input_type: str) -> list[list[float]]:
        kwargs: dict = {"model": self.model, "input": batch}
        if self._provider() in _INPUT_TYPE_PROVIDERS:
            kwargs["input_type"] = input_type
        try:
            response = litellm.embedding(**kwargs)
        except Exception as exc:
            logger.error("Embedding call to %s failed: %s", self.model, exc)
            raise UpstreamError(f"Embedding service error ({self.model}): {exc}") from exc

        vectors = [list(item["embedding"]) for item in response.data]
        if len(vectors) != len(batch):
            raise UpstreamError(
                f"Embedding service returned {len(vectors)} vectors for {len(batch)} texts"
            )
        if self.dimensions is not None:
            for vector in vectors:
                if len(vector) != self.dimensions:
                    raise UpstreamError(
                        f"Embedding model {self.model} returned {len(vector)} dimensions, "
                        f"expected {self.dimensions}"
                    )
        return vectors

    def _provider(self) -> str:
        return self.model.split("/")[0].lower() if "/" in self.model else "openai"
