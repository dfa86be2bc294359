"""Closed error taxonomy shared by ingestion and retrieval.

Every failure a caller can act on is one of five kinds. Callers dispatch on
``exc.kind`` (see ``repolens.cli.errors``), never on the message text.

  precondition        repository unknown / still pending / previously failed
  not_found           no vector matches, or target file absent from the ingested set
  consistency         vector index and chunk store drifted apart, re-ingest
  upstream            embedding / vector / generative service failure (retryable)
  malformed_response  model output does not have the shape a feature expects (retryable)
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    PRECONDITION = "precondition"
    NOT_FOUND = "not_found"
    CONSISTENCY = "consistency"
    UPSTREAM = "upstream"
    MALFORMED_RESPONSE = "malformed_response"


class RepolensError(Exception):
    """Base class for all user-actionable repolens failures."""

    kind: ErrorKind
    retryable: bool = False

    def __init__(self, message: str, *, repository_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.repository_id = repository_id


class PreconditionError(RepolensError):
    """The repository is not in a state that allows the requested operation."""

    kind = ErrorKind.PRECONDITION

    def __init__(
        self,
        message: str,
        *,
        repository_id: str | None = None,
        status: str | None = None,
    ) -> None:
        super().__init__(message, repository_id=repository_id)
        self.status = status


class NotFoundError(RepolensError):
    kind = ErrorKind.NOT_FOUND


class ConsistencyError(RepolensError):
    kind = ErrorKind.CONSISTENCY


class UpstreamError(RepolensError):
    kind = ErrorKind.UPSTREAM
    retryable = True


class MalformedResponseError(RepolensError):
    kind = ErrorKind.MALFORMED_RESPONSE
    retryable = True


class IngestionCancelled(Exception):
    """Raised between batches when the caller cancels a running ingestion."""

    def __init__(self, repository_id: str) -> None:
        super().__init__(f"Ingestion of {repository_id} was cancelled")
        self.repository_id = repository_id
