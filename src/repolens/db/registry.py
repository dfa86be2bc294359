"""Repository registry: one ingestion state row per repository.

Status moves ``pending -> ingested`` or ``pending -> failed`` within one
attempt. Entering ``pending`` is a compare-and-swap (see ``claim``) that hands
the attempt a claim token. Finalizing, releasing and ``holds`` all match on
that token, so an attempt whose stale claim was taken over can no longer
change the row.
"""

from __future__ import annotations

import sqlite3
import uuid

from repolens.db.models import RepoStatus, RepositoryRecord
from repolens.errors import PreconditionError

_COLUMNS = (
    "repository_id, owner, name, default_branch, file_count, chunk_count, "
    "status, ingested_at, claimed_at, updated_at"
)


class RepositoryRegistry:
    """Data access for the ``repositories`` table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get(self, repository_id: str) -> RepositoryRecord | None:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM repositories WHERE repository_id = ?",
            (repository_id,),
        ).fetchone()
        return _row_to_record(row) if row else None

    def list_all(self) -> list[RepositoryRecord]:
        rows = self._conn.execute(
            f"SELECT {_COLUMNS} FROM repositories ORDER BY repository_id"
        ).fetchall()
        return [_row_to_record(r) for r in rows]

    def claim(
        self,
        repository_id: str,
        owner: str,
        name: str,
        stale_after_seconds: int = 3600,
    ) -> str | None:
        """Create the row or reset it to ``pending`` under a fresh claim token.

        Returns the token, or ``None`` while another attempt holds a live
        claim: the row is ``pending`` with a ``claimed_at`` younger than
        *stale_after_seconds*. Counts are reset; ``ingested_at`` is kept
        until the new attempt finishes.
        """
        token = uuid.uuid4().hex
        cur = self._conn.execute(
            """
            INSERT INTO repositories
                (repository_id, owner, name, status, claim_token, claimed_at, updated_at)
            VALUES (?, ?, ?, 'pending', ?, datetime('now'), datetime('now'))
            ON CONFLICT(repository_id) DO UPDATE SET
                owner = excluded.owner,
                name = excluded.name,
                status = 'pending',
                file_count = 0,
                chunk_count = 0,
                claim_token = excluded.claim_token,
                claimed_at = datetime('now'),
                updated_at = datetime('now')
            WHERE repositories.status != 'pending'
               OR repositories.claimed_at IS NULL
               OR repositories.claimed_at < datetime('now', ?)
            """,
            (repository_id, owner, name, token, f"-{int(stale_after_seconds)} seconds"),
        )
        self._conn.commit()
        return token if cur.rowcount == 1 else None

    def holds(self, repository_id: str, token: str) -> bool:
        """True while *token* is still the live claim on *repository_id*."""
        row = self._conn.execute(
            """
            SELECT 1 FROM repositories
            WHERE repository_id = ? AND status = 'pending' AND claim_token = ?
            """,
            (repository_id, token),
        ).fetchone()
        return row is not None

    def release(self, repository_id: str, token: str) -> bool:
        """Drop the claim but leave the row ``pending`` (safe to retry).

        Returns False when *token* no longer holds the claim.
        """
        cur = self._conn.execute(
            """
            UPDATE repositories SET
                claim_token = NULL,
                claimed_at = NULL,
                updated_at = datetime('now')
            WHERE repository_id = ? AND status = 'pending' AND claim_token = ?
            """,
            (repository_id, token),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def mark_ingested(
        self,
        repository_id: str,
        token: str,
        file_count: int,
        chunk_count: int,
        default_branch: str = "main",
    ) -> None:
        """Finish the attempt holding *token*.

        Raises:
            PreconditionError: *token* no longer holds the claim.
        """
        cur = self._conn.execute(
            """
            UPDATE repositories SET
                status = 'ingested',
                file_count = ?,
                chunk_count = ?,
                default_branch = ?,
                ingested_at = datetime('now'),
                claim_token = NULL,
                claimed_at = NULL,
                updated_at = datetime('now')
            WHERE repository_id = ? AND status = 'pending' AND claim_token = ?
            """,
            (file_count, chunk_count, default_branch, repository_id, token),
        )
        self._conn.commit()
        if cur.rowcount != 1:
            raise PreconditionError(
                f"Ingestion of {repository_id} lost its claim to another attempt.",
                repository_id=repository_id,
                status=RepoStatus.PENDING.value,
            )

    def mark_failed(self, repository_id: str, token: str) -> bool:
        """Mark the attempt holding *token* failed. False if the claim was lost."""
        cur = self._conn.execute(
            """
            UPDATE repositories SET
                status = 'failed',
                claim_token = NULL,
                claimed_at = NULL,
                updated_at = datetime('now')
            WHERE repository_id = ? AND status = 'pending' AND claim_token = ?
            """,
            (repository_id, token),
        )
        self._conn.commit()
        return cur.rowcount == 1


def _row_to_record(row: sqlite3.Row) -> RepositoryRecord:
    return RepositoryRecord(
        repository_id=row["repository_id"],
        owner=row["owner"],
        name=row["name"],
        default_branch=row["default_branch"],
        file_count=row["file_count"],
        chunk_count=row["chunk_count"],
        status=RepoStatus(row["status"]),
        ingested_at=row["ingested_at"],
        claimed_at=row["claimed_at"],
        updated_at=row["updated_at"],
    )
