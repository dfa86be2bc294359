"""Chunk store: full chunk text + provenance, keyed by vector record id.

The store is rebuilt wholesale per repository on every (re-)ingestion; it is
never patched incrementally.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Sequence

from repolens.db.models import Chunk

_CHUNK_COLUMNS = (
    "id, repository_id, file_path, chunk_index, start_char, end_char, "
    "token_count, text, created_at"
)

# SQLite's default host-parameter limit is 999 on older builds.
_LOOKUP_BATCH = 500


class ChunkStore:
    """Data access for the ``chunks`` table.

    Wraps an open sqlite3.Connection owned by the caller.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def insert_many(self, chunks: Iterable[Chunk]) -> int:
        """Insert chunks in one transaction. Returns the number inserted."""
        rows = [_chunk_to_row(c) for c in chunks]
        try:
            self._conn.executemany(
                """
                INSERT INTO chunks
                    (id, repository_id, file_path, chunk_index, start_char, end_char, token_count, text)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            self._conn.commit()
        except sqlite3.Error:
            self._conn.rollback()
            raise
        return len(rows)

    def replace_for_repository(self, repository_id: str, chunks: Sequence[Chunk]) -> int:
        """Delete every chunk of *repository_id*, then insert *chunks* (one transaction)."""
        for chunk in chunks:
            if chunk.repository_id != repository_id:
                raise ValueError(
                    f"Chunk '{chunk.id}' belongs to '{chunk.repository_id}', not '{repository_id}'"
                )
        try:
            self._conn.execute("DELETE FROM chunks WHERE repository_id = ?", (repository_id,))
            self._conn.executemany(
                """
                INSERT INTO chunks
                    (id, repository_id, file_path, chunk_index, start_char, end_char, token_count, text)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [_chunk_to_row(c) for c in chunks],
            )
            self._conn.commit()
        except sqlite3.Error:
            self._conn.rollback()
            raise
        return len(chunks)

    def delete_for_repository(self, repository_id: str) -> int:
        """Delete all chunks of *repository_id*. Returns the number removed."""
        cur = self._conn.execute("DELETE FROM chunks WHERE repository_id = ?", (repository_id,))
        self._conn.commit()
        return cur.rowcount

    def get_many(self, ids: Sequence[str]) -> dict[str, Chunk]:
        """Return ``{id: Chunk}`` for the ids that exist. Carries no ordering."""
        found: dict[str, Chunk] = {}
        unique = list(dict.fromkeys(ids))
        for start in range(0, len(unique), _LOOKUP_BATCH):
            batch = unique[start : start + _LOOKUP_BATCH]
            placeholders = ",".join("?" * len(batch))
            rows = self._conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE id IN ({placeholders})",  # noqa: S608
                batch,
            ).fetchall()
            for row in rows:
                found[row["id"]] = _row_to_chunk(row)
        return found

    def ids_for_repository(self, repository_id: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT id FROM chunks WHERE repository_id = ? ORDER BY file_path, chunk_index",
            (repository_id,),
        ).fetchall()
        return [r[0] for r in rows]

    def has_file(self, repository_id: str, file_path: str) -> bool:
        """True if at least one chunk of *file_path* was ingested for *repository_id*."""
        row = self._conn.execute(
            "SELECT 1 FROM chunks WHERE repository_id = ? AND file_path = ? LIMIT 1",
            (repository_id, file_path),
        ).fetchone()
        return row is not None

    def count_for_repository(self, repository_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE repository_id = ?", (repository_id,)
        ).fetchone()[0]

    def list_files(self, repository_id: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT DISTINCT file_path FROM chunks WHERE repository_id = ? ORDER BY file_path",
            (repository_id,),
        ).fetchall()
        return [r[0] for r in rows]


def _chunk_to_row(chunk: Chunk) -> tuple:
    return (
        chunk.id,
        chunk.repository_id,
        chunk.file_path,
        chunk.chunk_index,
        chunk.start,
        chunk.end,
        chunk.token_count,
        chunk.text,
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        repository_id=row["repository_id"],
        file_path=row["file_path"],
        chunk_index=row["chunk_index"],
        start=row["start_char"],
        end=row["end_char"],
        token_count=row["token_count"],
        text=row["text"],
        created_at=row["created_at"],
    )
