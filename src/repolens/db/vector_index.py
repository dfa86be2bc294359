"""Namespaced nearest-neighbour index over sqlite-vec.

String record ids are mapped to the integer rowids vec0 requires through the
``vector_records`` table, which also holds the per-record metadata returned
with each match. One namespace = one embedding model = one vec0 table.

Scores are ``1 - cosine distance``: higher is more relevant, not a probability.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable, Sequence

from repolens.db.models import VectorMatch, VectorRecord
from repolens.db.vectors import ensure_vec_table, model_to_slug
from repolens.errors import UpstreamError

logger = logging.getLogger(__name__)

BatchCallback = Callable[[int, int], None]

DEFAULT_BATCH_SIZE = 100


class VectorIndex:
    """Batched upsert / filtered top-K query / batched delete.

    Args:
        conn: Open connection with sqlite-vec loaded and schema initialised.
        model: Embedding model string; its slug names the namespace.
        dimensions: Vector dimensionality of the namespace.
        batch_size: Max records (or ids) written per transaction.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        model: str,
        dimensions: int,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._conn = conn
        self.namespace = model_to_slug(model)
        self.dimensions = dimensions
        self.batch_size = batch_size
        self._table = ensure_vec_table(conn, self.namespace, dimensions)

    @property
    def table(self) -> str:
        return self._table

    # ------------------------------------------------------------------
    # Upsert
    # ------------------------------------------------------------------

    def upsert(
        self,
        records: Sequence[VectorRecord],
        on_batch: BatchCallback | None = None,
    ) -> int:
        """Overwrite-by-id in batches. Returns the number of records written.

        Raises:
            ValueError: A record's vector length differs from the namespace.
            UpstreamError: A batch failed to write; earlier batches stay written.
        """
        for record in records:
            if len(record.vector) != self.dimensions:
                raise ValueError(
                    f"Vector for '{record.id}' has {len(record.vector)} dimensions, "
                    f"index '{self.namespace}' expects {self.dimensions}"
                )

        total_batches = _batch_count(len(records), self.batch_size)
        written = 0
        for number, batch in enumerate(_batches(records, self.batch_size), start=1):
            try:
                for record in batch:
                    self._write_record(record)
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                logger.error("Vector upsert batch %d/%d failed: %s", number, total_batches, exc)
                raise UpstreamError(
                    f"Vector index upsert failed on batch {number} of {total_batches}: {exc}"
                ) from exc
            written += len(batch)
            logger.info("Upserted vector batch %d/%d (%d records)", number, total_batches, len(batch))
            if on_batch is not None:
                on_batch(number, total_batches)
        return written

    def _write_record(self, record: VectorRecord) -> None:
        self._conn.execute(
            """
            INSERT INTO vector_records (namespace, id, repository_id, file_path, chunk_index)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(namespace, id) DO UPDATE SET
                repository_id = excluded.repository_id,
                file_path = excluded.file_path,
                chunk_index = excluded.chunk_index
            """,
            (self.namespace, record.id, record.repository_id, record.file_path, record.chunk_index),
        )
        rowid = self._rowid_for(record.id)
        # vec0 has no upsert; replace the row under the same rowid.
        self._conn.execute(f"DELETE FROM {self._table} WHERE rowid = ?", (rowid,))
        self._conn.execute(
            f"INSERT INTO {self._table}(rowid, repository_id, file_path, embedding) VALUES (?, ?, ?, ?)",
            (rowid, record.repository_id, record.file_path, json.dumps(record.vector)),
        )

    def _rowid_for(self, record_id: str) -> int:
        row = self._conn.execute(
            "SELECT rowid FROM vector_records WHERE namespace = ? AND id = ?",
            (self.namespace, record_id),
        ).fetchone()
        return row[0]

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def query(
        self,
        vector: Sequence[float],
        repository_id: str,
        top_k: int,
        file_path: str | None = None,
    ) -> list[VectorMatch]:
        """Top-K matches within one repository (optionally one file), best first.

        An empty list means "no matches" and is not an error.

        Raises:
            UpstreamError: The index lookup itself failed.
        """
        if top_k < 1:
            raise ValueError("top_k must be >= 1")
        if len(vector) != self.dimensions:
            raise ValueError(
                f"Query vector has {len(vector)} dimensions, "
                f"index '{self.namespace}' expects {self.dimensions}"
            )

        knn = f"SELECT rowid, distance FROM {self._table} WHERE embedding MATCH ? AND k = ? AND repository_id = ?"
        params: list[object] = [json.dumps(list(vector)), top_k, repository_id]
        if file_path is not None:
            knn += " AND file_path = ?"
            params.append(file_path)
        sql = (
            f"WITH knn AS ({knn}) "
            "SELECT knn.distance AS distance, r.id AS id, r.file_path AS file_path, "
            "r.chunk_index AS chunk_index "
            "FROM knn JOIN vector_records r ON r.rowid = knn.rowid "
            "ORDER BY knn.distance"
        )

        try:
            rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise UpstreamError(f"Vector index query failed: {exc}", repository_id=repository_id) from exc

        if not rows:
            logger.warning(
                "Vector index returned 0 matches for repository=%s file_path=%s",
                repository_id,
                file_path,
            )

        return [
            VectorMatch(
                id=row["id"],
                score=1.0 - float(row["distance"]),
                file_path=row["file_path"],
                chunk_index=row["chunk_index"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, ids: Sequence[str], on_batch: BatchCallback | None = None) -> int:
        """Delete records by id in batches. Unknown ids are ignored.

        Returns the number of records actually removed. An empty *ids* is a no-op.
        """
        if not ids:
            logger.info("No vectors to delete in namespace %s", self.namespace)
            return 0

        total_batches = _batch_count(len(ids), self.batch_size)
        deleted = 0
        for number, batch in enumerate(_batches(ids, self.batch_size), start=1):
            placeholders = ",".join("?" * len(batch))
            try:
                rowids = [
                    r[0]
                    for r in self._conn.execute(
                        f"SELECT rowid FROM vector_records WHERE namespace = ? AND id IN ({placeholders})",
                        [self.namespace, *batch],
                    ).fetchall()
                ]
                if rowids:
                    row_placeholders = ",".join("?" * len(rowids))
                    self._conn.execute(
                        f"DELETE FROM {self._table} WHERE rowid IN ({row_placeholders})",  # noqa: S608
                        rowids,
                    )
                    self._conn.execute(
                        f"DELETE FROM vector_records WHERE rowid IN ({row_placeholders})",  # noqa: S608
                        rowids,
                    )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise UpstreamError(
                    f"Vector index delete failed on batch {number} of {total_batches}: {exc}"
                ) from exc
            deleted += len(rowids)
            logger.info("Deleted %d vectors (batch %d/%d)", len(rowids), number, total_batches)
            if on_batch is not None:
                on_batch(number, total_batches)
        return deleted

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def ids_for_repository(self, repository_id: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT id FROM vector_records WHERE namespace = ? AND repository_id = ? ORDER BY rowid",
            (self.namespace, repository_id),
        ).fetchall()
        return [r[0] for r in rows]

    def count(self, repository_id: str | None = None) -> int:
        if repository_id is None:
            return self._conn.execute(
                "SELECT COUNT(*) FROM vector_records WHERE namespace = ?", (self.namespace,)
            ).fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM vector_records WHERE namespace = ? AND repository_id = ?",
            (self.namespace, repository_id),
        ).fetchone()[0]


def _batches(items: Sequence, size: int):
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _batch_count(n: int, size: int) -> int:
    return (n + size - 1) // size
