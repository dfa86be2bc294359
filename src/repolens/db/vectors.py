"""vec0 virtual tables, one per embedding model.

A model's slug names its table (its namespace in the vector index). Each
table carries ``repository_id`` as a partition key and ``file_path`` as a
metadata column, so repository and file filters run inside the KNN scan.
"""

from __future__ import annotations

import re
import sqlite3

_TABLE_PREFIX = "vec_chunks_"
_SLUG_RE = re.compile(r"[a-z0-9_]+")
_DIMENSIONS_RE = re.compile(r"embedding\s+float\[(\d+)\]", re.IGNORECASE)


def model_to_slug(model: str) -> str:
    """``openai/text-embedding-3-small`` -> ``openai_text_embedding_3_small``."""
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str) -> str:
    return f"{_TABLE_PREFIX}{model_slug}"


def vec_table_exists(conn: sqlite3.Connection, table: str) -> bool:
    return _table_sql(conn, table) is not None


def vec_table_dimensions(conn: sqlite3.Connection, table: str) -> int | None:
    """Vector length *table* was created with, or ``None`` if it does not exist."""
    sql = _table_sql(conn, table)
    if sql is None:
        return None
    match = _DIMENSIONS_RE.search(sql)
    return int(match.group(1)) if match else None


def ensure_vec_table(conn: sqlite3.Connection, model_slug: str, dimensions: int) -> str:
    """Create the vec0 table for *model_slug* unless it exists. Returns its name.

    Raises:
        ValueError: *model_slug* is not sanitized, *dimensions* < 1, or the
            existing table was created with a different vector length.
    """
    if not _SLUG_RE.fullmatch(model_slug):
        raise ValueError(f"Invalid model_slug '{model_slug}'; sanitize it with model_to_slug().")
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_slug)
    existing = vec_table_dimensions(conn, table)
    if existing is None:
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING vec0("
            "repository_id text partition key, "
            "file_path text, "
            f"embedding float[{dimensions}] distance_metric=cosine)"
        )
        conn.commit()
    elif existing != dimensions:
        raise ValueError(
            f"Vector table '{table}' holds {existing}-dimension vectors but "
            f"{dimensions} were configured. Set embedding.dimensions to {existing} "
            "or use a fresh database."
        )
    return table


def _table_sql(conn: sqlite3.Connection, table: str) -> str | None:
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row[0] if row else None
