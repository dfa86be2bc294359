"""repolens storage layer: registry, chunk store, vector index, migrations."""

from repolens.db.chunk_store import ChunkStore
from repolens.db.connection import Database, sqlite_vec_version
from repolens.db.migrations import MIGRATIONS, run_migrations
from repolens.db.registry import RepositoryRegistry
from repolens.db.schema import initialize
from repolens.db.vector_index import VectorIndex
from repolens.db.vectors import ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "ChunkStore",
    "Database",
    "MIGRATIONS",
    "RepositoryRegistry",
    "VectorIndex",
    "ensure_vec_table",
    "initialize",
    "model_to_slug",
    "run_migrations",
    "sqlite_vec_version",
    "vec_table_name",
]
