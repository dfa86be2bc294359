"""Tests for the retrieval engine's gate, ordering, and cache behaviour."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from repolens.db.models import Chunk, RepoStatus, RepositoryRecord, VectorMatch
from repolens.errors import (
    ConsistencyError,
    MalformedResponseError,
    NotFoundError,
    PreconditionError,
)
from repolens.rag.cache import ResponseCache
from repolens.rag.engine import RagEngine

REPO = "https://github.com/acme/widgets"


def _record(status: RepoStatus) -> RepositoryRecord:
    return RepositoryRecord(repository_id=REPO, owner="acme", name="widgets", status=status)


def _chunk(id: str, text: str) -> Chunk:
    return Chunk(
        id=id, repository_id=REPO, file_path=f"src/{id}.py", chunk_index=0,
        start=0, end=len(text), token_count=1, text=text,
    )


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 6, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def parts(tmp_db, clock):
    registry = MagicMock()
    registry.get.return_value = _record(RepoStatus.INGESTED)
    index = MagicMock()
    index.query.return_value = [
        VectorMatch(id="A", score=0.9, file_path="src/A.py", chunk_index=0),
        VectorMatch(id="B", score=0.7, file_path="src/B.py", chunk_index=0),
        VectorMatch(id="C", score=0.5, file_path="src/C.py", chunk_index=0),
    ]
    chunk_store = MagicMock()
    # Deliberately not in rank order.
    chunk_store.get_many.return_value = {
        "C": _chunk("C", "gamma"),
        "B": _chunk("B", "beta"),
        "A": _chunk("A", "alpha"),
    }
    embedder = MagicMock()
    embedder.embed_query.return_value = [0.1, 0.2, 0.3]
    generator = MagicMock()
    generator.complete.return_value = "  the answer \n"
    cache = ResponseCache(tmp_db, ttl_seconds=600, clock=clock)
    return registry, chunk_store, index, embedder, generator, cache


@pytest.fixture
def engine(parts):
    return RagEngine(*parts)


def _echo_builder(seen: list):
    def build(chunks):
        seen.append(list(chunks))
        return "PROMPT"
    return build


@pytest.mark.parametrize("status", [RepoStatus.PENDING, RepoStatus.FAILED])
def test_gate_blocks_before_embedding(engine, parts, status):
    registry, _, index, embedder, generator, _ = parts
    registry.get.return_value = _record(status)
    with pytest.raises(PreconditionError) as exc_info:
        engine.query(REPO, "workflow", "q", _echo_builder([]))
    assert exc_info.value.status == status.value
    embedder.embed_query.assert_not_called()
    index.query.assert_not_called()
    generator.complete.assert_not_called()


def test_gate_unknown_repository(engine, parts):
    registry, _, _, embedder, _, _ = parts
    registry.get.return_value = None
    with pytest.raises(PreconditionError, match="Ingest it first"):
        engine.query(REPO, "workflow", "q", _echo_builder([]))
    embedder.embed_query.assert_not_called()


def test_gate_checked_before_cache(engine, parts):
    registry, _, _, _, generator, cache = parts
    cache.put("workflow", REPO, "workflow", "cached")
    registry.get.return_value = _record(RepoStatus.FAILED)
    with pytest.raises(PreconditionError):
        engine.query(REPO, "workflow", "q", _echo_builder([]), target="workflow")


def test_prompt_input_follows_rank_order(engine):
    seen: list = []
    answer = engine.query(REPO, "workflow", "how does it start", _echo_builder(seen))
    assert answer == "the answer"
    labels = seen[0]
    assert [label.split("\n")[1] for label in labels] == ["alpha", "beta", "gamma"]
    assert labels[0].startswith("--- File: src/A.py (chunk 0, score: 0.900) ---")


def test_query_passes_top_k_and_file_filter(engine, parts):
    _, _, index, _, _, _ = parts
    engine.query(REPO, "explain_file", "q", _echo_builder([]), target="src/A.py", top_k=10, file_path="src/A.py")
    index.query.assert_called_once_with([0.1, 0.2, 0.3], REPO, 10, file_path="src/A.py")


def test_zero_matches_is_not_found_without_chunk_lookup(engine, parts):
    _, chunk_store, index, _, generator, _ = parts
    index.query.return_value = []
    with pytest.raises(NotFoundError, match="re-ingested"):
        engine.query(REPO, "workflow", "q", _echo_builder([]), top_k=3)
    chunk_store.get_many.assert_not_called()
    generator.complete.assert_not_called()


def test_empty_hydration_is_consistency_error(engine, parts):
    _, chunk_store, _, _, generator, _ = parts
    chunk_store.get_many.return_value = {}
    with pytest.raises(ConsistencyError):
        engine.query(REPO, "workflow", "q", _echo_builder([]))
    generator.complete.assert_not_called()


def test_partial_hydration_drops_missing(engine, parts):
    _, chunk_store, _, _, _, _ = parts
    chunk_store.get_many.return_value = {"C": _chunk("C", "gamma"), "A": _chunk("A", "alpha")}
    seen: list = []
    engine.query(REPO, "workflow", "q", _echo_builder(seen))
    assert [label.split("\n")[1] for label in seen[0]] == ["alpha", "gamma"]


def test_cache_hit_skips_generation(engine, parts):
    _, _, _, embedder, generator, _ = parts
    first = engine.query(REPO, "architecture", "q", _echo_builder([]), target="architecture")
    second = engine.query(REPO, "architecture", "q", _echo_builder([]), target="architecture")
    assert first == second == "the answer"
    assert generator.complete.call_count == 1
    assert embedder.embed_query.call_count == 1


def test_cache_expiry_regenerates_and_overwrites(engine, parts, clock):
    _, _, _, _, generator, cache = parts
    engine.query(REPO, "architecture", "q", _echo_builder([]), target="architecture")
    clock.now += timedelta(seconds=601)
    generator.complete.return_value = "fresh answer"
    assert engine.query(REPO, "architecture", "q", _echo_builder([]), target="architecture") == "fresh answer"
    assert generator.complete.call_count == 2
    assert cache.get("architecture", REPO, "architecture") == "fresh answer"


def test_targets_cached_separately(engine, parts):
    _, _, _, _, generator, _ = parts
    engine.query(REPO, "explain_file", "q", _echo_builder([]), target="src/A.py")
    engine.query(REPO, "explain_file", "q", _echo_builder([]), target="src/B.py")
    assert generator.complete.call_count == 2


def test_non_cacheable_feature_always_generates(engine, parts):
    _, _, _, _, generator, cache = parts
    engine.query(REPO, "ask_repo", "what is this", _echo_builder([]), target="ask_repo")
    engine.query(REPO, "ask_repo", "what is this", _echo_builder([]), target="ask_repo")
    assert generator.complete.call_count == 2
    assert cache.get("ask_repo", REPO, "ask_repo") is None


def test_empty_model_output_is_malformed(engine, parts):
    _, _, _, _, generator, cache = parts
    generator.complete.return_value = "   "
    with pytest.raises(MalformedResponseError):
        engine.query(REPO, "workflow", "q", _echo_builder([]), target="workflow")
    assert cache.get("workflow", REPO, "workflow") is None


def test_postprocess_applied_before_caching(engine, parts):
    _, _, _, _, _, cache = parts
    answer = engine.query(
        REPO, "workflow", "q", _echo_builder([]), target="workflow", postprocess=str.upper
    )
    assert answer == "THE ANSWER"
    assert cache.get("workflow", REPO, "workflow") == "THE ANSWER"


def test_postprocess_failure_not_cached(engine, parts):
    _, _, _, _, _, cache = parts

    def reject(_text):
        raise MalformedResponseError("bad shape")

    with pytest.raises(MalformedResponseError):
        engine.query(REPO, "architecture", "q", _echo_builder([]), target="architecture", postprocess=reject)
    assert cache.get("architecture", REPO, "architecture") is None


# ------------------------------------------------------------------
# require_file
# ------------------------------------------------------------------


@pytest.mark.parametrize("path", ["/etc/passwd", "\\windows\\x", "../secrets.py", "src/../../x.py"])
def test_require_file_rejects_unsafe_paths(engine, parts, path):
    registry = parts[0]
    with pytest.raises(PreconditionError, match="Invalid file path"):
        engine.require_file(REPO, path)
    registry.get.assert_not_called()


def test_require_file_allows_dots_in_names(engine, parts):
    chunk_store = parts[1]
    chunk_store.has_file.return_value = True
    engine.require_file(REPO, "src/..hidden..py")


def test_require_file_missing(engine, parts):
    chunk_store = parts[1]
    chunk_store.has_file.return_value = False
    with pytest.raises(NotFoundError, match="src/missing.py"):
        engine.require_file(REPO, "src/missing.py")
