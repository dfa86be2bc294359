"""Tests for the namespaced sqlite-vec index."""

from __future__ import annotations

import pytest

from repolens.db.models import VectorRecord
from repolens.db.vector_index import VectorIndex
from repolens.errors import UpstreamError

REPO = "https://github.com/acme/widgets"
MODEL = "openai/text-embedding-3-small"


@pytest.fixture
def index(tmp_db):
    return VectorIndex(tmp_db, MODEL, dimensions=3, batch_size=2)


def _record(id: str, vector, repo: str = REPO, path: str = "src/a.py", idx: int = 0) -> VectorRecord:
    return VectorRecord(id=id, vector=list(vector), repository_id=repo, file_path=path, chunk_index=idx)


def test_namespace_is_model_slug(index):
    assert index.namespace == "openai_text_embedding_3_small"
    assert index.table == "vec_chunks_openai_text_embedding_3_small"


def test_invalid_batch_size_rejected(tmp_db):
    with pytest.raises(ValueError, match="batch_size"):
        VectorIndex(tmp_db, MODEL, dimensions=3, batch_size=0)


def test_upsert_returns_count_and_reports_batches(index):
    calls = []
    records = [_record(f"r{i}", [1.0, float(i), 0.0], idx=i) for i in range(5)]
    written = index.upsert(records, on_batch=lambda n, total: calls.append((n, total)))
    assert written == 5
    assert calls == [(1, 3), (2, 3), (3, 3)]
    assert index.count(REPO) == 5


def test_upsert_rejects_wrong_dimensions(index):
    with pytest.raises(ValueError, match="dimensions"):
        index.upsert([_record("bad", [1.0, 0.0])])
    assert index.count() == 0


def test_upsert_overwrites_by_id(index):
    index.upsert([_record("r1", [1.0, 0.0, 0.0], path="old.py")])
    index.upsert([_record("r1", [0.0, 1.0, 0.0], path="new.py")])
    assert index.count() == 1
    matches = index.query([0.0, 1.0, 0.0], REPO, top_k=1)
    assert matches[0].id == "r1"
    assert matches[0].file_path == "new.py"
    assert matches[0].score == pytest.approx(1.0, abs=1e-5)


def test_query_returns_best_first(index):
    index.upsert([
        _record("far", [0.0, 0.0, 1.0], idx=0),
        _record("near", [1.0, 0.1, 0.0], idx=1),
        _record("exact", [1.0, 0.0, 0.0], idx=2),
    ])
    matches = index.query([1.0, 0.0, 0.0], REPO, top_k=3)
    assert [m.id for m in matches] == ["exact", "near", "far"]
    scores = [m.score for m in matches]
    assert scores == sorted(scores, reverse=True)


def test_query_respects_top_k(index):
    index.upsert([_record(f"r{i}", [1.0, float(i), 0.0], idx=i) for i in range(4)])
    assert len(index.query([1.0, 0.0, 0.0], REPO, top_k=2)) == 2


def test_query_scoped_to_repository(index):
    index.upsert([
        _record("mine", [1.0, 0.0, 0.0]),
        _record("theirs", [1.0, 0.0, 0.0], repo="https://github.com/other/repo"),
    ])
    matches = index.query([1.0, 0.0, 0.0], REPO, top_k=5)
    assert [m.id for m in matches] == ["mine"]


def test_query_file_filter(index):
    index.upsert([
        _record("a0", [1.0, 0.0, 0.0], path="src/a.py", idx=0),
        _record("b0", [1.0, 0.0, 0.0], path="src/b.py", idx=0),
    ])
    matches = index.query([1.0, 0.0, 0.0], REPO, top_k=5, file_path="src/b.py")
    assert [m.id for m in matches] == ["b0"]
    assert matches[0].file_path == "src/b.py"


def test_query_no_matches_is_empty_list(index):
    assert index.query([1.0, 0.0, 0.0], REPO, top_k=3) == []


def test_query_rejects_bad_arguments(index):
    with pytest.raises(ValueError, match="top_k"):
        index.query([1.0, 0.0, 0.0], REPO, top_k=0)
    with pytest.raises(ValueError, match="dimensions"):
        index.query([1.0, 0.0], REPO, top_k=1)


def test_delete_empty_is_noop(index):
    calls = []
    assert index.delete([], on_batch=lambda n, t: calls.append(n)) == 0
    assert calls == []


def test_delete_removes_records_in_batches(index):
    index.upsert([_record(f"r{i}", [1.0, float(i), 0.0], idx=i) for i in range(3)])
    calls = []
    removed = index.delete(["r0", "r1", "r2", "unknown"], on_batch=lambda n, t: calls.append((n, t)))
    assert removed == 3
    assert calls == [(1, 2), (2, 2)]
    assert index.count() == 0
    assert index.query([1.0, 0.0, 0.0], REPO, top_k=3) == []


def test_ids_for_repository_in_insert_order(index):
    index.upsert([
        _record("x", [1.0, 0.0, 0.0]),
        _record("y", [0.0, 1.0, 0.0]),
        _record("z", [0.0, 0.0, 1.0], repo="other"),
    ])
    assert index.ids_for_repository(REPO) == ["x", "y"]


def test_namespaces_are_isolated(tmp_db):
    small = VectorIndex(tmp_db, "openai/text-embedding-3-small", dimensions=3)
    other = VectorIndex(tmp_db, "cohere/embed-english-v3.0", dimensions=3)
    small.upsert([_record("r1", [1.0, 0.0, 0.0])])
    assert other.count() == 0
    assert other.query([1.0, 0.0, 0.0], REPO, top_k=1) == []


# --- storage failures ---

def test_failed_upsert_batch_raises_and_keeps_earlier_batches(tmp_db, flaky_db):
    flaky = VectorIndex(flaky_db("INSERT INTO vec_chunks_", after=2), MODEL, dimensions=3, batch_size=2)
    calls = []
    records = [_record(f"r{i}", [1.0, float(i), 0.0], idx=i) for i in range(5)]

    with pytest.raises(UpstreamError, match="batch 2 of 3"):
        flaky.upsert(records, on_batch=lambda n, total: calls.append(n))

    assert calls == [1]
    clean = VectorIndex(tmp_db, MODEL, dimensions=3)
    assert clean.ids_for_repository(REPO) == ["r0", "r1"]
    assert len(clean.query([1.0, 0.0, 0.0], REPO, top_k=5)) == 2


def test_failed_query_raises_upstream(flaky_db):
    flaky = VectorIndex(flaky_db("MATCH"), MODEL, dimensions=3)
    with pytest.raises(UpstreamError, match="query failed") as exc_info:
        flaky.query([1.0, 0.0, 0.0], REPO, top_k=3)
    assert exc_info.value.repository_id == REPO
    assert exc_info.value.retryable


def test_failed_delete_batch_raises_and_keeps_earlier_deletes(index, tmp_db, flaky_db):
    index.upsert([_record(f"r{i}", [1.0, float(i), 0.0], idx=i) for i in range(4)])
    flaky = VectorIndex(flaky_db("DELETE FROM vec_chunks_", after=1), MODEL, dimensions=3, batch_size=2)

    with pytest.raises(UpstreamError, match="delete failed on batch 2 of 2"):
        flaky.delete(["r0", "r1", "r2", "r3"])

    assert index.ids_for_repository(REPO) == ["r2", "r3"]
