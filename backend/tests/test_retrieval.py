"""Tests for vector search and the retriever."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from pathlib import Path

import pytest

from oca.core.errors import DimensionMismatch, EmbeddingUnavailable, StoreUnavailable
from oca.db.sqlite import SQLiteDatabase, SQLiteDatastore
from oca.db.store import Datastore, rank_scored
from oca.ingest.embeddings import Embedder, HashedEmbedder
from oca.models.entities import DocumentChunk, Mode, ScoredChunk, Session
from oca.retrieval import RetrievalPolicy, Retriever


def _vector_with_similarity(score: float) -> list[float]:
    return [score, math.sqrt(1.0 - score * score)]


def _chunk(chunk_id: str, vector: list[float], index: int = 0) -> DocumentChunk:
    return DocumentChunk(
        id=chunk_id,
        document_name="lecture.md",
        chunk_index=index,
        text=f"text of {chunk_id}",
        embedding=vector,
    )


@pytest.fixture
def plane_store(tmp_path: Path) -> SQLiteDatastore:
    database = SQLiteDatabase(tmp_path / "plane.db")
    database.ensure_schema()
    store = SQLiteDatastore(database, embedding_dim=2)
    yield store
    database.close()


class BrokenEmbedder(Embedder):
    async def embed(self, text: str) -> list[float]:
        raise EmbeddingUnavailable("Embedding generation error: connection refused")


class BrokenStore(Datastore):
    async def similarity_search(self, query_vector, threshold, top_k):
        raise StoreUnavailable("Supabase request failed: timeout")


@pytest.mark.asyncio
async def test_threshold_filters_and_sorts_descending(plane_store: SQLiteDatastore) -> None:
    scores = {"a": 0.9, "b": 0.75, "c": 0.65, "d": 0.95}
    await plane_store.insert_chunks(
        [_chunk(chunk_id, _vector_with_similarity(score), idx) for idx, (chunk_id, score) in enumerate(scores.items())]
    )
    results = await plane_store.similarity_search([1.0, 0.0], threshold=0.7, top_k=5)
    assert [item.id for item in results] == ["d", "a", "b"]
    assert [round(item.similarity, 4) for item in results] == [0.95, 0.9, 0.75]
    assert all(item.similarity > 0.7 for item in results)


@pytest.mark.asyncio
async def test_top_k_bounds_results(plane_store: SQLiteDatastore) -> None:
    await plane_store.insert_chunks([_chunk(f"c{idx}", [1.0, 0.01 * idx], idx) for idx in range(10)])
    results = await plane_store.similarity_search([1.0, 0.0], threshold=0.5, top_k=3)
    assert len(results) == 3
    assert [item.id for item in results] == ["c0", "c1", "c2"]


@pytest.mark.asyncio
async def test_ties_keep_insertion_order(plane_store: SQLiteDatastore) -> None:
    await plane_store.insert_chunks([_chunk("second", [0.6, 0.8]), _chunk("first", [0.6, 0.8], 1)])
    results = await plane_store.similarity_search([0.6, 0.8], threshold=0.5, top_k=5)
    assert [item.id for item in results] == ["second", "first"]


@pytest.mark.asyncio
async def test_no_match_returns_empty_list(plane_store: SQLiteDatastore) -> None:
    await plane_store.insert_chunks([_chunk("a", [0.0, 1.0])])
    assert await plane_store.similarity_search([1.0, 0.0], threshold=0.7, top_k=5) == []


@pytest.mark.asyncio
async def test_dimension_mismatch(plane_store: SQLiteDatastore) -> None:
    with pytest.raises(DimensionMismatch):
        await plane_store.similarity_search([1.0, 0.0, 0.0], threshold=0.7, top_k=5)
    with pytest.raises(DimensionMismatch):
        await plane_store.insert_chunks([_chunk("bad", [1.0, 0.0, 0.0])])


def test_rank_scored_is_stable_for_equal_scores() -> None:
    scores = [("x", 0.8), ("y", 0.9), ("z", 0.8), ("w", 0.7)]
    items = [ScoredChunk(chunk=_chunk(name, [1.0, 0.0]), similarity=score) for name, score in scores]
    ranked = rank_scored(items, threshold=0.7, top_k=10)
    assert [item.id for item in ranked] == ["y", "x", "z"]


@pytest.mark.asyncio
async def test_retriever_returns_relevant_chunks(datastore, embedder: HashedEmbedder, course_text: str) -> None:
    vector = await embedder.embed(course_text)
    await datastore.insert_chunks([_chunk("course", vector)])
    retriever = Retriever(embedder, datastore, threshold=0.1)
    results = await retriever.retrieve("use case diagrams and actors")
    assert [item.id for item in results] == ["course"]


@pytest.mark.asyncio
async def test_soft_degrade_on_embedder_failure(datastore) -> None:
    retriever = Retriever(BrokenEmbedder(dim=64), datastore, policy=RetrievalPolicy.SOFT_DEGRADE)
    assert await retriever.retrieve("anything") == []


@pytest.mark.asyncio
async def test_soft_degrade_on_store_failure(embedder: HashedEmbedder) -> None:
    retriever = Retriever(embedder, BrokenStore(embedding_dim=64))
    assert await retriever.retrieve("anything") == []


@pytest.mark.asyncio
async def test_soft_degrade_without_store(embedder: HashedEmbedder) -> None:
    assert await Retriever(embedder, None).retrieve("anything") == []


@pytest.mark.asyncio
async def test_hard_fail_propagates(datastore, embedder: HashedEmbedder) -> None:
    with pytest.raises(EmbeddingUnavailable):
        await Retriever(BrokenEmbedder(dim=64), datastore, policy=RetrievalPolicy.HARD_FAIL).retrieve("q")
    with pytest.raises(StoreUnavailable):
        await Retriever(embedder, BrokenStore(embedding_dim=64)).retrieve("q", policy=RetrievalPolicy.HARD_FAIL)
    with pytest.raises(StoreUnavailable):
        await Retriever(embedder, None, policy=RetrievalPolicy.HARD_FAIL).retrieve("q")


@pytest.mark.asyncio
async def test_dimension_mismatch_follows_policy(plane_store: SQLiteDatastore, embedder: HashedEmbedder) -> None:
    retriever = Retriever(embedder, plane_store)
    assert await retriever.retrieve("actors") == []
    with pytest.raises(DimensionMismatch):
        await retriever.retrieve("actors", policy=RetrievalPolicy.HARD_FAIL)


@pytest.mark.asyncio
async def test_insert_that_cannot_be_read_back_is_a_store_error(datastore) -> None:
    async def vanished(session_id):
        return None

    datastore.get_session = vanished
    now = datetime(2024, 9, 2, 14, 0, tzinfo=timezone.utc)
    with pytest.raises(StoreUnavailable, match="not readable after insert"):
        await datastore.create_session(Session(id="s", student_id="s-1", mode=Mode.TUTORING, created_at=now, last_activity=now))
