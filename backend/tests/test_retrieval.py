"""Tests for retrieval utilities."""

from __future__ import annotations

from typing import Callable

import orjson

from classroom_rag.db.sqlite import SQLiteDatabase
from classroom_rag.llm.client import DeterministicStubClient
from classroom_rag.retrieval import RetrievalService, Reranker, VectorIndex, bm25_rank, reciprocal_rank_fusion
from classroom_rag.retrieval.search import RetrievedChunk

from conftest import ATHLETICS, PHOTOSYNTHESIS, lesson


def test_vector_index_basic() -> None:
    index = VectorIndex(dim=3)
    index.upsert(["a", "b"], [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
    results = index.search([1.0, 0.0, 0.0], top_k=1)
    assert results
    assert results[0].chunk_id == "a"


def test_vector_index_threshold() -> None:
    index = VectorIndex(dim=2)
    index.upsert(["near", "far"], [[1.0, 0.0], [0.6, 0.8]])
    assert [hit.chunk_id for hit in index.search([1.0, 0.0], top_k=5, min_score=0.7)] == ["near"]


def test_reciprocal_rank_fusion_rewards_agreement() -> None:
    fused = reciprocal_rank_fusion([[("a", 0.9), ("b", 0.8)], [("b", 3.0), ("c", 1.0)]])
    assert fused[0].identifier == "b"
    assert {item.identifier for item in fused} == {"a", "b", "c"}


def test_bm25_rank_prefers_keyword_overlap() -> None:
    ranked = bm25_rank(
        "photosynthèse chlorophylle",
        [("sport", ATHLETICS), ("plante", PHOTOSYNTHESIS), ("vide", "rien a voir")],
    )
    assert ranked[0][0] == "plante"


def test_reranker_uses_model_scores() -> None:
    model = DeterministicStubClient(
        replies=[orjson.dumps({"scores": [{"id": 1, "score": 2}, {"id": 2, "score": 9}]}).decode()]
    )
    ranked, tokens = Reranker(model).rerank("question", [("a", "first"), ("b", "second")])
    assert [item.chunk_id for item in ranked] == ["b", "a"]
    assert ranked[0].score == 0.9
    assert tokens > 0


def test_reranker_falls_back_on_unusable_reply() -> None:
    model = DeterministicStubClient(replies=["not json at all"])
    ranked, _ = Reranker(model).rerank(
        "course de haies",
        [("plante", PHOTOSYNTHESIS), ("sport", ATHLETICS)],
    )
    assert ranked[0].chunk_id == "sport"
    assert all(0.0 <= item.score <= 1.0 for item in ranked)


def test_search_returns_only_reachable_chunks(
    ready_document: Callable[..., str],
    retrieval: RetrievalService,
) -> None:
    mine = ready_document("teacher-1", lesson(PHOTOSYNTHESIS), file_name="photosynthese.txt")
    ready_document("teacher-2", lesson(PHOTOSYNTHESIS), file_name="private.txt")
    official = ready_document(
        "admin", lesson(PHOTOSYNTHESIS), file_name="programme.txt", scope="global", is_admin=True
    )

    result = retrieval.search("photosynthese chlorophylle lumiere", "teacher-1", top_k=10)

    assert result.chunks
    assert {chunk.document_id for chunk in result.chunks} <= {mine, official}
    assert official in {chunk.document_id for chunk in result.chunks}


def test_search_ordering_and_truncation(
    ready_document: Callable[..., str],
    retrieval: RetrievalService,
) -> None:
    ready_document("teacher-1", lesson(PHOTOSYNTHESIS, repeat=12), file_name="plante.txt")
    ready_document("teacher-1", lesson(ATHLETICS, repeat=12), file_name="course.txt")

    result = retrieval.search("photosynthese chlorophylle", "teacher-1", top_k=2)

    assert len(result.chunks) <= 2
    keys = [(-chunk.score, chunk.document_id, chunk.chunk_index) for chunk in result.chunks]
    assert keys == sorted(keys)
    assert all(chunk.score >= 0.1 for chunk in result.chunks)
    assert result.tokens_used > 0


def test_search_scopes_to_detected_domain(
    ready_document: Callable[..., str],
    retrieval: RetrievalService,
) -> None:
    svt = ready_document("teacher-1", lesson(PHOTOSYNTHESIS), file_name="svt.txt")
    ready_document("teacher-1", lesson(ATHLETICS), file_name="eps.txt")

    result = retrieval.search("La photosynthese en biologie et la lumiere", "teacher-1", top_k=5)

    assert result.domain == "svt"
    assert result.domain_scoped is True
    assert {chunk.document_id for chunk in result.chunks} == {svt}


def test_search_falls_back_when_domain_has_no_hits(
    ready_document: Callable[..., str],
    retrieval: RetrievalService,
) -> None:
    eps = ready_document("teacher-1", lesson(ATHLETICS), file_name="notes.txt")

    # "geometrie" detects mathematiques, which no document belongs to.
    result = retrieval.search("geometrie de la course de haies et du sprint", "teacher-1", top_k=5)

    assert result.domain == "mathematiques"
    assert result.domain_scoped is False
    assert {chunk.document_id for chunk in result.chunks} == {eps}


def test_search_restricted_to_one_document(
    ready_document: Callable[..., str],
    retrieval: RetrievalService,
) -> None:
    first = ready_document("teacher-1", lesson(PHOTOSYNTHESIS), file_name="a.txt")
    ready_document("teacher-1", lesson(PHOTOSYNTHESIS), file_name="b.txt")
    result = retrieval.search("photosynthese lumiere", "teacher-1", document_id=first)
    assert result.chunks
    assert {chunk.document_id for chunk in result.chunks} == {first}


def test_precise_search_reformulates_and_reranks(
    ready_document: Callable[..., str],
    database: SQLiteDatabase,
    settings,
    embedder,
) -> None:
    ready_document("teacher-1", lesson(PHOTOSYNTHESIS), file_name="plante.txt")
    ready_document("teacher-1", lesson(ATHLETICS), file_name="course.txt")
    model = DeterministicStubClient(
        replies=[
            orjson.dumps({"queries": ["role de la chlorophylle", "conversion de la lumiere"]}).decode(),
            "La chlorophylle capte la lumiere pendant la photosynthese.",
        ]
    )
    service = RetrievalService(database, settings, embedder, chat_model=model)

    result = service.search("photosynthese chlorophylle", "teacher-1", top_k=3, search_mode="precise")

    assert result.queries[0] == "photosynthese chlorophylle"
    assert "role de la chlorophylle" in result.queries
    assert result.chunks
    assert len(result.chunks) <= 3
    # Reformulation, hypothetical answer and rerank each call the model once.
    assert len(model.calls) == 3
    scores = [chunk.score for chunk in result.chunks]
    assert scores == sorted(scores, reverse=True)
    assert all(0.0 <= score <= 1.0 for score in scores)


def test_retrieved_chunk_source_payload() -> None:
    chunk = RetrievedChunk(
        chunk_id="chk_1",
        document_id="doc",
        document_title="Programme",
        chunk_index=2,
        content="word " * 200,
        score=0.123456,
        scope="global",
    )
    source = chunk.to_source(excerpt_chars=50)
    assert source["score"] == 0.1235
    assert source["excerpt"].endswith("...")
    assert len(source["excerpt"]) <= 53
    assert source["scope"] == "global"
