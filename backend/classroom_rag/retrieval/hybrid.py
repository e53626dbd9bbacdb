"""Hybrid search utilities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

from rank_bm25 import BM25Okapi

from classroom_rag.retrieval.domains import STOPWORDS, fold


@dataclass(slots=True)
class RankedItem:
    identifier: str
    score: float


def reciprocal_rank_fusion(results: Sequence[Sequence[Tuple[str, float]]], weight: float = 60.0) -> list[RankedItem]:
    """Combine rankings using reciprocal rank fusion."""
    scores: dict[str, float] = {}
    for hits in results:
        for rank, (chunk_id, _) in enumerate(hits, start=1):
            scores[chunk_id] = scores.get(chunk_id, 0.0) + 1.0 / (weight + rank)
    fused = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    return [RankedItem(identifier=chunk_id, score=score) for chunk_id, score in fused]


def bm25_rank(query: str, documents: Sequence[Tuple[str, str]]) -> list[Tuple[str, float]]:
    """Rank ``(id, text)`` pairs by BM25 against ``query``, best first."""
    if not documents:
        return []
    corpus_tokens = [_tokenize(text) or [""] for _, text in documents]
    model = BM25Okapi(corpus_tokens)
    scores = model.get_scores(_tokenize(query))
    ranked = [(doc_id, float(score)) for (doc_id, _), score in zip(documents, scores)]
    ranked.sort(key=lambda item: item[1], reverse=True)
    return ranked


def _tokenize(text: str) -> list[str]:
    return [token for token in fold(text).split() if token not in STOPWORDS]


__all__ = ["reciprocal_rank_fusion", "bm25_rank", "RankedItem"]
