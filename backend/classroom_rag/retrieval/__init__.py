"""Retrieval orchestration components."""

from .vector_index import VectorIndex
from .search import RetrievalService
from .rerank import Reranker
from .hybrid import reciprocal_rank_fusion, bm25_rank
from .domains import detect_domain

__all__ = [
    "VectorIndex",
    "RetrievalService",
    "Reranker",
    "reciprocal_rank_fusion",
    "bm25_rank",
    "detect_domain",
]
