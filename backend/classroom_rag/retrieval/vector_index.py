"""Vector index abstraction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from classroom_rag.core.logging import get_logger, log_context
from classroom_rag.ingest.embeddings import vector_from_bytes
from classroom_rag.models.entities import Chunk

logger = get_logger(__name__)


@dataclass(slots=True)
class SearchResult:
    chunk_id: str
    score: float


class VectorIndex:
    """Simple in-memory vector index using cosine similarity over unit vectors."""

    def __init__(self, dim: int) -> None:
        self.dim = dim
        self._ids: list[str] = []
        self._vectors: list[list[float]] = []

    def upsert(self, ids: Sequence[str], vectors: Sequence[Sequence[float]]) -> None:
        if not ids:
            return
        for vector in vectors:
            if len(vector) != self.dim:
                raise ValueError("Vector dimension mismatch")
        self._ids.extend(ids)
        self._vectors.extend([list(vector) for vector in vectors])

    def search(
        self,
        vector: Sequence[float],
        top_k: int = 8,
        min_score: float | None = None,
    ) -> list[SearchResult]:
        """Highest cosine similarity first; ties keep insertion order."""
        if not self._vectors:
            return []
        if len(vector) != self.dim:
            raise ValueError("Query vector dimension mismatch")
        scores = [
            (idx, _dot(self._vectors[idx], vector))
            for idx in range(len(self._vectors))
        ]
        if min_score is not None:
            scores = [item for item in scores if item[1] >= min_score]
        scores.sort(key=lambda item: item[1], reverse=True)
        limit = min(top_k, len(scores))
        return [SearchResult(chunk_id=self._ids[idx], score=score) for idx, score in scores[:limit]]

    @classmethod
    def from_chunks(cls, chunks: Iterable[Chunk], model: str, dim: int) -> "VectorIndex":
        """Index the chunks embedded with ``model``; others cannot be compared."""
        index = cls(dim)
        skipped = 0
        ids: list[str] = []
        vectors: list[list[float]] = []
        for chunk in chunks:
            if chunk.embedding_model != model or chunk.dim != dim:
                skipped += 1
                continue
            ids.append(chunk.id)
            vectors.append(vector_from_bytes(chunk.embedding))
        index.upsert(ids, vectors)
        if skipped:
            logger.warning(
                "Skipped chunks embedded with another model",
                extra=log_context(skipped=skipped, model=model),
            )
        return index


def _dot(a: Sequence[float], b: Sequence[float]) -> float:
    return sum(x * y for x, y in zip(a, b))


__all__ = ["VectorIndex", "SearchResult"]
