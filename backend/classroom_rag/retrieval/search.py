"""Search orchestration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Sequence

import orjson

from classroom_rag.core.config import Settings
from classroom_rag.core.logging import get_logger, log_context
from classroom_rag.db.sqlite import SQLiteDatabase
from classroom_rag.ingest.embeddings import Embedder
from classroom_rag.llm.client import ChatModel
from classroom_rag.llm.prompts import HYPOTHETICAL_ANSWER_SYSTEM, QUERY_REWRITE_SYSTEM
from classroom_rag.models.entities import Chunk
from classroom_rag.retrieval.domains import detect_domain
from classroom_rag.retrieval.hybrid import bm25_rank, reciprocal_rank_fusion
from classroom_rag.retrieval.rerank import Reranker
from classroom_rag.retrieval.vector_index import VectorIndex
from classroom_rag.storage.documents import REACHABLE_CLAUSE
from classroom_rag.utils.text import excerpt

logger = get_logger(__name__)

SearchMode = Literal["fast", "precise"]

MAX_QUERY_VARIANTS = 4


@dataclass(slots=True)
class RetrievedChunk:
    chunk_id: str
    document_id: str
    document_title: str
    chunk_index: int
    content: str
    score: float
    scope: str
    domain: str | None = None

    def to_source(self, excerpt_chars: int) -> dict[str, Any]:
        return {
            "chunkId": self.chunk_id,
            "documentId": self.document_id,
            "documentTitle": self.document_title,
            "chunkIndex": self.chunk_index,
            "excerpt": excerpt(self.content, excerpt_chars),
            "score": round(self.score, 4),
            "scope": self.scope,
        }


@dataclass(slots=True)
class RetrievalResult:
    chunks: list[RetrievedChunk]
    tokens_used: int = 0
    domain: str | None = None
    domain_scoped: bool = False
    queries: list[str] = field(default_factory=list)


class RetrievalService:
    """Similarity search over the chunks an account can reach.

    ``fast`` ranks by cosine similarity only. ``precise`` adds query
    reformulation, a hypothetical-answer vector, BM25 and reciprocal rank
    fusion, then a model re-ranking pass whose score is the one reported.
    """

    def __init__(
        self,
        db: SQLiteDatabase,
        settings: Settings,
        embedder: Embedder,
        chat_model: ChatModel | None = None,
        reranker: Reranker | None = None,
    ) -> None:
        self.db = db
        self.settings = settings
        self.embedder = embedder
        self.chat_model = chat_model
        self.reranker = reranker or Reranker(chat_model)

    def search(
        self,
        question: str,
        account_id: str,
        top_k: int | None = None,
        document_id: str | None = None,
        search_mode: SearchMode = "fast",
    ) -> RetrievalResult:
        limit = max(1, min(top_k or self.settings.default_top_k, self.settings.max_top_k))
        chunks = self._load_chunks(account_id, document_id)
        domain = detect_domain(question)
        partition = [chunk for chunk in chunks if domain and chunk.domain == domain]

        if search_mode == "precise":
            result = self._precise(question, chunks, partition, limit)
        else:
            result = self._fast(question, chunks, partition, limit)
        result.domain = domain
        logger.info(
            "Retrieval finished",
            extra=log_context(
                account_id=account_id,
                mode=search_mode,
                domain=domain,
                domain_scoped=result.domain_scoped,
                candidates=len(chunks),
                hits=len(result.chunks),
                tokens=result.tokens_used,
            ),
        )
        return result

    # Search flavours --------------------------------------------------

    def _fast(
        self,
        question: str,
        chunks: list[Chunk],
        partition: list[Chunk],
        limit: int,
    ) -> RetrievalResult:
        batch = self.embedder.encode([question])
        vector = batch.vectors[0]
        by_id = {chunk.id: chunk for chunk in chunks}
        scoped = bool(partition)
        hits = self._vector_hits(partition, vector, limit) if partition else []
        if not hits:
            scoped = False
            hits = self._vector_hits(chunks, vector, limit)
        retrieved = [_to_retrieved(by_id[chunk_id], score) for chunk_id, score in hits]
        return RetrievalResult(
            chunks=_ordered(retrieved)[:limit],
            tokens_used=batch.tokens_used,
            domain_scoped=scoped,
            queries=[question],
        )

    def _precise(
        self,
        question: str,
        chunks: list[Chunk],
        partition: list[Chunk],
        limit: int,
    ) -> RetrievalResult:
        tokens = 0
        variants, spent = self._reformulate(question)
        tokens += spent
        hypothetical, spent = self._hypothetical_answer(question)
        tokens += spent

        queries = [question, *variants]
        texts = queries + ([hypothetical] if hypothetical else [])
        batch = self.embedder.encode(texts)
        tokens += batch.tokens_used

        pool_size = max(self.settings.rerank_pool_size, limit)
        by_id = {chunk.id: chunk for chunk in chunks}
        scoped = bool(partition)
        rankings = [self._vector_hits(partition, vector, pool_size) for vector in batch.vectors] if partition else []
        if not any(rankings):
            scoped = False
            rankings = [self._vector_hits(chunks, vector, pool_size) for vector in batch.vectors]

        candidate_ids = list(dict.fromkeys(chunk_id for hits in rankings for chunk_id, _ in hits))
        if not candidate_ids:
            return RetrievalResult(chunks=[], tokens_used=tokens, domain_scoped=False, queries=queries)

        keyword_ranking = bm25_rank(question, [(chunk_id, by_id[chunk_id].content) for chunk_id in candidate_ids])
        fused = reciprocal_rank_fusion([*rankings, keyword_ranking])[:pool_size]
        reranked, spent = self.reranker.rerank(
            question,
            [(item.identifier, by_id[item.identifier].content) for item in fused],
        )
        tokens += spent
        retrieved = [_to_retrieved(by_id[item.chunk_id], item.score) for item in reranked]
        return RetrievalResult(
            chunks=_ordered(retrieved)[:limit],
            tokens_used=tokens,
            domain_scoped=scoped,
            queries=queries,
        )

    # Internal helpers -------------------------------------------------

    def _load_chunks(self, account_id: str, document_id: str | None) -> list[Chunk]:
        sql = f"""
            SELECT c.id, c.document_id, c.chunk_index, c.content, c.content_hash, c.token_count,
                   c.embedding, c.embedding_model, c.dim, d.title, d.scope, d.domain
            FROM chunks c
            JOIN documents d ON d.id = c.document_id
            WHERE d.status = 'ready' AND {REACHABLE_CLAUSE}
        """
        params: list[Any] = [account_id]
        if document_id:
            sql += " AND d.id = ?"
            params.append(document_id)
        sql += " ORDER BY d.id, c.chunk_index"
        return [Chunk.from_row(row) for row in self.db.query(sql, params)]

    def _vector_hits(self, chunks: Sequence[Chunk], vector: Sequence[float], limit: int) -> list[tuple[str, float]]:
        index = VectorIndex.from_chunks(chunks, model=self.embedder.model_name, dim=len(vector))
        hits = index.search(vector, top_k=limit, min_score=self.settings.similarity_threshold)
        return [(hit.chunk_id, hit.score) for hit in hits]

    def _reformulate(self, question: str) -> tuple[list[str], int]:
        if self.chat_model is None:
            return [], 0
        completion = self.chat_model.complete(
            [
                {"role": "system", "content": QUERY_REWRITE_SYSTEM},
                {"role": "user", "content": question},
            ],
            temperature=0.2,
            max_tokens=300,
            json_mode=True,
        )
        try:
            payload = orjson.loads(completion.text)
        except orjson.JSONDecodeError:
            logger.warning("Query reformulation reply is not JSON", extra=log_context(reply=completion.text[:200]))
            return [], completion.total_tokens
        raw = payload.get("queries") if isinstance(payload, dict) else None
        variants = [
            item.strip()
            for item in (raw if isinstance(raw, list) else [])
            if isinstance(item, str) and item.strip() and item.strip() != question
        ]
        return list(dict.fromkeys(variants))[:MAX_QUERY_VARIANTS], completion.total_tokens

    def _hypothetical_answer(self, question: str) -> tuple[str | None, int]:
        if self.chat_model is None:
            return None, 0
        completion = self.chat_model.complete(
            [
                {"role": "system", "content": HYPOTHETICAL_ANSWER_SYSTEM},
                {"role": "user", "content": question},
            ],
            temperature=0.3,
            max_tokens=250,
        )
        text = completion.text.strip()
        return (text or None), completion.total_tokens


def _to_retrieved(chunk: Chunk, score: float) -> RetrievedChunk:
    return RetrievedChunk(
        chunk_id=chunk.id,
        document_id=chunk.document_id,
        document_title=chunk.document_title,
        chunk_index=chunk.chunk_index,
        content=chunk.content,
        score=score,
        scope=chunk.scope,
        domain=chunk.domain,
    )


def _ordered(chunks: list[RetrievedChunk]) -> list[RetrievedChunk]:
    return sorted(chunks, key=lambda item: (-item.score, item.document_id, item.chunk_index))


__all__ = ["RetrievalService", "RetrievalResult", "RetrievedChunk", "SearchMode"]
