"""Reranking helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import orjson
from rapidfuzz import fuzz

from classroom_rag.core.logging import get_logger, log_context
from classroom_rag.llm.client import ChatModel
from classroom_rag.llm.prompts import RERANK_SYSTEM, rerank_prompt

logger = get_logger(__name__)


@dataclass(slots=True)
class RerankResult:
    chunk_id: str
    score: float


class Reranker:
    """Grades candidates with the chat model; fuzzy matching when its reply is unusable."""

    def __init__(self, chat_model: ChatModel | None = None) -> None:
        self.chat_model = chat_model

    def rerank(self, query: str, candidates: Sequence[tuple[str, str]]) -> tuple[list[RerankResult], int]:
        """Return ``(ranked results, tokens spent)`` for ``(chunk_id, text)`` candidates."""
        if not candidates:
            return [], 0
        tokens = 0
        scores: dict[int, float] | None = None
        if self.chat_model is not None:
            completion = self.chat_model.complete(
                [
                    {"role": "system", "content": RERANK_SYSTEM},
                    {"role": "user", "content": rerank_prompt(query, [text for _, text in candidates])},
                ],
                temperature=0.0,
                max_tokens=400,
                json_mode=True,
            )
            tokens = completion.total_tokens
            scores = _parse_scores(completion.text, len(candidates))
            if scores is None:
                logger.warning(
                    "Rerank reply unusable; using fuzzy fallback",
                    extra=log_context(candidates=len(candidates)),
                )
        if scores is None:
            return _fallback_rerank(query, candidates), tokens
        ranked = [
            RerankResult(chunk_id=chunk_id, score=scores.get(position, 0.0))
            for position, (chunk_id, _) in enumerate(candidates, start=1)
        ]
        ranked.sort(key=lambda item: item.score, reverse=True)
        return ranked, tokens


def _parse_scores(text: str, count: int) -> dict[int, float] | None:
    try:
        payload = orjson.loads(text)
    except orjson.JSONDecodeError:
        return None
    entries = payload.get("scores") if isinstance(payload, dict) else None
    if not isinstance(entries, list):
        return None
    scores: dict[int, float] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        identifier, score = entry.get("id"), entry.get("score")
        if isinstance(identifier, int) and isinstance(score, (int, float)) and 1 <= identifier <= count:
            scores[identifier] = max(0.0, min(float(score), 10.0)) / 10.0
    return scores or None


def _fallback_rerank(query: str, candidates: Sequence[tuple[str, str]]) -> list[RerankResult]:
    scored = [
        RerankResult(chunk_id=chunk_id, score=fuzz.token_set_ratio(query, text) / 100.0)
        for chunk_id, text in candidates
    ]
    return sorted(scored, key=lambda item: item.score, reverse=True)


__all__ = ["Reranker", "RerankResult"]
