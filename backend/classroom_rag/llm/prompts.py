"""Prompt templates for answering and for precise-mode retrieval."""

from __future__ import annotations

from typing import Literal, Sequence

ChatMode = Literal["corpus_only", "corpus_plus_ai"]

NOT_FOUND_ANSWER = (
    "I could not find relevant information in the provided materials for this question. "
    "Try rephrasing it, or check that you have uploaded documents covering this topic."
)

SUPPLEMENT_MARKER = "[AI supplement]"

_BASE = (
    "You are a research assistant for teachers, expert in curricula and teaching practice. "
    "Answer in the language of the question."
)

CORPUS_ONLY_SYSTEM = f"""{_BASE}

Answer ONLY from the numbered document excerpts supplied with the question.

RULES:
1. Read every excerpt; information may be spread across several of them.
2. Never use knowledge that does not appear in the excerpts.
3. Cite the excerpts you rely on as [Source n].
4. If no excerpt contains information related to the question, reply exactly:
"{NOT_FOUND_ANSWER}"

FORMAT: a clear, structured answer (lists or headings when useful) ending with the sources used."""

CORPUS_PLUS_AI_SYSTEM = f"""{_BASE}

Use the numbered document excerpts first. You may complete them with general knowledge.

RULES:
1. Information from the excerpts takes priority; cite it as [Source n].
2. Mark every part that does not come from the excerpts with "{SUPPLEMENT_MARKER}".
3. When an excerpt contradicts your general knowledge, follow the excerpt.

FORMAT: start with what the documents say, then the clearly marked supplements."""

NO_CONTEXT_PLUS_AI_NOTE = (
    "[No excerpt was found in the documents]\n\n"
    f"Answer from general knowledge and start the answer with \"{SUPPLEMENT_MARKER}\" "
    "to make clear it does not come from the user's documents."
)

QUERY_REWRITE_SYSTEM = """You reformulate search queries for a document search engine used by teachers.
Return JSON: {"queries": ["...", "..."]} with up to 4 alternative phrasings of the question,
using synonyms and the vocabulary of official curricula. Do not answer the question."""

HYPOTHETICAL_ANSWER_SYSTEM = """Write a short passage (at most 120 words) that could appear in an official
teaching document and would answer the question. It is used only to search for similar passages,
so favour precise curriculum vocabulary over hedging."""

RERANK_SYSTEM = """You grade how well passages answer a question.
Return JSON: {"scores": [{"id": <passage number>, "score": <0-10>}, ...]} with one entry per passage.
10 means the passage directly answers the question, 0 means it is unrelated."""


def system_prompt(mode: ChatMode) -> str:
    return CORPUS_ONLY_SYSTEM if mode == "corpus_only" else CORPUS_PLUS_AI_SYSTEM


def context_block(sources: Sequence[tuple[str, str, str]], max_chars: int) -> tuple[str, int]:
    """Number ``(title, scope, content)`` excerpts until ``max_chars`` is spent.

    Returns the block and how many leading sources made it in; only those may
    be cited back to the caller.
    """
    parts: list[str] = []
    used = 0
    for number, (title, scope, content) in enumerate(sources, start=1):
        label = "official document" if scope == "global" else "personal document"
        header = f"[Source {number}: {title}] ({label})\n"
        remaining = max_chars - used - len(header)
        if remaining <= 0:
            break
        body = content if len(content) <= remaining else content[:remaining]
        parts.append(header + body)
        used += len(header) + len(body)
    return "\n\n".join(parts), len(parts)


def user_prompt(question: str, context: str, mode: ChatMode) -> str:
    if not context:
        return f"Question: {question}\n\n{NO_CONTEXT_PLUS_AI_NOTE}"
    if mode == "corpus_only":
        instruction = "Use only these excerpts. Partial information counts; combine it when it helps."
    else:
        instruction = f"Use these excerpts first and mark any supplement with \"{SUPPLEMENT_MARKER}\"."
    return f"Question: {question}\n\nDOCUMENT EXCERPTS:\n\n{context}\n\n{instruction}"


def rerank_prompt(question: str, passages: Sequence[str], passage_chars: int = 600) -> str:
    lines = [f"Question: {question}", ""]
    for number, passage in enumerate(passages, start=1):
        lines.append(f"Passage {number}:\n{passage[:passage_chars]}\n")
    return "\n".join(lines)


__all__ = [
    "ChatMode",
    "NOT_FOUND_ANSWER",
    "SUPPLEMENT_MARKER",
    "system_prompt",
    "context_block",
    "user_prompt",
    "rerank_prompt",
    "QUERY_REWRITE_SYSTEM",
    "HYPOTHETICAL_ANSWER_SYSTEM",
    "RERANK_SYSTEM",
]
