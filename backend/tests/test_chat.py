"""Tests for the chat engine."""

from __future__ import annotations

from typing import Callable

import pytest

from classroom_rag.chat.engine import ChatEngine
from classroom_rag.core.errors import EmptyCorpusError, NotFoundError, QuotaExhaustedError
from classroom_rag.llm.client import DeterministicStubClient
from classroom_rag.llm.prompts import NOT_FOUND_ANSWER, SUPPLEMENT_MARKER
from classroom_rag.models.dto import ChatRequest
from classroom_rag.quota.ledger import QuotaLedger
from classroom_rag.retrieval.search import RetrievalService

from conftest import ATHLETICS, PHOTOSYNTHESIS, lesson


@pytest.fixture
def strict_engine(database, settings, ledger, documents, embedder, chat_model) -> ChatEngine:
    """Engine whose similarity floor no passage can reach."""
    strict = settings.model_copy(update={"similarity_threshold": 0.99})
    retrieval = RetrievalService(database, strict, embedder, chat_model=chat_model)
    return ChatEngine(database, strict, ledger, documents, retrieval, chat_model)


def test_answer_cites_retrieved_sources(
    ready_document: Callable[..., str],
    engine: ChatEngine,
    chat_model: DeterministicStubClient,
    ledger: QuotaLedger,
    settings,
) -> None:
    document_id = ready_document("teacher-1", lesson(PHOTOSYNTHESIS), file_name="plante.txt")

    response = engine.chat("teacher-1", ChatRequest(message="Comment fonctionne la photosynthese ?"))

    assert response.sources
    assert {source.document_id for source in response.sources} == {document_id}
    assert response.answer.startswith("Answer drawn from")
    assert len(chat_model.calls) == 1
    system, user = chat_model.calls[0][0], chat_model.calls[0][-1]
    assert system["role"] == "system"
    assert "[Source 1: plante.txt] (personal document)" in user["content"]
    assert response.tokens_used > 0
    assert response.tokens_remaining == settings.starting_token_balance - response.tokens_used
    assert ledger.snapshot("teacher-1").token_balance == response.tokens_remaining


def test_corpus_only_not_found_skips_the_model(
    ready_document: Callable[..., str],
    strict_engine: ChatEngine,
    chat_model: DeterministicStubClient,
    settings,
) -> None:
    ready_document("teacher-1", lesson(ATHLETICS), file_name="course.txt")

    response = strict_engine.chat("teacher-1", ChatRequest(message="Qu'est-ce que la photosynthese ?"))

    assert response.answer == NOT_FOUND_ANSWER
    assert response.sources == []
    assert chat_model.calls == []
    # Only the question embedding is charged.
    assert 0 < response.tokens_used <= 10
    assert response.tokens_remaining == settings.starting_token_balance - response.tokens_used


def test_corpus_plus_ai_answers_without_sources(
    ready_document: Callable[..., str],
    strict_engine: ChatEngine,
    chat_model: DeterministicStubClient,
) -> None:
    ready_document("teacher-1", lesson(ATHLETICS), file_name="course.txt")

    response = strict_engine.chat(
        "teacher-1",
        ChatRequest(message="Qu'est-ce que la photosynthese ?", mode="corpus_plus_ai"),
    )

    assert response.sources == []
    assert len(chat_model.calls) == 1
    assert SUPPLEMENT_MARKER in chat_model.calls[0][-1]["content"]


def test_zero_balance_is_rejected_before_any_call(
    ready_document: Callable[..., str],
    engine: ChatEngine,
    chat_model: DeterministicStubClient,
    ledger: QuotaLedger,
    settings,
) -> None:
    ready_document("teacher-1", lesson(PHOTOSYNTHESIS))
    ledger.debit_balance("teacher-1", settings.starting_token_balance)

    with pytest.raises(QuotaExhaustedError):
        engine.chat("teacher-1", ChatRequest(message="photosynthese"))

    assert chat_model.calls == []
    assert ledger.snapshot("teacher-1").token_balance == 0


def test_empty_corpus_is_reported(engine: ChatEngine, chat_model: DeterministicStubClient) -> None:
    with pytest.raises(EmptyCorpusError):
        engine.chat("teacher-1", ChatRequest(message="photosynthese"))
    assert chat_model.calls == []


def test_unreachable_document_filter(
    ready_document: Callable[..., str],
    engine: ChatEngine,
) -> None:
    foreign = ready_document("teacher-2", lesson(PHOTOSYNTHESIS))
    ready_document("teacher-1", lesson(PHOTOSYNTHESIS))
    with pytest.raises(NotFoundError):
        engine.chat("teacher-1", ChatRequest(message="photosynthese", document_id=foreign))


def test_global_documents_are_labelled_official(
    ready_document: Callable[..., str],
    engine: ChatEngine,
    chat_model: DeterministicStubClient,
) -> None:
    ready_document(
        "admin", lesson(PHOTOSYNTHESIS), file_name="programme.txt", scope="global", is_admin=True
    )

    response = engine.chat("teacher-1", ChatRequest(message="la photosynthese et la lumiere"))

    assert {source.scope for source in response.sources} == {"global"}
    assert "(official document)" in chat_model.calls[0][-1]["content"]


def test_conversation_continues_with_history(
    ready_document: Callable[..., str],
    engine: ChatEngine,
    chat_model: DeterministicStubClient,
) -> None:
    ready_document("teacher-1", lesson(PHOTOSYNTHESIS))

    first = engine.chat("teacher-1", ChatRequest(message="la photosynthese"))
    second = engine.chat(
        "teacher-1",
        ChatRequest(message="et la chlorophylle ?", conversation_id=first.conversation_id),
    )

    assert second.conversation_id == first.conversation_id
    roles = [message["role"] for message in chat_model.calls[1]]
    assert roles == ["system", "user", "assistant", "user"]
    assert chat_model.calls[1][1]["content"] == "la photosynthese"

    conversation = engine.conversations.get("teacher-1", first.conversation_id)
    assert [message["role"] for message in conversation["messages"]] == ["user", "assistant"] * 2
    assert conversation["messages"][1]["sources"]


def test_foreign_conversation_starts_fresh(
    ready_document: Callable[..., str],
    engine: ChatEngine,
    chat_model: DeterministicStubClient,
) -> None:
    ready_document("teacher-1", lesson(PHOTOSYNTHESIS))
    ready_document("teacher-2", lesson(PHOTOSYNTHESIS))
    theirs = engine.chat("teacher-2", ChatRequest(message="la photosynthese"))

    mine = engine.chat(
        "teacher-1",
        ChatRequest(message="la photosynthese", conversation_id=theirs.conversation_id),
    )

    assert mine.conversation_id != theirs.conversation_id
    assert [message["role"] for message in chat_model.calls[1]] == ["system", "user"]


def test_precise_mode_counts_every_model_call(
    ready_document: Callable[..., str],
    engine: ChatEngine,
    chat_model: DeterministicStubClient,
) -> None:
    ready_document("teacher-1", lesson(PHOTOSYNTHESIS))

    response = engine.chat(
        "teacher-1",
        ChatRequest(message="la photosynthese et la chlorophylle", search_mode="precise"),
    )

    # Reformulation, hypothetical answer, rerank, then the answer itself.
    assert len(chat_model.calls) == 4
    assert response.search_mode == "precise"
    assert response.sources
    prompt_tokens = sum(len(message["content"]) for call in chat_model.calls for message in call) // 4
    assert response.tokens_used >= prompt_tokens


@pytest.fixture
def engine_with(database, settings, ledger, documents, embedder, chat_model) -> Callable[..., ChatEngine]:
    """Build an engine over the shared stores with some settings overridden."""

    def build(**overrides) -> ChatEngine:
        tuned = settings.model_copy(update=overrides)
        retrieval = RetrievalService(database, tuned, embedder, chat_model=chat_model)
        return ChatEngine(database, tuned, ledger, documents, retrieval, chat_model)

    return build


def test_sources_match_excerpts_shown_to_the_model(
    ready_document: Callable[..., str],
    engine_with: Callable[..., ChatEngine],
    chat_model: DeterministicStubClient,
) -> None:
    ready_document("teacher-1", lesson(PHOTOSYNTHESIS, repeat=40), file_name="plante.txt")
    tight = engine_with(max_context_chars=300)
    question = "Comment fonctionne la photosynthese ?"
    assert len(tight.retrieval.search(question, "teacher-1", top_k=5).chunks) > 1

    response = tight.chat("teacher-1", ChatRequest(message=question, top_k=5))

    prompt = chat_model.calls[-1][-1]["content"]
    assert prompt.count("[Source ") == len(response.sources) == 1
    assert "[Source 2:" not in prompt


def test_default_top_k_comes_from_settings(
    ready_document: Callable[..., str],
    engine_with: Callable[..., ChatEngine],
) -> None:
    ready_document("teacher-1", lesson(PHOTOSYNTHESIS, repeat=40), file_name="plante.txt")
    request = ChatRequest(message="Comment fonctionne la photosynthese ?")
    assert request.top_k is None

    narrow = engine_with(default_top_k=2).chat("teacher-1", request)
    wide = engine_with(default_top_k=8).chat("teacher-1", request)

    assert len(narrow.sources) == 2
    assert len(wide.sources) > 2
