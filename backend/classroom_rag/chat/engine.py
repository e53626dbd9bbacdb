"""Question answering over the retrieved corpus."""

from __future__ import annotations

import time

from classroom_rag.chat.conversations import ConversationStore
from classroom_rag.core.config import Settings
from classroom_rag.core.errors import EmptyCorpusError
from classroom_rag.core.logging import get_logger, log_context
from classroom_rag.core.metrics import REQUEST_LATENCY
from classroom_rag.db.sqlite import SQLiteDatabase
from classroom_rag.llm.client import ChatModel, Completion
from classroom_rag.llm.prompts import NOT_FOUND_ANSWER, context_block, system_prompt, user_prompt
from classroom_rag.models.dto import ChatRequest, ChatResponse, SourceChunk
from classroom_rag.quota.ledger import QuotaLedger
from classroom_rag.retrieval.search import RetrievalService, RetrievedChunk
from classroom_rag.storage.documents import DocumentRepository

logger = get_logger(__name__)


class ChatEngine:
    """Balance check, retrieval, one completion, persistence and debit."""

    def __init__(
        self,
        database: SQLiteDatabase,
        settings: Settings,
        ledger: QuotaLedger,
        documents: DocumentRepository,
        retrieval: RetrievalService,
        chat_model: ChatModel,
        conversations: ConversationStore | None = None,
    ) -> None:
        self.db = database
        self.settings = settings
        self.ledger = ledger
        self.documents = documents
        self.retrieval = retrieval
        self.chat_model = chat_model
        self.conversations = conversations or ConversationStore(database)

    def chat(self, account_id: str, request: ChatRequest) -> ChatResponse:
        started = time.perf_counter()
        self.ledger.reset_if_due(account_id)
        self.ledger.ensure_has_balance(account_id)

        document_filter = [request.document_id] if request.document_id else None
        if request.document_id:
            self.documents.get_reachable(request.document_id, account_id)
        if self.documents.count_ready(account_id, document_filter) == 0:
            raise EmptyCorpusError()

        retrieval = self.retrieval.search(
            request.message,
            account_id,
            top_k=request.top_k,
            document_id=request.document_id,
            search_mode=request.search_mode,
        )

        if not retrieval.chunks and request.mode == "corpus_only":
            completion = Completion(text=NOT_FOUND_ANSWER, model="none")
            cited = []
        else:
            completion, cited = self._complete(account_id, request, retrieval.chunks)

        tokens_used = retrieval.tokens_used + completion.total_tokens
        sources = [
            SourceChunk.model_validate(chunk.to_source(self.settings.excerpt_chars))
            for chunk in cited
        ]
        with self.db.transaction() as cur:
            conversation_id = self.conversations.get_or_create(
                cur,
                account_id,
                request.conversation_id,
                request.message,
                request.mode,
                request.document_id,
            )
            self.conversations.append(cur, conversation_id, "user", request.message)
            self.conversations.append(
                cur,
                conversation_id,
                "assistant",
                completion.text,
                sources=[source.model_dump(by_alias=True) for source in sources],
                tokens_used=tokens_used,
            )
            remaining = self.ledger.debit_balance(account_id, tokens_used, cursor=cur)

        REQUEST_LATENCY.labels(endpoint="chat_engine", method="CALL").observe(time.perf_counter() - started)
        logger.info(
            "Chat answered",
            extra=log_context(
                account_id=account_id,
                conversation_id=conversation_id,
                mode=request.mode,
                search_mode=request.search_mode,
                sources=len(sources),
                tokens_used=tokens_used,
                tokens_remaining=remaining,
            ),
        )
        return ChatResponse(
            answer=completion.text,
            sources=sources,
            conversation_id=conversation_id,
            tokens_used=tokens_used,
            tokens_remaining=remaining,
            mode=request.mode,
            search_mode=request.search_mode,
        )

    def _complete(
        self, account_id: str, request: ChatRequest, chunks: list[RetrievedChunk]
    ) -> tuple[Completion, list[RetrievedChunk]]:
        """Answer from the excerpts that fit the context budget; returns them for citation."""
        context, shown = context_block(
            [(chunk.document_title, chunk.scope, chunk.content) for chunk in chunks],
            self.settings.max_context_chars,
        )
        history: list[dict[str, str]] = []
        if self.conversations.owned(account_id, request.conversation_id):
            history = self.conversations.history(request.conversation_id, self.settings.history_messages)
        messages = [
            {"role": "system", "content": system_prompt(request.mode)},
            *history,
            {"role": "user", "content": user_prompt(request.message, context, request.mode)},
        ]
        completion = self.chat_model.complete(
            messages,
            temperature=self.settings.chat_temperature,
            max_tokens=self.settings.chat_max_tokens,
        )
        return completion, chunks[:shown]


__all__ = ["ChatEngine"]
