"""Ingest pipeline orchestration."""

from __future__ import annotations

import time
from datetime import datetime
from typing import Callable, Literal

from classroom_rag.core.config import Settings
from classroom_rag.core.errors import (
    ClassroomRagError,
    ForbiddenScopeError,
    IngestInProgressError,
    NotFoundError,
)
from classroom_rag.core.logging import get_logger, log_context
from classroom_rag.core.metrics import INGEST_DURATION
from classroom_rag.db.sqlite import SQLiteDatabase
from classroom_rag.ingest.chunker import chunk_text
from classroom_rag.ingest.embeddings import Embedder, build_embedder, vector_to_bytes
from classroom_rag.ingest.extractors import ExtractorRegistry
from classroom_rag.ingest.types import ChunkDraft, IngestOutcome, StoredChunk
from classroom_rag.models.entities import Document
from classroom_rag.quota.ledger import QuotaLedger
from classroom_rag.retrieval.domains import detect_domain, title_keywords
from classroom_rag.storage.documents import DocumentRepository
from classroom_rag.storage.objects import ObjectStore
from classroom_rag.utils.ids import new_id
from classroom_rag.utils.text import estimate_tokens
from classroom_rag.utils.time import to_ms, utc_now

logger = get_logger(__name__)

# Leading characters of the extracted text used for domain detection.
DOMAIN_SAMPLE_CHARS = 4000

CLAIMABLE_STATUSES = ("uploaded", "error", "ready")


class IngestPipeline:
    """Coordinate extraction, chunking, embeddings, quota and persistence."""

    def __init__(
        self,
        database: SQLiteDatabase,
        settings: Settings,
        store: ObjectStore,
        ledger: QuotaLedger,
        embedder: Embedder | None = None,
        extractors: ExtractorRegistry | None = None,
        on_complete: Callable[[IngestOutcome], None] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = database
        self.settings = settings
        self.store = store
        self.ledger = ledger
        self.embedder = embedder or build_embedder(settings)
        self.extractors = extractors or ExtractorRegistry(min_chars=settings.min_document_chars)
        self.documents = DocumentRepository(database, store, ledger)
        self.on_complete = on_complete
        self.clock = clock

    def ingest(
        self,
        document_id: str,
        account_id: str,
        is_admin: bool = False,
        scope: Literal["user", "global"] | None = None,
    ) -> IngestOutcome:
        """Run ``uploaded -> processing -> ready | error`` for one document."""
        if scope == "global" and not is_admin:
            raise ForbiddenScopeError()
        document = self.documents.get(document_id)
        if document.owner_id != account_id and not (is_admin and document.scope == "global"):
            raise NotFoundError(f"Document {document_id} not found")

        claim_id = self._claim(document)
        started = time.perf_counter()
        logger.info(
            "Ingest started",
            extra=log_context(document_id=document_id, account_id=account_id, mime_type=document.mime_type),
        )
        try:
            outcome = self._run(document, claim_id, scope or document.scope)
        except Exception as exc:
            message = exc.message if isinstance(exc, ClassroomRagError) else f"Ingestion failed: {exc}"
            self._fail(document_id, claim_id, message)
            INGEST_DURATION.labels(status="error").observe(time.perf_counter() - started)
            logger.warning(
                "Ingest failed",
                extra=log_context(document_id=document_id, error=message),
                exc_info=not isinstance(exc, ClassroomRagError),
            )
            self._notify(IngestOutcome(document_id=document_id, status="error", scope=document.scope, error=message))
            raise

        INGEST_DURATION.labels(status="ready").observe(time.perf_counter() - started)
        self.documents.refresh_chunk_gauge()
        logger.info(
            "Ingest finished",
            extra=log_context(
                document_id=document_id,
                chunks_created=outcome.chunks_created,
                chunks_reused=outcome.chunks_reused,
                tokens_stored=outcome.tokens_stored,
                tokens_imported=outcome.tokens_imported,
                domain=outcome.domain,
            ),
        )
        self._notify(outcome)
        return outcome

    # Internal helpers -------------------------------------------------

    def _run(self, document: Document, claim_id: str, scope: str) -> IngestOutcome:
        payload = self.store.get(document.storage_path)
        extracted = self.extractors.extract(payload, document.mime_type)
        drafts = chunk_text(
            extracted.text,
            target_chars=self.settings.chunk_target_chars,
            min_chars=self.settings.chunk_min_chars,
            max_chars=self.settings.chunk_max_chars,
            overlap_chars=self.settings.chunk_overlap_chars,
        )

        known = self._known_vectors(document.id)
        fresh: dict[str, ChunkDraft] = {}
        for draft in drafts:
            if draft.content_hash not in known and draft.content_hash not in fresh:
                fresh[draft.content_hash] = draft

        tokens_total = estimate_tokens(extracted.text)
        tokens_stored = tokens_total - document.token_count
        tokens_imported = estimate_tokens(sum(draft.fresh_chars for draft in fresh.values()))

        self.ledger.reset_if_due(document.owner_id)
        self.ledger.check_import(document.owner_id, tokens_stored, tokens_imported)

        domain = detect_domain(f"{document.title}\n{extracted.text[:DOMAIN_SAMPLE_CHARS]}")
        vectors = self._embed(document.title, list(fresh.values()))
        vectors.update(known)

        stored = [
            StoredChunk(
                draft=draft,
                vector=vectors[draft.content_hash][0],
                model=vectors[draft.content_hash][1],
                dim=vectors[draft.content_hash][2],
                reused=draft.content_hash in known,
            )
            for draft in drafts
        ]
        self._persist(document, claim_id, scope, domain, stored, tokens_total, tokens_stored, tokens_imported)
        reused = sum(1 for item in stored if item.reused)
        return IngestOutcome(
            document_id=document.id,
            status="ready",
            chunks_created=len(stored) - reused,
            chunks_reused=reused,
            tokens_stored=tokens_stored,
            tokens_imported=tokens_imported,
            scope=scope,
            domain=domain,
        )

    def _claim(self, document: Document) -> str:
        claim_id = new_id("claim")
        now = to_ms(self.clock())
        stale_before = now - self.settings.ingest_lease_seconds * 1000
        placeholders = ",".join("?" for _ in CLAIMABLE_STATUSES)
        with self.db.transaction() as cur:
            claimed = cur.execute(
                f"""
                UPDATE documents
                SET status = 'processing', claim_id = ?, claimed_at = ?, error_message = NULL, updated_at = ?
                WHERE id = ?
                  AND (status IN ({placeholders}) OR (status = 'processing' AND claimed_at < ?))
                """,
                [claim_id, now, now, document.id, *CLAIMABLE_STATUSES, stale_before],
            )
            if claimed.rowcount == 0:
                raise IngestInProgressError(document.id)
        return claim_id

    def _fail(self, document_id: str, claim_id: str, message: str) -> None:
        with self.db.transaction() as cur:
            cur.execute(
                """
                UPDATE documents
                SET status = 'error', error_message = ?, claim_id = NULL, claimed_at = NULL, updated_at = ?
                WHERE id = ? AND claim_id = ?
                """,
                [message, to_ms(self.clock()), document_id, claim_id],
            )

    def _known_vectors(self, document_id: str) -> dict[str, tuple[bytes, str, int]]:
        rows = self.db.query(
            "SELECT content_hash, embedding, embedding_model, dim FROM chunks WHERE document_id = ?",
            [document_id],
        )
        return {
            row["content_hash"]: (row["embedding"], row["embedding_model"], row["dim"])
            for row in rows
            if row["embedding_model"] == self.embedder.model_name
        }

    def _embed(self, title: str, drafts: list[ChunkDraft]) -> dict[str, tuple[bytes, str, int]]:
        keywords = title_keywords(title)
        header = f"Document: {title}\n"
        if keywords:
            header += f"Keywords: {', '.join(keywords)}\n"
        vectors: dict[str, tuple[bytes, str, int]] = {}
        batch_size = self.settings.embedding_batch_size
        for offset in range(0, len(drafts), batch_size):
            batch = drafts[offset : offset + batch_size]
            result = self.embedder.encode([f"{header}\n{draft.content}" for draft in batch])
            for draft, vector in zip(batch, result.vectors):
                vectors[draft.content_hash] = (vector_to_bytes(vector), result.model, result.dim)
            logger.debug(
                "Embedded batch",
                extra=log_context(batch=offset // batch_size + 1, size=len(batch), tokens=result.tokens_used),
            )
        return vectors

    def _persist(
        self,
        document: Document,
        claim_id: str,
        scope: str,
        domain: str | None,
        stored: list[StoredChunk],
        tokens_total: int,
        tokens_stored: int,
        tokens_imported: int,
    ) -> None:
        now = to_ms(self.clock())
        with self.db.transaction() as cur:
            self.ledger.reserve_import(document.owner_id, tokens_stored, tokens_imported, cursor=cur)
            cur.execute("DELETE FROM chunks WHERE document_id = ?", [document.id])
            cur.executemany(
                """
                INSERT INTO chunks (
                  id, document_id, chunk_index, content, start_char, end_char, overlap,
                  content_hash, token_count, embedding, embedding_model, dim, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        new_id("chk"),
                        document.id,
                        item.draft.index,
                        item.draft.content,
                        item.draft.start_char,
                        item.draft.end_char,
                        item.draft.overlap,
                        item.draft.content_hash,
                        item.draft.token_count,
                        item.vector,
                        item.model,
                        item.dim,
                        now,
                    )
                    for item in stored
                ],
            )
            finished = cur.execute(
                """
                UPDATE documents
                SET status = 'ready', error_message = NULL, chunk_count = ?, token_count = ?, domain = ?,
                    scope = ?, claim_id = NULL, claimed_at = NULL, updated_at = ?
                WHERE id = ? AND claim_id = ?
                """,
                [len(stored), tokens_total, domain, scope, now, document.id, claim_id],
            )
            if finished.rowcount == 0:
                raise IngestInProgressError(document.id)

    def _notify(self, outcome: IngestOutcome) -> None:
        if self.on_complete is not None:
            self.on_complete(outcome)


__all__ = ["IngestPipeline"]
