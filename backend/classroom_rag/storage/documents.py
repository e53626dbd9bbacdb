"""Document records: lookup, listing and owner deletion."""

from __future__ import annotations

from typing import Sequence

from classroom_rag.core.errors import ForbiddenError, IngestInProgressError, NotFoundError
from classroom_rag.core.logging import get_logger, log_context
from classroom_rag.core.metrics import CHUNKS_STORED
from classroom_rag.db.sqlite import SQLiteDatabase
from classroom_rag.models.entities import Document
from classroom_rag.quota.ledger import QuotaLedger
from classroom_rag.storage.objects import ObjectStore

logger = get_logger(__name__)

# Documents an account can read: its own plus the shared global corpus.
REACHABLE_CLAUSE = "(d.owner_id = ? OR d.scope = 'global')"


class DocumentRepository:
    def __init__(self, database: SQLiteDatabase, store: ObjectStore, ledger: QuotaLedger) -> None:
        self.db = database
        self.store = store
        self.ledger = ledger

    def get(self, document_id: str) -> Document:
        row = self.db.query_one("SELECT * FROM documents WHERE id = ?", [document_id])
        if row is None:
            raise NotFoundError(f"Document {document_id} not found")
        return Document.from_row(row)

    def get_reachable(self, document_id: str, account_id: str) -> Document:
        document = self.get(document_id)
        if document.owner_id != account_id and document.scope != "global":
            raise NotFoundError(f"Document {document_id} not found")
        return document

    def list_reachable(self, account_id: str, status: str | None = None) -> list[Document]:
        sql = f"SELECT d.* FROM documents d WHERE {REACHABLE_CLAUSE}"
        params: list[object] = [account_id]
        if status:
            sql += " AND d.status = ?"
            params.append(status)
        sql += " ORDER BY d.created_at DESC"
        return [Document.from_row(row) for row in self.db.query(sql, params)]

    def count_ready(self, account_id: str, document_ids: Sequence[str] | None = None) -> int:
        sql = f"SELECT COUNT(*) AS count FROM documents d WHERE d.status = 'ready' AND {REACHABLE_CLAUSE}"
        params: list[object] = [account_id]
        if document_ids:
            sql += f" AND d.id IN ({','.join('?' for _ in document_ids)})"
            params.extend(document_ids)
        row = self.db.query_one(sql, params)
        return int(row["count"]) if row else 0

    def delete(self, document_id: str, account_id: str, is_admin: bool = False) -> Document:
        """Remove a document, its chunks and stored bytes; release its storage tokens."""
        document = self.get(document_id)
        if document.owner_id != account_id and not (is_admin and document.scope == "global"):
            if document.scope == "global":
                raise ForbiddenError("Only administrators can delete global documents")
            raise NotFoundError(f"Document {document_id} not found")
        if document.status == "processing":
            raise IngestInProgressError(document_id)
        with self.db.transaction() as cur:
            deleted = cur.execute(
                "DELETE FROM documents WHERE id = ? AND status != 'processing'",
                [document_id],
            )
            if deleted.rowcount == 0:
                raise IngestInProgressError(document_id)
            self.ledger.release_storage(document.owner_id, document.token_count, cursor=cur)
        self.store.delete(document.storage_path)
        self.refresh_chunk_gauge()
        logger.info(
            "Document deleted",
            extra=log_context(
                document_id=document_id,
                account_id=account_id,
                released_tokens=document.token_count,
            ),
        )
        return document

    def refresh_chunk_gauge(self) -> None:
        row = self.db.query_one("SELECT COUNT(*) AS count FROM chunks")
        CHUNKS_STORED.set(int(row["count"]) if row else 0)


__all__ = ["DocumentRepository", "REACHABLE_CLAUSE"]
