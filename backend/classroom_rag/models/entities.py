"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime

from classroom_rag.utils.time import from_ms


@dataclass(slots=True)
class Document:
    id: str
    owner_id: str
    scope: str
    title: str
    mime_type: str
    storage_path: str
    file_size: int | None
    status: str
    error_message: str | None
    chunk_count: int
    token_count: int
    domain: str | None
    claim_id: str | None
    claimed_at: int | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Document":
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            scope=row["scope"],
            title=row["title"],
            mime_type=row["mime_type"],
            storage_path=row["storage_path"],
            file_size=row["file_size"],
            status=row["status"],
            error_message=row["error_message"],
            chunk_count=row["chunk_count"],
            token_count=row["token_count"],
            domain=row["domain"],
            claim_id=row["claim_id"],
            claimed_at=row["claimed_at"],
            created_at=from_ms(row["created_at"]),
            updated_at=from_ms(row["updated_at"]),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "scope": self.scope,
            "title": self.title,
            "mimeType": self.mime_type,
            "storagePath": self.storage_path,
            "fileSize": self.file_size,
            "status": self.status,
            "errorMessage": self.error_message,
            "chunkCount": self.chunk_count,
            "tokenCount": self.token_count,
            "domain": self.domain,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(slots=True)
class Chunk:
    id: str
    document_id: str
    chunk_index: int
    content: str
    content_hash: str
    token_count: int
    embedding: bytes
    embedding_model: str
    dim: int
    document_title: str
    scope: str
    domain: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Chunk":
        return cls(
            id=row["id"],
            document_id=row["document_id"],
            chunk_index=row["chunk_index"],
            content=row["content"],
            content_hash=row["content_hash"],
            token_count=row["token_count"],
            embedding=row["embedding"],
            embedding_model=row["embedding_model"],
            dim=row["dim"],
            document_title=row["title"],
            scope=row["scope"],
            domain=row["domain"],
        )


__all__ = ["Document", "Chunk"]
