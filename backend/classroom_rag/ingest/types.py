"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class ExtractedDocument:
    """Plain text recovered from an uploaded file."""

    text: str
    mime: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ChunkDraft:
    """Chunk produced by the chunker prior to embedding and persistence.

    ``overlap`` counts the leading characters shared with the previous chunk.
    """

    index: int
    content: str
    start_char: int
    end_char: int
    overlap: int
    content_hash: str
    token_count: int

    @property
    def fresh_chars(self) -> int:
        return len(self.content) - self.overlap


@dataclass(slots=True)
class StoredChunk:
    """Chunk row ready to be written."""

    draft: ChunkDraft
    vector: bytes
    model: str
    dim: int
    reused: bool = False


@dataclass(slots=True)
class IngestOutcome:
    """Result of a single ingestion run."""

    document_id: str
    status: str
    chunks_created: int = 0
    chunks_reused: int = 0
    tokens_stored: int = 0
    tokens_imported: int = 0
    scope: str = "user"
    domain: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "documentId": self.document_id,
            "status": self.status,
            "chunksCreated": self.chunks_created,
            "chunksReused": self.chunks_reused,
            "tokensStored": self.tokens_stored,
            "tokensImported": self.tokens_imported,
            "scope": self.scope,
            "domain": self.domain,
            "error": self.error,
        }


__all__ = ["ExtractedDocument", "ChunkDraft", "StoredChunk", "IngestOutcome"]
