"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts and emits camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadRequest(CamelModel):
    file_name: str = Field(min_length=1)
    mime_type: str
    file_size: int
    scope: Literal["user", "global"] = "user"


class UploadResponse(CamelModel):
    document_id: str
    storage_path: str
    upload_url: str
    upload_token: str
    expires_at: str
    scope: Literal["user", "global"]


class IngestRequest(CamelModel):
    scope: Literal["user", "global"] | None = None


class ChatRequest(CamelModel):
    message: str = Field(min_length=1)
    mode: Literal["corpus_only", "corpus_plus_ai"] = "corpus_only"
    search_mode: Literal["fast", "precise"] = "fast"
    conversation_id: str | None = None
    document_id: str | None = None
    top_k: int | None = Field(default=None, ge=1)


class SourceChunk(CamelModel):
    chunk_id: str
    document_id: str
    document_title: str
    chunk_index: int
    excerpt: str
    score: float
    scope: Literal["user", "global"]


class ChatResponse(CamelModel):
    answer: str
    sources: list[SourceChunk]
    conversation_id: str
    tokens_used: int
    tokens_remaining: int
    mode: Literal["corpus_only", "corpus_plus_ai"]
    search_mode: Literal["fast", "precise"]


class CreditRequest(CamelModel):
    account_id: str
    tokens: int = Field(ge=0)
    source: str = Field(min_length=1, description="Purchase or grant reference owning the entitlements")
    entitlements: list[str] = Field(default_factory=list)


class RevokeRequest(CamelModel):
    account_id: str
    entitlement: str
    source: str


class DeleteResponse(CamelModel):
    status: Literal["ok"]
    deleted: str
    released_tokens: int


class ErrorResponse(BaseModel):
    error: str
    detail: str
    retryable: bool


__all__ = [
    "UploadRequest",
    "UploadResponse",
    "IngestRequest",
    "ChatRequest",
    "ChatResponse",
    "SourceChunk",
    "CreditRequest",
    "RevokeRequest",
    "DeleteResponse",
    "ErrorResponse",
]
