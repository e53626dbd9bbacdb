"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, Header

from classroom_rag.chat.conversations import ConversationStore
from classroom_rag.chat.engine import ChatEngine
from classroom_rag.core.config import Settings, get_settings
from classroom_rag.core.errors import ForbiddenError, UnauthenticatedError
from classroom_rag.db.sqlite import SQLiteDatabase
from classroom_rag.ingest.embeddings import Embedder, build_embedder
from classroom_rag.ingest.pipeline import IngestPipeline
from classroom_rag.llm.client import ChatModel, build_chat_model
from classroom_rag.quota.ledger import QuotaLedger
from classroom_rag.retrieval import RetrievalService
from classroom_rag.storage.documents import DocumentRepository
from classroom_rag.storage.objects import ObjectStore
from classroom_rag.uploads.broker import UploadBroker, is_admin


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


@lru_cache(maxsize=1)
def get_database() -> SQLiteDatabase:
    db = SQLiteDatabase(get_app_settings().db_path)
    db.ensure_schema()
    return db


@lru_cache(maxsize=1)
def get_object_store() -> ObjectStore:
    return ObjectStore(get_app_settings().storage_root, get_database())


@lru_cache(maxsize=1)
def get_ledger() -> QuotaLedger:
    return QuotaLedger(get_database(), get_app_settings())


@lru_cache(maxsize=1)
def get_embedder() -> Embedder:
    return build_embedder(get_app_settings())


@lru_cache(maxsize=1)
def get_chat_model() -> ChatModel:
    return build_chat_model(get_app_settings())


@lru_cache(maxsize=1)
def get_documents() -> DocumentRepository:
    return DocumentRepository(get_database(), get_object_store(), get_ledger())


@lru_cache(maxsize=1)
def get_upload_broker() -> UploadBroker:
    return UploadBroker(get_database(), get_object_store(), get_app_settings())


@lru_cache(maxsize=1)
def get_ingest_pipeline() -> IngestPipeline:
    return IngestPipeline(
        database=get_database(),
        settings=get_app_settings(),
        store=get_object_store(),
        ledger=get_ledger(),
        embedder=get_embedder(),
    )


@lru_cache(maxsize=1)
def get_conversations() -> ConversationStore:
    return ConversationStore(get_database())


@lru_cache(maxsize=1)
def get_retrieval_service() -> RetrievalService:
    return RetrievalService(
        db=get_database(),
        settings=get_app_settings(),
        embedder=get_embedder(),
        chat_model=get_chat_model(),
    )


@lru_cache(maxsize=1)
def get_chat_engine() -> ChatEngine:
    return ChatEngine(
        database=get_database(),
        settings=get_app_settings(),
        ledger=get_ledger(),
        documents=get_documents(),
        retrieval=get_retrieval_service(),
        chat_model=get_chat_model(),
        conversations=get_conversations(),
    )


_CACHED = (
    get_app_settings,
    get_database,
    get_object_store,
    get_ledger,
    get_embedder,
    get_chat_model,
    get_documents,
    get_upload_broker,
    get_ingest_pipeline,
    get_conversations,
    get_retrieval_service,
    get_chat_engine,
)


def reset_dependencies() -> None:
    """Drop cached singletons, closing the database connection."""
    if get_database.cache_info().currsize:
        get_database().close()
    for factory in _CACHED:
        factory.cache_clear()
    get_settings.cache_clear()


def get_account_id(x_account_id: str | None = Header(default=None)) -> str:
    if not x_account_id or not x_account_id.strip():
        raise UnauthenticatedError("Missing X-Account-Id header")
    return x_account_id.strip()


def get_is_admin(
    account_id: str = Depends(get_account_id),
    x_admin_secret: str | None = Header(default=None),
    settings: Settings = Depends(get_app_settings),
) -> bool:
    return is_admin(settings, account_id, x_admin_secret)


def require_admin(admin: bool = Depends(get_is_admin)) -> None:
    if not admin:
        raise ForbiddenError("Administrator rights are required")


__all__ = [
    "get_app_settings",
    "get_database",
    "get_object_store",
    "get_ledger",
    "get_embedder",
    "get_chat_model",
    "get_documents",
    "get_upload_broker",
    "get_ingest_pipeline",
    "get_conversations",
    "get_retrieval_service",
    "get_chat_engine",
    "get_account_id",
    "get_is_admin",
    "require_admin",
    "reset_dependencies",
]
