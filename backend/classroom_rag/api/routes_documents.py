"""Document upload, ingestion and management routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.concurrency import run_in_threadpool

from classroom_rag.api.dependencies import (
    get_account_id,
    get_app_settings,
    get_documents,
    get_ingest_pipeline,
    get_is_admin,
    get_object_store,
    get_upload_broker,
)
from classroom_rag.core.config import Settings
from classroom_rag.core.errors import FileTooLargeError
from classroom_rag.ingest.pipeline import IngestPipeline
from classroom_rag.models.dto import DeleteResponse, IngestRequest, UploadRequest, UploadResponse
from classroom_rag.storage.documents import DocumentRepository
from classroom_rag.storage.objects import ObjectStore
from classroom_rag.uploads.broker import UploadBroker

router = APIRouter()


@router.post("/documents/upload", response_model=UploadResponse, summary="Prepare a document upload")
def create_upload(
    request: UploadRequest,
    account_id: str = Depends(get_account_id),
    admin: bool = Depends(get_is_admin),
    broker: UploadBroker = Depends(get_upload_broker),
) -> UploadResponse:
    ticket = broker.create_upload(
        account_id,
        file_name=request.file_name,
        mime_type=request.mime_type,
        file_size=request.file_size,
        scope=request.scope,
        is_admin=admin,
    )
    return UploadResponse.model_validate(ticket.to_dict())


@router.put("/storage/upload/{token}", summary="Write document bytes with an upload grant")
async def upload_bytes(
    token: str,
    request: Request,
    store: ObjectStore = Depends(get_object_store),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    declared = request.headers.get("content-length")
    grant_limit = settings.max_upload_bytes
    if declared and declared.isdigit() and int(declared) > grant_limit:
        raise FileTooLargeError(int(declared), grant_limit)
    payload = await request.body()
    # Grant consumption locks SQLite and writes the file; keep it off the event loop.
    grant = await run_in_threadpool(store.write_with_grant, token, payload)
    return {"documentId": grant.document_id, "storagePath": grant.storage_path, "bytes": len(payload)}


@router.post("/documents/{document_id}/ingest", summary="Extract, chunk and embed a document")
def ingest_document(
    document_id: str,
    request: IngestRequest | None = Body(default=None),
    account_id: str = Depends(get_account_id),
    admin: bool = Depends(get_is_admin),
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> dict[str, Any]:
    scope = request.scope if request else None
    outcome = pipeline.ingest(document_id, account_id, is_admin=admin, scope=scope)
    return outcome.to_dict()


@router.get("/documents", summary="List documents reachable by the caller")
def list_documents(
    status: str | None = None,
    account_id: str = Depends(get_account_id),
    documents: DocumentRepository = Depends(get_documents),
) -> list[dict[str, Any]]:
    return [document.to_dict() for document in documents.list_reachable(account_id, status=status)]


@router.get("/documents/{document_id}", summary="Document status")
def get_document(
    document_id: str,
    account_id: str = Depends(get_account_id),
    documents: DocumentRepository = Depends(get_documents),
) -> dict[str, Any]:
    return documents.get_reachable(document_id, account_id).to_dict()


@router.delete("/documents/{document_id}", response_model=DeleteResponse, summary="Delete a document")
def delete_document(
    document_id: str,
    account_id: str = Depends(get_account_id),
    admin: bool = Depends(get_is_admin),
    documents: DocumentRepository = Depends(get_documents),
) -> DeleteResponse:
    deleted = documents.delete(document_id, account_id, is_admin=admin)
    return DeleteResponse(status="ok", deleted=deleted.id, released_tokens=deleted.token_count)

