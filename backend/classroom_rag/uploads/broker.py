"""Validate upload requests and hand out single-use storage destinations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from classroom_rag.core.config import Settings
from classroom_rag.core.errors import (
    FileTooLargeError,
    ForbiddenScopeError,
    UnauthenticatedError,
    UnsupportedMimeTypeError,
    ValidationError,
)
from classroom_rag.core.logging import get_logger, log_context
from classroom_rag.db.sqlite import SQLiteDatabase
from classroom_rag.storage.objects import ObjectStore
from classroom_rag.utils.ids import new_id
from classroom_rag.utils.text import sanitize_file_name
from classroom_rag.utils.time import from_ms, now_ms

logger = get_logger(__name__)

Scope = Literal["user", "global"]

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_MIME = "application/msword"
TEXT_MIME = "text/plain"

ALLOWED_MIME_TYPES: tuple[str, ...] = (PDF_MIME, DOCX_MIME, DOC_MIME, TEXT_MIME)

GLOBAL_PREFIX = "global"


@dataclass(slots=True)
class UploadTicket:
    document_id: str
    storage_path: str
    upload_url: str
    upload_token: str
    expires_at: int
    scope: Scope

    def to_dict(self) -> dict[str, object]:
        return {
            "documentId": self.document_id,
            "storagePath": self.storage_path,
            "uploadUrl": self.upload_url,
            "uploadToken": self.upload_token,
            "expiresAt": from_ms(self.expires_at).isoformat(),
            "scope": self.scope,
        }


class UploadBroker:
    """Creates the ``uploaded`` document record together with its upload grant."""

    def __init__(self, database: SQLiteDatabase, store: ObjectStore, settings: Settings) -> None:
        self.db = database
        self.store = store
        self.settings = settings

    def create_upload(
        self,
        account_id: str | None,
        file_name: str,
        mime_type: str,
        file_size: int,
        scope: Scope = "user",
        is_admin: bool = False,
    ) -> UploadTicket:
        if not account_id:
            raise UnauthenticatedError("An account id is required to upload documents")
        if not file_name or not file_name.strip():
            raise ValidationError("fileName is required")
        if mime_type not in ALLOWED_MIME_TYPES:
            raise UnsupportedMimeTypeError(mime_type)
        if file_size < 0:
            raise ValidationError("fileSize cannot be negative")
        if file_size > self.settings.max_upload_bytes:
            raise FileTooLargeError(file_size, self.settings.max_upload_bytes)
        if scope == "global" and not is_admin:
            raise ForbiddenScopeError()

        document_id = new_id()
        owner_prefix = GLOBAL_PREFIX if scope == "global" else account_id
        storage_path = f"{owner_prefix}/{document_id}/{sanitize_file_name(file_name)}"
        created = now_ms()

        with self.db.transaction() as cur:
            cur.execute(
                """
                INSERT INTO documents (
                  id, owner_id, scope, title, mime_type, storage_path, file_size,
                  status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 'uploaded', ?, ?)
                """,
                [document_id, account_id, scope, file_name, mime_type, storage_path, file_size, created, created],
            )
            grant = self.store.issue_grant(
                cur,
                document_id=document_id,
                storage_path=storage_path,
                max_bytes=self.settings.max_upload_bytes,
                ttl_seconds=self.settings.upload_grant_ttl_seconds,
            )

        logger.info(
            "Upload prepared",
            extra=log_context(
                account_id=account_id,
                document_id=document_id,
                scope=scope,
                mime_type=mime_type,
                file_size=file_size,
            ),
        )
        return UploadTicket(
            document_id=document_id,
            storage_path=storage_path,
            upload_url=f"/storage/upload/{grant.token}",
            upload_token=grant.token,
            expires_at=grant.expires_at,
            scope=scope,
        )


def is_admin(settings: Settings, account_id: str | None, admin_secret: str | None = None) -> bool:
    """Admins are configured account ids or callers presenting the admin secret."""
    if account_id and account_id in settings.admin_account_ids:
        return True
    return bool(settings.admin_secret) and admin_secret == settings.admin_secret


__all__ = ["UploadBroker", "UploadTicket", "ALLOWED_MIME_TYPES", "is_admin"]
