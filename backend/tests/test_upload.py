"""Tests for the upload broker and object store."""

from __future__ import annotations

import pytest

from classroom_rag.core.errors import (
    FileTooLargeError,
    ForbiddenScopeError,
    NotFoundError,
    UnauthenticatedError,
    UnsupportedMimeTypeError,
    UploadGrantError,
)
from classroom_rag.db.sqlite import SQLiteDatabase
from classroom_rag.storage.objects import ObjectStore
from classroom_rag.uploads.broker import DOCX_MIME, PDF_MIME, TEXT_MIME, UploadBroker, is_admin


def _count(database: SQLiteDatabase, table: str) -> int:
    return database.query_one(f"SELECT COUNT(*) AS count FROM {table}")["count"]


def test_create_upload_records_document_and_grant(broker: UploadBroker, database: SQLiteDatabase) -> None:
    ticket = broker.create_upload("teacher-1", "Séquence 3 - fractions.pdf", PDF_MIME, 2048)
    assert ticket.storage_path == f"teacher-1/{ticket.document_id}/S_quence_3_-_fractions.pdf"
    assert ticket.upload_url.endswith(ticket.upload_token)
    payload = ticket.to_dict()
    assert payload["documentId"] == ticket.document_id
    assert payload["scope"] == "user"

    row = database.query_one("SELECT status, owner_id, title FROM documents WHERE id = ?", [ticket.document_id])
    assert row["status"] == "uploaded"
    assert row["owner_id"] == "teacher-1"
    assert row["title"] == "Séquence 3 - fractions.pdf"
    assert _count(database, "upload_grants") == 1


@pytest.mark.parametrize(
    ("kwargs", "error"),
    [
        ({"account_id": None}, UnauthenticatedError),
        ({"mime_type": "image/png"}, UnsupportedMimeTypeError),
        ({"file_size": 10 * 1024 * 1024 + 1}, FileTooLargeError),
        ({"scope": "global"}, ForbiddenScopeError),
    ],
)
def test_rejections_leave_no_state(
    broker: UploadBroker, database: SQLiteDatabase, kwargs: dict, error: type[Exception]
) -> None:
    request = {
        "account_id": "teacher-1",
        "file_name": "notes.txt",
        "mime_type": TEXT_MIME,
        "file_size": 100,
        "scope": "user",
    }
    request.update(kwargs)
    with pytest.raises(error):
        broker.create_upload(**request)
    assert _count(database, "documents") == 0
    assert _count(database, "upload_grants") == 0


def test_admin_may_publish_globally(broker: UploadBroker) -> None:
    ticket = broker.create_upload("admin", "programme.docx", DOCX_MIME, 100, scope="global", is_admin=True)
    assert ticket.storage_path.startswith("global/")
    assert ticket.scope == "global"


def test_is_admin(settings) -> None:
    assert is_admin(settings, "admin") is True
    assert is_admin(settings, "teacher-1") is False
    secret_settings = settings.model_copy(update={"admin_secret": "s3cret"})
    assert is_admin(secret_settings, "teacher-1", "s3cret") is True
    assert is_admin(secret_settings, "teacher-1", "wrong") is False


def test_grant_is_single_use(broker: UploadBroker, store: ObjectStore, database: SQLiteDatabase) -> None:
    ticket = broker.create_upload("teacher-1", "notes.txt", TEXT_MIME, 5)
    store.write_with_grant(ticket.upload_token, b"hello")
    assert store.get(ticket.storage_path) == b"hello"
    row = database.query_one("SELECT file_size FROM documents WHERE id = ?", [ticket.document_id])
    assert row["file_size"] == 5

    with pytest.raises(UploadGrantError):
        store.write_with_grant(ticket.upload_token, b"overwrite")
    assert store.get(ticket.storage_path) == b"hello"


def test_unknown_and_expired_grants(broker: UploadBroker, store: ObjectStore, database: SQLiteDatabase) -> None:
    with pytest.raises(UploadGrantError):
        store.write_with_grant("not-a-token", b"data")

    ticket = broker.create_upload("teacher-1", "notes.txt", TEXT_MIME, 4)
    database.execute("UPDATE upload_grants SET expires_at = 0 WHERE token = ?", [ticket.upload_token])
    database.commit()
    with pytest.raises(UploadGrantError):
        store.write_with_grant(ticket.upload_token, b"data")


def test_oversized_body_is_rejected(broker: UploadBroker, store: ObjectStore, database: SQLiteDatabase) -> None:
    ticket = broker.create_upload("teacher-1", "notes.txt", TEXT_MIME, 4)
    database.execute("UPDATE upload_grants SET max_bytes = 4 WHERE token = ?", [ticket.upload_token])
    database.commit()
    with pytest.raises(FileTooLargeError):
        store.write_with_grant(ticket.upload_token, b"too large")
    store.write_with_grant(ticket.upload_token, b"ok!!")


def test_store_refuses_paths_outside_root(store: ObjectStore) -> None:
    with pytest.raises(UploadGrantError):
        store.put("../escape.txt", b"x")
    with pytest.raises(NotFoundError):
        store.get("teacher-1/missing/file.txt")
