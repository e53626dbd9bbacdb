"""Local object storage guarded by single-use upload grants."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path

from classroom_rag.core.errors import FileTooLargeError, NotFoundError, UploadGrantError
from classroom_rag.core.logging import get_logger, log_context
from classroom_rag.db.sqlite import SQLiteDatabase
from classroom_rag.utils.ids import new_grant_token
from classroom_rag.utils.time import now_ms

logger = get_logger(__name__)


@dataclass(slots=True)
class UploadGrant:
    token: str
    document_id: str
    storage_path: str
    max_bytes: int
    expires_at: int


class ObjectStore:
    """Stores document bytes below ``root`` at their storage path."""

    def __init__(self, root: Path, database: SQLiteDatabase) -> None:
        self.root = root.expanduser()
        self.db = database

    def resolve(self, storage_path: str) -> Path:
        path = (self.root / storage_path).resolve()
        root = self.root.resolve()
        if root not in path.parents:
            raise UploadGrantError(f"Storage path {storage_path!r} escapes the object store")
        return path

    def issue_grant(
        self,
        cursor: sqlite3.Cursor,
        document_id: str,
        storage_path: str,
        max_bytes: int,
        ttl_seconds: int,
    ) -> UploadGrant:
        """Record a grant inside the caller's transaction."""
        created = now_ms()
        grant = UploadGrant(
            token=new_grant_token(),
            document_id=document_id,
            storage_path=storage_path,
            max_bytes=max_bytes,
            expires_at=created + ttl_seconds * 1000,
        )
        cursor.execute(
            """
            INSERT INTO upload_grants (token, document_id, storage_path, max_bytes, expires_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [grant.token, grant.document_id, grant.storage_path, grant.max_bytes, grant.expires_at, created],
        )
        return grant

    def write_with_grant(self, token: str, payload: bytes) -> UploadGrant:
        """Consume ``token`` and write ``payload`` to its storage path.

        The grant is marked used by a conditional UPDATE in the same
        transaction as the write, so a second write with the same token fails.
        """
        with self.db.transaction() as cur:
            row = cur.execute(
                "SELECT token, document_id, storage_path, max_bytes, expires_at, used_at "
                "FROM upload_grants WHERE token = ?",
                [token],
            ).fetchone()
            if row is None:
                raise UploadGrantError("Unknown upload grant")
            if row["used_at"] is not None:
                raise UploadGrantError("Upload grant has already been used")
            now = now_ms()
            if row["expires_at"] <= now:
                raise UploadGrantError("Upload grant has expired")
            if len(payload) > row["max_bytes"]:
                raise FileTooLargeError(len(payload), row["max_bytes"])
            claimed = cur.execute(
                "UPDATE upload_grants SET used_at = ? WHERE token = ? AND used_at IS NULL",
                [now, token],
            )
            if claimed.rowcount == 0:
                raise UploadGrantError("Upload grant has already been used")
            grant = UploadGrant(
                token=row["token"],
                document_id=row["document_id"],
                storage_path=row["storage_path"],
                max_bytes=row["max_bytes"],
                expires_at=row["expires_at"],
            )
            self.put(grant.storage_path, payload)
            cur.execute(
                "UPDATE documents SET file_size = ?, updated_at = ? WHERE id = ?",
                [len(payload), now, grant.document_id],
            )
        logger.info(
            "Stored upload",
            extra=log_context(document_id=grant.document_id, bytes=len(payload)),
        )
        return grant

    def put(self, storage_path: str, payload: bytes) -> Path:
        path = self.resolve(storage_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".part")
        tmp_path.write_bytes(payload)
        tmp_path.replace(path)
        return path

    def get(self, storage_path: str) -> bytes:
        path = self.resolve(storage_path)
        if not path.exists():
            raise NotFoundError(f"No stored object at {storage_path}")
        return path.read_bytes()

    def delete(self, storage_path: str) -> None:
        path = self.resolve(storage_path)
        path.unlink(missing_ok=True)
        for parent in path.parents:
            if parent == self.root.resolve():
                break
            try:
                parent.rmdir()
            except OSError:
                break


__all__ = ["ObjectStore", "UploadGrant"]
