"""Conversation and message persistence."""

from __future__ import annotations

import sqlite3
from typing import Any, Sequence

import orjson

from classroom_rag.core.errors import NotFoundError
from classroom_rag.db.sqlite import SQLiteDatabase
from classroom_rag.utils.ids import new_id
from classroom_rag.utils.time import from_ms, now_ms

TITLE_CHARS = 60


class ConversationStore:
    def __init__(self, database: SQLiteDatabase) -> None:
        self.db = database

    def get_or_create(
        self,
        cursor: sqlite3.Cursor,
        account_id: str,
        conversation_id: str | None,
        first_message: str,
        mode: str,
        document_id: str | None = None,
    ) -> str:
        """Reuse the caller's conversation; an unknown or foreign id starts a new one."""
        now = now_ms()
        if conversation_id:
            touched = cursor.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ? AND account_id = ?",
                [now, conversation_id, account_id],
            )
            if touched.rowcount:
                return conversation_id
        new_conversation = new_id("conv")
        cursor.execute(
            """
            INSERT INTO conversations (id, account_id, title, mode, document_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [new_conversation, account_id, _title(first_message), mode, document_id, now, now],
        )
        return new_conversation

    def owned(self, account_id: str, conversation_id: str | None) -> bool:
        if not conversation_id:
            return False
        row = self.db.query_one(
            "SELECT 1 FROM conversations WHERE id = ? AND account_id = ?",
            [conversation_id, account_id],
        )
        return row is not None

    def history(self, conversation_id: str, limit: int) -> list[dict[str, str]]:
        """The last ``limit`` messages, oldest first, as chat messages."""
        rows = self.db.query(
            """
            SELECT role, content FROM (
              SELECT role, content, seq FROM messages WHERE conversation_id = ? ORDER BY seq DESC LIMIT ?
            ) ORDER BY seq ASC
            """,
            [conversation_id, limit],
        )
        return [{"role": row["role"], "content": row["content"]} for row in rows]

    def append(
        self,
        cursor: sqlite3.Cursor,
        conversation_id: str,
        role: str,
        content: str,
        sources: Sequence[dict[str, Any]] | None = None,
        tokens_used: int = 0,
    ) -> str:
        message_id = new_id("msg")
        cursor.execute(
            """
            INSERT INTO messages (id, conversation_id, seq, role, content, sources_json, tokens_used, created_at)
            VALUES (
              ?, ?,
              (SELECT COALESCE(MAX(seq), 0) + 1 FROM messages WHERE conversation_id = ?),
              ?, ?, ?, ?, ?
            )
            """,
            [
                message_id,
                conversation_id,
                conversation_id,
                role,
                content,
                orjson.dumps(list(sources)).decode("utf-8") if sources is not None else None,
                tokens_used,
                now_ms(),
            ],
        )
        return message_id

    def list_for(self, account_id: str) -> list[dict[str, Any]]:
        rows = self.db.query(
            """
            SELECT c.id, c.title, c.mode, c.document_id, c.created_at, c.updated_at,
                   (SELECT COUNT(*) FROM messages m WHERE m.conversation_id = c.id) AS message_count
            FROM conversations c
            WHERE c.account_id = ?
            ORDER BY c.updated_at DESC
            """,
            [account_id],
        )
        return [
            {
                "id": row["id"],
                "title": row["title"],
                "mode": row["mode"],
                "documentId": row["document_id"],
                "messageCount": row["message_count"],
                "createdAt": from_ms(row["created_at"]).isoformat(),
                "updatedAt": from_ms(row["updated_at"]).isoformat(),
            }
            for row in rows
        ]

    def get(self, account_id: str, conversation_id: str) -> dict[str, Any]:
        row = self.db.query_one(
            "SELECT id, title, mode, document_id, created_at, updated_at FROM conversations "
            "WHERE id = ? AND account_id = ?",
            [conversation_id, account_id],
        )
        if row is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        messages = self.db.query(
            "SELECT id, seq, role, content, sources_json, tokens_used, created_at FROM messages "
            "WHERE conversation_id = ? ORDER BY seq ASC",
            [conversation_id],
        )
        return {
            "id": row["id"],
            "title": row["title"],
            "mode": row["mode"],
            "documentId": row["document_id"],
            "createdAt": from_ms(row["created_at"]).isoformat(),
            "updatedAt": from_ms(row["updated_at"]).isoformat(),
            "messages": [
                {
                    "id": message["id"],
                    "role": message["role"],
                    "content": message["content"],
                    "sources": orjson.loads(message["sources_json"]) if message["sources_json"] else [],
                    "tokensUsed": message["tokens_used"],
                    "createdAt": from_ms(message["created_at"]).isoformat(),
                }
                for message in messages
            ],
        }


def _title(message: str) -> str:
    text = " ".join(message.split())
    return text if len(text) <= TITLE_CHARS else text[: TITLE_CHARS - 3].rstrip() + "..."


__all__ = ["ConversationStore"]
