"""ID helpers."""

from __future__ import annotations

import secrets
import uuid

GRANT_TOKEN_BYTES = 32


def new_id(prefix: str | None = None) -> str:
    """Random UUID4 hex; prefixed ids (``chk_``, ``conv_``...) name the table they key."""
    base = uuid.uuid4().hex
    return f"{prefix}_{base}" if prefix else base


def new_grant_token(nbytes: int = GRANT_TOKEN_BYTES) -> str:
    """Unguessable URL-safe token for a single-use upload destination."""
    return secrets.token_urlsafe(nbytes)


def new_request_id() -> str:
    return uuid.uuid4().hex[:16]
