"""Hashing utilities."""

from __future__ import annotations

import hashlib

from classroom_rag.utils.text import normalize


def sha256_bytes(data: bytes) -> str:
    """Return hex digest for bytes input."""
    return hashlib.sha256(data).hexdigest()


def content_hash(text: str) -> str:
    """Stable hash of whitespace-normalized text."""
    return sha256_bytes(normalize(text).encode("utf-8"))
