"""Text processing helpers."""

from __future__ import annotations

import math
import re


WHITESPACE_RE = re.compile(r"\s+")
_BLANK_RUN_RE = re.compile(r"\n[ \t]*(?:\n[ \t]*){2,}")
_TRAILING_SPACE_RE = re.compile(r"[ \t]+\n")
_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]")

CHARS_PER_TOKEN = 4
MAX_FILE_NAME_CHARS = 100


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def clean_extracted_text(text: str) -> str:
    """Unify line endings and squeeze runs of blank lines to one paragraph break."""
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")
    text = _TRAILING_SPACE_RE.sub("\n", text)
    text = _BLANK_RUN_RE.sub("\n\n", text)
    return text.strip()


def estimate_tokens(text: str | int) -> int:
    """Length heuristic: one token per four characters, rounded up."""
    length = text if isinstance(text, int) else len(text)
    return math.ceil(length / CHARS_PER_TOKEN)


def sanitize_file_name(name: str) -> str:
    """Replace characters outside ``[A-Za-z0-9._-]`` and cap the length."""
    return _UNSAFE_NAME_RE.sub("_", name)[:MAX_FILE_NAME_CHARS]


def excerpt(text: str, limit: int) -> str:
    """Return at most ``limit`` characters, marking truncation with an ellipsis."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."
