"""Chunking utilities.

Chunks are exact slices of the extracted text. Consecutive chunks share up to
``overlap_chars`` characters, so the text is recovered by concatenating the
first chunk with every later chunk minus its leading ``overlap`` characters.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator

from classroom_rag.ingest.types import ChunkDraft
from classroom_rag.utils.hashing import content_hash
from classroom_rag.utils.text import estimate_tokens

_PARAGRAPH_RE = re.compile(r"\n[ \t]*\n")
_SENTENCE_RE = re.compile(r"[.!?…](?=\s)")
_WHITESPACE_RE = re.compile(r"\s")


@dataclass(slots=True)
class Segment:
    text: str
    start: int
    end: int


def chunk_text(
    text: str,
    target_chars: int = 1000,
    min_chars: int = 200,
    max_chars: int = 1500,
    overlap_chars: int = 150,
) -> list[ChunkDraft]:
    """Split text into overlapping chunks of roughly ``target_chars``."""
    check_chunk_bounds(target_chars, min_chars, max_chars, overlap_chars)
    if not text.strip():
        return []
    chunks: list[ChunkDraft] = []
    previous_end = 0
    for index, segment in enumerate(_iter_segments(text, target_chars, min_chars, max_chars, overlap_chars)):
        overlap = max(0, previous_end - segment.start) if index else 0
        chunks.append(
            ChunkDraft(
                index=index,
                content=segment.text,
                start_char=segment.start,
                end_char=segment.end,
                overlap=overlap,
                content_hash=content_hash(segment.text),
                token_count=estimate_tokens(segment.text),
            )
        )
        previous_end = segment.end
    return chunks


def check_chunk_bounds(target_chars: int, min_chars: int, max_chars: int, overlap_chars: int) -> None:
    """Reject sizes for which some text cannot be cut into chunks within ``[min, max]``.

    Any remainder longer than ``max_chars`` has to split into two chunks of at
    least ``min_chars`` each, so ``max_chars`` must be at least ``2 * min_chars``.
    """
    if not 0 < min_chars <= target_chars <= max_chars:
        raise ValueError("chunk sizes must satisfy 0 < min <= target <= max")
    if max_chars < 2 * min_chars:
        raise ValueError("maximum chunk size must be at least twice the minimum")
    if not 0 <= overlap_chars < min_chars:
        raise ValueError("chunk overlap must be smaller than the minimum chunk size")


def reconstruct(chunks: list[ChunkDraft]) -> str:
    """Reassemble the source text from its chunks."""
    if not chunks:
        return ""
    return chunks[0].content + "".join(chunk.content[chunk.overlap :] for chunk in chunks[1:])


def _iter_segments(
    text: str,
    target_chars: int,
    min_chars: int,
    max_chars: int,
    overlap_chars: int,
) -> Iterator[Segment]:
    length = len(text)
    start = 0
    while True:
        if length - start <= max_chars:
            yield Segment(text=text[start:], start=start, end=length)
            return
        end = _find_break(text, start, target_chars, min_chars, max_chars)
        yield Segment(text=text[start:end], start=start, end=end)
        start = _next_start(text, end, overlap_chars)


def _find_break(text: str, start: int, target_chars: int, min_chars: int, max_chars: int) -> int:
    # The tail after the break must still be a full-size chunk.
    low = start + min_chars
    high = min(start + max_chars, len(text) - min_chars)
    target = min(max(start + target_chars, low), high)
    for pattern, use_end in ((_PARAGRAPH_RE, False), (_SENTENCE_RE, True), (_WHITESPACE_RE, False)):
        best: int | None = None
        for match in pattern.finditer(text, low, high + 1):
            position = match.end() if use_end else match.start()
            if not low <= position <= high:
                continue
            if best is None or abs(position - target) < abs(best - target):
                best = position
            if position >= target:
                break
        if best is not None:
            return best
    return target


def _next_start(text: str, end: int, overlap_chars: int) -> int:
    candidate = max(end - overlap_chars, 0)
    position = candidate
    while position < end:
        if not text[position].isspace() and (position == 0 or text[position - 1].isspace()):
            return position
        position += 1
    return candidate


__all__ = ["chunk_text", "check_chunk_bounds", "reconstruct", "Segment"]
