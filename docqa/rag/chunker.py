"""Text chunking utilities.

This module provides functions for splitting extracted document text into
overlapping, boundary-aware chunks.
"""

import re
from typing import List

from docqa.models import TextChunk

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_OVERLAP = 200

PARAGRAPH_SEPARATOR = "\n\n"

_PARAGRAPH_BREAK = re.compile(r"\n\n+")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")
_SENTENCE_END = re.compile(r"[.!?]\s")


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> List[TextChunk]:
    """Split text into paragraph-aligned chunks.

    Paragraphs are packed greedily into chunks of at most ``chunk_size``
    characters. Each new chunk starts with whole trailing sentences of the
    previous one, up to ``overlap`` characters. Paragraphs longer than
    ``chunk_size`` are split on word boundaries with a few words of overlap.

    Args:
        text: Text to chunk.
        chunk_size: Maximum characters per chunk.
        overlap: Maximum characters carried over between chunks.

    Returns:
        Chunks with contiguous indices starting at 0.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if not text or not text.strip():
        return []

    pieces: List[str] = []
    buffer = ""
    sep_len = len(PARAGRAPH_SEPARATOR)

    for raw in _PARAGRAPH_BREAK.split(text):
        paragraph = raw.strip()
        if not paragraph:
            continue

        if not buffer:
            if len(paragraph) <= chunk_size:
                buffer = paragraph
                continue
        elif len(buffer) + len(paragraph) + sep_len <= chunk_size:
            buffer = f"{buffer}{PARAGRAPH_SEPARATOR}{paragraph}"
            continue

        if buffer:
            pieces.append(buffer)

        if len(paragraph) > chunk_size:
            pieces.extend(_split_words(paragraph, chunk_size, overlap))
            buffer = ""
        else:
            budget = min(overlap, chunk_size - len(paragraph) - sep_len)
            prefix = _overlap_prefix(buffer, budget)
            buffer = f"{prefix}{PARAGRAPH_SEPARATOR}{paragraph}" if prefix else paragraph

    if buffer:
        pieces.append(buffer)

    return [
        TextChunk(text=piece, index=i, size=len(piece))
        for i, piece in enumerate(pieces)
    ]


def _split_words(paragraph: str, chunk_size: int, overlap: int) -> List[str]:
    words = paragraph.split()
    carry = max(overlap // 10, 5)
    out: List[str] = []
    current: List[str] = []
    current_size = 0

    for word in words:
        word_size = len(word) + 1
        if current and current_size + word_size > chunk_size:
            out.append(" ".join(current))
            current = current[-carry:] + [word]
            while len(current) > 1 and len(" ".join(current)) > chunk_size:
                current.pop(0)
            current_size = len(" ".join(current))
        else:
            current.append(word)
            current_size += word_size

    if current:
        out.append(" ".join(current))
    return out


def _overlap_prefix(text: str, budget: int) -> str:
    """Trailing whole sentences of ``text`` fitting in ``budget`` characters."""
    if budget <= 0 or len(text) <= budget:
        return ""

    prefix = ""
    for sentence in reversed(_SENTENCE_BREAK.split(text)):
        if len(prefix) + len(sentence) + 1 > budget:
            break
        prefix = f"{sentence} {prefix}" if prefix else sentence
    return prefix


def chunk_window(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> List[TextChunk]:
    """Split text into fixed-size sliding windows ending at sentence breaks.

    Each window is at most ``chunk_size`` characters and is pulled back to
    the last sentence end inside it when there is one. The next window
    starts ``overlap`` characters before the previous window's end.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")
    if not text or not text.strip():
        return []

    pieces: List[str] = []
    start = 0
    length = len(text)

    while start < length:
        end = min(start + chunk_size, length)
        if end < length:
            last = None
            for match in _SENTENCE_END.finditer(text, start, end + 1):
                last = match
            if last is not None and last.start() > start:
                end = last.start() + 1

        piece = text[start:end].strip()
        if piece:
            pieces.append(piece)

        if end >= length:
            break
        # Always advance, even when a sentence break sits close to ``start``.
        start = max(end - overlap, start + 1)

    return [
        TextChunk(text=piece, index=i, size=len(piece))
        for i, piece in enumerate(pieces)
    ]
