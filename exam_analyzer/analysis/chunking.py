"""
Paragraph-aligned text chunking for documents too long for one request.

Paragraphs are separated by one or more blank lines. A chunk never splits a
paragraph; a single paragraph longer than the budget becomes its own chunk.
"""

import re
from typing import List

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
PARAGRAPH_SEPARATOR = "\n\n"


def split_paragraphs(text: str) -> List[str]:
    return [p.strip() for p in _PARAGRAPH_SPLIT_RE.split(text or "") if p.strip()]


def split_into_chunks(text: str, max_chars: int) -> List[str]:
    """
    Greedily pack paragraphs into chunks of at most `max_chars` characters.

    Args:
        text:      Full document text
        max_chars: Character budget per chunk (must be positive)

    Returns:
        Chunks in document order; empty list for blank text.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")

    chunks: List[str] = []
    current: List[str] = []
    current_len = 0

    for paragraph in split_paragraphs(text):
        added = len(paragraph) + (len(PARAGRAPH_SEPARATOR) if current else 0)
        if current and current_len + added > max_chars:
            chunks.append(PARAGRAPH_SEPARATOR.join(current))
            current, current_len = [], 0
            added = len(paragraph)
        current.append(paragraph)
        current_len += added

    if current:
        chunks.append(PARAGRAPH_SEPARATOR.join(current))
    return chunks
