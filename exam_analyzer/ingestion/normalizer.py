"""
Unicode and Text Normalization

Cleans extracted text before analysis. Unlike element-level cleanup, line
structure is kept: the heuristic extractor relies on question markers sitting
at the start of a line.
"""

import logging
import re

log = logging.getLogger(__name__)


def normalize_line(line: str) -> str:
    """Clean a single line of PDF/DOCX/OCR artifacts."""
    # Remove CID artifacts (PDF encoding errors like "(cid:123)")
    line = re.sub(r'\(cid:\d+\)', '', line)

    # Remove Private Use Area (PUA) characters: U+E000..U+F8FF
    line = re.sub(r'[\uE000-\uF8FF]', '', line)

    # Remove unicode control characters and zero-width spaces (tab becomes a space below)
    line = re.sub(r'[\u0000-\u0008\u000B-\u001F\u007F-\u009F\u200B-\u200D\uFEFF]', '', line)

    # Normalize different types of spaces to regular space
    line = re.sub(r'[\t\u00A0\u2000-\u200A\u202F\u205F]', ' ', line)

    # Normalize hyphens/dashes and quotes
    line = re.sub(r'[\u2010-\u2015\u2212]', '-', line)
    line = re.sub(r'[\u201C\u201D]', '"', line)
    line = re.sub(r'[\u2018\u2019]', "'", line)

    # Collapse runs of spaces
    line = re.sub(r' {2,}', ' ', line)

    # "( 2 marks )" → "(2 marks)"
    line = re.sub(r'([\(\[])\s+', r'\1', line)
    line = re.sub(r'\s+([\)\]])', r'\1', line)

    return line.strip()


def normalize_text(text: str) -> str:
    """
    Normalize extracted document text line by line.

    Removes CID artifacts, private-use glyphs and zero-width characters,
    collapses whitespace within each line, and squeezes runs of blank lines
    down to one so paragraphs stay separable.
    """
    if not text or not text.strip():
        return ""

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [normalize_line(line) for line in text.split("\n")]

    cleaned = "\n".join(lines)
    cleaned = re.sub(r'\n{3,}', '\n\n', cleaned)
    cleaned = cleaned.strip()

    log.debug("Normalize: %s → %s chars", len(text), len(cleaned))
    return cleaned
