"""
Ingestion Package

1. Extract (unstructured) → plain text per file
2. Archive fan-out (zip) → one extraction per supported entry
3. Normalize (unicode/text cleanup, lines preserved) → clean text
"""

from .parser import (
    ALLOWED_EXTENSIONS,
    ARCHIVE_EXTENSIONS,
    TEXT_EXTENSIONS,
    DocumentTextExtractor,
    extract_text,
    file_extension,
)
from .archive import extract_archive, collect_documents
from .normalizer import normalize_text

__all__ = [
    "DocumentTextExtractor",
    "extract_text",
    "file_extension",
    "ALLOWED_EXTENSIONS",
    "ARCHIVE_EXTENSIONS",
    "TEXT_EXTENSIONS",
    "extract_archive",
    "collect_documents",
    "normalize_text",
]
