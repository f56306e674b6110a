"""
Document text extraction using the unstructured library.

Contract: extract_text(file_path, file_type) returns the document's text, or an
empty string for unsupported, unreadable or corrupt input. It never raises.
"""

import logging
from pathlib import Path
from typing import List

# Suppress verbose PDF parsing warnings (pdfminer color space issues)
logging.getLogger("pdfminer").setLevel(logging.ERROR)
logging.getLogger("PIL").setLevel(logging.ERROR)
logging.getLogger("unstructured").setLevel(logging.WARNING)

log = logging.getLogger(__name__)

DOCUMENT_EXTENSIONS = {"pdf", "docx", "doc", "txt"}
IMAGE_EXTENSIONS = {"jpg", "jpeg", "png"}
TEXT_EXTENSIONS = DOCUMENT_EXTENSIONS | IMAGE_EXTENSIONS
ARCHIVE_EXTENSIONS = {"zip"}
ALLOWED_EXTENSIONS = TEXT_EXTENSIONS | ARCHIVE_EXTENSIONS


def file_extension(filename: str) -> str:
    return Path(filename or "").suffix.lower().lstrip(".")


class DocumentTextExtractor:
    """
    Routes a file to the partitioner for its type and joins element text.
    """

    @staticmethod
    def extract_text(file_path: str, file_type: str = "") -> str:
        """
        Extract plain text from a document.

        Args:
            file_path: Path to the file on disk
            file_type: Declared extension ("pdf", "docx", ...); derived from
                       the path when empty

        Returns:
            Extracted UTF-8 text, "" on any failure
        """
        ext = (file_type or file_extension(file_path)).lower().lstrip(".")
        log.info("Extract: start file=%s type=%s", Path(file_path).name, ext)

        if ext not in TEXT_EXTENSIONS:
            log.warning("Extract: unsupported file type %s", ext)
            return ""
        if not Path(file_path).is_file():
            log.warning("Extract: file not found %s", file_path)
            return ""

        try:
            if ext == "txt":
                text = DocumentTextExtractor._read_txt(file_path)
            else:
                text = DocumentTextExtractor._join(DocumentTextExtractor._partition(file_path, ext))
        except ImportError as e:
            log.error("Extract: %s parsing requires unstructured extras (%s)", ext, e)
            return ""
        except Exception as e:
            log.error("Extract: failed file=%s: %s", Path(file_path).name, e)
            return ""

        log.info("Extract: done file=%s chars=%s", Path(file_path).name, len(text))
        return text

    @staticmethod
    def _read_txt(file_path: str) -> str:
        raw = Path(file_path).read_bytes()
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return raw.decode("latin-1")

    @staticmethod
    def _partition(file_path: str, ext: str) -> List:
        if ext == "pdf":
            from unstructured.partition.pdf import partition_pdf
            return partition_pdf(filename=file_path, strategy="fast", include_page_breaks=False)
        if ext == "docx":
            from unstructured.partition.docx import partition_docx
            return partition_docx(filename=file_path)
        if ext == "doc":
            from unstructured.partition.doc import partition_doc
            return partition_doc(filename=file_path)
        from unstructured.partition.image import partition_image
        return partition_image(filename=file_path, strategy="ocr_only", languages=["eng"])

    @staticmethod
    def _join(elements: List) -> str:
        texts = []
        for element in elements:
            text = getattr(element, "text", None)
            if text and text.strip():
                texts.append(text.strip())
        return "\n".join(texts)


def extract_text(file_path: str, file_type: str = "") -> str:
    return DocumentTextExtractor.extract_text(file_path, file_type)
