"""
Zip archive fan-out.

extract_archive() unpacks an uploaded zip into a temporary directory, yields
the supported document files found anywhere inside it (sorted, recursive), and
removes the directory on exit whether processing succeeded or not.
"""

import logging
import tempfile
import zipfile
import zlib
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List

from exam_analyzer.errors import ExtractionFailure
from exam_analyzer.ingestion.parser import TEXT_EXTENSIONS, file_extension

log = logging.getLogger(__name__)


def _is_safe_member(root: Path, member: str) -> bool:
    target = (root / member).resolve()
    return target == root or root in target.parents


def _extract_members(archive: zipfile.ZipFile, root: Path) -> None:
    for info in archive.infolist():
        if info.is_dir():
            continue
        if not _is_safe_member(root, info.filename):
            log.warning("Archive: skipping entry outside extraction dir: %s", info.filename)
            continue
        # A corrupt entry is skipped; its siblings are still extracted
        try:
            archive.extract(info, root)
        except (zipfile.BadZipFile, zlib.error, OSError, EOFError) as e:
            log.error("Archive: failed to extract %s: %s", info.filename, e)
            partial = root / info.filename
            if partial.is_file():
                partial.unlink()


def collect_documents(root: Path) -> List[Path]:
    """Supported files under `root`, recursively, in a stable order."""
    files = []
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        # macOS resource forks and hidden files
        if "__MACOSX" in path.parts or path.name.startswith("."):
            continue
        if file_extension(path.name) in TEXT_EXTENSIONS:
            files.append(path)
    return files


@contextmanager
def extract_archive(zip_path: str) -> Iterator[List[Path]]:
    """
    Context manager yielding the supported files inside a zip archive.

    Raises:
        ExtractionFailure: the file is not a readable zip archive
    """
    with tempfile.TemporaryDirectory(prefix="exam_zip_") as tmp:
        root = Path(tmp).resolve()
        try:
            with zipfile.ZipFile(zip_path) as archive:
                _extract_members(archive, root)
        except (zipfile.BadZipFile, OSError) as e:
            raise ExtractionFailure(f"Could not open zip archive: {e}") from e

        files = collect_documents(root)
        log.info("Archive: %s supported files in %s", len(files), Path(zip_path).name)
        yield files
