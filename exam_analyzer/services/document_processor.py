"""
Document processing pipeline.

One file:  Extract → Normalize → Analyze (AI, primary → fallback)
           → Heuristic on total AI failure → Persist (one transaction)
One zip:   the same pipeline per supported entry, run concurrently; every
           entry gets its own result so one bad file never hides the others.

Persistence calls contain no awaits, so concurrent entries sharing a session
never interleave inside a transaction.
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from sqlalchemy.orm import Session

from exam_analyzer.analysis.heuristic import HeuristicExtractor
from exam_analyzer.analysis.orchestrator import AnalysisOrchestrator
from exam_analyzer.analysis.schemas import AnalysisFailure
from exam_analyzer.database import crud
from exam_analyzer.database.schemas import FileProcessingResult
from exam_analyzer.errors import ExtractionFailure, PersistenceFailure
from exam_analyzer.ingestion.archive import extract_archive
from exam_analyzer.ingestion.normalizer import normalize_text
from exam_analyzer.ingestion.parser import ARCHIVE_EXTENSIONS, DocumentTextExtractor, file_extension

log = logging.getLogger(__name__)

MAX_CONCURRENT_FILES = 4
NO_TEXT_ERROR = "Could not extract text from file"


class DocumentProcessor:
    """Runs uploaded documents through extraction, analysis and persistence."""

    def __init__(
        self,
        orchestrator: AnalysisOrchestrator,
        extractor=DocumentTextExtractor,
        heuristic=HeuristicExtractor,
        max_concurrency: int = MAX_CONCURRENT_FILES,
    ):
        self.orchestrator = orchestrator
        self.extractor = extractor
        # Called with the filename; the result's analyze(text) runs on total AI failure
        self.heuristic = heuristic
        self.max_concurrency = max(1, max_concurrency)

    async def process_file(
        self,
        db: Session,
        file_path: str,
        original_filename: str,
        file_type: Optional[str] = None,
        stored_path: Optional[str] = None,
    ) -> FileProcessingResult:
        """
        Run one document through the pipeline.

        Never raises for per-file problems: extraction, analysis and
        persistence failures come back as an unsuccessful result.
        """
        file_type = (file_type or file_extension(original_filename)).lower()
        log.info("Pipeline: start file=%s type=%s", original_filename, file_type)

        # Step 1: Extract (blocking partitioners run off the event loop)
        raw_text = await asyncio.to_thread(self.extractor.extract_text, file_path, file_type)
        text = normalize_text(raw_text)
        if not text:
            log.warning("Pipeline: no text extracted from %s", original_filename)
            return FileProcessingResult(filename=original_filename, success=False, error=NO_TEXT_ERROR)

        # Step 2: Analyze with AI, heuristic fallback on total failure
        details = None
        analysis = await self.orchestrator.analyze_document_content(text)
        if isinstance(analysis, AnalysisFailure):
            log.warning(
                "Pipeline: AI analysis failed for %s, using heuristic extractor: %s",
                original_filename, analysis.details,
            )
            details = {"ai_error": analysis.error, **analysis.details}
            analysis = await self.heuristic(original_filename).analyze(text)

        # Step 3: Persist paper + tree atomically
        try:
            paper = crud.store_analysis(
                db,
                analysis,
                original_filename=original_filename,
                file_path=stored_path or file_path,
                file_type=file_type,
            )
        except PersistenceFailure as e:
            return FileProcessingResult(
                filename=original_filename,
                success=False,
                analysis_source=analysis.source,
                error=str(e),
                details=details,
            )

        log.info(
            "Pipeline: done file=%s paper_id=%s source=%s questions=%s",
            original_filename, paper.id, analysis.source, analysis.question_count(),
        )
        return FileProcessingResult(
            filename=original_filename,
            success=True,
            paper_id=paper.id,
            analysis_source=analysis.source,
            question_count=analysis.question_count(),
            details=details,
        )

    async def process_archive(
        self,
        db: Session,
        zip_path: str,
        original_filename: str,
        stored_path: Optional[str] = None,
    ) -> List[FileProcessingResult]:
        """Fan a zip out into per-entry pipeline runs; temp files are always removed."""
        stored_path = stored_path or zip_path
        try:
            with extract_archive(zip_path) as files:
                if not files:
                    return [FileProcessingResult(
                        filename=original_filename,
                        success=False,
                        error="No supported files found in archive",
                    )]

                semaphore = asyncio.Semaphore(self.max_concurrency)

                async def run(path: Path) -> FileProcessingResult:
                    async with semaphore:
                        return await self.process_file(
                            db,
                            str(path),
                            original_filename=path.name,
                            file_type=file_extension(path.name),
                            stored_path=f"{stored_path}#{path.name}",
                        )

                results = await asyncio.gather(*(run(path) for path in files), return_exceptions=True)
        except ExtractionFailure as e:
            return [FileProcessingResult(filename=original_filename, success=False, error=str(e))]

        reported = []
        for path, result in zip(files, results):
            if isinstance(result, BaseException):
                log.error("Pipeline: unexpected failure for %s: %s", path.name, result)
                reported.append(FileProcessingResult(filename=path.name, success=False, error=str(result)))
            else:
                reported.append(result)
        return reported

    async def process_upload(
        self,
        db: Session,
        file_path: str,
        original_filename: str,
        stored_path: Optional[str] = None,
    ) -> List[FileProcessingResult]:
        """Entry point for an uploaded file of any allowed type."""
        if file_extension(original_filename) in ARCHIVE_EXTENSIONS:
            return await self.process_archive(db, file_path, original_filename, stored_path)
        return [await self.process_file(db, file_path, original_filename, stored_path=stored_path)]
