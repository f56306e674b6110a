"""
Question paper upload, listing and retrieval.

Upload: validate → save under UPLOAD_DIR/exam_papers → pipeline (zip fans out)
        → one result per processed file.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy.orm import Session

from exam_analyzer import config
from exam_analyzer.config import SUPPORTED_PROVIDERS
from exam_analyzer.database import crud
from exam_analyzer.database.database import get_db
from exam_analyzer.database.schemas import (
    FilterOptionsResponse,
    LookupResponse,
    PaginationMeta,
    PaperListResponse,
    PaperResponse,
    SubjectResponse,
    UploadResponse,
    build_paper_response,
)
from exam_analyzer.ingestion.parser import ALLOWED_EXTENSIONS
from exam_analyzer.routers.deps import OrchestratorBuilder, get_orchestrator_builder
from exam_analyzer.services.document_processor import DocumentProcessor

log = logging.getLogger(__name__)

router = APIRouter(prefix="/question-papers", tags=["question-papers"])


def validate_file(file: UploadFile) -> tuple[str, str]:
    """Validate uploaded file"""
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Filename is required"
        )

    filename = Path(file.filename.strip()).name
    extension = Path(filename).suffix.lower().lstrip(".")

    if not extension:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="File must have an extension"
        )

    if extension not in ALLOWED_EXTENSIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported file type: .{extension}. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )

    return filename, extension


def validate_provider(provider: Optional[str]) -> Optional[str]:
    if provider is None or not provider.strip():
        return None
    provider = provider.strip().lower()
    if provider not in SUPPORTED_PROVIDERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported AI provider: {provider}. Allowed: {', '.join(SUPPORTED_PROVIDERS)}"
        )
    return provider


async def save_upload_file(upload_file: UploadFile, extension: str) -> str:
    """
    Save an uploaded file under UPLOAD_DIR/exam_papers in 1MB chunks.

    Raises:
        HTTPException 413: file exceeds MAX_UPLOAD_SIZE (partial file removed)
    """
    uploads_dir = Path(config.UPLOAD_DIR) / "exam_papers"
    uploads_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    file_path = uploads_dir / f"paper_{timestamp}_{uuid4().hex[:8]}.{extension}"

    file_size = 0
    chunk_size = 1024 * 1024  # 1MB chunks
    try:
        with open(file_path, "wb") as f:
            while True:
                chunk = await upload_file.read(chunk_size)
                if not chunk:
                    break

                file_size += len(chunk)
                if file_size > config.MAX_UPLOAD_SIZE:
                    raise HTTPException(
                        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                        detail=f"File too large: {file_size} bytes. Max: {config.MAX_UPLOAD_SIZE} bytes"
                    )
                f.write(chunk)
    except HTTPException:
        file_path.unlink(missing_ok=True)
        raise
    except OSError as e:
        file_path.unlink(missing_ok=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to save uploaded file: {str(e)}"
        )

    return str(file_path)


@router.post("/upload", response_model=UploadResponse)
async def upload_question_paper(
    file: UploadFile = File(..., description="Exam paper (PDF, DOCX, DOC, TXT, JPG, PNG) or ZIP of papers"),
    ai_provider: Optional[str] = Form(None, description="Preferred AI provider: openai | deepseek"),
    db: Session = Depends(get_db),
    build_orchestrator: OrchestratorBuilder = Depends(get_orchestrator_builder),
):
    """
    Upload and analyze an exam paper (or a zip archive of papers).

    Each processed file is reported individually; a failed file never hides
    the others.
    """
    filename, extension = validate_file(file)
    provider = validate_provider(ai_provider)
    saved_path = await save_upload_file(file, extension)
    log.info("Upload: saved %s → %s (provider=%s)", filename, saved_path, provider or "default")

    processor = DocumentProcessor(build_orchestrator(provider))
    results = await processor.process_upload(db, saved_path, filename, stored_path=saved_path)

    succeeded = sum(1 for r in results if r.success)
    return UploadResponse(
        success=succeeded > 0,
        message=f"Processed {succeeded} of {len(results)} file(s) successfully",
        results=results,
    )


@router.get("", response_model=PaperListResponse, response_model_by_alias=True)
def list_question_papers(
    subject_id: Optional[int] = Query(None),
    class_id: Optional[int] = Query(None),
    curriculum_id: Optional[int] = Query(None),
    examiner_id: Optional[int] = Query(None),
    year: Optional[int] = Query(None),
    term: Optional[int] = Query(None, ge=1, le=3),
    paper_type: Optional[str] = Query(None),
    has_answers: Optional[bool] = Query(None),
    with_questions: bool = Query(False, description="Include the question tree"),
    with_answers: bool = Query(False, description="Include answers in the question tree"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """List papers newest first, with filters, pagination and answer stats."""
    papers, meta = crud.list_papers(
        db,
        subject_id=subject_id,
        class_id=class_id,
        curriculum_id=curriculum_id,
        examiner_id=examiner_id,
        year=year,
        term=term,
        paper_type=paper_type,
        has_answers=has_answers,
        page=page,
        limit=limit,
    )
    data = [
        build_paper_response(
            paper,
            include_questions=with_questions or with_answers,
            include_answers=with_answers,
            answer_stats=crud.answer_stats(paper),
        )
        for paper in papers
    ]
    return PaperListResponse(data=data, meta=PaginationMeta(**meta))


@router.get("/filters", response_model=FilterOptionsResponse)
def get_filters(db: Session = Depends(get_db)):
    """Available filter values for the paper listing."""
    options = crud.get_filter_options(db)
    return FilterOptionsResponse(
        subjects=[SubjectResponse.model_validate(s) for s in options["subjects"]],
        classes=[LookupResponse.model_validate(c) for c in options["classes"]],
        curriculums=[LookupResponse.model_validate(c) for c in options["curriculums"]],
        examiners=[LookupResponse.model_validate(e) for e in options["examiners"]],
        years=options["years"],
        terms=options["terms"],
        paper_types=options["paper_types"],
    )


@router.get("/{paper_id}", response_model=PaperResponse, response_model_by_alias=True)
def get_question_paper(paper_id: int, db: Session = Depends(get_db)):
    """A paper with its full question tree and answers."""
    paper = crud.get_paper_complete(db, paper_id)
    if not paper:
        raise HTTPException(status_code=404, detail=f"Question paper {paper_id} not found")
    return build_paper_response(
        paper,
        include_questions=True,
        include_answers=True,
        answer_stats=crud.answer_stats(paper),
    )


@router.delete("/{paper_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_question_paper(paper_id: int, db: Session = Depends(get_db)):
    """Delete a paper with its questions and answers."""
    if not crud.delete_paper(db, paper_id):
        raise HTTPException(status_code=404, detail=f"Question paper {paper_id} not found")
