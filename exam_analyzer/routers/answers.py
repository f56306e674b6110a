"""
Model-answer generation and management for a question paper.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from exam_analyzer.database import crud
from exam_analyzer.database.database import get_db
from exam_analyzer.database.schemas import (
    AnswerAvailabilityResponse,
    AnswerGenerationResponse,
    AnswerResponse,
    AnswerStats,
    PaperResponse,
    build_paper_response,
)
from exam_analyzer.errors import PaperNotFound
from exam_analyzer.generation.answer_synthesizer import MODE_BATCH, MODE_PAPER, AnswerSynthesizer
from exam_analyzer.routers.deps import OrchestratorBuilder, get_orchestrator_builder
from exam_analyzer.routers.papers import validate_provider

log = logging.getLogger(__name__)

router = APIRouter(prefix="/question-papers/{paper_id}/answers", tags=["answers"])


def _get_paper_or_404(db: Session, paper_id: int):
    paper = crud.get_paper_complete(db, paper_id)
    if not paper:
        raise HTTPException(status_code=404, detail=f"Question paper {paper_id} not found")
    return paper


@router.post("", response_model=AnswerGenerationResponse, response_model_by_alias=True)
async def generate_answers(
    paper_id: int,
    regenerate: bool = Query(False, description="Regenerate answers that already exist"),
    provider: Optional[str] = Query(None, description="Preferred AI provider: openai | deepseek"),
    mode: str = Query(MODE_BATCH, pattern=f"^({MODE_BATCH}|{MODE_PAPER})$"),
    db: Session = Depends(get_db),
    build_orchestrator: OrchestratorBuilder = Depends(get_orchestrator_builder),
):
    """
    Generate model answers for a paper's questions.

    Questions whose answer could not be generated or matched stay unanswered
    and are picked up by the next call.
    """
    provider = validate_provider(provider)
    synthesizer = AnswerSynthesizer(build_orchestrator(provider))
    try:
        report = await synthesizer.synthesize(db, paper_id, regenerate=regenerate, mode=mode)
    except PaperNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    db.expire_all()
    paper = crud.get_paper_complete(db, paper_id)
    response = AnswerGenerationResponse(
        success=report.success,
        message=(
            f"Generated {report.answered} of {report.eligible} answer(s); "
            f"{report.unresolved} unresolved, {report.skipped} already answered"
        ),
        paper_id=paper_id,
        mode=report.mode,
        eligible=report.eligible,
        answered=report.answered,
        unresolved=report.unresolved,
        skipped=report.skipped,
        errors=report.errors,
        paper=build_paper_response(paper, include_questions=True, answer_stats=crud.answer_stats(paper)),
    )
    if not report.success:
        log.error("Answers: generation failed for paper %s: %s", paper_id, report.errors)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(mode="json", by_alias=True),
        )
    return response


@router.get("", response_model=PaperResponse, response_model_by_alias=True)
def view_answers(paper_id: int, db: Session = Depends(get_db)):
    """Stored questions and answers, without generating anything."""
    paper = _get_paper_or_404(db, paper_id)
    return build_paper_response(paper, include_questions=True, answer_stats=crud.answer_stats(paper))


@router.get("/availability", response_model=AnswerAvailabilityResponse)
def check_availability(paper_id: int, db: Session = Depends(get_db)):
    paper = _get_paper_or_404(db, paper_id)
    return AnswerAvailabilityResponse(
        paper_id=paper.id,
        has_answers=paper.has_answers,
        answers_generated_at=paper.answers_generated_at,
        answer_stats=AnswerStats(**crud.answer_stats(paper)),
    )


@router.delete("")
def delete_answers(paper_id: int, db: Session = Depends(get_db)):
    """Delete every answer under a paper."""
    _get_paper_or_404(db, paper_id)
    deleted = crud.delete_answers(db, paper_id)
    log.info("Answers: deleted %s answers for paper %s", deleted, paper_id)
    return {"success": True, "paper_id": paper_id, "deleted": deleted}


@router.post("/{answer_id}/verify", response_model=AnswerResponse)
def verify_answer(
    paper_id: int,
    answer_id: int,
    verified: bool = Query(True),
    db: Session = Depends(get_db),
):
    """Mark an answer as checked (or unchecked) by a teacher."""
    paper = _get_paper_or_404(db, paper_id)
    answer_ids = {q.answer.id for q in crud.walk_questions(paper) if q.answer is not None}
    if answer_id not in answer_ids:
        raise HTTPException(status_code=404, detail=f"Answer {answer_id} not found in paper {paper_id}")
    answer = crud.set_answer_verified(db, answer_id, verified)
    return AnswerResponse.from_orm_answer(answer)
