"""
CRUD operations for exam papers, question trees and answers
All database operations go through these functions
"""

import json
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from exam_analyzer.analysis.schemas import (
    UNKNOWN_SUBJECT,
    AnswerFormat,
    PaperAnalysis,
    PaperMetadata,
    QuestionNode,
    answer_for_format,
)
from exam_analyzer.database import models
from exam_analyzer.errors import PersistenceFailure

log = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ==========================================
# LOOKUP CRUD (get-or-create)
# ==========================================

def subject_code(name: str) -> str:
    """First three letters, upper-cased; "UNK" for the unknown subject."""
    if not name or name == UNKNOWN_SUBJECT:
        return "UNK"
    letters = re.sub(r"[^A-Za-z]", "", name)
    return letters[:3].upper() or "UNK"


def get_or_create_examiner(db: Session, name: str) -> models.Examiner:
    examiner = db.query(models.Examiner).filter(models.Examiner.name == name).first()
    if not examiner:
        examiner = models.Examiner(name=name)
        db.add(examiner)
        db.flush()
    return examiner


def get_or_create_curriculum(db: Session, name: str) -> models.Curriculum:
    curriculum = db.query(models.Curriculum).filter(models.Curriculum.name == name).first()
    if not curriculum:
        curriculum = models.Curriculum(name=name)
        db.add(curriculum)
        db.flush()
    return curriculum


def get_or_create_subject(db: Session, name: str) -> models.Subject:
    subject = db.query(models.Subject).filter(models.Subject.name == name).first()
    if not subject:
        subject = models.Subject(name=name, code=subject_code(name))
        db.add(subject)
        db.flush()
    return subject


def get_or_create_class(db: Session, name: str) -> models.SchoolClass:
    school_class = db.query(models.SchoolClass).filter(models.SchoolClass.name == name).first()
    if not school_class:
        school_class = models.SchoolClass(name=name)
        db.add(school_class)
        db.flush()
    return school_class


# ==========================================
# PAPER + QUESTION TREE CRUD
# ==========================================

def create_paper(
    db: Session,
    metadata: PaperMetadata,
    original_filename: str,
    file_path: str,
    file_type: str,
    analysis_source: Optional[str] = None,
) -> models.QuestionPaper:
    """
    Create a paper row with its lookup rows. Flushes, does not commit:
    callers own the transaction.
    """
    paper = models.QuestionPaper(
        examiner=get_or_create_examiner(db, metadata.examiner),
        subject=get_or_create_subject(db, metadata.subject),
        school_class=get_or_create_class(db, metadata.class_name),
        curriculum=get_or_create_curriculum(db, metadata.curriculum),
        term=metadata.term,
        year=metadata.year,
        paper_type=metadata.paper_type,
        original_filename=original_filename,
        file_path=file_path,
        file_type=file_type,
        analysis_source=analysis_source,
        is_processed=False,
        has_answers=False,
        paper_metadata=metadata.to_canonical(),
    )
    db.add(paper)
    db.flush()
    return paper


def _serialize_answer(content, fmt: AnswerFormat) -> str:
    content = answer_for_format(content, fmt)
    if fmt == AnswerFormat.POINTS:
        return json.dumps(content.as_points(), ensure_ascii=False)
    return content.as_text()


def _add_question(
    db: Session,
    paper: models.QuestionPaper,
    node: QuestionNode,
    parent: Optional[models.Question],
    order_index: int,
    generated_by: str,
) -> Tuple[models.Question, int]:
    question = models.Question(
        paper=paper,
        parent=parent,
        question_number=node.question_number,
        content=node.content,
        level=parent.level + 1 if parent is not None else 1,
        marks=node.marks,
        answer_format=node.answer_format.value,
        order_index=order_index,
    )
    db.add(question)

    answered = 0
    if node.answer is not None and not node.answer.is_empty():
        question.answer = models.Answer(
            content=_serialize_answer(node.answer, node.answer_format),
            format=node.answer_format.value,
            generated_by=generated_by,
            answer_metadata={"source": "analysis", "timestamp": _now().isoformat()},
            generated_at=_now(),
        )
        answered += 1

    for index, child in enumerate(node.sub_questions):
        _, child_answered = _add_question(db, paper, child, question, index, generated_by)
        answered += child_answered
    return question, answered


def create_question_tree(
    db: Session,
    paper: models.QuestionPaper,
    nodes: Iterable[QuestionNode],
    generated_by: str = "analysis",
) -> int:
    """
    Add a question forest under `paper`, depth-first. Levels are recomputed
    from the parent chain. Flushes, does not commit.

    Returns:
        Number of answers created alongside the questions
    """
    answered = 0
    for index, node in enumerate(nodes):
        _, node_answered = _add_question(db, paper, node, None, index, generated_by)
        answered += node_answered
    db.flush()
    return answered


def store_analysis(
    db: Session,
    analysis: PaperAnalysis,
    original_filename: str,
    file_path: str,
    file_type: str,
) -> models.QuestionPaper:
    """
    Persist paper + metadata lookups + full question tree in one transaction.

    Raises:
        PersistenceFailure: anything failed; nothing was committed
    """
    try:
        paper = create_paper(
            db,
            analysis.metadata,
            original_filename=original_filename,
            file_path=file_path,
            file_type=file_type,
            analysis_source=analysis.source,
        )
        answered = create_question_tree(db, paper, analysis.questions, generated_by=analysis.source)
        paper.is_processed = True
        if answered:
            paper.has_answers = True
            paper.answers_generated_at = _now()
        db.commit()
    except Exception as e:
        db.rollback()
        log.error("Persist: rolled back paper %s: %s", original_filename, e)
        raise PersistenceFailure(f"Failed to store question paper: {e}") from e

    db.refresh(paper)
    log.info(
        "Persist: stored paper id=%s file=%s questions=%s answers=%s",
        paper.id, original_filename, analysis.question_count(), answered,
    )
    return paper


def get_paper(db: Session, paper_id: int) -> Optional[models.QuestionPaper]:
    """Get paper by ID"""
    return db.query(models.QuestionPaper).filter(models.QuestionPaper.id == paper_id).first()


def get_paper_complete(db: Session, paper_id: int) -> Optional[models.QuestionPaper]:
    """Get paper with lookups and the full question/answer tree loaded"""
    return db.query(models.QuestionPaper).options(
        selectinload(models.QuestionPaper.examiner),
        selectinload(models.QuestionPaper.subject),
        selectinload(models.QuestionPaper.school_class),
        selectinload(models.QuestionPaper.curriculum),
        selectinload(models.QuestionPaper.all_questions).selectinload(models.Question.answer),
    ).filter(models.QuestionPaper.id == paper_id).first()


def delete_paper(db: Session, paper_id: int) -> bool:
    """Delete a paper (cascades to questions and answers)"""
    paper = get_paper(db, paper_id)
    if not paper:
        return False
    db.delete(paper)
    db.commit()
    return True


def walk_questions(paper: models.QuestionPaper) -> List[models.Question]:
    """All questions of a paper, depth-first in paper order."""
    return [q for top in paper.questions for q in top.walk()]


def find_question_by_ordinal(
    db: Session,
    paper_id: int,
    ordinal: str,
    parent_id: Optional[int] = None,
) -> Optional[int]:
    """
    Question id for an ordinal label among one sibling group.

    parent_id=None searches the paper's top-level questions.
    """
    query = db.query(models.Question.id).filter(
        models.Question.question_paper_id == paper_id,
        models.Question.question_number == str(ordinal).strip(),
    )
    if parent_id is None:
        query = query.filter(models.Question.parent_id.is_(None))
    else:
        query = query.filter(models.Question.parent_id == parent_id)
    row = query.order_by(models.Question.order_index).first()
    return row[0] if row else None


# ==========================================
# ANSWER CRUD
# ==========================================

def upsert_answer(
    db: Session,
    question_id: int,
    content,
    answer_format: Optional[AnswerFormat] = None,
    generated_by: str = "openai",
    model: Optional[str] = None,
) -> models.Answer:
    """
    Create or overwrite the answer for one question (last write wins) and
    mark the owning paper as having answers. Commits.

    `content` is a ParagraphAnswer / PointsAnswer; it is converted to the
    question's answer format when they differ.

    Raises:
        PersistenceFailure: unknown question or failed write (rolled back)
    """
    try:
        question = db.query(models.Question).filter(models.Question.id == question_id).first()
        if question is None:
            raise PersistenceFailure(f"Question {question_id} not found")

        fmt = answer_format or question.format
        generated_at = _now()
        answer = question.answer
        if answer is None:
            answer = models.Answer(question=question)
            db.add(answer)

        answer.content = _serialize_answer(content, fmt)
        answer.format = fmt.value
        answer.generated_by = generated_by
        answer.answer_metadata = {"model": model, "timestamp": generated_at.isoformat()}
        answer.generated_at = generated_at
        answer.is_verified = False

        paper = question.paper
        if not paper.has_answers:
            paper.has_answers = True
        paper.answers_generated_at = generated_at

        db.commit()
    except PersistenceFailure:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        log.error("Persist: failed to save answer for question %s: %s", question_id, e)
        raise PersistenceFailure(f"Failed to save answer: {e}") from e

    db.refresh(answer)
    return answer


def set_answer_verified(db: Session, answer_id: int, verified: bool = True) -> Optional[models.Answer]:
    answer = db.query(models.Answer).filter(models.Answer.id == answer_id).first()
    if not answer:
        return None
    answer.is_verified = verified
    db.commit()
    db.refresh(answer)
    return answer


def delete_answers(db: Session, paper_id: int) -> int:
    """Delete every answer under a paper and reset has_answers. Returns count."""
    question_ids = db.query(models.Question.id).filter(models.Question.question_paper_id == paper_id)
    deleted = db.query(models.Answer).filter(
        models.Answer.question_id.in_(question_ids.scalar_subquery())
    ).delete(synchronize_session=False)

    paper = get_paper(db, paper_id)
    if paper:
        paper.has_answers = False
        paper.answers_generated_at = None
    db.commit()
    db.expire_all()
    return deleted


def answer_stats(paper: models.QuestionPaper) -> Dict[str, Any]:
    """Answered vs total question counts for a paper, all depths."""
    questions = walk_questions(paper)
    total = len(questions)
    answered = sum(1 for q in questions if q.answer is not None)
    return {
        "total_questions": total,
        "answered_questions": answered,
        "completion_percentage": round(answered / total * 100) if total else 0,
        "is_complete": total > 0 and answered == total,
    }


# ==========================================
# LISTING + FILTERS
# ==========================================

def list_papers(
    db: Session,
    subject_id: Optional[int] = None,
    class_id: Optional[int] = None,
    curriculum_id: Optional[int] = None,
    examiner_id: Optional[int] = None,
    year: Optional[int] = None,
    term: Optional[int] = None,
    paper_type: Optional[str] = None,
    has_answers: Optional[bool] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[models.QuestionPaper], Dict[str, int]]:
    """Filtered, newest-first page of papers plus pagination meta."""
    query = db.query(models.QuestionPaper)
    if subject_id is not None:
        query = query.filter(models.QuestionPaper.subject_id == subject_id)
    if class_id is not None:
        query = query.filter(models.QuestionPaper.class_id == class_id)
    if curriculum_id is not None:
        query = query.filter(models.QuestionPaper.curriculum_id == curriculum_id)
    if examiner_id is not None:
        query = query.filter(models.QuestionPaper.examiner_id == examiner_id)
    if year is not None:
        query = query.filter(models.QuestionPaper.year == year)
    if term is not None:
        query = query.filter(models.QuestionPaper.term == term)
    if paper_type:
        query = query.filter(models.QuestionPaper.paper_type == paper_type)
    if has_answers is not None:
        query = query.filter(models.QuestionPaper.has_answers == has_answers)

    total = query.count()
    page = max(1, page)
    limit = max(1, limit)
    papers = (
        query.order_by(models.QuestionPaper.created_at.desc(), models.QuestionPaper.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    meta = {
        "total": total,
        "per_page": limit,
        "current_page": page,
        "last_page": max(1, math.ceil(total / limit)),
    }
    return papers, meta


def get_filter_options(db: Session) -> Dict[str, Any]:
    """Lookup rows and distinct year/term/paper-type values present in papers."""
    years = [
        row[0] for row in db.query(models.QuestionPaper.year).distinct()
        .order_by(models.QuestionPaper.year.desc()).all()
    ]
    terms = [
        row[0] for row in db.query(models.QuestionPaper.term)
        .filter(models.QuestionPaper.term.isnot(None)).distinct()
        .order_by(models.QuestionPaper.term).all()
    ]
    paper_types = [
        row[0] for row in db.query(models.QuestionPaper.paper_type)
        .filter(models.QuestionPaper.paper_type.isnot(None)).distinct()
        .order_by(models.QuestionPaper.paper_type).all()
    ]
    return {
        "subjects": db.query(models.Subject).order_by(models.Subject.name).all(),
        "classes": db.query(models.SchoolClass).order_by(models.SchoolClass.name).all(),
        "curriculums": db.query(models.Curriculum).order_by(models.Curriculum.name).all(),
        "examiners": db.query(models.Examiner).order_by(models.Examiner.name).all(),
        "years": years,
        "terms": terms,
        "paper_types": paper_types,
    }
