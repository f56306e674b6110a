"""
Pydantic schemas for request/response validation
Separate from SQLAlchemy models for clean API contracts
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ==========================================
# LOOKUP SCHEMAS
# ==========================================

class LookupResponse(BaseModel):
    """Examiner / curriculum / class row"""
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class SubjectResponse(LookupResponse):
    code: str


# ==========================================
# ANSWER + QUESTION SCHEMAS
# ==========================================

class AnswerResponse(BaseModel):
    """Stored answer; content is a string for paragraph, a list for points"""
    id: int
    content: Union[List[str], str]
    format: str
    generated_by: str
    model: Optional[str] = None
    is_verified: bool = False
    generated_at: Optional[datetime] = None

    @classmethod
    def from_orm_answer(cls, answer) -> "AnswerResponse":
        content = answer.as_content()
        metadata = answer.answer_metadata or {}
        return cls(
            id=answer.id,
            content=content.as_points() if answer.format == "points" else content.as_text(),
            format=answer.format,
            generated_by=answer.generated_by,
            model=metadata.get("model"),
            is_verified=answer.is_verified,
            generated_at=answer.generated_at,
        )


class QuestionResponse(BaseModel):
    """A question with its answer and sub-questions, recursively"""
    id: int
    question_number: str
    content: str
    level: int
    marks: Optional[Union[int, float]] = None
    answer_format: str
    order_index: int = 0
    answer: Optional[AnswerResponse] = None
    sub_questions: List["QuestionResponse"] = Field(default_factory=list)

    @classmethod
    def from_orm_question(cls, question, include_answers: bool = True) -> "QuestionResponse":
        answer = None
        if include_answers and question.answer is not None:
            answer = AnswerResponse.from_orm_answer(question.answer)
        return cls(
            id=question.id,
            question_number=question.question_number,
            content=question.content,
            level=question.level,
            marks=question.display_marks,
            answer_format=question.answer_format,
            order_index=question.order_index,
            answer=answer,
            sub_questions=[
                cls.from_orm_question(child, include_answers) for child in question.children
            ],
        )


QuestionResponse.model_rebuild()


# ==========================================
# PAPER SCHEMAS
# ==========================================

class AnswerStats(BaseModel):
    total_questions: int
    answered_questions: int
    completion_percentage: int
    is_complete: bool


class PaperResponse(BaseModel):
    """Paper summary with resolved lookups"""
    id: int
    original_filename: str
    file_type: str
    year: int
    term: Optional[int] = None
    paper_type: Optional[str] = None
    analysis_source: Optional[str] = None
    is_processed: bool
    has_answers: bool
    answers_generated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    examiner: Optional[LookupResponse] = None
    subject: SubjectResponse
    school_class: LookupResponse = Field(serialization_alias="class")
    curriculum: LookupResponse

    answer_stats: Optional[AnswerStats] = None
    questions: Optional[List[QuestionResponse]] = None


def build_paper_response(
    paper,
    include_questions: bool = False,
    include_answers: bool = True,
    answer_stats: Optional[Dict[str, Any]] = None,
) -> PaperResponse:
    """ORM paper → PaperResponse, optionally with its question tree"""
    questions = None
    if include_questions:
        questions = [
            QuestionResponse.from_orm_question(q, include_answers=include_answers)
            for q in paper.questions
        ]
    return PaperResponse(
        id=paper.id,
        original_filename=paper.original_filename,
        file_type=paper.file_type,
        year=paper.year,
        term=paper.term,
        paper_type=paper.paper_type,
        analysis_source=paper.analysis_source,
        is_processed=paper.is_processed,
        has_answers=paper.has_answers,
        answers_generated_at=paper.answers_generated_at,
        created_at=paper.created_at,
        examiner=LookupResponse.model_validate(paper.examiner) if paper.examiner else None,
        subject=SubjectResponse.model_validate(paper.subject),
        school_class=LookupResponse.model_validate(paper.school_class),
        curriculum=LookupResponse.model_validate(paper.curriculum),
        answer_stats=AnswerStats(**answer_stats) if answer_stats else None,
        questions=questions,
    )


class PaginationMeta(BaseModel):
    total: int
    per_page: int
    current_page: int
    last_page: int


class PaperListResponse(BaseModel):
    success: bool = True
    data: List[PaperResponse]
    meta: PaginationMeta


class FilterOptionsResponse(BaseModel):
    subjects: List[SubjectResponse]
    classes: List[LookupResponse]
    curriculums: List[LookupResponse]
    examiners: List[LookupResponse]
    years: List[int]
    terms: List[int]
    paper_types: List[str]

    model_config = ConfigDict(from_attributes=True)


# ==========================================
# PIPELINE RESULT SCHEMAS
# ==========================================

class FileProcessingResult(BaseModel):
    """Outcome for one uploaded (or archived) file"""
    filename: str
    success: bool
    paper_id: Optional[int] = None
    analysis_source: Optional[str] = None
    question_count: int = 0
    error: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class UploadResponse(BaseModel):
    success: bool
    message: str
    results: List[FileProcessingResult]


class AnswerGenerationResponse(BaseModel):
    success: bool
    message: str
    paper_id: int
    mode: str
    eligible: int = 0
    answered: int = 0
    unresolved: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)
    paper: Optional[PaperResponse] = None


class AnswerAvailabilityResponse(BaseModel):
    paper_id: int
    has_answers: bool
    answers_generated_at: Optional[datetime] = None
    answer_stats: AnswerStats
