"""
SQLAlchemy models for analyzed exam papers
Lookups (examiner, subject, class, curriculum) → QuestionPaper → Question tree → Answer

Ownership is top-down: a paper owns every question, a question owns its
children and its (at most one) answer. Deleting either cascades.
"""

import json

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Text, Float, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from exam_analyzer.analysis.schemas import AnswerFormat, ParagraphAnswer, PointsAnswer
from exam_analyzer.database.database import Base


# ==========================================
# LOOKUP TABLES: EXAMINER, CURRICULUM, SUBJECT, CLASS
# ==========================================

class Examiner(Base):
    """Examination board or institution (e.g. 'KNEC', 'Joint Mock')."""
    __tablename__ = "examiners"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    papers = relationship("QuestionPaper", back_populates="examiner")

    def __repr__(self):
        return f"<Examiner(id={self.id}, name='{self.name}')>"


class Curriculum(Base):
    """Curriculum system (e.g. '8-4-4', 'CBC')."""
    __tablename__ = "curriculums"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    papers = relationship("QuestionPaper", back_populates="curriculum")

    def __repr__(self):
        return f"<Curriculum(id={self.id}, name='{self.name}')>"


class Subject(Base):
    """Exam subject with a short code (first three letters, upper-cased)."""
    __tablename__ = "subjects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    code = Column(String(10), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    papers = relationship("QuestionPaper", back_populates="subject")

    def __repr__(self):
        return f"<Subject(id={self.id}, name='{self.name}', code='{self.code}')>"


class SchoolClass(Base):
    """School class / form / grade (e.g. 'Form 3', 'Grade 6')."""
    __tablename__ = "classes"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    papers = relationship("QuestionPaper", back_populates="school_class")

    def __repr__(self):
        return f"<SchoolClass(id={self.id}, name='{self.name}')>"


# ==========================================
# QUESTION PAPERS
# ==========================================

class QuestionPaper(Base):
    """
    One analyzed exam document.
    has_answers flips to True the first time any question under it is answered.
    """
    __tablename__ = "question_papers"

    id = Column(Integer, primary_key=True, index=True)
    examiner_id = Column(Integer, ForeignKey("examiners.id", ondelete="SET NULL"), nullable=True, index=True)
    subject_id = Column(Integer, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
    curriculum_id = Column(Integer, ForeignKey("curriculums.id", ondelete="CASCADE"), nullable=False, index=True)

    term = Column(Integer, nullable=True)           # 1..3
    year = Column(Integer, nullable=False, index=True)
    paper_type = Column(String(50), nullable=True)  # Paper 1, Paper 2

    original_filename = Column(String(500), nullable=False)
    file_path = Column(String(1000), nullable=False)
    file_type = Column(String(20), nullable=False)
    analysis_source = Column(String(50), nullable=True)  # openai | deepseek | heuristic

    is_processed = Column(Boolean, default=False, nullable=False)
    has_answers = Column(Boolean, default=False, nullable=False, index=True)
    answers_generated_at = Column(DateTime(timezone=True), nullable=True)
    paper_metadata = Column("metadata", JSON, nullable=True)  # Renamed from 'metadata' (reserved word)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    examiner = relationship("Examiner", back_populates="papers")
    subject = relationship("Subject", back_populates="papers")
    school_class = relationship("SchoolClass", back_populates="papers")
    curriculum = relationship("Curriculum", back_populates="papers")

    # Every question of the paper, any depth; owns them for cascade purposes
    all_questions = relationship(
        "Question",
        back_populates="paper",
        cascade="all, delete-orphan",
    )
    # Top-level questions only, in paper order
    questions = relationship(
        "Question",
        primaryjoin="and_(QuestionPaper.id == Question.question_paper_id, Question.parent_id.is_(None))",
        order_by="Question.order_index",
        viewonly=True,
    )

    def __repr__(self):
        return f"<QuestionPaper(id={self.id}, file='{self.original_filename}', year={self.year})>"


# ==========================================
# QUESTIONS
# ==========================================

class Question(Base):
    """
    A question or sub-question. level == parent.level + 1, or 1 at the top.
    question_number is the printed label ("1", "a", "ii"), unique among siblings.
    """
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    question_paper_id = Column(Integer, ForeignKey("question_papers.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=True, index=True)

    question_number = Column(String(20), nullable=False)
    content = Column(Text, nullable=False, default="")
    level = Column(Integer, nullable=False, default=1)
    marks = Column(Float, nullable=True)
    answer_format = Column(String(20), nullable=False, default=AnswerFormat.PARAGRAPH.value)
    order_index = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    paper = relationship("QuestionPaper", back_populates="all_questions")
    parent = relationship("Question", remote_side="Question.id", back_populates="children")
    # No delete-orphan here: top-level questions have no parent question
    children = relationship(
        "Question",
        back_populates="parent",
        cascade="all",
        order_by="Question.order_index",
    )
    answer = relationship(
        "Answer",
        back_populates="question",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def format(self) -> AnswerFormat:
        try:
            return AnswerFormat(self.answer_format)
        except ValueError:
            return AnswerFormat.PARAGRAPH

    @property
    def display_marks(self):
        if self.marks is None:
            return None
        return int(self.marks) if float(self.marks).is_integer() else self.marks

    def walk(self):
        """Depth-first, pre-order over this question and its descendants."""
        yield self
        for child in self.children:
            yield from child.walk()

    def __repr__(self):
        return f"<Question(id={self.id}, number='{self.question_number}', level={self.level})>"


# ==========================================
# ANSWERS
# ==========================================

class Answer(Base):
    """
    Model answer for one question (one-to-one).
    content holds prose for "paragraph" and a JSON array string for "points".
    """
    __tablename__ = "answers"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)

    content = Column(Text, nullable=False)
    format = Column(String(20), nullable=False, default=AnswerFormat.PARAGRAPH.value)
    generated_by = Column(String(50), nullable=False, default="openai")
    answer_metadata = Column("metadata", JSON, nullable=True)  # Renamed from 'metadata' (reserved word)
    is_verified = Column(Boolean, default=False, nullable=False)
    generated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    question = relationship("Question", back_populates="answer")

    def as_content(self):
        """Stored content as a ParagraphAnswer / PointsAnswer."""
        if self.format == AnswerFormat.POINTS.value:
            try:
                points = json.loads(self.content)
            except (TypeError, ValueError):
                return PointsAnswer.from_text(self.content or "")
            if isinstance(points, list):
                return PointsAnswer(points=[str(p) for p in points])
            return PointsAnswer.from_text(str(points))
        return ParagraphAnswer(text=self.content or "")

    def __repr__(self):
        return f"<Answer(id={self.id}, question_id={self.question_id}, format='{self.format}')>"
