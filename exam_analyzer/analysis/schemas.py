"""
Pydantic schemas for the question tree.

A paper owns its top-level QuestionNodes and each node owns its sub_questions.
Level is data, not type: every node has the same shape whatever its depth.

Answer content is a tagged variant so the representation can never disagree
with the format:
  - ParagraphAnswer(text)    → answer_format "paragraph"
  - PointsAnswer(points)     → answer_format "points"
"""

import enum
import re
from datetime import datetime
from typing import Annotated, Any, Dict, Iterator, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ─── Metadata defaults (one policy for AI and heuristic paths) ─────────────────

UNKNOWN_EXAMINER = "Unknown Examiner"
UNKNOWN_SUBJECT = "Unknown Subject"
UNKNOWN_CLASS = "Unknown Class"
UNKNOWN_CURRICULUM = "Unknown Curriculum"


def current_year() -> int:
    return datetime.now().year


class AnswerFormat(str, enum.Enum):
    """How a question's model answer is laid out."""
    PARAGRAPH = "paragraph"
    POINTS = "points"


# ─── Answer variant ────────────────────────────────────────────────────────────

# Line breaks and bullet glyphs separate points
_POINT_SPLIT_RE = re.compile(r"\r\n|\r|\n|[•●▪◦]")
# A line opening with "1." is a numbered list; later "2. ", "(3) " ordinals split it further
_ORDINAL_START_RE = re.compile(r"^\(?\d+[.)]\s")
_INLINE_ORDINAL_RE = re.compile(r"(?<=\s)(?=\(?\d+[.)]\s)")
# Leading list markers: "-", "*", "1.", "2)", "(3)"; "1.5" and "-5" are values, not markers
_POINT_PREFIX_RE = re.compile(r"^(?:[-–—*]+|\(?\d+[.)])(?=\s|$)\s*")


class ParagraphAnswer(BaseModel):
    """Flat prose answer."""
    kind: Literal["paragraph"] = "paragraph"
    text: str

    @classmethod
    def from_points(cls, points: List[str]) -> "ParagraphAnswer":
        parts = [str(p).strip() for p in points if str(p).strip()]
        return cls(text="\n\n".join(parts))

    def as_text(self) -> str:
        return self.text

    def as_points(self) -> List[str]:
        return PointsAnswer.from_text(self.text).points

    def is_empty(self) -> bool:
        return not self.text.strip()


class PointsAnswer(BaseModel):
    """Ordered list of answer points."""
    kind: Literal["points"] = "points"
    points: List[str]

    @classmethod
    def from_text(cls, text: str) -> "PointsAnswer":
        """Split a single string into trimmed, non-empty points, in order."""
        points = []
        for line in _POINT_SPLIT_RE.split(text or ""):
            line = line.strip()
            pieces = _INLINE_ORDINAL_RE.split(line) if _ORDINAL_START_RE.match(line) else [line]
            for piece in pieces:
                piece = _POINT_PREFIX_RE.sub("", piece.strip()).strip()
                if piece:
                    points.append(piece)
        return cls(points=points)

    def as_text(self) -> str:
        return ParagraphAnswer.from_points(self.points).text

    def as_points(self) -> List[str]:
        return list(self.points)

    def is_empty(self) -> bool:
        return not any(p.strip() for p in self.points)


AnswerContent = Annotated[Union[ParagraphAnswer, PointsAnswer], Field(discriminator="kind")]


def answer_for_format(answer: Union[ParagraphAnswer, PointsAnswer], fmt: AnswerFormat):
    """Convert an answer variant to the variant demanded by `fmt`."""
    if fmt == AnswerFormat.POINTS:
        return answer if isinstance(answer, PointsAnswer) else PointsAnswer(points=answer.as_points())
    return answer if isinstance(answer, ParagraphAnswer) else ParagraphAnswer(text=answer.as_text())


# ─── Question tree ─────────────────────────────────────────────────────────────

class QuestionNode(BaseModel):
    """One question or sub-question; owns its sub_questions."""
    question_number: str
    content: str = ""
    level: int = Field(1, ge=1)
    marks: Optional[Union[int, float]] = None
    answer_format: AnswerFormat = AnswerFormat.PARAGRAPH
    answer: Optional[AnswerContent] = None
    order_index: int = 0
    sub_questions: List["QuestionNode"] = Field(default_factory=list)

    def walk(self) -> Iterator["QuestionNode"]:
        """Depth-first, pre-order traversal of this node and its descendants."""
        yield self
        for child in self.sub_questions:
            yield from child.walk()

    def to_canonical(self) -> Dict[str, Any]:
        """Serialize to the canonical AI JSON question shape."""
        if self.answer is None:
            answer = None
        elif self.answer_format == AnswerFormat.POINTS:
            answer = self.answer.as_points()
        else:
            answer = self.answer.as_text()
        return {
            "question_number": self.question_number,
            "content": self.content,
            "level": self.level,
            "marks": self.marks,
            "answer_format": self.answer_format.value,
            "answer": answer,
            "sub_questions": [child.to_canonical() for child in self.sub_questions],
        }


class PaperMetadata(BaseModel):
    """Cross-cutting attributes resolved once per paper."""
    model_config = ConfigDict(populate_by_name=True)

    examiner: str = UNKNOWN_EXAMINER
    subject: str = UNKNOWN_SUBJECT
    class_name: str = Field(UNKNOWN_CLASS, alias="class")
    curriculum: str = UNKNOWN_CURRICULUM
    year: int = Field(default_factory=current_year)
    term: Optional[int] = Field(None, ge=1, le=3)
    paper_type: Optional[str] = None

    def to_canonical(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class PaperAnalysis(BaseModel):
    """Successful analysis: metadata plus the question forest."""
    metadata: PaperMetadata = Field(default_factory=PaperMetadata)
    questions: List[QuestionNode] = Field(default_factory=list)
    source: str = "unknown"   # provider name or "heuristic"

    def walk(self) -> Iterator[QuestionNode]:
        for question in self.questions:
            yield from question.walk()

    def question_count(self) -> int:
        return sum(1 for _ in self.walk())

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "metadata": self.metadata.to_canonical(),
            "questions": [q.to_canonical() for q in self.questions],
        }


class AnalysisFailure(BaseModel):
    """Every provider failed; distinguishable from a valid-but-empty analysis."""
    error: str
    details: Dict[str, str] = Field(default_factory=dict)


class GenerationResult(BaseModel):
    """Raw text returned by a content-generation call."""
    content: str
    provider: str
    model: Optional[str] = None


class GenerationFailure(BaseModel):
    error: str
    details: Dict[str, str] = Field(default_factory=dict)


QuestionNode.model_rebuild()
