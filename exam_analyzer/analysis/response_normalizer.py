"""
Response Normalizer

Enforces the canonical question/answer shape on whatever structured object an
AI provider (or the heuristic extractor) produced:

  - answer_format inferred from question wording when absent
  - answers coerced to the representation their format demands
  - level recomputed from tree depth (level == parent.level + 1)
  - metadata coerced: year → int (default current year), term → 1..3 or None,
    placeholder strings ("Not specified", "Unknown", ...) → defaults

A payload with neither "metadata" nor "questions" is rejected as a whole.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from exam_analyzer.analysis.schemas import (
    UNKNOWN_CLASS,
    UNKNOWN_CURRICULUM,
    UNKNOWN_EXAMINER,
    UNKNOWN_SUBJECT,
    AnswerFormat,
    PaperAnalysis,
    PaperMetadata,
    ParagraphAnswer,
    PointsAnswer,
    QuestionNode,
    current_year,
)
from exam_analyzer.errors import ValidationFailure

log = logging.getLogger(__name__)

# ── Answer-format keyword lexicon ─────────────────────────────────────────────
POINTS_KEYWORDS = (
    "list", "state", "identify", "outline", "mention", "name",
    "give", "provide", "specify", "enumerate",
)
PARAGRAPH_KEYWORDS = (
    "explain", "describe", "discuss", "analyze", "examine", "evaluate",
    "compare", "contrast", "elaborate", "justify", "illustrate", "assess",
)

_POINTS_RE = re.compile(r"\b(?:" + "|".join(POINTS_KEYWORDS) + r")\b", re.IGNORECASE)
_PARAGRAPH_RE = re.compile(r"\b(?:" + "|".join(PARAGRAPH_KEYWORDS) + r")\b", re.IGNORECASE)

FORMAT_ALIASES = {
    "paragraph": AnswerFormat.PARAGRAPH,
    "paragraphs": AnswerFormat.PARAGRAPH,
    "essay": AnswerFormat.PARAGRAPH,
    "prose": AnswerFormat.PARAGRAPH,
    "points": AnswerFormat.POINTS,
    "point": AnswerFormat.POINTS,
    "list": AnswerFormat.POINTS,
    "bullets": AnswerFormat.POINTS,
    "bullet": AnswerFormat.POINTS,
}

PLACEHOLDER_VALUES = {"", "not specified", "unknown", "n/a", "na", "none", "null", "not available"}


def infer_answer_format(content: Optional[str]) -> AnswerFormat:
    """
    Guess the answer format from the question wording.

    Enumerative verbs ("list", "state", ...) win over analytical verbs
    ("explain", "describe", ...); anything else is a paragraph.
    """
    text = content or ""
    if _POINTS_RE.search(text):
        return AnswerFormat.POINTS
    if _PARAGRAPH_RE.search(text):
        return AnswerFormat.PARAGRAPH
    return AnswerFormat.PARAGRAPH


def _is_placeholder(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip().lower() in PLACEHOLDER_VALUES)


def coerce_answer_format(value: Any, content: Optional[str]) -> AnswerFormat:
    if isinstance(value, AnswerFormat):
        return value
    if isinstance(value, str):
        fmt = FORMAT_ALIASES.get(value.strip().lower())
        if fmt is not None:
            return fmt
    return infer_answer_format(content)


def coerce_answer(raw: Any, fmt: AnswerFormat):
    """
    Build the answer variant demanded by `fmt` from a raw AI answer.

    Strings become points by splitting on line breaks, bullets and numbered
    list ordinals, with list prefixes removed; lists become paragraphs joined by
    blank lines. Returns None for empty or placeholder answers so a node never
    carries a partial answer.
    """
    if isinstance(raw, dict):
        raw = raw.get("points") or raw.get("text") or raw.get("answer") or raw.get("content")
    if _is_placeholder(raw):
        return None

    if isinstance(raw, (list, tuple)):
        items = [str(item).strip() for item in raw if not _is_placeholder(item)]
        items = [item for item in items if item]
        if not items:
            return None
        if fmt == AnswerFormat.POINTS:
            return PointsAnswer(points=items)
        return ParagraphAnswer.from_points(items)

    text = str(raw).strip()
    if fmt == AnswerFormat.POINTS:
        answer = PointsAnswer.from_text(text)
    else:
        answer = ParagraphAnswer(text=text)
    return None if answer.is_empty() else answer


def coerce_marks(raw: Any):
    """Marks as int when integral, float otherwise, None when absent."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        match = re.search(r"\d+(?:\.\d+)?", str(raw))
        if not match:
            return None
        value = float(match.group(0))
    return int(value) if value.is_integer() else value


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def normalize_question(raw: Dict[str, Any], level: int = 1, order_index: int = 0) -> QuestionNode:
    """Normalize one raw question dict and, recursively, its sub-questions."""
    content = str(_first(raw, "content", "question", "text") or "").strip()
    ordinal = _first(raw, "question_number", "number", "ordinal")
    ordinal = str(ordinal).strip() if not _is_placeholder(ordinal) else str(order_index + 1)

    fmt = coerce_answer_format(raw.get("answer_format"), content)
    children = _first(raw, "sub_questions", "subquestions", "parts") or []

    return QuestionNode(
        question_number=ordinal,
        content=content,
        level=level,
        marks=coerce_marks(raw.get("marks")),
        answer_format=fmt,
        answer=coerce_answer(raw.get("answer"), fmt),
        order_index=order_index,
        sub_questions=normalize_questions(children, level=level + 1),
    )


def normalize_questions(raw_questions: Any, level: int = 1) -> List[QuestionNode]:
    """Depth-first normalization of a question list; non-dict entries are dropped."""
    if not isinstance(raw_questions, list):
        return []
    nodes: List[QuestionNode] = []
    for raw in raw_questions:
        if not isinstance(raw, dict):
            log.debug("Normalizer: dropping non-object question entry at level %s", level)
            continue
        nodes.append(normalize_question(raw, level=level, order_index=len(nodes)))
    return nodes


def _coerce_text(value: Any, default: str) -> str:
    if _is_placeholder(value):
        return default
    return str(value).strip()


def coerce_year(value: Any) -> int:
    if isinstance(value, bool):
        return current_year()
    if isinstance(value, int) and 1900 <= value <= 2100:
        return value
    if isinstance(value, float) and value.is_integer():
        return coerce_year(int(value))
    if isinstance(value, str):
        match = re.search(r"\b(19|20)\d{2}\b", value)
        if match:
            return int(match.group(0))
    return current_year()


def coerce_term(value: Any) -> Optional[int]:
    """Term as 1..3; "Term 2" → 2; anything else → None."""
    if _is_placeholder(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        term = int(value)
    else:
        match = re.search(r"\d+", str(value))
        if not match:
            return None
        term = int(match.group(0))
    return term if 1 <= term <= 3 else None


def normalize_metadata(raw: Any) -> PaperMetadata:
    raw = raw if isinstance(raw, dict) else {}
    paper_type = raw.get("paper_type")
    return PaperMetadata(
        examiner=_coerce_text(raw.get("examiner"), UNKNOWN_EXAMINER),
        subject=_coerce_text(raw.get("subject"), UNKNOWN_SUBJECT),
        class_name=_coerce_text(_first(raw, "class", "class_name"), UNKNOWN_CLASS),
        curriculum=_coerce_text(raw.get("curriculum"), UNKNOWN_CURRICULUM),
        year=coerce_year(raw.get("year")),
        term=coerce_term(raw.get("term")),
        paper_type=None if _is_placeholder(paper_type) else str(paper_type).strip(),
    )


def normalize_analysis(data: Any, source: str = "unknown") -> PaperAnalysis:
    """
    Validate and normalize a full analysis payload.

    Raises:
        ValidationFailure: payload is not an object or has neither
                           "metadata" nor "questions".
    """
    if not isinstance(data, dict):
        raise ValidationFailure(f"Expected JSON object, got {type(data).__name__}")
    if "metadata" not in data and "questions" not in data:
        raise ValidationFailure("Invalid AI response format: missing metadata and questions")

    analysis = PaperAnalysis(
        metadata=normalize_metadata(data.get("metadata")),
        questions=normalize_questions(data.get("questions") or []),
        source=source,
    )
    log.info(
        "Normalizer: source=%s questions=%s nodes=%s",
        source, len(analysis.questions), analysis.question_count(),
    )
    return analysis


# ─── JSON extraction ───────────────────────────────────────────────────────────

def extract_json_object(raw: str) -> Dict[str, Any]:
    """
    Pull a JSON object out of model output that may be wrapped in markdown
    fences or surrounded by prose.

    Raises:
        ValidationFailure: no parseable JSON object found.
    """
    text = (raw or "").strip()
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fenced:
        text = fenced.group(1).strip()

    start = text.find("{")
    end = text.rfind("}") + 1
    if start == -1 or end == 0:
        raise ValidationFailure(f"No JSON object found: {text[:200]}")
    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError as e:
        raise ValidationFailure(f"Failed to parse AI response: {e}") from e
    if not isinstance(data, dict):
        raise ValidationFailure("AI response JSON is not an object")
    return data


def parse_analysis_response(content: str, source: str = "unknown") -> PaperAnalysis:
    """Model output text → validated PaperAnalysis."""
    return normalize_analysis(extract_json_object(content), source=source)
