"""
Heuristic Extractor: rule-based fallback when every AI provider failed.

Layered regular expressions over the raw text:

  - "1. ..."            starts a top-level question (level 1)
  - "a) ...", "(ii) ..." inside a question starts a sub-question (level 2)
  - "(N marks)"         last occurrence in a node's own text → marks (kept in content)
  - answer_format       from the same keyword lexicon the normalizer uses

A marker alone on its line (common in PDF and OCR output) takes its content
from the lines that follow it. Third-level nesting is not attempted; deeper
markers stay in their sub-question's content. No answers are produced on this
path.

Metadata is read opportunistically from the filename and body text (subject,
paper type, year, term, examiner, class, curriculum); anything unresolved takes
the normalizer's defaults. Output is deterministic for a given input.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from exam_analyzer.analysis.response_normalizer import normalize_analysis
from exam_analyzer.analysis.schemas import PaperAnalysis

log = logging.getLogger(__name__)

SOURCE_NAME = "heuristic"

# ── Structural patterns ───────────────────────────────────────────────────────
# A marker may sit alone on its line or run straight into the text ("1.Explain")
TOP_LEVEL_RE = re.compile(r"^\s*(\d+)\.(?!\d)\s*(.*)$")
# "e.g." and "i.e." are not part markers
SUB_LEVEL_RE = re.compile(r"^\s*\(?([ivx]{1,4}|[a-z])[.)](?![a-z]\.)\s*(.*)$")
MARKS_RE = re.compile(r"\((\d+(?:\.\d+)?)\s*marks?\)", re.IGNORECASE)
ROMAN_RE = re.compile(r"^[ivx]{1,4}$")

# ── Metadata lexicons (checked in list order, first match wins) ───────────────
SUBJECTS = [
    "Mathematics", "English", "Kiswahili", "Biology", "Chemistry", "Physics",
    "History", "Geography", "CRE", "IRE", "HRE", "Business Studies",
    "Agriculture", "Computer Studies", "Home Science", "French", "German",
    "Arabic", "Music", "Art and Design", "Social Studies", "Religious Education",
    "Integrated Science", "Science",
]
SUBJECT_ALIASES = {
    "maths": "Mathematics",
    "math": "Mathematics",
    "bio": "Biology",
    "chem": "Chemistry",
    "phy": "Physics",
    "geo": "Geography",
    "hist": "History",
    "kisw": "Kiswahili",
    "eng": "English",
}

EXAMINERS = [
    "KNEC", "KCSE", "KCPE", "KPSEA", "KJSEA", "JOINT", "MOCK", "CATS",
    "END TERM", "MID TERM", "OPENER",
]

CURRICULUMS = [
    ("CBC", re.compile(r"\b(?:CBC|CBE|competency[\s-]based)\b", re.IGNORECASE)),
    ("8-4-4", re.compile(r"\b8\s*-\s*4\s*-\s*4\b")),
]

PAPER_TYPE_RE = re.compile(r"\b(?:pp|paper)\s*(\d)\b", re.IGNORECASE)
YEAR_RE = re.compile(r"\b(20\d{2})\b")
TERM_RE = re.compile(r"\bterm\s*(\d)\b", re.IGNORECASE)
CLASS_RE = re.compile(r"\b(form|grade|class|standard|std)\s*(\d{1,2})\b", re.IGNORECASE)


def _word_re(token: str) -> re.Pattern:
    return re.compile(r"(?<![A-Za-z])" + re.escape(token).replace(r"\ ", r"[\s_-]+") + r"(?![A-Za-z])", re.IGNORECASE)


_SUBJECT_PATTERNS = [(name, _word_re(name)) for name in SUBJECTS]
_SUBJECT_ALIAS_PATTERNS = [(_word_re(alias), name) for alias, name in SUBJECT_ALIASES.items()]
_EXAMINER_PATTERNS = [(token, _word_re(token)) for token in EXAMINERS]


# ─── Metadata ──────────────────────────────────────────────────────────────────

def _filename_text(filename: str) -> str:
    stem = re.sub(r"\.[A-Za-z0-9]{1,5}$", "", filename or "")
    return re.sub(r"[_\-.]+", " ", stem)


def _match_subject(haystack: str) -> Optional[str]:
    for name, pattern in _SUBJECT_PATTERNS:
        if pattern.search(haystack):
            return name
    for pattern, name in _SUBJECT_ALIAS_PATTERNS:
        if pattern.search(haystack):
            return name
    return None


def extract_metadata(text: str, filename: str = "") -> Dict[str, Any]:
    """
    Resolve what metadata the filename and body text reveal.

    The filename is searched before the body for every field. Unresolved
    fields are left as None for the normalizer to default.
    """
    sources = [_filename_text(filename), text or ""]

    def first(fn):
        for source in sources:
            value = fn(source)
            if value is not None:
                return value
        return None

    def paper_type(source):
        m = PAPER_TYPE_RE.search(source)
        return f"Paper {m.group(1)}" if m else None

    def year(source):
        m = YEAR_RE.search(source)
        return int(m.group(1)) if m else None

    def term(source):
        m = TERM_RE.search(source)
        return int(m.group(1)) if m and 1 <= int(m.group(1)) <= 3 else None

    def examiner(source):
        for token, pattern in _EXAMINER_PATTERNS:
            if pattern.search(source):
                return token
        return None

    def school_class(source):
        m = CLASS_RE.search(source)
        return f"{m.group(1).capitalize()} {int(m.group(2))}" if m else None

    def curriculum(source):
        for name, pattern in CURRICULUMS:
            if pattern.search(source):
                return name
        return None

    return {
        "examiner": first(examiner),
        "subject": first(_match_subject),
        "class": first(school_class),
        "curriculum": first(curriculum),
        "year": first(year),
        "term": first(term),
        "paper_type": first(paper_type),
    }


# ─── Questions ─────────────────────────────────────────────────────────────────

def extract_marks(content: str):
    """Last "(N marks)" in the content, int when integral."""
    matches = MARKS_RE.findall(content or "")
    if not matches:
        return None
    value = float(matches[-1])
    return int(value) if value.is_integer() else value


def _marker_kind(marker: str) -> str:
    # A lone "i" opens a roman sequence; any other single letter opens a letter sequence
    if marker == "i" or len(marker) > 1:
        return "roman"
    return "letter"


def _accepts(kind: str, previous: Optional[str], marker: str) -> bool:
    if kind == "roman":
        return bool(ROMAN_RE.match(marker))
    if len(marker) != 1 or previous is None:
        return False
    return ord(marker) == ord(previous) + 1


def _split_sub_questions(lines: List[str]) -> Tuple[List[str], List[Tuple[str, List[str]]]]:
    """
    Split a question's lines into its stem and level-2 parts.

    The first sub marker fixes the sequence kind (letters or roman numerals);
    only markers continuing that sequence open a new sibling.
    """
    stem: List[str] = []
    parts: List[Tuple[str, List[str]]] = []
    kind: Optional[str] = None

    for line in lines:
        match = SUB_LEVEL_RE.match(line)
        if match:
            marker = match.group(1)
            if kind is None:
                kind = _marker_kind(marker)
                parts.append((marker, [match.group(2)]))
                continue
            if _accepts(kind, parts[-1][0], marker):
                parts.append((marker, [match.group(2)]))
                continue
        if parts:
            parts[-1][1].append(line)
        else:
            stem.append(line)
    return stem, parts


def _join(lines: List[str]) -> str:
    return "\n".join(line.strip() for line in lines if line.strip())


def _node(ordinal: str, content: str, level: int) -> Dict[str, Any]:
    return {
        "question_number": ordinal,
        "content": content,
        "level": level,
        "marks": extract_marks(content),
        "answer": None,
        "sub_questions": [],
    }


def extract_questions(text: str) -> List[Dict[str, Any]]:
    """Raw question dicts (canonical shape, no answers) in document order."""
    blocks: List[Tuple[str, List[str]]] = []
    for line in (text or "").splitlines():
        match = TOP_LEVEL_RE.match(line)
        if match:
            blocks.append((match.group(1), [match.group(2)]))
        elif blocks:
            blocks[-1][1].append(line)

    questions = []
    for ordinal, lines in blocks:
        stem, parts = _split_sub_questions(lines)
        question = _node(ordinal, _join(stem), level=1)
        question["sub_questions"] = [_node(marker, _join(part), level=2) for marker, part in parts]
        questions.append(question)
    return questions


def extract_raw(text: str, filename: str = "") -> Dict[str, Any]:
    """Canonical {metadata, questions} dict before normalization."""
    return {
        "metadata": extract_metadata(text, filename),
        "questions": extract_questions(text),
    }


def extract_paper(text: str, filename: str = "") -> PaperAnalysis:
    """Text → normalized question tree, source "heuristic"."""
    analysis = normalize_analysis(extract_raw(text, filename), source=SOURCE_NAME)
    log.info(
        "Heuristic: extracted %s top-level questions (%s nodes) from %s",
        len(analysis.questions), analysis.question_count(), filename or "text",
    )
    return analysis


class HeuristicExtractor:
    """Same analyze(text) shape as an AI provider, for use on total AI failure."""

    name = SOURCE_NAME
    model = None

    def __init__(self, filename: str = ""):
        self.filename = filename

    async def analyze(self, text: str) -> PaperAnalysis:
        return extract_paper(text, self.filename)
