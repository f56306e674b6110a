"""
Batch Answer Synthesizer

Generates model answers for an existing question tree and reconciles them back
onto question identities.

Batch mode (default):
  1. Walk the tree; a question is eligible if it has no answer, or always when
     regeneration is forced. Other answers are left untouched.
  2. Group eligible questions into batches of 5 and process batches in order,
     one generation call each.
  3. The prompt numbers questions 1..n; the response is a JSON object keyed by
     that number. Non-JSON responses get a "Question N ... Answer: ..." regex pass.
  4. A question whose key is missing stays unanswered for this cycle and is
     recorded as a ReconciliationMiss. A batch that fails on every provider
     leaves all its members unanswered; later batches still run.

Paper mode:
  One prompt with the whole eligible tree; the response mirrors it as
  {"questions": [...]} and is matched by question_number within each sibling
  group. Unmatched ordinals are logged and skipped.

Each answer is written (and committed) per question via crud.upsert_answer.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from exam_analyzer.analysis.orchestrator import AnalysisOrchestrator
from exam_analyzer.analysis.response_normalizer import coerce_answer, extract_json_object
from exam_analyzer.analysis.schemas import GenerationFailure
from exam_analyzer.database import crud, models
from exam_analyzer.errors import PaperNotFound, PersistenceFailure, ReconciliationMiss, ValidationFailure
from exam_analyzer.generation.prompts import build_batch_prompt, build_paper_prompt

log = logging.getLogger(__name__)

# ── Configuration ─────────────────────────────────────────────────────────────
BATCH_SIZE = 5
PAPER_MODE_MAX_TOKENS = 4000

MODE_BATCH = "batch"
MODE_PAPER = "paper"

# Fallback for non-JSON responses: "Question 2 ... Answer: <text>" up to the next "Question N".
# The gap before "Answer:" may not cross another "Question N" header.
ANSWER_SEGMENT_RE = re.compile(
    r"Question\s+(\d+)(?:(?!Question\s+\d+)[\s\S])*?Answer:\s*(.+?)(?=Question\s+\d+|$)",
    re.IGNORECASE | re.DOTALL,
)
# Echoed ordinals: "1.", "Q1", "Question 2", "(a)", "ii)"
ORDINAL_LABEL_RE = re.compile(r"^(?:q(?:uestion)?\s*)?[(\[]?\s*(\d+|[a-z]+)\s*[)\].:]?$", re.IGNORECASE)


@dataclass
class SynthesisReport:
    """Outcome of one synthesis pass over a paper."""
    paper_id: int
    mode: str = MODE_BATCH
    eligible: int = 0
    answered: int = 0
    skipped: int = 0
    calls: int = 0
    misses: List[ReconciliationMiss] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    generated_at: Optional[datetime] = None

    @property
    def unresolved(self) -> int:
        return len(self.misses)

    @property
    def success(self) -> bool:
        return self.eligible == 0 or self.answered > 0


def parse_batch_response(content: str, batch_size: int) -> Dict[int, Any]:
    """
    Map 1-based batch positions to raw answers.

    JSON object keyed by "1".."n" first; otherwise "Question N ... Answer:"
    segments. Positions outside 1..batch_size are ignored.
    """
    answers: Dict[int, Any] = {}
    try:
        data = extract_json_object(content)
    except ValidationFailure:
        data = None

    if data is not None:
        # Some models wrap the mapping: {"answers": {"1": ...}}
        if len(data) == 1 and isinstance(next(iter(data.values())), dict):
            inner = next(iter(data.values()))
            if any(str(k).strip().isdigit() for k in inner):
                data = inner
        for key, value in data.items():
            key = str(key).strip()
            if key.isdigit() and 1 <= int(key) <= batch_size:
                answers[int(key)] = value
        return answers

    for match in ANSWER_SEGMENT_RE.finditer(content or ""):
        index = int(match.group(1))
        if 1 <= index <= batch_size and index not in answers:
            answers[index] = match.group(2).strip()
    return answers


def clean_ordinal(label: Any) -> str:
    """Strip a "Q" prefix and surrounding punctuation from an echoed ordinal."""
    label = str(label if label is not None else "").strip()
    match = ORDINAL_LABEL_RE.match(label)
    return match.group(1) if match else label


def _question_prompt_data(question: models.Question) -> Dict[str, Any]:
    return {
        "content": question.content,
        "answer_format": question.format.value,
        "marks": question.marks,
        "context": question.parent.content if question.parent is not None else None,
    }


class AnswerSynthesizer:
    """Generates and reconciles answers for one paper at a time."""

    def __init__(self, orchestrator: AnalysisOrchestrator, batch_size: int = BATCH_SIZE):
        self.orchestrator = orchestrator
        self.batch_size = batch_size

    @staticmethod
    def _load_paper(db: Session, paper_id: int) -> models.QuestionPaper:
        paper = crud.get_paper(db, paper_id)
        if paper is None:
            raise PaperNotFound(f"Question paper {paper_id} not found")
        return paper

    @staticmethod
    def _select(paper: models.QuestionPaper, regenerate: bool):
        questions = crud.walk_questions(paper)
        eligible = [q for q in questions if regenerate or q.answer is None]
        return questions, eligible

    def _save(
        self,
        db: Session,
        question: models.Question,
        raw_answer: Any,
        provider: str,
        model: Optional[str],
        report: SynthesisReport,
        batch_index: Optional[int] = None,
    ) -> bool:
        question_id = question.id
        fmt = question.format
        content = coerce_answer(raw_answer, fmt)
        if content is None:
            report.misses.append(ReconciliationMiss(
                reason="empty answer", question_id=question_id,
                ordinal=question.question_number, batch_index=batch_index,
            ))
            return False
        try:
            crud.upsert_answer(db, question_id, content, fmt, generated_by=provider, model=model)
        except PersistenceFailure as e:
            report.errors.append(f"Question {question_id}: {e}")
            return False
        report.answered += 1
        return True

    # ─── Batch mode ────────────────────────────────────────────────────────────

    async def generate_answers(self, db: Session, paper_id: int, regenerate: bool = False) -> SynthesisReport:
        """
        Generate answers for every eligible question, batch by batch.

        Raises:
            PaperNotFound: unknown paper id
        """
        paper = self._load_paper(db, paper_id)
        questions, eligible = self._select(paper, regenerate)
        report = SynthesisReport(
            paper_id=paper_id,
            mode=MODE_BATCH,
            eligible=len(eligible),
            skipped=len(questions) - len(eligible),
        )
        if not eligible:
            log.info("Synthesis: paper %s has no questions needing answers", paper_id)
            return report

        batches = [eligible[i:i + self.batch_size] for i in range(0, len(eligible), self.batch_size)]
        log.info(
            "Synthesis: paper=%s eligible=%s batches=%s regenerate=%s",
            paper_id, len(eligible), len(batches), regenerate,
        )

        for batch_index, batch in enumerate(batches):
            prompt = build_batch_prompt([_question_prompt_data(q) for q in batch])
            result = await self.orchestrator.generate_content(prompt)
            report.calls += 1

            if isinstance(result, GenerationFailure):
                log.error("Synthesis: batch %s failed on all providers: %s", batch_index + 1, result.details)
                report.errors.append(f"Batch {batch_index + 1}: {result.error}")
                for q in batch:
                    report.misses.append(ReconciliationMiss(
                        reason="generation failed", question_id=q.id,
                        ordinal=q.question_number, batch_index=batch_index,
                    ))
                continue

            answers = parse_batch_response(result.content, len(batch))
            for position, question in enumerate(batch, start=1):
                if position not in answers:
                    log.warning(
                        "Synthesis: batch %s has no answer for position %s (question id=%s)",
                        batch_index + 1, position, question.id,
                    )
                    report.misses.append(ReconciliationMiss(
                        reason="missing key", question_id=question.id,
                        ordinal=question.question_number, batch_index=batch_index,
                    ))
                    continue
                self._save(db, question, answers[position], result.provider, result.model, report, batch_index)

        report.generated_at = datetime.now(timezone.utc)
        log.info(
            "Synthesis: paper=%s answered=%s/%s unresolved=%s",
            paper_id, report.answered, report.eligible, report.unresolved,
        )
        return report

    # ─── Paper mode ────────────────────────────────────────────────────────────

    @staticmethod
    def _tree_for_prompt(question: models.Question, eligible_ids: Set[int]) -> Optional[Dict[str, Any]]:
        """Question subtree containing at least one eligible node, else None."""
        children = []
        for child in question.children:
            child_tree = AnswerSynthesizer._tree_for_prompt(child, eligible_ids)
            if child_tree is not None:
                children.append(child_tree)
        if question.id not in eligible_ids and not children:
            return None
        return {
            "question_number": question.question_number,
            "content": question.content,
            "marks": question.display_marks,
            "answer_format": question.format.value,
            "sub_questions": children,
        }

    def _reconcile(
        self,
        db: Session,
        paper_id: int,
        entries: Any,
        parent_id: Optional[int],
        eligible_ids: Set[int],
        provider: str,
        model: Optional[str],
        report: SynthesisReport,
        handled: Set[int],
    ) -> None:
        if not isinstance(entries, list):
            return
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            ordinal = str(entry.get("question_number", "")).strip()
            question_id = crud.find_question_by_ordinal(db, paper_id, ordinal, parent_id)
            if question_id is None and clean_ordinal(ordinal) != ordinal:
                question_id = crud.find_question_by_ordinal(db, paper_id, clean_ordinal(ordinal), parent_id)
            if question_id is None:
                log.warning("Synthesis: paper %s has no question '%s' under parent %s", paper_id, ordinal, parent_id)
                report.misses.append(ReconciliationMiss(reason="unmatched ordinal", ordinal=ordinal))
                continue

            if question_id in eligible_ids and question_id not in handled:
                handled.add(question_id)
                question = db.get(models.Question, question_id)
                # A container question may come back empty; its marks live in the sub-questions
                if not (question.children and not entry.get("answer")):
                    self._save(db, question, entry.get("answer"), provider, model, report)

            self._reconcile(
                db, paper_id, entry.get("sub_questions"), question_id,
                eligible_ids, provider, model, report, handled,
            )

    async def generate_paper_answers(self, db: Session, paper_id: int, regenerate: bool = False) -> SynthesisReport:
        """
        Generate all answers for a paper in a single call.

        Raises:
            PaperNotFound: unknown paper id
        """
        paper = self._load_paper(db, paper_id)
        questions, eligible = self._select(paper, regenerate)
        report = SynthesisReport(
            paper_id=paper_id,
            mode=MODE_PAPER,
            eligible=len(eligible),
            skipped=len(questions) - len(eligible),
        )
        if not eligible:
            return report

        eligible_ids = {q.id for q in eligible}
        tree = []
        for question in paper.questions:
            subtree = self._tree_for_prompt(question, eligible_ids)
            if subtree is not None:
                tree.append(subtree)
        metadata = dict(paper.paper_metadata or {})
        prompt = build_paper_prompt(metadata, tree)

        log.info("Synthesis: paper=%s paper-mode eligible=%s", paper_id, len(eligible))
        result = await self.orchestrator.generate_content(prompt, max_tokens=PAPER_MODE_MAX_TOKENS)
        report.calls += 1

        if isinstance(result, GenerationFailure):
            log.error("Synthesis: paper %s generation failed: %s", paper_id, result.details)
            report.errors.append(result.error)
            return report

        try:
            data = extract_json_object(result.content)
        except ValidationFailure as e:
            report.errors.append(str(e))
            return report
        if not isinstance(data.get("questions"), list):
            report.errors.append("Invalid AI response structure: missing questions array")
            return report

        handled: Set[int] = set()
        self._reconcile(
            db, paper_id, data["questions"], None, eligible_ids,
            result.provider, result.model, report, handled,
        )

        for question_id in sorted(eligible_ids - handled):
            report.misses.append(ReconciliationMiss(reason="not returned", question_id=question_id))

        report.generated_at = datetime.now(timezone.utc)
        log.info(
            "Synthesis: paper=%s paper-mode answered=%s/%s unresolved=%s",
            paper_id, report.answered, report.eligible, report.unresolved,
        )
        return report

    async def synthesize(
        self, db: Session, paper_id: int, regenerate: bool = False, mode: str = MODE_BATCH
    ) -> SynthesisReport:
        if mode == MODE_PAPER:
            return await self.generate_paper_answers(db, paper_id, regenerate)
        return await self.generate_answers(db, paper_id, regenerate)
