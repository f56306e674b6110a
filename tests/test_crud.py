"""
Tests for database CRUD operations.

Test Coverage:
- Atomic paper + tree persistence (and rollback on failure)
- Level invariant across the stored tree
- Lookup get-or-create reuse
- Answer upsert / overwrite / verification / deletion
- Answer statistics, listing filters and pagination
- Cascading paper deletion
"""

import json

import pytest

from exam_analyzer.analysis.response_normalizer import normalize_analysis
from exam_analyzer.analysis.schemas import AnswerFormat, ParagraphAnswer, PointsAnswer
from exam_analyzer.database import crud, models
from exam_analyzer.errors import PersistenceFailure

from conftest import SAMPLE_PAYLOAD


def store(db, payload=None, filename="bio.pdf"):
    analysis = normalize_analysis(payload or SAMPLE_PAYLOAD, source="openai")
    return crud.store_analysis(db, analysis, filename, f"/tmp/{filename}", "pdf")


class TestStoreAnalysis:
    """Tests for store_analysis."""

    def test_store_then_paper_and_tree_persisted(self, db, stored_paper):
        paper = crud.get_paper_complete(db, stored_paper.id)

        assert paper.is_processed is True
        assert paper.has_answers is False
        assert paper.analysis_source == "openai"
        assert paper.subject.name == "Biology"
        assert paper.subject.code == "BIO"
        assert paper.school_class.name == "Form 3"
        assert paper.examiner.name == "KNEC"
        assert paper.term == 2
        assert paper.paper_metadata["class"] == "Form 3"

        assert [q.question_number for q in paper.questions] == ["1", "2"]
        assert [q.question_number for q in crud.walk_questions(paper)] == ["1", "a", "b", "2"]

    def test_store_then_levels_follow_parents(self, db, stored_paper):
        paper = crud.get_paper_complete(db, stored_paper.id)
        for question in crud.walk_questions(paper):
            expected = question.parent.level + 1 if question.parent is not None else 1
            assert question.level == expected

    def test_store_when_answers_present_then_has_answers(self, db):
        payload = {
            "metadata": {"subject": "Physics"},
            "questions": [{"question_number": "1", "content": "State Ohm's law", "answer": "V = IR"}],
        }
        paper = store(db, payload, "physics.pdf")

        assert paper.has_answers is True
        question = paper.questions[0]
        assert question.answer.format == "points"
        assert json.loads(question.answer.content) == ["V = IR"]

    def test_store_twice_then_lookups_reused(self, db):
        first = store(db, filename="a.pdf")
        second = store(db, filename="b.pdf")
        assert first.subject_id == second.subject_id
        assert db.query(models.Subject).count() == 1

    def test_store_when_tree_fails_then_rolled_back(self, db, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(crud, "create_question_tree", explode)

        with pytest.raises(PersistenceFailure):
            store(db)

        assert db.query(models.QuestionPaper).count() == 0
        assert db.query(models.Subject).count() == 0
        assert db.query(models.Question).count() == 0


class TestAnswers:
    """Tests for answer upsert, verification and deletion."""

    def test_upsert_then_paper_flagged(self, db, stored_paper):
        question_id = crud.walk_questions(stored_paper)[0].id

        answer = crud.upsert_answer(db, question_id, ParagraphAnswer(text="Plants make food."), model="gpt-4o")

        assert answer.content == "Plants make food."
        assert answer.answer_metadata["model"] == "gpt-4o"
        paper = crud.get_paper(db, stored_paper.id)
        assert paper.has_answers is True
        assert paper.answers_generated_at is not None

    def test_upsert_when_format_differs_then_converted(self, db, stored_paper):
        points_question = crud.walk_questions(stored_paper)[-1]
        assert points_question.format == AnswerFormat.POINTS

        answer = crud.upsert_answer(db, points_question.id, ParagraphAnswer(text="Auxins\nGibberellins"))

        assert answer.format == "points"
        assert answer.as_content() == PointsAnswer(points=["Auxins", "Gibberellins"])

    def test_upsert_twice_then_overwritten_and_unverified(self, db, stored_paper):
        question_id = crud.walk_questions(stored_paper)[0].id
        first = crud.upsert_answer(db, question_id, ParagraphAnswer(text="Old"))
        crud.set_answer_verified(db, first.id, True)

        second = crud.upsert_answer(db, question_id, ParagraphAnswer(text="New"))

        assert second.id == first.id
        assert second.content == "New"
        assert second.is_verified is False
        assert db.query(models.Answer).count() == 1

    def test_upsert_when_unknown_question_then_raises(self, db):
        with pytest.raises(PersistenceFailure):
            crud.upsert_answer(db, 12345, ParagraphAnswer(text="x"))

    def test_delete_answers_then_flag_reset(self, db, stored_paper):
        for question in crud.walk_questions(stored_paper):
            crud.upsert_answer(db, question.id, ParagraphAnswer(text="Answer"))

        deleted = crud.delete_answers(db, stored_paper.id)

        assert deleted == 4
        paper = crud.get_paper_complete(db, stored_paper.id)
        assert paper.has_answers is False
        assert all(q.answer is None for q in crud.walk_questions(paper))

    def test_answer_stats(self, db, stored_paper):
        question_id = crud.walk_questions(stored_paper)[0].id
        crud.upsert_answer(db, question_id, ParagraphAnswer(text="Answer"))

        db.expire_all()
        stats = crud.answer_stats(crud.get_paper_complete(db, stored_paper.id))

        assert stats == {
            "total_questions": 4,
            "answered_questions": 1,
            "completion_percentage": 25,
            "is_complete": False,
        }


class TestQueries:
    """Tests for lookup, listing and deletion queries."""

    def test_find_question_by_ordinal_is_sibling_scoped(self, db, stored_paper):
        top = crud.find_question_by_ordinal(db, stored_paper.id, "1")
        sub = crud.find_question_by_ordinal(db, stored_paper.id, "a", parent_id=top)

        assert top is not None
        assert sub is not None
        assert crud.find_question_by_ordinal(db, stored_paper.id, "a") is None
        assert crud.find_question_by_ordinal(db, stored_paper.id, "9") is None

    def test_list_papers_filters_and_paginates(self, db):
        store(db, filename="a.pdf")
        store(db, filename="b.pdf")
        store(db, {"metadata": {"subject": "Physics", "year": 2020}, "questions": []}, "c.pdf")

        papers, meta = crud.list_papers(db, year=2023, page=1, limit=1)

        assert len(papers) == 1
        assert meta == {"total": 2, "per_page": 1, "current_page": 1, "last_page": 2}

    def test_get_filter_options(self, db):
        store(db, filename="a.pdf")
        store(db, {"metadata": {"subject": "Physics", "year": 2020}, "questions": []}, "c.pdf")

        options = crud.get_filter_options(db)

        assert [s.name for s in options["subjects"]] == ["Biology", "Physics"]
        assert options["years"] == [2023, 2020]
        assert options["terms"] == [2]
        assert options["paper_types"] == ["Paper 1"]

    def test_delete_paper_cascades(self, db, stored_paper):
        question_id = crud.walk_questions(stored_paper)[1].id
        crud.upsert_answer(db, question_id, ParagraphAnswer(text="Answer"))

        assert crud.delete_paper(db, stored_paper.id) is True

        assert db.query(models.Question).count() == 0
        assert db.query(models.Answer).count() == 0
        assert crud.delete_paper(db, stored_paper.id) is False

    @pytest.mark.parametrize("name, code", [
        ("Biology", "BIO"),
        ("Business Studies", "BUS"),
        ("Unknown Subject", "UNK"),
        ("", "UNK"),
    ])
    def test_subject_code(self, name, code):
        assert crud.subject_code(name) == code
