"""
Tests for batch and paper-mode answer synthesis.

Test Coverage:
- Batching: 7 eligible questions → calls of 5 and 2
- Missing keys leave questions unanswered without failing the batch
- Already-answered questions are skipped unless regenerating
- Failed batches on every provider
- Response parsing: JSON, wrapped JSON, "Question N ... Answer:" text
  (a question without "Answer:" never takes the next one)
- Paper mode: ordinal reconciliation within sibling groups, decorated
  ordinals ("Q1.", "(a)") included
"""

import asyncio
import json

import pytest

from exam_analyzer.analysis.response_normalizer import normalize_analysis
from exam_analyzer.analysis.schemas import PointsAnswer
from exam_analyzer.database import crud
from exam_analyzer.errors import PaperNotFound, ProviderError
from exam_analyzer.generation.answer_synthesizer import (
    MODE_PAPER,
    AnswerSynthesizer,
    clean_ordinal,
    parse_batch_response,
)

from conftest import FakeProvider, make_orchestrator


@pytest.fixture
def seven_question_paper(db):
    payload = {
        "metadata": {"subject": "Biology", "year": 2023},
        "questions": [
            {"question_number": str(n), "content": f"Explain process {n}.", "marks": 4}
            for n in range(1, 8)
        ],
    }
    analysis = normalize_analysis(payload, source="openai")
    return crud.store_analysis(db, analysis, "bio7.pdf", "/tmp/bio7.pdf", "pdf")


def answers_by_number(db, paper_id):
    db.expire_all()
    paper = crud.get_paper_complete(db, paper_id)
    return {q.question_number: q.answer for q in crud.walk_questions(paper)}


class TestParseBatchResponse:
    """Tests for parse_batch_response."""

    def test_parse_when_json_then_keyed_by_position(self):
        answers = parse_batch_response('```json\n{"1": "A", "2": ["x", "y"]}\n```', 2)
        assert answers == {1: "A", 2: ["x", "y"]}

    def test_parse_when_wrapped_then_unwrapped(self):
        answers = parse_batch_response('{"answers": {"1": "A", "2": "B"}}', 2)
        assert answers == {1: "A", 2: "B"}

    def test_parse_when_keys_out_of_range_then_ignored(self):
        answers = parse_batch_response('{"1": "A", "9": "Z", "note": "hi"}', 2)
        assert answers == {1: "A"}

    def test_parse_when_plain_text_then_regex_fallback(self):
        content = (
            "Question 1: Define osmosis\nAnswer: Movement of water molecules.\n"
            "Question 2\nAnswer: Diffusion of gases."
        )
        answers = parse_batch_response(content, 2)
        assert answers[1] == "Movement of water molecules."
        assert answers[2] == "Diffusion of gases."

    def test_parse_when_question_has_no_answer_then_next_answer_not_borrowed(self):
        content = "Question 1: I am not sure about this one.\n\nQuestion 2\nAnswer: Auxins promote growth."
        assert parse_batch_response(content, 2) == {2: "Auxins promote growth."}

    @pytest.mark.parametrize("label, expected", [
        ("1.", "1"),
        ("Q1", "1"),
        ("Question 2", "2"),
        ("(a)", "a"),
        ("ii)", "ii"),
        ("b", "b"),
        ("", ""),
    ])
    def test_clean_ordinal(self, label, expected):
        assert clean_ordinal(label) == expected


class TestBatchMode:
    """Tests for AnswerSynthesizer.generate_answers."""

    def test_generate_when_seven_questions_then_two_batches(self, db, seven_question_paper):
        # Arrange
        first_batch = json.dumps({"1": "One.", "2": "Two.", "4": "Four.", "5": "Five."})
        second_batch = json.dumps({"1": "Six.", "2": "Seven."})
        primary = FakeProvider("openai", generations=[first_batch, second_batch])
        synthesizer = AnswerSynthesizer(make_orchestrator(primary))

        # Act
        report = asyncio.run(synthesizer.generate_answers(db, seven_question_paper.id))

        # Assert
        assert report.calls == 2
        assert "Question 5:" in primary.generate_calls[0]
        assert "Question 6:" not in primary.generate_calls[0]
        assert "Question 2:" in primary.generate_calls[1]
        assert "Question 3:" not in primary.generate_calls[1]

        assert report.eligible == 7
        assert report.answered == 6
        assert report.unresolved == 1
        assert report.misses[0].reason == "missing key"
        assert report.misses[0].ordinal == "3"
        assert report.success

        answers = answers_by_number(db, seven_question_paper.id)
        assert answers["3"] is None
        assert answers["6"].content == "Six."
        assert answers["6"].generated_by == "openai"
        assert answers["6"].answer_metadata["model"] == "fake-model"
        assert crud.get_paper(db, seven_question_paper.id).has_answers is True

    def test_generate_when_rerun_then_only_unanswered_eligible(self, db, seven_question_paper):
        first = FakeProvider("openai", generations=[
            json.dumps({"1": "One.", "2": "Two.", "4": "Four.", "5": "Five."}),
            json.dumps({"1": "Six.", "2": "Seven."}),
        ])
        asyncio.run(AnswerSynthesizer(make_orchestrator(first)).generate_answers(db, seven_question_paper.id))

        second = FakeProvider("openai", generations=[json.dumps({"1": "Three."})])
        report = asyncio.run(AnswerSynthesizer(make_orchestrator(second)).generate_answers(db, seven_question_paper.id))

        assert report.eligible == 1
        assert report.skipped == 6
        assert "Explain process 3." in second.generate_calls[0]
        assert answers_by_number(db, seven_question_paper.id)["3"].content == "Three."

    def test_generate_when_regenerate_then_all_eligible(self, db, stored_paper):
        provider = FakeProvider("openai", generations=[json.dumps({str(i): f"A{i}" for i in range(1, 5)})])
        synthesizer = AnswerSynthesizer(make_orchestrator(provider))
        asyncio.run(synthesizer.generate_answers(db, stored_paper.id))

        report = asyncio.run(synthesizer.generate_answers(db, stored_paper.id, regenerate=True))

        assert report.eligible == 4
        assert report.skipped == 0

    def test_generate_when_nothing_eligible_then_no_calls(self, db, stored_paper):
        provider = FakeProvider("openai", generations=[json.dumps({str(i): f"A{i}" for i in range(1, 5)})])
        synthesizer = AnswerSynthesizer(make_orchestrator(provider))
        asyncio.run(synthesizer.generate_answers(db, stored_paper.id))

        report = asyncio.run(synthesizer.generate_answers(db, stored_paper.id))

        assert report.eligible == 0
        assert report.calls == 0
        assert report.success
        assert len(provider.generate_calls) == 1

    def test_generate_when_points_format_then_stored_as_list(self, db, stored_paper):
        # Walk order: 1, 1a, 1b, 2; "2" is a points question
        provider = FakeProvider("openai", generations=[json.dumps({
            "1": "Light is converted to chemical energy.",
            "2": "The green pigment.",
            "3": ["Glucose", "Oxygen"],
            "4": "- Auxins\n- Gibberellins\n- Cytokinins",
        })])
        asyncio.run(AnswerSynthesizer(make_orchestrator(provider)).generate_answers(db, stored_paper.id))

        answers = answers_by_number(db, stored_paper.id)
        assert answers["2"].format == "points"
        assert json.loads(answers["2"].content) == ["Auxins", "Gibberellins", "Cytokinins"]
        assert answers["b"].as_content() == PointsAnswer(points=["Glucose", "Oxygen"])

    def test_generate_when_text_reply_skips_an_answer_then_only_that_question_unanswered(self, db, stored_paper):
        # Walk order: 1, 1a, 1b, 2; the reply has no "Answer:" for Question 1
        provider = FakeProvider("openai", generations=[
            "Question 1: Not sure about this one.\n\nQuestion 2\nAnswer: The green pigment.",
        ])

        report = asyncio.run(AnswerSynthesizer(make_orchestrator(provider)).generate_answers(db, stored_paper.id))

        answers = answers_by_number(db, stored_paper.id)
        assert answers["1"] is None
        assert answers["a"].content == "The green pigment."
        assert report.answered == 1
        assert {m.ordinal for m in report.misses} == {"1", "b", "2"}

    def test_generate_when_sub_question_then_prompt_has_parent_context(self, db, stored_paper):
        provider = FakeProvider("openai", generations=["{}"])
        asyncio.run(AnswerSynthesizer(make_orchestrator(provider)).generate_answers(db, stored_paper.id))
        assert "Question 2 (part of: Explain photosynthesis.): Define chlorophyll" in provider.generate_calls[0]

    def test_generate_when_all_providers_fail_then_batch_unanswered(self, db, stored_paper):
        primary = FakeProvider("openai", generations=[ProviderError("down", retryable=False)])
        fallback = FakeProvider("deepseek", generations=[ProviderError("down", retryable=False)])

        report = asyncio.run(AnswerSynthesizer(make_orchestrator(primary, fallback)).generate_answers(db, stored_paper.id))

        assert report.answered == 0
        assert report.unresolved == 4
        assert {m.reason for m in report.misses} == {"generation failed"}
        assert not report.success
        assert crud.get_paper(db, stored_paper.id).has_answers is False

    def test_generate_when_unknown_paper_then_raises(self, db):
        synthesizer = AnswerSynthesizer(make_orchestrator(FakeProvider()))
        with pytest.raises(PaperNotFound):
            asyncio.run(synthesizer.generate_answers(db, 999))


class TestPaperMode:
    """Tests for AnswerSynthesizer.generate_paper_answers."""

    def test_paper_mode_reconciles_by_ordinal(self, db, stored_paper):
        # Arrange
        response = {
            "questions": [
                {
                    "question_number": "1",
                    "answer": "",
                    "sub_questions": [
                        {"question_number": "a", "answer": "The green pigment in plants."},
                        {"question_number": "z", "answer": "Nothing matches this."},
                    ],
                },
                {"question_number": "2", "answer": ["Auxins", "Gibberellins", "Cytokinins"]},
            ]
        }
        provider = FakeProvider("openai", generations=[json.dumps(response)])
        synthesizer = AnswerSynthesizer(make_orchestrator(provider))

        # Act
        report = asyncio.run(synthesizer.synthesize(db, stored_paper.id, mode=MODE_PAPER))

        # Assert
        assert report.mode == MODE_PAPER
        assert report.calls == 1
        assert report.answered == 2
        reasons = {(m.reason, m.ordinal) for m in report.misses}
        assert ("unmatched ordinal", "z") in reasons
        assert any(m.reason == "not returned" for m in report.misses)

        answers = answers_by_number(db, stored_paper.id)
        assert answers["1"] is None
        assert answers["a"].content == "The green pigment in plants."
        assert answers["b"] is None
        assert json.loads(answers["2"].content) == ["Auxins", "Gibberellins", "Cytokinins"]

    def test_paper_mode_when_ordinals_decorated_then_matched(self, db, stored_paper):
        response = {
            "questions": [
                {
                    "question_number": "Q1.",
                    "answer": "Plants convert light energy into chemical energy.",
                    "sub_questions": [
                        {"question_number": "(a)", "answer": "The green pigment in plants."},
                        {"question_number": "b)", "answer": ["Glucose", "Oxygen"]},
                    ],
                },
                {"question_number": "2.", "answer": "1. Auxins 2. Gibberellins 3. Cytokinins"},
            ]
        }
        provider = FakeProvider("openai", generations=[json.dumps(response)])

        report = asyncio.run(AnswerSynthesizer(make_orchestrator(provider)).generate_paper_answers(db, stored_paper.id))

        assert report.answered == 4
        assert report.misses == []
        answers = answers_by_number(db, stored_paper.id)
        assert answers["a"].content == "The green pigment in plants."
        assert json.loads(answers["2"].content) == ["Auxins", "Gibberellins", "Cytokinins"]

    def test_paper_mode_prompt_contains_tree(self, db, stored_paper):
        provider = FakeProvider("openai", generations=['{"questions": []}'])
        asyncio.run(AnswerSynthesizer(make_orchestrator(provider)).generate_paper_answers(db, stored_paper.id))

        prompt = provider.generate_calls[0]
        assert "Biology" in prompt
        assert '"question_number": "a"' in prompt

    def test_paper_mode_when_no_questions_array_then_error(self, db, stored_paper):
        provider = FakeProvider("openai", generations=['{"answers": {}}'])
        report = asyncio.run(AnswerSynthesizer(make_orchestrator(provider)).generate_paper_answers(db, stored_paper.id))
        assert report.answered == 0
        assert report.errors
