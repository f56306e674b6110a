"""
Tests for the document processing pipeline.

Test Coverage:
- AI analysis path persists the provider's tree
- Total AI failure falls back to the (injectable) heuristic extractor
- Files without text are reported, not raised
- Zip archives fan out into one result per supported entry
"""

import asyncio
import zipfile

from exam_analyzer.analysis.heuristic import HeuristicExtractor
from exam_analyzer.database import crud, models
from exam_analyzer.errors import ProviderError
from exam_analyzer.services.document_processor import NO_TEXT_ERROR, DocumentProcessor

from conftest import SAMPLE_PAYLOAD, FakeProvider, make_orchestrator

PAPER_TEXT = (
    "KCSE 2022 Biology Paper 1\n"
    "1. Explain photosynthesis. (10 marks)\n"
    "a) Define chlorophyll (2 marks)\n"
    "2. List three plant hormones. (3 marks)\n"
)


def failing_orchestrator():
    return make_orchestrator(
        FakeProvider("openai", analyses=[ProviderError("down", retryable=False)]),
        FakeProvider("deepseek", analyses=[ProviderError("down", retryable=False)]),
    )


class TestProcessFile:
    """Tests for DocumentProcessor.process_file."""

    def test_process_when_ai_succeeds_then_tree_stored(self, db, tmp_path):
        path = tmp_path / "bio.txt"
        path.write_text(PAPER_TEXT)
        provider = FakeProvider("openai", analyses=[SAMPLE_PAYLOAD])

        result = asyncio.run(
            DocumentProcessor(make_orchestrator(provider)).process_file(db, str(path), "bio.txt")
        )

        assert result.success is True
        assert result.analysis_source == "openai"
        assert result.question_count == 4
        assert result.details is None
        assert "Explain photosynthesis." in provider.analyze_calls[0]
        paper = crud.get_paper(db, result.paper_id)
        assert paper.file_type == "txt"

    def test_process_when_all_ai_fails_then_heuristic_used(self, db, tmp_path):
        # Arrange
        path = tmp_path / "bio.txt"
        path.write_text(PAPER_TEXT)

        # Act
        result = asyncio.run(DocumentProcessor(failing_orchestrator()).process_file(db, str(path), "bio.txt"))

        # Assert
        assert result.success is True
        assert result.analysis_source == "heuristic"
        assert result.question_count == 3
        assert set(result.details) == {"ai_error", "primary", "fallback"}

        paper = crud.get_paper_complete(db, result.paper_id)
        assert paper.subject.name == "Biology"
        assert paper.year == 2022
        assert paper.paper_type == "Paper 1"
        assert [q.marks for q in crud.walk_questions(paper)] == [10, 2, 3]

    def test_process_when_heuristic_injected_then_used_only_on_ai_failure(self, db, tmp_path):
        # Arrange
        path = tmp_path / "bio.txt"
        path.write_text(PAPER_TEXT)
        built = []

        def heuristic(filename):
            built.append(filename)
            return HeuristicExtractor(filename)

        # Act
        ok = asyncio.run(
            DocumentProcessor(make_orchestrator(FakeProvider("openai", analyses=[SAMPLE_PAYLOAD])), heuristic=heuristic)
            .process_file(db, str(path), "bio.txt")
        )
        fallback = asyncio.run(
            DocumentProcessor(failing_orchestrator(), heuristic=heuristic).process_file(db, str(path), "bio.txt")
        )

        # Assert
        assert ok.analysis_source == "openai"
        assert fallback.analysis_source == "heuristic"
        assert built == ["bio.txt"]

    def test_process_when_no_text_then_error_result(self, db, tmp_path):
        path = tmp_path / "empty.txt"
        path.write_text("   \n")
        provider = FakeProvider("openai", analyses=[SAMPLE_PAYLOAD])

        result = asyncio.run(DocumentProcessor(make_orchestrator(provider)).process_file(db, str(path), "empty.txt"))

        assert result.success is False
        assert result.error == NO_TEXT_ERROR
        assert provider.analyze_calls == []
        assert db.query(models.QuestionPaper).count() == 0


class TestProcessUpload:
    """Tests for DocumentProcessor.process_upload with archives."""

    def test_upload_when_zip_then_result_per_entry(self, db, tmp_path):
        # Arrange
        zip_path = tmp_path / "papers.zip"
        with zipfile.ZipFile(zip_path, "w") as archive:
            archive.writestr("bio.txt", PAPER_TEXT)
            archive.writestr("physics/phy.txt", "1. State Newton's first law. (2 marks)")
            archive.writestr("blank.txt", "")
            archive.writestr("notes.exe", "MZ")

        # Act
        results = asyncio.run(
            DocumentProcessor(failing_orchestrator()).process_upload(
                db, str(zip_path), "papers.zip", stored_path="/uploads/papers.zip"
            )
        )

        # Assert
        by_name = {r.filename: r for r in results}
        assert set(by_name) == {"bio.txt", "phy.txt", "blank.txt"}
        assert by_name["bio.txt"].success is True
        assert by_name["phy.txt"].success is True
        assert by_name["blank.txt"].success is False
        assert by_name["blank.txt"].error == NO_TEXT_ERROR

        paper = crud.get_paper(db, by_name["bio.txt"].paper_id)
        assert paper.file_path == "/uploads/papers.zip#bio.txt"
        assert paper.original_filename == "bio.txt"

    def test_upload_when_zip_has_nothing_supported_then_single_error(self, db, tmp_path):
        zip_path = tmp_path / "papers.zip"
        with zipfile.ZipFile(zip_path, "w") as archive:
            archive.writestr("notes.exe", "MZ")

        results = asyncio.run(DocumentProcessor(failing_orchestrator()).process_upload(db, str(zip_path), "papers.zip"))

        assert len(results) == 1
        assert results[0].success is False
        assert results[0].filename == "papers.zip"

    def test_upload_when_bad_zip_then_error_result(self, db, tmp_path):
        zip_path = tmp_path / "papers.zip"
        zip_path.write_bytes(b"not a zip")

        results = asyncio.run(DocumentProcessor(failing_orchestrator()).process_upload(db, str(zip_path), "papers.zip"))

        assert len(results) == 1
        assert results[0].success is False
        assert "zip" in results[0].error.lower()
