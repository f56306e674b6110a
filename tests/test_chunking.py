"""
Tests for paragraph-aligned chunking.
"""

import pytest

from exam_analyzer.analysis.chunking import split_into_chunks, split_paragraphs


def test_split_paragraphs_ignores_blank_runs():
    assert split_paragraphs("one\n\n\n  \ntwo\n\nthree") == ["one", "two", "three"]


def test_chunks_when_text_fits_then_single_chunk():
    assert split_into_chunks("alpha\n\nbeta", 100) == ["alpha\n\nbeta"]


def test_chunks_when_budget_exceeded_then_split_on_paragraphs():
    text = "\n\n".join(["a" * 40, "b" * 40, "c" * 40])
    chunks = split_into_chunks(text, 90)
    assert chunks == ["a" * 40 + "\n\n" + "b" * 40, "c" * 40]
    assert all(len(chunk) <= 90 for chunk in chunks)


def test_chunks_when_paragraph_oversized_then_own_chunk():
    text = "short\n\n" + "x" * 200 + "\n\nend"
    chunks = split_into_chunks(text, 50)
    assert chunks == ["short", "x" * 200, "end"]


def test_chunks_when_blank_text_then_empty():
    assert split_into_chunks("   \n\n ", 10) == []


def test_chunks_when_budget_not_positive_then_raises():
    with pytest.raises(ValueError):
        split_into_chunks("text", 0)
