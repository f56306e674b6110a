import os

# In-memory database before any exam_analyzer import builds the module engine
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from exam_analyzer import config
from exam_analyzer.analysis.orchestrator import AnalysisOrchestrator
from exam_analyzer.analysis.response_normalizer import normalize_analysis
from exam_analyzer.database import crud
from exam_analyzer.database import models  # noqa: F401
from exam_analyzer.database.database import Base, get_db
from exam_analyzer.errors import ProviderError


# ─────────────────────────────────────────────────────────────────────────────
# Fake AI provider
# ─────────────────────────────────────────────────────────────────────────────

class FakeProvider:
    """
    Stands in for AIProvider.

    Each entry in `analyses` / `generations` is consumed by one call: an
    exception instance is raised, anything else is returned. When a script
    runs out, the last entry repeats.
    """

    def __init__(self, name="openai", model="fake-model", analyses=None, generations=None):
        self.name = name
        self.model = model
        self.analyses = list(analyses or [])
        self.generations = list(generations or [])
        self.analyze_calls = []
        self.generate_calls = []

    @staticmethod
    def _next(script):
        if not script:
            raise ProviderError("Nothing scripted", retryable=False)
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def analyze(self, text):
        self.analyze_calls.append(text)
        result = self._next(self.analyses)
        if isinstance(result, dict):
            return normalize_analysis(result, source=self.name)
        return result

    async def generate(self, prompt, max_tokens=None):
        self.generate_calls.append(prompt)
        return self._next(self.generations)


def make_orchestrator(primary, fallback=None, **kwargs):
    kwargs.setdefault("backoff_unit", 0)
    return AnalysisOrchestrator(primary, fallback, **kwargs)


SAMPLE_PAYLOAD = {
    "metadata": {
        "examiner": "KNEC",
        "subject": "Biology",
        "class": "Form 3",
        "curriculum": "8-4-4",
        "year": 2023,
        "term": 2,
        "paper_type": "Paper 1",
    },
    "questions": [
        {
            "question_number": "1",
            "content": "Explain photosynthesis.",
            "marks": 10,
            "answer_format": "paragraph",
            "sub_questions": [
                {"question_number": "a", "content": "Define chlorophyll", "marks": 2},
                {"question_number": "b", "content": "List two products of photosynthesis", "marks": 2},
            ],
        },
        {"question_number": "2", "content": "State three plant hormones.", "marks": 3},
    ],
}


# ─────────────────────────────────────────────────────────────────────────────
# Database fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def stored_paper(db):
    """Biology paper with 4 questions (1, 1a, 1b, 2) and no answers."""
    analysis = normalize_analysis(SAMPLE_PAYLOAD, source="openai")
    return crud.store_analysis(
        db, analysis, original_filename="bio.pdf", file_path="/tmp/bio.pdf", file_type="pdf"
    )


# ─────────────────────────────────────────────────────────────────────────────
# API fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def providers():
    """Mutable provider pair handed to every orchestrator the app builds."""
    return {
        "primary": FakeProvider("openai"),
        "fallback": FakeProvider("deepseek"),
    }


@pytest.fixture
def client(db, providers, tmp_path, monkeypatch):
    from exam_analyzer.main import app
    from exam_analyzer.routers.deps import get_orchestrator_builder

    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path / "uploads"))

    def override_get_db():
        yield db

    def override_builder():
        return lambda provider=None: make_orchestrator(providers["primary"], providers["fallback"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator_builder] = override_builder
    yield TestClient(app)
    app.dependency_overrides.clear()
