"""
Error taxonomy for the ingestion and answer pipeline.

Lower layers raise these; the orchestrator turns exhausted providers into
tagged failure values and the routers turn everything else into HTTP errors.
"""

from dataclasses import dataclass
from typing import Optional


class ExamAnalyzerError(Exception):
    """Base class for pipeline errors."""


class ExtractionFailure(ExamAnalyzerError):
    """No text could be extracted from a file."""


class ProviderError(ExamAnalyzerError):
    """
    A single AI provider call failed.

    retryable=False short-circuits the retry loop (bad credentials, malformed
    request); everything else is retried with backoff.
    """

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        retryable: bool = True,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.retryable = retryable
        self.status_code = status_code


class ValidationFailure(ExamAnalyzerError):
    """The AI payload is not a structurally valid analysis result."""


class PersistenceFailure(ExamAnalyzerError):
    """A transactional write failed and was rolled back."""


@dataclass
class ReconciliationMiss:
    """An answer slot that could not be matched back to a question node."""
    reason: str
    question_id: Optional[int] = None
    ordinal: Optional[str] = None
    batch_index: Optional[int] = None


class PaperNotFound(ExamAnalyzerError):
    """No question paper with the requested id."""
