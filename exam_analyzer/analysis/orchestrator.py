"""
AI Analysis Orchestrator

Obtains a structured {metadata, questions} analysis from unstructured text
while tolerating provider outages:

  1. Try the primary provider, up to max_attempts times.
     Non-retryable errors (auth, malformed request) stop immediately;
     everything else waits backoff_unit * 2**attempt seconds and retries.
  2. On terminal failure, try the fallback provider the same way.
  3. If both fail, return an AnalysisFailure value. Never raises for provider
     trouble, and never returns a half-filled analysis.

Long documents (over max_chunk_chars) are split into paragraph-aligned chunks;
metadata comes from the first chunk, questions are concatenated in chunk order.
Either the whole document or the chunked path runs for a given call, never both.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar, Union

from exam_analyzer.analysis.chunking import split_into_chunks
from exam_analyzer.analysis.providers import AIProvider
from exam_analyzer.analysis.schemas import (
    AnalysisFailure,
    GenerationFailure,
    GenerationResult,
    PaperAnalysis,
)
from exam_analyzer.config import AIConfig
from exam_analyzer.errors import ProviderError, ValidationFailure

log = logging.getLogger(__name__)

T = TypeVar("T")

ANALYSIS_FAILED = "All AI services failed to analyze document"
GENERATION_FAILED = "All AI services failed to generate content"


class AnalysisOrchestrator:
    """Primary/fallback provider pair with per-provider retry."""

    def __init__(
        self,
        primary: AIProvider,
        fallback: Optional[AIProvider] = None,
        max_attempts: int = 3,
        backoff_unit: float = 1.0,
        max_chunk_chars: int = 48000,
    ):
        self.primary = primary
        self.fallback = fallback
        self.max_attempts = max(1, max_attempts)
        self.backoff_unit = backoff_unit
        self.max_chunk_chars = max_chunk_chars

    @classmethod
    def from_config(cls, config: AIConfig) -> "AnalysisOrchestrator":
        return cls(
            primary=AIProvider(config.primary),
            fallback=AIProvider(config.fallback),
            max_attempts=config.max_attempts,
            backoff_unit=config.backoff_unit,
            max_chunk_chars=config.max_chunk_chars,
        )

    # ─── Retry ─────────────────────────────────────────────────────────────────

    async def _with_retry(
        self,
        provider: AIProvider,
        operation: str,
        call: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Run `call` against one provider with exponential backoff.

        Raises the last ProviderError / ValidationFailure once attempts are
        exhausted, or immediately for a non-retryable error.
        """
        last_error: Exception = ProviderError("No attempt made", provider=provider.name)
        for attempt in range(self.max_attempts):
            try:
                return await call()
            except ProviderError as e:
                last_error = e
                log.warning(
                    "%s: provider=%s attempt=%s/%s failed: %s",
                    operation, provider.name, attempt + 1, self.max_attempts, e,
                )
                if not e.retryable:
                    log.warning("%s: provider=%s error is not retryable, giving up", operation, provider.name)
                    raise
            except ValidationFailure as e:
                last_error = e
                log.warning(
                    "%s: provider=%s attempt=%s/%s returned invalid payload: %s",
                    operation, provider.name, attempt + 1, self.max_attempts, e,
                )

            if attempt < self.max_attempts - 1:
                await asyncio.sleep(self.backoff_unit * (2 ** attempt))

        raise last_error

    def _providers(self) -> List[AIProvider]:
        return [p for p in (self.primary, self.fallback) if p is not None]

    # ─── Analysis ──────────────────────────────────────────────────────────────

    async def _analyze_chunked(self, provider: AIProvider, chunks: List[str]) -> PaperAnalysis:
        results: List[PaperAnalysis] = []
        for index, chunk in enumerate(chunks):
            log.info("Analysis: provider=%s chunk %s/%s (%s chars)", provider.name, index + 1, len(chunks), len(chunk))
            results.append(
                await self._with_retry(provider, "Analysis", lambda chunk=chunk: provider.analyze(chunk))
            )

        questions = [q for result in results for q in result.questions]
        for index, question in enumerate(questions):
            question.order_index = index
        return PaperAnalysis(metadata=results[0].metadata, questions=questions, source=provider.name)

    async def _analyze_with(self, provider: AIProvider, text: str) -> PaperAnalysis:
        if len(text) > self.max_chunk_chars:
            chunks = split_into_chunks(text, self.max_chunk_chars)
            if len(chunks) > 1:
                return await self._analyze_chunked(provider, chunks)
        return await self._with_retry(provider, "Analysis", lambda: provider.analyze(text))

    async def analyze_document_content(self, text: str) -> Union[PaperAnalysis, AnalysisFailure]:
        """
        Analyze document text with primary → fallback.

        Returns:
            PaperAnalysis on success, AnalysisFailure with per-provider error
            details when every provider failed.
        """
        details = {}
        for role, provider in zip(("primary", "fallback"), self._providers()):
            try:
                analysis = await self._analyze_with(provider, text)
            except (ProviderError, ValidationFailure) as e:
                log.error("Analysis: %s provider %s failed: %s", role, provider.name, e)
                details[role] = f"{provider.name}: {e}"
                continue
            log.info(
                "Analysis: %s provider %s succeeded (%s questions)",
                role, provider.name, analysis.question_count(),
            )
            return analysis

        details.setdefault("fallback", "No fallback provider configured")
        return AnalysisFailure(error=ANALYSIS_FAILED, details=details)

    # ─── Generation ────────────────────────────────────────────────────────────

    async def generate_content(
        self, prompt: str, max_tokens: Optional[int] = None
    ) -> Union[GenerationResult, GenerationFailure]:
        """Free-form generation with the same primary → fallback policy."""
        details = {}
        for role, provider in zip(("primary", "fallback"), self._providers()):
            if max_tokens is None:
                call = lambda provider=provider: provider.generate(prompt)
            else:
                call = lambda provider=provider: provider.generate(prompt, max_tokens=max_tokens)
            try:
                content = await self._with_retry(provider, "Generation", call)
            except (ProviderError, ValidationFailure) as e:
                log.error("Generation: %s provider %s failed: %s", role, provider.name, e)
                details[role] = f"{provider.name}: {e}"
                continue
            return GenerationResult(content=content, provider=provider.name, model=provider.model)

        details.setdefault("fallback", "No fallback provider configured")
        return GenerationFailure(error=GENERATION_FAILED, details=details)
