"""
AI provider collaborators.

Every provider speaks the OpenAI Chat Completions protocol (OpenAI itself, and
DeepSeek through its OpenAI-compatible base_url), so one client class covers
both. The orchestrator only sees:

    await provider.analyze(text)    -> PaperAnalysis   (raises on failure)
    await provider.generate(prompt) -> str             (raises on failure)

Failures surface as ProviderError (retryable or not) or ValidationFailure
(malformed payload); retry and fallback live in the orchestrator.
"""

import logging
from typing import Optional

import openai
from openai import AsyncOpenAI

from exam_analyzer.analysis.prompts import (
    ANALYSIS_SYSTEM_PROMPT,
    ANALYSIS_USER_TEMPLATE,
    GENERATION_SYSTEM_PROMPT,
)
from exam_analyzer.analysis.response_normalizer import parse_analysis_response
from exam_analyzer.analysis.schemas import PaperAnalysis
from exam_analyzer.config import ProviderSettings
from exam_analyzer.errors import ProviderError

log = logging.getLogger(__name__)

# ── Sampling config ────────────────────────────────────────────────────────────
ANALYSIS_TEMPERATURE = 0.3
ANALYSIS_MAX_TOKENS = 4000
GENERATION_TEMPERATURE = 0.7
GENERATION_MAX_TOKENS = 1000

# Bad credentials or a malformed request will not get better on retry
NON_RETRYABLE_ERRORS = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.BadRequestError,
    openai.NotFoundError,
    openai.UnprocessableEntityError,
)


def classify_openai_error(exc: Exception, provider: str) -> ProviderError:
    """Map an OpenAI SDK exception onto a ProviderError with a retry verdict."""
    if isinstance(exc, NON_RETRYABLE_ERRORS):
        return ProviderError(
            f"{type(exc).__name__}: {exc}",
            provider=provider,
            retryable=False,
            status_code=getattr(exc, "status_code", None),
        )
    if isinstance(exc, openai.APIStatusError):
        return ProviderError(
            f"HTTP {exc.status_code}: {exc}",
            provider=provider,
            retryable=True,
            status_code=exc.status_code,
        )
    if isinstance(exc, openai.APITimeoutError):
        return ProviderError(f"Request timed out: {exc}", provider=provider, retryable=True)
    if isinstance(exc, openai.APIConnectionError):
        return ProviderError(f"Connection error: {exc}", provider=provider, retryable=True)
    return ProviderError(f"{type(exc).__name__}: {exc}", provider=provider, retryable=True)


class AIProvider:
    """One OpenAI-compatible completion service."""

    def __init__(self, settings: ProviderSettings):
        self.settings = settings
        self._client: Optional[AsyncOpenAI] = None

    @property
    def name(self) -> str:
        return self.settings.name

    @property
    def model(self) -> str:
        return self.settings.model

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.settings.api_key:
                raise ProviderError(
                    f"{self.name.upper()}_API_KEY is not set. Add it to your .env file.",
                    provider=self.name,
                    retryable=False,
                )
            # Retries are handled by the orchestrator
            self._client = AsyncOpenAI(
                api_key=self.settings.api_key,
                base_url=self.settings.base_url,
                max_retries=0,
            )
        return self._client

    async def complete(
        self,
        system: str,
        prompt: str,
        temperature: float,
        max_tokens: int,
        timeout: float,
    ) -> str:
        """
        Call Chat Completions and return the assistant message text.

        Raises:
            ProviderError: transport, HTTP or empty-content failure
        """
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=timeout,
            )
        except openai.OpenAIError as e:
            raise classify_openai_error(e, self.name) from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise ProviderError("Empty response content", provider=self.name, retryable=True)
        return content

    async def analyze(self, text: str) -> PaperAnalysis:
        """Extract {metadata, questions} from document text."""
        log.info("Sending analysis request to %s (model=%s, %s chars)", self.name, self.model, len(text))
        content = await self.complete(
            ANALYSIS_SYSTEM_PROMPT,
            ANALYSIS_USER_TEMPLATE.format(text=text),
            temperature=ANALYSIS_TEMPERATURE,
            max_tokens=ANALYSIS_MAX_TOKENS,
            timeout=self.settings.timeout,
        )
        return parse_analysis_response(content, source=self.name)

    async def generate(self, prompt: str, max_tokens: int = GENERATION_MAX_TOKENS) -> str:
        """Free-form content generation (model answers)."""
        return await self.complete(
            GENERATION_SYSTEM_PROMPT,
            prompt,
            temperature=GENERATION_TEMPERATURE,
            max_tokens=max_tokens,
            timeout=self.settings.generation_timeout,
        )
