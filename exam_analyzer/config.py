"""
Runtime configuration for the analysis pipeline.

Provider selection is an explicit value: every orchestration call receives an
AIConfig naming the primary and fallback providers in priority order.
"""

import os
from dataclasses import dataclass, replace
from typing import Optional

# ── Provider defaults ──────────────────────────────────────────────────────────
SUPPORTED_PROVIDERS = ("openai", "deepseek")

PROVIDER_DEFAULTS = {
    "openai": {
        "base_url": "https://api.openai.com/v1",
        "model": "gpt-4o",
    },
    "deepseek": {
        "base_url": "https://api.deepseek.com/v1",
        "model": "deepseek-chat",
    },
}

# ── Upload configuration ───────────────────────────────────────────────────────
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", 20971520))  # 20MB default


@dataclass(frozen=True)
class ProviderSettings:
    """Connection details for one OpenAI-compatible completion service."""
    name: str
    api_key: Optional[str]
    base_url: str
    model: str
    timeout: float = 60.0
    generation_timeout: float = 90.0


@dataclass(frozen=True)
class AIConfig:
    """Provider pair plus retry and chunking policy for one orchestration call."""
    primary: ProviderSettings
    fallback: ProviderSettings
    max_attempts: int = 3
    backoff_unit: float = 1.0
    max_chunk_chars: int = 48000

    def with_primary(self, provider: str) -> "AIConfig":
        """Return a copy where `provider` is primary and the other is fallback."""
        provider = (provider or "").lower()
        if provider == self.primary.name or provider not in SUPPORTED_PROVIDERS:
            return self
        return replace(self, primary=self.fallback, fallback=self.primary)


def _provider_settings(name: str) -> ProviderSettings:
    prefix = name.upper()
    defaults = PROVIDER_DEFAULTS[name]
    return ProviderSettings(
        name=name,
        api_key=os.getenv(f"{prefix}_API_KEY"),
        base_url=os.getenv(f"{prefix}_BASE_URL", defaults["base_url"]),
        model=os.getenv(f"{prefix}_MODEL", defaults["model"]),
        timeout=float(os.getenv("AI_REQUEST_TIMEOUT", "60")),
        generation_timeout=float(os.getenv("AI_GENERATION_TIMEOUT", "90")),
    )


def load_ai_config(preferred: Optional[str] = None) -> AIConfig:
    """
    Build the provider configuration from the environment.

    Args:
        preferred: Optional provider name ("openai" | "deepseek") to use as
                   primary for this call. Unknown names are ignored.

    Returns:
        AIConfig with primary/fallback ordered by preference.
    """
    primary_name = os.getenv("AI_PRIMARY_PROVIDER", "openai").lower()
    if primary_name not in SUPPORTED_PROVIDERS:
        primary_name = "openai"
    fallback_name = next(p for p in SUPPORTED_PROVIDERS if p != primary_name)

    config = AIConfig(
        primary=_provider_settings(primary_name),
        fallback=_provider_settings(fallback_name),
        max_attempts=int(os.getenv("AI_MAX_ATTEMPTS", "3")),
        backoff_unit=float(os.getenv("AI_BACKOFF_UNIT", "1.0")),
        max_chunk_chars=int(os.getenv("AI_MAX_CHUNK_CHARS", "48000")),
    )
    return config.with_primary(preferred) if preferred else config
