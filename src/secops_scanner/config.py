"""Runtime settings read from environment variables."""

import logging
import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field

from .llm import GeminiProvider, LLMProvider, MockLLMProvider

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """An environment variable holds a value that cannot be used."""


class Settings(BaseModel):
    gemini_api_key: Optional[str] = Field(default=None, repr=False)
    gemini_model_id: str = "gemini-2.5-flash"
    llm_provider: str = Field(default="mock", description="'gemini' or 'mock'")
    llm_max_tokens: int = Field(default=1024, gt=0)
    max_files_per_scan: int = Field(default=500, gt=0)
    max_file_size_bytes: int = Field(default=500 * 1024, gt=0)
    max_snippet_tokens: int = Field(default=800, gt=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``environ`` (defaults to os.environ)."""
        env = os.environ if environ is None else environ

        api_key = env.get("GEMINI_API_KEY") or None
        provider = (env.get("LLM_PROVIDER") or ("gemini" if api_key else "mock")).strip().lower()
        if provider not in ("gemini", "mock"):
            raise ConfigError(f"LLM_PROVIDER must be 'gemini' or 'mock', got {provider!r}")
        if provider == "gemini" and not api_key:
            raise ConfigError("GEMINI_API_KEY is required when LLM_PROVIDER is 'gemini'")

        return cls(
            gemini_api_key=api_key,
            gemini_model_id=env.get("GEMINI_MODEL_ID") or "gemini-2.5-flash",
            llm_provider=provider,
            llm_max_tokens=_int(env, "LLM_MAX_TOKENS", 1024),
            max_files_per_scan=_int(env, "MAX_FILES_PER_SCAN", 500),
            max_file_size_bytes=_int(env, "MAX_FILE_SIZE_BYTES", 500 * 1024),
            max_snippet_tokens=_int(env, "MAX_SNIPPET_TOKENS", 800),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def build_provider(settings: Settings) -> LLMProvider:
    """Instantiate the configured LLM provider."""
    if settings.llm_provider == "gemini":
        return GeminiProvider(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model_id,
            max_tokens=settings.llm_max_tokens,
        )
    logger.info("Using mock LLM provider (no GEMINI_API_KEY configured)")
    return MockLLMProvider()
