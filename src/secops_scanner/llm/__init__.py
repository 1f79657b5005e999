"""LLM providers used for finding enrichment and the demo classifier."""

from .base import LLMProvider, RateLimitError
from .mock import MockLLMProvider
from .gemini import GeminiProvider

__all__ = ["LLMProvider", "RateLimitError", "MockLLMProvider", "GeminiProvider"]
