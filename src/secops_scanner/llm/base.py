from abc import ABC, abstractmethod
from typing import Optional


class RateLimitError(Exception):
    """The model service rejected a request for exceeding its rate limit.

    The message is kept verbatim so callers can look for a retry hint in it.
    """


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def complete(self, system: str, prompt: str, max_tokens: Optional[int] = None) -> str:
        """Send a system instruction and user prompt, return the raw reply text.

        Raises RateLimitError when the service throttles the request.
        """
        pass
