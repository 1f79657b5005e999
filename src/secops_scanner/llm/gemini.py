from typing import Optional

from google import genai
from google.genai import errors, types

from .base import LLMProvider, RateLimitError


class GeminiProvider(LLMProvider):
    """Google Gemini LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        max_tokens: int = 1024,
        temperature: float = 0.1,
    ):
        if not api_key:
            raise ValueError("GEMINI_API_KEY is required for the Gemini provider")
        self.client = genai.Client(api_key=api_key)
        self.model_name = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def complete(self, system: str, prompt: str, max_tokens: Optional[int] = None) -> str:
        """Send the prompt to Gemini, return the response text."""
        config = types.GenerateContentConfig(
            system_instruction=system,
            temperature=self.temperature,
            max_output_tokens=max_tokens or self.max_tokens,
        )
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model_name,
                contents=prompt,
                config=config,
            )
        except errors.APIError as e:
            if e.code == 429:
                raise RateLimitError(str(e)) from e
            raise
        return response.text or ""
