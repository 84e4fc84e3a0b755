"""Thin wrapper around the Google generative-language SDK."""
import logging
from typing import Optional

from google import genai
from google.genai import types

from . import settings

logger = logging.getLogger(__name__)


class MissingApiKeyError(RuntimeError):
    """Raised when no generative-language API key is configured."""


class GenerativeClient:
    """Single-shot text generation; no conversation state is kept server-side."""

    def __init__(self, api_key: str, default_model: str = settings.CHAT_MODEL):
        if not api_key:
            raise MissingApiKeyError("GEMINI_API_KEY is not set")
        self._client = genai.Client(api_key=api_key)
        self.default_model = default_model

    def generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        system_instruction: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> str:
        config = None
        if system_instruction is not None or temperature is not None:
            config = types.GenerateContentConfig(
                system_instruction=system_instruction,
                temperature=temperature,
            )
        response = self._client.models.generate_content(
            model=model or self.default_model,
            contents=prompt,
            config=config,
        )
        text = response.text or ""
        logger.info("Generated %d chars with %s", len(text), model or self.default_model)
        return text


def make_client() -> GenerativeClient:
    """Build a client from current settings. Raises MissingApiKeyError."""
    return GenerativeClient(settings.GEMINI_API_KEY)


def get_generative_client() -> Optional[GenerativeClient]:
    """Dependency that provides a configured client, or None without a key."""
    if not settings.GEMINI_API_KEY:
        logger.error("GEMINI_API_KEY is missing in environment variables")
        return None
    return make_client()
