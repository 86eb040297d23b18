"""
Shared Google GenAI client.

Built lazily from GEMINI_API_KEY and handed to VerdictService explicitly;
nothing else reaches for it directly.
"""

from __future__ import annotations

from typing import Optional

from google import genai

from app.core.config import get_settings
from app.core.errors import InferenceConfigError
from app.core.logger import get_logger

log = get_logger(__name__)

_client: Optional[genai.Client] = None


def get_genai_client() -> genai.Client:
    global _client
    if _client is None:
        api_key = get_settings().GEMINI_API_KEY
        if not api_key:
            log.error("GEMINI_API_KEY is not configured")
            raise InferenceConfigError("Gemini API key missing")
        _client = genai.Client(api_key=api_key)
    return _client
