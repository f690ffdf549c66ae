"""OpenAI API transport for the recommendation generation service."""
from typing import Any, Dict, List, Optional

import openai

from recsynth.config.settings import settings
from recsynth.generation.errors import GenerationError, GenerationErrorKind
from recsynth.utils.logger import get_logger

logger = get_logger(__name__)


def get_openai_client(api_key: Optional[str] = None, base_url: Optional[str] = None, timeout: Optional[float] = None):
    """Configure and return the async OpenAI client.

    SDK-level retries are disabled: GenerationClient owns retry and backoff.
    """
    return openai.AsyncOpenAI(
        api_key=api_key if api_key is not None else settings.OPENAI_API_KEY,
        base_url=base_url or settings.OPENAI_API_BASE_URL,
        timeout=timeout or settings.OPENAI_TIMEOUT_SECONDS,
        max_retries=0,
    )


class OpenAIChatTransport:
    """Sends one chat completion request and returns the raw completion text."""

    def __init__(
        self,
        client: Optional[openai.AsyncOpenAI] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ):
        self.client = client or get_openai_client()
        self.model = model or settings.OPENAI_MODEL
        self.max_tokens = max_tokens or settings.OPENAI_MAX_TOKENS
        self.temperature = settings.OPENAI_TEMPERATURE if temperature is None else temperature

    async def __call__(self, messages: List[Dict[str, Any]]) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            response_format={"type": "json_object"},
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        if not response.choices:
            raise GenerationError(GenerationErrorKind.MALFORMED_RESPONSE, "completion has no choices")
        content = response.choices[0].message.content
        if not content:
            raise GenerationError(GenerationErrorKind.MALFORMED_RESPONSE, "completion has no content")
        logger.debug("Received %s characters from %s", len(content), self.model)
        return content
