"""Chapter translator backed by the OpenAI chat completions API.

Hides the specifics of the OpenAI client library and maps its exceptions onto
pipeline error kinds: rate limits, timeouts, connection problems and server
errors are operational (retried); authentication and other client errors are fatal.
"""

import asyncio
import logging
import os
import time
from typing import Any, List, Optional

from openai import (
    OpenAI, APIConnectionError, APIStatusError, APITimeoutError, AuthenticationError, RateLimitError,
)

from novelcli.domain.errors import PipelineError, fatal_error, operational_error
from novelcli.domain.models.ai import ChatMessage, StructuredAIResponse
from novelcli.domain.models.common import TokenUsage
from novelcli.infrastructure.ai.chat_translator import ChatTranslator
from novelcli.infrastructure.optimization.token_estimator import TokenEstimator

logger = logging.getLogger(__name__)


def map_openai_error(e: Exception, provider: str = "openai") -> PipelineError:
    """Translates an OpenAI SDK exception into a PipelineError."""
    if isinstance(e, AuthenticationError):
        return fatal_error(f"{provider} authentication failed: {e}", provider=provider)
    if isinstance(e, RateLimitError):
        return operational_error(f"{provider} rate limit exceeded: {e}", provider=provider, is_rate_limit=True)
    if isinstance(e, APITimeoutError):
        return operational_error(f"{provider} request timed out: {e}", provider=provider, is_timeout=True)
    if isinstance(e, APIConnectionError):
        return operational_error(f"{provider} connection error: {e}", provider=provider)
    if isinstance(e, APIStatusError):
        if e.status_code >= 500:
            return operational_error(f"{provider} server error ({e.status_code}): {e}",
                                     provider=provider, status_code=e.status_code)
        return fatal_error(f"{provider} request rejected ({e.status_code}): {e}",
                           provider=provider, status_code=e.status_code)
    return fatal_error(f"Unexpected {provider} error: {type(e).__name__}: {e}", provider=provider)


def parse_chat_response(response: Any) -> StructuredAIResponse:
    """Parses a chat completion object (OpenAI and Groq share the shape)."""
    try:
        choice = response.choices[0]
        content = choice.message.content or ""
        token_usage = None
        if response.usage:
            token_usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )
        return StructuredAIResponse(content=content, token_usage=token_usage, model_name=response.model)
    except (AttributeError, IndexError, KeyError, TypeError) as e:
        logger.error(f"Failed to parse chat completion structure: {e}", exc_info=True)
        raise fatal_error(f"Invalid response structure: {e}") from e


class GptTranslator(ChatTranslator):
    """OpenAI implementation of the ChapterTranslator interface."""

    provider_name = "openai"
    DEFAULT_MODEL = "gpt-4o-mini"
    API_KEY_ENV = "OPENAI_API_KEY"
    BASE_URL: Optional[str] = None

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        target_language: str = "Polish",
        token_estimator: Optional[TokenEstimator] = None,
        **kwargs: Any,
    ):
        """Initializes the OpenAI client.

        Args:
            api_key: API key. Reads from the ``API_KEY_ENV`` env var if None.
            model: The chat model to use.
            target_language: Language chapters are translated into.
            token_estimator: Used to split long chapters.
        """
        super().__init__(target_language=target_language, token_estimator=token_estimator, **kwargs)
        effective_api_key = api_key or os.getenv(self.API_KEY_ENV)
        if not effective_api_key:
            raise ValueError(f"{self.provider_name} API key not provided and not found in environment variables.")
        self.client = OpenAI(api_key=effective_api_key, base_url=self.BASE_URL)
        self.model = model or self.DEFAULT_MODEL
        logger.info(f"{type(self).__name__} initialized for model: {self.model}")

    async def _complete(self, messages: List[ChatMessage]) -> StructuredAIResponse:
        logger.debug(f"Sending {len(messages)} messages to {self.provider_name} model: {self.model}")
        start_time = time.perf_counter()
        try:
            # Use asyncio.to_thread for the synchronous SDK call
            response = await asyncio.to_thread(
                self.client.chat.completions.create,
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except (AuthenticationError, RateLimitError, APITimeoutError, APIConnectionError, APIStatusError) as e:
            logger.warning(f"{self.provider_name} API error: {type(e).__name__}: {e}")
            raise map_openai_error(e, provider=self.provider_name) from e

        structured_response = parse_chat_response(response)
        structured_response.latency_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(
            f"Received response from {self.provider_name} in {structured_response.latency_ms:.2f}ms. "
            f"Usage: {structured_response.token_usage}"
        )
        return structured_response
