"""Chapter translator backed by the Groq chat completions API.

Hides the specifics of the Groq client library; its exception hierarchy
mirrors OpenAI's and is mapped onto pipeline error kinds the same way.
"""

import asyncio
import logging
import os
import time
from typing import Any, List, Optional

from groq import (
    Groq as GroqSDKClient, APIConnectionError, APIStatusError, APITimeoutError, AuthenticationError, RateLimitError,
)

from novelcli.domain.errors import PipelineError, fatal_error, operational_error
from novelcli.domain.models.ai import ChatMessage, StructuredAIResponse
from novelcli.infrastructure.ai.chat_translator import ChatTranslator
from novelcli.infrastructure.ai.openai.gpt_translator import parse_chat_response
from novelcli.infrastructure.optimization.token_estimator import TokenEstimator

logger = logging.getLogger(__name__)


def map_groq_error(e: Exception) -> PipelineError:
    """Translates a Groq SDK exception into a PipelineError."""
    if isinstance(e, AuthenticationError):
        return fatal_error(f"groq authentication failed: {e}", provider="groq")
    if isinstance(e, RateLimitError):
        return operational_error(f"groq rate limit exceeded: {e}", provider="groq", is_rate_limit=True)
    if isinstance(e, APITimeoutError):
        return operational_error(f"groq request timed out: {e}", provider="groq", is_timeout=True)
    if isinstance(e, APIConnectionError):
        return operational_error(f"groq connection error: {e}", provider="groq")
    if isinstance(e, APIStatusError) and e.status_code >= 500:
        return operational_error(f"groq server error ({e.status_code}): {e}",
                                 provider="groq", status_code=e.status_code)
    return fatal_error(f"groq request failed: {type(e).__name__}: {e}", provider="groq")


class GroqTranslator(ChatTranslator):
    """Groq implementation of the ChapterTranslator interface."""

    provider_name = "groq"
    DEFAULT_MODEL = "llama-3.3-70b-versatile"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        target_language: str = "Polish",
        token_estimator: Optional[TokenEstimator] = None,
        **kwargs: Any,
    ):
        """Initializes the Groq client.

        Args:
            api_key: Groq API key. Reads from GROQ_API_KEY env var if None.
            model: The Groq model to use.
            target_language: Language chapters are translated into.
            token_estimator: Used to split long chapters.
        """
        super().__init__(target_language=target_language, token_estimator=token_estimator, **kwargs)
        effective_api_key = api_key or os.getenv("GROQ_API_KEY")
        if not effective_api_key:
            raise ValueError("Groq API key not provided and not found in environment variables.")
        self.client = GroqSDKClient(api_key=effective_api_key)
        self.model = model or self.DEFAULT_MODEL
        logger.info(f"GroqTranslator initialized for model: {self.model}")

    async def _complete(self, messages: List[ChatMessage]) -> StructuredAIResponse:
        logger.debug(f"Sending {len(messages)} messages to Groq model: {self.model}")
        start_time = time.perf_counter()
        try:
            # The official Groq SDK client is synchronous
            chat_completion = await asyncio.to_thread(
                self.client.chat.completions.create,
                messages=messages,
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except (AuthenticationError, RateLimitError, APITimeoutError, APIConnectionError, APIStatusError) as e:
            logger.warning(f"Groq API error: {type(e).__name__}: {e}")
            raise map_groq_error(e) from e

        structured_response = parse_chat_response(chat_completion)
        structured_response.latency_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(
            f"Received response from Groq in {structured_response.latency_ms:.2f}ms. "
            f"Usage: {structured_response.token_usage}"
        )
        return structured_response
