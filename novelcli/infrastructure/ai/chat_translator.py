"""Shared logic for chat-completion based chapter translators.

Concrete providers (OpenAI, DeepSeek, Groq) only implement ``_complete``; prompt
construction, chunking of long chapters and assembly of the result live here.
"""

import abc
import logging
from typing import List, Optional

from novelcli.domain.interfaces.collaborators import ChapterTranslator
from novelcli.domain.models.ai import ChatMessage, StructuredAIResponse
from novelcli.domain.models.common import TokenUsage, TranslatedChapter
from novelcli.infrastructure.optimization.token_estimator import TokenEstimator

logger = logging.getLogger(__name__)

TRANSLATION_MAX_TOKENS = 4000
TRANSLATION_TEMPERATURE = 0.1
SOURCE_LANGUAGE = "Japanese"

SYSTEM_PROMPT = (
    "You are a professional literary translator from {source} to {target}. "
    "Translate the text while keeping the original tone, style and mood. "
    "Do not add comments or explanations; return only the translated text."
)
TITLE_PROMPT = (
    "Translate the following chapter title of a {source} web novel into {target}, "
    "keeping its meaning and character:\n\n\"{text}\"\n\n"
    "Return only the translated title."
)
CONTENT_PROMPT = (
    "Translate the following excerpt of a {source} web novel into {target}. Preserve:\n"
    "- the original tone and style\n"
    "- the characters' voices\n"
    "- the mood of the scene\n"
    "- the paragraph breaks\n\n"
    "Text to translate:\n\n{text}\n\n"
    "Return only the translated text."
)


class ChatTranslator(ChapterTranslator, abc.ABC):
    """Translates chapters by prompting a chat-completion model."""

    def __init__(
        self,
        target_language: str = "Polish",
        max_tokens: int = TRANSLATION_MAX_TOKENS,
        temperature: float = TRANSLATION_TEMPERATURE,
        token_estimator: Optional[TokenEstimator] = None,
    ):
        self.target_language = target_language
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.token_estimator = token_estimator

    @abc.abstractmethod
    async def _complete(self, messages: List[ChatMessage]) -> StructuredAIResponse:
        """Sends messages to the provider and returns the parsed response."""
        pass

    def build_messages(self, text: str, kind: str = "content") -> List[ChatMessage]:
        template = TITLE_PROMPT if kind == "title" else CONTENT_PROMPT
        fmt = {"source": SOURCE_LANGUAGE, "target": self.target_language, "text": text}
        return [
            ChatMessage(role="system", content=SYSTEM_PROMPT.format(**fmt)),
            ChatMessage(role="user", content=template.format(**fmt)),
        ]

    def _chunks(self, content: str) -> List[str]:
        if self.token_estimator is None:
            return [content]
        # Output is usually longer than Japanese input; leave headroom
        return self.token_estimator.split_text(content, max(1, self.max_tokens // 2))

    async def translate_text(self, text: str, kind: str = "content") -> StructuredAIResponse:
        response = await self._complete(self.build_messages(text, kind))
        response.content = response.content.strip()
        return response

    async def translate_chapter(self, title: str, content: str) -> TranslatedChapter:
        """Translates the title, then the body chunk by chunk."""
        logger.info(f"Translating chapter '{title}' with {self.provider_name} into {self.target_language}")
        title_response = await self.translate_text(title, "title")
        usage = _add_usage(None, title_response.token_usage)

        parts = []
        chunks = self._chunks(content)
        for index, chunk in enumerate(chunks, start=1):
            if len(chunks) > 1:
                logger.debug(f"Translating chunk {index}/{len(chunks)}")
            response = await self.translate_text(chunk, "content")
            usage = _add_usage(usage, response.token_usage)
            parts.append(response.content)

        return TranslatedChapter(
            title=title_response.content,
            content="\n\n".join(parts),
            provider=self.provider_name,
            token_usage=usage,
        )


def _add_usage(total: Optional[TokenUsage], usage: Optional[TokenUsage]) -> Optional[TokenUsage]:
    if usage is None:
        return total
    if total is None:
        return TokenUsage(**usage)
    return TokenUsage(
        prompt_tokens=total["prompt_tokens"] + usage["prompt_tokens"],
        completion_tokens=total["completion_tokens"] + usage["completion_tokens"],
        total_tokens=total["total_tokens"] + usage["total_tokens"],
    )
