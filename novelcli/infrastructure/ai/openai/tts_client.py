"""Speech synthesis through the OpenAI audio API.

Long chapters are split on sentence boundaries into chunks under the API's
input limit; the MP3 segments are concatenated in order.
"""

import asyncio
import logging
import os
import re
from typing import Any, List, Optional

from openai import OpenAI, APIConnectionError, APIStatusError, APITimeoutError, AuthenticationError, RateLimitError

from novelcli.domain.errors import validation_error
from novelcli.domain.interfaces.collaborators import SpeechSynthesizer
from novelcli.infrastructure.ai.openai.gpt_translator import map_openai_error

logger = logging.getLogger(__name__)

AVAILABLE_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")
MAX_CHUNK_CHARS = 4000
SENTENCE_END = re.compile(r"(?<=[.!?。！？])\s*")


def split_into_chunks(text: str, max_chars: int = MAX_CHUNK_CHARS) -> List[str]:
    """Groups sentences into chunks of at most ``max_chars`` characters."""
    if len(text) <= max_chars:
        return [text]
    chunks: List[str] = []
    current = ""
    for sentence in (s.strip() for s in SENTENCE_END.split(text)):
        if not sentence:
            continue
        while len(sentence) > max_chars:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(sentence[:max_chars])
            sentence = sentence[max_chars:]
        candidate = f"{current} {sentence}" if current else sentence
        if len(candidate) <= max_chars:
            current = candidate
        else:
            chunks.append(current)
            current = sentence
    if current:
        chunks.append(current)
    return chunks or [text[:max_chars]]


class OpenAITTS(SpeechSynthesizer):
    """OpenAI implementation of the SpeechSynthesizer interface."""

    provider_name = "openai-tts"
    DEFAULT_MODEL = "tts-1"
    DEFAULT_VOICE = "alloy"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, chunk_delay: float = 1.0):
        effective_api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not effective_api_key:
            raise ValueError("OpenAI API key not provided and not found in environment variables.")
        self.client = OpenAI(api_key=effective_api_key)
        self.model = model or self.DEFAULT_MODEL
        self.chunk_delay = chunk_delay
        logger.info(f"OpenAITTS initialized for model: {self.model}")

    async def _speech(self, text: str, voice: str, speed: float) -> bytes:
        try:
            response: Any = await asyncio.to_thread(
                self.client.audio.speech.create,
                model=self.model,
                voice=voice,
                input=text,
                speed=speed,
                response_format="mp3",
            )
        except (AuthenticationError, RateLimitError, APITimeoutError, APIConnectionError, APIStatusError) as e:
            logger.warning(f"OpenAI TTS error: {type(e).__name__}: {e}")
            raise map_openai_error(e, provider=self.provider_name) from e
        return response.content

    async def synthesize(self, text: str, voice: str = DEFAULT_VOICE, speed: float = 1.0) -> bytes:
        """Synthesizes ``text`` into MP3 bytes.

        Raises:
            PipelineError: VALIDATION for an unknown voice, otherwise as mapped from the SDK.
        """
        if voice not in AVAILABLE_VOICES:
            raise validation_error(
                f"Invalid voice: {voice}. Available voices: {', '.join(AVAILABLE_VOICES)}",
                field="voice", value=voice,
            )
        chunks = split_into_chunks(text)
        segments = []
        for index, chunk in enumerate(chunks, start=1):
            if len(chunks) > 1:
                logger.info(f"Generating audio chunk {index}/{len(chunks)}...")
            segments.append(await self._speech(chunk, voice, speed))
            if index < len(chunks) and self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
        return b"".join(segments)
