"""Interfaces for the external collaborators driven by the pipeline.

The pipeline only relies on these contracts; concrete scrapers, translators,
speech synthesizers and writers live in the infrastructure layer.
"""

import abc
from pathlib import Path

from novelcli.domain.models.common import ProcessedChapter, ScrapedChapter, TranslatedChapter


class ChapterFetcher(abc.ABC):
    """Fetches one chapter page and extracts its text and next link."""

    @abc.abstractmethod
    async def fetch(self, url: str) -> ScrapedChapter:
        """Fetches and parses a chapter.

        Args:
            url: Absolute chapter URL.

        Returns:
            The scraped chapter, including the next chapter URL when present.

        Raises:
            PipelineError: NOT_FOUND when the page does not exist, OPERATIONAL
                for transient transport failures, FATAL otherwise.
        """
        pass


class ChapterTranslator(abc.ABC):
    """Translates chapter title and body text."""

    provider_name: str = "translator"

    @abc.abstractmethod
    async def translate_chapter(self, title: str, content: str) -> TranslatedChapter:
        """Translates a chapter.

        Raises:
            PipelineError: OPERATIONAL for rate limits, timeouts and server
                errors; FATAL for authentication and other client errors.
        """
        pass


class SpeechSynthesizer(abc.ABC):
    """Turns text into encoded audio."""

    provider_name: str = "tts"

    @abc.abstractmethod
    async def synthesize(self, text: str, voice: str, speed: float = 1.0) -> bytes:
        pass


class ChapterWriter(abc.ABC):
    """Persists processed chapters and their audio."""

    @abc.abstractmethod
    async def write_chapter(self, chapter: ProcessedChapter, filename: str) -> Path:
        """Writes the chapter as a document and returns its path."""
        pass

    @abc.abstractmethod
    async def write_audio(self, data: bytes, filename: str) -> Path:
        """Writes encoded audio and returns its path."""
        pass
