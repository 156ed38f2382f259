"""Core service processing a single chapter end to end.

Fetches the page, translates it through the configured translator providers,
writes the Markdown file and optionally synthesizes speech. Remote calls go
through the ApiCallService so that every provider's health is tracked, and
fetched content and translations are cached per namespace.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from novelcli.domain.errors import ErrorKind, PipelineError, is_kind, validation_error
from novelcli.domain.interfaces.cache import MISSING
from novelcli.domain.interfaces.collaborators import (
    ChapterFetcher, ChapterTranslator, ChapterWriter, SpeechSynthesizer,
)
from novelcli.domain.models.common import ProcessedChapter, ScrapedChapter, TranslatedChapter
from novelcli.infrastructure.cache.caching_service import CacheManager
from novelcli.infrastructure.parsers.syosetu_parser import SyosetuParser
from novelcli.infrastructure.resilience.api_retry import ApiCallService

logger = logging.getLogger(__name__)

SCRAPER_PROVIDER = "scraper"


class ChapterService:
    """Application service implementing the per-chapter pipeline."""

    def __init__(
        self,
        fetcher: ChapterFetcher,
        translators: List[ChapterTranslator],
        writer: ChapterWriter,
        api_calls: ApiCallService,
        cache: Optional[CacheManager] = None,
        synthesizer: Optional[SpeechSynthesizer] = None,
        voice: str = "alloy",
        speed: float = 1.0,
        target_language: str = "Polish",
        enable_caching: bool = True,
    ):
        """Initializes the ChapterService.

        Args:
            fetcher: Downloads and parses chapter pages.
            translators: Translator providers in fallback order.
            writer: Persists Markdown and audio files.
            api_calls: Dispatches provider calls with health tracking.
            cache: Namespaced cache; caching is off when None.
            synthesizer: Speech provider; audio is skipped when None.
            voice: Voice passed to the synthesizer.
            speed: Speech speed passed to the synthesizer.
            target_language: Part of the translation cache key.
            enable_caching: Turns cache lookups and stores on or off.
        """
        if not translators:
            raise validation_error("At least one translator is required", field="translators", value=translators)
        self.fetcher = fetcher
        self.translators = list(translators)
        self.writer = writer
        self.api_calls = api_calls
        self.cache = cache
        self.synthesizer = synthesizer
        self.voice = voice
        self.speed = speed
        self.target_language = target_language
        self.enable_caching = enable_caching and cache is not None
        logger.info(
            f"ChapterService initialized: translators={self.provider_order}, "
            f"tts={'on' if synthesizer else 'off'}, caching={self.enable_caching}"
        )

    @property
    def provider_order(self) -> str:
        return ",".join(t.provider_name for t in self.translators)

    async def fetch_chapter(self, url: str) -> ScrapedChapter:
        """Returns the scraped chapter, from the content cache when possible."""
        if self.enable_caching:
            cached = self.cache.get_cached_chapter_content(url)
            if cached is not MISSING:
                logger.debug(f"Using cached content for {url}")
                return cached

        chapter = await self.api_calls.execute("fetch", {SCRAPER_PROVIDER: lambda: self.fetcher.fetch(url)})
        if self.enable_caching:
            self.cache.cache_chapter_content(url, chapter)
        return chapter

    async def discover_next(self, url: str) -> Optional[str]:
        """Next chapter URL taken from the page itself; None at the end of the chain."""
        try:
            chapter = await self.fetch_chapter(url)
        except PipelineError as e:
            if is_kind(e, ErrorKind.NOT_FOUND):
                logger.info(f"No chapter at {url}; chain ends here.")
                return None
            raise
        return chapter.next_chapter_url

    async def translate(self, chapter: ScrapedChapter) -> TranslatedChapter:
        translated, _ = await self._translate(chapter)
        return translated

    async def _translate(self, chapter: ScrapedChapter) -> Tuple[TranslatedChapter, bool]:
        text = f"{chapter.title}\n{chapter.content}"
        if self.enable_caching:
            cached = self.cache.get_cached_translation(self.provider_order, text, self.target_language)
            if cached is not MISSING:
                logger.info(f"Using cached translation for {chapter.url}")
                return cached, True

        calls = {
            translator.provider_name: (lambda t=translator: t.translate_chapter(chapter.title, chapter.content))
            for translator in self.translators
        }
        translated = await self.api_calls.execute("translate", calls)
        if self.enable_caching:
            self.cache.cache_translation(self.provider_order, text, self.target_language, translated)
        return translated, False

    async def process_chapter(self, url: str) -> ProcessedChapter:
        """Runs fetch, translate, write and optional speech for one chapter.

        Args:
            url: Syosetu chapter URL.

        Returns:
            The processed chapter, carrying the scraped next-chapter URL.

        Raises:
            PipelineError: VALIDATION for a malformed URL; otherwise whatever
                the fetch or translate step raised.
            IOError: If the Markdown file cannot be written.
        """
        parsed = SyosetuParser.parse_url(url)
        logger.info(f"Processing chapter {parsed['chapter_number']} of {parsed['series_id']}: {url}")

        scraped = await self.fetch_chapter(url)
        translated, from_cache = await self._translate(scraped)
        filename = SyosetuParser.build_filename(parsed["series_id"], parsed["chapter_number"], translated.title)

        processed = ProcessedChapter(
            title=translated.title,
            content=translated.content,
            original_url=url,
            series_id=parsed["series_id"],
            chapter_number=parsed["chapter_number"],
            filename=filename,
            next_chapter_url=scraped.next_chapter_url,
            from_cache=from_cache,
        )
        processed.file_path = await self.writer.write_chapter(processed, filename)

        if self.synthesizer is not None:
            processed.audio_file_path = await self._synthesize(processed)
        return processed

    async def _synthesize(self, chapter: ProcessedChapter) -> Optional[Path]:
        provider = self.synthesizer.provider_name
        text = f"{chapter.title}\n\n{chapter.content}"
        try:
            audio = await self.api_calls.execute(
                "synthesize", {provider: lambda: self.synthesizer.synthesize(text, self.voice, self.speed)},
            )
            audio_name = SyosetuParser.build_filename(
                chapter.series_id, chapter.chapter_number, chapter.title, extension="mp3",
            )
            return await self.writer.write_audio(audio, audio_name)
        except (PipelineError, OSError) as e:
            logger.warning(f"Audio generation failed for {chapter.original_url}: {e}")
            return None
