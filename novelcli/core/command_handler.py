"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py) and delegates the work
to the application services: the ChapterNavigator for sequential runs and the
BatchProcessor for batch runs, both driving ChapterService.process_chapter.
After a run it reports results, cache statistics and provider health.
"""

import logging
from typing import Any, Dict, List, Optional

from novelcli.core.services.batch_processor import BatchProcessor, is_item_error
from novelcli.core.services.chapter_service import ChapterService
from novelcli.core.services.navigator import ChapterNavigator
from novelcli.domain.errors import PipelineError
from novelcli.domain.interfaces.user_interface import UserInterface
from novelcli.domain.models.common import ProcessedChapter
from novelcli.infrastructure.cache.caching_service import CacheManager
from novelcli.infrastructure.monitoring.health_monitor import ProviderHealthMonitor
from novelcli.infrastructure.parsers.syosetu_parser import SyosetuParser

logger = logging.getLogger(__name__)


class CommandHandler:
    """Handles incoming commands and delegates to appropriate services."""

    def __init__(
        self,
        chapter_service: ChapterService,
        navigator: ChapterNavigator,
        batch_processor: BatchProcessor,
        ui: UserInterface,
        cache: Optional[CacheManager] = None,
        health_monitor: Optional[ProviderHealthMonitor] = None,
    ):
        """Initializes the CommandHandler with required services."""
        self.chapter_service = chapter_service
        self.navigator = navigator
        self.batch_processor = batch_processor
        self.ui = ui
        self.cache = cache
        self.health_monitor = health_monitor

    async def handle_translate(self, url: str, use_batch: bool = False, max_chapters: Optional[int] = None) -> bool:
        """Handles the 'translate' command.

        Args:
            url: First chapter URL.
            use_batch: Discover the chain first and process it in batches.
            max_chapters: Chapter limit; the navigator's configured limit when None.

        Returns:
            True if the run finished, False if it was aborted by an error.
        """
        limit = max_chapters or self.navigator.config.max_chapters
        logger.info(f"Handling 'translate' for {url} (batch={use_batch}, max_chapters={limit})")
        try:
            SyosetuParser.parse_url(url)
            if self.cache is not None:
                async with self.cache:
                    summary = await self._run(url, use_batch, limit)
            else:
                summary = await self._run(url, use_batch, limit)
        except PipelineError as e:
            logger.error(f"Translate run aborted: {e}", exc_info=True)
            self.ui.display_error(f"Run aborted: {e.message}")
            self._report_monitoring()
            return False
        except Exception as e:
            logger.error(f"Unexpected error during translate run: {e}", exc_info=True)
            self.ui.display_error(f"Translate command failed: {e}")
            return False

        self.ui.display_run_summary(summary)
        self._report_monitoring()
        return True

    async def _run(self, url: str, use_batch: bool, limit: int) -> Dict[str, Any]:
        if use_batch:
            return await self._run_batch(url, limit)
        return await self._run_sequence(url, limit)

    async def _run_sequence(self, url: str, limit: int) -> Dict[str, Any]:
        self.navigator.config.max_chapters = limit
        outcome = await self.navigator.process_chapter_sequence(url, self.chapter_service.process_chapter)
        self._show_chapters(outcome.results)
        return outcome.to_dict()

    async def _run_batch(self, url: str, limit: int) -> Dict[str, Any]:
        results = await self.batch_processor.process_chapter_chain(
            url,
            self.chapter_service.process_chapter,
            max_chapters=limit,
            discoverer=self.chapter_service.discover_next,
        )
        self._show_chapters([r for r in results if not is_item_error(r)])
        for failure in (r for r in results if is_item_error(r)):
            self.ui.display_warning(f"Chapter {failure.item.index + 1} failed ({failure.item.url}): {failure.message}")
        summary = self.batch_processor.last_summary
        return {"start_url": url, **(summary.to_dict() if summary else {"total": len(results)})}

    def _show_chapters(self, chapters: List[ProcessedChapter]) -> None:
        for index, chapter in enumerate(chapters, start=1):
            self.ui.display_chapter_done(index, chapter.title, str(chapter.file_path))

    def _report_monitoring(self) -> None:
        if self.cache is not None:
            self.ui.display_cache_stats(self.cache.get_stats())
        if self.health_monitor is not None:
            alerts = [alert.to_dict() for alert in self.health_monitor.get_active_alerts()]
            self.ui.display_provider_health(self.health_monitor.get_provider_rankings(), alerts)
