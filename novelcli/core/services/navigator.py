"""
Core service walking a chain of chapters one step at a time.

Each step is run through the retry executor; the next URL comes from the
step's result. Between steps the navigator sleeps for a delay proportional to
recent processing time. On failure it backs off, then tries to derive the
next URL independently (e.g. by incrementing the chapter number) and gives up
after too many consecutive errors.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Set, Union

from novelcli.domain.errors import (
    ErrorKind, PipelineError, navigation_error, processing_error, validation_error,
)
from novelcli.infrastructure.config.pipeline_config import NavigatorConfig
from novelcli.infrastructure.parsers.syosetu_parser import SyosetuParser
from novelcli.infrastructure.resilience.api_retry import with_retry

logger = logging.getLogger(__name__)

StepFunction = Callable[[str], Awaitable[Any]]
NextUrlResolver = Callable[[str], Optional[str]]
ConfirmContinue = Callable[[Any], Union[bool, Awaitable[bool]]]

NOT_FOUND_MARKERS = ("http 404", "not found")


def result_field(result: Any, name: str) -> Any:
    """Reads ``name`` from a mapping or attribute-bearing step result."""
    if isinstance(result, dict):
        return result.get(name)
    return getattr(result, name, None)


def is_end_of_chain(error: BaseException) -> bool:
    """True if ``error`` or anything in its cause chain signals a missing resource.

    Pipeline errors are judged by kind alone; their messages carry URLs that
    may contain "404" anywhere. Foreign exceptions fall back to the message.
    """
    current: Optional[BaseException] = error
    seen = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, PipelineError):
            if current.kind is ErrorKind.NOT_FOUND:
                return True
        elif any(marker in str(current).lower() for marker in NOT_FOUND_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False


@dataclass
class NavigationResult:
    """Outcome of a navigation run."""
    results: List[Any] = field(default_factory=list)
    total_chapters: int = 0
    start_url: str = ""
    last_url: Optional[str] = None
    stop_reason: str = "completed"

    def to_dict(self) -> dict:
        return {
            "total_chapters": self.total_chapters,
            "start_url": self.start_url,
            "last_url": self.last_url,
            "stop_reason": self.stop_reason,
        }


class ChapterNavigator:
    """Sequential chain walker with adaptive delay and error recovery."""

    def __init__(
        self,
        config: Optional[NavigatorConfig] = None,
        next_url_resolver: NextUrlResolver = SyosetuParser.next_chapter_url,
        confirm_continue: Optional[ConfirmContinue] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes the ChapterNavigator.

        Args:
            config: Delays, limits and retry policy.
            next_url_resolver: Fallback rule deriving the next URL after a failed step.
            confirm_continue: Asked with the step result before moving on when
                ``auto_continue`` is off; may be sync or async.
            clock: Monotonic time source for processing-time measurement.
        """
        self.config = config or NavigatorConfig()
        self.next_url_resolver = next_url_resolver
        self.confirm_continue = confirm_continue
        self._clock = clock
        self.processed: Set[str] = set()
        self.consecutive_errors = 0
        self.avg_processing_time = self.config.initial_processing_time
        logger.info(
            f"ChapterNavigator initialized: adaptive_delay={self.config.adaptive_delay}, "
            f"auto_continue={self.config.auto_continue}, max_chapters={self.config.max_chapters}"
        )

    # --- Delay calculation ---

    def calculate_adaptive_delay(self) -> float:
        if not self.config.adaptive_delay:
            return self.config.chapter_delay
        delay = self.avg_processing_time * 0.2
        return max(self.config.min_delay, min(self.config.max_delay, delay))

    def calculate_error_delay(self) -> float:
        return min(self.config.max_delay, self.config.base_delay * 2 ** self.consecutive_errors)

    def derive_next_url(self, url: str) -> Optional[str]:
        """Applies the fallback navigation rule; returns None when no URL can be derived."""
        return self.next_url_resolver(url)

    # --- State helpers ---

    def get_processed_chapters(self) -> List[str]:
        return sorted(self.processed)

    def reset_processed_chapters(self) -> None:
        self.processed.clear()
        self.consecutive_errors = 0
        self.avg_processing_time = self.config.initial_processing_time
        logger.debug("Navigator state reset")

    def set_auto_continue(self, enabled: bool) -> None:
        self.config.auto_continue = enabled

    def set_chapter_delay(self, delay: float) -> None:
        if delay < 0:
            raise validation_error("Chapter delay must not be negative", field="chapter_delay", value=delay)
        self.config.chapter_delay = delay

    async def _should_continue(self, result: Any) -> bool:
        if self.config.auto_continue:
            return True
        if self.confirm_continue is None:
            logger.warning("auto_continue is disabled and no confirmation callback was given; stopping.")
            return False
        answer = self.confirm_continue(result)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    # --- Main loop ---

    async def process_chapter_sequence(self, start_url: str, step: StepFunction) -> NavigationResult:
        """Walks the chain starting at ``start_url``.

        Args:
            start_url: First chapter URL.
            step: Async function processing one URL; its result must carry a
                non-empty ``title`` and may carry ``next_chapter_url``.

        Returns:
            The ordered results with the start and last URL.

        Raises:
            PipelineError: VALIDATION for bad arguments, PROCESSING when a step
                returns no title, NAVIGATION when recovery is exhausted.
        """
        if not isinstance(start_url, str) or not start_url.strip():
            raise validation_error("Start URL must be a non-empty string", field="start_url", value=start_url)
        if not callable(step):
            raise validation_error("Step must be callable", field="step", value=step)

        outcome = NavigationResult(start_url=start_url)
        current_url: Optional[str] = start_url
        policy = self.config.retry
        logger.info(f"Starting chapter navigation at {start_url}")

        while current_url and outcome.total_chapters < self.config.max_chapters:
            outcome.last_url = current_url
            if current_url in self.processed:
                logger.info(f"Chapter already processed, stopping to avoid a cycle: {current_url}")
                outcome.stop_reason = "cycle"
                break

            started = self._clock()
            try:
                result = await with_retry(
                    lambda url=current_url: step(url),
                    max_attempts=policy.max_attempts,
                    base_delay=policy.base_delay,
                    backoff_multiplier=policy.backoff_multiplier,
                    context={"operation": "process_chapter", "url": current_url},
                )
            except PipelineError as e:
                next_url = await self._recover(current_url, e)
                if next_url is None:
                    outcome.stop_reason = "end_of_chain"
                    break
                current_url = next_url
                continue

            title = result_field(result, "title")
            if not result or not title:
                raise processing_error("Invalid chapter data received", url=current_url, step="process_chapter")

            self.consecutive_errors = 0
            self.processed.add(current_url)
            outcome.results.append(result)
            outcome.total_chapters += 1
            elapsed = self._clock() - started
            self.avg_processing_time = (self.avg_processing_time + elapsed) / 2
            logger.info(f"Chapter {outcome.total_chapters} done in {elapsed:.2f}s: {title}")

            next_url = result_field(result, "next_chapter_url")
            if not next_url:
                logger.info("No next chapter link; navigation complete.")
                outcome.stop_reason = "completed"
                break
            if outcome.total_chapters >= self.config.max_chapters:
                logger.warning(f"Reached the maximum of {self.config.max_chapters} chapters; stopping.")
                outcome.stop_reason = "max_chapters"
                break
            if not await self._should_continue(result):
                logger.info("Navigation stopped by user.")
                outcome.stop_reason = "stopped_by_user"
                break

            delay = self.calculate_adaptive_delay()
            logger.debug(f"Waiting {delay:.2f}s before next chapter (avg {self.avg_processing_time:.2f}s)")
            await asyncio.sleep(delay)
            current_url = next_url

        logger.info(
            f"Navigation finished: {outcome.total_chapters} chapters, last URL {outcome.last_url} "
            f"({outcome.stop_reason})"
        )
        return outcome

    async def _recover(self, url: str, error: PipelineError) -> Optional[str]:
        """Handles a failed step. Returns the URL to continue with, or None at end of chain.

        Raises:
            PipelineError: NAVIGATION when errors pile up or no next URL can be derived.
        """
        self.consecutive_errors += 1
        if is_end_of_chain(error):
            logger.info(f"Chapter not found at {url}; treating as end of chain.")
            return None

        delay = self.calculate_error_delay()
        logger.warning(
            f"Chapter failed ({self.consecutive_errors}/{self.config.max_consecutive_errors} consecutive): "
            f"{error}. Backing off {delay:.2f}s"
        )
        await asyncio.sleep(delay)

        if self.consecutive_errors >= self.config.max_consecutive_errors:
            raise navigation_error(
                f"Too many consecutive errors ({self.consecutive_errors}): {error.message}",
                url=url, step="process_chapter",
            ) from error

        try:
            next_url = self.derive_next_url(url)
        except Exception as derive_error:
            raise navigation_error(
                f"Failed to navigate to next chapter: {derive_error}", url=url, step="derive_next_url",
            ) from derive_error
        if not next_url:
            raise navigation_error("Failed to navigate to next chapter", url=url, step="derive_next_url") from error

        logger.info(f"Skipping to derived next chapter: {next_url}")
        return next_url
