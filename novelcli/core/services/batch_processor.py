"""
Core service running work items in fixed-size batches with bounded concurrency.

Items of one batch run concurrently through the shared ``Semaphore``; batches
run strictly one after another. A failing item never aborts its batch: its
failure is recorded as a ``BatchItemError`` at the item's position. Between
batches the processor may resize the semaphore based on observed queueing.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from novelcli.domain.errors import validation_error
from novelcli.domain.events.api_events import ConcurrencyAdjusted, dispatch_event
from novelcli.domain.models.common import ChapterRef
from novelcli.infrastructure.config.pipeline_config import BatchConfig
from novelcli.infrastructure.resilience.semaphore import Semaphore, SemaphoreStats

logger = logging.getLogger(__name__)

ItemProcessor = Callable[[Any], Awaitable[Any]]
ChainDiscoverer = Callable[[str], Awaitable[Optional[str]]]


@dataclass
class BatchItemError:
    """Failure record stored in place of a result."""
    item: Any
    message: str
    error_type: str = "Exception"
    timestamp: float = field(default_factory=time.time)
    error: bool = True


def is_item_error(result: Any) -> bool:
    return isinstance(result, BatchItemError)


@dataclass
class BatchSummary:
    total: int
    succeeded: int
    failed: int
    batches: int
    duration: float
    final_concurrency: int
    concurrency_changes: List[ConcurrencyAdjusted]
    semaphore: SemaphoreStats

    @property
    def success_rate(self) -> float:
        return (self.succeeded / self.total * 100) if self.total else 0.0

    @property
    def throughput(self) -> float:
        """Items per second."""
        return self.total / self.duration if self.duration > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "batches": self.batches,
            "duration": self.duration,
            "throughput": self.throughput,
            "final_concurrency": self.final_concurrency,
            "concurrency_changes": len(self.concurrency_changes),
        }


class BatchProcessor:
    """Orchestrates batched, concurrency-limited processing of work items."""

    def __init__(
        self,
        config: Optional[BatchConfig] = None,
        semaphore: Optional[Semaphore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes the BatchProcessor.

        Args:
            config: Batch size, concurrency, delays and adaptive thresholds.
            semaphore: Shared permit pool; one sized to ``max_concurrency`` is created if None.
            clock: Monotonic time source for adaptive check intervals and summaries.
        """
        self.config = config or BatchConfig()
        self.semaphore = semaphore or Semaphore(self.config.max_concurrency)
        self._clock = clock
        self._last_adaptive_check = clock()
        self.concurrency_changes: List[ConcurrencyAdjusted] = []
        self.last_summary: Optional[BatchSummary] = None
        logger.info(
            f"BatchProcessor initialized: batch_size={self.config.batch_size}, "
            f"max_concurrency={self.semaphore.capacity}, adaptive={self.config.adaptive.enabled}"
        )

    def create_batches(self, items: Sequence[Any]) -> List[List[Any]]:
        size = self.config.batch_size
        return [list(items[i:i + size]) for i in range(0, len(items), size)]

    async def process_batch(self, items: Sequence[Any], processor: ItemProcessor, context: str = "") -> List[Any]:
        """Processes all items batch by batch.

        Args:
            items: Work items, processed in order.
            processor: Async callable applied to each item.
            context: Label used in log messages.

        Returns:
            One entry per item in input order: the processor's result or a ``BatchItemError``.

        Raises:
            PipelineError: VALIDATION if ``processor`` is not callable.
        """
        if not callable(processor):
            raise validation_error("Processor must be callable", field="processor", value=processor)
        if not items:
            return []

        label = f"[{context}] " if context else ""
        batches = self.create_batches(items)
        started = self._clock()
        results: List[Any] = []
        logger.info(f"{label}Processing {len(items)} items in {len(batches)} batches")

        for number, batch in enumerate(batches, start=1):
            logger.debug(f"{label}Batch {number}/{len(batches)} ({len(batch)} items)")
            results.extend(await self.process_single_batch(batch, processor, context))
            if self.config.adaptive.enabled:
                self._adjust_concurrency()
            if number < len(batches) and self.config.delay_between_batches > 0:
                await asyncio.sleep(self.config.delay_between_batches)

        self.last_summary = self.summarize(results, len(batches), self._clock() - started)
        logger.info(
            f"{label}Batch processing finished: {self.last_summary.succeeded}/{self.last_summary.total} succeeded "
            f"({self.last_summary.success_rate:.1f}%) in {self.last_summary.duration:.2f}s"
        )
        return results

    async def process_single_batch(self, batch: Sequence[Any], processor: ItemProcessor, context: str = "") -> List[Any]:
        """Runs one batch concurrently and waits for every item to settle."""
        outcomes = await asyncio.gather(
            *(self.semaphore.use(lambda item=item: processor(item)) for item in batch),
            return_exceptions=True,
        )
        results: List[Any] = []
        for position, (item, outcome) in enumerate(zip(batch, outcomes), start=1):
            if isinstance(outcome, Exception):
                logger.error(f"{context} batch item {position} failed: {type(outcome).__name__}: {outcome}")
                results.append(BatchItemError(item=item, message=str(outcome), error_type=type(outcome).__name__))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(outcome)
        return results

    def _adjust_concurrency(self) -> None:
        now = self._clock()
        adaptive = self.config.adaptive
        if now - self._last_adaptive_check < adaptive.check_interval:
            return
        self._last_adaptive_check = now

        stats = self.semaphore.get_stats()
        current = stats.capacity
        new_concurrency = current
        reason = ""
        if stats.queue_length > adaptive.scale_up_queue_length and stats.utilization < adaptive.scale_up_max_utilization:
            new_concurrency = min(int(current * adaptive.scale_up_factor), adaptive.max_concurrency)
            reason = f"queue length {stats.queue_length} with utilization {stats.utilization:.2f}"
        elif stats.queue_length == 0 and stats.utilization > adaptive.scale_down_min_utilization \
                and current > adaptive.min_concurrency:
            new_concurrency = max(adaptive.min_concurrency, math.floor(current * adaptive.scale_down_factor))
            reason = f"empty queue with utilization {stats.utilization:.2f}"
        elif stats.average_wait_time > adaptive.wait_time_threshold and current < adaptive.wait_time_max_concurrency:
            new_concurrency = min(current + adaptive.wait_time_step, adaptive.wait_time_max_concurrency)
            reason = f"average wait {stats.average_wait_time:.2f}s"

        if new_concurrency != current:
            self.semaphore.resize(new_concurrency)
            event = ConcurrencyAdjusted(old_concurrency=current, new_concurrency=new_concurrency, reason=reason)
            self.concurrency_changes.append(event)
            dispatch_event(event)
            logger.info(f"Adjusted concurrency {current} -> {new_concurrency} ({reason})")

    async def process_with_retry(
        self,
        items: Sequence[Any],
        processor: ItemProcessor,
        max_retries: int = 2,
        base_delay: float = 1.0,
        context: str = "",
    ) -> List[Any]:
        """Processes items, then re-submits failed ones up to ``max_retries`` times.

        Returns:
            One entry per input item in input order; items still failing after
            the last pass are ``BatchItemError`` records.
        """
        results = list(await self.process_batch(items, processor, context))
        for attempt in range(1, max_retries + 1):
            failed_positions = [i for i, r in enumerate(results) if is_item_error(r)]
            if not failed_positions:
                break
            delay = base_delay * 2 ** attempt
            logger.warning(
                f"Retrying {len(failed_positions)} failed items (attempt {attempt}/{max_retries}) in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
            retried = await self.process_batch([items[i] for i in failed_positions], processor, context)
            for position, outcome in zip(failed_positions, retried):
                results[position] = outcome

        self.last_summary = self.summarize(results, self.last_summary.batches if self.last_summary else 0,
                                           self.last_summary.duration if self.last_summary else 0.0)
        return results

    async def process_chapter_chain(
        self,
        start_url: str,
        processor: Callable[[str], Awaitable[Any]],
        max_chapters: int = 10,
        discover_next: bool = True,
        discoverer: Optional[ChainDiscoverer] = None,
    ) -> List[Any]:
        """Discovers a chain of chapter URLs, then processes them in batches.

        Args:
            start_url: First chapter URL.
            processor: Async callable processing one chapter URL.
            max_chapters: Upper bound on discovered chapters.
            discover_next: Whether to follow next links before processing.
            discoverer: Async callable returning the next URL for a URL, or None.
        """
        if not isinstance(start_url, str) or not start_url:
            raise validation_error("Start URL must be a non-empty string", field="start_url", value=start_url)
        if not callable(processor):
            raise validation_error("Processor must be callable", field="processor", value=processor)

        chapters = [ChapterRef(url=start_url, index=0)]
        if discover_next and discoverer is not None:
            seen = {start_url}
            current: Optional[str] = start_url
            while len(chapters) < max_chapters:
                current = await discoverer(current)
                if not current or current in seen:
                    break
                seen.add(current)
                chapters.append(ChapterRef(url=current, index=len(chapters)))
            logger.info(f"Discovered {len(chapters)} chapters starting at {start_url}")

        async def run(chapter: ChapterRef) -> Any:
            logger.info(f"Processing chapter {chapter.index + 1}: {chapter.url}")
            return await processor(chapter.url)

        return await self.process_batch(chapters, run, context="Chapter Processing")

    def summarize(self, results: Sequence[Any], batches: int = 0, duration: float = 0.0) -> BatchSummary:
        failed = sum(1 for r in results if is_item_error(r))
        return BatchSummary(
            total=len(results),
            succeeded=len(results) - failed,
            failed=failed,
            batches=batches,
            duration=duration,
            final_concurrency=self.semaphore.capacity,
            concurrency_changes=list(self.concurrency_changes),
            semaphore=self.semaphore.get_stats(),
        )
