"""Resizable counting semaphore with FIFO hand-off and usage statistics.

Unlike ``asyncio.Semaphore`` the capacity can change at runtime, queued
waiters are always served in arrival order, and the semaphore keeps the
counters the batch processor needs to tune its own concurrency.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple, TypeVar

from novelcli.domain.errors import validation_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SemaphoreStats:
    """Point-in-time snapshot of semaphore usage."""
    running: int
    capacity: int
    queue_length: int
    total_acquisitions: int
    total_releases: int
    max_queue_length: int
    average_wait_time: float # seconds
    utilization: float       # running / capacity


class Semaphore:
    """Bounded permit pool. ``running`` never exceeds ``capacity`` at grant time."""

    def __init__(self, capacity: int = 1, clock: Callable[[], float] = time.monotonic):
        if capacity < 1:
            raise validation_error("Semaphore capacity must be at least 1", field="capacity", value=capacity)
        self._capacity = capacity
        self._running = 0
        self._queue: Deque[Tuple[asyncio.Future, float]] = deque()
        self._clock = clock

        self.total_acquisitions = 0
        self.total_releases = 0
        self.max_queue_length = 0
        self.total_wait_time = 0.0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def running(self) -> int:
        return self._running

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    async def acquire(self) -> None:
        """Takes a permit, waiting in FIFO order if none is free."""
        if self._running < self._capacity and not self._queue:
            self._running += 1
            self.total_acquisitions += 1
            return

        waiter = asyncio.get_running_loop().create_future()
        entry = (waiter, self._clock())
        self._queue.append(entry)
        self.max_queue_length = max(self.max_queue_length, len(self._queue))
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was handed over just before cancellation; give it back
                self.release()
            else:
                try:
                    self._queue.remove(entry)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        """Returns a permit and hands free slots to queued waiters."""
        if self._running <= 0:
            logger.warning("Semaphore.release() called without a matching acquire.")
            return
        self._running -= 1
        self.total_releases += 1
        self._wake_waiters()

    def _wake_waiters(self) -> None:
        while self._queue and self._running < self._capacity:
            waiter, queued_at = self._queue.popleft()
            if waiter.done():
                continue
            self._running += 1
            self.total_acquisitions += 1
            self.total_wait_time += self._clock() - queued_at
            waiter.set_result(None)

    async def use(self, task: Callable[[], Awaitable[T]]) -> T:
        """Runs ``task()`` while holding a permit; the permit is always released."""
        await self.acquire()
        try:
            return await task()
        finally:
            self.release()

    async def __aenter__(self) -> "Semaphore":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type: Any, exc: Optional[BaseException], tb: Any) -> None:
        self.release()

    def resize(self, new_capacity: int) -> SemaphoreStats:
        """Changes capacity. Growing wakes waiters now; shrinking takes effect as permits return.

        Raises:
            PipelineError: VALIDATION if ``new_capacity`` is below 1.
        """
        if new_capacity < 1:
            raise validation_error("Semaphore capacity must be at least 1", field="capacity", value=new_capacity)
        old_capacity = self._capacity
        self._capacity = new_capacity
        logger.debug(f"Semaphore resized: {old_capacity} -> {new_capacity} (running={self._running})")
        self._wake_waiters()
        return self.get_stats()

    def get_stats(self) -> SemaphoreStats:
        average_wait = self.total_wait_time / self.total_acquisitions if self.total_acquisitions else 0.0
        return SemaphoreStats(
            running=self._running,
            capacity=self._capacity,
            queue_length=len(self._queue),
            total_acquisitions=self.total_acquisitions,
            total_releases=self.total_releases,
            max_queue_length=self.max_queue_length,
            average_wait_time=average_wait,
            utilization=self._running / self._capacity,
        )
