import asyncio

import pytest

from novelcli.domain.errors import ErrorKind, PipelineError
from novelcli.infrastructure.resilience.semaphore import Semaphore


async def settle():
    """Lets every ready task run until it blocks again."""
    for _ in range(5):
        await asyncio.sleep(0)


def test_capacity_below_one_is_rejected():
    with pytest.raises(PipelineError) as exc_info:
        Semaphore(0)
    assert exc_info.value.kind is ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_running_never_exceeds_capacity():
    semaphore = Semaphore(2)
    peak = 0
    active = 0

    async def task():
        nonlocal peak, active
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0)
        active -= 1
        return "done"

    results = await asyncio.gather(*(semaphore.use(task) for _ in range(6)))

    assert results == ["done"] * 6
    assert peak == 2
    assert semaphore.running == 0
    stats = semaphore.get_stats()
    assert stats.total_acquisitions == 6
    assert stats.total_releases == 6


@pytest.mark.asyncio
async def test_waiters_are_served_in_arrival_order():
    semaphore = Semaphore(1)
    await semaphore.acquire()
    order = []

    async def waiter(name):
        await semaphore.acquire()
        order.append(name)
        semaphore.release()

    tasks = [asyncio.create_task(waiter(name)) for name in ("a", "b", "c")]
    await settle()
    assert semaphore.queue_length == 3

    semaphore.release()
    await asyncio.gather(*tasks)
    assert order == ["a", "b", "c"]
    assert semaphore.get_stats().max_queue_length == 3


@pytest.mark.asyncio
async def test_use_releases_when_task_raises():
    semaphore = Semaphore(1)

    async def failing():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await semaphore.use(failing)
    assert semaphore.running == 0


@pytest.mark.asyncio
async def test_growing_capacity_wakes_waiters():
    semaphore = Semaphore(1)
    await semaphore.acquire()
    waiters = [asyncio.create_task(semaphore.acquire()) for _ in range(2)]
    await settle()
    assert semaphore.queue_length == 2

    stats = semaphore.resize(3)
    await asyncio.gather(*waiters)

    assert stats.capacity == 3
    assert semaphore.running == 3
    assert semaphore.queue_length == 0


@pytest.mark.asyncio
async def test_shrinking_takes_effect_as_permits_return():
    semaphore = Semaphore(3)
    for _ in range(3):
        await semaphore.acquire()
    semaphore.resize(1)
    assert semaphore.running == 3

    blocked = asyncio.create_task(semaphore.acquire())
    await settle()
    semaphore.release()
    semaphore.release()
    await settle()
    assert not blocked.done()

    semaphore.release()
    await blocked
    assert semaphore.running == 1


def test_resize_below_one_is_rejected():
    semaphore = Semaphore(2)
    with pytest.raises(PipelineError) as exc_info:
        semaphore.resize(0)
    assert exc_info.value.kind is ErrorKind.VALIDATION
    assert semaphore.capacity == 2


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_leak_a_permit():
    semaphore = Semaphore(1)
    await semaphore.acquire()
    waiter = asyncio.create_task(semaphore.acquire())
    await settle()

    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    assert semaphore.queue_length == 0

    semaphore.release()
    assert semaphore.running == 0


@pytest.mark.asyncio
async def test_release_without_acquire_is_ignored():
    semaphore = Semaphore(1)
    semaphore.release()
    assert semaphore.running == 0
    assert semaphore.get_stats().total_releases == 0


@pytest.mark.asyncio
async def test_wait_time_is_measured_with_injected_clock(clock):
    semaphore = Semaphore(1, clock=clock)
    await semaphore.acquire()
    waiter = asyncio.create_task(semaphore.acquire())
    await settle()

    clock.advance(4.0)
    semaphore.release()
    await waiter

    stats = semaphore.get_stats()
    assert stats.total_acquisitions == 2
    assert stats.average_wait_time == pytest.approx(2.0)
    assert stats.utilization == 1.0
