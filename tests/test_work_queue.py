"""
Tests for the deduplicating work queue.
"""
import asyncio

import pytest

from vdb_controller.core.work_queue import WorkQueue
from vdb_controller.models.resources import ObjectKey

KEY = ObjectKey("ns", "app1")
OTHER = ObjectKey("ns", "app2")


@pytest.mark.asyncio
async def test_repeated_adds_coalesce():
    queue = WorkQueue()
    queue.add(KEY)
    queue.add(KEY)
    queue.add(OTHER)

    assert len(queue) == 2
    assert await queue.get() == KEY
    assert await queue.get() == OTHER
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_key_in_flight_is_not_handed_out_twice():
    queue = WorkQueue()
    queue.add(KEY)
    key = await queue.get()

    # Notification arrives while the key is processing
    queue.add(KEY)
    queue.add(KEY)
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(queue.get(), timeout=0.05)

    queue.done(key)
    assert await asyncio.wait_for(queue.get(), timeout=1) == KEY
    queue.done(KEY)
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_done_without_new_adds_does_not_requeue():
    queue = WorkQueue()
    queue.add(KEY)
    key = await queue.get()
    queue.done(key)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(queue.get(), timeout=0.05)


@pytest.mark.asyncio
async def test_rate_limited_delay_grows_and_caps():
    queue = WorkQueue(base_delay=0.01, max_delay=0.05)

    delays = [queue.add_rate_limited(KEY) for _ in range(5)]

    assert delays == [0.01, 0.02, 0.04, 0.05, 0.05]
    assert queue.num_requeues(KEY) == 5
    queue.forget(KEY)
    assert queue.num_requeues(KEY) == 0
    assert queue.add_rate_limited(KEY) == 0.01


@pytest.mark.asyncio
async def test_add_after_delivers_once_delay_elapsed():
    queue = WorkQueue()
    queue.add_after(KEY, 0.02)

    assert len(queue) == 0
    assert await asyncio.wait_for(queue.get(), timeout=1) == KEY


@pytest.mark.asyncio
async def test_add_after_keeps_earliest_deadline():
    queue = WorkQueue()
    loop = asyncio.get_running_loop()
    start = loop.time()

    queue.add_after(KEY, 10)
    queue.add_after(KEY, 0.02)
    queue.add_after(KEY, 5)

    assert await asyncio.wait_for(queue.get(), timeout=1) == KEY
    assert loop.time() - start < 1


@pytest.mark.asyncio
async def test_shutdown_releases_all_waiting_workers():
    queue = WorkQueue()
    waiters = [asyncio.create_task(queue.get()) for _ in range(3)]
    await asyncio.sleep(0)

    queue.shut_down()

    assert await asyncio.wait_for(asyncio.gather(*waiters), timeout=1) == [None, None, None]
    assert queue.shutting_down


@pytest.mark.asyncio
async def test_adds_after_shutdown_are_ignored():
    queue = WorkQueue()
    queue.add_after(KEY, 0.01)
    queue.shut_down()
    queue.add(OTHER)

    await asyncio.sleep(0.05)
    assert await queue.get() is None
    assert len(queue) == 0
