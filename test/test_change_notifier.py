"""
Refetch-on-change fan-out.
"""
import asyncio
import gc
import threading

import pytest

from services.change_notifier import ChangeNotifier, format_sse


class CountingLoader:
    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return [{"id": f"rec-{self.calls}"}]


async def test_every_subscriber_gets_a_fresh_snapshot():
    loader = CountingLoader()
    notifier = ChangeNotifier(queue_size=4)
    notifier.register("issues", loader)
    first = notifier.subscribe("issues")
    second = notifier.subscribe("issues")

    delivered = await notifier.notify("issues", {"type": "created", "id": "x"})

    assert delivered == 2
    assert loader.calls == 1
    assert first.get_nowait() == [{"id": "rec-1"}]
    assert second.get_nowait() == [{"id": "rec-1"}]


async def test_no_refetch_without_subscribers():
    loader = CountingLoader()
    notifier = ChangeNotifier()
    notifier.register("issues", loader)
    assert await notifier.notify("issues") == 0
    assert loader.calls == 0


async def test_slow_subscriber_keeps_newest_snapshots():
    loader = CountingLoader()
    notifier = ChangeNotifier(queue_size=2)
    notifier.register("issues", loader)
    queue = notifier.subscribe("issues")
    for _ in range(5):
        await notifier.notify("issues")
    assert queue.qsize() == 2
    assert queue.get_nowait() == [{"id": "rec-4"}]
    assert queue.get_nowait() == [{"id": "rec-5"}]


async def test_unsubscribe_and_unknown_collection():
    notifier = ChangeNotifier()
    notifier.register("issues", CountingLoader())
    queue = notifier.subscribe("issues")
    notifier.unsubscribe("issues", queue)
    assert notifier.subscriber_count("issues") == 0
    with pytest.raises(KeyError):
        notifier.subscribe("parcels")


async def test_failed_refetch_is_not_raised():
    def broken():
        raise RuntimeError("database down")

    notifier = ChangeNotifier()
    notifier.register("issues", broken)
    queue = notifier.subscribe("issues")
    assert await notifier.notify("issues") == 0
    assert queue.empty()


async def test_notify_soon_runs_in_background():
    loader = CountingLoader()
    notifier = ChangeNotifier()
    notifier.register("issues", loader)
    queue = notifier.subscribe("issues")
    notifier.notify_soon("issues", {"type": "deleted"})
    snapshot = await asyncio.wait_for(queue.get(), timeout=2)
    assert snapshot == [{"id": "rec-1"}]


async def test_scheduled_refetch_is_held_until_done():
    loader = CountingLoader()
    notifier = ChangeNotifier()
    notifier.register("issues", loader)
    queue = notifier.subscribe("issues")
    notifier.notify_soon("issues", {"type": "created"})
    assert notifier.pending_count() == 1

    gc.collect()
    assert await asyncio.wait_for(queue.get(), timeout=2) == [{"id": "rec-1"}]
    await asyncio.sleep(0.05)
    assert notifier.pending_count() == 0


async def test_no_task_without_subscribers():
    notifier = ChangeNotifier()
    notifier.register("issues", CountingLoader())
    notifier.notify_soon("issues")
    assert notifier.pending_count() == 0


async def test_aclose_cancels_pending_refetches():
    release = threading.Event()

    def slow_loader():
        release.wait(5)
        return []

    notifier = ChangeNotifier()
    notifier.register("issues", slow_loader)
    queue = notifier.subscribe("issues")
    notifier.notify_soon("issues")
    await asyncio.sleep(0.05)

    await notifier.aclose()
    release.set()

    assert notifier.pending_count() == 0
    assert queue.empty()


def test_sse_format():
    assert format_sse("snapshot", {"issues": []}) == 'event: snapshot\ndata: {"issues": []}\n\n'
