"""
Coarse change notification for record collections.

Any change to a collection, whatever it was, triggers a reload of the whole
collection and every subscriber receives the fresh snapshot. Event payloads
are never merged into client state.
"""
import asyncio
import json
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set

from starlette.requests import Request

from core.logger import logger

Loader = Callable[[], List[Dict[str, Any]]]


class ChangeNotifier:
    """In-process pub/sub keyed by collection name."""

    def __init__(self, queue_size: int = 8):
        self.queue_size = queue_size
        self._loaders: Dict[str, Loader] = {}
        self._subscribers: Dict[str, Set[asyncio.Queue]] = {}
        # Scheduled refetches; the loop only holds weak references to tasks
        self._pending: Set[asyncio.Task] = set()

    def register(self, collection: str, loader: Loader) -> None:
        """Set the blocking function that loads a full collection snapshot."""
        self._loaders[collection] = loader
        self._subscribers.setdefault(collection, set())

    def subscribe(self, collection: str) -> asyncio.Queue:
        if collection not in self._loaders:
            raise KeyError(f"Unknown collection: {collection}")
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[collection].add(queue)
        logger.debug(f"Subscriber added to {collection} ({len(self._subscribers[collection])} total)")
        return queue

    def unsubscribe(self, collection: str, queue: asyncio.Queue) -> None:
        self._subscribers.get(collection, set()).discard(queue)

    def subscriber_count(self, collection: str) -> int:
        return len(self._subscribers.get(collection, ()))

    async def snapshot(self, collection: str) -> List[Dict[str, Any]]:
        """Load the full collection off the event loop."""
        return await asyncio.to_thread(self._loaders[collection])

    @staticmethod
    def _offer(queue: asyncio.Queue, snapshot: List[Dict[str, Any]]) -> None:
        # A slow consumer only needs the newest snapshot
        while True:
            try:
                queue.put_nowait(snapshot)
                return
            except asyncio.QueueFull:
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass

    async def notify(self, collection: str, event: Optional[Dict[str, Any]] = None) -> int:
        """
        Refetch a collection and fan the snapshot out to its subscribers.

        Args:
            collection: Collection that changed
            event: Description of the change; only logged

        Returns:
            Number of subscribers that received the snapshot
        """
        subscribers = list(self._subscribers.get(collection, ()))
        if not subscribers:
            return 0
        logger.debug(f"Change on {collection}: {event or {}}; refetching for {len(subscribers)} subscriber(s)")
        try:
            snapshot = await self.snapshot(collection)
        except Exception as e:
            logger.error(f"Refetch of {collection} failed: {e}", exc_info=True)
            return 0
        for queue in subscribers:
            self._offer(queue, snapshot)
        return len(subscribers)

    def notify_soon(self, collection: str, event: Optional[Dict[str, Any]] = None) -> None:
        """Schedule notify() without waiting for the refetch."""
        if not self.subscriber_count(collection):
            return
        task = asyncio.get_running_loop().create_task(self.notify(collection, event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def pending_count(self) -> int:
        return len(self._pending)

    async def aclose(self) -> None:
        """Cancel refetches that have not finished yet (application shutdown)."""
        tasks = list(self._pending)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._pending.clear()


def format_sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


async def snapshot_events(
    request: Request,
    notifier: ChangeNotifier,
    collection: str,
    transform: Optional[Callable[[List[Dict[str, Any]]], Any]] = None,
    keepalive_seconds: float = 25,
) -> AsyncIterator[str]:
    """
    Server-Sent Events for one collection.

    Sends the current snapshot on connect, then a fresh snapshot after every
    change, with ping comments while idle. Stops when the client disconnects.
    """
    transform = transform or (lambda records: records)
    queue = notifier.subscribe(collection)
    try:
        yield ": connected\n\n"
        yield format_sse("snapshot", transform(await notifier.snapshot(collection)))
        while True:
            if await request.is_disconnected():
                break
            try:
                snapshot = await asyncio.wait_for(queue.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield format_sse("ping", {"ts": int(time.time())})
                continue
            yield format_sse("snapshot", transform(snapshot))
    finally:
        notifier.unsubscribe(collection, queue)
        logger.debug(f"Subscriber left {collection}")
