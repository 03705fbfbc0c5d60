"""
In-process claim event stream.

RegistryStore calls `ClaimEventBus.publish` after every committed claim (from
whatever thread ran the claim). Each subscriber owns a bounded asyncio.Queue
on its own event loop; publishing hops onto that loop with
`call_soon_threadsafe`, so the store never blocks on a slow reader.

A subscriber that falls behind loses events and is flagged `lagged`; it can
always catch up from `RegistryStore.iter_events(after=...)`.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import AsyncIterator, List, Optional

from millionbase.core.models import ClaimRecord
from millionbase.registry.store import EVENT_PAGE_SIZE, RegistryStore

logger = logging.getLogger(__name__)


class ClaimSubscription:
    """One reader of the claim stream. Use as an async context manager."""

    def __init__(self, bus: "ClaimEventBus", max_queue: int):
        self._bus = bus
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[ClaimRecord] = asyncio.Queue(maxsize=max_queue)
        self.dropped = 0
        self.closed = False

    @property
    def lagged(self) -> bool:
        return self.dropped > 0

    async def get(self, timeout: Optional[float] = None) -> Optional[ClaimRecord]:
        """Next event, or None when `timeout` elapses first."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    async def __aiter__(self) -> AsyncIterator[ClaimRecord]:
        while not self.closed:
            yield await self._queue.get()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus._unsubscribe(self)

    async def __aenter__(self) -> "ClaimSubscription":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Called by the bus

    def _offer(self, record: ClaimRecord) -> None:
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"[ClaimEventBus] Subscriber queue full, dropped claim order={record.order} "
                f"(dropped={self.dropped})"
            )

    def _deliver(self, record: ClaimRecord) -> bool:
        try:
            self._loop.call_soon_threadsafe(self._offer, record)
            return True
        except RuntimeError:
            # Event loop already closed
            return False


class ClaimEventBus:
    def __init__(self, max_queue: int = 1000):
        self.max_queue = max_queue
        self._lock = threading.Lock()
        self._subscribers: List[ClaimSubscription] = []
        self.published = 0

    def subscribe(self) -> ClaimSubscription:
        """Create a subscription bound to the running event loop."""
        sub = ClaimSubscription(self, self.max_queue)
        with self._lock:
            self._subscribers.append(sub)
        logger.debug(f"[ClaimEventBus] Subscriber added (total={len(self._subscribers)})")
        return sub

    def publish(self, record: ClaimRecord) -> None:
        """Fan a committed claim out to every subscriber. Thread-safe."""
        with self._lock:
            subscribers = list(self._subscribers)
            self.published += 1
        for sub in subscribers:
            if not sub._deliver(record):
                sub.close()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def _unsubscribe(self, sub: ClaimSubscription) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)


async def follow_claims(
    store: RegistryStore,
    bus: Optional[ClaimEventBus],
    after: int = 0,
    page_size: int = EVENT_PAGE_SIZE,
) -> AsyncIterator[ClaimRecord]:
    """
    Replay committed claims with order > `after`, then follow `bus` live.

    The subscription is opened before the replay so nothing committed in
    between is missed; duplicates are filtered by order. The replay is read
    from the store one page at a time. When the subscriber lags, the gap is
    refilled the same way.
    """
    sub = bus.subscribe() if bus is not None else None
    last = after
    try:
        async for record in _replay(store, last, page_size):
            last = record.order
            yield record
        if sub is None:
            return
        async for record in sub:
            if sub.lagged:
                sub.dropped = 0
                async for missed in _replay(store, last, page_size):
                    last = missed.order
                    yield missed
            if record.order > last:
                last = record.order
                yield record
    finally:
        if sub is not None:
            sub.close()


async def _replay(store: RegistryStore, after: int, page_size: int) -> AsyncIterator[ClaimRecord]:
    while True:
        page = await _backlog(store, after, page_size)
        for record in page:
            after = record.order
            yield record
        if len(page) < page_size:
            return


async def _backlog(store: RegistryStore, after: int, limit: int) -> List[ClaimRecord]:
    return await asyncio.to_thread(lambda: list(store.iter_events(after=after, limit=limit, page_size=limit)))
