"""
Lazy backfill of the claim cache.

The rendering layer calls `request_resolve(i)` for every cell about to be
shown. Most of those calls must be free: at most one lookup per cell is ever
in flight, cells already confirmed claimed are never looked up again, and a
cell just seen unclaimed waits out a short cool-down before it is asked about
again. Lookups run as background tasks bounded by a semaphore, and their
results land in the cache only through `ClaimCache.record_lookup`.

Lookup failures are logged and dropped. The cell simply stays unknown and is
eligible again on its next access.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Optional

from millionbase.client.claim_cache import ClaimCache
from millionbase.client.gateway import RegistryGateway
from millionbase.core.exceptions import TransientLookupError

logger = logging.getLogger(__name__)


@dataclass
class FetcherStats:
    scheduled: int = 0
    deduplicated: int = 0
    skipped_confirmed: int = 0
    skipped_cooldown: int = 0
    claimed: int = 0
    unclaimed: int = 0
    failures: int = 0
    cancelled: int = 0


class SyncFetcher:
    def __init__(
        self,
        gateway: RegistryGateway,
        cache: ClaimCache,
        *,
        max_concurrent: int = 32,
        unclaimed_recheck_seconds: float = 5.0,
        unclaimed_memory_size: int = 10_000,
    ):
        self.gateway = gateway
        self.cache = cache
        self.unclaimed_recheck_seconds = unclaimed_recheck_seconds
        self.unclaimed_memory_size = unclaimed_memory_size
        self.stats = FetcherStats()
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._in_flight: Dict[int, asyncio.Task] = {}
        # index -> monotonic time it was last seen unclaimed (LRU bounded)
        self._last_unclaimed: "OrderedDict[int, float]" = OrderedDict()
        self._closed = False

    # ------------------------------------------------------------------ #
    # Public API

    def request_resolve(self, index: int) -> None:
        """
        Schedule a background lookup for `index` if one is worthwhile. Never raises.

        Called without a running event loop, the request is dropped.
        """
        self._schedule(index)

    async def resolve(self, index: int) -> Optional[bool]:
        """
        Look `index` up (sharing any lookup already in flight) and wait for it.

        Returns True/False from the registry, True straight away for cells
        already confirmed, or None when the lookup failed or was cancelled.
        """
        if self.cache.is_confirmed(index):
            return True
        task = self._schedule(index, force=True)
        if task is None:
            return None
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return None
            raise

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def is_in_flight(self, index: int) -> bool:
        return index in self._in_flight

    async def close(self) -> None:
        """Cancel outstanding lookups. Cancelled lookups never touch the cache."""
        self._closed = True
        tasks = list(self._in_flight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._in_flight.clear()

    # ------------------------------------------------------------------ #
    # Internal helpers

    def _schedule(self, index: int, *, force: bool = False) -> Optional[asyncio.Task]:
        if self._closed:
            return None
        existing = self._in_flight.get(index)
        if existing is not None:
            self.stats.deduplicated += 1
            return existing
        if not self.cache.needs_lookup(index):
            self.stats.skipped_confirmed += 1
            return None
        if not force and self._cooling_down(index):
            self.stats.skipped_cooldown += 1
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Lookups run on the session's loop; off-loop requests are dropped
            logger.debug(f"[SyncFetcher] No running event loop, dropped lookup of cell {index}")
            return None

        task = loop.create_task(self._lookup(index), name=f"resolve-cell-{index}")
        self._in_flight[index] = task
        task.add_done_callback(lambda t, i=index: self._finished(i, t))
        self.stats.scheduled += 1
        return task

    async def _lookup(self, index: int) -> Optional[bool]:
        async with self._semaphore:
            try:
                claimed = await self.gateway.is_claimed(index)
            except TransientLookupError as e:
                self.stats.failures += 1
                logger.debug(f"[SyncFetcher] {e}")
                return None
            except Exception as e:
                self.stats.failures += 1
                logger.warning(
                    f"[SyncFetcher] Lookup of cell {index} failed: {type(e).__name__}: {e}"
                )
                return None

        self.cache.record_lookup(index, claimed)
        if claimed:
            self.stats.claimed += 1
            self._last_unclaimed.pop(index, None)
        else:
            self.stats.unclaimed += 1
            self._remember_unclaimed(index)
        return claimed

    def _finished(self, index: int, task: asyncio.Task) -> None:
        if self._in_flight.get(index) is task:
            del self._in_flight[index]
        if task.cancelled():
            self.stats.cancelled += 1

    def _cooling_down(self, index: int) -> bool:
        if self.unclaimed_recheck_seconds <= 0:
            return False
        seen = self._last_unclaimed.get(index)
        if seen is None:
            return False
        if time.monotonic() - seen < self.unclaimed_recheck_seconds:
            return True
        del self._last_unclaimed[index]
        return False

    def _remember_unclaimed(self, index: int) -> None:
        if self.unclaimed_recheck_seconds <= 0:
            return
        self._last_unclaimed[index] = time.monotonic()
        self._last_unclaimed.move_to_end(index)
        while len(self._last_unclaimed) > self.unclaimed_memory_size:
            self._last_unclaimed.popitem(last=False)
