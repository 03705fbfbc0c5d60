"""
Push-based alternative to polling: follow the registry's claim event stream
and confirm every claimed cell in the session cache as it happens.

The follower resumes from the last order it saw, so a dropped connection
costs nothing but the reconnect delay.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from millionbase.client.claim_cache import ClaimCache
from millionbase.client.gateway import RegistryGateway

logger = logging.getLogger(__name__)


class ClaimEventFollower:
    def __init__(
        self,
        gateway: RegistryGateway,
        cache: ClaimCache,
        *,
        after: int = 0,
        initial_backoff: float = 0.5,
        max_backoff: float = 30.0,
    ):
        self.gateway = gateway
        self.cache = cache
        self.last_order = after
        self.events_seen = 0
        self.reconnects = 0
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="claim-event-follower")
        logger.info(f"[EventFollower] Following claim events after order={self.last_order}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"[EventFollower] Stopped at order={self.last_order} ({self.events_seen} events)")

    async def _run(self) -> None:
        backoff = self._initial_backoff
        while True:
            try:
                async for record in self.gateway.stream_events(after=self.last_order):
                    if record.order <= self.last_order:
                        continue
                    self.cache.confirm_claimed(record.cell_index)
                    self.last_order = record.order
                    self.events_seen += 1
                    backoff = self._initial_backoff
                # Stream ended cleanly (server shutdown or in-process replay only)
                logger.debug(f"[EventFollower] Stream ended at order={self.last_order}")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    f"[EventFollower] Stream error after order={self.last_order}: "
                    f"{type(e).__name__}: {e}; retrying in {backoff:.1f}s"
                )
            self.reconnects += 1
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, self._max_backoff)
