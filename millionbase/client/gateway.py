"""
Async boundary between a client session and the registry.

`RegistryGateway` is what ClaimSession, SyncFetcher and ClaimEventFollower
depend on. Two implementations ship:

- InProcessRegistry: wraps a RegistryStore living in this process
- RegistryClient (registry_client.py): talks to the registry service over HTTP
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional, Protocol, runtime_checkable

from millionbase.core.exceptions import NotAuthorizedError
from millionbase.core.models import ClaimRecord, SupplyStatus
from millionbase.registry.events import ClaimEventBus, follow_claims
from millionbase.registry.store import RegistryStore


@runtime_checkable
class RegistryGateway(Protocol):
    claimant: str

    async def claim(self, index: int) -> ClaimRecord: ...

    async def is_claimed(self, index: int) -> bool: ...

    async def supply(self) -> SupplyStatus: ...

    def stream_events(self, after: int = 0) -> AsyncIterator[ClaimRecord]: ...

    async def close(self) -> None: ...


class InProcessRegistry:
    """RegistryGateway over a local RegistryStore. Blocking SQLite calls run in worker threads."""

    def __init__(
        self,
        store: RegistryStore,
        claimant: str,
        *,
        bus: Optional[ClaimEventBus] = None,
        operator: Optional[str] = None,
    ):
        if not claimant:
            raise ValueError("claimant is required")
        self.store = store
        self.claimant = claimant
        self.operator = operator
        self.bus = bus

    async def claim(self, index: int) -> ClaimRecord:
        return await asyncio.to_thread(self.store.claim, index, self.claimant)

    async def assisted_claim(self, index: int, beneficiary: str) -> ClaimRecord:
        if not self.operator:
            raise NotAuthorizedError(index, self.operator)
        return await asyncio.to_thread(self.store.assisted_claim, index, beneficiary, self.operator)

    async def is_claimed(self, index: int) -> bool:
        return await asyncio.to_thread(self.store.is_claimed, index)

    async def supply(self) -> SupplyStatus:
        return await asyncio.to_thread(self.store.supply)

    async def stream_events(self, after: int = 0) -> AsyncIterator[ClaimRecord]:
        """Replay committed claims after `after`, then follow the bus if one is attached."""
        async for record in follow_claims(self.store, self.bus, after):
            yield record

    async def close(self) -> None:
        # The store outlives the sessions using it
        return None
