"""
Client session: the surface a grid renderer talks to.

    async with ClaimSession(gateway) as session:
        session.request_resolve(i)      # lazy backfill for cells about to render
        session.view(i)                 # claimed by anyone, as far as we know
        outcome = await session.submit_claim(i)

A successful claim marks the cell mine in the cache right away, then checks
the registry and refreshes the supply counter. Lookups and reconciliation
never fail a claim that the registry already accepted.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from millionbase.client.claim_cache import ClaimCache
from millionbase.client.event_follower import ClaimEventFollower
from millionbase.client.gateway import RegistryGateway
from millionbase.client.sync_fetcher import SyncFetcher
from millionbase.core.config import get_settings
from millionbase.core.exceptions import ClaimError, SubmissionError
from millionbase.core.models import (
    ClaimOutcome,
    ClaimReason,
    SubmitStatus,
    SupplyStatus,
    Verdict,
)
from millionbase.registry.cap_policy import decide

logger = logging.getLogger(__name__)


def _is_int(index: Any) -> bool:
    return isinstance(index, int) and not isinstance(index, bool)


class ClaimSession:
    def __init__(
        self,
        gateway: RegistryGateway,
        *,
        cache: Optional[ClaimCache] = None,
        max_concurrent_lookups: Optional[int] = None,
        unclaimed_recheck_seconds: Optional[float] = None,
        unclaimed_memory_size: Optional[int] = None,
        follow_events: Optional[bool] = None,
        close_gateway: bool = True,
    ):
        settings = get_settings().client
        self.gateway = gateway
        self.cache = cache or ClaimCache()
        self.fetcher = SyncFetcher(
            gateway,
            self.cache,
            max_concurrent=max_concurrent_lookups or settings.max_concurrent_lookups,
            unclaimed_recheck_seconds=(
                settings.unclaimed_recheck_seconds
                if unclaimed_recheck_seconds is None
                else unclaimed_recheck_seconds
            ),
            unclaimed_memory_size=unclaimed_memory_size or settings.unclaimed_memory_size,
        )
        follow = settings.follow_events if follow_events is None else follow_events
        self.follower = ClaimEventFollower(gateway, self.cache) if follow else None
        self._close_gateway = close_gateway
        self._supply: Optional[SupplyStatus] = None
        self._sold_out = False
        self._pending: Dict[int, asyncio.Task] = {}
        self._closed = False

    @property
    def claimant(self) -> str:
        return self.gateway.claimant

    # ------------------------------------------------------------------ #
    # Lifecycle

    async def start(self) -> "ClaimSession":
        try:
            await self.refresh_supply()
        except Exception as e:
            logger.warning(f"[ClaimSession] Supply unavailable at start: {type(e).__name__}: {e}")
        if self.follower is not None:
            self.follower.start()
        return self

    async def close(self) -> None:
        """Tear down: cancel in-flight claims and lookups, stop following events."""
        if self._closed:
            return
        self._closed = True
        for task in list(self._pending.values()):
            if task is not asyncio.current_task():
                task.cancel()
        if self.follower is not None:
            await self.follower.stop()
        await self.fetcher.close()
        if self._close_gateway:
            await self.gateway.close()
        logger.info(f"[ClaimSession] Closed for {self.claimant}: {self.cache.as_dict()}")

    async def __aenter__(self) -> "ClaimSession":
        return await self.start()

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Rendering boundary

    def view(self, index: int) -> bool:
        return self.cache.view(index)

    def view_range(self, start: int, stop: int) -> List[bool]:
        return self.cache.view_range(start, stop)

    def request_resolve(self, index: int) -> None:
        """Ask for a background lookup of `index`. Never blocks and never raises; dropped off the event loop."""
        if self._closed or self.precheck(index) is Verdict.REJECT_OUT_OF_RANGE:
            return
        self.fetcher.request_resolve(index)

    def is_pending(self, index: int) -> bool:
        return index in self._pending

    def my_cells(self) -> Set[int]:
        return self.cache.mine()

    async def submit_claim(self, index: int) -> ClaimOutcome:
        """
        Claim `index` for this session's claimant.

        Returns PENDING when a claim for the same cell is already in flight in
        this session, SUCCESS with the committed record, or FAILURE with the
        registry's reason (or SUBMISSION_FAILED and the raw transport error).
        """
        if _is_int(index) and index in self._pending:
            return ClaimOutcome(
                cell_index=index,
                status=SubmitStatus.PENDING,
                message="A claim for this cell is already in flight",
            )

        verdict = self.precheck(index)
        if not verdict.allowed:
            logger.info(f"[ClaimSession] Pre-check rejected cell {index!r}: {verdict.value}")
            return ClaimOutcome(
                cell_index=index if _is_int(index) else None,
                status=SubmitStatus.FAILURE,
                reason=verdict.reason,
                message=self._verdict_message(index, verdict),
            )

        self._pending[index] = asyncio.current_task()
        try:
            record = await self.gateway.claim(index)
        except ClaimError as e:
            self._apply_rejection(e)
            return ClaimOutcome(
                cell_index=index,
                status=SubmitStatus.FAILURE,
                reason=e.reason,
                message=e.message,
            )
        except SubmissionError as e:
            logger.warning(f"[ClaimSession] Submission of cell {index} failed: {e.message}")
            return self._submission_failure(index, e.message)
        except asyncio.CancelledError:
            # Registry answer never arrived here: no optimistic update
            logger.info(f"[ClaimSession] Claim of cell {index} cancelled")
            raise
        except Exception as e:
            logger.error(f"[ClaimSession] Unexpected error claiming cell {index}: {e}", exc_info=True)
            return self._submission_failure(index, f"{type(e).__name__}: {e}")
        finally:
            self._pending.pop(index, None)

        self.cache.mark_mine(index)
        await self._reconcile(index)
        return ClaimOutcome(
            cell_index=index,
            status=SubmitStatus.SUCCESS,
            message=f"Claimed cell {index}",
            record=record,
        )

    # ------------------------------------------------------------------ #
    # Supply

    @property
    def supply(self) -> Optional[SupplyStatus]:
        return self._supply

    @property
    def sold_out(self) -> bool:
        return self._sold_out or (self._supply is not None and self._supply.sold_out)

    async def refresh_supply(self) -> SupplyStatus:
        supply = await self.gateway.supply()
        # Claimed count only grows; ignore stale answers that arrive out of order
        if self._supply is None or supply.total_claimed >= self._supply.total_claimed:
            self._supply = supply
        return self._supply

    def precheck(self, index: int) -> Verdict:
        """Advisory verdict from the last known supply. The registry re-checks for real."""
        if self._supply is None:
            # Capacity unknown: only reject what no registry could accept
            if not _is_int(index) or index < 0:
                return Verdict.REJECT_OUT_OF_RANGE
            return Verdict.REJECT_CAP_REACHED if self._sold_out else Verdict.ALLOW
        count = self._supply.capacity if self._sold_out else self._supply.total_claimed
        return decide(count, self._supply.capacity, index)

    # ------------------------------------------------------------------ #
    # Internal helpers

    async def _reconcile(self, index: int) -> None:
        try:
            claimed = await self.gateway.is_claimed(index)
            self.cache.record_lookup(index, claimed)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"[ClaimSession] Post-claim confirmation of cell {index} failed: {e}")
        try:
            await self.refresh_supply()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"[ClaimSession] Supply refresh after claim failed: {e}")

    def _apply_rejection(self, error: ClaimError) -> None:
        if error.reason is ClaimReason.ALREADY_CLAIMED:
            # The rejection itself proves the cell is taken
            self.cache.confirm_claimed(error.cell_index)
        elif error.reason is ClaimReason.CAP_REACHED:
            self._sold_out = True
        logger.info(f"[ClaimSession] Claim of cell {error.cell_index} rejected: {error.reason.value}")

    @staticmethod
    def _submission_failure(index: int, message: str) -> ClaimOutcome:
        return ClaimOutcome(
            cell_index=index,
            status=SubmitStatus.FAILURE,
            reason=ClaimReason.SUBMISSION_FAILED,
            message=message,
        )

    @staticmethod
    def _verdict_message(index: int, verdict: Verdict) -> str:
        if verdict is Verdict.REJECT_CAP_REACHED:
            return "All cells have been claimed"
        return f"Cell index {index!r} is out of range"
