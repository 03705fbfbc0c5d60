"""
Claim Event Router

Endpoints:
    GET /events?after=N - SSE stream of committed claims (event name "claim",
                          id = claim order). Replays everything after N, then
                          stays open for live claims.
"""

import logging
from typing import AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sse_starlette.sse import EventSourceResponse

from apps.services.registry.dependencies import get_event_bus, get_store
from millionbase.registry.events import ClaimEventBus, follow_claims
from millionbase.registry.store import RegistryStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


async def claim_event_stream(
    store: RegistryStore,
    bus: Optional[ClaimEventBus],
    after: int = 0,
) -> AsyncIterator[Dict[str, str]]:
    """SSE payloads for every claim after `after`, replayed then live."""
    sent = 0
    try:
        async for record in follow_claims(store, bus, after):
            sent += 1
            yield {
                "event": "claim",
                "id": str(record.order),
                "data": record.model_dump_json(),
            }
    finally:
        logger.info(f"[Events SSE] Subscriber disconnected after {sent} events")


@router.get("/events")
async def stream_claim_events(
    after: int = Query(default=0, ge=0),
    store: RegistryStore = Depends(get_store),
    bus: ClaimEventBus = Depends(get_event_bus),
):
    logger.info(f"[Events SSE] Subscriber connected (after={after})")
    return EventSourceResponse(claim_event_stream(store, bus, after))
