"""
Health Check Router

Endpoints:
    GET /healthz - Liveness plus supply summary
    GET /health  - Alias for /healthz
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from apps.services.registry.dependencies import get_event_bus, get_store
from millionbase.registry.events import ClaimEventBus
from millionbase.registry.store import RegistryStore

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz(
    store: RegistryStore = Depends(get_store),
    bus: ClaimEventBus = Depends(get_event_bus),
) -> Dict[str, Any]:
    supply = store.supply()
    return {
        "status": "healthy",
        "total_claimed": supply.total_claimed,
        "capacity": supply.capacity,
        "sold_out": supply.sold_out,
        "event_subscribers": bus.subscriber_count,
    }


@router.get("/health")
def health(
    store: RegistryStore = Depends(get_store),
    bus: ClaimEventBus = Depends(get_event_bus),
) -> Dict[str, Any]:
    """Alias for /healthz."""
    return healthz(store, bus)
