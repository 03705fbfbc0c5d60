"""
Registry Router Modules

Router Organization:
    - health: Health check endpoints
    - cells: Claim, lookup, supply and claim log endpoints
    - events: SSE claim event stream
"""

from apps.services.registry.routers.cells import router as cells_router
from apps.services.registry.routers.events import router as events_router
from apps.services.registry.routers.health import router as health_router

__all__ = [
    "cells_router",
    "events_router",
    "health_router",
]
