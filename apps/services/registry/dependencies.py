"""
Registry Service Dependencies

Singleton instances with lazy initialization for the registry service.
Routers receive them through FastAPI's Depends(); tests and embedders can
swap the store with set_store().
"""

import logging
from typing import Optional

from millionbase.core.config import get_settings
from millionbase.registry.access import OperatorAllowList
from millionbase.registry.events import ClaimEventBus
from millionbase.registry.store import RegistryStore

logger = logging.getLogger("uvicorn.error")

# =============================================================================
# Private Singleton Storage
# =============================================================================

_store: Optional[RegistryStore] = None
_event_bus: Optional[ClaimEventBus] = None


# =============================================================================
# Event Bus
# =============================================================================


def get_event_bus() -> ClaimEventBus:
    """Get the claim event bus singleton."""
    global _event_bus
    if _event_bus is None:
        settings = get_settings().registry
        _event_bus = ClaimEventBus(max_queue=settings.event_queue_size)
        logger.info("[Dependencies] Claim event bus initialized")
    return _event_bus


# =============================================================================
# Registry Store
# =============================================================================


def get_store() -> RegistryStore:
    """Get the registry store singleton, wired to publish onto the event bus."""
    global _store
    if _store is None:
        settings = get_settings().registry
        store = RegistryStore(
            settings.db_path,
            capacity=settings.capacity,
            operators=OperatorAllowList(settings.operator_ids),
            busy_timeout=settings.busy_timeout,
        )
        set_store(store)
        logger.info(
            f"[Dependencies] Registry store initialized at {settings.db_path} "
            f"(capacity={store.capacity()}, operators={len(store.operators)})"
        )
    return _store


def set_store(store: RegistryStore) -> None:
    """Install `store` as the singleton and connect it to the event bus."""
    global _store
    if _store is not None and _store is not store:
        _store.remove_listener(get_event_bus().publish)
    _store = store
    store.add_listener(get_event_bus().publish)


# =============================================================================
# Lifecycle
# =============================================================================


def initialize_all() -> None:
    """Initialize every singleton in dependency order."""
    get_event_bus()
    get_store()


def reset_dependencies(close: bool = True) -> None:
    """Drop all singletons, closing the store unless told otherwise."""
    global _store, _event_bus
    if _store is not None:
        if _event_bus is not None:
            _store.remove_listener(_event_bus.publish)
        if close:
            _store.close()
    _store = None
    _event_bus = None
