"""
Registry Application Lifespan Handler

Startup: configure logging, open the registry store, wire the event bus.
Shutdown: close the store.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from apps.services.registry.dependencies import get_store, initialize_all, reset_dependencies
from millionbase.core.logging_config import get_logger, setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ==========================================================================
    # STARTUP
    # ==========================================================================

    setup_logging(service_name="registry")
    registry_logger = get_logger("registry")
    registry_logger.info("Registry starting...")

    try:
        initialize_all()
    except Exception as e:
        registry_logger.error(f"Failed to initialize registry store: {e}")
        raise

    supply = get_store().supply()
    registry_logger.info(
        f"Registry ready: {supply.total_claimed}/{supply.capacity} claimed"
        + (" (SOLD OUT)" if supply.sold_out else "")
    )

    yield

    # ==========================================================================
    # SHUTDOWN
    # ==========================================================================

    registry_logger.info("Registry shutting down...")
    reset_dependencies()
