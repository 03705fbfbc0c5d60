"""
Registry FastAPI Application

Exposes the claim registry over HTTP: atomic claims, cell lookups, supply,
the claim log and a live SSE claim stream.

Structure:
    - dependencies.py: Singleton store and event bus with lazy initialization
    - lifespan.py: Startup/shutdown handlers
    - routers/: health, cells, events

Run:
    uvicorn apps.services.registry.app:app --port 8600
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from apps.services.registry.lifespan import lifespan
from apps.services.registry.routers import cells_router, events_router, health_router
from millionbase.core.exceptions import ClaimError
from millionbase.core.models import ClaimErrorBody, ClaimReason

CLAIM_ERROR_STATUS = {
    ClaimReason.OUT_OF_RANGE: 400,
    ClaimReason.NOT_AUTHORIZED: 403,
    ClaimReason.ALREADY_CLAIMED: 409,
    ClaimReason.CAP_REACHED: 410,
}

# =============================================================================
# Application Factory
# =============================================================================

app = FastAPI(
    title="MillionBase Registry",
    description="Claim registry for a fixed universe of cells",
    version="1.0.0",
    lifespan=lifespan,
)

# =============================================================================
# Middleware
# =============================================================================

# Browser grids read the registry directly
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# =============================================================================
# Error Handlers
# =============================================================================


@app.exception_handler(ClaimError)
async def claim_error_handler(request: Request, exc: ClaimError) -> JSONResponse:
    body = ClaimErrorBody(
        reason=exc.reason,
        message=exc.message,
        cell_index=exc.cell_index if isinstance(exc.cell_index, int) else None,
    )
    return JSONResponse(
        status_code=CLAIM_ERROR_STATUS.get(exc.reason, 400),
        content=body.model_dump(mode="json"),
    )


# =============================================================================
# Routers
# =============================================================================

app.include_router(health_router)
app.include_router(cells_router)
app.include_router(events_router)
