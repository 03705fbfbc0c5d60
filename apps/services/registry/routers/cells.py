"""
Cell Claim Router

Endpoints:
    POST /cells/{index}/claim          - Claim a cell (X-Claimant header)
    POST /cells/{index}/assisted-claim - Operator claim on behalf of a beneficiary
    GET  /cells/{index}                - Claim state of one cell
    GET  /supply                       - Claimed count and capacity
    GET  /claims                       - Claim log page, in claim order

Handlers are plain `def` so FastAPI runs the blocking SQLite calls in its
threadpool. Claim rejections raise ClaimError and are turned into JSON by the
handler registered in app.py.
"""

from fastapi import APIRouter, Depends, Header, Query

from apps.services.registry.dependencies import get_store
from millionbase.core.models import (
    AssistedClaimRequest,
    CellState,
    ClaimPage,
    ClaimRecord,
    SupplyStatus,
)
from millionbase.registry.store import RegistryStore

router = APIRouter(tags=["cells"])


@router.post("/cells/{index}/claim", response_model=ClaimRecord)
def claim_cell(
    index: int,
    claimant: str = Header(..., alias="X-Claimant", min_length=1),
    store: RegistryStore = Depends(get_store),
) -> ClaimRecord:
    """Claim `index` for the caller identified by X-Claimant."""
    return store.claim(index, claimant)


@router.post("/cells/{index}/assisted-claim", response_model=ClaimRecord)
def assisted_claim_cell(
    index: int,
    body: AssistedClaimRequest,
    operator: str = Header(default="", alias="X-Operator"),
    store: RegistryStore = Depends(get_store),
) -> ClaimRecord:
    """Operator-issued claim (giveaways). Same rules as a normal claim."""
    return store.assisted_claim(index, body.beneficiary, operator)


@router.get("/cells/{index}", response_model=CellState)
def get_cell(index: int, store: RegistryStore = Depends(get_store)) -> CellState:
    record = store.get_record(index)
    return CellState(
        cell_index=index,
        claimed=record is not None,
        claimant=record.claimant if record else None,
    )


@router.get("/supply", response_model=SupplyStatus)
def get_supply(store: RegistryStore = Depends(get_store)) -> SupplyStatus:
    return store.supply()


@router.get("/claims", response_model=ClaimPage)
def list_claims(
    after: int = Query(default=0, ge=0, description="Return claims with order greater than this"),
    limit: int = Query(default=500, ge=1, le=5000, description="Maximum number of claims"),
    store: RegistryStore = Depends(get_store),
) -> ClaimPage:
    claims = list(store.iter_events(after=after, limit=limit))
    return ClaimPage(claims=claims, last_order=claims[-1].order if claims else after)
