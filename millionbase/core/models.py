"""Pydantic models for MillionBase."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


# =============================================================================
# Enums
# =============================================================================

class ClaimReason(str, Enum):
    """Why a claim did not succeed."""

    OUT_OF_RANGE = "out_of_range"
    ALREADY_CLAIMED = "already_claimed"
    CAP_REACHED = "cap_reached"
    NOT_AUTHORIZED = "not_authorized"
    SUBMISSION_FAILED = "submission_failed"


class Verdict(str, Enum):
    """Advisory pre-flight decision from the cap policy."""

    ALLOW = "allow"
    REJECT_OUT_OF_RANGE = "reject_out_of_range"
    REJECT_CAP_REACHED = "reject_cap_reached"

    @property
    def allowed(self) -> bool:
        return self is Verdict.ALLOW

    @property
    def reason(self) -> Optional[ClaimReason]:
        """Claim reason matching a rejection, None for ALLOW."""
        return {
            Verdict.REJECT_OUT_OF_RANGE: ClaimReason.OUT_OF_RANGE,
            Verdict.REJECT_CAP_REACHED: ClaimReason.CAP_REACHED,
        }.get(self)


class SubmitStatus(str, Enum):
    """State of a claim submission as seen by the rendering layer."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


# =============================================================================
# Registry records
# =============================================================================

class ClaimRecord(BaseModel):
    """A committed claim. Never mutated once created."""

    model_config = ConfigDict(frozen=True)

    cell_index: int = Field(ge=0)
    claimant: str = Field(min_length=1)
    order: int = Field(ge=1, description="Position in the global claim sequence")
    claimed_at: float
    assisted_by: Optional[str] = None


class SupplyStatus(BaseModel):
    """Claimed count against the global cap."""

    model_config = ConfigDict(frozen=True)

    total_claimed: int = Field(ge=0)
    capacity: int = Field(ge=1)

    @computed_field
    @property
    def remaining(self) -> int:
        return max(self.capacity - self.total_claimed, 0)

    @computed_field
    @property
    def sold_out(self) -> bool:
        return self.total_claimed >= self.capacity


class CellState(BaseModel):
    """Read model for a single cell."""

    cell_index: int
    claimed: bool
    claimant: Optional[str] = None


class AssistedClaimRequest(BaseModel):
    """Body of an operator-issued claim."""

    beneficiary: str = Field(min_length=1)


class ClaimPage(BaseModel):
    """A page of the claim event log, in claim order."""

    claims: list[ClaimRecord] = Field(default_factory=list)
    last_order: int = 0


class ClaimErrorBody(BaseModel):
    """Error body returned by the registry service for claim rejections."""

    reason: ClaimReason
    message: str
    cell_index: Optional[int] = None


# =============================================================================
# Client outcomes
# =============================================================================

class ClaimOutcome(BaseModel):
    """Result of ClaimSession.submit_claim."""

    # None when the submitted index was not an integer at all
    cell_index: Optional[int] = None
    status: SubmitStatus
    reason: Optional[ClaimReason] = None
    message: str = ""
    record: Optional[ClaimRecord] = None

    @property
    def succeeded(self) -> bool:
        return self.status is SubmitStatus.SUCCESS

    @property
    def retryable(self) -> bool:
        """Only transport-level failures are worth another attempt."""
        return self.reason is ClaimReason.SUBMISSION_FAILED
