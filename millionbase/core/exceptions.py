"""Custom exceptions for MillionBase."""

from typing import Any, Optional

from millionbase.core.models import ClaimReason


class MillionBaseError(Exception):
    """Base exception for MillionBase."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ClaimError(MillionBaseError):
    """
    Semantic rejection of a claim by the registry.

    These are the only failures meaningful to an end user. None of them is
    retried automatically.
    """

    reason: ClaimReason

    def __init__(
        self,
        cell_index: Any,
        message: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message or f"Cell {cell_index}: {self.reason.value}", context)
        self.cell_index = cell_index


class OutOfRangeError(ClaimError):
    """Index outside [0, capacity). A caller bug."""

    reason = ClaimReason.OUT_OF_RANGE

    def __init__(
        self,
        cell_index: Any,
        capacity: Optional[int] = None,
        message: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        if message is None:
            bound = f"[0, {capacity})" if capacity is not None else "the registry"
            message = f"Cell index {cell_index!r} is outside {bound}"
        super().__init__(cell_index, message, context)
        self.capacity = capacity


class AlreadyClaimedError(ClaimError):
    """Someone else got there first."""

    reason = ClaimReason.ALREADY_CLAIMED

    def __init__(
        self,
        cell_index: int,
        message: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(cell_index, message or f"Cell {cell_index} is already claimed", context)


class CapReachedError(ClaimError):
    """Global supply exhausted. Terminal."""

    reason = ClaimReason.CAP_REACHED

    def __init__(
        self,
        cell_index: int,
        capacity: Optional[int] = None,
        message: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        if message is None:
            message = f"All {capacity} cells have been claimed" if capacity else "All cells have been claimed"
        super().__init__(cell_index, message, context)
        self.capacity = capacity


class NotAuthorizedError(ClaimError):
    """Caller is not on the operator allow-list for assisted claims."""

    reason = ClaimReason.NOT_AUTHORIZED

    def __init__(
        self,
        cell_index: int,
        operator: Optional[str] = None,
        message: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            cell_index,
            message or f"Operator {operator!r} may not issue assisted claims",
            context,
        )
        self.operator = operator


CLAIM_ERRORS: dict[ClaimReason, type[ClaimError]] = {
    ClaimReason.OUT_OF_RANGE: OutOfRangeError,
    ClaimReason.ALREADY_CLAIMED: AlreadyClaimedError,
    ClaimReason.CAP_REACHED: CapReachedError,
    ClaimReason.NOT_AUTHORIZED: NotAuthorizedError,
}


def claim_error_for(reason: ClaimReason, cell_index: Any, message: Optional[str] = None) -> ClaimError:
    """Rebuild a ClaimError from its wire form."""
    error_cls = CLAIM_ERRORS.get(reason)
    if error_cls is None:
        raise ValueError(f"{reason!r} is not a claim rejection reason")
    return error_cls(cell_index, message=message)


class SubmissionError(MillionBaseError):
    """
    Claim submission failed for reasons unrelated to claim semantics
    (network, HTTP status, malformed response). Safe to retry.
    """

    def __init__(
        self,
        message: str,
        cell_index: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.cell_index = cell_index


class TransientLookupError(MillionBaseError):
    """A cell lookup failed in transit. The cell stays unknown."""

    def __init__(self, cell_index: int, error: str, context: Optional[dict[str, Any]] = None):
        super().__init__(f"Lookup of cell {cell_index} failed: {error}", context)
        self.cell_index = cell_index


class RegistryUnavailableError(MillionBaseError):
    """Supply or event stream requests could not reach the registry."""

    pass
