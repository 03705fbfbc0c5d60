"""
Advisory pre-flight check for claims.

The verdict is used to disable interaction before paying for a claim attempt.
It never authorizes a mutation: RegistryStore.claim re-checks everything
inside its own write transaction.
"""

from typing import Any

from millionbase.core.models import Verdict


def is_valid_index(index: Any, cap: int) -> bool:
    """True for ints (not bools) in [0, cap)."""
    if isinstance(index, bool) or not isinstance(index, int):
        return False
    return 0 <= index < cap


def decide(current_count: int, cap: int, index: Any) -> Verdict:
    """
    Decide whether a claim on `index` is worth attempting.

    Range is checked before the cap, so a malformed index is reported as such
    even once the supply is exhausted.
    """
    if not is_valid_index(index, cap):
        return Verdict.REJECT_OUT_OF_RANGE
    if current_count >= cap:
        return Verdict.REJECT_CAP_REACHED
    return Verdict.ALLOW
