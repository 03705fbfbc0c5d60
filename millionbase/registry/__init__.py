from .access import OperatorAllowList
from .cap_policy import decide, is_valid_index
from .events import ClaimEventBus, ClaimSubscription, follow_claims
from .store import RegistryStore

__all__ = [
    "ClaimEventBus",
    "ClaimSubscription",
    "OperatorAllowList",
    "RegistryStore",
    "decide",
    "follow_claims",
    "is_valid_index",
]
