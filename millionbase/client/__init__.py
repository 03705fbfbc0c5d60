from .claim_cache import CacheStats, ClaimCache
from .event_follower import ClaimEventFollower
from .gateway import InProcessRegistry, RegistryGateway
from .registry_client import RegistryClient
from .session import ClaimSession
from .sync_fetcher import FetcherStats, SyncFetcher

__all__ = [
    "CacheStats",
    "ClaimCache",
    "ClaimEventFollower",
    "ClaimSession",
    "FetcherStats",
    "InProcessRegistry",
    "RegistryClient",
    "RegistryGateway",
    "SyncFetcher",
]
