"""
Query-state store and the invalidation coordinator that drives its refetches.
"""
from .store import (
    DEFAULT_STALE_TIME_SECONDS,
    QueryDescriptor,
    QueryFn,
    QueryKey,
    QueryStore,
    Subscription,
    key_to_string,
)
from .coordinator import (
    REFRESH_ALL_PATTERNS,
    InvalidationCoordinator,
    Watch,
    WatchOptions,
)

__all__ = [
    # Store
    "DEFAULT_STALE_TIME_SECONDS",
    "QueryDescriptor",
    "QueryFn",
    "QueryKey",
    "QueryStore",
    "Subscription",
    "key_to_string",
    # Coordinator
    "REFRESH_ALL_PATTERNS",
    "InvalidationCoordinator",
    "Watch",
    "WatchOptions",
]
