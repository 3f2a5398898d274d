"""
In-memory response cache with fresh and stale windows.
"""
from .core import CacheEntry, CacheSource
from .store import FRESH_WINDOW_SECONDS, STALE_WINDOW_SECONDS, ResponseCache

__all__ = [
    # Core types
    "CacheEntry",
    "CacheSource",
    # Store
    "ResponseCache",
    "FRESH_WINDOW_SECONDS",
    "STALE_WINDOW_SECONDS",
]
