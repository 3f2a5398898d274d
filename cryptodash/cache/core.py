"""
Core cache data structures.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any


class CacheSource(Enum):
    """Freshness of a cached response at lookup time."""
    FRESH = "fresh"       # Within the fresh window, no refetch needed
    STALE = "stale"       # Past the fresh window, served as degraded data
    EXPIRED = "expired"   # Past the stale window, only used as a last resort


@dataclass
class CacheEntry:
    """
    A cached upstream response keyed by its full request identity.
    """
    key: str
    data: Any
    stored_at: float

    def age_seconds(self, now: float) -> float:
        """Seconds since the response was stored."""
        return now - self.stored_at

    def source(self, now: float, fresh_seconds: float, stale_seconds: float) -> CacheSource:
        """Classify this entry against the fresh and stale windows."""
        age = self.age_seconds(now)
        if age < fresh_seconds:
            return CacheSource.FRESH
        if age < stale_seconds:
            return CacheSource.STALE
        return CacheSource.EXPIRED
