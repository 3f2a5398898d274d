"""
In-memory response cache with fresh and stale windows.
"""
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from .core import CacheEntry, CacheSource

logger = logging.getLogger("cache.store")

FRESH_WINDOW_SECONDS = 10 * 60
STALE_WINDOW_SECONDS = 30 * 60


class ResponseCache:
    """
    Key/value store of upstream responses.

    - Entries younger than the fresh window are served without refetching
    - Entries younger than the stale window are still served, as degraded data
    - Older entries are never returned by get(), but stay in memory until
      overwritten so get_any() can use them as a last-resort fallback

    There is no eviction beyond staleness; one entry exists per distinct
    endpoint + params combination actually requested.
    """

    def __init__(
        self,
        fresh_seconds: float = FRESH_WINDOW_SECONDS,
        stale_seconds: float = STALE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            fresh_seconds: Age below which an entry counts as fresh
            stale_seconds: Age below which an entry can still be served
            clock: Returns the current time in seconds
        """
        if stale_seconds < fresh_seconds:
            raise ValueError("stale window must not be shorter than the fresh window")

        self.fresh_seconds = fresh_seconds
        self.stale_seconds = stale_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

        self._stats = {
            "hits_fresh": 0,
            "hits_stale": 0,
            "hits_expired": 0,
            "misses": 0,
        }

    def lookup(self, key: str) -> Optional[Tuple[Any, CacheSource]]:
        """
        Look up a usable entry and report how fresh it is.

        Returns:
            (data, source) for fresh or stale entries, None otherwise
        """
        entry = self._entries.get(key)
        if entry is None:
            self._stats["misses"] += 1
            return None

        now = self._clock()
        source = entry.source(now, self.fresh_seconds, self.stale_seconds)

        if source is CacheSource.FRESH:
            logger.debug(f"CACHE HIT (fresh): {key} [age={entry.age_seconds(now):.1f}s]")
            self._stats["hits_fresh"] += 1
            return entry.data, source

        if source is CacheSource.STALE:
            logger.info(f"CACHE HIT (stale): {key} [age={entry.age_seconds(now):.1f}s]")
            self._stats["hits_stale"] += 1
            return entry.data, source

        logger.debug(f"CACHE EXPIRED: {key} [age={entry.age_seconds(now):.1f}s]")
        self._stats["misses"] += 1
        return None

    def get(self, key: str) -> Optional[Any]:
        """Return the stored value if it is fresh or stale, else None."""
        found = self.lookup(key)
        if found is None:
            return None
        return found[0]

    def get_any(self, key: str) -> Optional[Any]:
        """
        Return the stored value regardless of age.

        Used only as a degraded fallback when the upstream API cannot be
        reached or is rate limiting us.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        self._stats["hits_expired"] += 1
        logger.info(
            f"CACHE FALLBACK: {key} [age={entry.age_seconds(self._clock()):.1f}s]"
        )
        return entry.data

    def set(self, key: str, data: Any) -> None:
        """Store data, overwriting any previous entry for the key."""
        now = self._clock()
        previous = self._entries.get(key)
        # stored_at never moves backwards for a key
        if previous is not None and previous.stored_at > now:
            now = previous.stored_at
        self._entries[key] = CacheEntry(key=key, data=data, stored_at=now)

    def invalidate(self, pattern: Optional[str] = None) -> int:
        """
        Remove cache entries.

        Args:
            pattern: Substring to match in cache keys. None clears everything.

        Returns:
            Number of entries removed
        """
        if pattern is None:
            count = len(self._entries)
            self._entries.clear()
            logger.info(f"Cleared {count} cache entries")
            return count

        to_delete = [k for k in self._entries if pattern in k]
        for key in to_delete:
            del self._entries[key]
        if to_delete:
            logger.info(f"Invalidated {len(to_delete)} entries matching '{pattern}'")
        return len(to_delete)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total_hits = self._stats["hits_fresh"] + self._stats["hits_stale"]
        total_requests = total_hits + self._stats["misses"]
        hit_rate = (total_hits / total_requests * 100) if total_requests > 0 else 0

        return {
            "entries": len(self._entries),
            "hits_fresh": self._stats["hits_fresh"],
            "hits_stale": self._stats["hits_stale"],
            "hits_expired": self._stats["hits_expired"],
            "misses": self._stats["misses"],
            "hit_rate_percent": round(hit_rate, 1),
        }
