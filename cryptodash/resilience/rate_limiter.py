"""Client-side rate limiting for outbound CoinGecko requests."""

import time
from typing import Callable, List

# Configuration
RATE_LIMIT_REQUESTS = 50  # Max requests per window
RATE_LIMIT_WINDOW_SECONDS = 60  # Window size in seconds


class SlidingWindowRateLimiter:
    """
    Sliding window counter of recent outbound requests.

    The upstream quota cannot be observed directly, so this is an early
    warning rather than a gate: every call is recorded, and the caller
    decides what to do when try_consume() returns False.
    """

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_REQUESTS,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._timestamps: List[float] = []

    def _prune(self, now: float) -> None:
        window_start = now - self.window_seconds
        self._timestamps = [ts for ts in self._timestamps if ts > window_start]

    def try_consume(self) -> bool:
        """
        Record an outbound request and check it against the quota.

        Returns:
            True while the trailing window holds at most max_requests calls,
            including this one
        """
        now = self._clock()
        self._prune(now)
        self._timestamps.append(now)
        return len(self._timestamps) <= self.max_requests

    @property
    def window_size(self) -> int:
        """Number of requests recorded in the trailing window."""
        self._prune(self._clock())
        return len(self._timestamps)

    @property
    def utilization(self) -> float:
        """Fraction of the quota used in the trailing window."""
        return self.window_size / self.max_requests

    def remaining(self) -> int:
        """Number of requests left before the quota is reached."""
        return max(0, self.max_requests - self.window_size)

    def reset(self) -> None:
        """
        Forget all recorded requests.

        Useful for testing or admin override.
        """
        self._timestamps.clear()

    def get_stats(self) -> dict:
        """Get limiter statistics."""
        return {
            "window_size": self.window_size,
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
            "remaining": self.remaining(),
        }
