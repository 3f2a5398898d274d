"""
Data-fetch resilience layer: response cache, client-side rate limiting,
retry with backoff, and degradation to stale or default data.
"""
import asyncio
import time
from typing import Awaitable, Callable, Optional

from cryptodash.cache import ResponseCache
from config.settings import Settings, settings as default_settings

from .errors import (
    FetchError,
    HttpFailure,
    NetworkFailure,
    ParseFailure,
    RateLimited,
    RetriesExhausted,
)
from .events import EventType, Notification, ResilienceEvents
from .orchestrator import ExhaustedPolicy, FetchOrchestrator, RequestDescriptor
from .rate_limiter import SlidingWindowRateLimiter


class ResilienceLayer:
    """
    Process-lifetime owner of the shared cache, rate window and event hub.

    Construct one at startup and pass it to every caller; tests build
    isolated instances with their own clock and sleep.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or default_settings
        self.clock = clock
        self.events = ResilienceEvents(clock=clock)
        self.cache = ResponseCache(
            fresh_seconds=self.config.cache_fresh_seconds,
            stale_seconds=self.config.cache_stale_seconds,
            clock=clock,
        )
        self.rate_limiter = SlidingWindowRateLimiter(
            max_requests=self.config.rate_limit_count,
            window_seconds=self.config.rate_limit_window_seconds,
            clock=clock,
        )
        self.orchestrator = FetchOrchestrator(
            cache=self.cache,
            rate_limiter=self.rate_limiter,
            events=self.events,
            sleep=sleep,
            rate_limit_pause_seconds=self.config.rate_limit_pause_seconds,
            rate_limit_warning_ratio=self.config.rate_limit_warning_ratio,
        )

    def get_stats(self) -> dict:
        return {
            "cache": self.cache.get_stats(),
            "rate_limiter": self.rate_limiter.get_stats(),
        }


__all__ = [
    # Service
    "ResilienceLayer",
    # Components
    "FetchOrchestrator",
    "ExhaustedPolicy",
    "RequestDescriptor",
    "SlidingWindowRateLimiter",
    # Events
    "EventType",
    "Notification",
    "ResilienceEvents",
    # Errors
    "FetchError",
    "NetworkFailure",
    "HttpFailure",
    "RateLimited",
    "ParseFailure",
    "RetriesExhausted",
]
