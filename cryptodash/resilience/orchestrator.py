"""
Fetch orchestration: cache first, client-side pacing, retry with
exponential backoff, and graceful degradation to stale or default data.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cryptodash.cache import ResponseCache
from .errors import RateLimited, RetriesExhausted
from .events import ResilienceEvents
from .rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger("resilience.orchestrator")

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_BACKOFF_MS = 300
RATE_LIMIT_PAUSE_SECONDS = 3.0
RATE_LIMIT_WARNING_RATIO = 0.9


class ExhaustedPolicy(Enum):
    """What to do when every attempt failed and no cached data exists."""
    RETURN_FALLBACK = "return_fallback"
    RAISE = "raise"


@dataclass
class RequestDescriptor:
    """Retry state for a single orchestrated fetch."""
    identity: str
    attempts_remaining: int
    backoff_ms: int

    def before_retry(self, retry_state: RetryCallState) -> None:
        """tenacity before_sleep hook: log the failure and advance the state."""
        self.backoff_ms = round(retry_state.next_action.sleep * 1000)
        logger.warning(
            f"Attempt {retry_state.attempt_number} failed, retrying {self.identity} in {self.backoff_ms}ms. "
            f"Attempts remaining: {self.attempts_remaining} ({retry_state.outcome.exception()})"
        )
        self.attempts_remaining -= 1


class FetchOrchestrator:
    """
    Wraps one outbound network call with the resilience policy:

    1. Cache lookup (fresh or stale hit returns immediately)
    2. Client-side rate check (over quota: expired cache, else pause)
    3. Network call, with 429 resolved from expired cache when possible
    4. Bounded retries with exponential backoff
    5. Expired cache, then the caller's fallback (or RetriesExhausted)
    """

    def __init__(
        self,
        cache: ResponseCache,
        rate_limiter: SlidingWindowRateLimiter,
        events: Optional[ResilienceEvents] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rate_limit_pause_seconds: float = RATE_LIMIT_PAUSE_SECONDS,
        rate_limit_warning_ratio: float = RATE_LIMIT_WARNING_RATIO,
    ):
        """
        Initialize the orchestrator.

        Args:
            cache: Shared response cache
            rate_limiter: Shared outbound request counter
            events: Hub used to request user-visible notifications
            sleep: Coroutine used for pacing and backoff delays
            rate_limit_pause_seconds: Delay before calling out while over quota
            rate_limit_warning_ratio: Quota utilization that triggers a warning
        """
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.events = events or ResilienceEvents()
        self._sleep = sleep
        self.rate_limit_pause_seconds = rate_limit_pause_seconds
        self.rate_limit_warning_ratio = rate_limit_warning_ratio

    async def fetch(
        self,
        identity: str,
        network_call: Callable[[], Awaitable[T]],
        fallback: T,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_backoff_ms: int = DEFAULT_BASE_BACKOFF_MS,
        on_exhausted: ExhaustedPolicy = ExhaustedPolicy.RETURN_FALLBACK,
        bypass_cache: bool = False,
    ) -> T:
        """
        Fetch a resource through the cache, limiter and retry policy.

        Args:
            identity: Full request identity (URL + query string), the cache key
            network_call: Coroutine function performing the request and
                          returning parsed data, raising FetchError on failure
            fallback: Value returned when nothing else is available
            max_retries: Retries after the first attempt
            base_backoff_ms: Delay before the first retry, doubled each time
            on_exhausted: Return the fallback or raise RetriesExhausted
            bypass_cache: Skip the initial cache lookup

        Returns:
            Fresh data, cached data, or the fallback

        Raises:
            RetriesExhausted: Only with ExhaustedPolicy.RAISE
        """
        if not bypass_cache:
            cached = self.cache.get(identity)
            if cached is not None:
                return cached

        if not self.rate_limiter.try_consume():
            logger.warning(
                "Rate limit approached, using cached data if available or waiting"
            )
            limit = self.rate_limiter.max_requests
            if self.rate_limiter.window_size > limit * self.rate_limit_warning_ratio:
                self.events.rate_limit_warning(
                    "Using cached data while waiting for rate limit to reset.",
                    identity=identity,
                )

            expired = self.cache.get_any(identity)
            if expired is not None:
                return expired

            await self._sleep(self.rate_limit_pause_seconds)

        request = RequestDescriptor(
            identity=identity,
            attempts_remaining=max_retries,
            backoff_ms=base_backoff_ms,
        )
        last_error: Optional[Exception] = None
        attempts = max_retries + 1
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=base_backoff_ms / 1000),
            retry=retry_if_exception_type(Exception),
            sleep=self._sleep,
            before_sleep=request.before_retry,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    logger.info(f"Fetching data from: {identity}")
                    try:
                        data = await network_call()
                    except RateLimited:
                        logger.warning("API rate limit exceeded from server response")
                        self.events.rate_limit_warning(
                            "The crypto data provider is limiting requests. "
                            "Using cached data where available.",
                            identity=identity,
                        )
                        expired = self.cache.get_any(identity)
                        if expired is not None:
                            return expired
                        raise
                    self.cache.set(identity, data)
                    return data
        except Exception as e:
            last_error = e

        logger.error(f"Fetch failed after all retries: {identity} - {last_error}")

        expired = self.cache.get_any(identity)
        if expired is not None:
            return expired

        if on_exhausted is ExhaustedPolicy.RAISE:
            self.events.terminal_failure(
                "Failed to fetch data. Using cached data if available.",
                identity=identity,
            )
            raise RetriesExhausted(identity, attempts, last_error)

        return fallback
