"""
Invalidation coordinator: decides when observed queries must be refetched.

Triggers are route changes, repeating timers, window focus and network
reconnects. The coordinator only marks queries invalidated in the
QueryStore; it never clears the response cache, except for the explicit
refresh_all() user action.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional

from cryptodash.cache import ResponseCache
from .store import DEFAULT_STALE_TIME_SECONDS, QueryKey, QueryStore, key_to_string

logger = logging.getLogger("queries.coordinator")

# Patterns cleared by the dashboard's "refresh all" button
REFRESH_ALL_PATTERNS = ("market", "global", "trending")


@dataclass
class WatchOptions:
    """Per-subscription refresh triggers."""
    enabled: bool = True
    only_invalidate: bool = False
    refetch_interval: Optional[float] = None
    on_route_change: bool = True
    refetch_on_focus: bool = True
    stale_time: float = DEFAULT_STALE_TIME_SECONDS


class Watch:
    """A live set of refresh triggers for one query key."""

    def __init__(self, coordinator: "InvalidationCoordinator", key: QueryKey, options: WatchOptions):
        self.key = tuple(key)
        self.options = options
        self.closed = False
        self._coordinator = coordinator
        self._timer: Optional[asyncio.Task] = None

    def close(self) -> Optional[asyncio.Task]:
        """
        Stop every trigger for this watch.

        Returns:
            The cancelled timer task, if one was running
        """
        if self.closed:
            return None
        self.closed = True
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        self._coordinator._discard(self)
        return timer


class InvalidationCoordinator:
    """
    Turns navigation, focus, timer and connectivity events into
    invalidation requests against a QueryStore.
    """

    def __init__(
        self,
        store: QueryStore,
        cache: ResponseCache,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.cache = cache
        self._clock = clock
        self._sleep = sleep
        self._watches: List[Watch] = []
        self._current_path: Optional[str] = None

    @property
    def watches(self) -> List[Watch]:
        return list(self._watches)

    def watch(
        self,
        key: QueryKey,
        *,
        enabled: bool = True,
        only_invalidate: bool = False,
        refetch_interval: Optional[float] = None,
        on_route_change: bool = True,
        refetch_on_focus: bool = True,
        stale_time: float = DEFAULT_STALE_TIME_SECONDS,
    ) -> Watch:
        """
        Start refresh triggers for a query key.

        The query is invalidated immediately. A repeating timer is started
        when refetch_interval (seconds) is given; it needs a running event loop.

        Returns:
            The Watch; close() it when the component goes away
        """
        options = WatchOptions(
            enabled=enabled,
            only_invalidate=only_invalidate,
            refetch_interval=refetch_interval,
            on_route_change=on_route_change,
            refetch_on_focus=refetch_on_focus,
            stale_time=stale_time,
        )
        watch = Watch(self, key, options)
        if not enabled:
            watch.closed = True
            return watch

        # Raises RuntimeError before any state changes when no loop is running
        loop = asyncio.get_running_loop() if refetch_interval else None

        self._watches.append(watch)
        self._refresh(watch, reason="subscribe")

        if loop is not None:
            watch._timer = loop.create_task(
                self._run_interval(watch)
            )
        return watch

    def _discard(self, watch: Watch) -> None:
        if watch in self._watches:
            self._watches.remove(watch)

    def _refresh(self, watch: Watch, reason: str) -> List[asyncio.Task]:
        logger.debug(f"Invalidating {key_to_string(watch.key)} ({reason})")
        return self.store.invalidate_queries(
            key=watch.key,
            refetch=not watch.options.only_invalidate,
        )

    async def _run_interval(self, watch: Watch) -> None:
        interval = watch.options.refetch_interval
        while not watch.closed:
            await self._sleep(interval)
            if watch.closed:
                return
            self._refresh(watch, reason="interval")

    # ===== TRIGGERS =====

    def route_changed(self, path: str) -> List[asyncio.Task]:
        """Invalidate route-sensitive watches when the path actually changes."""
        if path == self._current_path:
            return []
        self._current_path = path

        tasks = []
        for watch in self.watches:
            if watch.options.on_route_change:
                tasks.extend(self._refresh(watch, reason=f"route {path}"))
        return tasks

    def window_focused(self) -> List[asyncio.Task]:
        """Invalidate focus-sensitive watches whose data is older than their stale time."""
        now = self._clock()
        tasks = []
        for watch in self.watches:
            if not watch.options.refetch_on_focus:
                continue
            query = self.store.get_state(watch.key)
            last_updated_at = query.last_updated_at if query else 0.0
            if now - last_updated_at > watch.options.stale_time:
                logger.info(
                    f"Data is stale for {key_to_string(watch.key)}, refetching on focus"
                )
                tasks.extend(self._refresh(watch, reason="focus"))
        return tasks

    def network_reconnected(self) -> List[asyncio.Task]:
        """Invalidate every query that currently has observers."""
        logger.info("Network reconnected, invalidating active queries")
        return self.store.invalidate_active()

    def refresh_all(self, patterns: Iterable[str] = REFRESH_ALL_PATTERNS) -> List[asyncio.Task]:
        """
        Manual refresh: drop matching cache entries and invalidate the
        matching queries so they refetch from the upstream API.
        """
        tasks = []
        for pattern in patterns:
            self.cache.invalidate(pattern)
            tasks.extend(self.store.invalidate_by_pattern(pattern))
        return tasks

    def close(self) -> List[asyncio.Task]:
        """Stop every watch and cancel its timer."""
        timers = []
        for watch in self.watches:
            timer = watch.close()
            if timer is not None:
                timers.append(timer)
        return timers

    async def aclose(self) -> None:
        """Stop every watch and wait for the cancelled timers to finish."""
        timers = self.close()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
