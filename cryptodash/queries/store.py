"""
Query-state store: tracks which UI queries are observed, when their data
was last updated, and runs their refetches.
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from cryptodash.resilience import ResilienceEvents, RetriesExhausted

logger = logging.getLogger("queries.store")

QueryKey = Tuple[Any, ...]
QueryFn = Callable[[], Awaitable[Any]]

DEFAULT_STALE_TIME_SECONDS = 15.0


def key_to_string(key: QueryKey) -> str:
    """Serialize a query key for substring matching."""
    return json.dumps(list(key), default=str)


@dataclass
class QueryDescriptor:
    """State of one query, shared by all of its observers."""
    key: QueryKey
    query_fn: QueryFn
    stale_time: float = DEFAULT_STALE_TIME_SECONDS
    refetch_interval: Optional[float] = None
    observer_count: int = 0
    last_updated_at: float = 0.0
    is_invalidated: bool = False
    data: Any = None
    error: Optional[Exception] = None
    fetch_count: int = 0

    def is_stale(self, now: float) -> bool:
        return self.is_invalidated or now - self.last_updated_at > self.stale_time


@dataclass
class Subscription:
    """Handle returned to an observer; pass it back to unsubscribe."""
    key: QueryKey
    active: bool = True


class QueryStore:
    """
    In-process query cache in the style of a UI data-fetching library.

    - A descriptor is created by the first subscribe() and dropped when the
      last observer unsubscribes
    - invalidate_queries() marks descriptors invalidated and schedules a
      refetch for the ones that still have observers
    - Failed query functions are recorded on the descriptor and reported
      through the terminal_failure notification
    """

    def __init__(
        self,
        events: Optional[ResilienceEvents] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.events = events or ResilienceEvents()
        self._clock = clock
        self._queries: Dict[QueryKey, QueryDescriptor] = {}
        self._pending: Set[asyncio.Task] = set()

    # ===== OBSERVERS =====

    def subscribe(
        self,
        key: QueryKey,
        query_fn: QueryFn,
        stale_time: float = DEFAULT_STALE_TIME_SECONDS,
        refetch_interval: Optional[float] = None,
    ) -> Subscription:
        """
        Register an observer for a query.

        The first subscriber defines the query function and timings;
        later subscribers share the existing descriptor.
        """
        key = tuple(key)
        query = self._queries.get(key)
        if query is None:
            query = QueryDescriptor(
                key=key,
                query_fn=query_fn,
                stale_time=stale_time,
                refetch_interval=refetch_interval,
            )
            self._queries[key] = query
            logger.debug(f"Query created: {key_to_string(key)}")
        query.observer_count += 1
        return Subscription(key=key)

    def unsubscribe(self, subscription: Subscription) -> None:
        if not subscription.active:
            return
        subscription.active = False

        query = self._queries.get(subscription.key)
        if query is None:
            return
        query.observer_count -= 1
        if query.observer_count <= 0:
            del self._queries[subscription.key]
            logger.debug(f"Query removed: {key_to_string(subscription.key)}")

    # ===== STATE =====

    def get_state(self, key: QueryKey) -> Optional[QueryDescriptor]:
        return self._queries.get(tuple(key))

    def get_data(self, key: QueryKey) -> Any:
        query = self.get_state(key)
        return query.data if query else None

    def find_all(
        self,
        predicate: Optional[Callable[[QueryDescriptor], bool]] = None,
    ) -> List[QueryDescriptor]:
        queries = list(self._queries.values())
        if predicate is None:
            return queries
        return [q for q in queries if predicate(q)]

    # ===== FETCHING =====

    async def fetch_query(self, key: QueryKey) -> Any:
        """
        Run the query function and store its result.

        Errors are recorded on the descriptor rather than raised, so a
        background refetch can never crash the event loop.
        """
        key = tuple(key)
        query = self._queries.get(key)
        if query is None:
            return None

        try:
            data = await query.query_fn()
        except Exception as e:
            logger.error(f"Query error: {key_to_string(key)} - {e}")
            query.error = e
            # Exhausted fetches already produced their notification
            if not isinstance(e, RetriesExhausted):
                self.events.terminal_failure(
                    "Failed to fetch data. Using cached data if available.",
                    identity=key_to_string(key),
                )
            return None

        query.data = data
        query.error = None
        query.is_invalidated = False
        query.last_updated_at = self._clock()
        query.fetch_count += 1
        return data

    def _schedule_fetch(self, key: QueryKey) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the query stays invalidated until its next fetch
            return None
        task = loop.create_task(self.fetch_query(key))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for every scheduled refetch to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # ===== INVALIDATION =====

    def invalidate_queries(
        self,
        key: Optional[QueryKey] = None,
        predicate: Optional[Callable[[QueryDescriptor], bool]] = None,
        exact: bool = False,
        refetch: bool = True,
    ) -> List[asyncio.Task]:
        """
        Mark matching queries invalidated and refetch the observed ones.

        Args:
            key: Query key, matched as a prefix unless exact is set
            predicate: Extra filter over descriptors
            exact: Require the whole key to match
            refetch: Schedule refetches for matching queries with observers

        Returns:
            The scheduled refetch tasks
        """
        if key is not None:
            key = tuple(key)

        tasks = []
        for query in self.find_all(predicate):
            if key is not None:
                if exact and query.key != key:
                    continue
                if not exact and query.key[:len(key)] != key:
                    continue

            query.is_invalidated = True
            if refetch and query.observer_count > 0:
                task = self._schedule_fetch(query.key)
                if task is not None:
                    tasks.append(task)

        return tasks

    def invalidate_by_pattern(self, pattern: str) -> List[asyncio.Task]:
        """Invalidate every query whose serialized key contains pattern."""
        return self.invalidate_queries(
            predicate=lambda q: pattern in key_to_string(q.key)
        )

    def invalidate_active(self) -> List[asyncio.Task]:
        """Invalidate every query that currently has observers."""
        return self.invalidate_queries(predicate=lambda q: q.observer_count > 0)
