"""
Crypto Dashboard - FastAPI backend for the browser dashboard
Market data comes LIVE from CoinGecko through the resilience layer
"""
import logging
from collections import OrderedDict, deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Deque, List, Optional, Tuple

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from cryptodash.api_client import CoinGeckoClient
from cryptodash.queries import (
    REFRESH_ALL_PATTERNS,
    InvalidationCoordinator,
    QueryFn,
    QueryKey,
    QueryStore,
    Subscription,
    Watch,
)
from cryptodash.resilience import Notification, ResilienceLayer, RetriesExhausted
from cryptodash.schemas import (
    CoinDetail,
    GlobalResponse,
    MarketChart,
    MarketCoin,
    RouteChange,
    TrendingResponse,
)
from cryptodash.utils.helpers import format_currency, format_percentage

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("main")

# Version tracking
APP_VERSION = "v0.1.0"
APP_NAME = "Crypto Dashboard"

# Notifications kept for the UI between polls
MAX_PENDING_NOTIFICATIONS = 50

# Observed queries kept alive at once; the least recently served is released
MAX_WATCHED_QUERIES = 32

# (refetch interval, stale time) in seconds, per query key prefix
QUERY_TIMINGS = {
    "trending": (120, 60),
    "marketData": (60, 15),
    "globalData": (60, 15),
    "coinDetails": (30, 15),
    "chart": (30, 60),
}


@dataclass
class Services:
    """Process-wide collaborators, built once and shared by every request."""
    layer: ResilienceLayer
    client: CoinGeckoClient
    store: QueryStore
    coordinator: InvalidationCoordinator
    notifications: Deque[Notification] = field(
        default_factory=lambda: deque(maxlen=MAX_PENDING_NOTIFICATIONS)
    )
    watched: "OrderedDict[QueryKey, Tuple[Subscription, Watch]]" = field(default_factory=OrderedDict)

    async def query(self, key: QueryKey, query_fn: QueryFn) -> Any:
        """
        Serve a query through the store.

        The first request for a key subscribes it and starts its watch
        (immediate fetch, interval, route and focus triggers). Later
        requests refetch only when the stored data is stale or invalidated.

        Raises:
            RetriesExhausted: When the client is strict and nothing was fetched
        """
        key = tuple(key)
        if key in self.watched:
            self.watched.move_to_end(key)
            state = self.store.get_state(key)
            if state.is_stale(self.layer.clock()):
                await self.store.fetch_query(key)
        else:
            interval, stale_time = QUERY_TIMINGS[key[0]]
            subscription = self.store.subscribe(
                key, query_fn, stale_time=stale_time, refetch_interval=interval
            )
            watch = self.coordinator.watch(key, refetch_interval=interval, stale_time=stale_time)
            self.watched[key] = (subscription, watch)
            self._release_oldest()
            await self.store.wait_idle()
            state = self.store.get_state(key)

        if state.error is not None:
            raise state.error
        return state.data

    def _release_oldest(self) -> None:
        while len(self.watched) > MAX_WATCHED_QUERIES:
            key, (subscription, watch) = self.watched.popitem(last=False)
            logger.info(f"Releasing query {list(key)}")
            watch.close()
            self.store.unsubscribe(subscription)


def build_services(layer: Optional[ResilienceLayer] = None, client: Optional[CoinGeckoClient] = None) -> Services:
    """Wire the resilience layer, API client and query store together."""
    layer = layer or ResilienceLayer()
    client = client or CoinGeckoClient(layer)
    store = QueryStore(events=layer.events, clock=layer.clock)
    coordinator = InvalidationCoordinator(store, layer.cache, clock=layer.clock)
    services = Services(layer=layer, client=client, store=store, coordinator=coordinator)

    layer.events.on_rate_limit_warning(services.notifications.append)
    layer.events.on_terminal_failure(services.notifications.append)
    return services


_services: Optional[Services] = None


def get_services() -> Services:
    """Get or create the shared services."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if _services is not None:
        await _services.coordinator.aclose()
        _services.client.close()


app = FastAPI(
    title=APP_NAME,
    description="Live cryptocurrency market data from CoinGecko",
    version=APP_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(RetriesExhausted)
async def retries_exhausted_handler(request: Request, exc: RetriesExhausted):
    logger.error(f"Upstream unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Upstream data provider unavailable", "attempts": exc.attempts},
    )


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "source": "coingecko", "mode": "live"}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {"name": APP_NAME, "version": APP_VERSION}


@app.get("/cache/stats")
def cache_stats(services: Services = Depends(get_services)):
    """Get cache and rate limiter statistics."""
    return services.layer.get_stats()


# ===== MARKET DATA =====

@app.get("/api/trending", response_model=TrendingResponse)
async def trending(services: Services = Depends(get_services)):
    return await services.query(("trending",), services.client.get_trending_coins)


@app.get("/api/markets", response_model=List[MarketCoin])
async def markets(
    currency: str = Query("usd", description="Quote currency"),
    per_page: int = Query(20, ge=1, le=250),
    page: int = Query(1, ge=1),
    sparkline: bool = Query(False),
    services: Services = Depends(get_services),
):
    async def load():
        return await services.client.get_market_data(currency, per_page, page, sparkline)

    return await services.query(("marketData", page, per_page, currency, sparkline), load)


async def _global_data(services: Services) -> GlobalResponse:
    return await services.query(("globalData",), services.client.get_global_data)


@app.get("/api/global", response_model=GlobalResponse)
async def global_stats(services: Services = Depends(get_services)):
    return await _global_data(services)


@app.get("/api/overview")
async def overview(services: Services = Depends(get_services)):
    """Headline figures for the dashboard cards, preformatted."""
    data = (await _global_data(services)).data
    return {
        "total_market_cap": format_currency(data.total_market_cap.get("usd")),
        "total_volume": format_currency(data.total_volume.get("usd")),
        "btc_dominance": format_percentage(data.market_cap_percentage.get("btc")),
        "market_cap_change_24h": format_percentage(data.market_cap_change_percentage_24h_usd),
    }


@app.get("/api/coins/{coin_id}", response_model=CoinDetail)
async def coin_details(coin_id: str, services: Services = Depends(get_services)):
    async def load():
        return await services.client.get_coin_details(coin_id)

    return await services.query(("coinDetails", coin_id), load)


@app.get("/api/coins/{coin_id}/market_chart", response_model=MarketChart)
async def coin_market_chart(
    coin_id: str,
    currency: str = Query("usd"),
    days: int = Query(7, ge=1),
    services: Services = Depends(get_services),
):
    async def load():
        return await services.client.get_coin_market_chart(coin_id, currency, days)

    return await services.query(("chart", coin_id, days, currency), load)


@app.get("/api/queries")
def list_queries(services: Services = Depends(get_services)):
    """Observed queries and their refresh state."""
    return {"queries": [
        {
            "key": list(q.key),
            "observers": q.observer_count,
            "fetch_count": q.fetch_count,
            "last_updated_at": q.last_updated_at,
            "is_invalidated": q.is_invalidated,
        }
        for q in services.store.find_all()
    ]}


# ===== BROWSER EVENTS =====

@app.post("/api/events/route")
async def route_changed(event: RouteChange, services: Services = Depends(get_services)):
    """The browser navigated; refetch route-sensitive queries."""
    tasks = services.coordinator.route_changed(event.path)
    await services.store.wait_idle()
    return {"path": event.path, "refetched": len(tasks)}


@app.post("/api/events/focus")
async def window_focused(services: Services = Depends(get_services)):
    """The dashboard window regained focus; refetch stale queries."""
    tasks = services.coordinator.window_focused()
    await services.store.wait_idle()
    return {"refetched": len(tasks)}


@app.post("/api/events/reconnect")
async def network_reconnected(services: Services = Depends(get_services)):
    """The browser came back online; refetch every observed query."""
    tasks = services.coordinator.network_reconnected()
    await services.store.wait_idle()
    return {"refetched": len(tasks)}


# ===== REFRESH / NOTIFICATIONS =====

@app.post("/api/refresh")
async def refresh_all(
    patterns: Optional[List[str]] = Query(None),
    services: Services = Depends(get_services),
):
    """Manual "refresh all": drop cached responses and refetch matching queries."""
    patterns = patterns or list(REFRESH_ALL_PATTERNS)
    before = len(services.layer.cache)
    tasks = services.coordinator.refresh_all(patterns)
    cleared = before - len(services.layer.cache)
    await services.store.wait_idle()
    return {"patterns": patterns, "cleared": cleared, "refetched": len(tasks)}


@app.get("/api/notifications")
def notifications(services: Services = Depends(get_services)):
    """Pending notification requests, drained on read."""
    pending = [n.to_dict() for n in services.notifications]
    services.notifications.clear()
    return {"notifications": pending}
