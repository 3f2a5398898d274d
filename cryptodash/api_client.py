"""
CoinGecko API client
Typed endpoint functions on top of the resilience layer: each one builds its
request identity and declares the fallback used when every recovery path fails
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote, urlencode

import requests
from dotenv import load_dotenv
from pydantic import ValidationError

from cryptodash.resilience import (
    ExhaustedPolicy,
    HttpFailure,
    NetworkFailure,
    ParseFailure,
    RateLimited,
    ResilienceLayer,
)
from cryptodash.schemas import (
    CoinDetail,
    GlobalResponse,
    MarketChart,
    MarketCoin,
    TrendingResponse,
)

load_dotenv()

logger = logging.getLogger("api_client")


def _parse_market_list(payload: Any) -> List[MarketCoin]:
    if not isinstance(payload, list):
        raise ParseFailure(f"Expected a list of coins, got {type(payload).__name__}")
    return [MarketCoin.model_validate(item) for item in payload]


@dataclass(frozen=True)
class EndpointSpec:
    """Static description of one upstream resource."""
    name: str
    path_template: str
    params: Tuple[str, ...] = ()
    fixed_params: Dict[str, Any] = field(default_factory=dict)
    fallback: Callable[[], Any] = dict
    parse: Callable[[Any], Any] = lambda payload: payload


ENDPOINTS: Dict[str, EndpointSpec] = {
    "trending": EndpointSpec(
        name="trending",
        path_template="/search/trending",
        fallback=lambda: TrendingResponse(coins=[]),
        parse=TrendingResponse.model_validate,
    ),
    "markets": EndpointSpec(
        name="markets",
        path_template="/coins/markets",
        params=("vs_currency", "order", "per_page", "page", "sparkline"),
        fixed_params={"order": "market_cap_desc"},
        fallback=list,
        parse=_parse_market_list,
    ),
    "global": EndpointSpec(
        name="global",
        path_template="/global",
        fallback=GlobalResponse,
        parse=GlobalResponse.model_validate,
    ),
    "coin_detail": EndpointSpec(
        name="coin_detail",
        path_template="/coins/{id}",
        params=("localization", "tickers", "community_data", "developer_data"),
        fixed_params={
            "localization": False,
            "tickers": False,
            "community_data": False,
            "developer_data": False,
        },
        fallback=CoinDetail,
        parse=CoinDetail.model_validate,
    ),
    "coin_chart": EndpointSpec(
        name="coin_chart",
        path_template="/coins/{id}/market_chart",
        params=("vs_currency", "days"),
        fallback=lambda: MarketChart(prices=[]),
        parse=MarketChart.model_validate,
    ),
}


def _format_param(value: Any) -> str:
    """Render a query value the way the upstream API expects."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_url(
    base_url: str,
    endpoint: EndpointSpec,
    path_params: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Build the full request URL, which doubles as the cache identity.

    Query parameters are emitted in the endpoint's declared order so that the
    same request always yields the same identity.

    Raises:
        ValueError: If a declared parameter has no value
    """
    path_params = {k: quote(str(v), safe="") for k, v in (path_params or {}).items()}
    merged = {**endpoint.fixed_params, **(params or {})}

    query = []
    for name in endpoint.params:
        if name not in merged or merged[name] is None:
            raise ValueError(f"Missing parameter '{name}' for endpoint {endpoint.name}")
        query.append((name, _format_param(merged[name])))

    url = base_url.rstrip("/") + endpoint.path_template.format(**path_params)
    if query:
        url = f"{url}?{urlencode(query)}"
    return url


def _error_message(response: requests.Response) -> Optional[str]:
    """Pull the upstream error message out of a JSON error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if isinstance(message, str):
            return message
        status = body.get("status")
        if isinstance(status, dict) and isinstance(status.get("error_message"), str):
            return status["error_message"]
    return None


class CoinGeckoClient:
    """
    The five CoinGecko resources used by the dashboard.

    No caching or retry happens here; every call is handed to the shared
    FetchOrchestrator together with its identity and fallback value.
    """

    def __init__(
        self,
        layer: ResilienceLayer,
        session: Optional[requests.Session] = None,
        base_url: Optional[str] = None,
        strict: Optional[bool] = None,
    ):
        """
        Initialize the client.

        Args:
            layer: Shared resilience layer (cache, limiter, events)
            session: requests session to reuse connections; created if omitted
            base_url: Override for the configured API base URL
            strict: Raise RetriesExhausted instead of returning fallbacks.
                    Defaults to the strict_fetch setting.
        """
        self.layer = layer
        self.config = layer.config
        self.base_url = base_url or self.config.coingecko_base_url
        self._session = session or requests.Session()
        strict = self.config.strict_fetch if strict is None else strict
        self.on_exhausted = ExhaustedPolicy.RAISE if strict else ExhaustedPolicy.RETURN_FALLBACK

    def _get_headers(self) -> dict:
        headers = {"accept": "application/json"}
        if self.config.coingecko_api_key:
            headers["x-cg-demo-api-key"] = self.config.coingecko_api_key
        return headers

    def _get_json(self, url: str) -> Any:
        """Blocking GET; runs in a worker thread."""
        try:
            response = self._session.get(
                url,
                headers=self._get_headers(),
                timeout=self.config.request_timeout_seconds,
            )
        except requests.RequestException as e:
            raise NetworkFailure(str(e)) from e

        if not response.ok:
            message = _error_message(response)
            if response.status_code == 429:
                raise RateLimited(message)
            raise HttpFailure(response.status_code, message)

        try:
            return response.json()
        except ValueError as e:
            raise ParseFailure(f"Invalid JSON from {url}: {e}") from e

    async def _fetch(
        self,
        name: str,
        path_params: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        bypass_cache: bool = False,
    ) -> Any:
        endpoint = ENDPOINTS[name]
        try:
            url = build_url(self.base_url, endpoint, path_params, params)
        except ValueError as e:
            if self.on_exhausted is ExhaustedPolicy.RAISE:
                raise
            logger.warning(f"Skipping {name} request: {e}")
            return endpoint.fallback()

        async def network_call() -> Any:
            payload = await asyncio.to_thread(self._get_json, url)
            try:
                return endpoint.parse(payload)
            except ValidationError as e:
                raise ParseFailure(f"Unexpected {name} payload: {e}") from e

        return await self.layer.orchestrator.fetch(
            url,
            network_call,
            endpoint.fallback(),
            max_retries=self.config.max_retries,
            base_backoff_ms=self.config.base_backoff_ms,
            on_exhausted=self.on_exhausted,
            bypass_cache=bypass_cache,
        )

    # ===== ENDPOINTS =====

    async def get_trending_coins(self, bypass_cache: bool = False) -> TrendingResponse:
        """Get the trending search coins."""
        return await self._fetch("trending", bypass_cache=bypass_cache)

    async def get_market_data(
        self,
        currency: str = "usd",
        per_page: int = 20,
        page: int = 1,
        sparkline: bool = False,
        bypass_cache: bool = False,
    ) -> List[MarketCoin]:
        """
        Get a page of the market listing, ordered by market cap.

        Args:
            currency: Quote currency (e.g., "usd")
            per_page: Rows per page
            page: 1-based page number
            sparkline: Include 7-day sparkline data

        Returns:
            List of coins, empty when nothing could be fetched
        """
        return await self._fetch(
            "markets",
            params={
                "vs_currency": currency,
                "per_page": per_page,
                "page": page,
                "sparkline": sparkline,
            },
            bypass_cache=bypass_cache,
        )

    async def get_global_data(self, bypass_cache: bool = False) -> GlobalResponse:
        """Get global crypto market aggregates."""
        return await self._fetch("global", bypass_cache=bypass_cache)

    async def get_coin_details(self, coin_id: str, bypass_cache: bool = False) -> CoinDetail:
        """Get details for one coin. An empty id returns an empty record."""
        if not coin_id:
            return ENDPOINTS["coin_detail"].fallback()
        return await self._fetch(
            "coin_detail",
            path_params={"id": coin_id},
            bypass_cache=bypass_cache,
        )

    async def get_coin_market_chart(
        self,
        coin_id: str,
        currency: str = "usd",
        days: int = 7,
        bypass_cache: bool = False,
    ) -> MarketChart:
        """
        Get the historical price series for one coin.

        An empty id returns an empty series without any request.
        """
        if not coin_id:
            return ENDPOINTS["coin_chart"].fallback()
        return await self._fetch(
            "coin_chart",
            path_params={"id": coin_id},
            params={"vs_currency": currency, "days": days},
            bypass_cache=bypass_cache,
        )

    def close(self) -> None:
        self._session.close()
