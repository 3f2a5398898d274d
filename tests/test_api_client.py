"""
Tests for the CoinGecko endpoint functions, using a fake requests session.
"""
import asyncio

import pytest
import requests

from conftest import INVALID_JSON, FakeResponse, FakeSession
from cryptodash.api_client import ENDPOINTS, CoinGeckoClient, build_url
from cryptodash.resilience import EventType, RetriesExhausted
from cryptodash.schemas import CoinDetail, GlobalResponse, MarketChart, MarketCoin, TrendingResponse

BASE = "https://api.coingecko.com/api/v3"

MARKET_ROWS = [
    {
        "id": "bitcoin",
        "symbol": "btc",
        "name": "Bitcoin",
        "image": "https://example.com/btc.png",
        "market_cap_rank": 1,
        "current_price": 76247,
        "price_change_percentage_24h": -4.61,
        "market_cap": 1.5e12,
        "total_volume": 3.2e10,
    },
    {"id": "ethereum", "symbol": "eth", "name": "Ethereum", "current_price": 1452.33},
]

TRENDING = {
    "coins": [
        {"item": {"id": "pepe", "name": "Pepe", "symbol": "PEPE", "small": "p.png", "market_cap_rank": 30}},
    ],
}


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def client(layer, session):
    return CoinGeckoClient(layer, session=session, base_url=BASE)


# ===== URL / IDENTITY =====

def test_market_url_uses_declared_parameter_order():
    url = build_url(
        BASE,
        ENDPOINTS["markets"],
        params={"page": 2, "sparkline": False, "vs_currency": "usd", "per_page": 50},
    )
    assert url == (
        f"{BASE}/coins/markets?vs_currency=usd&order=market_cap_desc"
        "&per_page=50&page=2&sparkline=false"
    )


def test_coin_detail_url_has_fixed_flags():
    url = build_url(BASE, ENDPOINTS["coin_detail"], path_params={"id": "bitcoin"})
    assert url == (
        f"{BASE}/coins/bitcoin?localization=false&tickers=false"
        "&community_data=false&developer_data=false"
    )


def test_chart_url_and_missing_parameter():
    url = build_url(
        BASE, ENDPOINTS["coin_chart"],
        path_params={"id": "ethereum"}, params={"vs_currency": "eur", "days": 30},
    )
    assert url == f"{BASE}/coins/ethereum/market_chart?vs_currency=eur&days=30"

    with pytest.raises(ValueError):
        build_url(BASE, ENDPOINTS["coin_chart"], path_params={"id": "ethereum"})


# ===== SUCCESS PATHS =====

def test_market_data_is_parsed_and_cached(client, session, layer):
    session.queue(FakeResponse(200, MARKET_ROWS))

    coins = asyncio.run(client.get_market_data("usd", per_page=10))
    again = asyncio.run(client.get_market_data("usd", per_page=10))

    assert [c.id for c in coins] == ["bitcoin", "ethereum"]
    assert isinstance(coins[0], MarketCoin)
    assert coins[0].current_price == 76247
    assert again == coins
    assert len(session.calls) == 1
    assert "per_page=10" in session.calls[0]["url"]
    assert len(layer.cache) == 1


def test_different_pages_are_cached_separately(client, session):
    session.queue(FakeResponse(200, MARKET_ROWS[:1]), FakeResponse(200, MARKET_ROWS[1:]))

    first = asyncio.run(client.get_market_data(page=1))
    second = asyncio.run(client.get_market_data(page=2))

    assert first[0].id == "bitcoin"
    assert second[0].id == "ethereum"
    assert len(session.calls) == 2


def test_trending_global_detail_and_chart(client, session):
    session.queue(
        FakeResponse(200, TRENDING),
        FakeResponse(200, {"data": {"total_market_cap": {"usd": 2.5e12}, "market_cap_percentage": {"btc": 52.1}}}),
        FakeResponse(200, {"id": "bitcoin", "symbol": "btc", "name": "Bitcoin", "hashing_algorithm": "SHA-256"}),
        FakeResponse(200, {"prices": [[1700000000000, 37000.5], [1700003600000, 37100.0]]}),
    )

    trending = asyncio.run(client.get_trending_coins())
    global_data = asyncio.run(client.get_global_data())
    detail = asyncio.run(client.get_coin_details("bitcoin"))
    chart = asyncio.run(client.get_coin_market_chart("bitcoin", days=1))

    assert trending.coins[0].item.symbol == "PEPE"
    assert global_data.data.total_market_cap["usd"] == 2.5e12
    assert detail.name == "Bitcoin"
    assert detail.model_extra["hashing_algorithm"] == "SHA-256"
    assert chart.prices[1] == [1700003600000, 37100.0]


def test_api_key_header_is_sent(layer, session, test_settings):
    test_settings.coingecko_api_key = "demo-key"
    session.queue(FakeResponse(200, TRENDING))
    client = CoinGeckoClient(layer, session=session, base_url=BASE)

    asyncio.run(client.get_trending_coins())

    assert session.calls[0]["headers"]["x-cg-demo-api-key"] == "demo-key"


# ===== EMPTY IDENTIFIERS =====

def test_empty_coin_id_returns_fallback_without_request(client, session):
    detail = asyncio.run(client.get_coin_details(""))
    chart = asyncio.run(client.get_coin_market_chart(""))

    assert detail == CoinDetail()
    assert chart == MarketChart(prices=[])
    assert session.calls == []


# ===== FAILURE PATHS =====

def test_server_errors_degrade_to_endpoint_fallbacks(client, session, sleep):
    session.queue(FakeResponse(500, {"message": "boom"}))

    assert asyncio.run(client.get_market_data()) == []
    assert len(session.calls) == 4
    assert sleep.delays == [0.3, 0.6, 1.2]

    assert asyncio.run(client.get_trending_coins()) == TrendingResponse(coins=[])
    assert asyncio.run(client.get_global_data()) == GlobalResponse()


def test_connection_errors_are_retried(client, session):
    session.queue(requests.ConnectionError("refused"), FakeResponse(200, TRENDING))

    trending = asyncio.run(client.get_trending_coins())

    assert len(trending.coins) == 1
    assert len(session.calls) == 2


def test_invalid_json_is_retried(client, session):
    session.queue(FakeResponse(200, INVALID_JSON), FakeResponse(200, TRENDING))

    trending = asyncio.run(client.get_trending_coins())

    assert len(trending.coins) == 1
    assert len(session.calls) == 2


def test_schema_mismatch_is_a_parse_failure(client, session):
    session.queue(FakeResponse(200, {"coins": "not-a-list"}))

    assert asyncio.run(client.get_trending_coins()) == TrendingResponse(coins=[])
    assert len(session.calls) == 4


def test_server_rate_limit_notifies_and_uses_expired_cache(client, session, layer, clock):
    session.queue(FakeResponse(200, MARKET_ROWS), FakeResponse(429, {"status": {"error_message": "Throttled"}}))
    received = []
    layer.events.on_rate_limit_warning(received.append)

    asyncio.run(client.get_market_data())
    clock.advance(45 * 60)
    coins = asyncio.run(client.get_market_data())

    assert [c.id for c in coins] == ["bitcoin", "ethereum"]
    assert len(session.calls) == 2
    assert [n.event for n in received] == [EventType.RATE_LIMIT_WARNING]


def test_strict_client_raises(layer, session):
    session.queue(FakeResponse(404, {"error": "coin not found"}))
    client = CoinGeckoClient(layer, session=session, base_url=BASE, strict=True)

    with pytest.raises(RetriesExhausted) as exc_info:
        asyncio.run(client.get_coin_details("no-such-coin"))

    assert exc_info.value.last_error.status == 404
    assert str(exc_info.value.last_error) == "coin not found"


def test_missing_parameter_returns_fallback_without_request(client, session):
    coins = asyncio.run(client.get_market_data(currency=None))

    assert coins == []
    assert session.calls == []


def test_missing_parameter_raises_for_strict_client(layer, session):
    client = CoinGeckoClient(layer, session=session, base_url=BASE, strict=True)

    with pytest.raises(ValueError):
        asyncio.run(client.get_market_data(currency=None))
    assert session.calls == []
