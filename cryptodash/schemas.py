"""
Pydantic schemas for CoinGecko payloads
Only the fields the dashboard reads are declared; everything else is kept.
"""
from pydantic import BaseModel, Field
from typing import Dict, List, Optional


class _Payload(BaseModel):
    class Config:
        extra = "allow"


# ===== TRENDING =====

class TrendingItem(_Payload):
    """A coin in the trending search list"""
    id: str
    name: str
    symbol: str
    small: Optional[str] = None
    market_cap_rank: Optional[int] = None


class TrendingCoin(_Payload):
    item: TrendingItem


class TrendingResponse(_Payload):
    """Response of /search/trending"""
    coins: List[TrendingCoin] = []


# ===== MARKETS =====

class MarketCoin(_Payload):
    """One row of /coins/markets"""
    id: str
    symbol: str
    name: str
    image: Optional[str] = None
    market_cap_rank: Optional[int] = None
    current_price: Optional[float] = None
    price_change_percentage_24h: Optional[float] = None
    market_cap: Optional[float] = None
    total_volume: Optional[float] = None


# ===== GLOBAL =====

class GlobalData(_Payload):
    """Aggregate market statistics"""
    active_cryptocurrencies: Optional[int] = None
    total_market_cap: Dict[str, float] = {}
    total_volume: Dict[str, float] = {}
    market_cap_percentage: Dict[str, float] = {}
    market_cap_change_percentage_24h_usd: Optional[float] = None


class GlobalResponse(_Payload):
    """Response of /global"""
    data: GlobalData = Field(default_factory=GlobalData)


# ===== COIN DETAIL =====

class CoinDetail(_Payload):
    """
    Response of /coins/{id}

    The full document is large; unknown fields are preserved as extras.
    """
    id: Optional[str] = None
    symbol: Optional[str] = None
    name: Optional[str] = None
    description: Dict[str, Optional[str]] = {}
    image: Dict[str, Optional[str]] = {}
    market_cap_rank: Optional[int] = None
    market_data: Dict[str, object] = {}


# ===== MARKET CHART =====

class MarketChart(_Payload):
    """Response of /coins/{id}/market_chart, as [timestamp_ms, value] pairs"""
    prices: List[List[float]] = []
    market_caps: List[List[float]] = []
    total_volumes: List[List[float]] = []


# ===== BROWSER EVENTS =====

class RouteChange(BaseModel):
    """Navigation reported by the dashboard"""
    path: str
