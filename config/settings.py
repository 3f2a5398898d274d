"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # CoinGecko configuration
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: Optional[str] = None  # demo key, sent as x-cg-demo-api-key
    request_timeout_seconds: float = 30.0

    # Client-side rate limiting (approximates the public API quota)
    rate_limit_count: int = 50
    rate_limit_window_seconds: float = 60.0
    rate_limit_warning_ratio: float = 0.9
    rate_limit_pause_seconds: float = 3.0

    # Response cache windows
    cache_fresh_seconds: float = 600.0    # 10 minutes
    cache_stale_seconds: float = 1800.0   # 30 minutes

    # Retry policy
    max_retries: int = 3
    base_backoff_ms: int = 300

    # Query invalidation defaults
    default_stale_time_seconds: float = 15.0

    # Raise RetriesExhausted instead of returning the endpoint fallback
    strict_fetch: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
