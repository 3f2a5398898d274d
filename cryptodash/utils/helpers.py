"""
Display formatting helpers shared by the dashboard views.
"""
from datetime import datetime, timezone
from typing import Optional


def format_currency(value: Optional[float], decimals: int = 2) -> str:
    """
    Format a USD amount with a K/M/B suffix.

    Args:
        value: Amount in dollars, None renders as "N/A"
        decimals: Digits after the decimal point

    Returns:
        e.g. "$1.23B", "$45.60K", "$0.99"
    """
    if value is None:
        return "N/A"

    if value > 1_000_000_000:
        return f"${value / 1_000_000_000:.{decimals}f}B"
    elif value > 1_000_000:
        return f"${value / 1_000_000:.{decimals}f}M"
    elif value > 1_000:
        return f"${value / 1_000:.{decimals}f}K"

    return f"${value:.{decimals}f}"


def format_percentage(value: Optional[float]) -> str:
    """Format a percentage change with two decimals."""
    if value is None:
        return "N/A"
    return f"{value:.2f}%"


def format_chart_date(timestamp_ms: float) -> str:
    """Format a chart timestamp (milliseconds since epoch, UTC) as a date."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
