"""Formatting and small numeric helpers shared by the CLI and notifications."""

import logging
from datetime import datetime, timezone
from typing import Iterable, Iterator

logger = logging.getLogger("portfolio_tracker.helpers")

# Market-cap buckets, largest first: (lower bound, label)
MARKET_CAP_BUCKETS = [
    (200_000_000_000, "MEGA"),
    (10_000_000_000, "LARGE"),
    (2_000_000_000, "MID"),
    (300_000_000, "SMALL"),
    (50_000_000, "MICRO"),
]


def format_currency(value: float | None, prefix: str = "$", compact: bool = False) -> str:
    if value is None:
        return "N/A"
    sign = "-" if value < 0 else ""
    v = abs(value)
    if compact:
        if v >= 1e12:
            return f"{sign}{prefix}{v / 1e12:.1f}T"
        if v >= 1e9:
            return f"{sign}{prefix}{v / 1e9:.1f}B"
        if v >= 1e6:
            return f"{sign}{prefix}{v / 1e6:.0f}M"
    return f"{sign}{prefix}{v:,.2f}"


def format_pct(value: float | None, signed: bool = False) -> str:
    if value is None:
        return "N/A"
    return f"{value:+.2f}%" if signed else f"{value:.2f}%"


def format_shares(value: float | None) -> str:
    if value is None:
        return "N/A"
    return f"{value:,.4f}".rstrip("0").rstrip(".")


def market_cap_category(market_cap: float | None) -> str | None:
    """Bucket a market cap into MEGA/LARGE/MID/SMALL/MICRO/NANO."""
    if market_cap is None:
        return None
    # MEGA is strictly greater than its bound; every other bucket is inclusive
    if market_cap > MARKET_CAP_BUCKETS[0][0]:
        return "MEGA"
    for bound, label in MARKET_CAP_BUCKETS[1:]:
        if market_cap >= bound:
            return label
    return "NANO"


def pct_change(current: float | None, base: float | None) -> float | None:
    """Percent change from ``base`` to ``current``; None if either is unusable."""
    if current is None or base is None or base <= 0:
        return None
    return (current - base) / base * 100


def chunked(items: list, size: int) -> Iterator[list]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def unique(items: Iterable[str]) -> list[str]:
    """De-duplicate while keeping first-seen order."""
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
