"""Shared input validation and cleaning helpers.

Broker exports, screen files and user input all pass through here so
that stray dollar signs, "--" placeholders and lowercase tickers never
reach the ledger.
"""

import math
import re
import logging

logger = logging.getLogger("portfolio_tracker.validators")

_TICKER_RE = re.compile(r"^[A-Z][A-Z0-9.\-]{0,9}$")
_NOTIFY_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")
_NUMBER_NOISE_RE = re.compile(r"[$,\s]")

_EMPTY_NUMBERS = {"", "n/a", "--"}


def clean_number(value) -> float:
    """Parse a broker-formatted number; anything unparseable becomes 0.

    Strips ``$``, ``,`` and whitespace. ``"n/a"``, ``"--"`` and empty
    cells are 0. A trailing junk suffix is ignored the way a lenient
    float parser would (``"12.5%"`` -> 12.5).
    """
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    text = str(value)
    if text.strip().lower() in _EMPTY_NUMBERS:
        return 0.0
    cleaned = _NUMBER_NOISE_RE.sub("", text)
    match = re.match(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", cleaned)
    if not match:
        return 0.0
    v = float(match.group(0))
    return v if math.isfinite(v) else 0.0


def normalize_symbol(raw) -> str:
    """Uppercase and trim a symbol cell; None becomes an empty string."""
    return str(raw).strip().upper() if raw is not None else ""


def validate_ticker(raw: str) -> str:
    """Normalise and validate a ticker symbol.

    Returns the uppercased/stripped ticker or raises ValueError.
    """
    if not isinstance(raw, str):
        raise ValueError(f"Ticker must be a string, got {type(raw).__name__}")
    cleaned = normalize_symbol(raw)
    if not _TICKER_RE.match(cleaned):
        raise ValueError(f"Invalid ticker '{raw}'")
    return cleaned


def validate_price(value) -> float | None:
    """Validate a price value: finite, non-negative. Returns None for missing."""
    if value is None:
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(v) or v < 0:
        return None
    return v


def validate_notify_time(raw: str | None) -> str | None:
    """Accept ``HH:MM`` (or ``HH:MM:SS``) local-time strings; None passes through."""
    if raw is None or raw == "":
        return None
    cleaned = str(raw).strip()
    if not _NOTIFY_TIME_RE.match(cleaned):
        raise ValueError(f"Invalid notify time '{raw}': expected HH:MM")
    return cleaned[:5]
