"""Financial Modeling Prep client: company profiles and batch quotes with TTL caches.

Every failure (network error, non-2xx, non-JSON or empty body) is logged
and surfaced as ``None`` or a partial result. Nothing here raises to the
caller for a provider problem.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

import requests

from config.settings import get_settings
from utils.cache import TTLCache
from utils.helpers import chunked, unique

logger = logging.getLogger("portfolio_tracker.collectors.fmp")

QUOTE_TTL_SECONDS = 60
PROFILE_TTL_SECONDS = 24 * 60 * 60
BATCH_SIZE = 50
SINGLE_SYMBOL_DELAY = 0.2


@dataclass
class Quote:
    symbol: str
    price: float = 0.0
    previous_close: float = 0.0
    changes_percentage: float = 0.0

    @classmethod
    def from_api(cls, d: dict) -> "Quote":
        pct = d.get("changesPercentage")
        if pct is None:
            pct = d.get("changePercentage")
        return cls(
            symbol=str(d.get("symbol") or "").upper(),
            price=float(d.get("price") or 0),
            previous_close=float(d.get("previousClose") or 0),
            changes_percentage=float(pct or 0),
        )


@dataclass
class Profile:
    symbol: str
    company_name: str = ""
    price: float = 0.0
    industry: str = ""
    sector: str = ""
    market_cap: float = 0.0

    @classmethod
    def from_api(cls, d: dict) -> "Profile":
        cap = d.get("marketCap")
        if cap is None:
            cap = d.get("mktCap")
        return cls(
            symbol=str(d.get("symbol") or "").upper(),
            company_name=d.get("companyName") or "",
            price=float(d.get("price") or 0),
            industry=d.get("industry") or "",
            sector=d.get("sector") or "",
            market_cap=float(cap or 0),
        )


class FMPClient:
    """Cache-first access to FMP profile and quote endpoints.

    Each client owns its caches; pass a ``clock`` to control expiry in
    tests and a ``sleep`` to skip the single-symbol fallback delay.
    """

    def __init__(self, api_key: str, session: requests.Session | None = None,
                 base_url: str | None = None, timeout: float | None = None,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep):
        settings = get_settings()
        self.api_key = api_key
        self.session = session or requests.Session()
        self.base_url = (base_url or settings.fmp_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.http_timeout
        self._sleep = sleep
        self.quote_cache = TTLCache(QUOTE_TTL_SECONDS, clock=clock)
        self.profile_cache = TTLCache(PROFILE_TTL_SECONDS, clock=clock)

    def _get(self, path: str, params: dict) -> list | None:
        """GET a JSON array; None on any failure."""
        params = {**params, "apikey": self.api_key}
        try:
            resp = self.session.get(f"{self.base_url}/{path}", params=params, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("FMP %s request failed: %s", path, e)
            return None
        if not resp.ok:
            logger.warning("FMP %s returned HTTP %s", path, resp.status_code)
            return None
        try:
            data = resp.json()
        except ValueError:
            logger.warning("FMP %s returned non-JSON content", path)
            return None
        if not isinstance(data, list):
            logger.warning("FMP %s returned unexpected shape: %s", path, type(data).__name__)
            return None
        return data

    def lookup_symbol(self, symbol: str) -> Profile | None:
        """Single-symbol profile lookup. None means enrichment is unavailable."""
        if not self.api_key or not symbol:
            return None
        key = symbol.strip().upper()
        cached = self.profile_cache.get(key)
        if cached is not None:
            return cached

        data = self._get("profile", {"symbol": key})
        if not data:
            logger.debug("No profile for %s", key)
            return None
        try:
            profile = Profile.from_api(data[0])
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning("Malformed FMP profile for %s: %s", key, e)
            return None
        self.profile_cache.set(key, profile)
        return profile

    def fetch_quotes(self, symbols: list[str]) -> dict[str, Quote]:
        """Quotes by symbol. Cache misses are fetched 50 at a time; failed batches are skipped."""
        if not self.api_key or not symbols:
            return {}

        results: dict[str, Quote] = {}
        misses = []
        for sym in unique(s.strip().upper() for s in symbols if s):
            cached = self.quote_cache.get(sym)
            if cached is not None:
                results[sym] = cached
            else:
                misses.append(sym)

        for batch in chunked(misses, BATCH_SIZE):
            data = self._get("batch-quote-short", {"symbols": ",".join(batch)})
            if data is None:
                continue
            for item in data:
                try:
                    quote = Quote.from_api(item)
                except (TypeError, ValueError, AttributeError) as e:
                    logger.warning("Skipping malformed FMP quote %r: %s", item, e)
                    continue
                if not quote.symbol:
                    continue
                self.quote_cache.set(quote.symbol, quote)
                results[quote.symbol] = quote
        return results

    def fetch_profiles_batched(self, symbols: list[str],
                               on_progress: Callable[[int, int], None] | None = None
                               ) -> dict[str, Profile]:
        """Profiles for many symbols, batched when the plan allows it.

        Tries the multi-symbol profile endpoint first. If the first batch
        fails or comes back empty, falls back to one request per symbol for
        the rest of the call, pausing between requests. ``on_progress`` is
        called with (done, total) as symbols are resolved.
        """
        if not self.api_key or not symbols:
            return {}

        wanted = unique(s.strip().upper() for s in symbols if s)
        total = len(wanted)
        results: dict[str, Profile] = {}
        misses = []
        for sym in wanted:
            cached = self.profile_cache.get(sym)
            if cached is not None:
                results[sym] = cached
            else:
                misses.append(sym)

        done = len(results)
        if on_progress and done:
            on_progress(done, total)

        single_mode = False
        remaining = misses
        first = True
        while remaining:
            batch, remaining = remaining[:BATCH_SIZE], remaining[BATCH_SIZE:]
            data = self._get("profile", {"symbol": ",".join(batch)})
            if first and not data:
                logger.info("Multi-symbol profile lookup unavailable; switching to single-symbol mode")
                single_mode = True
                remaining = batch + remaining
                break
            first = False
            for item in data or []:
                try:
                    profile = Profile.from_api(item)
                except (TypeError, ValueError, AttributeError):
                    continue
                if profile.symbol:
                    self.profile_cache.set(profile.symbol, profile)
                    results[profile.symbol] = profile
            done += len(batch)
            if on_progress:
                on_progress(done, total)

        if single_mode:
            for i, sym in enumerate(remaining):
                if i > 0:
                    self._sleep(SINGLE_SYMBOL_DELAY)
                profile = self.lookup_symbol(sym)
                if profile is not None:
                    results[sym] = profile
                done += 1
                if on_progress:
                    on_progress(done, total)
        return results
