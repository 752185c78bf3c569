"""In-memory TTL cache with an injectable clock."""

import time
import logging
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger("portfolio_tracker.cache")


@dataclass
class _Entry:
    data: Any
    expiry: float


class TTLCache:
    """Maps uppercased keys to values that expire after ``ttl_seconds``.

    Expired entries are evicted lazily when read; nothing else prunes the
    map, so a long-lived process grows it with every distinct key seen.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    @staticmethod
    def _key(key: str) -> str:
        return key.strip().upper()

    def get(self, key: str) -> Any | None:
        """Return the cached value if ``now < expiry``, else evict and return None."""
        k = self._key(key)
        entry = self._entries.get(k)
        if entry is None:
            return None
        if self._clock() < entry.expiry:
            return entry.data
        del self._entries[k]
        logger.debug("Cache entry expired for %s", k)
        return None

    def set(self, key: str, value: Any, ttl_seconds: float | None = None):
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[self._key(key)] = _Entry(value, self._clock() + ttl)

    def invalidate(self, key: str):
        self._entries.pop(self._key(key), None)

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
