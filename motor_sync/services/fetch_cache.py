"""Thread-safe TTL cache for fetched source pages.

Caches raw page bodies keyed on (source, url) so repeated enrichment
passes within the TTL skip the network. The cache is created by the caller
and passed to adapters by reference; there is no module-level instance.
"""

import logging
import threading

from cachetools import TTLCache

logger = logging.getLogger(__name__)


class FetchCache:
    """TTL cache for raw fetched payloads.

    Thread-safe via a threading.Lock.
    """

    def __init__(self, maxsize: int = 256, ttl: int = 1800) -> None:
        """Initialize the cache.

        Args:
            maxsize: Max entries.
            ttl: Time-to-live in seconds (default 30 minutes).
        """
        self._cache: TTLCache[tuple[str, str], str] = TTLCache(
            maxsize=maxsize, ttl=ttl
        )
        self._lock = threading.Lock()

    @staticmethod
    def make_key(source: str, url: str) -> tuple[str, str]:
        return (source.strip().lower(), url.strip())

    def get(self, key: tuple[str, str]) -> str | None:
        """Get a cached payload (thread-safe). Returns None on miss."""
        with self._lock:
            return self._cache.get(key)

    def set(self, key: tuple[str, str], value: str) -> None:
        """Store a payload in the cache (thread-safe)."""
        with self._lock:
            self._cache[key] = value
        logger.debug("Fetch cache set: %s", key)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
