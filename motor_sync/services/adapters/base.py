"""Source adapter contracts.

Listing adapters implement ``fetch()`` and ``parse(raw)``; the coordinator
drives them uniformly and never branches on which feed it is talking to.
Enrichment adapters implement ``_extract(record)``; the public ``enrich``
wraps it so failures come back as an ``EnrichmentResult`` with ``error`` set.
"""

import asyncio
import time
from abc import ABC, abstractmethod

import httpx

from ...core.enums import SourceKind
from ...core.errors import SourceFetchError
from ...core.logging import log_external_call
from ...models.motor import CatalogMotorRecord
from ...models.pipeline import EnrichmentResult, ScrapedListing
from ..fetch_cache import FetchCache

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}


def build_http_client(timeout: float = 30.0) -> httpx.AsyncClient:
    """Shared async HTTP client used by every adapter."""
    return httpx.AsyncClient(
        headers=DEFAULT_HEADERS,
        follow_redirects=True,
        timeout=timeout,
    )


class HttpSource:
    """Mixin with a logged, optionally cached GET."""

    name: str

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout: float,
        cache: FetchCache | None = None,
    ) -> None:
        self._client = client
        self.timeout = timeout
        self._cache = cache

    async def _get_text(self, url: str) -> str:
        key = FetchCache.make_key(self.name, url)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        start = time.time()
        try:
            response = await self._client.get(url, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            log_external_call(self.name, "fetch", False, (time.time() - start) * 1000)
            raise SourceFetchError(self.name, f"GET {url} failed: {e}") from e
        log_external_call(self.name, "fetch", True, (time.time() - start) * 1000)

        text = response.text
        if self._cache is not None:
            self._cache.set(key, text)
        return text


class SourceAdapter(HttpSource, ABC):
    """A feed that produces listings for stock or price reconciliation."""

    kind: SourceKind

    @abstractmethod
    async def fetch(self) -> str:
        """Download the raw payload. Raises SourceFetchError."""

    @abstractmethod
    def parse(self, raw: str) -> list[ScrapedListing]:
        """Turn the raw payload into listings. Raises SourceFetchError."""

    @property
    def provides_stock(self) -> bool:
        return self.kind == SourceKind.STOCK


class EnrichmentAdapter(HttpSource, ABC):
    """A source of descriptive data for one catalog record."""

    kind = SourceKind.ENRICHMENT

    @abstractmethod
    async def _extract(self, record: CatalogMotorRecord) -> EnrichmentResult:
        """Fetch and extract enrichment for a record. May raise."""

    async def enrich(self, record: CatalogMotorRecord) -> EnrichmentResult:
        """Enrich a record; never raises past this boundary."""
        try:
            return await asyncio.wait_for(self._extract(record), self.timeout)
        except asyncio.TimeoutError:
            return EnrichmentResult(
                source=self.name, error=f"timed out after {self.timeout}s"
            )
        except Exception as e:
            return EnrichmentResult(source=self.name, error=str(e))
