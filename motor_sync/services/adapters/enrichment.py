"""Enrichment adapters: dealer detail pages and Firecrawl extraction."""

import time
from typing import Any
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from ...core.errors import SourceFetchError
from ...core.logging import log_external_call
from ...models.motor import CatalogMotorRecord
from ...models.pipeline import EnrichmentResult
from ...utils.converters import clean_text
from ..fetch_cache import FetchCache
from .base import EnrichmentAdapter

MAX_FEATURES = 12
MIN_FEATURE_LENGTH = 3
MAX_FEATURE_LENGTH = 200


def extract_description(soup: BeautifulSoup) -> str | None:
    """Product description block, first paragraph, or meta description."""
    block = soup.select_one(
        "div[class*=description], div[class*=overview], div[class*=product-info]"
    )
    if block is not None:
        text = clean_text(block.get_text(" "))
        if text:
            return text
    for p in soup.select("main p, article p"):
        text = clean_text(p.get_text(" "))
        if len(text) > 40:
            return text
    meta = soup.find("meta", attrs={"name": "description"})
    if meta is not None and meta.get("content"):
        return clean_text(meta["content"])
    return None


def extract_features(soup: BeautifulSoup) -> list[str]:
    """Bullet items from feature/spec lists, skipping navigation."""
    features: list[str] = []
    for ul in soup.select("ul[class*=feature], ul[class*=spec]"):
        for li in ul.find_all("li"):
            text = clean_text(li.get_text(" "))
            if MIN_FEATURE_LENGTH <= len(text) <= MAX_FEATURE_LENGTH and text not in features:
                features.append(text)
    return features[:MAX_FEATURES]


def extract_specifications(soup: BeautifulSoup) -> dict[str, str]:
    """Key/value pairs from spec tables and definition lists (first wins)."""
    specs: dict[str, str] = {}
    for tr in soup.select("table tr"):
        cells = tr.find_all(["th", "td"])
        if len(cells) != 2:
            continue
        key = clean_text(cells[0].get_text(" ")).rstrip(":")
        value = clean_text(cells[1].get_text(" "))
        if key and value and key not in specs:
            specs[key] = value
    for dl in soup.find_all("dl"):
        for dt in dl.find_all("dt"):
            dd = dt.find_next_sibling("dd")
            if dd is None:
                continue
            key = clean_text(dt.get_text(" ")).rstrip(":")
            value = clean_text(dd.get_text(" "))
            if key and value and key not in specs:
                specs[key] = value
    return specs


def extract_images(soup: BeautifulSoup, base_url: str) -> list[str]:
    """og:image plus product gallery images, as absolute URLs."""
    images: list[str] = []
    og = soup.find("meta", attrs={"property": "og:image"})
    if og is not None and og.get("content"):
        images.append(urljoin(base_url, og["content"]))
    for img in soup.select("[class*=gallery] img, [class*=product] img"):
        src = img.get("data-src") or img.get("src")
        if not src or src.startswith("data:"):
            continue
        url = urljoin(base_url, src)
        if url not in images:
            images.append(url)
    return images


class DealerPageEnrichmentAdapter(EnrichmentAdapter):
    """Scrape a record's dealer detail page with httpx and BeautifulSoup."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout: float = 10.0,
        name: str = "dealer_page",
        cache: FetchCache | None = None,
    ) -> None:
        super().__init__(client, timeout, cache)
        self.name = name

    async def _extract(self, record: CatalogMotorRecord) -> EnrichmentResult:
        if not record.detail_url:
            return EnrichmentResult(source=self.name, error="record has no detail_url")

        html = await self._get_text(record.detail_url)
        soup = BeautifulSoup(html, "lxml")
        return EnrichmentResult(
            source=self.name,
            description=extract_description(soup),
            features=extract_features(soup),
            specifications=extract_specifications(soup),
            images=extract_images(soup, record.detail_url),
        )


FIRECRAWL_EXTRACT_URL = "https://api.firecrawl.dev/v1/extract"

FIRECRAWL_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "description": {"type": "string"},
        "features": {"type": "array", "items": {"type": "string"}},
        "specifications": {
            "type": "object",
            "additionalProperties": {"type": "string"},
        },
        "images": {"type": "array", "items": {"type": "string"}},
    },
}

FIRECRAWL_PROMPT = (
    "Extract the outboard motor's marketing description, a list of key "
    "features, a map of technical specifications (name to value) and the "
    "URLs of product images."
)


def parse_firecrawl_payload(source: str, payload: dict[str, Any]) -> EnrichmentResult:
    """Normalize a Firecrawl extract response into an EnrichmentResult.

    ``data`` may be a single object or a list of per-URL objects; the first
    object is used.
    """
    data = payload.get("data")
    if isinstance(data, list):
        data = data[0] if data else {}
    if not isinstance(data, dict):
        return EnrichmentResult(source=source, error="extract returned no data")

    features = [clean_text(f) for f in data.get("features") or [] if clean_text(f)]
    specs_raw = data.get("specifications") or {}
    specs = {
        clean_text(k): clean_text(v)
        for k, v in specs_raw.items()
        if clean_text(k) and clean_text(v)
    } if isinstance(specs_raw, dict) else {}
    images = [str(i) for i in data.get("images") or [] if i]

    return EnrichmentResult(
        source=source,
        description=clean_text(data.get("description")) or None,
        features=features,
        specifications=specs,
        images=images,
    )


class FirecrawlEnrichmentAdapter(EnrichmentAdapter):
    """Structured extraction through the Firecrawl API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        timeout: float = 30.0,
        name: str = "firecrawl",
        cache: FetchCache | None = None,
    ) -> None:
        super().__init__(client, timeout, cache)
        self.name = name
        self._api_key = api_key

    async def _extract(self, record: CatalogMotorRecord) -> EnrichmentResult:
        if not record.detail_url:
            return EnrichmentResult(source=self.name, error="record has no detail_url")

        start = time.time()
        try:
            response = await self._client.post(
                FIRECRAWL_EXTRACT_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "urls": [record.detail_url],
                    "prompt": FIRECRAWL_PROMPT,
                    "schema": FIRECRAWL_SCHEMA,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            log_external_call("firecrawl", "extract", False, (time.time() - start) * 1000)
            raise SourceFetchError(self.name, f"extract failed: {e}") from e
        log_external_call("firecrawl", "extract", True, (time.time() - start) * 1000)

        if payload.get("success") is False:
            return EnrichmentResult(
                source=self.name, error=str(payload.get("error") or "extract failed")
            )
        return parse_firecrawl_payload(self.name, payload)
