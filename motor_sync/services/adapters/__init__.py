"""Source adapters for listing feeds and enrichment sources."""

from .base import (
    EnrichmentAdapter,
    SourceAdapter,
    build_http_client,
)
from .enrichment import DealerPageEnrichmentAdapter, FirecrawlEnrichmentAdapter
from .inventory_xml import InventoryXmlAdapter
from .price_list import PriceListAdapter

__all__ = [
    "DealerPageEnrichmentAdapter",
    "EnrichmentAdapter",
    "FirecrawlEnrichmentAdapter",
    "InventoryXmlAdapter",
    "PriceListAdapter",
    "SourceAdapter",
    "build_http_client",
]
