"""Dependency wiring for repositories, adapters and services."""

import time
from typing import Annotated, Any

import httpx
from fastapi import Depends, Request

from supabase import Client

from ..db.catalog import CatalogRepository
from ..db.client import get_supabase_client
from ..db.mappings import MatchMappingRepository
from ..db.review_queue import ReviewQueueRepository
from ..db.sources import SourceRepository
from ..db.sync_logs import SyncLogRepository
from ..services.adapters import (
    DealerPageEnrichmentAdapter,
    EnrichmentAdapter,
    FirecrawlEnrichmentAdapter,
    InventoryXmlAdapter,
    PriceListAdapter,
    SourceAdapter,
)
from ..services.enrichment_service import EnrichmentCoordinator
from ..services.fetch_cache import FetchCache
from ..services.reconciliation import ReconciliationCoordinator
from ..services.record_writer import RecordLocks
from ..services.review_service import ReviewService
from .config import Settings, get_settings
from .logging import log_db_query, log_external_call

# -----------------------------------------------------------------------------
# Supabase Client
# -----------------------------------------------------------------------------


def get_supabase() -> Client:
    """Dependency for Supabase client."""
    return get_supabase_client()


# -----------------------------------------------------------------------------
# Adapters
# -----------------------------------------------------------------------------


def build_source_adapters(
    settings: Settings, client: httpx.AsyncClient
) -> list[SourceAdapter]:
    """Listing feeds for stock and price reconciliation."""
    return [
        InventoryXmlAdapter(
            client,
            settings.inventory_feed_url,
            manufacturer=settings.target_manufacturer,
            condition=settings.target_condition,
            timeout=settings.feed_timeout_seconds,
        ),
        PriceListAdapter(
            client,
            settings.price_list_url,
            timeout=settings.feed_timeout_seconds,
        ),
    ]


def build_enrichment_adapters(
    settings: Settings, client: httpx.AsyncClient, cache: FetchCache
) -> list[EnrichmentAdapter]:
    """Enrichment sources; Firecrawl is only enabled with an API key."""
    adapters: list[EnrichmentAdapter] = [
        DealerPageEnrichmentAdapter(
            client, timeout=settings.item_timeout_seconds, cache=cache
        ),
    ]
    if settings.firecrawl_api_key:
        adapters.append(
            FirecrawlEnrichmentAdapter(
                client,
                settings.firecrawl_api_key,
                timeout=settings.feed_timeout_seconds,
                cache=cache,
            )
        )
    return adapters


# -----------------------------------------------------------------------------
# Services
# -----------------------------------------------------------------------------


def build_reconciliation_coordinator(
    settings: Settings,
    supabase: Client,
    http_client: httpx.AsyncClient,
    locks: RecordLocks | None = None,
) -> ReconciliationCoordinator:
    return ReconciliationCoordinator(
        settings=settings,
        adapters=build_source_adapters(settings, http_client),
        catalog=CatalogRepository(supabase),
        review_queue=ReviewQueueRepository(supabase),
        sync_logs=SyncLogRepository(supabase),
        sources=SourceRepository(supabase),
        mappings=MatchMappingRepository(supabase),
        locks=locks,
    )


def build_enrichment_coordinator(
    settings: Settings,
    supabase: Client,
    http_client: httpx.AsyncClient,
    cache: FetchCache,
    locks: RecordLocks | None = None,
) -> EnrichmentCoordinator:
    return EnrichmentCoordinator(
        adapters=build_enrichment_adapters(settings, http_client, cache),
        catalog=CatalogRepository(supabase),
        sources=SourceRepository(supabase),
        concurrency=settings.fetch_concurrency,
        batch_size=settings.enrichment_batch_size,
        locks=locks,
    )


def get_reconciliation_coordinator(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    supabase: Annotated[Client, Depends(get_supabase)],
) -> ReconciliationCoordinator:
    """Dependency for the reconciliation coordinator."""
    return build_reconciliation_coordinator(
        settings,
        supabase,
        request.app.state.http_client,
        request.app.state.record_locks,
    )


def get_enrichment_coordinator(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    supabase: Annotated[Client, Depends(get_supabase)],
) -> EnrichmentCoordinator:
    """Dependency for the enrichment coordinator."""
    return build_enrichment_coordinator(
        settings,
        supabase,
        request.app.state.http_client,
        request.app.state.fetch_cache,
        request.app.state.record_locks,
    )


def get_review_service(
    request: Request,
    supabase: Annotated[Client, Depends(get_supabase)],
) -> ReviewService:
    """Dependency for the review service."""
    return ReviewService(
        ReviewQueueRepository(supabase),
        CatalogRepository(supabase),
        MatchMappingRepository(supabase),
        locks=request.app.state.record_locks,
    )


def get_sync_log_repository(
    supabase: Annotated[Client, Depends(get_supabase)],
) -> SyncLogRepository:
    return SyncLogRepository(supabase)


# -----------------------------------------------------------------------------
# Health Check Helpers
# -----------------------------------------------------------------------------


async def check_supabase_health(supabase: Client) -> dict[str, Any]:
    """Check Supabase connectivity."""
    start = time.time()
    try:
        supabase.table("motor_models").select("id").limit(1).execute()
        duration_ms = (time.time() - start) * 1000
        log_db_query("health_check", "motor_models", duration_ms)
        return {
            "status": "healthy",
            "latency_ms": round(duration_ms, 2),
        }
    except Exception as e:
        duration_ms = (time.time() - start) * 1000
        log_external_call("supabase", "health_check", False, duration_ms)
        return {
            "status": "unhealthy",
            "error": str(e),
            "latency_ms": round(duration_ms, 2),
        }
