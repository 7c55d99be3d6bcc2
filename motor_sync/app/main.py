"""FastAPI application for the motor reconciliation engine."""

import time
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from ..core.config import get_settings, validate_settings
from ..core.dependencies import (
    check_supabase_health,
    get_enrichment_coordinator,
    get_reconciliation_coordinator,
    get_review_service,
    get_supabase,
    get_sync_log_repository,
)
from ..core.errors import PersistenceError, ReviewActionError
from ..core.logging import log_error, log_request, log_response, logger
from ..db.sync_logs import SyncLogRepository
from ..models.motor import EnrichmentRunResult, SyncResult
from ..services.adapters import build_http_client
from ..services.enrichment_service import EnrichmentCoordinator
from ..services.fetch_cache import FetchCache
from ..services.reconciliation import ReconciliationCoordinator
from ..services.record_writer import RecordLocks
from ..services.review_service import ReviewService

# Validate settings on startup
try:
    validate_settings()
except ValueError as e:
    logger.error(f"Configuration error: {e}")
    raise

settings = get_settings()

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - shared HTTP client, fetch cache and record locks."""
    logger.info("Starting Motor Sync API...")
    app.state.http_client = build_http_client(settings.feed_timeout_seconds)
    app.state.fetch_cache = FetchCache(
        maxsize=settings.fetch_cache_size, ttl=settings.fetch_cache_ttl
    )
    app.state.record_locks = RecordLocks()
    yield
    logger.info("Shutting down...")
    await app.state.http_client.aclose()


app = FastAPI(
    title="Motor Sync API",
    description="Motor listing reconciliation, review queue and enrichment",
    version="1.0.0",
    lifespan=lifespan,
)

# State for limiter
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    log_error("Rate limit exceeded", client=get_remote_address(request))
    return JSONResponse(
        status_code=429, content={"detail": "Rate limit exceeded. Try again later."}
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    log_request(request.method, request.url.path)

    response = await call_next(request)

    duration_ms = (time.time() - start) * 1000
    log_response(request.method, request.url.path, response.status_code, duration_ms)

    return response


# -----------------------------------------------------------------------------
# Request/Response Models
# -----------------------------------------------------------------------------


class ApproveRequest(BaseModel):
    record_id: str = Field(..., min_length=1)
    reviewer: str | None = Field(default=None, max_length=200)


class RejectRequest(BaseModel):
    reviewer: str | None = Field(default=None, max_length=200)
    no_match: bool = False


class EnrichmentRequest(BaseModel):
    record_ids: list[str] | None = Field(default=None, max_length=500)
    limit: int | None = Field(default=None, ge=1, le=500)


class HealthResponse(BaseModel):
    status: str
    supabase: dict[str, Any] | None = None


# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------


@app.get("/health", response_model=HealthResponse)
async def health_check(detailed: bool = False, supabase=Depends(get_supabase)):
    """
    Health check endpoint.

    - Basic: Returns {"status": "healthy"}
    - Detailed (?detailed=true): Checks Supabase connectivity
    """
    if not detailed:
        return {"status": "healthy"}

    supabase_health = await check_supabase_health(supabase)
    overall = "healthy" if supabase_health["status"] == "healthy" else "degraded"
    return {"status": overall, "supabase": supabase_health}


@app.post("/api/sync/preview", response_model=SyncResult)
@limiter.limit(settings.sync_rate_limit)
async def sync_preview(
    request: Request,
    coordinator: Annotated[
        ReconciliationCoordinator, Depends(get_reconciliation_coordinator)
    ],
):
    """Run the full pipeline without touching the catalog or review queue."""
    return await coordinator.preview()


@app.post("/api/sync/apply", response_model=SyncResult)
@limiter.limit(settings.sync_rate_limit)
async def sync_apply(
    request: Request,
    coordinator: Annotated[
        ReconciliationCoordinator, Depends(get_reconciliation_coordinator)
    ],
):
    """Run the pipeline and commit stock, prices and review entries."""
    return await coordinator.apply()


@app.get("/api/sync/runs")
async def sync_runs(
    sync_logs: Annotated[SyncLogRepository, Depends(get_sync_log_repository)],
    limit: int = Query(default=20, ge=1, le=200),
):
    """Latest sync runs, newest first."""
    try:
        runs = await sync_logs.list_recent(limit)
        return {"runs": [r.model_dump(mode="json") for r in runs]}
    except PersistenceError as e:
        log_error("Sync log query failed", e)
        raise HTTPException(status_code=500, detail="Failed to load sync runs")


@app.get("/api/review")
async def review_queue(
    review: Annotated[ReviewService, Depends(get_review_service)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    status: str = Query(default="pending"),
):
    """Paginated review queue (status: pending, approved, rejected, no_match, all)."""
    try:
        return await review.list_entries(page, page_size, status)
    except ReviewActionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        log_error("Review queue query failed", e)
        raise HTTPException(status_code=500, detail="Failed to load review queue")


@app.post("/api/review/{entry_id}/approve")
async def review_approve(
    entry_id: str,
    body: ApproveRequest,
    review: Annotated[ReviewService, Depends(get_review_service)],
):
    """Accept a queued match; applies it like an automatic match."""
    try:
        entry = await review.approve(entry_id, body.record_id, body.reviewer)
        return entry.model_dump(mode="json")
    except ReviewActionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PersistenceError as e:
        log_error("Review approve failed", e, entry=entry_id)
        raise HTTPException(status_code=500, detail="Failed to approve entry")


@app.post("/api/review/{entry_id}/reject")
async def review_reject(
    entry_id: str,
    body: RejectRequest,
    review: Annotated[ReviewService, Depends(get_review_service)],
):
    """Reject a queued match, or mark the listing as having no match."""
    try:
        entry = await review.reject(entry_id, body.reviewer, body.no_match)
        return entry.model_dump(mode="json")
    except ReviewActionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PersistenceError as e:
        log_error("Review reject failed", e, entry=entry_id)
        raise HTTPException(status_code=500, detail="Failed to reject entry")


@app.post("/api/enrichment/run", response_model=EnrichmentRunResult)
@limiter.limit(settings.sync_rate_limit)
async def enrichment_run(
    request: Request,
    body: EnrichmentRequest,
    coordinator: Annotated[EnrichmentCoordinator, Depends(get_enrichment_coordinator)],
):
    """Enrich catalog records from every active enrichment source."""
    return await coordinator.run(body.record_ids, body.limit)
