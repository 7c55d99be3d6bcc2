"""Pydantic row models for persisted entities and API payloads."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..core.enums import MotorFamily, ReviewStatus


class ManualOverrides(BaseModel):
    """Human-entered values that win over every scraped source.

    A field counts as defined when it is present in the stored bundle, even
    if its value is null or empty; an explicit empty value clears the field.
    """

    model_config = ConfigDict(extra="ignore")

    description: str | None = None
    features: list[str] | None = None
    specifications: dict[str, str] | None = None
    images: list[str] | None = None
    base_price: float | None = None
    dealer_price: float | None = None
    sale_price: float | None = None

    def defines(self, field: str) -> bool:
        return field in self.model_fields_set


class CatalogMotorRecord(BaseModel):
    """A row of the motor_models table."""

    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    id: str
    model_display: str
    model_number: str | None = None
    horsepower: float | None = None
    family: str | None = None
    shaft_code: str | None = None
    is_brochure: bool = True
    in_stock: bool = False
    stock_quantity: int = 0
    stock_number: str | None = None
    availability: str | None = None
    base_price: float | None = None
    dealer_price_live: float | None = None
    sale_price: float | None = None
    estimated_price: float | None = None
    price_source: str | None = None
    detail_url: str | None = None
    description: str | None = None
    features: list[str] = Field(default_factory=list)
    specifications: dict[str, Any] = Field(default_factory=dict)
    images: list[str] = Field(default_factory=list)
    data_sources: dict[str, Any] = Field(default_factory=dict)
    data_quality_score: int = 0
    last_stock_check: datetime | None = None
    last_enriched: datetime | None = None
    manual_overrides: dict[str, Any] | None = None

    @property
    def family_enum(self) -> MotorFamily:
        return MotorFamily.from_string(self.family)

    def overrides(self) -> ManualOverrides | None:
        """Parse the stored override bundle, or None when absent."""
        if not self.manual_overrides:
            return None
        return ManualOverrides.model_validate(self.manual_overrides)


class ReviewQueueEntry(BaseModel):
    """A row of the pending_motor_matches table."""

    model_config = ConfigDict(extra="ignore")

    id: str
    listing_key: str
    source: str
    scraped_motor_data: dict[str, Any] = Field(default_factory=dict)
    potential_matches: list[dict[str, Any]] = Field(default_factory=list)
    confidence_score: int = 0
    review_status: ReviewStatus = ReviewStatus.PENDING
    selected_match_id: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    sync_run_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SourceDescriptor(BaseModel):
    """A row of the motor_data_sources table."""

    model_config = ConfigDict(extra="ignore")

    name: str
    is_active: bool = True
    priority: int = 100
    success_rate: float = 100.0
    last_scraped: datetime | None = None


class SyncLogEntry(BaseModel):
    """A row of the sync_logs table."""

    model_config = ConfigDict(extra="ignore")

    id: str
    sync_type: str
    status: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    motors_processed: int = 0
    motors_matched: int = 0
    motors_in_stock: int = 0
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: str | None = None


class SyncResult(BaseModel):
    """Structured outcome of one sync run, returned instead of raising."""

    success: bool
    run_id: str | None = None
    mode: str
    status: str
    counters: dict[str, int] = Field(default_factory=dict)
    details: list[dict[str, Any]] = Field(default_factory=list)
    unmatched: list[dict[str, Any]] = Field(default_factory=list)
    failures: list[dict[str, Any]] = Field(default_factory=list)
    source_errors: dict[str, str] = Field(default_factory=dict)
    error: str | None = None
    duration_ms: float | None = None


class EnrichmentRunResult(BaseModel):
    """Outcome of one enrichment batch."""

    success: bool
    records_processed: int = 0
    records_updated: int = 0
    failures: list[dict[str, Any]] = Field(default_factory=list)
    source_errors: dict[str, int] = Field(default_factory=dict)
    error: str | None = None
