"""Ephemeral pipeline types passed between sync stages."""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..core.enums import (
    MatchDecision,
    MatchStrategyName,
    MotorFamily,
    SourceKind,
    SyncMode,
    SyncStatus,
)
from .motor import CatalogMotorRecord


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_title(title: str) -> str:
    """Lowercase and collapse whitespace for identity comparisons."""
    return re.sub(r"\s+", " ", title).strip().lower()


@dataclass(frozen=True)
class MotorFlags:
    command_thrust: bool = False
    jet: bool = False
    efi: bool = False
    pro_kicker: bool = False


@dataclass(frozen=True)
class ParsedMotor:
    """Structured attributes extracted from a free-text motor description."""

    horsepower: float | None
    family: MotorFamily
    shaft_code: str | None
    flags: MotorFlags

    def to_dict(self) -> dict[str, Any]:
        return {
            "horsepower": self.horsepower,
            "family": self.family.value,
            "shaft_code": self.shaft_code,
            "flags": {
                "command_thrust": self.flags.command_thrust,
                "jet": self.flags.jet,
                "efi": self.flags.efi,
                "pro_kicker": self.flags.pro_kicker,
            },
        }


@dataclass
class ScrapedListing:
    """One feed item for the current run."""

    title: str
    source: str
    kind: SourceKind
    parsed: ParsedMotor
    price: float | None = None
    stock_number: str | None = None
    quantity: int = 1
    model_code: str | None = None

    @property
    def pattern(self) -> str:
        return normalize_title(self.title)

    @property
    def listing_key(self) -> str:
        """Listing identity used to de-duplicate review queue entries.

        Price rows can share a description across model codes, so the code
        is part of the identity when the feed carries one.
        """
        key = f"{self.source}:{self.pattern}"
        if self.model_code:
            key = f"{key}#{self.model_code.lower()}"
        return key

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "source": self.source,
            "kind": self.kind.value,
            "price": self.price,
            "stock_number": self.stock_number,
            "quantity": self.quantity,
            "model_code": self.model_code,
            "parsed": self.parsed.to_dict(),
        }


@dataclass
class EnrichmentResult:
    """Partial descriptive data from one enrichment source."""

    source: str
    description: str | None = None
    features: list[str] = field(default_factory=list)
    specifications: dict[str, str] = field(default_factory=dict)
    images: list[str] = field(default_factory=list)
    error: str | None = None
    fetched_at: datetime = field(default_factory=utcnow)

    @property
    def success(self) -> bool:
        return self.error is None

    def populated_fields(self) -> list[str]:
        fields = []
        if self.description:
            fields.append("description")
        if self.features:
            fields.append("features")
        if self.specifications:
            fields.append("specifications")
        if self.images:
            fields.append("images")
        return fields


@dataclass
class MatchCandidate:
    record_id: str
    model_display: str
    score: int
    breakdown: dict[str, int]
    justification: str
    strategy: MatchStrategyName = MatchStrategyName.SCORED

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "model_display": self.model_display,
            "score": self.score,
            "breakdown": dict(self.breakdown),
            "justification": self.justification,
            "strategy": self.strategy.value,
        }


@dataclass
class CatalogSnapshot:
    """Catalog state read once at the start of a run."""

    records: list[CatalogMotorRecord]
    mappings: dict[str, str] = field(default_factory=dict)
    parsed: dict[str, ParsedMotor] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.by_id = {r.id: r for r in self.records}


@dataclass
class RecordResult:
    """Per-listing outcome collected into the run diagnostics."""

    listing: ScrapedListing
    decision: MatchDecision
    best: MatchCandidate | None = None
    candidates: list[MatchCandidate] = field(default_factory=list)
    error: str | None = None

    @property
    def score(self) -> int:
        return self.best.score if self.best else 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "title": self.listing.title,
            "source": self.listing.source,
            "decision": self.decision.value,
            "score": self.score,
            "record_id": self.best.record_id if self.best else None,
            "model": self.best.model_display if self.best else None,
            "justification": self.best.justification if self.best else None,
            "proposed_in_stock": (
                self.decision == MatchDecision.AUTO_ACCEPT
                and self.listing.kind == SourceKind.STOCK
            ),
            "proposed_quantity": self.listing.quantity,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class SyncCounters:
    processed: int = 0
    matched: int = 0
    queued_for_review: int = 0
    rejected: int = 0
    unscoreable: int = 0
    newly_in_stock: int = 0
    newly_out_of_stock: int = 0
    still_in_stock: int = 0
    prices_updated: int = 0
    estimated_prices: int = 0
    failed_writes: int = 0

    def as_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


@dataclass
class SyncRun:
    """Context object for one execution, threaded through every stage."""

    mode: SyncMode
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: SyncStatus = SyncStatus.RUNNING
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    counters: SyncCounters = field(default_factory=SyncCounters)
    results: list[RecordResult] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)
    source_errors: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    def record_failure(self, key: str, error: Exception | str) -> None:
        self.counters.failed_writes += 1
        self.failures.append({"key": key, "error": str(error)})

    def finish(self, status: SyncStatus, error: str | None = None) -> None:
        self.status = status
        self.error = error
        self.completed_at = utcnow()
