"""Ordered matching strategies.

Each strategy has the signature ``(listing, catalog) -> MatchCandidate | None``.
``find_best_match`` tries them in order and returns the first candidate.
Identity strategies (stock number, model number, confirmed mapping) are
exact and score 100; the weighted scorer is the final fallback.
"""

from collections.abc import Callable, Sequence

from ..core.enums import IDENTITY_SCORE, MatchStrategyName
from ..models.motor import CatalogMotorRecord
from ..models.pipeline import CatalogSnapshot, MatchCandidate, ScrapedListing
from .match_scorer import rank_candidates

MatchStrategy = Callable[[ScrapedListing, CatalogSnapshot], MatchCandidate | None]


def _norm_code(value: str | None) -> str:
    return (value or "").strip().upper()


def _identity(
    record: CatalogMotorRecord, strategy: MatchStrategyName, reason: str
) -> MatchCandidate:
    return MatchCandidate(
        record_id=record.id,
        model_display=record.model_display,
        score=IDENTITY_SCORE,
        breakdown={"identity": IDENTITY_SCORE},
        justification=reason,
        strategy=strategy,
    )


def match_by_stock_number(
    listing: ScrapedListing, catalog: CatalogSnapshot
) -> MatchCandidate | None:
    stock = _norm_code(listing.stock_number)
    if not stock:
        return None
    for record in catalog.records:
        if _norm_code(record.stock_number) == stock:
            return _identity(
                record, MatchStrategyName.STOCK_NUMBER, f"stock number {stock}"
            )
    return None


def match_by_model_number(
    listing: ScrapedListing, catalog: CatalogSnapshot
) -> MatchCandidate | None:
    code = _norm_code(listing.model_code)
    if not code:
        return None
    for record in catalog.records:
        if _norm_code(record.model_number) == code:
            return _identity(
                record, MatchStrategyName.MODEL_NUMBER, f"model number {code}"
            )
    return None


def match_by_mapping(
    listing: ScrapedListing, catalog: CatalogSnapshot
) -> MatchCandidate | None:
    record_id = catalog.mappings.get(listing.pattern)
    if not record_id:
        return None
    record = catalog.by_id.get(record_id)
    if record is None:
        return None
    return _identity(
        record, MatchStrategyName.HISTORICAL_MAPPING, "confirmed by reviewer"
    )


def match_by_score(
    listing: ScrapedListing, catalog: CatalogSnapshot
) -> MatchCandidate | None:
    ranked = rank_candidates(listing, catalog.records, catalog.parsed, limit=1)
    return ranked[0] if ranked else None


DEFAULT_STRATEGIES: tuple[MatchStrategy, ...] = (
    match_by_stock_number,
    match_by_model_number,
    match_by_mapping,
    match_by_score,
)


def find_best_match(
    listing: ScrapedListing,
    catalog: CatalogSnapshot,
    strategies: Sequence[MatchStrategy] = DEFAULT_STRATEGIES,
) -> MatchCandidate | None:
    """Return the first candidate produced by the ordered strategies."""
    for strategy in strategies:
        candidate = strategy(listing, catalog)
        if candidate is not None:
            return candidate
    return None
