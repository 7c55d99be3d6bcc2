"""Merge descriptive data from several enrichment sources.

Merge policy, in source priority order:
- description: first non-empty value wins
- features, images: union, de-duplicated, first-seen order kept
- specifications: merged per key, first writer wins

Manual overrides are applied last and replace any field they define,
including clearing it when the override value is empty.
"""

from dataclasses import dataclass, field
from typing import Any

from ..models.motor import ManualOverrides
from ..models.pipeline import EnrichmentResult

MANUAL_OVERRIDE_SOURCE = "manual_override"

QUALITY_FIELD_POINTS = 25
QUALITY_BONUS_POINTS = 10
FEATURE_BONUS_COUNT = 5
SPEC_BONUS_COUNT = 5
IMAGE_BONUS_COUNT = 3
MAX_QUALITY = 100


@dataclass
class MergedEnrichment:
    description: str | None = None
    features: list[str] = field(default_factory=list)
    specifications: dict[str, Any] = field(default_factory=dict)
    images: list[str] = field(default_factory=list)
    quality_score: int = 0
    field_sources: dict[str, str] = field(default_factory=dict)


def calculate_quality_score(
    description: str | None,
    features: list[str],
    specifications: dict[str, Any],
    images: list[str],
) -> int:
    """Data-quality score from 0 to 100.

    +25 each for a description, one feature, one specification and one image,
    plus +10 each for at least 5 features, 5 specifications and 3 images.
    """
    score = 0
    if description and description.strip():
        score += QUALITY_FIELD_POINTS
    if features:
        score += QUALITY_FIELD_POINTS
    if specifications:
        score += QUALITY_FIELD_POINTS
    if images:
        score += QUALITY_FIELD_POINTS
    if len(features) >= FEATURE_BONUS_COUNT:
        score += QUALITY_BONUS_POINTS
    if len(specifications) >= SPEC_BONUS_COUNT:
        score += QUALITY_BONUS_POINTS
    if len(images) >= IMAGE_BONUS_COUNT:
        score += QUALITY_BONUS_POINTS
    return min(MAX_QUALITY, score)


def _dedupe_extend(target: list[str], items: list[str]) -> None:
    seen = {item.strip().lower() for item in target}
    for item in items:
        if not item or not item.strip():
            continue
        key = item.strip().lower()
        if key not in seen:
            seen.add(key)
            target.append(item.strip())


def apply_overrides(merged: MergedEnrichment, overrides: ManualOverrides) -> None:
    """Overwrite every field the override bundle defines."""
    if overrides.defines("description"):
        merged.description = overrides.description or None
        merged.field_sources["description"] = MANUAL_OVERRIDE_SOURCE
    if overrides.defines("features"):
        merged.features = list(overrides.features or [])
        merged.field_sources["features"] = MANUAL_OVERRIDE_SOURCE
    if overrides.defines("specifications"):
        merged.specifications = dict(overrides.specifications or {})
        merged.field_sources["specifications"] = MANUAL_OVERRIDE_SOURCE
    if overrides.defines("images"):
        merged.images = list(overrides.images or [])
        merged.field_sources["images"] = MANUAL_OVERRIDE_SOURCE


def merge_enrichment(
    results: list[EnrichmentResult],
    overrides: ManualOverrides | None = None,
) -> MergedEnrichment:
    """Merge priority-ordered enrichment results into one record.

    Args:
        results: Partial results, highest-priority source first. Failed
            results are skipped.
        overrides: The record's manual override bundle, if any.

    Returns:
        Merged fields, the quality score of the final (post-override) data,
        and which source supplied each field.
    """
    merged = MergedEnrichment()

    for result in results:
        if not result.success:
            continue
        if not merged.description and result.description and result.description.strip():
            merged.description = result.description.strip()
            merged.field_sources["description"] = result.source
        if result.features:
            before = len(merged.features)
            _dedupe_extend(merged.features, result.features)
            if len(merged.features) > before:
                merged.field_sources.setdefault("features", result.source)
        if result.specifications:
            for key, value in result.specifications.items():
                if key not in merged.specifications and value not in (None, ""):
                    merged.specifications[key] = value
                    merged.field_sources.setdefault("specifications", result.source)
        if result.images:
            before = len(merged.images)
            _dedupe_extend(merged.images, result.images)
            if len(merged.images) > before:
                merged.field_sources.setdefault("images", result.source)

    if overrides is not None:
        apply_overrides(merged, overrides)

    merged.quality_score = calculate_quality_score(
        merged.description, merged.features, merged.specifications, merged.images
    )
    return merged
