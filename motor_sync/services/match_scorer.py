"""Weighted confidence scoring between a listing and a catalog record.

Scoring is additive and capped at 100:

    horsepower proximity   0-60  (dominant signal)
    family agreement       0-30
    flag agreement         0-10
    shaft-code bonus       0-5

A listing whose horsepower cannot be compared (missing on either side, or
too far apart) scores 0 overall. The remaining criteria are still reported
in the breakdown so reviewers can see why.
"""

from ..core.enums import (
    FAMILY_COMPATIBLE_POINTS,
    FAMILY_EXACT_POINTS,
    FAMILY_PARTIAL_POINTS,
    FLAG_POINTS,
    HP_CLOSE_POINTS,
    HP_EXACT_POINTS,
    HP_HALF_POINTS,
    HP_NEAR_POINTS,
    MAX_SCORE,
    SHAFT_BONUS_POINTS,
    MatchStrategyName,
    MotorFamily,
)
from ..models.motor import CatalogMotorRecord
from ..models.pipeline import MatchCandidate, MotorFlags, ParsedMotor, ScrapedListing
from ..utils.motor_parsing import parse_motor_description, shaft_tokens

_COMPATIBLE_FAMILIES = {frozenset({MotorFamily.FOURSTROKE, MotorFamily.EFI})}


def score_horsepower(listing_hp: float | None, record_hp: float | None) -> int:
    """Horsepower proximity points."""
    if listing_hp is None or record_hp is None:
        return 0
    diff = abs(listing_hp - record_hp)
    if diff < 0.1:
        return HP_EXACT_POINTS
    if diff <= 0.5:
        return HP_HALF_POINTS
    if diff <= 2:
        return HP_CLOSE_POINTS
    if diff <= 5:
        return HP_NEAR_POINTS
    return 0


def _family_label(family: MotorFamily) -> str:
    return family.value.lower().replace(" ", "").replace("-", "")


def score_family(listing_family: MotorFamily, record_family: MotorFamily) -> int:
    """Family agreement points. Unknown on either side is no signal."""
    if MotorFamily.UNKNOWN in (listing_family, record_family):
        return 0
    if listing_family == record_family:
        return FAMILY_EXACT_POINTS
    if frozenset({listing_family, record_family}) in _COMPATIBLE_FAMILIES:
        return FAMILY_COMPATIBLE_POINTS
    a, b = _family_label(listing_family), _family_label(record_family)
    if a in b or b in a:
        return FAMILY_PARTIAL_POINTS
    return 0


def score_flags(listing_flags: MotorFlags, record_flags: MotorFlags) -> int:
    """Points for each flag that agrees (both set or both unset)."""
    return sum(
        points
        for name, points in FLAG_POINTS.items()
        if getattr(listing_flags, name) == getattr(record_flags, name)
    )


def score_shaft(listing_text: str, record_text: str) -> int:
    """Bonus when both raw strings carry the same shaft-code token."""
    shared = set(shaft_tokens(listing_text)) & set(shaft_tokens(record_text))
    return SHAFT_BONUS_POINTS if shared else 0


def describe_record(record: CatalogMotorRecord) -> ParsedMotor:
    """Parse a catalog record, preferring its stored structured fields."""
    parsed = parse_motor_description(record.model_display)
    family = record.family_enum
    return ParsedMotor(
        horsepower=(
            record.horsepower if record.horsepower is not None else parsed.horsepower
        ),
        family=family if family != MotorFamily.UNKNOWN else parsed.family,
        shaft_code=record.shaft_code or parsed.shaft_code,
        flags=parsed.flags,
    )


def _justify(breakdown: dict[str, int], listing: ParsedMotor, record: ParsedMotor) -> str:
    if breakdown["horsepower"] == 0:
        if listing.horsepower is None or record.horsepower is None:
            return "horsepower missing; not comparable"
        return (
            f"horsepower mismatch ({listing.horsepower:g} vs {record.horsepower:g})"
        )
    parts = [f"hp {listing.horsepower:g}~{record.horsepower:g} (+{breakdown['horsepower']})"]
    if breakdown["family"]:
        parts.append(f"family {record.family.value} (+{breakdown['family']})")
    parts.append(f"flags +{breakdown['flags']}")
    if breakdown["shaft"]:
        parts.append(f"shaft code +{breakdown['shaft']}")
    return ", ".join(parts)


def score_match(
    listing: ScrapedListing,
    record: CatalogMotorRecord,
    record_parsed: ParsedMotor | None = None,
) -> MatchCandidate:
    """Score one listing against one catalog record.

    Pure and deterministic: the same inputs always give the same score,
    breakdown and justification.
    """
    rp = record_parsed or describe_record(record)
    lp = listing.parsed
    record_text = " ".join(filter(None, [record.model_display, record.shaft_code]))

    breakdown = {
        "horsepower": score_horsepower(lp.horsepower, rp.horsepower),
        "family": score_family(lp.family, rp.family),
        "flags": score_flags(lp.flags, rp.flags),
        "shaft": score_shaft(listing.title, record_text),
    }
    total = 0
    if breakdown["horsepower"]:
        total = min(MAX_SCORE, sum(breakdown.values()))

    return MatchCandidate(
        record_id=record.id,
        model_display=record.model_display,
        score=total,
        breakdown=breakdown,
        justification=_justify(breakdown, lp, rp),
        strategy=MatchStrategyName.SCORED,
    )


def rank_candidates(
    listing: ScrapedListing,
    records: list[CatalogMotorRecord],
    parsed: dict[str, ParsedMotor] | None = None,
    limit: int | None = None,
) -> list[MatchCandidate]:
    """Score every record and return candidates best-first.

    Ties break on record id so ranking is stable across runs.
    """
    parsed = parsed or {}
    candidates = [score_match(listing, r, parsed.get(r.id)) for r in records]
    candidates.sort(key=lambda c: (-c.score, c.record_id))
    return candidates[:limit] if limit is not None else candidates
