"""Fallback price estimation from horsepower and family."""

import math

from ..core.enums import PRICE_SOURCE_ESTIMATE, MotorFamily
from ..models.motor import CatalogMotorRecord

# (slope per hp, intercept) by family
PRICE_FORMULAS: dict[MotorFamily, tuple[float, float]] = {
    MotorFamily.VERADO: (110.0, 8000.0),
    MotorFamily.PRO_XS: (100.0, 5000.0),
    MotorFamily.FOURSTROKE: (85.0, 2500.0),
}
GENERIC_FORMULA: tuple[float, float] = (75.0, 2000.0)

MIN_ESTIMATE = 1000
MAX_ESTIMATE = 50000


def round_to_hundred(value: float) -> int:
    """Round half-up to the nearest 100."""
    return int(math.floor(value / 100 + 0.5) * 100)


def estimate_price(horsepower: float | None, family: MotorFamily) -> int | None:
    """Estimate a price, or None when horsepower is missing or out of bounds.

    Examples:
        >>> estimate_price(40, MotorFamily.FOURSTROKE)
        5900
        >>> estimate_price(None, MotorFamily.VERADO) is None
        True
    """
    if horsepower is None or horsepower <= 0:
        return None
    slope, intercept = PRICE_FORMULAS.get(family, GENERIC_FORMULA)
    price = round_to_hundred(horsepower * slope + intercept)
    if price < MIN_ESTIMATE or price > MAX_ESTIMATE:
        return None
    return price


def needs_estimate(record: CatalogMotorRecord) -> bool:
    """True when the record has no better price source than an estimate."""
    if record.base_price or record.dealer_price_live or record.sale_price:
        return False
    overrides = record.overrides()
    if overrides and (
        overrides.base_price or overrides.dealer_price or overrides.sale_price
    ):
        return False
    return record.price_source in (None, PRICE_SOURCE_ESTIMATE)
