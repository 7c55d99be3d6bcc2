"""Centralized motor description parsing utilities.

This module is the single source of truth for extracting:
- Horsepower (including fractional ratings such as 9.9)
- Motor family (Verado, Pro XS, SeaPro, FourStroke, EFI)
- Configuration flags (Command Thrust, jet, EFI, ProKicker)
- Shaft/rigging codes (MH, ELPT, XL, ...)
"""

import re
from collections.abc import Callable

from ..core.enums import MotorFamily
from ..models.pipeline import MotorFlags, ParsedMotor

# =============================================================================
# KEYWORD CONSTANTS (single source of truth)
# =============================================================================

YEAR_PREFIX_RE = re.compile(r"^\s*(?:19|20)\d{2}\s+")
DECORATIVE_RE = re.compile(r"[†‡⚠®™*]")
BRAND_RE = re.compile(r"\b(?:mercury|marine)\b", re.IGNORECASE)

# Model/rigging code tokens that may directly follow a horsepower number.
# Longest first so the alternation prefers "ELHPT" over "EL".
MODEL_CODE_TOKENS: tuple[str, ...] = (
    "EXLHPT", "ELHPT", "EXLPT", "MXLH", "EXLH", "ELPT", "CXXL", "CXL",
    "MLH", "ELH", "EPT", "EXL", "XXL", "MRC", "JPO", "EFI",
    "EH", "MH", "EL", "XL", "CT", "L",
)

# Shaft codes in detection order (first found wins)
SHAFT_CODES: tuple[str, ...] = (
    "EH", "ELH", "EL", "MH", "MLH", "EPT", "ELPT", "EXL", "XXL", "XL",
)

HP_SUFFIX_RE = re.compile(r"(\d+(?:\.\d+)?)\s*HP\b", re.IGNORECASE)
HP_CODE_RE = re.compile(
    r"(\d+(?:\.\d+)?)\s?(?:" + "|".join(MODEL_CODE_TOKENS) + r")(?![A-Za-z])",
    re.IGNORECASE,
)
HP_LEADING_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)(?![\d.])")

MIN_HORSEPOWER = 1.0
MAX_HORSEPOWER = 700.0


def _contains_any(*keywords: str) -> Callable[[str], bool]:
    return lambda text: any(k in text for k in keywords)


# Ordered (predicate, family) priority table, evaluated on lowercased text
FAMILY_RULES: list[tuple[Callable[[str], bool], MotorFamily]] = [
    (_contains_any("verado"), MotorFamily.VERADO),
    (_contains_any("pro xs", "proxs", "pro-xs"), MotorFamily.PRO_XS),
    (_contains_any("seapro", "sea pro", "sea-pro"), MotorFamily.SEAPRO),
    (_contains_any("fourstroke", "four stroke", "four-stroke"), MotorFamily.FOURSTROKE),
    (_contains_any("efi"), MotorFamily.EFI),
]


def _token_re(token: str) -> re.Pattern[str]:
    return re.compile(rf"(?<![A-Z]){token}(?![A-Z])")


_SHAFT_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    (code, _token_re(code)) for code in SHAFT_CODES
]
_CT_TOKEN_RE = _token_re("CT")
_JET_RE = re.compile(r"\bjet\b", re.IGNORECASE)


# =============================================================================
# PARSING FUNCTIONS
# =============================================================================


def clean_description(text: str | None) -> str:
    """Strip year prefix, brand words and decorative symbols.

    Examples:
        >>> clean_description("2025 Mercury 9.9MH FourStroke®")
        '9.9MH FourStroke'
    """
    if not text:
        return ""
    cleaned = DECORATIVE_RE.sub("", text)
    cleaned = YEAR_PREFIX_RE.sub("", cleaned)
    cleaned = BRAND_RE.sub("", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def _in_range(value: float) -> bool:
    return MIN_HORSEPOWER <= value <= MAX_HORSEPOWER


def extract_horsepower(text: str | None) -> float | None:
    """Extract the horsepower rating from a motor description.

    Tries "<num>HP", then "<num>" followed by a model code, then a bare
    leading number. The first pattern that yields an in-range value wins.

    Examples:
        >>> extract_horsepower("2025 Mercury 9.9MH FourStroke")
        9.9
        >>> extract_horsepower("Verado 300 HP")
        300.0
        >>> extract_horsepower("Mercury Accessory Kit") is None
        True
    """
    cleaned = clean_description(text)
    if not cleaned:
        return None

    for pattern in (HP_SUFFIX_RE, HP_CODE_RE, HP_LEADING_RE):
        for match in pattern.finditer(cleaned):
            value = float(match.group(1))
            if _in_range(value):
                return value
    return None


def classify_family(text: str | None) -> MotorFamily:
    """Classify the motor family by priority (first matching rule wins).

    Examples:
        >>> classify_family("9.9MH FourStroke EFI")
        <MotorFamily.FOURSTROKE: 'FourStroke'>
        >>> classify_family("Accessory Kit")
        <MotorFamily.UNKNOWN: 'Unknown'>
    """
    if not text:
        return MotorFamily.UNKNOWN
    text_lower = text.lower()
    for predicate, family in FAMILY_RULES:
        if predicate(text_lower):
            return family
    return MotorFamily.UNKNOWN


def detect_flags(text: str | None) -> MotorFlags:
    """Detect configuration flags; several may be true at once."""
    if not text:
        return MotorFlags()
    text_lower = text.lower()
    return MotorFlags(
        command_thrust=(
            "command thrust" in text_lower
            or bool(_CT_TOKEN_RE.search(text.upper()))
        ),
        jet=bool(_JET_RE.search(text)),
        efi="efi" in text_lower,
        pro_kicker="prokicker" in text_lower or "pro kicker" in text_lower,
    )


def shaft_tokens(text: str | None) -> list[str]:
    """All shaft codes present as standalone tokens, in detection order.

    A code only counts when it is not glued to other letters, so "EL"
    does not match inside "ELPT" or "electric".
    """
    if not text:
        return []
    upper = text.upper()
    return [code for code, pattern in _SHAFT_PATTERNS if pattern.search(upper)]


def detect_shaft_code(text: str | None) -> str | None:
    """Return the first shaft code found, or None.

    Examples:
        >>> detect_shaft_code("115ELPT Pro XS")
        'ELPT'
        >>> detect_shaft_code("9.9MH FourStroke")
        'MH'
    """
    tokens = shaft_tokens(text)
    return tokens[0] if tokens else None


def parse_motor_description(text: str | None) -> ParsedMotor:
    """Parse a free-text listing into structured motor attributes."""
    cleaned = clean_description(text)
    return ParsedMotor(
        horsepower=extract_horsepower(cleaned),
        family=classify_family(cleaned),
        shaft_code=detect_shaft_code(cleaned),
        flags=detect_flags(cleaned),
    )


def format_motor_display(parsed: ParsedMotor) -> str:
    """Build the canonical display string for parsed attributes.

    Parsing the result reproduces the same attributes.

    Examples:
        >>> from motor_sync.models.pipeline import MotorFlags, ParsedMotor
        >>> format_motor_display(ParsedMotor(9.9, MotorFamily.FOURSTROKE, "MH", MotorFlags(efi=True)))
        '9.9MH FourStroke EFI'
    """
    parts: list[str] = []
    if parsed.horsepower is not None:
        hp = parsed.horsepower
        hp_text = str(int(hp)) if float(hp).is_integer() else str(hp)
        parts.append(f"{hp_text}{parsed.shaft_code or ''}")
    elif parsed.shaft_code:
        parts.append(parsed.shaft_code)
    if parsed.family not in (MotorFamily.UNKNOWN, MotorFamily.EFI):
        parts.append(parsed.family.value)
    if parsed.flags.efi or parsed.family == MotorFamily.EFI:
        parts.append("EFI")
    if parsed.flags.command_thrust:
        parts.append("Command Thrust")
    if parsed.flags.pro_kicker:
        parts.append("ProKicker")
    if parsed.flags.jet:
        parts.append("Jet")
    return " ".join(parts)
