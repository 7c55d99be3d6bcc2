"""Enums for motor reconciliation constants."""

from enum import Enum


class MotorFamily(str, Enum):
    """Outboard motor family/type."""

    FOURSTROKE = "FourStroke"
    VERADO = "Verado"
    PRO_XS = "Pro XS"
    SEAPRO = "SeaPro"
    EFI = "EFI"
    UNKNOWN = "Unknown"

    @classmethod
    def from_string(cls, value: str | None) -> "MotorFamily":
        """Convert string to enum, handling common spellings."""
        if not value:
            return cls.UNKNOWN
        value_lower = value.lower().strip()
        mappings = {
            "fourstroke": cls.FOURSTROKE,
            "four stroke": cls.FOURSTROKE,
            "four-stroke": cls.FOURSTROKE,
            "verado": cls.VERADO,
            "pro xs": cls.PRO_XS,
            "proxs": cls.PRO_XS,
            "pro-xs": cls.PRO_XS,
            "seapro": cls.SEAPRO,
            "sea pro": cls.SEAPRO,
            "efi": cls.EFI,
        }
        return mappings.get(value_lower, cls.UNKNOWN)


class SyncMode(str, Enum):
    """Reconciliation run mode."""

    PREVIEW = "preview"
    APPLY = "apply"


class SyncStatus(str, Enum):
    """Sync run lifecycle status."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SourceKind(str, Enum):
    """What a listing source contributes to the catalog."""

    STOCK = "stock"
    PRICE = "price"
    ENRICHMENT = "enrichment"


class ReviewStatus(str, Enum):
    """Review queue entry status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    NO_MATCH = "no_match"

    @classmethod
    def from_string(cls, value: str | None) -> "ReviewStatus | None":
        """Convert string to enum, returning None if invalid."""
        if not value:
            return None
        try:
            return cls(value.lower())
        except ValueError:
            return None


class MatchDecision(str, Enum):
    """Outcome of thresholding one listing's best candidate."""

    AUTO_ACCEPT = "auto_accept"
    REVIEW = "review"
    REJECTED = "rejected"
    UNSCOREABLE = "unscoreable"


class MatchStrategyName(str, Enum):
    """Which matching strategy produced a candidate."""

    STOCK_NUMBER = "stock_number"
    MODEL_NUMBER = "model_number"
    HISTORICAL_MAPPING = "historical_mapping"
    SCORED = "scored"


# Horsepower proximity points
HP_EXACT_POINTS = 60
HP_HALF_POINTS = 50
HP_CLOSE_POINTS = 30
HP_NEAR_POINTS = 15

# Family points
FAMILY_EXACT_POINTS = 30
FAMILY_COMPATIBLE_POINTS = 20
FAMILY_PARTIAL_POINTS = 15

# Flag agreement points (sums to 10)
FLAG_POINTS: dict[str, int] = {
    "command_thrust": 3,
    "jet": 2,
    "efi": 2,
    "pro_kicker": 3,
}

SHAFT_BONUS_POINTS = 5
MAX_SCORE = 100
IDENTITY_SCORE = 100

# Source success-rate nudges
SOURCE_SUCCESS_NUDGE = 10
SOURCE_FAILURE_NUDGE = -5

AVAILABILITY_IN_STOCK = "In Stock"
AVAILABILITY_BROCHURE = "Brochure"
PRICE_SOURCE_ESTIMATE = "estimate"
