"""Application configuration with environment variable validation."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env relative to the project root (2 levels up from this file)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Supabase
    supabase_url: str = Field(..., validation_alias="SUPABASE_URL")
    supabase_key: str = Field(..., validation_alias="SUPABASE_KEY")

    # Feeds
    inventory_feed_url: str = Field(
        default="https://www.harrisboatworks.ca/unitinventory_univ.xml",
        validation_alias="INVENTORY_FEED_URL",
    )
    price_list_url: str = Field(
        default="https://www.harrisboatworks.ca/mercurypricelist",
        validation_alias="PRICE_LIST_URL",
    )
    target_manufacturer: str = Field(
        default="mercury", validation_alias="TARGET_MANUFACTURER"
    )
    target_condition: str = Field(default="new", validation_alias="TARGET_CONDITION")

    # Enrichment
    firecrawl_api_key: str = Field(default="", validation_alias="FIRECRAWL_API_KEY")
    enrichment_batch_size: int = Field(
        default=10, validation_alias="ENRICHMENT_BATCH_SIZE"
    )

    # Match thresholds (stock sync and price list are tuned independently)
    stock_auto_accept_threshold: int = Field(
        default=70, ge=0, le=100, validation_alias="STOCK_AUTO_ACCEPT_THRESHOLD"
    )
    price_auto_accept_threshold: int = Field(
        default=50, ge=0, le=100, validation_alias="PRICE_AUTO_ACCEPT_THRESHOLD"
    )
    review_floor: int = Field(default=30, ge=0, le=100, validation_alias="REVIEW_FLOOR")

    # Run limits
    fetch_concurrency: int = Field(default=4, ge=1, validation_alias="FETCH_CONCURRENCY")
    feed_timeout_seconds: float = Field(
        default=30.0, validation_alias="FEED_TIMEOUT_SECONDS"
    )
    item_timeout_seconds: float = Field(
        default=2.0, validation_alias="ITEM_TIMEOUT_SECONDS"
    )
    run_budget_seconds: float = Field(
        default=300.0, validation_alias="RUN_BUDGET_SECONDS"
    )
    preview_detail_limit: int = Field(
        default=50, validation_alias="PREVIEW_DETAIL_LIMIT"
    )
    review_candidate_limit: int = Field(
        default=3, validation_alias="REVIEW_CANDIDATE_LIMIT"
    )

    # Fetch cache
    fetch_cache_ttl: int = Field(default=1800, validation_alias="FETCH_CACHE_TTL")
    fetch_cache_size: int = Field(default=256, validation_alias="FETCH_CACHE_SIZE")

    # API settings
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000"],
        validation_alias="ALLOWED_ORIGINS",
    )
    sync_rate_limit: str = Field(default="6/minute", validation_alias="SYNC_RATE_LIMIT")

    @property
    def cors_origins(self) -> list[str]:
        """Parse ALLOWED_ORIGINS from comma-separated string or return list."""
        if isinstance(self.allowed_origins, str):
            return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]
        return self.allowed_origins


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()  # type: ignore[call-arg]


def validate_settings() -> None:
    """Validate that all required settings are present and consistent."""
    settings = get_settings()
    errors = []

    if not settings.supabase_url:
        errors.append("SUPABASE_URL is required")
    if not settings.supabase_key:
        errors.append("SUPABASE_KEY is required")
    if settings.review_floor > settings.stock_auto_accept_threshold:
        errors.append("REVIEW_FLOOR must not exceed STOCK_AUTO_ACCEPT_THRESHOLD")
    if settings.review_floor > settings.price_auto_accept_threshold:
        errors.append("REVIEW_FLOOR must not exceed PRICE_AUTO_ACCEPT_THRESHOLD")

    if errors:
        raise ValueError(f"Configuration errors: {'; '.join(errors)}")
