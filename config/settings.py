"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. App-specific
settings use the ``CIVICVERIFY_`` prefix; upstream API credentials use
their canonical environment variable names via ``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the claim verification core.

    Environment variables are loaded from a ``.env`` file when present.
    App-specific keys are prefixed with ``CIVICVERIFY_``; credentials for
    the government APIs use their standard names.
    """

    model_config = SettingsConfigDict(
        env_prefix="CIVICVERIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # ── Credentials ────────────────────────────────────────────────────
    hud_api_key: str | None = Field(default=None, validation_alias="HUD_API_KEY")
    fred_api_key: str | None = Field(default=None, validation_alias="FRED_API_KEY")
    news_api_key: str | None = Field(default=None, validation_alias="NEWS_API_KEY")

    # ── Source endpoints ───────────────────────────────────────────────
    hud_base_url: str = "https://www.huduser.gov/hudapi/public"
    fred_base_url: str = "https://api.stlouisfed.org/fred"
    epa_base_url: str = "https://data.epa.gov/efservice"
    cdc_wonder_base_url: str = "https://wonder.cdc.gov/controller/datarequest"
    news_base_url: str = "https://newsapi.org/v2"

    # ── Per-source timeouts (seconds) ──────────────────────────────────
    hud_timeout: float = 30.0
    fred_timeout: float = 30.0
    epa_timeout: float = 300.0  # EPA enforces a 15 minute ceiling upstream
    cdc_wonder_timeout: float = 300.0
    news_timeout: float = 30.0

    # ── Retry / backoff ────────────────────────────────────────────────
    retry_max_attempts: int = Field(default=4, ge=1)
    retry_base_delay: float = Field(default=2.0, ge=0.0)

    # ── Rate limiting ──────────────────────────────────────────────────
    news_daily_limit: int = Field(default=100, ge=1)  # free tier
    rate_state_path: str = ".rate_state.json"

    # ── Pagination ─────────────────────────────────────────────────────
    epa_page_size: int = Field(default=1000, ge=1)
    epa_max_pages: int = Field(default=5, ge=1)

    # ── Aggregation ────────────────────────────────────────────────────
    verification_deadline_seconds: float | None = None

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION


# Module-level singleton; import ``settings`` everywhere.
settings = Settings()
