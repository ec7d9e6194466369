"""Runtime configuration.

Relies on pydantic-settings so that environment variables (prefixed with
``HOSTEL_METRICS_``) can override defaults. See `.env.example` for common values.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hostel_metrics.properties.catalog import PropertyCatalog
from hostel_metrics.services.reservations_client import (
    DEFAULT_BASE_URL,
    ConfigurationError,
    ReservationApiConfig,
)

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class Settings(BaseSettings):
    """Captures runtime configuration for fetches, imports and storage."""

    api_key: Optional[str] = Field(default=None, description="Bearer token for the reservation API")
    api_base_url: str = Field(default=DEFAULT_BASE_URL, description="Reservation API base URL")
    api_timeout_s: float = Field(default=10.0, description="Per-request timeout in seconds")

    fetch_delay_s: float = Field(
        default=0.5, description="Pause between successful property fetches within a batch"
    )
    item_timeout_s: Optional[float] = Field(
        default=30.0, description="Upper bound for one property fetch, including normalisation"
    )
    enrichment_delay_s: float = Field(
        default=0.25, description="Pause between per-reservation enrichment lookups"
    )
    direct_channel_keyword: Optional[str] = Field(
        default="website",
        description="Keep only bookings whose channel contains this text; empty disables filtering",
    )

    property_catalog_path: Optional[Path] = Field(
        default=None, description="JSON property catalog; the built-in catalog is used when unset"
    )

    sqlite_storage_enabled: bool = Field(default=True, description="Persist bookings and weekly metrics")
    sqlite_storage_path: Path = Field(default=Path("data/storage/hostel_metrics.sqlite3"))
    sqlite_busy_timeout_ms: int = Field(default=2000, ge=0)
    sqlite_journal_mode: Optional[str] = Field(default="wal")
    sqlite_synchronous: Optional[str] = Field(default="normal")

    log_level: str = Field(default="INFO")
    log_dir: Path = Field(default=Path("data/logs"))

    model_config = SettingsConfigDict(
        env_prefix="HOSTEL_METRICS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("property_catalog_path", mode="before")
    def _expand_catalog_path(cls, value: str | Path | None) -> Optional[Path]:
        if value in (None, ""):
            return None
        return Path(value).expanduser()

    @field_validator("sqlite_storage_path", "log_dir", mode="before")
    def _expand_path(cls, value: str | Path) -> Path:
        if isinstance(value, Path):
            return value
        return Path(value).expanduser()

    @field_validator("fetch_delay_s", "enrichment_delay_s")
    def _validate_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("delays must not be negative")
        return value

    @field_validator("item_timeout_s", mode="before")
    def _blank_timeout(cls, value: object) -> object:
        if value in ("", 0, "0"):
            return None
        return value

    @field_validator("log_level")
    def _validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(VALID_LOG_LEVELS)}")
        return level

    def api_config(self) -> ReservationApiConfig:
        """Build the reservation API config, failing fast when credentials are absent."""
        if not self.api_key:
            raise ConfigurationError(
                "Reservation API key not found; set HOSTEL_METRICS_API_KEY in the environment or .env"
            )
        return ReservationApiConfig(
            api_key=self.api_key,
            base_url=self.api_base_url,
            timeout_s=self.api_timeout_s,
        )

    def property_catalog(self) -> PropertyCatalog:
        if self.property_catalog_path is None:
            return PropertyCatalog.default()
        return PropertyCatalog.load(self.property_catalog_path)

    def ensure_directories(self) -> None:
        """Create directories that must exist at runtime."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        if self.sqlite_storage_enabled:
            self.sqlite_storage_path.parent.mkdir(parents=True, exist_ok=True)
