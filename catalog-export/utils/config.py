"""
Configuration Utility - Environment Variables Management

Centralized configuration loading from .env files using pydantic-settings.
Type-safe access to all environment variables with validation.

Usage:
    from utils.config import get_settings

    settings = get_settings()
    base_url = settings.BASE_URL
    page_size = settings.PAGE_MAX
"""

from datetime import datetime
from functools import lru_cache
from typing import Any, Literal

from pydantic import UUID4, Field, SecretStr, TypeAdapter, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.errors import ConfigurationError

_ORG_ID = TypeAdapter(UUID4)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # API Configuration
    ORG_ID: str = Field(default="", description="Organization UUID")
    BEARER: SecretStr = Field(default=SecretStr(""))
    BASE_URL: str = Field(default="")
    URI_TEMPLATE: str = Field(default="/content-discovery/v2/organizations/{orgId}/catalog-content")
    REQUEST_METHOD: str = Field(default="get")
    REQUEST_TIMEOUT: float = Field(default=180.0, gt=0)
    REQUEST_BODY: dict[str, Any] | None = Field(default=None)

    # Query Parameters
    PAGE_MAX: int = Field(default=1000, ge=1, le=1000)
    UPDATED_SINCE: str | None = Field(default=None)
    TRANSFORM_NAME: str | None = Field(default=None)
    SYSTEM: str | None = Field(default=None)

    # Rate Limit Configuration
    RATE_RESERVOIR: int = Field(default=20, ge=0)
    RATE_INCREASE_INTERVAL: float | None = Field(default=1.0)
    RATE_INCREASE_AMOUNT: int = Field(default=5, ge=0)
    RATE_INCREASE_MAXIMUM: int = Field(default=20, ge=0)
    RATE_MAX_CONCURRENT: int = Field(default=10, ge=1)
    RATE_MIN_TIME: float = Field(default=0.5, ge=0)

    # Retry Configuration
    RETRY_MAX_ATTEMPTS: int = Field(default=5, ge=1)
    RETRY_NO_RESPONSE_MAX_ATTEMPTS: int = Field(default=4, ge=1)
    RETRY_BACKOFF: Literal["exponential", "linear", "static"] = Field(default="exponential")
    RETRY_BACKOFF_BASE: float = Field(default=1.0, ge=0)
    RETRY_BACKOFF_MAX: float = Field(default=60.0, ge=0)
    RETRY_STATUS_CODES: list[int] = Field(default_factory=lambda: [429])

    # Output Configuration
    OUTPUT_DIR: str = Field(default="results")
    OUTPUT_FILENAME: str | None = Field(default=None)
    INCLUDE_BOM: bool = Field(default=False)
    CURSOR_PATH: str = Field(default="lastrun.json")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: Literal["text", "json"] = Field(default="text")
    LOG_DIR: str = Field(default="results")
    LOG_FILENAME: str | None = Field(default=None)

    # Scheduler Configuration
    RUN_ONCE: bool = Field(default=True)
    EXPORT_SCHEDULE_CRON: str = Field(default="0 3 * * *")

    # Application Metadata
    APP_NAME: str = Field(default="catalog-export")
    APP_VERSION: str = Field(default="0.1.0")

    @field_validator("REQUEST_METHOD")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        return v.upper()

    def require_api(self) -> None:
        """Check the settings needed to reach the API are present and usable.

        Raises:
            ConfigurationError: If the organization, base URL or bearer token is
                unset, or ORG_ID is not a version 4 UUID
        """
        missing = [
            name
            for name, value in (
                ("ORG_ID", self.ORG_ID),
                ("BASE_URL", self.BASE_URL),
                ("BEARER", self.BEARER.get_secret_value()),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

        try:
            _ORG_ID.validate_python(self.ORG_ID)
        except ValidationError as e:
            raise ConfigurationError(f"ORG_ID must be a version 4 UUID, got {self.ORG_ID!r}") from e

    def output_filename(self, started_at: datetime) -> str:
        return self.OUTPUT_FILENAME or f"{started_at:%Y%m%d_%H%M%S}_results.json"

    def log_filename(self, started_at: datetime) -> str:
        return self.LOG_FILENAME or f"{started_at:%Y%m%d_%H%M%S}_results.log"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Singleton Settings instance
    """
    return Settings()
