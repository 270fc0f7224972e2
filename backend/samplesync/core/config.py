"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase Configuration
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")
    SUPABASE_SERVICE_ROLE_KEY: SecretStr = SecretStr("")

    # External LIMS (Benchling custom-entity registry)
    LIMS_API_URL: str = ""
    LIMS_API_KEY: SecretStr = SecretStr("")
    LIMS_SCHEMA_ID: str = "ts_NJDS3UwU"
    LIMS_REGISTRY_ID: str = "src_xro8e9rf"
    LIMS_FOLDER_ID: str = ""
    LIMS_ID_PREFIX: str = "EBM"
    LIMS_ID_WIDTH: int = 3  # EBM042
    LIMS_WEBHOOK_SECRET: str = ""  # X-Benchling-Signature verification secret
    LIMS_REQUEST_TIMEOUT_SECONDS: float = 30.0
    LIMS_PAGE_SIZE: int = 100

    # Bulk task polling
    LIMS_TASK_MAX_ATTEMPTS: int = 10
    LIMS_TASK_BASE_DELAY_SECONDS: float = 1.0

    # Sync queue / scheduler
    SYNC_ENABLED: bool = True
    SYNC_INTERVAL_MINUTES: int = 10
    SYNC_MAX_RETRIES: int = 3
    SYNC_QUEUE_BATCH_SIZE: int = 50
    QUEUE_RETRY_BASE_SECONDS: float = 30.0
    SYNC_ERROR_HISTORY_LIMIT: int = 100
    SYNC_STATUS_CACHE_TTL: int = 30

    # Application Settings
    APP_ENV: Literal["development", "staging", "production"] = "development"

    # Logging
    LOG_FORMAT: Literal["text", "json"] = "text"
    LOG_LEVEL: str = "INFO"

    # CORS Configuration
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    @field_validator("SUPABASE_URL", "LIMS_API_URL")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate that service URLs are http(s) URLs without a trailing slash."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v.rstrip("/") if v else v

    @field_validator("LIMS_ID_PREFIX")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        """Registry codes are matched case-sensitively, so keep the prefix upper-case."""
        if not v:
            raise ValueError("LIMS_ID_PREFIX must not be empty")
        return v.upper()

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.APP_ENV == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.APP_ENV == "production"

    @property
    def lims_configured(self) -> bool:
        """Check if the external LIMS connection is configured."""
        return bool(self.LIMS_API_URL and self.LIMS_API_KEY.get_secret_value())

    def validate_startup(self) -> None:
        """Validate that all required secrets are configured.

        Raises:
            ValueError: If any required secret is missing or empty.
        """
        required_secrets = {
            "SUPABASE_URL": self.SUPABASE_URL,
            "SUPABASE_SERVICE_ROLE_KEY": self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
            "LIMS_API_URL": self.LIMS_API_URL,
            "LIMS_API_KEY": self.LIMS_API_KEY.get_secret_value(),
        }
        missing = [name for name, value in required_secrets.items() if not value]
        if missing:
            raise ValueError(f"Required secrets are missing or empty: {', '.join(missing)}")
        if self.is_production and not self.LIMS_WEBHOOK_SECRET:
            logger.warning("LIMS_WEBHOOK_SECRET not set - webhook signatures will not be verified")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance loaded from the environment.
    """
    return Settings()


# Process-wide settings
settings = get_settings()
