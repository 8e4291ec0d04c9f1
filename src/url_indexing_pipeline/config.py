"""Application settings loaded from environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration sourced from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    DATABASE_URL: str
    ENCRYPTION_KEY: SecretStr
    HOST: str = "0.0.0.0"
    PORT: int = Field(default=8000, ge=1, le=65535)
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_FORMAT: Literal["json", "text"] = "text"
    LOG_FILE: Path | None = None
    LOG_FILE_MAX_BYTES: int = Field(default=10_485_760, ge=1)
    LOG_FILE_BACKUP_COUNT: int = Field(default=5, ge=1)
    WORKER_ID: str | None = None
    SCHEDULER_ENABLED: bool = True
    MONITOR_PENDING_SWEEP_SECONDS: int = Field(default=60, ge=1)
    MONITOR_SCHEDULED_SWEEP_SECONDS: int = Field(default=60, ge=1)
    MONITOR_STALE_SWEEP_SECONDS: int = Field(default=300, ge=1)
    MONITOR_PENDING_BATCH_SIZE: int = Field(default=5, ge=1)
    MONITOR_MAX_CONCURRENT_JOBS: int = Field(default=5, ge=1)
    MONITOR_DISPATCH_STAGGER_SECONDS: float = Field(default=0.5, ge=0)
    STALE_LOCK_MINUTES: int = Field(default=30, ge=1)
    SUBMISSION_DELAY_SECONDS: float = Field(default=0.1, ge=0)
    LEDGER_INSERT_BATCH_SIZE: int = Field(default=100, ge=1)
    SITEMAP_MAX_DEPTH: int = Field(default=5, ge=0)
    SITEMAP_FETCH_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)
    SITEMAP_FETCH_MAX_RETRIES: int = Field(default=2, ge=0)
    GOOGLE_HTTP_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)
    TOKEN_EXPIRY_BUFFER_SECONDS: int = Field(default=300, ge=0)
    SHUTDOWN_GRACE_PERIOD_SECONDS: int = Field(default=30, ge=1)
    OUTBOUND_HTTP_USER_AGENT: str = "UrlIndexingPipeline/0.1"

    @field_validator("LOG_FILE", mode="before")
    @classmethod
    def parse_log_file(cls, value: object) -> object:
        if value in (None, ""):
            return None
        return value

    @field_validator("ENCRYPTION_KEY")
    @classmethod
    def validate_encryption_key(cls, value: SecretStr) -> SecretStr:
        if len(value.get_secret_value().encode("utf-8")) != 32:
            raise ValueError("ENCRYPTION_KEY must be exactly 32 bytes long")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]
