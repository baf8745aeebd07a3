"""Application configuration via pydantic settings."""

from functools import lru_cache
from pathlib import Path

from typing import Any

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed application configuration."""

    app_env: str = Field("local", alias="APP_ENV")
    app_name: str = "School Medication Scheduling API"
    api_v1_prefix: str = "/api/v1"

    database_url: str = Field(..., alias="DATABASE_URL")
    sync_database_url: str | None = Field(default=None, alias="SYNC_DATABASE_URL")

    secret_key: str = Field("", alias="SECRET_KEY")
    jwt_secret_key: str = Field(default="", alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    cache_default_ttl_seconds: int = Field(300, alias="CACHE_DEFAULT_TTL_SECONDS")

    school_timezone: str = Field("Asia/Ho_Chi_Minh", alias="SCHOOL_TIMEZONE")
    background_workers_enabled: bool = Field(
        default=False, alias="BACKGROUND_WORKERS_ENABLED"
    )

    # Loop intervals (seconds)
    escalation_interval_seconds: float = Field(15, alias="ESCALATION_INTERVAL_SECONDS")
    generation_interval_seconds: float = Field(30, alias="GENERATION_INTERVAL_SECONDS")
    reminder_interval_seconds: float = Field(60, alias="REMINDER_INTERVAL_SECONDS")
    retention_interval_seconds: float = Field(
        6 * 60 * 60, alias="RETENTION_INTERVAL_SECONDS"
    )

    # Schedule generation
    tomorrow_generation_hour: int = Field(18, alias="TOMORROW_GENERATION_HOUR")
    recently_approved_minutes: int = Field(10, alias="RECENTLY_APPROVED_MINUTES")
    generation_today_batch: int = Field(10, alias="GENERATION_TODAY_BATCH")
    generation_tomorrow_batch: int = Field(10, alias="GENERATION_TOMORROW_BATCH")
    generation_approved_batch: int = Field(5, alias="GENERATION_APPROVED_BATCH")
    activation_batch: int = Field(50, alias="ACTIVATION_BATCH")

    # Dose reminders and sweeps
    overdue_grace_minutes: int = Field(60, alias="OVERDUE_GRACE_MINUTES")
    upcoming_window_minutes: int = Field(5, alias="UPCOMING_WINDOW_MINUTES")
    immediate_window_minutes: int = Field(1, alias="IMMEDIATE_WINDOW_MINUTES")
    max_reminders_per_dose: int = Field(2, alias="MAX_REMINDERS_PER_DOSE")
    upcoming_batch: int = Field(50, alias="UPCOMING_BATCH")
    immediate_batch: int = Field(30, alias="IMMEDIATE_BATCH")
    reminder_expiry_hours: int = Field(4, alias="REMINDER_EXPIRY_HOURS")
    low_stock_threshold: int = Field(3, alias="LOW_STOCK_THRESHOLD")
    low_stock_batch: int = Field(20, alias="LOW_STOCK_BATCH")
    expiry_warning_days: list[int] = Field(
        default_factory=lambda: [7, 3], alias="EXPIRY_WARNING_DAYS"
    )

    # Incident escalation
    escalation_after_seconds: int = Field(30, alias="ESCALATION_AFTER_SECONDS")
    escalation_dedup_seconds: int = Field(180, alias="ESCALATION_DEDUP_SECONDS")
    escalation_expiry_hours: int = Field(2, alias="ESCALATION_EXPIRY_HOURS")
    handler_reminder_after_seconds: int = Field(
        120, alias="HANDLER_REMINDER_AFTER_SECONDS"
    )
    handler_reminder_dedup_seconds: int = Field(
        120, alias="HANDLER_REMINDER_DEDUP_SECONDS"
    )
    incident_cleanup_after_seconds: int = Field(
        300, alias="INCIDENT_CLEANUP_AFTER_SECONDS"
    )

    # Retention
    retention_hours: list[int] = Field(
        default_factory=lambda: [2, 20], alias="RETENTION_HOURS"
    )
    retention_days: int = Field(30, alias="RETENTION_DAYS")
    retention_dose_batch: int = Field(500, alias="RETENTION_DOSE_BATCH")
    retention_order_batch: int = Field(200, alias="RETENTION_ORDER_BATCH")
    retention_notification_batch: int = Field(
        500, alias="RETENTION_NOTIFICATION_BATCH"
    )
    retention_administration_batch: int = Field(
        300, alias="RETENTION_ADMINISTRATION_BATCH"
    )

    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"],
        alias="CORS_ALLOW_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=False, alias="CORS_ALLOW_CREDENTIALS")

    rate_limit_writes_per_minute: int = Field(60, alias="RATE_LIMIT_WRITES_PER_MINUTE")

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[3] / ".env",
        case_sensitive=False,
        populate_by_name=True,
    )

    def model_post_init(self, __context: Any) -> None:
        """Populate JWT secret from the generic secret when not provided."""

        if not self.jwt_secret_key:
            object.__setattr__(self, "jwt_secret_key", self.secret_key or "change-me")

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("retention_hours", "expiry_warning_days", mode="before")
    @classmethod
    def _split_ints(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [int(item) for item in value.split(",") if item.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()  # type: ignore[call-arg]
