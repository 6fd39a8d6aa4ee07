"""
Referral Risk Engine - Configuration Settings

Centralized configuration using Pydantic Settings for type-safe
environment variable handling with validation.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Example: IP_FREQUENCY_LIMIT=10 will set ip_frequency_limit to 10
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # Application Settings
    # =========================================================================
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    app_debug: bool = Field(
        default=False,
        description="Enable debug mode (SQL echo)"
    )
    app_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level"
    )
    storage_backend: Literal["memory", "redis"] = Field(
        default="redis",
        description="Backend for signals/cases/alerts: in-process memory or Redis + PostgreSQL"
    )

    # =========================================================================
    # Redis Configuration
    # =========================================================================
    redis_host: str = Field(
        default="localhost",
        description="Redis server hostname"
    )
    redis_port: int = Field(
        default=6379,
        description="Redis server port"
    )
    redis_db: int = Field(
        default=0,
        description="Redis database number"
    )
    redis_key_prefix: str = Field(
        default="referral:",
        description="Prefix for all Redis keys to avoid conflicts"
    )
    redis_password: str | None = Field(
        default=None,
        description="Redis password (optional)"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def redis_url(self) -> str:
        """Construct Redis connection URL."""
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # =========================================================================
    # PostgreSQL Configuration
    # =========================================================================
    postgres_host: str = Field(
        default="localhost",
        description="PostgreSQL server hostname"
    )
    postgres_port: int = Field(
        default=5432,
        description="PostgreSQL server port"
    )
    postgres_db: str = Field(
        default="referral_risk",
        description="PostgreSQL database name"
    )
    postgres_user: str = Field(
        default="referral_user",
        description="PostgreSQL username"
    )
    postgres_password: str = Field(
        default="",
        description="PostgreSQL password (set via POSTGRES_PASSWORD env var)"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def postgres_url(self) -> str:
        """Construct PostgreSQL connection URL for asyncpg."""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # =========================================================================
    # API Configuration
    # =========================================================================
    api_host: str = Field(
        default="0.0.0.0",
        description="API server bind address"
    )
    api_port: int = Field(
        default=8000,
        description="API server port"
    )
    api_token: str | None = Field(
        default=None,
        description="API token for assessment endpoints (optional)"
    )
    admin_token: str | None = Field(
        default=None,
        description="Admin token for alert/case/account endpoints (optional)"
    )
    metrics_token: str | None = Field(
        default=None,
        description="Token required to access /metrics (optional)"
    )
    cors_allow_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def cors_allow_origins_list(self) -> list[str]:
        """Return CORS origins as a list."""
        if not self.cors_allow_origins:
            return []
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]

    @model_validator(mode="after")
    def _validate_production_security(self) -> "Settings":
        """Enforce required security settings in production."""
        if self.app_env == "production":
            missing: list[str] = []
            if not self.api_token:
                missing.append("API_TOKEN")
            if not self.admin_token:
                missing.append("ADMIN_TOKEN")
            if missing:
                raise ValueError(
                    "Missing required settings for production: "
                    + ", ".join(missing)
                )
        return self

    # =========================================================================
    # Metrics Configuration
    # =========================================================================
    metrics_enabled: bool = Field(
        default=True,
        description="Enable Prometheus metrics"
    )
    metrics_external_enabled: bool = Field(
        default=False,
        description="Enable standalone metrics server (binds separate port)"
    )
    metrics_port: int = Field(
        default=9100,
        description="Prometheus metrics port"
    )

    # =========================================================================
    # Detection Thresholds (Rule-Based)
    # These can be tuned via config without code changes
    # =========================================================================
    ip_frequency_limit: int = Field(
        default=5,
        ge=1,
        description="Max registrations per IP in the trailing hour"
    )
    ip_frequency_window_seconds: int = Field(
        default=3600,
        description="Trailing window for the IP frequency check"
    )
    device_reuse_limit: int = Field(
        default=3,
        ge=1,
        description="Max distinct users per device fingerprint"
    )
    warning_ratio: float = Field(
        default=0.7,
        gt=0.0,
        lt=1.0,
        description="Fraction of a limit at which a check reports medium risk"
    )
    batch_time_window_seconds: int = Field(
        default=300,
        description="Window for batch-registration pattern detection"
    )
    batch_count_threshold: int = Field(
        default=3,
        ge=1,
        description="Registrations sharing IP/UA within the window to flag a batch"
    )
    fingerprint_similarity_threshold: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Similarity at which an invitee device is treated as the inviter's"
    )
    detector_timeout_seconds: float = Field(
        default=2.0,
        gt=0.0,
        description="Per-detector timeout; a timed-out detector fails open"
    )

    # =========================================================================
    # Behavior Analysis
    # =========================================================================
    velocity_threshold_per_hour: float = Field(
        default=10.0,
        description="Activity rate above which a velocity spike alert fires"
    )
    velocity_min_samples: int = Field(
        default=5,
        description="Minimum samples in window before velocity is evaluated"
    )
    pattern_deviation_threshold: float = Field(
        default=2.0,
        description="Deviation from mean risk score that raises a high alert"
    )
    pattern_deviation_critical: float = Field(
        default=3.0,
        description="Deviation from mean risk score that raises a critical alert"
    )
    behavior_history_limit: int = Field(
        default=100,
        description="Most recent samples considered per (user, activity type)"
    )
    behavior_retention_hours: int = Field(
        default=24,
        description="Retention horizon for behavior samples"
    )
    behavior_anomaly_score: float = Field(
        default=0.8,
        description="Behavior risk score at which the analyzer reports medium risk"
    )

    # =========================================================================
    # Alerting
    # =========================================================================
    alert_cooldown_minutes: dict[str, int] = Field(
        default_factory=lambda: {
            "velocity_spike": 60,
            "pattern_deviation": 60,
            "behavior_anomaly": 30,
            "network_abuse": 15,
        },
        description="Cooldown per alert rule id, in minutes"
    )
    alert_admin_user_id: str = Field(
        default="admin",
        description="User id that receives admin alert notifications"
    )
    alert_webhook_url: str | None = Field(
        default=None,
        description="Webhook URL for alert rules with the webhook action"
    )
    alert_webhook_timeout_seconds: float = Field(
        default=5.0,
        description="HTTP timeout for alert webhooks"
    )

    # =========================================================================
    # Notifications / Scheduler
    # =========================================================================
    notification_retention_days: int = Field(
        default=30,
        description="Days to keep sent/failed notifications"
    )
    notification_max_attempts: int = Field(
        default=3,
        description="Delivery attempts before a notification stays failed"
    )
    scheduler_tick_seconds: int = Field(
        default=3600,
        description="Interval between scheduler ticks"
    )
    scheduler_timezone: str = Field(
        default="UTC",
        description="Timezone for business-hour scheduling"
    )
    scheduler_dispatch_hour: int = Field(
        default=9,
        ge=0,
        le=23,
        description="Hour at which pending notifications are dispatched"
    )
    scheduler_digest_hour: int = Field(
        default=10,
        ge=0,
        le=23,
        description="Hour for weekly (Monday) and monthly (1st) digests"
    )
    scheduler_cleanup_hour: int = Field(
        default=2,
        ge=0,
        le=23,
        description="Hour for expired-notification cleanup"
    )
    invite_expiry_lookahead_days: int = Field(
        default=7,
        description="Remind inviters about codes expiring within this many days"
    )
    scheduler_enabled: bool = Field(
        default=True,
        description="Start the notification scheduler with the API"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to avoid re-parsing environment on every call.
    """
    return Settings()


# Singleton settings instance for easy import
settings = get_settings()
