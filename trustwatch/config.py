"""
TrustWatch Configuration.

Pydantic Settings v2 — loads from .env, environment variables.
"""

from typing import List

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RoutePolicy(BaseModel):
    """Rate-limit policy for one route class."""

    max_requests: int
    window_seconds: int
    delay_after: int | None = None      # None = never slow down, only reject
    delay_step_ms: int = 1000
    max_delay_ms: int = 20_000


def _default_route_policies() -> dict[str, RoutePolicy]:
    return {
        "auth": RoutePolicy(
            max_requests=5,
            window_seconds=15 * 60,
            delay_after=2,
            delay_step_ms=1000,
            max_delay_ms=20_000,
        ),
        "api": RoutePolicy(max_requests=100, window_seconds=15 * 60),
        "password_reset": RoutePolicy(max_requests=3, window_seconds=60 * 60),
        "email": RoutePolicy(max_requests=5, window_seconds=60 * 60),
        "upload": RoutePolicy(max_requests=20, window_seconds=60 * 60),
        "review": RoutePolicy(max_requests=10, window_seconds=60 * 60),
    }


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ──────────────────────────────────────────────────────
    app_name: str = "TrustWatch"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # ── Database ─────────────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite+aiosqlite:///./trustwatch.db",
        alias="DATABASE_URL",
    )
    db_pool_size: int = Field(default=10, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=20, alias="DB_MAX_OVERFLOW")
    db_pool_recycle: int = Field(default=3600, alias="DB_POOL_RECYCLE")

    # ── Security posture (inputs to the compliance checks) ───────────────
    jwt_secret: str = Field(default="", alias="JWT_SECRET")
    jwt_access_token_expire_minutes: int = Field(default=24 * 60, alias="JWT_EXPIRE_MINUTES")
    jwt_refresh_enabled: bool = Field(default=False, alias="JWT_REFRESH_ENABLED")
    encryption_key: str = Field(default="", alias="TRUSTWATCH_ENCRYPTION_KEY")
    allowed_origins: List[str] = Field(
        default=["http://localhost:5173"],
        alias="CORS_ORIGINS",
    )

    # ── Compliance runner ────────────────────────────────────────────────
    compliance_interval_seconds: int = Field(default=60, alias="COMPLIANCE_INTERVAL_SECONDS")
    check_timeout_seconds: float = Field(default=10.0, alias="CHECK_TIMEOUT_SECONDS")
    compliance_history_size: int = Field(default=1000, alias="COMPLIANCE_HISTORY_SIZE")
    compliance_history_days: int = Field(default=30, alias="COMPLIANCE_HISTORY_DAYS")
    max_token_expiry_hours: int = 6

    # ── Account lockout ──────────────────────────────────────────────────
    lockout_max_attempts: int = Field(default=5, alias="LOCKOUT_MAX_ATTEMPTS")
    lockout_duration_seconds: int = Field(default=30 * 60, alias="LOCKOUT_DURATION_SECONDS")
    lockout_reset_window_seconds: int = Field(default=15 * 60, alias="LOCKOUT_RESET_WINDOW_SECONDS")
    lockout_max_sources: int = 20
    sweep_interval_seconds: int = Field(default=3600, alias="SWEEP_INTERVAL_SECONDS")

    # ── Rate limiting ────────────────────────────────────────────────────
    route_policies: dict[str, RoutePolicy] = Field(default_factory=_default_route_policies)

    # ── Fraud scoring ────────────────────────────────────────────────────
    fraud_velocity_threshold: int = Field(default=5, alias="FRAUD_VELOCITY_THRESHOLD")
    fraud_velocity_window_seconds: int = Field(default=600, alias="FRAUD_VELOCITY_WINDOW_SECONDS")
    fraud_high_value_threshold: float = Field(default=1000.0, alias="FRAUD_HIGH_VALUE_THRESHOLD")
    fraud_block_threshold: int = Field(default=50, alias="FRAUD_BLOCK_THRESHOLD")
    fraud_review_threshold: int = Field(default=30, alias="FRAUD_REVIEW_THRESHOLD")
    fraud_suspicious_networks: List[str] = Field(
        default=["10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"],
        alias="FRAUD_SUSPICIOUS_NETWORKS",
    )
    history_timeout_seconds: float = Field(default=5.0, alias="HISTORY_TIMEOUT_SECONDS")
    deviation_factor: float = 3.0

    # ── Audit trail ──────────────────────────────────────────────────────
    audit_write_timeout_seconds: float = Field(default=5.0, alias="AUDIT_WRITE_TIMEOUT_SECONDS")
    audit_tail_size: int = Field(default=1000, alias="AUDIT_TAIL_SIZE")
    restricted_access_limit: int = 10
    restricted_access_window_seconds: int = 300

    # ── Alerting ─────────────────────────────────────────────────────────
    alert_webhook_url: str = Field(default="", alias="ALERT_WEBHOOK_URL")
    alert_webhook_timeout_seconds: float = Field(default=10.0, alias="ALERT_WEBHOOK_TIMEOUT_SECONDS")

    # ── Operational ──────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="console", alias="LOG_FORMAT")
    health_check_timeout_seconds: float = Field(default=5.0, alias="HEALTH_CHECK_TIMEOUT_SECONDS")
    memory_warning_mb: int = 500

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses an async driver."""
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url


settings = Settings()
