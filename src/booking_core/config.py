"""Engine configuration loaded from environment variables.

All tunables of the booking lifecycle live here so that hold windows,
timeouts, fee rates and admin lockout policy can be changed per environment
without code changes. Secrets are NOT part of this model; they are resolved
through SSMService.

Usage:
    from booking_core.config import get_settings

    settings = get_settings()
    expires_at = now + settings.hold_duration
"""

import datetime as dt
import os
from decimal import Decimal
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field


class EngineSettings(BaseModel):
    """Runtime settings for the booking engine."""

    model_config = ConfigDict(frozen=True)

    environment: str = Field(default="dev", description="Deployment environment name")
    table_prefix: str = Field(
        default="booking-dev",
        description="Prefix for every DynamoDB table name",
    )

    # Pricing
    platform_fee_rate: Decimal = Field(default=Decimal("0.15"), ge=0, le=1)
    tax_rate: Decimal = Field(default=Decimal("0.10"), ge=0, le=1)

    # Booking lifecycle
    hold_minutes: int = Field(default=30, gt=0)
    processing_timeout_minutes: int = Field(default=120, gt=0)
    payment_retry_limit: int = Field(default=1, ge=0)
    payment_retry_window_minutes: int = Field(default=30, gt=0)
    max_nights: int = Field(default=90, gt=0, le=98)

    # Idempotency
    idempotency_ttl_hours: int = Field(default=24, gt=0)
    idempotency_lock_seconds: int = Field(default=300, gt=0)

    # Reconciliation
    reconciliation_batch_size: int = Field(default=100, gt=0)
    reconciliation_max_batches: int = Field(default=10, gt=0)

    # Admin gate
    admin_max_attempts: int = Field(default=5, gt=0)
    admin_lockout_minutes: int = Field(default=15, gt=0)
    admin_session_hours: int = Field(default=12, gt=0)
    admin_code_iterations: int = Field(default=200_000, gt=0)
    trusted_proxy_hops: int = Field(
        default=0,
        ge=0,
        description="Proxies in front of the API that append to X-Forwarded-For",
    )

    # Outbound integrations
    stripe_timeout_seconds: int = Field(default=10, gt=0)
    event_bus_name: str | None = None
    event_source: str = "booking.engine"
    cors_origins: tuple[str, ...] = ("http://localhost:3000", "http://127.0.0.1:3000")

    @property
    def hold_duration(self) -> dt.timedelta:
        return dt.timedelta(minutes=self.hold_minutes)

    @property
    def processing_timeout(self) -> dt.timedelta:
        return dt.timedelta(minutes=self.processing_timeout_minutes)

    @property
    def payment_retry_window(self) -> dt.timedelta:
        return dt.timedelta(minutes=self.payment_retry_window_minutes)

    @property
    def idempotency_ttl(self) -> dt.timedelta:
        return dt.timedelta(hours=self.idempotency_ttl_hours)

    @property
    def idempotency_lock(self) -> dt.timedelta:
        return dt.timedelta(seconds=self.idempotency_lock_seconds)

    @property
    def admin_lockout(self) -> dt.timedelta:
        return dt.timedelta(minutes=self.admin_lockout_minutes)

    @property
    def admin_session_ttl(self) -> dt.timedelta:
        return dt.timedelta(hours=self.admin_session_hours)

    @classmethod
    def from_environment(cls) -> "EngineSettings":
        """Build settings from process environment variables.

        Unset variables fall back to the field defaults.

        Returns:
            Validated EngineSettings instance.
        """
        environment = os.getenv("ENVIRONMENT", "dev")
        values: dict[str, object] = {
            "environment": environment,
            "table_prefix": os.getenv("DYNAMODB_TABLE_PREFIX", f"booking-{environment}"),
        }

        env_map = {
            "PLATFORM_FEE_RATE": "platform_fee_rate",
            "TAX_RATE": "tax_rate",
            "HOLD_MINUTES": "hold_minutes",
            "PROCESSING_TIMEOUT_MINUTES": "processing_timeout_minutes",
            "PAYMENT_RETRY_LIMIT": "payment_retry_limit",
            "PAYMENT_RETRY_WINDOW_MINUTES": "payment_retry_window_minutes",
            "MAX_NIGHTS": "max_nights",
            "IDEMPOTENCY_TTL_HOURS": "idempotency_ttl_hours",
            "IDEMPOTENCY_LOCK_SECONDS": "idempotency_lock_seconds",
            "RECONCILIATION_BATCH_SIZE": "reconciliation_batch_size",
            "RECONCILIATION_MAX_BATCHES": "reconciliation_max_batches",
            "ADMIN_MAX_ATTEMPTS": "admin_max_attempts",
            "ADMIN_LOCKOUT_MINUTES": "admin_lockout_minutes",
            "ADMIN_SESSION_HOURS": "admin_session_hours",
            "ADMIN_CODE_ITERATIONS": "admin_code_iterations",
            "TRUSTED_PROXY_HOPS": "trusted_proxy_hops",
            "STRIPE_TIMEOUT_SECONDS": "stripe_timeout_seconds",
            "EVENT_BUS_NAME": "event_bus_name",
        }
        for env_name, field_name in env_map.items():
            raw = os.getenv(env_name)
            if raw:
                values[field_name] = raw

        origins = os.getenv("CORS_ORIGINS")
        if origins:
            values["cors_origins"] = tuple(o.strip() for o in origins.split(",") if o.strip())

        return cls.model_validate(values)


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Get the process-wide settings (read once, then cached).

    Tests call ``get_settings.cache_clear()`` after changing the environment.
    """
    return EngineSettings.from_environment()
