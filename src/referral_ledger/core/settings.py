"""Application settings and configuration.

This module defines all configuration options for the referral ledger.
Settings are loaded from environment variables with sensible defaults. A single
instance is built at process start by ``get_settings`` and handed to every
service constructor; services never read configuration from module globals.
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TierBand(BaseModel):
    """One reward bracket keyed by the lowest validated-referral count it covers."""

    min_referrals: int = Field(ge=0)
    rate: Decimal = Field(ge=0)
    # One-time bonus credited when a referrer first reaches this band.
    bonus: Decimal = Field(default=Decimal("0"), ge=0)


class FraudWeights(BaseModel):
    """Weights applied to each fraud signal before clamping to [0, 1]."""

    device_sharing: float = Field(default=0.35, ge=0)
    wallet_age: float = Field(default=0.20, ge=0)
    velocity: float = Field(default=0.15, ge=0)
    self_referral: float = Field(default=0.30, ge=0)


DEFAULT_TIERS: list[TierBand] = [
    TierBand(min_referrals=0, rate=Decimal("1.0")),
    TierBand(min_referrals=5, rate=Decimal("1.5")),
    TierBand(min_referrals=20, rate=Decimal("2.0")),
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files. Nested
    values (``TIERS``, ``FRAUD_WEIGHTS``) are read as JSON.
    """

    # Application metadata
    app_name: str = Field(default="Referral Ledger", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Admin authentication (review endpoints)
    secret_key: str | None = Field(default=None, alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    admin_token_expire_minutes: int = Field(default=60, alias="ADMIN_TOKEN_EXPIRE_MINUTES")

    # Database configuration
    database_url: str = Field(default="sqlite:///./referral_ledger.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")
    auto_create_tables: bool = Field(default=False, alias="AUTO_CREATE_TABLES")

    # Counter store for rate limiting and velocity tracking
    rate_limit_backend: Literal["memory", "redis"] = Field(
        default="memory", alias="RATE_LIMIT_BACKEND"
    )
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    rate_limit_prefix: str = Field(default="rl", alias="RATE_LIMIT_PREFIX")

    # Wallet and device identity
    device_limit_per_wallet: int = Field(default=3, ge=1, alias="DEVICE_LIMIT_PER_WALLET")
    device_wallet_hard_limit: int = Field(default=5, ge=1, alias="DEVICE_WALLET_HARD_LIMIT")
    device_lookback_hours: int = Field(default=72, ge=1, alias="DEVICE_LOOKBACK_HOURS")
    session_idle_timeout_seconds: int = Field(
        default=1800, ge=1, alias="SESSION_IDLE_TIMEOUT_SECONDS"
    )

    # Fraud scoring
    suspicious_threshold: float = Field(default=0.7, ge=0, le=1, alias="SUSPICIOUS_THRESHOLD")
    fraud_weights: FraudWeights = Field(default_factory=FraudWeights, alias="FRAUD_WEIGHTS")
    fresh_wallet_minutes: int = Field(default=30, ge=0, alias="FRESH_WALLET_MINUTES")
    wallet_maturity_minutes: int = Field(default=1440, ge=0, alias="WALLET_MATURITY_MINUTES")
    device_sharing_saturation: int = Field(default=2, ge=1, alias="DEVICE_SHARING_SATURATION")

    # Referral redemption throttling (per IP and per device)
    referral_velocity_window_seconds: int = Field(
        default=3600, ge=1, alias="REFERRAL_VELOCITY_WINDOW_SECONDS"
    )
    referral_velocity_cap: int = Field(default=20, ge=1, alias="REFERRAL_VELOCITY_CAP")
    referral_attempts_hard_cap: int = Field(
        default=100, ge=1, alias="REFERRAL_ATTEMPTS_HARD_CAP"
    )

    # Reward tiers
    tiers: list[TierBand] = Field(default_factory=lambda: list(DEFAULT_TIERS), alias="TIERS")
    reward_blending: Literal["marginal", "flat"] = Field(
        default="marginal", alias="REWARD_BLENDING"
    )

    # Claim limits
    claim_period: Literal["day", "week"] = Field(default="day", alias="CLAIM_PERIOD")
    claim_period_cap: Decimal = Field(default=Decimal("100"), gt=0, alias="CLAIM_PERIOD_CAP")
    claim_max_per_period: int = Field(default=10, ge=1, alias="CLAIM_MAX_PER_PERIOD")
    claim_min_interval_seconds: int = Field(default=0, ge=0, alias="CLAIM_MIN_INTERVAL_SECONDS")

    # Settlement
    settlement_exchange_rate: Decimal = Field(
        default=Decimal("1"), gt=0, alias="SETTLEMENT_EXCHANGE_RATE"
    )
    settlement_token_symbol: str = Field(default="KHORDE", alias="SETTLEMENT_TOKEN_SYMBOL")
    settlement_url: str | None = Field(default=None, alias="SETTLEMENT_URL")
    settlement_timeout_seconds: float = Field(default=10.0, alias="SETTLEMENT_TIMEOUT_SECONDS")

    # Mail notifications
    mail_webhook_url: str | None = Field(default=None, alias="MAIL_WEBHOOK_URL")
    mail_timeout_seconds: float = Field(default=5.0, alias="MAIL_TIMEOUT_SECONDS")

    # Internal retries for conflicts and short rate-limit waits
    retry_attempts: int = Field(default=3, ge=1, alias="RETRY_ATTEMPTS")
    retry_backoff_seconds: float = Field(default=0.05, ge=0, alias="RETRY_BACKOFF_SECONDS")
    rate_limit_retry_max_wait_seconds: float = Field(
        default=0.0, ge=0, alias="RATE_LIMIT_RETRY_MAX_WAIT_SECONDS"
    )

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PATCH", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator("tiers")
    @classmethod
    def _check_tiers(cls, tiers: list[TierBand]) -> list[TierBand]:
        if not tiers:
            raise ValueError("at least one tier band is required")
        if tiers[0].min_referrals != 0:
            raise ValueError("the first tier band must start at 0 referrals")
        bounds = [band.min_referrals for band in tiers]
        if any(lower >= upper for lower, upper in zip(bounds, bounds[1:])):
            raise ValueError("tier bands must be ordered by strictly increasing min_referrals")
        return tiers

    @property
    def claim_period_seconds(self) -> int:
        """Return the length of one claim period in seconds."""
        return 86_400 if self.claim_period == "day" else 7 * 86_400


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance, built on first use."""
    return Settings()
