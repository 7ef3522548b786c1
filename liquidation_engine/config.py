"""
Configuration management for the liquidation engine.

Uses pydantic-settings for type-safe environment variable handling.
Component configs (quote, compliance, matcher, executor, orchestrator,
sweeper) are built from Settings and injected at construction time.
"""

from decimal import Decimal
from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppEnvironment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


DEFAULT_PROVIDER_RANKING = ["fee", "rating", "response_time", "liquidity"]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every policy value here is a tunable default, not a hard business rule.
    """

    model_config = SettingsConfigDict(
        env_prefix="LIQ_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    env: AppEnvironment = Field(
        default=AppEnvironment.DEVELOPMENT,
        description="Application environment",
    )

    # Server configuration
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8780, ge=1024, le=65535, description="Server port")

    # Data paths
    data_dir: Path = Field(
        default=Path("./data"),
        description="Root directory for audit ledgers",
    )
    audit_enabled: bool = Field(
        default=True,
        description="Write the JSONL audit ledger under data_dir",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Emit JSON formatted logs")

    # Quote policy
    quote_validity_minutes: int = Field(
        default=5,
        ge=1,
        le=60,
        description="How long a price snapshot stays usable",
    )
    max_slippage_percent: Decimal = Field(
        default=Decimal("5.0"),
        gt=0,
        description="Slippage ceiling above which a quote is unsuitable",
    )
    min_confidence: Decimal = Field(
        default=Decimal("70"),
        ge=0,
        le=100,
        description="Minimum price confidence for a suitable quote",
    )
    pricing_max_retries: int = Field(default=3, ge=0, le=10)
    pricing_timeout_s: float = Field(default=10.0, gt=0)

    # Compliance policy
    compliance_max_retries: int = Field(default=3, ge=1, le=10)
    compliance_timeout_s: float = Field(default=30.0, gt=0)
    enhanced_screening_threshold: Decimal = Field(
        default=Decimal("10000"),
        ge=0,
        description="Output value above which sanctions and PEP screening apply",
    )
    review_risk_score: int = Field(default=75, ge=0, le=100)
    review_window_hours: int = Field(default=24, ge=1)

    # Matching policy
    provider_ranking: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PROVIDER_RANKING),
        description="Ordered provider ranking rules",
    )
    liquidity_poll_seconds: int = Field(default=60, ge=1)

    # Execution policy
    platform_fee_percentage: Decimal = Field(default=Decimal("0.25"), ge=0, le=100)
    execution_max_retries: int = Field(default=3, ge=1, le=10)
    execution_timeout_s: float = Field(default=60.0, gt=0)
    reversal_window_minutes: int = Field(default=30, ge=0)

    # Request lifecycle
    request_expiry_hours: int = Field(default=24, ge=1)
    sweep_interval_seconds: int = Field(default=30, ge=1)

    # Shared backoff base for external calls
    retry_base_delay_s: float = Field(default=1.0, ge=0)

    # External price source
    price_source_url: str | None = Field(
        default=None,
        description="Base URL of the HTTP price source (simulated when unset)",
    )
    price_source_timeout_s: float = Field(default=10.0, gt=0)
    price_source_max_retries: int = Field(default=2, ge=0, le=10)
    price_source_api_key: SecretStr | None = Field(default=None, description="Price source API key")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v

    @field_validator("provider_ranking")
    @classmethod
    def validate_provider_ranking(cls, v: list[str]) -> list[str]:
        """Ensure ranking rules are non-empty and known."""
        # matching imports config, so resolve the rule table at call time
        from liquidation_engine.matching.ranking import RANKING_RULES

        if not v:
            raise ValueError("provider_ranking must name at least one rule")
        unknown = [name for name in v if name not in RANKING_RULES]
        if unknown:
            raise ValueError(f"Unknown ranking rules: {unknown}")
        return v

    @property
    def audit_dir(self) -> Path:
        """Directory holding audit ledgers."""
        return self.data_dir / "audit"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


def get_settings_dep() -> Settings:
    """FastAPI dependency for settings injection."""
    return get_settings()
