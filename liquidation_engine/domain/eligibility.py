"""
Asset eligibility rules and eligibility check results.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from liquidation_engine.domain.common import RiskLevel, utc_now
from liquidation_engine.domain.provider import DEFAULT_OUTPUT_CURRENCIES
from liquidation_engine.domain.results import ReasonCode


class AssetEligibilityStatus(str, Enum):
    """Whether an asset may be liquidated."""

    ELIGIBLE = "Eligible"
    NOT_ELIGIBLE = "NotEligible"
    RESTRICTED = "Restricted"
    UNDER_REVIEW = "UnderReview"


class AssetEligibility(BaseModel):
    """Per-asset static liquidation rules."""

    asset_symbol: str = Field(..., min_length=1, max_length=20)
    asset_name: str | None = None
    status: AssetEligibilityStatus = AssetEligibilityStatus.ELIGIBLE
    is_enabled: bool = True

    minimum_liquidation_amount: Decimal = Field(default=Decimal("0"), ge=0)
    maximum_liquidation_amount: Decimal | None = Field(default=None, gt=0)
    daily_liquidation_limit: Decimal | None = Field(default=None, gt=0)
    monthly_liquidation_limit: Decimal | None = Field(default=None, gt=0)

    minimum_holding_period_days: int = Field(default=0, ge=0)
    lockup_period_days: int = Field(default=0, ge=0)
    cooling_off_period_hours: int = Field(default=0, ge=0)

    requires_kyc: bool = True
    requires_multi_signature: bool = False
    multi_signature_threshold: Decimal | None = Field(default=None, gt=0)

    restricted_countries: set[str] = Field(default_factory=set)
    allowed_countries: set[str] = Field(default_factory=set)
    supported_output_currencies: set[str] = Field(
        default_factory=lambda: set(DEFAULT_OUTPUT_CURRENCIES)
    )

    risk_level: RiskLevel = RiskLevel.LOW
    notes: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("asset_symbol")
    @classmethod
    def upper_symbol(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("restricted_countries", "allowed_countries", "supported_output_currencies")
    @classmethod
    def upper_codes(cls, v: set[str]) -> set[str]:
        return {c.strip().upper() for c in v}

    def needs_multi_signature(self, amount: Decimal) -> bool:
        """Multi-signature applies above the threshold, or always when flagged without one."""
        if self.multi_signature_threshold is not None:
            return amount > self.multi_signature_threshold
        return self.requires_multi_signature


class UsageSnapshot(BaseModel):
    """A user's liquidation history for one asset, as supplied by the ledger."""

    daily_total: Decimal = Decimal("0")
    monthly_total: Decimal = Decimal("0")
    pending_total: Decimal = Field(
        default=Decimal("0"),
        description="Amount reserved by in-flight requests not yet in the ledger",
    )
    last_liquidation_at: datetime | None = None
    acquired_at: datetime | None = None


class ValidationCheck(BaseModel):
    """Outcome of one eligibility rule."""

    rule: str
    passed: bool
    reason_code: ReasonCode | None = None
    message: str = ""


class EligibilityResult(BaseModel):
    """Structured eligibility decision."""

    eligible: bool
    asset_symbol: str
    reason_code: ReasonCode | None = None
    reason: str | None = None
    requires_multi_signature: bool = False
    requires_kyc: bool = True
    risk_level: RiskLevel = RiskLevel.LOW
    validation_results: list[ValidationCheck] = Field(default_factory=list)
