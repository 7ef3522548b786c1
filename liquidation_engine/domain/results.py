"""
Typed result values for expected business outcomes.

Rejections, holds and "no liquidity" are returned as Outcome values so they
are never confused with infrastructure faults, which raise.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class Stage(str, Enum):
    """Workflow stage where a failure surfaced."""

    REQUEST = "request"
    ELIGIBILITY = "eligibility"
    KYC = "kyc"
    ASSET_VERIFICATION = "asset_verification"
    PRICING = "pricing"
    COMPLIANCE = "compliance"
    MATCHING = "matching"
    EXECUTION = "execution"
    REVERSAL = "reversal"
    SWEEP = "sweep"


class FailureCategory(str, Enum):
    """What the caller should do about a failure."""

    RETRY_LATER = "retry_later"
    CANNOT_PROCEED = "cannot_proceed"
    CONTACT_SUPPORT = "contact_support"


class ReasonCode(str, Enum):
    """Machine-readable failure reasons."""

    # Request handling
    VALIDATION_ERROR = "ValidationError"
    NOT_FOUND = "NotFound"
    INVALID_STATE = "InvalidState"

    # Eligibility
    NOT_ELIGIBLE = "NotEligible"
    ASSET_NOT_CONFIGURED = "AssetNotConfigured"
    ASSET_DISABLED = "AssetDisabled"
    ASSET_RESTRICTED = "AssetRestricted"
    AMOUNT_BELOW_MINIMUM = "AmountBelowMinimum"
    AMOUNT_ABOVE_MAXIMUM = "AmountAboveMaximum"
    JURISDICTION_RESTRICTED = "JurisdictionRestricted"
    OUTPUT_NOT_SUPPORTED = "OutputNotSupported"
    DAILY_LIMIT_EXCEEDED = "DailyLimitExceeded"
    MONTHLY_LIMIT_EXCEEDED = "MonthlyLimitExceeded"
    HOLDING_PERIOD_NOT_MET = "HoldingPeriodNotMet"
    LOCKUP_ACTIVE = "LockupActive"
    COOLING_OFF_ACTIVE = "CoolingOffActive"
    INSUFFICIENT_BALANCE = "InsufficientBalance"

    # Compliance
    COMPLIANCE_REJECTED = "ComplianceRejected"
    COMPLIANCE_REVIEW_REQUIRED = "ComplianceReviewRequired"

    # Pricing
    PRICE_EXPIRED_OR_CONSUMED = "PriceExpiredOrConsumed"
    PRICE_UNAVAILABLE = "PriceUnavailable"
    UNSUITABLE_PRICE = "UnsuitablePrice"

    # Matching / execution
    NO_LIQUIDITY_AVAILABLE = "NoLiquidityAvailable"
    MULTI_SIGNATURE_REQUIRED = "MultiSignatureRequired"
    EXECUTION_FAILED = "ExecutionFailed"
    TIMEOUT = "Timeout"

    # Lifecycle
    EXPIRED = "Expired"
    CANCELLED = "Cancelled"
    CANCELLATION_NOT_ALLOWED = "CancellationNotAllowed"
    REVERSAL_NOT_ALLOWED = "ReversalNotAllowed"
    REVERSAL_FAILED = "ReversalFailed"
    INTERNAL_ERROR = "InternalError"


_RETRY_LATER = {
    ReasonCode.NO_LIQUIDITY_AVAILABLE,
    ReasonCode.PRICE_EXPIRED_OR_CONSUMED,
    ReasonCode.PRICE_UNAVAILABLE,
    ReasonCode.TIMEOUT,
    ReasonCode.COMPLIANCE_REVIEW_REQUIRED,
    ReasonCode.MULTI_SIGNATURE_REQUIRED,
    ReasonCode.DAILY_LIMIT_EXCEEDED,
    ReasonCode.MONTHLY_LIMIT_EXCEEDED,
    ReasonCode.COOLING_OFF_ACTIVE,
}

_CONTACT_SUPPORT = {
    ReasonCode.EXECUTION_FAILED,
    ReasonCode.REVERSAL_FAILED,
    ReasonCode.INTERNAL_ERROR,
}


def category_for(reason_code: ReasonCode) -> FailureCategory:
    """Map a reason code to the caller-facing category."""
    if reason_code in _RETRY_LATER:
        return FailureCategory.RETRY_LATER
    if reason_code in _CONTACT_SUPPORT:
        return FailureCategory.CONTACT_SUPPORT
    return FailureCategory.CANNOT_PROCEED


class Failure(BaseModel):
    """A surfaced failure: reason code plus the stage that produced it."""

    model_config = ConfigDict(frozen=True)

    reason_code: ReasonCode
    stage: Stage
    message: str

    @property
    def category(self) -> FailureCategory:
        return category_for(self.reason_code)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason_code": self.reason_code.value,
            "stage": self.stage.value,
            "category": self.category.value,
            "message": self.message,
        }


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """
    Result of an operation whose failure is an expected business outcome.

    Exactly one of `value` / `failure` is meaningful: `ok` is True when
    there is no failure.
    """

    value: T | None = None
    failure: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, reason_code: ReasonCode, stage: Stage, message: str) -> "Outcome[T]":
        return cls(failure=Failure(reason_code=reason_code, stage=stage, message=message))

    @classmethod
    def from_failure(cls, failure: Failure) -> "Outcome[T]":
        return cls(failure=failure)
