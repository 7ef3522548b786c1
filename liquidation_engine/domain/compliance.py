"""
ComplianceCheck domain model.

One typed screening attempt for a liquidation request, including its
retry bookkeeping and any manual override.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from liquidation_engine.domain.common import RiskLevel, utc_now


class ComplianceCheckType(str, Enum):
    """Kinds of regulatory screening."""

    KYC_VERIFICATION = "KycVerification"
    AML_SCREENING = "AmlScreening"
    SANCTIONS_SCREENING = "SanctionsScreening"
    PEP_SCREENING = "PepScreening"
    ILLICIT_ADDRESS_SCREENING = "IllicitAddressScreening"
    RISK_ASSESSMENT = "RiskAssessment"


class ComplianceCheckResult(str, Enum):
    """Result of a single check."""

    PENDING = "Pending"
    PASSED = "Passed"
    FAILED = "Failed"
    REQUIRES_REVIEW = "RequiresReview"
    SKIPPED = "Skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ComplianceCheckResult.PASSED,
            ComplianceCheckResult.FAILED,
            ComplianceCheckResult.SKIPPED,
        )


class ComplianceOutcome(str, Enum):
    """Aggregate compliance decision for a request."""

    APPROVED = "Approved"
    REJECTED = "Rejected"
    REQUIRES_REVIEW = "RequiresReview"


class ReviewDecision(str, Enum):
    """Reviewer disposition for a held check."""

    APPROVE = "approve"
    REJECT = "reject"

    @property
    def result(self) -> ComplianceCheckResult:
        if self is ReviewDecision.APPROVE:
            return ComplianceCheckResult.PASSED
        return ComplianceCheckResult.FAILED


class ComplianceCheck(BaseModel):
    """A compliance screening attempt tied to a request."""

    id: UUID = Field(default_factory=uuid4)
    request_id: UUID
    check_type: ComplianceCheckType
    result: ComplianceCheckResult = ComplianceCheckResult.PENDING

    provider: str | None = None
    external_reference_id: str | None = None
    risk_score: int | None = Field(default=None, ge=0, le=100)
    risk_level: RiskLevel = RiskLevel.LOW
    failure_reason: str | None = None
    recommendations: list[str] = Field(default_factory=list)
    requires_manual_review: bool = False

    # Manual review / override
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_comments: str | None = None
    is_overridden: bool = False
    original_result: ComplianceCheckResult | None = None
    override_reason: str | None = None
    review_expires_at: datetime | None = None

    # Timing
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None

    # Retry bookkeeping
    retry_attempts: int = 0
    max_retries: int = 3
    next_retry_at: datetime | None = None
    error_message: str | None = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_settled(self) -> bool:
        """Terminal result, or overridden by a reviewer."""
        return self.result.is_terminal or self.is_overridden

    @property
    def can_retry(self) -> bool:
        return self.retry_attempts < self.max_retries
