"""
LiquidationRequest domain model.

The aggregate root of a liquidation. Checks, transactions and snapshots
reference it by id; it references at most one liquidity provider.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from liquidation_engine.domain.common import RiskLevel, quantize_amount, utc_now
from liquidation_engine.domain.results import Failure, ReasonCode


class LiquidationRequestStatus(str, Enum):
    """Lifecycle status of a liquidation request."""

    PENDING = "Pending"
    KYC_VERIFICATION_IN_PROGRESS = "KycVerificationInProgress"
    ASSET_VERIFICATION_IN_PROGRESS = "AssetVerificationInProgress"
    COMPLIANCE_CHECK_IN_PROGRESS = "ComplianceCheckInProgress"
    AWAITING_LIQUIDITY_PROVIDER = "AwaitingLiquidityProvider"
    EXECUTING = "Executing"
    TRANSFER_IN_PROGRESS = "TransferInProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    FAILED = "Failed"
    REJECTED = "Rejected"

    @property
    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state."""
        return self in (
            LiquidationRequestStatus.COMPLETED,
            LiquidationRequestStatus.CANCELLED,
            LiquidationRequestStatus.FAILED,
            LiquidationRequestStatus.REJECTED,
        )

    @property
    def is_cancellable(self) -> bool:
        """User cancellation is allowed only before execution starts."""
        return self in CANCELLABLE_STATUSES

    @property
    def is_executing(self) -> bool:
        return self in (
            LiquidationRequestStatus.EXECUTING,
            LiquidationRequestStatus.TRANSFER_IN_PROGRESS,
        )


CANCELLABLE_STATUSES = frozenset(
    {
        LiquidationRequestStatus.PENDING,
        LiquidationRequestStatus.KYC_VERIFICATION_IN_PROGRESS,
        LiquidationRequestStatus.ASSET_VERIFICATION_IN_PROGRESS,
        LiquidationRequestStatus.COMPLIANCE_CHECK_IN_PROGRESS,
        LiquidationRequestStatus.AWAITING_LIQUIDITY_PROVIDER,
    }
)


class OutputType(str, Enum):
    """Kind of value the user receives."""

    FIAT = "Fiat"
    STABLECOIN = "Stablecoin"
    CRYPTOCURRENCY = "Cryptocurrency"


class DestinationType(str, Enum):
    """Where proceeds are delivered."""

    BANK_ACCOUNT = "BankAccount"
    WALLET_ADDRESS = "WalletAddress"
    INTERNAL_ACCOUNT = "InternalAccount"


class StatusTransition(BaseModel):
    """One persisted status change with its triggering reason."""

    from_status: LiquidationRequestStatus
    to_status: LiquidationRequestStatus
    reason: str
    reason_code: ReasonCode | None = None
    at: datetime
    override_by: str | None = Field(
        default=None,
        description="Operator who forced a transition outside the state graph",
    )

    @property
    def is_override(self) -> bool:
        return self.override_by is not None


class CreateLiquidationCommand(BaseModel):
    """Input for creating a liquidation request."""

    user_id: str = Field(..., min_length=1, max_length=128)
    asset_symbol: str = Field(..., min_length=1, max_length=20)
    asset_amount: Decimal = Field(..., gt=0, max_digits=28)
    output_type: OutputType
    output_symbol: str = Field(..., min_length=1, max_length=20)
    destination_type: DestinationType
    destination_address: str = Field(..., min_length=1, max_length=500)
    destination_country: str = Field(..., min_length=2, max_length=2)
    notes: str | None = Field(default=None, max_length=1000)

    @field_validator("asset_symbol", "output_symbol", "destination_country")
    @classmethod
    def upper_case(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("asset_amount")
    @classmethod
    def check_precision(cls, v: Decimal) -> Decimal:
        if v != quantize_amount(v):
            raise ValueError("asset_amount supports at most 8 decimal places")
        return v


class LiquidationRequest(BaseModel):
    """
    A user's request to liquidate a held asset.

    Status is owned by the orchestrator and changes only through the
    state machine, which appends to `status_history`.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    idempotency_key: str | None = None

    # What is being liquidated
    asset_symbol: str
    asset_amount: Decimal = Field(..., gt=0)

    # What the user receives and where
    output_type: OutputType
    output_symbol: str
    destination_type: DestinationType
    destination_address: str
    destination_country: str

    status: LiquidationRequestStatus = LiquidationRequestStatus.PENDING
    status_history: list[StatusTransition] = Field(default_factory=list)

    # Pricing
    market_price_at_request: Decimal | None = None
    estimated_output_amount: Decimal | None = None
    actual_output_amount: Decimal | None = None
    snapshot_id: UUID | None = None

    # Verification flags
    kyc_verified: bool = False
    compliance_approved: bool = False
    asset_eligibility_verified: bool = False
    requires_multi_signature: bool = False
    multi_signature_approved: bool = False
    multi_signature_approved_by: str | None = None

    # Matching
    liquidity_provider_id: UUID | None = None
    reservation_id: UUID | None = None
    next_match_at: datetime | None = None
    limit_reserved: bool = False

    risk_level: RiskLevel = RiskLevel.LOW

    # Cooperative cancellation
    cancel_requested: bool = False
    cancellation_reason: str | None = None

    failure: Failure | None = None
    notes: str | None = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    expires_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    @property
    def screening_amount(self) -> Decimal:
        """Amount used for screening thresholds: output estimate when known."""
        if self.estimated_output_amount is not None:
            return self.estimated_output_amount
        return self.asset_amount
