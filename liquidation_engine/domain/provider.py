"""
LiquidityProvider and LiquidityReservation domain models.

Providers are never deleted; they move between soft statuses. Every
decrement of available liquidity is tied to one reservation.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from liquidation_engine.domain.common import utc_now

DEFAULT_OUTPUT_CURRENCIES = frozenset({"USD", "EUR", "USDT", "USDC", "BTC", "ETH"})


class ProviderStatus(str, Enum):
    """Provider lifecycle status."""

    PENDING = "Pending"
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    SUSPENDED = "Suspended"
    REJECTED = "Rejected"


class LiquidityProvider(BaseModel):
    """A registered counterparty able to fund liquidations."""

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=200)
    email: str | None = None
    country: str | None = None
    status: ProviderStatus = ProviderStatus.PENDING

    minimum_transaction_amount: Decimal = Field(default=Decimal("0"), ge=0)
    maximum_transaction_amount: Decimal | None = Field(default=None, gt=0)
    supported_assets: set[str] = Field(default_factory=set)
    supported_output_currencies: set[str] = Field(
        default_factory=lambda: set(DEFAULT_OUTPUT_CURRENCIES)
    )
    fee_percentage: Decimal = Field(default=Decimal("0.5"), ge=0, le=100)

    # Liquidity in asset units
    available_liquidity: Decimal = Field(default=Decimal("0"), ge=0)
    total_liquidity_provided: Decimal = Decimal("0")
    total_fees_earned: Decimal = Decimal("0")

    # Scoring
    successful_liquidations: int = 0
    failed_liquidations: int = 0
    average_response_time_minutes: Decimal = Field(default=Decimal("0"), ge=0)
    rating: Decimal = Field(default=Decimal("0"), ge=0, le=5)
    is_available: bool = True

    approved_at: datetime | None = None
    suspended_at: datetime | None = None
    suspension_reason: str | None = None
    last_active_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("supported_assets", "supported_output_currencies")
    @classmethod
    def upper_symbols(cls, v: set[str]) -> set[str]:
        return {s.strip().upper() for s in v}

    @property
    def success_rate(self) -> float:
        total = self.successful_liquidations + self.failed_liquidations
        if total == 0:
            return 0.0
        return self.successful_liquidations / total * 100

    def accepts_amount(self, amount: Decimal) -> bool:
        if amount < self.minimum_transaction_amount:
            return False
        if self.maximum_transaction_amount is not None and amount > self.maximum_transaction_amount:
            return False
        return True


class ReservationState(str, Enum):
    """State of a liquidity reservation."""

    HELD = "Held"
    COMMITTED = "Committed"
    RELEASED = "Released"


class LiquidityReservation(BaseModel):
    """Liquidity held against a provider for one request."""

    id: UUID = Field(default_factory=uuid4)
    provider_id: UUID
    request_id: UUID
    amount: Decimal = Field(..., gt=0)
    state: ReservationState = ReservationState.HELD
    created_at: datetime = Field(default_factory=utc_now)
    settled_at: datetime | None = None
