"""
LiquidationTransaction domain model.

One execution attempt against a matched provider. A request may have many
attempts; at most one reaches Completed.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from liquidation_engine.domain.common import utc_now


class TransactionStatus(str, Enum):
    """Execution attempt status."""

    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class LiquidationTransaction(BaseModel):
    """An execution attempt with its fee breakdown and reversal fields."""

    id: UUID = Field(default_factory=uuid4)
    request_id: UUID
    provider_id: UUID
    snapshot_id: UUID
    attempt_number: int = Field(default=1, ge=1)
    status: TransactionStatus = TransactionStatus.PENDING

    asset_symbol: str
    asset_amount: Decimal
    output_symbol: str
    exchange_rate: Decimal
    market_price: Decimal
    gross_amount: Decimal

    # Fee breakdown (output currency)
    provider_fee: Decimal = Decimal("0")
    platform_fee: Decimal = Decimal("0")
    network_fee: Decimal = Decimal("0")
    total_fees: Decimal = Decimal("0")
    net_amount: Decimal = Decimal("0")

    settlement_reference: str | None = None
    confirmations: int = 0

    retry_attempts: int = 0
    max_retries: int = 3
    next_retry_at: datetime | None = None
    error_message: str | None = None
    failure_reason: str | None = None

    # Reversal
    is_reversible: bool = False
    reversible_until: datetime | None = None
    is_reversed: bool = False
    reversed_at: datetime | None = None
    reversal_reason: str | None = None
    reversal_reference: str | None = None
    reversed_by: str | None = None

    created_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def can_reverse(self, now: datetime) -> bool:
        return (
            self.status == TransactionStatus.COMPLETED
            and self.is_reversible
            and not self.is_reversed
            and self.reversible_until is not None
            and now <= self.reversible_until
        )
