"""
MarketPriceSnapshot domain model.

A time-boxed price observation for an asset/output pair, usable by at most
one liquidation transaction.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from liquidation_engine.domain.common import quantize_amount, utc_now


class MarketPriceSnapshot(BaseModel):
    """Price observation with suitability judgement and one-way usage flag."""

    id: UUID = Field(default_factory=uuid4)
    request_id: UUID | None = None
    asset_symbol: str
    output_symbol: str

    price: Decimal = Field(..., gt=0)
    bid: Decimal | None = None
    ask: Decimal | None = None
    spread: Decimal | None = None
    volume_24h: Decimal | None = None
    change_24h_percent: Decimal | None = None
    high_24h: Decimal | None = None
    low_24h: Decimal | None = None
    available_liquidity: Decimal | None = None
    price_source: str
    exchange: str | None = None
    confidence_level: Decimal = Field(default=Decimal("100"), ge=0, le=100)

    # Suitability
    quoted_amount: Decimal | None = None
    is_suitable_for_liquidation: bool = True
    unsuitability_reason: str | None = None
    estimated_slippage: Decimal = Decimal("0")
    min_transaction_size: Decimal | None = None
    max_transaction_size: Decimal | None = None

    # Validity
    validity_minutes: int = 5
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime

    # Consumption
    is_used_for_liquidation: bool = False
    used_for_liquidation_at: datetime | None = None
    used_by_transaction_id: UUID | None = None

    @property
    def execution_rate(self) -> Decimal:
        """Price net of estimated slippage, used to compute output amounts."""
        return quantize_amount(self.price * (Decimal(1) - self.estimated_slippage / Decimal(100)))

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_usable(self, now: datetime) -> bool:
        """Usable: not yet consumed and not expired."""
        return not self.is_used_for_liquidation and not self.is_expired(now)
