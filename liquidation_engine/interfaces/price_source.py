"""
PriceSource interface.

Defines the contract for the external market-price source.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from pydantic import BaseModel, Field


class PriceObservation(BaseModel):
    """Raw price data returned by a price source."""

    price: Decimal = Field(..., gt=0)
    bid: Decimal | None = None
    ask: Decimal | None = None
    volume_24h: Decimal | None = None
    change_24h_percent: Decimal | None = None
    high_24h: Decimal | None = None
    low_24h: Decimal | None = None
    available_liquidity: Decimal | None = None
    confidence: Decimal = Field(default=Decimal("100"), ge=0, le=100)
    source: str = "external"
    exchange: str | None = None
    min_transaction_size: Decimal | None = None
    max_transaction_size: Decimal | None = None


class PriceSource(ABC):
    """Abstract base class for market price sources."""

    @abstractmethod
    async def get_price(self, asset_symbol: str, output_symbol: str) -> PriceObservation:
        """
        Fetch the current price of `asset_symbol` quoted in `output_symbol`.

        Raises:
            PriceSourceError: Price unavailable (retryable)
        """
        pass

    async def close(self) -> None:
        """Release any underlying connections."""
        return None
