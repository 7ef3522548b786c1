"""
SettlementRail interface.

Defines the contract for the payment/settlement rail that moves funds
from a liquidity provider to the user's destination.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from pydantic import BaseModel


class TransferReceipt(BaseModel):
    """Acknowledgement of a submitted transfer."""

    reference: str
    confirmations: int = 0


class SettlementRail(ABC):
    """
    Abstract base class for settlement rails.

    Implementations raise SettlementError; `retryable` tells the executor
    whether another attempt may succeed.
    """

    @abstractmethod
    async def transfer(
        self,
        source: str,
        destination: str,
        amount: Decimal,
        currency: str,
    ) -> TransferReceipt:
        """
        Move `amount` of `currency` from `source` to `destination`.

        Returns:
            Receipt carrying the rail's transaction reference
        """
        pass

    @abstractmethod
    async def reverse(self, reference: str) -> bool:
        """Reverse a settled transfer. Returns True if the rail accepted it."""
        pass

    @abstractmethod
    async def estimate_network_fee(self, currency: str, amount: Decimal) -> Decimal:
        """Network/gas fee for delivering `amount` of `currency`."""
        pass
