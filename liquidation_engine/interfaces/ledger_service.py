"""
LedgerService interface.

The external ledger asserts balances and supplies the rolling liquidation
totals used by eligibility limits. The engine never keeps balances itself.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from liquidation_engine.domain import UsageSnapshot


class Holding(BaseModel):
    """A user's holding of one asset."""

    balance: Decimal
    acquired_at: datetime | None = None


class LedgerService(ABC):
    """Abstract base class for the balance/ledger collaborator."""

    @abstractmethod
    async def get_holding(self, user_id: str, asset_symbol: str) -> Holding:
        """Current holding of `asset_symbol` for `user_id`."""
        pass

    @abstractmethod
    async def get_usage(self, user_id: str, asset_symbol: str, now: datetime) -> UsageSnapshot:
        """Liquidated totals for the current day and month, plus last liquidation time."""
        pass

    @abstractmethod
    async def record_liquidation(
        self,
        user_id: str,
        asset_symbol: str,
        amount: Decimal,
        at: datetime,
    ) -> None:
        """Record a completed liquidation against the user's rolling totals."""
        pass
