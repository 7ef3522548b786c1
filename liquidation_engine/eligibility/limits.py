"""
Rolling-limit tracker.

The external ledger only knows about completed liquidations. In-flight
requests reserve their amount here so two concurrent requests for the same
user and asset cannot both pass a daily/monthly limit.
"""

import asyncio
from collections.abc import Callable
from decimal import Decimal
from uuid import UUID

from liquidation_engine.domain import EligibilityResult, UsageSnapshot
from liquidation_engine.logging import get_logger

logger = get_logger(__name__)


class RollingLimitTracker:
    """Pending per-(user, asset) usage held by in-flight requests."""

    def __init__(self) -> None:
        self._pending: dict[tuple[str, str], dict[UUID, Decimal]] = {}
        self._lock = asyncio.Lock()

    def pending_total(self, user_id: str, asset_symbol: str) -> Decimal:
        held = self._pending.get((user_id, asset_symbol), {})
        return sum(held.values(), Decimal(0))

    async def check_and_reserve(
        self,
        user_id: str,
        asset_symbol: str,
        request_id: UUID,
        amount: Decimal,
        usage: UsageSnapshot,
        check: Callable[[UsageSnapshot], EligibilityResult],
    ) -> EligibilityResult:
        """
        Run `check` with pending usage folded in, reserving on success.

        The check and the reservation happen under one lock.
        """
        key = (user_id, asset_symbol)
        async with self._lock:
            held = self._pending.get(key, {})
            pending = sum((a for rid, a in held.items() if rid != request_id), Decimal(0))
            result = check(usage.model_copy(update={"pending_total": pending}))
            if result.eligible:
                self._pending.setdefault(key, {})[request_id] = amount
            return result

    async def release(self, user_id: str, asset_symbol: str, request_id: UUID) -> bool:
        """Drop a request's pending usage. Returns False if nothing was held."""
        async with self._lock:
            held = self._pending.get((user_id, asset_symbol))
            if not held or request_id not in held:
                return False
            del held[request_id]
            if not held:
                del self._pending[(user_id, asset_symbol)]
            logger.debug("Released rolling usage for %s %s", user_id, request_id)
            return True
