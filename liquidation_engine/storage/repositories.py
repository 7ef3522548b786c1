"""
In-memory repositories, one per entity type, keyed by UUID.

Entities are stored and returned as deep copies so no caller aliases stored
state. Mutations that must be atomic (status transitions, liquidity
compare-and-decrement, snapshot consumption, reservation settlement) run
under the repository's asyncio lock.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel

from liquidation_engine.domain import (
    ComplianceCheck,
    LiquidationRequest,
    LiquidationTransaction,
    LiquidityProvider,
    LiquidityReservation,
    MarketPriceSnapshot,
    ProviderStatus,
    ReservationState,
)
from liquidation_engine.errors import NotFoundError

M = TypeVar("M", bound=BaseModel)
R = TypeVar("R")


class InMemoryRepository(Generic[M]):
    """Base repository over a dict of UUID -> model."""

    entity_name = "Entity"

    def __init__(self) -> None:
        self._items: dict[UUID, M] = {}
        self._lock = asyncio.Lock()

    async def add(self, item: M) -> M:
        async with self._lock:
            self._items[item.id] = item.model_copy(deep=True)  # type: ignore[attr-defined]
        return item.model_copy(deep=True)

    async def save(self, item: M) -> M:
        """Insert or replace an entity."""
        return await self.add(item)

    async def get(self, item_id: UUID) -> M | None:
        async with self._lock:
            item = self._items.get(item_id)
            return item.model_copy(deep=True) if item is not None else None

    async def require(self, item_id: UUID) -> M:
        item = await self.get(item_id)
        if item is None:
            raise NotFoundError(self.entity_name, item_id)
        return item

    async def list(self, predicate: Callable[[M], bool] | None = None) -> list[M]:
        async with self._lock:
            items = list(self._items.values())
        return [i.model_copy(deep=True) for i in items if predicate is None or predicate(i)]

    async def update(self, item_id: UUID, mutate: Callable[[M], R]) -> tuple[M, R]:
        """
        Apply `mutate` to the stored entity atomically.

        The mutation runs on a working copy; the copy replaces the stored
        entity only if `mutate` does not raise.

        Returns:
            (updated entity copy, value returned by mutate)
        """
        async with self._lock:
            current = self._items.get(item_id)
            if current is None:
                raise NotFoundError(self.entity_name, item_id)
            working = current.model_copy(deep=True)
            result = mutate(working)
            self._items[item_id] = working
            return working.model_copy(deep=True), result

    def __len__(self) -> int:
        return len(self._items)


class RequestRepository(InMemoryRepository[LiquidationRequest]):
    """Liquidation requests with an idempotency-key index."""

    entity_name = "LiquidationRequest"

    def __init__(self) -> None:
        super().__init__()
        self._idempotency: dict[tuple[str, str], UUID] = {}

    async def add_idempotent(self, request: LiquidationRequest) -> tuple[LiquidationRequest, bool]:
        """
        Store a new request unless its (user, idempotency key) is known.

        Returns:
            (stored request, created) where created is False for a replay
        """
        async with self._lock:
            if request.idempotency_key is not None:
                key = (request.user_id, request.idempotency_key)
                existing_id = self._idempotency.get(key)
                if existing_id is not None:
                    return self._items[existing_id].model_copy(deep=True), False
                self._idempotency[key] = request.id
            self._items[request.id] = request.model_copy(deep=True)
            return request.model_copy(deep=True), True


class ProviderRepository(InMemoryRepository[LiquidityProvider]):
    """Liquidity providers with atomic liquidity operations."""

    entity_name = "LiquidityProvider"

    async def try_reserve(self, provider_id: UUID, amount: Decimal, now: datetime) -> bool:
        """
        Compare-and-decrement available liquidity.

        Re-validates status, availability and balance under the lock, so two
        callers can never reserve the same liquidity.
        """
        async with self._lock:
            provider = self._items.get(provider_id)
            if provider is None:
                return False
            if provider.status != ProviderStatus.ACTIVE or not provider.is_available:
                return False
            if provider.available_liquidity < amount:
                return False
            provider.available_liquidity -= amount
            provider.updated_at = now
            return True

    async def credit(self, provider_id: UUID, amount: Decimal, now: datetime) -> LiquidityProvider:
        """Return liquidity to a provider."""

        def _credit(p: LiquidityProvider) -> None:
            p.available_liquidity += amount
            p.updated_at = now

        provider, _ = await self.update(provider_id, _credit)
        return provider


class ReservationRepository(InMemoryRepository[LiquidityReservation]):
    """Liquidity reservations."""

    entity_name = "LiquidityReservation"

    async def settle(
        self,
        reservation_id: UUID,
        state: ReservationState,
        now: datetime,
    ) -> LiquidityReservation | None:
        """
        Move a held reservation to Committed or Released.

        Returns the settled reservation, or None when it was already settled.
        """
        async with self._lock:
            reservation = self._items.get(reservation_id)
            if reservation is None:
                raise NotFoundError(self.entity_name, reservation_id)
            if reservation.state != ReservationState.HELD:
                return None
            reservation.state = state
            reservation.settled_at = now
            return reservation.model_copy(deep=True)


class SnapshotRepository(InMemoryRepository[MarketPriceSnapshot]):
    """Price snapshots with single-use consumption."""

    entity_name = "MarketPriceSnapshot"

    async def consume(
        self,
        snapshot_id: UUID,
        now: datetime,
        transaction_id: UUID | None = None,
    ) -> MarketPriceSnapshot | None:
        """
        Flip `is_used_for_liquidation` if the snapshot is still usable.

        Exactly one caller can succeed; others get None.
        """
        async with self._lock:
            snapshot = self._items.get(snapshot_id)
            if snapshot is None or not snapshot.is_usable(now):
                return None
            snapshot.is_used_for_liquidation = True
            snapshot.used_for_liquidation_at = now
            snapshot.used_by_transaction_id = transaction_id
            return snapshot.model_copy(deep=True)

    async def history(self, asset_symbol: str, output_symbol: str) -> list[MarketPriceSnapshot]:
        items = await self.list(
            lambda s: s.asset_symbol == asset_symbol and s.output_symbol == output_symbol
        )
        return sorted(items, key=lambda s: s.created_at)


class ComplianceCheckRepository(InMemoryRepository[ComplianceCheck]):
    """Compliance checks."""

    entity_name = "ComplianceCheck"

    async def for_request(self, request_id: UUID) -> list[ComplianceCheck]:
        items = await self.list(lambda c: c.request_id == request_id)
        return sorted(items, key=lambda c: c.created_at)


class TransactionRepository(InMemoryRepository[LiquidationTransaction]):
    """Liquidation transaction attempts."""

    entity_name = "LiquidationTransaction"

    async def for_request(self, request_id: UUID) -> list[LiquidationTransaction]:
        items = await self.list(lambda t: t.request_id == request_id)
        return sorted(items, key=lambda t: t.attempt_number)


@dataclass
class Repositories:
    """All repositories used by the engine."""

    requests: RequestRepository = field(default_factory=RequestRepository)
    providers: ProviderRepository = field(default_factory=ProviderRepository)
    reservations: ReservationRepository = field(default_factory=ReservationRepository)
    snapshots: SnapshotRepository = field(default_factory=SnapshotRepository)
    checks: ComplianceCheckRepository = field(default_factory=ComplianceCheckRepository)
    transactions: TransactionRepository = field(default_factory=TransactionRepository)
