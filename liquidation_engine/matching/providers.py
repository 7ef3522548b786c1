"""
Liquidity provider administration.

Registration, approval, suspension and availability updates. Providers
are never deleted; status changes follow PROVIDER_STATUS_TRANSITIONS.
"""

from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from liquidation_engine.domain import (
    Clock,
    LiquidityProvider,
    Outcome,
    ProviderStatus,
    ReasonCode,
    Stage,
    utc_now,
)
from liquidation_engine.domain.provider import DEFAULT_OUTPUT_CURRENCIES
from liquidation_engine.logging import get_logger
from liquidation_engine.storage import ProviderRepository

logger = get_logger(__name__)


PROVIDER_STATUS_TRANSITIONS: dict[ProviderStatus, set[ProviderStatus]] = {
    ProviderStatus.PENDING: {ProviderStatus.ACTIVE, ProviderStatus.REJECTED},
    ProviderStatus.ACTIVE: {ProviderStatus.SUSPENDED, ProviderStatus.INACTIVE},
    ProviderStatus.INACTIVE: {ProviderStatus.ACTIVE, ProviderStatus.SUSPENDED},
    ProviderStatus.SUSPENDED: {ProviderStatus.ACTIVE, ProviderStatus.INACTIVE},
    ProviderStatus.REJECTED: set(),
}


def validate_provider_transition(from_status: ProviderStatus, to_status: ProviderStatus) -> bool:
    """Check whether a provider status change is allowed."""
    return to_status in PROVIDER_STATUS_TRANSITIONS.get(from_status, set())


class ProviderRegistration(BaseModel):
    """Data supplied when registering a provider."""

    name: str = Field(..., min_length=1, max_length=200)
    email: str | None = None
    country: str | None = None
    minimum_transaction_amount: Decimal = Field(default=Decimal("0"), ge=0)
    maximum_transaction_amount: Decimal | None = Field(default=None, gt=0)
    supported_assets: set[str] = Field(default_factory=set)
    supported_output_currencies: set[str] = Field(
        default_factory=lambda: set(DEFAULT_OUTPUT_CURRENCIES)
    )
    fee_percentage: Decimal = Field(default=Decimal("0.5"), ge=0, le=100)
    available_liquidity: Decimal = Field(default=Decimal("0"), ge=0)
    average_response_time_minutes: Decimal = Field(default=Decimal("0"), ge=0)
    rating: Decimal = Field(default=Decimal("0"), ge=0, le=5)


class ProviderRegistry:
    """Admin operations over liquidity providers."""

    def __init__(self, providers: ProviderRepository, clock: Clock = utc_now):
        self._providers = providers
        self._clock = clock

    async def register(self, registration: ProviderRegistration) -> LiquidityProvider:
        """Register a provider in Pending status."""
        now = self._clock()
        provider = LiquidityProvider(
            **registration.model_dump(),
            status=ProviderStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        provider = await self._providers.add(provider)
        logger.info("Registered liquidity provider %s (%s)", provider.name, provider.id)
        return provider

    async def approve(self, provider_id: UUID, approved_by: str | None = None) -> Outcome[LiquidityProvider]:
        """Pending -> Active."""
        provider = await self._providers.require(provider_id)
        if provider.status != ProviderStatus.PENDING:
            return Outcome.fail(
                ReasonCode.INVALID_STATE,
                Stage.MATCHING,
                f"Only pending providers can be approved (status {provider.status.value})",
            )
        return await self._set_status(provider_id, ProviderStatus.ACTIVE, approved_by=approved_by)

    async def reject(self, provider_id: UUID, reason: str) -> Outcome[LiquidityProvider]:
        return await self._set_status(provider_id, ProviderStatus.REJECTED, reason=reason)

    async def suspend(self, provider_id: UUID, reason: str) -> Outcome[LiquidityProvider]:
        """Suspend a provider; fails if it is already suspended."""
        provider = await self._providers.require(provider_id)
        if provider.status == ProviderStatus.SUSPENDED:
            return Outcome.fail(
                ReasonCode.INVALID_STATE,
                Stage.MATCHING,
                f"Provider {provider_id} is already suspended",
            )
        return await self._set_status(provider_id, ProviderStatus.SUSPENDED, reason=reason)

    async def reactivate(self, provider_id: UUID) -> Outcome[LiquidityProvider]:
        return await self._set_status(provider_id, ProviderStatus.ACTIVE)

    async def deactivate(self, provider_id: UUID) -> Outcome[LiquidityProvider]:
        return await self._set_status(provider_id, ProviderStatus.INACTIVE)

    async def update_availability(
        self,
        provider_id: UUID,
        is_available: bool,
        available_liquidity: Decimal | None = None,
    ) -> LiquidityProvider:
        """Toggle availability and optionally reset free liquidity."""
        if available_liquidity is not None and available_liquidity < 0:
            raise ValueError("available_liquidity cannot be negative")
        now = self._clock()

        def _apply(p: LiquidityProvider) -> None:
            p.is_available = is_available
            if available_liquidity is not None:
                p.available_liquidity = available_liquidity
            p.last_active_at = now
            p.updated_at = now

        provider, _ = await self._providers.update(provider_id, _apply)
        logger.info(
            "Provider %s availability=%s liquidity=%s",
            provider_id,
            is_available,
            provider.available_liquidity,
        )
        return provider

    async def add_liquidity(self, provider_id: UUID, amount: Decimal) -> LiquidityProvider:
        if amount <= 0:
            raise ValueError("amount must be positive")
        return await self._providers.credit(provider_id, amount, self._clock())

    async def get(self, provider_id: UUID) -> LiquidityProvider:
        return await self._providers.require(provider_id)

    async def list(self, status: ProviderStatus | None = None) -> list[LiquidityProvider]:
        providers = await self._providers.list(lambda p: status is None or p.status == status)
        return sorted(providers, key=lambda p: p.created_at)

    async def statistics(self, provider_id: UUID) -> dict[str, Any]:
        provider = await self._providers.require(provider_id)
        return {
            "provider_id": str(provider.id),
            "name": provider.name,
            "status": provider.status.value,
            "successful_liquidations": provider.successful_liquidations,
            "failed_liquidations": provider.failed_liquidations,
            "success_rate": round(provider.success_rate, 2),
            "total_liquidity_provided": str(provider.total_liquidity_provided),
            "total_fees_earned": str(provider.total_fees_earned),
            "available_liquidity": str(provider.available_liquidity),
            "rating": str(provider.rating),
        }

    async def _set_status(
        self,
        provider_id: UUID,
        status: ProviderStatus,
        *,
        reason: str | None = None,
        approved_by: str | None = None,
    ) -> Outcome[LiquidityProvider]:
        current = await self._providers.require(provider_id)
        if not validate_provider_transition(current.status, status):
            return Outcome.fail(
                ReasonCode.INVALID_STATE,
                Stage.MATCHING,
                f"Provider cannot move from {current.status.value} to {status.value}",
            )
        now = self._clock()

        def _apply(p: LiquidityProvider) -> None:
            p.status = status
            p.updated_at = now
            if status == ProviderStatus.ACTIVE:
                p.approved_at = p.approved_at or now
                p.suspended_at = None
                p.suspension_reason = None
            elif status == ProviderStatus.SUSPENDED:
                p.suspended_at = now
                p.suspension_reason = reason

        provider, _ = await self._providers.update(provider_id, _apply)
        logger.info(
            "Provider %s -> %s%s%s",
            provider_id,
            status.value,
            f" by {approved_by}" if approved_by else "",
            f": {reason}" if reason else "",
        )
        return Outcome.success(provider)
