"""
Liquidity Matcher.

Filters providers able to fund a liquidation, ranks them, and reserves
liquidity on the best one with an atomic compare-and-decrement. A provider
whose reservation fails is skipped; it is not an error.
"""

from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from liquidation_engine.audit import AuditLedger
from liquidation_engine.config import DEFAULT_PROVIDER_RANKING
from liquidation_engine.domain import (
    Clock,
    LiquidityProvider,
    LiquidityReservation,
    Outcome,
    ProviderStatus,
    ReasonCode,
    ReservationState,
    Stage,
    utc_now,
)
from liquidation_engine.logging import get_logger
from liquidation_engine.matching.ranking import rank_providers
from liquidation_engine.runtime.event_bus import Event, EventBus, EventType
from liquidation_engine.storage import ProviderRepository, ReservationRepository

logger = get_logger(__name__)


class MatcherConfig(BaseModel):
    """Matching policy."""

    ranking: list[str] = Field(default_factory=lambda: list(DEFAULT_PROVIDER_RANKING))
    poll_interval_seconds: int = Field(default=60, ge=1)


class ProviderMatch(BaseModel):
    """A selected provider with the liquidity held for the request."""

    provider: LiquidityProvider
    reservation: LiquidityReservation
    candidates_considered: int


def is_candidate(
    provider: LiquidityProvider,
    asset_symbol: str,
    output_symbol: str,
    amount: Decimal,
) -> bool:
    """Whether a provider can fund this liquidation right now."""
    return (
        provider.status == ProviderStatus.ACTIVE
        and provider.is_available
        and asset_symbol in provider.supported_assets
        and output_symbol in provider.supported_output_currencies
        and provider.accepts_amount(amount)
        and provider.available_liquidity >= amount
    )


class LiquidityMatcher:
    """
    Selects and reserves a liquidity provider.

    Usage:
        outcome = await matcher.select_provider("BTC", "USD", Decimal("1"), request.id)
        if outcome.ok:
            match = outcome.value  # liquidity already reserved
    """

    def __init__(
        self,
        providers: ProviderRepository,
        reservations: ReservationRepository,
        config: MatcherConfig | None = None,
        clock: Clock = utc_now,
        event_bus: EventBus | None = None,
        audit: AuditLedger | None = None,
    ):
        self._providers = providers
        self._reservations = reservations
        self._config = config or MatcherConfig()
        self._clock = clock
        self._event_bus = event_bus
        self._audit = audit

    @property
    def config(self) -> MatcherConfig:
        return self._config

    async def find_candidates(
        self,
        asset_symbol: str,
        output_symbol: str,
        amount: Decimal,
    ) -> list[LiquidityProvider]:
        """Eligible providers, best first."""
        asset_symbol = asset_symbol.upper()
        output_symbol = output_symbol.upper()
        candidates = await self._providers.list(
            lambda p: is_candidate(p, asset_symbol, output_symbol, amount)
        )
        return rank_providers(candidates, self._config.ranking)

    async def select_provider(
        self,
        asset_symbol: str,
        output_symbol: str,
        amount: Decimal,
        request_id: UUID,
    ) -> Outcome[ProviderMatch]:
        """
        Pick the best provider and reserve `amount` of its liquidity.

        Walks the ranked candidates until one reservation succeeds; returns
        NoLiquidityAvailable when none does.
        """
        candidates = await self.find_candidates(asset_symbol, output_symbol, amount)
        now = self._clock()

        for provider in candidates:
            if not await self._providers.try_reserve(provider.id, amount, now):
                logger.debug("Provider %s lost reservation race, skipping", provider.id)
                continue

            reservation = await self._reservations.add(
                LiquidityReservation(
                    provider_id=provider.id,
                    request_id=request_id,
                    amount=amount,
                    created_at=now,
                )
            )
            if self._audit:
                self._audit.record_reservation(reservation)
            reserved = await self._providers.require(provider.id)
            logger.info(
                "Matched %s %s -> provider %s (%s), reserved %s",
                amount,
                asset_symbol,
                provider.name,
                provider.id,
                amount,
            )
            await self._publish(
                EventType.LIQUIDITY_RESERVED,
                request_id,
                {"provider_id": str(provider.id), "amount": str(amount)},
            )
            return Outcome.success(
                ProviderMatch(
                    provider=reserved,
                    reservation=reservation,
                    candidates_considered=len(candidates),
                )
            )

        logger.info(
            "No liquidity for %s %s -> %s (%d candidates)",
            amount,
            asset_symbol,
            output_symbol,
            len(candidates),
        )
        await self._publish(EventType.NO_LIQUIDITY, request_id, {"asset": asset_symbol, "amount": str(amount)})
        return Outcome.fail(
            ReasonCode.NO_LIQUIDITY_AVAILABLE,
            Stage.MATCHING,
            f"No liquidity provider can fund {amount} {asset_symbol} into {output_symbol}",
        )

    async def release(self, reservation_id: UUID) -> bool:
        """
        Return reserved liquidity to the provider.

        Returns False if the reservation was already committed or released.
        """
        now = self._clock()
        reservation = await self._reservations.settle(reservation_id, ReservationState.RELEASED, now)
        if reservation is None:
            return False
        await self._providers.credit(reservation.provider_id, reservation.amount, now)
        if self._audit:
            self._audit.record_reservation(reservation)
        logger.info(
            "Released %s liquidity back to provider %s",
            reservation.amount,
            reservation.provider_id,
        )
        await self._publish(
            EventType.LIQUIDITY_RELEASED,
            reservation.request_id,
            {"provider_id": str(reservation.provider_id), "amount": str(reservation.amount)},
        )
        return True

    async def commit(self, reservation_id: UUID) -> bool:
        """Make a reservation's debit permanent. Returns False if already settled."""
        reservation = await self._reservations.settle(
            reservation_id, ReservationState.COMMITTED, self._clock()
        )
        if reservation is None:
            return False
        if self._audit:
            self._audit.record_reservation(reservation)
        return True

    async def _publish(self, event_type: EventType, request_id: UUID, data: dict) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(Event(type=event_type, data=data, request_id=request_id))
