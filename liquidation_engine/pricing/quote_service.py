"""
Quote Service - time-boxed, single-use price snapshots.

Fetches prices from the external source with timeout and exponential
backoff, judges suitability for liquidation, caches the latest snapshot per
pair, and is the only path that marks a snapshot as used.
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

import pandas as pd
from pydantic import BaseModel, Field

from liquidation_engine.domain import (
    Clock,
    MarketPriceSnapshot,
    Outcome,
    ReasonCode,
    Stage,
    quantize_amount,
    utc_now,
)
from liquidation_engine.errors import TransientProviderError
from liquidation_engine.interfaces import PriceObservation, PriceSource
from liquidation_engine.logging import get_logger
from liquidation_engine.pricing.slippage import estimate_slippage_percent
from liquidation_engine.runtime.event_bus import Event, EventBus, EventType
from liquidation_engine.storage import SnapshotRepository

logger = get_logger(__name__)


class QuoteConfig(BaseModel):
    """Quote policy."""

    validity_minutes: int = Field(default=5, ge=1)
    max_slippage_percent: Decimal = Field(default=Decimal("5.0"), gt=0)
    min_confidence: Decimal = Field(default=Decimal("70"), ge=0, le=100)
    max_retries: int = Field(default=3, ge=0)
    timeout_s: float = Field(default=10.0, gt=0)
    retry_base_delay_s: float = Field(default=1.0, ge=0)
    # Half-spread applied when the source omits bid/ask
    default_half_spread: Decimal = Decimal("0.001")


class QuoteService:
    """
    Obtains and validates market price snapshots.

    Usage:
        outcome = await quotes.get_quote("BTC", "USD", Decimal("1"))
        if outcome.ok and outcome.value.is_suitable_for_liquidation:
            consumed = await quotes.consume_quote(outcome.value.id)
    """

    def __init__(
        self,
        price_source: PriceSource,
        snapshots: SnapshotRepository,
        config: QuoteConfig | None = None,
        clock: Clock = utc_now,
        event_bus: EventBus | None = None,
    ):
        self._source = price_source
        self._snapshots = snapshots
        self._config = config or QuoteConfig()
        self._clock = clock
        self._event_bus = event_bus
        # (asset, output) -> latest snapshot id
        self._cache: dict[tuple[str, str], UUID] = {}

    @property
    def config(self) -> QuoteConfig:
        return self._config

    # =========================================================================
    # Quoting
    # =========================================================================

    async def get_quote(
        self,
        asset_symbol: str,
        output_symbol: str,
        amount: Decimal | None,
        request_id: UUID | None = None,
    ) -> Outcome[MarketPriceSnapshot]:
        """
        Fetch a fresh price and build a snapshot valid for `validity_minutes`.

        Returns a PriceUnavailable failure when the source keeps failing
        after retries. An unsuitable price is still returned as a snapshot
        with `is_suitable_for_liquidation=False` and the reason.
        """
        asset_symbol = asset_symbol.upper()
        output_symbol = output_symbol.upper()

        try:
            observation = await self._fetch_with_retry(asset_symbol, output_symbol)
        except TransientProviderError as e:
            logger.error("Price unavailable for %s/%s: %s", asset_symbol, output_symbol, e)
            return Outcome.fail(
                ReasonCode.PRICE_UNAVAILABLE,
                Stage.PRICING,
                f"Price for {asset_symbol}/{output_symbol} unavailable: {e}",
            )

        snapshot = self._build_snapshot(asset_symbol, output_symbol, amount, observation, request_id)
        snapshot = await self._snapshots.add(snapshot)
        self._cache[(asset_symbol, output_symbol)] = snapshot.id

        logger.info(
            "Quote %s %s/%s price=%s slippage=%s%% suitable=%s",
            snapshot.id,
            asset_symbol,
            output_symbol,
            snapshot.price,
            snapshot.estimated_slippage,
            snapshot.is_suitable_for_liquidation,
        )
        await self._publish(EventType.QUOTE_CREATED, snapshot)
        return Outcome.success(snapshot)

    async def consume_quote(
        self,
        snapshot_id: UUID,
        transaction_id: UUID | None = None,
    ) -> Outcome[MarketPriceSnapshot]:
        """
        Mark a snapshot as used for a liquidation.

        Fails with PriceExpiredOrConsumed if it was already used, has
        expired, or does not exist. Exactly one concurrent caller succeeds.
        """
        consumed = await self._snapshots.consume(snapshot_id, self._clock(), transaction_id)
        if consumed is None:
            return Outcome.fail(
                ReasonCode.PRICE_EXPIRED_OR_CONSUMED,
                Stage.PRICING,
                f"Price snapshot {snapshot_id} is expired or already used",
            )
        await self._publish(EventType.QUOTE_CONSUMED, consumed)
        return Outcome.success(consumed)

    async def refresh_if_stale(
        self,
        snapshot_id: UUID | None,
        asset_symbol: str,
        output_symbol: str,
        amount: Decimal,
        request_id: UUID | None = None,
    ) -> Outcome[MarketPriceSnapshot]:
        """Return the held snapshot while usable, otherwise a fresh quote."""
        if snapshot_id is not None:
            snapshot = await self._snapshots.get(snapshot_id)
            if snapshot is not None and snapshot.is_usable(self._clock()):
                return Outcome.success(snapshot)
            logger.info("Snapshot %s is stale, re-quoting %s/%s", snapshot_id, asset_symbol, output_symbol)
        return await self.get_quote(asset_symbol, output_symbol, amount, request_id=request_id)

    async def get_current_price(
        self,
        asset_symbol: str,
        output_symbol: str,
    ) -> Outcome[MarketPriceSnapshot]:
        """Cached snapshot for the pair while valid, otherwise a fresh one."""
        key = (asset_symbol.upper(), output_symbol.upper())
        cached_id = self._cache.get(key)
        if cached_id is not None:
            cached = await self._snapshots.get(cached_id)
            if cached is not None and not cached.is_expired(self._clock()):
                return Outcome.success(cached)
        return await self.get_quote(key[0], key[1], None)

    # =========================================================================
    # History / sweeps
    # =========================================================================

    async def price_history(
        self,
        asset_symbol: str,
        output_symbol: str,
        limit: int = 50,
    ) -> list[MarketPriceSnapshot]:
        history = await self._snapshots.history(asset_symbol.upper(), output_symbol.upper())
        return history[-limit:]

    async def price_statistics(self, asset_symbol: str, output_symbol: str) -> dict[str, Any]:
        """Summary statistics over recorded snapshots for a pair."""
        history = await self._snapshots.history(asset_symbol.upper(), output_symbol.upper())
        if not history:
            return {"count": 0}

        df = pd.DataFrame(
            {
                "price": [float(s.price) for s in history],
                "slippage": [float(s.estimated_slippage) for s in history],
                "suitable": [s.is_suitable_for_liquidation for s in history],
            }
        )
        mean_price = df["price"].mean()
        std = df["price"].std(ddof=0)
        return {
            "count": int(len(df)),
            "latest_price": float(df["price"].iloc[-1]),
            "min_price": float(df["price"].min()),
            "max_price": float(df["price"].max()),
            "mean_price": float(mean_price),
            "volatility_percent": float(std / mean_price * 100) if mean_price else 0.0,
            "mean_slippage_percent": float(df["slippage"].mean()),
            "suitable_ratio": float(df["suitable"].mean()),
        }

    async def sweep_expired(self, now: datetime | None = None) -> int:
        """
        Evict expired snapshots from the per-pair cache.

        Snapshots themselves are kept for audit. Idempotent.
        """
        now = now or self._clock()
        evicted = 0
        for key, snapshot_id in list(self._cache.items()):
            snapshot = await self._snapshots.get(snapshot_id)
            if snapshot is None or snapshot.is_expired(now):
                del self._cache[key]
                evicted += 1
        if evicted:
            logger.debug("Evicted %d expired quotes", evicted)
        return evicted

    # =========================================================================
    # Internals
    # =========================================================================

    async def _fetch_with_retry(self, asset_symbol: str, output_symbol: str) -> PriceObservation:
        last_error: Exception | None = None
        attempts = self._config.max_retries + 1
        for attempt in range(attempts):
            try:
                return await asyncio.wait_for(
                    self._source.get_price(asset_symbol, output_symbol),
                    timeout=self._config.timeout_s,
                )
            except (TransientProviderError, TimeoutError) as e:
                last_error = e
                if attempt + 1 >= attempts:
                    break
                backoff = self._config.retry_base_delay_s * 2**attempt
                logger.warning(
                    "Price fetch failed (%s), backing off %.1fs (attempt %d/%d)",
                    str(e) or "timeout",
                    backoff,
                    attempt + 1,
                    attempts,
                )
                await asyncio.sleep(backoff)

        raise TransientProviderError(str(last_error) or "price source timeout", provider="price")

    def _build_snapshot(
        self,
        asset_symbol: str,
        output_symbol: str,
        amount: Decimal | None,
        obs: PriceObservation,
        request_id: UUID | None,
    ) -> MarketPriceSnapshot:
        now = self._clock()
        half_spread = self._config.default_half_spread
        bid = obs.bid if obs.bid is not None else quantize_amount(obs.price * (1 - half_spread))
        ask = obs.ask if obs.ask is not None else quantize_amount(obs.price * (1 + half_spread))

        notional = (amount or Decimal(0)) * obs.price
        slippage = estimate_slippage_percent(notional)
        reason = self._unsuitability_reason(amount, obs, slippage)

        return MarketPriceSnapshot(
            request_id=request_id,
            asset_symbol=asset_symbol,
            output_symbol=output_symbol,
            price=obs.price,
            bid=bid,
            ask=ask,
            spread=quantize_amount(ask - bid),
            volume_24h=obs.volume_24h,
            change_24h_percent=obs.change_24h_percent,
            high_24h=obs.high_24h,
            low_24h=obs.low_24h,
            available_liquidity=obs.available_liquidity,
            price_source=obs.source,
            exchange=obs.exchange,
            confidence_level=obs.confidence,
            quoted_amount=amount,
            is_suitable_for_liquidation=reason is None,
            unsuitability_reason=reason,
            estimated_slippage=slippage,
            min_transaction_size=obs.min_transaction_size,
            max_transaction_size=obs.max_transaction_size,
            validity_minutes=self._config.validity_minutes,
            created_at=now,
            expires_at=now + timedelta(minutes=self._config.validity_minutes),
        )

    def _unsuitability_reason(
        self,
        amount: Decimal | None,
        obs: PriceObservation,
        slippage: Decimal,
    ) -> str | None:
        if obs.confidence < self._config.min_confidence:
            return f"Price confidence {obs.confidence} below minimum {self._config.min_confidence}"
        if slippage > self._config.max_slippage_percent:
            return f"Estimated slippage {slippage}% exceeds ceiling {self._config.max_slippage_percent}%"
        if amount is None:
            return None
        if obs.min_transaction_size is not None and amount < obs.min_transaction_size:
            return f"Amount {amount} below minimum transaction size {obs.min_transaction_size}"
        if obs.max_transaction_size is not None and amount > obs.max_transaction_size:
            return f"Amount {amount} above maximum transaction size {obs.max_transaction_size}"
        if obs.available_liquidity is not None and amount > obs.available_liquidity:
            return f"Amount {amount} exceeds market liquidity {obs.available_liquidity}"
        return None

    async def _publish(self, event_type: EventType, snapshot: MarketPriceSnapshot) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(
            Event(
                type=event_type,
                data={
                    "snapshot_id": str(snapshot.id),
                    "asset": snapshot.asset_symbol,
                    "output": snapshot.output_symbol,
                    "price": str(snapshot.price),
                },
                request_id=snapshot.request_id,
            )
        )
