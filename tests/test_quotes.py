"""
Tests for the quote service and slippage tiers.
"""

import asyncio
from decimal import Decimal

import pytest

from liquidation_engine.adapters import SimulatedPriceSource
from liquidation_engine.domain import ReasonCode
from liquidation_engine.interfaces import PriceObservation, PriceSource
from liquidation_engine.pricing import QuoteConfig, QuoteService, estimate_slippage_percent
from liquidation_engine.storage import SnapshotRepository
from tests.fakes import FakeClock


class SlowPriceSource(PriceSource):
    """Never answers within the configured timeout."""

    def __init__(self) -> None:
        self.calls = 0

    async def get_price(self, asset_symbol: str, output_symbol: str) -> PriceObservation:
        self.calls += 1
        await asyncio.sleep(1)
        return PriceObservation(price=Decimal("1"))


class FixedObservationSource(PriceSource):
    def __init__(self, observation: PriceObservation) -> None:
        self.observation = observation

    async def get_price(self, asset_symbol: str, output_symbol: str) -> PriceObservation:
        return self.observation


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def source() -> SimulatedPriceSource:
    return SimulatedPriceSource()


@pytest.fixture
def quotes(source: SimulatedPriceSource, clock: FakeClock) -> QuoteService:
    return QuoteService(
        source,
        SnapshotRepository(),
        QuoteConfig(retry_base_delay_s=0),
        clock,
    )


class TestSlippage:
    """Tests for size-based slippage tiers."""

    @pytest.mark.parametrize(
        ("notional", "expected"),
        [
            ("0", "0.1"),
            ("1000", "0.1"),
            ("1000.01", "0.3"),
            ("10000", "0.3"),
            ("50000", "0.8"),
            ("65000", "1.5"),
            ("100000", "1.5"),
            ("500000", "3.0"),
            ("1000000", "5.0"),
            ("1000000.01", "8.0"),
        ],
    )
    def test_tiers(self, notional: str, expected: str) -> None:
        assert estimate_slippage_percent(Decimal(notional)) == Decimal(expected)


class TestGetQuote:
    """Tests for quote creation."""

    @pytest.mark.asyncio
    async def test_quote_fields(self, quotes: QuoteService, clock: FakeClock) -> None:
        outcome = await quotes.get_quote("btc", "usd", Decimal("1"))
        assert outcome.ok
        snapshot = outcome.value
        assert snapshot.asset_symbol == "BTC"
        assert snapshot.output_symbol == "USD"
        assert snapshot.price == Decimal("65000")
        assert snapshot.estimated_slippage == Decimal("1.5")
        assert snapshot.execution_rate == Decimal("64025")
        assert snapshot.is_suitable_for_liquidation
        assert snapshot.confidence_level == Decimal("95")
        assert snapshot.created_at == clock()
        assert (snapshot.expires_at - snapshot.created_at).total_seconds() == 300

    @pytest.mark.asyncio
    async def test_default_spread_when_source_omits_bid_ask(self, quotes: QuoteService) -> None:
        snapshot = (await quotes.get_quote("BTC", "USD", Decimal("1"))).value
        assert snapshot.bid == Decimal("64935")
        assert snapshot.ask == Decimal("65065")
        assert snapshot.spread == Decimal("130")

    @pytest.mark.asyncio
    async def test_high_slippage_unsuitable(self, quotes: QuoteService) -> None:
        """20 BTC at 65000 is over 1M notional: 8% slippage exceeds the 5% ceiling."""
        snapshot = (await quotes.get_quote("BTC", "USD", Decimal("20"))).value
        assert not snapshot.is_suitable_for_liquidation
        assert "slippage" in snapshot.unsuitability_reason

    @pytest.mark.asyncio
    async def test_low_confidence_unsuitable(self, clock: FakeClock) -> None:
        quotes = QuoteService(SimulatedPriceSource(confidence=Decimal("50")), SnapshotRepository(), clock=clock)
        snapshot = (await quotes.get_quote("BTC", "USD", Decimal("1"))).value
        assert not snapshot.is_suitable_for_liquidation
        assert "confidence" in snapshot.unsuitability_reason

    @pytest.mark.asyncio
    async def test_transaction_size_bounds(self, clock: FakeClock) -> None:
        obs = PriceObservation(
            price=Decimal("100"),
            min_transaction_size=Decimal("1"),
            max_transaction_size=Decimal("5"),
        )
        quotes = QuoteService(FixedObservationSource(obs), SnapshotRepository(), clock=clock)
        assert not (await quotes.get_quote("X", "USD", Decimal("0.5"))).value.is_suitable_for_liquidation
        assert not (await quotes.get_quote("X", "USD", Decimal("6"))).value.is_suitable_for_liquidation
        assert (await quotes.get_quote("X", "USD", Decimal("2"))).value.is_suitable_for_liquidation

    @pytest.mark.asyncio
    async def test_market_liquidity_bound(self, clock: FakeClock) -> None:
        obs = PriceObservation(price=Decimal("100"), available_liquidity=Decimal("3"))
        quotes = QuoteService(FixedObservationSource(obs), SnapshotRepository(), clock=clock)
        snapshot = (await quotes.get_quote("X", "USD", Decimal("4"))).value
        assert "liquidity" in snapshot.unsuitability_reason

    @pytest.mark.asyncio
    async def test_transient_errors_retried(self, quotes: QuoteService, source: SimulatedPriceSource) -> None:
        source.fail_next(2)
        outcome = await quotes.get_quote("BTC", "USD", Decimal("1"))
        assert outcome.ok
        assert source.calls == 3

    @pytest.mark.asyncio
    async def test_price_unavailable_after_retries(self, quotes: QuoteService, source: SimulatedPriceSource) -> None:
        """max_retries=3 means four attempts in total."""
        source.fail_next(10)
        outcome = await quotes.get_quote("BTC", "USD", Decimal("1"))
        assert not outcome.ok
        assert outcome.failure.reason_code == ReasonCode.PRICE_UNAVAILABLE
        assert source.calls == 4

    @pytest.mark.asyncio
    async def test_unknown_pair_unavailable(self, quotes: QuoteService) -> None:
        outcome = await quotes.get_quote("DOGE", "USD", Decimal("1"))
        assert outcome.failure.reason_code == ReasonCode.PRICE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_timeout_counts_as_transient(self, clock: FakeClock) -> None:
        source = SlowPriceSource()
        quotes = QuoteService(
            source,
            SnapshotRepository(),
            QuoteConfig(max_retries=1, timeout_s=0.01, retry_base_delay_s=0),
            clock,
        )
        outcome = await quotes.get_quote("BTC", "USD", Decimal("1"))
        assert outcome.failure.reason_code == ReasonCode.PRICE_UNAVAILABLE
        assert source.calls == 2


class TestConsumeQuote:
    """Tests for single-use snapshot consumption."""

    @pytest.mark.asyncio
    async def test_consume_once(self, quotes: QuoteService) -> None:
        snapshot = (await quotes.get_quote("BTC", "USD", Decimal("1"))).value
        first = await quotes.consume_quote(snapshot.id)
        assert first.ok
        assert first.value.is_used_for_liquidation

        second = await quotes.consume_quote(snapshot.id)
        assert second.failure.reason_code == ReasonCode.PRICE_EXPIRED_OR_CONSUMED

    @pytest.mark.asyncio
    async def test_expired_cannot_be_consumed(self, quotes: QuoteService, clock: FakeClock) -> None:
        snapshot = (await quotes.get_quote("BTC", "USD", Decimal("1"))).value
        clock.advance(minutes=5, seconds=1)
        outcome = await quotes.consume_quote(snapshot.id)
        assert outcome.failure.reason_code == ReasonCode.PRICE_EXPIRED_OR_CONSUMED

    @pytest.mark.asyncio
    async def test_concurrent_consume_single_winner(self, quotes: QuoteService) -> None:
        snapshot = (await quotes.get_quote("BTC", "USD", Decimal("1"))).value
        outcomes = await asyncio.gather(*[quotes.consume_quote(snapshot.id) for _ in range(10)])
        assert sum(o.ok for o in outcomes) == 1


class TestRefreshAndCache:
    """Tests for stale refresh, cached prices and sweeps."""

    @pytest.mark.asyncio
    async def test_refresh_returns_usable_snapshot(self, quotes: QuoteService, source: SimulatedPriceSource) -> None:
        snapshot = (await quotes.get_quote("BTC", "USD", Decimal("1"))).value
        refreshed = await quotes.refresh_if_stale(snapshot.id, "BTC", "USD", Decimal("1"))
        assert refreshed.value.id == snapshot.id
        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_refresh_requotes_when_stale(self, quotes: QuoteService, clock: FakeClock) -> None:
        snapshot = (await quotes.get_quote("BTC", "USD", Decimal("1"))).value
        clock.advance(minutes=6)
        refreshed = await quotes.refresh_if_stale(snapshot.id, "BTC", "USD", Decimal("1"))
        assert refreshed.value.id != snapshot.id

    @pytest.mark.asyncio
    async def test_current_price_cached(self, quotes: QuoteService, source: SimulatedPriceSource) -> None:
        first = await quotes.get_current_price("BTC", "USD")
        second = await quotes.get_current_price("btc", "usd")
        assert first.value.id == second.value.id
        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_sweep_evicts_expired(self, quotes: QuoteService, clock: FakeClock) -> None:
        await quotes.get_current_price("BTC", "USD")
        assert await quotes.sweep_expired() == 0
        clock.advance(minutes=10)
        assert await quotes.sweep_expired() == 1
        assert await quotes.sweep_expired() == 0

    @pytest.mark.asyncio
    async def test_history_and_statistics(
        self, quotes: QuoteService, source: SimulatedPriceSource, clock: FakeClock
    ) -> None:
        for price in ("100", "110", "120"):
            clock.advance(seconds=10)
            source.set_price("SOL", "USD", Decimal(price))
            await quotes.get_quote("SOL", "USD", Decimal("1"))

        history = await quotes.price_history("SOL", "USD", limit=2)
        assert [s.price for s in history] == [Decimal("110"), Decimal("120")]

        stats = await quotes.price_statistics("SOL", "USD")
        assert stats["count"] == 3
        assert stats["min_price"] == 100.0
        assert stats["max_price"] == 120.0
        assert stats["latest_price"] == 120.0
        assert stats["mean_price"] == pytest.approx(110.0)

    @pytest.mark.asyncio
    async def test_statistics_empty(self, quotes: QuoteService) -> None:
        assert await quotes.price_statistics("BTC", "USD") == {"count": 0}
