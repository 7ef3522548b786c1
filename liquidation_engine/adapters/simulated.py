"""
Simulated collaborators.

Deterministic stand-ins for the price source, compliance provider,
settlement rail and ledger. The demo service runs on them; tests script
them by queueing responses or errors.
"""

import random
from collections import defaultdict, deque
from datetime import datetime
from decimal import Decimal
from typing import Any

from liquidation_engine.domain import (
    ComplianceCheckResult,
    ComplianceCheckType,
    UsageSnapshot,
    quantize_amount,
)
from liquidation_engine.errors import PriceSourceError, SettlementError, TransientProviderError
from liquidation_engine.interfaces import (
    ComplianceProvider,
    ComplianceSubject,
    Holding,
    LedgerService,
    PriceObservation,
    PriceSource,
    ProviderCheckResponse,
    SettlementRail,
    TransferReceipt,
)

DEFAULT_PRICES: dict[tuple[str, str], Decimal] = {
    ("BTC", "USD"): Decimal("65000"),
    ("BTC", "EUR"): Decimal("60000"),
    ("BTC", "USDT"): Decimal("65000"),
    ("BTC", "USDC"): Decimal("65000"),
    ("ETH", "USD"): Decimal("3200"),
    ("ETH", "EUR"): Decimal("2950"),
    ("ETH", "USDT"): Decimal("3200"),
    ("ETH", "USDC"): Decimal("3200"),
    ("ETH", "BTC"): Decimal("0.049"),
    ("SOL", "USD"): Decimal("150"),
}


class SimulatedPriceSource(PriceSource):
    """
    Fixed prices with optional seeded jitter.

    Queued errors are raised (one per call) before a price is returned.
    """

    def __init__(
        self,
        prices: dict[tuple[str, str], Decimal] | None = None,
        jitter_percent: Decimal = Decimal("0"),
        seed: int = 7,
        confidence: Decimal = Decimal("95"),
    ) -> None:
        self.prices = dict(DEFAULT_PRICES if prices is None else prices)
        self.jitter_percent = jitter_percent
        self.confidence = confidence
        self.calls = 0
        self._rng = random.Random(seed)
        self._errors: deque[Exception] = deque()

    def set_price(self, asset_symbol: str, output_symbol: str, price: Decimal) -> None:
        self.prices[(asset_symbol.upper(), output_symbol.upper())] = price

    def fail_next(self, count: int = 1, error: Exception | None = None) -> None:
        for _ in range(count):
            self._errors.append(error or PriceSourceError("simulated price outage", provider="simulated"))

    async def get_price(self, asset_symbol: str, output_symbol: str) -> PriceObservation:
        self.calls += 1
        if self._errors:
            raise self._errors.popleft()
        key = (asset_symbol.upper(), output_symbol.upper())
        if key not in self.prices:
            raise PriceSourceError(f"No simulated price for {key[0]}/{key[1]}", provider="simulated")

        price = self.prices[key]
        if self.jitter_percent:
            shift = Decimal(str(self._rng.uniform(-1, 1))) * self.jitter_percent / Decimal(100)
            price = quantize_amount(price * (Decimal(1) + shift))
        return PriceObservation(
            price=price,
            volume_24h=Decimal("1000000000"),
            change_24h_percent=Decimal("0"),
            high_24h=price,
            low_24h=price,
            confidence=self.confidence,
            source="simulated",
            exchange="simulated",
        )


class SimulatedComplianceProvider(ComplianceProvider):
    """
    Passes every check with a low risk score unless scripted otherwise.

    Scripted responses and errors are consumed per check type in FIFO order.
    """

    def __init__(self, default_risk_score: int = 10) -> None:
        self.default_risk_score = default_risk_score
        self.calls: list[tuple[ComplianceCheckType, ComplianceSubject]] = []
        self._script: dict[ComplianceCheckType, deque[ProviderCheckResponse | Exception]] = defaultdict(deque)

    def script(
        self,
        check_type: ComplianceCheckType,
        *outcomes: ProviderCheckResponse | Exception,
    ) -> None:
        self._script[check_type].extend(outcomes)

    def respond(
        self,
        check_type: ComplianceCheckType,
        result: ComplianceCheckResult,
        risk_score: int | None = None,
        failure_reason: str | None = None,
    ) -> None:
        self.script(
            check_type,
            ProviderCheckResponse(
                result=result,
                risk_score=risk_score,
                provider="simulated",
                failure_reason=failure_reason,
            ),
        )

    def fail_transiently(self, check_type: ComplianceCheckType, count: int = 1) -> None:
        self.script(
            check_type,
            *[TransientProviderError("simulated provider outage", provider="simulated") for _ in range(count)],
        )

    def call_count(self, check_type: ComplianceCheckType | None = None) -> int:
        return sum(1 for t, _ in self.calls if check_type is None or t == check_type)

    async def run_check(
        self,
        check_type: ComplianceCheckType,
        subject: ComplianceSubject,
    ) -> ProviderCheckResponse:
        self.calls.append((check_type, subject))
        queue = self._script.get(check_type)
        if queue:
            outcome = queue.popleft()
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return ProviderCheckResponse(
            result=ComplianceCheckResult.PASSED,
            risk_score=self.default_risk_score,
            provider="simulated",
            reference=f"SIM-{check_type.value}-{len(self.calls)}",
        )


class SimulatedSettlementRail(SettlementRail):
    """
    Accepts every transfer unless failures are queued.

    Network fees are a flat amount per currency.
    """

    def __init__(self, network_fees: dict[str, Decimal] | None = None) -> None:
        self.network_fees = network_fees or {}
        self.transfers: list[dict[str, Any]] = []
        self.reversals: list[str] = []
        self.accept_reversals = True
        self._failures: deque[Exception] = deque()
        self._counter = 0

    def fail_next(self, count: int = 1, retryable: bool = True) -> None:
        for _ in range(count):
            self._failures.append(SettlementError("simulated settlement failure", retryable=retryable))

    async def transfer(
        self,
        source: str,
        destination: str,
        amount: Decimal,
        currency: str,
    ) -> TransferReceipt:
        if self._failures:
            raise self._failures.popleft()
        self._counter += 1
        reference = f"SIM-TX-{self._counter:06d}"
        self.transfers.append(
            {
                "reference": reference,
                "source": source,
                "destination": destination,
                "amount": amount,
                "currency": currency,
            }
        )
        return TransferReceipt(reference=reference, confirmations=1)

    async def reverse(self, reference: str) -> bool:
        if not self.accept_reversals:
            return False
        self.reversals.append(reference)
        return True

    async def estimate_network_fee(self, currency: str, amount: Decimal) -> Decimal:
        return self.network_fees.get(currency.upper(), Decimal("0"))


class InMemoryLedgerService(LedgerService):
    """Holdings and liquidation history kept in memory."""

    def __init__(self) -> None:
        self._holdings: dict[tuple[str, str], Holding] = {}
        self._history: dict[tuple[str, str], list[tuple[datetime, Decimal]]] = defaultdict(list)

    def set_holding(
        self,
        user_id: str,
        asset_symbol: str,
        balance: Decimal,
        acquired_at: datetime | None = None,
    ) -> None:
        self._holdings[(user_id, asset_symbol.upper())] = Holding(balance=balance, acquired_at=acquired_at)

    async def get_holding(self, user_id: str, asset_symbol: str) -> Holding:
        return self._holdings.get((user_id, asset_symbol.upper()), Holding(balance=Decimal("0")))

    async def get_usage(self, user_id: str, asset_symbol: str, now: datetime) -> UsageSnapshot:
        history = self._history.get((user_id, asset_symbol.upper()), [])
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        month_start = day_start.replace(day=1)
        return UsageSnapshot(
            daily_total=sum((a for at, a in history if at >= day_start), Decimal("0")),
            monthly_total=sum((a for at, a in history if at >= month_start), Decimal("0")),
            last_liquidation_at=max((at for at, _ in history), default=None),
        )

    async def record_liquidation(
        self,
        user_id: str,
        asset_symbol: str,
        amount: Decimal,
        at: datetime,
    ) -> None:
        key = (user_id, asset_symbol.upper())
        self._history[key].append((at, amount))
        holding = self._holdings.get(key)
        if holding is not None:
            self._holdings[key] = holding.model_copy(update={"balance": holding.balance - amount})
