"""
Transaction Executor.

Runs bounded execution attempts against a matched provider. Each attempt
consumes its own price snapshot, computes fees, persists a
LiquidationTransaction and calls the settlement rail. Liquidity was already
reserved by the matcher; the executor commits the reservation on success
and releases it when the attempt budget is exhausted.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from liquidation_engine.audit import AuditLedger
from liquidation_engine.domain import (
    Clock,
    Failure,
    LiquidationRequest,
    LiquidationTransaction,
    LiquidityProvider,
    MarketPriceSnapshot,
    Outcome,
    ReasonCode,
    Stage,
    TransactionStatus,
    utc_now,
)
from liquidation_engine.errors import SettlementError
from liquidation_engine.execution.fees import FeeBreakdown, calculate_fees, gross_output
from liquidation_engine.interfaces import SettlementRail
from liquidation_engine.logging import get_logger
from liquidation_engine.matching import LiquidityMatcher
from liquidation_engine.pricing import QuoteService
from liquidation_engine.runtime.event_bus import Event, EventBus, EventType
from liquidation_engine.storage import ProviderRepository, TransactionRepository

logger = get_logger(__name__)


class ExecutorConfig(BaseModel):
    """Execution policy."""

    # Total attempts, including the first
    max_retries: int = Field(default=3, ge=1)
    timeout_s: float = Field(default=60.0, gt=0)
    retry_base_delay_s: float = Field(default=1.0, ge=0)
    platform_fee_percentage: Decimal = Field(default=Decimal("0.25"), ge=0, le=100)
    reversal_window_minutes: int = Field(default=30, ge=0)


class ExecutionResult(BaseModel):
    """Outcome of all attempts for one request."""

    success: bool
    transaction: LiquidationTransaction | None = None
    attempts: list[LiquidationTransaction] = Field(default_factory=list)
    snapshot: MarketPriceSnapshot | None = None
    failure: Failure | None = None

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)


class TransactionExecutor:
    """
    Executes and reverses liquidation transactions.

    Usage:
        result = await executor.execute(request, provider_id, snapshot, reservation_id)
        if result.success:
            print(result.transaction.net_amount)
    """

    def __init__(
        self,
        rail: SettlementRail,
        quotes: QuoteService,
        matcher: LiquidityMatcher,
        providers: ProviderRepository,
        transactions: TransactionRepository,
        config: ExecutorConfig | None = None,
        clock: Clock = utc_now,
        event_bus: EventBus | None = None,
        audit: AuditLedger | None = None,
    ):
        self._rail = rail
        self._quotes = quotes
        self._matcher = matcher
        self._providers = providers
        self._transactions = transactions
        self._config = config or ExecutorConfig()
        self._clock = clock
        self._event_bus = event_bus
        self._audit = audit
        self._reversal_lock = asyncio.Lock()

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(
        self,
        request: LiquidationRequest,
        provider_id: UUID,
        snapshot: MarketPriceSnapshot | None,
        reservation_id: UUID | None,
    ) -> ExecutionResult:
        """
        Run up to `max_retries` attempts for a request.

        The first attempt uses `snapshot` while it is usable; later attempts
        re-quote because the previous snapshot has been consumed.
        """
        provider = await self._providers.require(provider_id)
        attempts: list[LiquidationTransaction] = []
        current = snapshot
        last_error = "no attempt made"

        for attempt in range(1, self._config.max_retries + 1):
            txn_id = uuid4()
            acquired = await self._acquire_snapshot(request, current, txn_id)
            if not acquired.ok:
                last_error = acquired.failure.message
                if acquired.failure.reason_code == ReasonCode.UNSUITABLE_PRICE:
                    break
                logger.warning(
                    "No usable price for %s attempt %d/%d: %s",
                    request.id,
                    attempt,
                    self._config.max_retries,
                    last_error,
                )
                await self._backoff(attempt)
                continue

            current = acquired.value
            txn, retryable = await self._attempt(request, provider, current, txn_id, attempt)
            attempts.append(txn)

            if txn.status == TransactionStatus.COMPLETED:
                await self._on_success(request, provider, txn, reservation_id)
                return ExecutionResult(success=True, transaction=txn, attempts=attempts, snapshot=current)

            last_error = txn.error_message or "settlement failed"
            if not retryable:
                break
            await self._backoff(attempt)

        failure = Failure(
            reason_code=ReasonCode.EXECUTION_FAILED,
            stage=Stage.EXECUTION,
            message=f"Execution failed after {len(attempts)} attempt(s): {last_error}",
        )
        await self._on_exhausted(request, provider.id, reservation_id, failure)
        return ExecutionResult(
            success=False,
            transaction=attempts[-1] if attempts else None,
            attempts=attempts,
            snapshot=current,
            failure=failure,
        )

    async def preview_fees(
        self,
        asset_amount: Decimal,
        snapshot: MarketPriceSnapshot,
        provider_fee_percentage: Decimal,
    ) -> FeeBreakdown:
        """Fee breakdown for an amount at a snapshot's rate, without executing."""
        gross = gross_output(asset_amount, snapshot.execution_rate)
        network_fee = await self._rail.estimate_network_fee(snapshot.output_symbol, gross)
        return calculate_fees(
            gross,
            provider_fee_percentage,
            self._config.platform_fee_percentage,
            network_fee,
            snapshot.output_symbol,
        )

    async def _acquire_snapshot(
        self,
        request: LiquidationRequest,
        previous: MarketPriceSnapshot | None,
        transaction_id: UUID,
    ) -> Outcome[MarketPriceSnapshot]:
        """Get a suitable snapshot and consume it for `transaction_id`."""
        candidate_id = previous.id if previous is not None else None
        consumed: Outcome[MarketPriceSnapshot] | None = None
        for _ in range(2):
            quote = await self._quotes.refresh_if_stale(
                candidate_id,
                request.asset_symbol,
                request.output_symbol,
                request.asset_amount,
                request_id=request.id,
            )
            if not quote.ok:
                return quote
            if not quote.value.is_suitable_for_liquidation:
                return Outcome.fail(
                    ReasonCode.UNSUITABLE_PRICE,
                    Stage.EXECUTION,
                    quote.value.unsuitability_reason or "Price unsuitable for liquidation",
                )
            consumed = await self._quotes.consume_quote(quote.value.id, transaction_id)
            if consumed.ok:
                return consumed
            # Lost the snapshot between read and consume; force a fresh quote
            candidate_id = None
        return consumed

    async def _attempt(
        self,
        request: LiquidationRequest,
        provider: LiquidityProvider,
        snapshot: MarketPriceSnapshot,
        txn_id: UUID,
        attempt: int,
    ) -> tuple[LiquidationTransaction, bool]:
        """
        One settlement attempt.

        Returns:
            (transaction in Completed or Failed, whether a retry may succeed)
        """
        now = self._clock()
        gross = gross_output(request.asset_amount, snapshot.execution_rate)
        txn = LiquidationTransaction(
            id=txn_id,
            request_id=request.id,
            provider_id=provider.id,
            snapshot_id=snapshot.id,
            attempt_number=attempt,
            status=TransactionStatus.PROCESSING,
            asset_symbol=request.asset_symbol,
            asset_amount=request.asset_amount,
            output_symbol=request.output_symbol,
            exchange_rate=snapshot.execution_rate,
            market_price=snapshot.price,
            gross_amount=gross,
            max_retries=self._config.max_retries,
            created_at=now,
            started_at=now,
        )

        try:
            network_fee = await asyncio.wait_for(
                self._rail.estimate_network_fee(request.output_symbol, gross),
                timeout=self._config.timeout_s,
            )
        except SettlementError as e:
            return await self._fail_attempt(txn, f"Network fee estimate failed: {e}", e.retryable), e.retryable
        except TimeoutError:
            return await self._fail_attempt(txn, "Network fee estimate timed out", True), True

        fees = calculate_fees(
            gross,
            provider.fee_percentage,
            self._config.platform_fee_percentage,
            network_fee,
            request.output_symbol,
        )
        txn.provider_fee = fees.provider_fee
        txn.platform_fee = fees.platform_fee
        txn.network_fee = fees.network_fee
        txn.total_fees = fees.total_fees
        txn.net_amount = fees.net_amount

        if not fees.is_viable:
            message = f"Fees {fees.total_fees} exceed gross output {gross} {request.output_symbol}"
            return await self._fail_attempt(txn, message, False), False

        await self._transactions.add(txn)
        if self._audit:
            self._audit.record_transaction(txn)

        try:
            receipt = await asyncio.wait_for(
                self._rail.transfer(
                    source=f"provider:{provider.id}",
                    destination=request.destination_address,
                    amount=fees.net_amount,
                    currency=request.output_symbol,
                ),
                timeout=self._config.timeout_s,
            )
        except SettlementError as e:
            return await self._fail_attempt(txn, str(e), e.retryable), e.retryable
        except TimeoutError:
            message = f"Settlement transfer timed out after {self._config.timeout_s}s"
            return await self._fail_attempt(txn, message, True), True

        done = self._clock()
        txn.status = TransactionStatus.COMPLETED
        txn.settlement_reference = receipt.reference
        txn.confirmations = receipt.confirmations
        txn.completed_at = done
        txn.is_reversible = self._config.reversal_window_minutes > 0
        txn.reversible_until = done + timedelta(minutes=self._config.reversal_window_minutes)
        txn = await self._transactions.save(txn)
        if self._audit:
            self._audit.record_transaction(txn)

        logger.info(
            "Transaction %s completed: %s %s -> %s %s net (ref %s)",
            txn.id,
            txn.asset_amount,
            txn.asset_symbol,
            txn.net_amount,
            txn.output_symbol,
            txn.settlement_reference,
        )
        return txn, False

    async def _fail_attempt(
        self,
        txn: LiquidationTransaction,
        message: str,
        retryable: bool,
    ) -> LiquidationTransaction:
        now = self._clock()
        has_budget = txn.attempt_number < self._config.max_retries
        txn.status = TransactionStatus.FAILED
        txn.error_message = message
        txn.failure_reason = "retryable" if retryable else "non_retryable"
        txn.retry_attempts = txn.attempt_number
        txn.completed_at = now
        if retryable and has_budget:
            txn.next_retry_at = now + timedelta(seconds=self._retry_delay(txn.attempt_number))
        txn = await self._transactions.save(txn)
        if self._audit:
            self._audit.record_transaction(txn)

        logger.warning(
            "Transaction %s attempt %d/%d failed (%s): %s",
            txn.id,
            txn.attempt_number,
            self._config.max_retries,
            txn.failure_reason,
            message,
        )
        await self._publish(
            EventType.TRANSACTION_FAILED,
            txn.request_id,
            {"transaction_id": str(txn.id), "attempt": txn.attempt_number, "error": message},
        )
        return txn

    async def _on_success(
        self,
        request: LiquidationRequest,
        provider: LiquidityProvider,
        txn: LiquidationTransaction,
        reservation_id: UUID | None,
    ) -> None:
        now = self._clock()

        def _record(p: LiquidityProvider) -> None:
            p.successful_liquidations += 1
            p.total_liquidity_provided += txn.asset_amount
            p.total_fees_earned += txn.provider_fee
            p.last_active_at = now
            p.updated_at = now

        await self._providers.update(provider.id, _record)
        if reservation_id is not None:
            await self._matcher.commit(reservation_id)
        await self._publish(
            EventType.TRANSACTION_COMPLETED,
            request.id,
            {
                "transaction_id": str(txn.id),
                "net_amount": str(txn.net_amount),
                "currency": txn.output_symbol,
            },
        )

    async def _on_exhausted(
        self,
        request: LiquidationRequest,
        provider_id: UUID,
        reservation_id: UUID | None,
        failure: Failure,
    ) -> None:
        now = self._clock()

        def _record(p: LiquidityProvider) -> None:
            p.failed_liquidations += 1
            p.updated_at = now

        await self._providers.update(provider_id, _record)
        if reservation_id is not None:
            await self._matcher.release(reservation_id)
        logger.error("Execution for %s exhausted: %s", request.id, failure.message)

    def _retry_delay(self, attempt: int) -> float:
        return self._config.retry_base_delay_s * (2 ** (attempt - 1))

    async def _backoff(self, attempt: int) -> None:
        if attempt >= self._config.max_retries:
            return
        delay = self._retry_delay(attempt)
        if delay > 0:
            logger.warning(
                "Execution backing off %.1fs (attempt %d/%d)",
                delay,
                attempt,
                self._config.max_retries,
            )
            await asyncio.sleep(delay)

    # =========================================================================
    # Reversal
    # =========================================================================

    async def reverse(
        self,
        transaction_id: UUID,
        reason: str,
        operator_id: str,
    ) -> Outcome[LiquidationTransaction]:
        """
        Reverse a completed transaction inside its reversal window.

        Re-credits the provider's liquidity and backs out its counters.
        """
        async with self._reversal_lock:
            txn = await self._transactions.require(transaction_id)
            now = self._clock()
            if not txn.can_reverse(now):
                return Outcome.fail(
                    ReasonCode.REVERSAL_NOT_ALLOWED,
                    Stage.REVERSAL,
                    f"Transaction {transaction_id} is not reversible "
                    f"(status {txn.status.value}, reversed={txn.is_reversed}, "
                    f"until {txn.reversible_until})",
                )

            try:
                accepted = await asyncio.wait_for(
                    self._rail.reverse(txn.settlement_reference or ""),
                    timeout=self._config.timeout_s,
                )
            except SettlementError as e:
                logger.error("Reversal of %s failed: %s", transaction_id, e)
                return Outcome.fail(ReasonCode.REVERSAL_FAILED, Stage.REVERSAL, str(e))
            except TimeoutError:
                logger.error("Reversal of %s timed out", transaction_id)
                return Outcome.fail(ReasonCode.REVERSAL_FAILED, Stage.REVERSAL, "Reversal timed out")

            if not accepted:
                return Outcome.fail(
                    ReasonCode.REVERSAL_FAILED,
                    Stage.REVERSAL,
                    f"Settlement rail refused reversal of {txn.settlement_reference}",
                )

            def _mark(t: LiquidationTransaction) -> None:
                t.is_reversed = True
                t.is_reversible = False
                t.reversed_at = now
                t.reversal_reason = reason
                t.reversal_reference = f"REV-{t.settlement_reference}"
                t.reversed_by = operator_id

            txn, _ = await self._transactions.update(transaction_id, _mark)

        def _back_out(p: LiquidityProvider) -> None:
            p.available_liquidity += txn.asset_amount
            p.successful_liquidations = max(0, p.successful_liquidations - 1)
            p.total_liquidity_provided -= txn.asset_amount
            p.total_fees_earned -= txn.provider_fee
            p.updated_at = now

        await self._providers.update(txn.provider_id, _back_out)
        if self._audit:
            self._audit.record_reversal(txn)

        logger.info("Transaction %s reversed by %s: %s", transaction_id, operator_id, reason)
        await self._publish(
            EventType.TRANSACTION_REVERSED,
            txn.request_id,
            {"transaction_id": str(txn.id), "operator_id": operator_id, "reason": reason},
        )
        return Outcome.success(txn)

    async def _publish(self, event_type: EventType, request_id: UUID, data: dict[str, Any]) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(Event(type=event_type, data=data, request_id=request_id))
