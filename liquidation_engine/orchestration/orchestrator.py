"""
Liquidation Orchestrator.

Drives each request through the state machine:

    Pending -> KycVerificationInProgress -> AssetVerificationInProgress
    -> ComplianceCheckInProgress -> AwaitingLiquidityProvider -> Executing
    -> TransferInProgress -> Completed

Each stage handler either transitions the request or leaves it where it
is (a hold: compliance review, multi-signature approval, no liquidity).
Workflow runs of one request are serialized by a per-request lock;
cancellation and expiry use the same lock.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

import pandas as pd
from pydantic import BaseModel, Field

from liquidation_engine.audit import AuditLedger
from liquidation_engine.compliance import ComplianceOrchestrator
from liquidation_engine.domain import (
    ComplianceCheck,
    ComplianceCheckResult,
    ComplianceCheckType,
    ComplianceOutcome,
    CreateLiquidationCommand,
    Failure,
    LiquidationRequest,
    LiquidationRequestStatus,
    LiquidationTransaction,
    Outcome,
    ReasonCode,
    ReviewDecision,
    Stage,
    TransactionStatus,
    utc_now,
)
from liquidation_engine.domain.common import Clock
from liquidation_engine.eligibility import EligibilityRegistry, RollingLimitTracker
from liquidation_engine.errors import LiquidationError, NotFoundError, RequestValidationError
from liquidation_engine.execution import FeeBreakdown, TransactionExecutor, gross_output
from liquidation_engine.interfaces import LedgerService
from liquidation_engine.logging import clear_request_id, get_logger, mask_address, set_request_id
from liquidation_engine.matching import LiquidityMatcher
from liquidation_engine.orchestration.state_machine import apply_transition, can_transition
from liquidation_engine.pricing import QuoteService
from liquidation_engine.runtime.event_bus import Event, EventBus, EventType
from liquidation_engine.storage import Repositories

logger = get_logger(__name__)

S = LiquidationRequestStatus

StageHandler = Callable[[LiquidationRequest], Awaitable[LiquidationRequest]]


class OrchestratorConfig(BaseModel):
    """Request lifecycle policy."""

    request_expiry_hours: int = Field(default=24, ge=1)
    liquidity_poll_seconds: int = Field(default=60, ge=1)


class LiquidationStatusView(BaseModel):
    """Everything a caller needs to know about one request."""

    request: LiquidationRequest
    compliance_checks: list[ComplianceCheck] = Field(default_factory=list)
    transactions: list[LiquidationTransaction] = Field(default_factory=list)
    failure: dict[str, Any] | None = None
    next_action: str


class LiquidationEstimate(BaseModel):
    """Indicative economics of a liquidation; nothing is reserved."""

    asset_symbol: str
    output_symbol: str
    asset_amount: Decimal
    market_price: Decimal
    execution_rate: Decimal
    estimated_slippage: Decimal
    fees: FeeBreakdown
    provider_id: UUID | None = None
    provider_name: str | None = None
    is_suitable: bool
    unsuitability_reason: str | None = None
    price_valid_until: datetime


class RequestFilter(BaseModel):
    """Query for list_requests."""

    user_id: str | None = None
    status: LiquidationRequestStatus | None = None
    asset_symbol: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    newest_first: bool = True
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=50, ge=1, le=500)

    def matches(self, request: LiquidationRequest) -> bool:
        if self.user_id is not None and request.user_id != self.user_id:
            return False
        if self.status is not None and request.status != self.status:
            return False
        if self.asset_symbol is not None and request.asset_symbol != self.asset_symbol.upper():
            return False
        if self.created_from is not None and request.created_at < self.created_from:
            return False
        if self.created_to is not None and request.created_at > self.created_to:
            return False
        return True


class RequestPage(BaseModel):
    items: list[LiquidationRequest]
    total: int
    offset: int
    limit: int


class LiquidationOrchestrator:
    """
    Owns request status and runs the liquidation workflow.

    Usage:
        outcome = await orchestrator.create_request(command, idempotency_key="k-1")
        request = await orchestrator.process(outcome.value)
        view = await orchestrator.get_status(outcome.value)
    """

    def __init__(
        self,
        repos: Repositories,
        registry: EligibilityRegistry,
        limits: RollingLimitTracker,
        ledger: LedgerService,
        compliance: ComplianceOrchestrator,
        quotes: QuoteService,
        matcher: LiquidityMatcher,
        executor: TransactionExecutor,
        config: OrchestratorConfig | None = None,
        clock: Clock = utc_now,
        event_bus: EventBus | None = None,
        audit: AuditLedger | None = None,
    ):
        self._repos = repos
        self._requests = repos.requests
        self._registry = registry
        self._limits = limits
        self._ledger = ledger
        self._compliance = compliance
        self._quotes = quotes
        self._matcher = matcher
        self._executor = executor
        self._config = config or OrchestratorConfig()
        self._clock = clock
        self._event_bus = event_bus
        self._audit = audit

        self._locks: dict[UUID, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task] = set()
        self._handlers: dict[LiquidationRequestStatus, StageHandler] = {
            S.PENDING: self._handle_pending,
            S.KYC_VERIFICATION_IN_PROGRESS: self._handle_kyc,
            S.ASSET_VERIFICATION_IN_PROGRESS: self._handle_asset_verification,
            S.COMPLIANCE_CHECK_IN_PROGRESS: self._handle_compliance,
            S.AWAITING_LIQUIDITY_PROVIDER: self._handle_awaiting_liquidity,
            S.EXECUTING: self._handle_executing,
            S.TRANSFER_IN_PROGRESS: self._handle_transfer,
        }

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    # =========================================================================
    # Creation / workflow
    # =========================================================================

    async def create_request(
        self,
        command: CreateLiquidationCommand,
        idempotency_key: str | None = None,
    ) -> Outcome[UUID]:
        """
        Persist a new request in Pending.

        A repeated idempotency key for the same user returns the original
        request id without creating anything.

        Raises:
            RequestValidationError: input is well-formed but inconsistent
        """
        if command.asset_symbol == command.output_symbol:
            raise RequestValidationError("Cannot liquidate an asset into itself")
        if not command.destination_address.strip():
            raise RequestValidationError("destination_address must not be blank")

        now = self._clock()
        request = LiquidationRequest(
            **command.model_dump(),
            idempotency_key=idempotency_key,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(hours=self._config.request_expiry_hours),
        )
        stored, created = await self._requests.add_idempotent(request)
        if not created:
            logger.info("Idempotent replay of %s for key %s", stored.id, idempotency_key)
            return Outcome.success(stored.id)

        logger.info(
            "Created liquidation %s: %s %s -> %s for user %s to %s",
            stored.id,
            stored.asset_amount,
            stored.asset_symbol,
            stored.output_symbol,
            stored.user_id,
            mask_address(stored.destination_address),
        )
        await self._publish(
            EventType.LIQUIDATION_CREATED,
            stored.id,
            {"asset": stored.asset_symbol, "amount": str(stored.asset_amount), "user_id": stored.user_id},
        )
        return Outcome.success(stored.id)

    def start(self, request_id: UUID) -> asyncio.Task:
        """Run the workflow for a request as a background task."""
        task = asyncio.create_task(self.process(request_id), name=f"liquidation-{request_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for all background workflow tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def process(self, request_id: UUID) -> LiquidationRequest:
        """
        Advance a request as far as it can go right now.

        Returns the request once it is terminal or held.
        """
        lock = self._lock_for(request_id)
        async with lock:
            set_request_id(str(request_id))
            try:
                request = await self._run(request_id)
            finally:
                clear_request_id()
        if request.status.is_terminal:
            self._forget_lock(request_id, lock)
        return request

    async def _run(self, request_id: UUID) -> LiquidationRequest:
        request = await self._requests.require(request_id)
        while not request.status.is_terminal:
            if request.cancel_requested and request.status.is_cancellable:
                return await self._cancel_now(request, request.cancellation_reason or "Cancelled by user")

            handler = self._handlers[request.status]
            try:
                await handler(request)
            except Exception as e:
                logger.exception("Stage %s failed for %s", request.status.value, request_id)
                if self._audit:
                    self._audit.record_error(f"{type(e).__name__}: {e}", request_id=request_id)
                await self._publish(EventType.ERROR, request_id, {"stage": request.status.value, "error": str(e)})
                current = await self._requests.require(request_id)
                if current.status.is_terminal:
                    return current
                return await self._terminate(
                    current,
                    S.FAILED,
                    Failure(
                        reason_code=ReasonCode.INTERNAL_ERROR,
                        stage=_stage_for(current.status),
                        message=f"Unexpected error during {current.status.value}: {e}",
                    ),
                )

            current = await self._requests.require(request_id)
            if current.status == request.status:
                # Held: a cancel flagged during this stage is honored here
                if current.cancel_requested and current.status.is_cancellable:
                    return await self._cancel_now(current, current.cancellation_reason or "Cancelled by user")
                return current
            request = current
        return request

    # =========================================================================
    # Stage handlers
    # =========================================================================

    async def _handle_pending(self, request: LiquidationRequest) -> LiquidationRequest:
        holding = await self._ledger.get_holding(request.user_id, request.asset_symbol)
        if holding.balance < request.asset_amount:
            return await self._terminate(
                request,
                S.REJECTED,
                Failure(
                    reason_code=ReasonCode.INSUFFICIENT_BALANCE,
                    stage=Stage.ELIGIBILITY,
                    message=(
                        f"Balance {holding.balance} {request.asset_symbol} is below "
                        f"requested {request.asset_amount}"
                    ),
                ),
            )

        now = self._clock()
        usage = await self._ledger.get_usage(request.user_id, request.asset_symbol, now)
        if usage.acquired_at is None:
            usage = usage.model_copy(update={"acquired_at": holding.acquired_at})

        result = await self._limits.check_and_reserve(
            request.user_id,
            request.asset_symbol,
            request.id,
            request.asset_amount,
            usage,
            lambda u: self._registry.check_eligibility(
                request.asset_symbol,
                request.asset_amount,
                request.destination_country,
                usage=u,
                output_symbol=request.output_symbol,
                now=now,
            ),
        )
        if not result.eligible:
            return await self._terminate(
                request,
                S.REJECTED,
                Failure(
                    reason_code=result.reason_code or ReasonCode.NOT_ELIGIBLE,
                    stage=Stage.ELIGIBILITY,
                    message=result.reason or f"{request.asset_symbol} is not eligible for liquidation",
                ),
            )

        def _eligible(r: LiquidationRequest) -> None:
            r.asset_eligibility_verified = True
            r.requires_multi_signature = result.requires_multi_signature
            r.risk_level = result.risk_level
            r.limit_reserved = True

        return await self._transition(
            request.id,
            S.KYC_VERIFICATION_IN_PROGRESS,
            "Asset eligible; verifying identity",
            mutate=_eligible,
        )

    async def _handle_kyc(self, request: LiquidationRequest) -> LiquidationRequest:
        check = await self._compliance.run_kyc(request)
        if check.result == ComplianceCheckResult.FAILED:
            return await self._terminate(
                request,
                S.REJECTED,
                Failure(
                    reason_code=ReasonCode.COMPLIANCE_REJECTED,
                    stage=Stage.KYC,
                    message=f"KYC verification failed: {check.failure_reason or 'rejected by provider'}",
                ),
            )

        def _kyc(r: LiquidationRequest) -> None:
            r.kyc_verified = check.result == ComplianceCheckResult.PASSED

        reason = "KYC passed" if check.result == ComplianceCheckResult.PASSED else "KYC held for review"
        return await self._transition(request.id, S.ASSET_VERIFICATION_IN_PROGRESS, reason, mutate=_kyc)

    async def _handle_asset_verification(self, request: LiquidationRequest) -> LiquidationRequest:
        supported = self._registry.get_supported_output_currencies(request.asset_symbol)
        if request.output_symbol not in supported:
            return await self._terminate(
                request,
                S.REJECTED,
                Failure(
                    reason_code=ReasonCode.NOT_ELIGIBLE,
                    stage=Stage.ASSET_VERIFICATION,
                    message=f"{request.asset_symbol} cannot be liquidated into {request.output_symbol}",
                ),
            )

        quote = await self._quotes.get_quote(
            request.asset_symbol,
            request.output_symbol,
            request.asset_amount,
            request_id=request.id,
        )
        if not quote.ok:
            return await self._terminate(request, S.FAILED, quote.failure)

        snapshot = quote.value
        if not snapshot.is_suitable_for_liquidation:
            return await self._terminate(
                request,
                S.REJECTED,
                Failure(
                    reason_code=ReasonCode.UNSUITABLE_PRICE,
                    stage=Stage.ASSET_VERIFICATION,
                    message=snapshot.unsuitability_reason or "Price unsuitable for liquidation",
                ),
            )

        def _priced(r: LiquidationRequest) -> None:
            r.market_price_at_request = snapshot.price
            r.estimated_output_amount = gross_output(r.asset_amount, snapshot.execution_rate)
            r.snapshot_id = snapshot.id

        return await self._transition(
            request.id,
            S.COMPLIANCE_CHECK_IN_PROGRESS,
            f"Priced at {snapshot.price} {request.output_symbol}",
            mutate=_priced,
        )

    async def _handle_compliance(self, request: LiquidationRequest) -> LiquidationRequest:
        run = await self._compliance.run_checks(request)
        if run.outcome == ComplianceOutcome.APPROVED:

            kyc_passed = any(
                c.check_type == ComplianceCheckType.KYC_VERIFICATION and c.result == ComplianceCheckResult.PASSED
                for c in run.checks
            )

            def _approved(r: LiquidationRequest) -> None:
                r.compliance_approved = True
                # KYC held for review earlier counts once a reviewer passes it
                r.kyc_verified = r.kyc_verified or kyc_passed

            return await self._transition(
                request.id,
                S.AWAITING_LIQUIDITY_PROVIDER,
                "Compliance approved",
                mutate=_approved,
            )
        if run.outcome == ComplianceOutcome.REJECTED:
            return await self._terminate(
                request,
                S.REJECTED,
                Failure(
                    reason_code=ReasonCode.COMPLIANCE_REJECTED,
                    stage=Stage.COMPLIANCE,
                    message=run.summary(),
                ),
            )

        logger.info("Request %s held for compliance review: %s", request.id, run.summary())
        return await self._requests.require(request.id)

    async def _handle_awaiting_liquidity(self, request: LiquidationRequest) -> LiquidationRequest:
        if request.requires_multi_signature and not request.multi_signature_approved:
            logger.info("Request %s awaiting multi-signature approval", request.id)
            return request

        match = await self._matcher.select_provider(
            request.asset_symbol,
            request.output_symbol,
            request.asset_amount,
            request.id,
        )
        if not match.ok:
            retry_at = self._clock() + timedelta(seconds=self._config.liquidity_poll_seconds)

            def _wait(r: LiquidationRequest) -> None:
                r.next_match_at = retry_at

            updated, _ = await self._requests.update(request.id, _wait)
            return updated

        reservation = match.value.reservation
        current = await self._requests.require(request.id)
        if current.cancel_requested:
            await self._matcher.release(reservation.id)
            return await self._cancel_now(current, current.cancellation_reason or "Cancelled by user")

        def _matched(r: LiquidationRequest) -> None:
            r.liquidity_provider_id = reservation.provider_id
            r.reservation_id = reservation.id
            r.next_match_at = None

        return await self._transition(
            request.id,
            S.EXECUTING,
            f"Matched provider {match.value.provider.name}",
            mutate=_matched,
        )

    async def _handle_executing(self, request: LiquidationRequest) -> LiquidationRequest:
        quote = await self._quotes.refresh_if_stale(
            request.snapshot_id,
            request.asset_symbol,
            request.output_symbol,
            request.asset_amount,
            request_id=request.id,
        )
        snapshot = quote.value if quote.ok else None

        result = await self._executor.execute(
            request,
            request.liquidity_provider_id,
            snapshot,
            request.reservation_id,
        )
        if not result.success:
            return await self._terminate(request, S.FAILED, result.failure)

        txn = result.transaction

        def _settling(r: LiquidationRequest) -> None:
            r.snapshot_id = txn.snapshot_id

        return await self._transition(
            request.id,
            S.TRANSFER_IN_PROGRESS,
            f"Transfer {txn.settlement_reference} submitted (attempt {txn.attempt_number})",
            mutate=_settling,
        )

    async def _handle_transfer(self, request: LiquidationRequest) -> LiquidationRequest:
        txns = await self._repos.transactions.for_request(request.id)
        completed = [t for t in txns if t.status == TransactionStatus.COMPLETED]
        if not completed:
            return await self._terminate(
                request,
                S.FAILED,
                Failure(
                    reason_code=ReasonCode.INTERNAL_ERROR,
                    stage=Stage.EXECUTION,
                    message="Transfer in progress without a completed transaction",
                ),
            )

        txn = completed[-1]
        now = self._clock()
        await self._ledger.record_liquidation(request.user_id, request.asset_symbol, request.asset_amount, now)
        await self._limits.release(request.user_id, request.asset_symbol, request.id)

        def _done(r: LiquidationRequest) -> None:
            r.actual_output_amount = txn.net_amount
            r.limit_reserved = False

        return await self._transition(
            request.id,
            S.COMPLETED,
            f"Delivered {txn.net_amount} {txn.output_symbol}",
            mutate=_done,
        )

    # =========================================================================
    # Transitions
    # =========================================================================

    async def _transition(
        self,
        request_id: UUID,
        to_status: LiquidationRequestStatus,
        reason: str,
        reason_code: ReasonCode | None = None,
        *,
        override_by: str | None = None,
        mutate: Callable[[LiquidationRequest], None] | None = None,
    ) -> LiquidationRequest:
        """Persist a transition and its side fields in one repository update."""
        now = self._clock()

        def _apply(r: LiquidationRequest):
            if not can_transition(r.status, to_status, override_by):
                return None
            if mutate is not None:
                mutate(r)
            return apply_transition(r, to_status, reason, reason_code, now=now, override_by=override_by)

        updated, transition = await self._requests.update(request_id, _apply)
        if transition is None:
            raise LiquidationError(
                f"Invalid transition {updated.status.value} -> {to_status.value} for {request_id}",
                ReasonCode.INVALID_STATE,
            )

        if self._audit:
            self._audit.record_transition(request_id, transition)
        logger.info(
            "Request %s: %s -> %s (%s)",
            request_id,
            transition.from_status.value,
            transition.to_status.value,
            reason,
        )
        await self._publish(
            EventType.LIQUIDATION_STATUS_CHANGED,
            request_id,
            {
                "from": transition.from_status.value,
                "to": transition.to_status.value,
                "reason": reason,
                "reason_code": reason_code.value if reason_code else None,
                "override_by": override_by,
            },
        )
        return updated

    async def _terminate(
        self,
        request: LiquidationRequest,
        status: LiquidationRequestStatus,
        failure: Failure,
    ) -> LiquidationRequest:
        """Release held resources and move to a terminal status with `failure`."""
        await self._release_resources(request.id)

        def _fail(r: LiquidationRequest) -> None:
            r.failure = failure
            r.limit_reserved = False

        if status == S.FAILED:
            logger.error("Request %s failed: %s", request.id, failure.message)
        return await self._transition(
            request.id,
            status,
            failure.message,
            failure.reason_code,
            mutate=_fail,
        )

    async def _release_resources(self, request_id: UUID) -> None:
        current = await self._requests.require(request_id)
        if current.reservation_id is not None:
            await self._matcher.release(current.reservation_id)
        if current.limit_reserved:
            await self._limits.release(current.user_id, current.asset_symbol, current.id)

    async def _cancel_now(self, request: LiquidationRequest, reason: str) -> LiquidationRequest:
        def _reason(r: LiquidationRequest) -> None:
            r.cancellation_reason = reason

        await self._requests.update(request.id, _reason)
        return await self._terminate(
            request,
            S.CANCELLED,
            Failure(reason_code=ReasonCode.CANCELLED, stage=Stage.REQUEST, message=reason),
        )

    def _lock_for(self, request_id: UUID) -> asyncio.Lock:
        return self._locks.setdefault(request_id, asyncio.Lock())

    def _forget_lock(self, request_id: UUID, lock: asyncio.Lock) -> None:
        """Drop the lock of a terminal request once nobody holds it."""
        if not lock.locked() and self._locks.get(request_id) is lock:
            del self._locks[request_id]

    # =========================================================================
    # User / operator operations
    # =========================================================================

    async def cancel_request(
        self,
        request_id: UUID,
        reason: str,
        user_id: str | None = None,
    ) -> Outcome[LiquidationRequest]:
        """
        Cancel a request before execution.

        If a workflow run holds the request, the cancellation is flagged and
        honored at its next stage boundary; the returned request then still
        shows its current status with `cancel_requested` set.
        """
        request = await self._requests.require(request_id)
        if user_id is not None and request.user_id != user_id:
            raise NotFoundError("LiquidationRequest", request_id)
        refusal = _cancellation_refusal(request)
        if refusal is not None:
            return refusal

        lock = self._lock_for(request_id)
        if lock.locked():

            def _flag(r: LiquidationRequest) -> None:
                r.cancel_requested = True
                r.cancellation_reason = reason

            flagged, _ = await self._requests.update(request_id, _flag)
            logger.info("Cancellation of %s requested while workflow is running", request_id)
            await self._publish(EventType.LIQUIDATION_CANCEL_REQUESTED, request_id, {"reason": reason})
            # Picks the flag up if the running workflow already passed its last stage boundary
            self.start(request_id)
            return Outcome.success(flagged)

        async with lock:
            request = await self._requests.require(request_id)
            refusal = _cancellation_refusal(request)
            if refusal is not None:
                return refusal
            cancelled = await self._cancel_now(request, reason)
        self._forget_lock(request_id, lock)
        return Outcome.success(cancelled)

    async def submit_compliance_review(
        self,
        check_id: UUID,
        decision: ReviewDecision,
        reviewer_id: str,
        notes: str | None = None,
    ) -> Outcome[ComplianceOutcome]:
        """
        Record a reviewer's decision and resume the request if it is no
        longer held.
        """
        reviewed = await self._compliance.submit_review(check_id, decision, reviewer_id, notes)
        if not reviewed.ok:
            return Outcome.from_failure(reviewed.failure)

        request = await self._requests.require(reviewed.value.request_id)
        run = await self._compliance.aggregate(request)
        if request.status == S.COMPLIANCE_CHECK_IN_PROGRESS and run.outcome != ComplianceOutcome.REQUIRES_REVIEW:
            self.start(request.id)
        return Outcome.success(run.outcome)

    async def approve_multi_signature(
        self,
        request_id: UUID,
        approver_id: str,
    ) -> Outcome[LiquidationRequest]:
        """Record the second signature for a large liquidation and resume it."""
        request = await self._requests.require(request_id)
        if request.status.is_terminal:
            return Outcome.fail(
                ReasonCode.INVALID_STATE,
                Stage.MATCHING,
                f"Request is already {request.status.value}",
            )
        if not request.requires_multi_signature or request.multi_signature_approved:
            return Outcome.fail(
                ReasonCode.INVALID_STATE,
                Stage.MATCHING,
                "Request does not need a multi-signature approval",
            )

        def _approve(r: LiquidationRequest) -> None:
            r.multi_signature_approved = True
            r.multi_signature_approved_by = approver_id
            r.updated_at = self._clock()

        updated, _ = await self._requests.update(request_id, _approve)
        logger.info("Multi-signature approval for %s by %s", request_id, approver_id)
        if updated.status == S.AWAITING_LIQUIDITY_PROVIDER:
            self.start(request_id)
        return Outcome.success(updated)

    async def reverse_transaction(
        self,
        transaction_id: UUID,
        reason: str,
        operator_id: str,
    ) -> Outcome[LiquidationRequest]:
        """Reverse a completed transaction and mark its request Cancelled."""
        txn = await self._repos.transactions.require(transaction_id)
        request = await self._requests.require(txn.request_id)
        if request.status != S.COMPLETED:
            return Outcome.fail(
                ReasonCode.REVERSAL_NOT_ALLOWED,
                Stage.REVERSAL,
                f"Request {request.id} is {request.status.value}, not Completed",
            )

        lock = self._lock_for(request.id)
        async with lock:
            reversed_txn = await self._executor.reverse(transaction_id, reason, operator_id)
            if not reversed_txn.ok:
                return Outcome.from_failure(reversed_txn.failure)

            def _reversed(r: LiquidationRequest) -> None:
                r.cancellation_reason = reason

            updated = await self._transition(
                request.id,
                S.CANCELLED,
                f"Reversed by {operator_id}: {reason}",
                ReasonCode.CANCELLED,
                override_by=operator_id,
                mutate=_reversed,
            )
        self._forget_lock(request.id, lock)
        return Outcome.success(updated)

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_status(self, request_id: UUID) -> LiquidationStatusView:
        request = await self._requests.require(request_id)
        checks = await self._compliance.get_checks_for_request(request_id)
        txns = await self._repos.transactions.for_request(request_id)
        return LiquidationStatusView(
            request=request,
            compliance_checks=checks,
            transactions=txns,
            failure=request.failure.to_dict() if request.failure else None,
            next_action=_next_action(request, checks),
        )

    async def estimate(
        self,
        asset_symbol: str,
        asset_amount: Decimal,
        output_symbol: str,
    ) -> Outcome[LiquidationEstimate]:
        """Quote and price a hypothetical liquidation against the best provider."""
        if asset_amount <= 0:
            raise RequestValidationError("asset_amount must be positive")
        quote = await self._quotes.get_quote(asset_symbol, output_symbol, asset_amount)
        if not quote.ok:
            return Outcome.from_failure(quote.failure)

        snapshot = quote.value
        candidates = await self._matcher.find_candidates(asset_symbol, output_symbol, asset_amount)
        best = candidates[0] if candidates else None
        fees = await self._executor.preview_fees(
            asset_amount,
            snapshot,
            best.fee_percentage if best else Decimal("0"),
        )
        return Outcome.success(
            LiquidationEstimate(
                asset_symbol=snapshot.asset_symbol,
                output_symbol=snapshot.output_symbol,
                asset_amount=asset_amount,
                market_price=snapshot.price,
                execution_rate=snapshot.execution_rate,
                estimated_slippage=snapshot.estimated_slippage,
                fees=fees,
                provider_id=best.id if best else None,
                provider_name=best.name if best else None,
                is_suitable=snapshot.is_suitable_for_liquidation,
                unsuitability_reason=snapshot.unsuitability_reason,
                price_valid_until=snapshot.expires_at,
            )
        )

    async def list_requests(self, query: RequestFilter | None = None) -> RequestPage:
        query = query or RequestFilter()
        matched = await self._requests.list(query.matches)
        matched.sort(key=lambda r: (r.created_at, str(r.id)), reverse=query.newest_first)
        return RequestPage(
            items=matched[query.offset : query.offset + query.limit],
            total=len(matched),
            offset=query.offset,
            limit=query.limit,
        )

    async def statistics(self, user_id: str | None = None) -> dict[str, Any]:
        """Counts by status, completed volume by asset and completion rate."""
        requests = await self._requests.list(lambda r: user_id is None or r.user_id == user_id)
        if not requests:
            return {"total": 0, "by_status": {}, "volume_by_asset": {}, "completion_rate": 0.0}

        df = pd.DataFrame(
            {
                "status": [r.status.value for r in requests],
                "asset": [r.asset_symbol for r in requests],
                "amount": [float(r.asset_amount) for r in requests],
                "output": [float(r.actual_output_amount or 0) for r in requests],
                "terminal": [r.status.is_terminal for r in requests],
            }
        )
        completed = df[df["status"] == S.COMPLETED.value]
        terminal = int(df["terminal"].sum())
        return {
            "total": int(len(df)),
            "by_status": {k: int(v) for k, v in df["status"].value_counts().items()},
            "volume_by_asset": {k: float(v) for k, v in completed.groupby("asset")["amount"].sum().items()},
            "total_output_delivered": float(completed["output"].sum()),
            "completion_rate": float(len(completed) / terminal * 100) if terminal else 0.0,
        }

    # =========================================================================
    # Sweeps
    # =========================================================================

    async def expire_requests(self, now: datetime | None = None) -> list[UUID]:
        """
        Fail pre-execution requests whose `expires_at` has passed.

        Requests with a running workflow are skipped until the next sweep.
        """
        now = now or self._clock()
        candidates = await self._requests.list(lambda r: r.status.is_cancellable and r.is_expired(now))
        expired: list[UUID] = []
        for candidate in candidates:
            lock = self._lock_for(candidate.id)
            if lock.locked():
                continue
            async with lock:
                current = await self._requests.require(candidate.id)
                if not (current.status.is_cancellable and current.is_expired(now)):
                    continue
                await self._terminate(
                    current,
                    S.FAILED,
                    Failure(
                        reason_code=ReasonCode.EXPIRED,
                        stage=Stage.SWEEP,
                        message=f"Request expired at {current.expires_at.isoformat()}",
                    ),
                )
                expired.append(current.id)
            self._forget_lock(candidate.id, lock)
        if expired:
            logger.info("Expired %d liquidation requests", len(expired))
        return expired

    async def expire_review_holds(self, now: datetime | None = None) -> list[UUID]:
        """Fail elapsed review holds and re-drive the affected requests."""
        request_ids = await self._compliance.sweep_review_holds(now)
        resumed: list[UUID] = []
        for request_id in dict.fromkeys(request_ids):
            request = await self._requests.require(request_id)
            if request.status == S.COMPLIANCE_CHECK_IN_PROGRESS:
                await self.process(request_id)
                resumed.append(request_id)
        return resumed

    async def retry_awaiting_liquidity(self, now: datetime | None = None) -> list[UUID]:
        """Re-run matching for requests whose poll interval has elapsed."""
        now = now or self._clock()
        due = await self._requests.list(
            lambda r: r.status == S.AWAITING_LIQUIDITY_PROVIDER
            and r.next_match_at is not None
            and r.next_match_at <= now
        )
        retried: list[UUID] = []
        for request in due:
            if self._lock_for(request.id).locked():
                continue
            await self.process(request.id)
            retried.append(request.id)
        return retried

    async def _publish(self, event_type: EventType, request_id: UUID, data: dict[str, Any]) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(Event(type=event_type, data=data, request_id=request_id))


def _cancellation_refusal(request: LiquidationRequest) -> Outcome[LiquidationRequest] | None:
    if request.status.is_cancellable:
        return None
    if request.status.is_terminal and request.status != S.COMPLETED:
        message = f"Request is already {request.status.value}"
    else:
        message = (
            f"Request is {request.status.value}; cancellation is not possible once "
            "execution has started, request a reversal instead"
        )
    return Outcome.fail(ReasonCode.CANCELLATION_NOT_ALLOWED, Stage.REQUEST, message)


def _stage_for(status: LiquidationRequestStatus) -> Stage:
    return {
        S.PENDING: Stage.ELIGIBILITY,
        S.KYC_VERIFICATION_IN_PROGRESS: Stage.KYC,
        S.ASSET_VERIFICATION_IN_PROGRESS: Stage.ASSET_VERIFICATION,
        S.COMPLIANCE_CHECK_IN_PROGRESS: Stage.COMPLIANCE,
        S.AWAITING_LIQUIDITY_PROVIDER: Stage.MATCHING,
    }.get(status, Stage.EXECUTION)


def _next_action(request: LiquidationRequest, checks: list[ComplianceCheck]) -> str:
    if request.status.is_terminal:
        return "none"
    if request.cancel_requested:
        return "cancelling"
    if request.status == S.COMPLIANCE_CHECK_IN_PROGRESS and any(
        c.result == ComplianceCheckResult.REQUIRES_REVIEW for c in checks
    ):
        return "awaiting_compliance_review"
    if request.status == S.AWAITING_LIQUIDITY_PROVIDER:
        if request.requires_multi_signature and not request.multi_signature_approved:
            return "awaiting_multi_signature"
        if request.next_match_at is not None:
            return "awaiting_liquidity"
    return "processing"
