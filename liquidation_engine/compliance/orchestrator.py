"""
Compliance Orchestrator.

Runs the mandatory check set for a request concurrently, retries transient
provider faults with exponential backoff, aggregates results into a single
decision, and applies reviewer overrides.

Aggregation:
- any Failed -> Rejected
- any RequiresReview (no Failed) -> RequiresReview
- all Passed/Skipped -> Approved
"""

import asyncio
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import pandas as pd
from pydantic import BaseModel, Field

from liquidation_engine.audit import AuditLedger
from liquidation_engine.compliance.checks import (
    CHECK_STRATEGIES,
    ComplianceConfig,
    mandatory_check_types,
)
from liquidation_engine.domain import (
    Clock,
    ComplianceCheck,
    ComplianceCheckResult,
    ComplianceCheckType,
    ComplianceOutcome,
    LiquidationRequest,
    Outcome,
    ReasonCode,
    ReviewDecision,
    Stage,
    risk_level_from_score,
    utc_now,
)
from liquidation_engine.errors import TransientProviderError
from liquidation_engine.interfaces import ComplianceProvider
from liquidation_engine.logging import get_logger
from liquidation_engine.runtime.event_bus import Event, EventBus, EventType
from liquidation_engine.storage import ComplianceCheckRepository

logger = get_logger(__name__)


class ComplianceRunResult(BaseModel):
    """Aggregate decision plus the checks it was based on."""

    outcome: ComplianceOutcome
    checks: list[ComplianceCheck] = Field(default_factory=list)

    @property
    def failed_checks(self) -> list[ComplianceCheck]:
        return [c for c in self.checks if c.result == ComplianceCheckResult.FAILED]

    @property
    def review_checks(self) -> list[ComplianceCheck]:
        return [c for c in self.checks if c.result == ComplianceCheckResult.REQUIRES_REVIEW]

    @property
    def max_risk_score(self) -> int | None:
        scores = [c.risk_score for c in self.checks if c.risk_score is not None]
        return max(scores) if scores else None

    def summary(self) -> str:
        if self.outcome == ComplianceOutcome.REJECTED:
            parts = [f"{c.check_type.value}: {c.failure_reason or 'failed'}" for c in self.failed_checks]
            return "Compliance rejected (" + "; ".join(parts) + ")"
        if self.outcome == ComplianceOutcome.REQUIRES_REVIEW:
            types = ", ".join(c.check_type.value for c in self.review_checks)
            return f"Compliance review required for {types}"
        return "All compliance checks passed"


def aggregate_results(checks: Iterable[ComplianceCheck]) -> ComplianceOutcome:
    """Combine individual check results into one decision."""
    results = [c.result for c in checks]
    if ComplianceCheckResult.FAILED in results:
        return ComplianceOutcome.REJECTED
    if any(r in (ComplianceCheckResult.REQUIRES_REVIEW, ComplianceCheckResult.PENDING) for r in results):
        return ComplianceOutcome.REQUIRES_REVIEW
    return ComplianceOutcome.APPROVED


def latest_per_type(checks: Iterable[ComplianceCheck]) -> dict[ComplianceCheckType, ComplianceCheck]:
    latest: dict[ComplianceCheckType, ComplianceCheck] = {}
    for check in sorted(checks, key=lambda c: c.created_at):
        latest[check.check_type] = check
    return latest


class ComplianceOrchestrator:
    """
    Sole writer of ComplianceCheck results.

    Usage:
        result = await compliance.run_checks(request)
        if result.outcome == ComplianceOutcome.REQUIRES_REVIEW:
            ...  # request is held until submit_review()
    """

    def __init__(
        self,
        provider: ComplianceProvider,
        checks: ComplianceCheckRepository,
        config: ComplianceConfig | None = None,
        clock: Clock = utc_now,
        event_bus: EventBus | None = None,
        audit: AuditLedger | None = None,
    ):
        self._provider = provider
        self._checks = checks
        self._config = config or ComplianceConfig()
        self._clock = clock
        self._event_bus = event_bus
        self._audit = audit

    @property
    def config(self) -> ComplianceConfig:
        return self._config

    # =========================================================================
    # Running checks
    # =========================================================================

    async def run_kyc(self, request: LiquidationRequest) -> ComplianceCheck:
        """Run (or reuse) the KYC check on its own."""
        return await self._run_single(request, ComplianceCheckType.KYC_VERIFICATION)

    async def run_checks(self, request: LiquidationRequest) -> ComplianceRunResult:
        """
        Run every mandatory check for the request concurrently.

        Checks that already reached a result (or are held for review) are
        reused rather than re-run.
        """
        required = mandatory_check_types(request, self._config)
        logger.info(
            "Running compliance for %s: %s",
            request.id,
            ", ".join(t.value for t in required),
        )
        checks = await asyncio.gather(*[self._run_single(request, t) for t in required])
        result = ComplianceRunResult(outcome=aggregate_results(checks), checks=list(checks))
        await self._after_aggregation(request.id, result)
        return result

    async def aggregate(self, request: LiquidationRequest) -> ComplianceRunResult:
        """Re-aggregate from stored checks without contacting the provider."""
        latest = latest_per_type(await self._checks.for_request(request.id))
        required = mandatory_check_types(request, self._config)
        checks = [latest[t] for t in required if t in latest]
        if len(checks) < len(required):
            outcome = ComplianceOutcome.REQUIRES_REVIEW
        else:
            outcome = aggregate_results(checks)
        return ComplianceRunResult(outcome=outcome, checks=checks)

    async def _run_single(
        self,
        request: LiquidationRequest,
        check_type: ComplianceCheckType,
    ) -> ComplianceCheck:
        existing = latest_per_type(await self._checks.for_request(request.id)).get(check_type)
        if existing is not None and existing.result != ComplianceCheckResult.PENDING:
            return existing

        check = existing or await self._checks.add(
            ComplianceCheck(
                request_id=request.id,
                check_type=check_type,
                max_retries=self._config.max_retries,
                created_at=self._clock(),
            )
        )
        return await self._execute(request, check)

    async def _execute(self, request: LiquidationRequest, check: ComplianceCheck) -> ComplianceCheck:
        strategy = CHECK_STRATEGIES[check.check_type]
        subject = strategy.build_subject(request)
        check.started_at = self._clock()
        timeout = self._config.timeout_s

        while True:
            try:
                response = await asyncio.wait_for(
                    self._provider.run_check(check.check_type, subject),
                    timeout=timeout,
                )
            except (TransientProviderError, TimeoutError) as e:
                check.retry_attempts += 1
                check.error_message = str(e) or f"Provider timed out after {timeout}s"
                if not check.can_retry:
                    check.failure_reason = (
                        f"Provider unavailable after {check.retry_attempts} attempts: "
                        f"{check.error_message}"
                    )
                    check.next_retry_at = None
                    logger.error(
                        "Check %s %s exhausted retries: %s",
                        check.check_type.value,
                        check.id,
                        check.error_message,
                    )
                    return await self._complete(check, ComplianceCheckResult.FAILED)

                backoff = self._config.retry_base_delay_s * 2 ** (check.retry_attempts - 1)
                check.next_retry_at = self._clock() + timedelta(seconds=backoff)
                await self._checks.save(check)
                logger.warning(
                    "Check %s failed transiently (%s), backing off %.1fs (attempt %d/%d)",
                    check.check_type.value,
                    check.error_message,
                    backoff,
                    check.retry_attempts,
                    check.max_retries,
                )
                await asyncio.sleep(backoff)
                continue
            except Exception as e:
                logger.exception("Check %s %s raised unexpectedly", check.check_type.value, check.id)
                check.error_message = f"{type(e).__name__}: {e}"
                check.requires_manual_review = True
                check.failure_reason = "Provider returned an unexpected error"
                return await self._complete(check, ComplianceCheckResult.REQUIRES_REVIEW)

            result, score = strategy.interpret(request, response, self._config)
            check.provider = response.provider
            check.external_reference_id = response.reference
            check.risk_score = score
            check.risk_level = risk_level_from_score(score)
            check.recommendations = list(response.recommendations)
            check.next_retry_at = None
            if result == ComplianceCheckResult.FAILED:
                check.failure_reason = response.failure_reason or f"{check.check_type.value} failed"
            if result == ComplianceCheckResult.REQUIRES_REVIEW:
                check.requires_manual_review = True
            return await self._complete(check, result)

    async def _complete(self, check: ComplianceCheck, result: ComplianceCheckResult) -> ComplianceCheck:
        now = self._clock()
        check.result = result
        check.completed_at = now
        check.updated_at = now
        if check.started_at is not None:
            check.duration_ms = int((now - check.started_at).total_seconds() * 1000)
        if result == ComplianceCheckResult.REQUIRES_REVIEW:
            check.review_expires_at = now + timedelta(hours=self._config.review_window_hours)
        check = await self._checks.save(check)

        if self._audit:
            self._audit.record_check(check)
        logger.info(
            "Check %s for %s -> %s (score=%s)",
            check.check_type.value,
            check.request_id,
            result.value,
            check.risk_score,
        )
        await self._publish(
            EventType.COMPLIANCE_CHECK_COMPLETED,
            check.request_id,
            {"check_id": str(check.id), "type": check.check_type.value, "result": result.value},
        )
        return check

    async def _after_aggregation(self, request_id: UUID, result: ComplianceRunResult) -> None:
        logger.info("Compliance for %s: %s", request_id, result.outcome.value)
        if result.outcome == ComplianceOutcome.REQUIRES_REVIEW:
            await self._publish(
                EventType.COMPLIANCE_REVIEW_REQUIRED,
                request_id,
                {"check_ids": [str(c.id) for c in result.review_checks]},
            )

    # =========================================================================
    # Manual review
    # =========================================================================

    async def submit_review(
        self,
        check_id: UUID,
        decision: ReviewDecision,
        reviewer_id: str,
        notes: str | None = None,
    ) -> Outcome[ComplianceCheck]:
        """
        Override a check's result with a reviewer's decision.

        Records the original result, reviewer and reason. The caller
        re-aggregates the owning request.
        """
        check = await self._checks.require(check_id)
        if check.result == ComplianceCheckResult.PENDING:
            return Outcome.fail(
                ReasonCode.INVALID_STATE,
                Stage.COMPLIANCE,
                f"Check {check_id} has not produced a result yet",
            )
        if check.is_overridden:
            return Outcome.fail(
                ReasonCode.INVALID_STATE,
                Stage.COMPLIANCE,
                f"Check {check_id} was already overridden by {check.reviewed_by}",
            )

        now = self._clock()
        check.original_result = check.result
        check.is_overridden = True
        check.override_reason = notes or f"Reviewer decision: {decision.value}"
        check.reviewed_by = reviewer_id
        check.reviewed_at = now
        check.review_comments = notes
        check.requires_manual_review = False
        check.review_expires_at = None
        check.result = decision.result
        check.updated_at = now
        check = await self._checks.save(check)

        if self._audit:
            self._audit.record_check(check)
        logger.info(
            "Check %s overridden by %s: %s -> %s",
            check.id,
            reviewer_id,
            check.original_result.value if check.original_result else None,
            check.result.value,
        )
        await self._publish(
            EventType.COMPLIANCE_CHECK_OVERRIDDEN,
            check.request_id,
            {"check_id": str(check.id), "decision": decision.value, "reviewer": reviewer_id},
        )
        return Outcome.success(check)

    async def sweep_review_holds(self, now: datetime | None = None) -> list[UUID]:
        """
        Fail checks whose review window elapsed.

        Returns the ids of affected requests. Idempotent.
        """
        now = now or self._clock()
        expired = await self._checks.list(
            lambda c: c.result == ComplianceCheckResult.REQUIRES_REVIEW
            and c.review_expires_at is not None
            and now > c.review_expires_at
        )
        request_ids: list[UUID] = []
        for check in expired:
            check.failure_reason = "Manual review window elapsed without a decision"
            check.requires_manual_review = False
            await self._complete(check, ComplianceCheckResult.FAILED)
            request_ids.append(check.request_id)
        if expired:
            logger.warning("Expired %d compliance review holds", len(expired))
        return request_ids

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_check(self, check_id: UUID) -> ComplianceCheck:
        return await self._checks.require(check_id)

    async def get_checks_for_request(self, request_id: UUID) -> list[ComplianceCheck]:
        return await self._checks.for_request(request_id)

    async def statistics(self) -> dict[str, Any]:
        """Counts by type and result, pass rate and risk distribution."""
        checks = await self._checks.list()
        if not checks:
            return {"total": 0, "pass_rate": 0.0, "by_type": {}, "by_result": {}, "risk_distribution": {}}

        df = pd.DataFrame(
            {
                "type": [c.check_type.value for c in checks],
                "result": [c.result.value for c in checks],
                "risk_level": [c.risk_level.value for c in checks],
                "overridden": [c.is_overridden for c in checks],
            }
        )
        completed = df[df["result"] != ComplianceCheckResult.PENDING.value]
        passed = (completed["result"] == ComplianceCheckResult.PASSED.value).sum()
        by_type = df.groupby(["type", "result"]).size().unstack(fill_value=0)
        return {
            "total": int(len(df)),
            "pass_rate": float(passed / len(completed) * 100) if len(completed) else 0.0,
            "overridden": int(df["overridden"].sum()),
            "by_type": {t: {r: int(n) for r, n in row.items()} for t, row in by_type.iterrows()},
            "by_result": {k: int(v) for k, v in df["result"].value_counts().items()},
            "risk_distribution": {k: int(v) for k, v in df["risk_level"].value_counts().items()},
        }

    async def _publish(self, event_type: EventType, request_id: UUID, data: dict[str, Any]) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(Event(type=event_type, data=data, request_id=request_id))
