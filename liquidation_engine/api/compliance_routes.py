"""
Compliance API routes.

Inspect screening checks and record manual review decisions.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from liquidation_engine.api.dependencies import get_engine, raise_for_failure
from liquidation_engine.domain import ComplianceCheck, ComplianceOutcome, ReviewDecision
from liquidation_engine.engine import LiquidationEngine

router = APIRouter(prefix="/compliance", tags=["Compliance"])


class ReviewRequest(BaseModel):
    """Reviewer disposition for a held check."""

    decision: ReviewDecision
    reviewer_id: str = Field(..., min_length=1)
    notes: str | None = Field(default=None, max_length=2000)


class ReviewResponse(BaseModel):
    check_id: UUID
    outcome: ComplianceOutcome


@router.get("/requests/{request_id}/checks", response_model=list[ComplianceCheck])
async def get_request_checks(
    request_id: UUID,
    engine: LiquidationEngine = Depends(get_engine),
) -> list[ComplianceCheck]:
    return await engine.compliance.get_checks_for_request(request_id)


@router.get("/checks/{check_id}", response_model=ComplianceCheck)
async def get_check(
    check_id: UUID,
    engine: LiquidationEngine = Depends(get_engine),
) -> ComplianceCheck:
    return await engine.compliance.get_check(check_id)


@router.post("/checks/{check_id}/review", response_model=ReviewResponse)
async def review_check(
    check_id: UUID,
    body: ReviewRequest,
    engine: LiquidationEngine = Depends(get_engine),
) -> ReviewResponse:
    """Override a held check; the request resumes once nothing else holds it."""
    outcome = await engine.orchestrator.submit_compliance_review(
        check_id,
        body.decision,
        body.reviewer_id,
        body.notes,
    )
    if not outcome.ok:
        raise_for_failure(outcome.failure)
    return ReviewResponse(check_id=check_id, outcome=outcome.value)


@router.get("/statistics")
async def compliance_statistics(
    engine: LiquidationEngine = Depends(get_engine),
) -> dict[str, Any]:
    return await engine.compliance.statistics()
