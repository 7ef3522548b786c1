"""
Liquidation API routes.

Create, inspect, cancel and estimate liquidations, plus operator actions
(re-drive, multi-signature approval, reversal).
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, Field

from liquidation_engine.api.dependencies import get_engine, raise_for_failure
from liquidation_engine.domain import CreateLiquidationCommand, LiquidationRequest, LiquidationRequestStatus
from liquidation_engine.engine import LiquidationEngine
from liquidation_engine.logging import get_logger
from liquidation_engine.orchestration import (
    LiquidationEstimate,
    LiquidationStatusView,
    RequestFilter,
    RequestPage,
)

router = APIRouter(prefix="/liquidations", tags=["Liquidations"])
logger = get_logger(__name__)


# =============================================================================
# Request/Response Models
# =============================================================================


class CreateLiquidationResponse(BaseModel):
    """Response from create endpoint."""

    request_id: UUID
    status: LiquidationRequestStatus
    failure: dict[str, Any] | None = None


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    user_id: str | None = None


class MultiSignatureApproval(BaseModel):
    approver_id: str = Field(..., min_length=1)


class ReversalRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    operator_id: str = Field(..., min_length=1)


# =============================================================================
# Endpoints
# =============================================================================


@router.post("", response_model=CreateLiquidationResponse, status_code=201)
async def create_liquidation(
    command: CreateLiquidationCommand,
    wait: bool = Query(default=False, description="Run the workflow before responding"),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    engine: LiquidationEngine = Depends(get_engine),
) -> CreateLiquidationResponse:
    """
    Create a liquidation request and start its workflow.

    With `wait=true` the workflow runs inline and the response carries the
    status it reached (terminal or held).
    """
    outcome = await engine.orchestrator.create_request(command, idempotency_key=idempotency_key)
    if not outcome.ok:
        raise_for_failure(outcome.failure)

    request_id = outcome.value
    if wait:
        request = await engine.orchestrator.process(request_id)
    else:
        engine.orchestrator.start(request_id)
        request = (await engine.orchestrator.get_status(request_id)).request
    return CreateLiquidationResponse(
        request_id=request_id,
        status=request.status,
        failure=request.failure.to_dict() if request.failure else None,
    )


@router.get("", response_model=RequestPage)
async def list_liquidations(
    user_id: str | None = None,
    status: LiquidationRequestStatus | None = None,
    asset_symbol: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=500),
    engine: LiquidationEngine = Depends(get_engine),
) -> RequestPage:
    """List requests, newest first."""
    return await engine.orchestrator.list_requests(
        RequestFilter(
            user_id=user_id,
            status=status,
            asset_symbol=asset_symbol,
            created_from=created_from,
            created_to=created_to,
            offset=offset,
            limit=limit,
        )
    )


@router.get("/estimate", response_model=LiquidationEstimate)
async def estimate_liquidation(
    asset_symbol: str,
    amount: Decimal = Query(..., gt=0),
    output_symbol: str = "USD",
    engine: LiquidationEngine = Depends(get_engine),
) -> LiquidationEstimate:
    """Indicative gross, fees and net for a liquidation."""
    outcome = await engine.orchestrator.estimate(asset_symbol, amount, output_symbol)
    if not outcome.ok:
        raise_for_failure(outcome.failure)
    return outcome.value


@router.get("/statistics")
async def liquidation_statistics(
    user_id: str | None = None,
    engine: LiquidationEngine = Depends(get_engine),
) -> dict[str, Any]:
    return await engine.orchestrator.statistics(user_id)


@router.get("/{request_id}", response_model=LiquidationStatusView)
async def get_liquidation(
    request_id: UUID,
    engine: LiquidationEngine = Depends(get_engine),
) -> LiquidationStatusView:
    """Status, checks, transactions and next action for a request."""
    return await engine.orchestrator.get_status(request_id)


@router.get("/{request_id}/events")
async def liquidation_events(
    request_id: UUID,
    limit: int = Query(default=50, ge=1, le=500),
    engine: LiquidationEngine = Depends(get_engine),
) -> list[dict[str, Any]]:
    """Recent workflow events published for a request, oldest first."""
    await engine.orchestrator.get_status(request_id)
    return [event.to_dict() for event in engine.event_bus.recent(request_id=request_id, limit=limit)]


@router.post("/{request_id}/cancel", response_model=LiquidationRequest)
async def cancel_liquidation(
    request_id: UUID,
    body: CancelRequest,
    engine: LiquidationEngine = Depends(get_engine),
) -> LiquidationRequest:
    outcome = await engine.orchestrator.cancel_request(request_id, body.reason, user_id=body.user_id)
    if not outcome.ok:
        raise_for_failure(outcome.failure)
    return outcome.value


@router.post("/{request_id}/process", response_model=LiquidationRequest)
async def process_liquidation(
    request_id: UUID,
    engine: LiquidationEngine = Depends(get_engine),
) -> LiquidationRequest:
    """Re-drive a held request inline."""
    return await engine.orchestrator.process(request_id)


@router.post("/{request_id}/multisig", response_model=LiquidationRequest)
async def approve_multi_signature(
    request_id: UUID,
    body: MultiSignatureApproval,
    engine: LiquidationEngine = Depends(get_engine),
) -> LiquidationRequest:
    outcome = await engine.orchestrator.approve_multi_signature(request_id, body.approver_id)
    if not outcome.ok:
        raise_for_failure(outcome.failure)
    return outcome.value


@router.post("/transactions/{transaction_id}/reverse", response_model=LiquidationRequest)
async def reverse_transaction(
    transaction_id: UUID,
    body: ReversalRequest,
    engine: LiquidationEngine = Depends(get_engine),
) -> LiquidationRequest:
    """Reverse a completed transaction inside its reversal window."""
    outcome = await engine.orchestrator.reverse_transaction(transaction_id, body.reason, body.operator_id)
    if not outcome.ok:
        raise_for_failure(outcome.failure)
    logger.info("Transaction %s reversed via API by %s", transaction_id, body.operator_id)
    return outcome.value
