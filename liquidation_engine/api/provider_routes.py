"""
Liquidity provider API routes.

Registration, approval, suspension and availability of providers.
"""

from decimal import Decimal
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from liquidation_engine.api.dependencies import get_engine, raise_for_failure
from liquidation_engine.domain import LiquidityProvider, ProviderStatus
from liquidation_engine.engine import LiquidationEngine
from liquidation_engine.matching import ProviderRegistration

router = APIRouter(prefix="/providers", tags=["Providers"])


class ApproveRequest(BaseModel):
    approved_by: str | None = None


class ReasonRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class AvailabilityRequest(BaseModel):
    is_available: bool
    available_liquidity: Decimal | None = Field(default=None, ge=0)


class LiquidityRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)


@router.post("", response_model=LiquidityProvider, status_code=201)
async def register_provider(
    body: ProviderRegistration,
    engine: LiquidationEngine = Depends(get_engine),
) -> LiquidityProvider:
    return await engine.providers.register(body)


@router.get("", response_model=list[LiquidityProvider])
async def list_providers(
    status: ProviderStatus | None = None,
    engine: LiquidationEngine = Depends(get_engine),
) -> list[LiquidityProvider]:
    return await engine.providers.list(status)


@router.get("/{provider_id}", response_model=LiquidityProvider)
async def get_provider(
    provider_id: UUID,
    engine: LiquidationEngine = Depends(get_engine),
) -> LiquidityProvider:
    return await engine.providers.get(provider_id)


@router.post("/{provider_id}/approve", response_model=LiquidityProvider)
async def approve_provider(
    provider_id: UUID,
    body: ApproveRequest,
    engine: LiquidationEngine = Depends(get_engine),
) -> LiquidityProvider:
    outcome = await engine.providers.approve(provider_id, body.approved_by)
    if not outcome.ok:
        raise_for_failure(outcome.failure)
    return outcome.value


@router.post("/{provider_id}/reject", response_model=LiquidityProvider)
async def reject_provider(
    provider_id: UUID,
    body: ReasonRequest,
    engine: LiquidationEngine = Depends(get_engine),
) -> LiquidityProvider:
    outcome = await engine.providers.reject(provider_id, body.reason)
    if not outcome.ok:
        raise_for_failure(outcome.failure)
    return outcome.value


@router.post("/{provider_id}/suspend", response_model=LiquidityProvider)
async def suspend_provider(
    provider_id: UUID,
    body: ReasonRequest,
    engine: LiquidationEngine = Depends(get_engine),
) -> LiquidityProvider:
    outcome = await engine.providers.suspend(provider_id, body.reason)
    if not outcome.ok:
        raise_for_failure(outcome.failure)
    return outcome.value


@router.post("/{provider_id}/reactivate", response_model=LiquidityProvider)
async def reactivate_provider(
    provider_id: UUID,
    engine: LiquidationEngine = Depends(get_engine),
) -> LiquidityProvider:
    outcome = await engine.providers.reactivate(provider_id)
    if not outcome.ok:
        raise_for_failure(outcome.failure)
    return outcome.value


@router.put("/{provider_id}/availability", response_model=LiquidityProvider)
async def update_availability(
    provider_id: UUID,
    body: AvailabilityRequest,
    engine: LiquidationEngine = Depends(get_engine),
) -> LiquidityProvider:
    return await engine.providers.update_availability(
        provider_id,
        body.is_available,
        body.available_liquidity,
    )


@router.post("/{provider_id}/liquidity", response_model=LiquidityProvider)
async def add_liquidity(
    provider_id: UUID,
    body: LiquidityRequest,
    engine: LiquidationEngine = Depends(get_engine),
) -> LiquidityProvider:
    return await engine.providers.add_liquidity(provider_id, body.amount)


@router.get("/{provider_id}/statistics")
async def provider_statistics(
    provider_id: UUID,
    engine: LiquidationEngine = Depends(get_engine),
) -> dict[str, Any]:
    return await engine.providers.statistics(provider_id)
