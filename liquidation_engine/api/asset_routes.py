"""
Asset eligibility API routes.
"""

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from liquidation_engine.api.dependencies import get_engine
from liquidation_engine.domain import AssetEligibility, AssetEligibilityStatus, EligibilityResult
from liquidation_engine.engine import LiquidationEngine

router = APIRouter(prefix="/assets", tags=["Assets"])


class ValidateRequest(BaseModel):
    """Hypothetical liquidation to validate against an asset's rules."""

    amount: Decimal = Field(..., gt=0)
    destination_country: str = Field(..., min_length=2, max_length=2)
    output_symbol: str | None = None


class StatusRequest(BaseModel):
    status: AssetEligibilityStatus
    notes: str | None = None


class EnabledRequest(BaseModel):
    enabled: bool


@router.put("/{asset_symbol}", response_model=AssetEligibility)
async def configure_asset(
    asset_symbol: str,
    body: AssetEligibility,
    engine: LiquidationEngine = Depends(get_engine),
) -> AssetEligibility:
    """Create or replace the liquidation rules for an asset."""
    rules = body.model_copy(update={"asset_symbol": asset_symbol.strip().upper()})
    return engine.registry.configure_asset(rules)


@router.get("", response_model=list[AssetEligibility])
async def list_assets(
    status: AssetEligibilityStatus | None = None,
    engine: LiquidationEngine = Depends(get_engine),
) -> list[AssetEligibility]:
    return engine.registry.list_assets(status)


@router.get("/{asset_symbol}", response_model=AssetEligibility)
async def get_asset(
    asset_symbol: str,
    engine: LiquidationEngine = Depends(get_engine),
) -> AssetEligibility:
    return engine.registry.require_asset(asset_symbol)


@router.post("/{asset_symbol}/validate", response_model=EligibilityResult)
async def validate_asset(
    asset_symbol: str,
    body: ValidateRequest,
    engine: LiquidationEngine = Depends(get_engine),
) -> EligibilityResult:
    """Evaluate every rule for a hypothetical liquidation."""
    return engine.registry.validate_detailed(
        asset_symbol,
        body.amount,
        body.destination_country.upper(),
        output_symbol=body.output_symbol.upper() if body.output_symbol else None,
    )


@router.put("/{asset_symbol}/status", response_model=AssetEligibility)
async def update_asset_status(
    asset_symbol: str,
    body: StatusRequest,
    engine: LiquidationEngine = Depends(get_engine),
) -> AssetEligibility:
    return engine.registry.update_asset_status(asset_symbol, body.status, body.notes)


@router.put("/{asset_symbol}/enabled", response_model=AssetEligibility)
async def set_asset_enabled(
    asset_symbol: str,
    body: EnabledRequest,
    engine: LiquidationEngine = Depends(get_engine),
) -> AssetEligibility:
    return engine.registry.set_asset_enabled(asset_symbol, body.enabled)
