"""
Quote API routes.
"""

from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Query

from liquidation_engine.api.dependencies import get_engine, raise_for_failure
from liquidation_engine.domain import MarketPriceSnapshot
from liquidation_engine.engine import LiquidationEngine

router = APIRouter(prefix="/quotes", tags=["Quotes"])


@router.get("/{asset_symbol}/{output_symbol}", response_model=MarketPriceSnapshot)
async def get_quote(
    asset_symbol: str,
    output_symbol: str,
    amount: Decimal | None = Query(default=None, gt=0),
    engine: LiquidationEngine = Depends(get_engine),
) -> MarketPriceSnapshot:
    """
    Quote a pair.

    With `amount` a fresh snapshot is judged for that size; without it the
    cached current price is returned while valid.
    """
    if amount is not None:
        outcome = await engine.quotes.get_quote(asset_symbol, output_symbol, amount)
    else:
        outcome = await engine.quotes.get_current_price(asset_symbol, output_symbol)
    if not outcome.ok:
        raise_for_failure(outcome.failure)
    return outcome.value


@router.get("/{asset_symbol}/{output_symbol}/history", response_model=list[MarketPriceSnapshot])
async def quote_history(
    asset_symbol: str,
    output_symbol: str,
    limit: int = Query(default=50, ge=1, le=500),
    engine: LiquidationEngine = Depends(get_engine),
) -> list[MarketPriceSnapshot]:
    return await engine.quotes.price_history(asset_symbol, output_symbol, limit)


@router.get("/{asset_symbol}/{output_symbol}/statistics")
async def quote_statistics(
    asset_symbol: str,
    output_symbol: str,
    engine: LiquidationEngine = Depends(get_engine),
) -> dict[str, Any]:
    return await engine.quotes.price_statistics(asset_symbol, output_symbol)
