"""
FastAPI route modules for the liquidation engine.
"""

from liquidation_engine.api.asset_routes import router as asset_router
from liquidation_engine.api.compliance_routes import router as compliance_router
from liquidation_engine.api.liquidation_routes import router as liquidation_router
from liquidation_engine.api.provider_routes import router as provider_router
from liquidation_engine.api.quote_routes import router as quote_router

__all__ = [
    "asset_router",
    "compliance_router",
    "liquidation_router",
    "provider_router",
    "quote_router",
]
