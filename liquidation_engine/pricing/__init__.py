"""
Price discovery: quotes, suitability and slippage.
"""

from liquidation_engine.pricing.quote_service import QuoteConfig, QuoteService
from liquidation_engine.pricing.slippage import SLIPPAGE_TIERS, estimate_slippage_percent

__all__ = [
    "QuoteConfig",
    "QuoteService",
    "SLIPPAGE_TIERS",
    "estimate_slippage_percent",
]
