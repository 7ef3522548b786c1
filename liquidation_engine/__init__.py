"""
Asset Liquidation Engine

Drives a user's request to convert a held asset into fiat, stablecoin or
another cryptocurrency through:
- Eligibility validation against per-asset rules
- Time-boxed price quotes
- Compliance screening (KYC, AML, sanctions, PEP, illicit address, risk)
- Liquidity provider matching with atomic reservation
- Settlement with bounded retry and post-settlement reversal
"""

__version__ = "1.0.0"
__author__ = "Liquidation Engine Team"

from liquidation_engine.config import Settings, get_settings

__all__ = ["__version__", "Settings", "get_settings"]
