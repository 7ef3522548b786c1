"""
Collaborator adapters: HTTP price feed and simulated collaborators.
"""

from liquidation_engine.adapters.http_price_source import HttpPriceSource
from liquidation_engine.adapters.simulated import (
    DEFAULT_PRICES,
    InMemoryLedgerService,
    SimulatedComplianceProvider,
    SimulatedPriceSource,
    SimulatedSettlementRail,
)

__all__ = [
    "DEFAULT_PRICES",
    "HttpPriceSource",
    "InMemoryLedgerService",
    "SimulatedComplianceProvider",
    "SimulatedPriceSource",
    "SimulatedSettlementRail",
]
