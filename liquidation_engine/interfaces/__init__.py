"""
Interfaces (abstract base classes) for external collaborators.

- ComplianceProvider: KYC/AML/sanctions screening decisions
- PriceSource: market prices
- SettlementRail: fund transfers and reversals
- LedgerService: balances and rolling liquidation totals
"""

from liquidation_engine.interfaces.compliance_provider import (
    ComplianceProvider,
    ComplianceSubject,
    ProviderCheckResponse,
)
from liquidation_engine.interfaces.ledger_service import Holding, LedgerService
from liquidation_engine.interfaces.price_source import PriceObservation, PriceSource
from liquidation_engine.interfaces.settlement_rail import SettlementRail, TransferReceipt

__all__ = [
    "ComplianceProvider",
    "ComplianceSubject",
    "Holding",
    "LedgerService",
    "PriceObservation",
    "PriceSource",
    "ProviderCheckResponse",
    "SettlementRail",
    "TransferReceipt",
]
