"""
Domain models for the liquidation engine.

- LiquidationRequest: aggregate root with its status history
- ComplianceCheck: one typed screening attempt
- LiquidityProvider / LiquidityReservation: counterparties and held liquidity
- MarketPriceSnapshot: time-boxed, single-use price observation
- LiquidationTransaction: one execution attempt
- AssetEligibility: per-asset liquidation rules
"""

from liquidation_engine.domain.common import (
    AMOUNT_PLACES,
    Clock,
    RiskLevel,
    percent_of,
    quantize_amount,
    risk_level_from_score,
    utc_now,
)
from liquidation_engine.domain.compliance import (
    ComplianceCheck,
    ComplianceCheckResult,
    ComplianceCheckType,
    ComplianceOutcome,
    ReviewDecision,
)
from liquidation_engine.domain.eligibility import (
    AssetEligibility,
    AssetEligibilityStatus,
    EligibilityResult,
    UsageSnapshot,
    ValidationCheck,
)
from liquidation_engine.domain.provider import (
    DEFAULT_OUTPUT_CURRENCIES,
    LiquidityProvider,
    LiquidityReservation,
    ProviderStatus,
    ReservationState,
)
from liquidation_engine.domain.request import (
    CANCELLABLE_STATUSES,
    CreateLiquidationCommand,
    DestinationType,
    LiquidationRequest,
    LiquidationRequestStatus,
    OutputType,
    StatusTransition,
)
from liquidation_engine.domain.results import (
    Failure,
    FailureCategory,
    Outcome,
    ReasonCode,
    Stage,
)
from liquidation_engine.domain.snapshot import MarketPriceSnapshot
from liquidation_engine.domain.transaction import LiquidationTransaction, TransactionStatus

__all__ = [
    "AMOUNT_PLACES",
    "AssetEligibility",
    "AssetEligibilityStatus",
    "CANCELLABLE_STATUSES",
    "Clock",
    "ComplianceCheck",
    "ComplianceCheckResult",
    "ComplianceCheckType",
    "ComplianceOutcome",
    "CreateLiquidationCommand",
    "DEFAULT_OUTPUT_CURRENCIES",
    "DestinationType",
    "EligibilityResult",
    "Failure",
    "FailureCategory",
    "LiquidationRequest",
    "LiquidationRequestStatus",
    "LiquidationTransaction",
    "LiquidityProvider",
    "LiquidityReservation",
    "MarketPriceSnapshot",
    "Outcome",
    "OutputType",
    "ProviderStatus",
    "ReasonCode",
    "ReservationState",
    "ReviewDecision",
    "RiskLevel",
    "Stage",
    "StatusTransition",
    "TransactionStatus",
    "UsageSnapshot",
    "ValidationCheck",
    "percent_of",
    "quantize_amount",
    "risk_level_from_score",
    "utc_now",
]
