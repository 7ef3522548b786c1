"""
Compliance screening orchestration.
"""

from liquidation_engine.compliance.checks import (
    CHECK_STRATEGIES,
    ComplianceCheckStrategy,
    ComplianceConfig,
    mandatory_check_types,
)
from liquidation_engine.compliance.orchestrator import (
    ComplianceOrchestrator,
    ComplianceRunResult,
    aggregate_results,
)

__all__ = [
    "CHECK_STRATEGIES",
    "ComplianceCheckStrategy",
    "ComplianceConfig",
    "ComplianceOrchestrator",
    "ComplianceRunResult",
    "aggregate_results",
    "mandatory_check_types",
]
