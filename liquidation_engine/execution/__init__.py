"""
Transaction execution.

Fee breakdown, bounded settlement attempts and reversals.
"""

from liquidation_engine.execution.executor import (
    ExecutionResult,
    ExecutorConfig,
    TransactionExecutor,
)
from liquidation_engine.execution.fees import FeeBreakdown, calculate_fees, gross_output

__all__ = [
    "ExecutionResult",
    "ExecutorConfig",
    "FeeBreakdown",
    "TransactionExecutor",
    "calculate_fees",
    "gross_output",
]
