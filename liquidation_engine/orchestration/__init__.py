"""
Request lifecycle: state machine, workflow orchestrator and expiry sweeps.
"""

from liquidation_engine.orchestration.orchestrator import (
    LiquidationEstimate,
    LiquidationOrchestrator,
    LiquidationStatusView,
    OrchestratorConfig,
    RequestFilter,
    RequestPage,
)
from liquidation_engine.orchestration.state_machine import (
    OVERRIDE_TRANSITIONS,
    REQUEST_STATE_TRANSITIONS,
    apply_transition,
    can_transition,
    validate_request_transition,
)
from liquidation_engine.orchestration.sweeper import ExpirySweeper, JobStatus, SweeperConfig

__all__ = [
    "ExpirySweeper",
    "JobStatus",
    "LiquidationEstimate",
    "LiquidationOrchestrator",
    "LiquidationStatusView",
    "OVERRIDE_TRANSITIONS",
    "OrchestratorConfig",
    "REQUEST_STATE_TRANSITIONS",
    "RequestFilter",
    "RequestPage",
    "SweeperConfig",
    "apply_transition",
    "can_transition",
    "validate_request_transition",
]
