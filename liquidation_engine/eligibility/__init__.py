"""
Asset eligibility rules and rolling-limit tracking.
"""

from liquidation_engine.eligibility.limits import RollingLimitTracker
from liquidation_engine.eligibility.registry import (
    ELIGIBILITY_RULES,
    EligibilityContext,
    EligibilityRegistry,
)

__all__ = [
    "ELIGIBILITY_RULES",
    "EligibilityContext",
    "EligibilityRegistry",
    "RollingLimitTracker",
]
