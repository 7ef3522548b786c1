"""
Liquidity provider matching and administration.
"""

from liquidation_engine.matching.matcher import (
    LiquidityMatcher,
    MatcherConfig,
    ProviderMatch,
    is_candidate,
)
from liquidation_engine.matching.providers import (
    PROVIDER_STATUS_TRANSITIONS,
    ProviderRegistration,
    ProviderRegistry,
    validate_provider_transition,
)
from liquidation_engine.matching.ranking import RANKING_RULES, RankingRule, rank_providers

__all__ = [
    "LiquidityMatcher",
    "MatcherConfig",
    "PROVIDER_STATUS_TRANSITIONS",
    "ProviderMatch",
    "ProviderRegistration",
    "ProviderRegistry",
    "RANKING_RULES",
    "RankingRule",
    "is_candidate",
    "rank_providers",
    "validate_provider_transition",
]
