"""
Provider ranking rules.

Each rule contributes one component of the sort key; rules are applied in
the configured order and looked up by name in RANKING_RULES.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from decimal import Decimal

from liquidation_engine.domain import LiquidityProvider


class RankingRule(ABC):
    """One provider ranking criterion. Lower keys rank first."""

    name: str

    @abstractmethod
    def key(self, provider: LiquidityProvider) -> Decimal:
        pass


class LowestFeeRule(RankingRule):
    name = "fee"

    def key(self, provider: LiquidityProvider) -> Decimal:
        return provider.fee_percentage


class HighestRatingRule(RankingRule):
    name = "rating"

    def key(self, provider: LiquidityProvider) -> Decimal:
        return -provider.rating


class FastestResponseRule(RankingRule):
    name = "response_time"

    def key(self, provider: LiquidityProvider) -> Decimal:
        return provider.average_response_time_minutes


class DeepestLiquidityRule(RankingRule):
    name = "liquidity"

    def key(self, provider: LiquidityProvider) -> Decimal:
        return -provider.available_liquidity


class BestSuccessRateRule(RankingRule):
    name = "success_rate"

    def key(self, provider: LiquidityProvider) -> Decimal:
        return -Decimal(str(provider.success_rate))


RANKING_RULES: dict[str, RankingRule] = {
    rule.name: rule
    for rule in (
        LowestFeeRule(),
        HighestRatingRule(),
        FastestResponseRule(),
        DeepestLiquidityRule(),
        BestSuccessRateRule(),
    )
}


def rank_providers(
    providers: Iterable[LiquidityProvider],
    rule_names: Sequence[str],
) -> list[LiquidityProvider]:
    """Sort providers by the named rules; provider id breaks remaining ties."""
    rules = [RANKING_RULES[name] for name in rule_names]
    return sorted(
        providers,
        key=lambda p: (*(rule.key(p) for rule in rules), str(p.id)),
    )
