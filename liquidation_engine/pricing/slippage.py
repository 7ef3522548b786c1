"""
Slippage estimation by trade size.

Larger notional values move the market more; the tiers are expressed as
(upper notional bound, slippage percent).
"""

from decimal import Decimal

SLIPPAGE_TIERS: list[tuple[Decimal, Decimal]] = [
    (Decimal("1000"), Decimal("0.1")),
    (Decimal("10000"), Decimal("0.3")),
    (Decimal("50000"), Decimal("0.8")),
    (Decimal("100000"), Decimal("1.5")),
    (Decimal("500000"), Decimal("3.0")),
    (Decimal("1000000"), Decimal("5.0")),
]
MAX_TIER_SLIPPAGE = Decimal("8.0")


def estimate_slippage_percent(notional: Decimal) -> Decimal:
    """Estimated slippage percentage for a trade of `notional` value."""
    for bound, slippage in SLIPPAGE_TIERS:
        if notional <= bound:
            return slippage
    return MAX_TIER_SLIPPAGE
