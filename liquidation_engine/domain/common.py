"""
Shared domain primitives: amount precision, clock, and risk banding.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from decimal import ROUND_HALF_EVEN, Decimal
from enum import Enum

# All asset and money amounts carry 8 fractional digits
AMOUNT_PLACES = 8
AMOUNT_QUANTUM = Decimal(1).scaleb(-AMOUNT_PLACES)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(UTC)


def quantize_amount(value: Decimal | int | str) -> Decimal:
    """Round an amount to 8 fractional digits (banker's rounding)."""
    return Decimal(value).quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_EVEN)


def percent_of(amount: Decimal, percentage: Decimal) -> Decimal:
    """Return `percentage` percent of `amount`, quantized."""
    return quantize_amount(amount * percentage / Decimal(100))


class RiskLevel(str, Enum):
    """Risk tier of a request, check, or asset."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def is_elevated(self) -> bool:
        """High and Critical tiers trigger enhanced screening."""
        return self in (RiskLevel.HIGH, RiskLevel.CRITICAL)


def risk_level_from_score(score: int | None) -> RiskLevel:
    """
    Band a 0-100 risk score.

    <=25 Low, <=50 Medium, <=75 High, otherwise Critical.
    """
    if score is None or score <= 25:
        return RiskLevel.LOW
    if score <= 50:
        return RiskLevel.MEDIUM
    if score <= 75:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL
