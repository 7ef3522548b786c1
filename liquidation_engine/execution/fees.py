"""
Fee breakdown for a liquidation.

All fees are in the output currency and quantized to 8 places; the net
amount is derived by subtraction so gross == net + total fees exactly.
"""

from decimal import Decimal

from pydantic import BaseModel

from liquidation_engine.domain import percent_of, quantize_amount


class FeeBreakdown(BaseModel):
    """Gross output split into fees and the amount delivered to the user."""

    currency: str
    gross_amount: Decimal
    provider_fee: Decimal
    platform_fee: Decimal
    network_fee: Decimal
    total_fees: Decimal
    net_amount: Decimal

    @property
    def is_viable(self) -> bool:
        """A liquidation whose fees consume the whole output cannot settle."""
        return self.net_amount > 0


def gross_output(asset_amount: Decimal, execution_rate: Decimal) -> Decimal:
    return quantize_amount(asset_amount * execution_rate)


def calculate_fees(
    gross_amount: Decimal,
    provider_fee_percentage: Decimal,
    platform_fee_percentage: Decimal,
    network_fee: Decimal,
    currency: str,
) -> FeeBreakdown:
    """
    Split `gross_amount` into provider, platform and network fees.

    Args:
        gross_amount: asset amount times the execution rate
        provider_fee_percentage: matched provider's fee, in percent
        platform_fee_percentage: platform fee, in percent
        network_fee: delivery fee quoted by the settlement rail
        currency: output currency

    Returns:
        FeeBreakdown; check `is_viable` before settling
    """
    provider_fee = percent_of(gross_amount, provider_fee_percentage)
    platform_fee = percent_of(gross_amount, platform_fee_percentage)
    network_fee = quantize_amount(network_fee)
    total = provider_fee + platform_fee + network_fee
    return FeeBreakdown(
        currency=currency,
        gross_amount=gross_amount,
        provider_fee=provider_fee,
        platform_fee=platform_fee,
        network_fee=network_fee,
        total_fees=total,
        net_amount=gross_amount - total,
    )
