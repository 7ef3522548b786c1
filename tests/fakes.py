"""
Test doubles and builders shared across the suite.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

from liquidation_engine.adapters import (
    InMemoryLedgerService,
    SimulatedComplianceProvider,
    SimulatedPriceSource,
    SimulatedSettlementRail,
)
from liquidation_engine.audit import AuditLedger
from liquidation_engine.config import Settings
from liquidation_engine.domain import (
    AssetEligibility,
    CreateLiquidationCommand,
    DestinationType,
    LiquidityProvider,
    OutputType,
    ProviderStatus,
)
from liquidation_engine.eligibility import EligibilityRegistry
from liquidation_engine.engine import LiquidationEngine, build_engine
from liquidation_engine.runtime.event_bus import EventBus

USER_ID = "user-1"
START = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def default_assets() -> list[AssetEligibility]:
    return [
        AssetEligibility(
            asset_symbol="BTC",
            asset_name="Bitcoin",
            minimum_liquidation_amount=Decimal("0.001"),
            maximum_liquidation_amount=Decimal("100"),
            multi_signature_threshold=Decimal("2"),
        ),
        AssetEligibility(
            asset_symbol="ETH",
            asset_name="Ether",
            minimum_liquidation_amount=Decimal("0.01"),
        ),
    ]


def make_provider(**overrides: Any) -> LiquidityProvider:
    """An active provider funding BTC and ETH."""
    fields: dict[str, Any] = {
        "name": "Alpha Liquidity",
        "status": ProviderStatus.ACTIVE,
        "supported_assets": {"BTC", "ETH"},
        "fee_percentage": Decimal("0.5"),
        "available_liquidity": Decimal("100"),
        "rating": Decimal("4.5"),
        "average_response_time_minutes": Decimal("5"),
    }
    fields.update(overrides)
    return LiquidityProvider(**fields)


def make_command(**overrides: Any) -> CreateLiquidationCommand:
    """A 1 BTC -> USD bank-account liquidation."""
    fields: dict[str, Any] = {
        "user_id": USER_ID,
        "asset_symbol": "BTC",
        "asset_amount": Decimal("1"),
        "output_type": OutputType.FIAT,
        "output_symbol": "USD",
        "destination_type": DestinationType.BANK_ACCOUNT,
        "destination_address": "GB29NWBK60161331926819",
        "destination_country": "GB",
    }
    fields.update(overrides)
    return CreateLiquidationCommand(**fields)


def make_settings(**overrides: Any) -> Settings:
    fields: dict[str, Any] = {"audit_enabled": False, "retry_base_delay_s": 0}
    fields.update(overrides)
    return Settings(**fields)


def build_test_engine(
    settings: Settings | None = None,
    *,
    clock: FakeClock | None = None,
    providers: list[LiquidityProvider] | None = None,
    assets: list[AssetEligibility] | None = None,
    holdings: dict[str, Decimal] | None = None,
    price_source: SimulatedPriceSource | None = None,
    compliance_provider: SimulatedComplianceProvider | None = None,
    audit: AuditLedger | None = None,
) -> LiquidationEngine:
    """
    Engine on simulated collaborators with seeded assets, one provider and
    USER_ID holding 50 BTC and 500 ETH.
    """
    clock = clock or FakeClock()
    engine = build_engine(
        settings or make_settings(),
        price_source=price_source or SimulatedPriceSource(),
        compliance_provider=compliance_provider or SimulatedComplianceProvider(),
        rail=SimulatedSettlementRail(),
        ledger=InMemoryLedgerService(),
        registry=EligibilityRegistry(default_assets() if assets is None else assets, clock=clock),
        clock=clock,
        event_bus=EventBus(),
        audit=audit or AuditLedger(),
    )
    for provider in [make_provider()] if providers is None else providers:
        engine.repos.providers._items[provider.id] = provider

    acquired_at = clock() - timedelta(days=365)
    for symbol, balance in (holdings or {"BTC": Decimal("50"), "ETH": Decimal("500")}).items():
        engine.ledger.set_holding(USER_ID, symbol, balance, acquired_at=acquired_at)
    return engine
