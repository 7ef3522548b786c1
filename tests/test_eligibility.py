"""
Tests for the eligibility registry and rolling-limit tracker.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from liquidation_engine.domain import (
    AssetEligibility,
    AssetEligibilityStatus,
    FailureCategory,
    ReasonCode,
    RiskLevel,
    UsageSnapshot,
)
from liquidation_engine.domain.results import category_for
from liquidation_engine.eligibility import ELIGIBILITY_RULES, EligibilityRegistry, RollingLimitTracker
from liquidation_engine.errors import NotFoundError
from tests.fakes import START, FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(clock: FakeClock) -> EligibilityRegistry:
    return EligibilityRegistry(
        [
            AssetEligibility(
                asset_symbol="BTC",
                minimum_liquidation_amount=Decimal("0.001"),
                maximum_liquidation_amount=Decimal("100"),
                daily_liquidation_limit=Decimal("10"),
                monthly_liquidation_limit=Decimal("50"),
                restricted_countries={"KP"},
                multi_signature_threshold=Decimal("5"),
                risk_level=RiskLevel.MEDIUM,
            ),
        ],
        clock=clock,
    )


class TestAssetAdministration:
    """Tests for configuring assets."""

    def test_configure_and_get(self, registry: EligibilityRegistry) -> None:
        asset = registry.get_asset("btc")
        assert asset is not None
        assert asset.asset_symbol == "BTC"

    def test_unknown_asset(self, registry: EligibilityRegistry) -> None:
        assert registry.get_asset("DOGE") is None
        with pytest.raises(NotFoundError):
            registry.require_asset("DOGE")

    def test_reconfigure_keeps_created_at(self, registry: EligibilityRegistry, clock: FakeClock) -> None:
        """Replacing rules keeps the original creation time."""
        created_at = registry.require_asset("BTC").created_at
        clock.advance(hours=1)
        updated = registry.configure_asset(AssetEligibility(asset_symbol="BTC"))
        assert updated.created_at == created_at
        assert updated.updated_at == clock()

    def test_update_status(self, registry: EligibilityRegistry) -> None:
        asset = registry.update_asset_status("BTC", AssetEligibilityStatus.UNDER_REVIEW, notes="audit")
        assert asset.status == AssetEligibilityStatus.UNDER_REVIEW
        assert asset.notes == "audit"

    def test_list_by_status(self, registry: EligibilityRegistry) -> None:
        registry.configure_asset(AssetEligibility(asset_symbol="XMR", status=AssetEligibilityStatus.NOT_ELIGIBLE))
        assert [a.asset_symbol for a in registry.list_assets()] == ["BTC", "XMR"]
        eligible = registry.list_assets(AssetEligibilityStatus.ELIGIBLE)
        assert [a.asset_symbol for a in eligible] == ["BTC"]

    def test_stored_rules_not_aliased(self, registry: EligibilityRegistry) -> None:
        """Mutating a returned copy does not change the registry."""
        asset = registry.require_asset("BTC")
        asset.is_enabled = False
        assert registry.require_asset("BTC").is_enabled

    def test_restricted_in_country(self, registry: EligibilityRegistry) -> None:
        assert registry.is_restricted_in_country("BTC", "kp")
        assert not registry.is_restricted_in_country("BTC", "GB")
        assert registry.is_restricted_in_country("DOGE", "GB")


class TestCheckEligibility:
    """Tests for rule evaluation."""

    def test_eligible(self, registry: EligibilityRegistry) -> None:
        result = registry.check_eligibility("BTC", Decimal("1"), "GB", output_symbol="USD")
        assert result.eligible
        assert result.reason_code is None
        assert result.risk_level == RiskLevel.MEDIUM
        assert not result.requires_multi_signature

    def test_not_configured(self, registry: EligibilityRegistry) -> None:
        result = registry.check_eligibility("DOGE", Decimal("1"), "GB")
        assert not result.eligible
        assert result.reason_code == ReasonCode.ASSET_NOT_CONFIGURED

    def test_disabled(self, registry: EligibilityRegistry) -> None:
        registry.set_asset_enabled("BTC", False)
        result = registry.check_eligibility("BTC", Decimal("1"), "GB")
        assert result.reason_code == ReasonCode.ASSET_DISABLED

    @pytest.mark.parametrize(
        "status",
        [AssetEligibilityStatus.NOT_ELIGIBLE, AssetEligibilityStatus.UNDER_REVIEW],
    )
    def test_ineligible_status(self, registry: EligibilityRegistry, status: AssetEligibilityStatus) -> None:
        registry.update_asset_status("BTC", status)
        result = registry.check_eligibility("BTC", Decimal("1"), "GB")
        assert result.reason_code == ReasonCode.NOT_ELIGIBLE

    def test_restricted_status_needs_allow_list(self, registry: EligibilityRegistry) -> None:
        """A Restricted asset passes only for allow-listed jurisdictions."""
        asset = registry.require_asset("BTC")
        asset.status = AssetEligibilityStatus.RESTRICTED
        asset.allowed_countries = {"CH"}
        registry.configure_asset(asset)

        assert registry.check_eligibility("BTC", Decimal("1"), "CH").eligible
        result = registry.check_eligibility("BTC", Decimal("1"), "GB")
        assert result.reason_code == ReasonCode.ASSET_RESTRICTED
        assert "GB" in result.reason
        assert category_for(result.reason_code) == FailureCategory.CANNOT_PROCEED

    def test_amount_below_minimum(self, registry: EligibilityRegistry) -> None:
        result = registry.check_eligibility("BTC", Decimal("0.0001"), "GB")
        assert result.reason_code == ReasonCode.AMOUNT_BELOW_MINIMUM

    def test_amount_above_maximum(self, registry: EligibilityRegistry) -> None:
        result = registry.check_eligibility("BTC", Decimal("101"), "GB")
        assert result.reason_code == ReasonCode.AMOUNT_ABOVE_MAXIMUM

    def test_restricted_country(self, registry: EligibilityRegistry) -> None:
        result = registry.check_eligibility("BTC", Decimal("1"), "KP")
        assert result.reason_code == ReasonCode.JURISDICTION_RESTRICTED

    def test_output_not_supported(self, registry: EligibilityRegistry) -> None:
        result = registry.check_eligibility("BTC", Decimal("1"), "GB", output_symbol="JPY")
        assert result.reason_code == ReasonCode.OUTPUT_NOT_SUPPORTED

    def test_daily_limit_includes_pending(self, registry: EligibilityRegistry) -> None:
        usage = UsageSnapshot(daily_total=Decimal("6"), pending_total=Decimal("3"))
        assert registry.check_eligibility("BTC", Decimal("1"), "GB", usage=usage).eligible
        result = registry.check_eligibility("BTC", Decimal("1.5"), "GB", usage=usage)
        assert result.reason_code == ReasonCode.DAILY_LIMIT_EXCEEDED

    def test_monthly_limit(self, registry: EligibilityRegistry) -> None:
        usage = UsageSnapshot(daily_total=Decimal("0"), monthly_total=Decimal("49.5"))
        result = registry.check_eligibility("BTC", Decimal("1"), "GB", usage=usage)
        assert result.reason_code == ReasonCode.MONTHLY_LIMIT_EXCEEDED

    def test_holding_period(self, registry: EligibilityRegistry) -> None:
        asset = registry.require_asset("BTC")
        asset.minimum_holding_period_days = 30
        registry.configure_asset(asset)

        recent = UsageSnapshot(acquired_at=START - timedelta(days=10))
        result = registry.check_eligibility("BTC", Decimal("1"), "GB", usage=recent)
        assert result.reason_code == ReasonCode.HOLDING_PERIOD_NOT_MET

        old = UsageSnapshot(acquired_at=START - timedelta(days=31))
        assert registry.check_eligibility("BTC", Decimal("1"), "GB", usage=old).eligible

    def test_lockup(self, registry: EligibilityRegistry) -> None:
        asset = registry.require_asset("BTC")
        asset.lockup_period_days = 90
        registry.configure_asset(asset)
        usage = UsageSnapshot(acquired_at=START - timedelta(days=60))
        result = registry.check_eligibility("BTC", Decimal("1"), "GB", usage=usage)
        assert result.reason_code == ReasonCode.LOCKUP_ACTIVE

    def test_cooling_off(self, registry: EligibilityRegistry) -> None:
        asset = registry.require_asset("BTC")
        asset.cooling_off_period_hours = 24
        registry.configure_asset(asset)
        usage = UsageSnapshot(last_liquidation_at=START - timedelta(hours=2))
        result = registry.check_eligibility("BTC", Decimal("1"), "GB", usage=usage)
        assert result.reason_code == ReasonCode.COOLING_OFF_ACTIVE

    def test_requires_multi_signature_above_threshold(self, registry: EligibilityRegistry) -> None:
        result = registry.check_eligibility("BTC", Decimal("6"), "GB")
        assert result.eligible
        assert result.requires_multi_signature

    def test_first_failure_wins(self, registry: EligibilityRegistry) -> None:
        """Evaluation stops at the first failing rule."""
        registry.set_asset_enabled("BTC", False)
        result = registry.check_eligibility("BTC", Decimal("1000"), "KP")
        assert result.reason_code == ReasonCode.ASSET_DISABLED
        assert len(result.validation_results) == 1

    def test_validate_detailed_evaluates_every_rule(self, registry: EligibilityRegistry) -> None:
        result = registry.validate_detailed("BTC", Decimal("1000"), "KP", output_symbol="USD")
        assert not result.eligible
        assert result.reason_code == ReasonCode.AMOUNT_ABOVE_MAXIMUM
        assert len(result.validation_results) == len(ELIGIBILITY_RULES)
        failed = {c.rule for c in result.validation_results if not c.passed}
        assert failed == {"amount", "jurisdiction"}


class TestRollingLimitTracker:
    """Tests for in-flight usage reservations."""

    def _check(self, registry: EligibilityRegistry, amount: Decimal):
        return lambda usage: registry.check_eligibility("BTC", amount, "GB", usage=usage)

    @pytest.mark.asyncio
    async def test_reserve_and_release(self, registry: EligibilityRegistry) -> None:
        tracker = RollingLimitTracker()
        request_id = uuid4()
        result = await tracker.check_and_reserve(
            "u1", "BTC", request_id, Decimal("4"), UsageSnapshot(), self._check(registry, Decimal("4"))
        )
        assert result.eligible
        assert tracker.pending_total("u1", "BTC") == Decimal("4")

        assert await tracker.release("u1", "BTC", request_id)
        assert tracker.pending_total("u1", "BTC") == Decimal("0")
        assert not await tracker.release("u1", "BTC", request_id)
        assert tracker._pending == {}

    @pytest.mark.asyncio
    async def test_failed_check_reserves_nothing(self, registry: EligibilityRegistry) -> None:
        tracker = RollingLimitTracker()
        result = await tracker.check_and_reserve(
            "u1", "BTC", uuid4(), Decimal("11"), UsageSnapshot(), self._check(registry, Decimal("11"))
        )
        assert result.reason_code == ReasonCode.DAILY_LIMIT_EXCEEDED
        assert tracker.pending_total("u1", "BTC") == Decimal("0")
        assert tracker._pending == {}

    @pytest.mark.asyncio
    async def test_concurrent_requests_cannot_both_pass_limit(self, registry: EligibilityRegistry) -> None:
        """Two 6 BTC requests against a 10 BTC daily limit: exactly one passes."""
        tracker = RollingLimitTracker()
        amount = Decimal("6")
        results = await asyncio.gather(
            *[
                tracker.check_and_reserve(
                    "u1", "BTC", uuid4(), amount, UsageSnapshot(), self._check(registry, amount)
                )
                for _ in range(2)
            ]
        )
        assert sorted(r.eligible for r in results) == [False, True]
        assert tracker.pending_total("u1", "BTC") == amount

    @pytest.mark.asyncio
    async def test_same_request_not_double_counted(self, registry: EligibilityRegistry) -> None:
        """Re-checking a request ignores its own pending amount."""
        tracker = RollingLimitTracker()
        request_id = uuid4()
        amount = Decimal("8")
        for _ in range(2):
            result = await tracker.check_and_reserve(
                "u1", "BTC", request_id, amount, UsageSnapshot(), self._check(registry, amount)
            )
            assert result.eligible
        assert tracker.pending_total("u1", "BTC") == amount

    @pytest.mark.asyncio
    async def test_users_tracked_separately(self, registry: EligibilityRegistry) -> None:
        tracker = RollingLimitTracker()
        amount = Decimal("9")
        for user in ("u1", "u2"):
            result = await tracker.check_and_reserve(
                user, "BTC", uuid4(), amount, UsageSnapshot(), self._check(registry, amount)
            )
            assert result.eligible
