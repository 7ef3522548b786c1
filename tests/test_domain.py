"""
Tests for domain models.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError

from liquidation_engine.domain import (
    AssetEligibility,
    ComplianceCheck,
    ComplianceCheckResult,
    ComplianceCheckType,
    Failure,
    FailureCategory,
    LiquidationRequestStatus,
    LiquidationTransaction,
    LiquidityProvider,
    MarketPriceSnapshot,
    Outcome,
    ReasonCode,
    ReviewDecision,
    RiskLevel,
    Stage,
    TransactionStatus,
    percent_of,
    quantize_amount,
    risk_level_from_score,
)
from tests.fakes import START, make_command


class TestAmounts:
    """Tests for amount precision helpers."""

    def test_quantize_to_eight_places(self) -> None:
        """Amounts carry exactly 8 fractional digits."""
        assert quantize_amount(Decimal("1.123456789")) == Decimal("1.12345679")
        assert str(quantize_amount(Decimal("2"))) == "2.00000000"

    def test_quantize_uses_bankers_rounding(self) -> None:
        """Ties round to the even digit."""
        assert quantize_amount(Decimal("0.000000025")) == Decimal("0.00000002")
        assert quantize_amount(Decimal("0.000000035")) == Decimal("0.00000004")

    def test_percent_of(self) -> None:
        """percent_of returns a quantized share."""
        assert percent_of(Decimal("64025"), Decimal("0.5")) == Decimal("320.125")


class TestRiskLevel:
    """Tests for risk banding."""

    @pytest.mark.parametrize(
        ("score", "level"),
        [
            (None, RiskLevel.LOW),
            (0, RiskLevel.LOW),
            (25, RiskLevel.LOW),
            (26, RiskLevel.MEDIUM),
            (50, RiskLevel.MEDIUM),
            (75, RiskLevel.HIGH),
            (76, RiskLevel.CRITICAL),
            (100, RiskLevel.CRITICAL),
        ],
    )
    def test_bands(self, score: int | None, level: RiskLevel) -> None:
        """Scores map onto the four bands at 25/50/75."""
        assert risk_level_from_score(score) == level

    def test_elevated(self) -> None:
        """Only High and Critical are elevated."""
        assert RiskLevel.HIGH.is_elevated
        assert RiskLevel.CRITICAL.is_elevated
        assert not RiskLevel.MEDIUM.is_elevated


class TestRequestStatus:
    """Tests for LiquidationRequestStatus helpers."""

    def test_terminal_statuses(self) -> None:
        terminal = {s for s in LiquidationRequestStatus if s.is_terminal}
        assert terminal == {
            LiquidationRequestStatus.COMPLETED,
            LiquidationRequestStatus.CANCELLED,
            LiquidationRequestStatus.FAILED,
            LiquidationRequestStatus.REJECTED,
        }

    def test_cancellable_before_execution_only(self) -> None:
        """Executing and later states cannot be cancelled."""
        assert LiquidationRequestStatus.AWAITING_LIQUIDITY_PROVIDER.is_cancellable
        assert not LiquidationRequestStatus.EXECUTING.is_cancellable
        assert not LiquidationRequestStatus.TRANSFER_IN_PROGRESS.is_cancellable
        assert not LiquidationRequestStatus.COMPLETED.is_cancellable


class TestCreateLiquidationCommand:
    """Tests for request input validation."""

    def test_symbols_upper_cased(self) -> None:
        command = make_command(asset_symbol=" btc", output_symbol="usd", destination_country="gb")
        assert command.asset_symbol == "BTC"
        assert command.output_symbol == "USD"
        assert command.destination_country == "GB"

    def test_non_positive_amount_rejected(self) -> None:
        with pytest.raises(ValidationError):
            make_command(asset_amount=Decimal("0"))

    def test_excess_precision_rejected(self) -> None:
        """More than 8 decimal places is malformed input."""
        with pytest.raises(ValidationError):
            make_command(asset_amount=Decimal("0.123456789"))

    def test_country_must_be_two_letters(self) -> None:
        with pytest.raises(ValidationError):
            make_command(destination_country="GBR")


class TestAssetEligibility:
    """Tests for AssetEligibility model."""

    def test_multi_signature_above_threshold(self) -> None:
        asset = AssetEligibility(asset_symbol="BTC", multi_signature_threshold=Decimal("2"))
        assert not asset.needs_multi_signature(Decimal("2"))
        assert asset.needs_multi_signature(Decimal("2.00000001"))

    def test_multi_signature_flag_without_threshold(self) -> None:
        """The flag alone requires multi-signature for every amount."""
        asset = AssetEligibility(asset_symbol="BTC", requires_multi_signature=True)
        assert asset.needs_multi_signature(Decimal("0.01"))

    def test_country_codes_normalized(self) -> None:
        asset = AssetEligibility(asset_symbol="eth", restricted_countries={"us ", "kp"})
        assert asset.asset_symbol == "ETH"
        assert asset.restricted_countries == {"US", "KP"}


class TestMarketPriceSnapshot:
    """Tests for snapshot validity and execution rate."""

    def _snapshot(self, **overrides) -> MarketPriceSnapshot:
        fields = {
            "asset_symbol": "BTC",
            "output_symbol": "USD",
            "price": Decimal("65000"),
            "price_source": "test",
            "estimated_slippage": Decimal("1.5"),
            "created_at": START,
            "expires_at": START + timedelta(minutes=5),
        }
        fields.update(overrides)
        return MarketPriceSnapshot(**fields)

    def test_execution_rate_net_of_slippage(self) -> None:
        assert self._snapshot().execution_rate == Decimal("64025")

    def test_usable_until_expiry(self) -> None:
        snapshot = self._snapshot()
        assert snapshot.is_usable(START + timedelta(minutes=5))
        assert not snapshot.is_usable(START + timedelta(minutes=5, seconds=1))

    def test_consumed_snapshot_not_usable(self) -> None:
        snapshot = self._snapshot(is_used_for_liquidation=True)
        assert not snapshot.is_usable(START)


class TestLiquidityProvider:
    """Tests for LiquidityProvider model."""

    def test_success_rate(self) -> None:
        provider = LiquidityProvider(name="p", successful_liquidations=3, failed_liquidations=1)
        assert provider.success_rate == 75.0

    def test_success_rate_without_history(self) -> None:
        assert LiquidityProvider(name="p").success_rate == 0.0

    def test_accepts_amount(self) -> None:
        provider = LiquidityProvider(
            name="p",
            minimum_transaction_amount=Decimal("1"),
            maximum_transaction_amount=Decimal("10"),
        )
        assert provider.accepts_amount(Decimal("5"))
        assert not provider.accepts_amount(Decimal("0.5"))
        assert not provider.accepts_amount(Decimal("11"))

    def test_negative_liquidity_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LiquidityProvider(name="p", available_liquidity=Decimal("-1"))


class TestComplianceCheck:
    """Tests for ComplianceCheck model."""

    def test_settled_when_terminal_or_overridden(self) -> None:
        check = ComplianceCheck(request_id=uuid4(), check_type=ComplianceCheckType.AML_SCREENING)
        assert not check.is_settled
        check.result = ComplianceCheckResult.REQUIRES_REVIEW
        assert not check.is_settled
        check.is_overridden = True
        assert check.is_settled

    def test_review_decision_maps_to_result(self) -> None:
        assert ReviewDecision.APPROVE.result == ComplianceCheckResult.PASSED
        assert ReviewDecision.REJECT.result == ComplianceCheckResult.FAILED


class TestLiquidationTransaction:
    """Tests for reversal eligibility."""

    def _txn(self, **overrides) -> LiquidationTransaction:
        fields = {
            "request_id": uuid4(),
            "provider_id": uuid4(),
            "snapshot_id": uuid4(),
            "status": TransactionStatus.COMPLETED,
            "asset_symbol": "BTC",
            "asset_amount": Decimal("1"),
            "output_symbol": "USD",
            "exchange_rate": Decimal("64025"),
            "market_price": Decimal("65000"),
            "gross_amount": Decimal("64025"),
            "is_reversible": True,
            "reversible_until": START + timedelta(minutes=30),
        }
        fields.update(overrides)
        return LiquidationTransaction(**fields)

    def test_can_reverse_inside_window(self) -> None:
        assert self._txn().can_reverse(START)

    def test_cannot_reverse_after_window(self) -> None:
        assert not self._txn().can_reverse(START + timedelta(minutes=31))

    def test_cannot_reverse_twice(self) -> None:
        assert not self._txn(is_reversed=True).can_reverse(START)

    def test_cannot_reverse_failed_attempt(self) -> None:
        assert not self._txn(status=TransactionStatus.FAILED).can_reverse(START)


class TestOutcome:
    """Tests for Outcome and Failure."""

    def test_success(self) -> None:
        outcome = Outcome.success(42)
        assert outcome.ok
        assert outcome.value == 42

    def test_failure_category(self) -> None:
        outcome = Outcome.fail(ReasonCode.NO_LIQUIDITY_AVAILABLE, Stage.MATCHING, "none")
        assert not outcome.ok
        assert outcome.failure.category == FailureCategory.RETRY_LATER

    def test_failure_to_dict(self) -> None:
        failure = Failure(reason_code=ReasonCode.EXECUTION_FAILED, stage=Stage.EXECUTION, message="boom")
        assert failure.to_dict() == {
            "reason_code": "ExecutionFailed",
            "stage": "execution",
            "category": "contact_support",
            "message": "boom",
        }

    def test_rejection_cannot_proceed(self) -> None:
        failure = Failure(reason_code=ReasonCode.JURISDICTION_RESTRICTED, stage=Stage.ELIGIBILITY, message="x")
        assert failure.category == FailureCategory.CANNOT_PROCEED
