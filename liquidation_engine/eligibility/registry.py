"""
Eligibility Registry - per-asset liquidation rules.

Pure lookup and validation: no external calls. Usage totals (rolling
limits, holding start, last liquidation) are supplied by the caller.

Rules are evaluated in order:
- Asset enabled and in an eligible status
- Amount within the per-transaction range
- Destination jurisdiction not restricted / on the allow-list
- Output currency supported
- Daily and monthly rolling limits
- Holding period, lock-up and cooling-off
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from liquidation_engine.domain import (
    AssetEligibility,
    AssetEligibilityStatus,
    Clock,
    EligibilityResult,
    ReasonCode,
    UsageSnapshot,
    ValidationCheck,
    utc_now,
)
from liquidation_engine.errors import NotFoundError
from liquidation_engine.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class EligibilityContext:
    """Inputs for one eligibility evaluation."""

    amount: Decimal
    destination_country: str
    now: datetime
    usage: UsageSnapshot | None = None
    output_symbol: str | None = None


EligibilityRule = Callable[[AssetEligibility, EligibilityContext], ValidationCheck]


def _passed(rule: str, message: str = "") -> ValidationCheck:
    return ValidationCheck(rule=rule, passed=True, message=message)


def _failed(rule: str, code: ReasonCode, message: str) -> ValidationCheck:
    return ValidationCheck(rule=rule, passed=False, reason_code=code, message=message)


def check_enabled(asset: AssetEligibility, ctx: EligibilityContext) -> ValidationCheck:
    if not asset.is_enabled:
        return _failed(
            "enabled",
            ReasonCode.ASSET_DISABLED,
            f"Liquidation of {asset.asset_symbol} is currently disabled",
        )
    return _passed("enabled")


def check_status(asset: AssetEligibility, ctx: EligibilityContext) -> ValidationCheck:
    if asset.status == AssetEligibilityStatus.ELIGIBLE:
        return _passed("status")
    if asset.status == AssetEligibilityStatus.RESTRICTED:
        if ctx.destination_country in asset.allowed_countries:
            return _passed("status", f"Restricted asset allowed for {ctx.destination_country}")
        return _failed(
            "status",
            ReasonCode.ASSET_RESTRICTED,
            f"{asset.asset_symbol} is restricted and jurisdiction "
            f"{ctx.destination_country} is not on its allow-list",
        )
    return _failed(
        "status",
        ReasonCode.NOT_ELIGIBLE,
        f"{asset.asset_symbol} is not eligible for liquidation (status {asset.status.value})",
    )


def check_amount(asset: AssetEligibility, ctx: EligibilityContext) -> ValidationCheck:
    if ctx.amount < asset.minimum_liquidation_amount:
        return _failed(
            "amount",
            ReasonCode.AMOUNT_BELOW_MINIMUM,
            f"Amount {ctx.amount} is below the minimum {asset.minimum_liquidation_amount}",
        )
    maximum = asset.maximum_liquidation_amount
    if maximum is not None and ctx.amount > maximum:
        return _failed(
            "amount",
            ReasonCode.AMOUNT_ABOVE_MAXIMUM,
            f"Amount {ctx.amount} exceeds the maximum {maximum}",
        )
    return _passed("amount")


def check_jurisdiction(asset: AssetEligibility, ctx: EligibilityContext) -> ValidationCheck:
    country = ctx.destination_country
    if country in asset.restricted_countries:
        return _failed(
            "jurisdiction",
            ReasonCode.JURISDICTION_RESTRICTED,
            f"Liquidation of {asset.asset_symbol} is restricted in jurisdiction {country}",
        )
    if asset.allowed_countries and country not in asset.allowed_countries:
        return _failed(
            "jurisdiction",
            ReasonCode.JURISDICTION_RESTRICTED,
            f"Jurisdiction {country} is not on the allow-list for {asset.asset_symbol}",
        )
    return _passed("jurisdiction")


def check_output_currency(asset: AssetEligibility, ctx: EligibilityContext) -> ValidationCheck:
    if ctx.output_symbol is None:
        return _passed("output_currency", "No output currency given")
    if ctx.output_symbol not in asset.supported_output_currencies:
        return _failed(
            "output_currency",
            ReasonCode.OUTPUT_NOT_SUPPORTED,
            f"{asset.asset_symbol} cannot be liquidated into {ctx.output_symbol}",
        )
    return _passed("output_currency")


def check_daily_limit(asset: AssetEligibility, ctx: EligibilityContext) -> ValidationCheck:
    limit = asset.daily_liquidation_limit
    if limit is None or ctx.usage is None:
        return _passed("daily_limit")
    used = ctx.usage.daily_total + ctx.usage.pending_total
    if used + ctx.amount > limit:
        return _failed(
            "daily_limit",
            ReasonCode.DAILY_LIMIT_EXCEEDED,
            f"Daily limit {limit} exceeded: {used} already used today",
        )
    return _passed("daily_limit")


def check_monthly_limit(asset: AssetEligibility, ctx: EligibilityContext) -> ValidationCheck:
    limit = asset.monthly_liquidation_limit
    if limit is None or ctx.usage is None:
        return _passed("monthly_limit")
    used = ctx.usage.monthly_total + ctx.usage.pending_total
    if used + ctx.amount > limit:
        return _failed(
            "monthly_limit",
            ReasonCode.MONTHLY_LIMIT_EXCEEDED,
            f"Monthly limit {limit} exceeded: {used} already used this month",
        )
    return _passed("monthly_limit")


def check_holding_period(asset: AssetEligibility, ctx: EligibilityContext) -> ValidationCheck:
    acquired_at = ctx.usage.acquired_at if ctx.usage else None
    if asset.minimum_holding_period_days == 0 or acquired_at is None:
        return _passed("holding_period")
    eligible_at = acquired_at + timedelta(days=asset.minimum_holding_period_days)
    if ctx.now < eligible_at:
        return _failed(
            "holding_period",
            ReasonCode.HOLDING_PERIOD_NOT_MET,
            f"Minimum holding period of {asset.minimum_holding_period_days} days "
            f"ends at {eligible_at.isoformat()}",
        )
    return _passed("holding_period")


def check_lockup(asset: AssetEligibility, ctx: EligibilityContext) -> ValidationCheck:
    acquired_at = ctx.usage.acquired_at if ctx.usage else None
    if asset.lockup_period_days == 0 or acquired_at is None:
        return _passed("lockup")
    unlock_at = acquired_at + timedelta(days=asset.lockup_period_days)
    if ctx.now < unlock_at:
        return _failed(
            "lockup",
            ReasonCode.LOCKUP_ACTIVE,
            f"Asset is locked up until {unlock_at.isoformat()}",
        )
    return _passed("lockup")


def check_cooling_off(asset: AssetEligibility, ctx: EligibilityContext) -> ValidationCheck:
    last = ctx.usage.last_liquidation_at if ctx.usage else None
    if asset.cooling_off_period_hours == 0 or last is None:
        return _passed("cooling_off")
    available_at = last + timedelta(hours=asset.cooling_off_period_hours)
    if ctx.now < available_at:
        return _failed(
            "cooling_off",
            ReasonCode.COOLING_OFF_ACTIVE,
            f"Cooling-off period of {asset.cooling_off_period_hours}h "
            f"ends at {available_at.isoformat()}",
        )
    return _passed("cooling_off")


ELIGIBILITY_RULES: list[EligibilityRule] = [
    check_enabled,
    check_status,
    check_amount,
    check_jurisdiction,
    check_output_currency,
    check_daily_limit,
    check_monthly_limit,
    check_holding_period,
    check_lockup,
    check_cooling_off,
]


class EligibilityRegistry:
    """
    Registry of per-asset liquidation rules.

    Usage:
        registry = EligibilityRegistry([AssetEligibility(asset_symbol="BTC")])
        result = registry.check_eligibility("BTC", Decimal("1"), "GB")
        if not result.eligible:
            print(result.reason_code, result.reason)
    """

    def __init__(
        self,
        assets: Iterable[AssetEligibility] = (),
        clock: Clock = utc_now,
    ):
        self._assets: dict[str, AssetEligibility] = {}
        self._clock = clock
        for asset in assets:
            self.configure_asset(asset)

    # =========================================================================
    # Administration
    # =========================================================================

    def configure_asset(self, rules: AssetEligibility) -> AssetEligibility:
        """Create or replace the rules for an asset."""
        now = self._clock()
        existing = self._assets.get(rules.asset_symbol)
        stored = rules.model_copy(
            deep=True,
            update={
                "created_at": existing.created_at if existing else now,
                "updated_at": now,
            },
        )
        self._assets[stored.asset_symbol] = stored
        logger.info(
            "Configured asset %s: status=%s enabled=%s",
            stored.asset_symbol,
            stored.status.value,
            stored.is_enabled,
        )
        return stored.model_copy(deep=True)

    def get_asset(self, asset_symbol: str) -> AssetEligibility | None:
        asset = self._assets.get(asset_symbol.upper())
        return asset.model_copy(deep=True) if asset else None

    def require_asset(self, asset_symbol: str) -> AssetEligibility:
        asset = self.get_asset(asset_symbol)
        if asset is None:
            raise NotFoundError("AssetEligibility", asset_symbol.upper())
        return asset

    def list_assets(self, status: AssetEligibilityStatus | None = None) -> list[AssetEligibility]:
        assets = sorted(self._assets.values(), key=lambda a: a.asset_symbol)
        return [a.model_copy(deep=True) for a in assets if status is None or a.status == status]

    def update_asset_status(
        self,
        asset_symbol: str,
        status: AssetEligibilityStatus,
        notes: str | None = None,
    ) -> AssetEligibility:
        asset = self.require_asset(asset_symbol)
        asset.status = status
        if notes is not None:
            asset.notes = notes
        return self.configure_asset(asset)

    def set_asset_enabled(self, asset_symbol: str, enabled: bool) -> AssetEligibility:
        asset = self.require_asset(asset_symbol)
        asset.is_enabled = enabled
        return self.configure_asset(asset)

    def get_supported_output_currencies(self, asset_symbol: str) -> set[str]:
        asset = self.get_asset(asset_symbol)
        return set(asset.supported_output_currencies) if asset else set()

    def is_restricted_in_country(self, asset_symbol: str, country: str) -> bool:
        asset = self.get_asset(asset_symbol)
        if asset is None:
            return True
        ctx = EligibilityContext(amount=Decimal(0), destination_country=country.upper(), now=self._clock())
        return not check_jurisdiction(asset, ctx).passed

    # =========================================================================
    # Eligibility
    # =========================================================================

    def check_eligibility(
        self,
        asset_symbol: str,
        amount: Decimal,
        destination_country: str,
        *,
        usage: UsageSnapshot | None = None,
        output_symbol: str | None = None,
        now: datetime | None = None,
    ) -> EligibilityResult:
        """
        Decide whether a liquidation may proceed.

        Stops at the first failing rule; the result carries that rule's
        reason code and message.
        """
        return self._evaluate(
            asset_symbol,
            amount,
            destination_country,
            usage=usage,
            output_symbol=output_symbol,
            now=now,
            stop_on_failure=True,
        )

    def validate_detailed(
        self,
        asset_symbol: str,
        amount: Decimal,
        destination_country: str,
        *,
        usage: UsageSnapshot | None = None,
        output_symbol: str | None = None,
        now: datetime | None = None,
    ) -> EligibilityResult:
        """Evaluate every rule and return the full breakdown."""
        return self._evaluate(
            asset_symbol,
            amount,
            destination_country,
            usage=usage,
            output_symbol=output_symbol,
            now=now,
            stop_on_failure=False,
        )

    def _evaluate(
        self,
        asset_symbol: str,
        amount: Decimal,
        destination_country: str,
        *,
        usage: UsageSnapshot | None,
        output_symbol: str | None,
        now: datetime | None,
        stop_on_failure: bool,
    ) -> EligibilityResult:
        symbol = asset_symbol.upper()
        asset = self._assets.get(symbol)
        if asset is None:
            return EligibilityResult(
                eligible=False,
                asset_symbol=symbol,
                reason_code=ReasonCode.ASSET_NOT_CONFIGURED,
                reason=f"No liquidation rules configured for {symbol}",
                validation_results=[
                    _failed("configured", ReasonCode.ASSET_NOT_CONFIGURED, f"{symbol} is not configured")
                ],
            )

        ctx = EligibilityContext(
            amount=amount,
            destination_country=destination_country.upper(),
            now=now or self._clock(),
            usage=usage,
            output_symbol=output_symbol.upper() if output_symbol else None,
        )

        results: list[ValidationCheck] = []
        first_failure: ValidationCheck | None = None
        for rule in ELIGIBILITY_RULES:
            check = rule(asset, ctx)
            results.append(check)
            if not check.passed and first_failure is None:
                first_failure = check
                if stop_on_failure:
                    break

        if first_failure is not None:
            logger.info(
                "Eligibility failed for %s %s: %s",
                amount,
                symbol,
                first_failure.message,
            )

        return EligibilityResult(
            eligible=first_failure is None,
            asset_symbol=symbol,
            reason_code=first_failure.reason_code if first_failure else None,
            reason=first_failure.message if first_failure else None,
            requires_multi_signature=asset.needs_multi_signature(amount),
            requires_kyc=asset.requires_kyc,
            risk_level=asset.risk_level,
            validation_results=results,
        )
