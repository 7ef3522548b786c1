"""
Compliance check strategies.

Each check type is a strategy that decides whether it applies to a request,
what subject data the screening provider receives, and how the provider's
response is interpreted. Strategies are selected through CHECK_STRATEGIES.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from pydantic import BaseModel, Field

from liquidation_engine.domain import (
    ComplianceCheckResult,
    ComplianceCheckType,
    DestinationType,
    LiquidationRequest,
)
from liquidation_engine.interfaces import ComplianceSubject, ProviderCheckResponse

PRIVACY_COINS = frozenset({"XMR", "ZEC", "DASH"})
PRIVACY_COIN_RISK_POINTS = 25

# (amount above, risk points added)
AMOUNT_RISK_POINTS: list[tuple[Decimal, int]] = [
    (Decimal("1000000"), 30),
    (Decimal("500000"), 20),
    (Decimal("100000"), 10),
    (Decimal("50000"), 5),
]


class ComplianceConfig(BaseModel):
    """Compliance policy."""

    max_retries: int = Field(default=3, ge=1)
    timeout_s: float = Field(default=30.0, gt=0)
    retry_base_delay_s: float = Field(default=1.0, ge=0)
    enhanced_screening_threshold: Decimal = Field(default=Decimal("10000"), ge=0)
    review_risk_score: int = Field(default=75, ge=0, le=100)
    review_window_hours: int = Field(default=24, ge=1)


class ComplianceCheckStrategy(ABC):
    """One compliance check type."""

    check_type: ComplianceCheckType

    @abstractmethod
    def applies_to(self, request: LiquidationRequest, config: ComplianceConfig) -> bool:
        """Whether this check is mandatory for the request."""
        pass

    def build_subject(self, request: LiquidationRequest) -> ComplianceSubject:
        return ComplianceSubject(
            request_id=str(request.id),
            user_id=request.user_id,
            asset_symbol=request.asset_symbol,
            asset_amount=request.asset_amount,
            output_symbol=request.output_symbol,
            screening_amount=request.screening_amount,
            destination_type=request.destination_type.value,
            destination_country=request.destination_country,
        )

    def interpret(
        self,
        request: LiquidationRequest,
        response: ProviderCheckResponse,
        config: ComplianceConfig,
    ) -> tuple[ComplianceCheckResult, int | None]:
        """
        Map the provider response to (result, risk score).

        A pass with a risk score above the review threshold is held for review.
        """
        result = response.result
        score = response.risk_score
        if (
            result == ComplianceCheckResult.PASSED
            and score is not None
            and score > config.review_risk_score
        ):
            result = ComplianceCheckResult.REQUIRES_REVIEW
        return result, score


class KycVerificationStrategy(ComplianceCheckStrategy):
    check_type = ComplianceCheckType.KYC_VERIFICATION

    def applies_to(self, request: LiquidationRequest, config: ComplianceConfig) -> bool:
        return True


class AmlScreeningStrategy(ComplianceCheckStrategy):
    check_type = ComplianceCheckType.AML_SCREENING

    def applies_to(self, request: LiquidationRequest, config: ComplianceConfig) -> bool:
        return True


class SanctionsScreeningStrategy(ComplianceCheckStrategy):
    check_type = ComplianceCheckType.SANCTIONS_SCREENING

    def applies_to(self, request: LiquidationRequest, config: ComplianceConfig) -> bool:
        return request.screening_amount > config.enhanced_screening_threshold


class PepScreeningStrategy(ComplianceCheckStrategy):
    check_type = ComplianceCheckType.PEP_SCREENING

    def applies_to(self, request: LiquidationRequest, config: ComplianceConfig) -> bool:
        return request.screening_amount > config.enhanced_screening_threshold


class IllicitAddressScreeningStrategy(ComplianceCheckStrategy):
    check_type = ComplianceCheckType.ILLICIT_ADDRESS_SCREENING

    def applies_to(self, request: LiquidationRequest, config: ComplianceConfig) -> bool:
        return request.destination_type == DestinationType.WALLET_ADDRESS

    def build_subject(self, request: LiquidationRequest) -> ComplianceSubject:
        subject = super().build_subject(request)
        subject.destination_address = request.destination_address
        return subject


class RiskAssessmentStrategy(ComplianceCheckStrategy):
    """Combines the provider score with asset and size risk factors."""

    check_type = ComplianceCheckType.RISK_ASSESSMENT

    def applies_to(self, request: LiquidationRequest, config: ComplianceConfig) -> bool:
        return request.risk_level.is_elevated

    def interpret(
        self,
        request: LiquidationRequest,
        response: ProviderCheckResponse,
        config: ComplianceConfig,
    ) -> tuple[ComplianceCheckResult, int | None]:
        score = response.risk_score or 0
        if request.asset_symbol in PRIVACY_COINS:
            score += PRIVACY_COIN_RISK_POINTS
        for threshold, points in AMOUNT_RISK_POINTS:
            if request.screening_amount > threshold:
                score += points
                break
        score = min(score, 100)

        if response.result == ComplianceCheckResult.FAILED:
            return ComplianceCheckResult.FAILED, score
        if score > config.review_risk_score:
            return ComplianceCheckResult.REQUIRES_REVIEW, score
        return response.result, score


CHECK_STRATEGIES: dict[ComplianceCheckType, ComplianceCheckStrategy] = {
    strategy.check_type: strategy
    for strategy in (
        KycVerificationStrategy(),
        AmlScreeningStrategy(),
        SanctionsScreeningStrategy(),
        PepScreeningStrategy(),
        IllicitAddressScreeningStrategy(),
        RiskAssessmentStrategy(),
    )
}


def mandatory_check_types(
    request: LiquidationRequest,
    config: ComplianceConfig,
) -> list[ComplianceCheckType]:
    """Check types the request must clear, in declaration order."""
    return [
        check_type
        for check_type in ComplianceCheckType
        if CHECK_STRATEGIES[check_type].applies_to(request, config)
    ]
