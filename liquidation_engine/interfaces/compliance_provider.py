"""
ComplianceProvider interface.

Defines the contract for the external screening service that scores
KYC, AML, sanctions, PEP, illicit-address and risk checks.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from liquidation_engine.domain import ComplianceCheckResult, ComplianceCheckType


class ComplianceSubject(BaseModel):
    """Data sent to the screening provider for one check."""

    request_id: str
    user_id: str
    asset_symbol: str
    asset_amount: Decimal
    output_symbol: str
    screening_amount: Decimal
    destination_type: str
    destination_address: str | None = None
    destination_country: str
    extra: dict[str, Any] = Field(default_factory=dict)


class ProviderCheckResponse(BaseModel):
    """Screening provider's verdict for one check."""

    result: ComplianceCheckResult
    risk_score: int | None = Field(default=None, ge=0, le=100)
    provider: str = "external"
    reference: str | None = None
    failure_reason: str | None = None
    recommendations: list[str] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)


class ComplianceProvider(ABC):
    """
    Abstract base class for compliance screening providers.

    Implementations raise TransientProviderError for retryable faults.
    """

    @abstractmethod
    async def run_check(
        self,
        check_type: ComplianceCheckType,
        subject: ComplianceSubject,
    ) -> ProviderCheckResponse:
        """
        Run one screening check.

        Args:
            check_type: Which screening to run
            subject: Request and user data for the screening

        Returns:
            Provider verdict with optional risk score

        Raises:
            TransientProviderError: Retryable provider fault
        """
        pass
