"""
Exceptions for malformed input, unknown ids and collaborator faults.

Expected business outcomes (rejection, hold, no liquidity) are returned as
`Outcome` values instead; see liquidation_engine.domain.results.
"""

from liquidation_engine.domain.results import ReasonCode


class LiquidationError(Exception):
    """Base class for liquidation engine errors."""

    status_code = 400

    def __init__(self, message: str, reason_code: ReasonCode | None = None):
        super().__init__(message)
        self.reason_code = reason_code


class RequestValidationError(LiquidationError):
    """Raised when a request is malformed. No state is created."""

    status_code = 422

    def __init__(self, message: str):
        super().__init__(message, ReasonCode.VALIDATION_ERROR)


class NotFoundError(LiquidationError):
    """Raised when an entity id is unknown."""

    status_code = 404

    def __init__(self, entity: str, entity_id: object):
        super().__init__(f"{entity} {entity_id} not found", ReasonCode.NOT_FOUND)
        self.entity = entity
        self.entity_id = entity_id


class TransientProviderError(LiquidationError):
    """Raised by collaborators for retryable faults (timeouts, 5xx, throttling)."""

    status_code = 503

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message, ReasonCode.TIMEOUT)
        self.provider = provider


class PriceSourceError(TransientProviderError):
    """Raised when the price source cannot produce a price."""

    pass


class SettlementError(LiquidationError):
    """Raised by the settlement rail when a transfer or reversal fails."""

    status_code = 502

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message, ReasonCode.EXECUTION_FAILED)
        self.retryable = retryable
