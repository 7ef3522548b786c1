"""
Liquidation request state machine.

The happy path runs Pending through Completed; Cancelled, Failed and
Rejected are reachable from every non-terminal state. Terminal states have
no outgoing edges except operator overrides listed in OVERRIDE_TRANSITIONS.
"""

from datetime import datetime

from liquidation_engine.domain import (
    LiquidationRequest,
    LiquidationRequestStatus,
    ReasonCode,
    StatusTransition,
)

S = LiquidationRequestStatus

_EXITS = {S.CANCELLED, S.FAILED, S.REJECTED}

# Valid request state transitions
REQUEST_STATE_TRANSITIONS: dict[LiquidationRequestStatus, set[LiquidationRequestStatus]] = {
    S.PENDING: {S.KYC_VERIFICATION_IN_PROGRESS} | _EXITS,
    S.KYC_VERIFICATION_IN_PROGRESS: {S.ASSET_VERIFICATION_IN_PROGRESS} | _EXITS,
    S.ASSET_VERIFICATION_IN_PROGRESS: {S.COMPLIANCE_CHECK_IN_PROGRESS} | _EXITS,
    S.COMPLIANCE_CHECK_IN_PROGRESS: {S.AWAITING_LIQUIDITY_PROVIDER} | _EXITS,
    S.AWAITING_LIQUIDITY_PROVIDER: {S.EXECUTING} | _EXITS,
    S.EXECUTING: {S.TRANSFER_IN_PROGRESS} | _EXITS,
    S.TRANSFER_IN_PROGRESS: {S.COMPLETED} | _EXITS,
    # Terminal states have no valid transitions
    S.COMPLETED: set(),
    S.CANCELLED: set(),
    S.FAILED: set(),
    S.REJECTED: set(),
}

# Operator-only transitions out of terminal states
OVERRIDE_TRANSITIONS: set[tuple[LiquidationRequestStatus, LiquidationRequestStatus]] = {
    (S.COMPLETED, S.CANCELLED),
}


def validate_request_transition(
    from_status: LiquidationRequestStatus,
    to_status: LiquidationRequestStatus,
) -> bool:
    """
    Validate if a state transition is allowed.

    Args:
        from_status: Current request status
        to_status: Proposed new status

    Returns:
        True if transition is valid, False otherwise.
    """
    valid_next = REQUEST_STATE_TRANSITIONS.get(from_status, set())
    return to_status in valid_next


def can_transition(
    from_status: LiquidationRequestStatus,
    to_status: LiquidationRequestStatus,
    override_by: str | None = None,
) -> bool:
    if validate_request_transition(from_status, to_status):
        return True
    return override_by is not None and (from_status, to_status) in OVERRIDE_TRANSITIONS


def apply_transition(
    request: LiquidationRequest,
    to_status: LiquidationRequestStatus,
    reason: str,
    reason_code: ReasonCode | None = None,
    *,
    now: datetime,
    override_by: str | None = None,
) -> StatusTransition | None:
    """
    Move `request` to `to_status`, appending to its history.

    Returns the recorded transition, or None if the move is not allowed
    (the request is left untouched).
    """
    if not can_transition(request.status, to_status, override_by):
        return None

    transition = StatusTransition(
        from_status=request.status,
        to_status=to_status,
        reason=reason,
        reason_code=reason_code,
        at=now,
        override_by=override_by,
    )
    request.status_history.append(transition)
    request.status = to_status
    request.updated_at = now
    if to_status == S.COMPLETED:
        request.completed_at = now
    return transition
