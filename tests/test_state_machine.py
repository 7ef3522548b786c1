"""
Tests for the liquidation request state machine.
"""

import pytest

from liquidation_engine.domain import LiquidationRequest, LiquidationRequestStatus, ReasonCode
from liquidation_engine.orchestration import (
    REQUEST_STATE_TRANSITIONS,
    apply_transition,
    can_transition,
    validate_request_transition,
)
from tests.fakes import START, make_command

S = LiquidationRequestStatus

HAPPY_PATH = [
    S.PENDING,
    S.KYC_VERIFICATION_IN_PROGRESS,
    S.ASSET_VERIFICATION_IN_PROGRESS,
    S.COMPLIANCE_CHECK_IN_PROGRESS,
    S.AWAITING_LIQUIDITY_PROVIDER,
    S.EXECUTING,
    S.TRANSFER_IN_PROGRESS,
    S.COMPLETED,
]


class TestTransitionTable:
    """Tests for the transition graph."""

    def test_every_status_listed(self) -> None:
        assert set(REQUEST_STATE_TRANSITIONS) == set(S)

    def test_happy_path(self) -> None:
        for current, nxt in zip(HAPPY_PATH, HAPPY_PATH[1:]):
            assert validate_request_transition(current, nxt), f"{current} -> {nxt}"

    def test_no_skipping_stages(self) -> None:
        assert not validate_request_transition(S.PENDING, S.EXECUTING)
        assert not validate_request_transition(S.KYC_VERIFICATION_IN_PROGRESS, S.COMPLETED)

    def test_no_going_back(self) -> None:
        assert not validate_request_transition(S.EXECUTING, S.AWAITING_LIQUIDITY_PROVIDER)

    @pytest.mark.parametrize("status", HAPPY_PATH[:-1])
    def test_exits_from_non_terminal(self, status: LiquidationRequestStatus) -> None:
        for exit_status in (S.CANCELLED, S.FAILED, S.REJECTED):
            assert validate_request_transition(status, exit_status)

    @pytest.mark.parametrize("status", [S.COMPLETED, S.CANCELLED, S.FAILED, S.REJECTED])
    def test_terminal_states_have_no_exits(self, status: LiquidationRequestStatus) -> None:
        assert REQUEST_STATE_TRANSITIONS[status] == set()


class TestOverrides:
    """Tests for operator overrides out of terminal states."""

    def test_completed_to_cancelled_needs_operator(self) -> None:
        assert not can_transition(S.COMPLETED, S.CANCELLED)
        assert can_transition(S.COMPLETED, S.CANCELLED, override_by="ops-1")

    def test_other_terminal_moves_refused_even_with_operator(self) -> None:
        assert not can_transition(S.FAILED, S.PENDING, override_by="ops-1")
        assert not can_transition(S.COMPLETED, S.FAILED, override_by="ops-1")


class TestApplyTransition:
    """Tests for apply_transition."""

    def test_records_history(self) -> None:
        request = LiquidationRequest(**make_command().model_dump())
        transition = apply_transition(request, S.KYC_VERIFICATION_IN_PROGRESS, "eligible", now=START)

        assert transition is not None
        assert request.status == S.KYC_VERIFICATION_IN_PROGRESS
        assert request.updated_at == START
        assert request.status_history == [transition]
        assert transition.from_status == S.PENDING
        assert not transition.is_override

    def test_invalid_move_leaves_request_untouched(self) -> None:
        request = LiquidationRequest(**make_command().model_dump())
        assert apply_transition(request, S.COMPLETED, "skip", now=START) is None
        assert request.status == S.PENDING
        assert request.status_history == []

    def test_completion_sets_completed_at(self) -> None:
        request = LiquidationRequest(**make_command().model_dump(), status=S.TRANSFER_IN_PROGRESS)
        apply_transition(request, S.COMPLETED, "settled", now=START)
        assert request.completed_at == START

    def test_override_recorded(self) -> None:
        request = LiquidationRequest(**make_command().model_dump(), status=S.COMPLETED)
        transition = apply_transition(
            request,
            S.CANCELLED,
            "reversed",
            ReasonCode.CANCELLED,
            now=START,
            override_by="ops-1",
        )
        assert transition.is_override
        assert transition.override_by == "ops-1"
        assert transition.reason_code == ReasonCode.CANCELLED
