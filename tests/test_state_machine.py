"""Tests for authorization / request state machines and status resolution."""

import pytest

from overtime_engine.calculators.types import CalcStatus, CandidateStatus
from overtime_engine.services.state_machine import (
    AuthorizationStateMachine,
    InvalidTransitionError,
    TimeBankRequestStateMachine,
    calc_status_for,
    resolve_candidate_status,
)


class TestAuthorizationStateMachine:
    """Test authorization transitions."""

    def test_valid_transitions(self):
        """Only PENDING can move, to any resolution."""
        for target in ("APPROVED", "REJECTED", "CANCELLED", "EXPIRED"):
            assert AuthorizationStateMachine.can_transition("PENDING", target) is True

    def test_resolved_statuses_are_terminal(self):
        for status in ("APPROVED", "REJECTED", "CANCELLED", "EXPIRED"):
            assert AuthorizationStateMachine.is_terminal(status) is True
            assert AuthorizationStateMachine.can_transition(status, "PENDING") is False

        # No reversal of a decision
        assert AuthorizationStateMachine.can_transition("APPROVED", "REJECTED") is False
        assert AuthorizationStateMachine.can_transition("EXPIRED", "APPROVED") is False

    def test_validate_transition_raises(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            AuthorizationStateMachine.validate_transition(
                "APPROVED", "REJECTED", "authorization was already processed"
            )

        assert exc_info.value.from_status == "APPROVED"
        assert exc_info.value.to_status == "REJECTED"
        assert "already processed" in str(exc_info.value)

    def test_get_next_statuses(self):
        assert set(AuthorizationStateMachine.get_next_statuses("PENDING")) == {
            "APPROVED",
            "REJECTED",
            "CANCELLED",
            "EXPIRED",
        }
        assert AuthorizationStateMachine.get_next_statuses("CANCELLED") == []
        assert AuthorizationStateMachine.get_next_statuses("UNKNOWN") == []


class TestTimeBankRequestStateMachine:
    """Test time-bank request transitions."""

    def test_pending_transitions(self):
        for target in ("APPROVED", "REJECTED", "CANCELLED"):
            assert TimeBankRequestStateMachine.can_transition("PENDING", target) is True

    def test_cancel_only_when_pending(self):
        assert TimeBankRequestStateMachine.can_transition("APPROVED", "CANCELLED") is False
        with pytest.raises(InvalidTransitionError):
            TimeBankRequestStateMachine.validate_transition("REJECTED", "CANCELLED")


class TestResolveCandidateStatus:
    """First matching rule wins."""

    def test_zero_minutes_is_skipped(self):
        status = resolve_candidate_status(
            final_minutes=0,
            requires_approval=True,
            authorization_status="REJECTED",
            movement_written=False,
        )
        assert status == CandidateStatus.SKIPPED

    @pytest.mark.parametrize("auth_status", ["REJECTED", "CANCELLED", "EXPIRED"])
    def test_rejecting_authorization(self, auth_status):
        status = resolve_candidate_status(
            final_minutes=30,
            requires_approval=True,
            authorization_status=auth_status,
            movement_written=False,
        )
        assert status == CandidateStatus.REJECTED

    def test_awaiting_approval(self):
        status = resolve_candidate_status(
            final_minutes=30,
            requires_approval=True,
            authorization_status="PENDING",
            movement_written=False,
        )
        assert status == CandidateStatus.PENDING_APPROVAL

    def test_approved_with_movement_is_settled(self):
        status = resolve_candidate_status(
            final_minutes=30,
            requires_approval=True,
            authorization_status="APPROVED",
            movement_written=True,
        )
        assert status == CandidateStatus.SETTLED

    def test_approved_without_movement_is_ready(self):
        """Paid-out overtime does not touch the ledger."""
        status = resolve_candidate_status(
            final_minutes=30,
            requires_approval=True,
            authorization_status="APPROVED",
            movement_written=False,
        )
        assert status == CandidateStatus.READY

    def test_unapproved_path(self):
        assert (
            resolve_candidate_status(
                final_minutes=-50,
                requires_approval=False,
                authorization_status=None,
                movement_written=True,
            )
            == CandidateStatus.SETTLED
        )
        # Fully clamped away
        assert (
            resolve_candidate_status(
                final_minutes=-50,
                requires_approval=False,
                authorization_status=None,
                movement_written=False,
            )
            == CandidateStatus.READY
        )


class TestCalcStatusMapping:
    def test_every_candidate_status_maps(self):
        for status in CandidateStatus:
            assert isinstance(calc_status_for(status), CalcStatus)

    def test_rejected_releases_summary(self):
        assert calc_status_for(CandidateStatus.REJECTED) == CalcStatus.READY
        assert calc_status_for(CandidateStatus.PENDING_CALC) == CalcStatus.CALCULATING
