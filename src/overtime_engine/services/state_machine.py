"""Authorization / request state machines and candidate status resolution."""

from __future__ import annotations

from overtime_engine.calculators.types import (
    AuthorizationStatus,
    CalcStatus,
    CandidateStatus,
    TimeBankRequestStatus,
)


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class _StateMachine:
    VALID_TRANSITIONS: dict[str, list[str]] = {}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str, reason: str | None = None) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status, reason)

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        """Check if no further transitions are possible."""
        return not cls.VALID_TRANSITIONS.get(status)


class AuthorizationStateMachine(_StateMachine):
    """Overwork authorization transitions.

    Allowed transitions:
    - PENDING → APPROVED (approver)
    - PENDING → REJECTED (approver)
    - PENDING → CANCELLED (recompute found no excess)
    - PENDING → EXPIRED (left unanswered past the expiry window)

    APPROVED may still have its minutes adjusted by a recompute, which is
    not a status transition.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        AuthorizationStatus.PENDING.value: [
            AuthorizationStatus.APPROVED.value,
            AuthorizationStatus.REJECTED.value,
            AuthorizationStatus.CANCELLED.value,
            AuthorizationStatus.EXPIRED.value,
        ],
        AuthorizationStatus.APPROVED.value: [],
        AuthorizationStatus.REJECTED.value: [],
        AuthorizationStatus.CANCELLED.value: [],
        AuthorizationStatus.EXPIRED.value: [],
    }

    # Statuses that make the candidate REJECTED
    REJECTING = frozenset(
        {
            AuthorizationStatus.REJECTED.value,
            AuthorizationStatus.CANCELLED.value,
            AuthorizationStatus.EXPIRED.value,
        }
    )


class TimeBankRequestStateMachine(_StateMachine):
    """Employee time-bank request transitions (only PENDING is open)."""

    VALID_TRANSITIONS: dict[str, list[str]] = {
        TimeBankRequestStatus.PENDING.value: [
            TimeBankRequestStatus.APPROVED.value,
            TimeBankRequestStatus.REJECTED.value,
            TimeBankRequestStatus.CANCELLED.value,
        ],
        TimeBankRequestStatus.APPROVED.value: [],
        TimeBankRequestStatus.REJECTED.value: [],
        TimeBankRequestStatus.CANCELLED.value: [],
    }


def resolve_candidate_status(
    *,
    final_minutes: int,
    requires_approval: bool,
    authorization_status: str | None,
    movement_written: bool,
) -> CandidateStatus:
    """Resolve the candidate status after the approval gate / ledger step.

    Rules are evaluated in order; the first that matches wins.
    """
    if final_minutes == 0:
        return CandidateStatus.SKIPPED
    if authorization_status in AuthorizationStateMachine.REJECTING:
        return CandidateStatus.REJECTED
    if requires_approval and authorization_status != AuthorizationStatus.APPROVED.value:
        return CandidateStatus.PENDING_APPROVAL
    if movement_written:
        return CandidateStatus.SETTLED
    return CandidateStatus.READY


CALC_STATUS_BY_CANDIDATE_STATUS: dict[CandidateStatus, CalcStatus] = {
    CandidateStatus.PENDING_CALC: CalcStatus.CALCULATING,
    CandidateStatus.READY: CalcStatus.READY,
    CandidateStatus.PENDING_APPROVAL: CalcStatus.PENDING_APPROVAL,
    CandidateStatus.SETTLED: CalcStatus.SETTLED,
    CandidateStatus.REJECTED: CalcStatus.READY,
    CandidateStatus.SKIPPED: CalcStatus.SKIPPED,
}


def calc_status_for(candidate_status: CandidateStatus) -> CalcStatus:
    """Map a candidate status onto the workday summary's calc status."""
    return CALC_STATUS_BY_CANDIDATE_STATUS[candidate_status]
