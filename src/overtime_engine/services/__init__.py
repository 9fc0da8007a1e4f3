"""Business services."""

from overtime_engine.services.approval_gate import (
    ApprovalGate,
    ApprovalPermissionError,
    AuthorizationNotFoundError,
)
from overtime_engine.services.collaborators import Collaborators, Outbox
from overtime_engine.services.ledger_service import (
    LedgerWriter,
    TimeBankAdminStats,
    clamp_movement_minutes,
)
from overtime_engine.services.overtime_settings import (
    OvertimeSettings,
    OvertimeSettingsService,
    SettingsValidationError,
)
from overtime_engine.services.reconciliation import ReconciliationReport, WeeklyReconciler
from overtime_engine.services.state_machine import (
    AuthorizationStateMachine,
    InvalidTransitionError,
    TimeBankRequestStateMachine,
)
from overtime_engine.services.time_bank_requests import (
    DuplicateRequestError,
    InsufficientBalanceError,
    TimeBankRequestNotFoundError,
    TimeBankRequestService,
)
from overtime_engine.services.workday_processor import (
    mark_workday_dirty,
    process_workday_overtime,
)

__all__ = [
    "ApprovalGate",
    "ApprovalPermissionError",
    "AuthorizationNotFoundError",
    "AuthorizationStateMachine",
    "Collaborators",
    "DuplicateRequestError",
    "InsufficientBalanceError",
    "InvalidTransitionError",
    "LedgerWriter",
    "Outbox",
    "OvertimeSettings",
    "OvertimeSettingsService",
    "ReconciliationReport",
    "SettingsValidationError",
    "TimeBankAdminStats",
    "TimeBankRequestNotFoundError",
    "TimeBankRequestService",
    "TimeBankRequestStateMachine",
    "WeeklyReconciler",
    "clamp_movement_minutes",
    "mark_workday_dirty",
    "process_workday_overtime",
]
