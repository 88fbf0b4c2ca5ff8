"""Payroll run state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from compensation_engine.calculators.errors import CompensationError

if TYPE_CHECKING:
    from compensation_engine.services.run_orchestrator import PayrollRun


class PayrollRunStatus(str, Enum):
    """Payroll run status values."""

    INITIATED = "INITIATED"
    CALCULATING = "CALCULATING"
    CALCULATED = "CALCULATED"
    APPROVED = "APPROVED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class InvalidTransitionError(CompensationError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(
        self,
        from_status: str,
        to_status: str,
        reason: str | None = None,
        run_id: str | None = None,
    ):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, key=run_id)


class PayrollRunStateMachine:
    """State machine for payroll run status transitions.

    Allowed transitions:
    - INITIATED → CALCULATING
    - CALCULATING → CALCULATED
    - CALCULATED → CALCULATING (recalculate)
    - CALCULATED → APPROVED
    - APPROVED → PAID
    - any pre-PAID status → CANCELLED
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrollRunStatus.INITIATED: [PayrollRunStatus.CALCULATING, PayrollRunStatus.CANCELLED],
        PayrollRunStatus.CALCULATING: [PayrollRunStatus.CALCULATED, PayrollRunStatus.CANCELLED],
        PayrollRunStatus.CALCULATED: [
            PayrollRunStatus.CALCULATING,
            PayrollRunStatus.APPROVED,
            PayrollRunStatus.CANCELLED,
        ],
        PayrollRunStatus.APPROVED: [PayrollRunStatus.PAID, PayrollRunStatus.CANCELLED],
        PayrollRunStatus.PAID: [],  # Terminal state
        PayrollRunStatus.CANCELLED: [],  # Terminal state
    }

    # Statuses a calculation may start from
    CALCULATION_ALLOWED = {
        PayrollRunStatus.INITIATED,
        PayrollRunStatus.CALCULATED,
    }

    # Statuses where snapshots and the structures behind them are locked
    RESULTS_IMMUTABLE = {
        PayrollRunStatus.APPROVED,
        PayrollRunStatus.PAID,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_calculate(cls, status: str) -> bool:
        """Check if a calculation may start in this status."""
        return status in cls.CALCULATION_ALLOWED

    @classmethod
    def are_results_immutable(cls, status: str) -> bool:
        """Check if snapshots are immutable."""
        return status in cls.RESULTS_IMMUTABLE

    @classmethod
    def validate_run_for_transition(cls, run: PayrollRun, to_status: str) -> list[str]:
        """Validate a run for a specific transition, returning any errors.

        ``run`` needs ``status``, ``processed_employees``,
        ``skipped_employee_ids`` and ``review_required_count``; both the
        in-memory run and its stored record provide them.

        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []
        from_status = run.status

        if not cls.can_transition(from_status, to_status):
            errors.append(f"Cannot transition from '{from_status}' to '{to_status}'")
            return errors

        if to_status == PayrollRunStatus.APPROVED:
            if run.processed_employees == 0:
                errors.append("Payroll run has no processed employees")

            if run.skipped_employee_ids:
                errors.append(
                    f"{len(run.skipped_employee_ids)} employee(s) were never calculated"
                )

            if run.review_required_count:
                errors.append(
                    f"{run.review_required_count} payslip(s) have negative net pay and need review"
                )

        return errors
