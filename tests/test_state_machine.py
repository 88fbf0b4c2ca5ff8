"""Tests for payroll run state machine."""

from types import SimpleNamespace

import pytest

from compensation_engine.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
)


def run(status, processed=1, skipped=(), review=0):
    return SimpleNamespace(
        status=status,
        processed_employees=processed,
        skipped_employee_ids=list(skipped),
        review_required_count=review,
    )


class TestStateMachine:
    """Test payroll run state machine transitions."""

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (PayrollRunStatus.INITIATED, PayrollRunStatus.CALCULATING),
            (PayrollRunStatus.CALCULATING, PayrollRunStatus.CALCULATED),
            (PayrollRunStatus.CALCULATED, PayrollRunStatus.CALCULATING),
            (PayrollRunStatus.CALCULATED, PayrollRunStatus.APPROVED),
            (PayrollRunStatus.APPROVED, PayrollRunStatus.PAID),
            (PayrollRunStatus.INITIATED, PayrollRunStatus.CANCELLED),
            (PayrollRunStatus.CALCULATING, PayrollRunStatus.CANCELLED),
            (PayrollRunStatus.APPROVED, PayrollRunStatus.CANCELLED),
        ],
    )
    def test_valid_transitions(self, from_status, to_status):
        assert PayrollRunStateMachine.can_transition(from_status, to_status)
        PayrollRunStateMachine.validate_transition(from_status, to_status)

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (PayrollRunStatus.INITIATED, PayrollRunStatus.APPROVED),
            (PayrollRunStatus.CALCULATING, PayrollRunStatus.APPROVED),
            (PayrollRunStatus.APPROVED, PayrollRunStatus.CALCULATING),
            (PayrollRunStatus.PAID, PayrollRunStatus.CANCELLED),
            (PayrollRunStatus.CANCELLED, PayrollRunStatus.CALCULATING),
        ],
    )
    def test_invalid_transitions(self, from_status, to_status):
        assert not PayrollRunStateMachine.can_transition(from_status, to_status)
        with pytest.raises(InvalidTransitionError) as exc_info:
            PayrollRunStateMachine.validate_transition(from_status, to_status)
        assert exc_info.value.code == "INVALID_TRANSITION"

    def test_plain_strings_are_accepted(self):
        """Stored records carry the status as a plain string."""
        assert PayrollRunStateMachine.can_transition("CALCULATED", "APPROVED")
        assert PayrollRunStateMachine.can_calculate("INITIATED")

    def test_status_groups(self):
        assert PayrollRunStateMachine.can_calculate(PayrollRunStatus.CALCULATED)
        assert not PayrollRunStateMachine.can_calculate(PayrollRunStatus.CALCULATING)
        assert not PayrollRunStateMachine.can_calculate(PayrollRunStatus.APPROVED)
        assert not PayrollRunStateMachine.can_calculate(PayrollRunStatus.CANCELLED)
        assert PayrollRunStateMachine.are_results_immutable(PayrollRunStatus.PAID)
        assert not PayrollRunStateMachine.are_results_immutable(PayrollRunStatus.CALCULATED)


class TestApprovalValidation:
    """Checks made before a run may be approved."""

    def test_calculated_run_can_be_approved(self):
        errors = PayrollRunStateMachine.validate_run_for_transition(
            run(PayrollRunStatus.CALCULATED), PayrollRunStatus.APPROVED
        )
        assert errors == []

    def test_wrong_status(self):
        errors = PayrollRunStateMachine.validate_run_for_transition(
            run(PayrollRunStatus.INITIATED), PayrollRunStatus.APPROVED
        )
        assert len(errors) == 1
        assert "Cannot transition" in errors[0]

    def test_empty_run(self):
        errors = PayrollRunStateMachine.validate_run_for_transition(
            run(PayrollRunStatus.CALCULATED, processed=0), PayrollRunStatus.APPROVED
        )
        assert errors == ["Payroll run has no processed employees"]

    def test_skipped_and_review_block_approval(self):
        errors = PayrollRunStateMachine.validate_run_for_transition(
            run(PayrollRunStatus.CALCULATED, skipped=["EMP004"], review=2),
            PayrollRunStatus.APPROVED,
        )
        assert len(errors) == 2
        assert "never calculated" in errors[0]
        assert "negative net pay" in errors[1]
