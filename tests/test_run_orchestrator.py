"""Tests for batch payroll calculation."""

import itertools
from dataclasses import replace
from decimal import Decimal
from uuid import UUID

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from compensation_engine.calculators.engine import (
    CompensationEngine,
    EmployeePayrollInput,
    PayrollPeriod,
)
from compensation_engine.calculators.errors import EmployeeCalculationError, RunLockedError
from compensation_engine.calculators.types import (
    AttendanceParams,
    CalculationMode,
    ComponentCategory,
    SalaryComponent,
    SalaryStructure,
)
from compensation_engine.payroll_config import PayrollConfig
from compensation_engine.services.run_orchestrator import PayrollRun, PayrollRunOrchestrator
from compensation_engine.services.state_machine import InvalidTransitionError, PayrollRunStatus

PERIOD = PayrollPeriod(year=2024, month=10)
RUN_ID = UUID("5d6c1f0e-8b1a-4f6e-9a3b-2c7d9e4f1a20")


def structure(owner_id: str, annual_ctc: str = "600000") -> SalaryStructure:
    return SalaryStructure(
        owner_id=owner_id,
        annual_ctc=Decimal(annual_ctc),
        components=(
            SalaryComponent(
                id="basic",
                name="Basic Salary",
                category=ComponentCategory.EARNING,
                calculation_mode=CalculationMode.PERCENT_OF_CTC.value,
                value=Decimal("40"),
                is_basic=True,
            ),
            SalaryComponent(
                id="special",
                name="Special Allowance",
                category=ComponentCategory.EARNING,
                calculation_mode=CalculationMode.FIXED.value,
                is_remainder_component=True,
            ),
        ),
        structure_id=UUID(int=int(owner_id[3:])),
    )


def employee(number: int, with_structure: bool = True) -> EmployeePayrollInput:
    employee_id = f"EMP{number:03d}"
    return EmployeePayrollInput(
        employee_id=employee_id,
        structure=structure(employee_id, str(300000 + number * 60000)) if with_structure else None,
        attendance=AttendanceParams.full_month(),
        remaining_months=12,
    )


def new_run(run_id: UUID = RUN_ID) -> PayrollRun:
    return PayrollRun(tenant_id="acme", period=PERIOD, run_id=run_id)


class FailingEngine(CompensationEngine):
    """Raises an unexpected error for one employee."""

    def calculate_employee(self, employee, period, run_id=None, previous=None):
        if employee.employee_id == "EMP002":
            raise RuntimeError("connection reset")
        return super().calculate_employee(employee, period, run_id, previous)


class CancellingEngine(CompensationEngine):
    """Cancels the run while the first employee is being calculated."""

    def __init__(self, orchestrator_run):
        super().__init__(PayrollConfig(), engine_version="test")
        self.orchestrator_run = orchestrator_run
        self.orchestrator = None

    def calculate_employee(self, employee, period, run_id=None, previous=None):
        if employee.employee_id == "EMP000":
            self.orchestrator.cancel(self.orchestrator_run)
        return super().calculate_employee(employee, period, run_id, previous)


@pytest.fixture
def orchestrator(engine) -> PayrollRunOrchestrator:
    return PayrollRunOrchestrator(engine, max_workers=3)


class TestCalculate:
    """One failing employee never aborts the run."""

    def test_missing_structure_isolated(self, orchestrator):
        employees = [employee(i, with_structure=i != 3) for i in range(1, 6)]
        run = orchestrator.calculate(new_run(), employees)

        assert run.status == PayrollRunStatus.CALCULATED
        assert run.total_employees == 5
        assert run.processed_employees == 4
        assert run.failed_employees == 1
        assert run.errors[0].employee_id == "EMP003"
        assert run.errors[0].code == "EMPLOYEE_CALCULATION"
        assert "EMP003" not in run.items

    def test_unexpected_error_isolated(self):
        orchestrator = PayrollRunOrchestrator(FailingEngine(engine_version="test"), max_workers=2)
        run = orchestrator.calculate(new_run(), [employee(i) for i in range(1, 5)])

        assert run.processed_employees == 3
        assert run.errors[0].employee_id == "EMP002"
        assert run.errors[0].code == "UNEXPECTED_ERROR"
        assert "connection reset" in run.errors[0].message

    def test_aggregates_sum_items(self, orchestrator):
        run = orchestrator.calculate(new_run(), [employee(i) for i in range(1, 4)])

        assert run.total_gross == sum(s.gross_earnings for s in run.items.values())
        assert run.total_net_pay == run.total_gross - run.total_deductions
        summary = run.summary()
        assert summary["processed_employees"] == 3
        assert summary["status"] == "CALCULATED"
        assert summary["period"] == "2024-10"

    def test_duplicate_employee_rejected(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.calculate(new_run(), [employee(1), employee(1)])

    def test_empty_batch(self, orchestrator):
        run = orchestrator.calculate(new_run(), [])

        assert run.status == PayrollRunStatus.CALCULATED
        assert run.processed_employees == 0

    def test_max_workers_must_be_positive(self, engine):
        with pytest.raises(ValueError):
            PayrollRunOrchestrator(engine, max_workers=0)

    @settings(max_examples=20, deadline=None)
    @given(order=st.permutations(list(range(1, 7))))
    def test_result_independent_of_order(self, order):
        """Scheduling order never changes snapshots or aggregates."""
        orchestrator = PayrollRunOrchestrator(
            CompensationEngine(PayrollConfig(), engine_version="test"), max_workers=3
        )
        employees = [employee(i, with_structure=i != 4) for i in range(1, 7)]
        baseline = orchestrator.calculate(new_run(), employees)

        shuffled = orchestrator.calculate(new_run(), [employees[i - 1] for i in order])

        assert shuffled.summary() == baseline.summary()
        assert shuffled.items == baseline.items


class TestStopping:
    """Cancellation and deadlines stop scheduling, not in-flight work."""

    def test_deadline_skips_unscheduled_employees(self, engine):
        orchestrator = PayrollRunOrchestrator(engine, max_workers=1)
        ticks = itertools.count()

        run = orchestrator.calculate(
            new_run(),
            [employee(i) for i in range(5)],
            deadline=2,
            clock=lambda: next(ticks),
        )

        # Two employees fit the scheduling window before the deadline passes
        assert run.status == PayrollRunStatus.CALCULATED
        assert sorted(run.items) == ["EMP000", "EMP001"]
        assert run.skipped_employee_ids == ["EMP002", "EMP003", "EMP004"]

    def test_skipped_employees_block_approval(self, engine):
        orchestrator = PayrollRunOrchestrator(engine, max_workers=1)
        ticks = itertools.count()
        run = orchestrator.calculate(
            new_run(), [employee(i) for i in range(4)], deadline=1, clock=lambda: next(ticks)
        )

        with pytest.raises(InvalidTransitionError) as exc_info:
            orchestrator.approve(run)
        assert "never calculated" in str(exc_info.value)

    def test_cancel_during_calculation(self):
        run = new_run()
        engine = CancellingEngine(run)
        orchestrator = PayrollRunOrchestrator(engine, max_workers=1)
        engine.orchestrator = orchestrator

        orchestrator.calculate(run, [employee(i) for i in range(10)])

        assert run.status == PayrollRunStatus.CANCELLED
        assert run.cancelled_at is not None
        # The employee being calculated when the cancel arrived still completes
        assert "EMP000" in run.items
        assert {f"EMP{i:03d}" for i in range(2, 10)} <= set(run.skipped_employee_ids)
        assert len(run.items) + len(run.skipped_employee_ids) == 10

    def test_cancel_idle_run(self, orchestrator):
        run = orchestrator.calculate(new_run(), [employee(1)])
        orchestrator.cancel(run)

        assert run.status == PayrollRunStatus.CANCELLED
        # Snapshots stay inspectable
        assert "EMP001" in run.items

    def test_cancel_detached_copy_of_calculating_run(self, orchestrator):
        run = new_run()
        run.status = PayrollRunStatus.CALCULATING

        orchestrator.cancel(run, detached=True)

        assert run.status == PayrollRunStatus.CANCELLED
        assert run.cancelled_at is not None

    def test_calculating_run_cannot_start_again(self, orchestrator):
        run = new_run()
        run.status = PayrollRunStatus.CALCULATING

        with pytest.raises(InvalidTransitionError):
            orchestrator.check_can_calculate(run)
        with pytest.raises(InvalidTransitionError):
            orchestrator.calculate(run, [employee(1)])
        assert run.items == {}

    def test_cancelled_run_cannot_calculate(self, orchestrator):
        run = new_run()
        orchestrator.cancel(run)

        with pytest.raises(InvalidTransitionError):
            orchestrator.calculate(run, [employee(1)])


class TestRecalculation:
    """Corrections create new snapshot versions."""

    def test_recalculate_employee(self, orchestrator):
        run = orchestrator.calculate(new_run(), [employee(1), employee(2)])
        first = run.items["EMP001"]

        corrected = replace(employee(1), attendance=AttendanceParams(Decimal("15"), Decimal("30")))
        second = orchestrator.recalculate_employee(run, corrected)

        assert second.version == 2
        assert second.supersedes_id == first.snapshot_id
        assert run.items["EMP001"] is second
        assert run.history == [first]
        assert run.status == PayrollRunStatus.CALCULATED
        assert run.total_gross == second.gross_earnings + run.items["EMP002"].gross_earnings

    def test_recalculate_failed_employee(self, orchestrator):
        run = orchestrator.calculate(new_run(), [employee(1), employee(2, with_structure=False)])
        assert run.failed_employees == 1

        snapshot = orchestrator.recalculate_employee(run, employee(2))

        assert snapshot.version == 1
        assert run.failed_employees == 0
        assert run.processed_employees == 2

    def test_recalculate_still_failing_records_error(self, orchestrator):
        run = orchestrator.calculate(new_run(), [employee(1)])

        with pytest.raises(EmployeeCalculationError):
            orchestrator.recalculate_employee(run, employee(1, with_structure=False))

        assert run.errors[0].employee_id == "EMP001"
        assert "EMP001" not in run.items
        assert len(run.history) == 1

    def test_recalculating_whole_run_versions_snapshots(self, orchestrator):
        run = orchestrator.calculate(new_run(), [employee(1)])
        first = run.items["EMP001"]

        orchestrator.calculate(run, [employee(1)])

        assert run.items["EMP001"].version == 2
        assert run.items["EMP001"].supersedes_id == first.snapshot_id
        assert run.history == [first]

    def test_recalculate_requires_calculated_run(self, orchestrator):
        with pytest.raises(InvalidTransitionError):
            orchestrator.recalculate_employee(new_run(), employee(1))

    def test_approved_run_is_locked(self, orchestrator):
        run = orchestrator.calculate(new_run(), [employee(1)])
        orchestrator.approve(run)

        with pytest.raises(RunLockedError):
            orchestrator.recalculate_employee(run, employee(1))
        with pytest.raises(RunLockedError):
            orchestrator.calculate(run, [employee(1)])


class TestLifecycle:
    def test_approve_and_pay(self, orchestrator):
        run = orchestrator.calculate(new_run(), [employee(1), employee(2, with_structure=False)])

        # Failed employees do not block approval
        orchestrator.approve(run)
        assert run.status == PayrollRunStatus.APPROVED
        assert run.approved_at is not None

        orchestrator.mark_paid(run)
        assert run.status == PayrollRunStatus.PAID
        assert run.paid_at is not None

        with pytest.raises(InvalidTransitionError):
            orchestrator.cancel(run)

    def test_review_flag_blocks_approval(self, orchestrator):
        loan = SalaryComponent(
            id="loan",
            name="Loan Recovery",
            category=ComponentCategory.DEDUCTION,
            calculation_mode=CalculationMode.FIXED.value,
            value=Decimal("90000"),
        )
        base = employee(1)
        negative = replace(
            base, structure=base.structure.with_components(base.structure.components + (loan,))
        )
        run = orchestrator.calculate(new_run(), [negative])

        assert run.review_required_count == 1
        with pytest.raises(InvalidTransitionError) as exc_info:
            orchestrator.approve(run)
        assert "negative net pay" in str(exc_info.value)

    def test_mark_paid_requires_approval(self, orchestrator):
        run = orchestrator.calculate(new_run(), [employee(1)])

        with pytest.raises(InvalidTransitionError):
            orchestrator.mark_paid(run)
