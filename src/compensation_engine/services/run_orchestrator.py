"""Batch payroll calculation with per-employee failure isolation."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable
from uuid import UUID, uuid4

from compensation_engine.calculators.engine import (
    CompensationEngine,
    EmployeePayrollInput,
    PayrollPeriod,
)
from compensation_engine.calculators.errors import (
    EmployeeCalculationError,
    RunLockedError,
)
from compensation_engine.calculators.payslip_builder import PayslipSnapshot
from compensation_engine.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunError:
    """One employee that could not be calculated."""

    employee_id: str
    message: str
    code: str = EmployeeCalculationError.code

    def to_dict(self) -> dict[str, str]:
        return {"employee_id": self.employee_id, "message": self.message, "code": self.code}


@dataclass
class PayrollRun:
    """A tenant's payroll for one month.

    ``items`` holds the current snapshot per employee; snapshots replaced
    by a recalculation move to ``history``. Aggregates are derived from
    ``items`` on read, never accumulated in place.
    """

    tenant_id: str
    period: PayrollPeriod
    run_id: UUID = field(default_factory=uuid4)
    status: str = PayrollRunStatus.INITIATED
    total_employees: int = 0
    items: dict[str, PayslipSnapshot] = field(default_factory=dict)
    history: list[PayslipSnapshot] = field(default_factory=list)
    errors: list[RunError] = field(default_factory=list)
    skipped_employee_ids: list[str] = field(default_factory=list)
    approved_at: datetime | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_event: threading.Event = field(
        default_factory=threading.Event, repr=False, compare=False
    )
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def latest_snapshot(self, employee_id: str) -> PayslipSnapshot | None:
        """Highest version calculated for an employee, current or superseded."""
        versions = [s for s in self.history if s.employee_id == employee_id]
        if employee_id in self.items:
            versions.append(self.items[employee_id])
        return max(versions, key=lambda s: s.version, default=None)

    @property
    def processed_employees(self) -> int:
        return len(self.items)

    @property
    def failed_employees(self) -> int:
        return len(self.errors)

    @property
    def total_gross(self) -> Decimal:
        return sum((s.gross_earnings for s in self.items.values()), Decimal("0"))

    @property
    def total_deductions(self) -> Decimal:
        return sum((s.total_deductions for s in self.items.values()), Decimal("0"))

    @property
    def total_net_pay(self) -> Decimal:
        return sum((s.net_pay for s in self.items.values()), Decimal("0"))

    @property
    def total_employer_contributions(self) -> Decimal:
        return sum((s.employer_total for s in self.items.values()), Decimal("0"))

    @property
    def review_required_count(self) -> int:
        return sum(1 for s in self.items.values() if s.requires_review)

    def summary(self) -> dict[str, Any]:
        """Aggregate view, independent of the order employees completed in."""
        return {
            "run_id": str(self.run_id),
            "tenant_id": self.tenant_id,
            "period": self.period.label,
            "status": PayrollRunStatus(self.status).value,
            "total_employees": self.total_employees,
            "processed_employees": self.processed_employees,
            "failed_employees": self.failed_employees,
            "skipped_employees": len(self.skipped_employee_ids),
            "total_gross": str(self.total_gross),
            "total_deductions": str(self.total_deductions),
            "total_net_pay": str(self.total_net_pay),
            "total_employer_contributions": str(self.total_employer_contributions),
            "errors": [e.to_dict() for e in self.errors],
        }


class PayrollRunOrchestrator:
    """Applies the compensation engine across a batch of employees.

    Each employee is calculated on a worker thread from inputs fetched up
    front; nothing shared is mutated there. Results are committed to the
    run on the calling thread as futures complete, so aggregates never
    see concurrent writes.

    Cancellation and the optional deadline only stop scheduling: work
    already in flight finishes and is committed.
    """

    def __init__(self, engine: CompensationEngine, max_workers: int = 4):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.engine = engine
        self.max_workers = max_workers

    # ===== Lifecycle =====

    @staticmethod
    def check_can_calculate(run: PayrollRun) -> None:
        """Raise unless a calculation may start on the run.

        Raises:
            RunLockedError: the run is approved or paid.
            InvalidTransitionError: the run is calculating or cancelled.
        """
        if PayrollRunStateMachine.are_results_immutable(run.status):
            raise RunLockedError(str(run.run_id), PayrollRunStatus(run.status).value)
        if not PayrollRunStateMachine.can_calculate(run.status):
            raise InvalidTransitionError(
                run.status,
                PayrollRunStatus.CALCULATING,
                "the run is already calculating or was cancelled",
                run_id=str(run.run_id),
            )

    def _transition(self, run: PayrollRun, to_status: PayrollRunStatus) -> None:
        PayrollRunStateMachine.validate_transition(run.status, to_status)
        logger.info(
            "Payroll run %s: %s -> %s", run.run_id, PayrollRunStatus(run.status).value, to_status.value
        )
        run.status = to_status

    def calculate(
        self,
        run: PayrollRun,
        employees: Iterable[EmployeePayrollInput],
        deadline: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> PayrollRun:
        """Calculate every employee in the batch.

        Args:
            run: Run in INITIATED or CALCULATED status.
            employees: Inputs for each employee, one per employee id.
            deadline: Value of ``clock()`` after which no new employee is
                scheduled. Unscheduled employees are listed as skipped.
            clock: Time source for the deadline.

        Returns:
            The run, CALCULATED, or CANCELLED if cancelled meanwhile.
        """
        batch = list(employees)
        ids = [e.employee_id for e in batch]
        if len(set(ids)) != len(ids):
            raise ValueError("Each employee may appear only once in a payroll run")

        with run.lock:
            self.check_can_calculate(run)
            self._transition(run, PayrollRunStatus.CALCULATING)

        previous = {e.employee_id: run.latest_snapshot(e.employee_id) for e in batch}
        run.history.extend(run.items.values())
        run.items = {}
        run.errors = []
        run.skipped_employee_ids = []
        run.total_employees = len(batch)

        pending = deque(batch)
        in_flight: dict[Future[PayslipSnapshot], str] = {}
        window = self.max_workers * 2
        stopped = False

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            while pending or in_flight:
                while pending and len(in_flight) < window and not stopped:
                    if self._should_stop(run, deadline, clock):
                        stopped = True
                        break
                    employee = pending.popleft()
                    future = executor.submit(
                        self.engine.calculate_employee,
                        employee,
                        run.period,
                        run.run_id,
                        previous.get(employee.employee_id),
                    )
                    in_flight[future] = employee.employee_id

                if stopped and pending:
                    run.skipped_employee_ids.extend(e.employee_id for e in pending)
                    pending.clear()

                if in_flight:
                    done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                    for future in done:
                        self._commit(run, in_flight.pop(future), future)

        run.errors.sort(key=lambda e: e.employee_id)
        run.skipped_employee_ids.sort()

        if run.skipped_employee_ids:
            logger.warning(
                "Payroll run %s stopped scheduling; %d employee(s) skipped",
                run.run_id,
                len(run.skipped_employee_ids),
            )

        with run.lock:
            if run.cancel_event.is_set():
                self._transition(run, PayrollRunStatus.CANCELLED)
                run.cancelled_at = datetime.now(timezone.utc)
            else:
                self._transition(run, PayrollRunStatus.CALCULATED)

        logger.info(
            "Payroll run %s calculated: %d processed, %d failed",
            run.run_id,
            run.processed_employees,
            run.failed_employees,
        )
        return run

    @staticmethod
    def _should_stop(
        run: PayrollRun, deadline: float | None, clock: Callable[[], float]
    ) -> bool:
        if run.cancel_event.is_set():
            return True
        return deadline is not None and clock() >= deadline

    @staticmethod
    def _commit(run: PayrollRun, employee_id: str, future: Future[PayslipSnapshot]) -> None:
        try:
            snapshot = future.result()
        except EmployeeCalculationError as e:
            logger.warning("Payroll run %s: %s", run.run_id, e)
            run.errors.append(RunError(employee_id, str(e), e.code))
        except Exception as e:
            logger.exception("Payroll run %s: unexpected error for employee %s", run.run_id, employee_id)
            run.errors.append(RunError(employee_id, f"Unexpected error: {e}", "UNEXPECTED_ERROR"))
        else:
            run.items[employee_id] = snapshot

    def recalculate_employee(
        self, run: PayrollRun, employee: EmployeePayrollInput
    ) -> PayslipSnapshot:
        """Recalculate one employee of a CALCULATED run.

        The new snapshot supersedes the current one, which moves to the
        run's history.

        Raises:
            RunLockedError: the run is approved or paid.
            InvalidTransitionError: the run is not CALCULATED.
            EmployeeCalculationError: the employee still fails; the
                failure is also recorded on the run.
        """
        if PayrollRunStateMachine.are_results_immutable(run.status):
            raise RunLockedError(str(run.run_id), PayrollRunStatus(run.status).value)
        if run.status != PayrollRunStatus.CALCULATED:
            raise InvalidTransitionError(
                run.status,
                PayrollRunStatus.CALCULATING,
                "only a calculated run can recalculate an employee",
                run_id=str(run.run_id),
            )

        employee_id = employee.employee_id
        current = run.items.get(employee_id)
        previous = run.latest_snapshot(employee_id)
        known = (
            employee_id in run.items
            or employee_id in run.skipped_employee_ids
            or any(e.employee_id == employee_id for e in run.errors)
        )
        if not known:
            run.total_employees += 1

        run.errors = [e for e in run.errors if e.employee_id != employee_id]
        run.skipped_employee_ids = [i for i in run.skipped_employee_ids if i != employee_id]

        try:
            snapshot = self.engine.calculate_employee(
                employee, run.period, run.run_id, previous
            )
        except EmployeeCalculationError as e:
            if current is not None:
                run.history.append(run.items.pop(employee_id))
            run.errors.append(RunError(employee_id, str(e), e.code))
            run.errors.sort(key=lambda err: err.employee_id)
            raise

        if current is not None:
            run.history.append(current)
        run.items[employee_id] = snapshot
        logger.info(
            "Payroll run %s: employee %s recalculated (version %d)",
            run.run_id,
            employee_id,
            snapshot.version,
        )
        return snapshot

    def approve(self, run: PayrollRun) -> PayrollRun:
        """Approve a calculated run, locking its results."""
        with run.lock:
            errors = PayrollRunStateMachine.validate_run_for_transition(
                run, PayrollRunStatus.APPROVED
            )
            if errors:
                raise InvalidTransitionError(
                    run.status, PayrollRunStatus.APPROVED, "; ".join(errors), run_id=str(run.run_id)
                )
            self._transition(run, PayrollRunStatus.APPROVED)
            run.approved_at = datetime.now(timezone.utc)
        return run

    def mark_paid(self, run: PayrollRun) -> PayrollRun:
        with run.lock:
            self._transition(run, PayrollRunStatus.PAID)
            run.paid_at = datetime.now(timezone.utc)
        return run

    def cancel(self, run: PayrollRun, detached: bool = False) -> PayrollRun:
        """Cancel a run. Committed snapshots stay on the run.

        A run that is calculating stops scheduling and becomes CANCELLED
        once its in-flight employees finish. A ``detached`` run is a copy
        of one calculating elsewhere and is CANCELLED at once.
        """
        with run.lock:
            if not PayrollRunStateMachine.can_transition(run.status, PayrollRunStatus.CANCELLED):
                raise InvalidTransitionError(
                    run.status, PayrollRunStatus.CANCELLED, run_id=str(run.run_id)
                )
            run.cancel_event.set()
            if detached or run.status != PayrollRunStatus.CALCULATING:
                self._transition(run, PayrollRunStatus.CANCELLED)
                run.cancelled_at = datetime.now(timezone.utc)
        return run
