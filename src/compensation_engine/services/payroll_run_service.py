"""Payroll run service - persistence around the run orchestrator."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from compensation_engine.calculators.engine import (
    CompensationEngine,
    EmployeePayrollInput,
    PayrollPeriod,
)
from compensation_engine.calculators.errors import DuplicateRunError, RunNotFoundError
from compensation_engine.calculators.payslip_builder import PayslipSnapshot
from compensation_engine.models import PayrollRunItem, PayrollRunRecord
from compensation_engine.services.locking_service import LockingService
from compensation_engine.services.run_orchestrator import (
    PayrollRun,
    PayrollRunOrchestrator,
    RunError,
)
from compensation_engine.services.state_machine import InvalidTransitionError, PayrollRunStatus
from compensation_engine.services.structure_service import StructureService

logger = logging.getLogger(__name__)

# Runs currently calculating in this process, so a cancel can reach them
_ACTIVE_RUNS: dict[UUID, PayrollRun] = {}


@dataclass(frozen=True)
class PreflightReport:
    """Checks made before a run is created."""

    existing_run_id: UUID | None
    existing_status: str | None
    missing_structure_ids: tuple[str, ...]

    @property
    def can_create(self) -> bool:
        return self.existing_run_id is None


class PayrollRunService:
    """Service for managing payroll run lifecycle.

    Operations:
    - preflight: Duplicate-run and missing-structure checks
    - create_run: One non-cancelled run per tenant and month
    - calculate_run: Calculate a batch on worker threads and store snapshots
    - recalculate_employee: New snapshot version for one employee
    - approve_run: Validate and lock the structures behind the run
    - mark_paid / cancel_run
    """

    def __init__(
        self,
        session: AsyncSession,
        engine: CompensationEngine,
        max_workers: int = 4,
    ):
        self.session = session
        self.engine = engine
        self.orchestrator = PayrollRunOrchestrator(engine, max_workers)
        self.structure_service = StructureService(session)
        self.locking_service = LockingService(session)

    async def get_run(self, run_id: UUID, tenant_id: str | None = None) -> PayrollRunRecord:
        """Load a run with its items.

        Raises:
            RunNotFoundError: no such run for the tenant.
        """
        query = select(PayrollRunRecord).where(PayrollRunRecord.payroll_run_id == run_id)
        if tenant_id is not None:
            query = query.where(PayrollRunRecord.tenant_id == tenant_id)
        result = await self.session.execute(query)
        record = result.scalar_one_or_none()
        if record is None:
            raise RunNotFoundError(str(run_id))
        return record

    async def list_runs(self, tenant_id: str) -> list[PayrollRunRecord]:
        result = await self.session.execute(
            select(PayrollRunRecord)
            .where(PayrollRunRecord.tenant_id == tenant_id)
            .order_by(PayrollRunRecord.year.desc(), PayrollRunRecord.month.desc())
        )
        return list(result.scalars().all())

    async def _find_open_run(
        self, tenant_id: str, month: int, year: int
    ) -> PayrollRunRecord | None:
        result = await self.session.execute(
            select(PayrollRunRecord).where(
                PayrollRunRecord.tenant_id == tenant_id,
                PayrollRunRecord.month == month,
                PayrollRunRecord.year == year,
                PayrollRunRecord.status != PayrollRunStatus.CANCELLED.value,
            )
        )
        return result.scalars().first()

    async def preflight(
        self,
        tenant_id: str,
        month: int,
        year: int,
        employee_ids: Iterable[str] = (),
    ) -> PreflightReport:
        """Report blockers before creating a run."""
        ids = list(employee_ids)
        existing = await self._find_open_run(tenant_id, month, year)
        structures = await self.structure_service.current_structures(tenant_id, ids)
        return PreflightReport(
            existing_run_id=existing.payroll_run_id if existing else None,
            existing_status=existing.status if existing else None,
            missing_structure_ids=tuple(sorted(i for i in ids if i not in structures)),
        )

    async def create_run(self, tenant_id: str, month: int, year: int) -> PayrollRunRecord:
        """Create an INITIATED run.

        Raises:
            DuplicateRunError: a non-cancelled run exists for the period.
        """
        PayrollPeriod(year=year, month=month)
        existing = await self._find_open_run(tenant_id, month, year)
        if existing is not None:
            raise DuplicateRunError(month, year, existing.status)

        record = PayrollRunRecord(
            tenant_id=tenant_id,
            month=month,
            year=year,
            status=PayrollRunStatus.INITIATED.value,
            total_employees=0,
            errors=[],
            skipped_employee_ids=[],
            items=[],
        )
        self.session.add(record)
        await self.session.flush()
        logger.info("Payroll run %s created for %s %d/%d", record.payroll_run_id, tenant_id, month, year)
        return record

    async def calculate_run(
        self,
        run_id: UUID,
        employees: Iterable[EmployeePayrollInput],
        tenant_id: str | None = None,
        deadline_seconds: float | None = None,
    ) -> PayrollRunRecord:
        """Calculate a batch of employees and store their snapshots.

        Inputs without a structure get the employee's current stored
        revision; employees with none are recorded as failures. The run is
        committed as CALCULATING before any work starts, and a cancel
        stored meanwhile by another request is kept.

        Raises:
            RunLockedError: the run is approved or paid.
            InvalidTransitionError: the run is calculating or cancelled.
        """
        record = await self.get_run(run_id, tenant_id)
        batch = list(employees)

        structures = await self.structure_service.current_structures(
            record.tenant_id, [e.employee_id for e in batch if e.structure is None]
        )
        batch = [
            e if e.structure is not None else replace(e, structure=structures.get(e.employee_id))
            for e in batch
        ]

        run = self._to_domain(record)
        self.orchestrator.check_can_calculate(run)
        claimed_from = record.status
        await self._claim(record)
        deadline = time.monotonic() + deadline_seconds if deadline_seconds is not None else None

        _ACTIVE_RUNS[run.run_id] = run
        try:
            await asyncio.to_thread(self.orchestrator.calculate, run, batch, deadline)
        except Exception:
            await self._release(record, claimed_from)
            raise
        finally:
            _ACTIVE_RUNS.pop(run.run_id, None)

        stored_status = await self._stored_status(record.payroll_run_id)
        if stored_status == PayrollRunStatus.CANCELLED and run.status != PayrollRunStatus.CANCELLED:
            logger.info("Payroll run %s was cancelled while calculating", run_id)
            self.orchestrator.cancel(run)

        await self._persist(record, run)
        return record

    async def _claim(self, record: PayrollRunRecord) -> None:
        """Commit the run as CALCULATING if nobody changed it since it was read."""
        result = await self.session.execute(
            update(PayrollRunRecord)
            .where(
                PayrollRunRecord.payroll_run_id == record.payroll_run_id,
                PayrollRunRecord.status == record.status,
            )
            .values(status=PayrollRunStatus.CALCULATING.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(
                record.status,
                PayrollRunStatus.CALCULATING,
                "the run was changed by another request",
                run_id=str(record.payroll_run_id),
            )
        record.status = PayrollRunStatus.CALCULATING.value
        await self.session.commit()

    async def _release(self, record: PayrollRunRecord, status: str) -> None:
        """Undo a claim after a failed calculation, unless cancelled meanwhile."""
        await self.session.execute(
            update(PayrollRunRecord)
            .where(
                PayrollRunRecord.payroll_run_id == record.payroll_run_id,
                PayrollRunRecord.status == PayrollRunStatus.CALCULATING.value,
            )
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        await self.session.refresh(record, ["status"])

    async def _stored_status(self, run_id: UUID) -> str:
        result = await self.session.execute(
            select(PayrollRunRecord.status).where(PayrollRunRecord.payroll_run_id == run_id)
        )
        return result.scalar_one()

    async def recalculate_employee(
        self,
        run_id: UUID,
        employee: EmployeePayrollInput,
        tenant_id: str | None = None,
    ) -> PayslipSnapshot:
        """Recalculate one employee; the old snapshot is kept as history.

        A failed recalculation is stored on the run before the error
        propagates.
        """
        record = await self.get_run(run_id, tenant_id)
        if employee.structure is None:
            stored = await self.structure_service.current_structures(
                record.tenant_id, [employee.employee_id]
            )
            employee = replace(employee, structure=stored.get(employee.employee_id))

        run = self._to_domain(record)
        try:
            return self.orchestrator.recalculate_employee(run, employee)
        finally:
            await self._persist(record, run)

    async def approve_run(self, run_id: UUID, tenant_id: str | None = None) -> PayrollRunRecord:
        """Approve a run and lock the structure revisions it used."""
        record = await self.get_run(run_id, tenant_id)
        run = self._to_domain(record)
        self.orchestrator.approve(run)
        await self._persist(record, run)

        locked = await self.locking_service.lock_structures_for_run(record)
        logger.info("Payroll run %s approved; %d structure revision(s) locked", run_id, locked)
        return record

    async def mark_paid(self, run_id: UUID, tenant_id: str | None = None) -> PayrollRunRecord:
        record = await self.get_run(run_id, tenant_id)
        run = self._to_domain(record)
        self.orchestrator.mark_paid(run)
        await self._persist(record, run)
        return record

    async def cancel_run(self, run_id: UUID, tenant_id: str | None = None) -> PayrollRunRecord:
        """Cancel a run, keeping any snapshots already stored.

        A run calculating in this process also stops scheduling employees.
        A calculating run is stored as CANCELLED at once; the request that
        is calculating it keeps that status when it stores its results.
        """
        record = await self.get_run(run_id, tenant_id)

        active = _ACTIVE_RUNS.get(run_id)
        if active is not None:
            self.orchestrator.cancel(active)

        was_approved = record.status == PayrollRunStatus.APPROVED.value
        run = self._to_domain(record)
        self.orchestrator.cancel(run, detached=run.status == PayrollRunStatus.CALCULATING)
        await self._persist(record, run)

        if was_approved:
            await self.locking_service.unlock_structures_for_run(record.payroll_run_id)
        return record

    async def get_snapshots(
        self, run_id: UUID, tenant_id: str | None = None, include_history: bool = False
    ) -> list[PayslipSnapshot]:
        """Snapshots of a run, current only unless ``include_history``."""
        record = await self.get_run(run_id, tenant_id)
        items = record.items if include_history else record.current_items
        return [i.to_snapshot() for i in sorted(items, key=lambda i: (i.employee_id, i.version))]

    # ===== Record <-> domain =====

    @staticmethod
    def _to_domain(record: PayrollRunRecord) -> PayrollRun:
        return PayrollRun(
            tenant_id=record.tenant_id,
            period=PayrollPeriod(year=record.year, month=record.month),
            run_id=record.payroll_run_id,
            status=record.status,
            total_employees=record.total_employees,
            items={i.employee_id: i.to_snapshot() for i in record.current_items},
            history=[i.to_snapshot() for i in record.items if not i.is_current],
            errors=[RunError(**e) for e in record.errors],
            skipped_employee_ids=list(record.skipped_employee_ids),
            approved_at=record.approved_at,
            paid_at=record.paid_at,
            cancelled_at=record.cancelled_at,
        )

    async def _persist(self, record: PayrollRunRecord, run: PayrollRun) -> None:
        current_ids = {s.snapshot_id for s in run.items.values()}
        stored_ids = set()
        for item in record.items:
            item.is_current = item.snapshot_id in current_ids
            stored_ids.add(item.snapshot_id)

        for snapshot in sorted(run.items.values(), key=lambda s: s.employee_id):
            if snapshot.snapshot_id not in stored_ids:
                record.items.append(PayrollRunItem.from_snapshot(snapshot))

        record.status = PayrollRunStatus(run.status).value
        record.total_employees = run.total_employees
        record.errors = [e.to_dict() for e in run.errors]
        record.skipped_employee_ids = list(run.skipped_employee_ids)
        record.approved_at = run.approved_at
        record.paid_at = run.paid_at
        record.cancelled_at = run.cancelled_at
        await self.session.flush()
