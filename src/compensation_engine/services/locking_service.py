"""Structure locking for approved payroll runs."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from compensation_engine.models import PayrollRunItem, PayrollRunRecord, SalaryStructureRevision
from compensation_engine.services.state_machine import PayrollRunStatus


class LockingService:
    """Locks the structure revisions behind a run's snapshots.

    When a payroll run is approved, every structure revision that
    produced one of its current snapshots is marked locked by that run.
    Saving a locked structure creates a new revision instead of editing
    it, so a paid run can always be traced to the exact inputs it used.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def lock_structures_for_run(self, run: PayrollRunRecord) -> int:
        """Lock structure revisions used by the run's current snapshots.

        Revisions already locked by an earlier run keep that lock.
        Returns count of locked revisions.
        """
        structure_ids = sorted({
            item.structure_id for item in run.current_items if item.structure_id is not None
        })
        if not structure_ids:
            return 0

        result = await self.session.execute(
            update(SalaryStructureRevision)
            .where(
                SalaryStructureRevision.structure_id.in_(structure_ids),
                SalaryStructureRevision.locked_by_run_id.is_(None),
            )
            .values(locked_by_run_id=run.payroll_run_id, locked_at=datetime.now(timezone.utc))
        )
        return result.rowcount or 0

    async def unlock_structures_for_run(self, run_id: UUID) -> int:
        """Release locks held by a run (cancelled after approval).

        Returns count of unlocked revisions.
        """
        result = await self.session.execute(
            update(SalaryStructureRevision)
            .where(SalaryStructureRevision.locked_by_run_id == run_id)
            .values(locked_by_run_id=None, locked_at=None)
        )
        return result.rowcount or 0

    async def is_referenced_by_run(self, structure_id: UUID) -> bool:
        """Whether a current snapshot of a live run was calculated from this revision.

        Such a revision is frozen before approval locks it; cancelled runs
        release it.
        """
        result = await self.session.execute(
            select(
                exists()
                .where(
                    PayrollRunItem.structure_id == structure_id,
                    PayrollRunItem.is_current.is_(True),
                    PayrollRunItem.payroll_run_id == PayrollRunRecord.payroll_run_id,
                    PayrollRunRecord.status != PayrollRunStatus.CANCELLED.value,
                )
            )
        )
        return bool(result.scalar())

    async def get_locked_structures(self, run_id: UUID) -> list[SalaryStructureRevision]:
        """Get all structure revisions locked by a run."""
        result = await self.session.execute(
            select(SalaryStructureRevision).where(
                SalaryStructureRevision.locked_by_run_id == run_id
            )
        )
        return list(result.scalars().all())
