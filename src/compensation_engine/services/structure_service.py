"""Salary structure persistence with revision semantics."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compensation_engine.calculators.balancing import evaluate_structure, validate_structure
from compensation_engine.calculators.types import SalaryStructure
from compensation_engine.models import SalaryStructureRevision
from compensation_engine.services.locking_service import LockingService

logger = logging.getLogger(__name__)


class StructureService:
    """Stores validated salary structures.

    Operations:
    - get_current: Current revision for an owner
    - save_structure: Validate, then update or revise
    - current_structures: Current structures for a batch of owners
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_current(
        self, tenant_id: str, owner_id: str
    ) -> SalaryStructureRevision | None:
        result = await self.session.execute(
            select(SalaryStructureRevision).where(
                SalaryStructureRevision.tenant_id == tenant_id,
                SalaryStructureRevision.owner_id == owner_id,
                SalaryStructureRevision.is_current.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def list_revisions(
        self, tenant_id: str, owner_id: str
    ) -> list[SalaryStructureRevision]:
        result = await self.session.execute(
            select(SalaryStructureRevision)
            .where(
                SalaryStructureRevision.tenant_id == tenant_id,
                SalaryStructureRevision.owner_id == owner_id,
            )
            .order_by(SalaryStructureRevision.revision)
        )
        return list(result.scalars().all())

    async def save_structure(
        self, tenant_id: str, structure: SalaryStructure
    ) -> SalaryStructureRevision:
        """Validate and persist a structure.

        The current revision is updated in place unless a payroll run has
        locked it or holds a current snapshot calculated from it, in which
        case a new revision becomes current.

        Raises:
            StructureValidationError: the structure may not be saved.
        """
        balanced = validate_structure(evaluate_structure(structure))
        current = await self.get_current(tenant_id, structure.owner_id)

        if current is not None and not await self._is_frozen(current):
            current.annual_ctc = balanced.annual_ctc
            current.mode = balanced.mode.value
            current.components = [c.to_dict() for c in balanced.components]
            await self.session.flush()
            return current

        revision = 1
        if current is not None:
            current.is_current = False
            revision = current.revision + 1
            logger.info(
                "Structure revision %d for %s is in use by a payroll run; creating revision %d",
                current.revision,
                structure.owner_id,
                revision,
            )

        balanced = replace(balanced, structure_id=uuid4(), revision=revision)
        record = SalaryStructureRevision(
            structure_id=balanced.structure_id,
            tenant_id=tenant_id,
            owner_id=balanced.owner_id,
            revision=revision,
            annual_ctc=balanced.annual_ctc,
            mode=balanced.mode.value,
            components=[c.to_dict() for c in balanced.components],
            is_current=True,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    async def _is_frozen(self, record: SalaryStructureRevision) -> bool:
        if record.is_locked:
            return True
        return await LockingService(self.session).is_referenced_by_run(record.structure_id)

    async def current_structures(
        self, tenant_id: str, owner_ids: Iterable[str]
    ) -> dict[str, SalaryStructure]:
        """Current structures keyed by owner, fetched in one query.

        Owners without a structure are absent from the result.
        """
        ids = list(owner_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(SalaryStructureRevision).where(
                SalaryStructureRevision.tenant_id == tenant_id,
                SalaryStructureRevision.owner_id.in_(ids),
                SalaryStructureRevision.is_current.is_(True),
            )
        )
        return {r.owner_id: r.to_structure() for r in result.scalars().all()}
