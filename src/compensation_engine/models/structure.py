"""Salary structure revision model."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from compensation_engine.calculators.types import SalaryStructure
from compensation_engine.models.base import Base, TimestampMixin


class SalaryStructureRevision(Base, TimestampMixin):
    """One revision of an owner's salary structure.

    A revision locked by an approved or paid run is never updated; edits
    create the next revision and retire this one as current.
    """

    __tablename__ = "salary_structure"

    structure_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    owner_id: Mapped[str] = mapped_column(String, nullable=False)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    annual_ctc: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    mode: Mapped[str] = mapped_column(String, nullable=False, default="AUTO")
    components: Mapped[list[Any]] = mapped_column(nullable=False, default=list)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    locked_by_run_id: Mapped[UUID | None] = mapped_column(nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "owner_id", "revision", name="salary_structure_revision_unique"),
        CheckConstraint("mode IN ('AUTO', 'MANUAL')", name="salary_structure_mode_check"),
        CheckConstraint("annual_ctc > 0", name="salary_structure_ctc_positive"),
    )

    @property
    def is_locked(self) -> bool:
        return self.locked_by_run_id is not None

    def to_structure(self) -> SalaryStructure:
        """Rebuild the engine's structure from this revision."""
        return SalaryStructure.from_dict(
            {
                "structureId": str(self.structure_id),
                "ownerId": self.owner_id,
                "annualCTC": str(self.annual_ctc),
                "mode": self.mode,
                "revision": self.revision,
                "components": self.components,
            }
        )
