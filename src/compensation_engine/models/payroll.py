"""Payroll run and payslip snapshot models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from compensation_engine.calculators.payslip_builder import PayslipSnapshot
from compensation_engine.models.base import Base, TimestampMixin


class PayrollRunRecord(Base, TimestampMixin):
    """Stored payroll run for one tenant and month."""

    __tablename__ = "payroll_run"

    payroll_run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="INITIATED")
    total_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[list[Any]] = mapped_column(nullable=False, default=list)
    skipped_employee_ids: Mapped[list[Any]] = mapped_column(nullable=False, default=list)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint("month BETWEEN 1 AND 12", name="payroll_run_month_check"),
        CheckConstraint(
            "status IN ('INITIATED', 'CALCULATING', 'CALCULATED', 'APPROVED', 'PAID', 'CANCELLED')",
            name="payroll_run_status_check",
        ),
        Index("payroll_run_tenant_period_idx", "tenant_id", "year", "month"),
    )

    # Relationships
    items: Mapped[list[PayrollRunItem]] = relationship(
        back_populates="payroll_run",
        lazy="selectin",
        order_by="PayrollRunItem.employee_id",
    )

    @property
    def current_items(self) -> list[PayrollRunItem]:
        return [i for i in self.items if i.is_current]

    @property
    def processed_employees(self) -> int:
        return len(self.current_items)

    @property
    def failed_employees(self) -> int:
        return len(self.errors)

    @property
    def review_required_count(self) -> int:
        return sum(1 for i in self.current_items if i.requires_review)

    @property
    def total_gross(self) -> Decimal:
        return sum((i.gross_earnings for i in self.current_items), Decimal("0"))

    @property
    def total_deductions(self) -> Decimal:
        return sum((i.total_deductions for i in self.current_items), Decimal("0"))

    @property
    def total_net_pay(self) -> Decimal:
        return sum((i.net_pay for i in self.current_items), Decimal("0"))

    @property
    def total_employer_contributions(self) -> Decimal:
        return sum((i.employer_total for i in self.current_items), Decimal("0"))


class PayrollRunItem(Base, TimestampMixin):
    """One frozen payslip snapshot.

    Rows are only inserted, never updated, apart from ``is_current``
    which is cleared when a newer version supersedes the row.
    """

    __tablename__ = "payroll_run_item"

    snapshot_id: Mapped[UUID] = mapped_column(primary_key=True)
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[str] = mapped_column(String, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    supersedes_id: Mapped[UUID | None] = mapped_column(nullable=True)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Structures submitted inline with a calculation are never stored
    structure_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    gross_earnings: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    net_pay: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    employer_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    requires_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    inputs_fingerprint: Mapped[str] = mapped_column(String, nullable=False)
    snapshot: Mapped[dict[str, Any]] = mapped_column(nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "payroll_run_id", "employee_id", "version", name="payroll_run_item_version_unique"
        ),
    )

    # Relationships
    payroll_run: Mapped[PayrollRunRecord] = relationship(back_populates="items")

    @classmethod
    def from_snapshot(cls, snapshot: PayslipSnapshot) -> PayrollRunItem:
        return cls(
            snapshot_id=snapshot.snapshot_id,
            payroll_run_id=snapshot.run_id,
            employee_id=snapshot.employee_id,
            version=snapshot.version,
            supersedes_id=snapshot.supersedes_id,
            is_current=True,
            structure_id=snapshot.structure_id,
            gross_earnings=snapshot.gross_earnings,
            total_deductions=snapshot.total_deductions,
            net_pay=snapshot.net_pay,
            employer_total=snapshot.employer_total,
            requires_review=snapshot.requires_review,
            inputs_fingerprint=snapshot.inputs_fingerprint,
            snapshot=snapshot.to_dict(),
        )

    def to_snapshot(self) -> PayslipSnapshot:
        return PayslipSnapshot.from_dict(self.snapshot)
