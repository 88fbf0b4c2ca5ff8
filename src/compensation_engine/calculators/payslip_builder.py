"""Payslip snapshot builder with deterministic hashing."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Iterable
from uuid import UUID

from compensation_engine.calculators.tax_annualizer import TaxComputation
from compensation_engine.calculators.types import AttendanceParams, SalaryComponent


class LineType(str, Enum):
    """Payslip line types."""

    EARNING = "EARNING"
    PRE_TAX_DEDUCTION = "PRE_TAX_DEDUCTION"
    INCOME_TAX = "INCOME_TAX"
    POST_TAX_DEDUCTION = "POST_TAX_DEDUCTION"
    EMPLOYER_CONTRIBUTION = "EMPLOYER_CONTRIBUTION"


@dataclass(frozen=True)
class PayslipLine:
    """One frozen line on a payslip. Amounts are always positive."""

    line_type: LineType
    name: str
    amount: Decimal
    component_id: str | None = None
    original_amount: Decimal | None = None  # before pro-ration
    explanation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "line_type": self.line_type.value,
            "name": self.name,
            "amount": str(self.amount),
            "component_id": self.component_id,
            "original_amount": (
                str(self.original_amount) if self.original_amount is not None else None
            ),
            "explanation": self.explanation,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PayslipLine:
        original = data.get("original_amount")
        return cls(
            line_type=LineType(data["line_type"]),
            name=data["name"],
            amount=Decimal(data["amount"]),
            component_id=data.get("component_id"),
            original_amount=Decimal(original) if original is not None else None,
            explanation=data.get("explanation"),
        )


@dataclass(frozen=True)
class PayslipSnapshot:
    """Immutable per-employee payroll result.

    net_pay = gross_earnings − pre_tax_total − income_tax − post_tax_total

    Employer contributions are recorded but never reduce net pay.
    Corrections produce a new snapshot with ``version + 1`` and
    ``supersedes_id`` set; the previous snapshot is kept.
    """

    snapshot_id: UUID
    employee_id: str
    run_id: UUID | None
    version: int
    supersedes_id: UUID | None

    earnings: tuple[PayslipLine, ...]
    pre_tax_deductions: tuple[PayslipLine, ...]
    post_tax_deductions: tuple[PayslipLine, ...]
    employer_contributions: tuple[PayslipLine, ...]

    gross_earnings: Decimal
    pre_tax_total: Decimal
    taxable_income: Decimal
    income_tax: Decimal
    post_tax_total: Decimal
    employer_total: Decimal
    net_pay: Decimal

    present_days: Decimal
    total_days: Decimal
    tax_remaining_months: int
    annual_taxable: Decimal

    structure_id: UUID | None
    structure_revision: int | None
    annual_ctc: Decimal | None
    inputs_fingerprint: str
    engine_version: str
    requires_review: bool = False

    @property
    def total_deductions(self) -> Decimal:
        return self.pre_tax_total + self.income_tax + self.post_tax_total

    def to_dict(self) -> dict[str, Any]:
        """Return JSON-safe representation for persistence."""
        return {
            "snapshot_id": str(self.snapshot_id),
            "employee_id": self.employee_id,
            "run_id": str(self.run_id) if self.run_id else None,
            "version": self.version,
            "supersedes_id": str(self.supersedes_id) if self.supersedes_id else None,
            "earnings": [l.to_dict() for l in self.earnings],
            "pre_tax_deductions": [l.to_dict() for l in self.pre_tax_deductions],
            "post_tax_deductions": [l.to_dict() for l in self.post_tax_deductions],
            "employer_contributions": [l.to_dict() for l in self.employer_contributions],
            "gross_earnings": str(self.gross_earnings),
            "pre_tax_total": str(self.pre_tax_total),
            "taxable_income": str(self.taxable_income),
            "income_tax": str(self.income_tax),
            "post_tax_total": str(self.post_tax_total),
            "employer_total": str(self.employer_total),
            "net_pay": str(self.net_pay),
            "present_days": str(self.present_days),
            "total_days": str(self.total_days),
            "tax_remaining_months": self.tax_remaining_months,
            "annual_taxable": str(self.annual_taxable),
            "structure_id": str(self.structure_id) if self.structure_id else None,
            "structure_revision": self.structure_revision,
            "annual_ctc": str(self.annual_ctc) if self.annual_ctc is not None else None,
            "inputs_fingerprint": self.inputs_fingerprint,
            "engine_version": self.engine_version,
            "requires_review": self.requires_review,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PayslipSnapshot:
        def lines(key: str) -> tuple[PayslipLine, ...]:
            return tuple(PayslipLine.from_dict(l) for l in data.get(key, []))

        def opt_uuid(key: str) -> UUID | None:
            return UUID(data[key]) if data.get(key) else None

        return cls(
            snapshot_id=UUID(data["snapshot_id"]),
            employee_id=data["employee_id"],
            run_id=opt_uuid("run_id"),
            version=int(data["version"]),
            supersedes_id=opt_uuid("supersedes_id"),
            earnings=lines("earnings"),
            pre_tax_deductions=lines("pre_tax_deductions"),
            post_tax_deductions=lines("post_tax_deductions"),
            employer_contributions=lines("employer_contributions"),
            gross_earnings=Decimal(data["gross_earnings"]),
            pre_tax_total=Decimal(data["pre_tax_total"]),
            taxable_income=Decimal(data["taxable_income"]),
            income_tax=Decimal(data["income_tax"]),
            post_tax_total=Decimal(data["post_tax_total"]),
            employer_total=Decimal(data["employer_total"]),
            net_pay=Decimal(data["net_pay"]),
            present_days=Decimal(data["present_days"]),
            total_days=Decimal(data["total_days"]),
            tax_remaining_months=int(data["tax_remaining_months"]),
            annual_taxable=Decimal(data["annual_taxable"]),
            structure_id=opt_uuid("structure_id"),
            structure_revision=data.get("structure_revision"),
            annual_ctc=Decimal(data["annual_ctc"]) if data.get("annual_ctc") else None,
            inputs_fingerprint=data["inputs_fingerprint"],
            engine_version=data["engine_version"],
            requires_review=data.get("requires_review", False),
        )


class PayslipSnapshotBuilder:
    """Builds payslip lines and snapshots.

    Rounding:
    - Internal pro-ration at >=4 decimals
    - Lines rounded to paise (2 decimals), totals summed from rounded lines
    """

    PRECISION = Decimal("0.0001")
    OUTPUT_PRECISION = Decimal("0.01")

    @staticmethod
    def round_to_paise(amount: Decimal) -> Decimal:
        """Round amount to 2 decimal places."""
        return amount.quantize(PayslipSnapshotBuilder.OUTPUT_PRECISION, rounding=ROUND_HALF_UP)

    @staticmethod
    def prorate(amount: Decimal, attendance: AttendanceParams) -> Decimal:
        """Scale a monthly amount by present/total days."""
        scaled = (amount * attendance.present_days / attendance.total_days).quantize(
            PayslipSnapshotBuilder.PRECISION, rounding=ROUND_HALF_UP
        )
        return PayslipSnapshotBuilder.round_to_paise(scaled)

    @staticmethod
    def create_earning_line(
        component: SalaryComponent, attendance: AttendanceParams
    ) -> PayslipLine:
        """Earning line, pro-rated when the component is attendance-linked."""
        monthly = component.monthly_amount or Decimal("0")
        if component.prorate:
            amount = PayslipSnapshotBuilder.prorate(monthly, attendance)
            explanation = f"{attendance.present_days}/{attendance.total_days} days"
        else:
            amount = PayslipSnapshotBuilder.round_to_paise(monthly)
            explanation = None
        return PayslipLine(
            line_type=LineType.EARNING,
            name=component.name,
            amount=amount,
            component_id=component.id,
            original_amount=monthly,
            explanation=explanation,
        )

    @staticmethod
    def create_line(
        line_type: LineType,
        name: str,
        amount: Decimal,
        component_id: str | None = None,
        explanation: str | None = None,
    ) -> PayslipLine:
        return PayslipLine(
            line_type=line_type,
            name=name,
            amount=PayslipSnapshotBuilder.round_to_paise(abs(amount)),
            component_id=component_id,
            explanation=explanation,
        )

    @staticmethod
    def sum_lines(lines: Iterable[PayslipLine]) -> Decimal:
        return sum((l.amount for l in lines), Decimal("0"))

    @staticmethod
    def compute_fingerprint(data: Any) -> str:
        """Deterministic hash of calculation inputs."""
        json_str = json.dumps(data, sort_keys=True, default=str)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    @staticmethod
    def generate_snapshot_id(
        run_id: UUID | None,
        employee_id: str,
        version: int,
        inputs_fingerprint: str,
        engine_version: str,
    ) -> UUID:
        """Same inputs always produce the same snapshot id."""
        data = {
            "run_id": str(run_id) if run_id else None,
            "employee_id": employee_id,
            "version": version,
            "inputs_fingerprint": inputs_fingerprint,
            "engine_version": engine_version,
        }
        json_str = json.dumps(data, sort_keys=True)
        return UUID(bytes=hashlib.sha256(json_str.encode()).digest()[:16])

    @classmethod
    def build(
        cls,
        *,
        employee_id: str,
        run_id: UUID | None,
        earnings: Iterable[PayslipLine],
        pre_tax_deductions: Iterable[PayslipLine],
        post_tax_deductions: Iterable[PayslipLine],
        employer_contributions: Iterable[PayslipLine],
        tax: TaxComputation,
        attendance: AttendanceParams,
        inputs_fingerprint: str,
        engine_version: str,
        structure_id: UUID | None = None,
        structure_revision: int | None = None,
        annual_ctc: Decimal | None = None,
        previous: PayslipSnapshot | None = None,
    ) -> PayslipSnapshot:
        """Assemble totals and freeze the snapshot.

        The income tax line is derived from ``tax``; ``previous`` makes
        this snapshot the next version of an earlier one.
        """
        earnings_t = tuple(earnings)
        pre_t = tuple(pre_tax_deductions)
        post_t = tuple(post_tax_deductions)
        employer_t = tuple(employer_contributions)

        gross = cls.sum_lines(earnings_t)
        pre_total = cls.sum_lines(pre_t)
        post_total = cls.sum_lines(post_t)
        income_tax = cls.round_to_paise(tax.monthly_withholding)
        net = gross - pre_total - income_tax - post_total

        version = previous.version + 1 if previous else 1
        snapshot_id = cls.generate_snapshot_id(
            run_id, employee_id, version, inputs_fingerprint, engine_version
        )

        return PayslipSnapshot(
            snapshot_id=snapshot_id,
            employee_id=employee_id,
            run_id=run_id,
            version=version,
            supersedes_id=previous.snapshot_id if previous else None,
            earnings=earnings_t,
            pre_tax_deductions=pre_t,
            post_tax_deductions=post_t,
            employer_contributions=employer_t,
            gross_earnings=gross,
            pre_tax_total=pre_total,
            taxable_income=tax.monthly_taxable,
            income_tax=income_tax,
            post_tax_total=post_total,
            employer_total=cls.sum_lines(employer_t),
            net_pay=net,
            present_days=attendance.present_days,
            total_days=attendance.total_days,
            tax_remaining_months=tax.remaining_months,
            annual_taxable=tax.annual_taxable,
            structure_id=structure_id,
            structure_revision=structure_revision,
            annual_ctc=annual_ctc,
            inputs_fingerprint=inputs_fingerprint,
            engine_version=engine_version,
            requires_review=net < 0,
        )
