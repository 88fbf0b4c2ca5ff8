"""Per-employee payroll calculation pipeline."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from compensation_engine.calculators.balancing import evaluate_structure
from compensation_engine.calculators.errors import (
    CompensationError,
    EmployeeCalculationError,
)
from compensation_engine.calculators.payslip_builder import (
    LineType,
    PayslipLine,
    PayslipSnapshot,
    PayslipSnapshotBuilder,
)
from compensation_engine.calculators.statutory import (
    Contribution,
    StatutoryAmounts,
    StatutoryCalculator,
)
from compensation_engine.calculators.tax_annualizer import (
    TaxAnnualizer,
    remaining_months_in_financial_year,
)
from compensation_engine.calculators.types import (
    AttendanceParams,
    ComponentCategory,
    SalaryComponent,
    SalaryStructure,
    StatutoryKind,
    TaxTreatment,
)
from compensation_engine.payroll_config import PayrollConfig

DEFAULT_ENGINE_VERSION = "1.0.0"

PF_EMPLOYEE_LINE = "Provident Fund"
PF_EMPLOYER_LINE = "Employer Provident Fund"
ESI_EMPLOYEE_LINE = "Insurance Scheme"
ESI_EMPLOYER_LINE = "Employer Insurance Scheme"
PT_LINE = "Professional Tax"


@dataclass(frozen=True)
class PayrollPeriod:
    """One calendar pay month."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {self.month}")

    @property
    def label(self) -> str:
        return f"{self.year}-{self.month:02d}"


@dataclass(frozen=True)
class EmployeePayrollInput:
    """Everything the engine reads for one employee, fetched up front.

    ``attendance`` defaults to the days employed in the period (from the
    joining and exit dates). ``remaining_months`` overrides the months
    left in the financial year for tax projection.
    """

    employee_id: str
    structure: SalaryStructure | None
    attendance: AttendanceParams | None = None
    remaining_months: int | None = None
    joining_date: date | None = None
    exit_date: date | None = None
    statutory_opt_outs: frozenset[StatutoryKind] = field(default_factory=frozenset)


class CompensationEngine:
    """Calculates one employee's payslip snapshot.

    Pipeline (stable order per employee):
    1) Decompose and balance the structure
    2) Earnings, pro-rated by attendance
    3) Statutory contributions on the pro-rated earnings
    4) Pre-tax deductions, taxable income
    5) Annualized income tax
    6) Post-tax deductions
    7) Employer contributions (recorded, never deducted)
    8) Freeze the snapshot

    The engine holds only read-only config, so one instance can be
    shared across worker threads.
    """

    def __init__(
        self,
        config: PayrollConfig | None = None,
        engine_version: str = DEFAULT_ENGINE_VERSION,
    ):
        self.config = config or PayrollConfig()
        self.engine_version = engine_version
        self.statutory = StatutoryCalculator(self.config)
        self.tax = TaxAnnualizer(self.config.income_tax)

    def calculate_employee(
        self,
        employee: EmployeePayrollInput,
        period: PayrollPeriod,
        run_id: UUID | None = None,
        previous: PayslipSnapshot | None = None,
    ) -> PayslipSnapshot:
        """Calculate the payslip for one employee.

        Raises:
            EmployeeCalculationError: the employee could not be calculated.
                The original error is chained as ``__cause__``.
        """
        if employee.structure is None:
            raise EmployeeCalculationError(
                employee.employee_id, "no salary structure assigned"
            )

        try:
            return self._calculate(employee, employee.structure, period, run_id, previous)
        except EmployeeCalculationError:
            raise
        except (CompensationError, ValueError) as e:
            raise EmployeeCalculationError(employee.employee_id, str(e)) from e

    def _calculate(
        self,
        employee: EmployeePayrollInput,
        structure: SalaryStructure,
        period: PayrollPeriod,
        run_id: UUID | None,
        previous: PayslipSnapshot | None,
    ) -> PayslipSnapshot:
        # 1) Decompose and balance
        evaluation = evaluate_structure(structure)
        issues = evaluation.issues
        if issues:
            raise EmployeeCalculationError(
                employee.employee_id, "; ".join(str(i) for i in issues)
            )
        components = evaluation.structure.selected

        attendance = employee.attendance or AttendanceParams.for_period(
            period.year, period.month, employee.joining_date, employee.exit_date
        )

        # 2) Earnings
        earnings = [
            PayslipSnapshotBuilder.create_earning_line(c, attendance)
            for c in components
            if c.category == ComponentCategory.EARNING
        ]
        prorated = [
            c.with_amount(line.amount)
            for c, line in zip(
                (c for c in components if c.category == ComponentCategory.EARNING),
                earnings,
            )
        ]

        # 3) Statutory
        statutory = self._apply_opt_outs(
            self.statutory.calculate(prorated), employee.statutory_opt_outs
        )

        # 4) Deductions split by tax treatment
        pre_tax = self._statutory_deduction_lines(statutory)
        post_tax: list[PayslipLine] = []
        for comp in components:
            if comp.category != ComponentCategory.DEDUCTION or comp.statutory is not None:
                continue
            if comp.effective_tax_treatment == TaxTreatment.PRE_TAX:
                pre_tax.append(self._component_line(LineType.PRE_TAX_DEDUCTION, comp))
            else:
                post_tax.append(self._component_line(LineType.POST_TAX_DEDUCTION, comp))

        gross = PayslipSnapshotBuilder.sum_lines(earnings)
        taxable = gross - PayslipSnapshotBuilder.sum_lines(pre_tax)

        # 5) Income tax
        remaining_months = employee.remaining_months
        if remaining_months is None:
            remaining_months = remaining_months_in_financial_year(
                period.year, period.month, self.config.financial_year, employee.joining_date
            )
        tax = self.tax.monthly_withholding(taxable, remaining_months)

        # 7) Employer contributions
        employer = self._statutory_employer_lines(statutory)
        employer.extend(
            self._employer_line(c, attendance)
            for c in components
            if c.category == ComponentCategory.EMPLOYER_CONTRIBUTION and c.statutory is None
        )

        # 8) Snapshot
        fingerprint = PayslipSnapshotBuilder.compute_fingerprint(
            self._inputs_data(employee, evaluation.structure, period, attendance, remaining_months)
        )
        return PayslipSnapshotBuilder.build(
            employee_id=employee.employee_id,
            run_id=run_id,
            earnings=earnings,
            pre_tax_deductions=pre_tax,
            post_tax_deductions=post_tax,
            employer_contributions=employer,
            tax=tax,
            attendance=attendance,
            inputs_fingerprint=fingerprint,
            engine_version=self.engine_version,
            structure_id=structure.structure_id,
            structure_revision=structure.revision,
            annual_ctc=structure.annual_ctc,
            previous=previous,
        )

    @staticmethod
    def _apply_opt_outs(
        amounts: StatutoryAmounts, opt_outs: frozenset[StatutoryKind]
    ) -> StatutoryAmounts:
        if not opt_outs:
            return amounts
        return StatutoryAmounts(
            provident_fund=(
                Contribution.none(amounts.provident_fund.wage)
                if StatutoryKind.PROVIDENT_FUND in opt_outs
                else amounts.provident_fund
            ),
            insurance_scheme=(
                Contribution.none(amounts.insurance_scheme.wage)
                if StatutoryKind.INSURANCE_SCHEME in opt_outs
                else amounts.insurance_scheme
            ),
            professional_tax=(
                Decimal("0")
                if StatutoryKind.PROFESSIONAL_TAX in opt_outs
                else amounts.professional_tax
            ),
        )

    @staticmethod
    def _statutory_deduction_lines(amounts: StatutoryAmounts) -> list[PayslipLine]:
        lines = []
        pf = amounts.provident_fund
        if pf.employee > 0:
            lines.append(PayslipSnapshotBuilder.create_line(
                LineType.PRE_TAX_DEDUCTION, PF_EMPLOYEE_LINE, pf.employee,
                explanation=f"on wage {pf.wage}",
            ))
        esi = amounts.insurance_scheme
        if esi.employee > 0:
            lines.append(PayslipSnapshotBuilder.create_line(
                LineType.PRE_TAX_DEDUCTION, ESI_EMPLOYEE_LINE, esi.employee,
                explanation=f"on gross {esi.wage}",
            ))
        if amounts.professional_tax > 0:
            lines.append(PayslipSnapshotBuilder.create_line(
                LineType.PRE_TAX_DEDUCTION, PT_LINE, amounts.professional_tax
            ))
        return lines

    @staticmethod
    def _statutory_employer_lines(amounts: StatutoryAmounts) -> list[PayslipLine]:
        lines = []
        if amounts.provident_fund.employer > 0:
            lines.append(PayslipSnapshotBuilder.create_line(
                LineType.EMPLOYER_CONTRIBUTION, PF_EMPLOYER_LINE, amounts.provident_fund.employer
            ))
        if amounts.insurance_scheme.employer > 0:
            lines.append(PayslipSnapshotBuilder.create_line(
                LineType.EMPLOYER_CONTRIBUTION, ESI_EMPLOYER_LINE, amounts.insurance_scheme.employer
            ))
        return lines

    @staticmethod
    def _component_line(line_type: LineType, comp: SalaryComponent) -> PayslipLine:
        return PayslipSnapshotBuilder.create_line(
            line_type, comp.name, comp.monthly_amount or Decimal("0"), component_id=comp.id
        )

    @staticmethod
    def _employer_line(comp: SalaryComponent, attendance: AttendanceParams) -> PayslipLine:
        monthly = comp.monthly_amount or Decimal("0")
        if not comp.prorate:
            return CompensationEngine._component_line(LineType.EMPLOYER_CONTRIBUTION, comp)
        return PayslipSnapshotBuilder.create_line(
            LineType.EMPLOYER_CONTRIBUTION,
            comp.name,
            PayslipSnapshotBuilder.prorate(monthly, attendance),
            component_id=comp.id,
            explanation=f"{attendance.present_days}/{attendance.total_days} days",
        )

    def _inputs_data(
        self,
        employee: EmployeePayrollInput,
        structure: SalaryStructure,
        period: PayrollPeriod,
        attendance: AttendanceParams,
        remaining_months: int,
    ) -> dict[str, Any]:
        return {
            "employee_id": employee.employee_id,
            "period": period.label,
            "structure": structure.to_dict(),
            "attendance": [str(attendance.present_days), str(attendance.total_days)],
            "remaining_months": remaining_months,
            "opt_outs": sorted(k.value for k in employee.statutory_opt_outs),
            "config": dataclasses.asdict(self.config),
        }
