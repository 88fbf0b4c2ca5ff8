"""Default breakup suggestion and breakup validation."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from compensation_engine.calculators.balancing import annual_mismatch, evaluate_structure
from compensation_engine.calculators.types import (
    CTC_TOLERANCE_ANNUAL,
    MONTHS_IN_YEAR,
    CalculationMode,
    ComponentCategory,
    SalaryComponent,
    SalaryStructure,
    StatutoryKind,
    StructureMode,
    TaxTreatment,
)

if TYPE_CHECKING:
    from compensation_engine.payroll_config import PayrollConfig

_ZERO = Decimal("0")

BASIC_SHARE = Decimal("0.50")
FALLBACK_BASIC_SHARE = Decimal("0.40")
HRA_SHARE_OF_BASIC = Decimal("0.40")


def _whole(amount: Decimal) -> Decimal:
    return amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class BreakupSuggestion:
    """A balanced starting structure plus the employee deductions it implies."""

    structure: SalaryStructure
    deductions: tuple[SalaryComponent, ...]
    basic_share: Decimal

    @property
    def monthly_ctc(self) -> Decimal:
        return _whole(self.structure.monthly_ctc)


def _fixed(
    component_id: str,
    name: str,
    category: ComponentCategory,
    amount: Decimal,
    **flags,
) -> SalaryComponent:
    return SalaryComponent(
        id=component_id,
        name=name,
        category=category,
        calculation_mode=CalculationMode.FIXED.value,
        value=amount,
        monthly_amount=amount,
        **flags,
    )


def _split(monthly_ctc: Decimal, basic_share: Decimal, pf_ceiling: Decimal, pf_rate: Decimal):
    basic = _whole(monthly_ctc * basic_share)
    hra = _whole(basic * HRA_SHARE_OF_BASIC)
    employer_pf = _whole(min(basic, pf_ceiling) * pf_rate)
    special = monthly_ctc - basic - hra - employer_pf
    return basic, hra, employer_pf, special


def suggest_structure(
    owner_id: str, annual_ctc: Decimal, config: PayrollConfig
) -> BreakupSuggestion:
    """Propose the standard split for a CTC.

    Basic is half the monthly CTC, HRA 40% of Basic, employer PF is
    charged on Basic up to the PF ceiling and Special Allowance takes the
    rest. When that leaves Special Allowance negative, Basic drops to 40%.
    """
    if annual_ctc <= 0:
        raise ValueError("annual_ctc must be positive")

    pf = config.provident_fund
    pf_rate = pf.employer_rate if pf.enabled else _ZERO
    monthly_ctc = _whole(annual_ctc / MONTHS_IN_YEAR)

    basic_share = BASIC_SHARE
    basic, hra, employer_pf, special = _split(monthly_ctc, basic_share, pf.wage_ceiling, pf_rate)
    if special < 0:
        basic_share = FALLBACK_BASIC_SHARE
        basic, hra, employer_pf, special = _split(
            monthly_ctc, basic_share, pf.wage_ceiling, pf_rate
        )

    components = [
        _fixed("basic", "Basic Salary", ComponentCategory.EARNING, basic,
               is_basic=True, consider_for_pf=True, consider_for_esi=True),
        _fixed("hra", "House Rent Allowance", ComponentCategory.EARNING, hra,
               consider_for_esi=True),
        _fixed("special", "Special Allowance", ComponentCategory.EARNING, max(special, _ZERO),
               consider_for_esi=True, is_remainder_component=True),
    ]
    if employer_pf > 0:
        components.append(
            _fixed("employer_pf", "Employer PF", ComponentCategory.EMPLOYER_CONTRIBUTION,
                   employer_pf, statutory=StatutoryKind.PROVIDENT_FUND, prorate=False)
        )

    structure = SalaryStructure(
        owner_id=owner_id,
        annual_ctc=annual_ctc,
        mode=StructureMode.AUTO,
        components=tuple(components),
    )
    balanced = evaluate_structure(structure).structure

    deductions = []
    employee_pf = _whole(min(basic, pf.wage_ceiling) * pf.employee_rate) if pf.enabled else _ZERO
    if employee_pf > 0:
        deductions.append(
            _fixed("employee_pf", "Employee PF", ComponentCategory.DEDUCTION, employee_pf,
                   statutory=StatutoryKind.PROVIDENT_FUND, tax_treatment=TaxTreatment.PRE_TAX,
                   prorate=False)
        )
    pt = config.professional_tax
    if pt.enabled and pt.monthly_amount > 0:
        deductions.append(
            _fixed("professional_tax", "Professional Tax", ComponentCategory.DEDUCTION,
                   pt.monthly_amount, statutory=StatutoryKind.PROFESSIONAL_TAX,
                   tax_treatment=TaxTreatment.PRE_TAX, prorate=False)
        )

    return BreakupSuggestion(
        structure=balanced,
        deductions=tuple(deductions),
        basic_share=basic_share,
    )


@dataclass(frozen=True)
class BreakupValidation:
    """Monthly totals of a proposed breakup checked against its CTC."""

    expected_annual_ctc: Decimal
    annual_ctc: Decimal
    mismatch: Decimal
    monthly_gross: Decimal
    monthly_deductions: Decimal
    monthly_net: Decimal
    monthly_employer_contributions: Decimal

    @property
    def is_valid(self) -> bool:
        return abs(self.mismatch) <= CTC_TOLERANCE_ANNUAL


def validate_breakup(structure: SalaryStructure) -> BreakupValidation:
    """Check the monthly amounts already on a structure against its CTC.

    Nothing is resolved or balanced here; components without an amount
    count as zero.
    """

    def total(category: ComponentCategory) -> Decimal:
        return sum(
            (
                c.monthly_amount or _ZERO
                for c in structure.selected
                if c.category == category
            ),
            _ZERO,
        )

    gross = total(ComponentCategory.EARNING)
    deductions = total(ComponentCategory.DEDUCTION)
    employer = total(ComponentCategory.EMPLOYER_CONTRIBUTION)
    mismatch = annual_mismatch(structure.monthly_ctc, structure.selected)

    return BreakupValidation(
        expected_annual_ctc=structure.annual_ctc,
        annual_ctc=(gross + employer) * MONTHS_IN_YEAR,
        mismatch=mismatch,
        monthly_gross=gross,
        monthly_deductions=deductions,
        monthly_net=gross - deductions,
        monthly_employer_contributions=employer,
    )
