"""Income tax withholding by annualizing monthly taxable income."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from compensation_engine.calculators.types import MONTHS_IN_YEAR

if TYPE_CHECKING:
    from compensation_engine.payroll_config import FinancialYear, IncomeTaxConfig

_ZERO = Decimal("0")
_PRECISION = Decimal("0.01")


def _round(amount: Decimal) -> Decimal:
    return amount.quantize(_PRECISION, rounding=ROUND_HALF_UP)


def remaining_months_in_financial_year(
    year: int,
    month: int,
    financial_year: FinancialYear,
    joining_date: date | None = None,
) -> int:
    """Months of the financial year an employee's income is projected over.

    A full-year employee projects over 12 months. An employee who joined
    inside the financial year containing ``(year, month)`` projects over
    the months from the joining month to the end of that year.
    """
    start_month = financial_year.start_month
    fy_start_year = year if month >= start_month else year - 1
    fy_start = date(fy_start_year, start_month, 1)

    if joining_date is None or joining_date <= fy_start:
        return MONTHS_IN_YEAR

    fy_end_index = fy_start_year * 12 + (start_month - 1) + MONTHS_IN_YEAR
    joined_index = joining_date.year * 12 + (joining_date.month - 1)
    return max(1, min(MONTHS_IN_YEAR, fy_end_index - joined_index))


@dataclass(frozen=True)
class TaxComputation:
    """Audit trail of one withholding calculation."""

    monthly_taxable: Decimal
    remaining_months: int
    annual_taxable: Decimal
    annual_tax: Decimal
    monthly_withholding: Decimal


class TaxAnnualizer:
    """Projects monthly taxable income to a year and applies slabs.

    annual_taxable      = monthly_taxable × remaining_months
    annual_tax          = slabs(annual_taxable − standard_deduction),
                          less rebate, plus cess
    monthly_withholding = annual_tax / remaining_months
    """

    def __init__(self, config: IncomeTaxConfig):
        self.config = config

    def slab_tax(self, income: Decimal) -> Decimal:
        """Progressive tax over the slab table."""
        if income <= 0:
            return _ZERO

        total = _ZERO
        for slab in sorted(self.config.slabs, key=lambda s: s.lower):
            if income <= slab.lower:
                break
            upper = slab.upper if slab.upper is not None else income
            taxable_in_slab = min(income, upper) - slab.lower
            if taxable_in_slab > 0:
                total += taxable_in_slab * slab.rate

        return total

    def annual_tax(self, annual_taxable: Decimal) -> Decimal:
        """Tax on an annual taxable income, after rebate and cess."""
        income = max(annual_taxable - self.config.standard_deduction, _ZERO)
        tax = self.slab_tax(income)

        limit = self.config.rebate_income_limit
        if limit is not None and income <= limit:
            tax = max(tax - self.config.rebate_amount, _ZERO)

        tax += tax * self.config.cess_rate
        return _round(tax)

    def monthly_withholding(
        self, monthly_taxable: Decimal, remaining_months: int = MONTHS_IN_YEAR
    ) -> TaxComputation:
        """Withholding for one month.

        Raises:
            ValueError: remaining_months outside 1-12.
        """
        if not 1 <= remaining_months <= MONTHS_IN_YEAR:
            raise ValueError(f"remaining_months must be between 1 and 12, got {remaining_months}")

        taxable = max(monthly_taxable, _ZERO)
        annual_taxable = taxable * remaining_months
        annual_tax = self.annual_tax(annual_taxable)

        return TaxComputation(
            monthly_taxable=_round(taxable),
            remaining_months=remaining_months,
            annual_taxable=_round(annual_taxable),
            annual_tax=annual_tax,
            monthly_withholding=_round(annual_tax / remaining_months),
        )
