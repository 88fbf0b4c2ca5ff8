"""Statutory contribution calculators.

Each calculator is a pure function of its wage inputs and config. None
of them read shared state, so they are safe to call from worker threads.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Iterable

from compensation_engine.calculators.types import ComponentCategory, SalaryComponent

if TYPE_CHECKING:
    from compensation_engine.payroll_config import (
        InsuranceSchemeConfig,
        PayrollConfig,
        ProfessionalTaxConfig,
        ProvidentFundConfig,
    )

_ZERO = Decimal("0")
_PRECISION = Decimal("0.01")


def _round(amount: Decimal) -> Decimal:
    return amount.quantize(_PRECISION, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Contribution:
    """Employee and employer shares computed on one wage."""

    wage: Decimal
    employee: Decimal
    employer: Decimal

    @classmethod
    def none(cls, wage: Decimal = _ZERO) -> Contribution:
        return cls(wage=wage, employee=_ZERO, employer=_ZERO)


def _earnings(components: Iterable[SalaryComponent]) -> list[SalaryComponent]:
    return [
        c
        for c in components
        if c.is_selected and c.category == ComponentCategory.EARNING
    ]


def pf_wage(components: Iterable[SalaryComponent]) -> Decimal:
    """Wage the provident fund applies to.

    Sums earnings flagged ``consider_for_pf``; falls back to Basic alone
    when none are flagged.
    """
    earnings = _earnings(components)
    flagged = [c for c in earnings if c.consider_for_pf]
    if not flagged:
        flagged = [c for c in earnings if c.is_basic]
    return sum((c.monthly_amount or _ZERO for c in flagged), _ZERO)


def esi_wage(components: Iterable[SalaryComponent]) -> Decimal:
    """Gross the insurance scheme tests against its ceiling.

    Sums earnings flagged ``consider_for_esi``; falls back to all earnings.
    """
    earnings = _earnings(components)
    flagged = [c for c in earnings if c.consider_for_esi] or earnings
    return sum((c.monthly_amount or _ZERO for c in flagged), _ZERO)


def provident_fund(wage: Decimal, config: ProvidentFundConfig) -> Contribution:
    """PF on ``min(wage, ceiling)``.

    Basic 20000 with a 15000 ceiling at 12% gives 1800, not 2400.
    """
    if not config.enabled or wage <= 0:
        return Contribution.none()

    capped = min(wage, config.wage_ceiling) if config.apply_ceiling else wage
    return Contribution(
        wage=capped,
        employee=_round(capped * config.employee_rate),
        employer=_round(capped * config.employer_rate),
    )


def insurance_scheme(gross: Decimal, config: InsuranceSchemeConfig) -> Contribution:
    """Insurance contribution; a step at the ceiling, not a cap.

    Gross above the ceiling means no contribution at all for the period.
    """
    if not config.enabled or gross <= 0 or gross > config.wage_ceiling:
        return Contribution.none(gross)

    return Contribution(
        wage=gross,
        employee=_round(gross * config.employee_rate),
        employer=_round(gross * config.employer_rate),
    )


def professional_tax(config: ProfessionalTaxConfig) -> Decimal:
    """Flat monthly amount, applied whenever enabled."""
    if not config.enabled:
        return _ZERO
    return _round(config.monthly_amount)


@dataclass(frozen=True)
class StatutoryAmounts:
    """All statutory amounts for one employee and period."""

    provident_fund: Contribution
    insurance_scheme: Contribution
    professional_tax: Decimal

    @property
    def employee_total(self) -> Decimal:
        return (
            self.provident_fund.employee
            + self.insurance_scheme.employee
            + self.professional_tax
        )

    @property
    def employer_total(self) -> Decimal:
        return self.provident_fund.employer + self.insurance_scheme.employer


class StatutoryCalculator:
    """Applies the PF, insurance-scheme and PT calculators to a set of earnings."""

    def __init__(self, config: PayrollConfig):
        self.config = config

    def calculate(self, components: Iterable[SalaryComponent]) -> StatutoryAmounts:
        """Compute statutory amounts from resolved (and pro-rated) components."""
        comps = list(components)
        return StatutoryAmounts(
            provident_fund=provident_fund(pf_wage(comps), self.config.provident_fund),
            insurance_scheme=insurance_scheme(esi_wage(comps), self.config.insurance_scheme),
            professional_tax=professional_tax(self.config.professional_tax),
        )
