"""Payroll rule configuration objects.

Explicit configuration for statutory contributions and income tax.
The engine never reads rates, ceilings or slabs from globals; every
calculation receives the config it applies.

Pattern:
    config = PayrollConfig(
        provident_fund=ProvidentFundConfig(wage_ceiling=Decimal("15000")),
        insurance_scheme=InsuranceSchemeConfig(...),
        professional_tax=ProfessionalTaxConfig(monthly_amount=Decimal("200")),
        income_tax=IncomeTaxConfig(slabs=(...)),
    )

Rules:
    1. Rates are decimal fractions (0.12 means 12%).
    2. Amounts are monthly unless the field name says annual.
    3. Immutable after creation (frozen dataclasses).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any


def _dec(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass(frozen=True)
class TaxSlab:
    """Progressive slab over annual taxable income."""

    lower: Decimal
    upper: Decimal | None  # None = no upper limit
    rate: Decimal


@dataclass(frozen=True)
class ProvidentFundConfig:
    """
    Provident-fund contribution configuration.

    Attributes:
        enabled: If False, no PF lines are produced.
        employee_rate: Employee share of the PF wage.
        employer_rate: Employer share of the PF wage.
        wage_ceiling: Cap on the PF wage.
        apply_ceiling: If False, contributions are computed on the full wage.
    """

    enabled: bool = True
    employee_rate: Decimal = Decimal("0.12")
    employer_rate: Decimal = Decimal("0.12")
    wage_ceiling: Decimal = Decimal("15000")
    apply_ceiling: bool = True

    def __post_init__(self) -> None:
        """Validate configuration."""
        for name in ("employee_rate", "employer_rate"):
            rate = getattr(self, name)
            if rate < 0 or rate > 1:
                raise ValueError(f"{name} must be between 0 and 1")
        if self.wage_ceiling < 0:
            raise ValueError("wage_ceiling cannot be negative")


@dataclass(frozen=True)
class InsuranceSchemeConfig:
    """
    Health-insurance-style scheme configuration.

    The ceiling is a step: gross above it means no contribution at all.
    """

    enabled: bool = True
    employee_rate: Decimal = Decimal("0.0075")
    employer_rate: Decimal = Decimal("0.0325")
    wage_ceiling: Decimal = Decimal("21000")

    def __post_init__(self) -> None:
        """Validate configuration."""
        for name in ("employee_rate", "employer_rate"):
            rate = getattr(self, name)
            if rate < 0 or rate > 1:
                raise ValueError(f"{name} must be between 0 and 1")
        if self.wage_ceiling < 0:
            raise ValueError("wage_ceiling cannot be negative")


@dataclass(frozen=True)
class ProfessionalTaxConfig:
    """Flat monthly professional tax."""

    enabled: bool = True
    monthly_amount: Decimal = Decimal("200")

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.monthly_amount < 0:
            raise ValueError("monthly_amount cannot be negative")


@dataclass(frozen=True)
class IncomeTaxConfig:
    """
    Income tax slab table and adjustments.

    Attributes:
        slabs: Progressive slabs over annual taxable income.
        standard_deduction: Annual amount subtracted before slabs apply.
        rebate_income_limit: Annual taxable income at or below which the
            rebate applies. None disables the rebate.
        rebate_amount: Maximum tax reduction when the rebate applies.
        cess_rate: Surcharge on tax after rebate (0.04 means 4%).
    """

    slabs: tuple[TaxSlab, ...] = ()
    standard_deduction: Decimal = Decimal("0")
    rebate_income_limit: Decimal | None = None
    rebate_amount: Decimal = Decimal("0")
    cess_rate: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        """Validate configuration."""
        ordered = sorted(self.slabs, key=lambda s: s.lower)
        for prev, cur in zip(ordered, ordered[1:]):
            if prev.upper is None or prev.upper > cur.lower:
                raise ValueError(
                    f"Tax slabs overlap at {cur.lower}: slabs must be contiguous and ordered"
                )
        if self.standard_deduction < 0 or self.rebate_amount < 0:
            raise ValueError("standard_deduction and rebate_amount cannot be negative")
        if self.cess_rate < 0 or self.cess_rate > 1:
            raise ValueError("cess_rate must be between 0 and 1")


@dataclass(frozen=True)
class FinancialYear:
    """Financial year boundaries, as the month it starts in (1-12)."""

    start_month: int = 4

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not 1 <= self.start_month <= 12:
            raise ValueError("start_month must be between 1 and 12")


@dataclass(frozen=True)
class PayrollConfig:
    """All read-only rules shared by every employee in a run."""

    provident_fund: ProvidentFundConfig = field(default_factory=ProvidentFundConfig)
    insurance_scheme: InsuranceSchemeConfig = field(default_factory=InsuranceSchemeConfig)
    professional_tax: ProfessionalTaxConfig = field(default_factory=ProfessionalTaxConfig)
    income_tax: IncomeTaxConfig = field(default_factory=IncomeTaxConfig)
    financial_year: FinancialYear = field(default_factory=FinancialYear)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PayrollConfig:
        """Build config from a plain configuration record.

        Expected keys (all optional): ``pf``, ``esi``, ``pt``, ``tax``,
        ``financialYearStartMonth``. Unknown keys are ignored.
        """
        pf = data.get("pf") or {}
        esi = data.get("esi") or {}
        pt = data.get("pt") or {}
        tax = data.get("tax") or {}

        defaults_pf = ProvidentFundConfig()
        defaults_esi = InsuranceSchemeConfig()
        defaults_pt = ProfessionalTaxConfig()

        slabs = tuple(
            TaxSlab(
                lower=_dec(s["min"]),
                upper=_dec(s["max"]) if s.get("max") is not None else None,
                rate=_dec(s["rate"]),
            )
            for s in tax.get("slabs", [])
        )
        rebate_limit = tax.get("rebateIncomeLimit")

        return cls(
            provident_fund=ProvidentFundConfig(
                enabled=pf.get("enabled", defaults_pf.enabled),
                employee_rate=_dec(pf.get("employeeRate", defaults_pf.employee_rate)),
                employer_rate=_dec(pf.get("employerRate", defaults_pf.employer_rate)),
                wage_ceiling=_dec(pf.get("wageCeiling", defaults_pf.wage_ceiling)),
                apply_ceiling=pf.get("applyCeiling", defaults_pf.apply_ceiling),
            ),
            insurance_scheme=InsuranceSchemeConfig(
                enabled=esi.get("enabled", defaults_esi.enabled),
                employee_rate=_dec(esi.get("employeeRate", defaults_esi.employee_rate)),
                employer_rate=_dec(esi.get("employerRate", defaults_esi.employer_rate)),
                wage_ceiling=_dec(esi.get("wageCeiling", defaults_esi.wage_ceiling)),
            ),
            professional_tax=ProfessionalTaxConfig(
                enabled=pt.get("enabled", defaults_pt.enabled),
                monthly_amount=_dec(pt.get("monthlyAmount", defaults_pt.monthly_amount)),
            ),
            income_tax=IncomeTaxConfig(
                slabs=slabs,
                standard_deduction=_dec(tax.get("standardDeduction", 0)),
                rebate_income_limit=_dec(rebate_limit) if rebate_limit is not None else None,
                rebate_amount=_dec(tax.get("rebateAmount", 0)),
                cess_rate=_dec(tax.get("cessRate", 0)),
            ),
            financial_year=FinancialYear(
                start_month=int(data.get("financialYearStartMonth", 4)),
            ),
        )


def load_payroll_config(path: str | Path) -> PayrollConfig:
    """Read a JSON rules file in the ``PayrollConfig.from_dict`` layout."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Payroll config in {path} must be a JSON object")
    return PayrollConfig.from_dict(data)
