"""Pytest fixtures for compensation engine tests."""

from __future__ import annotations

from decimal import Decimal

import pytest

from compensation_engine.calculators.engine import CompensationEngine, EmployeePayrollInput
from compensation_engine.calculators.types import (
    AttendanceParams,
    CalculationMode,
    ComponentCategory,
    SalaryComponent,
    SalaryStructure,
    StatutoryKind,
    StructureMode,
)
from compensation_engine.payroll_config import IncomeTaxConfig, PayrollConfig, TaxSlab


@pytest.fixture
def payroll_config() -> PayrollConfig:
    """Default statutory rules with no income tax slabs."""
    return PayrollConfig()


@pytest.fixture
def tax_slabs() -> tuple[TaxSlab, ...]:
    return (
        TaxSlab(lower=Decimal("0"), upper=Decimal("300000"), rate=Decimal("0")),
        TaxSlab(lower=Decimal("300000"), upper=Decimal("700000"), rate=Decimal("0.05")),
        TaxSlab(lower=Decimal("700000"), upper=Decimal("1000000"), rate=Decimal("0.10")),
        TaxSlab(lower=Decimal("1000000"), upper=None, rate=Decimal("0.20")),
    )


@pytest.fixture
def taxed_config(tax_slabs) -> PayrollConfig:
    return PayrollConfig(income_tax=IncomeTaxConfig(slabs=tax_slabs))


@pytest.fixture
def engine(payroll_config) -> CompensationEngine:
    return CompensationEngine(payroll_config, engine_version="test")


@pytest.fixture
def standard_components() -> tuple[SalaryComponent, ...]:
    """Basic 40% of CTC, HRA 50% of Basic, special allowance, employer PF."""
    return (
        SalaryComponent(
            id="basic",
            name="Basic Salary",
            category=ComponentCategory.EARNING,
            calculation_mode=CalculationMode.PERCENT_OF_CTC.value,
            value=Decimal("40"),
            is_basic=True,
            consider_for_pf=True,
        ),
        SalaryComponent(
            id="hra",
            name="House Rent Allowance",
            category=ComponentCategory.EARNING,
            calculation_mode=CalculationMode.PERCENT_OF_BASIC.value,
            value=Decimal("50"),
        ),
        SalaryComponent(
            id="special",
            name="Special Allowance",
            category=ComponentCategory.EARNING,
            calculation_mode=CalculationMode.FIXED.value,
            is_remainder_component=True,
        ),
        SalaryComponent(
            id="employer_pf",
            name="Employer PF",
            category=ComponentCategory.EMPLOYER_CONTRIBUTION,
            calculation_mode=CalculationMode.FIXED.value,
            value=Decimal("1800"),
            statutory=StatutoryKind.PROVIDENT_FUND,
            prorate=False,
        ),
    )


@pytest.fixture
def standard_structure(standard_components) -> SalaryStructure:
    """600000 a year: Basic 20000, HRA 10000, employer PF 1800, special 18200."""
    return SalaryStructure(
        owner_id="EMP001",
        annual_ctc=Decimal("600000"),
        mode=StructureMode.AUTO,
        components=standard_components,
    )


@pytest.fixture
def full_month() -> AttendanceParams:
    return AttendanceParams(present_days=Decimal("30"), total_days=Decimal("30"))


@pytest.fixture
def employee_input(standard_structure, full_month) -> EmployeePayrollInput:
    return EmployeePayrollInput(
        employee_id="EMP001",
        structure=standard_structure,
        attendance=full_month,
        remaining_months=12,
    )
