"""Compensation decomposition and payroll calculation engine."""

from compensation_engine.calculators.balancing import BalancingSolver, apply_edit, evaluate_structure
from compensation_engine.calculators.decomposition import DecompositionEngine
from compensation_engine.calculators.engine import (
    CompensationEngine,
    EmployeePayrollInput,
    PayrollPeriod,
)
from compensation_engine.calculators.payslip_builder import PayslipSnapshot, PayslipSnapshotBuilder
from compensation_engine.calculators.statutory import StatutoryCalculator
from compensation_engine.calculators.suggestion import suggest_structure, validate_breakup
from compensation_engine.calculators.tax_annualizer import TaxAnnualizer

__all__ = [
    "BalancingSolver",
    "apply_edit",
    "evaluate_structure",
    "DecompositionEngine",
    "CompensationEngine",
    "EmployeePayrollInput",
    "PayrollPeriod",
    "PayslipSnapshot",
    "PayslipSnapshotBuilder",
    "StatutoryCalculator",
    "suggest_structure",
    "validate_breakup",
    "TaxAnnualizer",
]
