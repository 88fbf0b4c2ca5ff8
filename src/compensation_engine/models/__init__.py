"""ORM models for structures, payroll runs and payslip snapshots."""

from compensation_engine.models.base import Base, TimestampMixin
from compensation_engine.models.payroll import PayrollRunItem, PayrollRunRecord
from compensation_engine.models.structure import SalaryStructureRevision

__all__ = [
    "Base",
    "TimestampMixin",
    "PayrollRunItem",
    "PayrollRunRecord",
    "SalaryStructureRevision",
]
