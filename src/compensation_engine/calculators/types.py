"""Type definitions for the compensation pipeline."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

MONTHS_IN_YEAR = 12

# Accepted accumulated rounding between the balanced structure and the target CTC.
CTC_TOLERANCE_ANNUAL = Decimal("12")


class ComponentCategory(str, Enum):
    """Salary component categories."""

    EARNING = "EARNING"
    DEDUCTION = "DEDUCTION"
    EMPLOYER_CONTRIBUTION = "EMPLOYER_CONTRIBUTION"


class CalculationMode(str, Enum):
    """How a component's monthly amount is derived."""

    FIXED = "FIXED"
    PERCENT_OF_BASIC = "PERCENT_OF_BASIC"
    PERCENT_OF_CTC = "PERCENT_OF_CTC"
    FORMULA = "FORMULA"


class StructureMode(str, Enum):
    """AUTO balances against the CTC, MANUAL only reports the mismatch."""

    AUTO = "AUTO"
    MANUAL = "MANUAL"


class TaxTreatment(str, Enum):
    """Whether a deduction reduces taxable income."""

    PRE_TAX = "PRE_TAX"
    POST_TAX = "POST_TAX"


class StatutoryKind(str, Enum):
    """Components whose payroll amount comes from the statutory calculator."""

    PROVIDENT_FUND = "PROVIDENT_FUND"
    INSURANCE_SCHEME = "INSURANCE_SCHEME"
    PROFESSIONAL_TAX = "PROFESSIONAL_TAX"


def to_decimal(value: Any, default: str = "0") -> Decimal:
    """Coerce catalog values (int, float, str, None) to Decimal."""
    if value is None or value == "":
        return Decimal(default)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class SalaryComponent:
    """A component selection inside a salary structure.

    ``value`` is the monthly amount for FIXED components and the
    percentage (e.g. 40 for 40%) for the PERCENT_* modes.
    ``calculation_mode`` is kept as the raw catalog string so unknown
    modes survive until resolution, where they are rejected.
    """

    id: str
    name: str
    category: ComponentCategory
    calculation_mode: str
    value: Decimal = Decimal("0")
    formula: str | None = None
    is_selected: bool = True
    consider_for_pf: bool = False
    consider_for_esi: bool = False
    is_remainder_component: bool = False
    is_basic: bool = False
    tax_treatment: TaxTreatment | None = None
    statutory: StatutoryKind | None = None
    prorate: bool = True
    is_locked: bool = False
    monthly_amount: Decimal | None = None

    @property
    def counts_toward_ctc(self) -> bool:
        """Earnings and employer contributions make up the CTC."""
        return self.category in (
            ComponentCategory.EARNING,
            ComponentCategory.EMPLOYER_CONTRIBUTION,
        )

    @property
    def effective_tax_treatment(self) -> TaxTreatment:
        """Statutory deductions are pre-tax unless flagged otherwise."""
        if self.tax_treatment is not None:
            return self.tax_treatment
        if self.statutory is not None:
            return TaxTreatment.PRE_TAX
        return TaxTreatment.POST_TAX

    def with_amount(self, amount: Decimal | None) -> SalaryComponent:
        """Return a copy with a resolved monthly amount."""
        return replace(self, monthly_amount=amount)

    @classmethod
    def from_catalog(cls, record: dict[str, Any]) -> SalaryComponent:
        """Build a component from a catalog record.

        Accepts the catalog's camelCase keys; the value is read from
        ``value``, ``percentage`` or ``amount`` in that order. Inactive
        catalog entries come in deselected.
        """
        value = record.get("value")
        if value is None:
            value = record.get("percentage")
        if value is None:
            value = record.get("amount")

        tax_treatment = record.get("taxTreatment")
        statutory = record.get("statutory")
        monthly = record.get("monthlyAmount")

        return cls(
            id=str(record["id"]),
            name=record["name"],
            category=ComponentCategory(record["category"]),
            calculation_mode=str(record.get("calculationMode", CalculationMode.FIXED.value)),
            value=to_decimal(value),
            formula=record.get("formula"),
            is_selected=bool(record.get("isSelected", True) and record.get("isActive", True)),
            consider_for_pf=record.get("considerForPF", False),
            consider_for_esi=record.get("considerForESI", False),
            is_remainder_component=record.get("isRemainderComponent", False),
            is_basic=record.get("isBasic", False),
            tax_treatment=TaxTreatment(tax_treatment) if tax_treatment else None,
            statutory=StatutoryKind(statutory) if statutory else None,
            prorate=record.get("prorate", True),
            is_locked=record.get("isLocked", False),
            monthly_amount=to_decimal(monthly) if monthly is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the catalog-style representation."""
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "calculationMode": self.calculation_mode,
            "value": str(self.value),
            "formula": self.formula,
            "isSelected": self.is_selected,
            "considerForPF": self.consider_for_pf,
            "considerForESI": self.consider_for_esi,
            "isRemainderComponent": self.is_remainder_component,
            "isBasic": self.is_basic,
            "taxTreatment": self.tax_treatment.value if self.tax_treatment else None,
            "statutory": self.statutory.value if self.statutory else None,
            "prorate": self.prorate,
            "isLocked": self.is_locked,
            "monthlyAmount": (
                str(self.monthly_amount) if self.monthly_amount is not None else None
            ),
        }


@dataclass(frozen=True)
class SalaryStructure:
    """Compensation configuration for one employee or candidate."""

    owner_id: str
    annual_ctc: Decimal
    mode: StructureMode = StructureMode.AUTO
    components: tuple[SalaryComponent, ...] = ()
    structure_id: UUID = field(default_factory=uuid4)
    revision: int = 1

    @property
    def monthly_ctc(self) -> Decimal:
        return self.annual_ctc / MONTHS_IN_YEAR

    @property
    def selected(self) -> tuple[SalaryComponent, ...]:
        return tuple(c for c in self.components if c.is_selected)

    def component(self, component_id: str) -> SalaryComponent:
        """Look up a component by id, raising KeyError if absent."""
        for comp in self.components:
            if comp.id == component_id:
                return comp
        raise KeyError(component_id)

    def with_components(self, components: tuple[SalaryComponent, ...]) -> SalaryStructure:
        return replace(self, components=tuple(components))

    def to_dict(self) -> dict[str, Any]:
        return {
            "structureId": str(self.structure_id),
            "ownerId": self.owner_id,
            "annualCTC": str(self.annual_ctc),
            "mode": self.mode.value,
            "revision": self.revision,
            "components": [c.to_dict() for c in self.components],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SalaryStructure:
        kwargs: dict[str, Any] = {}
        if data.get("structureId"):
            kwargs["structure_id"] = UUID(str(data["structureId"]))
        return cls(
            owner_id=str(data["ownerId"]),
            annual_ctc=to_decimal(data["annualCTC"]),
            mode=StructureMode(data.get("mode", StructureMode.AUTO.value)),
            components=tuple(
                SalaryComponent.from_catalog(c) for c in data.get("components", [])
            ),
            revision=int(data.get("revision", 1)),
            **kwargs,
        )


@dataclass(frozen=True)
class BalanceResult:
    """Output of the balancing solver.

    ``mismatch`` is the signed annual difference
    ``(Σ earnings + Σ employer contributions) × 12 − target CTC``;
    positive means the structure is over budget.
    """

    components: tuple[SalaryComponent, ...]
    mismatch: Decimal

    @property
    def is_balanced(self) -> bool:
        return abs(self.mismatch) <= CTC_TOLERANCE_ANNUAL


@dataclass(frozen=True)
class AttendanceParams:
    """Days used to pro-rate attendance-linked earnings."""

    present_days: Decimal
    total_days: Decimal

    def __post_init__(self) -> None:
        if self.total_days <= 0:
            raise ValueError("total_days must be positive")
        if self.present_days < 0 or self.present_days > self.total_days:
            raise ValueError(
                f"present_days must be between 0 and total_days ({self.total_days})"
            )

    @property
    def factor(self) -> Decimal:
        return self.present_days / self.total_days

    @classmethod
    def full_month(cls, total_days: int = 30) -> AttendanceParams:
        return cls(present_days=Decimal(total_days), total_days=Decimal(total_days))

    @classmethod
    def for_period(
        cls,
        year: int,
        month: int,
        joining_date: date | None = None,
        exit_date: date | None = None,
        unpaid_days: Decimal = Decimal("0"),
    ) -> AttendanceParams:
        """Derive attendance for a calendar month.

        Joiners are paid from their joining date and leavers up to their
        exit date; unpaid days are removed from what remains.
        """
        days_in_month = calendar.monthrange(year, month)[1]
        first = date(year, month, 1)
        last = date(year, month, days_in_month)

        start = joining_date if joining_date and joining_date > first else first
        end = exit_date if exit_date and exit_date < last else last
        if start > last or end < first or end < start:
            employed_days = 0
        else:
            employed_days = (end - start).days + 1

        present = max(Decimal(employed_days) - unpaid_days, Decimal("0"))
        return cls(present_days=present, total_days=Decimal(days_in_month))
