"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from compensation_engine.calculators.balancing import (
    AddComponent,
    DesignateRemainder,
    RemoveComponent,
    SelectComponent,
    SetAnnualCtc,
    SetMode,
    StructureEdit,
    UpdateComponent,
)
from compensation_engine.calculators.engine import EmployeePayrollInput
from compensation_engine.calculators.payslip_builder import LineType
from compensation_engine.calculators.types import (
    AttendanceParams,
    ComponentCategory,
    SalaryComponent,
    SalaryStructure,
    StatutoryKind,
    StructureMode,
    TaxTreatment,
)


class ErrorResponse(BaseModel):
    """Error body for engine failures."""

    detail: str
    code: str
    key: str | None = None


# ============================================================================
# Structure schemas
# ============================================================================


class ComponentSchema(BaseModel):
    """A component selection inside a structure."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    category: ComponentCategory
    calculation_mode: str = "FIXED"
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

    def to_domain(self) -> SalaryComponent:
        return SalaryComponent(**self.model_dump())


class StructureSchema(BaseModel):
    """Structure submitted for balancing or saving."""

    model_config = ConfigDict(from_attributes=True)

    owner_id: str = Field(min_length=1)
    annual_ctc: Decimal = Field(gt=0)
    mode: StructureMode = StructureMode.AUTO
    components: list[ComponentSchema] = Field(default_factory=list)

    def to_domain(self) -> SalaryStructure:
        return SalaryStructure(
            owner_id=self.owner_id,
            annual_ctc=self.annual_ctc,
            mode=self.mode,
            components=tuple(c.to_domain() for c in self.components),
        )


class StructureResponse(StructureSchema):
    structure_id: UUID
    revision: int


class IssueSchema(BaseModel):
    code: str
    key: str | None = None
    message: str


class StructureEvaluationResponse(BaseModel):
    """A structure after decomposition and balancing."""

    structure: StructureResponse
    mismatch: Decimal
    is_balanced: bool
    is_valid: bool
    issues: list[IssueSchema]


class StructureEditSchema(BaseModel):
    """One reducer edit. Fields used depend on ``type``."""

    type: Literal[
        "set_annual_ctc",
        "set_mode",
        "select_component",
        "update_component",
        "add_component",
        "remove_component",
        "designate_remainder",
    ]
    annual_ctc: Decimal | None = Field(default=None, gt=0)
    mode: StructureMode | None = None
    component_id: str | None = None
    selected: bool = True
    changes: dict[str, Any] = Field(default_factory=dict)
    component: ComponentSchema | None = None

    @model_validator(mode="after")
    def check_fields(self) -> "StructureEditSchema":
        required = {
            "set_annual_ctc": "annual_ctc",
            "set_mode": "mode",
            "add_component": "component",
        }.get(self.type, "component_id")
        if getattr(self, required) is None:
            raise ValueError(f"'{required}' is required for {self.type}")
        return self

    def to_domain(self) -> StructureEdit:
        if self.type == "set_annual_ctc":
            return SetAnnualCtc(self.annual_ctc)
        if self.type == "set_mode":
            return SetMode(self.mode)
        if self.type == "select_component":
            return SelectComponent(self.component_id, self.selected)
        if self.type == "update_component":
            return UpdateComponent(self.component_id, dict(self.changes))
        if self.type == "add_component":
            return AddComponent(self.component.to_domain())
        if self.type == "remove_component":
            return RemoveComponent(self.component_id)
        return DesignateRemainder(self.component_id)


class StructureEditRequest(BaseModel):
    structure: StructureSchema
    edit: StructureEditSchema


class SuggestionRequest(BaseModel):
    owner_id: str = Field(min_length=1)
    annual_ctc: Decimal = Field(gt=0)


class SuggestionResponse(BaseModel):
    structure: StructureResponse
    deductions: list[ComponentSchema]
    basic_share: Decimal


class BreakupValidationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    is_valid: bool
    expected_annual_ctc: Decimal
    annual_ctc: Decimal
    mismatch: Decimal
    monthly_gross: Decimal
    monthly_deductions: Decimal
    monthly_net: Decimal
    monthly_employer_contributions: Decimal


class StructureRevisionResponse(BaseModel):
    """A stored structure revision."""

    model_config = ConfigDict(from_attributes=True)

    structure_id: UUID
    owner_id: str
    revision: int
    annual_ctc: Decimal
    mode: str
    components: list[ComponentSchema]
    is_current: bool
    is_locked: bool
    locked_by_run_id: UUID | None = None

    @classmethod
    def from_record(cls, record: Any) -> "StructureRevisionResponse":
        structure = record.to_structure()
        return cls(
            structure_id=record.structure_id,
            owner_id=record.owner_id,
            revision=record.revision,
            annual_ctc=record.annual_ctc,
            mode=record.mode,
            components=[ComponentSchema.model_validate(c) for c in structure.components],
            is_current=record.is_current,
            is_locked=record.is_locked,
            locked_by_run_id=record.locked_by_run_id,
        )


# ============================================================================
# Payroll run schemas
# ============================================================================


class PayrollRunCreate(BaseModel):
    """Schema for creating a payroll run."""

    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2000, le=2100)


class PreflightRequest(PayrollRunCreate):
    employee_ids: list[str] = Field(default_factory=list)


class PreflightResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    can_create: bool
    existing_run_id: UUID | None = None
    existing_status: str | None = None
    missing_structure_ids: list[str]


class RunErrorSchema(BaseModel):
    employee_id: str
    message: str
    code: str


class PayrollRunResponse(BaseModel):
    """Schema for payroll run response."""

    model_config = ConfigDict(from_attributes=True)

    payroll_run_id: UUID
    tenant_id: str
    month: int
    year: int
    status: str
    total_employees: int
    processed_employees: int
    failed_employees: int
    skipped_employee_ids: list[str]
    review_required_count: int
    total_gross: Decimal
    total_deductions: Decimal
    total_net_pay: Decimal
    total_employer_contributions: Decimal
    errors: list[RunErrorSchema]
    approved_at: datetime | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None


class EmployeeInputSchema(BaseModel):
    """Per-employee inputs for a calculation.

    Without ``structure`` the employee's current stored structure is
    used. Attendance defaults to the days employed in the month.
    """

    employee_id: str = Field(min_length=1)
    present_days: Decimal | None = Field(default=None, ge=0)
    total_days: Decimal | None = Field(default=None, gt=0)
    remaining_months: int | None = Field(default=None, ge=1, le=12)
    joining_date: date | None = None
    exit_date: date | None = None
    statutory_opt_outs: list[StatutoryKind] = Field(default_factory=list)
    structure: StructureSchema | None = None

    @model_validator(mode="after")
    def check_attendance(self) -> "EmployeeInputSchema":
        if (self.present_days is None) != (self.total_days is None):
            raise ValueError("present_days and total_days must be given together")
        if self.present_days is not None and self.present_days > self.total_days:
            raise ValueError("present_days cannot exceed total_days")
        return self

    def to_domain(self) -> EmployeePayrollInput:
        attendance = None
        if self.present_days is not None:
            attendance = AttendanceParams(self.present_days, self.total_days)
        return EmployeePayrollInput(
            employee_id=self.employee_id,
            structure=self.structure.to_domain() if self.structure else None,
            attendance=attendance,
            remaining_months=self.remaining_months,
            joining_date=self.joining_date,
            exit_date=self.exit_date,
            statutory_opt_outs=frozenset(self.statutory_opt_outs),
        )


class CalculateRequest(BaseModel):
    employees: list[EmployeeInputSchema] = Field(min_length=1)
    deadline_seconds: float | None = Field(default=None, gt=0)


class PayslipLineSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_type: LineType
    name: str
    amount: Decimal
    component_id: str | None = None
    original_amount: Decimal | None = None
    explanation: str | None = None


class PayslipResponse(BaseModel):
    """Frozen payslip snapshot."""

    model_config = ConfigDict(from_attributes=True)

    snapshot_id: UUID
    employee_id: str
    run_id: UUID | None = None
    version: int
    supersedes_id: UUID | None = None
    earnings: list[PayslipLineSchema]
    pre_tax_deductions: list[PayslipLineSchema]
    post_tax_deductions: list[PayslipLineSchema]
    employer_contributions: list[PayslipLineSchema]
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
    structure_id: UUID | None = None
    structure_revision: int | None = None
    requires_review: bool
    engine_version: str
