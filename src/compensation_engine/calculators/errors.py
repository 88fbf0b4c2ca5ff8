"""Error kinds raised by the compensation engine.

Every error carries a readable message and the key needed to locate the
cause: a component name, a structure owner or an employee id.
"""

from __future__ import annotations

from decimal import Decimal


class CompensationError(Exception):
    """Base class for engine errors."""

    code = "COMPENSATION_ERROR"

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(message)


# ===== Component level =====


class ComponentError(CompensationError):
    """Fatal to one component, not to the structure."""

    code = "COMPONENT_ERROR"

    def __init__(self, component_name: str, message: str):
        self.component_name = component_name
        super().__init__(f"Component '{component_name}': {message}", key=component_name)


class UnresolvedBaseError(ComponentError):
    """A component references a base (CTC, BASIC) that has no value yet."""

    code = "UNRESOLVED_BASE"

    def __init__(self, component_name: str, base: str):
        self.base = base
        super().__init__(component_name, f"references unresolved base '{base}'")


class UnsupportedCalculationModeError(ComponentError):
    """The component's calculation mode is not one the engine knows."""

    code = "UNSUPPORTED_CALCULATION_MODE"

    def __init__(self, component_name: str, mode: str):
        self.mode = mode
        super().__init__(component_name, f"unsupported calculation mode '{mode}'")


class FormulaSyntaxError(ComponentError):
    """The formula uses syntax outside the restricted grammar."""

    code = "FORMULA_SYNTAX"

    def __init__(self, component_name: str, formula: str, reason: str):
        self.formula = formula
        super().__init__(component_name, f"invalid formula '{formula}': {reason}")


class ComponentLockedError(ComponentError):
    """An edit touched calculation fields of a locked component."""

    code = "COMPONENT_LOCKED"

    def __init__(self, component_name: str, field_name: str):
        self.field_name = field_name
        super().__init__(
            component_name,
            f"is locked by a processed payroll run; '{field_name}' cannot be edited",
        )


# ===== Structure level =====


class StructureError(CompensationError):
    """Structure-level failure; blocks persistence."""

    code = "STRUCTURE_ERROR"


class NoRemainderComponentError(StructureError):
    """AUTO balancing needs a designated remainder component."""

    code = "NO_REMAINDER_COMPONENT"

    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        super().__init__(
            f"Structure for '{owner_id}' has no remainder component; "
            "select one (e.g. Special Allowance) to balance against the CTC",
            key=owner_id,
        )


class DuplicateRemainderComponentError(StructureError):
    """More than one component is designated as the remainder."""

    code = "DUPLICATE_REMAINDER_COMPONENT"

    def __init__(self, owner_id: str, component_names: list[str]):
        self.component_names = component_names
        super().__init__(
            f"Structure for '{owner_id}' designates more than one remainder component: "
            + ", ".join(component_names),
            key=owner_id,
        )


class CtcMismatchError(StructureError):
    """The balanced structure does not add up to the target CTC."""

    code = "CTC_MISMATCH"

    def __init__(self, owner_id: str, mismatch: Decimal):
        self.mismatch = mismatch
        direction = "over" if mismatch > 0 else "under"
        super().__init__(
            f"Structure for '{owner_id}' is {direction} the target CTC by {abs(mismatch)} per year",
            key=owner_id,
        )


class StructureValidationError(StructureError):
    """Aggregate of component and structure issues blocking a save."""

    code = "STRUCTURE_INVALID"

    def __init__(self, owner_id: str, errors: list[CompensationError]):
        self.errors = errors
        super().__init__(
            f"Structure for '{owner_id}' is invalid: " + "; ".join(str(e) for e in errors),
            key=owner_id,
        )


# ===== Employee and run level =====


class EmployeeCalculationError(CompensationError):
    """Payroll for one employee could not be calculated."""

    code = "EMPLOYEE_CALCULATION"

    def __init__(self, employee_id: str, message: str):
        self.employee_id = employee_id
        super().__init__(f"Employee {employee_id}: {message}", key=employee_id)


class RunLockedError(CompensationError):
    """The run's results are immutable in its current status."""

    code = "RUN_LOCKED"

    def __init__(self, run_id: str, status: str):
        self.status = status
        super().__init__(f"Payroll run {run_id} is {status}; results are locked", key=run_id)


class DuplicateRunError(CompensationError):
    """A non-cancelled run already exists for the period."""

    code = "DUPLICATE_RUN"

    def __init__(self, month: int, year: int, status: str):
        super().__init__(
            f"Payroll for {month}/{year} already exists in {status} status",
            key=f"{year}-{month:02d}",
        )


class RunNotFoundError(CompensationError):
    """No run exists with the given id."""

    code = "RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        super().__init__(f"Payroll run {run_id} not found", key=run_id)
