"""Balancing solver and the structure reducer built around it.

The solver is a pure function of ``(target_monthly_ctc, components)``:

    remainder = max(0, round(target_monthly_ctc - sum_others))

where ``sum_others`` covers every selected earning and employer
contribution except the designated remainder component. Calling it on
its own output changes nothing, which is what lets every edit re-balance.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Union

from compensation_engine.calculators.decomposition import DecompositionEngine
from compensation_engine.calculators.errors import (
    CompensationError,
    ComponentError,
    ComponentLockedError,
    CtcMismatchError,
    DuplicateRemainderComponentError,
    NoRemainderComponentError,
    StructureError,
    StructureValidationError,
)
from compensation_engine.calculators.types import (
    MONTHS_IN_YEAR,
    BalanceResult,
    SalaryComponent,
    SalaryStructure,
    StatutoryKind,
    StructureMode,
    TaxTreatment,
    to_decimal,
)

CURRENCY_UNIT = Decimal("1")


def ctc_total(components: Iterable[SalaryComponent]) -> Decimal:
    """Monthly total of selected earnings and employer contributions."""
    return sum(
        (
            c.monthly_amount or Decimal("0")
            for c in components
            if c.is_selected and c.counts_toward_ctc
        ),
        Decimal("0"),
    )


def annual_mismatch(target_monthly_ctc: Decimal, components: Iterable[SalaryComponent]) -> Decimal:
    """Signed annual difference between the structure and the target CTC."""
    return (ctc_total(components) - target_monthly_ctc) * MONTHS_IN_YEAR


class BalancingSolver:
    """Makes the CTC invariant hold by adjusting one remainder component."""

    @staticmethod
    def find_remainder(
        components: Iterable[SalaryComponent], owner_id: str = ""
    ) -> int:
        """Index of the designated remainder component.

        Raises:
            NoRemainderComponentError: none is designated.
            DuplicateRemainderComponentError: more than one is designated.
        """
        comps = tuple(components)
        flagged = [i for i, c in enumerate(comps) if c.is_remainder_component]
        if not flagged:
            raise NoRemainderComponentError(owner_id)
        if len(flagged) > 1:
            raise DuplicateRemainderComponentError(owner_id, [comps[i].name for i in flagged])
        return flagged[0]

    @classmethod
    def balance(
        cls,
        target_monthly_ctc: Decimal,
        components: Iterable[SalaryComponent],
        mode: StructureMode = StructureMode.AUTO,
        owner_id: str = "",
    ) -> BalanceResult:
        """Balance components against the target monthly CTC.

        In MANUAL mode the components are returned unchanged and only the
        mismatch is reported.
        """
        comps = tuple(components)

        if mode == StructureMode.MANUAL:
            return BalanceResult(
                components=comps,
                mismatch=annual_mismatch(target_monthly_ctc, comps),
            )

        idx = cls.find_remainder(comps, owner_id)
        sum_others = ctc_total(c for i, c in enumerate(comps) if i != idx)
        remainder = (target_monthly_ctc - sum_others).quantize(
            CURRENCY_UNIT, rounding=ROUND_HALF_UP
        )
        remainder = max(remainder, Decimal("0"))

        updated = list(comps)
        updated[idx] = replace(comps[idx], monthly_amount=remainder, is_selected=True)
        updated_tuple = tuple(updated)

        return BalanceResult(
            components=updated_tuple,
            mismatch=annual_mismatch(target_monthly_ctc, updated_tuple),
        )


# ===== Structure evaluation =====


@dataclass(frozen=True)
class StructureEvaluation:
    """A structure after decomposition and balancing, with its issues."""

    structure: SalaryStructure
    mismatch: Decimal
    basic_monthly: Decimal | None = None
    component_errors: tuple[ComponentError, ...] = ()
    structure_error: StructureError | None = None

    @property
    def is_balanced(self) -> bool:
        return BalanceResult(self.structure.components, self.mismatch).is_balanced

    @property
    def issues(self) -> list[CompensationError]:
        """Errors that block persistence."""
        issues: list[CompensationError] = list(self.component_errors)
        if self.structure_error is not None:
            issues.append(self.structure_error)
        elif self.structure.mode == StructureMode.AUTO and not self.is_balanced:
            issues.append(CtcMismatchError(self.structure.owner_id, self.mismatch))
        return issues

    @property
    def is_valid(self) -> bool:
        return not self.issues


def evaluate_structure(
    structure: SalaryStructure,
    basic_monthly: Decimal | None = None,
    engine: DecompositionEngine | None = None,
) -> StructureEvaluation:
    """Decompose then balance a structure.

    Component failures are collected rather than raised; a missing or
    ambiguous remainder is recorded and the unbalanced mismatch reported.
    """
    engine = engine or DecompositionEngine()
    decomposition = engine.resolve(structure.monthly_ctc, structure.components, basic_monthly)

    structure_error: StructureError | None = None
    try:
        balanced = BalancingSolver.balance(
            structure.monthly_ctc,
            decomposition.components,
            structure.mode,
            structure.owner_id,
        )
    except (NoRemainderComponentError, DuplicateRemainderComponentError) as e:
        structure_error = e
        balanced = BalanceResult(
            components=decomposition.components,
            mismatch=annual_mismatch(structure.monthly_ctc, decomposition.components),
        )

    return StructureEvaluation(
        structure=structure.with_components(balanced.components),
        mismatch=balanced.mismatch,
        basic_monthly=decomposition.basic_monthly,
        component_errors=decomposition.errors,
        structure_error=structure_error,
    )


def validate_structure(evaluation: StructureEvaluation) -> SalaryStructure:
    """Return the evaluated structure or raise if it may not be saved.

    A mismatch blocks the save in AUTO mode and is informational in
    MANUAL mode.
    """
    issues = evaluation.issues
    if issues:
        raise StructureValidationError(evaluation.structure.owner_id, issues)
    return evaluation.structure


# ===== Reducer =====


# Fields a locked component still accepts
LOCKED_EDITABLE_FIELDS = frozenset({"name", "value"})

EDITABLE_FIELDS = frozenset({
    "name",
    "value",
    "calculation_mode",
    "formula",
    "consider_for_pf",
    "consider_for_esi",
    "is_basic",
    "tax_treatment",
    "statutory",
    "prorate",
})


@dataclass(frozen=True)
class SetAnnualCtc:
    annual_ctc: Decimal


@dataclass(frozen=True)
class SetMode:
    mode: StructureMode


@dataclass(frozen=True)
class SelectComponent:
    component_id: str
    selected: bool = True


@dataclass(frozen=True)
class UpdateComponent:
    component_id: str
    changes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AddComponent:
    component: SalaryComponent


@dataclass(frozen=True)
class RemoveComponent:
    component_id: str


@dataclass(frozen=True)
class DesignateRemainder:
    component_id: str


StructureEdit = Union[
    SetAnnualCtc,
    SetMode,
    SelectComponent,
    UpdateComponent,
    AddComponent,
    RemoveComponent,
    DesignateRemainder,
]


_BOOLEAN_FIELDS = frozenset({"consider_for_pf", "consider_for_esi", "is_basic", "prorate"})


def _coerce_changes(changes: dict[str, Any]) -> dict[str, Any]:
    """Convert edit values (often plain JSON) to the component's field types.

    Raises:
        ValueError: a value cannot be converted.
    """
    coerced: dict[str, Any] = {}
    for name, value in changes.items():
        if name == "value":
            try:
                coerced[name] = to_decimal(value)
            except InvalidOperation as e:
                raise ValueError(f"value {value!r} is not a number") from e
        elif name == "calculation_mode":
            coerced[name] = value.value if isinstance(value, Enum) else str(value)
        elif name == "tax_treatment":
            coerced[name] = TaxTreatment(value) if value else None
        elif name == "statutory":
            coerced[name] = StatutoryKind(value) if value else None
        elif name == "formula":
            coerced[name] = str(value) if value else None
        elif name in _BOOLEAN_FIELDS:
            if not isinstance(value, bool):
                raise ValueError(f"{name} must be true or false")
            coerced[name] = value
        else:
            coerced[name] = str(value)
    return coerced


def _guard_locked(comp: SalaryComponent, field_name: str) -> None:
    if comp.is_locked and field_name not in LOCKED_EDITABLE_FIELDS:
        raise ComponentLockedError(comp.name, field_name)


def _apply(structure: SalaryStructure, edit: StructureEdit) -> SalaryStructure:
    comps = list(structure.components)

    if isinstance(edit, SetAnnualCtc):
        if edit.annual_ctc <= 0:
            raise ValueError("annual_ctc must be positive")
        return replace(structure, annual_ctc=edit.annual_ctc)

    if isinstance(edit, SetMode):
        return replace(structure, mode=edit.mode)

    if isinstance(edit, AddComponent):
        if any(c.id == edit.component.id for c in comps):
            raise ValueError(f"Component {edit.component.id} is already in the structure")
        return structure.with_components(tuple(comps + [edit.component]))

    if isinstance(edit, DesignateRemainder):
        structure.component(edit.component_id)
        updated = []
        for comp in comps:
            flag = comp.id == edit.component_id
            if comp.is_remainder_component != flag:
                _guard_locked(comp, "is_remainder_component")
                comp = replace(comp, is_remainder_component=flag)
            updated.append(comp)
        return structure.with_components(tuple(updated))

    target = structure.component(edit.component_id)
    idx = comps.index(target)

    if isinstance(edit, RemoveComponent):
        _guard_locked(target, "component")
        del comps[idx]
        return structure.with_components(tuple(comps))

    if isinstance(edit, SelectComponent):
        if target.is_selected != edit.selected:
            _guard_locked(target, "is_selected")
        comps[idx] = replace(target, is_selected=edit.selected)
        return structure.with_components(tuple(comps))

    if isinstance(edit, UpdateComponent):
        unknown = set(edit.changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot edit component fields: {', '.join(sorted(unknown))}")
        for field_name in edit.changes:
            _guard_locked(target, field_name)
        comps[idx] = replace(target, **_coerce_changes(edit.changes))
        return structure.with_components(tuple(comps))

    raise TypeError(f"Unknown structure edit {type(edit).__name__}")


def apply_edit(
    structure: SalaryStructure,
    edit: StructureEdit,
    basic_monthly: Decimal | None = None,
) -> StructureEvaluation:
    """Reduce ``(structure, edit)`` to a re-decomposed, re-balanced structure."""
    return evaluate_structure(_apply(structure, edit), basic_monthly)
