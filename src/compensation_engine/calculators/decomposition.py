"""Decomposition engine: resolve component calculation modes to monthly amounts."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from compensation_engine.calculators.errors import (
    ComponentError,
    UnresolvedBaseError,
    UnsupportedCalculationModeError,
)
from compensation_engine.calculators.formula import evaluate_formula
from compensation_engine.calculators.types import CalculationMode, SalaryComponent

BASE_CTC = "CTC"
BASE_BASIC = "BASIC"

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class DecompositionResult:
    """Resolved components plus the errors of the ones that failed.

    Failed components are returned with ``monthly_amount=None`` so the
    caller can drop or fix them without losing the rest of the structure.
    """

    components: tuple[SalaryComponent, ...]
    errors: tuple[ComponentError, ...]
    basic_monthly: Decimal | None

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


class DecompositionEngine:
    """Resolves each selected component against the CTC and Basic bases.

    Resolution order (dependency order):
    1) Basic, when a component is flagged ``is_basic``
    2) FIXED, PERCENT_OF_CTC and PERCENT_OF_BASIC components
    3) FORMULA components

    Unselected components pass through untouched. Output keeps the input
    order. Resolved amounts are rounded to paise and never negative.
    """

    PRECISION = Decimal("0.01")

    @classmethod
    def round_amount(cls, amount: Decimal) -> Decimal:
        return amount.quantize(cls.PRECISION, rounding=ROUND_HALF_UP)

    def resolve(
        self,
        monthly_ctc: Decimal,
        components: Iterable[SalaryComponent],
        basic_monthly: Decimal | None = None,
    ) -> DecompositionResult:
        """Resolve monthly amounts for all selected components.

        Args:
            monthly_ctc: Target monthly CTC (annual / 12).
            components: Component selections in display order.
            basic_monthly: Basic to use when no component is flagged as Basic.
        """
        ordered = list(components)
        resolved: dict[int, SalaryComponent] = {}
        errors: list[ComponentError] = []
        bases: dict[str, Decimal | None] = {BASE_CTC: monthly_ctc, BASE_BASIC: basic_monthly}

        # 1) Basic
        basic_index = next(
            (i for i, c in enumerate(ordered) if c.is_selected and c.is_basic), None
        )
        if basic_index is not None:
            basic = ordered[basic_index]
            # Basic cannot be derived from itself
            try:
                amount = self._resolve_one(basic, {BASE_CTC: monthly_ctc, BASE_BASIC: None})
            except ComponentError as e:
                errors.append(e)
                resolved[basic_index] = basic.with_amount(None)
                bases[BASE_BASIC] = None
            else:
                resolved[basic_index] = basic.with_amount(amount)
                bases[BASE_BASIC] = amount

        # 2) Direct modes, then 3) formulas
        direct = []
        formulas = []
        for i, comp in enumerate(ordered):
            if i in resolved:
                continue
            if not comp.is_selected:
                resolved[i] = comp
            elif comp.calculation_mode == CalculationMode.FORMULA:
                formulas.append(i)
            else:
                direct.append(i)

        for i in direct + formulas:
            comp = ordered[i]
            try:
                amount = self._resolve_one(comp, bases)
            except ComponentError as e:
                errors.append(e)
                resolved[i] = comp.with_amount(None)
            else:
                resolved[i] = comp.with_amount(amount)

        return DecompositionResult(
            components=tuple(resolved[i] for i in range(len(ordered))),
            errors=tuple(errors),
            basic_monthly=bases[BASE_BASIC],
        )

    def _resolve_one(
        self, comp: SalaryComponent, bases: dict[str, Decimal | None]
    ) -> Decimal:
        mode = comp.calculation_mode

        if mode == CalculationMode.FIXED:
            amount = comp.value

        elif mode == CalculationMode.PERCENT_OF_CTC:
            amount = self._percent_of(comp, bases, BASE_CTC)

        elif mode == CalculationMode.PERCENT_OF_BASIC:
            amount = self._percent_of(comp, bases, BASE_BASIC)

        elif mode == CalculationMode.FORMULA:
            if not comp.formula:
                raise UnsupportedCalculationModeError(comp.name, "FORMULA without a formula")
            amount = evaluate_formula(comp.formula, bases, comp.name)

        else:
            raise UnsupportedCalculationModeError(comp.name, str(mode))

        return self.round_amount(max(amount, Decimal("0")))

    @staticmethod
    def _percent_of(
        comp: SalaryComponent, bases: dict[str, Decimal | None], base: str
    ) -> Decimal:
        base_value = bases.get(base)
        if base_value is None:
            raise UnresolvedBaseError(comp.name, base)
        return base_value * comp.value / _HUNDRED
