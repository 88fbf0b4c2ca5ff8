"""Tests for the restricted formula evaluator."""

from decimal import Decimal

import pytest

from compensation_engine.calculators.errors import FormulaSyntaxError, UnresolvedBaseError
from compensation_engine.calculators.formula import (
    MAX_FORMULA_LENGTH,
    evaluate_formula,
)

BASES = {"CTC": Decimal("50000"), "BASIC": Decimal("20000")}


class TestEvaluateFormula:
    """Arithmetic over named bases."""

    def test_percentage_of_basic(self):
        assert evaluate_formula("BASIC * 0.4", BASES, "HRA") == Decimal("8000.0")

    def test_min_caps_at_ceiling(self):
        """PF-style formula caps Basic at the wage ceiling."""
        result = evaluate_formula("min(BASIC, 15000) * 0.12", BASES, "Employer PF")
        assert result == Decimal("1800")

    def test_max_and_parentheses(self):
        result = evaluate_formula("max((CTC - BASIC) / 2, 1000)", BASES, "Allowance")
        assert result == Decimal("15000")

    def test_unary_minus(self):
        assert evaluate_formula("-BASIC + CTC", BASES, "Diff") == Decimal("30000")

    def test_decimal_arithmetic_is_exact(self):
        """0.1 + 0.2 is exact in Decimal."""
        assert evaluate_formula("0.1 + 0.2", {}, "X") == Decimal("0.3")


class TestFormulaErrors:
    """Formulas outside the grammar are rejected before evaluation."""

    @pytest.mark.parametrize(
        "formula",
        [
            "__import__('os').system('true')",
            "BASIC ** 2",
            "BASIC if CTC else 0",
            "[BASIC]",
            "BASIC.real",
            "'1000'",
            "abs(BASIC)",
            "min()",
            "True + 1",
            "BASIC +",
        ],
    )
    def test_rejects_disallowed_syntax(self, formula):
        with pytest.raises(FormulaSyntaxError) as exc_info:
            evaluate_formula(formula, BASES, "Bonus")
        assert exc_info.value.key == "Bonus"
        assert exc_info.value.code == "FORMULA_SYNTAX"

    def test_rejects_overlong_formula(self):
        formula = "+".join(["1"] * (MAX_FORMULA_LENGTH // 2 + 1))
        with pytest.raises(FormulaSyntaxError):
            evaluate_formula(formula, BASES, "Long")

    def test_division_by_zero(self):
        with pytest.raises(FormulaSyntaxError) as exc_info:
            evaluate_formula("BASIC / (CTC - CTC)", BASES, "Ratio")
        assert "division by zero" in str(exc_info.value)

    def test_unknown_base(self):
        with pytest.raises(UnresolvedBaseError) as exc_info:
            evaluate_formula("GROSS * 0.1", BASES, "Bonus")
        assert exc_info.value.base == "GROSS"

    def test_base_without_value(self):
        with pytest.raises(UnresolvedBaseError) as exc_info:
            evaluate_formula("BASIC * 0.5", {"CTC": Decimal("1"), "BASIC": None}, "HRA")
        assert exc_info.value.base == "BASIC"
        assert exc_info.value.key == "HRA"

