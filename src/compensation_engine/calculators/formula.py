"""Restricted arithmetic evaluator for FORMULA components.

Formulas are parsed with ``ast`` and walked node by node. Only numeric
literals, named bases, ``+ - * /``, unary sign, parentheses and calls to
``min``/``max`` are accepted; anything else is rejected before
evaluation. Arithmetic runs in Decimal.

    evaluate_formula("min(BASIC, 15000) * 0.12", {"BASIC": Decimal("20000")}, "Employer PF")
    -> Decimal("1800.00")
"""

from __future__ import annotations

import ast
from decimal import Decimal, DivisionByZero, InvalidOperation
from functools import lru_cache
from typing import Callable, Mapping

from compensation_engine.calculators.errors import FormulaSyntaxError, UnresolvedBaseError

_BINARY_OPS: dict[type, Callable[[Decimal, Decimal], Decimal]] = {
    ast.Add: lambda a, b: a + b,
    ast.Sub: lambda a, b: a - b,
    ast.Mult: lambda a, b: a * b,
    ast.Div: lambda a, b: a / b,
}

_FUNCTIONS: dict[str, Callable[..., Decimal]] = {
    "min": min,
    "max": max,
}

MAX_FORMULA_LENGTH = 500


class _Rejected(Exception):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


@lru_cache(maxsize=512)
def _parse(formula: str) -> ast.expr:
    if len(formula) > MAX_FORMULA_LENGTH:
        raise _Rejected(f"longer than {MAX_FORMULA_LENGTH} characters")
    try:
        tree = ast.parse(formula.strip(), mode="eval")
    except SyntaxError as e:
        raise _Rejected(f"syntax error at offset {e.offset}") from e
    _check(tree.body)
    return tree.body


def _check(node: ast.AST) -> None:
    """Reject any node outside the grammar before evaluating."""
    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise _Rejected(f"literal {node.value!r} is not a number")
    elif isinstance(node, ast.Name):
        pass
    elif isinstance(node, ast.BinOp):
        if type(node.op) not in _BINARY_OPS:
            raise _Rejected(f"operator {type(node.op).__name__} is not allowed")
        _check(node.left)
        _check(node.right)
    elif isinstance(node, ast.UnaryOp):
        if not isinstance(node.op, (ast.UAdd, ast.USub)):
            raise _Rejected(f"operator {type(node.op).__name__} is not allowed")
        _check(node.operand)
    elif isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS:
            raise _Rejected("only min() and max() may be called")
        if node.keywords or not node.args:
            raise _Rejected(f"{node.func.id}() takes one or more positional arguments")
        for arg in node.args:
            _check(arg)
    else:
        raise _Rejected(f"{type(node).__name__} is not allowed")


def evaluate_formula(
    formula: str,
    bases: Mapping[str, Decimal | None],
    component_name: str,
) -> Decimal:
    """Evaluate a formula against named bases.

    Raises:
        FormulaSyntaxError: formula outside the grammar or arithmetic error.
        UnresolvedBaseError: a referenced base is unknown or has no value.
    """
    try:
        body = _parse(formula)
    except _Rejected as e:
        raise FormulaSyntaxError(component_name, formula, e.reason) from e

    def walk(node: ast.expr) -> Decimal:
        if isinstance(node, ast.Constant):
            return Decimal(str(node.value))
        if isinstance(node, ast.Name):
            value = bases.get(node.id)
            if value is None:
                raise UnresolvedBaseError(component_name, node.id)
            return value
        if isinstance(node, ast.BinOp):
            return _BINARY_OPS[type(node.op)](walk(node.left), walk(node.right))
        if isinstance(node, ast.UnaryOp):
            operand = walk(node.operand)
            return -operand if isinstance(node.op, ast.USub) else operand
        if isinstance(node, ast.Call):
            return _FUNCTIONS[node.func.id](*(walk(a) for a in node.args))
        raise FormulaSyntaxError(component_name, formula, f"{type(node).__name__} is not allowed")

    try:
        return walk(body)
    except (DivisionByZero, InvalidOperation, ZeroDivisionError) as e:
        raise FormulaSyntaxError(component_name, formula, "division by zero") from e
