"""
Payroll Core - Formula Components

Restricted arithmetic for pay components using the ``formula`` strategy.
Expressions are parsed with ``ast`` and evaluated by walking the tree; nothing
is ever passed to eval/exec.

Allowed:
  - Numbers, parentheses
  - Binary +, -, *, /
  - Unary +, -
  - min(...), max(...)
  - Variables: base_salary, gross_pay, hours, sales

Everything else (attribute access, other names or calls, comparisons, powers,
subscripts, strings) is rejected with a ConfigurationError.
"""

import ast
from decimal import Decimal, DivisionByZero, InvalidOperation
from typing import Dict, FrozenSet, Mapping

from app.utils.error_handling import ConfigurationError

FORMULA_VARIABLES: FrozenSet[str] = frozenset({"base_salary", "gross_pay", "hours", "sales"})

ALLOWED_FUNCTIONS = {"min": min, "max": max}

_BINARY_OPS = {
    ast.Add: lambda a, b: a + b,
    ast.Sub: lambda a, b: a - b,
    ast.Mult: lambda a, b: a * b,
    ast.Div: lambda a, b: a / b,
}

_UNARY_OPS = {
    ast.UAdd: lambda a: a,
    ast.USub: lambda a: -a,
}


def parse_formula(expression: str) -> ast.Expression:
    """Parse and validate an expression, returning its AST."""
    if not expression or not expression.strip():
        raise ConfigurationError("Formula expression is empty", field="calculation.expression")
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise ConfigurationError(
            f"Formula syntax error: {e.msg}",
            field="calculation.expression",
            details={"expression": expression},
        )
    _validate(tree.body, expression)
    return tree


def referenced_variables(expression: str) -> FrozenSet[str]:
    """Variables an expression reads."""
    tree = parse_formula(expression)
    return frozenset(
        node.id for node in ast.walk(tree)
        if isinstance(node, ast.Name) and node.id in FORMULA_VARIABLES
    )


def _reject(expression: str, message: str):
    raise ConfigurationError(
        f"Disallowed formula: {message}",
        field="calculation.expression",
        details={"expression": expression},
    )


def _validate(node: ast.AST, expression: str) -> None:
    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            _reject(expression, f"literal {node.value!r}")
    elif isinstance(node, ast.Name):
        if node.id not in FORMULA_VARIABLES:
            _reject(expression, f"unknown variable '{node.id}'")
    elif isinstance(node, ast.BinOp):
        if type(node.op) not in _BINARY_OPS:
            _reject(expression, f"operator {type(node.op).__name__}")
        _validate(node.left, expression)
        _validate(node.right, expression)
    elif isinstance(node, ast.UnaryOp):
        if type(node.op) not in _UNARY_OPS:
            _reject(expression, f"operator {type(node.op).__name__}")
        _validate(node.operand, expression)
    elif isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in ALLOWED_FUNCTIONS:
            _reject(expression, "function call")
        if node.keywords or not node.args:
            _reject(expression, f"{node.func.id}() takes positional arguments only")
        for arg in node.args:
            _validate(arg, expression)
    else:
        _reject(expression, type(node).__name__)


def _evaluate(node: ast.AST, variables: Mapping[str, Decimal]) -> Decimal:
    if isinstance(node, ast.Constant):
        return Decimal(str(node.value))
    if isinstance(node, ast.Name):
        return variables[node.id]
    if isinstance(node, ast.BinOp):
        return _BINARY_OPS[type(node.op)](
            _evaluate(node.left, variables), _evaluate(node.right, variables)
        )
    if isinstance(node, ast.UnaryOp):
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand, variables))
    # Call
    return ALLOWED_FUNCTIONS[node.func.id](*(_evaluate(arg, variables) for arg in node.args))


def evaluate_formula(expression: str, variables: Dict[str, Decimal]) -> Decimal:
    """Evaluate a validated expression against the given variables."""
    tree = parse_formula(expression)
    missing = referenced_variables(expression) - set(variables)
    if missing:
        raise ConfigurationError(
            f"Formula needs unavailable values: {', '.join(sorted(missing))}",
            field="calculation.expression",
        )
    try:
        return _evaluate(tree.body, variables)
    except (ZeroDivisionError, DivisionByZero, InvalidOperation):
        raise ConfigurationError(
            "Formula divides by zero",
            field="calculation.expression",
            details={"expression": expression},
        )
