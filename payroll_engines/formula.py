"""
Restricted arithmetic for ``formula`` pay components.

Formula expressions in component configuration must use a fixed operator
set.  This module parses and validates them, rejecting anything that
could execute arbitrary code, and evaluates them over Decimal values.

Allowed:
  - Arithmetic: +, -, *, / and unary -, +
  - Comparisons: <, <=, >, >=, ==, !=
  - Logical: and, or, not
  - Conditional: ternary (a if b else c)
  - Literals: numbers
  - Names: component codes computed earlier in the run, and the running
    totals gross_pay, taxable_income, net_pay
  - Functions: min(), max(), abs(), round()

Rejected:
  - attribute access, subscripts, strings, lambda, imports, any other call
"""

import ast
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Mapping

from payroll_kernel.exceptions import InvalidComponentConfigurationError

ALLOWED_FUNCTIONS: frozenset[str] = frozenset({"min", "max", "abs", "round"})

RUNNING_TOTALS: frozenset[str] = frozenset({"gross_pay", "taxable_income", "net_pay"})

_BINARY_OPS = (ast.Add, ast.Sub, ast.Mult, ast.Div)
_COMPARE_OPS = (ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE)


@dataclass(frozen=True)
class FormulaError:
    """A validation error found in a formula expression."""

    expression: str
    message: str
    node_type: str = ""


def validate_formula(expression: str, names: frozenset[str] | None = None) -> list[FormulaError]:
    """Validate a formula against the restricted AST.

    ``names`` limits bare identifiers; None allows any identifier.
    Returns a list of errors; an empty list means the expression is valid.
    """
    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as e:
        return [FormulaError(expression, f"Syntax error: {e.msg}")]

    errors: list[FormulaError] = []
    _validate_node(tree.body, expression, names, errors)
    return errors


def _validate_node(node, expression, names, errors) -> None:
    if isinstance(node, ast.BinOp):
        if not isinstance(node.op, _BINARY_OPS):
            errors.append(FormulaError(
                expression, f"Disallowed binary operator: {type(node.op).__name__}", "BinOp",
            ))
        _validate_node(node.left, expression, names, errors)
        _validate_node(node.right, expression, names, errors)

    elif isinstance(node, ast.UnaryOp):
        if not isinstance(node.op, (ast.USub, ast.UAdd, ast.Not)):
            errors.append(FormulaError(
                expression, f"Disallowed unary operator: {type(node.op).__name__}", "UnaryOp",
            ))
        _validate_node(node.operand, expression, names, errors)

    elif isinstance(node, ast.BoolOp):
        for value in node.values:
            _validate_node(value, expression, names, errors)

    elif isinstance(node, ast.Compare):
        for op in node.ops:
            if not isinstance(op, _COMPARE_OPS):
                errors.append(FormulaError(
                    expression, f"Disallowed comparison: {type(op).__name__}", "Compare",
                ))
        _validate_node(node.left, expression, names, errors)
        for comparator in node.comparators:
            _validate_node(comparator, expression, names, errors)

    elif isinstance(node, ast.IfExp):
        _validate_node(node.test, expression, names, errors)
        _validate_node(node.body, expression, names, errors)
        _validate_node(node.orelse, expression, names, errors)

    elif isinstance(node, ast.Call):
        if not (isinstance(node.func, ast.Name) and node.func.id in ALLOWED_FUNCTIONS):
            errors.append(FormulaError(expression, "Disallowed function call", "Call"))
            return
        if node.keywords:
            errors.append(FormulaError(expression, "Keyword arguments are not allowed", "Call"))
        for arg in node.args:
            _validate_node(arg, expression, names, errors)

    elif isinstance(node, ast.Name):
        if names is not None and node.id not in names:
            errors.append(FormulaError(expression, f"Unknown name: {node.id}", "Name"))

    elif isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            errors.append(FormulaError(
                expression, f"Disallowed constant: {node.value!r}", "Constant",
            ))

    else:
        errors.append(FormulaError(
            expression, f"Disallowed AST node type: {type(node).__name__}", type(node).__name__,
        ))


def evaluate_formula(
    component_code: str,
    expression: str,
    values: Mapping[str, Decimal],
) -> Decimal:
    """
    Evaluate a validated formula over Decimal ``values``.

    Raises:
        InvalidComponentConfigurationError: Invalid expression, unknown
            name, or arithmetic failure (e.g. division by zero).
    """
    errors = validate_formula(expression, frozenset(values))
    if errors:
        raise InvalidComponentConfigurationError(
            component_code, "; ".join(e.message for e in errors),
        )
    tree = ast.parse(expression, mode="eval")
    try:
        result = _eval(tree.body, values)
    except (InvalidOperation, ZeroDivisionError, ValueError, IndexError) as exc:
        raise InvalidComponentConfigurationError(
            component_code, f"formula failed: {type(exc).__name__}",
        ) from exc
    return Decimal(result)


def _eval(node, values):
    if isinstance(node, ast.Constant):
        # str() keeps 0.1 exact
        return Decimal(str(node.value))
    if isinstance(node, ast.Name):
        return values[node.id]
    if isinstance(node, ast.BinOp):
        left = _eval(node.left, values)
        right = _eval(node.right, values)
        if isinstance(node.op, ast.Add):
            return left + right
        if isinstance(node.op, ast.Sub):
            return left - right
        if isinstance(node.op, ast.Mult):
            return left * right
        return left / right
    if isinstance(node, ast.UnaryOp):
        operand = _eval(node.operand, values)
        if isinstance(node.op, ast.USub):
            return -operand
        if isinstance(node.op, ast.Not):
            return not operand
        return operand
    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            return all(_eval(v, values) for v in node.values)
        return any(_eval(v, values) for v in node.values)
    if isinstance(node, ast.Compare):
        left = _eval(node.left, values)
        for op, comparator in zip(node.ops, node.comparators):
            right = _eval(comparator, values)
            if not _compare(op, left, right):
                return False
            left = right
        return True
    if isinstance(node, ast.IfExp):
        return _eval(node.body, values) if _eval(node.test, values) else _eval(node.orelse, values)
    # ast.Call, already restricted to ALLOWED_FUNCTIONS
    args = [_eval(a, values) for a in node.args]
    name = node.func.id
    if name == "min":
        return min(args)
    if name == "max":
        return max(args)
    if name == "abs":
        return abs(args[0])
    if len(args) > 1:
        return args[0].quantize(Decimal(1).scaleb(-int(args[1])), rounding=ROUND_HALF_UP)
    return args[0].quantize(Decimal(1), rounding=ROUND_HALF_UP)


def _compare(op, left, right) -> bool:
    if isinstance(op, ast.Eq):
        return left == right
    if isinstance(op, ast.NotEq):
        return left != right
    if isinstance(op, ast.Lt):
        return left < right
    if isinstance(op, ast.LtE):
        return left <= right
    if isinstance(op, ast.Gt):
        return left > right
    return left >= right
