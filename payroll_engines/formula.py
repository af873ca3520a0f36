"""
Restricted expression evaluator for formula pay components.

Formulas are parsed once (``compile_formula`` is cached), validated against a
fixed node whitelist, and evaluated over Decimals only.  Nothing in a
formula can import, call arbitrary functions, or touch attributes.

Allowed:
  - Numeric literals (converted to Decimal from their source text)
  - Identifiers: component codes and attendance basis fields
  - Arithmetic: + - * / and unary minus
  - Comparisons: <, <=, >, >=, ==, != ; logical and, or, not
  - Conditional: a if cond else b
  - A comparison used as a number counts as 1 (true) or 0 (false)
  - Functions: min(), max(), abs(), round(x[, places]) (half-up)

Rejected:
  - attribute access, subscripts, strings, lambdas, any other call
"""

import ast
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, DivisionByZero, InvalidOperation, ROUND_HALF_UP
from functools import lru_cache

from payroll_kernel.exceptions import InvalidFormulaError

# name -> (min args, max args); None means unbounded
_ARITY: dict[str, tuple[int, int | None]] = {
    "min": (1, None),
    "max": (1, None),
    "abs": (1, 1),
    "round": (1, 2),
}
ALLOWED_FUNCTIONS: frozenset[str] = frozenset(_ARITY)

_BIN_OPS = (ast.Add, ast.Sub, ast.Mult, ast.Div)
_CMP_OPS = (ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE)


@dataclass(frozen=True)
class FormulaASTError:
    """A validation error found in a formula expression."""

    expression: str
    message: str
    node_type: str = ""


@dataclass(frozen=True)
class CompiledFormula:
    """A validated formula and the identifiers it reads."""

    expression: str
    tree: ast.Expression
    identifiers: frozenset[str]


def validate_formula(expression: str) -> list[FormulaASTError]:
    """Validate a formula; an empty list means it is acceptable."""
    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as e:
        return [FormulaASTError(expression, f"Syntax error: {e.msg}")]

    errors: list[FormulaASTError] = []
    _validate_node(tree.body, expression, errors)
    return errors


def _validate_node(node: ast.AST, expression: str, errors: list[FormulaASTError]) -> None:
    """Recursively validate an AST node."""

    def reject(message: str) -> None:
        errors.append(FormulaASTError(expression, message, type(node).__name__))

    if isinstance(node, ast.BinOp):
        if not isinstance(node.op, _BIN_OPS):
            reject(f"Disallowed binary operator: {type(node.op).__name__}")
        _validate_node(node.left, expression, errors)
        _validate_node(node.right, expression, errors)

    elif isinstance(node, ast.UnaryOp):
        if not isinstance(node.op, (ast.USub, ast.UAdd, ast.Not)):
            reject(f"Disallowed unary operator: {type(node.op).__name__}")
        _validate_node(node.operand, expression, errors)

    elif isinstance(node, ast.BoolOp):
        for value in node.values:
            _validate_node(value, expression, errors)

    elif isinstance(node, ast.Compare):
        for op in node.ops:
            if not isinstance(op, _CMP_OPS):
                reject(f"Disallowed comparison: {type(op).__name__}")
        _validate_node(node.left, expression, errors)
        for comparator in node.comparators:
            _validate_node(comparator, expression, errors)

    elif isinstance(node, ast.IfExp):
        _validate_node(node.test, expression, errors)
        _validate_node(node.body, expression, errors)
        _validate_node(node.orelse, expression, errors)

    elif isinstance(node, ast.Call):
        if not (isinstance(node.func, ast.Name) and node.func.id in ALLOWED_FUNCTIONS):
            reject(f"Disallowed function call: {ast.unparse(node.func)}")
            return
        if node.keywords:
            reject("Keyword arguments are not allowed")
        low, high = _ARITY[node.func.id]
        if len(node.args) < low or (high is not None and len(node.args) > high):
            if high is None:
                expected = f"at least {low}"
            elif low == high:
                expected = str(low)
            else:
                expected = f"{low} to {high}"
            reject(f"{node.func.id}() takes {expected} argument(s), got {len(node.args)}")
        for arg in node.args:
            _validate_node(arg, expression, errors)

    elif isinstance(node, ast.Name):
        if node.id in ALLOWED_FUNCTIONS:
            reject(f"Function {node.id} used as a value")

    elif isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            reject(f"Disallowed constant: {node.value!r}")

    else:
        reject(f"Disallowed expression: {type(node).__name__}")


def _identifiers(tree: ast.AST) -> frozenset[str]:
    names = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and node.id not in ALLOWED_FUNCTIONS:
            names.add(node.id)
    return frozenset(names)


@lru_cache(maxsize=512)
def compile_formula(component_code: str, expression: str) -> CompiledFormula:
    """
    Parse and validate once; later calls with the same arguments are cached.

    Raises:
        InvalidFormulaError: Syntax error or a disallowed construct.
    """
    errors = validate_formula(expression)
    if errors:
        raise InvalidFormulaError(component_code, "; ".join(e.message for e in errors))
    tree = ast.parse(expression, mode="eval")
    return CompiledFormula(
        expression=expression,
        tree=tree,
        identifiers=_identifiers(tree.body),
    )


def evaluate_formula(
    component_code: str,
    compiled: CompiledFormula,
    variables: Mapping[str, Decimal],
) -> Decimal:
    """
    Evaluate a compiled formula over Decimal variables.

    Raises:
        InvalidFormulaError: Unknown identifier, division by zero, or a
            non-numeric result.
    """
    unknown = sorted(compiled.identifiers - variables.keys())
    if unknown:
        raise InvalidFormulaError(
            component_code, f"Unknown identifier(s): {', '.join(unknown)}"
        )
    try:
        result = _eval(compiled.tree.body, compiled.expression, variables)
    except (ZeroDivisionError, DivisionByZero, InvalidOperation) as exc:
        raise InvalidFormulaError(component_code, f"Arithmetic error: {exc!r}") from exc
    if isinstance(result, bool):
        raise InvalidFormulaError(component_code, "Formula evaluates to a boolean")
    if not isinstance(result, Decimal):
        raise InvalidFormulaError(
            component_code, f"Formula evaluates to {type(result).__name__}, not a number"
        )
    return result


def _number(value) -> Decimal:
    """Comparison results used as operands count as 1 or 0."""
    if isinstance(value, bool):
        return Decimal(int(value))
    return value


def _eval(node: ast.AST, source: str, variables: Mapping[str, Decimal]):
    if isinstance(node, ast.Constant):
        return Decimal(ast.get_source_segment(source, node) or str(node.value))

    if isinstance(node, ast.Name):
        return variables[node.id]

    if isinstance(node, ast.BinOp):
        left = _number(_eval(node.left, source, variables))
        right = _number(_eval(node.right, source, variables))
        if isinstance(node.op, ast.Add):
            return left + right
        if isinstance(node.op, ast.Sub):
            return left - right
        if isinstance(node.op, ast.Mult):
            return left * right
        return left / right

    if isinstance(node, ast.UnaryOp):
        operand = _eval(node.operand, source, variables)
        if isinstance(node.op, ast.Not):
            return not operand
        operand = _number(operand)
        return -operand if isinstance(node.op, ast.USub) else operand

    if isinstance(node, ast.BoolOp):
        values = (_eval(v, source, variables) for v in node.values)
        if isinstance(node.op, ast.And):
            return all(values)
        return any(values)

    if isinstance(node, ast.Compare):
        left = _eval(node.left, source, variables)
        for op, comparator in zip(node.ops, node.comparators):
            right = _eval(comparator, source, variables)
            if not _compare(op, left, right):
                return False
            left = right
        return True

    if isinstance(node, ast.IfExp):
        if _eval(node.test, source, variables):
            return _eval(node.body, source, variables)
        return _eval(node.orelse, source, variables)

    if isinstance(node, ast.Call):
        args = [_number(_eval(a, source, variables)) for a in node.args]
        name = node.func.id
        if name == "min":
            return min(args)
        if name == "max":
            return max(args)
        if name == "abs":
            return abs(args[0])
        places = int(args[1]) if len(args) > 1 else 0
        return args[0].quantize(Decimal(10) ** -places, rounding=ROUND_HALF_UP)

    raise TypeError(f"Unvalidated node reached evaluation: {type(node).__name__}")


def _compare(op: ast.cmpop, left, right) -> bool:
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
