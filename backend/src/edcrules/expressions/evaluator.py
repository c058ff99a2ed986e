"""Sandboxed interpreter for rule expressions.

Only three things are reachable from an expression: the value under test
(`value`), the submitted form (`data`, and bare names looked up in it) and
registered functions. `.key` reads mapping keys and never Python
attributes.

`==` coerces numbers the way script authors expect ("5" == 5), `===`
does not, and `+` joins text when either side is a string.
"""

import math
import operator
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable

from edcrules.core.values import as_number
from edcrules.expressions.functions import FunctionRegistry
from edcrules.expressions.nodes import (
    ArrayLiteral,
    ASTNode,
    BinaryOp,
    FunctionCall,
    Identifier,
    IndexAccess,
    Literal,
    MemberAccess,
    UnaryOp,
)
from edcrules.expressions.parser import parse


class EvaluationError(Exception):
    """An expression parsed but could not be computed."""


@dataclass
class EvaluationContext:
    value: Any = None
    data: dict[str, Any] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)


_NUMBERS = (int, float, Decimal)

_ORDERING: dict[str, Callable[[Any, Any], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def _divide(a: float, b: float) -> float:
    if b == 0:
        raise EvaluationError("Division by zero")
    return a / b


def _remainder(a: float, b: float) -> float:
    if b == 0:
        raise EvaluationError("Division by zero")
    return math.fmod(a, b)


_ARITHMETIC: dict[str, Callable[[float, float], float]] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": _divide,
    "%": _remainder,
}


def to_bool(value: Any) -> bool:
    """Script truthiness: null, false, 0, NaN and "" are false; lists never are."""
    if value is None or value == "":
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, _NUMBERS):
        return not (value == 0 or (isinstance(value, float) and math.isnan(value)))
    return True


def strict_equals(left: Any, right: Any) -> bool:
    """Equal kind and equal value; booleans are never numbers here."""
    left_bool, right_bool = isinstance(left, bool), isinstance(right, bool)
    if left_bool or right_bool:
        return left_bool and right_bool and left == right
    if isinstance(left, _NUMBERS) and isinstance(right, _NUMBERS):
        return float(left) == float(right)
    return type(left) is type(right) and left == right


def loose_equals(left: Any, right: Any) -> bool:
    """Equality that converts to numbers when either side is numeric or boolean."""
    if left is None or right is None:
        return left is right
    scalar = (*_NUMBERS, bool)
    if isinstance(left, scalar) or isinstance(right, scalar):
        a, b = as_number(left), as_number(right)
        return a is not None and a == b
    return left == right


def order(left: Any, right: Any, op: str) -> bool:
    """`<`-family comparison. Two strings compare as text, anything else as numbers."""
    if not (isinstance(left, str) and isinstance(right, str)):
        left, right = as_number(left), as_number(right)
        if left is None or right is None:
            return False
    return _ORDERING[op](left, right)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if value is True or value is False:
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _contains(collection: Any, item: Any) -> bool:
    if collection is None:
        return False
    if isinstance(collection, str):
        return item is not None and _as_text(item) in collection
    if isinstance(collection, (list, dict)):
        try:
            return item in collection
        except TypeError as e:
            raise EvaluationError(f"Cannot look up {item!r}: {e}") from e
    raise EvaluationError(f"'in' needs a list, mapping or text, not {type(collection).__name__}")


class Evaluator:
    """Walks a syntax tree, calling `_eval_<nodeclass>` for each node.

    Subclasses override `registry` and individual `_eval_*` methods to
    give the same tree different semantics.
    """

    registry: type[FunctionRegistry] = FunctionRegistry

    def __init__(self, context: EvaluationContext):
        self.context = context

    def evaluate(self, node: ASTNode) -> Any:
        handler = getattr(self, "_eval_" + type(node).__name__.lower(), None)
        if handler is None:
            raise EvaluationError(f"Cannot evaluate {type(node).__name__}")
        return handler(node)

    def _eval_literal(self, node: Literal) -> Any:
        return node.value

    def _eval_arrayliteral(self, node: ArrayLiteral) -> list[Any]:
        return list(map(self.evaluate, node.elements))

    def _eval_identifier(self, node: Identifier) -> Any:
        ctx = self.context
        if node.name == "value":
            return ctx.value
        if node.name == "data":
            return ctx.data
        if node.name in ctx.variables:
            return ctx.variables[node.name]
        if node.name in ctx.data:
            return ctx.data[node.name]
        wanted = node.name.lower()
        return next((v for k, v in ctx.data.items() if k.lower() == wanted), None)

    def _eval_memberaccess(self, node: MemberAccess) -> Any:
        target = self.evaluate(node.object)
        if isinstance(target, dict):
            return target.get(node.member)
        if node.member == "length" and isinstance(target, (str, list)):
            return len(target)
        return None

    def _eval_indexaccess(self, node: IndexAccess) -> Any:
        target = self.evaluate(node.object)
        key = self.evaluate(node.index)
        if isinstance(target, dict):
            try:
                return target.get(key)
            except TypeError as e:
                raise EvaluationError(f"Cannot use {key!r} as a key: {e}") from e
        positional = isinstance(key, int) and not isinstance(key, bool)
        if positional and isinstance(target, (str, list)) and 0 <= key < len(target):
            return target[key]
        return None

    def _eval_unaryop(self, node: UnaryOp) -> Any:
        operand = self.evaluate(node.operand)
        if node.operator == "!":
            return not to_bool(operand)
        if node.operator != "-":
            raise EvaluationError(f"Unknown unary operator: {node.operator}")
        number = as_number(operand)
        if number is None:
            raise EvaluationError(f"Cannot negate {operand!r}")
        return -number

    def _eval_binaryop(self, node: BinaryOp) -> Any:
        op = node.operator
        if op == "&&":
            return to_bool(self.evaluate(node.left)) and to_bool(self.evaluate(node.right))
        if op == "||":
            return to_bool(self.evaluate(node.left)) or to_bool(self.evaluate(node.right))

        left, right = self.evaluate(node.left), self.evaluate(node.right)
        if op in ("===", "!=="):
            return strict_equals(left, right) == (op == "===")
        if op in ("==", "!="):
            return loose_equals(left, right) == (op == "==")
        if op in _ORDERING:
            return order(left, right, op)
        if op in ("in", "not in"):
            return _contains(right, left) == (op == "in")
        if op == "+" and (isinstance(left, str) or isinstance(right, str)):
            return _as_text(left) + _as_text(right)
        if op in _ARITHMETIC:
            a, b = as_number(left), as_number(right)
            if a is None or b is None:
                raise EvaluationError(f"Cannot apply '{op}' to {left!r} and {right!r}")
            return _ARITHMETIC[op](a, b)
        raise EvaluationError(f"Unknown operator: {op}")

    def _eval_functioncall(self, node: FunctionCall) -> Any:
        try:
            definition = self.registry.get(node.name)
        except ValueError as e:
            raise EvaluationError(str(e)) from e

        if definition.lazy:
            args = [self._deferred(arg) for arg in node.arguments]
        else:
            args = [self.evaluate(arg) for arg in node.arguments]
        try:
            return definition.implementation(*args)
        except EvaluationError:
            raise
        except (TypeError, ValueError, ArithmeticError) as e:
            raise EvaluationError(f"{node.name}() failed: {e}") from e

    def _deferred(self, node: ASTNode) -> Callable[[], Any]:
        return lambda: self.evaluate(node)


def evaluate(
    expression: str,
    value: Any = None,
    data: dict[str, Any] | None = None,
    variables: dict[str, Any] | None = None,
) -> Any:
    """Parse and evaluate in one step.

        evaluate('value >= 18 && data.consent === "yes"', 21, {"consent": "yes"})
        # True
    """
    context = EvaluationContext(value=value, data=dict(data or {}), variables=dict(variables or {}))
    return Evaluator(context).evaluate(parse(expression))


def evaluate_bool(
    expression: str,
    value: Any = None,
    data: dict[str, Any] | None = None,
    variables: dict[str, Any] | None = None,
) -> bool:
    return to_bool(evaluate(expression, value, data, variables))
