"""AST interpreter for spreadsheet formulas.

Reuses the expression evaluator's dispatch and function-call handling,
swapping in spreadsheet operator semantics and the formula function
registry.
"""

from typing import Any

from edcrules.expressions.evaluator import EvaluationContext, EvaluationError, Evaluator
from edcrules.expressions.functions import FormulaFunctionRegistry
from edcrules.expressions.nodes import BinaryOp, FunctionCall, Identifier, UnaryOp
from edcrules.formula.parser import FieldReference
from edcrules.formula.values import FormulaError, is_numeric, to_number, to_text

_CURRENT_VALUE_NAMES = ("value", "VALUE")


class FormulaInterpreter(Evaluator):
    """Evaluates a parsed formula.

    Field references resolve against the submitted values. `{value}` and
    `{VALUE}` refer to the value under test. Lookups fall back to a
    case-insensitive match, and a missing, null or empty field reads as "".
    """

    registry = FormulaFunctionRegistry

    def __init__(self, context: EvaluationContext):
        super().__init__(context)
        self._lowered = {key.lower(): val for key, val in context.data.items()}

    def resolve_field(self, name: str) -> Any:
        if name in _CURRENT_VALUE_NAMES:
            found = self.context.value
        elif name in self.context.data:
            found = self.context.data[name]
        elif name.lower() == "value":
            found = self.context.value
        else:
            found = self._lowered.get(name.lower())
        return "" if found is None or found == "" else found

    def _eval_fieldreference(self, node: FieldReference) -> Any:
        return self.resolve_field(node.name)

    def _eval_identifier(self, node: Identifier) -> Any:
        return self.resolve_field(node.name)

    def _eval_functioncall(self, node: FunctionCall) -> Any:
        if not self.registry.is_registered(node.name):
            raise FormulaError("#NAME?", f"unknown function {node.name}")
        return super()._eval_functioncall(node)

    def _eval_unaryop(self, node: UnaryOp) -> Any:
        operand = self.evaluate(node.operand)
        if node.operator == "-":
            return -to_number(operand)
        if node.operator == "%":
            return to_number(operand) / 100
        raise EvaluationError(f"Unknown unary operator: {node.operator}")

    def _eval_binaryop(self, node: BinaryOp) -> Any:
        left = self.evaluate(node.left)
        right = self.evaluate(node.right)
        op = node.operator

        if op == "&":
            return to_text(left) + to_text(right)
        if op in ("=", "<>", "<", "<=", ">", ">="):
            return _compare(op, left, right)

        a = to_number(left)
        b = to_number(right)
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        if op == "/":
            if b == 0:
                raise FormulaError("#DIV/0!")
            return a / b
        if op == "^":
            try:
                result = a ** b
            except (OverflowError, ZeroDivisionError) as e:
                raise FormulaError("#NUM!", str(e)) from e
            if isinstance(result, complex):
                raise FormulaError("#NUM!", "complex result")
            return result

        raise EvaluationError(f"Unknown operator: {op}")


def _compare(op: str, left: Any, right: Any) -> bool:
    """Spreadsheet comparison.

    Numbers (and numeric text, and ISO dates against numbers) compare
    numerically; everything else compares as case-insensitive text.
    """
    if _comparable_as_numbers(left, right):
        a: Any = to_number(left)
        b: Any = to_number(right)
    else:
        a = to_text(left).lower()
        b = to_text(right).lower()

    if op == "=":
        return a == b
    if op == "<>":
        return a != b
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


def _comparable_as_numbers(left: Any, right: Any) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        return is_numeric(left) and is_numeric(right)
    try:
        to_number(left)
        to_number(right)
    except FormulaError:
        return False
    return True
