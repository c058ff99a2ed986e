"""Apply a single validation rule to a resolved field value.

Every RuleKind has a handler; construction fails if one is missing, so
adding a kind without teaching the evaluator about it is caught at
startup rather than silently passing data.

Policy shared by all kinds:
- Empty values (null, "", empty list) fail `required` and pass everything else.
- Multi-value answers are exempt from `range` and `format`.
- Configuration errors (bad regex, unparsable formula) pass, with a warning.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from edcrules.core.values import FieldValue, ValueKind, as_number, as_timestamp, is_date_like
from edcrules.expressions import (
    EvaluationError,
    FunctionRegistry,
    LexerError,
    ParseError,
    evaluate_bool,
    register_all_builtins,
)
from edcrules.formats import FormatRegistry, default_registry
from edcrules.formula import FormulaEvaluator
from edcrules.rules.matching import resolve_path
from edcrules.rules.types import COMPARISON_OPERATORS, Rule, RuleKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleOutcome:
    """Result of applying one rule.

    Attributes:
        valid: Whether the value satisfies the rule
        detail: Short reason, for diagnostics and rule testing
    """

    valid: bool
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "detail": self.detail}


PASS = RuleOutcome(True)


class RuleEvaluator:
    """Evaluates rules of every kind.

    Usage:
        evaluator = RuleEvaluator()
        evaluator.apply(rule, "17", {"age": "17"}).valid
    """

    def __init__(
        self,
        formats: FormatRegistry | None = None,
        formulas: FormulaEvaluator | None = None,
    ):
        self.formats = formats or default_registry()
        self.formulas = formulas or FormulaEvaluator()
        if not FunctionRegistry.list_all():
            register_all_builtins()

        self._handlers: dict[RuleKind, Callable[[Rule, FieldValue, Mapping[str, Any]], RuleOutcome]] = {
            RuleKind.REQUIRED: self._required,
            RuleKind.RANGE: self._range,
            RuleKind.FORMAT: self._format,
            RuleKind.CONSISTENCY: self._consistency,
            RuleKind.FORMULA: self._formula,
            RuleKind.BUSINESS_LOGIC: self._business_logic,
            RuleKind.CROSS_FORM: self._business_logic,
        }
        unhandled = set(RuleKind) - set(self._handlers)
        if unhandled:
            names = ", ".join(sorted(kind.value for kind in unhandled))
            raise RuntimeError(f"No evaluator for rule kinds: {names}")

    def apply(self, rule: Rule, value: Any, all_values: Mapping[str, Any] | None = None) -> RuleOutcome:
        """Apply a rule to a value.

        Args:
            rule: The rule to apply
            value: The field's value (raw or FieldValue)
            all_values: All submitted values, for formulas and comparisons
        """
        field_value = FieldValue.of(value)
        if field_value.is_empty:
            if rule.kind == RuleKind.REQUIRED:
                return RuleOutcome(False, "value is required")
            return RuleOutcome(True, "empty value")
        return self._handlers[rule.kind](rule, field_value, all_values or {})

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _required(self, rule: Rule, value: FieldValue, all_values: Mapping[str, Any]) -> RuleOutcome:
        return PASS

    def _range(self, rule: Rule, value: FieldValue, all_values: Mapping[str, Any]) -> RuleOutcome:
        if value.is_multi_value:
            return RuleOutcome(True, "multi-value answer")

        if is_date_like(value.raw):
            moment = as_timestamp(value.raw)
            if moment is None:
                return RuleOutcome(False, "invalid date")
            low = _date_bound(rule.min_value)
            high = _date_bound(rule.max_value)
            if low is not None and moment < low:
                return RuleOutcome(False, f"before {rule.min_value}")
            if high is not None and moment > high:
                return RuleOutcome(False, f"after {rule.max_value}")
            return PASS

        number = as_number(value.raw) if value.kind != ValueKind.MAPPING else None
        if number is None:
            return RuleOutcome(False, "not a number")
        low = as_number(rule.min_value)
        high = as_number(rule.max_value)
        if low is not None and number < low:
            return RuleOutcome(False, f"below minimum {rule.min_value}")
        if high is not None and number > high:
            return RuleOutcome(False, f"above maximum {rule.max_value}")
        return PASS

    def _format(self, rule: Rule, value: FieldValue, all_values: Mapping[str, Any]) -> RuleOutcome:
        pattern = self.formats.resolve_pattern(rule.format_type) or rule.pattern
        if not pattern:
            return RuleOutcome(True, "no pattern")
        if value.is_multi_value:
            return RuleOutcome(True, "multi-value answer")

        if pattern.startswith("="):
            return self._run_formula(pattern, value, all_values)

        try:
            matched = re.search(pattern, value.as_text()) is not None
        except re.error as e:
            logger.warning("Invalid pattern on rule %s (%s), treating as valid: %s", rule.id, rule.name, e)
            return RuleOutcome(True, "invalid pattern")
        return PASS if matched else RuleOutcome(False, "format mismatch")

    def _consistency(self, rule: Rule, value: FieldValue, all_values: Mapping[str, Any]) -> RuleOutcome:
        operator = rule.operator or "=="
        if operator not in COMPARISON_OPERATORS:
            logger.warning("Unknown operator '%s' on rule %s, treating as valid", operator, rule.id)
            return RuleOutcome(True, "unknown operator")
        if not rule.compare_field_path:
            logger.warning("Consistency rule %s has no comparison field, treating as valid", rule.id)
            return RuleOutcome(True, "no comparison field")

        other = resolve_path(all_values, rule.compare_field_path, rule.form_id)
        if not isinstance(other, FieldValue):
            logger.debug(
                "Comparison field '%s' not submitted, skipping rule %s",
                rule.compare_field_path,
                rule.id,
            )
            return RuleOutcome(True, "comparison field not submitted")

        if compare_values(value, other, operator):
            return PASS
        return RuleOutcome(False, f"{rule.field_path} {operator} {rule.compare_field_path} is false")

    def _formula(self, rule: Rule, value: FieldValue, all_values: Mapping[str, Any]) -> RuleOutcome:
        expression = rule.pattern or rule.custom_expression
        if not expression:
            return RuleOutcome(True, "no formula")
        return self._run_formula(expression, value, all_values)

    def _business_logic(self, rule: Rule, value: FieldValue, all_values: Mapping[str, Any]) -> RuleOutcome:
        expression = rule.custom_expression
        if not expression:
            return RuleOutcome(True, "no expression")

        outcome = self.formulas.evaluate(expression, value.raw, dict(all_values))
        if outcome.definitive:
            return RuleOutcome(outcome.valid, "formula")

        try:
            result = evaluate_bool(expression.lstrip("="), value.raw, dict(all_values))
        except (LexerError, ParseError, EvaluationError, RecursionError, TypeError) as e:
            logger.warning("Expression on rule %s could not be evaluated, treating as valid: %s", rule.id, e)
            return RuleOutcome(True, "expression error")
        return RuleOutcome(result, "expression")

    def _run_formula(self, expression: str, value: FieldValue, all_values: Mapping[str, Any]) -> RuleOutcome:
        outcome = self.formulas.evaluate(expression, value.raw, dict(all_values))
        if not outcome.definitive:
            return RuleOutcome(True, "formula error")
        return RuleOutcome(outcome.valid, "formula")


# -----------------------------------------------------------------------------
# Comparison semantics for consistency rules
# -----------------------------------------------------------------------------


def _date_bound(bound: Any) -> float | None:
    if isinstance(bound, str):
        return as_timestamp(bound)
    return None


def _ordered(left: FieldValue, right: FieldValue) -> tuple[Any, Any]:
    """Pick a common ordering: dates, then numbers, then text."""
    if is_date_like(left.raw) and is_date_like(right.raw):
        a, b = as_timestamp(left.raw), as_timestamp(right.raw)
        if a is not None and b is not None:
            return a, b
    if not left.is_empty and not right.is_empty:
        a, b = as_number(left.raw), as_number(right.raw)
        if a is not None and b is not None:
            return a, b
    return left.as_text(), right.as_text()


def compare_values(left: FieldValue, right: FieldValue, operator: str) -> bool:
    """Compare two field values.

    Date strings compare as timestamps and numeric values numerically.
    `===` and `!==` additionally require both values to be of the same
    kind, so "5" === 5 is false while "5" == 5 is true.
    """
    if operator in ("===", "!=="):
        same_kind = left.kind == right.kind
        a, b = _ordered(left, right)
        result = same_kind and a == b
        return result if operator == "===" else not result

    a, b = _ordered(left, right)
    if operator == "==":
        return a == b
    if operator == "!=":
        return a != b
    if operator == ">":
        return a > b
    if operator == "<":
        return a < b
    if operator == ">=":
        return a >= b
    return a <= b
