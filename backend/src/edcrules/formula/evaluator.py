"""Formula evaluation with a trivalent outcome.

A formula either proves the value valid, proves it invalid, or produces
no definitive answer because it could not be parsed or evaluated. The
last case fails open: a malformed rule written by a study builder must
never block data entry, so it reports valid and logs a warning.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from edcrules.expressions.evaluator import EvaluationContext, EvaluationError
from edcrules.expressions.functions import FormulaFunctionRegistry
from edcrules.expressions.lexer import LexerError
from edcrules.expressions.parser import ParseError
from edcrules.formula.functions import register_formula_functions
from edcrules.formula.interpreter import FormulaInterpreter
from edcrules.formula.parser import parse_formula

logger = logging.getLogger(__name__)


class FormulaStatus(Enum):
    VALID = "valid"
    INVALID = "invalid"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class FormulaOutcome:
    """Result of evaluating a formula.

    Attributes:
        status: VALID, INVALID or INDETERMINATE
        result: The raw formula result, when evaluation succeeded
        error: Error text, when it did not
    """

    status: FormulaStatus
    result: Any = None
    error: str | None = None

    @property
    def valid(self) -> bool:
        return self.status != FormulaStatus.INVALID

    @property
    def definitive(self) -> bool:
        return self.status != FormulaStatus.INDETERMINATE


def interpret_result(result: Any) -> FormulaStatus:
    """Map a formula result to a validation status.

    Booleans map directly, numbers are valid when non-zero, the strings
    true/yes and false/no are recognised case-insensitively, any other
    non-null result is valid and null is invalid.
    """
    if isinstance(result, bool):
        return FormulaStatus.VALID if result else FormulaStatus.INVALID
    if isinstance(result, (int, float)):
        return FormulaStatus.VALID if result != 0 else FormulaStatus.INVALID
    if isinstance(result, str):
        lowered = result.strip().lower()
        if lowered in ("false", "no"):
            return FormulaStatus.INVALID
        return FormulaStatus.VALID
    if result is None:
        return FormulaStatus.INVALID
    return FormulaStatus.VALID


class FormulaEvaluator:
    """Evaluates validation formulas against submitted form values.

    Usage:
        outcome = FormulaEvaluator().evaluate("=AND({age}>=18,{age}<=120)", "17", {"age": "17"})
        outcome.valid  # False
    """

    def __init__(self):
        if not FormulaFunctionRegistry.list_all():
            register_formula_functions()

    def evaluate(
        self,
        expression: str,
        current_value: Any,
        sibling_values: dict[str, Any] | None = None,
    ) -> FormulaOutcome:
        """Evaluate a formula for the value under test.

        Args:
            expression: Formula text, with or without a leading `=`
            current_value: Value bound to `{value}` / `{VALUE}`
            sibling_values: All submitted values, for `{fieldName}` references
        """
        context = EvaluationContext(value=current_value, data=dict(sibling_values or {}))
        try:
            ast = parse_formula(expression)
            result = FormulaInterpreter(context).evaluate(ast)
        except (LexerError, ParseError, EvaluationError, RecursionError, TypeError) as e:
            logger.warning("Formula could not be evaluated, treating as valid: %s (%s)", expression, e)
            return FormulaOutcome(FormulaStatus.INDETERMINATE, error=str(e))

        return FormulaOutcome(interpret_result(result), result=result)
