"""Spreadsheet-style formula interpreter for validation rules."""

from edcrules.formula.evaluator import (
    FormulaEvaluator,
    FormulaOutcome,
    FormulaStatus,
    interpret_result,
)
from edcrules.formula.functions import register_formula_functions
from edcrules.formula.parser import (
    FORMULA_MARKER,
    FieldReference,
    FormulaParser,
    parse_formula,
    strip_formula_marker,
)
from edcrules.formula.values import FormulaError

__all__ = [
    "FORMULA_MARKER",
    "FieldReference",
    "FormulaError",
    "FormulaEvaluator",
    "FormulaOutcome",
    "FormulaParser",
    "FormulaStatus",
    "interpret_result",
    "parse_formula",
    "register_formula_functions",
    "strip_formula_marker",
]
