"""Validation rules: model, storage, merging, field matching and evaluation."""

from edcrules.rules.evaluator import RuleEvaluator, RuleOutcome, compare_values
from edcrules.rules.matching import (
    STRATEGIES,
    camel_to_snake,
    data_point_for,
    matches_field,
    resolve_field,
    resolve_path,
)
from edcrules.rules.repository import (
    NATIVE_ID_OFFSET,
    CustomRuleSource,
    LegacyItemRuleSource,
    NativeRuleSource,
    RuleRepository,
    merge_rules,
)
from edcrules.rules.store import RuleStore, new_rule
from edcrules.rules.types import (
    COMPARISON_OPERATORS,
    Rule,
    RuleAccessDenied,
    RuleKind,
    RuleNotFoundError,
    RuleOrigin,
    Severity,
)

__all__ = [
    "COMPARISON_OPERATORS",
    "NATIVE_ID_OFFSET",
    "STRATEGIES",
    "CustomRuleSource",
    "LegacyItemRuleSource",
    "NativeRuleSource",
    "Rule",
    "RuleAccessDenied",
    "RuleEvaluator",
    "RuleKind",
    "RuleNotFoundError",
    "RuleOrigin",
    "RuleOutcome",
    "RuleRepository",
    "RuleStore",
    "Severity",
    "camel_to_snake",
    "compare_values",
    "data_point_for",
    "matches_field",
    "merge_rules",
    "new_rule",
    "resolve_field",
    "resolve_path",
]
