"""Locate a rule's target value inside a submitted form payload.

Field names vary by origin: a template stores `demographics.ageYears`, a
patient-form copy submits `age_years`, legacy forms use OIDs. Resolution
therefore tries an ordered list of strategies and the first hit wins:

1. Exact key, then dotted traversal of nested sections
2. Case-insensitive key on the full path
3. Last path segment, exact then case-insensitive
4. Last path segment converted from camelCase to snake_case
5. Stable storage id: payload keys whose storage id equals the rule field's
6. Recursive case-insensitive search through nested sections (not lists)

Each strategy is a pure function returning a FieldValue or MISSING.
"""

import re
from typing import Any, Callable, Mapping

from edcrules.core.values import MISSING, FieldValue, Missing
from edcrules.rules.types import Rule, RuleKind

StorageIdMap = Mapping[str, int]
FieldLookup = FieldValue | Missing
Strategy = Callable[[Mapping[str, Any], Rule, StorageIdMap], FieldLookup]

_UPPER = re.compile(r"([A-Z])")


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case (`ageYears` -> `age_years`)."""
    return _UPPER.sub(r"_\1", name).lower().lstrip("_")


def last_segment(path: str) -> str:
    return path.split(".")[-1]


def field_storage_key(field_id: int) -> str:
    """Key under which a field's data point id is stored in the storage map."""
    return f"item_{field_id}"


def _key_insensitive(data: Mapping[str, Any], name: str) -> FieldLookup:
    lowered = name.lower()
    for key, val in data.items():
        if key.lower() == lowered:
            return FieldValue.of(val)
    return MISSING


# -----------------------------------------------------------------------------
# Strategies
# -----------------------------------------------------------------------------


def exact_path(data: Mapping[str, Any], rule: Rule, storage: StorageIdMap) -> FieldLookup:
    path = rule.field_path
    if path in data:
        return FieldValue.of(data[path])
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return MISSING
        current = current[part]
    return FieldValue.of(current)


def case_insensitive_path(data: Mapping[str, Any], rule: Rule, storage: StorageIdMap) -> FieldLookup:
    return _key_insensitive(data, rule.field_path)


def bare_name(data: Mapping[str, Any], rule: Rule, storage: StorageIdMap) -> FieldLookup:
    name = last_segment(rule.field_path)
    if name in data:
        return FieldValue.of(data[name])
    return _key_insensitive(data, name)


def snake_case_name(data: Mapping[str, Any], rule: Rule, storage: StorageIdMap) -> FieldLookup:
    return _key_insensitive(data, camel_to_snake(last_segment(rule.field_path)))


def storage_id(data: Mapping[str, Any], rule: Rule, storage: StorageIdMap) -> FieldLookup:
    if rule.field_id is None:
        return MISSING
    target = storage.get(field_storage_key(rule.field_id))
    if not target:
        return MISSING
    for key, val in data.items():
        if storage.get(key) == target:
            return FieldValue.of(val)
    return MISSING


def nested_search(data: Mapping[str, Any], rule: Rule, storage: StorageIdMap) -> FieldLookup:
    return _deep_search(data, last_segment(rule.field_path).lower())


def _deep_search(obj: Mapping[str, Any], lowered: str) -> FieldLookup:
    for key, val in obj.items():
        if key.lower() == lowered:
            return FieldValue.of(val)
        if isinstance(val, Mapping):
            found = _deep_search(val, lowered)
            if found is not MISSING:
                return found
    return MISSING


STRATEGIES: tuple[Strategy, ...] = (
    exact_path,
    case_insensitive_path,
    bare_name,
    snake_case_name,
    storage_id,
    nested_search,
)


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------


def resolve_field(
    data: Mapping[str, Any],
    rule: Rule,
    storage: StorageIdMap | None = None,
    strategies: tuple[Strategy, ...] = STRATEGIES,
) -> FieldLookup:
    """Resolve a rule's value in the payload, or MISSING if nothing matches."""
    if not rule.field_path:
        return MISSING
    storage = storage or {}
    for strategy in strategies:
        found = strategy(data, rule, storage)
        if found is not MISSING:
            return found
    return MISSING


def resolve_path(data: Mapping[str, Any], path: str, form_id: int = 0) -> FieldLookup:
    """Resolve an arbitrary field path (e.g. a consistency rule's comparison field)."""
    probe = Rule(id=None, form_id=form_id, name=path, kind=RuleKind.CONSISTENCY, field_path=path)
    return resolve_field(data, probe)


def data_point_for(path: str, storage: StorageIdMap, field_id: int | None = None) -> int | None:
    """Find the stable data point id for a field path.

    Tries the path, its lowercase form, the last segment in both cases and
    finally the field id entry.
    """
    name = last_segment(path)
    for candidate in (path, path.lower(), name, name.lower()):
        if storage.get(candidate):
            return storage[candidate]
    if field_id is not None and storage.get(field_storage_key(field_id)):
        return storage[field_storage_key(field_id)]
    return None


def matches_field(
    rule: Rule,
    field_path: str,
    field_id: int | None = None,
    storage: StorageIdMap | None = None,
) -> bool:
    """Decide whether a rule governs a changed field.

    Matches on field id, exact path, case-insensitive path, last segment,
    snake_case form of the last segment, and finally on both paths mapping
    to the same storage id.
    """
    if rule.field_id is not None and field_id is not None and rule.field_id == field_id:
        return True
    if not rule.field_path:
        return False
    if rule.field_path == field_path:
        return True
    if rule.field_path.lower() == field_path.lower():
        return True

    rule_name = last_segment(rule.field_path)
    input_name = last_segment(field_path)
    if rule_name.lower() == input_name.lower():
        return True
    if camel_to_snake(rule_name) == camel_to_snake(input_name):
        return True

    if storage:
        rule_target = storage.get(rule.field_path) or storage.get(rule.field_path.lower())
        input_target = storage.get(field_path) or storage.get(field_path.lower())
        if rule_target and input_target and rule_target == input_target:
            return True
    return False
