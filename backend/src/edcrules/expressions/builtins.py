"""Functions available inside rule expressions.

Each function below is declared with `@builtin(...)`, which only records
it. `register_all_builtins()` copies the recorded definitions into
`FunctionRegistry`; call it once at startup (tests call it after clearing
the registry).
"""

import re
from datetime import date, datetime, timezone
from typing import Any, Callable

from edcrules.core.values import as_number, as_timestamp
from edcrules.expressions.functions import (
    FunctionCategory,
    FunctionDefinition,
    FunctionParameter,
    FunctionRegistry,
)

_BUILTINS: list[FunctionDefinition] = []

_SECONDS_PER_DAY = 86400


def builtin(
    name: str,
    category: FunctionCategory,
    description: str,
    returns: str,
    *params: FunctionParameter,
    example: str | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def record(fn: Callable[..., Any]) -> Callable[..., Any]:
        _BUILTINS.append(
            FunctionDefinition(
                name=name,
                description=description,
                category=category,
                parameters=list(params),
                return_type=returns,
                implementation=fn,
                examples=[example] if example else [],
            )
        )
        return fn

    return record


def register_all_builtins() -> None:
    """Make every built-in expression function callable."""
    for definition in _BUILTINS:
        FunctionRegistry.register(definition)


def _param(name: str, kind: str = "any", **flags: bool) -> FunctionParameter:
    return FunctionParameter(name, kind, name, **flags)


S, D, M, C, L = (
    FunctionCategory.STRING,
    FunctionCategory.DATE,
    FunctionCategory.MATH,
    FunctionCategory.COLLECTION,
    FunctionCategory.LOGIC,
)


# Text

@builtin("len", S, "Length of a string or list, 0 otherwise", "number", _param("value"),
         example="len(value) >= 3")
def length(value: Any) -> int:
    return len(value) if isinstance(value, (str, list)) else 0


@builtin("isEmpty", S, "True for null, blank text or an empty list", "boolean", _param("value"),
         example="!isEmpty(data.reason)")
def is_empty(value: Any) -> bool:
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, list):
        return not value
    return value is None


@builtin("trim", S, "Text without surrounding whitespace", "string", _param("value", "string"))
def trim(value: Any) -> str:
    return "" if value is None else str(value).strip()


@builtin("upper", S, "Text in upper case", "string", _param("value", "string"))
def upper(value: Any) -> str:
    return "" if value is None else str(value).upper()


@builtin("lower", S, "Text in lower case", "string", _param("value", "string"))
def lower(value: Any) -> str:
    return "" if value is None else str(value).lower()


@builtin("matches", S, "True when the regex matches anywhere in the value", "boolean",
         _param("value", "string"), _param("pattern", "string"),
         example='matches(value, "^[A-Z]{3}$")')
def matches(value: Any, pattern: Any) -> bool:
    if value is None:
        return False
    try:
        return bool(re.search(str(pattern), str(value)))
    except re.error:
        return False


@builtin("startsWith", S, "True when the value begins with prefix", "boolean",
         _param("value", "string"), _param("prefix", "string"))
def starts_with(value: Any, prefix: Any) -> bool:
    return value is not None and str(value).startswith(str(prefix))


@builtin("endsWith", S, "True when the value ends with suffix", "boolean",
         _param("value", "string"), _param("suffix", "string"))
def ends_with(value: Any, suffix: Any) -> bool:
    return value is not None and str(value).endswith(str(suffix))


# Dates

@builtin("today", D, "Current UTC date as YYYY-MM-DD", "string", example="value <= today()")
def today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


@builtin("daysBetween", D, "Whole days from start to end, null unless both are dates", "number",
         _param("start", "date"), _param("end", "date"),
         example="daysBetween(data.consentDate, value) >= 0")
def days_between(start: Any, end: Any) -> int | None:
    stamps = [as_timestamp(d.isoformat() if isinstance(d, date) else d) for d in (start, end)]
    if None in stamps:
        return None
    return int((stamps[1] - stamps[0]) // _SECONDS_PER_DAY)


# Numbers

def _numeric_args(args: tuple[Any, ...]) -> list[float]:
    if len(args) == 1 and isinstance(args[0], list):
        args = tuple(args[0])
    return [n for n in map(as_number, args) if n is not None]


@builtin("number", M, "The value as a number, null when not numeric", "number", _param("value"),
         example="number(value) > 0")
def number(value: Any) -> float | None:
    return as_number(value)


@builtin("abs", M, "Absolute value", "number", _param("value", "number"))
def absolute(value: Any) -> float | None:
    n = as_number(value)
    return abs(n) if n is not None else None


@builtin("round", M, "Rounded to the given decimals", "number",
         _param("value", "number"), _param("decimals", "number", required=False))
def round_to(value: Any, decimals: Any = 0) -> float | None:
    n = as_number(value)
    if n is None:
        return None
    return round(n, int(as_number(decimals) or 0))


@builtin("min", M, "Smallest numeric argument", "number", _param("values", "number", variadic=True))
def minimum(*values: Any) -> float | None:
    found = _numeric_args(values)
    return min(found) if found else None


@builtin("max", M, "Largest numeric argument", "number", _param("values", "number", variadic=True))
def maximum(*values: Any) -> float | None:
    found = _numeric_args(values)
    return max(found) if found else None


# Collections

@builtin("contains", C, "True when a list or comma-separated answer holds item", "boolean",
         _param("collection", "array|string"), _param("item"),
         example='contains(data.symptoms, "fever")')
def contains(collection: Any, item: Any) -> bool:
    if isinstance(collection, str):
        collection = [option.strip() for option in collection.split(",")]
        item = str(item)
    return isinstance(collection, list) and item in collection


@builtin("coalesce", L, "First argument that is neither null nor empty", "any",
         _param("values", variadic=True))
def coalesce(*values: Any) -> Any:
    return next((v for v in values if v is not None and v != ""), None)
