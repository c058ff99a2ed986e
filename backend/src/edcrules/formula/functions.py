"""Built-in spreadsheet functions for validation formulas.

Call register_formula_functions() at startup. Names are registered in
upper case and looked up case-insensitively.

Categories:
- Logic: AND, OR, NOT, XOR, IF, IFERROR, TRUE, FALSE
- Text: LEN, LEFT, RIGHT, MID, TRIM, UPPER, LOWER, CONCATENATE, EXACT,
  FIND, SEARCH, SUBSTITUTE, VALUE
- Information: ISNUMBER, ISTEXT, ISBLANK
- Math: SUM, AVERAGE, MIN, MAX, COUNT, COUNTA, ABS, ROUND, INT, MOD,
  POWER, SQRT
- Date: TODAY, NOW, YEAR, MONTH, DAY, DATE, DATEDIF
"""

import math
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable

from edcrules.expressions.evaluator import EvaluationError
from edcrules.expressions.functions import (
    FormulaFunctionRegistry,
    FunctionCategory,
    FunctionDefinition,
    FunctionParameter,
)
from edcrules.formula.values import (
    FormulaError,
    flatten,
    is_numeric,
    to_bool,
    to_date,
    to_number,
    to_serial,
    to_text,
)


def register_formula_functions() -> None:
    """Register all built-in formula functions."""
    _register_logic_functions()
    _register_text_functions()
    _register_information_functions()
    _register_math_functions()
    _register_date_functions()


def _define(
    name: str,
    category: FunctionCategory,
    implementation: Callable[..., Any],
    description: str,
    parameters: list[FunctionParameter] | None = None,
    return_type: str = "any",
    lazy: bool = False,
    examples: list[str] | None = None,
) -> None:
    FormulaFunctionRegistry.register(
        FunctionDefinition(
            name=name,
            description=description,
            category=category,
            parameters=parameters or [],
            return_type=return_type,
            implementation=implementation,
            lazy=lazy,
            examples=examples or [],
        )
    )


def _values(*names: str) -> list[FunctionParameter]:
    return [FunctionParameter(name, "any", name) for name in names]


_VARIADIC = [FunctionParameter("values", "any", "Values or lists of values", variadic=True)]


# -----------------------------------------------------------------------------
# Logic
# -----------------------------------------------------------------------------


def _and(*args: Any) -> bool:
    values = flatten(args)
    if not values:
        raise FormulaError("#VALUE!", "AND needs at least one argument")
    return all(to_bool(v) for v in values)


def _or(*args: Any) -> bool:
    values = flatten(args)
    if not values:
        raise FormulaError("#VALUE!", "OR needs at least one argument")
    return any(to_bool(v) for v in values)


def _xor(*args: Any) -> bool:
    return sum(1 for v in flatten(args) if to_bool(v)) % 2 == 1


def _if(condition, when_true=None, when_false=None) -> Any:
    """Lazy IF: only the selected branch is evaluated."""
    if to_bool(condition()):
        return when_true() if when_true is not None else True
    return when_false() if when_false is not None else False


def _iferror(value, fallback) -> Any:
    try:
        return value()
    except EvaluationError:
        return fallback()


def _register_logic_functions() -> None:
    _define("AND", FunctionCategory.LOGIC, _and, "TRUE if all arguments are true",
            _VARIADIC, "boolean", examples=["=AND({age}>=18, {age}<=120)"])
    _define("OR", FunctionCategory.LOGIC, _or, "TRUE if any argument is true",
            _VARIADIC, "boolean", examples=['=OR({sex}="M", {sex}="F")'])
    _define("NOT", FunctionCategory.LOGIC, lambda v: not to_bool(v),
            "Logical negation", _values("value"), "boolean")
    _define("XOR", FunctionCategory.LOGIC, _xor,
            "TRUE if an odd number of arguments are true", _VARIADIC, "boolean")
    _define("IF", FunctionCategory.LOGIC, _if, "Chooses a value by condition",
            _values("condition", "value_if_true", "value_if_false"), lazy=True,
            examples=['=IF({pregnant}="yes", {sex}="F", TRUE)'])
    _define("IFERROR", FunctionCategory.LOGIC, _iferror,
            "Returns fallback when value is an error", _values("value", "fallback"), lazy=True)
    _define("TRUE", FunctionCategory.LOGIC, lambda: True, "The value TRUE", return_type="boolean")
    _define("FALSE", FunctionCategory.LOGIC, lambda: False, "The value FALSE", return_type="boolean")


# -----------------------------------------------------------------------------
# Text
# -----------------------------------------------------------------------------


def _count(value: Any) -> int:
    count = int(to_number(value))
    if count < 0:
        raise FormulaError("#VALUE!", "negative character count")
    return count


def _left(text: Any, count: Any = 1) -> str:
    return to_text(text)[: _count(count)]


def _right(text: Any, count: Any = 1) -> str:
    n = _count(count)
    return to_text(text)[-n:] if n else ""


def _mid(text: Any, start: Any, count: Any) -> str:
    begin = int(to_number(start))
    if begin < 1:
        raise FormulaError("#VALUE!", "MID start must be at least 1")
    return to_text(text)[begin - 1 : begin - 1 + _count(count)]


def _trim(text: Any) -> str:
    return " ".join(to_text(text).split())


def _find(needle: Any, haystack: Any, start: Any = 1, fold: bool = False) -> int:
    find_text = to_text(needle)
    within = to_text(haystack)
    if fold:
        find_text, within = find_text.lower(), within.lower()
    begin = int(to_number(start))
    if begin < 1 or begin > len(within) + 1:
        raise FormulaError("#VALUE!", "start out of range")
    index = within.find(find_text, begin - 1)
    if index < 0:
        raise FormulaError("#VALUE!", f"{needle!r} not found")
    return index + 1


def _substitute(text: Any, old: Any, new: Any, instance: Any = None) -> str:
    source, old_text, new_text = to_text(text), to_text(old), to_text(new)
    if not old_text:
        return source
    if instance is None:
        return source.replace(old_text, new_text)
    target = int(to_number(instance))
    if target < 1:
        raise FormulaError("#VALUE!", "instance must be at least 1")
    position = -1
    for _ in range(target):
        position = source.find(old_text, position + 1)
        if position < 0:
            return source
    return source[:position] + new_text + source[position + len(old_text):]


def _value(text: Any) -> float:
    if isinstance(text, str) and not text.strip():
        raise FormulaError("#VALUE!", "blank text")
    return to_number(text)


def _register_text_functions() -> None:
    text = FunctionCategory.STRING
    _define("LEN", text, lambda v: len(to_text(v)), "Number of characters",
            _values("text"), "number", examples=["=LEN({value})>=5"])
    _define("LEFT", text, _left, "Leading characters", _values("text", "count"), "string")
    _define("RIGHT", text, _right, "Trailing characters", _values("text", "count"), "string")
    _define("MID", text, _mid, "Characters from a position",
            _values("text", "start", "count"), "string")
    _define("TRIM", text, _trim, "Removes extra spaces", _values("text"), "string")
    _define("UPPER", text, lambda v: to_text(v).upper(), "Uppercase", _values("text"), "string")
    _define("LOWER", text, lambda v: to_text(v).lower(), "Lowercase", _values("text"), "string")
    _define("CONCATENATE", text, lambda *a: "".join(to_text(v) for v in flatten(a)),
            "Joins text", _VARIADIC, "string")
    _define("EXACT", text, lambda a, b: to_text(a) == to_text(b),
            "Case-sensitive equality", _values("text1", "text2"), "boolean",
            examples=['=EXACT(LEFT({value},3),"ABC")'])
    _define("FIND", text, _find, "Case-sensitive position of text",
            _values("find_text", "within_text", "start"), "number")
    _define("SEARCH", text, lambda n, h, s=1: _find(n, h, s, fold=True),
            "Case-insensitive position of text",
            _values("find_text", "within_text", "start"), "number")
    _define("SUBSTITUTE", text, _substitute, "Replaces text",
            _values("text", "old_text", "new_text", "instance"), "string")
    _define("VALUE", text, _value, "Converts text to a number", _values("text"), "number")


# -----------------------------------------------------------------------------
# Information
# -----------------------------------------------------------------------------


def _register_information_functions() -> None:
    info = FunctionCategory.INFORMATION
    # Submitted values arrive as text, so numeric text counts as a number
    _define("ISNUMBER", info, is_numeric, "TRUE for numbers and numeric text",
            _values("value"), "boolean", examples=["=AND(ISNUMBER({weight}), {weight}>0)"])
    _define("ISTEXT", info, lambda v: isinstance(v, str) and v != "" and not is_numeric(v),
            "TRUE for non-numeric text", _values("value"), "boolean")
    _define("ISBLANK", info, lambda v: v is None or v == "" or v == [],
            "TRUE for blank values", _values("value"), "boolean",
            examples=["=NOT(ISBLANK({value}))"])


# -----------------------------------------------------------------------------
# Math
# -----------------------------------------------------------------------------


def _numbers(args: tuple[Any, ...]) -> list[float]:
    """Numeric arguments only; text and blanks are skipped, as in ranges."""
    return [to_number(v) for v in flatten(args) if is_numeric(v)]


def _average(*args: Any) -> float:
    numbers = _numbers(args)
    if not numbers:
        raise FormulaError("#DIV/0!", "AVERAGE of no numbers")
    return sum(numbers) / len(numbers)


def _round(value: Any, digits: Any = 0) -> float:
    quantum = Decimal(1).scaleb(-int(to_number(digits)))
    rounded = Decimal(repr(to_number(value))).quantize(quantum, rounding=ROUND_HALF_UP)
    return float(rounded)


def _mod(number: Any, divisor: Any) -> float:
    n, d = to_number(number), to_number(divisor)
    if d == 0:
        raise FormulaError("#DIV/0!")
    return n - d * math.floor(n / d)


def _sqrt(value: Any) -> float:
    number = to_number(value)
    if number < 0:
        raise FormulaError("#NUM!", "square root of a negative number")
    return math.sqrt(number)


def _register_math_functions() -> None:
    m = FunctionCategory.MATH
    _define("SUM", m, lambda *a: float(sum(_numbers(a))), "Sum of numbers", _VARIADIC, "number")
    _define("AVERAGE", m, _average, "Mean of numbers", _VARIADIC, "number")
    _define("MIN", m, lambda *a: min(_numbers(a), default=0.0), "Smallest number", _VARIADIC, "number")
    _define("MAX", m, lambda *a: max(_numbers(a), default=0.0), "Largest number", _VARIADIC, "number")
    _define("COUNT", m, lambda *a: len(_numbers(a)), "Count of numbers", _VARIADIC, "number")
    _define("COUNTA", m, lambda *a: sum(1 for v in flatten(a) if v not in (None, "")),
            "Count of non-blank values", _VARIADIC, "number")
    _define("ABS", m, lambda v: abs(to_number(v)), "Absolute value", _values("number"), "number")
    _define("ROUND", m, _round, "Rounds half away from zero", _values("number", "digits"), "number")
    _define("INT", m, lambda v: float(math.floor(to_number(v))), "Rounds down to an integer",
            _values("number"), "number")
    _define("MOD", m, _mod, "Remainder with the divisor's sign", _values("number", "divisor"), "number")
    _define("POWER", m, lambda a, b: to_number(a) ** to_number(b), "Raises to a power",
            _values("number", "power"), "number")
    _define("SQRT", m, _sqrt, "Square root", _values("number"), "number")


# -----------------------------------------------------------------------------
# Date
# -----------------------------------------------------------------------------


def _date(year: Any, month: Any, day: Any) -> float:
    y, m, d = int(to_number(year)), int(to_number(month)), int(to_number(day))
    # Month overflow rolls into the next year, as in spreadsheets
    y += (m - 1) // 12
    m = (m - 1) % 12 + 1
    try:
        first = date(y, m, 1)
    except ValueError as e:
        raise FormulaError("#NUM!", str(e)) from e
    return to_serial(first) + d - 1


def _datedif(start: Any, end: Any, unit: Any) -> int:
    first, last = to_date(start), to_date(end)
    if first > last:
        raise FormulaError("#NUM!", "start date after end date")
    code = to_text(unit).upper()
    if code == "D":
        return (last - first).days
    months = (last.year - first.year) * 12 + last.month - first.month
    if last.day < first.day:
        months -= 1
    if code == "M":
        return months
    if code == "Y":
        return months // 12
    raise FormulaError("#NUM!", f"unsupported DATEDIF unit {unit!r}")


def _register_date_functions() -> None:
    d = FunctionCategory.DATE
    _define("TODAY", d, lambda: to_serial(datetime.now(timezone.utc).date()),
            "Current date as a serial number", return_type="date",
            examples=["={visit_date}<=TODAY()"])
    _define("NOW", d, lambda: to_serial(datetime.now(timezone.utc)),
            "Current date and time as a serial number", return_type="date")
    _define("YEAR", d, lambda v: to_date(v).year, "Year of a date", _values("date"), "number")
    _define("MONTH", d, lambda v: to_date(v).month, "Month of a date", _values("date"), "number")
    _define("DAY", d, lambda v: to_date(v).day, "Day of month of a date", _values("date"), "number")
    _define("DATE", d, _date, "Builds a date from parts", _values("year", "month", "day"), "date")
    _define("DATEDIF", d, _datedif, "Whole days, months or years between dates",
            _values("start_date", "end_date", "unit"), "number",
            examples=['=DATEDIF({dob}, {visit_date}, "Y")>=18'])
