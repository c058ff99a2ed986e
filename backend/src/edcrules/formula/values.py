"""Spreadsheet value coercions used by the formula interpreter.

Dates are represented as serial day numbers counted from 1899-12-30, the
way spreadsheet applications store them, so date arithmetic and
comparisons reduce to number handling. ISO date strings from the form
payload convert to serials wherever a number is expected.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from edcrules.core.values import as_number, as_timestamp, is_date_like
from edcrules.expressions.evaluator import EvaluationError

EPOCH = date(1899, 12, 30)
_EPOCH_TS = datetime(1899, 12, 30, tzinfo=timezone.utc).timestamp()


class FormulaError(EvaluationError):
    """A spreadsheet error value (#VALUE!, #DIV/0!, #NAME?, #NUM!, #N/A)."""

    def __init__(self, code: str, detail: str = ""):
        self.code = code
        super().__init__(f"{code} {detail}".strip())


def to_serial(value: date | datetime) -> float:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return (value.timestamp() - _EPOCH_TS) / 86400
    return float((value - EPOCH).days)


def from_serial(serial: float) -> date:
    return EPOCH + timedelta(days=int(serial // 1))


def to_number(value: Any) -> float:
    """Coerce to a number or raise #VALUE!.

    Blank values count as zero; ISO dates become serials.
    """
    if value is None or value == "":
        return 0.0
    if isinstance(value, (date, datetime)):
        return to_serial(value)
    if is_date_like(value):
        timestamp = as_timestamp(value)
        if timestamp is not None:
            return (timestamp - _EPOCH_TS) / 86400
    number = as_number(value)
    if number is None:
        raise FormulaError("#VALUE!", f"cannot convert {value!r} to a number")
    return number


def is_numeric(value: Any) -> bool:
    """True for numbers and non-blank numeric text."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float, Decimal)):
        return True
    if isinstance(value, str) and value.strip():
        return as_number(value) is not None
    return False


def to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return from_serial(to_number(value))


def to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None or value == "":
        return False
    if isinstance(value, str):
        upper = value.strip().upper()
        if upper == "TRUE":
            return True
        if upper == "FALSE":
            return False
        number = as_number(value)
        if number is None:
            raise FormulaError("#VALUE!", f"cannot convert {value!r} to a boolean")
        return number != 0
    return to_number(value) != 0


def flatten(args: tuple[Any, ...] | list[Any]) -> list[Any]:
    """Expand list arguments (multi-select answers) into scalars."""
    result: list[Any] = []
    for arg in args:
        if isinstance(arg, list):
            result.extend(flatten(arg))
        else:
            result.append(arg)
    return result
