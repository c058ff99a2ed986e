"""Tagged value type for semi-structured form payloads.

Submitted form data arrives as loosely typed JSON: strings, numbers,
booleans, lists (multi-select answers) and nested objects (grouped
sections). FieldValue tags each raw value with its kind so rule logic can
branch explicitly instead of inspecting Python types ad hoc.

MISSING marks a field that could not be located in the payload at all.
It is deliberately distinct from a present-but-empty value: a required
rule only fires for a missing field when the field is known to exist in
the form's storage map.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


class ValueKind(Enum):
    """Kinds of values found in form payloads."""

    NULL = "null"
    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    LIST = "list"
    MAPPING = "mapping"


class Missing(Enum):
    """Sentinel type for a field that was not found."""

    MISSING = "missing"

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING = Missing.MISSING

# A comma inside these shapes is not a multi-value separator
_GROUPED_NUMBER = re.compile(r"^\d[\d,.]*$")
_ISO_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
_DECIMAL = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_HEX = re.compile(r"^0[xX][0-9a-fA-F]+$")


@dataclass(frozen=True)
class FieldValue:
    """A payload value tagged with its kind.

    Attributes:
        kind: The value's kind
        raw: The original Python value as received
    """

    kind: ValueKind
    raw: Any

    @classmethod
    def of(cls, raw: Any) -> "FieldValue":
        """Tag a raw payload value."""
        if isinstance(raw, FieldValue):
            return raw
        if raw is None:
            return cls(ValueKind.NULL, None)
        if isinstance(raw, bool):
            return cls(ValueKind.BOOL, raw)
        if isinstance(raw, (int, float, Decimal)):
            return cls(ValueKind.NUMBER, raw)
        if isinstance(raw, str):
            return cls(ValueKind.STRING, raw)
        if isinstance(raw, (list, tuple)):
            return cls(ValueKind.LIST, list(raw))
        if isinstance(raw, dict):
            return cls(ValueKind.MAPPING, raw)
        return cls(ValueKind.STRING, str(raw))

    @property
    def is_empty(self) -> bool:
        """True for null, the empty string and an empty list."""
        if self.kind == ValueKind.NULL:
            return True
        if self.kind == ValueKind.STRING:
            return self.raw == ""
        if self.kind == ValueKind.LIST:
            return len(self.raw) == 0
        return False

    @property
    def is_multi_value(self) -> bool:
        """True for checkbox and multi-select answers.

        Real lists always count. Strings count when they contain a comma
        that is neither a thousands separator in a number nor part of an
        ISO date.
        """
        if self.kind == ValueKind.LIST:
            return True
        if self.kind != ValueKind.STRING or "," not in self.raw:
            return False
        if _GROUPED_NUMBER.match(self.raw):
            return False
        return not _ISO_DATE_PREFIX.match(self.raw)

    def as_text(self) -> str:
        """Render the value as text, the way it would appear in a query note."""
        if self.kind == ValueKind.NULL:
            return ""
        if self.kind == ValueKind.BOOL:
            return "true" if self.raw else "false"
        if self.kind == ValueKind.LIST:
            return ",".join(str(item) for item in self.raw)
        if self.kind == ValueKind.NUMBER and isinstance(self.raw, float) and self.raw.is_integer():
            return str(int(self.raw))
        return str(self.raw)


def is_date_like(raw: Any) -> bool:
    """True if the value is a string starting with YYYY-MM-DD."""
    return isinstance(raw, str) and bool(_ISO_DATE_PREFIX.match(raw))


def as_number(raw: Any) -> float | None:
    """Coerce a value to a number, or None when it is not numeric.

    Accepts numbers, booleans (as 0/1) and numeric strings with optional
    surrounding whitespace, exponent or hex notation. Grouped numbers such
    as "1,234" are not numeric.
    """
    if isinstance(raw, FieldValue):
        raw = raw.raw
    if raw is None:
        return None
    if isinstance(raw, bool):
        return 1.0 if raw else 0.0
    if isinstance(raw, (int, float, Decimal)):
        number = float(raw)
        return None if math.isnan(number) else number
    if isinstance(raw, str):
        text = raw.strip()
        if text == "":
            return 0.0
        if _DECIMAL.match(text):
            return float(text)
        if _HEX.match(text):
            return float(int(text, 16))
        if text in ("Infinity", "+Infinity"):
            return math.inf
        if text == "-Infinity":
            return -math.inf
    return None


def as_timestamp(raw: Any) -> float | None:
    """Parse an ISO date or datetime string into a POSIX timestamp.

    Naive values are read as UTC. Returns None when the string does not
    start with a valid calendar date.
    """
    if isinstance(raw, FieldValue):
        raw = raw.raw
    if isinstance(raw, datetime):
        moment = raw
    elif is_date_like(raw):
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            try:
                moment = datetime.fromisoformat(text[:10])
            except ValueError:
                return None
    else:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp()
