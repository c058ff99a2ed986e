"""Callable functions for expressions and formulas.

Two registries exist side by side: `FunctionRegistry` for script-style
expressions (`len(value) > 0`, case-sensitive) and
`FormulaFunctionRegistry` for spreadsheet formulas (`=LEN({value})>0`,
case-insensitive). Each subclass owns its table, so names registered for
one language are invisible to the other.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar


class FunctionCategory(Enum):
    STRING = "string"
    DATE = "date"
    MATH = "math"
    COLLECTION = "collection"
    LOGIC = "logic"
    INFORMATION = "information"


@dataclass
class FunctionParameter:
    name: str
    type: str
    description: str
    required: bool = True
    variadic: bool = False


@dataclass
class FunctionDefinition:
    """A named function plus the metadata shown in function listings.

    When `lazy` is set the implementation receives one zero-argument
    callable per argument and decides itself which ones to evaluate.
    """

    name: str
    description: str
    category: FunctionCategory
    parameters: list[FunctionParameter]
    return_type: str
    implementation: Callable[..., Any]
    lazy: bool = False
    examples: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "parameters": [asdict(param) for param in self.parameters],
            "returnType": self.return_type,
            "lazy": self.lazy,
            "examples": list(self.examples),
        }


class FunctionRegistry:
    """Class-level table of expression functions.

    Registering a name twice replaces the earlier definition.
    """

    _functions: ClassVar[dict[str, FunctionDefinition]] = {}

    @classmethod
    def _key(cls, name: str) -> str:
        return name

    @classmethod
    def register(cls, definition: FunctionDefinition) -> None:
        cls._functions[cls._key(definition.name)] = definition

    @classmethod
    def get(cls, name: str) -> FunctionDefinition:
        """Look up a function; raises ValueError for unknown names."""
        try:
            return cls._functions[cls._key(name)]
        except KeyError:
            raise ValueError(f"Unknown function: {name}") from None

    @classmethod
    def is_registered(cls, name: str) -> bool:
        return cls._key(name) in cls._functions

    @classmethod
    def list_all(cls) -> list[FunctionDefinition]:
        return sorted(cls._functions.values(), key=lambda d: (d.category.value, d.name))

    @classmethod
    def clear(cls) -> None:
        cls._functions.clear()


class FormulaFunctionRegistry(FunctionRegistry):
    """Spreadsheet functions, matched without regard to case."""

    _functions: ClassVar[dict[str, FunctionDefinition]] = {}

    @classmethod
    def _key(cls, name: str) -> str:
        return name.upper()
