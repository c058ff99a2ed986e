"""Syntax tree shared by rule expressions and spreadsheet formulas.

Evaluators dispatch on the lowercased class name (`_eval_binaryop`,
`_eval_fieldreference`, ...), so a new node type only needs a matching
method on the evaluator that should understand it.
"""

from dataclasses import dataclass
from typing import Any


class ASTNode:
    """Marker base for every node."""


@dataclass
class Literal(ASTNode):
    value: Any


@dataclass
class Identifier(ASTNode):
    name: str


@dataclass
class MemberAccess(ASTNode):
    """`data.age`: key lookup on a mapping, never attribute access."""

    object: ASTNode
    member: str


@dataclass
class IndexAccess(ASTNode):
    """`data["blood pressure"]` or `value[0]`."""

    object: ASTNode
    index: ASTNode


@dataclass
class UnaryOp(ASTNode):
    operator: str
    operand: ASTNode


@dataclass
class BinaryOp(ASTNode):
    operator: str
    left: ASTNode
    right: ASTNode


@dataclass
class FunctionCall(ASTNode):
    name: str
    arguments: list[ASTNode]


@dataclass
class ArrayLiteral(ASTNode):
    elements: list[ASTNode]
