"""Lexer for spreadsheet-style validation formulas.

Formulas look like `=AND({age}>=18, {age}<=120)`. Field values are
referenced with `{fieldName}`; function names and TRUE/FALSE are
case-insensitive; strings are double-quoted with `""` as the escape for a
literal quote.
"""

import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator

from edcrules.expressions.lexer import LexerError


class FormulaTokenType(Enum):
    """Types of tokens in a formula."""

    NUMBER = auto()
    STRING = auto()
    FIELD_REF = auto()   # {name}
    NAME = auto()        # function names, TRUE/FALSE, bare field names

    EQ = auto()          # =
    NEQ = auto()         # <>
    LT = auto()
    LTE = auto()
    GT = auto()
    GTE = auto()
    CONCAT = auto()      # &
    PLUS = auto()
    MINUS = auto()
    MULTIPLY = auto()
    DIVIDE = auto()
    POWER = auto()       # ^
    PERCENT = auto()     # %

    LPAREN = auto()
    RPAREN = auto()
    COMMA = auto()

    EOF = auto()


@dataclass(frozen=True)
class FormulaToken:
    """A single formula token."""

    type: FormulaTokenType
    value: str | float | None
    position: int


TOKEN_PATTERNS = [
    (r"\s+", None),
    (r"<>", FormulaTokenType.NEQ),
    (r"<=", FormulaTokenType.LTE),
    (r">=", FormulaTokenType.GTE),
    (r"==?", FormulaTokenType.EQ),
    (r"<", FormulaTokenType.LT),
    (r">", FormulaTokenType.GT),
    (r"&", FormulaTokenType.CONCAT),
    (r"\+", FormulaTokenType.PLUS),
    (r"-", FormulaTokenType.MINUS),
    (r"\*", FormulaTokenType.MULTIPLY),
    (r"/", FormulaTokenType.DIVIDE),
    (r"\^", FormulaTokenType.POWER),
    (r"%", FormulaTokenType.PERCENT),
    (r"\(", FormulaTokenType.LPAREN),
    (r"\)", FormulaTokenType.RPAREN),
    (r"[,;]", FormulaTokenType.COMMA),
    (r"(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", FormulaTokenType.NUMBER),
    (r'"(?:[^"]|"")*"', FormulaTokenType.STRING),
    (r"\{[^{}]+\}", FormulaTokenType.FIELD_REF),
    (r"[A-Za-z_][A-Za-z0-9_.]*", FormulaTokenType.NAME),
]

_COMPILED = [(re.compile(pattern), token_type) for pattern, token_type in TOKEN_PATTERNS]


class FormulaLexer:
    """Tokenizer for formulas (without the leading `=`)."""

    def __init__(self, source: str):
        self.source = source
        self.position = 0

    def __iter__(self) -> Iterator[FormulaToken]:
        while True:
            token = self.next_token()
            yield token
            if token.type == FormulaTokenType.EOF:
                break

    def next_token(self) -> FormulaToken:
        while self.position < len(self.source):
            for pattern, token_type in _COMPILED:
                match = pattern.match(self.source, self.position)
                if not match:
                    continue
                start = self.position
                text = match.group()
                self.position = match.end()
                if token_type is None:
                    break
                return FormulaToken(token_type, self._token_value(token_type, text), start)
            else:
                raise LexerError(
                    f"Unexpected character '{self.source[self.position]}'",
                    self.position,
                )
        return FormulaToken(FormulaTokenType.EOF, None, self.position)

    @staticmethod
    def _token_value(token_type: FormulaTokenType, text: str) -> str | float:
        if token_type == FormulaTokenType.NUMBER:
            return float(text)
        if token_type == FormulaTokenType.STRING:
            return text[1:-1].replace('""', '"')
        if token_type == FormulaTokenType.FIELD_REF:
            return text[1:-1].strip()
        return text

    def tokenize(self) -> list[FormulaToken]:
        return list(self)
