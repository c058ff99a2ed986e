"""Tokenizer for script-style rule expressions.

Business-logic and cross-form rules may be written as
`value > 0 && data.weight < 500`. One verbose regular expression with a
named group per token class scans the source left to right; there is no
statement, assignment or attribute syntax to recognise.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator


class TokenType(Enum):
    """Token classes. Operator and punctuation members carry their symbol."""

    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    NULL = "null"
    IDENTIFIER = "identifier"
    EOF = "eof"

    STRICT_EQ = "==="
    STRICT_NEQ = "!=="
    EQ = "=="
    NEQ = "!="
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    IN = "in"

    AND = "&&"
    OR = "||"
    NOT = "!"

    PLUS = "+"
    MINUS = "-"
    MULTIPLY = "*"
    DIVIDE = "/"
    MODULO = "%"

    LPAREN = "("
    RPAREN = ")"
    LBRACKET = "["
    RBRACKET = "]"
    COMMA = ","
    DOT = "."


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: str | int | float | bool | None
    position: int

    def __repr__(self) -> str:
        return f"<{self.type.name} {self.value!r} @{self.position}>"


class LexerError(Exception):
    """Raised when the source contains a character no token can start with."""

    def __init__(self, message: str, position: int):
        self.position = position
        super().__init__(f"{message} at position {position}")


_SCANNER = re.compile(
    r"""
      (?P<space>\s+)
    | (?P<number>\d+\.\d+|\.\d+|\d+)
    | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    | (?P<word>[A-Za-z_$][\w$]*)
    | (?P<symbol>===|!==|==|!=|<=|>=|&&|\|\||[<>!+\-*/%()\[\],.])
    """,
    re.VERBOSE,
)

# Lowercased word -> (token type, token value)
_WORDS = {
    "true": (TokenType.BOOLEAN, True),
    "false": (TokenType.BOOLEAN, False),
    "null": (TokenType.NULL, None),
    "undefined": (TokenType.NULL, None),
    "and": (TokenType.AND, "&&"),
    "or": (TokenType.OR, "||"),
    "not": (TokenType.NOT, "!"),
    "in": (TokenType.IN, "in"),
}

_ESCAPED = re.compile(r"\\(.)", re.DOTALL)
_ESCAPE_CHARS = {"n": "\n", "t": "\t", "r": "\r"}


class Lexer:
    """Iterates over the tokens of an expression, ending with EOF.

        [t.type for t in Lexer("value >= 18")]
        # [IDENTIFIER, GTE, NUMBER, EOF]
    """

    def __init__(self, source: str):
        self.source = source

    def __iter__(self) -> Iterator[Token]:
        pos = 0
        end = len(self.source)
        while pos < end:
            match = _SCANNER.match(self.source, pos)
            if match is None:
                raise LexerError(f"Unexpected character '{self.source[pos]}'", pos)
            kind = match.lastgroup
            if kind != "space":
                yield _token(kind, match.group(), pos)
            pos = match.end()
        yield Token(TokenType.EOF, None, end)

    def tokenize(self) -> list[Token]:
        return list(self)


def _token(kind: str | None, text: str, pos: int) -> Token:
    if kind == "number":
        return Token(TokenType.NUMBER, float(text) if "." in text else int(text), pos)
    if kind == "string":
        body = _ESCAPED.sub(lambda m: _ESCAPE_CHARS.get(m.group(1), m.group(1)), text[1:-1])
        return Token(TokenType.STRING, body, pos)
    if kind == "word":
        token_type, value = _WORDS.get(text.lower(), (TokenType.IDENTIFIER, text))
        return Token(token_type, value, pos)
    return Token(TokenType(text), text, pos)
