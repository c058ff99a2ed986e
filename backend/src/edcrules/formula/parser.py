"""Parser for spreadsheet-style validation formulas.

Produces the AST node types of the expression language, plus
FieldReference for `{name}` tokens.

Operator precedence (lowest to highest):
1. = <> < <= > >=
2. & (text concatenation)
3. + -
4. * /
5. ^
6. - + (unary)
7. % (postfix percent)
"""

from dataclasses import dataclass

from edcrules.expressions.nodes import ASTNode, BinaryOp, FunctionCall, Identifier, Literal, UnaryOp
from edcrules.expressions.parser import ParseError
from edcrules.formula.lexer import FormulaLexer, FormulaToken, FormulaTokenType as T


@dataclass
class FieldReference(ASTNode):
    """A `{name}` reference to a submitted field value."""
    name: str


_COMPARISON_OPS = {T.EQ: "=", T.NEQ: "<>", T.LT: "<", T.LTE: "<=", T.GT: ">", T.GTE: ">="}
_ADDITIVE_OPS = {T.PLUS: "+", T.MINUS: "-"}
_MULTIPLICATIVE_OPS = {T.MULTIPLY: "*", T.DIVIDE: "/"}


class FormulaParser:
    """Recursive descent parser for formulas.

    Usage:
        ast = FormulaParser("AND({age}>=18, {age}<=120)").parse()
    """

    def __init__(self, source: str):
        self.source = source
        self.tokens = FormulaLexer(source).tokenize()
        self.position = 0

    def parse(self) -> ASTNode:
        if self._current().type == T.EOF:
            raise ParseError("Empty formula", 0)
        ast = self._parse_comparison()
        if self._current().type != T.EOF:
            raise ParseError(
                f"Unexpected token '{self._current().value}'", self._current().position
            )
        return ast

    def _current(self) -> FormulaToken:
        if self.position >= len(self.tokens):
            return FormulaToken(T.EOF, None, len(self.source))
        return self.tokens[self.position]

    def _advance(self) -> FormulaToken:
        token = self._current()
        self.position += 1
        return token

    def _consume(self, token_type: T, message: str) -> FormulaToken:
        if self._current().type == token_type:
            return self._advance()
        raise ParseError(message, self._current().position)

    def _binary(self, ops: dict[T, str], operand) -> ASTNode:
        left = operand()
        while self._current().type in ops:
            op = ops[self._advance().type]
            left = BinaryOp(op, left, operand())
        return left

    def _parse_comparison(self) -> ASTNode:
        return self._binary(_COMPARISON_OPS, self._parse_concat)

    def _parse_concat(self) -> ASTNode:
        return self._binary({T.CONCAT: "&"}, self._parse_additive)

    def _parse_additive(self) -> ASTNode:
        return self._binary(_ADDITIVE_OPS, self._parse_multiplicative)

    def _parse_multiplicative(self) -> ASTNode:
        return self._binary(_MULTIPLICATIVE_OPS, self._parse_power)

    def _parse_power(self) -> ASTNode:
        return self._binary({T.POWER: "^"}, self._parse_unary)

    def _parse_unary(self) -> ASTNode:
        if self._current().type == T.MINUS:
            self._advance()
            return UnaryOp("-", self._parse_unary())
        if self._current().type == T.PLUS:
            self._advance()
            return self._parse_unary()
        return self._parse_percent()

    def _parse_percent(self) -> ASTNode:
        expr = self._parse_primary()
        while self._current().type == T.PERCENT:
            self._advance()
            expr = UnaryOp("%", expr)
        return expr

    def _parse_primary(self) -> ASTNode:
        token = self._current()

        if token.type in (T.NUMBER, T.STRING):
            self._advance()
            return Literal(token.value)

        if token.type == T.FIELD_REF:
            self._advance()
            return FieldReference(str(token.value))

        if token.type == T.NAME:
            self._advance()
            name = str(token.value)
            if self._current().type == T.LPAREN:
                return FunctionCall(name.upper(), self._parse_arguments())
            if name.upper() in ("TRUE", "FALSE"):
                return Literal(name.upper() == "TRUE")
            return Identifier(name)

        if token.type == T.LPAREN:
            self._advance()
            expr = self._parse_comparison()
            self._consume(T.RPAREN, "Expected ')'")
            return expr

        raise ParseError(f"Unexpected token '{token.value}'", token.position)

    def _parse_arguments(self) -> list[ASTNode]:
        self._consume(T.LPAREN, "Expected '('")
        arguments: list[ASTNode] = []
        if self._current().type != T.RPAREN:
            arguments.append(self._parse_comparison())
            while self._current().type == T.COMMA:
                self._advance()
                arguments.append(self._parse_comparison())
        self._consume(T.RPAREN, "Expected ')' after arguments")
        return arguments


def parse_formula(source: str) -> ASTNode:
    """Parse a formula; a leading `=` or `=FORMULA:` marker is stripped."""
    return FormulaParser(strip_formula_marker(source)).parse()


FORMULA_MARKER = "=FORMULA:"


def strip_formula_marker(source: str) -> str:
    text = source.strip()
    if text.upper().startswith(FORMULA_MARKER):
        return text[len(FORMULA_MARKER):]
    if text.startswith("="):
        return text[1:]
    return text
