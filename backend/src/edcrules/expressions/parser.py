"""Precedence-climbing parser for rule expressions.

Binding strength, loosest first:

    ||            1
    &&            2
    comparisons   3   (=== !== == != < <= > >= in, not in)
    + -           4
    * / %         5

Prefix `!` and `-` bind tighter than any binary operator, and postfix
`.key`, `[index]` tighter still. All binary operators are left
associative.
"""

from edcrules.expressions.lexer import Lexer, Token, TokenType
from edcrules.expressions.nodes import (
    ASTNode,
    ArrayLiteral,
    BinaryOp,
    FunctionCall,
    Identifier,
    IndexAccess,
    Literal,
    MemberAccess,
    UnaryOp,
)

_BINDING = {
    TokenType.OR: 1,
    TokenType.AND: 2,
    TokenType.STRICT_EQ: 3,
    TokenType.STRICT_NEQ: 3,
    TokenType.EQ: 3,
    TokenType.NEQ: 3,
    TokenType.LT: 3,
    TokenType.LTE: 3,
    TokenType.GT: 3,
    TokenType.GTE: 3,
    TokenType.IN: 3,
    TokenType.PLUS: 4,
    TokenType.MINUS: 4,
    TokenType.MULTIPLY: 5,
    TokenType.DIVIDE: 5,
    TokenType.MODULO: 5,
}
_NOT_IN_BINDING = 3

_LITERALS = (TokenType.NUMBER, TokenType.STRING, TokenType.BOOLEAN, TokenType.NULL)


class ParseError(Exception):
    """Raised for malformed expressions; carries the offending offset."""

    def __init__(self, message: str, position: int):
        self.position = position
        super().__init__(f"{message} at position {position}")


class Parser:
    """Builds a syntax tree from an expression string.

        Parser("value >= 18 && value <= 120").parse()
    """

    def __init__(self, source: str):
        self.source = source
        self.tokens = Lexer(source).tokenize()
        self.index = 0

    def parse(self) -> ASTNode:
        if self._peek().type is TokenType.EOF:
            raise ParseError("Empty expression", 0)
        tree = self._expression(1)
        leftover = self._peek()
        if leftover.type is not TokenType.EOF:
            raise ParseError(f"Unexpected token '{leftover.value}'", leftover.position)
        return tree

    def _peek(self, ahead: int = 0) -> Token:
        return self.tokens[min(self.index + ahead, len(self.tokens) - 1)]

    def _take(self) -> Token:
        token = self._peek()
        self.index += 1
        return token

    def _expect(self, token_type: TokenType, what: str) -> Token:
        token = self._peek()
        if token.type is not token_type:
            raise ParseError(f"Expected {what}", token.position)
        return self._take()

    def _binary_operator(self) -> tuple[str, int] | None:
        token = self._peek()
        if token.type is TokenType.NOT and self._peek(1).type is TokenType.IN:
            return "not in", _NOT_IN_BINDING
        binding = _BINDING.get(token.type)
        if binding is None:
            return None
        return token.type.value, binding

    def _expression(self, min_binding: int) -> ASTNode:
        left = self._prefix()
        while True:
            found = self._binary_operator()
            if found is None or found[1] < min_binding:
                return left
            operator, binding = found
            self.index += 2 if operator == "not in" else 1
            left = BinaryOp(operator, left, self._expression(binding + 1))

    def _prefix(self) -> ASTNode:
        token = self._peek()
        if token.type in (TokenType.NOT, TokenType.MINUS):
            self._take()
            return UnaryOp(token.type.value, self._prefix())
        return self._postfix(self._atom())

    def _postfix(self, node: ASTNode) -> ASTNode:
        while True:
            if self._peek().type is TokenType.DOT:
                self._take()
                key = self._expect(TokenType.IDENTIFIER, "key after '.'")
                node = MemberAccess(node, str(key.value))
            elif self._peek().type is TokenType.LBRACKET:
                self._take()
                index = self._expression(1)
                self._expect(TokenType.RBRACKET, "']'")
                node = IndexAccess(node, index)
            else:
                return node

    def _atom(self) -> ASTNode:
        token = self._take()
        if token.type in _LITERALS:
            return Literal(token.value)
        if token.type is TokenType.IDENTIFIER:
            if self._peek().type is TokenType.LPAREN:
                self._take()
                return FunctionCall(str(token.value), self._items(TokenType.RPAREN))
            return Identifier(str(token.value))
        if token.type is TokenType.LPAREN:
            inner = self._expression(1)
            self._expect(TokenType.RPAREN, "')'")
            return inner
        if token.type is TokenType.LBRACKET:
            return ArrayLiteral(self._items(TokenType.RBRACKET))
        raise ParseError(f"Unexpected token '{token.value}'", token.position)

    def _items(self, closing: TokenType) -> list[ASTNode]:
        """Comma-separated expressions up to and including `closing`."""
        items: list[ASTNode] = []
        if self._peek().type is closing:
            self._take()
            return items
        while True:
            items.append(self._expression(1))
            if self._peek().type is TokenType.COMMA:
                self._take()
                continue
            self._expect(closing, f"'{closing.value}'")
            return items


def parse(source: str) -> ASTNode:
    """Parse an expression string into a syntax tree."""
    return Parser(source).parse()
