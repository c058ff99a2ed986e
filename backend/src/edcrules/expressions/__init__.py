"""Script-style expression language for business-logic and cross-form rules.

    evaluate_bool("value > 0 && data.height > 0", 70, {"height": 180})

The syntax tree and `Evaluator` are also the base of the spreadsheet
formula interpreter in `edcrules.formula`.
"""

from edcrules.expressions.builtins import register_all_builtins
from edcrules.expressions.evaluator import (
    EvaluationContext,
    EvaluationError,
    Evaluator,
    evaluate,
    evaluate_bool,
)
from edcrules.expressions.functions import (
    FormulaFunctionRegistry,
    FunctionCategory,
    FunctionDefinition,
    FunctionParameter,
    FunctionRegistry,
)
from edcrules.expressions.lexer import Lexer, LexerError, Token, TokenType
from edcrules.expressions.nodes import (
    ArrayLiteral,
    ASTNode,
    BinaryOp,
    FunctionCall,
    Identifier,
    IndexAccess,
    Literal,
    MemberAccess,
    UnaryOp,
)
from edcrules.expressions.parser import ParseError, Parser, parse

__all__ = [
    "ASTNode",
    "ArrayLiteral",
    "BinaryOp",
    "EvaluationContext",
    "EvaluationError",
    "Evaluator",
    "FormulaFunctionRegistry",
    "FunctionCall",
    "FunctionCategory",
    "FunctionDefinition",
    "FunctionParameter",
    "FunctionRegistry",
    "Identifier",
    "IndexAccess",
    "Lexer",
    "LexerError",
    "Literal",
    "MemberAccess",
    "ParseError",
    "Parser",
    "Token",
    "TokenType",
    "UnaryOp",
    "evaluate",
    "evaluate_bool",
    "parse",
    "register_all_builtins",
]
