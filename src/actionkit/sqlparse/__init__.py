"""SQL text helpers."""

from .lexer import Lexer, Token, TokenType, is_select_sql, tokenize

__all__ = ["Lexer", "Token", "TokenType", "is_select_sql", "tokenize"]
