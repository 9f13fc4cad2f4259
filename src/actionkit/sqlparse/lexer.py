"""Minimal SQL lexer used to tell read statements from write statements."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Iterator, Optional

from ..core.errors import ParseError


class TokenType(enum.IntEnum):
    EOF = 0
    NOT = 1
    LEFT_PAREN = 2
    RIGHT_PAREN = 3
    LEFT_BRACKET = 4
    RIGHT_BRACKET = 5
    LEFT_BRACE = 6
    RIGHT_BRACE = 7
    LT = 8
    GT = 9
    COLON = 10
    SEMICOLON = 11
    DOT = 12
    COMMA = 13
    EQUAL = 14
    AT = 15
    AND = 16
    VERTICAL_BAR = 17
    STRING = 18
    QUOTED_IDENTIFIER = 19
    NUMBER = 20
    SELECT = 21
    UPDATE = 22
    DELETE = 23
    CREATE = 24
    INSERT = 25
    WORD = 26


_PUNCTUATION = {
    "!": TokenType.NOT,
    "(": TokenType.LEFT_PAREN,
    ")": TokenType.RIGHT_PAREN,
    "[": TokenType.LEFT_BRACKET,
    "]": TokenType.RIGHT_BRACKET,
    "{": TokenType.LEFT_BRACE,
    "}": TokenType.RIGHT_BRACE,
    "<": TokenType.LT,
    ">": TokenType.GT,
    ":": TokenType.COLON,
    ";": TokenType.SEMICOLON,
    ".": TokenType.DOT,
    ",": TokenType.COMMA,
    "=": TokenType.EQUAL,
    "@": TokenType.AT,
    "&": TokenType.AND,
    "|": TokenType.VERTICAL_BAR,
}

KEYWORDS = {
    "select": TokenType.SELECT,
    "update": TokenType.UPDATE,
    "delete": TokenType.DELETE,
    "create": TokenType.CREATE,
    "insert": TokenType.INSERT,
}

_NUMBER_CHARS = frozenset("0123456789-xX.+pPabcdefABCDEF")
_WHITESPACE = frozenset("\t\n\v\f\r ")

_DEC_ESCAPE = re.compile(r"\\([0-9]{1,3})")
_HEX_ESCAPE = re.compile(r"\\x([0-9a-fA-F]{2})")
_UNICODE_ESCAPE = re.compile(r"\\u\{([0-9a-fA-F]+)\}")

_SIMPLE_ESCAPES = {
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "\n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    '"': '"',
    "'": "'",
    "\\": "\\",
}


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: str
    line: int


def _is_word_start(c: str) -> bool:
    return c == "_" or ("a" <= c <= "z") or ("A" <= c <= "Z")


def _is_word_char(c: str) -> bool:
    return _is_word_start(c) or ("0" <= c <= "9")


def unescape(text: str) -> str:
    """Resolve backslash escapes inside a quoted string body."""
    out: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        c = text[i]
        if c != "\\":
            out.append(c)
            i += 1
            continue
        if i + 1 >= n:
            raise ParseError("unfinished string")
        nxt = text[i + 1]
        if nxt in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[nxt])
            i += 2
            continue
        if "0" <= nxt <= "9":
            m = _DEC_ESCAPE.match(text, i)
            value = int(m.group(1))  # type: ignore[union-attr]
            if value > 0xFF:
                raise ParseError(f"decimal escape too large near '{m.group(0)}'")  # type: ignore[union-attr]
            out.append(chr(value))
            i = m.end()  # type: ignore[union-attr]
            continue
        if nxt == "x":
            m = _HEX_ESCAPE.match(text, i)
            if m:
                out.append(chr(int(m.group(1), 16)))
                i = m.end()
                continue
        elif nxt == "u":
            m = _UNICODE_ESCAPE.match(text, i)
            if m:
                value = int(m.group(1), 16)
                if value > 0x10FFFF:
                    raise ParseError(f"UTF-8 value too large near '{m.group(0)}'")
                out.append(chr(value))
                i = m.end()
                continue
        elif nxt == "z":
            i += 2
            while i < n and text[i] in _WHITESPACE:
                i += 1
            continue
        raise ParseError(f"invalid escape sequence near '\\{nxt}'")
    return "".join(out)


class Lexer:
    """Token stream over SQL text; comments and whitespace are skipped."""

    def __init__(self, sql: str) -> None:
        self.sql = sql or ""
        self.pos = 0
        self.line = 1
        self._peeked: Optional[Token] = None

    def _startswith(self, s: str) -> bool:
        return self.sql.startswith(s, self.pos)

    def _skip_to_newline(self) -> None:
        n = len(self.sql)
        while self.pos < n and self.sql[self.pos] not in "\r\n":
            self.pos += 1

    def skip_ignored(self) -> None:
        n = len(self.sql)
        while self.pos < n:
            if self._startswith("\r\n") or self._startswith("\n\r"):
                self.pos += 2
                self.line += 1
            elif self.sql[self.pos] in "\r\n":
                self.pos += 1
                self.line += 1
            elif self.sql[self.pos] in _WHITESPACE:
                self.pos += 1
            elif self._startswith("#") or self._startswith("--"):
                self._skip_to_newline()
            elif self._startswith("/*"):
                end = self.sql.find("*/", self.pos + 2)
                stop = n if end < 0 else end + 2
                self.line += self._count_lines(self.sql[self.pos : stop])
                self.pos = stop
            else:
                break

    @staticmethod
    def _count_lines(chunk: str) -> int:
        return len(re.findall(r"\r\n|\n\r|\r|\n", chunk))

    def _scan_quoted(self, quote: str) -> str:
        # self.pos sits on the opening quote
        i = self.pos + 1
        n = len(self.sql)
        while i < n:
            c = self.sql[i]
            if c == "\\" and quote != "`":
                i += 2
                continue
            if c == quote:
                body = self.sql[self.pos + 1 : i]
                self.line += self._count_lines(body)
                self.pos = i + 1
                return body if quote == "`" else unescape(body)
            i += 1
        raise ParseError("unfinished string")

    def _scan_while(self, accept) -> str:
        start = self.pos
        n = len(self.sql)
        while self.pos < n and accept(self.sql[self.pos]):
            self.pos += 1
        return self.sql[start : self.pos]

    def next_token(self) -> Token:
        if self._peeked is not None:
            tok, self._peeked = self._peeked, None
            return tok
        self.skip_ignored()
        line = self.line
        if self.pos >= len(self.sql):
            return Token(TokenType.EOF, "EOF", line)
        c = self.sql[self.pos]
        if c in _PUNCTUATION:
            self.pos += 1
            return Token(_PUNCTUATION[c], c, line)
        if c in ('"', "'"):
            if self._startswith(c * 2):
                self.pos += 2
                return Token(TokenType.STRING, "", line)
            return Token(TokenType.STRING, self._scan_quoted(c), line)
        if c == "`":
            return Token(TokenType.QUOTED_IDENTIFIER, self._scan_quoted(c), line)
        if _is_word_start(c):
            word = self._scan_while(_is_word_char).lower()
            return Token(KEYWORDS.get(word, TokenType.WORD), word, line)
        if c == "-" or "0" <= c <= "9":
            return Token(TokenType.NUMBER, self._scan_while(lambda ch: ch in _NUMBER_CHARS), line)
        raise ParseError(f"line {line}: unexpected symbol near '{c}'.")

    def peek(self) -> Token:
        if self._peeked is None:
            self._peeked = self.next_token()
        return self._peeked

    def __iter__(self) -> Iterator[Token]:
        while True:
            tok = self.next_token()
            yield tok
            if tok.type is TokenType.EOF:
                return


def tokenize(sql: str) -> list[Token]:
    return list(Lexer(sql))


def first_token(sql: str) -> Token:
    return Lexer(sql).next_token()


def is_select_sql(sql: str) -> bool:
    """Return True when the first meaningful token of ``sql`` is SELECT.

    Raises ParseError when that token cannot be lexed.
    """
    return first_token(sql).type is TokenType.SELECT


__all__ = [
    "TokenType",
    "Token",
    "KEYWORDS",
    "Lexer",
    "tokenize",
    "first_token",
    "is_select_sql",
    "unescape",
]
