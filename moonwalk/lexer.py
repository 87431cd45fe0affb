"""
moonwalk - Lexer
Tokenizes Lua source code into a fully materialized token list.

Unlike a streaming lexer, the whole list is produced up front: the parser
backtracks and needs random access to it. Problems never stop the scan; they
are collected as Diagnostics and the offending characters are skipped.
"""

import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Tuple

from .diagnostics import Diagnostic, ErrorCode


class TokenType(Enum):
    IDENTIFIER = auto()
    KEYWORD    = auto()
    OPERATOR   = auto()   # operators and punctuation share one kind
    INTEGER    = auto()
    FLOAT      = auto()
    STRING     = auto()


KEYWORDS = frozenset({
    "and", "break", "do", "else", "elseif", "end", "false", "for",
    "function", "if", "in", "local", "nil", "not", "or", "repeat",
    "return", "then", "true", "until", "while",
})

OPERATORS = frozenset({
    "+", "-", "*", "/", "%", "^", "#",
    "==", "~=", "<=", ">=", "<", ">", "=",
    "(", ")", "{", "}", "[", "]",
    ";", ":", ",", ".", "..", "...",
})

_MAX_OPERATOR_LEN = max(len(op) for op in OPERATORS)


@dataclass(frozen=True)
class Token:
    type: TokenType
    text: str
    line: int
    column: int
    start: int = 0   # source offsets of the whole lexeme, quotes included
    end: int = 0

    def is_keyword(self, word: str) -> bool:
        return self.type == TokenType.KEYWORD and self.text == word

    def is_operator(self, op: str) -> bool:
        return self.type == TokenType.OPERATOR and self.text == op

    def __repr__(self):
        return f"Token({self.type.name}, {self.text!r}, {self.line}:{self.column})"


_IDENTIFIER_RE   = re.compile(r'[A-Za-z_][0-9A-Za-z_]*')
_NUMBER_RE       = re.compile(
    r'0[xX][0-9a-fA-F]+'
    r'|(?:\d+\.\d+|\.\d+)(?:[eE][+-]?\d+)?'
    r'|\d+[eE][+-]?\d+'
    r'|\d+',
    re.ASCII
)
_NUMBER_TAIL_RE  = re.compile(r'[0-9A-Za-z_]*')
_LONG_BRACKET_RE = re.compile(r'\[(=*)\[')


class Lexer:
    def __init__(self, source: str):
        self._source = source
        self._pos = 0
        self._line = 1
        self._column = 1
        self.tokens: List[Token] = []
        self.errors: List[Diagnostic] = []
        # (start, end) spans of whitespace, comments and skipped garbage
        self.skipped: List[Tuple[int, int]] = []

    # ------------------------------------------------------------------ public

    def tokenize(self) -> List[Token]:
        while self._pos < len(self._source):
            if (
                self._lex_identifier()
                or self._lex_string()
                or self._lex_number()
                or self._lex_comment()
                or self._lex_operator()
                or self._lex_whitespace()
            ):
                continue

            self._error(
                ErrorCode.LEXER_UNEXPECTED_CHARACTER,
                f"unexpected character {self._source[self._pos]!r}",
            )
            self._skip(self._pos + 1)

        return self.tokens

    # ------------------------------------------------------------------ rules

    def _lex_identifier(self) -> bool:
        m = _IDENTIFIER_RE.match(self._source, self._pos)
        if not m:
            return False
        word = m.group(0)
        ttype = TokenType.KEYWORD if word in KEYWORDS else TokenType.IDENTIFIER
        self._emit(ttype, word, m.end())
        return True

    def _lex_string(self) -> bool:
        quote = self._source[self._pos]
        if quote in ('"', "'"):
            self._lex_quoted_string(quote)
            return True

        m = _LONG_BRACKET_RE.match(self._source, self._pos)
        if m:
            text, end = self._read_long_bracket(m, ErrorCode.LEXER_UNFINISHED_LONG_STRING)
            self._emit(TokenType.STRING, text, end)
            return True

        return False

    def _lex_quoted_string(self, quote: str) -> None:
        source = self._source
        end = self._pos + 1
        while end < len(source) and source[end] not in (quote, '\n'):
            end += 1

        text = source[self._pos + 1:end]
        if end < len(source) and source[end] == quote:
            end += 1
        else:
            self._error(ErrorCode.LEXER_UNFINISHED_STRING, "unfinished string")

        self._emit(TokenType.STRING, text, end)

    def _lex_number(self) -> bool:
        m = _NUMBER_RE.match(self._source, self._pos)
        if not m:
            return False

        tail = _NUMBER_TAIL_RE.match(self._source, m.end())
        if tail.end() > m.end():
            self._error(
                ErrorCode.LEXER_MALFORMED_NUMBER,
                f"malformed number near {self._source[self._pos:tail.end()]!r}",
            )
            self._skip(tail.end())
            return True

        text = m.group(0)
        is_float = not text.lower().startswith("0x") and any(c in text for c in ".eE")
        self._emit(TokenType.FLOAT if is_float else TokenType.INTEGER, text, m.end())
        return True

    def _lex_comment(self) -> bool:
        if not self._source.startswith("--", self._pos):
            return False

        m = _LONG_BRACKET_RE.match(self._source, self._pos + 2)
        if m:
            _, end = self._read_long_bracket(m, ErrorCode.LEXER_UNFINISHED_COMMENT)
        else:
            newline = self._source.find('\n', self._pos)
            end = len(self._source) if newline < 0 else newline + 1

        self._skip(end)
        return True

    def _lex_operator(self) -> bool:
        for n in range(_MAX_OPERATOR_LEN, 0, -1):
            candidate = self._source[self._pos:self._pos + n]
            if len(candidate) == n and candidate in OPERATORS:
                self._emit(TokenType.OPERATOR, candidate, self._pos + n)
                return True
        return False

    def _lex_whitespace(self) -> bool:
        if not self._source[self._pos].isspace():
            return False
        self._skip(self._pos + 1)
        return True

    # ------------------------------------------------------------------ helpers

    def _read_long_bracket(self, opening, code: ErrorCode) -> Tuple[str, int]:
        """Return the body of a [==[ ... ]==] block and the offset past it."""
        closing = "]" + opening.group(1) + "]"
        body_start = opening.end()
        close_at = self._source.find(closing, body_start)

        if close_at < 0:
            self._error(code, f"unfinished long bracket, expected {closing!r}")
            body_end = end = len(self._source)
        else:
            body_end, end = close_at, close_at + len(closing)

        text = self._source[body_start:body_end]
        # a newline right after the opening bracket is not part of the text
        if text.startswith("\r\n"):
            text = text[2:]
        elif text.startswith("\n"):
            text = text[1:]
        return text, end

    def _emit(self, ttype: TokenType, text: str, end: int) -> None:
        self.tokens.append(Token(ttype, text, self._line, self._column, self._pos, end))
        self._advance_to(end)

    def _skip(self, end: int) -> None:
        self.skipped.append((self._pos, end))
        self._advance_to(end)

    def _advance_to(self, end: int) -> None:
        chunk = self._source[self._pos:end]
        newlines = chunk.count('\n')
        if newlines:
            self._line += newlines
            self._column = len(chunk) - chunk.rfind('\n')
        else:
            self._column += len(chunk)
        self._pos = end

    def _error(self, code: ErrorCode, message: str) -> None:
        self.errors.append(Diagnostic(code, message, self._line, self._column))


def tokenize(source: str) -> Tuple[List[Token], List[Diagnostic]]:
    """
    Convert Lua source text into (tokens, diagnostics).
    Never raises on bad input: every problem becomes a Diagnostic.
    """
    lexer = Lexer(source)
    return lexer.tokenize(), lexer.errors
