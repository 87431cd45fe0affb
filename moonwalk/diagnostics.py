"""
moonwalk - Diagnostics
Structured error records shared by the lexer and the parser.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional


class ErrorCode(IntEnum):
    INPUT_FILE_NOT_FOUND         = 0

    LEXER_UNEXPECTED_CHARACTER   = 1
    LEXER_UNFINISHED_STRING      = 2
    LEXER_UNFINISHED_LONG_STRING = 3
    LEXER_UNFINISHED_COMMENT     = 4
    LEXER_MALFORMED_NUMBER       = 5

    PARSER_EXPECTED_IDENTIFIER   = 100
    PARSER_EXPECTED_OPERATOR     = 101
    PARSER_EXPECTED_KEYWORD      = 102
    PARSER_EXPECTED_EXPRESSION   = 103
    PARSER_UNEXPECTED_TOKEN      = 104
    PARSER_TOO_MANY_LEVELS       = 105


@dataclass(frozen=True)
class Diagnostic:
    """A recoverable lex/parse problem. Collected, never raised."""
    code: ErrorCode
    message: str
    line: Optional[int] = None
    column: Optional[int] = None

    def __str__(self):
        where = f" {self.line}:{self.column}" if self.line is not None else ""
        return f"[E{int(self.code):03d}]{where}: {self.message}"
