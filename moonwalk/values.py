"""
moonwalk - Runtime Values

Lua values map onto plain Python objects:

    nil      -> None
    boolean  -> bool
    number   -> int or float
    string   -> str
    function -> FunctionDef

This module holds the helpers every consumer of values needs: type names,
truthiness, string/number conversion, raw equality, and the runtime error.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from .ast_nodes import AstKind, AstNode


class InterpreterError(Exception):
    """A fatal evaluation error. Carries a snapshot of the call stack."""

    def __init__(self, message: str, traceback: Optional[List[Tuple[str, int]]] = None):
        super().__init__(message)
        self.message = message
        self.traceback = list(traceback or [])   # (function name, line), outermost first

    def __str__(self):
        text = f"[InterpreterError] {self.message}"
        if self.traceback:
            frames = "\n".join(
                f"  in function '{name}' (line {line})" for name, line in reversed(self.traceback)
            )
            text += "\nstack traceback:\n" + frames
        return text


@dataclass(eq=False)
class FunctionDef:
    """
    A callable: either an AST-backed function (node is a FUNCTION_DEFINITION,
    or the SCRIPT root for the implicit main function) or a native one.
    param_count None means the native takes any number of arguments.
    """
    name: str
    node: Optional[AstNode] = None
    native: Optional[Callable[[List[Any]], Any]] = None
    param_count: Optional[int] = 0

    @property
    def is_native(self) -> bool:
        return self.native is not None

    @property
    def body(self) -> AstNode:
        if self.node.kind == AstKind.SCRIPT:
            return self.node
        return self.node.children[1]

    def parameter_names(self) -> List[str]:
        if self.node is None or self.node.kind != AstKind.FUNCTION_DEFINITION:
            return []
        return [param.payload for param in self.node.children[0].children]


def is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def type_name(value) -> str:
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, FunctionDef):
        return "function"
    raise TypeError(f"not a runtime value: {value!r}")


def is_truthy(value) -> bool:
    return value is not None and value is not False


def format_float(number: float) -> str:
    if math.isnan(number):
        return "nan"
    if math.isinf(number):
        return "inf" if number > 0 else "-inf"
    text = "%.14g" % number
    if re.fullmatch(r"-?\d+", text):
        text += ".0"
    return text


def tostring(value) -> str:
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return format_float(value)
    if isinstance(value, FunctionDef):
        kind = "builtin" if value.is_native else "function"
        return f"function: {kind} '{value.name}'"
    return value


_HEX_RE = re.compile(r"[+-]?0[xX][0-9a-fA-F]+")
_INT_RE = re.compile(r"[+-]?\d+", re.ASCII)
_FLOAT_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)


def tonumber(value):
    """Number for numbers and numeric strings, None for everything else."""
    if is_number(value):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if _HEX_RE.fullmatch(text):
        return int(text, 16)
    if _INT_RE.fullmatch(text):
        return int(text)
    if _FLOAT_RE.fullmatch(text):
        return float(text)
    return None


def raw_equals(lhs, rhs) -> bool:
    if is_number(lhs) and is_number(rhs):
        return lhs == rhs
    if type(lhs) is not type(rhs):
        return False
    if isinstance(lhs, FunctionDef):
        return lhs is rhs
    return lhs == rhs
