"""
moonwalk - Runner
Runs all interpreter phases in sequence: lexing, parsing, evaluation.
"""

import json
import sys
from typing import List

from .ast_nodes import AstNode, format_tree
from .diagnostics import Diagnostic, ErrorCode
from .interpreter import Interpreter
from .lexer import tokenize
from .parser import parse
from .values import InterpreterError


class RunError(Exception):
    """Unified failure wrapper for every phase."""

    def __init__(self, message: str, diagnostics: List[Diagnostic] = None):
        super().__init__(message)
        self.diagnostics = list(diagnostics or [])


def _log(msg: str) -> None:
    print(f"[moonwalk] {msg}", file=sys.stderr)


def _diagnostics_error(phase: str, diagnostics: List[Diagnostic]) -> RunError:
    lines = [f"{phase} failed with {len(diagnostics)} error(s):"]
    lines += [f"  {d}" for d in diagnostics]
    return RunError("\n".join(lines), diagnostics)


def parse_source(source: str, verbose_lexing: bool = False, verbose_parsing: bool = False) -> AstNode:
    """
    Lex and parse source text.

    Raises
    ------
    RunError listing every diagnostic when either phase reports one
    """
    tokens, lex_errors = tokenize(source)
    if verbose_lexing:
        _log(f"Lexing: {len(tokens)} tokens")
        for tok in tokens:
            _log(f"  {tok.line}:{tok.column} {tok.type.name} {tok.text!r}")
    if lex_errors:
        raise _diagnostics_error("Lexing", lex_errors)

    result = parse(tokens)
    if verbose_parsing:
        _log(f"Parsing: {len(result.root.children)} top-level statements")
        for line in format_tree(result.root).splitlines():
            _log(f"  {line}")
        for diagnostic in result.errors:
            _log(f"  {diagnostic}")
    if result.errors:
        raise _diagnostics_error("Parsing", result.errors)

    return result.root


def run_source(
    source: str,
    verbose_lexing: bool = False,
    verbose_parsing: bool = False,
    verbose_execution: bool = False,
    stdout=None,
) -> Interpreter:
    """
    Execute Lua source text.

    Parameters
    ----------
    source            : Lua source code string
    verbose_lexing    : log every token to stderr
    verbose_parsing   : log the AST and parse diagnostics to stderr
    verbose_execution : log every call and return to stderr
    stdout            : stream for print (default: sys.stdout at call time)

    Returns
    -------
    The Interpreter after the run, so callers can inspect its globals

    Raises
    ------
    RunError on any phase failure
    """
    root = parse_source(source, verbose_lexing, verbose_parsing)

    interpreter = Interpreter(stdout=stdout, trace=_log if verbose_execution else None)
    if verbose_execution:
        _log("Execution")
    try:
        interpreter.run(root)
    except InterpreterError as e:
        raise RunError(str(e)) from e

    return interpreter


def run_file(path: str, **options) -> Interpreter:
    """Read a .lua file and run it. Missing files raise RunError."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            source = f.read()
    except FileNotFoundError as e:
        diagnostic = Diagnostic(ErrorCode.INPUT_FILE_NOT_FOUND, f"input file not found: {path!r}")
        raise RunError(str(diagnostic), [diagnostic]) from e

    return run_source(source, **options)


# ── AST serialization (for --emit-ast) ────────────────────────────────────────

def dump_ast(source: str) -> str:
    return json.dumps(_node_to_dict(parse_source(source)), indent=2)


def _node_to_dict(node: AstNode) -> dict:
    d = {"kind": node.kind.name, "line": node.line, "column": node.column}
    if node.value is not None:
        d["value"] = node.value
    if node.children:
        d["children"] = [_node_to_dict(child) for child in node.children]
    return d
