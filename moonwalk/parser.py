"""
moonwalk - Backtracking Recursive Descent Parser
Converts a token list into an AST plus a list of diagnostics.

Every grammar rule either returns a node with the cursor moved past what it
consumed, or returns None with the cursor exactly where it started. A failed
rule never raises; callers simply try the next alternative. The one exception
is nesting deeper than MAX_SYNTAX_LEVELS, which abandons the rest of the input
the way Lua does.

Binary expressions use precedence climbing over BINARY_PRIORITY, so a level of
parentheses or call arguments costs only a few Python frames.
"""

import functools
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .ast_nodes import AstKind, AstNode
from .diagnostics import Diagnostic, ErrorCode
from .lexer import Token, TokenType


STATEMENT_KEYWORDS = frozenset({
    "function", "if", "while", "repeat", "for", "local", "return", "break",
})

BLOCK_OPENERS = frozenset({"function", "if", "while", "for", "repeat"})
BLOCK_CLOSERS = frozenset({"end", "until"})

# (left, right) binding priorities; right < left makes an operator right associative
BINARY_PRIORITY = {
    "or": (1, 1),
    "and": (2, 2),
    "<": (3, 3), ">": (3, 3), "<=": (3, 3), ">=": (3, 3), "~=": (3, 3), "==": (3, 3),
    "..": (9, 8),
    "+": (10, 10), "-": (10, 10),
    "*": (11, 11), "/": (11, 11), "%": (11, 11),
    "^": (14, 13),
}
UNARY_PRIORITY = 12
UNARY_OPERATORS = frozenset({"not", "-", "#"})

MAX_SYNTAX_LEVELS = 200


@dataclass
class ParseResult:
    root: AstNode
    errors: List[Diagnostic] = field(default_factory=list)


class _TooManyLevels(Exception):
    def __init__(self, diagnostic: Diagnostic):
        super().__init__(diagnostic.message)
        self.diagnostic = diagnostic


def _backtracking(rule):
    """Restore the cursor whenever the wrapped rule fails."""
    @functools.wraps(rule)
    def wrapper(self, *args):
        mark = self._pos
        node = rule(self, *args)
        if node is None:
            self._pos = mark
        return node
    return wrapper


class Parser:
    def __init__(self, tokens: List[Token]):
        self._tokens = tokens
        self._pos = 0
        self._errors: List[Diagnostic] = []
        # furthest index any rule got stuck at, and the last thing wanted there
        self._furthest = -1
        self._expected: Optional[Tuple[ErrorCode, str]] = None
        self._depth = 0

    # ------------------------------------------------------------------ public

    def parse(self) -> ParseResult:
        root = AstNode(AstKind.SCRIPT, line=1, column=1)

        while not self._at_end():
            if self._take_any_operator((";",)):
                continue

            start = self._pos
            self._furthest, self._expected = -1, None

            try:
                node = self._definition()
                if node is None:
                    node = self._statement()
            except _TooManyLevels as e:
                self._errors.append(e.diagnostic)
                self._depth = 0
                self._pos = len(self._tokens)
                break

            if node is not None:
                root.children.append(node)

            # no rule consumed anything: report and resynchronize instead of looping
            if self._pos == start:
                self._report_failure()
                self._synchronize(start)

        return ParseResult(root, self._errors)

    # ------------------------------------------------------------------ cursor helpers

    def _at_end(self) -> bool:
        return self._pos >= len(self._tokens)

    def _peek(self, offset: int = 0) -> Optional[Token]:
        index = self._pos + offset
        if index < len(self._tokens):
            return self._tokens[index]
        return None

    def _expect_at(self, code: ErrorCode, what: str) -> None:
        if self._pos >= self._furthest:
            self._furthest, self._expected = self._pos, (code, what)

    def _take_keyword(self, word: str) -> Optional[Token]:
        tok = self._peek()
        if tok is not None and tok.is_keyword(word):
            self._pos += 1
            return tok
        self._expect_at(ErrorCode.PARSER_EXPECTED_KEYWORD, f"'{word}'")
        return None

    def _take_operator(self, op: str) -> Optional[Token]:
        tok = self._peek()
        if tok is not None and tok.is_operator(op):
            self._pos += 1
            return tok
        self._expect_at(ErrorCode.PARSER_EXPECTED_OPERATOR, f"'{op}'")
        return None

    def _take_any_operator(self, ops) -> Optional[Token]:
        """Take the next token if it is one of ops. Word operators (and, or) count too."""
        tok = self._peek()
        if (
            tok is not None
            and tok.type in (TokenType.OPERATOR, TokenType.KEYWORD)
            and tok.text in ops
        ):
            self._pos += 1
            return tok
        return None

    def _take_identifier(self) -> Optional[Token]:
        tok = self._peek()
        if tok is not None and tok.type == TokenType.IDENTIFIER:
            self._pos += 1
            return tok
        self._expect_at(ErrorCode.PARSER_EXPECTED_IDENTIFIER, "identifier")
        return None

    # ------------------------------------------------------------------ error recovery

    def _report_failure(self) -> None:
        index = min(max(self._furthest, self._pos), len(self._tokens) - 1)
        tok = self._tokens[index]
        near = f"near {tok.text!r}"
        if self._furthest >= len(self._tokens):
            near = "at end of input"

        if self._expected is not None:
            code, wanted = self._expected
            message = f"expected {wanted} {near}"
        else:
            code = ErrorCode.PARSER_UNEXPECTED_TOKEN
            message = f"unexpected symbol {near}"

        self._errors.append(Diagnostic(code, message, tok.line, tok.column))

    def _synchronize(self, start: int) -> None:
        """
        Skip past the failure point to the next token that can begin a statement.
        A failed block statement is skipped through its matching end/until, so
        the rest of its body never leaks to the enclosing level.
        """
        resume = max(self._furthest, start + 1)
        if self._tokens[start].type == TokenType.KEYWORD and self._tokens[start].text in BLOCK_OPENERS:
            resume = max(resume, self._matching_close(start))
        self._pos = min(resume, len(self._tokens))
        while not self._at_end() and not self._at_statement_boundary():
            self._pos += 1

    def _matching_close(self, start: int) -> int:
        """Index just past the end/until closing the block opened at start."""
        depth = 0
        for index in range(start, len(self._tokens)):
            tok = self._tokens[index]
            if tok.type != TokenType.KEYWORD:
                continue
            if tok.text in BLOCK_OPENERS:
                depth += 1
            elif tok.text in BLOCK_CLOSERS:
                depth -= 1
                if depth == 0:
                    return index + 1
        return len(self._tokens)

    def _enter_level(self) -> None:
        self._depth += 1
        if self._depth > MAX_SYNTAX_LEVELS:
            tok = self._peek() or self._tokens[-1]
            raise _TooManyLevels(Diagnostic(
                ErrorCode.PARSER_TOO_MANY_LEVELS,
                f"too many syntax levels (limit is {MAX_SYNTAX_LEVELS}) near {tok.text!r}",
                tok.line, tok.column,
            ))

    def _at_statement_boundary(self) -> bool:
        tok = self._peek()
        if tok.type == TokenType.KEYWORD:
            return tok.text in STATEMENT_KEYWORDS
        if tok.is_operator(";"):
            return True
        if tok.type == TokenType.IDENTIFIER:
            nxt = self._peek(1)
            return nxt is not None and (nxt.is_operator("(") or nxt.is_operator("="))
        return False

    # ------------------------------------------------------------------ statements

    def _definition(self) -> Optional[AstNode]:
        return self._function_definition()

    def _statement(self) -> Optional[AstNode]:
        for rule in (
            self._function_call,
            self._if_statement,
            self._while_statement,
            self._until_statement,
            self._for_statement,
            self._variable_declaration,
            self._return_statement,
            self._break_statement,
            self._function_definition,
        ):
            node = rule()
            if node is not None:
                return node
        return None

    def _block(self) -> AstNode:
        """Zero or more statements; always succeeds."""
        tok = self._peek()
        block = AstNode(
            AstKind.STATEMENT_BLOCK,
            line=tok.line if tok else 0,
            column=tok.column if tok else 0,
        )
        self._enter_level()
        try:
            while True:
                # separators between statements are optional
                while self._take_any_operator((";",)):
                    pass
                stmt = self._statement()
                if stmt is None:
                    break
                block.children.append(stmt)
        finally:
            self._depth -= 1
        return block

    @_backtracking
    def _function_definition(self) -> Optional[AstNode]:
        kw = self._take_keyword("function")
        if kw is None:
            return None
        name = self._take_identifier()
        if name is None or self._take_operator("(") is None:
            return None
        params = self._parameter_names()
        if self._take_operator(")") is None:
            return None
        body = self._block()
        if self._take_keyword("end") is None:
            return None
        return AstNode(
            AstKind.FUNCTION_DEFINITION, [params, body], name.text, kw.line, kw.column
        )

    def _parameter_names(self) -> AstNode:
        tok = self._peek()
        params = AstNode(AstKind.PARAMETER_LIST, line=tok.line if tok else 0)
        while True:
            name = self._take_identifier()
            if name is None:
                break
            params.children.append(
                AstNode(AstKind.IDENTIFIER, value=name.text, line=name.line, column=name.column)
            )
            # trailing commas are allowed
            if self._take_operator(",") is None:
                break
        return params

    @_backtracking
    def _function_call(self) -> Optional[AstNode]:
        name = self._take_identifier()
        if name is None:
            return None
        return self._call_suffix(name)

    def _call_suffix(self, name: Token) -> Optional[AstNode]:
        """'(' argList ')' after an already taken callee name. Leaves the cursor on failure."""
        if self._take_operator("(") is None:
            return None
        tok = self._peek()
        args = AstNode(AstKind.PARAMETER_LIST, line=tok.line if tok else 0)
        while True:
            expr = self._expression()
            if expr is None:
                break
            args.children.append(expr)
            if self._take_operator(",") is None:
                break
        if self._take_operator(")") is None:
            return None
        return AstNode(AstKind.FUNCTION_CALL, [args], name.text, name.line, name.column)

    @_backtracking
    def _if_statement(self) -> Optional[AstNode]:
        kw = self._take_keyword("if")
        if kw is None:
            return None

        clauses = []
        cond = self._expression()
        if cond is None or self._take_keyword("then") is None:
            return None
        clauses.append((kw, cond, self._block()))

        while True:
            elseif = self._take_keyword("elseif")
            if elseif is None:
                break
            cond = self._expression()
            if cond is None or self._take_keyword("then") is None:
                return None
            clauses.append((elseif, cond, self._block()))

        else_block = None
        if self._take_keyword("else") is not None:
            else_block = self._block()

        if self._take_keyword("end") is None:
            return None

        # elseif chains become nested IFs inside else blocks
        for tok, cond, body in reversed(clauses):
            children = [cond, body]
            if else_block is not None:
                children.append(else_block)
            node = AstNode(AstKind.IF, children, line=tok.line, column=tok.column)
            else_block = AstNode(AstKind.STATEMENT_BLOCK, [node], line=tok.line, column=tok.column)
        return node

    @_backtracking
    def _while_statement(self) -> Optional[AstNode]:
        kw = self._take_keyword("while")
        if kw is None:
            return None
        cond = self._expression()
        if cond is None or self._take_keyword("do") is None:
            return None
        body = self._block()
        if self._take_keyword("end") is None:
            return None
        return AstNode(AstKind.WHILE, [cond, body], line=kw.line, column=kw.column)

    @_backtracking
    def _until_statement(self) -> Optional[AstNode]:
        kw = self._take_keyword("repeat")
        if kw is None:
            return None
        body = self._block()
        if self._take_keyword("until") is None:
            return None
        cond = self._expression()
        if cond is None:
            return None
        return AstNode(AstKind.UNTIL, [cond, body], line=kw.line, column=kw.column)

    @_backtracking
    def _for_statement(self) -> Optional[AstNode]:
        kw = self._take_keyword("for")
        if kw is None:
            return None
        var = self._take_identifier()
        if var is None:
            return None
        if self._take_keyword("in") is None and self._take_operator("=") is None:
            return None

        start = self._expression()
        if start is None or self._take_operator(",") is None:
            return None
        stop = self._expression()
        if stop is None:
            return None

        step = None
        if self._take_operator(",") is not None:
            step = self._expression()
            if step is None:
                return None
        if step is None:
            step = AstNode(AstKind.INTEGER_LITERAL, value=1, line=kw.line, column=kw.column)

        if self._take_keyword("do") is None:
            return None
        body = self._block()
        if self._take_keyword("end") is None:
            return None
        return AstNode(
            AstKind.FOR, [start, stop, step, body], var.text, kw.line, kw.column
        )

    @_backtracking
    def _variable_declaration(self) -> Optional[AstNode]:
        local = self._take_keyword("local")
        kind = AstKind.LOCAL_VARIABLE_DECLARATION if local else AstKind.VARIABLE_DECLARATION

        name = self._take_identifier()
        if name is None or self._take_operator("=") is None:
            return None
        expr = self._expression()
        if expr is None:
            return None

        first = local or name
        return AstNode(kind, [expr], name.text, first.line, first.column)

    @_backtracking
    def _return_statement(self) -> Optional[AstNode]:
        kw = self._take_keyword("return")
        if kw is None:
            return None
        node = AstNode(AstKind.RETURN, line=kw.line, column=kw.column)
        expr = self._expression()
        if expr is not None:
            node.children.append(expr)
        return node

    def _break_statement(self) -> Optional[AstNode]:
        kw = self._take_keyword("break")
        if kw is None:
            return None
        return AstNode(AstKind.BREAK, line=kw.line, column=kw.column)


    # ------------------------------------------------------------------ expressions

    def _binary_operator(self) -> Optional[Token]:
        tok = self._peek()
        if tok is not None and tok.type in (TokenType.OPERATOR, TokenType.KEYWORD) \
                and tok.text in BINARY_PRIORITY:
            return tok
        return None

    def _expression(self, limit: int = 0) -> Optional[AstNode]:
        """
        Precedence climbing: parse an operand, then absorb every binary operator
        whose left priority exceeds limit. Runs of a right associative operator
        are collected in a loop and folded from the right.
        """
        mark = self._pos
        self._enter_level()
        try:
            tok = self._peek()
            if tok is not None and tok.type in (TokenType.OPERATOR, TokenType.KEYWORD) \
                    and tok.text in UNARY_OPERATORS:
                self._pos += 1
                operand = self._expression(UNARY_PRIORITY)
                if operand is None:
                    self._pos = mark
                    return None
                left = AstNode(AstKind.UNARY_OPERATION, [operand], tok.text, tok.line, tok.column)
            else:
                left = self._primary()
                if left is None:
                    self._pos = mark
                    return None

            while True:
                op_tok = self._binary_operator()
                if op_tok is None:
                    return left
                left_priority, right_priority = BINARY_PRIORITY[op_tok.text]
                if left_priority <= limit:
                    return left
                self._pos += 1

                if right_priority >= left_priority:
                    right = self._expression(right_priority)
                    if right is None:
                        self._pos = mark
                        return None
                    left = AstNode(
                        AstKind.BINARY_OPERATION, [left, right], op_tok.text, op_tok.line, op_tok.column
                    )
                    continue

                operands, ops = [left], [op_tok]
                while True:
                    right = self._expression(left_priority)
                    if right is None:
                        self._pos = mark
                        return None
                    operands.append(right)
                    nxt = self._binary_operator()
                    if nxt is None or nxt.text != op_tok.text:
                        break
                    self._pos += 1
                    ops.append(nxt)

                left = operands.pop()
                while ops:
                    tok = ops.pop()
                    left = AstNode(
                        AstKind.BINARY_OPERATION, [operands.pop(), left], tok.text, tok.line, tok.column
                    )
        finally:
            self._depth -= 1

    def _primary(self) -> Optional[AstNode]:
        tok = self._peek()
        if tok is None:
            self._expect_at(ErrorCode.PARSER_EXPECTED_EXPRESSION, "expression")
            return None

        if tok.type == TokenType.KEYWORD and tok.text in ("nil", "true", "false"):
            self._pos += 1
            if tok.text == "nil":
                return AstNode(AstKind.NIL_LITERAL, line=tok.line, column=tok.column)
            return AstNode(AstKind.BOOLEAN_LITERAL, value=tok.text == "true",
                           line=tok.line, column=tok.column)

        if tok.type == TokenType.INTEGER:
            self._pos += 1
            base = 16 if tok.text.lower().startswith("0x") else 10
            return AstNode(AstKind.INTEGER_LITERAL, value=int(tok.text, base),
                           line=tok.line, column=tok.column)

        if tok.type == TokenType.FLOAT:
            self._pos += 1
            return AstNode(AstKind.FLOAT_LITERAL, value=float(tok.text),
                           line=tok.line, column=tok.column)

        if tok.type == TokenType.STRING:
            self._pos += 1
            return AstNode(AstKind.STRING_LITERAL, value=tok.text,
                           line=tok.line, column=tok.column)

        mark = self._pos
        if tok.is_operator("("):
            self._pos += 1
            expr = self._expression()
            if expr is None or self._take_operator(")") is None:
                self._pos = mark
                return None
            return expr

        if tok.is_operator("{"):
            return self._table_literal()

        if tok.type == TokenType.IDENTIFIER:
            self._pos += 1
            nxt = self._peek()
            if nxt is not None and nxt.is_operator("("):
                call = self._call_suffix(tok)
                if call is None:
                    self._pos = mark
                return call
            return AstNode(AstKind.IDENTIFIER, value=tok.text, line=tok.line, column=tok.column)

        self._expect_at(ErrorCode.PARSER_EXPECTED_EXPRESSION, "expression")
        return None

    @_backtracking
    def _table_literal(self) -> Optional[AstNode]:
        open_tok = self._take_operator("{")
        node = AstNode(AstKind.TABLE_LITERAL, line=open_tok.line, column=open_tok.column)
        while True:
            expr = self._expression()
            if expr is None:
                break
            node.children.append(expr)
            if self._take_any_operator((",", ";")) is None:
                break
        if self._take_operator("}") is None:
            return None
        return node


def parse(tokens: List[Token]) -> ParseResult:
    return Parser(tokens).parse()
