"""
moonwalk - Test Suite
Tests for Lexer, Parser, Interpreter, Runner, and CLI.
"""

import sys
import os
import io
import json
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest import mock

# Allow running from project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from moonwalk.ast_nodes import AstKind, AstNode, format_tree
from moonwalk.cli import main
from moonwalk.diagnostics import Diagnostic, ErrorCode
from moonwalk.interpreter import Interpreter, StackFrame, VariableStore
from moonwalk.lexer import Lexer, TokenType, tokenize
from moonwalk.natives import make_natives
from moonwalk.parser import MAX_SYNTAX_LEVELS, Parser, parse
from moonwalk.runner import RunError, dump_ast, run_file, run_source
from moonwalk.values import FunctionDef, InterpreterError, tonumber, tostring


# ═══════════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════════

HELLO = 'function f() print("hi") end f()'


def token_pairs(source: str):
    tokens, _ = tokenize(source)
    return [(t.type, t.text) for t in tokens]


def parse_(source: str):
    tokens, errors = tokenize(source.strip())
    assert not errors, errors
    return parse(tokens)


def first_statement(source: str) -> AstNode:
    result = parse_(source)
    assert not result.errors, result.errors
    return result.root.children[0]


def assigned_expr(source: str) -> AstNode:
    return first_statement(source).children[0]


def run_(source: str) -> str:
    out = io.StringIO()
    run_source(source.strip(), stdout=out)
    return out.getvalue()


def interpret(source: str, **kwargs) -> Interpreter:
    interpreter = Interpreter(stdout=io.StringIO(), **kwargs)
    interpreter.run(parse_(source).root)
    return interpreter


# ═══════════════════════════════════════════════════════════════════════════════
# Lexer Tests
# ═══════════════════════════════════════════════════════════════════════════════

class TestLexer(unittest.TestCase):

    def test_greater_equal_is_one_token(self):
        self.assertEqual(token_pairs(">="), [(TokenType.OPERATOR, ">=")])

    def test_longest_match(self):
        self.assertEqual(
            [text for _, text in token_pairs("a...b..c.d")],
            ["a", "...", "b", "..", "c", ".", "d"],
        )

    def test_keywords_and_identifiers(self):
        self.assertEqual(
            token_pairs("local endx end"),
            [
                (TokenType.KEYWORD, "local"),
                (TokenType.IDENTIFIER, "endx"),
                (TokenType.KEYWORD, "end"),
            ],
        )

    def test_numbers(self):
        self.assertEqual(
            token_pairs("42 3.14 .5 1e10 2.5E-3 0x1F"),
            [
                (TokenType.INTEGER, "42"),
                (TokenType.FLOAT, "3.14"),
                (TokenType.FLOAT, ".5"),
                (TokenType.FLOAT, "1e10"),
                (TokenType.FLOAT, "2.5E-3"),
                (TokenType.INTEGER, "0x1F"),
            ],
        )

    def test_integer_then_concatenation(self):
        self.assertEqual(
            token_pairs("1..2"),
            [(TokenType.INTEGER, "1"), (TokenType.OPERATOR, ".."), (TokenType.INTEGER, "2")],
        )

    def test_malformed_number(self):
        tokens, errors = tokenize("x = 3abc")
        self.assertEqual([t.text for t in tokens], ["x", "="])
        self.assertEqual(errors[0].code, ErrorCode.LEXER_MALFORMED_NUMBER)

    def test_quoted_strings(self):
        self.assertEqual(
            token_pairs("\"double\" 'single'"),
            [(TokenType.STRING, "double"), (TokenType.STRING, "single")],
        )

    def test_unfinished_string(self):
        tokens, errors = tokenize('"abc\nx')
        self.assertEqual([t.text for t in tokens], ["abc", "x"])
        self.assertEqual(tokens[1].line, 2)
        self.assertEqual(errors[0].code, ErrorCode.LEXER_UNFINISHED_STRING)

    def test_long_string_levels(self):
        tokens, errors = tokenize("[==[a]]b]=]c]==]")
        self.assertEqual(errors, [])
        self.assertEqual(tokens[0].type, TokenType.STRING)
        self.assertEqual(tokens[0].text, "a]]b]=]c")

    def test_long_string_drops_first_newline(self):
        tokens, _ = tokenize("[[\nline one\nline two]]")
        self.assertEqual(tokens[0].text, "line one\nline two")

    def test_unfinished_long_string(self):
        tokens, errors = tokenize("[[never closed")
        self.assertEqual(tokens[0].text, "never closed")
        self.assertEqual(errors[0].code, ErrorCode.LEXER_UNFINISHED_LONG_STRING)

    def test_line_comment_ignored(self):
        tokens, _ = tokenize("-- this is a comment\nx")
        self.assertEqual([t.text for t in tokens], ["x"])
        self.assertEqual(tokens[0].line, 2)

    def test_block_comment_ignored(self):
        tokens, errors = tokenize("a --[[ one\ntwo ]] b")
        self.assertEqual(errors, [])
        self.assertEqual([t.text for t in tokens], ["a", "b"])

    def test_unfinished_comment(self):
        tokens, errors = tokenize("a --[=[ open")
        self.assertEqual([t.text for t in tokens], ["a"])
        self.assertEqual(errors[0].code, ErrorCode.LEXER_UNFINISHED_COMMENT)

    def test_minus_is_not_a_comment(self):
        self.assertEqual([text for _, text in token_pairs("a - b")], ["a", "-", "b"])

    def test_invalid_character(self):
        tokens, errors = tokenize("x $ y")
        self.assertEqual([t.text for t in tokens], ["x", "y"])
        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0].code, ErrorCode.LEXER_UNEXPECTED_CHARACTER)
        self.assertEqual((errors[0].line, errors[0].column), (1, 3))

    def test_only_ascii_digits_make_numbers(self):
        tokens, errors = tokenize("x = \u0661\u0662")
        self.assertEqual([t.text for t in tokens], ["x", "="])
        self.assertEqual(
            [e.code for e in errors], [ErrorCode.LEXER_UNEXPECTED_CHARACTER] * 2
        )

    def test_line_and_column_tracking(self):
        tokens, _ = tokenize("a\n  b\n\tc")
        positions = {t.text: (t.line, t.column) for t in tokens}
        self.assertEqual(positions["a"], (1, 1))
        self.assertEqual(positions["b"], (2, 3))
        self.assertEqual(positions["c"], (3, 2))

    def test_hello_program_tokens(self):
        self.assertEqual(
            token_pairs(HELLO),
            [
                (TokenType.KEYWORD, "function"),
                (TokenType.IDENTIFIER, "f"),
                (TokenType.OPERATOR, "("),
                (TokenType.OPERATOR, ")"),
                (TokenType.IDENTIFIER, "print"),
                (TokenType.OPERATOR, "("),
                (TokenType.STRING, "hi"),
                (TokenType.OPERATOR, ")"),
                (TokenType.KEYWORD, "end"),
                (TokenType.IDENTIFIER, "f"),
                (TokenType.OPERATOR, "("),
                (TokenType.OPERATOR, ")"),
            ],
        )

    def test_spans_reconstruct_source(self):
        source = (
            "local s = [==[\nbody]==] -- note\n"
            "print(s, 'q', 0x1F) $ --[[ block\n]] 4x \"open\nx = 1.5e3"
        )
        lexer = Lexer(source)
        lexer.tokenize()
        spans = sorted([(t.start, t.end) for t in lexer.tokens] + lexer.skipped)

        self.assertEqual(spans[0][0], 0)
        self.assertEqual(spans[-1][1], len(source))
        for (_, end), (start, _) in zip(spans, spans[1:]):
            self.assertEqual(end, start)
        self.assertEqual("".join(source[s:e] for s, e in spans), source)


# ═══════════════════════════════════════════════════════════════════════════════
# Parser Tests
# ═══════════════════════════════════════════════════════════════════════════════

class TestParser(unittest.TestCase):

    def test_hello_program_shape(self):
        result = parse_(HELLO)
        self.assertEqual(result.errors, [])
        self.assertEqual(
            [n.kind for n in result.root.children],
            [AstKind.FUNCTION_DEFINITION, AstKind.FUNCTION_CALL],
        )
        definition = result.root.children[0]
        self.assertEqual(definition.payload, "f")
        self.assertEqual(definition.children[0].kind, AstKind.PARAMETER_LIST)
        self.assertEqual(definition.children[1].kind, AstKind.STATEMENT_BLOCK)

    def test_if_without_else(self):
        node = first_statement("if true then end")
        self.assertEqual(node.kind, AstKind.IF)
        self.assertEqual(len(node.children), 2)

    def test_if_with_else(self):
        node = first_statement("if true then else end")
        self.assertEqual(len(node.children), 3)

    def test_elseif_nests(self):
        node = first_statement("if a then x = 1 elseif b then x = 2 else x = 3 end")
        self.assertEqual(len(node.children), 3)
        nested = node.children[2].children[0]
        self.assertEqual(nested.kind, AstKind.IF)
        self.assertEqual(nested.children[0].payload, "b")
        self.assertEqual(len(nested.children), 3)

    def test_for_default_step(self):
        node = first_statement("for i in 1,10 do end")
        self.assertEqual(node.kind, AstKind.FOR)
        self.assertEqual(node.payload, "i")
        self.assertEqual(node.children[2].kind, AstKind.INTEGER_LITERAL)
        self.assertEqual(node.children[2].payload, 1)

    def test_for_with_equals_and_step(self):
        node = first_statement("for i = 10, 1, -2 do end")
        step = node.children[2]
        self.assertEqual(step.kind, AstKind.UNARY_OPERATION)
        self.assertEqual(step.payload, "-")

    def test_local_and_global_declaration(self):
        result = parse_("local a = 1\nb = a")
        kinds = [n.kind for n in result.root.children]
        self.assertEqual(
            kinds, [AstKind.LOCAL_VARIABLE_DECLARATION, AstKind.VARIABLE_DECLARATION]
        )

    def test_repeat_until(self):
        node = first_statement("repeat x = x + 1 until x > 3")
        self.assertEqual(node.kind, AstKind.UNTIL)
        self.assertEqual(node.children[0].payload, ">")
        self.assertEqual(node.children[1].kind, AstKind.STATEMENT_BLOCK)

    def test_return_and_break(self):
        body = first_statement("function f() while true do break end return 1 end").children[1]
        self.assertEqual([n.kind for n in body.children], [AstKind.WHILE, AstKind.RETURN])
        self.assertEqual(body.children[0].children[1].children[0].kind, AstKind.BREAK)

    def test_call_arguments(self):
        node = first_statement("f(1, 'a', g(2),)")
        args = node.children[0]
        self.assertEqual(args.kind, AstKind.PARAMETER_LIST)
        self.assertEqual(
            [a.kind for a in args.children],
            [AstKind.INTEGER_LITERAL, AstKind.STRING_LITERAL, AstKind.FUNCTION_CALL],
        )

    def test_semicolons_are_optional(self):
        result = parse_("a = 1; b = 2;; f()")
        self.assertEqual(result.errors, [])
        self.assertEqual(len(result.root.children), 3)

    def test_multiplication_binds_tighter(self):
        expr = assigned_expr("x = 1 + 2 * 3")
        self.assertEqual(expr.payload, "+")
        self.assertEqual(expr.children[1].payload, "*")

    def test_subtraction_is_left_associative(self):
        expr = assigned_expr("x = 1 - 2 - 3")
        self.assertEqual(expr.payload, "-")
        self.assertEqual(expr.children[0].payload, "-")

    def test_power_is_right_associative(self):
        expr = assigned_expr("x = 2 ^ 3 ^ 2")
        self.assertEqual(expr.children[0].payload, 2)
        self.assertEqual(expr.children[1].payload, "^")

    def test_unary_minus_below_power(self):
        expr = assigned_expr("x = -2 ^ 2")
        self.assertEqual(expr.kind, AstKind.UNARY_OPERATION)
        self.assertEqual(expr.children[0].payload, "^")

    def test_concatenation_is_right_associative(self):
        expr = assigned_expr('x = "a" .. "b" .. "c"')
        self.assertEqual(expr.children[0].payload, "a")
        self.assertEqual(expr.children[1].payload, "..")

    def test_or_below_and(self):
        expr = assigned_expr("x = a or b and c")
        self.assertEqual(expr.payload, "or")
        self.assertEqual(expr.children[1].payload, "and")

    def test_parentheses_group(self):
        expr = assigned_expr("x = (1 + 2) * 3")
        self.assertEqual(expr.payload, "*")
        self.assertEqual(expr.children[0].payload, "+")

    def test_literals(self):
        result = parse_("a = nil b = false c = 0x10 d = 1.5 e = [[s]] f = {1, 2;}")
        values = [n.children[0] for n in result.root.children]
        self.assertEqual(
            [v.kind for v in values],
            [
                AstKind.NIL_LITERAL, AstKind.BOOLEAN_LITERAL, AstKind.INTEGER_LITERAL,
                AstKind.FLOAT_LITERAL, AstKind.STRING_LITERAL, AstKind.TABLE_LITERAL,
            ],
        )
        self.assertIs(values[1].payload, False)
        self.assertEqual(values[2].payload, 16)
        self.assertEqual(len(values[5].children), 2)

    def test_failed_rule_restores_cursor(self):
        tokens, _ = tokenize("if x then y = 1")
        parser = Parser(tokens)
        self.assertIsNone(parser._if_statement())
        self.assertEqual(parser._pos, 0)

    def test_failed_expression_restores_cursor(self):
        tokens, _ = tokenize("(1 + ")
        parser = Parser(tokens)
        self.assertIsNone(parser._expression())
        self.assertEqual(parser._pos, 0)

    def test_missing_end_reports_keyword(self):
        result = parse_('function f() print(1)')
        self.assertEqual(len(result.errors), 1)
        self.assertEqual(result.errors[0].code, ErrorCode.PARSER_EXPECTED_KEYWORD)
        self.assertIn("'end'", result.errors[0].message)
        self.assertIn("end of input", result.errors[0].message)

    def test_resynchronizes_after_error(self):
        result = parse_('x = = 1\nprint("ok")')
        self.assertEqual(len(result.errors), 1)
        error = result.errors[0]
        self.assertEqual(error.code, ErrorCode.PARSER_EXPECTED_EXPRESSION)
        self.assertEqual((error.line, error.column), (1, 5))
        self.assertEqual([n.kind for n in result.root.children], [AstKind.FUNCTION_CALL])
        self.assertEqual(result.root.children[0].payload, "print")

    def test_stray_tokens_always_make_progress(self):
        result = parse_(") ) end then a = 1")
        self.assertTrue(result.errors)
        self.assertEqual(result.root.children[-1].kind, AstKind.VARIABLE_DECLARATION)

    def test_failed_block_is_skipped_through_its_end(self):
        result = parse_('function f()\n x = = 1\n y = 2\nend\nprint("ok")')
        self.assertEqual([e.code for e in result.errors], [ErrorCode.PARSER_EXPECTED_EXPRESSION])
        self.assertEqual((result.errors[0].line, result.errors[0].column), (2, 6))
        self.assertEqual([n.kind for n in result.root.children], [AstKind.FUNCTION_CALL])

    def test_deeply_nested_parentheses(self):
        depth = 150
        node = first_statement("print(" + "(" * depth + "1" + ")" * depth + ")")
        self.assertEqual(node.children[0].children[0].payload, 1)

    def test_deeply_nested_calls(self):
        depth = 150
        node = first_statement("print(" + "f(" * depth + "1" + ")" * depth + ")")
        levels = 0
        while node.kind == AstKind.FUNCTION_CALL:
            levels += 1
            node = node.children[0].children[0]
        self.assertEqual(levels, depth + 1)
        self.assertEqual(node.payload, 1)

    def test_too_many_syntax_levels(self):
        depth = MAX_SYNTAX_LEVELS + 50
        result = parse_("x = " + "(" * depth + "1" + ")" * depth + "\nprint(1)")
        self.assertEqual([e.code for e in result.errors], [ErrorCode.PARSER_TOO_MANY_LEVELS])
        self.assertIn("too many syntax levels", result.errors[0].message)
        self.assertEqual(result.root.children, [])

    def test_not_binds_tighter_than_comparison(self):
        expr = assigned_expr("x = not a == b")
        self.assertEqual(expr.payload, "==")
        self.assertEqual(expr.children[0].kind, AstKind.UNARY_OPERATION)

    def test_empty_source(self):
        result = parse([])
        self.assertEqual(result.root.kind, AstKind.SCRIPT)
        self.assertEqual(result.root.children, [])
        self.assertEqual(result.errors, [])

    def test_missing_payload_raises(self):
        with self.assertRaises(ValueError):
            AstNode(AstKind.SCRIPT).payload

    def test_format_tree(self):
        text = format_tree(parse_("x = 1").root)
        self.assertEqual(text.splitlines(), [
            "SCRIPT",
            "  VARIABLE_DECLARATION 'x'",
            "    INTEGER_LITERAL 1",
        ])


# ═══════════════════════════════════════════════════════════════════════════════
# Interpreter Tests
# ═══════════════════════════════════════════════════════════════════════════════

class TestInterpreter(unittest.TestCase):

    def test_hello_program(self):
        self.assertEqual(run_(HELLO), "hi\n")

    def test_native_math(self):
        natives = make_natives()
        self.assertEqual(natives["sqrt"].native([4]), 2.0)
        self.assertEqual(natives["sin"].native([0]), 0.0)
        self.assertEqual(run_("print(sqrt(4), sin(0))"), "2.0\t0.0\n")

    def test_more_natives(self):
        self.assertEqual(
            run_("print(abs(-2), floor(3.7), ceil(3.2), exp(0), log(1))"),
            "2\t3\t4\t1.0\t0.0\n",
        )

    def test_native_bad_argument(self):
        with self.assertRaises(RunError) as cm:
            run_("sqrt(nil)")
        self.assertIn("bad argument #1 to 'sqrt'", str(cm.exception))

    def test_undefined_function_raises(self):
        with self.assertRaises(InterpreterError):
            interpret("undefinedFn()")
        with self.assertRaises(RunError):
            run_("undefinedFn()")

    def test_print_joins_with_tabs(self):
        self.assertEqual(run_('print(1, "a", nil, true)'), "1\ta\tnil\ttrue\n")
        self.assertEqual(run_("print()"), "\n")

    def test_arithmetic(self):
        self.assertEqual(
            run_("print(1 + 2, 7 / 2, 4 / 2, 7 % 3, -7 % 3, 2 ^ 10, 5.5 % 2)"),
            "3\t3.5\t2.0\t1\t2\t1024.0\t1.5\n",
        )
        self.assertEqual(
            run_("print(0 ^ -1, (-0.0) ^ -1, 0 ^ -2, (-0.0) ^ -2, (-8) ^ 0.5, (-2) ^ 3)"),
            "inf\t-inf\tinf\tinf\tnan\t-8.0\n",
        )

    def test_deeply_nested_calls_run(self):
        depth = 150
        source = "function f(x) return x end print(" + "f(" * depth + "1" + ")" * depth + ")"
        self.assertEqual(run_(source), "1\n")

    def test_too_deep_nesting_is_a_run_error(self):
        depth = MAX_SYNTAX_LEVELS + 1
        with self.assertRaises(RunError) as cm:
            run_("print(" + "(" * depth + "1" + ")" * depth + ")")
        self.assertEqual(cm.exception.diagnostics[0].code, ErrorCode.PARSER_TOO_MANY_LEVELS)

    def test_numeric_strings_coerce(self):
        self.assertEqual(run_('print("10" + 1, "0x10" * 2)'), "11\t32\n")

    def test_float_formatting(self):
        self.assertEqual(
            run_("print(0.1 + 0.2, 1e100, 1 / 0, -1 / 0, 3.0)"),
            "0.3\t1e+100\tinf\t-inf\t3.0\n",
        )

    def test_concatenation(self):
        self.assertEqual(run_('print("a" .. 1 .. 2.5)'), "a12.5\n")

    def test_comparison_and_equality(self):
        self.assertEqual(
            run_('print(1 < 2, "a" < "b", 1 == 1.0, "1" == 1, nil ~= false)'),
            "true\ttrue\ttrue\tfalse\ttrue\n",
        )

    def test_logical_operators_short_circuit(self):
        self.assertEqual(
            run_('print(nil or "d", false and undefinedFn(), 1 and 2, not nil)'),
            "d\tfalse\t2\ttrue\n",
        )

    def test_length(self):
        self.assertEqual(run_('print(#"abc")'), "3\n")

    def test_conversion_natives(self):
        self.assertEqual(
            run_('print(type(1), type("s"), type(nil), type(print), tonumber("0x10"), tonumber("z"))'),
            "number\tstring\tnil\tfunction\t16\tnil\n",
        )
        self.assertEqual(run_('print(tostring(1.5) .. "x")'), "1.5x\n")

    def test_while_loop(self):
        self.assertEqual(run_("local i = 0 while i < 3 do i = i + 1 end print(i)"), "3\n")

    def test_repeat_until(self):
        self.assertEqual(run_("local n = 0 repeat n = n + 1 until n >= 5 print(n)"), "5\n")

    def test_numeric_for(self):
        self.assertEqual(run_("for i = 1, 3 do print(i) end"), "1\n2\n3\n")
        self.assertEqual(run_("for i = 3, 1, -1 do print(i) end"), "3\n2\n1\n")
        self.assertEqual(run_("for i = 0, 1, 0.5 do print(i) end"), "0.0\n0.5\n1.0\n")
        self.assertEqual(run_("for i = 1, 0 do print(i) end"), "")

    def test_for_zero_step(self):
        with self.assertRaises(RunError):
            run_("for i = 1, 2, 0 do end")

    def test_break(self):
        source = """
        for i = 1, 10 do
            if i > 2 then break end
            print(i)
        end
        print("after")
        """
        self.assertEqual(run_(source), "1\n2\nafter\n")

    def test_break_out_of_while_inside_function(self):
        source = """
        function first_over(limit)
            local n = 0
            while true do
                n = n + 1
                if n * n > limit then break end
            end
            return n
        end
        print(first_over(50))
        """
        self.assertEqual(run_(source), "8\n")

    def test_if_elseif_else(self):
        source = """
        function classify(n)
            if n < 0 then
                return "neg"
            elseif n == 0 then
                return "zero"
            else
                return "pos"
            end
        end
        print(classify(-1), classify(0), classify(5))
        """
        self.assertEqual(run_(source), "neg\tzero\tpos\n")

    def test_recursion(self):
        source = """
        function fib(n)
            if n < 2 then return n end
            return fib(n - 1) + fib(n - 2)
        end
        print(fib(15))
        """
        self.assertEqual(run_(source), "610\n")

    def test_deep_recursion_uses_no_host_stack(self):
        source = """
        function down(n)
            if n == 0 then return "bottom" end
            return down(n - 1)
        end
        print(down(20000))
        """
        self.assertEqual(run_(source), "bottom\n")

    def test_stack_overflow(self):
        with mock.patch("moonwalk.interpreter.MAX_CALL_DEPTH", 50):
            with self.assertRaises(InterpreterError) as cm:
                interpret("function r() return r() end r()")
        self.assertIn("stack overflow", str(cm.exception))

    def test_missing_and_extra_arguments(self):
        source = """
        function h(a, b) print(a, b) end
        h(1)
        h(1, 2, 3)
        """
        self.assertEqual(run_(source), "1\tnil\n1\t2\n")

    def test_function_without_return_yields_nil(self):
        self.assertEqual(run_("function n() end print(n())"), "nil\n")

    def test_locals_do_not_leak(self):
        source = """
        function f() local x = 5 return x end
        x = 1
        print(f(), x)
        """
        self.assertEqual(run_(source), "5\t1\n")

    def test_assignment_inside_function_writes_global(self):
        self.assertEqual(run_("function g() y = 42 end g() print(y)"), "42\n")

    def test_parameter_assignment_stays_local(self):
        source = """
        a = 1
        function set(a) a = 2 return a end
        print(set(0), a)
        """
        self.assertEqual(run_(source), "2\t1\n")

    def test_function_references_in_variables(self):
        self.assertEqual(run_('local p = print p("v")'), "v\n")

    def test_calling_a_number_raises(self):
        with self.assertRaises(RunError) as cm:
            run_("x = 5 x()")
        self.assertIn("attempt to call a number value", str(cm.exception))

    def test_redefinition_overwrites(self):
        source = """
        function f() return 1 end
        function f() return 2 end
        print(f())
        """
        self.assertEqual(run_(source), "2\n")

    def test_type_errors(self):
        for source in ("x = nil + 1", "x = 1 < 'a'", "x = #5", "x = 1 % 0", "x = {} .. 'a'"):
            with self.subTest(source=source):
                with self.assertRaises(RunError):
                    run_(source)

    def test_table_literal_is_not_evaluable(self):
        with self.assertRaises(InterpreterError) as cm:
            interpret("t = {1, 2}")
        self.assertIn("TABLE_LITERAL", str(cm.exception))

    def test_error_traceback(self):
        source = """
        function inner() undefinedFn() end
        function outer() inner() end
        outer()
        """
        interpreter = Interpreter(stdout=io.StringIO())
        with self.assertRaises(InterpreterError) as cm:
            interpreter.run(parse_(source).root)
        self.assertEqual([name for name, _ in cm.exception.traceback], ["main", "outer", "inner"])
        self.assertEqual(cm.exception.traceback[-1][1], 1)
        self.assertIn("stack traceback:", str(cm.exception))
        self.assertEqual(interpreter.call_depth, 0)

    def test_instances_are_isolated(self):
        first = interpret("x = 1 function f() end")
        second = interpret("y = 2")
        self.assertIn("x", first.globals)
        self.assertNotIn("x", second.globals)
        self.assertIn("f", first.functions)
        self.assertNotIn("f", second.functions)

    def test_trace_callback(self):
        lines = []
        interpret("function f(a) return a end f(3)", trace=lines.append)
        self.assertIn("call f(3) depth=2", lines)
        self.assertIn("return 3 from f", lines)

    def test_variable_store_slots(self):
        store = VariableStore()
        self.assertEqual(store.declare("a", 1), 0)
        self.assertEqual(store.declare("b", 2), 1)
        self.assertEqual(store.declare("a", 3), 0)
        self.assertEqual(store.slice(range(0, 2)), [3, 2])
        self.assertEqual(store.names(), ["a", "b"])

    def test_frame_locals_follow_params(self):
        frame = StackFrame(FunctionDef("f"))
        frame.variables.declare("p", 1)
        frame.params = range(1)
        frame.variables.declare("l", 2)
        self.assertEqual(frame.locals, range(1, 2))

    def test_value_helpers(self):
        self.assertEqual(tostring(None), "nil")
        self.assertEqual(tostring(2.0), "2.0")
        self.assertEqual(tostring(FunctionDef("f")), "function: function 'f'")
        self.assertEqual(tonumber(" 12 "), 12)
        self.assertEqual(tonumber("1e2"), 100.0)
        self.assertIsNone(tonumber(True))
        self.assertIsNone(tonumber("\u0661\u0662"))


# ═══════════════════════════════════════════════════════════════════════════════
# Runner Tests
# ═══════════════════════════════════════════════════════════════════════════════

class TestRunner(unittest.TestCase):

    def test_run_source_returns_interpreter(self):
        interpreter = run_source("x = 1 + 1", stdout=io.StringIO())
        self.assertEqual(interpreter.globals.get("x"), 2)

    def test_lex_errors_abort(self):
        with self.assertRaises(RunError) as cm:
            run_source("x = 1 $ print(1)", stdout=io.StringIO())
        codes = [d.code for d in cm.exception.diagnostics]
        self.assertEqual(codes, [ErrorCode.LEXER_UNEXPECTED_CHARACTER])
        self.assertIn("Lexing failed", str(cm.exception))

    def test_parse_errors_abort_before_running(self):
        out = io.StringIO()
        with self.assertRaises(RunError) as cm:
            run_source('print("early") x = = 1', stdout=out)
        self.assertEqual(out.getvalue(), "")
        self.assertEqual(cm.exception.diagnostics[0].code, ErrorCode.PARSER_EXPECTED_EXPRESSION)

    def test_runtime_error_is_chained(self):
        with self.assertRaises(RunError) as cm:
            run_source("undefinedFn()", stdout=io.StringIO())
        self.assertIsInstance(cm.exception.__cause__, InterpreterError)

    def test_run_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "hello.lua")
            with open(path, "w", encoding="utf-8") as f:
                f.write(HELLO)
            out = io.StringIO()
            run_file(path, stdout=out)
        self.assertEqual(out.getvalue(), "hi\n")

    def test_run_file_missing(self):
        with self.assertRaises(RunError) as cm:
            run_file(os.path.join(tempfile.gettempdir(), "no-such-moonwalk-file.lua"))
        self.assertEqual(cm.exception.diagnostics[0].code, ErrorCode.INPUT_FILE_NOT_FOUND)

    def test_dump_ast(self):
        tree = json.loads(dump_ast(HELLO))
        self.assertEqual(tree["kind"], "SCRIPT")
        self.assertEqual(tree["children"][0]["kind"], "FUNCTION_DEFINITION")
        self.assertEqual(tree["children"][0]["value"], "f")
        self.assertEqual(tree["children"][1]["kind"], "FUNCTION_CALL")

    def test_verbose_flags_log_without_changing_output(self):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stderr(err):
            run_source(
                HELLO, verbose_lexing=True, verbose_parsing=True,
                verbose_execution=True, stdout=out,
            )
        self.assertEqual(out.getvalue(), "hi\n")
        log = err.getvalue()
        self.assertIn("[moonwalk] Lexing: 12 tokens", log)
        self.assertIn("FUNCTION_DEFINITION 'f'", log)
        self.assertIn("call print(hi)", log)

    def test_diagnostic_format(self):
        self.assertEqual(
            str(Diagnostic(ErrorCode.PARSER_EXPECTED_KEYWORD, "expected 'end'", 3, 5)),
            "[E102] 3:5: expected 'end'",
        )
        self.assertEqual(
            str(Diagnostic(ErrorCode.INPUT_FILE_NOT_FOUND, "missing")),
            "[E000]: missing",
        )


# ═══════════════════════════════════════════════════════════════════════════════
# CLI Tests
# ═══════════════════════════════════════════════════════════════════════════════

class TestCli(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmp.name, "script.lua")
        with open(self.path, "w", encoding="utf-8") as f:
            f.write(HELLO)

    def tearDown(self):
        self._tmp.cleanup()

    def test_runs_script(self):
        out = io.StringIO()
        with redirect_stdout(out):
            main([self.path])
        self.assertEqual(out.getvalue(), "hi\n")

    def test_emit_ast(self):
        out = io.StringIO()
        with redirect_stdout(out):
            main([self.path, "--emit-ast"])
        self.assertEqual(json.loads(out.getvalue())["kind"], "SCRIPT")

    def test_missing_file_exits_1(self):
        err = io.StringIO()
        with redirect_stderr(err), self.assertRaises(SystemExit) as cm:
            main([self.path + ".missing"])
        self.assertEqual(cm.exception.code, 1)
        self.assertIn("not found", err.getvalue())

    def test_runtime_error_exits_1(self):
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("undefinedFn()")
        err = io.StringIO()
        with redirect_stderr(err), self.assertRaises(SystemExit) as cm:
            main([self.path])
        self.assertEqual(cm.exception.code, 1)
        self.assertIn("undefinedFn", err.getvalue())


if __name__ == "__main__":
    unittest.main(verbosity=2)
