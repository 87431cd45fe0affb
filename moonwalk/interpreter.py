"""
moonwalk - AST Interpreter

Executes a parsed script on an explicit call stack. Python recursion is never
used to follow the program: each StackFrame carries its own stack of pending
tasks (statement cursors, expression steps, pending calls) and an operand
stack for evaluated values. One loop iteration runs one task of the topmost
frame. A call pushes a new frame and leaves the caller's remaining tasks
untouched until the callee's result lands on the caller's operand stack.
"""

import math
from typing import Callable, Dict, List, Optional

from .ast_nodes import LITERAL_KINDS, AstNode
from .natives import make_natives
from .values import (
    FunctionDef, InterpreterError, is_number, is_truthy, raw_equals,
    tonumber, tostring, type_name,
)

MAX_CALL_DEPTH = 200000


class VariableStore:
    """
    Insertion-ordered variable slots. A frame's parameters occupy the first
    slots, so slices of the store are plain index ranges.
    """

    def __init__(self):
        self._names: List[str] = []
        self._values: List = []
        self._index: Dict[str, int] = {}

    def declare(self, name: str, value) -> int:
        index = self._index.get(name)
        if index is None:
            index = len(self._values)
            self._names.append(name)
            self._values.append(value)
            self._index[name] = index
        else:
            self._values[index] = value
        return index

    def get(self, name: str):
        return self._values[self._index[name]]

    def set(self, name: str, value) -> None:
        self._values[self._index[name]] = value

    def slice(self, slots: range) -> List:
        return self._values[slots.start:slots.stop]

    def names(self) -> List[str]:
        return list(self._names)

    def __contains__(self, name):
        return name in self._index

    def __len__(self):
        return len(self._values)


class StackFrame:
    def __init__(self, function: FunctionDef, variables: Optional[VariableStore] = None):
        self.function = function
        self.variables = variables if variables is not None else VariableStore()
        self.params = range(0)
        self.tasks: List[tuple] = []
        self.operands: List = []
        self.line = function.node.line if function.node is not None else 0

    @property
    def name(self) -> str:
        return self.function.name

    @property
    def locals(self) -> range:
        return range(self.params.stop, len(self.variables))


class Interpreter:
    def __init__(self, stdout=None, trace: Optional[Callable[[str], None]] = None):
        self.functions: Dict[str, FunctionDef] = make_natives(stdout)
        self.globals = VariableStore()
        self._call_stack: List[StackFrame] = []
        self._trace = trace

    # ------------------------------------------------------------------ public

    @property
    def call_depth(self) -> int:
        return len(self._call_stack)

    def run(self, root: AstNode) -> None:
        """Execute a SCRIPT node. Raises InterpreterError on failure."""
        main = StackFrame(FunctionDef("main", node=root), variables=self.globals)
        main.tasks.append((self._exec_block, root, 0))
        self._call_stack.append(main)

        try:
            while self._call_stack:
                frame = self._call_stack[-1]

                if frame.function.is_native:
                    result = frame.function.native(frame.variables.slice(frame.params))
                    self._return(result)
                    continue

                if not frame.tasks:
                    # fell off the end of the body
                    self._return(None)
                    continue

                handler, *args = frame.tasks.pop()
                handler(frame, *args)
        except InterpreterError as e:
            if not e.traceback:
                e.traceback = [(f.name, f.line) for f in self._call_stack]
            self._call_stack.clear()
            raise

    # ------------------------------------------------------------------ calls

    def _push_call(self, callee: FunctionDef, args: List) -> None:
        if len(self._call_stack) >= MAX_CALL_DEPTH:
            raise InterpreterError("stack overflow")

        frame = StackFrame(callee)
        if callee.is_native:
            count = len(args) if callee.param_count is None else callee.param_count
            names = [str(i + 1) for i in range(count)]
        else:
            names = callee.parameter_names()
            frame.tasks.append((self._exec_block, callee.body, 0))

        # missing arguments become nil, extra ones are dropped
        for i, name in enumerate(names):
            frame.variables.declare(name, args[i] if i < len(args) else None)
        frame.params = range(len(frame.variables))

        if self._trace:
            shown = ", ".join(tostring(a) for a in args)
            self._trace(f"call {callee.name}({shown}) depth={len(self._call_stack) + 1}")
        self._call_stack.append(frame)

    def _return(self, value) -> None:
        frame = self._call_stack.pop()
        if self._trace:
            self._trace(f"return {tostring(value)} from {frame.name}")
        if self._call_stack:
            self._call_stack[-1].operands.append(value)

    def _resolve_function(self, frame: StackFrame, name: str) -> FunctionDef:
        for store in (frame.variables, self.globals):
            if name in store:
                value = store.get(name)
                if isinstance(value, FunctionDef):
                    return value
                if value is not None:
                    raise InterpreterError(
                        f"attempt to call a {type_name(value)} value (variable '{name}')"
                    )
        callee = self.functions.get(name)
        if callee is None:
            raise InterpreterError(f"attempt to call an undefined function '{name}'")
        return callee

    def _call(self, frame: StackFrame, node: AstNode, argc: int) -> None:
        frame.line = node.line
        args = frame.operands[len(frame.operands) - argc:]
        del frame.operands[len(frame.operands) - argc:]
        self._push_call(self._resolve_function(frame, node.payload), args)

    # ------------------------------------------------------------------ statements

    def _exec_block(self, frame: StackFrame, block: AstNode, index: int) -> None:
        if index < len(block.children):
            frame.tasks.append((self._exec_block, block, index + 1))
            frame.tasks.append((self._exec, block.children[index]))

    def _exec(self, frame: StackFrame, node: AstNode) -> None:
        frame.line = node.line
        method = getattr(self, f"_exec_{node.kind.name.lower()}", None)
        if method is None:
            raise InterpreterError(f"cannot execute a {node.kind.name} node as a statement")
        method(frame, node)

    def _exec_statement_block(self, frame: StackFrame, node: AstNode) -> None:
        frame.tasks.append((self._exec_block, node, 0))

    def _exec_function_call(self, frame: StackFrame, node: AstNode) -> None:
        frame.tasks.append((self._discard,))
        self._eval_function_call(frame, node)

    def _exec_function_definition(self, frame: StackFrame, node: AstNode) -> None:
        params = node.children[0].children
        self.functions[node.payload] = FunctionDef(node.payload, node=node, param_count=len(params))

    def _exec_local_variable_declaration(self, frame: StackFrame, node: AstNode) -> None:
        frame.tasks.append((self._assign_local, node.payload))
        frame.tasks.append((self._eval, node.children[0]))

    def _exec_variable_declaration(self, frame: StackFrame, node: AstNode) -> None:
        frame.tasks.append((self._assign, node.payload))
        frame.tasks.append((self._eval, node.children[0]))

    def _exec_if(self, frame: StackFrame, node: AstNode) -> None:
        frame.tasks.append((self._branch, node))
        frame.tasks.append((self._eval, node.children[0]))

    def _exec_while(self, frame: StackFrame, node: AstNode) -> None:
        frame.tasks.append((self._loop_exit,))
        frame.tasks.append((self._while_test, node))

    def _exec_until(self, frame: StackFrame, node: AstNode) -> None:
        frame.tasks.append((self._loop_exit,))
        frame.tasks.append((self._repeat, node))

    def _exec_for(self, frame: StackFrame, node: AstNode) -> None:
        start, stop, step, _ = node.children
        frame.tasks.append((self._loop_exit,))
        frame.tasks.append((self._for_start, node))
        frame.tasks.append((self._eval, step))
        frame.tasks.append((self._eval, stop))
        frame.tasks.append((self._eval, start))

    def _exec_return(self, frame: StackFrame, node: AstNode) -> None:
        if node.children:
            frame.tasks.append((self._return_value,))
            frame.tasks.append((self._eval, node.children[0]))
        else:
            self._return(None)

    def _exec_break(self, frame: StackFrame, node: AstNode) -> None:
        while frame.tasks:
            handler, *_ = frame.tasks.pop()
            if handler == self._loop_exit:
                return
        raise InterpreterError("break outside a loop")

    # ------------------------------------------------------------------ statement continuations

    def _discard(self, frame: StackFrame) -> None:
        frame.operands.pop()

    def _return_value(self, frame: StackFrame) -> None:
        self._return(frame.operands.pop())

    def _assign_local(self, frame: StackFrame, name: str) -> None:
        frame.variables.declare(name, frame.operands.pop())

    def _assign(self, frame: StackFrame, name: str) -> None:
        value = frame.operands.pop()
        if name in frame.variables:
            frame.variables.set(name, value)
        else:
            self.globals.declare(name, value)

    def _branch(self, frame: StackFrame, node: AstNode) -> None:
        if is_truthy(frame.operands.pop()):
            frame.tasks.append((self._exec_block, node.children[1], 0))
        elif len(node.children) > 2:
            frame.tasks.append((self._exec_block, node.children[2], 0))

    def _loop_exit(self, frame: StackFrame) -> None:
        """Marks where a loop's tasks end; break unwinds down to it."""

    def _while_test(self, frame: StackFrame, node: AstNode) -> None:
        frame.tasks.append((self._while_body, node))
        frame.tasks.append((self._eval, node.children[0]))

    def _while_body(self, frame: StackFrame, node: AstNode) -> None:
        if is_truthy(frame.operands.pop()):
            frame.tasks.append((self._while_test, node))
            frame.tasks.append((self._exec_block, node.children[1], 0))

    def _repeat(self, frame: StackFrame, node: AstNode) -> None:
        frame.tasks.append((self._until_test, node))
        frame.tasks.append((self._eval, node.children[0]))
        frame.tasks.append((self._exec_block, node.children[1], 0))

    def _until_test(self, frame: StackFrame, node: AstNode) -> None:
        if not is_truthy(frame.operands.pop()):
            frame.tasks.append((self._repeat, node))

    def _for_start(self, frame: StackFrame, node: AstNode) -> None:
        step = frame.operands.pop()
        stop = frame.operands.pop()
        start = frame.operands.pop()
        for what, value in (("initial", start), ("limit", stop), ("step", step)):
            if not is_number(value):
                raise InterpreterError(f"'for' {what} value must be a number")
        if step == 0:
            raise InterpreterError("'for' step is zero")
        if not all(isinstance(v, int) for v in (start, stop, step)):
            start, stop, step = float(start), float(stop), float(step)
        self._for_iterate(frame, node, start, stop, step)

    def _for_iterate(self, frame: StackFrame, node: AstNode, current, stop, step) -> None:
        if (step > 0 and current <= stop) or (step < 0 and current >= stop):
            frame.variables.declare(node.payload, current)
            frame.tasks.append((self._for_iterate, node, current + step, stop, step))
            frame.tasks.append((self._exec_block, node.children[3], 0))

    # ------------------------------------------------------------------ expressions

    def _eval(self, frame: StackFrame, node: AstNode) -> None:
        if node.kind in LITERAL_KINDS:
            frame.operands.append(node.value)
            return
        method = getattr(self, f"_eval_{node.kind.name.lower()}", None)
        if method is None:
            raise InterpreterError(f"cannot evaluate a {node.kind.name} node")
        method(frame, node)

    def _eval_identifier(self, frame: StackFrame, node: AstNode) -> None:
        name = node.payload
        if name in frame.variables:
            value = frame.variables.get(name)
        elif name in self.globals:
            value = self.globals.get(name)
        else:
            value = self.functions.get(name)
        frame.operands.append(value)

    def _eval_function_call(self, frame: StackFrame, node: AstNode) -> None:
        args = node.children[0].children
        frame.tasks.append((self._call, node, len(args)))
        for arg in reversed(args):
            frame.tasks.append((self._eval, arg))

    def _eval_unary_operation(self, frame: StackFrame, node: AstNode) -> None:
        frame.tasks.append((self._apply_unary, node.payload))
        frame.tasks.append((self._eval, node.children[0]))

    def _eval_binary_operation(self, frame: StackFrame, node: AstNode) -> None:
        lhs, rhs = node.children
        if node.payload in ("and", "or"):
            frame.tasks.append((self._short_circuit, node.payload, rhs))
        else:
            frame.tasks.append((self._apply_binary, node.payload))
            frame.tasks.append((self._eval, rhs))
        frame.tasks.append((self._eval, lhs))

    def _short_circuit(self, frame: StackFrame, op: str, rhs: AstNode) -> None:
        # the left operand stays as the result unless the right one is needed
        if is_truthy(frame.operands[-1]) == (op == "and"):
            frame.operands.pop()
            frame.tasks.append((self._eval, rhs))

    def _apply_unary(self, frame: StackFrame, op: str) -> None:
        frame.operands.append(unary_operation(op, frame.operands.pop()))

    def _apply_binary(self, frame: StackFrame, op: str) -> None:
        rhs = frame.operands.pop()
        lhs = frame.operands.pop()
        frame.operands.append(binary_operation(op, lhs, rhs))


# ── Operators ─────────────────────────────────────────────────────────────────

def _arith_operand(value):
    number = tonumber(value) if isinstance(value, str) else value
    if not is_number(number):
        raise InterpreterError(f"attempt to perform arithmetic on a {type_name(value)} value")
    return number


def _divide(a, b) -> float:
    a, b = float(a), float(b)
    if b == 0.0:
        if a == 0.0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def _modulo(a, b):
    if isinstance(a, int) and isinstance(b, int):
        if b == 0:
            raise InterpreterError("attempt to perform 'n%0'")
        return a % b
    if b == 0:
        return math.nan
    return float(a) % float(b)


def _is_odd_integer(x: float) -> bool:
    return x.is_integer() and x % 2 == 1


def _power(a, b) -> float:
    a, b = float(a), float(b)
    if a == 0.0 and b < 0:
        return math.copysign(math.inf, a) if _is_odd_integer(b) else math.inf
    try:
        return math.pow(a, b)
    except ValueError:
        # negative base, fractional exponent
        return math.nan
    except OverflowError:
        return math.copysign(math.inf, a) if _is_odd_integer(b) else math.inf


_ARITHMETIC = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
    "/": _divide,
    "%": _modulo,
    "^": _power,
}

_ORDERING = {
    "<":  lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">":  lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
}


def binary_operation(op: str, lhs, rhs):
    if op in _ARITHMETIC:
        return _ARITHMETIC[op](_arith_operand(lhs), _arith_operand(rhs))

    if op == "..":
        for value in (lhs, rhs):
            if not (isinstance(value, str) or is_number(value)):
                raise InterpreterError(f"attempt to concatenate a {type_name(value)} value")
        return tostring(lhs) + tostring(rhs)

    if op == "==":
        return raw_equals(lhs, rhs)
    if op == "~=":
        return not raw_equals(lhs, rhs)

    if op in _ORDERING:
        both_numbers = is_number(lhs) and is_number(rhs)
        both_strings = isinstance(lhs, str) and isinstance(rhs, str)
        if not (both_numbers or both_strings):
            raise InterpreterError(
                f"attempt to compare {type_name(lhs)} with {type_name(rhs)}"
            )
        return _ORDERING[op](lhs, rhs)

    raise InterpreterError(f"unknown binary operator '{op}'")


def unary_operation(op: str, operand):
    if op == "-":
        return -_arith_operand(operand)
    if op == "not":
        return not is_truthy(operand)
    if op == "#":
        if isinstance(operand, str):
            return len(operand)
        raise InterpreterError(f"attempt to get length of a {type_name(operand)} value")
    raise InterpreterError(f"unknown unary operator '{op}'")
