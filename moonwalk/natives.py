"""
moonwalk - Native Functions
The functions every interpreter registers before running a script.
"""

import math
from typing import Dict, List

from .values import FunctionDef, InterpreterError, is_number, tonumber, tostring, type_name


def _number_arg(args: List, index: int, fname: str):
    value = args[index] if index < len(args) else None
    number = tonumber(value) if isinstance(value, str) else value
    if not is_number(number):
        raise InterpreterError(
            f"bad argument #{index + 1} to '{fname}' (number expected, got {type_name(value)})"
        )
    return number


def _math_function(fname: str, fn):
    def native(args):
        x = _number_arg(args, 0, fname)
        try:
            return fn(x)
        except ValueError:
            return math.nan
        except OverflowError:
            return math.inf
    return native


def _log(x):
    if x == 0:
        return -math.inf
    return math.log(x)


def _rounding(fn):
    def rounded(x):
        if isinstance(x, int):
            return x
        if math.isinf(x) or math.isnan(x):
            return x
        return int(fn(x))
    return rounded


def make_natives(stdout=None) -> Dict[str, FunctionDef]:
    """
    Build the native function table. print writes to stdout, or to whatever
    sys.stdout is at call time when stdout is None.
    """

    def native_print(args):
        print("\t".join(tostring(arg) for arg in args), file=stdout)
        return None

    def native_tostring(args):
        return tostring(args[0])

    def native_tonumber(args):
        return tonumber(args[0])

    def native_type(args):
        return type_name(args[0])

    natives = {
        "print":    (native_print, None),
        "sqrt":     (_math_function("sqrt", math.sqrt), 1),
        "sin":      (_math_function("sin", math.sin), 1),
        "cos":      (_math_function("cos", math.cos), 1),
        "tan":      (_math_function("tan", math.tan), 1),
        "exp":      (_math_function("exp", math.exp), 1),
        "log":      (_math_function("log", _log), 1),
        "abs":      (_math_function("abs", abs), 1),
        "floor":    (_math_function("floor", _rounding(math.floor)), 1),
        "ceil":     (_math_function("ceil", _rounding(math.ceil)), 1),
        "tostring": (native_tostring, 1),
        "tonumber": (native_tonumber, 1),
        "type":     (native_type, 1),
    }
    return {
        name: FunctionDef(name, native=fn, param_count=count)
        for name, (fn, count) in natives.items()
    }
