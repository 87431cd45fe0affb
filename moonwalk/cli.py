"""
moonwalk - Command Line Interface

Usage:
    moonwalk input.lua [--verbose-lexing] [--verbose-parsing] [--verbose-execution] [--emit-ast]
    python -m moonwalk input.lua
"""

import sys
import argparse


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="moonwalk",
        description="moonwalk - a tree-walking interpreter for a Lua-like scripting language",
    )
    parser.add_argument("input", help="Path to the .lua source file")
    parser.add_argument(
        "--verbose-lexing",
        action="store_true",
        dest="verbose_lexing",
        help="Print every token to stderr",
    )
    parser.add_argument(
        "--verbose-parsing",
        action="store_true",
        dest="verbose_parsing",
        help="Print the AST and parse diagnostics to stderr",
    )
    parser.add_argument(
        "--verbose-execution",
        action="store_true",
        dest="verbose_execution",
        help="Print every function call and return to stderr",
    )
    parser.add_argument(
        "--emit-ast",
        action="store_true",
        dest="emit_ast",
        help="Print the parsed AST as JSON instead of running the script",
    )

    args = parser.parse_args(argv)

    from .runner import RunError, dump_ast, run_file

    try:
        if args.emit_ast:
            with open(args.input, "r", encoding="utf-8") as f:
                print(dump_ast(f.read()))
        else:
            run_file(
                args.input,
                verbose_lexing=args.verbose_lexing,
                verbose_parsing=args.verbose_parsing,
                verbose_execution=args.verbose_execution,
            )
    except FileNotFoundError:
        print(f"[moonwalk] Error: Input file not found: {args.input!r}", file=sys.stderr)
        sys.exit(1)
    except RunError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
