"""moonwalk - a tree-walking interpreter for a Lua-like scripting language."""

from .runner import RunError, dump_ast, parse_source, run_file, run_source

__version__ = "0.1.0"
