"""
moonwalk - AST Node Definitions
A single tagged node type: the kind says what the node is, the children list
holds its owned subtrees and the optional payload holds names and literals.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import List, Optional, Union


class AstKind(Enum):
    SCRIPT                     = auto()   # root node

    NIL_LITERAL                = auto()
    BOOLEAN_LITERAL            = auto()
    INTEGER_LITERAL            = auto()
    FLOAT_LITERAL              = auto()
    STRING_LITERAL             = auto()
    TABLE_LITERAL              = auto()   # parsed, not evaluated

    FUNCTION_DEFINITION        = auto()   # payload: name
    IF                         = auto()
    WHILE                      = auto()
    UNTIL                      = auto()
    FOR                        = auto()   # payload: loop variable
    LOCAL_VARIABLE_DECLARATION = auto()   # payload: name
    VARIABLE_DECLARATION       = auto()   # payload: name
    STATEMENT_BLOCK            = auto()
    RETURN                     = auto()
    BREAK                      = auto()

    IDENTIFIER                 = auto()   # payload: name
    FUNCTION_CALL              = auto()   # payload: callee name
    PARAMETER_LIST             = auto()
    BINARY_OPERATION           = auto()   # payload: operator
    UNARY_OPERATION            = auto()   # payload: operator


Payload = Union[bool, int, float, str]

LITERAL_KINDS = frozenset({
    AstKind.NIL_LITERAL, AstKind.BOOLEAN_LITERAL, AstKind.INTEGER_LITERAL,
    AstKind.FLOAT_LITERAL, AstKind.STRING_LITERAL,
})


@dataclass
class AstNode:
    kind: AstKind
    children: List["AstNode"] = field(default_factory=list)
    value: Optional[Payload] = None
    line: int = 0
    column: int = 0

    @property
    def payload(self) -> Payload:
        """The node's name or literal value. Absent payloads are a bug in the caller."""
        if self.value is None:
            raise ValueError(f"{self.kind.name} node carries no payload")
        return self.value


def format_tree(node: AstNode, indent: int = 0) -> str:
    """Indented one-node-per-line rendering, used by verbose parsing output."""
    head = f"{'  ' * indent}{node.kind.name}"
    if node.value is not None:
        head += f" {node.value!r}"
    lines = [head]
    for child in node.children:
        lines.append(format_tree(child, indent + 1))
    return "\n".join(lines)
