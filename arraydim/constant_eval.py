"""
Integer constant expression evaluation for array extents.

``ConstantEvaluator.evaluate()`` returns the value of an expression node,
or None when the expression is not an integer constant expression (which,
for an array extent, makes the array variable-length).
"""

import logging
from typing import Callable, Optional, Set

from tree_sitter import Node

from arraydim.c_source import (
    TypeSystem, CSource, node_text, parse_integer_literal, parse_char_literal,
)
from arraydim.preprocessor import MacroTable

logger = logging.getLogger(__name__)

# name -> value of an ordinary identifier (enumerator), or None
Lookup = Callable[[str], Optional[int]]


def _c_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


def _c_mod(a: int, b: int) -> int:
    return a - b * _c_div(a, b)


_BINARY_OPS = {
    "+":  lambda a, b: a + b,
    "-":  lambda a, b: a - b,
    "*":  lambda a, b: a * b,
    "<<": lambda a, b: a << b,
    ">>": lambda a, b: a >> b,
    "&":  lambda a, b: a & b,
    "|":  lambda a, b: a | b,
    "^":  lambda a, b: a ^ b,
    "<":  lambda a, b: int(a < b),
    ">":  lambda a, b: int(a > b),
    "<=": lambda a, b: int(a <= b),
    ">=": lambda a, b: int(a >= b),
    "==": lambda a, b: int(a == b),
    "!=": lambda a, b: int(a != b),
    "&&": lambda a, b: int(bool(a) and bool(b)),
    "||": lambda a, b: int(bool(a) or bool(b)),
}


class ConstantEvaluator:
    """Evaluates integer constant expressions over tree-sitter nodes."""

    def __init__(self, source: bytes, macros: Optional[MacroTable] = None,
                 type_system: Optional[TypeSystem] = None):
        self.source = source
        self.macros = macros
        self.type_system = type_system or TypeSystem()
        self._expanding: Set[str] = set()

    def evaluate(self, node: Node, lookup: Lookup) -> Optional[int]:
        return self._eval(node, self.source, lookup)

    def _eval(self, node: Node, source: bytes, lookup: Lookup) -> Optional[int]:
        kind = node.type

        if kind == "number_literal":
            return parse_integer_literal(node_text(node, source))

        if kind == "char_literal":
            return parse_char_literal(node_text(node, source))

        if kind == "parenthesized_expression":
            inner = [c for c in node.named_children if c.type != "comment"]
            if len(inner) != 1:
                return None
            return self._eval(inner[0], source, lookup)

        if kind == "cast_expression":
            value = node.child_by_field_name("value")
            return self._eval(value, source, lookup) if value is not None else None

        if kind == "identifier":
            return self._eval_identifier(node_text(node, source), lookup)

        if kind == "unary_expression":
            operand = node.child_by_field_name("argument")
            op = node.child_by_field_name("operator")
            if operand is None or op is None:
                return None
            val = self._eval(operand, source, lookup)
            if val is None:
                return None
            op_text = node_text(op, source)
            if op_text == "-":
                return -val
            if op_text == "+":
                return val
            if op_text == "~":
                return ~val
            if op_text == "!":
                return int(not val)
            return None

        if kind == "binary_expression":
            left = node.child_by_field_name("left")
            right = node.child_by_field_name("right")
            op = node.child_by_field_name("operator")
            if left is None or right is None or op is None:
                return None
            lval = self._eval(left, source, lookup)
            rval = self._eval(right, source, lookup)
            if lval is None or rval is None:
                return None
            op_text = node_text(op, source)
            if op_text in ("/", "%"):
                if rval == 0:
                    return None
                return _c_div(lval, rval) if op_text == "/" else _c_mod(lval, rval)
            if op_text in ("<<", ">>") and rval < 0:
                return None
            fn = _BINARY_OPS.get(op_text)
            return fn(lval, rval) if fn else None

        if kind == "conditional_expression":
            cond = node.child_by_field_name("condition")
            then = node.child_by_field_name("consequence")
            other = node.child_by_field_name("alternative")
            if cond is None or then is None or other is None:
                return None
            cval = self._eval(cond, source, lookup)
            if cval is None:
                return None
            return self._eval(then if cval else other, source, lookup)

        if kind == "sizeof_expression":
            type_node = node.child_by_field_name("type")
            if type_node is None:
                return None
            if type_node.child_by_field_name("declarator") is not None:
                # sizeof(int[4]) and friends: only plain pointers are sized
                decl = type_node.child_by_field_name("declarator")
                if decl.type != "abstract_pointer_declarator":
                    return None
                return 8
            return self.type_system.size_of(node_text(type_node, source))

        return None

    def _eval_identifier(self, name: str, lookup: Lookup) -> Optional[int]:
        if self.macros is not None and name in self.macros:
            return self._eval_macro(name, lookup)
        return lookup(name)

    def _eval_macro(self, name: str, lookup: Lookup) -> Optional[int]:
        if name in self._expanding:
            return None
        body = self.macros.get(name)
        if not body:
            return None

        # Parse the body in a declaration context to get an expression node.
        probe = CSource(f"int __arraydim_probe = ({body});", name=f"<macro {name}>")
        decl = probe.root.named_children[0] if probe.root.named_children else None
        init = decl.child_by_field_name("declarator") if decl is not None else None
        value = init.child_by_field_name("value") if init is not None else None
        if value is None:
            logger.debug("Macro %s does not parse as an expression", name)
            return None

        self._expanding.add(name)
        try:
            return self._eval(value, probe.source, lookup)
        finally:
            self._expanding.discard(name)
