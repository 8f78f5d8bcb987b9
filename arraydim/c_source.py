"""
C Source — tree-sitter front end for source-to-source transformations.

Provides the syntactic layer every transformation works on:
  • Parsing a translation unit into a tree-sitter tree (raw bytes kept
    for byte-accurate edits)
  • Tree helpers
  • Subscript expression decomposition
  • Integer / character literal classification and evaluation
  • Primitive type widths (for ``sizeof`` in array extents)
"""

import re
import logging
from typing import Dict, Optional, Tuple
from dataclasses import dataclass

import tree_sitter_c as tsc
from tree_sitter import Language, Parser, Node

logger = logging.getLogger(__name__)

C_LANGUAGE = Language(tsc.language())
_parser = Parser(C_LANGUAGE)


# ═══════════════════════════════════════════════════════════════════════
#  Type System
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class CType:
    """A primitive C type and its storage width."""
    name: str
    width: int              # width in bits (LP64 model)
    is_signed: bool

    def __repr__(self):
        s = "signed" if self.is_signed else "unsigned"
        return f"{self.name} ({s} {self.width}-bit)"


class TypeSystem:
    """Primitive C types, used to evaluate ``sizeof(type)`` in extents."""

    def __init__(self):
        self.types: Dict[str, CType] = {
            "char":   CType("char", 8, True),
            "signed char": CType("signed char", 8, True),
            "unsigned char": CType("unsigned char", 8, False),
            "short":  CType("short", 16, True),
            "short int": CType("short", 16, True),
            "unsigned short": CType("unsigned short", 16, False),
            "int":    CType("int", 32, True),
            "signed": CType("int", 32, True),
            "signed int": CType("int", 32, True),
            "unsigned int": CType("unsigned int", 32, False),
            "unsigned": CType("unsigned int", 32, False),
            "long":   CType("long", 64, True),
            "long int": CType("long", 64, True),
            "unsigned long": CType("unsigned long", 64, False),
            "long long": CType("long long", 64, True),
            "unsigned long long": CType("unsigned long long", 64, False),
            "float":  CType("float", 32, True),
            "double": CType("double", 64, True),
            "long double": CType("long double", 128, True),
            "_Bool":  CType("_Bool", 8, False),
            "bool":   CType("bool", 8, False),
        }

        for w in (8, 16, 32, 64):
            self.types[f"int{w}_t"] = CType(f"int{w}_t", w, True)
            self.types[f"uint{w}_t"] = CType(f"uint{w}_t", w, False)
        self.types["size_t"] = CType("size_t", 64, False)

    def get_type(self, type_name: str) -> Optional[CType]:
        """Resolve a type name string to a CType, ignoring qualifiers."""
        cleaned = re.sub(r'\b(const|volatile|register|restrict)\b', '', type_name)
        cleaned = re.sub(r'\s+', ' ', cleaned).strip()
        return self.types.get(cleaned)

    def size_of(self, type_name: str) -> Optional[int]:
        """Size in bytes of a primitive type, or None if unknown."""
        if "*" in type_name:
            return 8
        ctype = self.get_type(type_name)
        if ctype is None:
            return None
        return ctype.width // 8


# ═══════════════════════════════════════════════════════════════════════
#  Literals
# ═══════════════════════════════════════════════════════════════════════

_INT_LITERAL_RE = re.compile(
    r'^(0[xX][0-9a-fA-F]+|0[bB][01]+|0[0-7]*|[1-9][0-9]*)([uU]?(?:ll|LL|l|L)?[uU]?)$'
)

_CHAR_LITERAL_RE = re.compile(r"^(u8|[LuU])?'(.*)'$", re.DOTALL)

_SIMPLE_ESCAPES = {
    "n": 10, "t": 9, "r": 13, "a": 7, "b": 8, "f": 12, "v": 11,
    "\\": 92, "'": 39, '"': 34, "?": 63, "e": 27,
}


def _split_sign(text: str) -> Tuple[int, str]:
    # tree-sitter folds a leading sign into number_literal tokens
    text = text.replace("'", "").strip()
    if text[:1] == "-":
        return -1, text[1:].lstrip()
    if text[:1] == "+":
        return 1, text[1:].lstrip()
    return 1, text


def is_integer_literal(text: str) -> bool:
    return _INT_LITERAL_RE.match(_split_sign(text)[1]) is not None


def parse_integer_literal(text: str) -> Optional[int]:
    """Value of a C integer literal, or None for anything else (e.g. floats)."""
    sign, body = _split_sign(text)
    m = _INT_LITERAL_RE.match(body)
    if m is None:
        return None
    digits = m.group(1)
    if digits[:2] in ("0x", "0X"):
        value = int(digits[2:], 16)
    elif digits[:2] in ("0b", "0B"):
        value = int(digits[2:], 2)
    elif digits.startswith("0"):
        value = int(digits, 8)
    else:
        value = int(digits, 10)
    return sign * value


def parse_char_literal(text: str) -> Optional[int]:
    """Value of a single-character C character literal.

    Plain ``char`` literals holding an octal or hex escape are
    sign-extended the way an 8-bit signed ``char`` is.  Universal character
    names (``\\u``/``\\U``) evaluate to their code point in prefixed
    literals.  Returns None where the value is implementation-defined
    (multi-character literals, non-ASCII characters in a plain literal)
    or the literal is malformed.
    """
    m = _CHAR_LITERAL_RE.match(text)
    if m is None:
        return None
    prefix, body = m.group(1), m.group(2)
    if not body:
        return None

    if body[0] != "\\":
        if len(body) != 1:
            return None
        value = ord(body)
        if prefix is None and value > 0x7F:
            return None
        return value

    esc = body[1:]
    if not esc:
        return None
    if esc in _SIMPLE_ESCAPES:
        return _SIMPLE_ESCAPES[esc]
    if re.fullmatch(r'u[0-9a-fA-F]{4}|U[0-9a-fA-F]{8}', esc):
        value = int(esc[1:], 16)
        if value > 0x10FFFF or (prefix is None and value > 0x7F):
            return None
        return value
    if re.fullmatch(r'[0-7]{1,3}', esc):
        value = int(esc, 8)
    elif re.fullmatch(r'x[0-9a-fA-F]+', esc):
        value = int(esc[1:], 16)
    else:
        return None

    if prefix is None and value > 0x7F:
        value -= 0x100
    return value


# ═══════════════════════════════════════════════════════════════════════
#  Parsed translation unit
# ═══════════════════════════════════════════════════════════════════════

class CSource:
    """A parsed translation unit: raw source bytes plus its syntax tree."""

    def __init__(self, source, name: str = "<input>"):
        if isinstance(source, str):
            source = source.encode("utf-8")
        self.name = name
        self.source: bytes = source
        self.tree = _parser.parse(source)
        if self.tree.root_node.has_error:
            logger.warning("Parse errors in %s; continuing with a partial tree", name)

    @property
    def root(self) -> Node:
        return self.tree.root_node


# ═══════════════════════════════════════════════════════════════════════
#  Tree traversal helpers
# ═══════════════════════════════════════════════════════════════════════

def node_text(node: Node, source: bytes) -> str:
    return source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")


def strip_parens(node: Node) -> Node:
    """Unwrap ``( expr )`` layers."""
    while node.type == "parenthesized_expression":
        inner = [c for c in node.named_children if c.type != "comment"]
        if len(inner) != 1:
            break
        node = inner[0]
    return node


def subscript_parts(node: Node) -> Tuple[Node, Node, Node, Node]:
    """Split ``base[index]`` into (base, '[' token, index, ']' token)."""
    lbracket = rbracket = None
    for child in node.children:
        if child.type == "[" and lbracket is None:
            lbracket = child
        elif child.type == "]":
            rbracket = child

    base = node.child_by_field_name("argument")
    index = node.child_by_field_name("index")
    if base is None:
        base = node.named_children[0]
    if index is None:
        index = next(
            c for c in node.named_children
            if c.start_byte > lbracket.start_byte and c.type != "comment"
        )
    return base, lbracket, index, rbracket
