"""
reduce-array-dim — merge the two innermost dimensions of one array.

    int a[2][3][4];
    void foo(void) { ... a[1][2][3] ... }
  ===>
    int a[2][12];
    void foo(void) { ... a[1][11] ... }

Constant indices are folded; any other index pair is linearized textually
as ``(second)*E+last`` where E is the innermost extent, so each index
expression is still evaluated exactly once.
"""

import logging
from typing import List, Optional, Set, Tuple
from dataclasses import dataclass

from tree_sitter import Node

from arraydim.c_source import (
    parse_integer_literal, parse_char_literal,
    strip_parens, subscript_parts,
)
from arraydim.rewrite_buffer import RewriteBuffer, OverlappingEditError
from arraydim.scope import Dimension, Entity, TranslationUnit, VarDecl
from arraydim.transformation import (
    InternalConsistencyError, Transformation, register_transformation,
)

logger = logging.getLogger(__name__)

DESCRIPTION = (
    "Reduce the dimension of an array. Each transformation iteration "
    "reduces one dimension in the following way:\n"
    "  int a[2][3][4];\n"
    "  void foo(void) {... a[1][2][3] ... }\n"
    "===>\n"
    "  int a[2][12];\n"
    "  void foo(void) {... a[1][11] ... }\n"
    "Constant indices are folded during the transformation; other indices "
    "become (i)*4+j. Array fields are not handled. Only fixed-size and "
    "incomplete arrays are handled; an incomplete array keeps its empty "
    "outer dimension, e.g., a[][2] is reduced to a[].\n"
)


@dataclass(frozen=True)
class ArrayDeclaration:
    """The selected array: its canonical entity and dimensions."""
    entity: Entity
    decl: VarDecl           # first eligible declarator of the entity
    instance: int           # 1-based eligible instance index

    @property
    def name(self) -> str:
        return self.entity.name

    @property
    def dimensionality(self) -> int:
        return self.decl.dimensionality


@dataclass(frozen=True)
class FlattenPlan:
    stride: int                     # innermost extent: multiplier for use-sites
    merged_extent: Optional[str]    # text written into the retained bracket


def bracket_spans(dims: List[Dimension]) -> List[Tuple[int, int]]:
    """The ``[`` and ``]`` token offsets of each dimension, outermost first.

    Each span is (offset of '[', offset of ']').  Tokens come from the
    array declarators, so brackets inside comments or size expressions
    are never mistaken for a dimension.  Dimensions whose brackets are
    missing (parser error recovery) yield no span.
    """
    spans = []
    for dim in dims:
        node = dim.array_declarator
        if node is None:
            continue
        opens = [c for c in node.children if c.type == "[" and not c.is_missing]
        closes = [c for c in node.children if c.type == "]" and not c.is_missing]
        if len(opens) != 1 or len(closes) != 1:
            continue
        spans.append((opens[0].start_byte, closes[0].start_byte))
    return spans


def is_eligible(decl: VarDecl) -> bool:
    dims = decl.dims
    if decl.dimensionality <= 1:
        return False
    if any(d.is_variable for d in dims):
        logger.debug("Skipping variable-length array %s (line %d)", decl.name, decl.line)
        return False
    if any(d.is_incomplete for d in dims[1:]):
        logger.debug("Skipping %s (line %d): incomplete inner dimension", decl.name, decl.line)
        return False
    if not dims[-1].is_fixed:
        logger.debug("Skipping %s (line %d): innermost extent is not computable",
                     decl.name, decl.line)
        return False
    if decl.element_is_array:
        logger.debug("Skipping %s (line %d): element type is an array typedef",
                     decl.name, decl.line)
        return False
    return True


# ═══════════════════════════════════════════════════════════════════════
#  Collection
# ═══════════════════════════════════════════════════════════════════════

class ArrayCandidateCollector:
    """Numbers eligible multi-dimensional arrays in declaration order."""

    def __init__(self, counter: int):
        self.counter = counter

    def collect(self, unit: TranslationUnit) -> Tuple[int, Optional[ArrayDeclaration]]:
        seen: Set[Entity] = set()
        count = 0
        selected = None
        for decl in unit.var_decls:
            if not is_eligible(decl):
                continue
            if decl.entity in seen:
                continue
            seen.add(decl.entity)
            count += 1
            if count == self.counter:
                selected = ArrayDeclaration(decl.entity, decl, count)
        return count, selected


# ═══════════════════════════════════════════════════════════════════════
#  Rewriting
# ═══════════════════════════════════════════════════════════════════════

class ArrayDimRewriter:
    """Rewrites the selected declaration(s) and all fully-indexed uses."""

    def __init__(self, unit: TranslationUnit, buffer: RewriteBuffer):
        self.unit = unit
        self.buffer = buffer

    def rewrite_declaration(self, decl: VarDecl) -> FlattenPlan:
        dims: List[Dimension] = decl.dims
        spans = bracket_spans(dims)
        if len(spans) < 2 or len(spans) != len(dims):
            raise InternalConsistencyError(
                f"Invalid bracket pairs for '{decl.name}' at line {decl.line}")

        last = dims[-1]
        if not last.is_fixed:
            raise InternalConsistencyError(
                f"Non-fixed innermost extent for '{decl.name}' at line {decl.line}")

        last_open, last_close = spans[-1]
        self.buffer.remove(last_open, last_close + 1)

        second = dims[-2]
        if second.is_fixed:
            merged = str(second.extent * last.extent)
        elif second.is_unknown:
            merged = f"({self.unit.text(second.size_node)})*{last.extent}"
        elif second.is_incomplete:
            merged = None
        else:
            raise InternalConsistencyError(
                f"Variable extent for '{decl.name}' at line {decl.line}")
        if merged is not None:
            sec_open, sec_close = spans[-2]
            self.buffer.replace(sec_open + 1, sec_close, merged)

        logger.info("Flattened declaration of %s at line %d (merged extent %s)",
                    decl.name, decl.line, merged if merged is not None else "incomplete")
        return FlattenPlan(stride=last.extent, merged_extent=merged)

    def rewrite_subscripts(self, target: ArrayDeclaration, plan: FlattenPlan) -> int:
        rewritten = 0
        for node in self.unit.subscripts:
            base, chain = unwind_subscripts(node)
            # Shorter chains are sub-array accesses; longer ones index the
            # element and are handled at their inner fully-indexed node.
            if len(chain) != target.dimensionality:
                continue
            if base.type != "identifier" or self.unit.resolve(base) is not target.entity:
                continue
            self._rewrite_one(chain, plan)
            rewritten += 1

        logger.info("Rewrote %d use-site(s) of %s", rewritten, target.name)
        return rewritten

    def _rewrite_one(self, chain: List[Node], plan: FlattenPlan):
        _, lbracket, last_idx, rbracket = subscript_parts(chain[-1])
        _, _, second_idx, _ = subscript_parts(chain[-2])

        last_text = self.buffer.get_rewritten_text(last_idx.start_byte, last_idx.end_byte)
        second_text = self.buffer.get_rewritten_text(second_idx.start_byte, second_idx.end_byte)

        self.buffer.remove(lbracket.start_byte, rbracket.end_byte)

        last_val = self._literal_value(last_idx)
        second_val = self._literal_value(second_idx)
        if last_val is not None and second_val is not None:
            new_index = str(second_val * plan.stride + last_val)
        else:
            new_index = f"({second_text})*{plan.stride}+{last_text}"
        self.buffer.replace(second_idx.start_byte, second_idx.end_byte, new_index)

    def _literal_value(self, index: Node) -> Optional[int]:
        """Value of an integer/character literal index.

        None for other expressions and for literals whose value is
        implementation-defined (``'ab'``); those are linearized textually.
        """
        expr = strip_parens(index)
        text = self.unit.text(expr)
        if expr.type == "number_literal":
            return parse_integer_literal(text)
        if expr.type == "char_literal":
            return parse_char_literal(text)
        return None


def unwind_subscripts(node: Node) -> Tuple[Node, List[Node]]:
    """Split a nested subscript into its base and subscript nodes.

    The returned chain is ordered like the indices in the source:
    ``a[i][j]`` yields (a, [a[i], a[i][j]]).
    """
    chain = []
    current = node
    while current.type == "subscript_expression":
        chain.append(current)
        base, _, _, _ = subscript_parts(current)
        current = strip_parens(base)
    chain.reverse()
    return current, chain


@register_transformation
class ReduceArrayDim(Transformation):
    name = "reduce-array-dim"
    description = DESCRIPTION

    def collect(self, unit: TranslationUnit) -> Tuple[int, Optional[ArrayDeclaration]]:
        return ArrayCandidateCollector(self.counter).collect(unit)

    def rewrite(self, unit: TranslationUnit, selected: ArrayDeclaration) -> str:
        buffer = RewriteBuffer(unit.source)
        rewriter = ArrayDimRewriter(unit, buffer)

        try:
            plan = None
            for decl in unit.declarations_of(selected.entity):
                decl_plan = rewriter.rewrite_declaration(decl)
                if plan is None:
                    plan = decl_plan
                elif decl_plan.stride != plan.stride:
                    raise InternalConsistencyError(
                        f"Redeclarations of '{selected.name}' disagree on the "
                        f"innermost extent ({plan.stride} vs {decl_plan.stride})")
            if plan is None:
                raise InternalConsistencyError(f"No declaration of '{selected.name}'")

            rewriter.rewrite_subscripts(selected, plan)
        except OverlappingEditError as e:
            raise InternalConsistencyError(str(e)) from e

        return buffer.render()
