"""
Scope resolution — canonical identities for a single translation unit.

A single ordered walk over the tree-sitter tree produces:
  • VarDecl records for every variable declarator, in source order
  • identifier → Entity resolution honoring C block scoping
  • every subscript expression, in post-order (inner before outer)

Redeclarations of the same object (``extern int a[][3]; int a[2][3];``)
resolve to one Entity, which is the canonical identity transformations
select and compare against.
"""

import logging
from typing import Dict, List, Optional, Set, Tuple
from dataclasses import dataclass, field

from tree_sitter import Node

from arraydim.c_source import CSource, node_text
from arraydim.constant_eval import ConstantEvaluator
from arraydim.preprocessor import MacroTable

logger = logging.getLogger(__name__)

# Nodes whose identifiers are not references to ordinary identifiers
_SKIP_TYPES = {
    "preproc_def", "preproc_function_def", "preproc_call", "preproc_include",
    "comment", "string_literal", "system_lib_string", "attribute_specifier",
}

# Declarator wrappers that do not change the declared type
_TRANSPARENT_DECLARATORS = {"parenthesized_declarator", "attributed_declarator"}


# ═══════════════════════════════════════════════════════════════════════
#  Data types
# ═══════════════════════════════════════════════════════════════════════

@dataclass(eq=False)
class Entity:
    """The canonical identity shared by all declarations of one object."""
    name: str
    kind: str               # "variable", "parameter", "function", "enumerator"
    linkage: str = "none"   # "external", "internal", "none"
    value: Optional[int] = None  # enumerators only

    def __repr__(self):
        return f"Entity({self.name!r}, {self.kind}, {self.linkage})"


@dataclass
class Dimension:
    """One array extent.

    Four kinds: fixed (known value), incomplete (``[]``), constant with a
    value this front end cannot compute (``[sizeof(struct S)]`` on an
    object that can never be variable-length), and variable-length.
    """
    extent: Optional[int]
    size_node: Optional[Node] = None
    is_variable: bool = False
    array_declarator: Optional[Node] = None

    @property
    def is_incomplete(self) -> bool:
        return self.size_node is None and not self.is_variable

    @property
    def is_fixed(self) -> bool:
        return self.extent is not None

    @property
    def is_unknown(self) -> bool:
        return self.size_node is not None and self.extent is None and not self.is_variable


@dataclass
class VarDecl:
    """One declarator of a variable."""
    name: str
    entity: Entity
    name_node: Node
    declarator: Node
    declaration: Node
    dims: List[Dimension] = field(default_factory=list)   # outermost first
    element_is_array: bool = False  # element type is an array typedef

    @property
    def dimensionality(self) -> int:
        return len(self.dims)

    @property
    def line(self) -> int:
        return self.name_node.start_point[0] + 1


class Scope:
    """A lexical scope mapping ordinary identifiers to entities."""

    def __init__(self, parent: Optional["Scope"] = None, kind: str = "block"):
        self.parent = parent
        self.kind = kind
        self.names: Dict[str, Entity] = {}

    @property
    def is_file(self) -> bool:
        return self.kind == "file"

    def declare(self, name: str, entity: Entity):
        self.names[name] = entity

    def lookup(self, name: str) -> Optional[Entity]:
        scope = self
        while scope is not None:
            entity = scope.names.get(name)
            if entity is not None:
                return entity
            scope = scope.parent
        return None


# ═══════════════════════════════════════════════════════════════════════
#  Translation unit
# ═══════════════════════════════════════════════════════════════════════

class TranslationUnit:
    """Resolved view of a parsed C source file."""

    def __init__(self, csource: CSource, macros: Optional[MacroTable] = None):
        self.csource = csource
        self.macros = macros
        self.var_decls: List[VarDecl] = []
        self.subscripts: List[Node] = []
        self._refs: Dict[Tuple[int, int], Entity] = {}
        _ScopeWalker(self).run()

    @classmethod
    def from_text(cls, text, name: str = "<input>",
                  defines: Optional[Dict[str, str]] = None) -> "TranslationUnit":
        csource = CSource(text, name=name)
        macros = MacroTable(defines).load(
            csource.source.decode("utf-8", errors="replace"), source_name=name)
        return cls(csource, macros)

    @property
    def source(self) -> bytes:
        return self.csource.source

    def text(self, node: Node) -> str:
        return node_text(node, self.csource.source)

    def resolve(self, identifier: Node) -> Optional[Entity]:
        """Entity an identifier node refers to (None if undeclared)."""
        return self._refs.get((identifier.start_byte, identifier.end_byte))

    def declarations_of(self, entity: Entity) -> List[VarDecl]:
        return [d for d in self.var_decls if d.entity is entity]


class _ScopeWalker:
    """Single source-order walk that fills a TranslationUnit."""

    def __init__(self, unit: TranslationUnit):
        self.unit = unit
        self.source = unit.csource.source
        self.evaluator = ConstantEvaluator(self.source, unit.macros)
        self.file_scope = Scope(kind="file")
        self._external: Dict[str, Entity] = {}
        self._array_typedefs: Set[str] = set()

    def run(self):
        for child in self.unit.csource.root.children:
            self._walk(child, self.file_scope)
        logger.debug("Resolved %d variable declarators, %d subscripts",
                     len(self.unit.var_decls), len(self.unit.subscripts))

    # ────────────────────────────────────────────────────────────────
    #  Dispatch
    # ────────────────────────────────────────────────────────────────

    def _walk(self, node: Node, scope: Scope):
        kind = node.type
        if kind in _SKIP_TYPES:
            return
        if kind == "identifier":
            entity = scope.lookup(node_text(node, self.source))
            if entity is not None:
                self.unit._refs[(node.start_byte, node.end_byte)] = entity
            return
        if kind == "declaration":
            self._walk_declaration(node, scope)
            return
        if kind == "function_definition":
            self._walk_function(node, scope)
            return
        if kind == "type_definition":
            self._walk_typedef(node, scope)
            return
        if kind == "enum_specifier":
            self._walk_enum(node, scope)
            return
        if kind in ("compound_statement", "for_statement"):
            scope = Scope(scope)
        elif kind == "parameter_list":
            scope = Scope(scope, kind="prototype")

        for child in node.children:
            self._walk(child, scope)

        if kind == "subscript_expression":
            self.unit.subscripts.append(node)

    # ────────────────────────────────────────────────────────────────
    #  Declarations
    # ────────────────────────────────────────────────────────────────

    def _walk_declaration(self, node: Node, scope: Scope):
        storage = {node_text(c, self.source) for c in node.children
                   if c.type == "storage_class_specifier"}
        type_node = node.child_by_field_name("type")
        if type_node is not None:
            self._walk(type_node, scope)
        element_is_array = (
            type_node is not None and type_node.type == "type_identifier"
            and node_text(type_node, self.source) in self._array_typedefs
        )

        for decl in node.children_by_field_name("declarator"):
            value = None
            if decl.type == "init_declarator":
                value = decl.child_by_field_name("value")
                decl = decl.child_by_field_name("declarator")
            if decl is not None:
                self._declare(decl, node, storage, element_is_array, scope)
            if value is not None:
                self._walk(value, scope)

    def _declare(self, declarator: Node, declaration: Node, storage: Set[str],
                 element_is_array: bool, scope: Scope):
        name_node, derivations = self._unwind(declarator, scope)
        if name_node is None:
            return
        name = node_text(name_node, self.source)

        if derivations and derivations[0].type == "function_declarator":
            self._link(name, "function", storage, scope)
            return

        entity = self._link(name, "variable", storage, scope)
        # Objects with static storage or linkage can never be variable-length
        never_vla = scope.is_file or bool(storage & {"static", "extern"})
        dims = []
        for deriv in derivations:
            if deriv.type != "array_declarator":
                break
            dims.append(self._dimension(deriv, scope, never_vla))

        self.unit.var_decls.append(VarDecl(
            name=name, entity=entity, name_node=name_node,
            declarator=declarator, declaration=declaration,
            dims=dims, element_is_array=element_is_array,
        ))

    def _link(self, name: str, kind: str, storage: Set[str], scope: Scope) -> Entity:
        """Find or create the canonical entity for a new declaration."""
        is_static = "static" in storage
        is_extern = "extern" in storage

        if scope.is_file:
            existing = scope.names.get(name)
            if existing is not None and existing.kind == kind:
                return existing
            entity = None if is_static else self._external.get(name)
            if entity is None or entity.kind != kind:
                linkage = "internal" if is_static else "external"
                entity = Entity(name, kind, linkage)
                if linkage == "external":
                    self._external[name] = entity
            scope.declare(name, entity)
            return entity

        if is_extern or kind == "function":
            visible = scope.lookup(name)
            if visible is not None and visible.kind == kind and visible.linkage != "none":
                entity = visible
            else:
                entity = self._external.get(name)
                if entity is None or entity.kind != kind:
                    entity = Entity(name, kind, "external")
                    self._external[name] = entity
            scope.declare(name, entity)
            return entity

        entity = Entity(name, kind)
        scope.declare(name, entity)
        return entity

    def _unwind(self, declarator: Node, scope: Scope) -> Tuple[Optional[Node], List[Node]]:
        """Descend a declarator to its name.

        Returns (name node, derivations) where derivations are the array,
        pointer and function declarators ordered from the name outward,
        i.e. the first one is the top-level type of the declared name.
        """
        path: List[Node] = []
        node = declarator
        while node is not None:
            kind = node.type
            if kind in ("identifier", "type_identifier"):
                return node, list(reversed(path))
            if kind == "array_declarator":
                size = node.child_by_field_name("size")
                if size is not None:
                    self._walk(size, scope)
                path.append(node)
                node = node.child_by_field_name("declarator")
            elif kind == "pointer_declarator":
                path.append(node)
                node = node.child_by_field_name("declarator")
            elif kind == "function_declarator":
                params = node.child_by_field_name("parameters")
                if params is not None:
                    self._walk_parameters(params, Scope(scope, kind="prototype"))
                path.append(node)
                node = node.child_by_field_name("declarator")
            elif kind in _TRANSPARENT_DECLARATORS:
                inner = [c for c in node.named_children
                         if c.type not in ("ms_call_modifier", "attribute_declaration")]
                node = inner[0] if inner else None
            else:
                self._walk(node, scope)
                return None, []
        return None, []

    def _dimension(self, array_declarator: Node, scope: Scope,
                   never_vla: bool = False) -> Dimension:
        size = array_declarator.child_by_field_name("size")
        if size is None:
            has_star = any(c.type == "*" for c in array_declarator.children)
            return Dimension(extent=None, is_variable=has_star,
                             array_declarator=array_declarator)
        extent = self.evaluator.evaluate(size, lambda n: self._enum_value(n, scope))
        if extent is None and never_vla:
            logger.debug("Extent %r is constant but not computable",
                         node_text(size, self.source))
            return Dimension(extent=None, size_node=size,
                             array_declarator=array_declarator)
        if extent is None or extent < 0:
            return Dimension(extent=None, size_node=size, is_variable=True,
                             array_declarator=array_declarator)
        return Dimension(extent=extent, size_node=size, array_declarator=array_declarator)

    @staticmethod
    def _enum_value(name: str, scope: Scope) -> Optional[int]:
        entity = scope.lookup(name)
        if entity is not None and entity.kind == "enumerator":
            return entity.value
        return None

    # ────────────────────────────────────────────────────────────────
    #  Functions, typedefs, enums
    # ────────────────────────────────────────────────────────────────

    def _walk_function(self, node: Node, scope: Scope):
        type_node = node.child_by_field_name("type")
        if type_node is not None:
            self._walk(type_node, scope)

        param_scope = Scope(scope, kind="function")
        declarator = node.child_by_field_name("declarator")
        func_decl = None
        while declarator is not None:
            if declarator.type == "function_declarator":
                func_decl = declarator
                break
            if declarator.type in ("pointer_declarator", "attributed_declarator"):
                declarator = declarator.child_by_field_name("declarator")
            elif declarator.type == "parenthesized_declarator":
                declarator = declarator.named_children[0] if declarator.named_children else None
            else:
                break

        if func_decl is not None:
            name_node = func_decl.child_by_field_name("declarator")
            if name_node is not None and name_node.type == "identifier":
                storage = {node_text(c, self.source) for c in node.children
                           if c.type == "storage_class_specifier"}
                self._link(node_text(name_node, self.source), "function", storage, scope)
            params = func_decl.child_by_field_name("parameters")
            if params is not None:
                self._walk_parameters(params, param_scope)

        body = node.child_by_field_name("body")
        if body is not None:
            body_scope = Scope(param_scope)
            for child in body.children:
                self._walk(child, body_scope)

    def _walk_parameters(self, params: Node, scope: Scope):
        for param in params.named_children:
            if param.type != "parameter_declaration":
                continue
            type_node = param.child_by_field_name("type")
            if type_node is not None:
                self._walk(type_node, scope)
            declarator = param.child_by_field_name("declarator")
            if declarator is None:
                continue
            name_node, _ = self._unwind(declarator, scope)
            if name_node is not None and name_node.type == "identifier":
                name = node_text(name_node, self.source)
                # Array parameters decay to pointers: never array entities
                scope.declare(name, Entity(name, "parameter"))

    def _walk_typedef(self, node: Node, scope: Scope):
        type_node = node.child_by_field_name("type")
        if type_node is not None:
            self._walk(type_node, scope)
        base_is_array = (
            type_node is not None and type_node.type == "type_identifier"
            and node_text(type_node, self.source) in self._array_typedefs
        )
        for declarator in node.children_by_field_name("declarator"):
            name_node, derivations = self._unwind(declarator, scope)
            if name_node is None:
                continue
            name = node_text(name_node, self.source)
            first = derivations[0].type if derivations else None
            if first == "array_declarator" or (first is None and base_is_array):
                self._array_typedefs.add(name)
            else:
                self._array_typedefs.discard(name)

    def _walk_enum(self, node: Node, scope: Scope):
        body = node.child_by_field_name("body")
        if body is None:
            return
        next_val: Optional[int] = 0
        for enumerator in body.named_children:
            if enumerator.type != "enumerator":
                continue
            name_node = enumerator.child_by_field_name("name")
            if name_node is None:
                continue
            value_node = enumerator.child_by_field_name("value")
            value = next_val
            if value_node is not None:
                self._walk(value_node, scope)
                value = self.evaluator.evaluate(
                    value_node, lambda n: self._enum_value(n, scope))
            name = node_text(name_node, self.source)
            scope.declare(name, Entity(name, "enumerator", value=value))
            next_val = value + 1 if value is not None else None
