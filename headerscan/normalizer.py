"""
Declaration normalizer — one tree-sitter declaration → CType registry entries.

Handles:
  • struct / union definitions, with unnamed nested aggregates hoisted into
    their own entries named ``<Enclosing>_<field>`` (any depth)
  • C11 anonymous members (field name ``anonymous_<n>``)
  • multi-dimensional arrays collapsed into one Array node
  • enums with explicit / auto-incremented values; anonymous enums become
    constants
  • typedefs, filtered through the suppression rule table
  • function pointers and function declarations
  • forward declarations of incomplete tags (→ Void)
  • object-like macros that expand to a numeric literal

All entries produced by one declaration are collected first and committed
to the registry only when the whole declaration normalized.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from tree_sitter import Node

from headerscan.constexpr import ConstantEvaluator, NotConstant, parse_macro_literal
from headerscan.errors import (
    DeclarationError,
    UnresolvableArrayDimensionError,
    UnsupportedTypeError,
)
from headerscan.frontend import Declaration, MacroDefinition, node_text, walk_type
from headerscan.model import (
    Array, CType, Constant, Enum, EnumVariant, Field, FunctionDecl, FunctionPointer,
    I32, I64, Named, Parameter, Pointer, Primitive, Record, TypeEntry, U32, U64, Void,
    BUILTIN_TYPES, builtin_type, format_type,
)
from headerscan.registry import TypeRegistry
from headerscan.rules import RuleTable

logger = logging.getLogger(__name__)

_RECORD_NODES = ("struct_specifier", "union_specifier")

# Leaf declarator node types; ``typedef _Bool bool;`` declares a primitive_type
_NAME_NODES = ("identifier", "field_identifier", "type_identifier", "primitive_type")


class SkipDeclaration(Exception):
    """A construct the type model has no place for; the declaration is dropped."""


@dataclass
class _Prototype:
    """A function type before it is decided whether it is a pointer target."""
    return_type: CType
    parameters: Tuple[Parameter, ...]
    variadic: bool

    def as_pointer(self) -> FunctionPointer:
        return FunctionPointer(
            self.return_type, tuple(p.type for p in self.parameters), self.variadic,
        )


@dataclass
class _Pending:
    decl: Declaration
    name: str = "<anonymous>"
    entries: List[Tuple[str, CType]] = field(default_factory=list)
    functions: List[FunctionDecl] = field(default_factory=list)

    def add(self, name: str, definition: CType):
        self.entries.append((name, definition))


# ═══════════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════════

def declarator_name(node: Optional[Node], source: bytes) -> Optional[str]:
    """Innermost identifier of a (possibly nested) declarator."""
    while node is not None:
        if node.is_missing:
            return None
        if node.type in _NAME_NODES:
            return node_text(node, source)
        inner = node.child_by_field_name("declarator")
        if inner is None and node.type in ("parenthesized_declarator", "attributed_declarator"):
            named = [c for c in node.named_children if c.type not in ("comment", "attribute_declaration")]
            inner = named[0] if named else None
        node = inner
    return None


def _has_const(node: Node, source: bytes) -> bool:
    return any(
        c.type == "type_qualifier" and node_text(c, source) == "const"
        for c in node.children
    )


def _enum_underlying(values: List[int]) -> Primitive:
    if not values:
        return I32
    lo, hi = min(values), max(values)
    if lo >= -(1 << 31) and hi < (1 << 31):
        return I32
    if lo >= 0 and hi < (1 << 32):
        return U32
    if lo >= -(1 << 63) and hi < (1 << 63):
        return I64
    return U64


def _decay(ctype: CType) -> CType:
    """Parameter adjustment: arrays and functions become pointers."""
    if isinstance(ctype, Array):
        if len(ctype.dimensions) > 1:
            return Pointer(Array(ctype.element, ctype.dimensions[1:]))
        return Pointer(ctype.element)
    if isinstance(ctype, _Prototype):
        return ctype.as_pointer()
    return ctype


# ═══════════════════════════════════════════════════════════════════════
#  DeclarationNormalizer
# ═══════════════════════════════════════════════════════════════════════

class DeclarationNormalizer:
    """
    Converts front-end declarations into registry entries.

    Usage:
        normalizer = DeclarationNormalizer(registry, complete_tags=tags)
        for decl in unit.declarations:
            if decl.in_scope:
                normalizer.normalize(decl)
            else:
                normalizer.observe(decl)
    """

    def __init__(self, registry: TypeRegistry,
                 evaluator: Optional[ConstantEvaluator] = None,
                 rules: Optional[RuleTable] = None,
                 complete_tags: Optional[Set[str]] = None,
                 partition: Optional[str] = None):
        self.registry = registry
        self.partition = partition
        self.evaluator = evaluator or ConstantEvaluator()
        self.rules = rules or RuleTable.from_settings()
        self.complete_tags: Set[str] = set(complete_tags or ())
        # Suppressed typedef name -> what references to it become
        self.aliases: Dict[str, CType] = {}
        # typedef names of function types; a pointer to one is the FunctionPointer itself
        self.function_typedefs: Set[str] = set()
        self.skipped: List[str] = []

    # ── entry points ──────────────────────────────────────────────────

    def normalize(self, decl: Declaration) -> List[TypeEntry]:
        """Normalize one in-scope declaration and commit its entries.

        Raises DeclarationError subclasses for declaration-level failures
        and DuplicateDefinitionError from the registry.  Constructs outside
        the type model are logged and skipped.
        """
        pending = _Pending(decl)
        node = decl.node
        try:
            if node.type == "type_definition":
                self._typedef(pending, node)
            elif node.type in _RECORD_NODES or node.type == "enum_specifier":
                self._tag_statement(pending, node)
            elif node.type in ("declaration", "function_definition"):
                self._declaration(pending, node)
            else:
                raise SkipDeclaration("unexpected node %s" % node.type)
        except SkipDeclaration as e:
            logger.warning(
                "Skipping declaration `%s` at %s:%d: %s", pending.name, decl.file, decl.line, e,
            )
            self.skipped.append(pending.name)
            return []

        inserted = []
        for name, definition in pending.entries:
            entry = self._commit(name, definition, decl.file, decl.line)
            if entry is not None:
                inserted.append(entry)
        for fn in pending.functions:
            if self.registry.add_function(fn):
                logger.debug("Extracted function %s (%d params)", fn.name, len(fn.parameters))
        return inserted

    def observe(self, decl: Declaration):
        """Out-of-scope declaration: enumerators become visible constants and
        typedefs go through the suppression rules, but nothing is registered."""
        if decl.node.type == "type_definition":
            self._observe_typedef(decl)
        for node in walk_type(decl.node, "enum_specifier"):
            body = node.child_by_field_name("body")
            if body is None:
                continue
            try:
                self._enumerators(_Pending(decl), body)
            except DeclarationError as e:
                logger.debug("Out-of-scope enum at %s:%d not evaluated: %s", decl.file, decl.line, e)

    def _observe_typedef(self, decl: Declaration):
        pending = _Pending(decl)
        node = decl.node
        try:
            base = self._specifier(pending, node.child_by_field_name("type"), None, "<typedef>")
            for d in node.children_by_field_name("declarator"):
                alias, target = self._declarator(pending, d, base, False, "<typedef>", lenient=True)
                if alias is None:
                    continue
                if isinstance(target, _Prototype):
                    self.function_typedefs.add(alias)
                    target = target.as_pointer()
                suppression = self.rules.apply(alias, target, self.registry)
                if suppression is not None and suppression.replacement not in (None, Named(alias)):
                    self.aliases[alias] = suppression.replacement
        except (SkipDeclaration, DeclarationError) as e:
            logger.debug("Out-of-scope typedef at %s:%d not checked: %s", decl.file, decl.line, e)

    def normalize_macro(self, macro: MacroDefinition) -> Optional[TypeEntry]:
        """A macro whose body is a numeric literal becomes a Constant entry."""
        value = parse_macro_literal(macro.value)
        if value is None:
            logger.debug("Macro %s = %r is not a literal constant", macro.name, macro.value)
            return None
        self.evaluator.define(macro.name, value)
        return self._commit(macro.name, Constant(macro.name, value), macro.file, macro.line)

    def _commit(self, name: str, definition: CType, file: Optional[str],
                line: Optional[int]) -> Optional[TypeEntry]:
        existing = self.registry.get(name)
        if existing is not None and existing.partition != self.partition:
            # Shared registry: the first partition to define a name owns it
            if existing.definition != definition:
                logger.warning(
                    "Dropping `%s` at %s:%s from partition %s: already defined by partition %s",
                    name, file, line, self.partition, existing.partition,
                )
            return None
        return self.registry.insert(name, definition, file, line, self.partition)

    # ── declaration kinds ─────────────────────────────────────────────

    def _typedef(self, pending: _Pending, node: Node):
        source = pending.decl.source
        declarators = node.children_by_field_name("declarator")
        if not declarators:
            raise SkipDeclaration("typedef without a name")
        names = [declarator_name(d, source) for d in declarators]
        pending.name = names[0] or "<typedef>"

        plain = [declarator_name(d, source) for d in declarators if d.type in ("type_identifier", "primitive_type")]
        target_name = plain[0] if plain else "%s_target" % pending.name
        base = self._specifier(pending, node.child_by_field_name("type"), target_name, pending.name)
        base_const = _has_const(node, source)

        for d in declarators:
            alias, target = self._declarator(pending, d, base, base_const, pending.name)
            if alias is None:
                continue
            if isinstance(target, _Prototype):
                self.function_typedefs.add(alias)
                target = target.as_pointer()
            if target == Named(alias) and any(name == alias for name, _ in pending.entries):
                # typedef struct { ... } Alias; already defined under the alias
                continue

            suppression = self.rules.apply(alias, target, self.registry)
            if suppression is not None:
                if suppression.replacement is not None and suppression.replacement != Named(alias):
                    self.aliases[alias] = suppression.replacement
                continue
            self._check_supported(pending, target, alias)
            pending.add(alias, target)

    def _tag_statement(self, pending: _Pending, node: Node):
        """``struct X { ... };``, ``struct X;`` or a bare ``enum { ... };``."""
        source = pending.decl.source
        name_node = node.child_by_field_name("name")
        if node.type == "enum_specifier":
            pending.name = node_text(name_node, source) if name_node is not None else "<anonymous enum>"
            self._specifier(pending, node, None, pending.name)
            return
        if name_node is None:
            raise SkipDeclaration("anonymous %s with no declarator" % node.type.split("_")[0])
        tag = node_text(name_node, source)
        pending.name = tag
        if node.child_by_field_name("body") is not None:
            self._specifier(pending, node, tag, tag)
        elif tag not in self.complete_tags:
            logger.debug("Forward declaration of incomplete %s -> void", tag)
            pending.add(tag, Void())

    def _declaration(self, pending: _Pending, node: Node):
        """Function prototypes and definitions; variables are ignored."""
        source = pending.decl.source
        type_node = node.child_by_field_name("type")
        declarators = node.children_by_field_name("declarator")
        if declarators:
            pending.name = declarator_name(declarators[0], source) or "<declaration>"
        elif type_node is not None and type_node.type in _RECORD_NODES + ("enum_specifier",):
            name_node = type_node.child_by_field_name("name")
            pending.name = node_text(name_node, source) if name_node is not None else "<anonymous>"

        # Tagged definitions in the type position are registered on their own
        base = self._specifier(pending, type_node, None, pending.name)
        base_const = _has_const(node, source)

        for d in declarators:
            name, ctype = self._declarator(pending, d, base, base_const, pending.name, lenient=True)
            if not isinstance(ctype, _Prototype):
                logger.debug("Ignoring variable %s", name)
                continue
            if ctype.variadic:
                logger.warning(
                    "Skipping variadic function %s at %s:%d",
                    name, pending.decl.file, pending.decl.line,
                )
                continue
            self._check_supported(pending, ctype.return_type, "%s.return" % name)
            pending.functions.append(FunctionDecl(
                name, ctype.return_type, ctype.parameters, ctype.variadic,
                file=pending.decl.file, line=pending.decl.line, partition=self.partition,
            ))

    # ── type specifiers ───────────────────────────────────────────────

    def _specifier(self, pending: _Pending, node: Optional[Node], path_name: Optional[str],
                   field_path: str) -> CType:
        """Base type of a declaration.

        ``path_name`` names an unnamed aggregate defined here; with no name
        an anonymous enum emits its enumerators as constants.
        """
        if node is None:
            return I32  # implicit int
        source = pending.decl.source
        t = node.type

        # stdint names are primitive_type nodes but may be redefined in scope
        if t == "primitive_type" and self._is_defined(node_text(node, source)):
            return self._type_name(node_text(node, source))

        if t in ("primitive_type", "sized_type_specifier"):
            spelling = node_text(node, source)
            ctype = builtin_type(spelling)
            if ctype is None:
                raise SkipDeclaration("unknown built-in type `%s`" % spelling)
            return ctype

        if t == "type_identifier":
            return self._type_name(node_text(node, source))

        if t in _RECORD_NODES:
            name_node = node.child_by_field_name("name")
            body = node.child_by_field_name("body")
            tag = node_text(name_node, source) if name_node is not None else None
            if body is None:
                if tag is None:
                    raise SkipDeclaration("%s without tag or body" % t)
                return Named(tag) if tag in self.complete_tags else Void()
            name = tag or path_name
            if name is None:
                raise SkipDeclaration("anonymous %s in `%s`" % (t.split("_")[0], field_path))
            fields = self._record_fields(pending, body, name)
            pending.add(name, Record(tuple(fields), is_union=(t == "union_specifier")))
            return Named(name)

        if t == "enum_specifier":
            name_node = node.child_by_field_name("name")
            body = node.child_by_field_name("body")
            tag = node_text(name_node, source) if name_node is not None else None
            if body is None:
                if tag is None:
                    raise SkipDeclaration("enum without tag or body")
                return Named(tag)
            variants = self._enumerators(pending, body)
            underlying_node = node.child_by_field_name("underlying_type")
            if underlying_node is not None:
                underlying = self._specifier(pending, underlying_node, None, field_path)
            else:
                underlying = _enum_underlying([v.value for v in variants])
            if not isinstance(underlying, Primitive):
                raise SkipDeclaration("enum underlying type is not a primitive")
            name = tag or path_name
            if name is None:
                for v in variants:
                    pending.add(v.name, Constant(v.name, v.value))
                logger.debug("Anonymous enum -> %d constants", len(variants))
                return underlying
            pending.add(name, Enum(underlying, tuple(variants)))
            return Named(name)

        raise SkipDeclaration("unsupported type specifier `%s`" % node_text(node, source))

    def _is_defined(self, name: str) -> bool:
        return name in self.aliases or name in self.registry

    def _type_name(self, name: str) -> CType:
        """Resolve a typedef name used as a type specifier."""
        if name in self.aliases:
            return self.aliases[name]
        if name in self.registry:
            return Named(name)
        if name in BUILTIN_TYPES:
            return BUILTIN_TYPES[name]
        return Named(name)

    def _record_fields(self, pending: _Pending, body: Node, record_name: str) -> List[Field]:
        source = pending.decl.source
        fields: List[Field] = []
        anonymous = 0
        for child in _field_nodes(body):
            type_node = child.child_by_field_name("type")
            # tree-sitter fills the name of an unnamed bit-field with a MISSING node
            declarators = [d for d in child.children_by_field_name("declarator") if not d.is_missing]
            bit_width = self._bit_width(pending, child, record_name)
            base_const = _has_const(child, source)

            if not declarators and bit_width is None and type_node is not None and (
                    type_node.type == "enum_specifier"
                    or (type_node.type in _RECORD_NODES and type_node.child_by_field_name("name") is not None)):
                # A nested tag declaration or an enumerator list, not a member
                self._specifier(pending, type_node, None, record_name)
                continue

            if not declarators:
                anonymous += 1
                field_name = "anonymous_%d" % anonymous
                ctype = self._specifier(
                    pending, type_node, "%s_%s" % (record_name, field_name),
                    "%s.%s" % (record_name, field_name),
                )
                self._check_supported(pending, ctype, "%s.%s" % (record_name, field_name))
                fields.append(Field(field_name, ctype, bit_width))
                continue

            first = declarator_name(declarators[0], source)
            base = self._specifier(
                pending, type_node, "%s_%s" % (record_name, first),
                "%s.%s" % (record_name, first),
            )
            for d in declarators:
                path = "%s.%s" % (record_name, declarator_name(d, source))
                name, ctype = self._declarator(pending, d, base, base_const, path)
                if isinstance(ctype, _Prototype):
                    raise SkipDeclaration("function-typed field `%s`" % name)
                self._check_supported(pending, ctype, path)
                fields.append(Field(name, ctype, bit_width))
        return fields

    def _bit_width(self, pending: _Pending, node: Node, record_name: str) -> Optional[int]:
        clause = next((c for c in node.children if c.type == "bitfield_clause"), None)
        if clause is None:
            return None
        expr = clause.named_children[0] if clause.named_children else None
        value = self.evaluator.try_evaluate(expr, pending.decl.source) if expr is not None else None
        if not isinstance(value, int) or value < 0:
            raise DeclarationError(
                pending.name, record_name,
                "bit-field width `%s` is not a non-negative integer constant" % node_text(clause, pending.decl.source),
                file=pending.decl.file, line=pending.decl.line,
            )
        return value

    def _enumerators(self, pending: _Pending, body: Node) -> List[EnumVariant]:
        source = pending.decl.source
        variants: List[EnumVariant] = []
        next_value = 0
        for child in _field_nodes(body, ("enumerator",)):
            name = node_text(child.child_by_field_name("name"), source)
            value_node = child.child_by_field_name("value")
            if value_node is not None:
                try:
                    value = self.evaluator.evaluate(value_node, source)
                except NotConstant:
                    value = None
                if not isinstance(value, int):
                    raise DeclarationError(
                        pending.name, name,
                        "enumerator value `%s` is not an integer constant" % node_text(value_node, source),
                        file=pending.decl.file, line=pending.decl.line,
                    )
                next_value = value
            variants.append(EnumVariant(name, next_value))
            self.evaluator.define(name, next_value)
            next_value += 1
        return variants

    # ── declarators ───────────────────────────────────────────────────

    def _declarator(self, pending: _Pending, node: Optional[Node], ctype, base_const: bool,
                    field_path: str, lenient: bool = False):
        """Apply a declarator to its base type, outermost node first.

        Returns ``(name, type)``; ``type`` is a _Prototype when the
        declarator declares a function.
        """
        source = pending.decl.source
        wrapped_const = False
        while node is not None:
            t = node.type
            if t in _NAME_NODES:
                return node_text(node, source), ctype

            if t in ("pointer_declarator", "abstract_pointer_declarator"):
                if isinstance(ctype, _Prototype):
                    ctype = ctype.as_pointer()
                elif (not wrapped_const and isinstance(ctype, Named)
                      and ctype.name in self.function_typedefs):
                    # handler_t *h where handler_t names a function type
                    pass
                else:
                    ctype = Pointer(ctype, is_const=base_const and not wrapped_const)
                wrapped_const = True
                node = node.child_by_field_name("declarator")
                continue

            if t in ("array_declarator", "abstract_array_declarator"):
                dim = self._dimension(pending, node.child_by_field_name("size"), field_path, lenient)
                if isinstance(ctype, Array):
                    ctype = Array(ctype.element, (dim,) + ctype.dimensions)
                else:
                    ctype = Array(ctype, (dim,))
                node = node.child_by_field_name("declarator")
                continue

            if t in ("function_declarator", "abstract_function_declarator"):
                params, variadic = self._parameters(
                    pending, node.child_by_field_name("parameters"), field_path,
                )
                ctype = _Prototype(ctype, params, variadic)
                node = node.child_by_field_name("declarator")
                continue

            if t in ("parenthesized_declarator", "abstract_parenthesized_declarator", "attributed_declarator"):
                inner = [c for c in node.named_children if c.type not in ("comment", "attribute_declaration")]
                node = inner[0] if inner else None
                continue

            raise SkipDeclaration("unsupported declarator `%s`" % node_text(node, source))
        return None, ctype

    def _dimension(self, pending: _Pending, size: Optional[Node], field_path: str, lenient: bool) -> int:
        if size is None:
            return 0  # flexible array member / unsized parameter
        source = pending.decl.source
        value = self.evaluator.try_evaluate(size, source)
        if isinstance(value, int) and value >= 0:
            return value
        if lenient:
            return 0
        raise UnresolvableArrayDimensionError(
            pending.name, field_path, node_text(size, source),
            file=pending.decl.file, line=pending.decl.line,
        )

    def _parameters(self, pending: _Pending, node: Optional[Node], owner: str):
        params: List[Parameter] = []
        variadic = False
        if node is None:
            return (), False
        source = pending.decl.source
        for child in node.named_children:
            if child.type == "variadic_parameter":
                variadic = True
                continue
            if child.type != "parameter_declaration":
                continue
            type_node = child.child_by_field_name("type")
            declarator = child.child_by_field_name("declarator")
            name = declarator_name(declarator, source) or "param%d" % (len(params) + 1)
            base = self._specifier(pending, type_node, "%s_%s" % (owner, name), "%s(%s)" % (owner, name))
            if declarator is None and isinstance(base, Void):
                # (void)
                continue
            _, ctype = self._declarator(
                pending, declarator, base, _has_const(child, source), "%s(%s)" % (owner, name), lenient=True,
            )
            ctype = _decay(ctype)
            self._check_supported(pending, ctype, "%s(%s)" % (owner, name))
            params.append(Parameter(name, ctype))
        return tuple(params), variadic

    # ── checks ────────────────────────────────────────────────────────

    def _check_supported(self, pending: _Pending, ctype, field_path: str):
        """Raise UnsupportedTypeError for direct use of an unrepresentable scalar."""
        stack = [ctype]
        while stack:
            current = stack.pop()
            if isinstance(current, Primitive):
                if not self.rules.is_supported(current):
                    raise UnsupportedTypeError(
                        pending.name, field_path, format_type(current),
                        file=pending.decl.file, line=pending.decl.line,
                    )
            elif isinstance(current, Pointer):
                stack.append(current.pointee)
            elif isinstance(current, Array):
                stack.append(current.element)
            elif isinstance(current, (FunctionPointer, _Prototype)):
                stack.append(current.return_type)
                if isinstance(current, FunctionPointer):
                    stack.extend(current.parameters)
                else:
                    stack.extend(p.type for p in current.parameters)
            elif isinstance(current, (Void, Named, Record, Enum, Constant)):
                continue
            else:
                raise TypeError("unknown CType: %r" % (current,))


def _field_nodes(body: Node, types=("field_declaration",)):
    """Members of a field list or enumerator list, looking through #if bodies."""
    for child in body.named_children:
        if child.type in types:
            yield child
        elif child.type in ("preproc_if", "preproc_ifdef"):
            yield from _field_nodes(child, types)
