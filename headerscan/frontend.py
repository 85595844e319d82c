"""
Front end — C headers → declaration nodes tagged with their origin.

Two modes:
  • parse_headers()  runs pcpp over the header set (includes, macros,
                     conditionals), parses the expanded text with tree-sitter
                     and attributes every top-level declaration to its
                     original file through the #line map.
  • parse_text()     parses in-memory source directly (no preprocessor);
                     handy for tests and for single self-contained headers.

Either way the result is a TranslationUnit: the ordered declaration list,
the object-like macros, and the files that contributed to it.  A
declaration is *in scope* when its original file belongs to the traversal
set.
"""

import os
import re
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set

import tree_sitter_c as tsc
from tree_sitter import Language, Parser, Node

from headerscan.preprocessor import PreprocessorEngine, ExpandedSource

logger = logging.getLogger(__name__)

C_LANGUAGE = Language(tsc.language())
_parser = Parser(C_LANGUAGE)

# Top-level node types that carry a declaration
_DECLARATION_NODES = {
    "type_definition", "declaration", "function_definition",
    "struct_specifier", "union_specifier", "enum_specifier",
}

# Node types that are containers we need to recurse into
_CONTAINERS = {
    "preproc_ifdef", "preproc_if", "preproc_elif", "preproc_elifdef",
    "preproc_else", "linkage_specification", "declaration_list",
}

# Branches skipped in raw mode, where conditionals are not evaluated
_ALTERNATIVES = {"preproc_else", "preproc_elif", "preproc_elifdef"}

_COMMENT_RE = re.compile(r"/\*.*?\*/|//[^\n]*", re.S)


# ═══════════════════════════════════════════════════════════════════════
#  Data types
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class Declaration:
    """One top-level declaration node and where it came from."""
    node: Node
    source: bytes           # the buffer ``node`` indexes into
    file: str               # original header (absolute, forward slashes)
    line: int               # 1-indexed line in ``file``
    in_scope: bool

    def text(self, node: Optional[Node] = None) -> str:
        return node_text(node if node is not None else self.node, self.source)


@dataclass
class MacroDefinition:
    """An object-like #define."""
    name: str
    value: str
    file: str
    line: int
    in_scope: bool


@dataclass
class TranslationUnit:
    declarations: List[Declaration] = field(default_factory=list)
    macros: List[MacroDefinition] = field(default_factory=list)
    # Replacement text of every active object-like macro, in or out of scope
    macro_values: Dict[str, str] = field(default_factory=dict)
    files: List[str] = field(default_factory=list)

    def in_scope(self) -> List[Declaration]:
        return [d for d in self.declarations if d.in_scope]


# ═══════════════════════════════════════════════════════════════════════
#  AST helpers
# ═══════════════════════════════════════════════════════════════════════

def node_text(node: Node, source: bytes) -> str:
    return source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")


def walk_type(node: Node, type_names) -> Iterator[Node]:
    """Yield all descendant nodes (including ``node``) of the given type(s)."""
    if isinstance(type_names, str):
        type_names = {type_names}
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type in type_names:
            yield current
        stack.extend(reversed(current.children))


def parse_bytes(source: bytes):
    return _parser.parse(source)


def _top_level_nodes(node: Node, enter_alternatives: bool = True) -> Iterator[Node]:
    for child in node.children:
        if child.type in _DECLARATION_NODES:
            yield child
        elif child.type in _CONTAINERS:
            if not enter_alternatives and child.type in _ALTERNATIVES:
                continue
            yield from _top_level_nodes(child, enter_alternatives)
        elif child.type == "ERROR":
            logger.warning(
                "Syntax error at expanded line %d, skipping: %s",
                child.start_point[0] + 1,
                child.text.decode("utf-8", errors="replace")[:80] if child.text else "",
            )


def _macro_nodes(node: Node, enter_alternatives: bool = True) -> Iterator[Node]:
    for child in node.children:
        if child.type == "preproc_def":
            yield child
        elif child.type in _CONTAINERS:
            if not enter_alternatives and child.type in _ALTERNATIVES:
                continue
            yield from _macro_nodes(child, enter_alternatives)


def _squash(text: str) -> str:
    return "".join(_COMMENT_RE.sub("", text).split())


def _macro_value(node: Node, source: bytes) -> str:
    value = node.child_by_field_name("value")
    if value is None:
        return ""
    return _COMMENT_RE.sub("", node_text(value, source)).strip()


def collect_complete_tags(declarations: List[Declaration]) -> Set[str]:
    """Names of every struct/union that is given a body somewhere in the unit."""
    tags: Set[str] = set()
    for decl in declarations:
        for node in walk_type(decl.node, ("struct_specifier", "union_specifier")):
            name = node.child_by_field_name("name")
            if name is not None and node.child_by_field_name("body") is not None:
                tags.add(node_text(name, decl.source))
    return tags


def _norm_path(p: str) -> str:
    return os.path.abspath(p).replace("\\", "/")


# ═══════════════════════════════════════════════════════════════════════
#  HeaderFrontend
# ═══════════════════════════════════════════════════════════════════════

class HeaderFrontend:
    """
    Parses C headers into a TranslationUnit.

    Usage:
        frontend = HeaderFrontend(include_paths=["include"])
        unit = frontend.parse_headers(["include/api.h"])
        for decl in unit.in_scope():
            ...
    """

    def __init__(self, include_paths: Optional[List[str]] = None,
                 defines: Optional[Dict[str, str]] = None):
        self.preprocessor = PreprocessorEngine(include_paths, defines)

    def parse_headers(self, headers: List[str],
                      traverse: Optional[List[str]] = None) -> TranslationUnit:
        """Preprocess and parse a header set; ``traverse`` defaults to ``headers``."""
        traverse_set = {_norm_path(p) for p in (traverse or headers)}
        expanded = self.preprocessor.preprocess(headers)
        source = expanded.source
        tree = _parser.parse(source)

        unit = TranslationUnit(macro_values=dict(expanded.macros), files=expanded.files())
        main_file = expanded.line_map[0][1] if expanded.line_map else _norm_path(headers[0])
        for node in _top_level_nodes(tree.root_node):
            orig_file, orig_line = expanded.original_location(node.start_point[0] + 1)
            orig_file = orig_file or main_file
            unit.declarations.append(Declaration(
                node=node, source=source,
                file=orig_file, line=orig_line,
                in_scope=orig_file in traverse_set,
            ))

        unit.macros = self._collect_macros(expanded, traverse_set)
        logger.info(
            "Parsed %d header(s): %d declarations (%d in scope), %d macros from %d files",
            len(headers), len(unit.declarations), len(unit.in_scope()),
            len(unit.macros), len(unit.files),
        )
        return unit

    def parse_text(self, text: str, file_path: str = "<memory>.h",
                   in_scope: bool = True) -> TranslationUnit:
        """Parse source without preprocessing.

        Only the first branch of each #if/#ifdef is entered; macros come
        from the raw #define lines.
        """
        source = text.encode("utf-8")
        tree = _parser.parse(source)
        unit = TranslationUnit(files=[file_path])

        for node in _top_level_nodes(tree.root_node, enter_alternatives=False):
            unit.declarations.append(Declaration(
                node=node, source=source, file=file_path,
                line=node.start_point[0] + 1, in_scope=in_scope,
            ))

        for node in _macro_nodes(tree.root_node, enter_alternatives=False):
            name = node.child_by_field_name("name")
            if name is None:
                continue
            macro = MacroDefinition(
                name=node_text(name, source), value=_macro_value(node, source),
                file=file_path, line=node.start_point[0] + 1, in_scope=in_scope,
            )
            unit.macros.append(macro)
            unit.macro_values[macro.name] = macro.value
        return unit

    def _collect_macros(self, expanded: ExpandedSource,
                        traverse_set: Set[str]) -> List[MacroDefinition]:
        """Pair pcpp's active macros with the #define lines that produced them.

        pcpp consumes #define lines, so the origin of each macro comes from a
        raw tree-sitter parse of every contributing file; a raw definition
        only counts when pcpp still holds the same replacement text.
        """
        macros: List[MacroDefinition] = []
        seen: Set[str] = set()
        for file_path in expanded.files():
            if not os.path.isfile(file_path):
                continue
            try:
                with open(file_path, "rb") as f:
                    source = f.read()
            except OSError as e:
                logger.warning("Cannot read %s for macro scan: %s", file_path, e)
                continue
            tree = _parser.parse(source)
            for node in _macro_nodes(tree.root_node):
                name_node = node.child_by_field_name("name")
                if name_node is None:
                    continue
                name = node_text(name_node, source)
                value = _macro_value(node, source)
                active = expanded.macros.get(name)
                if name in seen or active is None or _squash(active) != _squash(value):
                    continue
                seen.add(name)
                macros.append(MacroDefinition(
                    name=name, value=value, file=file_path,
                    line=node.start_point[0] + 1,
                    in_scope=file_path in traverse_set,
                ))
        return macros
