"""
Type registry — ordered name → definition map for one traversal run.

  • insert()          idempotent for structurally equal definitions,
                      DuplicateDefinitionError otherwise
  • all_entries()     insertion-ordered view, restartable
  • functions         separate table, so ``struct stat`` and ``stat()`` coexist
  • suppressions      names dropped by the unsupported-width rule
  • freeze()          read-only after a successful validation
"""

import logging
from typing import Dict, Iterator, List, Optional

from headerscan.errors import DuplicateDefinitionError, RegistryFrozenError
from headerscan.model import CType, FunctionDecl, TypeEntry, format_type

logger = logging.getLogger(__name__)


class TypeRegistry:
    """Tracks named type definitions for one run."""

    def __init__(self):
        self._entries: Dict[str, TypeEntry] = {}
        self._order: List[str] = []
        self._functions: Dict[str, FunctionDecl] = {}
        self._suppressed: Dict[str, str] = {}
        self._frozen = False

    # ── mutation ──────────────────────────────────────────────────────

    def insert(self, name: str, definition: CType,
               file: Optional[str] = None, line: Optional[int] = None,
               partition: Optional[str] = None) -> TypeEntry:
        self._check_mutable()
        existing = self._entries.get(name)
        if existing is not None:
            if existing.definition == definition:
                logger.debug("Duplicate identical definition of %s ignored", name)
                return existing
            raise DuplicateDefinitionError(
                name, existing.definition, definition, file=file, line=line,
            )
        entry = TypeEntry(name, definition, len(self._order), file, line, partition=partition)
        self._entries[name] = entry
        self._order.append(name)
        logger.debug("Registered %s = %s", name, format_type(definition))
        return entry

    def replace(self, entry: TypeEntry):
        """Swap in an updated entry under the same name and id."""
        self._check_mutable()
        current = self._entries.get(entry.name)
        if current is None or current.type_id != entry.type_id:
            raise KeyError(entry.name)
        self._entries[entry.name] = entry

    def add_function(self, decl: FunctionDecl) -> bool:
        """Record a function; returns False when an earlier declaration wins."""
        self._check_mutable()
        existing = self._functions.get(decl.name)
        if existing is None:
            self._functions[decl.name] = decl
            return True
        if existing != decl:
            logger.warning(
                "Conflicting declaration of %s at %s:%s ignored (first declared at %s:%s)",
                decl.name, decl.file, decl.line, existing.file, existing.line,
            )
        return False

    def mark_suppressed(self, name: str, reason: str):
        self._check_mutable()
        self._suppressed.setdefault(name, reason)

    def freeze(self):
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_mutable(self):
        if self._frozen:
            raise RegistryFrozenError("registry is frozen after validation")

    # ── queries ───────────────────────────────────────────────────────

    def lookup(self, name: str) -> Optional[CType]:
        entry = self._entries.get(name)
        return entry.definition if entry is not None else None

    def get(self, name: str) -> Optional[TypeEntry]:
        return self._entries.get(name)

    def id_of(self, name: str) -> Optional[int]:
        entry = self._entries.get(name)
        return entry.type_id if entry is not None else None

    def entry_by_id(self, type_id: int) -> TypeEntry:
        return self._entries[self._order[type_id]]

    def all_entries(self) -> "EntryView":
        return EntryView(self)

    def functions(self) -> List[FunctionDecl]:
        return list(self._functions.values())

    def function(self, name: str) -> Optional[FunctionDecl]:
        return self._functions.get(name)

    def suppression_reason(self, name: str) -> Optional[str]:
        return self._suppressed.get(name)

    def suppressed_names(self) -> Dict[str, str]:
        return dict(self._suppressed)

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._order)

    def __repr__(self):
        return "<TypeRegistry %d types, %d functions%s>" % (
            len(self), len(self._functions), " frozen" if self._frozen else "",
        )

    def derive(self) -> "TypeRegistry":
        """An empty registry carrying over this one's suppression records."""
        other = TypeRegistry()
        other._suppressed = dict(self._suppressed)
        return other


class EntryView:
    """Lazy, restartable view of registry entries in insertion order."""

    def __init__(self, registry: TypeRegistry):
        self._registry = registry

    def __iter__(self) -> Iterator[TypeEntry]:
        for name in self._registry._order:
            yield self._registry._entries[name]

    def __len__(self) -> int:
        return len(self._registry)
