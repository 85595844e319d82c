"""
Cross-reference validator.

Walks every Named reference reachable from every registry entry and every
function.  Found references come back as ``Named(name, resolved=type_id)``
in a new registry; missing ones become UnresolvedReferenceError.  Errors
are collected, never short-circuited.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional

from headerscan.errors import UnresolvedReferenceError
from headerscan.model import (
    Array, CType, Constant, Enum, Field, FunctionDecl, FunctionPointer, Named,
    Parameter, Pointer, Primitive, Record, Void,
)
from headerscan.registry import TypeRegistry

logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    model: TypeRegistry
    errors: List[UnresolvedReferenceError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class CrossReferenceValidator:
    """Resolves Named references against a completed registry."""

    def __init__(self, registry: TypeRegistry):
        self.registry = registry
        self._errors: List[UnresolvedReferenceError] = []
        self._owner = ""
        self._file: Optional[str] = None
        self._line: Optional[int] = None

    def validate(self, partition: Optional[str] = None) -> ValidationReport:
        """Resolve every reference.

        With ``partition`` set, the whole registry is still resolved but only
        entries and functions owned by that partition report errors.
        """
        self._errors = []
        model = self.registry.derive()

        for entry in self.registry.all_entries():
            self._owner, self._file, self._line = entry.name, entry.file, entry.line
            mark = len(self._errors)
            definition = self._resolve(entry.definition, entry.name)
            model.insert(entry.name, definition, entry.file, entry.line, entry.partition)
            if partition is not None and entry.partition != partition:
                del self._errors[mark:]

        for fn in self.registry.functions():
            self._owner, self._file, self._line = fn.name, fn.file, fn.line
            mark = len(self._errors)
            model.add_function(self._resolve_function(fn))
            if partition is not None and fn.partition != partition:
                del self._errors[mark:]

        if self._errors:
            logger.info(
                "Validation found %d unresolved reference(s) in %d types / %d functions",
                len(self._errors), len(self.registry), len(self.registry.functions()),
            )
        else:
            logger.info(
                "Validated %d types and %d functions",
                len(self.registry), len(self.registry.functions()),
            )
        return ValidationReport(model, list(self._errors))

    def _resolve_function(self, fn: FunctionDecl) -> FunctionDecl:
        params = tuple(
            Parameter(p.name, self._resolve(p.type, "param %s" % p.name))
            for p in fn.parameters
        )
        return replace(fn, return_type=self._resolve(fn.return_type, "return"), parameters=params)

    def _resolve(self, ctype: CType, path: str) -> CType:
        if isinstance(ctype, Named):
            type_id = self.registry.id_of(ctype.name)
            if type_id is None:
                self._unresolved(ctype.name, path)
                return ctype
            return Named(ctype.name, resolved=type_id)
        if isinstance(ctype, (Void, Primitive, Constant)):
            return ctype
        if isinstance(ctype, Pointer):
            return Pointer(self._resolve(ctype.pointee, path), ctype.is_const)
        if isinstance(ctype, Array):
            return Array(self._resolve(ctype.element, path), ctype.dimensions)
        if isinstance(ctype, Record):
            return Record(
                tuple(
                    Field(f.name, self._resolve(f.type, "%s.%s" % (path, f.name)), f.bit_width, f.bit_offset)
                    for f in ctype.fields
                ),
                ctype.is_union,
            )
        if isinstance(ctype, Enum):
            self._resolve(ctype.underlying, path)
            return ctype
        if isinstance(ctype, FunctionPointer):
            return FunctionPointer(
                self._resolve(ctype.return_type, "%s.return" % path),
                tuple(self._resolve(p, "%s.param%d" % (path, i)) for i, p in enumerate(ctype.parameters)),
                ctype.variadic,
            )
        raise TypeError("unknown CType: %r" % (ctype,))

    def _unresolved(self, name: str, path: str):
        reason = self.registry.suppression_reason(name)
        if reason is not None:
            hint = "dropped as unsupported: %s" % reason
        else:
            hint = "add the header defining `%s` to the traverse list" % name
        error = UnresolvedReferenceError(
            self._owner, path, name, hint=hint, file=self._file, line=self._line,
        )
        logger.debug("%s", error)
        self._errors.append(error)
