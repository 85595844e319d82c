"""
Layout calculator — sizes, alignments and bit-field offsets (LP64, SysV).

Runs on a validated registry.  Bit-fields pack into the current storage
unit of their declared type when they fit, otherwise they start at the next
unit boundary; a zero-width bit-field closes the current unit.
"""

import logging
from dataclasses import replace
from typing import Dict, Optional, Set, Tuple

from headerscan.model import (
    Array, CType, Constant, Enum, Field, FunctionPointer, Named, Pointer,
    POINTER_WIDTH, Primitive, Record, Void,
)
from headerscan.registry import TypeRegistry

logger = logging.getLogger(__name__)

_POINTER_BYTES = POINTER_WIDTH // 8


def _round_up(value: int, multiple: int) -> int:
    return (value + multiple - 1) // multiple * multiple


class LayoutCalculator:
    """Computes size/align for every entry of a registry."""

    def __init__(self, registry: TypeRegistry):
        self.registry = registry
        self._cache: Dict[str, Tuple[int, int]] = {}
        self._active: Set[str] = set()

    def compute(self) -> TypeRegistry:
        """Return a new registry with size, align and bit offsets filled in."""
        model = self.registry.derive()
        for entry in self.registry.all_entries():
            definition = entry.definition
            if isinstance(definition, Record):
                definition = self._place_fields(definition)
            layout = self.size_align(entry.definition)
            new_entry = model.insert(entry.name, definition, entry.file, entry.line, entry.partition)
            if layout is not None:
                model.replace(replace(new_entry, size=layout[0], align=layout[1]))
        for fn in self.registry.functions():
            model.add_function(fn)
        logger.debug("Computed layout for %d types", len(model))
        return model

    def size_align(self, ctype: CType) -> Optional[Tuple[int, int]]:
        """(size, align) in bytes; None for constants, which have no storage."""
        if isinstance(ctype, Constant):
            return None
        if isinstance(ctype, Void):
            return 0, 1
        if isinstance(ctype, Primitive):
            return ctype.size, ctype.size
        if isinstance(ctype, (Pointer, FunctionPointer)):
            return _POINTER_BYTES, _POINTER_BYTES
        if isinstance(ctype, Array):
            size, align = self.size_align(ctype.element)
            return size * ctype.length, align
        if isinstance(ctype, Enum):
            return ctype.underlying.size, ctype.underlying.size
        if isinstance(ctype, Named):
            return self._named(ctype.name)
        if isinstance(ctype, Record):
            _, size, align = self._layout(ctype)
            return size, align
        raise TypeError("unknown CType: %r" % (ctype,))

    def _named(self, name: str) -> Tuple[int, int]:
        if name in self._cache:
            return self._cache[name]
        if name in self._active:
            raise ValueError("`%s` contains itself by value" % name)
        definition = self.registry.lookup(name)
        if definition is None:
            raise KeyError(name)
        self._active.add(name)
        try:
            layout = self.size_align(definition)
        finally:
            self._active.discard(name)
        if layout is None:
            raise ValueError("`%s` is a constant, not a type" % name)
        self._cache[name] = layout
        return layout

    def _place_fields(self, record: Record) -> Record:
        fields, _, _ = self._layout(record)
        return Record(fields, record.is_union)

    def _layout(self, record: Record) -> Tuple[Tuple[Field, ...], int, int]:
        placed = []
        offset_bits = 0
        max_bits = 0
        align = 1
        for f in record.fields:
            size, falign = self.size_align(f.type)
            if record.is_union:
                if f.is_bitfield:
                    placed.append(replace(f, bit_offset=0))
                    max_bits = max(max_bits, f.bit_width)
                else:
                    placed.append(f)
                    max_bits = max(max_bits, size * 8)
                align = max(align, falign)
                continue

            if not f.is_bitfield:
                offset_bits = _round_up(offset_bits, falign * 8) + size * 8
                align = max(align, falign)
                placed.append(f)
                continue

            unit_bits = falign * 8
            if f.bit_width == 0:
                offset_bits = _round_up(offset_bits, unit_bits)
                placed.append(replace(f, bit_offset=offset_bits))
                continue
            if offset_bits // unit_bits != (offset_bits + f.bit_width - 1) // unit_bits:
                offset_bits = _round_up(offset_bits, unit_bits)
            placed.append(replace(f, bit_offset=offset_bits))
            offset_bits += f.bit_width
            align = max(align, falign)

        total_bits = max_bits if record.is_union else offset_bits
        size = _round_up((total_bits + 7) // 8, align)
        return tuple(placed), size, align
