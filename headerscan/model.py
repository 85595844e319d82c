"""
Type model — the closed set of C types the engine works with.

Every declaration the normalizer accepts is expressed with these classes:
  • Void             — ``void`` and incomplete (forward-declared) aggregates
  • Primitive        — built-in scalars (bool, integers, floats)
  • Named            — reference to a registry entry by name
  • Pointer / Array  — derived types
  • Record / Enum    — aggregate definitions
  • FunctionPointer  — callback types (parameter names dropped)
  • Constant         — macro / anonymous-enum constants

All classes are frozen dataclasses so that two definitions can be compared
structurally with ``==``.  ``Named.resolved`` is excluded from comparison:
the same reference is equal before and after validation.
"""

from dataclasses import dataclass, field
from enum import Enum as _PyEnum
from typing import Dict, Optional, Tuple, Union


class CType:
    """Base class of the closed type variant."""

    __slots__ = ()


class PrimitiveKind(_PyEnum):
    BOOL = "bool"
    INTEGER = "integer"
    FLOAT = "float"


@dataclass(frozen=True)
class Void(CType):
    pass


@dataclass(frozen=True)
class Primitive(CType):
    kind: PrimitiveKind
    width: int              # in bits
    signed: bool = True

    @property
    def size(self) -> int:
        return max(self.width // 8, 1)


@dataclass(frozen=True)
class Named(CType):
    name: str
    resolved: Optional[int] = field(default=None, compare=False)

    @property
    def is_resolved(self) -> bool:
        return self.resolved is not None


@dataclass(frozen=True)
class Pointer(CType):
    pointee: CType
    is_const: bool = False


@dataclass(frozen=True)
class Array(CType):
    element: CType
    dimensions: Tuple[int, ...]

    @property
    def length(self) -> int:
        total = 1
        for dim in self.dimensions:
            total *= dim
        return total


@dataclass(frozen=True)
class Field:
    name: str
    type: CType
    bit_width: Optional[int] = None
    bit_offset: Optional[int] = None

    @property
    def is_bitfield(self) -> bool:
        return self.bit_width is not None


@dataclass(frozen=True)
class Record(CType):
    fields: Tuple[Field, ...]
    is_union: bool = False

    @property
    def kind(self) -> str:
        return "union" if self.is_union else "struct"

    def field_names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields)


@dataclass(frozen=True)
class EnumVariant:
    name: str
    value: int


@dataclass(frozen=True)
class Enum(CType):
    underlying: Primitive
    variants: Tuple[EnumVariant, ...]

    def value_of(self, name: str) -> Optional[int]:
        for variant in self.variants:
            if variant.name == name:
                return variant.value
        return None


@dataclass(frozen=True)
class FunctionPointer(CType):
    return_type: CType
    parameters: Tuple[CType, ...] = ()
    variadic: bool = False


@dataclass(frozen=True)
class Constant(CType):
    name: str
    value: Union[int, float]


# ═══════════════════════════════════════════════════════════════════════
#  Registry records
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TypeEntry:
    """One named definition in a TypeRegistry."""
    name: str
    definition: CType
    type_id: int
    file: Optional[str] = None
    line: Optional[int] = None
    size: Optional[int] = None      # bytes, filled by the layout pass
    align: Optional[int] = None
    partition: Optional[str] = None  # owning partition of the run


@dataclass(frozen=True)
class Parameter:
    name: str
    type: CType


@dataclass(frozen=True)
class FunctionDecl:
    """A function prototype found in the traversal set."""
    name: str
    return_type: CType
    parameters: Tuple[Parameter, ...] = ()
    variadic: bool = False
    file: Optional[str] = field(default=None, compare=False)
    line: Optional[int] = field(default=None, compare=False)
    partition: Optional[str] = field(default=None, compare=False)

    def signature(self) -> FunctionPointer:
        return FunctionPointer(
            self.return_type,
            tuple(p.type for p in self.parameters),
            self.variadic,
        )


# ═══════════════════════════════════════════════════════════════════════
#  Built-in scalar types (LP64)
# ═══════════════════════════════════════════════════════════════════════

BOOL = Primitive(PrimitiveKind.BOOL, 8, False)
I8 = Primitive(PrimitiveKind.INTEGER, 8, True)
U8 = Primitive(PrimitiveKind.INTEGER, 8, False)
I16 = Primitive(PrimitiveKind.INTEGER, 16, True)
U16 = Primitive(PrimitiveKind.INTEGER, 16, False)
I32 = Primitive(PrimitiveKind.INTEGER, 32, True)
U32 = Primitive(PrimitiveKind.INTEGER, 32, False)
I64 = Primitive(PrimitiveKind.INTEGER, 64, True)
U64 = Primitive(PrimitiveKind.INTEGER, 64, False)
I128 = Primitive(PrimitiveKind.INTEGER, 128, True)
U128 = Primitive(PrimitiveKind.INTEGER, 128, False)
F32 = Primitive(PrimitiveKind.FLOAT, 32, True)
F64 = Primitive(PrimitiveKind.FLOAT, 64, True)
F128 = Primitive(PrimitiveKind.FLOAT, 128, True)

POINTER_WIDTH = 64

BUILTIN_TYPES: Dict[str, CType] = {
    "void": Void(),
    "_Bool": BOOL,
    "bool": BOOL,
    "char": I8,
    "signed char": I8,
    "unsigned char": U8,
    "short": I16,
    "unsigned short": U16,
    "int": I32,
    "unsigned int": U32,
    "long": I64,
    "unsigned long": U64,
    "long long": I64,
    "unsigned long long": U64,
    "__int128": I128,
    "unsigned __int128": U128,
    "__int128_t": I128,
    "__uint128_t": U128,
    "float": F32,
    "double": F64,
    "long double": F128,
    "size_t": U64,
    "ssize_t": I64,
    "ptrdiff_t": I64,
    "intptr_t": I64,
    "uintptr_t": U64,
    "max_align_t": F128,
    "char8_t": U8,
    "char16_t": U16,
    "char32_t": U32,
    "wchar_t": I32,
}

# <stdint.h> exact-width and least/fast types
for _w, _s, _u in ((8, I8, U8), (16, I16, U16), (32, I32, U32), (64, I64, U64)):
    BUILTIN_TYPES["int%d_t" % _w] = _s
    BUILTIN_TYPES["uint%d_t" % _w] = _u
    BUILTIN_TYPES["int_least%d_t" % _w] = _s
    BUILTIN_TYPES["uint_least%d_t" % _w] = _u
BUILTIN_TYPES["intmax_t"] = I64
BUILTIN_TYPES["uintmax_t"] = U64

# Modifier keywords that may appear in a sized type specifier
_SIZE_MODIFIERS = {"signed", "unsigned", "short", "long"}


def builtin_type(spelling: str) -> Optional[CType]:
    """Map a built-in type spelling (any whitespace, any modifier order) to a CType.

    ``long unsigned int`` and ``unsigned long`` both give U64; a bare
    ``unsigned`` is ``unsigned int``.  Returns None for non-built-in names.
    """
    words = spelling.split()
    if not words:
        return None
    if len(words) == 1 and words[0] in BUILTIN_TYPES:
        return BUILTIN_TYPES[words[0]]

    modifiers = [w for w in words if w in _SIZE_MODIFIERS]
    base = [w for w in words if w not in _SIZE_MODIFIERS]
    if len(base) > 1:
        return None
    base_name = base[0] if base else "int"
    is_unsigned = "unsigned" in modifiers
    longs = modifiers.count("long")

    if base_name == "char":
        if is_unsigned:
            return U8
        return I8
    if base_name == "double":
        return F128 if longs else F64
    if base_name == "__int128":
        return U128 if is_unsigned else I128
    if base_name != "int":
        return None
    if "short" in modifiers:
        return U16 if is_unsigned else I16
    if longs:
        return U64 if is_unsigned else I64
    return U32 if is_unsigned else I32


def builtin_spellings(ctype: CType):
    """All single-word built-in spellings that map to ``ctype``."""
    return {name for name, t in BUILTIN_TYPES.items() if t == ctype and " " not in name}


# ═══════════════════════════════════════════════════════════════════════
#  Formatting
# ═══════════════════════════════════════════════════════════════════════

_PRIMITIVE_SPELLING = {
    BOOL: "bool",
    I8: "int8_t", U8: "uint8_t",
    I16: "int16_t", U16: "uint16_t",
    I32: "int32_t", U32: "uint32_t",
    I64: "int64_t", U64: "uint64_t",
    I128: "__int128", U128: "unsigned __int128",
    F32: "float", F64: "double", F128: "long double",
}


def format_type(ctype: CType) -> str:
    """Render a CType as a short C-like string for logs and diagnostics."""
    if isinstance(ctype, Void):
        return "void"
    if isinstance(ctype, Primitive):
        return _PRIMITIVE_SPELLING.get(
            ctype, "%s%d" % ("i" if ctype.signed else "u", ctype.width)
        )
    if isinstance(ctype, Named):
        return ctype.name
    if isinstance(ctype, Pointer):
        prefix = "const " if ctype.is_const else ""
        return "%s%s *" % (prefix, format_type(ctype.pointee))
    if isinstance(ctype, Array):
        dims = "".join("[%d]" % d for d in ctype.dimensions)
        return "%s%s" % (format_type(ctype.element), dims)
    if isinstance(ctype, Record):
        return "%s { %s }" % (
            ctype.kind,
            " ".join("%s %s;" % (format_type(f.type), f.name) for f in ctype.fields),
        )
    if isinstance(ctype, Enum):
        return "enum { %s }" % ", ".join(
            "%s = %d" % (v.name, v.value) for v in ctype.variants
        )
    if isinstance(ctype, FunctionPointer):
        params = [format_type(p) for p in ctype.parameters]
        if ctype.variadic:
            params.append("...")
        return "%s (*)(%s)" % (format_type(ctype.return_type), ", ".join(params) or "void")
    if isinstance(ctype, Constant):
        return "#define %s %r" % (ctype.name, ctype.value)
    raise TypeError("unknown CType: %r" % (ctype,))
