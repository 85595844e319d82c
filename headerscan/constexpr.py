"""
Integer constant expressions — array bounds, enumerator values, macros.

The evaluator walks tree-sitter expression nodes.  Identifiers resolve
against the constant table (enumerators seen so far) and then against the
object-like macro table; macro replacement text is parsed on demand as a
C expression, with a guard against self-referencing macros.

Supported:
  • integer / floating / character literals (hex, octal, binary, suffixes)
  • unary  - + ~ !
  • binary arithmetic, shifts, bitwise, comparison and logical operators
  • ?:, casts to built-in types, parentheses
  • sizeof(<built-in type>) and sizeof(<pointer type>)

Integer division truncates toward zero as in C.
"""

import logging
import re
from typing import Dict, Optional, Set, Union

from tree_sitter import Node

from headerscan.frontend import node_text, parse_bytes
from headerscan.model import POINTER_WIDTH, Primitive, PrimitiveKind, builtin_type

logger = logging.getLogger(__name__)

Number = Union[int, float]

_INT_RE = re.compile(r"^(0[xX][0-9a-fA-F]+|0[bB][01]+|0[0-7]*|[1-9][0-9]*)([uUlLzZ]*)$")
_FLOAT_RE = re.compile(r"^(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?[fFlL]?$")

_ESCAPES = {
    "n": 10, "t": 9, "r": 13, "0": 0, "a": 7, "b": 8, "f": 12, "v": 11,
    "\\": 92, "'": 39, '"': 34, "?": 63,
}


class NotConstant(ValueError):
    """The expression does not reduce to a constant."""


# ═══════════════════════════════════════════════════════════════════════
#  Literal parsing
# ═══════════════════════════════════════════════════════════════════════

def parse_number_literal(text: str) -> Optional[Number]:
    """Parse a C numeric literal; returns None when ``text`` is not one.

    >>> parse_number_literal("0x1FUL")
    31
    >>> parse_number_literal("0755")
    493
    """
    text = text.strip().replace("'", "")
    # tree-sitter folds a leading sign into the literal token
    sign = -1 if text[:1] == "-" else 1
    if text[:1] in ("-", "+"):
        text = text[1:]
    m = _INT_RE.match(text)
    if m:
        digits = m.group(1)
        if digits[:2] in ("0x", "0X"):
            return sign * int(digits[2:], 16)
        if digits[:2] in ("0b", "0B"):
            return sign * int(digits[2:], 2)
        if len(digits) > 1 and digits[0] == "0":
            return sign * int(digits[1:], 8)
        return sign * int(digits)
    if ("." in text or "e" in text.lower()) and _FLOAT_RE.match(text):
        return sign * float(text.rstrip("fFlL"))
    return None


def parse_char_literal(text: str) -> Optional[int]:
    """Value of a single-character literal such as ``'A'`` or ``'\\x41'``."""
    text = text.strip()
    if text[:1] in ("L", "u", "U"):
        text = text.lstrip("LuU8")
    if len(text) < 3 or text[0] != "'" or text[-1] != "'":
        return None
    body = text[1:-1]
    if not body.startswith("\\"):
        return ord(body) if len(body) == 1 else None
    esc = body[1:]
    if esc[:1] == "x":
        return int(esc[1:], 16) if esc[1:] else None
    if esc and esc[0] in "01234567":
        return int(esc, 8)
    return _ESCAPES.get(esc)


def parse_macro_literal(text: str) -> Optional[Number]:
    """A macro body that is a numeric literal, optionally negated or parenthesized.

    ``(-4)``, ``-0x10``, ``(1.5f)`` parse; ``(1 << 4)`` or ``FOO`` do not.
    """
    text = text.strip()
    negate = False
    while text:
        if text.startswith("(") and text.endswith(")"):
            text = text[1:-1].strip()
        elif text[0] in "+-":
            negate ^= text[0] == "-"
            text = text[1:].strip()
        else:
            break
    value = parse_number_literal(text)
    if value is None:
        return None
    return -value if negate else value


def _c_div(a: Number, b: Number) -> Number:
    if b == 0:
        raise NotConstant("division by zero")
    if isinstance(a, int) and isinstance(b, int):
        q = abs(a) // abs(b)
        return q if (a >= 0) == (b >= 0) else -q
    return a / b


def _c_mod(a: Number, b: Number) -> Number:
    if isinstance(a, int) and isinstance(b, int):
        return a - b * _c_div(a, b)
    raise NotConstant("% on floating operands")


def _wrap(value: Number, prim: Primitive) -> Number:
    if prim.kind == PrimitiveKind.FLOAT:
        return float(value)
    if prim.kind == PrimitiveKind.BOOL:
        return 1 if value else 0
    value = int(value)
    mask = (1 << prim.width) - 1
    value &= mask
    if prim.signed and value >> (prim.width - 1):
        value -= 1 << prim.width
    return value


_BINARY_OPS = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
    "/": _c_div,
    "%": _c_mod,
    "<<": lambda a, b: int(a) << int(b),
    ">>": lambda a, b: int(a) >> int(b),
    "&": lambda a, b: int(a) & int(b),
    "|": lambda a, b: int(a) | int(b),
    "^": lambda a, b: int(a) ^ int(b),
    "==": lambda a, b: int(a == b),
    "!=": lambda a, b: int(a != b),
    "<": lambda a, b: int(a < b),
    ">": lambda a, b: int(a > b),
    "<=": lambda a, b: int(a <= b),
    ">=": lambda a, b: int(a >= b),
}


# ═══════════════════════════════════════════════════════════════════════
#  Evaluator
# ═══════════════════════════════════════════════════════════════════════

class ConstantEvaluator:
    """Evaluates constant expressions against enumerators and macros."""

    def __init__(self, macro_values: Optional[Dict[str, str]] = None):
        self.macro_values: Dict[str, str] = dict(macro_values or {})
        self.constants: Dict[str, Number] = {}
        self._evaluating: Set[str] = set()

    def define(self, name: str, value: Number):
        """Record a named constant (an enumerator or an evaluated macro)."""
        self.constants[name] = value

    def lookup(self, name: str) -> Optional[Number]:
        try:
            return self._identifier(name)
        except NotConstant:
            return None

    def evaluate(self, node: Node, source: bytes) -> Number:
        """Evaluate an expression node; raises NotConstant."""
        t = node.type

        if t == "number_literal":
            value = parse_number_literal(node_text(node, source))
            if value is None:
                raise NotConstant(node_text(node, source))
            return value

        if t == "char_literal":
            value = parse_char_literal(node_text(node, source))
            if value is None:
                raise NotConstant(node_text(node, source))
            return value

        if t == "true":
            return 1
        if t == "false":
            return 0

        if t == "identifier":
            return self._identifier(node_text(node, source))

        if t == "parenthesized_expression":
            inner = [c for c in node.named_children if c.type != "comment"]
            if len(inner) != 1:
                raise NotConstant(node_text(node, source))
            return self.evaluate(inner[0], source)

        if t == "unary_expression":
            op = node.child_by_field_name("operator").type
            arg = self.evaluate(node.child_by_field_name("argument"), source)
            if op == "-":
                return -arg
            if op == "+":
                return arg
            if op == "~":
                return ~int(arg)
            if op == "!":
                return int(not arg)
            raise NotConstant(node_text(node, source))

        if t == "binary_expression":
            op = node.child_by_field_name("operator").type
            left = self.evaluate(node.child_by_field_name("left"), source)
            if op == "&&":
                return int(bool(left) and bool(self.evaluate(node.child_by_field_name("right"), source)))
            if op == "||":
                return int(bool(left) or bool(self.evaluate(node.child_by_field_name("right"), source)))
            right = self.evaluate(node.child_by_field_name("right"), source)
            fn = _BINARY_OPS.get(op)
            if fn is None:
                raise NotConstant(node_text(node, source))
            return fn(left, right)

        if t == "conditional_expression":
            cond = self.evaluate(node.child_by_field_name("condition"), source)
            branch = "consequence" if cond else "alternative"
            return self.evaluate(node.child_by_field_name(branch), source)

        if t == "cast_expression":
            value = self.evaluate(node.child_by_field_name("value"), source)
            target = self._descriptor_type(node.child_by_field_name("type"), source)
            if isinstance(target, Primitive):
                return _wrap(value, target)
            return value

        if t == "sizeof_expression":
            type_node = node.child_by_field_name("type")
            if type_node is None:
                raise NotConstant(node_text(node, source))
            if type_node.child_by_field_name("declarator") is not None:
                # sizeof(T *) and friends
                if "*" in node_text(type_node, source):
                    return POINTER_WIDTH // 8
                raise NotConstant(node_text(node, source))
            target = self._descriptor_type(type_node, source)
            if isinstance(target, Primitive):
                return target.size
            raise NotConstant(node_text(node, source))

        raise NotConstant(node_text(node, source))

    def try_evaluate(self, node: Node, source: bytes) -> Optional[Number]:
        try:
            return self.evaluate(node, source)
        except NotConstant:
            return None

    def evaluate_text(self, text: str) -> Number:
        """Parse ``text`` as a C expression and evaluate it."""
        literal = parse_macro_literal(text)
        if literal is not None:
            return literal
        source = ("int __headerscan_v = (%s);\n" % text).encode("utf-8")
        tree = parse_bytes(source)
        if tree.root_node.has_error:
            raise NotConstant(text)
        decl = tree.root_node.named_children[0] if tree.root_node.named_children else None
        init = decl.child_by_field_name("declarator") if decl is not None else None
        value = init.child_by_field_name("value") if init is not None else None
        if value is None:
            raise NotConstant(text)
        return self.evaluate(value, source)

    def _identifier(self, name: str) -> Number:
        if name in self.constants:
            return self.constants[name]
        if name not in self.macro_values or name in self._evaluating:
            raise NotConstant(name)
        self._evaluating.add(name)
        try:
            return self.evaluate_text(self.macro_values[name])
        finally:
            self._evaluating.discard(name)

    @staticmethod
    def _descriptor_type(type_node: Optional[Node], source: bytes):
        if type_node is None:
            return None
        spelling = " ".join(
            node_text(c, source) for c in type_node.children
            if c.type in ("primitive_type", "sized_type_specifier", "type_identifier")
        )
        return builtin_type(spelling)
