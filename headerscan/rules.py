"""
Typedef suppression rules.

Each rule looks at one ``typedef <target> <alias>`` before it reaches the
registry.  The first rule that matches wins and the typedef produces no
entry.  A suppression is never an error; the normalizer remembers what later
references to the alias should become.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from headerscan.config import RuleSettings
from headerscan.model import CType, Named, Primitive, PrimitiveKind, builtin_spellings, format_type

logger = logging.getLogger(__name__)


@dataclass
class Suppression:
    rule: str
    reason: str
    # What references to the alias become; None keeps them as Named(alias)
    replacement: Optional[CType]


class SuppressionRule:
    name = "rule"

    def check(self, alias: str, target: CType, registry) -> Optional[Suppression]:
        raise NotImplementedError


class SelfAliasRule(SuppressionRule):
    """``typedef struct Foo Foo;``, ``typedef _Bool bool;`` and alias chains back to the name."""

    name = "self-alias"

    def check(self, alias, target, registry):
        if isinstance(target, Primitive) and alias in builtin_spellings(target):
            return Suppression(self.name, "`%s` re-declares a built-in spelling" % alias, target)

        seen: Set[str] = set()
        current = target
        while isinstance(current, Named) and current.name not in seen:
            if current.name == alias:
                return Suppression(self.name, "`%s` aliases itself" % alias, target)
            seen.add(current.name)
            current = registry.lookup(current.name)
        return None


class ReservedNameRule(SuppressionRule):
    """The alias collides with a primitive name of the binding target."""

    name = "reserved-name"

    def __init__(self, reserved_names: Iterable[str]):
        self.reserved_names = frozenset(reserved_names)

    def check(self, alias, target, registry):
        if alias in self.reserved_names:
            return Suppression(self.name, "`%s` is a reserved type name" % alias, target)
        return None


class UnsupportedWidthRule(SuppressionRule):
    """Scalars the binding target cannot hold (``__int128``, ``long double``)."""

    name = "unsupported-width"

    def __init__(self, int_widths: Iterable[int] = (8, 16, 32, 64),
                 float_widths: Iterable[int] = (32, 64)):
        self.int_widths = frozenset(int_widths)
        self.float_widths = frozenset(float_widths)

    def is_supported(self, prim: Primitive) -> bool:
        if prim.kind == PrimitiveKind.INTEGER:
            return prim.width in self.int_widths
        if prim.kind == PrimitiveKind.FLOAT:
            return prim.width in self.float_widths
        return True

    def check(self, alias, target, registry):
        if isinstance(target, Primitive) and not self.is_supported(target):
            return Suppression(
                self.name, "`%s` is a %d-bit %s" % (alias, target.width, target.kind.value), None,
            )
        if isinstance(target, Named) and registry.suppression_reason(target.name):
            return Suppression(
                self.name,
                "`%s` aliases `%s` (%s)" % (alias, target.name, registry.suppression_reason(target.name)),
                None,
            )
        return None


class RuleTable:
    """Ordered suppression rules; first match wins."""

    def __init__(self, rules: List[SuppressionRule]):
        self.rules = list(rules)

    @classmethod
    def from_settings(cls, settings: Optional[RuleSettings] = None) -> "RuleTable":
        settings = settings or RuleSettings()
        return cls([
            SelfAliasRule(),
            ReservedNameRule(settings.reserved_names),
            UnsupportedWidthRule(settings.supported_int_widths, settings.supported_float_widths),
        ])

    def is_supported(self, prim: Primitive) -> bool:
        for rule in self.rules:
            if isinstance(rule, UnsupportedWidthRule) and not rule.is_supported(prim):
                return False
        return True

    def apply(self, alias: str, target: CType, registry) -> Optional[Suppression]:
        for rule in self.rules:
            result = rule.check(alias, target, registry)
            if result is not None:
                logger.debug(
                    "Suppressed typedef %s -> %s [%s]: %s",
                    alias, format_type(target), result.rule, result.reason,
                )
                if result.replacement is None:
                    registry.mark_suppressed(alias, result.reason)
                return result
        return None
