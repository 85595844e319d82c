"""
Type registry tests — idempotent insert, conflicts, ordering, freezing.
"""

import os
import sys
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from headerscan.errors import DuplicateDefinitionError, RegistryFrozenError
from headerscan.model import (
    Array, Enum, EnumVariant, Field, FunctionDecl, I32, Named, Parameter, Pointer,
    Record, U8, Void,
)
from headerscan.registry import TypeRegistry


def _point():
    return Record((Field("x", I32), Field("y", I32)))


class TestInsert(unittest.TestCase):

    def setUp(self):
        self.registry = TypeRegistry()

    def test_identical_struct_is_idempotent(self):
        """Re-inserting a structurally equal struct leaves the registry unchanged."""
        first = self.registry.insert("Point", _point())
        second = self.registry.insert("Point", _point())
        self.assertEqual(len(self.registry), 1)
        self.assertIs(first, second)

    def test_identical_union_and_enum_are_idempotent(self):
        union = Record((Field("i", I32), Field("b", Array(U8, (4,)))), is_union=True)
        enum = Enum(I32, (EnumVariant("A", 0), EnumVariant("B", 7)))
        for _ in range(3):
            self.registry.insert("Value", union)
            self.registry.insert("Kind", enum)
        self.assertEqual(len(self.registry), 2)

    def test_different_definition_conflicts(self):
        """Same name, different structure → DuplicateDefinitionError."""
        self.registry.insert("Point", _point())
        other = Record((Field("x", I32), Field("z", I32)))
        with self.assertRaises(DuplicateDefinitionError) as ctx:
            self.registry.insert("Point", other, file="b.h", line=3)
        self.assertEqual(ctx.exception.name, "Point")
        self.assertEqual(ctx.exception.incoming, other)
        self.assertIn("b.h:3", str(ctx.exception))

    def test_struct_vs_union_conflicts(self):
        self.registry.insert("U", Record((Field("a", I32),)))
        with self.assertRaises(DuplicateDefinitionError):
            self.registry.insert("U", Record((Field("a", I32),), is_union=True))

    def test_resolution_state_does_not_affect_equality(self):
        """Named with and without a resolved id compare equal."""
        self.registry.insert("P", Pointer(Named("Point")))
        self.registry.insert("P", Pointer(Named("Point", resolved=4)))
        self.assertEqual(len(self.registry), 1)

    def test_lookup(self):
        self.registry.insert("Opaque", Void())
        self.assertEqual(self.registry.lookup("Opaque"), Void())
        self.assertIsNone(self.registry.lookup("Missing"))
        self.assertIn("Opaque", self.registry)
        self.assertNotIn("Missing", self.registry)


class TestOrdering(unittest.TestCase):

    def test_insertion_order_and_ids(self):
        registry = TypeRegistry()
        for name in ("C", "A", "B"):
            registry.insert(name, Void())
        self.assertEqual([e.name for e in registry.all_entries()], ["C", "A", "B"])
        self.assertEqual(registry.id_of("A"), 1)
        self.assertEqual(registry.entry_by_id(2).name, "B")

    def test_all_entries_is_restartable(self):
        """The view can be iterated more than once and sees later inserts."""
        registry = TypeRegistry()
        registry.insert("A", Void())
        view = registry.all_entries()
        self.assertEqual(len(list(view)), 1)
        self.assertEqual(len(list(view)), 1)
        registry.insert("B", Void())
        self.assertEqual([e.name for e in view], ["A", "B"])


class TestFunctions(unittest.TestCase):

    def test_first_declaration_wins(self):
        registry = TypeRegistry()
        first = FunctionDecl("stat", I32, (Parameter("path", Pointer(U8)),))
        conflicting = FunctionDecl("stat", I32, ())
        self.assertTrue(registry.add_function(first))
        self.assertFalse(registry.add_function(conflicting))
        self.assertEqual(registry.function("stat"), first)

    def test_functions_do_not_collide_with_types(self):
        """``struct stat`` and ``stat()`` live side by side."""
        registry = TypeRegistry()
        registry.insert("stat", Record((Field("st_size", I32),)))
        registry.add_function(FunctionDecl("stat", I32, ()))
        self.assertEqual(len(registry), 1)
        self.assertEqual(len(registry.functions()), 1)


class TestFreeze(unittest.TestCase):

    def test_frozen_registry_rejects_mutation(self):
        registry = TypeRegistry()
        registry.insert("A", Void())
        registry.freeze()
        self.assertTrue(registry.frozen)
        with self.assertRaises(RegistryFrozenError):
            registry.insert("B", Void())
        with self.assertRaises(RegistryFrozenError):
            registry.add_function(FunctionDecl("f", Void()))
        with self.assertRaises(RegistryFrozenError):
            registry.mark_suppressed("x", "reason")
        # Reads still work
        self.assertEqual(registry.lookup("A"), Void())

    def test_suppression_records_survive_derive(self):
        registry = TypeRegistry()
        registry.mark_suppressed("__s128", "`__s128` is a 128-bit integer")
        self.assertEqual(
            registry.derive().suppression_reason("__s128"),
            "`__s128` is a 128-bit integer",
        )


if __name__ == "__main__":
    unittest.main()
