"""
Cross-reference validator tests.
"""

import os
import sys
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from headerscan.model import (
    Array, Enum, EnumVariant, Field, FunctionDecl, FunctionPointer, I32, Named,
    Parameter, Pointer, Record, Void,
)
from headerscan.registry import TypeRegistry
from headerscan.validator import CrossReferenceValidator


class TestResolution(unittest.TestCase):

    def setUp(self):
        self.registry = TypeRegistry()
        self.registry.insert("Point", Record((Field("x", I32), Field("y", I32))))
        self.registry.insert("Kind", Enum(I32, (EnumVariant("K_A", 0),)))

    def test_resolved_ids(self):
        """Found references come back carrying the registry type id."""
        self.registry.insert("Shape", Record((
            Field("origin", Named("Point")),
            Field("corners", Array(Named("Point"), (4,))),
            Field("kind", Pointer(Named("Kind"))),
        )))
        report = CrossReferenceValidator(self.registry).validate()
        self.assertTrue(report.ok)
        shape = report.model.lookup("Shape")
        self.assertEqual(shape.fields[0].type.resolved, 0)
        self.assertEqual(shape.fields[1].type.element.resolved, 0)
        self.assertEqual(shape.fields[2].type.pointee.resolved, 1)
        self.assertTrue(shape.fields[0].type.is_resolved)
        # The input registry is untouched
        self.assertIsNone(self.registry.lookup("Shape").fields[0].type.resolved)
        self.assertFalse(self.registry.lookup("Shape").fields[0].type.is_resolved)

    def test_model_keeps_order_and_ids(self):
        self.registry.insert("Alias", Named("Point"))
        report = CrossReferenceValidator(self.registry).validate()
        self.assertEqual(
            [(e.name, e.type_id) for e in report.model.all_entries()],
            [(e.name, e.type_id) for e in self.registry.all_entries()],
        )

    def test_void_is_never_an_error(self):
        self.registry.insert("Opaque", Void())
        self.registry.insert("Handle", Pointer(Void()))
        self.assertTrue(CrossReferenceValidator(self.registry).validate().ok)

    def test_function_pointer_and_function_references(self):
        self.registry.insert("Callback", FunctionPointer(Named("Kind"), (Pointer(Named("Point")),)))
        self.registry.add_function(FunctionDecl(
            "move", Void(), (Parameter("p", Pointer(Named("Point"))),),
        ))
        report = CrossReferenceValidator(self.registry).validate()
        self.assertTrue(report.ok)
        fn = report.model.function("move")
        self.assertEqual(fn.parameters[0].type.pointee.resolved, 0)
        self.assertEqual(report.model.lookup("Callback").return_type.resolved, 1)


class TestUnresolved(unittest.TestCase):

    def test_single_missing_reference(self):
        registry = TypeRegistry()
        registry.insert("Holder", Record((Field("ext", Pointer(Named("DefinedElsewhere"))),)))
        report = CrossReferenceValidator(registry).validate()
        self.assertFalse(report.ok)
        self.assertEqual(len(report.errors), 1)
        error = report.errors[0]
        self.assertEqual(error.referencing_type, "Holder")
        self.assertEqual(error.field_path, "Holder.ext")
        self.assertEqual(error.referenced_name, "DefinedElsewhere")
        self.assertIn("traverse", error.hint)

    def test_errors_are_collected_not_short_circuited(self):
        registry = TypeRegistry()
        registry.insert("A", Record((Field("m1", Named("Missing1")), Field("m2", Named("Missing2")))))
        registry.insert("F", FunctionPointer(Named("Missing3"), (Named("Missing1"),)))
        registry.add_function(FunctionDecl("g", Named("Missing4"), ()))
        report = CrossReferenceValidator(registry).validate()
        self.assertEqual(
            [e.referenced_name for e in report.errors],
            ["Missing1", "Missing2", "Missing3", "Missing1", "Missing4"],
        )
        self.assertEqual(report.errors[-1].referencing_type, "g")
        self.assertEqual(report.errors[-1].field_path, "return")

    def test_errors_scoped_to_partition(self):
        registry = TypeRegistry()
        registry.insert("A", Record((Field("m", Named("Gone")),)), partition="first")
        registry.insert("B", Record((Field("m", Named("Gone")),)), partition="second")
        registry.add_function(FunctionDecl("f", Named("Gone"), (), partition="first"))
        report = CrossReferenceValidator(registry).validate("second")
        self.assertEqual([e.referencing_type for e in report.errors], ["B"])
        self.assertEqual(report.model.get("A").partition, "first")
        self.assertEqual(len(CrossReferenceValidator(registry).validate().errors), 3)

    def test_suppressed_name_hint(self):
        registry = TypeRegistry()
        registry.mark_suppressed("__u128", "`__u128` is a 128-bit integer")
        registry.insert("Big", Record((Field("v", Named("__u128")),)))
        report = CrossReferenceValidator(registry).validate()
        self.assertEqual(report.model.suppressed_names(), {"__u128": "`__u128` is a 128-bit integer"})
        error = report.errors[0]
        self.assertIn("unsupported", error.hint)
        self.assertIn("__u128", str(error))


if __name__ == "__main__":
    unittest.main()
