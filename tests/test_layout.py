"""
Layout calculator tests — sizes, alignment and bit-field offsets (LP64).
"""

import os
import sys
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from headerscan.layout import LayoutCalculator
from headerscan.model import (
    Array, Field, FunctionPointer, I8, I16, I32, I64, Named, Pointer, Record, U8, U32,
)
from headerscan.pipeline import extract_source
from headerscan.registry import TypeRegistry

FIXTURES = os.path.join(PROJECT_ROOT, "tests", "fixtures")


def _fixture(name):
    with open(os.path.join(FIXTURES, name), "r", encoding="utf-8") as f:
        return f.read()


class TestScalarLayout(unittest.TestCase):

    def setUp(self):
        self.calc = LayoutCalculator(TypeRegistry())

    def test_primitives_and_pointers(self):
        self.assertEqual(self.calc.size_align(I8), (1, 1))
        self.assertEqual(self.calc.size_align(I64), (8, 8))
        self.assertEqual(self.calc.size_align(Pointer(I8)), (8, 8))
        self.assertEqual(self.calc.size_align(FunctionPointer(I32, ())), (8, 8))

    def test_arrays(self):
        self.assertEqual(self.calc.size_align(Array(I16, (4, 3))), (24, 2))

    def test_padding(self):
        record = Record((Field("c", I8), Field("l", I64), Field("s", I16)))
        self.assertEqual(self.calc.size_align(record), (24, 8))

    def test_union(self):
        union = Record((Field("c", Array(U8, (5,))), Field("i", I32)), is_union=True)
        self.assertEqual(self.calc.size_align(union), (8, 4))


class TestBitfields(unittest.TestCase):

    def test_packing_into_storage_units(self):
        record = Record((
            Field("a", U32, bit_width=3),
            Field("b", U32, bit_width=30),   # 3 + 30 > 32, starts the next unit
            Field("c", U32, bit_width=2),
        ))
        registry = TypeRegistry()
        registry.insert("Bits", record)
        model = LayoutCalculator(registry).compute()
        entry = model.get("Bits")
        self.assertEqual([f.bit_offset for f in entry.definition.fields], [0, 32, 62])
        self.assertEqual((entry.size, entry.align), (8, 4))

    def test_zero_width_closes_unit(self):
        result = extract_source(_fixture("nested.h"))
        self.assertTrue(result.ok, result.errors)
        packet = result.registry.get("Packet")
        offsets = {f.name: f.bit_offset for f in packet.definition.fields}
        self.assertEqual(offsets["version"], 0)
        self.assertEqual(offsets["ihl"], 4)
        self.assertEqual(offsets["tos"], 8)
        self.assertEqual(offsets["length"], 16)
        self.assertEqual(offsets["id"], 32)
        self.assertEqual(offsets["anonymous_1"], 64)
        self.assertIsNone(offsets["flags"])
        self.assertEqual((packet.size, packet.align), (12, 4))


class TestRegistryLayout(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.result = extract_source(_fixture("simple.h"))

    def test_run_succeeded(self):
        self.assertTrue(self.result.ok, self.result.errors)
        self.assertTrue(self.result.registry.frozen)

    def test_struct_sizes(self):
        registry = self.result.registry
        self.assertEqual(registry.get("Rect").size, 16)
        self.assertEqual((registry.get("Widget").size, registry.get("Widget").align), (32, 8))
        self.assertEqual(registry.get("NetAddr").size, 20)
        self.assertEqual(registry.get("Value").size, 4)
        self.assertEqual(registry.get("QueueMapping").size, 96)

    def test_named_references_follow_entries(self):
        self.assertEqual(self.result.registry.get("Color").size, 4)
        self.assertEqual(self.result.registry.get("CompareFunc").size, 8)

    def test_constants_have_no_layout(self):
        self.assertIsNone(self.result.registry.get("MAX_WIDGETS").size)

    def test_nested_layout(self):
        result = extract_source(_fixture("nested.h"))
        deep = result.registry.get("Deep")
        self.assertEqual(result.registry.get("Deep_payload").size, 8)
        self.assertEqual((deep.size, deep.align), (48, 8))
        self.assertEqual(result.registry.get("Opaque").size, 0)


class TestSelfContainment(unittest.TestCase):

    def test_record_containing_itself_by_value(self):
        registry = TypeRegistry()
        registry.insert("Loop", Record((Field("again", Named("Loop")),)))
        with self.assertRaises(ValueError):
            LayoutCalculator(registry).compute()


if __name__ == "__main__":
    unittest.main()
