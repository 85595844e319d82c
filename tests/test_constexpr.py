"""
Constant evaluator and literal parsing tests.
"""

import os
import sys
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from headerscan.constexpr import (
    ConstantEvaluator,
    NotConstant,
    parse_char_literal,
    parse_macro_literal,
    parse_number_literal,
)


class TestLiterals(unittest.TestCase):

    def test_integer_forms(self):
        cases = {
            "42": 42, "0": 0, "0x1F": 31, "0X10UL": 16, "0755": 493,
            "0b101": 5, "10u": 10, "3LL": 3, "1'000'000": 1000000,
        }
        for text, expected in cases.items():
            with self.subTest(text=text):
                self.assertEqual(parse_number_literal(text), expected)

    def test_float_forms(self):
        self.assertEqual(parse_number_literal("1.5f"), 1.5)
        self.assertEqual(parse_number_literal("2e3"), 2000.0)
        self.assertEqual(parse_number_literal(".25"), 0.25)

    def test_not_literals(self):
        for text in ("FOO", "1 + 2", "08", "", "0x"):
            with self.subTest(text=text):
                self.assertIsNone(parse_number_literal(text))

    def test_macro_literals(self):
        self.assertEqual(parse_macro_literal("(-4)"), -4)
        self.assertEqual(parse_macro_literal("-0x10"), -16)
        self.assertEqual(parse_macro_literal("((256))"), 256)
        self.assertIsNone(parse_macro_literal("(1 << 4)"))
        self.assertIsNone(parse_macro_literal("\"text\""))

    def test_char_literals(self):
        self.assertEqual(parse_char_literal("'A'"), 65)
        self.assertEqual(parse_char_literal("'\\n'"), 10)
        self.assertEqual(parse_char_literal("'\\x41'"), 65)
        self.assertEqual(parse_char_literal("'\\0'"), 0)


class TestEvaluator(unittest.TestCase):

    def setUp(self):
        self.evaluator = ConstantEvaluator({
            "PAGE": "4096",
            "PAGES": "(PAGE * 2)",
            "SELF": "SELF + 1",
            "NAME": "\"abc\"",
        })

    def test_arithmetic(self):
        cases = {
            "1 + 2 * 3": 7, "(1 + 2) * 3": 9, "1 << 4": 16, "0xFF & ~0x0F": 0xF0,
            "10 % 3": 1, "-7 / 2": -3, "-7 % 2": -1, "3 > 2 ? 10 : 20": 10,
            "!0": 1, "1 && 0": 0, "0 || 5": 1, "(unsigned char)300": 44,
            "sizeof(int)": 4, "sizeof(char *)": 8, "sizeof(unsigned long)": 8, "'a' + 1": 98,
        }
        for text, expected in cases.items():
            with self.subTest(text=text):
                self.assertEqual(self.evaluator.evaluate_text(text), expected)

    def test_macro_chain(self):
        self.assertEqual(self.evaluator.evaluate_text("PAGES + 1"), 8193)
        self.assertEqual(self.evaluator.lookup("PAGES"), 8192)

    def test_enumerator_constants_take_precedence(self):
        self.evaluator.define("PAGE", 1)
        self.assertEqual(self.evaluator.evaluate_text("PAGE"), 1)

    def test_self_referencing_macro(self):
        with self.assertRaises(NotConstant):
            self.evaluator.evaluate_text("SELF")

    def test_not_constant(self):
        for text in ("UNKNOWN", "NAME", "1 / 0", "x = 3"):
            with self.subTest(text=text):
                with self.assertRaises(NotConstant):
                    self.evaluator.evaluate_text(text)


if __name__ == "__main__":
    unittest.main()
