"""
Config loading tests — JSON and TOML, path resolution, validation errors.
"""

import json
import os
import shutil
import sys
import tempfile
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from headerscan.config import (
    DEFAULT_RESERVED_NAMES,
    ExtractionConfig,
    PartitionConfig,
    RuleSettings,
    load_config,
)
from headerscan.errors import ConfigError

FIXTURES = os.path.join(PROJECT_ROOT, "tests", "fixtures")


class TestLoadConfig(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def _write(self, name, content):
        path = os.path.join(self.tmp, name)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        return path

    def test_json(self):
        config = load_config(os.path.join(FIXTURES, "config.json"))
        self.assertEqual(config.base_dir, os.path.abspath(FIXTURES))
        self.assertEqual(config.include_paths, [os.path.join(os.path.abspath(FIXTURES), "multi")])
        self.assertEqual(config.defines, {"SHAPES_WIDE": "1"})
        self.assertEqual([p.name for p in config.partitions], ["shapes", "shapes_only"])
        self.assertEqual(config.settings.reserved_names, DEFAULT_RESERVED_NAMES)
        self.assertFalse(config.shared_registry)

    def test_toml(self):
        config = load_config(os.path.join(FIXTURES, "config.toml"))
        self.assertEqual(config.settings.reserved_names, ["bool", "u8"])
        self.assertEqual(config.settings.supported_int_widths, [8, 16, 32, 64])
        full = config.partitions[1]
        self.assertEqual(len(full.traverse_files()), 2)

    def test_traverse_defaults_to_headers(self):
        partition = PartitionConfig(name="p", headers=["a.h", "b.h"])
        self.assertEqual(partition.traverse_files(), ["a.h", "b.h"])

    def test_resolve_path(self):
        config = load_config(os.path.join(FIXTURES, "config.json"))
        base = os.path.abspath(FIXTURES)
        # Relative to the config file's directory first
        self.assertEqual(config.resolve_path("multi/base.h"), os.path.join(base, "multi", "base.h"))
        # Then through the include paths
        self.assertEqual(config.resolve_path("shapes.h"), os.path.join(base, "multi", "shapes.h"))
        # Absolute paths pass through
        self.assertEqual(config.resolve_path("/abs/x.h"), "/abs/x.h")
        # Missing files fall back to base_dir
        self.assertEqual(config.resolve_path("nope.h"), os.path.join(base, "nope.h"))

    def test_explicit_relative_base_dir(self):
        path = self._write("c.json", json.dumps({"base_dir": "src", "include_paths": ["inc"]}))
        config = load_config(path)
        self.assertEqual(config.base_dir, os.path.join(self.tmp, "src"))
        self.assertEqual(config.include_paths, [os.path.join(self.tmp, "src", "inc")])

    def test_missing_file(self):
        with self.assertRaises(ConfigError):
            load_config(os.path.join(self.tmp, "absent.json"))

    def test_malformed_files(self):
        cases = {
            "bad.json": "{not json",
            "bad.toml": "partitions = [",
            "list.json": "[1, 2]",
            "schema.json": json.dumps({"partitions": [{"name": "p"}]}),
            "types.toml": "include_paths = 3\n",
        }
        for name, content in cases.items():
            with self.subTest(name=name):
                with self.assertRaises(ConfigError):
                    load_config(self._write(name, content))


class TestDefaults(unittest.TestCase):

    def test_empty_config(self):
        config = ExtractionConfig()
        self.assertEqual(config.partitions, [])
        self.assertEqual(config.defines, {})
        self.assertIsInstance(config.settings, RuleSettings)
        self.assertEqual(config.settings.supported_float_widths, [32, 64])

    def test_settings_are_not_shared(self):
        a, b = RuleSettings(), RuleSettings()
        a.reserved_names.append("extra")
        self.assertNotIn("extra", b.reserved_names)
        self.assertNotIn("extra", DEFAULT_RESERVED_NAMES)


if __name__ == "__main__":
    unittest.main()
