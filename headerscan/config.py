"""
Extraction configuration.

A config file (JSON or TOML) lists one or more partitions.  Each partition is
an independent traversal run: ``headers`` are parsed (everything they include
is visible for reference), ``traverse`` selects which files populate the
registry and defaults to ``headers``.

Example (TOML)::

    include_paths = ["include"]

    [defines]
    NDEBUG = "1"

    [[partitions]]
    name = "simple"
    headers = ["simple.h"]

With ``shared_registry = true`` the partitions fill one registry in order,
so a partition can reference types an earlier one defined.

Relative paths are resolved against the directory holding the config file.
"""

import json
import logging
import os
import tomllib
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from headerscan.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_RESERVED_NAMES = [
    "bool", "i8", "u8", "i16", "u16", "i32", "u32", "i64", "u64",
    "f32", "f64", "isize", "usize",
]


class RuleSettings(BaseModel):
    """Knobs for the suppression rule table."""
    reserved_names: List[str] = Field(default_factory=lambda: list(DEFAULT_RESERVED_NAMES))
    supported_int_widths: List[int] = Field(default_factory=lambda: [8, 16, 32, 64])
    supported_float_widths: List[int] = Field(default_factory=lambda: [32, 64])


class PartitionConfig(BaseModel):
    name: str
    headers: List[str]
    traverse: List[str] = Field(default_factory=list)

    def traverse_files(self) -> List[str]:
        """The traverse list, falling back to ``headers`` when empty."""
        return self.traverse or self.headers


class ExtractionConfig(BaseModel):
    include_paths: List[str] = Field(default_factory=list)
    defines: Dict[str, str] = Field(default_factory=dict)
    partitions: List[PartitionConfig] = Field(default_factory=list)
    settings: RuleSettings = Field(default_factory=RuleSettings)
    # One registry for all partitions; later partitions see earlier ones
    shared_registry: bool = False
    base_dir: str = "."

    def resolve_path(self, path: str) -> str:
        """Resolve a header path: absolute as-is, then base_dir, then include paths."""
        if os.path.isabs(path):
            return path
        candidate = os.path.join(self.base_dir, path)
        if os.path.isfile(candidate):
            return os.path.abspath(candidate)
        for inc in self.include_paths:
            candidate = os.path.join(inc, path)
            if os.path.isfile(candidate):
                return os.path.abspath(candidate)
        # Fall back so the preprocessor reports the missing file
        return os.path.abspath(os.path.join(self.base_dir, path))


def load_config(path: str) -> ExtractionConfig:
    """Load and validate a JSON or TOML configuration file."""
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as e:
        raise ConfigError("Unable to read config file %s: %s" % (path, e)) from e

    try:
        if path.endswith(".toml"):
            data = tomllib.loads(raw.decode("utf-8"))
        else:
            data = json.loads(raw.decode("utf-8"))
    except (tomllib.TOMLDecodeError, json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigError("Invalid config file %s: %s" % (path, e)) from e

    if not isinstance(data, dict):
        raise ConfigError("Config file %s must contain a table/object at top level" % path)

    base_dir = os.path.dirname(os.path.abspath(path))
    data.setdefault("base_dir", base_dir)
    try:
        config = ExtractionConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError("Invalid config file %s: %s" % (path, e)) from e

    config.base_dir = _absolute(config.base_dir, base_dir)
    config.include_paths = [_absolute(p, config.base_dir) for p in config.include_paths]
    logger.info(
        "Loaded config %s: %d partition(s), %d include path(s)",
        path, len(config.partitions), len(config.include_paths),
    )
    return config


def _absolute(path: str, base_dir: Optional[str]) -> str:
    if os.path.isabs(path):
        return path
    return os.path.abspath(os.path.join(base_dir or ".", path))
