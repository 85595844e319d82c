import os
import io
import re
import logging
from typing import List, Dict, Optional, Tuple
from pcpp import Preprocessor, OutputDirective, Action

logger = logging.getLogger(__name__)

_LINE_DIRECTIVE_RE = re.compile(r'^#line\s+(\d+)\s+"([^"]+)"')

# Name of the synthetic file that #includes a multi-header partition
WRAPPER_NAME = "__headerscan_wrapper__.h"


class _QuietPreprocessor(Preprocessor):
    """A pcpp Preprocessor that silences 'Include file not found' stderr noise.

    System headers (``<stdbool.h>``, ``<stdint.h>``) are usually not on the
    include path.  Their #include lines are passed through untouched and the
    built-in type table covers what they would have declared.
    """

    def on_include_not_found(self, is_malformed, is_system_include, curdir, includepath):
        logger.debug("pcpp: include not found: %s (system=%s)", includepath, is_system_include)
        raise OutputDirective(Action.IgnoreAndPassThrough)

    def on_error(self, file, line, msg):
        # Redirect all pcpp errors to debug logging instead of stderr
        logger.debug("pcpp: %s:%s: %s", file, line, msg)


class ExpandedSource:
    """Output of one preprocessor run.

    ``line_map[i]`` is ``(original_line, original_file)`` for line ``i + 1``
    of ``text``.  ``macros`` holds every object-like macro still defined at
    the end of the run, as its replacement text.
    """

    def __init__(self, text: str, line_map: List[Tuple[int, str]], macros: Dict[str, str]):
        self.text = text
        self.line_map = line_map
        self.macros = macros

    @property
    def source(self) -> bytes:
        return self.text.encode("utf-8")

    def original_location(self, expanded_line: int) -> Tuple[Optional[str], int]:
        """Convert a 1-indexed expanded line to (original_file, original_line)."""
        if expanded_line < 1 or expanded_line > len(self.line_map):
            return None, expanded_line
        orig_line, orig_file = self.line_map[expanded_line - 1]
        return orig_file, orig_line

    def files(self) -> List[str]:
        """Every original file that contributed lines, in first-seen order."""
        seen: Dict[str, None] = {}
        for _, f in self.line_map:
            seen.setdefault(f, None)
        return list(seen)


class PreprocessorEngine:
    """
    A C preprocessor wrapper using 'pcpp'.

    It expands macros, follows #include directives and evaluates conditional
    compilation, returning the expanded text.  The #line directives pcpp
    emits are parsed into a line map so that every declaration in the
    expanded text can be attributed to the header it came from.
    """

    def __init__(self, include_paths: Optional[List[str]] = None,
                 defines: Optional[Dict[str, str]] = None):
        self.include_paths = list(include_paths or [])
        # Pre-defined macros (e.g. from compiler or user config)
        self.defines: Dict[str, str] = dict(defines or {})

    def add_define(self, name: str, value: str = "1"):
        """Add a global macro definition (e.g. -DDEBUG=1)."""
        self.defines[name] = value

    def preprocess(self, headers: List[str]) -> ExpandedSource:
        """Expand one header, or a wrapper that #includes several.

        Paths are made absolute so pcpp resolves quoted includes relative to
        the including file and the #line directives carry absolute paths.
        """
        headers = [os.path.abspath(h) for h in headers]
        if len(headers) == 1:
            main = headers[0]
            with open(main, "r", encoding="utf-8", errors="replace") as f:
                text = f.read()
        else:
            main = os.path.join(os.path.dirname(headers[0]) if headers else os.getcwd(), WRAPPER_NAME)
            text = "".join('#include "%s"\n' % h for h in headers)
        return self.preprocess_text(text, main)

    def preprocess_text(self, text: str, source: str) -> ExpandedSource:
        """Expand in-memory text as if it were the file ``source``."""
        pp = _QuietPreprocessor()
        for d in self.include_paths:
            pp.add_path(d)
        for k, v in self.defines.items():
            pp.define("%s %s" % (k, v))

        output_buffer = io.StringIO()
        pp.parse(text, source=source)
        pp.write(output_buffer)

        expanded_text = output_buffer.getvalue()
        line_map = _build_line_map(expanded_text.splitlines(), source)
        macros = _object_like_macros(pp)
        logger.debug(
            "Preprocessed %s: %d expanded lines, %d macros",
            source, len(line_map), len(macros),
        )
        return ExpandedSource(expanded_text, line_map, macros)


def _build_line_map(lines: List[str], main_file: str) -> List[Tuple[int, str]]:
    """Map each expanded line to (original_line, original_file).

    A ``#line N "file"`` directive means the *next* line is line N of
    ``file``; the directive itself is mapped loosely to N-1.
    """
    final_map: List[Tuple[int, str]] = []
    current_line = 1
    current_file = _norm_path(main_file)

    for line in lines:
        m = _LINE_DIRECTIVE_RE.match(line)
        if m:
            next_line_num = int(m.group(1))
            new_file = _norm_path(m.group(2))
            final_map.append((next_line_num - 1, new_file))
            current_line = next_line_num
            current_file = new_file
        else:
            final_map.append((current_line, current_file))
            current_line += 1
    return final_map


def _object_like_macros(pp: Preprocessor) -> Dict[str, str]:
    """Collect object-like macros as replacement text (function-like skipped)."""
    defined_macros = {}
    for k, v in pp.macros.items():
        if getattr(v, "arglist", None) is not None:
            continue
        value = getattr(v, "value", None)
        if value is None:
            defined_macros[k] = ""
        elif isinstance(value, list):
            defined_macros[k] = "".join(tok.value for tok in value).strip()
        else:
            defined_macros[k] = str(value).strip()
    return defined_macros


def _norm_path(p: str) -> str:
    """Normalise to an absolute, forward-slash path for comparison."""
    if not p:
        return ""
    return os.path.abspath(p).replace("\\", "/")
