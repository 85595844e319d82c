"""
Traversal runs — front end → normalizer → validator → layout.

Each run owns its registry, except in shared mode where the partitions of
one config fill a single registry in order.  Declaration-level errors are
collected and the run continues; a duplicate definition stops normalization
and skips validation.  The result always carries the whole error list.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from headerscan.config import ExtractionConfig, PartitionConfig, RuleSettings
from headerscan.constexpr import ConstantEvaluator
from headerscan.errors import (
    DeclarationError,
    DuplicateDefinitionError,
    ExtractionFailed,
    HeaderScanError,
    UnresolvedReferenceError,
)
from headerscan.frontend import HeaderFrontend, TranslationUnit, collect_complete_tags
from headerscan.layout import LayoutCalculator
from headerscan.normalizer import DeclarationNormalizer
from headerscan.registry import TypeRegistry
from headerscan.rules import RuleTable
from headerscan.validator import CrossReferenceValidator

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    name: str
    registry: TypeRegistry
    errors: List[HeaderScanError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self):
        if self.ok:
            return
        raise ExtractionFailed(self.errors, self.summary())

    def summary(self) -> str:
        """Human-readable error report; each unresolved name is listed once."""
        lines = ["%s: %d error(s)" % (self.name, len(self.errors))]
        seen_unresolved = set()
        for error in self.errors:
            if isinstance(error, UnresolvedReferenceError):
                if error.referenced_name in seen_unresolved:
                    continue
                seen_unresolved.add(error.referenced_name)
                lines.append(
                    "  unresolved type `%s` (first used by `%s` at %s)" % (
                        error.referenced_name, error.referencing_type, error.location(),
                    )
                )
                if error.hint:
                    lines.append("    hint: %s" % error.hint)
            else:
                lines.append("  %s" % error)
        if seen_unresolved:
            lines.append(
                "  Add the headers defining these types to the partition's `traverse` list."
            )
        return "\n".join(lines)


def normalize_unit(unit: TranslationUnit, registry: TypeRegistry,
                   settings: Optional[RuleSettings] = None,
                   name: str = "default") -> Tuple[List[HeaderScanError], bool]:
    """Normalize one translation unit into ``registry``.

    Returns the collected errors and whether the run hit a fatal duplicate
    definition.  Entries are recorded as owned by partition ``name``.
    """
    normalizer = DeclarationNormalizer(
        registry,
        evaluator=ConstantEvaluator(unit.macro_values),
        rules=RuleTable.from_settings(settings),
        complete_tags=collect_complete_tags(unit.declarations),
        partition=name,
    )
    errors: List[HeaderScanError] = []

    try:
        for decl in unit.declarations:
            if not decl.in_scope:
                logger.debug("Out of scope: %s:%d (%s)", decl.file, decl.line, decl.node.type)
                normalizer.observe(decl)
                continue
            try:
                normalizer.normalize(decl)
            except DeclarationError as e:
                logger.warning("Skipping declaration: %s", e)
                errors.append(e)
        for macro in unit.macros:
            if macro.in_scope:
                normalizer.normalize_macro(macro)
    except DuplicateDefinitionError as e:
        logger.error("%s", e)
        errors.append(e)
        return errors, True

    logger.info(
        "[%s] normalized %d types, %d functions (%d declarations skipped, %d errors)",
        name, len(registry), len(registry.functions()), len(normalizer.skipped), len(errors),
    )
    return errors, False


def process_unit(unit: TranslationUnit, settings: Optional[RuleSettings] = None,
                 name: str = "default") -> ExtractionResult:
    """Normalize, validate and lay out one parsed translation unit."""
    registry = TypeRegistry()
    errors, fatal = normalize_unit(unit, registry, settings, name)
    if fatal:
        return ExtractionResult(name, registry, errors)

    report = CrossReferenceValidator(registry).validate()
    errors.extend(report.errors)
    if not report.ok:
        return ExtractionResult(name, report.model, errors)

    model = LayoutCalculator(report.model).compute()
    model.freeze()
    return ExtractionResult(name, model, errors)


def extract(headers: Sequence[str], traverse: Optional[Sequence[str]] = None,
            include_paths: Sequence[str] = (), defines: Optional[Dict[str, str]] = None,
            settings: Optional[RuleSettings] = None, name: str = "default") -> ExtractionResult:
    """One traversal run over a header set, preprocessed with pcpp."""
    frontend = HeaderFrontend(list(include_paths), defines)
    unit = frontend.parse_headers(list(headers), list(traverse) if traverse else None)
    return process_unit(unit, settings, name)


def extract_source(text: str, file_path: str = "<memory>.h",
                   settings: Optional[RuleSettings] = None) -> ExtractionResult:
    """One traversal run over in-memory source, without preprocessing."""
    unit = HeaderFrontend().parse_text(text, file_path)
    return process_unit(unit, settings, file_path)


def _parse_partition(config: ExtractionConfig, partition: PartitionConfig) -> TranslationUnit:
    headers = [config.resolve_path(h) for h in partition.headers]
    traverse = [config.resolve_path(t) for t in partition.traverse_files()]
    logger.info("Partition %s: %d header(s), %d traversed", partition.name, len(headers), len(traverse))
    frontend = HeaderFrontend(config.include_paths, config.defines)
    return frontend.parse_headers(headers, traverse)


def run(config: ExtractionConfig) -> List[ExtractionResult]:
    """One run per configured partition.

    Partitions are independent unless ``config.shared_registry`` is set,
    in which case they fill one registry in order (see run_shared).
    """
    if config.shared_registry:
        return run_shared(config)
    return [
        process_unit(_parse_partition(config, partition), config.settings, partition.name)
        for partition in config.partitions
    ]


def run_shared(config: ExtractionConfig) -> List[ExtractionResult]:
    """All partitions fill one registry, in configuration order.

    A partition may reference anything an earlier partition defined.  The
    first partition to define a name owns it; a conflicting definition in a
    later partition is dropped with a warning.  Each result reports the
    errors of its own partition.  When every partition is clean, all results
    share the validated, laid-out and frozen registry.
    """
    registry = TypeRegistry()
    results: List[ExtractionResult] = []
    for partition in config.partitions:
        unit = _parse_partition(config, partition)
        errors, fatal = normalize_unit(unit, registry, config.settings, partition.name)
        if not fatal:
            errors.extend(CrossReferenceValidator(registry).validate(partition.name).errors)
        results.append(ExtractionResult(partition.name, registry, errors))

    if any(not r.ok for r in results):
        return results

    # Every partition resolved against a prefix of this registry, so this is clean
    report = CrossReferenceValidator(registry).validate()
    model = LayoutCalculator(report.model).compute()
    model.freeze()
    for result in results:
        result.registry = model
    return results
