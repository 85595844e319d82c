"""
Error taxonomy.

  • DuplicateDefinitionError        — same name, different structure (fatal)
  • UnresolvedReferenceError        — named type used but never defined in scope
  • UnresolvableArrayDimensionError — array bound is not a constant >= 0
  • UnsupportedTypeError            — direct use of a scalar the target can't hold

The first four describe one problem each and are collected by the pipeline;
``ExtractionFailed`` wraps the whole list when a caller wants an exception.
"""

from typing import List, Optional


class HeaderScanError(Exception):
    """Base class for all headerscan errors."""

    file: Optional[str] = None
    line: Optional[int] = None

    def location(self) -> str:
        if self.file is None:
            return "<unknown>"
        if self.line is None:
            return self.file
        return "%s:%d" % (self.file, self.line)


class ConfigError(HeaderScanError):
    pass


class RegistryFrozenError(HeaderScanError):
    pass


class DuplicateDefinitionError(HeaderScanError):

    def __init__(self, name: str, existing, incoming,
                 file: Optional[str] = None, line: Optional[int] = None) -> None:
        self.name = name
        self.existing = existing
        self.incoming = incoming
        self.file = file
        self.line = line
        super().__init__(
            "conflicting definitions of `%s` at %s" % (name, self.location())
        )


class UnresolvedReferenceError(HeaderScanError):

    def __init__(self, referencing_type: str, field_path: str, referenced_name: str,
                 hint: Optional[str] = None,
                 file: Optional[str] = None, line: Optional[int] = None) -> None:
        self.referencing_type = referencing_type
        self.field_path = field_path
        self.referenced_name = referenced_name
        self.hint = hint
        self.file = file
        self.line = line
        message = "`%s` referenced in `%s` (%s) is not defined in the traversed headers" % (
            referenced_name, referencing_type, field_path,
        )
        if hint:
            message += " (%s)" % hint
        super().__init__(message)


class DeclarationError(HeaderScanError):
    """A single declaration could not be normalized; it is skipped."""

    def __init__(self, declaration: str, field_path: str, message: str,
                 file: Optional[str] = None, line: Optional[int] = None) -> None:
        self.declaration = declaration
        self.field_path = field_path
        self.file = file
        self.line = line
        super().__init__("%s: `%s` (%s): %s" % (self.location(), declaration, field_path, message))


class UnresolvableArrayDimensionError(DeclarationError):

    def __init__(self, declaration: str, field_path: str, expression: str,
                 file: Optional[str] = None, line: Optional[int] = None) -> None:
        self.expression = expression
        super().__init__(
            declaration, field_path,
            "array dimension `%s` is not a non-negative integer constant" % expression,
            file=file, line=line,
        )


class UnsupportedTypeError(DeclarationError):

    def __init__(self, declaration: str, field_path: str, type_name: str,
                 file: Optional[str] = None, line: Optional[int] = None) -> None:
        self.type_name = type_name
        super().__init__(
            declaration, field_path,
            "type `%s` has no representation in the target type system" % type_name,
            file=file, line=line,
        )


class ExtractionFailed(HeaderScanError):
    """Raised by ExtractionResult.raise_for_errors() with every collected error."""

    def __init__(self, errors: List[HeaderScanError], message: str) -> None:
        self.errors = list(errors)
        super().__init__(message)
