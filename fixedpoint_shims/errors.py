"""
fixedpoint_shims/errors.py
══════════════════════════

Exception hierarchy for fixedpoint-shims.

Only *structural* problems raise.  Ordinary imprecision in the analysed
program (unknown trip counts, recursion cut-offs, divisors that may be
zero, ranges that do not fit a fixed-point format) is never an
exception: it is recorded as a :class:`~fixedpoint_shims.diagnostics.Diagnostic`
and the analysis continues with a conservative value.

Error Hierarchy
───────────────

    FixedPointShimsError (base)
    ├── StructuralMalformationError  - composite shape / AggregateInfo mismatch
    ├── RecordFormatError            - malformed persisted metadata record
    ├── ConfigError                  - invalid configuration value
    └── ProgramModelError            - inconsistent program model
        └── ListingSyntaxError       - textual listing does not parse
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class FixedPointShimsError(Exception):
    """Base class of every exception raised by this package."""


class StructuralMalformationError(FixedPointShimsError):
    """The arity of a composite type and its AggregateInfo record disagree.

    This is an internal-invariant violation: it means the program model
    and previously produced metadata have diverged, not that the analysed
    program is imprecise.
    """

    def __init__(
        self,
        message: str,
        *,
        type_name: Optional[str] = None,
        expected: Optional[int] = None,
        actual: Optional[int] = None,
        path: Sequence[int] = (),
    ) -> None:
        self.type_name = type_name
        self.expected = expected
        self.actual = actual
        self.path = tuple(path)
        details = []
        if type_name:
            details.append(f"type={type_name}")
        if expected is not None:
            details.append(f"expected={expected}")
        if actual is not None:
            details.append(f"actual={actual}")
        if self.path:
            details.append(f"path={list(self.path)}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class RecordFormatError(FixedPointShimsError):
    """A persisted metadata record does not follow the record layout."""

    def __init__(self, message: str, record: Any = None) -> None:
        self.record = record
        if record is not None:
            message = f"{message}: {record!r}"
        super().__init__(message)


class ConfigError(FixedPointShimsError):
    """A configuration key is unknown or its value is out of range."""

    def __init__(self, key: str, message: str) -> None:
        self.key = key
        super().__init__(f"{key}: {message}")


class ProgramModelError(FixedPointShimsError):
    """The program model is internally inconsistent."""


class ListingSyntaxError(ProgramModelError):
    """A textual program listing could not be parsed."""

    def __init__(
        self,
        message: str,
        *,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> None:
        self.line = line
        self.column = column
        if line is not None:
            loc = f"line {line}" if column is None else f"line {line}, column {column}"
            message = f"{message} ({loc})"
        super().__init__(message)
