"""
fixedpoint_shims — Numeric Abstract Interpretation for Float→Fixed Conversion
============================================================================

This package computes, for every floating-point value of a program, the
range it can take, a fixed-point format able to hold it, and the
worst-case error the conversion introduces.

Core modules
------------
numeric_types
    Range, FixedPointFormat, FloatFormat.
range_ops
    Closed-form interval arithmetic and math-function ranges.
fixed_point
    The Fixed-Point Type Deriver and its constant memo.
metadata
    ValueInfo / AggregateInfo records, composite shapes, persisted records.
program_model
    In-memory Program Model: functions, blocks, loops, call graph, Builder.
interpreter
    Bounded abstract interpreter shared by the two propagation engines.
range_engine / error_engine
    Range and error propagation.
type_assignment
    Applies the deriver to every analysed float value.
pipeline / report
    End-to-end analysis, feedback loop, error report.
ir_reader
    Textual program listings.

Quick start
-----------
>>> from fixedpoint_shims import analyze, parse_listing
>>> program = parse_listing(open("kernel.fxl").read())
>>> result = analyze(program)
>>> print(result.report.render_text())

Package layout
--------------
::

    fixedpoint_shims/
    ├── __init__.py            ← this file
    ├── errors.py
    ├── diagnostics.py
    ├── config.py
    ├── numeric_types.py
    ├── range_ops.py
    ├── fixed_point.py
    ├── value_types.py
    ├── metadata.py
    ├── program_model.py
    ├── interpreter.py
    ├── range_engine.py
    ├── type_assignment.py
    ├── affine.py
    ├── error_engine.py
    ├── report.py
    ├── pipeline.py
    └── ir_reader.py
"""

from __future__ import annotations

import logging

from fixedpoint_shims.config import AnalysisConfig, load_config
from fixedpoint_shims.diagnostics import (
    Diagnostic,
    DiagnosticKind,
    DiagnosticLog,
    DiagnosticSeverity,
)
from fixedpoint_shims.error_engine import ErrorEngine, ErrorResult
from fixedpoint_shims.errors import (
    ConfigError,
    FixedPointShimsError,
    ListingSyntaxError,
    ProgramModelError,
    RecordFormatError,
    StructuralMalformationError,
)
from fixedpoint_shims.fixed_point import FormatCache, SizingPolicy, TypeGenError, derive_format
from fixedpoint_shims.ir_reader import parse_listing, read_listing
from fixedpoint_shims.metadata import AggregateInfo, CmpErrorInfo, ShapeCache, ValueInfo
from fixedpoint_shims.numeric_types import FixedPointFormat, FloatFormat, FloatStandard, Range
from fixedpoint_shims.pipeline import AnalysisResult, Analyzer, Timing, analyze
from fixedpoint_shims.program_model import Builder, Program
from fixedpoint_shims.range_engine import RangeEngine, RangeResult
from fixedpoint_shims.report import ErrorReport

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "AnalysisConfig",
    "load_config",
    "Diagnostic",
    "DiagnosticKind",
    "DiagnosticLog",
    "DiagnosticSeverity",
    "ErrorEngine",
    "ErrorResult",
    "ConfigError",
    "FixedPointShimsError",
    "ListingSyntaxError",
    "ProgramModelError",
    "RecordFormatError",
    "StructuralMalformationError",
    "FormatCache",
    "SizingPolicy",
    "TypeGenError",
    "derive_format",
    "parse_listing",
    "read_listing",
    "AggregateInfo",
    "CmpErrorInfo",
    "ShapeCache",
    "ValueInfo",
    "FixedPointFormat",
    "FloatFormat",
    "FloatStandard",
    "Range",
    "AnalysisResult",
    "Analyzer",
    "Timing",
    "analyze",
    "Builder",
    "Program",
    "RangeEngine",
    "RangeResult",
    "ErrorReport",
    "__version__",
]
