"""
fixedpoint_shims/pipeline.py
════════════════════════════

End-to-end analysis: Program Model → ranges → types → errors → report.

    ┌─────────────┐   ┌──────────────┐   ┌──────────────┐   ┌─────────────┐
    │ RangeEngine │──▶│ assign_types │──▶│ ErrorEngine  │──▶│ ErrorReport │
    └─────────────┘   └──────────────┘   └──────────────┘   └─────────────┘
                             ▲                                     │
                             └──── feedback(report, timing) ◀──────┘
                                   → SizingPolicy | None

Ranges do not depend on the sizing policy, so a feedback round only
re-derives types and re-runs error propagation.

The :class:`Analyzer` owns the memo tables (composite shapes and
constant formats).  They live as long as the analyzer and are never
shared through module state, so two analyzers are fully independent.

    >>> result = analyze(program, AnalysisConfig(exact_constants=True))
    >>> print(result.report.render_text())
    >>> result.info_of(node)
    ValueInfo(type=..., range=Range([0.0, 4.0]), ..., error=1.1e-09)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from fixedpoint_shims.config import AnalysisConfig
from fixedpoint_shims.diagnostics import DiagnosticLog
from fixedpoint_shims.error_engine import ErrorEngine, ErrorResult, max_magnitude
from fixedpoint_shims.fixed_point import FormatCache, SizingPolicy
from fixedpoint_shims.interpreter import Aggregate, PointerValue
from fixedpoint_shims.metadata import (
    AggregateInfo,
    MDInfo,
    ShapeCache,
    ValueInfo,
    check_shape,
)
from fixedpoint_shims.numeric_types import NumericType, Range
from fixedpoint_shims.program_model import Node, Opcode, Program
from fixedpoint_shims.range_engine import RangeEngine, RangeResult
from fixedpoint_shims.report import ErrorReport, build_report
from fixedpoint_shims.type_assignment import TypeMap, assign_types
from fixedpoint_shims.value_types import ScalarType, StructType, ValueType, strip_arrays

__all__ = ["Timing", "AnalysisResult", "Analyzer", "analyze", "FeedbackFn"]

logger = logging.getLogger(__name__)


@dataclass
class Timing:
    """Wall-clock seconds spent in each stage (summed over feedback rounds)."""
    ranges: float = 0.0
    types: float = 0.0
    errors: float = 0.0

    @property
    def total(self) -> float:
        return self.ranges + self.types + self.errors


FeedbackFn = Callable[[ErrorReport, Timing], Optional[SizingPolicy]]


@dataclass
class AnalysisResult:
    """
    Attributes
    ----------
    records : node id → ValueInfo (scalar SSA values) or AggregateInfo
              (struct values and the contents of memory locations), with
              resolved type, final range and error filled in
    policy  : sizing policy of the last round
    rounds  : number of type/error rounds run (1 without feedback)
    """
    program: Program
    config: AnalysisConfig
    ranges: RangeResult
    types: TypeMap
    errors: ErrorResult
    report: ErrorReport
    timing: Timing
    policy: SizingPolicy
    rounds: int = 1
    records: Dict[int, MDInfo] = field(default_factory=dict)

    def info_of(self, node: Node) -> Optional[MDInfo]:
        return self.records.get(node.id)

    @property
    def diagnostics(self) -> DiagnosticLog:
        return self.report.diagnostics


class Analyzer:
    """Runs the pipeline over programs with one set of memo tables.

    Parameters
    ----------
    config : AnalysisConfig, optional
    """

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        self.config = config or AnalysisConfig()
        self.shapes = ShapeCache()
        self.formats = FormatCache()

    # ---- Stages ----------------------------------------------------------

    def _types_and_errors(
        self, program: Program, ranges: RangeResult, policy: SizingPolicy, timing: Timing,
    ) -> Tuple[TypeMap, ErrorResult, ErrorReport]:
        type_log = DiagnosticLog()
        started = time.perf_counter()
        types = assign_types(program, ranges, policy, self.formats, type_log)
        timing.types += time.perf_counter() - started

        error_log = DiagnosticLog()
        started = time.perf_counter()
        errors = ErrorEngine(program, self.config, ranges, types, error_log).run()
        timing.errors += time.perf_counter() - started

        merged = DiagnosticLog()
        for log in (ranges.diagnostics, type_log, error_log):
            merged.extend(log)
        report = build_report(program, ranges, errors, merged, self.config.relative_error)
        return types, errors, report

    def analyze(
        self,
        program: Program,
        feedback: Optional[FeedbackFn] = None,
        max_feedback_rounds: int = 3,
    ) -> AnalysisResult:
        timing = Timing()
        started = time.perf_counter()
        ranges = RangeEngine(program, self.config, DiagnosticLog()).run()
        timing.ranges = time.perf_counter() - started

        policy = self.config.sizing_policy()
        types, errors, report = self._types_and_errors(program, ranges, policy, timing)
        rounds = 1
        while feedback is not None and rounds <= max_feedback_rounds:
            proposed = feedback(report, timing)
            if proposed is None or proposed == policy:
                break
            logger.info("feedback round %d: %s", rounds, proposed)
            policy = proposed
            types, errors, report = self._types_and_errors(program, ranges, policy, timing)
            rounds += 1

        result = AnalysisResult(
            program, self.config, ranges, types, errors, report, timing, policy, rounds
        )
        result.records = self._records(program, ranges, types, errors)
        logger.info(
            "analysis done in %.3fs: %d records, %d diagnostics",
            timing.total, len(result.records), len(report.diagnostics),
        )
        return result

    # ---- Records ---------------------------------------------------------

    def _records(self, program: Program, ranges: RangeResult, types: TypeMap,
                 errors: ErrorResult) -> Dict[int, MDInfo]:
        records: Dict[int, MDInfo] = {}
        interp = ranges.interpreter
        for nid in sorted(ranges.values):
            node = program.node(nid)
            if node.opcode in (Opcode.ALLOCA, Opcode.GLOBAL):
                continue
            value = ranges.values[nid]
            if isinstance(value, PointerValue):
                continue
            info = self._fill(
                node.type, value, errors.values.get(nid), node.seed,
                lambda path, _n=node: types.of_node(_n) if not path else None,
            )
            if info is not None:
                records[nid] = info

        if interp is not None:
            for key in sorted(ranges.memory, key=repr):
                node = interp.location_nodes[key]
                info = self._fill(
                    interp.location_types[key], ranges.memory[key],
                    errors.memory.get(key), node.seed,
                    lambda path, _k=key: types.of_location(_k, path),
                )
                if info is None:
                    continue
                check_shape(interp.location_types[key], info)
                target = node.id if isinstance(key, int) else key[1]
                records[target] = info
        return records

    def _fill(self, vtype: ValueType, rng: Any, err: Any, seed: Optional[MDInfo],
              type_at: Callable[[tuple], Optional[NumericType]]) -> Optional[MDInfo]:
        skeleton = self.shapes.shape_of(vtype)
        return _fill_into(skeleton, vtype, rng, err, seed, type_at, ())


def _fill_into(skeleton: Optional[AggregateInfo], vtype: ValueType, rng: Any, err: Any,
               seed: Optional[MDInfo], type_at: Callable[[tuple], Optional[NumericType]],
               path: tuple) -> Optional[MDInfo]:
    vtype = strip_arrays(vtype)
    if isinstance(vtype, ScalarType):
        if not isinstance(rng, Range):
            return None
        info = seed.clone() if isinstance(seed, ValueInfo) else ValueInfo()
        info.range = rng
        info.type = type_at(path) if vtype.is_float else None
        info.error = max_magnitude(err)
        return info
    if not isinstance(vtype, StructType):
        return None
    agg = skeleton if skeleton is not None else AggregateInfo.of_size(len(vtype.fields))
    for i, ftype in enumerate(vtype.fields):
        child = agg.fields[i]
        agg.fields[i] = _fill_into(
            child if isinstance(child, AggregateInfo) and isinstance(strip_arrays(ftype), StructType)
            else None,
            ftype,
            rng.fields[i] if isinstance(rng, Aggregate) else None,
            err.fields[i] if isinstance(err, Aggregate) else None,
            seed.fields[i] if isinstance(seed, AggregateInfo) else None,
            type_at,
            path + (i,),
        )
    return agg


def analyze(
    program: Program,
    config: Optional[AnalysisConfig] = None,
    feedback: Optional[FeedbackFn] = None,
    max_feedback_rounds: int = 3,
) -> AnalysisResult:
    """Run the whole analysis with a fresh :class:`Analyzer`."""
    return Analyzer(config).analyze(program, feedback, max_feedback_rounds)
