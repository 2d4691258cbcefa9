"""
fixedpoint_shims/report.py
══════════════════════════

Error report handed to users and to the feedback loop.

    ┌────────────────────┬──────────────────┐
    │ target             │ max error        │
    ├────────────────────┼──────────────────┤
    │ out                │ 3.7253e-09       │
    │ accumulator        │ ∞                │
    └────────────────────┴──────────────────┘

Errors are absolute unless the analysis runs in relative mode, where
each node's error is divided by the largest magnitude of its range.
A target none of whose members was reached reports ``None``.
"""

from __future__ import annotations

import io
import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from fixedpoint_shims.affine import AffineError
from fixedpoint_shims.diagnostics import DiagnosticLog
from fixedpoint_shims.error_engine import ErrorResult
from fixedpoint_shims.interpreter import Aggregate
from fixedpoint_shims.numeric_types import Range
from fixedpoint_shims.program_model import Program
from fixedpoint_shims.range_engine import RangeResult

__all__ = ["ErrorReport", "build_report"]


def _fmt(value: Optional[float]) -> str:
    if value is None:
        return "-"
    if math.isinf(value):
        return "∞"
    return f"{value:.5g}"


def _json_number(value: Optional[float]) -> Any:
    if value is not None and math.isinf(value):
        return "inf"
    return value


@dataclass
class ErrorReport:
    """
    Attributes
    ----------
    targets           : target name → maximum error over its members
    node_errors       : node id → error of that node
    risky_comparisons : (node id, tolerance) of comparisons that may flip
    diagnostics       : everything the engines reported
    relative          : whether errors are relative to the value magnitude
    """
    targets: Dict[str, Optional[float]] = field(default_factory=dict)
    node_errors: Dict[int, float] = field(default_factory=dict)
    risky_comparisons: List[Tuple[int, float]] = field(default_factory=list)
    diagnostics: DiagnosticLog = field(default_factory=DiagnosticLog)
    relative: bool = False

    def max_error(self) -> Optional[float]:
        found = [e for e in self.targets.values() if e is not None]
        return max(found) if found else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": "relative" if self.relative else "absolute",
            "targets": {k: _json_number(v) for k, v in self.targets.items()},
            "nodeErrors": {str(k): _json_number(v) for k, v in sorted(self.node_errors.items())},
            "riskyComparisons": [
                {"node": nid, "tolerance": _json_number(tol)} for nid, tol in self.risky_comparisons
            ],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }

    def to_json_str(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)

    def render_text(self) -> str:
        out = io.StringIO()
        title = "max relative error" if self.relative else "max error"
        name_w = max([len("target")] + [len(n) for n in self.targets])
        val_w = max(len(title), 12)
        bar = "─"
        out.write(f"┌{bar * (name_w + 2)}┬{bar * (val_w + 2)}┐\n")
        out.write(f"│ {'target':<{name_w}} │ {title:<{val_w}} │\n")
        out.write(f"├{bar * (name_w + 2)}┼{bar * (val_w + 2)}┤\n")
        for name, err in self.targets.items():
            out.write(f"│ {name:<{name_w}} │ {_fmt(err):<{val_w}} │\n")
        out.write(f"└{bar * (name_w + 2)}┴{bar * (val_w + 2)}┘\n")
        if self.risky_comparisons:
            out.write("\nrisky comparisons:\n")
            for nid, tol in self.risky_comparisons:
                out.write(f"  node {nid}: tolerance {_fmt(tol)}\n")
        if len(self.diagnostics):
            out.write(f"\n{len(self.diagnostics)} diagnostic(s):\n")
            for diag in self.diagnostics:
                out.write(f"  {diag}\n")
        return out.getvalue()


def _leaf_relative(error: float, rng: Any) -> float:
    if not isinstance(rng, Range) or rng.is_invalid() or not rng.is_bounded():
        return math.inf if error > 0 else 0.0
    magnitude = rng.magnitude
    if magnitude == 0.0:
        return 0.0 if error == 0.0 else math.inf
    return error / magnitude


def _relative_of(error: Any, rng: Any) -> Optional[float]:
    if isinstance(error, Aggregate):
        # field by field; a range that is not split the same way bounds nothing
        fields = rng.fields if isinstance(rng, Aggregate) else (None,) * len(error)
        found = [
            r for r in (_relative_of(e, f) for e, f in zip(error.fields, fields))
            if r is not None
        ]
        return max(found) if found else None
    if isinstance(error, AffineError):
        return _leaf_relative(error.magnitude, rng)
    return None


def _relative(error: float, ranges: RangeResult, errors: ErrorResult, node: Any) -> float:
    rel = _relative_of(errors.value_of(node), ranges.value_of(node))
    return _leaf_relative(error, None) if rel is None else rel


def build_report(
    program: Program,
    ranges: RangeResult,
    errors: ErrorResult,
    diagnostics: DiagnosticLog,
    relative: bool = False,
) -> ErrorReport:
    """Collect per-node and per-target errors into an :class:`ErrorReport`."""
    node_errors: Dict[int, float] = {}
    # globals have no SSA value; their error is that of their content
    nodes = [program.node(nid) for nid in sorted(errors.values)] + list(program.globals)
    for node in nodes:
        err = errors.error_of(node)
        if err is None:
            continue
        node_errors[node.id] = _relative(err, ranges, errors, node) if relative else err

    targets: Dict[str, Optional[float]] = {}
    for name, target in program.targets.items():
        found = [node_errors[m.id] for m in target.members if m.id in node_errors]
        targets[name] = max(found) if found else None

    risky = [
        (nid, errors.comparisons[nid].max_tolerance) for nid in errors.risky_comparisons()
    ]
    return ErrorReport(targets, node_errors, risky, diagnostics, relative)
