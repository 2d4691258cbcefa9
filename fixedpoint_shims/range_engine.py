"""
fixedpoint_shims/range_engine.py
════════════════════════════════

Range Propagation Engine: forward abstract interpretation over the
interval domain.

The traversal (loops, calls, recursion, memory) is the shared
:class:`~fixedpoint_shims.interpreter.Interpreter`; this module supplies
the interval half, :class:`RangeDomain`, and packages the outcome as a
:class:`RangeResult`.

    >>> engine = RangeEngine(program, AnalysisConfig())
    >>> result = engine.run()
    >>> result.range_of(node)
    Range([-1.0, 3.5])

Seeds
-----
* a ``final`` seed range replaces whatever the program computes;
* any other seed range is joined with the computed range;
* entry arguments and memory without seed or initializer are ⊤.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from fixedpoint_shims import range_ops
from fixedpoint_shims.config import AnalysisConfig
from fixedpoint_shims.diagnostics import DiagnosticKind, DiagnosticLog
from fixedpoint_shims.interpreter import (
    Aggregate,
    Interpreter,
    LeafDomain,
    LocKey,
    Path,
    PointerValue,
    TraversalBudget,
)
from fixedpoint_shims.metadata import ValueInfo
from fixedpoint_shims.numeric_types import Range
from fixedpoint_shims.program_model import Node, Opcode, Program
from fixedpoint_shims.value_types import ScalarType

__all__ = ["RangeDomain", "RangeEngine", "RangeResult", "leaf_ranges"]

logger = logging.getLogger(__name__)


class RangeDomain(LeafDomain):
    """Intervals, with the closed forms of :mod:`range_ops`."""

    name = "range"

    def top(self) -> Range:
        return Range.top()

    def join(self, a: Range, b: Range) -> Range:
        return a.union(b)

    def leq(self, a: Range, b: Range) -> bool:
        return a.leq(b)

    def seed(self, info: ValueInfo, node: Node) -> Optional[Range]:
        return info.range

    def initializer(self, value: float, node: Node, path: Path) -> Range:
        return Range.const(value)

    def pointer_compare(self, node: Node) -> Range:
        return Range(0.0, 1.0)

    def call_external(self, node: Node, name: str, args: Sequence[Any]) -> Optional[Range]:
        if not all(isinstance(a, Range) for a in args):
            return None
        try:
            return range_ops.math_function(name, args)
        except TypeError:
            # wrong arity for the known function
            return None

    def evaluate(self, node: Node, operands: Sequence[Range]) -> Range:
        op = node.opcode
        if op is Opcode.CONST:
            return Range.const(node.attrs["value"])
        if op is Opcode.ADD:
            return range_ops.add(*operands)
        if op is Opcode.SUB:
            return range_ops.sub(*operands)
        if op is Opcode.MUL:
            return range_ops.mul(*operands)
        if op is Opcode.DIV:
            a, b = operands
            if range_ops.divisor_contains_zero(b):
                self.diagnostics.report(
                    DiagnosticKind.DIVISION_BY_ZERO_RANGE,
                    f"divisor range {b} contains zero; quotient is unbounded",
                    node_id=node.id,
                    function=node.function.name if node.function else "",
                    logger=logger,
                    divisor=b.as_tuple(),
                )
            integer = isinstance(node.type, ScalarType) and node.type.is_integer
            return range_ops.div(a, b, integer=integer)
        if op is Opcode.REM:
            return range_ops.rem(*operands)
        if op is Opcode.NEG:
            return range_ops.neg(operands[0])
        if op is Opcode.SHL:
            return range_ops.shl(*operands)
        if op is Opcode.ASHR:
            return range_ops.ashr(*operands)
        if op is Opcode.CAST:
            return self._cast(node, operands[0])
        if op is Opcode.CMP:
            return range_ops.compare(node.attrs["predicate"], *operands)
        raise ValueError(f"no range transfer for {op.value}")

    @staticmethod
    def _cast(node: Node, value: Range) -> Range:
        src = node.operands[0].type
        dst = node.type
        if (isinstance(src, ScalarType) and src.is_float
                and isinstance(dst, ScalarType) and dst.is_integer):
            return range_ops.to_integer(value)
        return value


@dataclass
class RangeResult:
    """
    Outcome of range propagation.

    Attributes
    ----------
    values      : node id → Range, Aggregate of ranges, or PointerValue
    memory      : location key → joined content
    diagnostics : loop, recursion, division and call diagnostics
    entries     : names of the functions analysed as starting points
    """
    values: Dict[int, Any]
    memory: Dict[LocKey, Any]
    diagnostics: DiagnosticLog
    entries: List[str] = field(default_factory=list)
    interpreter: Optional[Interpreter] = field(default=None, repr=False)

    def value_of(self, node: Node) -> Any:
        """Range-level value of a node; pointers resolve to their content."""
        value = self.values.get(node.id)
        if value is None and node.opcode is Opcode.GLOBAL:
            value = PointerValue.to(node.id)
        if isinstance(value, PointerValue) and self.interpreter is not None:
            return self.interpreter.content_of(value)
        return value

    def range_of(self, node: Node) -> Optional[Range]:
        value = self.value_of(node)
        return value if isinstance(value, Range) else None

    def is_analyzed(self, node: Node) -> bool:
        return node.id in self.values

    def __contains__(self, node: Node) -> bool:
        return self.is_analyzed(node)


class RangeEngine:
    """Runs range propagation from the program's starting points.

    Parameters
    ----------
    program : Program
    config : AnalysisConfig
    diagnostics : DiagnosticLog, optional
        Log to report into; a fresh one by default.
    """

    def __init__(
        self,
        program: Program,
        config: Optional[AnalysisConfig] = None,
        diagnostics: Optional[DiagnosticLog] = None,
    ) -> None:
        self.program = program
        self.config = config or AnalysisConfig()
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticLog()

    def run(self) -> RangeResult:
        entries = self.program.starting_points(self.config.propagate_all)
        domain = RangeDomain(self.diagnostics)
        interp = Interpreter(
            self.program, domain, TraversalBudget.from_config(self.config), self.diagnostics
        )
        interp.run(entries)
        logger.info(
            "range propagation: %d functions entered, %d values",
            len(entries), len(interp.results),
        )
        return RangeResult(
            values=dict(interp.results),
            memory=dict(interp.memory),
            diagnostics=self.diagnostics,
            entries=[f.name for f in entries],
            interpreter=interp,
        )


def leaf_ranges(value: Any) -> List[Range]:
    """Every Range inside a (possibly aggregate) value."""
    if isinstance(value, Range):
        return [value]
    if isinstance(value, Aggregate):
        out: List[Range] = []
        for f in value.fields:
            out.extend(leaf_ranges(f))
        return out
    return []
