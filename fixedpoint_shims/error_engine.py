"""
fixedpoint_shims/error_engine.py
════════════════════════════════

Error Propagation Engine: worst-case absolute error of every value once
the program runs with the chosen numeric types.

It reuses the bounded :class:`~fixedpoint_shims.interpreter.Interpreter`
with :class:`ErrorDomain`, whose leaf values are
:class:`~fixedpoint_shims.affine.AffineError` forms.  Operand ranges come
from the range engine and destination types from the type map.

Composition rules
─────────────────

Let ``A``, ``B`` be operand range magnitudes, ``ea``, ``eb`` operand
error magnitudes and ``r`` the rounding error of the destination when it
is fixed point (``2^-f / 2``, else 0)::

    add / sub   ε̂a ± ε̂b                                   + r
    mul         A·eb + B·ea + ea·eb                       + r
                (ε̂a · c when one side is an exact constant c)
    div         (A + ea)·ρ + ea / m,   ρ = eb / (m (m − eb))  + r
                m = min |divisor|; ⊤ when m ≤ eb
    rem         r if both operands are exact, else |B| + eb
    shl / ashr  scaled by 2^±k                             (+ r for ashr)
    cast        + rounding of the destination type; float → int adds 1
    cmp         tolerance ea + eb, flagged against the operand ranges;
                pointer operands compare in [0, 1] with no error
    const       0 with exact constants or when the literal's format holds
                it exactly, else half a unit of that format

Loops and recursion use the interpreter's bounds; a loop that does not
stabilise has its errors widened to ∞ and is reported as
ERROR_NOT_CONVERGED.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from fixedpoint_shims.affine import AffineError
from fixedpoint_shims.config import AnalysisConfig
from fixedpoint_shims.diagnostics import DiagnosticKind, DiagnosticLog
from fixedpoint_shims.fixed_point import exact_frac_bits
from fixedpoint_shims.interpreter import (
    Aggregate,
    Interpreter,
    LeafDomain,
    LocKey,
    Path,
    PointerValue,
    TraversalBudget,
)
from fixedpoint_shims.metadata import CmpErrorInfo, ValueInfo
from fixedpoint_shims.numeric_types import FixedPointFormat, FloatFormat, NumericType, Range
from fixedpoint_shims.program_model import Node, Opcode, Program
from fixedpoint_shims.range_engine import RangeResult
from fixedpoint_shims.range_ops import canonical_math_name
from fixedpoint_shims.type_assignment import TypeMap
from fixedpoint_shims.value_types import ScalarType

__all__ = ["ErrorDomain", "ErrorEngine", "ErrorResult", "max_magnitude"]

logger = logging.getLogger(__name__)

_INF = float("inf")


def _rounding(ntype: Optional[NumericType]) -> float:
    if isinstance(ntype, FixedPointFormat):
        return ntype.rounding_error
    return 0.0


class ErrorDomain(LeafDomain):
    """Affine error forms driven by precomputed ranges and types."""

    name = "error"

    def __init__(
        self,
        diagnostics: DiagnosticLog,
        ranges: RangeResult,
        types: TypeMap,
        config: AnalysisConfig,
    ) -> None:
        super().__init__(diagnostics)
        self.ranges = ranges
        self.types = types
        self.config = config
        self.comparisons: Dict[int, CmpErrorInfo] = {}

    # ---- Lattice ---------------------------------------------------------

    def top(self) -> AffineError:
        return AffineError.top()

    def join(self, a: AffineError, b: AffineError) -> AffineError:
        return a.join(b)

    def leq(self, a: AffineError, b: AffineError) -> bool:
        return a.leq(b)

    def merge_point(self, node: Node, value: AffineError) -> AffineError:
        return value.collapse(node.id)

    # ---- Inputs ----------------------------------------------------------

    def seed(self, info: ValueInfo, node: Node) -> Optional[AffineError]:
        if info.initial_error is None:
            return None
        return AffineError.noise(node.id, info.initial_error)

    def _location_type(self, node: Node, path: Path) -> Optional[NumericType]:
        key: LocKey = ("arg", node.id) if node.opcode is Opcode.ARG else node.id
        return self.types.of_location(key, path)

    def unknown_input(self, node: Node, path: Path) -> AffineError:
        if node.is_pointer:
            ntype = self._location_type(node, path)
        else:
            ntype = self.types.of_node(node)
        return AffineError.noise(node.id, _rounding(ntype))

    def pointer_compare(self, node: Node) -> AffineError:
        # addresses carry no rounding error
        return AffineError.zero()

    def initializer(self, value: float, node: Node, path: Path) -> AffineError:
        return self._literal(value, self._location_type(node, path), node, float_literal=True)

    def _literal(self, value: float, ntype: Optional[NumericType], node: Node,
                 float_literal: bool) -> AffineError:
        if self.config.exact_constants:
            return AffineError.zero()
        if isinstance(ntype, FixedPointFormat):
            if (math.isfinite(value) and exact_frac_bits(value) <= ntype.frac_bits
                    and ntype.min_value <= value <= ntype.max_value):
                return AffineError.zero()
            return AffineError.noise(node.id, ntype.rounding_error)
        if float_literal and math.isfinite(value):
            return AffineError.noise(node.id, math.ulp(value) / 2)
        return AffineError.zero()

    # ---- Helpers ---------------------------------------------------------

    def _range(self, node: Node) -> Range:
        rng = self.ranges.range_of(node)
        return rng if rng is not None else Range.top()

    def _flag(self, kind: DiagnosticKind, node: Node, message: str, **evidence: Any) -> None:
        self.diagnostics.report(
            kind, message,
            node_id=node.id,
            function=node.function.name if node.function is not None else "",
            logger=logger,
            **evidence,
        )

    @staticmethod
    def _exact_constant(node: Node, err: AffineError) -> Optional[float]:
        if node.opcode is Opcode.CONST and err.is_zero():
            return float(node.attrs["value"])
        return None

    # ---- Transfer --------------------------------------------------------

    def evaluate(self, node: Node, operands: Sequence[AffineError]) -> AffineError:
        op = node.opcode
        r = _rounding(self.types.of_node(node))

        if op is Opcode.CONST:
            value = node.attrs["value"]
            return self._literal(value, self.types.of_node(node), node, node.is_float)
        if op in (Opcode.ADD, Opcode.SUB):
            a, b = operands
            out = a + b if op is Opcode.ADD else a - b
            return out.with_noise(node.id, r)
        if op is Opcode.NEG:
            return -operands[0]
        if op is Opcode.MUL:
            return self._mul(node, operands).with_noise(node.id, r)
        if op is Opcode.DIV:
            return self._div(node, operands).with_noise(node.id, r)
        if op is Opcode.REM:
            a, b = operands
            if a.is_zero() and b.is_zero():
                return AffineError.noise(node.id, r)
            bound = self._range(node.operands[1]).magnitude + b.magnitude
            return AffineError.noise(node.id, bound).with_noise(node.id, r)
        if op is Opcode.SHL:
            return self._shift(node, operands[0], left=True)
        if op is Opcode.ASHR:
            return self._shift(node, operands[0], left=False).with_noise(node.id, r)
        if op is Opcode.CAST:
            return self._cast(node, operands[0])
        if op is Opcode.CMP:
            self._compare(node, operands)
            return AffineError.zero()
        raise ValueError(f"no error transfer for {op.value}")

    def _mul(self, node: Node, operands: Sequence[AffineError]) -> AffineError:
        a, b = operands
        lhs, rhs = node.operands
        c = self._exact_constant(rhs, b)
        if c is not None:
            return a.scale(c)
        c = self._exact_constant(lhs, a)
        if c is not None:
            return b.scale(c)
        if a.is_top() or b.is_top():
            return AffineError.top()
        ea, eb = a.magnitude, b.magnitude
        big_a, big_b = self._range(lhs).magnitude, self._range(rhs).magnitude
        terms = []
        for mag, err in ((big_a, eb), (big_b, ea)):
            if err:
                terms.append(mag * err)
        bound = sum(terms) + ea * eb
        return AffineError.noise(node.id, bound)

    def _div(self, node: Node, operands: Sequence[AffineError]) -> AffineError:
        a, b = operands
        lhs, rhs = node.operands
        c = self._exact_constant(rhs, b)
        if c is not None and c != 0.0:
            return a.scale(1.0 / c)
        divisor = self._range(rhs)
        m = divisor.min_magnitude
        eb = b.magnitude
        if divisor.contains_zero() or m <= eb:
            self._flag(
                DiagnosticKind.DIVISOR_NEAR_ZERO, node,
                f"divisor range {divisor} with error {eb:g} may reach zero; error unbounded",
                divisor=divisor.as_tuple(), divisor_error=eb,
            )
            return AffineError.top()
        dtype = self.types.of_node(rhs)
        if isinstance(dtype, FixedPointFormat) and m < dtype.ulp:
            self._flag(
                DiagnosticKind.DIVISOR_NEAR_ZERO, node,
                f"divisor magnitude {m:g} is below the precision of {dtype}",
                divisor=divisor.as_tuple(), ulp=dtype.ulp,
            )
        if a.is_top():
            return AffineError.top()
        ea = a.magnitude
        recip = eb / (m * (m - eb))
        big_a = self._range(lhs).magnitude
        bound = (big_a + ea) * recip + ea / m
        return AffineError.noise(node.id, bound)

    def _shift(self, node: Node, a: AffineError, left: bool) -> AffineError:
        k = self._range(node.operands[1])
        if not k.is_bounded():
            return AffineError.top() if not a.is_zero() else AffineError.zero()
        amount = max(0, math.ceil(k.max)) if left else max(0, math.floor(k.min))
        factor = math.ldexp(1.0, amount if left else -amount)
        if k.is_const():
            return a.scale(factor)
        return AffineError.noise(node.id, a.magnitude * factor)

    def _cast(self, node: Node, a: AffineError) -> AffineError:
        src, dst = node.operands[0].type, node.type
        if (isinstance(src, ScalarType) and src.is_float
                and isinstance(dst, ScalarType) and dst.is_integer):
            if a.is_zero():
                return a
            return AffineError.noise(node.id, a.magnitude + 1.0)
        dtype = self.types.of_node(node)
        if isinstance(dtype, FloatFormat):
            extra = dtype.rounding_error
        else:
            extra = _rounding(dtype)
        return a.with_noise(node.id, extra)

    def _compare(self, node: Node, operands: Sequence[AffineError]) -> None:
        lhs, rhs = node.operands
        tolerance = operands[0].magnitude + operands[1].magnitude
        span = self._range(lhs).union(self._range(rhs))
        width = span.width if not span.is_invalid() else _INF
        percent = self.config.cmp_threshold_percent
        # 0 · ∞ must not turn an unbounded span into a NaN threshold
        threshold = percent / 100.0 * width if percent > 0.0 else 0.0
        may_be_wrong = tolerance > 0.0 and tolerance >= threshold
        info = CmpErrorInfo(tolerance, may_be_wrong)
        previous = self.comparisons.get(node.id)
        self.comparisons[node.id] = info if previous is None else previous.merge(info)
        if may_be_wrong:
            self._flag(
                DiagnosticKind.RISKY_COMPARISON, node,
                f"comparison {node.attrs['predicate']} may be wrong: tolerance {tolerance:g} "
                f"against threshold {threshold:g}",
                tolerance=tolerance, threshold=threshold,
            )

    # ---- Math functions --------------------------------------------------

    def call_external(self, node: Node, name: str, args: Sequence[Any]) -> Optional[AffineError]:
        if not all(isinstance(a, AffineError) for a in args):
            return None
        errs = [a.magnitude for a in args]
        rngs = [self._range(o) for o in node.operands]
        bound = _math_error(canonical_math_name(name), rngs, errs)
        if bound is None:
            return None
        return AffineError.noise(node.id, bound).with_noise(
            node.id, _rounding(self.types.of_node(node))
        )


def _math_error(name: str, rngs: Sequence[Range], errs: Sequence[float]) -> Optional[float]:
    """First-order error bound of a known math function."""
    if len(rngs) == 2 and name in ("fmin", "fmax"):
        return max(errs)
    if len(rngs) != 1:
        return None
    x, e = rngs[0], errs[0]
    if e == 0.0:
        return 0.0
    if math.isinf(e):
        return _INF
    if name in ("sin", "cos"):
        return min(e, 2.0)
    if name in ("tanh", "atan", "fabs"):
        return e
    if name in ("floor", "ceil"):
        return e + 1.0
    if name == "sqrt":
        return math.sqrt(e)
    if name == "exp":
        hi = x.max + e
        return math.exp(hi) * e if hi < 709.0 else _INF
    if name in ("log", "log2", "log10"):
        lo = x.min - e
        if lo <= 0.0:
            return _INF
        scale = {"log": 1.0, "log2": 1 / math.log(2), "log10": 1 / math.log(10)}[name]
        return scale * e / lo
    if name in ("asin", "acos"):
        reach = x.magnitude + e
        if reach >= 1.0:
            return _INF
        return e / math.sqrt(1.0 - reach * reach)
    return None


def max_magnitude(value: Any) -> Optional[float]:
    """Largest error magnitude inside a (possibly aggregate) value."""
    if isinstance(value, AffineError):
        return value.magnitude
    if isinstance(value, Aggregate):
        found = [m for m in (max_magnitude(f) for f in value.fields) if m is not None]
        return max(found) if found else None
    return None


@dataclass
class ErrorResult:
    """
    Outcome of error propagation.

    Attributes
    ----------
    values      : node id → AffineError, Aggregate or PointerValue
    memory      : location key → joined error content
    comparisons : CMP node id → CmpErrorInfo
    diagnostics : division, convergence and comparison diagnostics
    """
    values: Dict[int, Any]
    memory: Dict[LocKey, Any]
    comparisons: Dict[int, CmpErrorInfo]
    diagnostics: DiagnosticLog
    interpreter: Optional[Interpreter] = field(default=None, repr=False)

    def value_of(self, node: Node) -> Any:
        value = self.values.get(node.id)
        if value is None and node.opcode is Opcode.GLOBAL:
            value = PointerValue.to(node.id)
        if isinstance(value, PointerValue) and self.interpreter is not None:
            return self.interpreter.content_of(value)
        return value

    def error_of(self, node: Node) -> Optional[float]:
        """Worst-case absolute error of a node (max over its leaves)."""
        return max_magnitude(self.value_of(node))

    def max_error(self, nodes: Iterable[Node]) -> Optional[float]:
        found = [e for e in (self.error_of(n) for n in nodes) if e is not None]
        return max(found) if found else None

    def risky_comparisons(self) -> List[int]:
        return sorted(nid for nid, info in self.comparisons.items() if info.may_be_wrong)


class ErrorEngine:
    """Runs error propagation over ranges and types already computed.

    Parameters
    ----------
    program : Program
    config : AnalysisConfig
    ranges : RangeResult
    types : TypeMap
    diagnostics : DiagnosticLog, optional
    """

    def __init__(
        self,
        program: Program,
        config: AnalysisConfig,
        ranges: RangeResult,
        types: TypeMap,
        diagnostics: Optional[DiagnosticLog] = None,
    ) -> None:
        self.program = program
        self.config = config
        self.ranges = ranges
        self.types = types
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticLog()

    def run(self) -> ErrorResult:
        entries = self.program.starting_points(self.config.propagate_all)
        domain = ErrorDomain(self.diagnostics, self.ranges, self.types, self.config)
        interp = Interpreter(
            self.program, domain, TraversalBudget.from_config(self.config), self.diagnostics,
            widen_kind=DiagnosticKind.ERROR_NOT_CONVERGED,
        )
        interp.run(entries)
        logger.info(
            "error propagation: %d values, %d risky comparisons",
            len(interp.results),
            sum(1 for c in domain.comparisons.values() if c.may_be_wrong),
        )
        return ErrorResult(
            values=dict(interp.results),
            memory=dict(interp.memory),
            comparisons=dict(domain.comparisons),
            diagnostics=self.diagnostics,
            interpreter=interp,
        )
