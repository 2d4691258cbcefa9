"""
fixedpoint_shims/type_assignment.py
═══════════════════════════════════

Applies the Fixed-Point Type Deriver to every floating-point value the
range engine reached.

For each float scalar (SSA value or memory leaf):

    preset type in the seed   → kept as is
    seed disables conversion  → stays floating point
    derive(range) succeeds    → fixed-point format
    otherwise                 → floating point, TYPE_GENERATION diagnostic

Floating-point values record the largest magnitude they hold, which is
what bounds their own rounding error.  Integer values get no type.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from fixedpoint_shims.diagnostics import DiagnosticKind, DiagnosticLog
from fixedpoint_shims.fixed_point import FormatCache, SizingPolicy, TypeGenError
from fixedpoint_shims.interpreter import Aggregate, LocKey, Path
from fixedpoint_shims.metadata import AggregateInfo, MDInfo, ValueInfo
from fixedpoint_shims.numeric_types import FloatFormat, NumericType, Range
from fixedpoint_shims.program_model import Node, Program
from fixedpoint_shims.range_engine import RangeResult
from fixedpoint_shims.value_types import ScalarType, StructType, ValueType, strip_arrays

__all__ = ["TypeMap", "assign_types"]

logger = logging.getLogger(__name__)


@dataclass
class TypeMap:
    """
    Numeric types chosen for the program.

    Attributes
    ----------
    nodes     : node id → type of that SSA value
    locations : (location key, field path) → type of that memory leaf
    codes     : node id or (key, path) → deriver result code, for every
                value the deriver was asked about
    """
    nodes: Dict[int, NumericType] = field(default_factory=dict)
    locations: Dict[Tuple[LocKey, Path], NumericType] = field(default_factory=dict)
    codes: Dict[Any, TypeGenError] = field(default_factory=dict)

    def of_node(self, node: Node) -> Optional[NumericType]:
        return self.nodes.get(node.id)

    def of_location(self, key: LocKey, path: Path) -> Optional[NumericType]:
        return self.locations.get((key, path))


def _float_format(scalar: ScalarType, rng: Optional[Range]) -> FloatFormat:
    assert scalar.standard is not None
    if rng is None or rng.is_invalid():
        return FloatFormat(scalar.standard, scalar.standard.largest)
    greatest = rng.magnitude if rng.is_bounded() else scalar.standard.largest
    return FloatFormat(scalar.standard, greatest)


class _Assigner:

    def __init__(self, policy: SizingPolicy, cache: FormatCache,
                 diagnostics: DiagnosticLog) -> None:
        self.policy = policy
        self.cache = cache
        self.diagnostics = diagnostics
        self.types = TypeMap()

    def choose(self, key: Any, scalar: ScalarType, rng: Optional[Range],
               seed: Optional[ValueInfo], node: Node) -> Optional[NumericType]:
        if not scalar.is_float:
            return None
        if seed is not None and seed.type is not None:
            return seed.type
        if rng is None or (seed is not None and not seed.enabled):
            return _float_format(scalar, rng)
        fmt, code = self.cache.derive(rng, self.policy)
        self.types.codes[key] = code
        if code.ok:
            return fmt
        self.diagnostics.report(
            DiagnosticKind.TYPE_GENERATION,
            f"{node.label()} keeps {scalar}: {code.value} for range {rng} (proposed {fmt})",
            node_id=node.id,
            function=node.function.name if node.function is not None else "",
            logger=logger,
            code=code.name,
            proposed=str(fmt),
        )
        return _float_format(scalar, rng)

    def location(self, key: LocKey, vtype: ValueType, content: Any,
                 seed: Optional[MDInfo], node: Node, path: Path) -> None:
        vtype = strip_arrays(vtype)
        if isinstance(vtype, StructType):
            if not isinstance(content, Aggregate):
                return
            for i, ftype in enumerate(vtype.fields):
                sub_seed = seed.fields[i] if isinstance(seed, AggregateInfo) else None
                self.location(key, ftype, content.fields[i], sub_seed, node, path + (i,))
            return
        if isinstance(vtype, ScalarType) and isinstance(content, Range):
            chosen = self.choose(
                (key, path), vtype, content,
                seed if isinstance(seed, ValueInfo) else None, node,
            )
            if chosen is not None:
                self.types.locations[(key, path)] = chosen


def assign_types(
    program: Program,
    ranges: RangeResult,
    policy: SizingPolicy,
    cache: FormatCache,
    diagnostics: DiagnosticLog,
) -> TypeMap:
    """Choose a numeric type for every analysed float value."""
    assigner = _Assigner(policy, cache, diagnostics)
    for nid in sorted(ranges.values):
        node = program.node(nid)
        value = ranges.values[nid]
        if not isinstance(node.type, ScalarType) or not isinstance(value, Range):
            continue
        seed = node.seed if isinstance(node.seed, ValueInfo) else None
        chosen = assigner.choose(nid, node.type, value, seed, node)
        if chosen is not None:
            assigner.types.nodes[nid] = chosen

    interp = ranges.interpreter
    if interp is not None:
        for key in sorted(ranges.memory, key=repr):
            node = interp.location_nodes[key]
            assigner.location(
                key, interp.location_types[key], ranges.memory[key], node.seed, node, ()
            )
    fixed = sum(1 for t in assigner.types.nodes.values() if not isinstance(t, FloatFormat))
    logger.info("type assignment: %d of %d values fixed point", fixed, len(assigner.types.nodes))
    return assigner.types
