"""
fixedpoint_shims/interpreter.py
═══════════════════════════════

Bounded forward abstract interpreter shared by the range and error
engines.

The interpreter owns everything that does not depend on *what* is being
computed per scalar: control flow, loops, calls, recursion, memory,
aggregates and pointers.  The per-scalar computation is delegated to a
:class:`LeafDomain` (intervals for ranges, affine forms for errors).

Abstract values
───────────────

    leaf            domain value of one scalar (Range, AffineError, ...)
    Aggregate       tuple of field values, one per struct field
                    (arrays are collapsed onto their element)
    PointerValue    set of (location, field path) targets, plus an
                    ``unknown`` flag for pointers the analysis cannot resolve
    None            ⊥: nothing computed yet

Traversal
─────────

Functions are walked in reverse postorder from their entry block.  When
the walk reaches a loop header the whole loop is run by
:meth:`Interpreter._run_loop`::

    trip count N known, N ≤ maxUnroll     run the body exactly N times
    otherwise                              run unroll-count / defaultUnroll
                                           times, then one check iteration;
                                           if it still changes anything,
                                           widen what changed to ⊤ and
                                           iterate until stable

Every iteration stops early once nothing changes.  Values of a node are
joined across iterations and calling contexts, so they only grow.

Calls are analysed context-sensitively: the callee body is re-walked
with the caller's argument values.  A call is opaque (result ⊤, pointer
arguments clobbered) when the callee is unknown, external without a
closed form, or already on the active call stack more often than its
recursion bound allows.  Loop and recursion bounds travel as an explicit
:class:`TraversalBudget` argument together with the call stack, so the
interpreter holds no hidden counters.

Memory
──────

Allocas, globals and the pointees of entry-function pointer arguments are
flow-insensitive, field-sensitive locations.  Stores are weak (joined).
A store through an unknown pointer is joined into an *escaped* value that
every scalar load sees.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import (
    Any,
    Dict,
    FrozenSet,
    Hashable,
    Iterable,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
)

from fixedpoint_shims.config import AnalysisConfig
from fixedpoint_shims.diagnostics import DiagnosticKind, DiagnosticLog
from fixedpoint_shims.errors import ProgramModelError
from fixedpoint_shims.metadata import AggregateInfo, MDInfo, ValueInfo
from fixedpoint_shims.program_model import Block, Function, Loop, Node, Opcode, Program
from fixedpoint_shims.range_ops import is_math_function
from fixedpoint_shims.value_types import (
    ArrayType,
    PointerType,
    ScalarType,
    StructType,
    ValueType,
    strip_arrays,
)

__all__ = [
    "Aggregate",
    "PointerValue",
    "LeafDomain",
    "TraversalBudget",
    "Interpreter",
    "LocKey",
    "Path",
]

logger = logging.getLogger(__name__)

LocKey = Hashable
Path = Tuple[int, ...]

_ESCAPED = ("escaped",)

# Post-widening passes before giving up on a loop.
_MAX_WIDENING_PASSES = 64


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — ABSTRACT VALUES
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Aggregate:
    """Abstract value of a struct: one value per field."""
    fields: Tuple[Any, ...]

    def __len__(self) -> int:
        return len(self.fields)


@dataclass(frozen=True)
class PointerValue:
    """Points into one of ``targets``, or anywhere when ``unknown``."""
    targets: FrozenSet[Tuple[LocKey, Path]] = frozenset()
    unknown: bool = False

    @classmethod
    def to(cls, key: LocKey, path: Path = ()) -> PointerValue:
        return cls(frozenset({(key, path)}))

    def join(self, other: PointerValue) -> PointerValue:
        return PointerValue(self.targets | other.targets, self.unknown or other.unknown)

    def leq(self, other: PointerValue) -> bool:
        return self.targets <= other.targets and (other.unknown or not self.unknown)


class LeafDomain(abc.ABC):
    """Per-scalar half of an analysis.

    The interpreter calls :meth:`evaluate` for constants, arithmetic,
    casts and comparisons; everything else is handled generically
    through :meth:`join`.
    """

    name = "leaf"

    def __init__(self, diagnostics: DiagnosticLog) -> None:
        self.diagnostics = diagnostics

    @abc.abstractmethod
    def top(self) -> Any:
        """The least precise value."""

    @abc.abstractmethod
    def join(self, a: Any, b: Any) -> Any:
        """Least upper bound of two non-⊥ values."""

    @abc.abstractmethod
    def leq(self, a: Any, b: Any) -> bool:
        """``a ⊑ b``."""

    @abc.abstractmethod
    def evaluate(self, node: Node, operands: Sequence[Any]) -> Any:
        """Value of CONST, arithmetic, NEG, CAST and CMP nodes."""

    @abc.abstractmethod
    def seed(self, info: ValueInfo, node: Node) -> Optional[Any]:
        """Value a seed record imposes, or None if it says nothing."""

    def widen(self, value: Any) -> Any:
        return self.top()

    def unknown_input(self, node: Node, path: Path) -> Any:
        """Value of an entry argument or memory cell with no seed.

        ``node`` is the argument or the location's node, ``path`` the
        field path inside the location.
        """
        return self.top()

    def initializer(self, value: float, node: Node, path: Path) -> Any:
        """Value of a global's constant initializer."""
        return self.top()

    def call_external(self, node: Node, name: str, args: Sequence[Any]) -> Optional[Any]:
        """Closed form of a known math function, or None if opaque."""
        return None

    def pointer_compare(self, node: Node) -> Any:
        """Value of a comparison whose operands are pointers."""
        return self.top()

    def merge_point(self, node: Node, value: Any) -> Any:
        """Hook applied where values cross iterations or activations
        (PHI, LOAD, call results, bound arguments)."""
        return value


@dataclass(frozen=True)
class TraversalBudget:
    """Loop and recursion bounds threaded through the traversal."""
    default_unroll: int = 1
    max_unroll: int = 256
    max_recursion: int = 0

    @classmethod
    def from_config(cls, config: AnalysisConfig) -> TraversalBudget:
        return cls(config.default_unroll, config.max_unroll, config.max_recursion)

    def recursion_limit(self, fn: Function) -> int:
        return self.max_recursion if fn.max_recursion is None else fn.max_recursion

    def iterations(self, loop: Loop) -> Tuple[int, bool]:
        """(iteration count, exact) for ``loop``."""
        trip = loop.trip_count
        if trip is not None and trip <= self.max_unroll:
            return max(trip, 1), True
        if trip is not None:
            return self.max_unroll, False
        unroll = loop.unroll_count if loop.unroll_count is not None else self.default_unroll
        return min(max(unroll, 1), self.max_unroll), False


class _Frame:
    """Values of one function activation."""

    __slots__ = ("function", "values", "stamps", "version", "ret")

    def __init__(self, function: Function) -> None:
        self.function = function
        self.values: Dict[int, Any] = {}
        self.stamps: Dict[int, int] = {}
        self.version = 0
        self.ret: Any = None

    def get(self, node: Node) -> Any:
        if node.opcode is Opcode.GLOBAL:
            return PointerValue.to(node.id)
        return self.values.get(node.id)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — INTERPRETER
# ═══════════════════════════════════════════════════════════════════════════

class Interpreter:
    """
    Runs a :class:`LeafDomain` over a Program.

    Parameters
    ----------
    program : Program
    domain : LeafDomain
    budget : TraversalBudget
    diagnostics : DiagnosticLog
        Shared with the domain; receives loop, recursion, call and
        pointer diagnostics.
    widen_kind : DiagnosticKind
        Kind reported when a loop has to be widened.

    After :meth:`run`, ``results`` maps node ids to their joined value
    over every iteration and context, and ``memory`` maps location keys
    to their joined content.
    """

    def __init__(
        self,
        program: Program,
        domain: LeafDomain,
        budget: TraversalBudget,
        diagnostics: DiagnosticLog,
        *,
        widen_kind: DiagnosticKind = DiagnosticKind.LOOP_WIDENED,
    ) -> None:
        self.program = program
        self.domain = domain
        self.widen_kind = widen_kind
        self.budget = budget
        self.diagnostics = diagnostics
        self.results: Dict[int, Any] = {}
        self.memory: Dict[LocKey, Any] = {}
        self.location_types: Dict[LocKey, ValueType] = {}
        self.location_nodes: Dict[LocKey, Node] = {}
        self.activations: Dict[str, int] = {}
        self._store: Dict[LocKey, Any] = {}
        self._stamps: Dict[LocKey, int] = {}
        self._mem_version = 0
        self._finals: Dict[LocKey, Set[Path]] = {}

    # ---- Entry -----------------------------------------------------------

    def run(self, entries: Iterable[Function]) -> None:
        """Analyse each entry function independently, joining results."""
        for fn in entries:
            logger.debug("[%s] analysing from %s", self.domain.name, fn.name)
            self._store = {}
            self._stamps = {}
            self._mem_version = 0
            self._finals = {}
            for g in self.program.globals:
                self._ensure_location(g, unknown=g.attrs.get("initializer") is None)
            args = [self._entry_argument(p) for p in fn.params]
            self._run_function(fn, args, (fn,), self.budget)
            for key, content in self._store.items():
                if key == _ESCAPED:
                    continue
                self.memory[key] = self._join(self.memory.get(key), content)

    def content_of(self, pointer: Any) -> Any:
        """Joined memory content behind a pointer value (after :meth:`run`)."""
        if not isinstance(pointer, PointerValue):
            return None
        value = None
        for key, path in sorted(pointer.targets, key=repr):
            value = self._join(value, self._read_in(self.memory, key, path))
        return value

    def pointee_type(self, key: LocKey, path: Path) -> ValueType:
        vtype = self.location_types[key]
        for index in path:
            vtype = strip_arrays(vtype)
            assert isinstance(vtype, StructType)
            vtype = vtype.fields[index]
        return vtype

    # ---- Lattice lifting -------------------------------------------------

    def _join(self, a: Any, b: Any) -> Any:
        if a is None:
            return b
        if b is None:
            return a
        if isinstance(a, Aggregate) and isinstance(b, Aggregate):
            return Aggregate(tuple(self._join(x, y) for x, y in zip(a.fields, b.fields)))
        if isinstance(a, PointerValue) and isinstance(b, PointerValue):
            return a.join(b)
        if isinstance(a, (Aggregate, PointerValue)) or isinstance(b, (Aggregate, PointerValue)):
            raise ProgramModelError(f"cannot join {type(a).__name__} with {type(b).__name__}")
        return self.domain.join(a, b)

    def _leq(self, a: Any, b: Any) -> bool:
        if a is None:
            return True
        if b is None:
            return False
        if isinstance(a, Aggregate) and isinstance(b, Aggregate):
            return all(self._leq(x, y) for x, y in zip(a.fields, b.fields))
        if isinstance(a, PointerValue) and isinstance(b, PointerValue):
            return a.leq(b)
        return self.domain.leq(a, b)

    def _top_of(self, vtype: ValueType) -> Any:
        vtype = strip_arrays(vtype)
        if isinstance(vtype, StructType):
            return Aggregate(tuple(self._top_of(f) for f in vtype.fields))
        if isinstance(vtype, PointerType):
            return PointerValue(unknown=True)
        if isinstance(vtype, ScalarType):
            return self.domain.top()
        return None

    def _widen(self, value: Any) -> Any:
        if value is None or isinstance(value, PointerValue):
            return value
        if isinstance(value, Aggregate):
            return Aggregate(tuple(self._widen(f) for f in value.fields))
        return self.domain.widen(value)

    def _scalar_leaves(self, value: Any) -> Iterable[Any]:
        if isinstance(value, Aggregate):
            for f in value.fields:
                yield from self._scalar_leaves(f)
        elif value is not None and not isinstance(value, PointerValue):
            yield value

    # ---- Memory ----------------------------------------------------------

    def _initial_content(
        self,
        vtype: ValueType,
        seed: Optional[MDInfo],
        init: Any,
        node: Node,
        unknown: bool,
        path: Path,
        finals: Set[Path],
    ) -> Any:
        vtype = strip_arrays(vtype)
        if isinstance(vtype, StructType):
            fields = []
            for i, ftype in enumerate(vtype.fields):
                sub_seed = seed.fields[i] if isinstance(seed, AggregateInfo) else None
                sub_init = init[i] if isinstance(init, (list, tuple)) and i < len(init) else None
                fields.append(self._initial_content(
                    ftype, sub_seed, sub_init, node, unknown and sub_init is None,
                    path + (i,), finals,
                ))
            return Aggregate(tuple(fields))
        if isinstance(vtype, PointerType):
            return PointerValue(unknown=True) if unknown else None
        if not isinstance(vtype, ScalarType):
            return None
        seeded = self.domain.seed(seed, node) if isinstance(seed, ValueInfo) else None
        if seeded is not None and seed.final:
            finals.add(path)
            return seeded
        value = None
        if isinstance(init, (list, tuple)) and init:
            init = init[0]
        if isinstance(init, (int, float)):
            value = self.domain.initializer(float(init), node, path)
        elif seeded is None and unknown:
            value = self.domain.unknown_input(node, path)
        return self._join(value, seeded)

    def _ensure_location(self, node: Node, *, unknown: bool = False,
                         key: Optional[LocKey] = None,
                         vtype: Optional[ValueType] = None) -> LocKey:
        key = node.id if key is None else key
        if key in self._store:
            return key
        if vtype is None:
            vtype = node.attrs["content_type"]
        finals: Set[Path] = set()
        content = self._initial_content(
            vtype, node.seed, node.attrs.get("initializer"), node, unknown, (), finals
        )
        self._store[key] = content
        self._finals[key] = finals
        self.location_types[key] = vtype
        self.location_nodes[key] = node
        self._touch(key)
        return key

    def _touch(self, key: LocKey) -> None:
        self._mem_version += 1
        self._stamps[key] = self._mem_version

    @staticmethod
    def _normalize(vtype: ValueType, raw: Sequence[int]) -> Path:
        """Drop array steps from an index path; keep struct field indices."""
        out: List[int] = []
        for index in raw:
            if isinstance(vtype, ArrayType):
                vtype = vtype.element
            elif isinstance(vtype, StructType):
                out.append(index)
                vtype = vtype.fields[index]
            else:
                raise ProgramModelError(f"cannot index into {vtype}")
        return tuple(out)

    def _read_in(self, store: Dict[LocKey, Any], key: LocKey, path: Path) -> Any:
        content = store.get(key)
        for index in path:
            if not isinstance(content, Aggregate):
                return None
            content = content.fields[index]
        return content

    def _write_into(self, content: Any, vtype: ValueType, path: Path, value: Any,
                    key: LocKey, prefix: Path) -> Any:
        vtype = strip_arrays(vtype)
        finals = self._finals.get(key, set())
        if path:
            assert isinstance(vtype, StructType)
            index = path[0]
            fields = list(content.fields) if isinstance(content, Aggregate) else [None] * len(vtype.fields)
            fields[index] = self._write_into(
                fields[index], vtype.fields[index], path[1:], value, key, prefix + (index,)
            )
            return Aggregate(tuple(fields))
        if prefix in finals:
            return content
        if isinstance(vtype, StructType):
            if not isinstance(value, Aggregate):
                return content
            fields = list(content.fields) if isinstance(content, Aggregate) else [None] * len(vtype.fields)
            for i, ftype in enumerate(vtype.fields):
                fields[i] = self._write_into(fields[i], ftype, (), value.fields[i], key, prefix + (i,))
            return Aggregate(tuple(fields))
        return self._join(content, value)

    def _write(self, key: LocKey, path: Path, value: Any) -> None:
        old = self._store.get(key)
        new = self._write_into(old, self.location_types[key], path, value, key, ())
        if not self._leq(new, old):
            self._store[key] = new
            self._touch(key)

    def _clobber(self, key: LocKey, path: Path) -> None:
        self._write(key, path, self._top_of(self.pointee_type(key, path)))

    def _is_final(self, key: LocKey, path: Path) -> bool:
        return path in self._finals.get(key, ())

    # ---- Activations -----------------------------------------------------

    def _entry_argument(self, param: Node) -> Any:
        if isinstance(param.type, PointerType):
            key = ("arg", param.id)
            self._ensure_location(param, unknown=True, key=key, vtype=param.type.pointee)
            return PointerValue.to(key)
        if isinstance(param.seed, ValueInfo) and self.domain.seed(param.seed, param) is not None:
            return None
        return self.domain.unknown_input(param, ())

    def _run_function(self, fn: Function, args: Sequence[Any],
                      stack: Tuple[Function, ...], budget: TraversalBudget) -> Any:
        self.activations[fn.name] = self.activations.get(fn.name, 0) + 1
        logger.debug("[%s] enter %s (depth %d)", self.domain.name, fn.name, len(stack))
        frame = _Frame(fn)
        for param, arg in zip(fn.params, args):
            if arg is not None and not isinstance(arg, (PointerValue, Aggregate)):
                arg = self.domain.merge_point(param, arg)
            self._assign(frame, param, arg)
        self._run_region(frame, fn.reverse_postorder(), None, stack, budget)
        logger.debug("[%s] leave %s", self.domain.name, fn.name)
        return frame.ret

    def _run_region(self, frame: _Frame, order: Sequence[Block], loop: Optional[Loop],
                    stack: Tuple[Function, ...], budget: TraversalBudget) -> None:
        done: Set[Block] = set()
        for block in order:
            if block in done:
                continue
            inner = frame.function.loop_headed_by(block)
            if inner is not None and inner is not loop:
                body = [b for b in order if b in inner.blocks]
                self._run_loop(frame, inner, body, stack, budget)
                done |= inner.blocks
                continue
            for node in block.nodes:
                self._eval(frame, node, stack, budget)

    def _mark(self, frame: _Frame) -> Tuple[int, int]:
        return frame.version, self._mem_version

    def _changed_since(self, frame: _Frame, mark: Tuple[int, int]) -> bool:
        return frame.version != mark[0] or self._mem_version != mark[1]

    def _run_loop(self, frame: _Frame, loop: Loop, body: Sequence[Block],
                  stack: Tuple[Function, ...], budget: TraversalBudget) -> None:
        bound, exact = budget.iterations(loop)
        fn = frame.function.name
        for i in range(bound):
            mark = self._mark(frame)
            self._run_region(frame, body, loop, stack, budget)
            if not self._changed_since(frame, mark):
                logger.debug("[%s] %s:%s stable after %d iterations",
                             self.domain.name, fn, loop.header.label, i + 1)
                return
        if exact:
            return

        mark = self._mark(frame)
        self._run_region(frame, body, loop, stack, budget)
        if not self._changed_since(frame, mark):
            return

        header = loop.header.nodes[0] if loop.header.nodes else None
        self.diagnostics.report(
            self.widen_kind,
            f"loop at {loop.header.label} not stable after {bound} iterations; "
            f"values written in it widened to top",
            node_id=header.id if header is not None else None,
            function=fn,
            logger=logger,
            iterations=bound,
            trip_count=loop.trip_count,
            domain=self.domain.name,
        )
        members = {n.id for b in loop.blocks for n in b.nodes}
        for _ in range(_MAX_WIDENING_PASSES):
            self._widen_since(frame, mark, members)
            mark = self._mark(frame)
            self._run_region(frame, body, loop, stack, budget)
            if not self._changed_since(frame, mark):
                return
        logger.warning("[%s] %s:%s did not stabilise after widening",
                       self.domain.name, fn, loop.header.label)

    def _widen_since(self, frame: _Frame, mark: Tuple[int, int], members: Set[int]) -> None:
        for nid, stamp in list(frame.stamps.items()):
            if stamp > mark[0] and nid in members:
                node = self.program.node(nid)
                if isinstance(node.seed, ValueInfo) and node.seed.final:
                    continue
                widened = self._widen(frame.values[nid])
                frame.values[nid] = widened
                self.results[nid] = self._join(self.results.get(nid), widened)
        for key, stamp in list(self._stamps.items()):
            if stamp <= mark[1]:
                continue
            if key == _ESCAPED:
                self._store[key] = self._widen(self._store[key])
                continue
            self._store[key] = self._widen_location(self._store[key], key, ())

    def _widen_location(self, content: Any, key: LocKey, path: Path) -> Any:
        if self._is_final(key, path):
            return content
        if isinstance(content, Aggregate):
            return Aggregate(tuple(
                self._widen_location(f, key, path + (i,)) for i, f in enumerate(content.fields)
            ))
        return self._widen(content)

    # ---- Nodes -----------------------------------------------------------

    def _assign(self, frame: _Frame, node: Node, value: Any) -> None:
        seed = node.seed
        if isinstance(seed, ValueInfo) and not node.is_pointer:
            seeded = self.domain.seed(seed, node)
            if seeded is not None:
                value = seeded if seed.final else self._join(value, seeded)
        if value is None:
            return
        old = frame.values.get(node.id)
        new = self._join(old, value)
        if old is None or not self._leq(new, old):
            frame.values[node.id] = new
            frame.version += 1
            frame.stamps[node.id] = frame.version
        self.results[node.id] = self._join(self.results.get(node.id), new)

    def _flag(self, kind: DiagnosticKind, node: Node, message: str, **evidence: Any) -> None:
        self.diagnostics.report(
            kind, message,
            node_id=node.id,
            function=node.function.name if node.function is not None else "",
            logger=logger,
            **evidence,
        )

    def _eval(self, frame: _Frame, node: Node, stack: Tuple[Function, ...],
              budget: TraversalBudget) -> None:
        op = node.opcode
        if op in (Opcode.BR, Opcode.CONDBR):
            return
        if op is Opcode.RET:
            if node.operands:
                frame.ret = self._join(frame.ret, frame.get(node.operands[0]))
            return
        if op is Opcode.STORE:
            self._eval_store(frame, node)
            return

        if op is Opcode.PHI:
            value = None
            for incoming in node.operands:
                value = self._join(value, frame.get(incoming))
            if value is not None and not isinstance(value, (PointerValue, Aggregate)):
                value = self.domain.merge_point(node, value)
        elif op is Opcode.SELECT:
            value = self._join(frame.get(node.operands[1]), frame.get(node.operands[2]))
        elif op is Opcode.ALLOCA:
            value = PointerValue.to(self._ensure_location(node))
        elif op is Opcode.FIELD:
            value = self._eval_field(frame, node)
        elif op is Opcode.LOAD:
            value = self._eval_load(frame, node)
        elif op is Opcode.CALL:
            value = self._eval_call(frame, node, stack, budget)
        elif op is Opcode.CAST and isinstance(node.type, PointerType):
            value = frame.get(node.operands[0])
        else:
            operands = [frame.get(o) for o in node.operands]
            if any(v is None for v in operands):
                return
            if not any(isinstance(v, PointerValue) for v in operands):
                value = self.domain.evaluate(node, operands)
            elif op is Opcode.CMP:
                value = self.domain.pointer_compare(node)
            else:
                # pointer arithmetic and pointer-to-integer casts are opaque
                value = self._top_of(node.type)
        self._assign(frame, node, value)

    def _eval_field(self, frame: _Frame, node: Node) -> Any:
        base = frame.get(node.operands[0])
        if not isinstance(base, PointerValue):
            return None
        pointee = node.operands[0].type.pointee
        suffix = self._normalize(pointee, node.attrs.get("path", ()))
        return PointerValue(
            frozenset((key, path + suffix) for key, path in base.targets), base.unknown
        )

    def _eval_load(self, frame: _Frame, node: Node) -> Any:
        pointer = frame.get(node.operands[0])
        if not isinstance(pointer, PointerValue):
            return None
        value = None
        if pointer.unknown:
            self._flag(DiagnosticKind.UNRESOLVED_POINTER, node,
                       "load through an unresolved pointer yields top")
            value = self._top_of(node.type)
        all_final = bool(pointer.targets)
        for key, path in sorted(pointer.targets, key=repr):
            value = self._join(value, self._read_in(self._store, key, path))
            all_final = all_final and self._is_final(key, path)
        escaped = self._store.get(_ESCAPED)
        if escaped is not None and isinstance(node.type, ScalarType) and not all_final:
            value = self._join(value, escaped)
        if value is not None and not isinstance(value, (PointerValue, Aggregate)):
            value = self.domain.merge_point(node, value)
        return value

    def _eval_store(self, frame: _Frame, node: Node) -> None:
        value = frame.get(node.operands[0])
        pointer = frame.get(node.operands[1])
        if value is None or not isinstance(pointer, PointerValue):
            return
        for key, path in sorted(pointer.targets, key=repr):
            self._write(key, path, value)
        if pointer.unknown:
            self._flag(DiagnosticKind.UNRESOLVED_POINTER, node,
                       "store through an unresolved pointer; joined into every load")
            escaped = self._store.get(_ESCAPED)
            new = escaped
            for leaf in self._scalar_leaves(value):
                new = self._join(new, leaf)
            if not self._leq(new, escaped):
                self._store[_ESCAPED] = new
                self._touch(_ESCAPED)

    def _eval_call(self, frame: _Frame, node: Node, stack: Tuple[Function, ...],
                   budget: TraversalBudget) -> Any:
        args = [frame.get(o) for o in node.operands]
        callee = node.attrs.get("callee")
        if isinstance(callee, str):
            callee = self.program.functions.get(callee, callee)

        if isinstance(callee, Function) and not callee.is_declaration:
            depth = stack.count(callee)
            limit = budget.recursion_limit(callee)
            if depth > limit:
                return self._opaque(
                    node, args, DiagnosticKind.RECURSION_LIMIT,
                    f"call to {callee.name} at recursion depth {depth} exceeds limit {limit}; "
                    f"treated as opaque",
                    depth=depth, limit=limit,
                )
            value = self._run_function(callee, args, stack + (callee,), budget)
            if value is not None and not isinstance(value, (PointerValue, Aggregate)):
                value = self.domain.merge_point(node, value)
            return value

        name = callee.name if isinstance(callee, Function) else callee
        if isinstance(name, str) and is_math_function(name) and all(a is not None for a in args):
            value = self.domain.call_external(node, name, args)
            if value is not None:
                return value
        what = f"external function {name}" if name else "an unresolved callee"
        return self._opaque(node, args, DiagnosticKind.OPAQUE_CALL,
                            f"call to {what} treated as opaque", callee=name)

    def _opaque(self, node: Node, args: Sequence[Any], kind: DiagnosticKind,
                message: str, **evidence: Any) -> Any:
        self._flag(kind, node, message, **evidence)
        for arg in args:
            if isinstance(arg, PointerValue):
                for key, path in sorted(arg.targets, key=repr):
                    self._clobber(key, path)
        return self._top_of(node.type)
