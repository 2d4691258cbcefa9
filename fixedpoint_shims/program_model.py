"""
fixedpoint_shims/program_model.py
═════════════════════════════════

In-memory Program Model consumed by the engines.

A :class:`Program` is a set of :class:`Function` objects plus global
memory locations and reporting targets.  A function is a list of
:class:`Block` objects in SSA form, each an ordered list of
:class:`Node` operations ending in a terminator.

    Program
    ├── globals          GLOBAL nodes (memory locations)
    ├── functions        name → Function
    │     ├── params     ARG nodes
    │     └── blocks     entry first; nodes; successors / predecessors
    ├── targets          name → Target{members}
    └── call_graph()     CallEdge{caller, callee|None, site, recursive}

Loops are natural loops found from dominators; a loop header block may
carry a statically known trip count (number of times the header runs)
and an unroll count used when the trip count is unknown.

Nodes carry a stable integer identity, unique within their Program.
Seed records (:class:`~fixedpoint_shims.metadata.ValueInfo` or
:class:`~fixedpoint_shims.metadata.AggregateInfo`) hang off ``Node.seed``:

    ARG / SSA node         ValueInfo of the value
    ALLOCA / GLOBAL        record of the pointed-to memory
    ARG of pointer type    record of the pointee of an entry argument

Build programs with :class:`Builder`::

    prog = Program()
    fn = prog.add_function("main", F32, start=True)
    a = fn.add_param("a", F32, seed=ValueInfo(range=Range(-1, 1)))
    b = Builder(fn, fn.add_block("entry"))
    x = b.mul(a, b.const(2.0))
    b.ret(x)
"""

from __future__ import annotations

import enum
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from fixedpoint_shims.errors import ProgramModelError
from fixedpoint_shims.metadata import MDInfo, check_shape
from fixedpoint_shims.value_types import (
    F64,
    I1,
    VOID,
    ArrayType,
    PointerType,
    ScalarType,
    StructType,
    ValueType,
)

__all__ = [
    "Opcode",
    "Node",
    "Block",
    "Loop",
    "Function",
    "CallEdge",
    "CallGraph",
    "Target",
    "Program",
    "Builder",
]

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — OPERATIONS
# ═══════════════════════════════════════════════════════════════════════════

class Opcode(enum.Enum):
    CONST = "const"
    ARG = "arg"
    GLOBAL = "global"
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    REM = "rem"
    NEG = "neg"
    SHL = "shl"
    ASHR = "ashr"
    CAST = "cast"
    CMP = "cmp"
    SELECT = "select"
    PHI = "phi"
    ALLOCA = "alloca"
    LOAD = "load"
    STORE = "store"
    FIELD = "field"
    CALL = "call"
    BR = "br"
    CONDBR = "condbr"
    RET = "ret"

    @property
    def is_terminator(self) -> bool:
        return self in (Opcode.BR, Opcode.CONDBR, Opcode.RET)

    @property
    def is_binary(self) -> bool:
        return self in _BINARY


_BINARY = frozenset(
    {Opcode.ADD, Opcode.SUB, Opcode.MUL, Opcode.DIV, Opcode.REM, Opcode.SHL, Opcode.ASHR}
)

CMP_PREDICATES = ("eq", "ne", "lt", "le", "gt", "ge")


class Node:
    """
    One operation.

    Attributes
    ----------
    id        : stable identity, unique in the Program
    opcode    : Opcode
    operands  : nodes whose values this operation reads
    type      : ValueType of the result (VOID for stores and terminators)
    name      : optional display name (``%x``)
    block     : enclosing Block (None for globals)
    function  : enclosing Function (None for globals)
    seed      : optional ValueInfo / AggregateInfo record
    attrs     : opcode specific payload; see :class:`Builder`
    """

    __slots__ = ("id", "opcode", "operands", "type", "name", "block", "function", "seed", "attrs")

    def __init__(
        self,
        node_id: int,
        opcode: Opcode,
        operands: Sequence[Node],
        vtype: ValueType,
        *,
        name: str = "",
        block: Optional[Block] = None,
        function: Optional[Function] = None,
        seed: Optional[MDInfo] = None,
        **attrs: Any,
    ) -> None:
        self.id = node_id
        self.opcode = opcode
        self.operands: Tuple[Node, ...] = tuple(operands)
        self.type = vtype
        self.name = name
        self.block = block
        self.function = function
        self.seed = seed
        self.attrs: Dict[str, Any] = attrs

    @property
    def is_float(self) -> bool:
        return isinstance(self.type, ScalarType) and self.type.is_float

    @property
    def is_pointer(self) -> bool:
        return isinstance(self.type, PointerType)

    def label(self) -> str:
        return self.name or f"#{self.id}"

    def __repr__(self) -> str:
        return f"Node({self.id}, {self.opcode.value}, {self.label()})"

    def __hash__(self) -> int:
        return hash(self.id)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Node) and other.id == self.id


class Block:
    """A basic block: straight-line nodes, last one a terminator."""

    def __init__(self, label: str, function: Function) -> None:
        self.label = label
        self.function = function
        self.nodes: List[Node] = []
        self.successors: List[Block] = []
        self.predecessors: List[Block] = []
        self.trip_count: Optional[int] = None
        self.unroll_count: Optional[int] = None

    @property
    def terminator(self) -> Optional[Node]:
        if self.nodes and self.nodes[-1].opcode.is_terminator:
            return self.nodes[-1]
        return None

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes)

    def __repr__(self) -> str:
        return f"Block({self.function.name}:{self.label})"


@dataclass(eq=False)
class Loop:
    """A natural loop: its header and every block of its body."""
    header: Block
    blocks: FrozenSet[Block]
    parent: Optional[Loop] = None
    children: List[Loop] = field(default_factory=list)

    @property
    def trip_count(self) -> Optional[int]:
        return self.header.trip_count

    @property
    def unroll_count(self) -> Optional[int]:
        return self.header.unroll_count

    @property
    def depth(self) -> int:
        d, p = 1, self.parent
        while p is not None:
            d, p = d + 1, p.parent
        return d

    def __contains__(self, block: Block) -> bool:
        return block in self.blocks

    def __repr__(self) -> str:
        return f"Loop(header={self.header.label}, blocks={len(self.blocks)})"


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════

class Function:
    """A function: parameters and blocks, or an external declaration."""

    def __init__(
        self,
        program: Program,
        name: str,
        return_type: ValueType = VOID,
        *,
        start: bool = False,
        max_recursion: Optional[int] = None,
    ) -> None:
        self.program = program
        self.name = name
        self.return_type = return_type
        self.is_start = start
        self.max_recursion = max_recursion
        self.params: List[Node] = []
        self.blocks: List[Block] = []
        self._loops: Optional[List[Loop]] = None

    @property
    def is_declaration(self) -> bool:
        return not self.blocks

    @property
    def entry(self) -> Block:
        if not self.blocks:
            raise ProgramModelError(f"function {self.name} has no body")
        return self.blocks[0]

    def add_param(self, name: str, vtype: ValueType, seed: Optional[MDInfo] = None) -> Node:
        if seed is not None:
            check_shape(vtype, seed)
        node = Node(
            self.program.new_id(), Opcode.ARG, (), vtype,
            name=name, function=self, seed=seed, index=len(self.params),
        )
        self.params.append(node)
        self.program.register(node)
        return node

    def add_block(self, label: str) -> Block:
        if any(b.label == label for b in self.blocks):
            raise ProgramModelError(f"duplicate block label {label!r} in {self.name}")
        block = Block(label, self)
        self.blocks.append(block)
        self._loops = None
        return block

    def block(self, label: str) -> Block:
        for b in self.blocks:
            if b.label == label:
                return b
        raise ProgramModelError(f"unknown block label {label!r} in {self.name}")

    def nodes(self) -> Iterator[Node]:
        yield from self.params
        for b in self.blocks:
            yield from b.nodes

    # ---- Control flow ----------------------------------------------------

    def reverse_postorder(self) -> List[Block]:
        """Blocks reachable from the entry, in reverse postorder."""
        if not self.blocks:
            return []
        order: List[Block] = []
        visited: Set[int] = {id(self.entry)}
        stack: List[Tuple[Block, Iterator[Block]]] = [(self.entry, iter(self.entry.successors))]
        while stack:
            block, succs = stack[-1]
            for s in succs:
                if id(s) not in visited:
                    visited.add(id(s))
                    stack.append((s, iter(s.successors)))
                    break
            else:
                stack.pop()
                order.append(block)
        order.reverse()
        return order

    def dominators(self) -> Dict[Block, Set[Block]]:
        """Dominator sets of the reachable blocks (iterative algorithm)."""
        order = self.reverse_postorder()
        reachable = set(order)
        dom: Dict[Block, Set[Block]] = {b: set(reachable) for b in order}
        if order:
            dom[order[0]] = {order[0]}
        changed = True
        while changed:
            changed = False
            for b in order[1:]:
                preds = [p for p in b.predecessors if p in reachable]
                new_dom = set.intersection(*(dom[p] for p in preds)) if preds else set()
                new_dom = new_dom | {b}
                if new_dom != dom[b]:
                    dom[b] = new_dom
                    changed = True
        return dom

    def loops(self) -> List[Loop]:
        """Natural loops, outermost first; loops sharing a header are merged."""
        if self._loops is not None:
            return self._loops
        dom = self.dominators()
        bodies: Dict[Block, Set[Block]] = OrderedDict()
        for b in self.reverse_postorder():
            for s in b.successors:
                if s in dom.get(b, ()):
                    body = bodies.setdefault(s, {s})
                    stack = [b]
                    while stack:
                        m = stack.pop()
                        if m not in body:
                            body.add(m)
                            stack.extend(p for p in m.predecessors if p in dom)
        loops = [Loop(h, frozenset(body)) for h, body in bodies.items()]
        loops.sort(key=lambda lp: -len(lp.blocks))
        for i, inner in enumerate(loops):
            for outer in reversed(loops[:i]):
                if inner.header in outer.blocks and inner.blocks < outer.blocks:
                    inner.parent = outer
                    outer.children.append(inner)
                    break
        self._loops = loops
        return loops

    def loop_headed_by(self, block: Block) -> Optional[Loop]:
        for lp in self.loops():
            if lp.header is block:
                return lp
        return None

    def invalidate(self) -> None:
        self._loops = None

    def __repr__(self) -> str:
        kind = "declare" if self.is_declaration else "define"
        return f"Function({kind} {self.name})"


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — CALL GRAPH
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CallEdge:
    """A call site.  ``callee`` is None when the call cannot be resolved."""
    caller: Function
    callee: Optional[Function]
    site: Node
    recursive: bool = False


class CallGraph:
    """Direct, indirect and recursive call edges of a Program."""

    def __init__(self, program: Program) -> None:
        self.program = program
        self.edges: List[CallEdge] = []
        raw: List[Tuple[Function, Optional[Function], Node]] = []
        for fn in program.functions.values():
            for node in fn.nodes():
                if node.opcode is Opcode.CALL:
                    callee = node.attrs.get("callee")
                    if isinstance(callee, str):
                        callee = program.functions.get(callee)
                    raw.append((fn, callee, node))
        self._out: Dict[str, List[Tuple[Function, Optional[Function], Node]]] = {}
        for caller, callee, site in raw:
            self._out.setdefault(caller.name, []).append((caller, callee, site))
        sccs = self.strongly_connected_components()
        scc_of = {fn.name: i for i, scc in enumerate(sccs) for fn in scc}
        for caller, callee, site in raw:
            recursive = callee is not None and (
                callee is caller
                or (scc_of[callee.name] == scc_of[caller.name]
                    and len(sccs[scc_of[caller.name]]) > 1)
            )
            self.edges.append(CallEdge(caller, callee, site, recursive))

    def strongly_connected_components(self) -> List[List[Function]]:
        """Tarjan's algorithm; SCCs come callee-first."""
        index_counter = [0]
        stack: List[Function] = []
        lowlink: Dict[str, int] = {}
        index: Dict[str, int] = {}
        on_stack: Set[str] = set()
        result: List[List[Function]] = []

        def strongconnect(v: Function) -> None:
            index[v.name] = index_counter[0]
            lowlink[v.name] = index_counter[0]
            index_counter[0] += 1
            stack.append(v)
            on_stack.add(v.name)

            for _, w, _ in self._out.get(v.name, ()):
                if w is None:
                    continue
                if w.name not in index:
                    strongconnect(w)
                    lowlink[v.name] = min(lowlink[v.name], lowlink[w.name])
                elif w.name in on_stack:
                    lowlink[v.name] = min(lowlink[v.name], index[w.name])

            if lowlink[v.name] == index[v.name]:
                scc: List[Function] = []
                while True:
                    w = stack.pop()
                    on_stack.discard(w.name)
                    scc.append(w)
                    if w is v:
                        break
                result.append(scc)

        for fn in self.program.functions.values():
            if fn.name not in index:
                strongconnect(fn)
        return result

    def callees_of(self, fn: Function) -> List[CallEdge]:
        return [e for e in self.edges if e.caller is fn]

    def recursive_edges(self) -> List[CallEdge]:
        return [e for e in self.edges if e.recursive]

    def unresolved_edges(self) -> List[CallEdge]:
        return [e for e in self.edges if e.callee is None]


# ═══════════════════════════════════════════════════════════════════════════
#  PART 4 — PROGRAM
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Target:
    """A named set of nodes whose worst-case error is reported."""
    name: str
    members: FrozenSet[Node]


class Program:
    """Functions, global locations, struct types and targets."""

    def __init__(self) -> None:
        self.functions: Dict[str, Function] = OrderedDict()
        self.globals: List[Node] = []
        self.structs: Dict[str, StructType] = OrderedDict()
        self.targets: Dict[str, Target] = OrderedDict()
        self._nodes: Dict[int, Node] = {}
        self._next_id = 0

    def new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def register(self, node: Node) -> None:
        self._nodes[node.id] = node

    def node(self, node_id: int) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise ProgramModelError(f"no node with id {node_id}") from None

    def all_nodes(self) -> Iterator[Node]:
        return iter(self._nodes.values())

    def add_struct(self, name: str, fields: Sequence[ValueType] = ()) -> StructType:
        if name in self.structs:
            raise ProgramModelError(f"struct {name} defined twice")
        st = StructType(name, list(fields))
        self.structs[name] = st
        return st

    def add_function(
        self,
        name: str,
        return_type: ValueType = VOID,
        *,
        start: bool = False,
        max_recursion: Optional[int] = None,
    ) -> Function:
        if name in self.functions:
            raise ProgramModelError(f"function {name} defined twice")
        fn = Function(self, name, return_type, start=start, max_recursion=max_recursion)
        self.functions[name] = fn
        return fn

    def add_global(
        self,
        name: str,
        vtype: ValueType,
        *,
        initializer: Any = None,
        seed: Optional[MDInfo] = None,
    ) -> Node:
        """A global memory location holding a ``vtype``.

        ``initializer`` is a number for scalars or a nested list for
        composites; the node's value is a pointer to the location.
        """
        if seed is not None:
            check_shape(vtype, seed)
        node = Node(
            self.new_id(), Opcode.GLOBAL, (), PointerType(vtype),
            name=name, seed=seed, initializer=initializer, content_type=vtype,
        )
        self.globals.append(node)
        self.register(node)
        return node

    def add_target(self, name: str, members: Iterable[Node]) -> Target:
        target = Target(name, frozenset(members))
        self.targets[name] = target
        return target

    def call_graph(self) -> CallGraph:
        return CallGraph(self)

    def starting_points(self, propagate_all: bool = False) -> List[Function]:
        """Entry functions of the analysis.

        Every defined function with ``propagate_all``; otherwise those
        marked as starting points, falling back to ``main`` and then to
        every defined function.
        """
        defined = [f for f in self.functions.values() if not f.is_declaration]
        if propagate_all:
            return defined
        starts = [f for f in defined if f.is_start]
        if starts:
            return starts
        main = self.functions.get("main")
        if main is not None and not main.is_declaration:
            return [main]
        if defined:
            logger.warning(
                "no starting point and no main function; analysing all %d functions",
                len(defined),
            )
        return defined


# ═══════════════════════════════════════════════════════════════════════════
#  PART 5 — BUILDER
# ═══════════════════════════════════════════════════════════════════════════

class Builder:
    """
    Appends nodes to a block, IRBuilder style.

    Opcode payloads (``Node.attrs``):

        CONST   value         the literal
        CMP     predicate     one of eq ne lt le gt ge
        PHI     incoming      tuple of Blocks parallel to operands
        ALLOCA  content_type  type of the allocated memory
        FIELD   path          tuple of indices into the pointee type
        CALL    callee        Function, external name, or None (indirect)
    """

    def __init__(self, function: Function, block: Optional[Block] = None) -> None:
        self.function = function
        self.block = block

    def position_at(self, block: Block) -> Builder:
        self.block = block
        return self

    # ---- Core ------------------------------------------------------------

    def _emit(
        self,
        opcode: Opcode,
        operands: Sequence[Node],
        vtype: ValueType,
        name: str = "",
        seed: Optional[MDInfo] = None,
        **attrs: Any,
    ) -> Node:
        if self.block is None:
            raise ProgramModelError("builder is not positioned at a block")
        if self.block.terminator is not None:
            raise ProgramModelError(f"{self.block!r} is already terminated")
        for op in operands:
            if op.function is not None and op.function is not self.function:
                raise ProgramModelError(
                    f"operand {op!r} belongs to {op.function.name}, not {self.function.name}"
                )
        if seed is not None:
            check_shape(vtype, seed)
        program = self.function.program
        node = Node(
            program.new_id(), opcode, operands, vtype,
            name=name, block=self.block, function=self.function, seed=seed, **attrs,
        )
        self.block.nodes.append(node)
        program.register(node)
        return node

    def const(self, value: float, vtype: ValueType = F64, name: str = "",
              seed: Optional[MDInfo] = None) -> Node:
        if isinstance(vtype, ScalarType) and vtype.is_float:
            value = float(value)
        return self._emit(Opcode.CONST, (), vtype, name, seed, value=value)

    def binop(self, opcode: Opcode, lhs: Node, rhs: Node, name: str = "",
              seed: Optional[MDInfo] = None) -> Node:
        if not opcode.is_binary:
            raise ProgramModelError(f"{opcode.value} is not a binary operation")
        return self._emit(opcode, (lhs, rhs), lhs.type, name, seed)

    def add(self, lhs: Node, rhs: Node, name: str = "", seed: Optional[MDInfo] = None) -> Node:
        return self.binop(Opcode.ADD, lhs, rhs, name, seed)

    def sub(self, lhs: Node, rhs: Node, name: str = "", seed: Optional[MDInfo] = None) -> Node:
        return self.binop(Opcode.SUB, lhs, rhs, name, seed)

    def mul(self, lhs: Node, rhs: Node, name: str = "", seed: Optional[MDInfo] = None) -> Node:
        return self.binop(Opcode.MUL, lhs, rhs, name, seed)

    def div(self, lhs: Node, rhs: Node, name: str = "", seed: Optional[MDInfo] = None) -> Node:
        return self.binop(Opcode.DIV, lhs, rhs, name, seed)

    def rem(self, lhs: Node, rhs: Node, name: str = "", seed: Optional[MDInfo] = None) -> Node:
        return self.binop(Opcode.REM, lhs, rhs, name, seed)

    def shl(self, lhs: Node, rhs: Node, name: str = "") -> Node:
        return self.binop(Opcode.SHL, lhs, rhs, name)

    def ashr(self, lhs: Node, rhs: Node, name: str = "") -> Node:
        return self.binop(Opcode.ASHR, lhs, rhs, name)

    def neg(self, operand: Node, name: str = "") -> Node:
        return self._emit(Opcode.NEG, (operand,), operand.type, name)

    def cast(self, operand: Node, vtype: ValueType, name: str = "",
             seed: Optional[MDInfo] = None) -> Node:
        return self._emit(Opcode.CAST, (operand,), vtype, name, seed)

    def cmp(self, predicate: str, lhs: Node, rhs: Node, name: str = "") -> Node:
        if predicate not in CMP_PREDICATES:
            raise ProgramModelError(f"unknown comparison predicate {predicate!r}")
        return self._emit(Opcode.CMP, (lhs, rhs), I1, name, predicate=predicate)

    def select(self, cond: Node, if_true: Node, if_false: Node, name: str = "") -> Node:
        return self._emit(Opcode.SELECT, (cond, if_true, if_false), if_true.type, name)

    def phi(self, incoming: Sequence[Tuple[Block, Node]], vtype: Optional[ValueType] = None,
            name: str = "", seed: Optional[MDInfo] = None) -> Node:
        """PHI over ``(predecessor block, value)`` pairs.

        Values may be added later with :meth:`add_incoming` for loop-carried
        definitions.
        """
        if vtype is None:
            if not incoming:
                raise ProgramModelError("a phi without incoming values needs a type")
            vtype = incoming[0][1].type
        node = self._emit(
            Opcode.PHI, [v for _, v in incoming], vtype, name, seed,
            incoming=tuple(b for b, _ in incoming),
        )
        return node

    @staticmethod
    def add_incoming(phi: Node, block: Block, value: Node) -> None:
        if phi.opcode is not Opcode.PHI:
            raise ProgramModelError(f"{phi!r} is not a phi")
        phi.operands = phi.operands + (value,)
        phi.attrs["incoming"] = phi.attrs["incoming"] + (block,)

    # ---- Memory ----------------------------------------------------------

    def alloca(self, vtype: ValueType, name: str = "", seed: Optional[MDInfo] = None) -> Node:
        return self._emit(Opcode.ALLOCA, (), PointerType(vtype), name, seed, content_type=vtype)

    def load(self, pointer: Node, name: str = "", seed: Optional[MDInfo] = None) -> Node:
        if not isinstance(pointer.type, PointerType):
            raise ProgramModelError(f"load from non-pointer {pointer!r}")
        return self._emit(Opcode.LOAD, (pointer,), pointer.type.pointee, name, seed)

    def store(self, value: Node, pointer: Node) -> Node:
        if not isinstance(pointer.type, PointerType):
            raise ProgramModelError(f"store to non-pointer {pointer!r}")
        return self._emit(Opcode.STORE, (value, pointer), VOID)

    def field(self, pointer: Node, path: Sequence[int], name: str = "") -> Node:
        """Address of a sub-object: ``path`` indexes into the pointee type."""
        if not isinstance(pointer.type, PointerType):
            raise ProgramModelError(f"field of non-pointer {pointer!r}")
        vtype = pointer.type.pointee
        for index in path:
            if isinstance(vtype, StructType):
                if not 0 <= index < len(vtype.fields):
                    raise ProgramModelError(f"field {index} out of range for {vtype}")
                vtype = vtype.fields[index]
            elif isinstance(vtype, ArrayType):
                vtype = vtype.element
            else:
                raise ProgramModelError(f"cannot index into {vtype}")
        return self._emit(Opcode.FIELD, (pointer,), PointerType(vtype), name, path=tuple(path))

    # ---- Calls and control flow -----------------------------------------

    def call(self, callee: Union[Function, str, None], args: Sequence[Node],
             vtype: Optional[ValueType] = None, name: str = "",
             seed: Optional[MDInfo] = None) -> Node:
        if vtype is None:
            if not isinstance(callee, Function):
                raise ProgramModelError("calls to unresolved callees need a result type")
            vtype = callee.return_type
        return self._emit(Opcode.CALL, args, vtype, name, seed, callee=callee)

    def br(self, target: Block) -> Node:
        node = self._emit(Opcode.BR, (), VOID)
        self._link(target)
        return node

    def condbr(self, cond: Node, if_true: Block, if_false: Block) -> Node:
        node = self._emit(Opcode.CONDBR, (cond,), VOID)
        self._link(if_true)
        if if_false is not if_true:
            self._link(if_false)
        return node

    def ret(self, value: Optional[Node] = None) -> Node:
        return self._emit(Opcode.RET, () if value is None else (value,), VOID)

    def _link(self, target: Block) -> None:
        assert self.block is not None
        if target.function is not self.function:
            raise ProgramModelError(f"branch to {target!r} leaves {self.function.name}")
        self.block.successors.append(target)
        target.predecessors.append(self.block)
        self.function.invalidate()
