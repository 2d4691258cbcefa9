"""
fixedpoint_shims/ir_reader.py
═════════════════════════════

Reader for the textual program listing, a small SSA notation used to
write programs by hand (tests, tools, bug reports)::

    struct pair { float, float }
    global @g : float = 1.5 !range(0, 10) !final
    declare @sqrt(double) : double

    func @main(%a : float !range(-1, 1)) : float start {
    entry:
      %c = const float 2.5
      %x = add %a, %c
      br loop
    loop: !trip(8)
      %i = phi float [entry: %x], [loop: %n]
      %n = mul %i, %c
      %k = cmp lt %n, %c
      condbr %k, loop, done
    done:
      ret %i
    }
    target "out" = @main.%i

Parsing is split in two phases, following the usual Parsimonious
pattern:

    text ──Grammar──▶ parse tree ──_ListingVisitor──▶ declarations
         ──_Assembler──▶ Program (via Builder)

The visitor only reshapes the tree into plain declaration records; name
resolution (forward references to blocks, loop-carried phi operands,
recursive structs, calls to functions defined further down) happens in
the assembler.  Every failure is a :class:`ListingSyntaxError` with the
line and column of the offending text.

Annotations
───────────

    on values      !range(lo, hi)  !error(e)  !fixp(width, frac, s|u)
                   !final  !disabled  !field(i, ...)
    on blocks      !trip(n)  !unroll(n)
    on functions   start  !maxrec(n)

``!field(i, j)`` moves the following value annotations to that field of
a struct-typed value, so a struct global can be seeded per field::

    global @p : pair !field(0) !range(0, 1) !field(1) !range(-2, 2) !final
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from parsimonious.exceptions import ParseError
from parsimonious.grammar import Grammar
from parsimonious.nodes import NodeVisitor

from fixedpoint_shims.errors import FixedPointShimsError, ListingSyntaxError, ProgramModelError
from fixedpoint_shims.metadata import AggregateInfo, MDInfo, ValueInfo, check_shape
from fixedpoint_shims.numeric_types import FixedPointFormat, FloatStandard, Range
from fixedpoint_shims.program_model import Block, Builder, Function, Node, Opcode, Program
from fixedpoint_shims.value_types import (
    VOID,
    ArrayType,
    PointerType,
    ScalarType,
    StructType,
    ValueType,
    strip_arrays,
)

__all__ = ["LISTING_GRAMMAR", "parse_listing", "read_listing"]

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — GRAMMAR (Parsimonious PEG)
# ═══════════════════════════════════════════════════════════════════════════

LISTING_GRAMMAR = Grammar(r'''
    listing       = _ item*
    item          = (struct_decl / declare_decl / global_decl / func_decl / target_decl) _

    # ─────────────────────────────────────────────────────────────
    # Declarations
    # ─────────────────────────────────────────────────────────────

    struct_decl   = "struct" __ ident _ "{" _ type_list? _ "}"
    declare_decl  = "declare" __ gname _ "(" _ type_list? _ ")" _ ":" _ type
    global_decl   = "global" __ gname _ ":" _ type initializer? annots
    func_decl     = "func" __ gname _ "(" _ param_list? _ ")" _ ":" _ type fn_flags _
                    "{" _ block* "}"
    target_decl   = ~r"target\b" _ string _ "=" _ member more_members*

    type_list     = type more_types*
    more_types    = _ "," _ type
    initializer   = _ "=" _ init
    init          = number / init_list
    init_list     = "{" _ init more_inits* _ "}"
    more_inits    = _ "," _ init
    param_list    = param more_params*
    more_params   = _ "," _ param
    param         = lname _ ":" _ type annots
    fn_flags      = fn_flag*
    fn_flag       = _ (start / annot)
    start         = ~r"start\b"
    member        = gname ("." lname)?
    more_members  = _ "," _ member

    # ─────────────────────────────────────────────────────────────
    # Blocks and instructions
    # ─────────────────────────────────────────────────────────────

    block         = ident _ ":" annots _ instr*
    instr         = (assign / effect) _
    assign        = lname _ "=" _ op annots
    effect        = store / condbr / br / ret / call
    op            = const / binop / neg / cast / cmp / select / phi / alloca / load
                  / field / call

    const         = ~r"const\b" _ type __ number
    binop         = binop_kw __ operand _ "," _ operand
    binop_kw      = ~r"(add|sub|mul|div|rem|shl|ashr)\b"
    neg           = ~r"neg\b" _ operand
    cast          = ~r"cast\b" _ operand __ "to" __ type
    cmp           = ~r"cmp\b" _ predicate __ operand _ "," _ operand
    predicate     = ~r"(eq|ne|lt|le|gt|ge)\b"
    select        = ~r"select\b" _ operand _ "," _ operand _ "," _ operand
    phi           = ~r"phi\b" _ type _ incoming more_incoming*
    more_incoming = _ "," _ incoming
    incoming      = "[" _ ident _ ":" _ operand _ "]"
    alloca        = ~r"alloca\b" _ type
    load          = ~r"load\b" _ operand
    field         = ~r"field\b" _ operand more_indices+
    more_indices  = _ "," _ integer
    call          = ~r"call\b" _ type __ callee _ "(" _ operand_list? _ ")"
    callee        = gname / indirect
    indirect      = "?"
    operand_list  = operand more_operands*
    more_operands = _ "," _ operand
    store         = ~r"store\b" _ operand _ "," _ operand
    condbr        = ~r"condbr\b" _ operand _ "," _ ident _ "," _ ident
    br            = ~r"br\b" _ ident
    ret           = ~r"ret\b" ret_value?
    ret_value     = __ operand
    operand       = lname / gname

    # ─────────────────────────────────────────────────────────────
    # Types
    # ─────────────────────────────────────────────────────────────

    type          = base_type ptr*
    ptr           = _ "*"
    base_type     = array_type / scalar_type / struct_ref
    array_type    = "[" _ integer __ "x" __ type _ "]"
    scalar_type   = ~r"(half|float|double|bfloat|fp128|x86_fp80|ppc_fp128|void|i[0-9]+)\b"
    struct_ref    = ~r"[A-Za-z_][A-Za-z0-9_]*"

    # ─────────────────────────────────────────────────────────────
    # Annotations
    # ─────────────────────────────────────────────────────────────

    annots        = annot_item*
    annot_item    = _ annot
    annot         = "!" annot_body
    annot_body    = range_a / error_a / fixp_a / trip_a / unroll_a / maxrec_a / field_a / flag_a
    range_a       = "range" _ "(" _ number _ "," _ number _ ")"
    error_a       = "error" _ "(" _ number _ ")"
    fixp_a        = "fixp" _ "(" _ integer _ "," _ integer _ "," _ sign _ ")"
    sign          = "s" / "u"
    trip_a        = "trip" _ "(" _ integer _ ")"
    unroll_a      = "unroll" _ "(" _ integer _ ")"
    maxrec_a      = "maxrec" _ "(" _ integer _ ")"
    field_a       = "field" _ "(" _ integer more_indices* _ ")"
    flag_a        = ~r"(final|disabled)\b"

    # ─────────────────────────────────────────────────────────────
    # Lexical
    # ─────────────────────────────────────────────────────────────

    gname         = "@" ident
    lname         = "%" ident
    ident         = ~r"[A-Za-z_][A-Za-z0-9_]*"
    integer       = ~r"[-+]?[0-9]+"
    number        = ~r"[-+]?(inf|nan|[0-9]*\.?[0-9]+([eE][-+]?[0-9]+)?)"
    string        = ~r'"[^"]*"'
    _             = ~r"(\s|#[^\n]*)*"
    __            = ~r"(\s|#[^\n]*)+"
''')


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — DECLARATION RECORDS
# ═══════════════════════════════════════════════════════════════════════════

# Type specs are resolved late so that structs may refer to each other:
#   ("scalar", name) | ("struct", name) | ("array", n, spec) | ("ptr", spec)
TypeSpec = Tuple[Any, ...]
Annotation = Tuple[Any, ...]


@dataclass
class _StructDecl:
    name: str
    fields: List[TypeSpec]
    pos: int


@dataclass
class _DeclareDecl:
    name: str
    params: List[TypeSpec]
    ret: TypeSpec
    pos: int


@dataclass
class _GlobalDecl:
    name: str
    type: TypeSpec
    init: Any
    annots: List[Annotation]
    pos: int


@dataclass
class _Instr:
    result: Optional[str]
    kind: str
    args: Dict[str, Any]
    annots: List[Annotation]
    pos: int


@dataclass
class _BlockDecl:
    label: str
    annots: List[Annotation]
    instrs: List[_Instr]
    pos: int


@dataclass
class _FuncDecl:
    name: str
    params: List[Tuple[str, TypeSpec, List[Annotation], int]]
    ret: TypeSpec
    flags: List[Annotation]
    blocks: List[_BlockDecl] = field(default_factory=list)
    pos: int = 0


@dataclass
class _TargetDecl:
    name: str
    members: List[Tuple[str, Optional[str]]]
    pos: int


def _many(children: Any) -> List[Any]:
    """Results of a ``*`` / ``+`` repetition (empty when nothing matched)."""
    return children if isinstance(children, list) else []


def _opt(children: Any) -> Any:
    """Result of a ``?`` option, or None when it did not match."""
    return children[0] if isinstance(children, list) and children else None


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — VISITOR (parse tree → declarations)
# ═══════════════════════════════════════════════════════════════════════════

class _ListingVisitor(NodeVisitor):
    """Reshapes the parse tree into declaration records."""

    unwrapped_exceptions = (FixedPointShimsError,)

    def generic_visit(self, node, visited_children):
        return visited_children or node

    # ---- Top level -------------------------------------------------------

    def visit_listing(self, node, visited_children):
        _, items = visited_children
        return _many(items)

    def visit_item(self, node, visited_children):
        decl, _ = visited_children
        return decl[0]

    def visit_struct_decl(self, node, visited_children):
        _, _, name, _, _, _, types, _, _ = visited_children
        return _StructDecl(name, _opt(types) or [], node.start)

    def visit_declare_decl(self, node, visited_children):
        name, types, ret = visited_children[2], visited_children[6], visited_children[12]
        return _DeclareDecl(name[1], _opt(types) or [], ret, node.start)

    def visit_global_decl(self, node, visited_children):
        _, _, name, _, _, _, vtype, init, annots = visited_children
        return _GlobalDecl(name[1], vtype, _opt(init), annots, node.start)

    def visit_func_decl(self, node, visited_children):
        c = visited_children
        return _FuncDecl(c[2][1], _opt(c[6]) or [], c[12], c[13], _many(c[17]), node.start)

    def visit_target_decl(self, node, visited_children):
        c = visited_children
        return _TargetDecl(c[2], [c[6]] + _many(c[7]), node.start)

    def visit_type_list(self, node, visited_children):
        first, rest = visited_children
        return [first] + _many(rest)

    def visit_initializer(self, node, visited_children):
        return visited_children[3]

    def visit_init(self, node, visited_children):
        return visited_children[0]

    def visit_init_list(self, node, visited_children):
        return [visited_children[2]] + _many(visited_children[3])

    def visit_param_list(self, node, visited_children):
        first, rest = visited_children
        return [first] + _many(rest)

    def visit_param(self, node, visited_children):
        name, _, _, _, vtype, annots = visited_children
        return (name[1], vtype, annots, node.start)

    def visit_fn_flags(self, node, visited_children):
        return _many(visited_children)

    def visit_fn_flag(self, node, visited_children):
        return visited_children[1][0]

    def visit_start(self, node, visited_children):
        return ("start",)

    def visit_member(self, node, visited_children):
        gname, local = visited_children
        local = _opt(local)
        return (gname[1], local[1][1] if local else None)

    # Every "_ , _ x" continuation rule yields its last child.
    def _last(self, node, visited_children):
        return visited_children[-1]

    visit_more_types = visit_more_inits = visit_more_params = _last
    visit_more_members = visit_more_incoming = visit_more_indices = _last
    visit_more_operands = visit_annot_item = visit_ret_value = _last

    # ---- Blocks and instructions -----------------------------------------

    def visit_block(self, node, visited_children):
        label, _, _, annots, _, instrs = visited_children
        return _BlockDecl(label, annots, _many(instrs), node.start)

    def visit_instr(self, node, visited_children):
        instr, _ = visited_children
        return instr[0]

    def visit_assign(self, node, visited_children):
        name, _, _, _, (kind, args), annots = visited_children
        return _Instr(name[1], kind, args, annots, node.start)

    def visit_effect(self, node, visited_children):
        kind, args = visited_children[0]
        return _Instr(None, kind, args, [], node.start)

    def visit_op(self, node, visited_children):
        return visited_children[0]

    def visit_const(self, node, visited_children):
        return "const", {"type": visited_children[2], "value": visited_children[4]}

    def visit_binop(self, node, visited_children):
        c = visited_children
        return c[0], {"lhs": c[2], "rhs": c[6]}

    def visit_binop_kw(self, node, visited_children):
        return node.text

    def visit_predicate(self, node, visited_children):
        return node.text

    def visit_neg(self, node, visited_children):
        return "neg", {"x": visited_children[2]}

    def visit_cast(self, node, visited_children):
        return "cast", {"x": visited_children[2], "type": visited_children[6]}

    def visit_cmp(self, node, visited_children):
        c = visited_children
        return "cmp", {"pred": c[2], "lhs": c[4], "rhs": c[8]}

    def visit_select(self, node, visited_children):
        c = visited_children
        return "select", {"cond": c[2], "t": c[6], "f": c[10]}

    def visit_phi(self, node, visited_children):
        c = visited_children
        return "phi", {"type": c[2], "incoming": [c[4]] + _many(c[5])}

    def visit_incoming(self, node, visited_children):
        return (visited_children[2], visited_children[6], node.start)

    def visit_alloca(self, node, visited_children):
        return "alloca", {"type": visited_children[2]}

    def visit_load(self, node, visited_children):
        return "load", {"ptr": visited_children[2]}

    def visit_field(self, node, visited_children):
        return "field", {"ptr": visited_children[2], "path": _many(visited_children[3])}

    def visit_call(self, node, visited_children):
        c = visited_children
        return "call", {"type": c[2], "callee": c[4], "args": _opt(c[8]) or []}

    def visit_callee(self, node, visited_children):
        callee = visited_children[0]
        return callee[1] if isinstance(callee, tuple) else None

    def visit_indirect(self, node, visited_children):
        return None

    def visit_operand_list(self, node, visited_children):
        first, rest = visited_children
        return [first] + _many(rest)

    def visit_store(self, node, visited_children):
        return "store", {"value": visited_children[2], "ptr": visited_children[6]}

    def visit_condbr(self, node, visited_children):
        c = visited_children
        return "condbr", {"cond": c[2], "t": c[6], "f": c[10]}

    def visit_br(self, node, visited_children):
        return "br", {"target": visited_children[2]}

    def visit_ret(self, node, visited_children):
        return "ret", {"value": _opt(visited_children[1])}

    def visit_operand(self, node, visited_children):
        return visited_children[0]

    # ---- Types -----------------------------------------------------------

    def visit_type(self, node, visited_children):
        spec, ptrs = visited_children
        for _ in _many(ptrs):
            spec = ("ptr", spec)
        return spec

    def visit_base_type(self, node, visited_children):
        return visited_children[0]

    def visit_array_type(self, node, visited_children):
        return ("array", visited_children[2], visited_children[6])

    def visit_scalar_type(self, node, visited_children):
        return ("scalar", node.text)

    def visit_struct_ref(self, node, visited_children):
        return ("struct", node.text)

    # ---- Annotations -----------------------------------------------------

    def visit_annots(self, node, visited_children):
        return _many(visited_children)

    def visit_annot(self, node, visited_children):
        return visited_children[1]

    def visit_annot_body(self, node, visited_children):
        return visited_children[0]

    def visit_range_a(self, node, visited_children):
        return ("range", visited_children[4], visited_children[8])

    def visit_error_a(self, node, visited_children):
        return ("error", visited_children[4])

    def visit_fixp_a(self, node, visited_children):
        c = visited_children
        return ("fixp", c[4], c[8], c[12] == "s")

    def visit_sign(self, node, visited_children):
        return node.text

    def _counted(self, node, visited_children):
        return (node.text.split("(")[0].strip(), visited_children[4])

    visit_trip_a = visit_unroll_a = visit_maxrec_a = _counted

    def visit_field_a(self, node, visited_children):
        return ("field", [visited_children[4]] + _many(visited_children[5]))

    def visit_flag_a(self, node, visited_children):
        return (node.text,)

    # ---- Lexical ---------------------------------------------------------

    def visit_gname(self, node, visited_children):
        return ("global", visited_children[1])

    def visit_lname(self, node, visited_children):
        return ("local", visited_children[1])

    def visit_ident(self, node, visited_children):
        return node.text

    def visit_integer(self, node, visited_children):
        return int(node.text)

    def visit_number(self, node, visited_children):
        return float(node.text)

    def visit_string(self, node, visited_children):
        return node.text[1:-1]


# ═══════════════════════════════════════════════════════════════════════════
#  PART 4 — ASSEMBLER (declarations → Program)
# ═══════════════════════════════════════════════════════════════════════════

_SEED_ANNOTATIONS = {"range", "error", "fixp", "final", "disabled", "field"}

_BINOPS = {"add", "sub", "mul", "div", "rem", "shl", "ashr"}

_FLOAT_BITS = {
    FloatStandard.HALF: 16,
    FloatStandard.FLOAT: 32,
    FloatStandard.DOUBLE: 64,
    FloatStandard.FP128: 128,
    FloatStandard.X86_FP80: 80,
    FloatStandard.PPC_FP128: 128,
    FloatStandard.BFLOAT: 16,
}


def _pointee_base(vtype: ValueType) -> ValueType:
    while isinstance(vtype, (ArrayType, PointerType)):
        vtype = vtype.element if isinstance(vtype, ArrayType) else vtype.pointee
    return vtype


class _Assembler:

    def __init__(self, text: str) -> None:
        self.text = text
        self.program = Program()
        self.globals: Dict[str, Node] = {}
        self.values: Dict[str, Dict[str, Node]] = {}

    def fail(self, message: str, pos: int) -> ListingSyntaxError:
        line = self.text.count("\n", 0, pos) + 1
        column = pos - (self.text.rfind("\n", 0, pos) + 1) + 1
        return ListingSyntaxError(message, line=line, column=column)

    # ---- Types -----------------------------------------------------------

    def resolve(self, spec: TypeSpec, pos: int) -> ValueType:
        kind = spec[0]
        if kind == "scalar":
            name = spec[1]
            if name == "void":
                return VOID
            if name.startswith("i") and name[1:].isdigit():
                bits = int(name[1:])
                return ScalarType(None, bits, signed=bits != 1)
            standard = FloatStandard(name)
            return ScalarType(standard, _FLOAT_BITS[standard])
        if kind == "struct":
            try:
                return self.program.structs[spec[1]]
            except KeyError:
                raise self.fail(f"unknown struct {spec[1]}", pos) from None
        if kind == "array":
            return ArrayType(self.resolve(spec[2], pos), spec[1])
        return PointerType(self.resolve(spec[1], pos))

    # ---- Seeds -----------------------------------------------------------

    def seed(self, vtype: ValueType, annots: Sequence[Annotation], pos: int) -> Optional[MDInfo]:
        relevant = [a for a in annots if a[0] in _SEED_ANNOTATIONS]
        for a in annots:
            if a[0] not in _SEED_ANNOTATIONS:
                raise self.fail(f"!{a[0]} is not allowed on a value", pos)
        if not relevant:
            return None
        base = _pointee_base(vtype)
        root: MDInfo = (
            AggregateInfo.of_size(len(base.fields)) if isinstance(base, StructType) else ValueInfo()
        )
        current: Optional[ValueInfo] = root if isinstance(root, ValueInfo) else None
        for a in relevant:
            if a[0] == "field":
                current = self._field_leaf(root, base, a[1], pos)
                continue
            if current is None:
                raise self.fail(f"!{a[0]} on a struct value needs a !field first", pos)
            try:
                self._apply(current, a)
            except ValueError as exc:
                raise self.fail(str(exc), pos) from exc
        return root

    def _field_leaf(self, root: MDInfo, base: ValueType, path: Sequence[int],
                    pos: int) -> ValueInfo:
        info: MDInfo = root
        vtype = base
        for index in path:
            vtype = strip_arrays(vtype)
            if not isinstance(vtype, StructType) or not isinstance(info, AggregateInfo):
                raise self.fail(f"!field path {list(path)} indexes into a scalar", pos)
            if not 0 <= index < len(vtype.fields):
                raise self.fail(f"!field index {index} out of range for {vtype}", pos)
            ftype = strip_arrays(vtype.fields[index])
            child = info.fields[index]
            if child is None:
                child = (
                    AggregateInfo.of_size(len(ftype.fields))
                    if isinstance(ftype, StructType) else ValueInfo()
                )
                info.fields[index] = child
            info, vtype = child, ftype
        if not isinstance(info, ValueInfo):
            raise self.fail(f"!field path {list(path)} does not reach a scalar", pos)
        return info

    @staticmethod
    def _apply(info: ValueInfo, annot: Annotation) -> None:
        kind = annot[0]
        if kind == "range":
            info.range = Range(annot[1], annot[2])
        elif kind == "error":
            info.initial_error = annot[1]
        elif kind == "fixp":
            info.type = FixedPointFormat(annot[1], annot[2], annot[3])
        elif kind == "final":
            info.final = True
        elif kind == "disabled":
            info.enabled = False

    # ---- Declarations ----------------------------------------------------

    def build(self, decls: Sequence[Any]) -> Program:
        structs = [d for d in decls if isinstance(d, _StructDecl)]
        for d in structs:
            if d.name in self.program.structs:
                raise self.fail(f"struct {d.name} defined twice", d.pos)
            self.program.add_struct(d.name)
        for d in structs:
            self.program.structs[d.name].fields.extend(self.resolve(t, d.pos) for t in d.fields)

        for d in decls:
            if isinstance(d, _DeclareDecl):
                fn = self._function(d.name, self.resolve(d.ret, d.pos), [], d.pos)
                for i, t in enumerate(d.params):
                    fn.add_param(f"arg{i}", self.resolve(t, d.pos))
            elif isinstance(d, _FuncDecl):
                self._define(d)
            elif isinstance(d, _GlobalDecl):
                vtype = self.resolve(d.type, d.pos)
                if d.name in self.globals:
                    raise self.fail(f"global @{d.name} defined twice", d.pos)
                self.globals[d.name] = self.program.add_global(
                    d.name, vtype, initializer=d.init, seed=self.seed(vtype, d.annots, d.pos)
                )

        for d in decls:
            if isinstance(d, _FuncDecl):
                self._body(d)
        for d in decls:
            if isinstance(d, _TargetDecl):
                self._target(d)
        return self.program

    def _function(self, name: str, ret: ValueType, flags: Sequence[Annotation],
                  pos: int) -> Function:
        if name in self.program.functions:
            raise self.fail(f"function @{name} defined twice", pos)
        start = False
        max_recursion = None
        for flag in flags:
            if flag[0] == "start":
                start = True
            elif flag[0] == "maxrec":
                max_recursion = flag[1]
            else:
                raise self.fail(f"!{flag[0]} is not allowed on a function", pos)
        return self.program.add_function(name, ret, start=start, max_recursion=max_recursion)

    def _define(self, d: _FuncDecl) -> None:
        fn = self._function(d.name, self.resolve(d.ret, d.pos), d.flags, d.pos)
        values: Dict[str, Node] = {}
        for name, spec, annots, pos in d.params:
            vtype = self.resolve(spec, pos)
            if name in values:
                raise self.fail(f"parameter %{name} defined twice", pos)
            values[name] = fn.add_param(name, vtype, self.seed(vtype, annots, pos))
        self.values[d.name] = values

    # ---- Bodies ----------------------------------------------------------

    def _body(self, d: _FuncDecl) -> None:
        fn = self.program.functions[d.name]
        values = self.values[d.name]
        blocks: Dict[str, Block] = {}
        for bd in d.blocks:
            if bd.label in blocks:
                raise self.fail(f"block {bd.label} defined twice", bd.pos)
            block = fn.add_block(bd.label)
            for a in bd.annots:
                if a[0] == "trip":
                    block.trip_count = a[1]
                elif a[0] == "unroll":
                    block.unroll_count = a[1]
                else:
                    raise self.fail(f"!{a[0]} is not allowed on a block", bd.pos)
            blocks[bd.label] = block

        builder = Builder(fn)
        pending: List[Tuple[Node, str, Tuple[str, str], int]] = []
        for bd in d.blocks:
            builder.position_at(blocks[bd.label])
            for ins in bd.instrs:
                try:
                    node = self._emit(builder, ins, values, blocks, pending)
                except ListingSyntaxError:
                    raise
                except ProgramModelError as exc:
                    raise self.fail(str(exc), ins.pos) from exc
                if ins.result is not None:
                    if ins.result in values:
                        raise self.fail(f"value %{ins.result} defined twice", ins.pos)
                    values[ins.result] = node
        for phi, label, operand, pos in pending:
            if label not in blocks:
                raise self.fail(f"unknown block {label}", pos)
            Builder.add_incoming(phi, blocks[label], self._operand(operand, values, pos))
        logger.debug("read @%s: %d blocks, %d values", fn.name, len(blocks), len(values))

    def _operand(self, ref: Tuple[str, str], values: Dict[str, Node], pos: int) -> Node:
        scope, name = ref
        table = values if scope == "local" else self.globals
        try:
            return table[name]
        except KeyError:
            sigil = "%" if scope == "local" else "@"
            raise self.fail(f"undefined value {sigil}{name}", pos) from None

    def _block(self, label: str, blocks: Dict[str, Block], pos: int) -> Block:
        try:
            return blocks[label]
        except KeyError:
            raise self.fail(f"unknown block {label}", pos) from None

    def _emit(self, b: Builder, ins: _Instr, values: Dict[str, Node],
              blocks: Dict[str, Block], pending: List[Any]) -> Node:
        a, pos, name = ins.args, ins.pos, ins.result or ""

        def val(key: str) -> Node:
            return self._operand(a[key], values, pos)

        kind = ins.kind
        if kind == "const":
            node = b.const(a["value"], self.resolve(a["type"], pos), name)
        elif kind in _BINOPS:
            node = b.binop(Opcode(kind), val("lhs"), val("rhs"), name)
        elif kind == "neg":
            node = b.neg(val("x"), name)
        elif kind == "cast":
            node = b.cast(val("x"), self.resolve(a["type"], pos), name)
        elif kind == "cmp":
            node = b.cmp(a["pred"], val("lhs"), val("rhs"), name)
        elif kind == "select":
            node = b.select(val("cond"), val("t"), val("f"), name)
        elif kind == "phi":
            node = b.phi([], self.resolve(a["type"], pos), name)
            for label, operand, ipos in a["incoming"]:
                pending.append((node, label, operand, ipos))
        elif kind == "alloca":
            node = b.alloca(self.resolve(a["type"], pos), name)
        elif kind == "load":
            node = b.load(val("ptr"), name)
        elif kind == "field":
            node = b.field(val("ptr"), a["path"], name)
        elif kind == "call":
            callee: Any = a["callee"]
            if callee is not None:
                callee = self.program.functions.get(callee, callee)
            args = [self._operand(r, values, pos) for r in a["args"]]
            node = b.call(callee, args, self.resolve(a["type"], pos), name)
        elif kind == "store":
            node = b.store(val("value"), val("ptr"))
        elif kind == "br":
            node = b.br(self._block(a["target"], blocks, pos))
        elif kind == "condbr":
            node = b.condbr(
                val("cond"), self._block(a["t"], blocks, pos), self._block(a["f"], blocks, pos)
            )
        else:
            node = b.ret(val("value") if a["value"] is not None else None)

        seed = self.seed(node.type, ins.annots, pos)
        if seed is not None:
            if node.opcode in (Opcode.ALLOCA, Opcode.GLOBAL):
                check_shape(node.attrs["content_type"], seed)
            else:
                check_shape(node.type, seed)
            node.seed = seed
        return node

    def _target(self, d: _TargetDecl) -> None:
        members = []
        for fname, local in d.members:
            if local is None:
                members.append(self._operand(("global", fname), {}, d.pos))
                continue
            if fname not in self.values:
                raise self.fail(f"unknown function @{fname}", d.pos)
            members.append(self._operand(("local", local), self.values[fname], d.pos))
        self.program.add_target(d.name, members)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 5 — PUBLIC API
# ═══════════════════════════════════════════════════════════════════════════

def parse_listing(text: str) -> Program:
    """Build a :class:`Program` from listing text.

    Raises
    ------
    ListingSyntaxError
        On malformed text or unresolved names.
    """
    try:
        tree = LISTING_GRAMMAR.parse(text)
    except ParseError as exc:
        excerpt = exc.text[exc.pos:exc.pos + 20].split("\n")[0]
        raise ListingSyntaxError(
            f"unexpected input {excerpt!r}", line=exc.line(), column=exc.column()
        ) from exc
    decls = _ListingVisitor().visit(tree)
    program = _Assembler(text).build(decls)
    logger.info(
        "read listing: %d functions, %d globals, %d targets",
        len(program.functions), len(program.globals), len(program.targets),
    )
    return program


def read_listing(path: str) -> Program:
    with open(path, encoding="utf-8") as fh:
        return parse_listing(fh.read())
