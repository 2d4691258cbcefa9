# tests/test_program_model.py
"""
Tests for the Program Model: builder checks, loop discovery, starting
points and the call graph.
"""

import pytest

from fixedpoint_shims.errors import ProgramModelError, StructuralMalformationError
from fixedpoint_shims.metadata import AggregateInfo, ValueInfo
from fixedpoint_shims.program_model import Builder, Opcode, Program
from fixedpoint_shims.value_types import F32, F64, I32, ArrayType, PointerType
from tests.conftest import counter_loop, make_main, recursive_program


# ── Builder ──────────────────────────────────────────────────────

class TestBuilder:

    def test_node_ids_are_unique_and_resolvable(self):
        prog, fn, b, (a,) = make_main(("a", None))
        c = b.const(2.0)
        x = b.mul(a, c, name="x")
        ids = [a.id, c.id, x.id]
        assert len(set(ids)) == 3
        assert prog.node(x.id) is x
        assert x.label() == "x"
        assert c.label() == f"#{c.id}"

    def test_unknown_node_id(self):
        with pytest.raises(ProgramModelError):
            Program().node(42)

    def test_emit_after_terminator(self):
        _, _, b, (a,) = make_main(("a", None))
        b.ret(a)
        with pytest.raises(ProgramModelError):
            b.const(1.0)

    def test_unpositioned_builder(self):
        prog = Program()
        fn = prog.add_function("f")
        with pytest.raises(ProgramModelError):
            Builder(fn).const(1.0)

    def test_operand_from_other_function(self):
        prog, _, _, (a,) = make_main(("a", None))
        other = prog.add_function("other")
        with pytest.raises(ProgramModelError):
            Builder(other, other.add_block("entry")).neg(a)

    def test_bad_predicate(self):
        _, _, b, (a,) = make_main(("a", None))
        with pytest.raises(ProgramModelError):
            b.cmp("approx", a, a)

    def test_load_from_non_pointer(self):
        _, _, b, (a,) = make_main(("a", None))
        with pytest.raises(ProgramModelError):
            b.load(a)

    def test_field_types(self):
        prog = Program()
        pair = prog.add_struct("pair", [F32, ArrayType(F64, 4)])
        fn = prog.add_function("main", start=True)
        b = Builder(fn, fn.add_block("entry"))
        p = b.alloca(pair)
        assert b.field(p, [0]).type == PointerType(F32)
        assert b.field(p, [1, 2]).type == PointerType(F64)
        with pytest.raises(ProgramModelError):
            b.field(p, [2])

    def test_seed_shape_is_checked(self):
        prog = Program()
        pair = prog.add_struct("pair", [F32, F32])
        fn = prog.add_function("main", start=True)
        b = Builder(fn, fn.add_block("entry"))
        with pytest.raises(StructuralMalformationError):
            b.alloca(pair, seed=ValueInfo())
        b.alloca(pair, seed=AggregateInfo([ValueInfo(), None]))

    def test_duplicate_names(self):
        prog = Program()
        fn = prog.add_function("f")
        fn.add_block("entry")
        with pytest.raises(ProgramModelError):
            prog.add_function("f")
        with pytest.raises(ProgramModelError):
            fn.add_block("entry")
        prog.add_struct("s")
        with pytest.raises(ProgramModelError):
            prog.add_struct("s")

    def test_call_to_unresolved_callee_needs_type(self):
        _, _, b, (a,) = make_main(("a", None))
        with pytest.raises(ProgramModelError):
            b.call("mystery", [a])
        node = b.call("mystery", [a], F64)
        assert node.opcode is Opcode.CALL

    def test_phi_incoming_added_later(self):
        loop = counter_loop(trip=8)
        assert loop.i.operands == (loop.fn.entry.nodes[0], loop.n)
        assert loop.i.attrs["incoming"] == (loop.fn.entry, loop.loop)


# ── Control flow ─────────────────────────────────────────────────

class TestLoops:

    def test_self_loop_found(self):
        loop = counter_loop(trip=8)
        loops = loop.fn.loops()
        assert len(loops) == 1
        assert loops[0].header is loop.loop
        assert loops[0].trip_count == 8
        assert loops[0].depth == 1

    def test_reverse_postorder(self):
        loop = counter_loop()
        assert [b.label for b in loop.fn.reverse_postorder()] == ["entry", "loop", "done"]

    def test_nested_loops(self):
        prog = Program()
        fn = prog.add_function("main", start=True)
        entry, outer, inner, latch, done = (
            fn.add_block(n) for n in ("entry", "outer", "inner", "latch", "done")
        )
        b = Builder(fn, entry)
        t = b.const(1, I32)
        b.br(outer)
        b.position_at(outer).br(inner)
        b.position_at(inner).condbr(t, inner, latch)
        b.position_at(latch).condbr(t, outer, done)
        b.position_at(done).ret()

        loops = fn.loops()
        assert [lp.header.label for lp in loops] == ["outer", "inner"]
        assert loops[1].parent is loops[0]
        assert loops[1].depth == 2
        assert inner in loops[0]
        assert fn.loop_headed_by(inner) is loops[1]

    def test_unreachable_blocks_ignored(self):
        prog = Program()
        fn = prog.add_function("main", start=True)
        entry, dead = fn.add_block("entry"), fn.add_block("dead")
        Builder(fn, entry).ret()
        Builder(fn, dead).br(dead)
        assert fn.reverse_postorder() == [entry]
        assert fn.loops() == []


# ── Program ──────────────────────────────────────────────────────

class TestStartingPoints:

    def _program(self, names, starts=()):
        prog = Program()
        for name in names:
            fn = prog.add_function(name, start=name in starts)
            Builder(fn, fn.add_block("entry")).ret()
        prog.add_function("ext")  # declaration only
        return prog

    def test_marked_start(self):
        prog = self._program(["main", "kernel"], starts=["kernel"])
        assert [f.name for f in prog.starting_points()] == ["kernel"]

    def test_main_fallback(self):
        prog = self._program(["helper", "main"])
        assert [f.name for f in prog.starting_points()] == ["main"]

    def test_everything_fallback(self):
        prog = self._program(["a", "b"])
        assert [f.name for f in prog.starting_points()] == ["a", "b"]

    def test_propagate_all(self):
        prog = self._program(["main", "kernel"], starts=["kernel"])
        assert [f.name for f in prog.starting_points(True)] == ["main", "kernel"]

    def test_global_seed_shape(self):
        prog = Program()
        pair = prog.add_struct("pair", [F32, F32])
        with pytest.raises(StructuralMalformationError):
            prog.add_global("g", pair, seed=AggregateInfo([None]))
        g = prog.add_global("h", pair, initializer=[1.0, 2.0])
        assert g.type == PointerType(pair)
        assert g.opcode is Opcode.GLOBAL


class TestCallGraph:

    def test_direct_recursion(self):
        rec = recursive_program()
        graph = rec.program.call_graph()
        recursive = graph.recursive_edges()
        assert [e.site for e in recursive] == [rec.inner]
        assert not graph.unresolved_edges()

    def test_mutual_recursion_and_unresolved(self):
        prog = Program()
        f = prog.add_function("f", F64)
        g = prog.add_function("g", F64)
        main = prog.add_function("main", F64, start=True)
        fx = f.add_param("x", F64)
        gx = g.add_param("x", F64)
        fb = Builder(f, f.add_block("entry"))
        fb.ret(fb.call(g, [fx]))
        gb = Builder(g, g.add_block("entry"))
        gb.ret(gb.call(f, [gx]))
        mb = Builder(main, main.add_block("entry"))
        a = mb.const(1.0)
        mb.call(f, [a])
        mb.call(None, [a], F64)
        mb.ret()

        graph = prog.call_graph()
        assert {(e.caller.name, e.callee.name) for e in graph.recursive_edges()} == {
            ("f", "g"), ("g", "f"),
        }
        assert len(graph.unresolved_edges()) == 1
        assert len(graph.callees_of(main)) == 2
        sccs = graph.strongly_connected_components()
        assert sorted(len(s) for s in sccs) == [1, 2]
