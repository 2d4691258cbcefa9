# tests/test_ir_reader.py
"""
Tests for the textual program listing reader.
"""

import pytest

from fixedpoint_shims.errors import ListingSyntaxError
from fixedpoint_shims.ir_reader import parse_listing, read_listing
from fixedpoint_shims.metadata import AggregateInfo, ValueInfo
from fixedpoint_shims.numeric_types import FixedPointFormat, Range
from fixedpoint_shims.pipeline import analyze
from fixedpoint_shims.program_model import Opcode
from fixedpoint_shims.value_types import F32, F64, PointerType


def _main_values(program):
    fn = program.functions["main"]
    return {n.name: n for n in fn.nodes() if n.name}


# ── Declarations ─────────────────────────────────────────────────

class TestDeclarations:

    def test_struct_and_declaration(self, listing_text):
        prog = parse_listing(listing_text)
        assert prog.structs["pair"].fields == [F32, F32]
        sqrt = prog.functions["sqrt"]
        assert sqrt.is_declaration
        assert [p.type for p in sqrt.params] == [F64]
        assert sqrt.return_type == F64

    def test_global(self, listing_text):
        prog = parse_listing(listing_text)
        (g,) = prog.globals
        assert g.name == "g"
        assert g.type == PointerType(F32)
        assert g.attrs["initializer"] == 1.5
        assert g.seed == ValueInfo(range=Range(0, 10))

    def test_function_and_parameter_seed(self, listing_text):
        prog = parse_listing(listing_text)
        main = prog.functions["main"]
        assert main.is_start
        (a,) = main.params
        assert a.seed.range == Range(-1, 1)
        assert a.seed.initial_error == 0.001

    def test_struct_field_seed(self, listing_text):
        values = _main_values(parse_listing(listing_text))
        seed = values["p"].seed
        assert isinstance(seed, AggregateInfo)
        assert seed.fields[0] is None
        assert seed.fields[1].range == Range(-2, 2)
        assert values["f0"].attrs["path"] == (0,)

    def test_targets(self, listing_text):
        prog = parse_listing(listing_text)
        values = _main_values(prog)
        assert prog.targets["out"].members == frozenset({values["x"], values["v"]})
        assert prog.targets["glob"].members == frozenset(prog.globals)


# ── Control flow ─────────────────────────────────────────────────

class TestBlocks:

    def test_loop_annotation(self, listing_text):
        main = parse_listing(listing_text).functions["main"]
        (loop,) = main.loops()
        assert loop.header.label == "loop"
        assert loop.trip_count == 8

    def test_phi_resolves_forward_reference(self, listing_text):
        values = _main_values(parse_listing(listing_text))
        phi = values["i"]
        assert phi.opcode is Opcode.PHI
        assert phi.operands == (values["x"], values["n"])
        assert [b.label for b in phi.attrs["incoming"]] == ["entry", "loop"]

    def test_calls(self):
        prog = parse_listing("""
            declare @sqrtf(float) : float
            func @twice(%x : double) : double {
            entry:
              %y = add %x, %x
              ret %y
            }
            func @main(%a : double) : double start !maxrec(2) {
            entry:
              %t = call double @twice(%a)
              %s = call float @sqrtf(%a)
              %u = call double ?(%a)
              %w = call double @later(%a)
              ret %t
            }
        """)
        values = _main_values(prog)
        assert values["t"].attrs["callee"] is prog.functions["twice"]
        assert values["s"].attrs["callee"] is prog.functions["sqrtf"]
        assert values["u"].attrs["callee"] is None
        assert values["w"].attrs["callee"] == "later"
        assert prog.functions["main"].max_recursion == 2

    def test_fixp_and_flags(self):
        prog = parse_listing("""
            func @main(%a : float !fixp(16, 8, s) !final !range(0, 1) !disabled) : void {
            entry:
              ret
            }
        """)
        seed = prog.functions["main"].params[0].seed
        assert seed.type == FixedPointFormat(16, 8, True)
        assert seed.final
        assert not seed.enabled


# ── Errors ───────────────────────────────────────────────────────

class TestErrors:

    def test_syntax_error_position(self):
        with pytest.raises(ListingSyntaxError) as exc:
            parse_listing("struct s { float }\n\nbogus\n")
        assert exc.value.line == 3
        assert exc.value.column == 1

    def test_undefined_value(self):
        text = "func @main() : void {\nentry:\n  ret %nope\n}\n"
        with pytest.raises(ListingSyntaxError, match="undefined value %nope") as exc:
            parse_listing(text)
        assert exc.value.line == 3

    def test_unknown_block(self):
        with pytest.raises(ListingSyntaxError, match="unknown block nowhere"):
            parse_listing("func @main() : void {\nentry:\n  br nowhere\n}\n")

    def test_unknown_struct(self):
        with pytest.raises(ListingSyntaxError, match="unknown struct nosuch"):
            parse_listing("global @g : nosuch\n")

    def test_block_annotation_on_value(self):
        with pytest.raises(ListingSyntaxError, match="not allowed on a value"):
            parse_listing("global @g : float !trip(3)\n")

    def test_struct_seed_needs_field(self):
        with pytest.raises(ListingSyntaxError, match="needs a !field"):
            parse_listing("struct pair { float, float }\nglobal @g : pair !range(0, 1)\n")

    def test_value_defined_twice(self):
        text = (
            "func @main() : void {\nentry:\n"
            "  %x = const float 1.0\n  %x = const float 2.0\n  ret\n}\n"
        )
        with pytest.raises(ListingSyntaxError, match="defined twice"):
            parse_listing(text)


# ── End to end ───────────────────────────────────────────────────

class TestEndToEnd:

    def test_read_listing_from_file(self, tmp_path, listing_text):
        path = tmp_path / "kernel.fpl"
        path.write_text(listing_text, encoding="utf-8")
        prog = read_listing(str(path))
        assert set(prog.functions) == {"sqrt", "main"}

    def test_analyze_listing(self, listing_text):
        prog = parse_listing(listing_text)
        result = analyze(prog)
        values = _main_values(prog)
        assert result.ranges.range_of(values["x"]) == Range(1.5, 3.5)
        assert result.ranges.range_of(values["v"]) == Range(1.5, 3.5)
        assert 0.001 < result.report.targets["out"] < 0.0011
        # 1.5 is exact in u4_28
        assert result.report.targets["glob"] == 0.0
        assert result.ranges.range_of(prog.globals[0]) == Range(0, 10)
