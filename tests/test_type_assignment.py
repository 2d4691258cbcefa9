# tests/test_type_assignment.py
"""
Tests for assigning fixed-point or float types to analysed values.
"""

from fixedpoint_shims.config import AnalysisConfig
from fixedpoint_shims.diagnostics import DiagnosticKind, DiagnosticLog
from fixedpoint_shims.fixed_point import FormatCache, SizingPolicy, TypeGenError
from fixedpoint_shims.metadata import ValueInfo
from fixedpoint_shims.numeric_types import FixedPointFormat, FloatFormat, FloatStandard, Range
from fixedpoint_shims.range_engine import RangeEngine
from fixedpoint_shims.type_assignment import assign_types
from fixedpoint_shims.value_types import F64, I32
from tests.conftest import make_main


def assign(program, policy=None, cache=None):
    ranges = RangeEngine(program, AnalysisConfig()).run()
    log = DiagnosticLog()
    types = assign_types(program, ranges, policy or SizingPolicy(), cache or FormatCache(), log)
    return types, log


# ── SSA values ───────────────────────────────────────────────────

class TestNodeTypes:

    def test_bounded_range_gets_fixed_point(self):
        prog, _, b, (a,) = make_main(("a", Range(1, 100)))
        b.ret(a)
        types, log = assign(prog)
        assert types.of_node(a) == FixedPointFormat(32, 25, False)
        assert types.codes[a.id] is TypeGenError.NO_ERROR
        assert len(log) == 0

    def test_unbounded_range_stays_float(self):
        prog, _, b, (a,) = make_main(("a", None))
        b.ret(a)
        types, log = assign(prog)
        fmt = types.of_node(a)
        assert isinstance(fmt, FloatFormat)
        assert fmt.standard is FloatStandard.DOUBLE
        assert types.codes[a.id] is TypeGenError.UNBOUNDED_RANGE
        assert log.has(DiagnosticKind.TYPE_GENERATION, a.id)

    def test_disabled_conversion_stays_float(self):
        prog, _, b, (a,) = make_main(("a", ValueInfo(range=Range(0, 1), enabled=False)))
        b.ret(a)
        types, log = assign(prog)
        assert types.of_node(a) == FloatFormat(FloatStandard.DOUBLE, 1.0)
        assert a.id not in types.codes
        assert len(log) == 0

    def test_preset_type_is_kept(self):
        preset = FixedPointFormat(16, 8, True)
        prog, _, b, (a,) = make_main(("a", ValueInfo(type=preset, range=Range(0, 1))))
        b.ret(a)
        types, _ = assign(prog)
        assert types.of_node(a) is preset

    def test_integers_get_no_type(self):
        prog, _, b, (a,) = make_main(("a", Range(0, 10)))
        i = b.cast(a, I32)
        b.ret(a)
        types, _ = assign(prog)
        assert types.of_node(i) is None

    def test_policy_is_applied(self):
        prog, _, b, (a,) = make_main(("a", Range(-1, 1)))
        b.ret(a)
        types, _ = assign(prog, SizingPolicy(min_total_bits=16, max_total_bits=16))
        assert types.of_node(a) == FixedPointFormat(16, 14, True)

    def test_constants_share_the_cache(self):
        prog, _, b, (a,) = make_main(("a", Range(0, 1)))
        x = b.mul(a, b.const(2.0))
        y = b.add(x, b.const(2.0))
        b.ret(y)
        cache = FormatCache()
        types, _ = assign(prog, cache=cache)
        assert cache.hits == 1
        assert types.of_node(x) == FixedPointFormat(32, 30, False)


# ── Memory ───────────────────────────────────────────────────────

class TestLocationTypes:

    def test_stored_constant(self):
        prog, _, b, _ = make_main()
        p = b.alloca(F64)
        b.store(b.const(3.0), p)
        b.ret(b.load(p))
        types, _ = assign(prog)
        assert types.of_location(p.id, ()) == FixedPointFormat(32, 0, False)

    def test_struct_fields_typed_separately(self):
        prog, _, b, (a,) = make_main(("a", Range(-1, 1)))
        pair = prog.add_struct("pair", [F64, F64])
        p = b.alloca(pair)
        b.store(a, b.field(p, [0]))
        b.store(b.const(100.0), b.field(p, [1]))
        b.ret(a)
        types, _ = assign(prog)
        assert types.of_location(p.id, (0,)) == FixedPointFormat(32, 30, True)
        assert types.of_location(p.id, (1,)) == FixedPointFormat(32, 0, False)

    def test_unknown_memory_stays_float(self):
        prog, _, b, _ = make_main()
        g = prog.add_global("g", F64)
        b.ret(b.load(g))
        types, log = assign(prog)
        assert isinstance(types.of_location(g.id, ()), FloatFormat)
        assert log.has(DiagnosticKind.TYPE_GENERATION, g.id)
