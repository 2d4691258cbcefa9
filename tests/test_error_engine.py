# tests/test_error_engine.py
"""
Tests for the Error Propagation Engine: composition rules, constants,
comparisons, division near zero and loop convergence.
"""

import math

import pytest

from fixedpoint_shims.config import AnalysisConfig
from fixedpoint_shims.diagnostics import DiagnosticKind, DiagnosticLog
from fixedpoint_shims.error_engine import ErrorEngine
from fixedpoint_shims.fixed_point import FormatCache
from fixedpoint_shims.metadata import ValueInfo
from fixedpoint_shims.numeric_types import Range
from fixedpoint_shims.range_engine import RangeEngine
from fixedpoint_shims.type_assignment import assign_types
from fixedpoint_shims.value_types import F64, I32
from tests.conftest import binop_program, counter_loop, make_main, recursive_program


def propagate(program, **config):
    cfg = AnalysisConfig(**config)
    ranges = RangeEngine(program, cfg).run()
    types = assign_types(program, ranges, cfg.sizing_policy(), FormatCache(), DiagnosticLog())
    return ErrorEngine(program, cfg, ranges, types).run()


# ── Additive operations ──────────────────────────────────────────

class TestAddSub:

    def test_self_subtraction_cancels_input_error(self):
        prog, _, b, (a,) = make_main(("a", Range(-1, 1)))
        x = b.sub(a, a)
        b.ret(x)
        errors = propagate(prog)
        assert errors.error_of(a) == 2.0 ** -31
        # only the rounding of the s3_29 result remains
        assert errors.error_of(x) == 2.0 ** -30

    def test_self_addition_doubles_input_error(self):
        prog, _, b, (a,) = make_main(("a", Range(-1, 1)))
        x = b.add(a, a)
        b.ret(x)
        assert propagate(prog).error_of(x) == 2.0 ** -29

    def test_independent_errors_add(self):
        p = binop_program("add", Range(0, 1), Range(0, 1), 0.01, 0.02)
        errors = propagate(p.program)
        # [0, 2] is u2_30
        assert errors.error_of(p.x) == pytest.approx(0.03 + 2.0 ** -31)

    def test_result_bounds_operands(self):
        p = binop_program("sub", Range(0, 1), Range(0, 1), 0.01, 0.02)
        errors = propagate(p.program)
        assert errors.error_of(p.x) >= max(errors.error_of(p.a), errors.error_of(p.b))


# ── Multiplicative operations ────────────────────────────────────

class TestMulDiv:

    def test_mul(self):
        p = binop_program("mul", Range(1, 2), Range(3, 4), 0.01, 0.02)
        errors = propagate(p.program)
        # 2·0.02 + 4·0.01 + 0.01·0.02, rounded to u4_28
        assert errors.error_of(p.x) == pytest.approx(0.0802 + 2.0 ** -29)

    def test_mul_by_exact_constant_scales(self):
        prog, _, b, (a,) = make_main(("a", ValueInfo(range=Range(0, 1), initial_error=0.01)))
        x = b.mul(a, b.const(0.5))
        b.ret(x)
        errors = propagate(prog, exact_constants=True)
        assert errors.error_of(x) == pytest.approx(0.005 + 2.0 ** -32)

    def test_div_by_exact_constant(self):
        prog, _, b, (a,) = make_main(("a", ValueInfo(range=Range(0, 4), initial_error=0.1)))
        x = b.div(a, b.const(2.0))
        b.ret(x)
        errors = propagate(prog, exact_constants=True)
        assert errors.error_of(x) == pytest.approx(0.05 + 2.0 ** -31)

    def test_div(self):
        p = binop_program("div", Range(1, 2), Range(2, 4), 0.01, 0.02)
        errors = propagate(p.program)
        expected = 2.01 * 0.02 / (2 * 1.98) + 0.01 / 2 + 2.0 ** -32
        assert errors.error_of(p.x) == pytest.approx(expected)

    def test_divisor_range_with_zero(self):
        p = binop_program("div", Range(1, 2), Range(-1, 1), 0.01, 0.01)
        errors = propagate(p.program)
        assert math.isinf(errors.error_of(p.x))
        assert errors.diagnostics.has(DiagnosticKind.DIVISOR_NEAR_ZERO, p.x.id)

    def test_divisor_error_reaching_zero(self):
        p = binop_program("div", Range(1, 2), Range(0.001, 1), 0.0, 0.01)
        errors = propagate(p.program)
        assert math.isinf(errors.error_of(p.x))
        assert errors.diagnostics.has(DiagnosticKind.DIVISOR_NEAR_ZERO, p.x.id)


# ── Constants and casts ──────────────────────────────────────────

class TestConstants:

    def test_inexact_constant_gets_half_a_unit(self):
        prog, _, b, _ = make_main()
        c = b.const(0.1)
        b.ret(c)
        # 0.1 becomes u1_31
        assert propagate(prog).error_of(c) == 2.0 ** -32

    def test_representable_constants_are_exact(self):
        prog, _, b, _ = make_main()
        two = b.const(2.0)
        half = b.const(0.5)
        b.ret(two)
        errors = propagate(prog)
        assert errors.error_of(two) == 0.0
        assert errors.error_of(half) == 0.0

    def test_exact_constants(self):
        prog, _, b, _ = make_main()
        c = b.const(0.1)
        b.ret(c)
        assert propagate(prog, exact_constants=True).error_of(c) == 0.0

    def test_float_to_int_cast(self):
        prog, _, b, (a,) = make_main(("a", ValueInfo(range=Range(0, 10), initial_error=0.25)))
        i = b.cast(a, I32)
        b.ret(a)
        assert propagate(prog).error_of(i) == pytest.approx(1.25)

    def test_known_math_function(self):
        prog, _, b, (a,) = make_main(("a", ValueInfo(range=Range(4, 9), initial_error=0.01)))
        r = b.call("sqrt", [a], F64)
        b.ret(r)
        # [2, 3] is u2_30
        assert propagate(prog).error_of(r) == pytest.approx(0.1 + 2.0 ** -31)


# ── Comparisons ──────────────────────────────────────────────────

class TestComparisons:

    def _program(self):
        prog, _, b, (a,) = make_main(("a", ValueInfo(range=Range(0, 1), initial_error=0.1)))
        c = b.cmp("lt", a, b.const(0.5))
        b.ret(a)
        return prog, c

    def test_flagged_below_threshold(self):
        prog, c = self._program()
        errors = propagate(prog, exact_constants=True, cmp_threshold_percent=5.0)
        assert errors.risky_comparisons() == [c.id]
        assert errors.comparisons[c.id].max_tolerance == pytest.approx(0.1)
        assert errors.diagnostics.has(DiagnosticKind.RISKY_COMPARISON, c.id)

    def test_not_flagged_above_threshold(self):
        prog, c = self._program()
        errors = propagate(prog, exact_constants=True, cmp_threshold_percent=50.0)
        assert errors.risky_comparisons() == []
        assert not errors.comparisons[c.id].may_be_wrong
        assert errors.comparisons[c.id].max_tolerance == pytest.approx(0.1)

    def test_exact_operands_never_flagged(self):
        prog, _, b, _ = make_main()
        c = b.cmp("eq", b.const(1.0), b.const(2.0))
        b.ret()
        errors = propagate(prog, exact_constants=True)
        assert errors.comparisons[c.id].max_tolerance == 0.0
        assert errors.risky_comparisons() == []

    def test_unbounded_operand_flagged_at_default_threshold(self):
        prog, _, b, (a,) = make_main(("a", ValueInfo(initial_error=0.1)))
        c = b.cmp("lt", a, b.const(0.5))
        b.ret(a)
        errors = propagate(prog, exact_constants=True)
        assert errors.comparisons[c.id].may_be_wrong
        assert errors.risky_comparisons() == [c.id]

    def test_pointer_comparison_has_no_error(self):
        prog, _, b, _ = make_main()
        p, q = b.alloca(F64), b.alloca(F64)
        c = b.cmp("eq", p, q)
        b.ret()
        errors = propagate(prog)
        assert errors.error_of(c) == 0.0
        assert c.id not in errors.comparisons


# ── Loops, recursion, memory ─────────────────────────────────────

class TestBoundedTraversal:

    def test_growing_error_without_trip_count(self):
        loop = counter_loop(step=0.1)
        errors = propagate(loop.program)
        assert math.isinf(errors.error_of(loop.i))
        assert errors.diagnostics.has(DiagnosticKind.ERROR_NOT_CONVERGED)

    def test_stable_error_without_trip_count(self):
        loop = counter_loop()
        errors = propagate(loop.program, exact_constants=True)
        assert errors.error_of(loop.i) == 0.0
        assert not errors.diagnostics.has(DiagnosticKind.ERROR_NOT_CONVERGED)

    def test_known_trip_count_is_finite(self):
        loop = counter_loop(trip=8, step=0.1)
        errors = propagate(loop.program)
        assert math.isfinite(errors.error_of(loop.i))
        assert errors.error_of(loop.n) > errors.error_of(loop.one)
        assert not errors.diagnostics.has(DiagnosticKind.ERROR_NOT_CONVERGED)

    def test_recursion_cut_off_is_unbounded(self):
        rec = recursive_program()
        errors = propagate(rec.program)
        assert math.isinf(errors.error_of(rec.outer))
        assert errors.diagnostics.has(DiagnosticKind.RECURSION_LIMIT, rec.inner.id)

    def test_error_travels_through_memory(self):
        prog, _, b, (a,) = make_main(("a", ValueInfo(range=Range(0, 1), initial_error=0.25)))
        p = b.alloca(F64)
        b.store(a, p)
        v = b.load(p)
        b.ret(v)
        errors = propagate(prog)
        assert errors.error_of(v) == 0.25
        assert errors.error_of(p) == 0.25
