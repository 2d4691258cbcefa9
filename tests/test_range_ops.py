# tests/test_range_ops.py
"""
Tests for the interval arithmetic in fixedpoint_shims.range_ops and the
Range type it works on.
"""

import math

import pytest

from fixedpoint_shims import range_ops
from fixedpoint_shims.numeric_types import Range


# ── Range ────────────────────────────────────────────────────────

class TestRange:

    def test_inverted_bounds_rejected(self):
        with pytest.raises(ValueError):
            Range(2.0, 1.0)

    def test_of_picks_extremes(self):
        assert Range.of(3.0, -1.0, 2.0) == Range(-1.0, 3.0)

    def test_of_with_nan_is_invalid(self):
        assert Range.of(1.0, math.nan).is_invalid()

    def test_top_predicates(self):
        top = Range.top()
        assert top.is_top()
        assert not top.is_bounded()
        assert top.contains_zero()

    def test_measures(self):
        r = Range(-3.0, 2.0)
        assert r.width == 5.0
        assert r.magnitude == 3.0
        assert r.min_magnitude == 0.0
        assert Range(2.0, 5.0).min_magnitude == 2.0
        assert Range(-5.0, -2.0).min_magnitude == 2.0

    def test_union_and_intersect(self):
        a, b = Range(0.0, 2.0), Range(1.0, 5.0)
        assert a.union(b) == Range(0.0, 5.0)
        assert a.intersect(b) == Range(1.0, 2.0)
        assert a.intersect(Range(3.0, 4.0)) is None

    def test_invalid_absorbs_union(self):
        assert Range(0.0, 1.0).union(Range.invalid()).is_invalid()

    def test_leq(self):
        assert Range(1.0, 2.0).leq(Range(0.0, 3.0))
        assert not Range(0.0, 3.0).leq(Range(1.0, 2.0))
        assert Range(0.0, 3.0).leq(Range.top())


# ── Arithmetic ───────────────────────────────────────────────────

class TestArithmetic:

    def test_add(self):
        assert range_ops.add(Range(2, 11), Range(10, 100)) == Range(12, 111)

    def test_sub(self):
        assert range_ops.sub(Range(2, 11), Range(10, 100)) == Range(-98, 1)

    def test_mul_negative_operands(self):
        assert range_ops.mul(Range(-20, -10), Range(-100, -1)) == Range(10, 2000)

    def test_mul_mixed_signs(self):
        assert range_ops.mul(Range(-2, 3), Range(-1, 4)) == Range(-8, 12)

    def test_mul_zero_times_infinity_is_zero(self):
        assert range_ops.mul(Range(0, 0), Range.top()) == Range(0, 0)

    def test_div(self):
        result = range_ops.div(Range(2, 11), Range(10, 100))
        assert result.min == pytest.approx(0.02)
        assert result.max == pytest.approx(1.1)

    def test_div_by_range_containing_zero_is_top(self):
        assert range_ops.div(Range(1, 2), Range(-1, 1)).is_top()
        assert range_ops.divisor_contains_zero(Range(0, 3))

    def test_integer_div_truncates(self):
        assert range_ops.div(Range(7, 9), Range(2, 2), integer=True) == Range(3, 4)

    def test_neg(self):
        assert range_ops.neg(Range(-1, 4)) == Range(-4, 1)

    def test_invalid_propagates(self):
        assert range_ops.add(Range.invalid(), Range(0, 1)).is_invalid()
        assert range_ops.mul(Range(0, 1), Range.invalid()).is_invalid()


class TestRemainder:

    def test_small_dividend_is_unchanged(self):
        assert range_ops.rem(Range(1, 3), Range(5, 7)) == Range(1, 3)

    def test_bounded_by_divisor(self):
        assert range_ops.rem(Range(0, 100), Range(3, 7)) == Range(0, 7)

    def test_sign_follows_dividend(self):
        assert range_ops.rem(Range(-100, 100), Range(4, 4)) == Range(-4, 4)
        assert range_ops.rem(Range(-100, -1), Range(4, 4)) == Range(-4, 0)


# ── Shifts and conversions ───────────────────────────────────────

class TestShifts:

    def test_shl_multiplies(self):
        assert range_ops.shl(Range(1, 3), Range(2, 2)) == Range(4, 12)

    def test_shl_range_of_amounts(self):
        assert range_ops.shl(Range(1, 1), Range(0, 3)) == Range(1, 8)

    def test_shl_unbounded_amount_is_top(self):
        assert range_ops.shl(Range(1, 1), Range.top()).is_top()

    def test_ashr_floors(self):
        assert range_ops.ashr(Range(-5, 9), Range(1, 1)) == Range(-3, 4)

    def test_to_integer_truncates(self):
        assert range_ops.to_integer(Range(-2.7, 3.9)) == Range(-2, 3)


# ── Comparisons ──────────────────────────────────────────────────

class TestCompare:

    @pytest.mark.parametrize("pred, a, b, expected", [
        ("lt", Range(0, 1), Range(2, 3), Range(1, 1)),
        ("lt", Range(2, 3), Range(0, 1), Range(0, 0)),
        ("lt", Range(0, 2), Range(1, 3), Range(0, 1)),
        ("ge", Range(2, 3), Range(0, 1), Range(1, 1)),
        ("gt", Range(4, 5), Range(0, 1), Range(1, 1)),
        ("le", Range(4, 5), Range(0, 1), Range(0, 0)),
        ("eq", Range(2, 2), Range(2, 2), Range(1, 1)),
        ("eq", Range(0, 1), Range(2, 3), Range(0, 0)),
        ("ne", Range(0, 1), Range(2, 3), Range(1, 1)),
    ])
    def test_outcomes(self, pred, a, b, expected):
        assert range_ops.compare(pred, a, b) == expected

    def test_unknown_predicate(self):
        with pytest.raises(ValueError):
            range_ops.compare("xx", Range(0, 1), Range(0, 1))


# ── Math functions ───────────────────────────────────────────────

class TestMathFunctions:

    def test_suffixes_are_canonicalised(self):
        assert range_ops.canonical_math_name("sqrtf") == "sqrt"
        assert range_ops.canonical_math_name("expl") == "exp"
        assert range_ops.canonical_math_name("frobnicate") == "frobnicate"
        assert range_ops.is_math_function("cosf")
        assert not range_ops.is_math_function("printf")

    def test_sqrt(self):
        assert range_ops.math_function("sqrt", [Range(4, 9)]) == Range(2, 3)

    def test_sqrt_clips_negative_part(self):
        assert range_ops.math_function("sqrtf", [Range(-4, 9)]) == Range(0, 3)

    def test_log_of_non_positive_is_invalid(self):
        assert range_ops.math_function("log", [Range(-2, 0)]).is_invalid()

    def test_sin_wide_interval(self):
        assert range_ops.math_function("sin", [Range(0, 10)]) == Range(-1, 1)

    def test_sin_reaches_peak(self):
        result = range_ops.math_function("sin", [Range(0, 2)])
        assert result.max == pytest.approx(1.0)
        assert result.min == pytest.approx(0.0)

    def test_fabs(self):
        assert range_ops.math_function("fabs", [Range(-3, 2)]) == Range(0, 3)

    def test_fmin_fmax(self):
        assert range_ops.math_function("fmin", [Range(0, 5), Range(2, 3)]) == Range(0, 3)
        assert range_ops.math_function("fmax", [Range(0, 5), Range(2, 3)]) == Range(2, 5)
