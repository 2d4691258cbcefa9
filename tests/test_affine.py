# tests/test_affine.py
"""
Tests for AffineError: correlated noise symbols, magnitude, join/leq.
"""

import math

import pytest

from fixedpoint_shims.affine import AffineError


# ── Construction ─────────────────────────────────────────────────

class TestConstruction:

    def test_zero(self):
        zero = AffineError.zero()
        assert zero.is_zero()
        assert zero.magnitude == 0.0

    def test_noise(self):
        e = AffineError.noise(3, -0.25)
        assert e.terms == ((3, 0.25),)
        assert e.magnitude == 0.25
        assert list(e.symbols()) == [3]

    def test_zero_noise_has_no_symbol(self):
        assert AffineError.noise(3, 0.0).is_zero()

    @pytest.mark.parametrize("magnitude", [math.inf, math.nan])
    def test_unbounded_noise_is_top(self, magnitude):
        assert AffineError.noise(1, magnitude).is_top()

    def test_uncorrelated(self):
        e = AffineError.uncorrelated(-0.3)
        assert e.const == 0.3
        assert not e.terms

    def test_str(self):
        assert str(AffineError.noise(1, 0.5)) == "±0.5"
        assert str(AffineError.top()) == "±∞"


# ── Arithmetic ───────────────────────────────────────────────────

class TestArithmetic:

    def test_correlated_terms_cancel(self):
        x = AffineError.noise(1, 0.5) + AffineError.noise(2, 0.5)
        assert (x - x).is_zero()

    def test_correlated_terms_add_up(self):
        x = AffineError.noise(1, 0.5)
        assert (x + x).magnitude == 1.0

    def test_independent_terms_add_magnitudes(self):
        x = AffineError.noise(1, 0.5) - AffineError.noise(2, 0.25)
        assert x.magnitude == 0.75

    def test_scale_keeps_sign_of_terms(self):
        x = AffineError(0.1, ((1, 0.5),)).scale(-2.0)
        assert x.terms == ((1, -1.0),)
        assert x.const == pytest.approx(0.2)
        assert (-x).terms == ((1, 1.0),)

    def test_scale_by_infinity(self):
        assert AffineError.noise(1, 0.5).scale(math.inf).is_top()
        assert AffineError.zero().scale(math.inf).is_zero()

    def test_top_absorbs(self):
        top = AffineError.top()
        assert (top + AffineError.noise(1, 1.0)).is_top()
        assert top.scale(2.0).is_top()
        assert math.isinf(top.magnitude)

    def test_with_noise(self):
        x = AffineError.noise(1, 0.5).with_noise(2, 0.25)
        assert dict(x.terms) == {1: 0.5, 2: 0.25}
        assert x.with_noise(3, 0.0) is x

    def test_with_noise_on_used_symbol_goes_to_const(self):
        x = AffineError.noise(1, 0.5).with_noise(1, 0.25)
        assert x.terms == ((1, 0.5),)
        assert x.const == 0.25

    def test_collapse(self):
        x = AffineError(0.1, ((1, 0.5), (2, -0.25)))
        c = x.collapse(9)
        assert c.terms == ((9, pytest.approx(0.85)),)
        assert c.magnitude == pytest.approx(x.magnitude)


# ── Lattice ──────────────────────────────────────────────────────

class TestLattice:

    def test_leq(self):
        small = AffineError.noise(1, 0.5)
        assert small.leq(AffineError.top())
        assert not AffineError.top().leq(small)
        assert small.leq(AffineError(0.5, ((1, 0.5),)))
        assert not AffineError(0.5, ((1, 0.5),)).leq(small)

    def test_join_of_comparable_forms(self):
        small = AffineError.noise(1, 0.5)
        big = AffineError(1.0, ((1, 0.5),))
        assert small.join(big) is big
        assert big.join(small) is big

    def test_join_keeps_both_operands(self):
        a = AffineError.noise(1, 1.0)
        b = AffineError.noise(1, 0.5)
        j = a.join(b)
        assert dict(j.terms) == {1: 0.75}
        assert j.const == 0.25
        assert a.leq(j)
        assert b.leq(j)

    def test_join_with_top(self):
        assert AffineError.noise(1, 1.0).join(AffineError.top()).is_top()
