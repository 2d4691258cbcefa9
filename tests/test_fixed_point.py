# tests/test_fixed_point.py
"""
Tests for the numeric formats and the Fixed-Point Type Deriver.
"""

import math

import pytest

from fixedpoint_shims.errors import ConfigError
from fixedpoint_shims.fixed_point import (
    FormatCache,
    SizingPolicy,
    TypeGenError,
    derive_format,
    exact_frac_bits,
)
from fixedpoint_shims.numeric_types import (
    FixedPointFormat,
    FloatFormat,
    FloatStandard,
    Range,
)


# ── FixedPointFormat ─────────────────────────────────────────────

class TestFixedPointFormat:

    def test_invalid_shapes_rejected(self):
        with pytest.raises(ValueError):
            FixedPointFormat(0, 0)
        with pytest.raises(ValueError):
            FixedPointFormat(16, 17)
        with pytest.raises(ValueError):
            FixedPointFormat(16, -1)

    def test_bits_and_ulp(self):
        fmt = FixedPointFormat(32, 25, False)
        assert fmt.int_bits == 7
        assert fmt.ulp == 2.0 ** -25
        assert fmt.rounding_error == 2.0 ** -26

    def test_representable_range_signed(self):
        fmt = FixedPointFormat(8, 4, True)
        assert fmt.min_value == -8.0
        assert fmt.max_value == 127 / 16

    def test_representable_range_unsigned(self):
        fmt = FixedPointFormat(8, 4, False)
        assert fmt.min_value == 0.0
        assert fmt.max_value == 255 / 16
        assert fmt.can_represent(Range(0.0, 15.0))
        assert not fmt.can_represent(Range(-1.0, 1.0))

    def test_quantize_round_trip(self):
        fmt = FixedPointFormat(16, 8)
        raw = fmt.quantize(1.5)
        assert raw == 384
        assert fmt.dequantize(raw) == 1.5
        assert abs(fmt.dequantize(fmt.quantize(0.1)) - 0.1) <= fmt.rounding_error

    def test_str(self):
        assert str(FixedPointFormat(32, 25, False)) == "u7_25fixp"
        assert str(FixedPointFormat(32, 30, True)) == "s2_30fixp"


class TestFloatFormat:

    def test_standard_index_round_trip(self):
        for standard in FloatStandard:
            assert FloatStandard.from_index(standard.index) is standard
        assert FloatStandard.HALF.index == 0
        assert FloatStandard.BFLOAT.index == 6

    def test_rounding_error_scales_with_magnitude(self):
        small = FloatFormat(FloatStandard.FLOAT, 1.0)
        large = FloatFormat(FloatStandard.FLOAT, 1024.0)
        assert small.rounding_error == 2.0 ** -24
        assert large.rounding_error == 2.0 ** -14

    def test_zero_and_infinite_magnitude(self):
        assert FloatFormat(FloatStandard.DOUBLE, 0.0).rounding_error == 0.0
        assert math.isinf(FloatFormat(FloatStandard.DOUBLE, math.inf).rounding_error)


# ── Deriver ──────────────────────────────────────────────────────

class TestExactFracBits:

    @pytest.mark.parametrize("value, bits", [
        (2.5, 1), (100.0, 0), (0.375, 3), (-0.75, 2), (0.0, 0),
    ])
    def test_values(self, value, bits):
        assert exact_frac_bits(value) == bits


class TestDeriveFormat:

    def test_unsigned_range(self):
        fmt, err = derive_format(Range(1, 100), SizingPolicy())
        assert err is TypeGenError.NO_ERROR
        assert fmt == FixedPointFormat(32, 25, False)
        assert str(fmt) == "u7_25fixp"

    def test_signed_range(self):
        fmt, err = derive_format(Range(-1, 1), SizingPolicy())
        assert err.ok
        assert fmt == FixedPointFormat(32, 30, True)

    def test_result_holds_the_range(self):
        rng = Range(-300.0, 12.5)
        fmt, err = derive_format(rng, SizingPolicy())
        assert err.ok
        assert fmt.can_represent(rng)

    def test_constant_needs_only_exact_bits(self):
        fmt, err = derive_format(Range.const(2.5), SizingPolicy())
        assert err.ok
        assert fmt == FixedPointFormat(32, 1, False)

    def test_small_constant_does_not_grow(self):
        fmt, err = derive_format(Range.const(0.5), SizingPolicy())
        assert err.ok
        assert fmt == FixedPointFormat(32, 1, False)

    def test_width_grows_for_small_magnitudes(self):
        fmt, err = derive_format(Range(0.0, 2.0 ** -40), SizingPolicy())
        assert err.ok
        assert fmt.width == 64
        assert fmt.frac_bits == 63

    def test_derived_format_round_trips_its_range(self):
        fmt, err = derive_format(Range(1.0, 100.0), SizingPolicy())
        assert err is TypeGenError.NO_ERROR
        assert fmt.int_bits >= math.ceil(math.log2(101))
        assert fmt.frac_bits >= 3
        values = [1.0, 100.0] + [i / 10 for i in range(10, 1001)]
        for base in (math.pi, math.sqrt(2), math.e):
            values += [k * base for k in range(1, 101) if 1.0 <= k * base <= 100.0]
        for v in values:
            assert abs(fmt.dequantize(fmt.quantize(v)) - v) <= fmt.rounding_error, v

    def test_growth_step_is_clamped(self):
        policy = SizingPolicy(min_total_bits=32, max_total_bits=48, bit_increment=64)
        fmt, err = derive_format(Range(0.0, 2.0 ** -40), policy)
        assert err.ok
        assert fmt.width == 48

    def test_too_large(self):
        fmt, err = derive_format(Range(0, 2.0 ** 70), SizingPolicy())
        assert err is TypeGenError.NOT_ENOUGH_INT_AND_FRAC_BITS
        assert fmt.frac_bits == 0

    def test_too_small(self):
        _, err = derive_format(Range(0, 2.0 ** -70), SizingPolicy())
        assert err is TypeGenError.NOT_ENOUGH_FRAC_BITS

    def test_unbounded(self):
        fmt, err = derive_format(Range.top(), SizingPolicy())
        assert err is TypeGenError.UNBOUNDED_RANGE
        assert not err.ok
        assert fmt.width == 32

    def test_invalid(self):
        _, err = derive_format(Range.invalid(), SizingPolicy())
        assert err is TypeGenError.INVALID_RANGE

    def test_policy_validation(self):
        with pytest.raises(ConfigError):
            SizingPolicy(min_total_bits=0)
        with pytest.raises(ConfigError):
            SizingPolicy(min_total_bits=32, max_total_bits=16)
        with pytest.raises(ConfigError):
            SizingPolicy(bit_increment=0)


class TestFormatCache:

    def test_constants_are_memoised(self):
        cache = FormatCache()
        policy = SizingPolicy()
        first = cache.derive(Range.const(2.5), policy)
        second = cache.derive(Range.const(2.5), policy)
        assert first == second
        assert cache.hits == 1
        assert len(cache) == 1

    def test_policy_is_part_of_the_key(self):
        cache = FormatCache()
        cache.derive(Range.const(2.5), SizingPolicy())
        cache.derive(Range.const(2.5), SizingPolicy(min_total_bits=16))
        assert len(cache) == 2
        assert cache.hits == 0

    def test_non_constant_ranges_bypass(self):
        cache = FormatCache()
        cache.derive(Range(0, 1), SizingPolicy())
        cache.derive(Range(0, 1), SizingPolicy())
        assert len(cache) == 0
        assert cache.hits == 0

    def test_caches_are_independent(self):
        a, b = FormatCache(), FormatCache()
        a.derive(Range.const(1.0), SizingPolicy())
        assert len(b) == 0
