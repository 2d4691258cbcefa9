"""
fixedpoint_shims/numeric_types.py
═════════════════════════════════

Value-level numeric vocabulary shared by every engine:

    ┌──────────────────────────────────────────────────────────────┐
    │  Range             — closed interval [min, max] ⊆ ℝ ∪ {±∞}   │
    │  FixedPointFormat  — (width, fracBits, signed)               │
    │  FloatStandard     — IEEE / vendor floating-point standards  │
    │  FloatFormat       — (standard, greatest |value| seen)       │
    └──────────────────────────────────────────────────────────────┘

A ``Range`` is never empty.  ``[-∞, +∞]`` is ⊤ and a range with a NaN
endpoint is *invalid* (a poisoned interval that every operation
propagates).  Ranges are immutable; every arithmetic operation in
``range_ops`` returns a fresh one.

Fixed-point semantics
---------------------

A fixed-point format ``(w, f, s)`` stores a real number ``x`` as the
integer ``round(x · 2^f)`` in ``w`` bits, two's complement when ``s``.
Its precision is one ulp ``2^-f``, and since conversion rounds to the
nearest representable value the rounding error it introduces is half
that:

    rounding_error(w, f, s) = 2^-f / 2

Usage::

    >>> r = Range(-3.5, 12.0)
    >>> r.union(Range.const(20.0))
    Range([-3.5, 20.0])
    >>> fmt = FixedPointFormat(32, 27, signed=True)
    >>> str(fmt)
    's5_27fixp'
    >>> fmt.dequantize(fmt.quantize(0.1)) - 0.1 <= fmt.rounding_error
    True
"""

from __future__ import annotations

import math
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Final, Optional, Tuple, Union

__all__ = [
    "Range",
    "FixedPointFormat",
    "FloatStandard",
    "FloatFormat",
    "NumericType",
]

_NEG_INF: Final = float("-inf")
_POS_INF: Final = float("inf")


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — RANGE
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Range:
    """
    Closed interval ``[min, max]`` over the extended reals.

    Invariant: ``min <= max`` unless the range is invalid (NaN endpoint).

    >>> Range(2.0, 11.0).contains(5)
    True
    >>> Range.top().is_top()
    True
    """
    min: float
    max: float

    def __post_init__(self) -> None:
        if self.min > self.max:
            raise ValueError(f"inverted range [{self.min}, {self.max}]")

    # ---- Constructors ----------------------------------------------------

    @classmethod
    def top(cls) -> Range:
        """⊤ = [-∞, +∞]."""
        return cls(_NEG_INF, _POS_INF)

    @classmethod
    def const(cls, value: float) -> Range:
        """Degenerate range [v, v]."""
        return cls(float(value), float(value))

    @classmethod
    def invalid(cls) -> Range:
        """The poisoned range [NaN, NaN]."""
        return cls(math.nan, math.nan)

    @classmethod
    def of(cls, *values: float) -> Range:
        """Smallest range containing every value (NaN poisons the result)."""
        if any(math.isnan(v) for v in values):
            return cls.invalid()
        return cls(float(min(values)), float(max(values)))

    # ---- Predicates ------------------------------------------------------

    def is_top(self) -> bool:
        return self.min == _NEG_INF and self.max == _POS_INF

    def is_invalid(self) -> bool:
        return math.isnan(self.min) or math.isnan(self.max)

    def is_bounded(self) -> bool:
        return math.isfinite(self.min) and math.isfinite(self.max)

    def is_const(self) -> bool:
        return self.min == self.max

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max

    def contains_zero(self) -> bool:
        return self.min <= 0.0 <= self.max

    def leq(self, other: Range) -> bool:
        """``self ⊑ other``: self is contained in other."""
        if self.is_invalid():
            return other.is_invalid()
        if other.is_invalid():
            return True
        return other.min <= self.min and self.max <= other.max

    # ---- Measures --------------------------------------------------------

    @property
    def width(self) -> float:
        return self.max - self.min

    @property
    def magnitude(self) -> float:
        """Largest absolute value in the range."""
        return max(abs(self.min), abs(self.max))

    @property
    def min_magnitude(self) -> float:
        """Smallest absolute value in the range (0 if it contains zero)."""
        if self.contains_zero():
            return 0.0
        return min(abs(self.min), abs(self.max))

    # ---- Lattice ---------------------------------------------------------

    def union(self, other: Range) -> Range:
        """[a,b] ⊔ [c,d] = [min(a,c), max(b,d)]; invalid absorbs."""
        if self.is_invalid() or other.is_invalid():
            return Range.invalid()
        return Range(min(self.min, other.min), max(self.max, other.max))

    join = union

    def intersect(self, other: Range) -> Optional[Range]:
        """[a,b] ⊓ [c,d], or None when the ranges are disjoint."""
        lo = max(self.min, other.min)
        hi = min(self.max, other.max)
        if lo > hi:
            return None
        return Range(lo, hi)

    def as_tuple(self) -> Tuple[float, float]:
        return (self.min, self.max)

    def __str__(self) -> str:
        return f"[{self.min}, {self.max}]"

    def __repr__(self) -> str:
        def _fmt(v: float) -> str:
            if v == _NEG_INF:
                return "-∞"
            if v == _POS_INF:
                return "+∞"
            return repr(v)
        return f"Range([{_fmt(self.min)}, {_fmt(self.max)}])"


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — FIXED-POINT FORMAT
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class FixedPointFormat:
    """
    Binary fixed-point format: ``width`` total bits, ``frac_bits`` of
    them after the binary point, two's complement when ``signed``.
    """
    width: int
    frac_bits: int
    signed: bool = True

    def __post_init__(self) -> None:
        if self.width < 1:
            raise ValueError(f"fixed-point width must be positive, got {self.width}")
        if not 0 <= self.frac_bits <= self.width:
            raise ValueError(
                f"fractional bits {self.frac_bits} outside [0, {self.width}]"
            )

    @property
    def int_bits(self) -> int:
        """Integer bits, sign bit included."""
        return self.width - self.frac_bits

    @property
    def ulp(self) -> float:
        return math.ldexp(1.0, -self.frac_bits)

    @property
    def rounding_error(self) -> float:
        """Half an ulp: the error of a round-to-nearest conversion."""
        return self.ulp / 2

    @property
    def min_value(self) -> float:
        if not self.signed:
            return 0.0
        return -math.ldexp(1.0, self.width - self.frac_bits - 1)

    @property
    def max_value(self) -> float:
        mag_bits = self.width - 1 if self.signed else self.width
        return ((1 << mag_bits) - 1) * self.ulp

    def can_represent(self, rng: Range) -> bool:
        return self.min_value <= rng.min and rng.max <= self.max_value

    def quantize(self, value: float) -> int:
        """Nearest stored integer for ``value`` (ties to even)."""
        return round(math.ldexp(value, self.frac_bits))

    def dequantize(self, raw: int) -> float:
        return math.ldexp(float(raw), -self.frac_bits)

    def __str__(self) -> str:
        return f"{'s' if self.signed else 'u'}{self.int_bits}_{self.frac_bits}fixp"


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — FLOATING-POINT FORMAT
# ═══════════════════════════════════════════════════════════════════════════

class FloatStandard(Enum):
    """Floating-point standards.  Declaration order is the persisted index."""
    HALF = "half"
    FLOAT = "float"
    DOUBLE = "double"
    FP128 = "fp128"
    X86_FP80 = "x86_fp80"
    PPC_FP128 = "ppc_fp128"
    BFLOAT = "bfloat"

    @property
    def index(self) -> int:
        return _STANDARD_ORDER.index(self)

    @classmethod
    def from_index(cls, index: int) -> FloatStandard:
        return _STANDARD_ORDER[index]

    @property
    def precision(self) -> int:
        """Significand precision in bits, implicit bit included."""
        return _PRECISION[self]

    @property
    def largest(self) -> float:
        """Largest finite value (∞ when it exceeds a Python float)."""
        return _LARGEST[self]


_STANDARD_ORDER: Final = tuple(FloatStandard)

_PRECISION: Final = {
    FloatStandard.HALF: 11,
    FloatStandard.FLOAT: 24,
    FloatStandard.DOUBLE: 53,
    FloatStandard.FP128: 113,
    FloatStandard.X86_FP80: 64,
    FloatStandard.PPC_FP128: 106,
    FloatStandard.BFLOAT: 8,
}

_LARGEST: Final = {
    FloatStandard.HALF: 65504.0,
    FloatStandard.FLOAT: 3.4028234663852886e38,
    FloatStandard.DOUBLE: sys.float_info.max,
    FloatStandard.FP128: _POS_INF,
    FloatStandard.X86_FP80: _POS_INF,
    FloatStandard.PPC_FP128: sys.float_info.max,
    FloatStandard.BFLOAT: 3.3895313892515355e38,
}


@dataclass(frozen=True, slots=True)
class FloatFormat:
    """
    A value kept in floating point.  ``greatest`` is the largest
    magnitude the value is known to take; it bounds the rounding error.
    """
    standard: FloatStandard
    greatest: float = 0.0

    @property
    def rounding_error(self) -> float:
        """Half an ulp at ``greatest``: ``2^(floor(log2(greatest)) - p)``."""
        if self.greatest == 0.0:
            return 0.0
        if math.isinf(self.greatest) or math.isnan(self.greatest):
            return _POS_INF
        exp = math.floor(math.log2(self.greatest))
        return math.ldexp(1.0, exp - self.standard.precision)

    def __str__(self) -> str:
        return self.standard.value


NumericType = Union[FixedPointFormat, FloatFormat]
