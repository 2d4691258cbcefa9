"""
fixedpoint_shims/range_ops.py
═════════════════════════════

Closed-form interval arithmetic over :class:`Range`.

Every function is total: it never raises on numeric input.  An invalid
(NaN) operand yields an invalid result, and an operation whose result
cannot be bounded yields ⊤.  Whether ⊤ deserves a diagnostic is decided
by the caller (see ``range_engine``), which can ask
:func:`divisor_contains_zero` and friends.

    add   [a₁,a₂] + [b₁,b₂] = [a₁+b₁, a₂+b₂]
    sub   [a₁,a₂] - [b₁,b₂] = [a₁-b₂, a₂-b₁]
    mul   [min, max] of {a₁b₁, a₁b₂, a₂b₁, a₂b₂}
    div   [min, max] of the four quotients, ⊤ if 0 ∈ [b₁,b₂]
    rem   |result| ≤ min(|a|, |b|), sign follows the dividend
    shl   a · 2^k
    ashr  ⌊a / 2^k⌋
"""

from __future__ import annotations

import math
from typing import Callable, Dict, Final, List, Sequence

from fixedpoint_shims.numeric_types import Range

__all__ = [
    "add",
    "sub",
    "mul",
    "div",
    "rem",
    "neg",
    "shl",
    "ashr",
    "to_integer",
    "compare",
    "divisor_contains_zero",
    "MATH_FUNCTIONS",
    "math_function",
    "canonical_math_name",
    "is_math_function",
]

_INF: Final = float("inf")

# Shift amounts past this are treated as unbounded.
_MAX_SHIFT: Final = 1023


def _any_invalid(*ranges: Range) -> bool:
    return any(r.is_invalid() for r in ranges)


def _safe_mul(x: float, y: float) -> float:
    """Multiplication where 0 · ∞ is 0."""
    if x == 0.0 or y == 0.0:
        return 0.0
    return x * y


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — ARITHMETIC
# ═══════════════════════════════════════════════════════════════════════════

def add(a: Range, b: Range) -> Range:
    if _any_invalid(a, b):
        return Range.invalid()
    lo = a.min + b.min
    hi = a.max + b.max
    if math.isnan(lo) or math.isnan(hi):
        # -∞ + +∞
        return Range.top()
    return Range(lo, hi)


def sub(a: Range, b: Range) -> Range:
    if _any_invalid(a, b):
        return Range.invalid()
    lo = a.min - b.max
    hi = a.max - b.min
    if math.isnan(lo) or math.isnan(hi):
        return Range.top()
    return Range(lo, hi)


def neg(a: Range) -> Range:
    if a.is_invalid():
        return Range.invalid()
    return Range(-a.max, -a.min)


def mul(a: Range, b: Range) -> Range:
    if _any_invalid(a, b):
        return Range.invalid()
    corners = (
        _safe_mul(a.min, b.min),
        _safe_mul(a.min, b.max),
        _safe_mul(a.max, b.min),
        _safe_mul(a.max, b.max),
    )
    return Range(min(corners), max(corners))


def divisor_contains_zero(b: Range) -> bool:
    return not b.is_invalid() and b.contains_zero()


def div(a: Range, b: Range, *, integer: bool = False) -> Range:
    """Quotient range; ⊤ when the divisor contains zero.

    With ``integer`` the quotient is truncated toward zero, as integer
    division does.
    """
    if _any_invalid(a, b):
        return Range.invalid()
    if b.contains_zero():
        return Range.top()
    quotients = []
    for x in (a.min, a.max):
        for y in (b.min, b.max):
            if math.isinf(x) and math.isinf(y):
                return Range.top()
            quotients.append(x / y)
    lo, hi = min(quotients), max(quotients)
    if integer:
        lo = float(math.trunc(lo)) if math.isfinite(lo) else lo
        hi = float(math.trunc(hi)) if math.isfinite(hi) else hi
    return Range(lo, hi)


def rem(a: Range, b: Range) -> Range:
    """Remainder with the sign of the dividend (C ``fmod`` / ``srem``).

    When every dividend is smaller in magnitude than every divisor the
    remainder is the dividend itself.  Otherwise it is bounded by the
    smaller of the two magnitudes.
    """
    if _any_invalid(a, b):
        return Range.invalid()
    if a.magnitude < b.min_magnitude:
        return a
    hi_mag = min(a.magnitude, b.magnitude)
    lo = -hi_mag if a.min < 0 else 0.0
    hi = hi_mag if a.max > 0 else 0.0
    return Range(lo, hi)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — SHIFTS AND CONVERSIONS
# ═══════════════════════════════════════════════════════════════════════════

def _shift_amounts(k: Range) -> tuple:
    lo = max(0, math.floor(k.min)) if math.isfinite(k.min) else 0
    hi = math.ceil(k.max) if math.isfinite(k.max) else None
    return lo, hi


def shl(a: Range, k: Range) -> Range:
    """``a << k`` as multiplication by ``2^k``."""
    if _any_invalid(a, k):
        return Range.invalid()
    lo_k, hi_k = _shift_amounts(k)
    if hi_k is None or hi_k > _MAX_SHIFT:
        return Range.top()
    hi_k = max(hi_k, lo_k)
    return mul(a, Range(math.ldexp(1.0, lo_k), math.ldexp(1.0, hi_k)))


def ashr(a: Range, k: Range) -> Range:
    """Arithmetic ``a >> k``: floor division by ``2^k``.

    ``⌊x / 2^k⌋`` is monotone in ``x`` and moves toward ``0`` or ``-1``
    as ``k`` grows, so the extremes sit at the corners.
    """
    if _any_invalid(a, k):
        return Range.invalid()
    lo_k, hi_k = _shift_amounts(k)
    hi_k = _MAX_SHIFT if hi_k is None else max(min(hi_k, _MAX_SHIFT), lo_k)

    def _shr(x: float, s: int) -> float:
        if math.isinf(x):
            return x
        return float(math.floor(math.ldexp(x, -s)))

    lows = (_shr(a.min, lo_k), _shr(a.min, hi_k))
    highs = (_shr(a.max, lo_k), _shr(a.max, hi_k))
    return Range(min(lows), max(highs))


def to_integer(a: Range) -> Range:
    """Float to integer conversion (truncation toward zero)."""
    if a.is_invalid():
        return Range.invalid()
    lo = float(math.trunc(a.min)) if math.isfinite(a.min) else a.min
    hi = float(math.trunc(a.max)) if math.isfinite(a.max) else a.max
    return Range(lo, hi)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — COMPARISONS
# ═══════════════════════════════════════════════════════════════════════════

_TRUE: Final = Range(1.0, 1.0)
_FALSE: Final = Range(0.0, 0.0)
_UNKNOWN: Final = Range(0.0, 1.0)


def compare(predicate: str, a: Range, b: Range) -> Range:
    """Range of a boolean comparison: [1,1], [0,0] or [0,1]."""
    if _any_invalid(a, b):
        return _UNKNOWN
    if predicate in ("lt", "ge"):
        if a.max < b.min:
            result = _TRUE
        elif a.min >= b.max:
            result = _FALSE
        else:
            result = _UNKNOWN
        if predicate == "ge":
            result = _negate(result)
    elif predicate in ("gt", "le"):
        if a.min > b.max:
            result = _TRUE
        elif a.max <= b.min:
            result = _FALSE
        else:
            result = _UNKNOWN
        if predicate == "le":
            result = _negate(result)
    elif predicate in ("eq", "ne"):
        if a.is_const() and b.is_const() and a.min == b.min:
            result = _TRUE
        elif a.intersect(b) is None:
            result = _FALSE
        else:
            result = _UNKNOWN
        if predicate == "ne":
            result = _negate(result)
    else:
        raise ValueError(f"unknown comparison predicate {predicate!r}")
    return result


def _negate(r: Range) -> Range:
    if r == _TRUE:
        return _FALSE
    if r == _FALSE:
        return _TRUE
    return r


# ═══════════════════════════════════════════════════════════════════════════
#  PART 4 — KNOWN MATH FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════

def _monotone(fn: Callable[[float], float], domain: Range) -> Callable[[Range], Range]:
    def apply(a: Range) -> Range:
        clipped = a.intersect(domain)
        if clipped is None:
            return Range.invalid()
        try:
            return Range.of(fn(clipped.min), fn(clipped.max))
        except (OverflowError, ValueError):
            return Range.top()
    return apply


def _sqrt(a: Range) -> Range:
    return _monotone(math.sqrt, Range(0.0, _INF))(a)


def _exp(a: Range) -> Range:
    lo = math.exp(a.min) if a.min < 709.0 else _INF
    hi = math.exp(a.max) if a.max < 709.0 else _INF
    return Range(lo, hi)


def _log_of(base_log: Callable[[float], float]) -> Callable[[Range], Range]:
    def apply(a: Range) -> Range:
        if a.max <= 0.0:
            return Range.invalid()
        lo = base_log(a.min) if a.min > 0.0 else -_INF
        hi = base_log(a.max) if math.isfinite(a.max) else _INF
        return Range(lo, hi)
    return apply


def _periodic(fn: Callable[[float], float], shift: float) -> Callable[[Range], Range]:
    """sin/cos: exact on a sub-period interval, [-1, 1] otherwise."""
    def apply(a: Range) -> Range:
        if not a.is_bounded() or a.width >= 2 * math.pi:
            return Range(-1.0, 1.0)
        lo, hi = sorted((fn(a.min), fn(a.max)))
        # extrema of sin(x + shift) sit at π/2 + kπ
        k = math.ceil((a.min + shift - math.pi / 2) / math.pi)
        while math.pi / 2 + k * math.pi - shift <= a.max:
            peak = fn(math.pi / 2 + k * math.pi - shift)
            lo, hi = min(lo, peak), max(hi, peak)
            k += 1
        return Range(max(lo, -1.0), min(hi, 1.0))
    return apply


def _fabs(a: Range) -> Range:
    if a.min >= 0:
        return a
    if a.max <= 0:
        return Range(-a.max, -a.min)
    return Range(0.0, a.magnitude)


def _floor(a: Range) -> Range:
    return Range(float(math.floor(a.min)) if math.isfinite(a.min) else a.min,
                 float(math.floor(a.max)) if math.isfinite(a.max) else a.max)


def _ceil(a: Range) -> Range:
    return Range(float(math.ceil(a.min)) if math.isfinite(a.min) else a.min,
                 float(math.ceil(a.max)) if math.isfinite(a.max) else a.max)


MATH_FUNCTIONS: Final[Dict[str, Callable[..., Range]]] = {
    "sqrt": _sqrt,
    "exp": _exp,
    "log": _log_of(math.log),
    "log2": _log_of(math.log2),
    "log10": _log_of(math.log10),
    "sin": _periodic(math.sin, 0.0),
    "cos": _periodic(math.cos, math.pi / 2),
    "tanh": _monotone(math.tanh, Range.top()),
    "atan": _monotone(math.atan, Range.top()),
    "asin": _monotone(math.asin, Range(-1.0, 1.0)),
    "acos": _monotone(math.acos, Range(-1.0, 1.0)),
    "fabs": _fabs,
    "floor": _floor,
    "ceil": _ceil,
    "fmin": lambda a, b: Range(min(a.min, b.min), min(a.max, b.max)),
    "fmax": lambda a, b: Range(max(a.min, b.min), max(a.max, b.max)),
}


def math_function(name: str, args: Sequence[Range]) -> Range:
    """Range of a known libm function, stripped of ``f``/``l`` suffixes."""
    fn = MATH_FUNCTIONS[canonical_math_name(name)]
    if _any_invalid(*args):
        return Range.invalid()
    return fn(*args)


def canonical_math_name(name: str) -> str:
    """``sqrtf`` → ``sqrt``, ``expl`` → ``exp``; unknown names unchanged."""
    if name in MATH_FUNCTIONS:
        return name
    if name[-1:] in ("f", "l") and name[:-1] in MATH_FUNCTIONS:
        return name[:-1]
    return name


def is_math_function(name: str) -> bool:
    return canonical_math_name(name) in MATH_FUNCTIONS
