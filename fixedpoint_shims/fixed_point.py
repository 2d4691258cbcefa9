"""
fixedpoint_shims/fixed_point.py
═══════════════════════════════

Fixed-Point Type Deriver: map a value range to the narrowest binary
fixed-point format that holds it with enough fractional precision.

Algorithm
─────────

For a range ``[min, max]`` with magnitude ``m = max(|min|, |max|)``:

    signed   = min < 0
    intBits  = ⌈log₂(m + 1)⌉ + signed
    fracBits = totalBits − intBits

A value smaller than one does not use the top ``⌈−log₂ m⌉`` fractional
bits (they are always zero), so the *usable* precision is

    usable = fracBits − max(0, ⌈−log₂ m⌉)

While ``usable < minFracBits`` the total width grows by
``bitIncrement`` up to ``maxTotalBits``.  If it is still short, the
format keeps zero fractional bits and the result carries a
:class:`TypeGenError` so the caller can fall back to floating point.

A degenerate range (a constant) never needs more fractional bits than
its binary expansion has, so for constants the requirement is capped at
that count and results are memoised in a :class:`FormatCache` owned by
the caller.

    ┌────────────────────┬──────────────────────────────────────────┐
    │ TypeGenError       │ meaning                                  │
    ├────────────────────┼──────────────────────────────────────────┤
    │ NO_ERROR           │ format is usable                         │
    │ INVALID_RANGE      │ NaN endpoint                             │
    │ UNBOUNDED_RANGE    │ ±∞ endpoint                              │
    │ NOT_ENOUGH_FRAC    │ too few fractional bits at maxTotalBits  │
    │ NOT_ENOUGH_INT_FRAC│ integer part alone exceeds the width     │
    └────────────────────┴──────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from fixedpoint_shims.errors import ConfigError
from fixedpoint_shims.numeric_types import FixedPointFormat, Range

__all__ = [
    "TypeGenError",
    "SizingPolicy",
    "FormatCache",
    "derive_format",
    "exact_frac_bits",
]

logger = logging.getLogger(__name__)


class TypeGenError(Enum):
    NO_ERROR = "no error"
    INVALID_RANGE = "invalid range"
    UNBOUNDED_RANGE = "unbounded range"
    NOT_ENOUGH_FRAC_BITS = "not enough fractional bits"
    NOT_ENOUGH_INT_AND_FRAC_BITS = "not enough integer and fractional bits"

    @property
    def ok(self) -> bool:
        return self is TypeGenError.NO_ERROR


@dataclass(frozen=True, slots=True)
class SizingPolicy:
    """Bit-budget knobs of the deriver."""
    min_total_bits: int = 32
    min_frac_bits: int = 3
    max_total_bits: int = 64
    bit_increment: int = 64

    def __post_init__(self) -> None:
        if self.min_total_bits < 1:
            raise ConfigError("min_total_bits", "must be at least 1")
        if self.min_frac_bits < 0:
            raise ConfigError("min_frac_bits", "must not be negative")
        if self.max_total_bits < self.min_total_bits:
            raise ConfigError("max_total_bits", "must not be below min_total_bits")
        if self.bit_increment < 1:
            raise ConfigError("bit_increment", "must be at least 1")


def exact_frac_bits(value: float) -> int:
    """Fractional bits needed to represent ``value`` exactly.

    >>> exact_frac_bits(2.5), exact_frac_bits(100.0), exact_frac_bits(0.375)
    (1, 0, 3)
    """
    _, denominator = abs(value).as_integer_ratio()
    return denominator.bit_length() - 1


def _frac_for(total: int, int_bits: int, cap: Optional[int]) -> int:
    frac = total - int_bits
    return frac if cap is None else min(frac, cap)


def derive_format(rng: Range, policy: SizingPolicy) -> Tuple[FixedPointFormat, TypeGenError]:
    """Derive a fixed-point format for ``rng``.

    Always returns a format; check the :class:`TypeGenError` before
    trusting it.
    """
    total = policy.min_total_bits
    if rng.is_invalid():
        return FixedPointFormat(total, 0, True), TypeGenError.INVALID_RANGE
    signed = rng.min < 0
    if not rng.is_bounded():
        return FixedPointFormat(total, 0, signed), TypeGenError.UNBOUNDED_RANGE

    magnitude = rng.magnitude
    int_bits = math.ceil(math.log2(magnitude + 1)) + int(signed)
    cap = exact_frac_bits(magnitude) if rng.is_const() else None
    wasted = max(0, math.ceil(-math.log2(magnitude))) if magnitude > 0 else 0
    needed = policy.min_frac_bits if cap is None else min(policy.min_frac_bits, cap)

    frac = _frac_for(total, int_bits, cap)
    # a constant is exact once it has its cap of fractional bits
    while (frac - wasted < needed and (cap is None or frac < cap)
           and total < policy.max_total_bits):
        total = min(total + policy.bit_increment, policy.max_total_bits)
        frac = _frac_for(total, int_bits, cap)

    if frac < needed or frac < 0:
        if int_bits > total:
            err = TypeGenError.NOT_ENOUGH_INT_AND_FRAC_BITS
        else:
            err = TypeGenError.NOT_ENOUGH_FRAC_BITS
        logger.debug("range %s does not fit %d bits: %s", rng, total, err.value)
        return FixedPointFormat(total, 0, signed), err

    return FixedPointFormat(total, frac, signed), TypeGenError.NO_ERROR


class FormatCache:
    """Memo of derived formats for constant ranges.

    One cache belongs to one analysis run; it is never shared through
    module state.
    """

    def __init__(self) -> None:
        self._entries: Dict[Tuple[float, SizingPolicy], Tuple[FixedPointFormat, TypeGenError]] = {}
        self.hits = 0

    def derive(self, rng: Range, policy: SizingPolicy) -> Tuple[FixedPointFormat, TypeGenError]:
        if not rng.is_const() or not rng.is_bounded():
            return derive_format(rng, policy)
        key = (rng.min, policy)
        cached = self._entries.get(key)
        if cached is not None:
            self.hits += 1
            return cached
        result = derive_format(rng, policy)
        self._entries[key] = result
        return result

    def __len__(self) -> int:
        return len(self._entries)
