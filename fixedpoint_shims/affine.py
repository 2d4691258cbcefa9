"""
fixedpoint_shims/affine.py
══════════════════════════

Affine error forms.

An error is kept as

    ε̂  =  c  +  Σ  aᵢ · εᵢ          εᵢ ∈ [-1, 1],  c ≥ 0

where each noise symbol εᵢ stands for the rounding (or seed) error
introduced by one program node, and ``c`` collects everything that is
no longer correlated with anything else.  The worst-case absolute error
is the *magnitude* ``c + Σ |aᵢ|``.

Sharing symbols is what makes correlated quantities cheap::

    x = a + b          {a: 0.5, b: 0.5, x: r}
    x - x              {}                         magnitude 0

Join keeps the midpoint of differing coefficients and moves half their
spread into ``c``, so both operands remain representable under the same
noise assignment.  ``leq`` is the matching inclusion test.

Infinite magnitude is ⊤; every operation on ⊤ yields ⊤.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Final, Iterable, Tuple

__all__ = ["AffineError"]

_INF: Final = float("inf")

# Relative slack of the inclusion test, absorbing float rounding in the
# coefficients themselves.
_SLACK: Final = 1e-12


def _clean(terms: Dict[int, float]) -> Tuple[Tuple[int, float], ...]:
    return tuple(sorted((k, v) for k, v in terms.items() if v != 0.0))


@dataclass(frozen=True, slots=True)
class AffineError:
    const: float = 0.0
    terms: Tuple[Tuple[int, float], ...] = ()

    # ---- Constructors ----------------------------------------------------

    @classmethod
    def zero(cls) -> AffineError:
        return cls()

    @classmethod
    def top(cls) -> AffineError:
        return cls(_INF)

    @classmethod
    def noise(cls, symbol: int, magnitude: float) -> AffineError:
        """A fresh error of ``magnitude`` tied to ``symbol``."""
        magnitude = abs(magnitude)
        if math.isinf(magnitude) or math.isnan(magnitude):
            return cls.top()
        if magnitude == 0.0:
            return cls()
        return cls(0.0, ((symbol, magnitude),))

    @classmethod
    def uncorrelated(cls, magnitude: float) -> AffineError:
        magnitude = abs(magnitude)
        if math.isnan(magnitude):
            return cls.top()
        return cls(magnitude)

    # ---- Measures --------------------------------------------------------

    @property
    def magnitude(self) -> float:
        if self.is_top():
            return _INF
        return self.const + sum(abs(v) for _, v in self.terms)

    def is_top(self) -> bool:
        return math.isinf(self.const)

    def is_zero(self) -> bool:
        return self.const == 0.0 and not self.terms

    def symbols(self) -> Iterable[int]:
        return (k for k, _ in self.terms)

    # ---- Arithmetic ------------------------------------------------------

    def _combine(self, other: AffineError, sign: float) -> AffineError:
        if self.is_top() or other.is_top():
            return AffineError.top()
        terms = dict(self.terms)
        for k, v in other.terms:
            terms[k] = terms.get(k, 0.0) + sign * v
        return AffineError(self.const + other.const, _clean(terms))

    def __add__(self, other: AffineError) -> AffineError:
        return self._combine(other, 1.0)

    def __sub__(self, other: AffineError) -> AffineError:
        return self._combine(other, -1.0)

    def scale(self, factor: float) -> AffineError:
        if self.is_top() or math.isinf(factor) or math.isnan(factor):
            return AffineError.top() if not self.is_zero() else AffineError()
        return AffineError(
            self.const * abs(factor), _clean({k: v * factor for k, v in self.terms})
        )

    def __neg__(self) -> AffineError:
        return self.scale(-1.0)

    def with_noise(self, symbol: int, magnitude: float) -> AffineError:
        """Add an independent error; reusing a symbol already present
        would correlate unrelated noise, so that case goes to ``const``."""
        magnitude = abs(magnitude)
        if magnitude == 0.0:
            return self
        if self.is_top() or math.isinf(magnitude) or math.isnan(magnitude):
            return AffineError.top()
        if any(k == symbol for k, _ in self.terms):
            return AffineError(self.const + magnitude, self.terms)
        return AffineError(self.const, _clean({**dict(self.terms), symbol: magnitude}))

    def collapse(self, symbol: int) -> AffineError:
        """Same magnitude, re-expressed as one fresh symbol."""
        return AffineError.noise(symbol, self.magnitude)

    # ---- Lattice ---------------------------------------------------------

    def leq(self, other: AffineError) -> bool:
        """Every error this form admits is admitted by ``other``."""
        if other.is_top():
            return True
        if self.is_top():
            return False
        mine, theirs = dict(self.terms), dict(other.terms)
        spread = sum(abs(mine.get(k, 0.0) - theirs.get(k, 0.0)) for k in mine.keys() | theirs.keys())
        return self.const + spread <= other.const * (1 + _SLACK) + _SLACK * other.magnitude

    def join(self, other: AffineError) -> AffineError:
        if self.leq(other):
            return other
        if other.leq(self):
            return self
        if self.is_top() or other.is_top():
            return AffineError.top()
        mine, theirs = dict(self.terms), dict(other.terms)
        terms: Dict[int, float] = {}
        spread = 0.0
        for k in mine.keys() | theirs.keys():
            a, b = mine.get(k, 0.0), theirs.get(k, 0.0)
            terms[k] = (a + b) / 2
            spread += abs(a - b) / 2
        return AffineError(max(self.const, other.const) + spread, _clean(terms))

    def __str__(self) -> str:
        if self.is_top():
            return "±∞"
        return f"±{self.magnitude:g}"
