"""
fixedpoint_shims/config.py
══════════════════════════

Configuration surface of the analysis.  Pure data: an
:class:`AnalysisConfig` is frozen, validated on construction, and can be
read from a mapping (snake_case or camelCase keys) or a JSON file.

    >>> cfg = AnalysisConfig.from_mapping({"maxUnroll": 16, "exact_constants": True})
    >>> cfg.max_unroll, cfg.exact_constants
    (16, True)
    >>> cfg.sizing_policy()
    SizingPolicy(min_total_bits=32, min_frac_bits=3, max_total_bits=64, bit_increment=64)
"""

from __future__ import annotations

import dataclasses
import json
import logging
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Union

from fixedpoint_shims.errors import ConfigError
from fixedpoint_shims.fixed_point import SizingPolicy

__all__ = ["AnalysisConfig", "load_config"]

logger = logging.getLogger(__name__)

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Knobs of the range, type and error engines.

    Attributes
    ----------
    default_unroll        : iterations for loops without a known trip count
    max_unroll            : hard cap on loop iterations
    propagate_all         : analyse every function, not just starting points
    min_total_bits        : initial fixed-point width
    min_frac_bits         : minimum usable fractional bits
    max_total_bits        : width the deriver may grow to
    bit_increment         : width growth step
    max_recursion         : recursion depth analysed before a call is opaque
    cmp_threshold_percent : comparison flagging threshold (% of range width)
    relative_error        : report error relative to the value magnitude
    exact_constants       : literals carry no representation error
    """
    default_unroll: int = 1
    max_unroll: int = 256
    propagate_all: bool = False
    min_total_bits: int = 32
    min_frac_bits: int = 3
    max_total_bits: int = 64
    bit_increment: int = 64
    max_recursion: int = 0
    cmp_threshold_percent: float = 0.0
    relative_error: bool = False
    exact_constants: bool = False

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if f.type in ("bool", bool):
                if not isinstance(value, bool):
                    raise ConfigError(f.name, f"expected a boolean, got {value!r}")
            elif f.type in ("int", int):
                if isinstance(value, bool) or not isinstance(value, int):
                    raise ConfigError(f.name, f"expected an integer, got {value!r}")
                if value < 0:
                    raise ConfigError(f.name, "must not be negative")
            elif isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f.name, f"expected a number, got {value!r}")
        if self.max_unroll < 1:
            raise ConfigError("max_unroll", "must be at least 1")
        if self.cmp_threshold_percent < 0:
            raise ConfigError("cmp_threshold_percent", "must not be negative")
        # validates the bit budget
        self.sizing_policy()

    # ---- Construction ----------------------------------------------------

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> AnalysisConfig:
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = _snake(key)
            if name not in known:
                raise ConfigError(key, "unknown configuration key")
            if name in kwargs:
                raise ConfigError(key, "given twice")
            kwargs[name] = value
        return cls(**kwargs)

    def to_mapping(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    # ---- Derived ---------------------------------------------------------

    def sizing_policy(self) -> SizingPolicy:
        return SizingPolicy(
            min_total_bits=self.min_total_bits,
            min_frac_bits=self.min_frac_bits,
            max_total_bits=self.max_total_bits,
            bit_increment=self.bit_increment,
        )

    def with_policy(self, policy: SizingPolicy) -> AnalysisConfig:
        return dataclasses.replace(
            self,
            min_total_bits=policy.min_total_bits,
            min_frac_bits=policy.min_frac_bits,
            max_total_bits=policy.max_total_bits,
            bit_increment=policy.bit_increment,
        )


def load_config(path: Union[str, Path]) -> AnalysisConfig:
    """Read an :class:`AnalysisConfig` from a JSON object file."""
    text = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(str(path), f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(str(path), "top level must be a JSON object")
    logger.debug("loaded configuration from %s", path)
    return AnalysisConfig.from_mapping(data)
