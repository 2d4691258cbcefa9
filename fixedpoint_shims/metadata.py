"""
fixedpoint_shims/metadata.py
════════════════════════════

Struct-aware metadata model: per-value records and their persisted form.

Record kinds
────────────

    ValueInfo      one scalar: numeric type, range, initial error,
                   enabled / final flags, and the computed error bound
    AggregateInfo  one composite: an ordered list of child records,
                   ``None`` where a field carries no numeric information
    CmpErrorInfo   one comparison: the error tolerance and whether the
                   outcome may be wrong

``MDInfo`` is the tagged union ``ValueInfo | AggregateInfo``; dispatch on
it with ``isinstance``.

Shapes
──────

The *shape* of a type is the AggregateInfo skeleton its values carry:

    scalar          → None
    struct S        → AggregateInfo(shape(f) for f in S.fields)
    array of T      → shape(T)
    pointer to T    → shape(T)

Shapes are memoised per type identity in a :class:`ShapeCache`; a
recursive struct yields a cyclic AggregateInfo, which is why every
traversal here carries a ``visited`` set.

Persisted records
─────────────────

    ValueInfo      (type-tag | False, (min, max) | False, error | False, flags)
                   flags = enabled | final << 1
    type-tag       ("fixp", signedWidth, fracBits)   signedWidth < 0 ⟺ signed
                   ("float", standardIndex, greatest)
    AggregateInfo  [record | False, ...]
    function args  [kind, payload, kind, payload, ...]
                   kind 0 = none, 1 = scalar, 2 = struct

``False`` marks an absent field.  Decoding checks the layout and raises
:class:`~fixedpoint_shims.errors.RecordFormatError` on anything else.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set, Tuple, Union

from fixedpoint_shims.errors import RecordFormatError, StructuralMalformationError
from fixedpoint_shims.numeric_types import (
    FixedPointFormat,
    FloatFormat,
    FloatStandard,
    NumericType,
    Range,
)
from fixedpoint_shims.value_types import (
    ArrayType,
    PointerType,
    StructType,
    ValueType,
)

__all__ = [
    "ValueInfo",
    "AggregateInfo",
    "MDInfo",
    "CmpErrorInfo",
    "ShapeCache",
    "check_shape",
    "resolve_path",
    "render_info",
    "type_to_record",
    "type_from_record",
    "info_to_record",
    "info_from_record",
    "args_to_record",
    "args_from_record",
    "cmp_to_record",
    "cmp_from_record",
]


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — RECORDS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ValueInfo:
    """Metadata of one scalar value.

    ``range`` and ``type`` are filled in once by the engines.  A
    ``final`` range is a seed the analysis must keep as is.  A value that
    is not ``enabled`` is still analysed but never converted.
    """
    type: Optional[NumericType] = None
    range: Optional[Range] = None
    initial_error: Optional[float] = None
    enabled: bool = True
    final: bool = False
    error: Optional[float] = None

    def enable_conversion(self) -> None:
        self.enabled = True

    def clone(self) -> ValueInfo:
        return ValueInfo(
            self.type, self.range, self.initial_error, self.enabled, self.final, self.error
        )

    def __str__(self) -> str:
        return render_info(self)


@dataclass(eq=False)
class AggregateInfo:
    """Metadata of one composite value, one child per field."""
    fields: List[Optional[MDInfo]] = field(default_factory=list)

    @classmethod
    def of_size(cls, size: int) -> AggregateInfo:
        return cls([None] * size)

    def __len__(self) -> int:
        return len(self.fields)

    def __iter__(self) -> Iterator[Optional[MDInfo]]:
        return iter(self.fields)

    def child(self, index: int) -> Optional[MDInfo]:
        return self.fields[index]

    def set_child(self, index: int, info: Optional[MDInfo]) -> None:
        self.fields[index] = info

    def enable_conversion(self) -> None:
        """Enable every scalar reachable from this record."""
        stack: List[AggregateInfo] = [self]
        visited: Set[int] = set()
        while stack:
            agg = stack.pop()
            if id(agg) in visited:
                continue
            visited.add(id(agg))
            for child in agg.fields:
                if isinstance(child, ValueInfo):
                    child.enable_conversion()
                elif isinstance(child, AggregateInfo):
                    stack.append(child)

    def clone(self) -> AggregateInfo:
        return _clone(self, {})  # type: ignore[return-value]

    def leaves(self) -> Iterator[Tuple[Tuple[int, ...], ValueInfo]]:
        """(path, ValueInfo) for every reachable scalar, cycles visited once."""
        yield from _leaves(self, (), set())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AggregateInfo):
            return NotImplemented
        return _identity_key(self, set()) == _identity_key(other, set())

    __hash__ = None  # type: ignore[assignment]

    def __str__(self) -> str:
        return render_info(self)


MDInfo = Union[ValueInfo, AggregateInfo]


@dataclass
class CmpErrorInfo:
    """Error tolerance of a comparison and whether its outcome may flip."""
    max_tolerance: float = 0.0
    may_be_wrong: bool = False

    def merge(self, other: CmpErrorInfo) -> CmpErrorInfo:
        return CmpErrorInfo(
            max(self.max_tolerance, other.max_tolerance),
            self.may_be_wrong or other.may_be_wrong,
        )


def _clone(info: Optional[MDInfo], memo: Dict[int, AggregateInfo]) -> Optional[MDInfo]:
    if info is None:
        return None
    if isinstance(info, ValueInfo):
        return info.clone()
    if id(info) in memo:
        return memo[id(info)]
    copy = AggregateInfo.of_size(len(info))
    memo[id(info)] = copy
    for i, child in enumerate(info.fields):
        copy.fields[i] = _clone(child, memo)
    return copy


def _identity_key(info: Optional[MDInfo], visited: Set[int]) -> Any:
    if info is None or isinstance(info, ValueInfo):
        return info
    if id(info) in visited:
        return "cycle"
    visited = visited | {id(info)}
    return tuple(_identity_key(f, visited) for f in info.fields)


def _leaves(
    info: AggregateInfo, prefix: Tuple[int, ...], visited: Set[int]
) -> Iterator[Tuple[Tuple[int, ...], ValueInfo]]:
    if id(info) in visited:
        return
    visited.add(id(info))
    for i, child in enumerate(info.fields):
        if isinstance(child, ValueInfo):
            yield prefix + (i,), child
        elif isinstance(child, AggregateInfo):
            yield from _leaves(child, prefix + (i,), visited)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — SHAPES
# ═══════════════════════════════════════════════════════════════════════════

def _innermost(vtype: ValueType) -> ValueType:
    while isinstance(vtype, (ArrayType, PointerType)):
        vtype = vtype.element if isinstance(vtype, ArrayType) else vtype.pointee
    return vtype


class ShapeCache:
    """Type → AggregateInfo skeleton, memoised by type identity.

    Owned by one engine instance; callers receive clones so that
    filling a skeleton never mutates the cached one.
    """

    def __init__(self) -> None:
        self._shapes: Dict[int, Optional[AggregateInfo]] = {}
        self._keep: List[ValueType] = []

    def _shape(self, vtype: ValueType) -> Optional[AggregateInfo]:
        vtype = _innermost(vtype)
        if not isinstance(vtype, StructType):
            return None
        key = id(vtype)
        if key in self._shapes:
            return self._shapes[key]
        shape = AggregateInfo.of_size(len(vtype.fields))
        self._shapes[key] = shape
        self._keep.append(vtype)
        for i, ftype in enumerate(vtype.fields):
            shape.fields[i] = self._shape(ftype)
        return shape

    def shape_of(self, vtype: ValueType) -> Optional[AggregateInfo]:
        shape = self._shape(vtype)
        return None if shape is None else shape.clone()

    def __len__(self) -> int:
        return len(self._shapes)


def check_shape(vtype: ValueType, info: Optional[MDInfo], _path: Tuple[int, ...] = (),
                _visited: Optional[Set[Tuple[int, int]]] = None) -> None:
    """Raise StructuralMalformationError unless ``info`` fits ``vtype``."""
    if info is None:
        return
    visited = set() if _visited is None else _visited
    vtype = _innermost(vtype)
    if isinstance(info, ValueInfo):
        if isinstance(vtype, StructType):
            raise StructuralMalformationError(
                "scalar record attached to a composite", type_name=vtype.name, path=_path
            )
        return
    if not isinstance(vtype, StructType):
        raise StructuralMalformationError(
            "composite record attached to a scalar", type_name=str(vtype), path=_path
        )
    key = (id(vtype), id(info))
    if key in visited:
        return
    visited.add(key)
    if len(info) != len(vtype.fields):
        raise StructuralMalformationError(
            "field count mismatch",
            type_name=vtype.name,
            expected=len(vtype.fields),
            actual=len(info),
            path=_path,
        )
    for i, (ftype, child) in enumerate(zip(vtype.fields, info.fields)):
        check_shape(ftype, child, _path + (i,), visited)


def resolve_path(vtype: ValueType, info: Optional[MDInfo], path: Sequence[int]) -> Optional[MDInfo]:
    """Follow an index path through a type and its record in lockstep.

    Struct indices descend into both; array and pointer steps descend
    into the type only, since elements share the container's record.
    Returns None where the record has no information.
    """
    for i, index in enumerate(path):
        if info is None:
            return None
        if isinstance(vtype, StructType):
            if not isinstance(info, AggregateInfo):
                raise StructuralMalformationError(
                    "scalar record on a struct path", type_name=vtype.name, path=path[:i]
                )
            if not 0 <= index < len(vtype.fields) or len(info) != len(vtype.fields):
                raise StructuralMalformationError(
                    "field index out of shape",
                    type_name=vtype.name,
                    expected=len(vtype.fields),
                    actual=len(info),
                    path=path[: i + 1],
                )
            info = info.fields[index]
            vtype = vtype.fields[index]
        elif isinstance(vtype, ArrayType):
            vtype = vtype.element
        elif isinstance(vtype, PointerType):
            vtype = vtype.pointee
        else:
            raise StructuralMalformationError(
                "index into a scalar", type_name=str(vtype), path=path[: i + 1]
            )
    return info


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — TEXT RENDERING
# ═══════════════════════════════════════════════════════════════════════════

def _render_value(info: ValueInfo) -> str:
    parts = []
    if info.type is not None:
        parts.append(f"type({info.type})")
    if info.range is not None:
        parts.append(f"range({info.range.min}, {info.range.max})")
    if info.initial_error is not None:
        parts.append(f"error({info.initial_error})")
    if not info.enabled:
        parts.append("disabled")
    if info.final:
        parts.append("final")
    return "scalar(" + " ".join(parts) + ")"


def render_info(info: Optional[MDInfo], _visited: Optional[Set[int]] = None) -> str:
    if info is None:
        return "void()"
    if isinstance(info, ValueInfo):
        return _render_value(info)
    visited = set() if _visited is None else _visited
    if id(info) in visited:
        return "struct(...)"
    visited = visited | {id(info)}
    return "struct(" + ", ".join(render_info(f, visited) for f in info.fields) + ")"


# ═══════════════════════════════════════════════════════════════════════════
#  PART 4 — PERSISTED RECORDS
# ═══════════════════════════════════════════════════════════════════════════

_ABSENT = False

_KIND_NONE = 0
_KIND_SCALAR = 1
_KIND_STRUCT = 2


def _is_absent(value: Any) -> bool:
    return value is False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def type_to_record(ntype: NumericType) -> Tuple[Any, ...]:
    if isinstance(ntype, FixedPointFormat):
        width = -ntype.width if ntype.signed else ntype.width
        return ("fixp", width, ntype.frac_bits)
    return ("float", ntype.standard.index, ntype.greatest)


def type_from_record(record: Any) -> NumericType:
    if not isinstance(record, (list, tuple)) or len(record) != 3:
        raise RecordFormatError("type tag must be a 3-element sequence", record)
    tag, a, b = record
    if tag == "fixp":
        if not (isinstance(a, int) and isinstance(b, int)) or a == 0:
            raise RecordFormatError("fixp tag needs a non-zero width and integer frac bits", record)
        try:
            return FixedPointFormat(abs(a), b, a < 0)
        except ValueError as exc:
            raise RecordFormatError(str(exc), record) from exc
    if tag == "float":
        if not isinstance(a, int) or not _is_number(b):
            raise RecordFormatError("float tag needs a standard index and a magnitude", record)
        try:
            standard = FloatStandard.from_index(a)
        except IndexError as exc:
            raise RecordFormatError("unknown float standard index", record) from exc
        return FloatFormat(standard, float(b))
    raise RecordFormatError("unknown type tag", record)


def _is_value_record(record: Any) -> bool:
    if not isinstance(record, (list, tuple)) or len(record) != 4:
        return False
    tag, rng, err, flags = record
    if not (_is_absent(tag) or (isinstance(tag, (list, tuple)) and len(tag) == 3
                                and tag[0] in ("fixp", "float"))):
        return False
    if not (_is_absent(rng) or (isinstance(rng, (list, tuple)) and len(rng) == 2
                                and all(_is_number(v) for v in rng))):
        return False
    if not (_is_absent(err) or _is_number(err)):
        return False
    return isinstance(flags, int) and not isinstance(flags, bool) and 0 <= flags <= 3


def info_to_record(info: Optional[MDInfo], _visited: Optional[Set[int]] = None) -> Any:
    """Persisted form of a record; cyclic aggregates end in ``False``."""
    if info is None:
        return _ABSENT
    if isinstance(info, ValueInfo):
        flags = int(info.enabled) | (int(info.final) << 1)
        return (
            type_to_record(info.type) if info.type is not None else _ABSENT,
            info.range.as_tuple() if info.range is not None else _ABSENT,
            info.initial_error if info.initial_error is not None else _ABSENT,
            flags,
        )
    visited = set() if _visited is None else _visited
    if id(info) in visited:
        return _ABSENT
    visited = visited | {id(info)}
    return [info_to_record(f, visited) for f in info.fields]


def info_from_record(record: Any) -> Optional[MDInfo]:
    if _is_absent(record) or record is None:
        return None
    if _is_value_record(record):
        tag, rng, err, flags = record
        try:
            decoded_range = None if _is_absent(rng) else Range(float(rng[0]), float(rng[1]))
        except ValueError as exc:
            raise RecordFormatError(str(exc), record) from exc
        return ValueInfo(
            type=None if _is_absent(tag) else type_from_record(tag),
            range=decoded_range,
            initial_error=None if _is_absent(err) else float(err),
            enabled=bool(flags & 1),
            final=bool(flags & 2),
        )
    if isinstance(record, (list, tuple)):
        return AggregateInfo([info_from_record(f) for f in record])
    raise RecordFormatError("not a value or aggregate record", record)


def args_to_record(infos: Sequence[Optional[MDInfo]]) -> List[Any]:
    out: List[Any] = []
    for info in infos:
        if info is None:
            out.extend((_KIND_NONE, _ABSENT))
        elif isinstance(info, ValueInfo):
            out.extend((_KIND_SCALAR, info_to_record(info)))
        else:
            out.extend((_KIND_STRUCT, info_to_record(info)))
    return out


def args_from_record(record: Any) -> List[Optional[MDInfo]]:
    if not isinstance(record, (list, tuple)) or len(record) % 2:
        raise RecordFormatError("argument records come in (kind, payload) pairs", record)
    out: List[Optional[MDInfo]] = []
    for kind, payload in zip(record[0::2], record[1::2]):
        if kind == _KIND_NONE:
            out.append(None)
        elif kind == _KIND_SCALAR:
            if not _is_value_record(payload):
                raise RecordFormatError("scalar argument without a value record", payload)
            out.append(info_from_record(payload))
        elif kind == _KIND_STRUCT:
            if not isinstance(payload, (list, tuple)) or _is_value_record(payload):
                raise RecordFormatError("struct argument without an aggregate record", payload)
            out.append(info_from_record(payload))
        else:
            raise RecordFormatError("unknown argument kind", kind)
    return out


def cmp_to_record(info: CmpErrorInfo) -> Optional[float]:
    """Only comparisons that may be wrong are persisted."""
    return info.max_tolerance if info.may_be_wrong else None


def cmp_from_record(record: Any) -> CmpErrorInfo:
    if record is None or _is_absent(record):
        return CmpErrorInfo(0.0, False)
    if not _is_number(record) or math.isnan(record):
        raise RecordFormatError("comparison tolerance must be a number", record)
    return CmpErrorInfo(float(record), True)
