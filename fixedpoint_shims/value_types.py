"""
fixedpoint_shims/value_types.py
═══════════════════════════════

Static types of program values.

    ScalarType   float of some standard, or an integer of some width
    StructType   ordered fields; may be (mutually) recursive
    ArrayType    homogeneous; the analysis does not distinguish elements
    PointerType  typed pointer
    VoidType     absence of a value

``StructType`` compares by identity so that recursive definitions
(``struct node { float v; node* next; }``) can be built by appending
fields after construction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Union

from fixedpoint_shims.numeric_types import FloatStandard

__all__ = [
    "ScalarType",
    "StructType",
    "ArrayType",
    "PointerType",
    "VoidType",
    "ValueType",
    "VOID",
    "F16",
    "F32",
    "F64",
    "BF16",
    "I1",
    "I8",
    "I16",
    "I32",
    "I64",
    "strip_arrays",
    "type_name",
]


@dataclass(frozen=True)
class ScalarType:
    """A float of ``standard``, or an integer of ``bits`` when standard is None."""
    standard: Optional[FloatStandard] = None
    bits: int = 32
    signed: bool = True

    @property
    def is_float(self) -> bool:
        return self.standard is not None

    @property
    def is_integer(self) -> bool:
        return self.standard is None

    def __str__(self) -> str:
        if self.standard is not None:
            return self.standard.value
        return f"i{self.bits}"


@dataclass(eq=False)
class StructType:
    name: str
    fields: List["ValueType"] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.fields)

    def __str__(self) -> str:
        return f"%{self.name}"

    def __repr__(self) -> str:
        return f"StructType({self.name!r}, {len(self.fields)} fields)"


@dataclass(frozen=True)
class ArrayType:
    element: "ValueType"
    length: int = 0

    def __str__(self) -> str:
        return f"[{self.length} x {self.element}]"


@dataclass(frozen=True)
class PointerType:
    pointee: "ValueType"

    def __str__(self) -> str:
        return f"{self.pointee}*"


@dataclass(frozen=True)
class VoidType:
    def __str__(self) -> str:
        return "void"


ValueType = Union[ScalarType, StructType, ArrayType, PointerType, VoidType]

VOID = VoidType()
F16 = ScalarType(FloatStandard.HALF, 16)
F32 = ScalarType(FloatStandard.FLOAT, 32)
F64 = ScalarType(FloatStandard.DOUBLE, 64)
BF16 = ScalarType(FloatStandard.BFLOAT, 16)
I1 = ScalarType(None, 1, signed=False)
I8 = ScalarType(None, 8)
I16 = ScalarType(None, 16)
I32 = ScalarType(None, 32)
I64 = ScalarType(None, 64)


def strip_arrays(vtype: ValueType) -> ValueType:
    """Element type under any number of array layers."""
    while isinstance(vtype, ArrayType):
        vtype = vtype.element
    return vtype


def type_name(vtype: ValueType) -> str:
    return str(vtype)
