"""
Element type model.

`ScalarType` is the closed set of element types the engine knows about. The
integer value of each member is its persisted type code (see
`infrastructure.tensor._serialization`), so members must never be renumbered.

Host storage uses NumPy dtypes. The 16-bit brain float is provided by
`ml_dtypes`, which registers a real NumPy dtype for it. `ComplexFloat16` is
part of the closed set for code compatibility but has no storage type; every
attempt to allocate or cast to it raises `DTypeNotSupportedError`.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any

import ml_dtypes
import numpy as np

from ._errors import DTypeNotSupportedError

bfloat16 = np.dtype(ml_dtypes.bfloat16)


class ScalarType(IntEnum):
    """
    Closed enumeration of element types with their persisted type codes.
    """

    Byte = 0
    Int8 = 1
    Int16 = 2
    Int32 = 3
    Int64 = 4
    Float16 = 5
    Float32 = 6
    Float64 = 7
    ComplexFloat16 = 8
    ComplexFloat32 = 9
    ComplexFloat64 = 10
    Bool = 11
    BFloat16 = 15
    UInt16 = 27
    UInt32 = 28
    UInt64 = 29

    # ------------------------------------------------------------------
    # classification
    # ------------------------------------------------------------------
    @property
    def is_supported(self) -> bool:
        return self is not ScalarType.ComplexFloat16

    @property
    def is_floating_point(self) -> bool:
        return self in _FLOATING

    @property
    def is_complex(self) -> bool:
        return self in (
            ScalarType.ComplexFloat16,
            ScalarType.ComplexFloat32,
            ScalarType.ComplexFloat64,
        )

    @property
    def is_integral(self) -> bool:
        """True for signed/unsigned integers. `Bool` is not integral."""
        return self in _INTEGRAL

    @property
    def is_signed(self) -> bool:
        return self not in (
            ScalarType.Byte,
            ScalarType.UInt16,
            ScalarType.UInt32,
            ScalarType.UInt64,
            ScalarType.Bool,
        )

    @property
    def numpy_dtype(self) -> np.dtype:
        """
        Host storage dtype for this element type.

        Raises
        ------
        DTypeNotSupportedError
            For `ComplexFloat16`.
        """
        try:
            return _TO_NUMPY[self]
        except KeyError:
            raise DTypeNotSupportedError(
                f"{self.name} (type code {int(self)}) has no storage type and "
                "cannot be allocated or cast to"
            ) from None

    @property
    def itemsize(self) -> int:
        if self is ScalarType.ComplexFloat16:
            return 4
        return int(self.numpy_dtype.itemsize)

    # ------------------------------------------------------------------
    # conversion
    # ------------------------------------------------------------------
    @classmethod
    def from_code(cls, code: int) -> "ScalarType":
        """Resolve a persisted type code."""
        try:
            return cls(int(code))
        except ValueError:
            raise DTypeNotSupportedError(f"unknown type code {code}") from None

    @classmethod
    def from_any(cls, value: Any) -> "ScalarType":
        """
        Normalize a user-facing dtype specification.

        Accepts a `ScalarType`, a member name ("Float32", case-insensitive, or
        common aliases such as "float32", "long", "half"), a NumPy dtype, a
        NumPy scalar type, or the Python types `bool`, `int`, `float`,
        `complex`.
        """
        if isinstance(value, ScalarType):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            if key in _ALIASES:
                return _ALIASES[key]
            for member in cls:
                if member.name.lower() == key:
                    return member
            raise DTypeNotSupportedError(f"unknown dtype name {value!r}")
        if value is bool:
            return cls.Bool
        if value is int:
            return cls.Int64
        if value is float:
            return cls.Float32
        if value is complex:
            return cls.ComplexFloat32
        try:
            dt = np.dtype(value)
        except TypeError:
            raise DTypeNotSupportedError(
                f"cannot interpret {value!r} as an element type"
            ) from None
        try:
            return _FROM_NUMPY[dt]
        except KeyError:
            raise DTypeNotSupportedError(f"unsupported numpy dtype {dt}") from None

    def __str__(self) -> str:
        return self.name


_FLOATING = frozenset(
    {
        ScalarType.Float16,
        ScalarType.BFloat16,
        ScalarType.Float32,
        ScalarType.Float64,
    }
)

_INTEGRAL = frozenset(
    {
        ScalarType.Byte,
        ScalarType.Int8,
        ScalarType.Int16,
        ScalarType.Int32,
        ScalarType.Int64,
        ScalarType.UInt16,
        ScalarType.UInt32,
        ScalarType.UInt64,
    }
)

_TO_NUMPY = {
    ScalarType.Byte: np.dtype(np.uint8),
    ScalarType.Int8: np.dtype(np.int8),
    ScalarType.Int16: np.dtype(np.int16),
    ScalarType.Int32: np.dtype(np.int32),
    ScalarType.Int64: np.dtype(np.int64),
    ScalarType.Float16: np.dtype(np.float16),
    ScalarType.Float32: np.dtype(np.float32),
    ScalarType.Float64: np.dtype(np.float64),
    ScalarType.ComplexFloat32: np.dtype(np.complex64),
    ScalarType.ComplexFloat64: np.dtype(np.complex128),
    ScalarType.Bool: np.dtype(np.bool_),
    ScalarType.BFloat16: bfloat16,
    ScalarType.UInt16: np.dtype(np.uint16),
    ScalarType.UInt32: np.dtype(np.uint32),
    ScalarType.UInt64: np.dtype(np.uint64),
}

_FROM_NUMPY = {dt: st for st, dt in _TO_NUMPY.items()}

_ALIASES = {
    "uint8": ScalarType.Byte,
    "byte": ScalarType.Byte,
    "int8": ScalarType.Int8,
    "int16": ScalarType.Int16,
    "short": ScalarType.Int16,
    "int32": ScalarType.Int32,
    "int": ScalarType.Int32,
    "int64": ScalarType.Int64,
    "long": ScalarType.Int64,
    "float16": ScalarType.Float16,
    "half": ScalarType.Float16,
    "bfloat16": ScalarType.BFloat16,
    "float32": ScalarType.Float32,
    "float": ScalarType.Float32,
    "float64": ScalarType.Float64,
    "double": ScalarType.Float64,
    "complex32": ScalarType.ComplexFloat16,
    "complex64": ScalarType.ComplexFloat32,
    "cfloat": ScalarType.ComplexFloat32,
    "complex128": ScalarType.ComplexFloat64,
    "cdouble": ScalarType.ComplexFloat64,
    "bool": ScalarType.Bool,
    "uint16": ScalarType.UInt16,
    "uint32": ScalarType.UInt32,
    "uint64": ScalarType.UInt64,
}


def promote_types(a: ScalarType, b: ScalarType) -> ScalarType:
    """
    Result element type of a binary operation between `a` and `b`.

    NumPy's result-type rules are used, except that the two 16-bit float
    encodings promote to Float32 when mixed, and bfloat16 combined with any
    integer stays bfloat16 (NumPy would widen it).
    """
    a = ScalarType.from_any(a)
    b = ScalarType.from_any(b)
    if a == b:
        return a
    pair = {a, b}
    if pair == {ScalarType.Float16, ScalarType.BFloat16}:
        return ScalarType.Float32
    if ScalarType.BFloat16 in pair:
        other = b if a is ScalarType.BFloat16 else a
        if other.is_integral or other is ScalarType.Bool:
            return ScalarType.BFloat16
        if other.is_complex:
            return promote_types(ScalarType.Float32, other)
        return other
    return _FROM_NUMPY[np.result_type(a.numpy_dtype, b.numpy_dtype)]


def check_cast(
    src: ScalarType, dst: ScalarType, *, allow_complex_to_real: bool = False
) -> None:
    """
    Validate a cast between two element types.

    Raises
    ------
    DTypeNotSupportedError
        If either side is `ComplexFloat16`, or a complex value would be cast to
        a real type without `allow_complex_to_real`.
    """
    for st in (src, dst):
        if not st.is_supported:
            raise DTypeNotSupportedError(
                f"cast {src.name} -> {dst.name} is not supported "
                f"({st.name} has no storage type)"
            )
    if src.is_complex and not dst.is_complex and not allow_complex_to_real:
        raise DTypeNotSupportedError(
            f"cast {src.name} -> {dst.name} would discard the imaginary part; "
            "pass allow_complex_to_real=True to allow it"
        )
