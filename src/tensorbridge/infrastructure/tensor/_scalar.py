"""
Boxed numeric literals.

A `Scalar` carries a constant into an operator together with its element
type, without allocating a tensor handle.
"""

from __future__ import annotations

from typing import Any, Optional, Union

import numpy as np

from ...domain._dtype import ScalarType

Number = Union[int, float, bool, complex]


class Scalar:
    """
    Immutable numeric literal of a known element type.

    Parameters
    ----------
    value : int | float | bool | complex | Scalar
        Literal value.
    dtype : ScalarType-like, optional
        Element type. Inferred from the Python type when omitted: bool -> Bool,
        int -> Int64, float -> Float32, complex -> ComplexFloat32.

    Raises
    ------
    TypeError
        If `value` is not a number.
    OverflowError
        If `value` does not fit the integer element type.
    """

    __slots__ = ("_value", "_dtype")

    def __init__(self, value: Union[Number, "Scalar"], dtype: Any = None) -> None:
        if isinstance(value, Scalar):
            value, inferred = value.value, value.dtype
        elif isinstance(value, np.generic):
            inferred = ScalarType.from_any(value.dtype)
            value = value.item()
        elif isinstance(value, bool):
            inferred = ScalarType.Bool
        elif isinstance(value, int):
            inferred = ScalarType.Int64
        elif isinstance(value, float):
            inferred = ScalarType.Float32
        elif isinstance(value, complex):
            inferred = ScalarType.ComplexFloat32
        else:
            raise TypeError(f"Scalar requires a number, got {type(value).__name__}")

        st = inferred if dtype is None else ScalarType.from_any(dtype)
        if st.is_integral:
            if isinstance(value, complex) or not float(value).is_integer():
                raise TypeError(f"{value!r} is not an integer value for {st.name}")
            info = np.iinfo(st.numpy_dtype)
            if not (info.min <= int(value) <= info.max):
                raise OverflowError(f"{value!r} does not fit in {st.name}")
        self._value = value
        self._dtype = st

    @property
    def value(self) -> Number:
        return self._value

    @property
    def dtype(self) -> ScalarType:
        return self._dtype

    def to_numpy(self) -> np.ndarray:
        """0-d array holding the value in its element type."""
        return np.asarray(self._value, dtype=self._dtype.numpy_dtype)

    def item(self) -> Number:
        return self.to_numpy().item()

    def __float__(self) -> float:
        return float(self._value)

    def __int__(self) -> int:
        return int(self._value)

    def __bool__(self) -> bool:
        return bool(self._value)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Scalar):
            return (self._value, self._dtype) == (other._value, other._dtype)
        return NotImplemented

    def __hash__(self) -> int:
        return hash((self._value, self._dtype))

    def __repr__(self) -> str:
        return f"Scalar({self._value!r}, dtype={self._dtype.name})"


def as_scalar(value: Any, dtype: Optional[ScalarType] = None) -> Scalar:
    return value if isinstance(value, Scalar) and dtype is None else Scalar(value, dtype)
