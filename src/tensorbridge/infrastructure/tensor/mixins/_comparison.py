"""
Comparison, logical and selection operators for Tensor.

Comparisons broadcast like arithmetic and return Bool tensors that never
require grad.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

import numpy as np

from ....domain._dtype import ScalarType, promote_types
from ....domain._errors import ShapeError

if TYPE_CHECKING:
    from .._tensor import Tensor


class TensorMixinComparison:
    def _compare(
        self: "Tensor",
        other: Any,
        op: Callable[[np.ndarray, np.ndarray], np.ndarray],
        name: str,
    ) -> "Tensor":
        b = self._as_tensor_like(other, self)
        self._binary_op_shape_check(self, b)
        st = promote_types(self.dtype, b.dtype)
        x = self._array.astype(st.numpy_dtype, copy=False)
        y = b._array.astype(st.numpy_dtype, copy=False)
        with np.errstate(invalid="ignore"):
            out = np.asarray(op(x, y), dtype=np.bool_)
        return self._wrap_result(out, (self, b), None, name=name, dtype=ScalarType.Bool)

    def eq(self, other: Any) -> "Tensor":
        return self._compare(other, np.equal, "eq")

    def ne(self, other: Any) -> "Tensor":
        return self._compare(other, np.not_equal, "ne")

    def lt(self, other: Any) -> "Tensor":
        return self._compare(other, np.less, "lt")

    def le(self, other: Any) -> "Tensor":
        return self._compare(other, np.less_equal, "le")

    def gt(self, other: Any) -> "Tensor":
        return self._compare(other, np.greater, "gt")

    def ge(self, other: Any) -> "Tensor":
        return self._compare(other, np.greater_equal, "ge")

    __eq__ = eq  # type: ignore[assignment]
    __ne__ = ne  # type: ignore[assignment]
    __lt__ = lt
    __le__ = le
    __gt__ = gt
    __ge__ = ge

    def equal(self: "Tensor", other: "Tensor") -> bool:
        """True if both tensors have the same shape and elements."""
        return self.shape == other.shape and bool(np.array_equal(self._array, other._array))

    def allclose(
        self: "Tensor", other: Any, rtol: float = 1e-5, atol: float = 1e-8, equal_nan: bool = False
    ) -> bool:
        b = self._as_tensor_like(other, self)
        self._binary_op_shape_check(self, b)
        return bool(np.allclose(self._array, b._array, rtol=rtol, atol=atol, equal_nan=equal_nan))

    def isclose(
        self: "Tensor", other: Any, rtol: float = 1e-5, atol: float = 1e-8, equal_nan: bool = False
    ) -> "Tensor":
        return self._compare(
            other,
            lambda x, y: np.isclose(x, y, rtol=rtol, atol=atol, equal_nan=equal_nan),
            "isclose",
        )

    def isnan(self: "Tensor") -> "Tensor":
        return self._wrap_result(np.isnan(self._array), (self,), None, name="isnan")

    def isinf(self: "Tensor") -> "Tensor":
        return self._wrap_result(np.isinf(self._array), (self,), None, name="isinf")

    def isfinite(self: "Tensor") -> "Tensor":
        return self._wrap_result(np.isfinite(self._array), (self,), None, name="isfinite")

    # ------------------------------------------------------------------
    # logical
    # ------------------------------------------------------------------
    def logical_not(self: "Tensor") -> "Tensor":
        return self._wrap_result(np.logical_not(self._array), (self,), None, name="logical_not")

    def logical_and(self, other: Any) -> "Tensor":
        return self._compare(other, np.logical_and, "logical_and")

    def logical_or(self, other: Any) -> "Tensor":
        return self._compare(other, np.logical_or, "logical_or")

    def logical_xor(self, other: Any) -> "Tensor":
        return self._compare(other, np.logical_xor, "logical_xor")

    def __invert__(self: "Tensor") -> "Tensor":
        if self.dtype is ScalarType.Bool:
            return self.logical_not()
        if not self.dtype.is_integral:
            raise TypeError("~ is only supported for integer and bool tensors")
        return self._wrap_result(np.invert(self._array), (self,), None, name="bitwise_not")

    def __and__(self, other: Any) -> "Tensor":
        return self._compare(other, np.logical_and, "logical_and")

    def __or__(self, other: Any) -> "Tensor":
        return self._compare(other, np.logical_or, "logical_or")

    def __xor__(self, other: Any) -> "Tensor":
        return self._compare(other, np.logical_xor, "logical_xor")

    # ------------------------------------------------------------------
    # selection
    # ------------------------------------------------------------------
    def _mask_of(self: "Tensor", mask: Any) -> np.ndarray:
        m = mask._array if hasattr(mask, "_array") else np.asarray(mask)
        if m.dtype != np.bool_:
            raise TypeError(f"mask must be a Bool tensor, got {m.dtype}")
        try:
            np.broadcast_shapes(m.shape, self.shape)
        except ValueError:
            raise ShapeError(
                "mask does not broadcast against the tensor",
                expected=self.shape,
                actual=m.shape,
            ) from None
        return m

    def where(self: "Tensor", condition: Any, other: Any) -> "Tensor":
        """Elements of self where `condition` holds, else of `other`."""
        from .._join import where

        return where(condition, self, other)

    def masked_fill(self: "Tensor", mask: Any, value: Any) -> "Tensor":
        """
        Copy of self with `value` written wherever `mask` is True.

        The gradient is zero at filled positions.
        """
        m = self._mask_of(mask)
        v = value.item() if hasattr(value, "item") and not isinstance(value, (int, float)) else value
        fill = np.asarray(v).astype(self.dtype.numpy_dtype)
        out = np.where(m, fill, self._array)
        if out.shape != self.shape:
            raise ShapeError(
                "masked_fill mask must broadcast to the tensor's shape",
                expected=self.shape,
                actual=m.shape,
            )

        def backward_fn(g):
            return (np.where(m, 0, g.to_numpy()),)

        return self._wrap_result(out, (self,), backward_fn, name="masked_fill", dtype=self.dtype)

    def masked_fill_(self: "Tensor", mask: Any, value: Any) -> "Tensor":
        return self._apply_inplace(lambda a: a.masked_fill(mask, value), name="masked_fill_")
