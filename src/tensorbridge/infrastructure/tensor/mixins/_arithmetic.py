"""
Arithmetic operators for Tensor.

Binary operators broadcast their operands (NumPy rules), promote element
types with `promote_types`, and record a backward context whose gradients
are shaped like the output; the autograd engine reduces them back to each
operand's shape.

In-place variants (`add_`, `sub_`, `mul_`, `div_`) run the out-of-place
operator and write the result back through `Tensor._apply_inplace`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Optional, Tuple

import numpy as np

from ....domain._dtype import ScalarType, promote_types
from ....domain._errors import ShapeError
from ..._config import get_config
from ...autograd._engine import sum_to_shape

if TYPE_CHECKING:
    from .._tensor import Tensor

BackwardRule = Callable[
    [np.ndarray, np.ndarray, np.ndarray, np.ndarray],
    Tuple[Optional[np.ndarray], Optional[np.ndarray]],
]


def _float_result(st: ScalarType) -> ScalarType:
    if st.is_floating_point or st.is_complex:
        return st
    return get_config().default_dtype


class TensorMixinArithmetic:
    """
    Elementwise arithmetic and matrix products.
    """

    def _binary_op(
        self: "Tensor",
        other: Any,
        name: str,
        forward: Callable[[np.ndarray, np.ndarray], np.ndarray],
        backward: Optional[BackwardRule],
        *,
        reflected: bool = False,
        true_division: bool = False,
    ) -> "Tensor":
        a = self
        b = self._as_tensor_like(other, self)
        if reflected:
            a, b = b, a
        self._binary_op_shape_check(a, b)

        st = promote_types(a.dtype, b.dtype)
        if true_division:
            st = _float_result(st)
        x = a._array.astype(st.numpy_dtype, copy=False)
        y = b._array.astype(st.numpy_dtype, copy=False)
        with np.errstate(divide="ignore", invalid="ignore"):
            out = np.asarray(forward(x, y))

        backward_fn = None
        if backward is not None and (st.is_floating_point or st.is_complex):

            def backward_fn(g):
                with np.errstate(divide="ignore", invalid="ignore"):
                    return backward(g.to_numpy(), x, y, out)

        return self._wrap_result(out, (a, b), backward_fn, name=name, dtype=st)

    # ------------------------------------------------------------------
    # + - * /
    # ------------------------------------------------------------------
    def __add__(self, other: Any) -> "Tensor":
        return self._binary_op(other, "add", np.add, lambda g, x, y, o: (g, g))

    def __radd__(self, other: Any) -> "Tensor":
        return self._binary_op(
            other, "add", np.add, lambda g, x, y, o: (g, g), reflected=True
        )

    def __sub__(self, other: Any) -> "Tensor":
        if self.dtype is ScalarType.Bool:
            raise TypeError("subtraction of bool tensors is not supported; use logical_xor")
        return self._binary_op(other, "sub", np.subtract, lambda g, x, y, o: (g, -g))

    def __rsub__(self, other: Any) -> "Tensor":
        return self._binary_op(
            other, "sub", np.subtract, lambda g, x, y, o: (g, -g), reflected=True
        )

    def __mul__(self, other: Any) -> "Tensor":
        return self._binary_op(
            other, "mul", np.multiply, lambda g, x, y, o: (g * y, g * x)
        )

    def __rmul__(self, other: Any) -> "Tensor":
        return self._binary_op(
            other,
            "mul",
            np.multiply,
            lambda g, x, y, o: (g * y, g * x),
            reflected=True,
        )

    def __truediv__(self, other: Any) -> "Tensor":
        return self._binary_op(
            other,
            "div",
            np.true_divide,
            lambda g, x, y, o: (g / y, -g * x / (y * y)),
            true_division=True,
        )

    def __rtruediv__(self, other: Any) -> "Tensor":
        return self._binary_op(
            other,
            "div",
            np.true_divide,
            lambda g, x, y, o: (g / y, -g * x / (y * y)),
            reflected=True,
            true_division=True,
        )

    def __floordiv__(self, other: Any) -> "Tensor":
        return self._binary_op(other, "floor_divide", np.floor_divide, None)

    def __rfloordiv__(self, other: Any) -> "Tensor":
        return self._binary_op(
            other, "floor_divide", np.floor_divide, None, reflected=True
        )

    def __mod__(self, other: Any) -> "Tensor":
        return self._binary_op(
            other,
            "remainder",
            np.mod,
            lambda g, x, y, o: (g, -g * np.floor_divide(x, y)),
        )

    def __rmod__(self, other: Any) -> "Tensor":
        return self._binary_op(
            other,
            "remainder",
            np.mod,
            lambda g, x, y, o: (g, -g * np.floor_divide(x, y)),
            reflected=True,
        )

    def __pow__(self, other: Any) -> "Tensor":
        return self._binary_op(other, "pow", np.power, _pow_backward)

    def __rpow__(self, other: Any) -> "Tensor":
        return self._binary_op(other, "pow", np.power, _pow_backward, reflected=True)

    def __neg__(self) -> "Tensor":
        if self.dtype is ScalarType.Bool:
            raise TypeError("negation of a bool tensor is not supported; use logical_not")
        return self._wrap_result(
            np.negative(self._array), (self,), lambda g: (-g.to_numpy(),), name="neg"
        )

    def __pos__(self) -> "Tensor":
        return self

    def __abs__(self) -> "Tensor":
        return self.abs()

    def add(self, other: Any, alpha: Any = 1) -> "Tensor":
        return self + (other * alpha if alpha != 1 else other)

    def sub(self, other: Any, alpha: Any = 1) -> "Tensor":
        return self - (other * alpha if alpha != 1 else other)

    def mul(self, other: Any) -> "Tensor":
        return self * other

    def div(self, other: Any) -> "Tensor":
        return self / other

    def pow(self, exponent: Any) -> "Tensor":
        return self**exponent

    def square(self) -> "Tensor":
        return self * self

    # ------------------------------------------------------------------
    # in-place
    # ------------------------------------------------------------------
    def add_(self, other: Any, alpha: Any = 1) -> "Tensor":
        return self._apply_inplace(lambda a, b: a.add(b, alpha), other, name="add_")

    def sub_(self, other: Any, alpha: Any = 1) -> "Tensor":
        return self._apply_inplace(lambda a, b: a.sub(b, alpha), other, name="sub_")

    def mul_(self, other: Any) -> "Tensor":
        return self._apply_inplace(lambda a, b: a * b, other, name="mul_")

    def div_(self, other: Any) -> "Tensor":
        return self._apply_inplace(lambda a, b: a / b, other, name="div_")

    def __iadd__(self, other: Any) -> "Tensor":
        return self.add_(other)

    def __isub__(self, other: Any) -> "Tensor":
        return self.sub_(other)

    def __imul__(self, other: Any) -> "Tensor":
        return self.mul_(other)

    def __itruediv__(self, other: Any) -> "Tensor":
        return self.div_(other)

    # ------------------------------------------------------------------
    # matrix products
    # ------------------------------------------------------------------
    def matmul(self: "Tensor", other: "Tensor") -> "Tensor":
        """
        Matrix product with NumPy `matmul` semantics (1-D operands are
        promoted and the added axis removed, batch dims broadcast).

        Raises
        ------
        ShapeError
            For 0-d operands or mismatched contraction dims.
        """
        other = self._as_tensor_like(other, self)
        self._check_same_device(self, other)
        if self.ndim == 0 or other.ndim == 0:
            raise ShapeError(
                "matmul operands must have at least one dimension",
                expected=">= 1",
                actual=(self.ndim, other.ndim),
            )
        k_left = self.shape[-1]
        k_right = other.shape[-2] if other.ndim >= 2 else other.shape[0]
        if k_left != k_right:
            raise ShapeError(
                "matmul contraction dimensions differ",
                expected=k_left,
                actual=k_right,
            )
        st = promote_types(self.dtype, other.dtype)
        x = self._array.astype(st.numpy_dtype, copy=False)
        y = other._array.astype(st.numpy_dtype, copy=False)
        try:
            out = np.matmul(x, y)
        except ValueError as e:
            raise ShapeError(f"matmul batch dimensions do not broadcast: {e}") from None

        def backward_fn(g):
            x2 = x[None, :] if x.ndim == 1 else x
            y2 = y[:, None] if y.ndim == 1 else y
            g2 = g.to_numpy().reshape(np.matmul(x2, y2).shape)
            gx = np.matmul(g2, np.swapaxes(y2, -1, -2).conj())
            gy = np.matmul(np.swapaxes(x2, -1, -2).conj(), g2)
            gx = sum_to_shape(gx, x2.shape).reshape(x.shape)
            gy = sum_to_shape(gy, y2.shape).reshape(y.shape)
            return (gx, gy)

        grad_ok = st.is_floating_point or st.is_complex
        return self._wrap_result(
            out, (self, other), backward_fn if grad_ok else None, name="matmul", dtype=st
        )

    def __matmul__(self, other: "Tensor") -> "Tensor":
        return self.matmul(other)

    def __rmatmul__(self, other: Any) -> "Tensor":
        return self._as_tensor_like(other, self).matmul(self)

    def mm(self: "Tensor", other: "Tensor") -> "Tensor":
        if self.ndim != 2 or other.ndim != 2:
            raise ShapeError("mm expects 2-D operands", expected=2, actual=(self.ndim, other.ndim))
        return self.matmul(other)

    def bmm(self: "Tensor", other: "Tensor") -> "Tensor":
        if self.ndim != 3 or other.ndim != 3:
            raise ShapeError("bmm expects 3-D operands", expected=3, actual=(self.ndim, other.ndim))
        if self.shape[0] != other.shape[0]:
            raise ShapeError(
                "bmm batch sizes differ", dim=0, expected=self.shape[0], actual=other.shape[0]
            )
        return self.matmul(other)


def _pow_backward(g, x, y, out):
    gx = np.where(y == 0, 0, g * y * np.power(x, y - 1))
    if np.iscomplexobj(x):
        gy = g * out * np.log(x)
    else:
        gy = np.where(x > 0, g * out * np.log(np.where(x > 0, x, 1)), 0)
    return gx, gy
