"""
Elementwise unary math for Tensor.

Functions that are only defined over the reals/complex (exp, log, sin...)
compute integer inputs in the default floating type. Half-precision inputs
are evaluated in float32 and cast back.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Optional

import numpy as np

from ....domain._dtype import ScalarType
from ..._config import get_config

if TYPE_CHECKING:
    from .._tensor import Tensor

_LOW_PRECISION = (ScalarType.Float16, ScalarType.BFloat16)

GradRule = Callable[[np.ndarray, np.ndarray, np.ndarray], np.ndarray]


def erf(x: np.ndarray) -> np.ndarray:
    """
    Error function (Abramowitz and Stegun 7.1.26, |error| < 1.5e-7).
    """
    x = np.asarray(x, dtype=np.float64)
    sign = np.sign(x)
    a = np.abs(x)
    t = 1.0 / (1.0 + 0.3275911 * a)
    poly = t * (
        0.254829592
        + t * (-0.284496736 + t * (1.421413741 + t * (-1.453152027 + t * 1.061405429)))
    )
    return sign * (1.0 - poly * np.exp(-a * a))


class TensorMixinUnary:
    """
    Elementwise unary functions with their derivatives.
    """

    def _unary_op(
        self: "Tensor",
        name: str,
        forward: Callable[[np.ndarray], np.ndarray],
        grad_rule: Optional[GradRule],
        *,
        floating: bool = True,
    ) -> "Tensor":
        st = self.dtype
        compute = st
        if floating and not (st.is_floating_point or st.is_complex):
            st = compute = get_config().default_dtype
        if compute in _LOW_PRECISION:
            compute = ScalarType.Float32
        x = self._array.astype(compute.numpy_dtype, copy=False)
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            out = np.asarray(forward(x))

        backward_fn = None
        if grad_rule is not None and (st.is_floating_point or st.is_complex):

            def backward_fn(g):
                with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
                    return (grad_rule(g.to_numpy(), x, out),)

        return self._wrap_result(out, (self,), backward_fn, name=name, dtype=st)

    def exp(self) -> "Tensor":
        return self._unary_op("exp", np.exp, lambda g, x, o: g * o)

    def log(self) -> "Tensor":
        return self._unary_op("log", np.log, lambda g, x, o: g / x)

    def log1p(self) -> "Tensor":
        return self._unary_op("log1p", np.log1p, lambda g, x, o: g / (1 + x))

    def log2(self) -> "Tensor":
        return self._unary_op("log2", np.log2, lambda g, x, o: g / (x * np.log(2.0)))

    def sqrt(self) -> "Tensor":
        return self._unary_op("sqrt", np.sqrt, lambda g, x, o: g * 0.5 / o)

    def rsqrt(self) -> "Tensor":
        return self._unary_op(
            "rsqrt", lambda x: 1.0 / np.sqrt(x), lambda g, x, o: -0.5 * g * o**3
        )

    def sin(self) -> "Tensor":
        return self._unary_op("sin", np.sin, lambda g, x, o: g * np.cos(x))

    def cos(self) -> "Tensor":
        return self._unary_op("cos", np.cos, lambda g, x, o: -g * np.sin(x))

    def tan(self) -> "Tensor":
        return self._unary_op("tan", np.tan, lambda g, x, o: g * (1 + o * o))

    def tanh(self) -> "Tensor":
        return self._unary_op("tanh", np.tanh, lambda g, x, o: g * (1 - o * o))

    def sigmoid(self) -> "Tensor":
        def fwd(x):
            # split by sign so exp never overflows
            pos = x >= 0
            z = np.exp(np.where(pos, -x, x))
            return np.where(pos, 1 / (1 + z), z / (1 + z))

        return self._unary_op("sigmoid", fwd, lambda g, x, o: g * o * (1 - o))

    def relu(self) -> "Tensor":
        return self._unary_op(
            "relu",
            lambda x: np.maximum(x, 0),
            lambda g, x, o: g * (x > 0),
            floating=False,
        )

    def abs(self) -> "Tensor":
        return self._unary_op(
            "abs",
            np.abs,
            lambda g, x, o: g * np.sign(x),
            floating=False,
        )

    def sign(self) -> "Tensor":
        return self._unary_op(
            "sign", np.sign, lambda g, x, o: np.zeros_like(g), floating=False
        )

    def neg(self) -> "Tensor":
        return -self

    def reciprocal(self) -> "Tensor":
        return self._unary_op("reciprocal", lambda x: 1.0 / x, lambda g, x, o: -g * o * o)

    def erf(self) -> "Tensor":
        return self._unary_op(
            "erf",
            erf,
            lambda g, x, o: g * (2.0 / np.sqrt(np.pi)) * np.exp(-x * x),
        )

    def floor(self) -> "Tensor":
        return self._unary_op("floor", np.floor, lambda g, x, o: np.zeros_like(g), floating=False)

    def ceil(self) -> "Tensor":
        return self._unary_op("ceil", np.ceil, lambda g, x, o: np.zeros_like(g), floating=False)

    def round(self) -> "Tensor":
        return self._unary_op("round", np.round, lambda g, x, o: np.zeros_like(g), floating=False)

    def clamp(self, min: Any = None, max: Any = None) -> "Tensor":
        """
        Limit values to `[min, max]`. The gradient flows only where the input
        was inside the range.
        """
        if min is None and max is None:
            raise ValueError("clamp requires at least one of `min` or `max`")
        lo = -np.inf if min is None else min
        hi = np.inf if max is None else max
        return self._unary_op(
            "clamp",
            lambda x: np.clip(x, lo, hi).astype(x.dtype, copy=False),
            lambda g, x, o: g * ((x >= lo) & (x <= hi)),
            floating=False,
        )

    clip = clamp

    def clamp_(self, min: Any = None, max: Any = None) -> "Tensor":
        return self._apply_inplace(lambda a: a.clamp(min, max), name="clamp_")

    def relu_(self) -> "Tensor":
        return self._apply_inplace(lambda a: a.relu(), name="relu_")

    def exp_(self) -> "Tensor":
        return self._apply_inplace(lambda a: a.exp(), name="exp_")

    def real(self) -> "Tensor":
        if not self.dtype.is_complex:
            return self
        st = ScalarType.Float64 if self.dtype is ScalarType.ComplexFloat64 else ScalarType.Float32
        return self._wrap_result(
            np.real(self._array).copy(), (self,), lambda g: (g.to_numpy(),), name="real", dtype=st
        )
