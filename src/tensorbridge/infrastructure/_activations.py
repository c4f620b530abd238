"""
Activation functions and their module wrappers.

Functional forms take a tensor and return a tensor. Elementwise activations
with a closed-form derivative go through `Tensor._unary_op`, which evaluates
the forward in NumPy and records the derivative; the normalizing ones
(softmax family) reuse the tensor reductions.

Module forms are thin `Module` subclasses holding the hyperparameters. Those
that accept `inplace=True` overwrite the input and return it.
"""

from __future__ import annotations

import math
from typing import Optional

import numpy as np

from ..domain._errors import ShapeError
from ._module import Module
from .tensor._tensor import Tensor
from .tensor.mixins._unary import erf

_SELU_ALPHA = 1.6732632423543772848170429916717
_SELU_SCALE = 1.0507009873554804934193349852946


def _inplace(x: Tensor, fn, name: str) -> Tensor:
    return x._apply_inplace(fn, name=name)


# ----------------------------------------------------------------------
# rectifiers
# ----------------------------------------------------------------------
def relu(x: Tensor, inplace: bool = False) -> Tensor:
    if inplace:
        return x.relu_()
    return x.relu()


def relu6(x: Tensor, inplace: bool = False) -> Tensor:
    return hardtanh(x, 0.0, 6.0, inplace)


def leaky_relu(x: Tensor, negative_slope: float = 0.01, inplace: bool = False) -> Tensor:
    def op(t: Tensor) -> Tensor:
        return t._unary_op(
            "leaky_relu",
            lambda a: np.where(a > 0, a, a * negative_slope),
            lambda g, a, o: np.where(a > 0, g, g * negative_slope),
        )

    return _inplace(x, op, "leaky_relu_") if inplace else op(x)


def rrelu(
    x: Tensor,
    lower: float = 1.0 / 8,
    upper: float = 1.0 / 3,
    training: bool = False,
    inplace: bool = False,
) -> Tensor:
    """
    Randomized leaky ReLU: negative inputs are scaled by a slope drawn from
    U(lower, upper) per element in training, by `(lower + upper) / 2` otherwise.
    """
    if not 0 <= lower <= upper:
        raise ValueError(f"rrelu expects 0 <= lower <= upper, got lower={lower}, upper={upper}")
    if not training:
        return leaky_relu(x, (lower + upper) / 2, inplace)
    slope = np.random.uniform(lower, upper, size=x.shape)

    def op(t: Tensor) -> Tensor:
        return t._unary_op(
            "rrelu",
            lambda a: np.where(a >= 0, a, a * slope),
            lambda g, a, o: np.where(a >= 0, g, g * slope),
        )

    return _inplace(x, op, "rrelu_") if inplace else op(x)


def elu(x: Tensor, alpha: float = 1.0, inplace: bool = False) -> Tensor:
    def op(t: Tensor) -> Tensor:
        return t._unary_op(
            "elu",
            lambda a: np.where(a > 0, a, alpha * np.expm1(np.minimum(a, 0))),
            lambda g, a, o: np.where(a > 0, g, g * (o + alpha)),
        )

    return _inplace(x, op, "elu_") if inplace else op(x)


def celu(x: Tensor, alpha: float = 1.0, inplace: bool = False) -> Tensor:
    if alpha == 0:
        raise ValueError("celu alpha must be nonzero")

    def op(t: Tensor) -> Tensor:
        return t._unary_op(
            "celu",
            lambda a: np.maximum(a, 0) + np.minimum(0, alpha * np.expm1(np.minimum(a, 0) / alpha)),
            lambda g, a, o: np.where(a > 0, g, g * np.exp(np.minimum(a, 0) / alpha)),
        )

    return _inplace(x, op, "celu_") if inplace else op(x)


def selu(x: Tensor, inplace: bool = False) -> Tensor:
    a_, s_ = _SELU_ALPHA, _SELU_SCALE

    def op(t: Tensor) -> Tensor:
        return t._unary_op(
            "selu",
            lambda a: s_ * np.where(a > 0, a, a_ * np.expm1(np.minimum(a, 0))),
            lambda g, a, o: np.where(a > 0, g * s_, g * (o + s_ * a_)),
        )

    return _inplace(x, op, "selu_") if inplace else op(x)


def gelu(x: Tensor, approximate: str = "none") -> Tensor:
    """
    Gaussian error linear unit; `approximate="tanh"` uses the tanh form.
    """
    if approximate == "none":
        inv_sqrt2 = 1.0 / math.sqrt(2.0)
        inv_sqrt2pi = 1.0 / math.sqrt(2.0 * math.pi)
        return x._unary_op(
            "gelu",
            lambda a: 0.5 * a * (1.0 + erf(a * inv_sqrt2)),
            lambda g, a, o: g
            * (0.5 * (1.0 + erf(a * inv_sqrt2)) + a * inv_sqrt2pi * np.exp(-0.5 * a * a)),
        )
    if approximate == "tanh":
        k = math.sqrt(2.0 / math.pi)

        def grad(g, a, o):
            inner = k * (a + 0.044715 * a**3)
            th = np.tanh(inner)
            d_inner = k * (1.0 + 3 * 0.044715 * a * a)
            return g * (0.5 * (1.0 + th) + 0.5 * a * (1.0 - th * th) * d_inner)

        return x._unary_op(
            "gelu",
            lambda a: 0.5 * a * (1.0 + np.tanh(k * (a + 0.044715 * a**3))),
            grad,
        )
    raise ValueError(f"approximate must be 'none' or 'tanh', got {approximate!r}")


def hardtanh(x: Tensor, min_val: float = -1.0, max_val: float = 1.0, inplace: bool = False) -> Tensor:
    if max_val <= min_val:
        raise ValueError("hardtanh max_val must be greater than min_val")

    def op(t: Tensor) -> Tensor:
        return t._unary_op(
            "hardtanh",
            lambda a: np.clip(a, min_val, max_val).astype(a.dtype, copy=False),
            lambda g, a, o: g * ((a > min_val) & (a < max_val)),
            floating=False,
        )

    return _inplace(x, op, "hardtanh_") if inplace else op(x)


def threshold(x: Tensor, threshold: float, value: float, inplace: bool = False) -> Tensor:
    """`x` where `x > threshold`, else `value`."""

    def op(t: Tensor) -> Tensor:
        return t._unary_op(
            "threshold",
            lambda a: np.where(a > threshold, a, value).astype(a.dtype, copy=False),
            lambda g, a, o: g * (a > threshold),
            floating=False,
        )

    return _inplace(x, op, "threshold_") if inplace else op(x)


# ----------------------------------------------------------------------
# smooth gates
# ----------------------------------------------------------------------
def sigmoid(x: Tensor) -> Tensor:
    return x.sigmoid()


def tanh(x: Tensor) -> Tensor:
    return x.tanh()


def silu(x: Tensor, inplace: bool = False) -> Tensor:
    def op(t: Tensor) -> Tensor:
        def sig(a):
            return 0.5 * (1.0 + np.tanh(0.5 * a))

        return t._unary_op(
            "silu",
            lambda a: a * sig(a),
            lambda g, a, o: g * (sig(a) * (1.0 + a * (1.0 - sig(a)))),
        )

    return _inplace(x, op, "silu_") if inplace else op(x)


def _softplus_np(a, beta=1.0, threshold=20.0):
    z = a * beta
    return np.where(z > threshold, a, np.logaddexp(0.0, z) / beta)


def softplus(x: Tensor, beta: float = 1.0, threshold: float = 20.0) -> Tensor:
    return x._unary_op(
        "softplus",
        lambda a: _softplus_np(a, beta, threshold),
        lambda g, a, o: np.where(a * beta > threshold, g, g * (0.5 * (1.0 + np.tanh(0.5 * a * beta)))),
    )


def mish(x: Tensor, inplace: bool = False) -> Tensor:
    """`x * tanh(softplus(x))`."""

    def op(t: Tensor) -> Tensor:
        def grad(g, a, o):
            sp = _softplus_np(a)
            tsp = np.tanh(sp)
            sig = 0.5 * (1.0 + np.tanh(0.5 * a))
            return g * (tsp + a * (1.0 - tsp * tsp) * sig)

        return t._unary_op("mish", lambda a: a * np.tanh(_softplus_np(a)), grad)

    return _inplace(x, op, "mish_") if inplace else op(x)


def hardsigmoid(x: Tensor, inplace: bool = False) -> Tensor:
    def op(t: Tensor) -> Tensor:
        return t._unary_op(
            "hardsigmoid",
            lambda a: np.clip(a / 6.0 + 0.5, 0.0, 1.0),
            lambda g, a, o: np.where((a > -3.0) & (a < 3.0), g / 6.0, 0.0),
        )

    return _inplace(x, op, "hardsigmoid_") if inplace else op(x)


def hardswish(x: Tensor, inplace: bool = False) -> Tensor:
    def op(t: Tensor) -> Tensor:
        return t._unary_op(
            "hardswish",
            lambda a: a * np.clip(a + 3.0, 0.0, 6.0) / 6.0,
            lambda g, a, o: np.where(a < -3.0, 0.0, np.where(a > 3.0, g, g * (2.0 * a + 3.0) / 6.0)),
        )

    return _inplace(x, op, "hardswish_") if inplace else op(x)


def softsign(x: Tensor) -> Tensor:
    return x._unary_op(
        "softsign",
        lambda a: a / (1.0 + np.abs(a)),
        lambda g, a, o: g / (1.0 + np.abs(a)) ** 2,
    )


def tanhshrink(x: Tensor) -> Tensor:
    return x - x.tanh()


# ----------------------------------------------------------------------
# normalizing
# ----------------------------------------------------------------------
def _default_softmax_dim(ndim: int) -> int:
    return 0 if ndim in (0, 1, 3) else 1


def softmax(x: Tensor, dim: Optional[int] = None) -> Tensor:
    return x.softmax(_default_softmax_dim(x.ndim) if dim is None else dim)


def log_softmax(x: Tensor, dim: Optional[int] = None) -> Tensor:
    return x.log_softmax(_default_softmax_dim(x.ndim) if dim is None else dim)


def softmin(x: Tensor, dim: Optional[int] = None) -> Tensor:
    return (-x).softmax(_default_softmax_dim(x.ndim) if dim is None else dim)


# ----------------------------------------------------------------------
# modules
# ----------------------------------------------------------------------
class ReLU(Module):
    def __init__(self, inplace: bool = False) -> None:
        super().__init__()
        self.inplace = inplace

    def forward(self, x: Tensor) -> Tensor:
        return relu(x, self.inplace)

    def extra_repr(self) -> str:
        return "inplace=True" if self.inplace else ""


class ReLU6(ReLU):
    def forward(self, x: Tensor) -> Tensor:
        return relu6(x, self.inplace)


class LeakyReLU(Module):
    """
    Leaky ReLU: `x` if `x > 0`, else `negative_slope * x`.
    """

    def __init__(self, negative_slope: float = 0.01, inplace: bool = False) -> None:
        super().__init__()
        self.negative_slope = float(negative_slope)
        self.inplace = inplace

    def forward(self, x: Tensor) -> Tensor:
        return leaky_relu(x, self.negative_slope, self.inplace)

    def extra_repr(self) -> str:
        return f"negative_slope={self.negative_slope}"


class RReLU(Module):
    def __init__(self, lower: float = 1.0 / 8, upper: float = 1.0 / 3, inplace: bool = False) -> None:
        super().__init__()
        if not 0 <= lower <= upper:
            raise ValueError(f"RReLU expects 0 <= lower <= upper, got {lower}, {upper}")
        self.lower = lower
        self.upper = upper
        self.inplace = inplace

    def forward(self, x: Tensor) -> Tensor:
        return rrelu(x, self.lower, self.upper, self.training, self.inplace)


class ELU(Module):
    def __init__(self, alpha: float = 1.0, inplace: bool = False) -> None:
        super().__init__()
        self.alpha = alpha
        self.inplace = inplace

    def forward(self, x: Tensor) -> Tensor:
        return elu(x, self.alpha, self.inplace)


class CELU(Module):
    def __init__(self, alpha: float = 1.0, inplace: bool = False) -> None:
        super().__init__()
        if alpha == 0:
            raise ValueError("CELU alpha must be nonzero")
        self.alpha = alpha
        self.inplace = inplace

    def forward(self, x: Tensor) -> Tensor:
        return celu(x, self.alpha, self.inplace)


class SELU(Module):
    def __init__(self, inplace: bool = False) -> None:
        super().__init__()
        self.inplace = inplace

    def forward(self, x: Tensor) -> Tensor:
        return selu(x, self.inplace)


class GELU(Module):
    def __init__(self, approximate: str = "none") -> None:
        super().__init__()
        if approximate not in ("none", "tanh"):
            raise ValueError(f"approximate must be 'none' or 'tanh', got {approximate!r}")
        self.approximate = approximate

    def forward(self, x: Tensor) -> Tensor:
        return gelu(x, self.approximate)


class Sigmoid(Module):
    def forward(self, x: Tensor) -> Tensor:
        return x.sigmoid()


class Tanh(Module):
    def forward(self, x: Tensor) -> Tensor:
        return x.tanh()


class SiLU(Module):
    def __init__(self, inplace: bool = False) -> None:
        super().__init__()
        self.inplace = inplace

    def forward(self, x: Tensor) -> Tensor:
        return silu(x, self.inplace)


class Mish(SiLU):
    def forward(self, x: Tensor) -> Tensor:
        return mish(x, self.inplace)


class Hardtanh(Module):
    def __init__(self, min_val: float = -1.0, max_val: float = 1.0, inplace: bool = False) -> None:
        super().__init__()
        if max_val <= min_val:
            raise ValueError("Hardtanh max_val must be greater than min_val")
        self.min_val = min_val
        self.max_val = max_val
        self.inplace = inplace

    def forward(self, x: Tensor) -> Tensor:
        return hardtanh(x, self.min_val, self.max_val, self.inplace)


class Hardsigmoid(SiLU):
    def forward(self, x: Tensor) -> Tensor:
        return hardsigmoid(x, self.inplace)


class Hardswish(SiLU):
    def forward(self, x: Tensor) -> Tensor:
        return hardswish(x, self.inplace)


class Softplus(Module):
    def __init__(self, beta: float = 1.0, threshold: float = 20.0) -> None:
        super().__init__()
        self.beta = beta
        self.threshold = threshold

    def forward(self, x: Tensor) -> Tensor:
        return softplus(x, self.beta, self.threshold)


class Softsign(Module):
    def forward(self, x: Tensor) -> Tensor:
        return softsign(x)


class Tanhshrink(Module):
    def forward(self, x: Tensor) -> Tensor:
        return tanhshrink(x)


class Threshold(Module):
    def __init__(self, threshold: float, value: float, inplace: bool = False) -> None:
        super().__init__()
        self.threshold = threshold
        self.value = value
        self.inplace = inplace

    def forward(self, x: Tensor) -> Tensor:
        return threshold(x, self.threshold, self.value, self.inplace)


class Softmax(Module):
    """
    Softmax over `dim`.
    """

    def __init__(self, dim: Optional[int] = None) -> None:
        super().__init__()
        self.dim = dim

    def forward(self, x: Tensor) -> Tensor:
        return softmax(x, self.dim)

    def extra_repr(self) -> str:
        return f"dim={self.dim}"


class LogSoftmax(Softmax):
    def forward(self, x: Tensor) -> Tensor:
        return log_softmax(x, self.dim)


class Softmin(Softmax):
    def forward(self, x: Tensor) -> Tensor:
        return softmin(x, self.dim)


class Softmax2d(Module):
    """Softmax over the channel dimension of (C, H, W) or (N, C, H, W) input."""

    def forward(self, x: Tensor) -> Tensor:
        if x.ndim not in (3, 4):
            raise ShapeError(
                "Softmax2d expects 3-D or 4-D input", expected="3 or 4", actual=x.ndim
            )
        return x.softmax(-3)
