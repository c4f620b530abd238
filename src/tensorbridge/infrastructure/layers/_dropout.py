"""
Dropout regularization layers.

All variants implement *inverted* dropout: during training, kept elements are
rescaled so the expected activation is unchanged, and evaluation mode is the
identity. The random mask is drawn from the global NumPy RNG and applied as
a constant factor, so gradients flow through the same mask.

Variants
--------
- `Dropout`: independent per-element mask.
- `Dropout1d/2d/3d`: one mask value per (sample, channel), zeroing whole
  feature maps.
- `AlphaDropout` / `FeatureAlphaDropout`: for SELU networks; dropped values
  are set to the SELU saturation value and an affine correction keeps the
  mean and variance.

With `inplace=True` the input tensor itself is overwritten and returned.
"""

from __future__ import annotations

import numpy as np

from ...domain._errors import ShapeError
from .._activations import _SELU_ALPHA, _SELU_SCALE
from .._module import Module
from ..tensor._tensor import Tensor


def _check_p(p: float) -> float:
    if not 0.0 <= p <= 1.0:
        raise ValueError(f"dropout probability has to be between 0 and 1, but got {p}")
    return float(p)


def _apply(x: Tensor, factor: np.ndarray, inplace: bool, name: str) -> Tensor:
    f = Tensor._from_numpy(factor.astype(x.dtype.numpy_dtype), device=x.device)

    def op(t: Tensor) -> Tensor:
        return t * f

    if inplace:
        return x._apply_inplace(op, name=name)
    return op(x)


def _feature_mask_shape(x: Tensor, nd: int, name: str) -> tuple:
    if x.ndim == nd + 2:
        return x.shape[:2] + (1,) * nd
    if x.ndim == nd + 1:
        return x.shape[:1] + (1,) * nd
    raise ShapeError(
        f"{name} expects {nd + 1}-D or {nd + 2}-D input", expected=(nd + 1, nd + 2), actual=x.ndim
    )


def dropout(x: Tensor, p: float = 0.5, training: bool = True, inplace: bool = False) -> Tensor:
    p = _check_p(p)
    if not training or p == 0.0:
        return x
    if p == 1.0:
        return _apply(x, np.zeros(x.shape), inplace, "dropout_")
    keep = np.random.random_sample(x.shape) >= p
    return _apply(x, keep / (1.0 - p), inplace, "dropout_")


def _feature_dropout(x: Tensor, nd: int, p: float, training: bool, inplace: bool, name: str) -> Tensor:
    p = _check_p(p)
    shape = _feature_mask_shape(x, nd, name)
    if not training or p == 0.0:
        return x
    if p == 1.0:
        return _apply(x, np.zeros(shape), inplace, name + "_")
    keep = np.random.random_sample(shape) >= p
    return _apply(x, keep / (1.0 - p), inplace, name + "_")


def dropout1d(x: Tensor, p: float = 0.5, training: bool = True, inplace: bool = False) -> Tensor:
    return _feature_dropout(x, 1, p, training, inplace, "dropout1d")


def dropout2d(x: Tensor, p: float = 0.5, training: bool = True, inplace: bool = False) -> Tensor:
    return _feature_dropout(x, 2, p, training, inplace, "dropout2d")


def dropout3d(x: Tensor, p: float = 0.5, training: bool = True, inplace: bool = False) -> Tensor:
    return _feature_dropout(x, 3, p, training, inplace, "dropout3d")


def _alpha(x: Tensor, mask_shape: tuple, p: float, training: bool, inplace: bool, name: str) -> Tensor:
    p = _check_p(p)
    if not training or p == 0.0:
        return x
    if p == 1.0:
        return _apply(x, np.zeros(x.shape), inplace, name)
    alpha_p = -_SELU_ALPHA * _SELU_SCALE
    a = ((1.0 - p) * (1.0 + p * alpha_p**2)) ** -0.5
    b = -a * alpha_p * p
    keep = (np.random.random_sample(mask_shape) >= p).astype(np.float64)
    # a * (x * keep + alpha_p * (1 - keep)) + b
    factor = np.broadcast_to(a * keep, x.shape)
    offset = a * alpha_p * (1.0 - keep) + b
    f = Tensor._from_numpy(factor.astype(x.dtype.numpy_dtype), device=x.device)
    o = Tensor._from_numpy(np.broadcast_to(offset, x.shape).astype(x.dtype.numpy_dtype), device=x.device)

    def op(t: Tensor) -> Tensor:
        return t * f + o

    if inplace:
        return x._apply_inplace(op, name=name)
    return op(x)


def alpha_dropout(x: Tensor, p: float = 0.5, training: bool = False, inplace: bool = False) -> Tensor:
    return _alpha(x, x.shape, p, training, inplace, "alpha_dropout_")


def feature_alpha_dropout(x: Tensor, p: float = 0.5, training: bool = False, inplace: bool = False) -> Tensor:
    if x.ndim < 2:
        raise ShapeError("feature_alpha_dropout expects at least 2-D input", expected=">= 2", actual=x.ndim)
    shape = x.shape[:2] + (1,) * (x.ndim - 2)
    return _alpha(x, shape, p, training, inplace, "feature_alpha_dropout_")


class _DropoutNd(Module):
    def __init__(self, p: float = 0.5, inplace: bool = False) -> None:
        super().__init__()
        self.p = _check_p(p)
        self.inplace = inplace

    def extra_repr(self) -> str:
        return f"p={self.p}, inplace={self.inplace}"


class Dropout(_DropoutNd):
    """
    Dropout regularization layer (inverted dropout).

    Behavior
    --------
    - Training mode: ``y = x * mask / (1 - p)``, ``mask ~ Bernoulli(1 - p)``
    - Evaluation mode: ``y = x``

    Parameters
    ----------
    p : float, optional
        Probability of zeroing an element, in [0, 1]. Default 0.5.
    inplace : bool, optional
        Overwrite the input instead of allocating the output.
    """

    def forward(self, x: Tensor) -> Tensor:
        return dropout(x, self.p, self.training, self.inplace)


class Dropout1d(_DropoutNd):
    def forward(self, x: Tensor) -> Tensor:
        return dropout1d(x, self.p, self.training, self.inplace)


class Dropout2d(_DropoutNd):
    """
    Zeroes entire channels of (N, C, H, W) or (C, H, W) input.
    """

    def forward(self, x: Tensor) -> Tensor:
        return dropout2d(x, self.p, self.training, self.inplace)


class Dropout3d(_DropoutNd):
    def forward(self, x: Tensor) -> Tensor:
        return dropout3d(x, self.p, self.training, self.inplace)


class AlphaDropout(_DropoutNd):
    def forward(self, x: Tensor) -> Tensor:
        return alpha_dropout(x, self.p, self.training, self.inplace)


class FeatureAlphaDropout(_DropoutNd):
    def forward(self, x: Tensor) -> Tensor:
        return feature_alpha_dropout(x, self.p, self.training, self.inplace)
