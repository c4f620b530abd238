"""
Batch normalization.

Training mode normalizes with the statistics of the current batch (per
channel, over the batch and spatial dims) and, when running statistics are
tracked, folds them into the `running_mean` / `running_var` buffers with

    running = (1 - momentum) * running + momentum * batch_stat

(`running_var` receives the unbiased batch variance). `momentum=None` uses a
cumulative average instead. Evaluation mode normalizes with the running
statistics.

The normalization itself is composed from differentiable tensor ops, so
gradients w.r.t. the input, `weight` and `bias` come from autograd.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

import numpy as np

from ...domain._dtype import ScalarType
from ...domain._errors import ShapeError
from .._module import Module
from .._parameter import Parameter
from ..autograd._grad_mode import no_grad
from ..tensor._tensor import Tensor
from ..utils.weight_initializer import ones_, zeros_


def _channel_shape(ndim: int, channels: int) -> tuple:
    return (1, channels) + (1,) * (ndim - 2)


def _affine(y: Tensor, weight: Optional[Tensor], bias: Optional[Tensor], shape: tuple) -> Tensor:
    if weight is not None:
        y = y * weight.reshape(shape)
    if bias is not None:
        y = y + bias.reshape(shape)
    return y


def _update_running(
    running_mean: Tensor,
    running_var: Tensor,
    mean: np.ndarray,
    var_unbiased: np.ndarray,
    momentum: float,
) -> None:
    with no_grad():
        rm = running_mean.to_numpy()
        rv = running_var.to_numpy()
        running_mean.copy_from_numpy((1.0 - momentum) * rm + momentum * mean)
        running_var.copy_from_numpy((1.0 - momentum) * rv + momentum * var_unbiased)


def batch_norm(
    input: Tensor,
    running_mean: Optional[Tensor],
    running_var: Optional[Tensor],
    weight: Optional[Tensor] = None,
    bias: Optional[Tensor] = None,
    training: bool = False,
    momentum: float = 0.1,
    eps: float = 1e-5,
) -> Tensor:
    """
    Normalize (N, C, *) input per channel.

    Raises
    ------
    ShapeError
        If the input has fewer than 2 dims or a running statistic does not
        have C entries.
    ValueError
        If training with a single value per channel, or if not training and
        no running statistics are given.
    """
    if input.ndim < 2:
        raise ShapeError("batch_norm expects at least 2-D input", expected=">= 2", actual=input.ndim)
    C = input.shape[1]
    for name, t in (("running_mean", running_mean), ("running_var", running_var), ("weight", weight), ("bias", bias)):
        if t is not None and t.shape != (C,):
            raise ShapeError(f"batch_norm {name} must have one entry per channel", expected=(C,), actual=t.shape)
    axes = (0,) + tuple(range(2, input.ndim))
    shape = _channel_shape(input.ndim, C)

    if training:
        count = input.numel() // max(C, 1)
        if count <= 1:
            raise ValueError(
                f"Expected more than 1 value per channel when training, got input size {input.shape}"
            )
        mean = input.mean(axes, keepdim=True)
        var = input.var(axes, unbiased=False, keepdim=True)
        if running_mean is not None and running_var is not None:
            m = mean.to_numpy().reshape(C)
            v = var.to_numpy().reshape(C) * count / (count - 1)
            _update_running(running_mean, running_var, m, v, momentum)
    else:
        if running_mean is None or running_var is None:
            raise ValueError("running_mean and running_var are required when not training")
        mean = running_mean.reshape(shape)
        var = running_var.reshape(shape)

    y = (input - mean) / (var + eps).sqrt()
    return _affine(y, weight, bias, shape)


class _NormBase(Module):
    """
    Parameters and buffers shared by batch and instance normalization.

    Parameters
    ----------
    num_features : int
        Number of channels C.
    eps : float, optional
        Added to the variance for numerical stability.
    momentum : float or None, optional
        Running-statistics factor; None means a cumulative moving average.
    affine : bool, optional
        Learn a per-channel scale (`weight`) and shift (`bias`).
    track_running_stats : bool, optional
        Keep `running_mean`, `running_var` and `num_batches_tracked` buffers.
    """

    def __init__(
        self,
        num_features: int,
        eps: float = 1e-5,
        momentum: Optional[float] = 0.1,
        affine: bool = True,
        track_running_stats: bool = True,
        device: Any = None,
        dtype: Any = None,
    ) -> None:
        super().__init__()
        if num_features <= 0:
            raise ValueError(f"num_features must be positive, got {num_features}")
        if momentum is not None and not 0.0 <= momentum <= 1.0:
            raise ValueError(f"momentum must be in [0, 1], got {momentum}")
        self.num_features = int(num_features)
        self.eps = float(eps)
        self.momentum = momentum
        self.affine = affine
        self.track_running_stats = track_running_stats
        if affine:
            self.weight = Parameter(shape=(self.num_features,), device=device, dtype=dtype)
            self.bias = Parameter(shape=(self.num_features,), device=device, dtype=dtype)
        else:
            self.register_parameter("weight", None)
            self.register_parameter("bias", None)
        if track_running_stats:
            self.register_buffer("running_mean", Tensor(shape=(self.num_features,), device=device, dtype=dtype))
            self.register_buffer("running_var", Tensor(shape=(self.num_features,), device=device, dtype=dtype))
            self.register_buffer(
                "num_batches_tracked", Tensor(shape=(), device=device, dtype=ScalarType.Int64)
            )
        else:
            self.register_buffer("running_mean", None)
            self.register_buffer("running_var", None)
            self.register_buffer("num_batches_tracked", None)
        self.reset_parameters()

    def reset_running_stats(self) -> None:
        if self.track_running_stats:
            zeros_(self.running_mean)
            ones_(self.running_var)
            zeros_(self.num_batches_tracked)

    def reset_parameters(self) -> None:
        self.reset_running_stats()
        if self.affine:
            ones_(self.weight)
            zeros_(self.bias)

    def _check_input_dim(self, x: Tensor) -> None:
        raise NotImplementedError

    def _check_channels(self, x: Tensor, channel_dim: int) -> None:
        if x.shape[channel_dim] != self.num_features:
            raise ShapeError(
                f"{type(self).__name__}: expected {self.num_features} channels",
                dim=channel_dim,
                expected=self.num_features,
                actual=x.shape[channel_dim],
            )

    def _momentum_for_step(self) -> float:
        """Count the batch and return the averaging factor for it."""
        n = int(self.num_batches_tracked.item()) + 1
        self.num_batches_tracked.copy_from_numpy(np.asarray(n))
        if self.momentum is None:
            return 1.0 / n
        return self.momentum

    def extra_repr(self) -> str:
        return (
            f"{self.num_features}, eps={self.eps}, momentum={self.momentum}, "
            f"affine={self.affine}, track_running_stats={self.track_running_stats}"
        )


class _BatchNorm(_NormBase):
    _ranks: Sequence[int] = ()

    def _check_input_dim(self, x: Tensor) -> None:
        if x.ndim not in self._ranks:
            expected = " or ".join(str(r) for r in self._ranks)
            raise ShapeError(
                f"{type(self).__name__} expects {expected}-D input", expected=tuple(self._ranks), actual=x.ndim
            )
        self._check_channels(x, 1)

    def forward(self, x: Tensor) -> Tensor:
        self._check_input_dim(x)
        momentum = 0.0 if self.momentum is None else self.momentum
        if self.training and self.track_running_stats:
            momentum = self._momentum_for_step()
        use_batch_stats = self.training or not self.track_running_stats
        return batch_norm(
            x,
            self.running_mean,
            self.running_var,
            self.weight,
            self.bias,
            use_batch_stats,
            momentum,
            self.eps,
        )


class BatchNorm1d(_BatchNorm):
    """
    Batch normalization over (N, C) or (N, C, L) input.
    """

    _ranks = (2, 3)


class BatchNorm2d(_BatchNorm):
    """
    Batch normalization over (N, C, H, W) input.
    """

    _ranks = (4,)


class BatchNorm3d(_BatchNorm):
    _ranks = (5,)
