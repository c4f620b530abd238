"""
Instance normalization: every (sample, channel) plane is normalized with its
own spatial mean and variance.

Unlike batch normalization, `affine` and `track_running_stats` default to
False. When running statistics are tracked they are averaged over the batch
and used in evaluation mode.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from ...domain._errors import ShapeError
from .._spatial import check_spatial_input
from ..tensor._tensor import Tensor
from ._batchnorm import _NormBase, _affine, _channel_shape, _update_running


def instance_norm(
    input: Tensor,
    running_mean: Optional[Tensor] = None,
    running_var: Optional[Tensor] = None,
    weight: Optional[Tensor] = None,
    bias: Optional[Tensor] = None,
    use_input_stats: bool = True,
    momentum: float = 0.1,
    eps: float = 1e-5,
) -> Tensor:
    """
    Normalize (N, C, *spatial) input per sample and channel.
    """
    if input.ndim < 3:
        raise ShapeError("instance_norm expects at least 3-D input", expected=">= 3", actual=input.ndim)
    C = input.shape[1]
    shape = _channel_shape(input.ndim, C)
    axes = tuple(range(2, input.ndim))

    if use_input_stats:
        count = int(np.prod(input.shape[2:]))
        if count <= 1:
            raise ValueError(
                f"Expected more than 1 spatial element when training, got input size {input.shape}"
            )
        mean = input.mean(axes, keepdim=True)
        var = input.var(axes, unbiased=False, keepdim=True)
        if running_mean is not None and running_var is not None:
            m = mean.to_numpy().reshape(input.shape[:2]).mean(axis=0)
            v = (var.to_numpy().reshape(input.shape[:2]) * count / (count - 1)).mean(axis=0)
            _update_running(running_mean, running_var, m, v, momentum)
    else:
        if running_mean is None or running_var is None:
            raise ValueError("running statistics are required when use_input_stats is False")
        mean = running_mean.reshape(shape)
        var = running_var.reshape(shape)

    y = (input - mean) / (var + eps).sqrt()
    return _affine(y, weight, bias, shape)


class _InstanceNorm(_NormBase):
    _nd = 0

    def __init__(
        self,
        num_features: int,
        eps: float = 1e-5,
        momentum: Optional[float] = 0.1,
        affine: bool = False,
        track_running_stats: bool = False,
        device=None,
        dtype=None,
    ) -> None:
        super().__init__(num_features, eps, momentum, affine, track_running_stats, device, dtype)

    def forward(self, x: Tensor) -> Tensor:
        unbatched = check_spatial_input(x, self._nd, type(self).__name__)
        if unbatched:
            x = x.unsqueeze(0)
        self._check_channels(x, 1)
        momentum = 0.0 if self.momentum is None else self.momentum
        if self.training and self.track_running_stats:
            momentum = self._momentum_for_step()
        out = instance_norm(
            x,
            self.running_mean,
            self.running_var,
            self.weight,
            self.bias,
            self.training or not self.track_running_stats,
            momentum,
            self.eps,
        )
        return out.squeeze(0) if unbatched else out


class InstanceNorm1d(_InstanceNorm):
    _nd = 1


class InstanceNorm2d(_InstanceNorm):
    """
    Instance normalization over (N, C, H, W) or (C, H, W) input.
    """

    _nd = 2


class InstanceNorm3d(_InstanceNorm):
    _nd = 3
