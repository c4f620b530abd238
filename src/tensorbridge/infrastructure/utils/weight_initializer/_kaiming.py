"""
Kaiming (He) initializers for ReLU-family networks.

`a` is the negative slope of the rectifier that follows the layer (0 for
ReLU); `mode` selects whether the variance is preserved in the forward
(`fan_in`) or backward (`fan_out`) pass.
"""

from __future__ import annotations

import math

import numpy as np

from ...tensor._tensor import Tensor
from ._base import WeightInitializer, _fan, calculate_gain, write_


def _std(tensor: Tensor, a: float, mode: str, nonlinearity: str) -> float:
    fan = _fan(tensor, mode)
    if fan == 0:
        return 0.0
    return calculate_gain(nonlinearity, a) / math.sqrt(fan)


@WeightInitializer.register_initializer("kaiming_uniform")
def kaiming_uniform_(
    tensor: Tensor,
    a: float = 0.0,
    mode: str = "fan_in",
    nonlinearity: str = "leaky_relu",
) -> Tensor:
    """
    Fill with U(-bound, bound), bound = gain * sqrt(3 / fan).
    """
    bound = math.sqrt(3.0) * _std(tensor, a, mode, nonlinearity)
    return write_(tensor, np.random.uniform(-bound, bound, size=tensor.shape))


@WeightInitializer.register_initializer("kaiming_normal")
def kaiming_normal_(
    tensor: Tensor,
    a: float = 0.0,
    mode: str = "fan_in",
    nonlinearity: str = "leaky_relu",
) -> Tensor:
    """
    Fill with N(0, std**2), std = gain / sqrt(fan).
    """
    std = _std(tensor, a, mode, nonlinearity)
    return write_(tensor, np.random.normal(0.0, std, size=tensor.shape))
