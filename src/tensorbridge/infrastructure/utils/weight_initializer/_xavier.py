"""
Xavier (Glorot) initializers.

Both variants keep the activation variance roughly constant across layers by
scaling with `gain * sqrt(2 / (fan_in + fan_out))`.
"""

from __future__ import annotations

import math

import numpy as np

from ...tensor._tensor import Tensor
from ._base import WeightInitializer, calculate_fan_in_and_fan_out, write_


@WeightInitializer.register_initializer("xavier_uniform")
def xavier_uniform_(tensor: Tensor, gain: float = 1.0) -> Tensor:
    """
    Fill with U(-a, a), a = gain * sqrt(6 / (fan_in + fan_out)).
    """
    fan_in, fan_out = calculate_fan_in_and_fan_out(tensor)
    a = gain * math.sqrt(6.0 / float(fan_in + fan_out))
    return write_(tensor, np.random.uniform(-a, a, size=tensor.shape))


@WeightInitializer.register_initializer("xavier_normal")
def xavier_normal_(tensor: Tensor, gain: float = 1.0) -> Tensor:
    """
    Fill with N(0, std**2), std = gain * sqrt(2 / (fan_in + fan_out)).
    """
    fan_in, fan_out = calculate_fan_in_and_fan_out(tensor)
    std = gain * math.sqrt(2.0 / float(fan_in + fan_out))
    return write_(tensor, np.random.normal(0.0, std, size=tensor.shape))
