"""
Constant and plain random initializers.
"""

from __future__ import annotations

import numpy as np

from ...tensor._tensor import Tensor
from ._base import WeightInitializer, write_


@WeightInitializer.register_initializer("constant")
def constant_(tensor: Tensor, val: float) -> Tensor:
    return write_(tensor, np.full(tensor.shape, val))


@WeightInitializer.register_initializer("zeros")
def zeros_(tensor: Tensor) -> Tensor:
    return write_(tensor, np.zeros(tensor.shape))


@WeightInitializer.register_initializer("ones")
def ones_(tensor: Tensor) -> Tensor:
    return write_(tensor, np.ones(tensor.shape))


@WeightInitializer.register_initializer("uniform")
def uniform_(tensor: Tensor, a: float = 0.0, b: float = 1.0) -> Tensor:
    """Fill with samples from U(a, b)."""
    if b < a:
        raise ValueError(f"uniform_ expects a <= b, got a={a}, b={b}")
    return write_(tensor, np.random.uniform(a, b, size=tensor.shape))


@WeightInitializer.register_initializer("normal")
def normal_(tensor: Tensor, mean: float = 0.0, std: float = 1.0) -> Tensor:
    """Fill with samples from N(mean, std**2)."""
    if std < 0:
        raise ValueError(f"normal_ expects std >= 0, got {std}")
    return write_(tensor, np.random.normal(mean, std, size=tensor.shape))
