"""
Flatten and Unflatten layers.

`Flatten` collapses dims ``start_dim..end_dim`` (by default everything but
the batch dim) into one; `Unflatten` expands one dim into several. Both are
reshapes, so gradients are reshaped back by autograd.

Shape semantics
---------------
Flatten()
    (N, d1, d2, ..., dk) -> (N, d1 * d2 * ... * dk)
Unflatten(1, (C, H, W))
    (N, C * H * W) -> (N, C, H, W)
"""

from __future__ import annotations

from typing import Sequence

from .._module import Module
from ..tensor._tensor import Tensor


class Flatten(Module):
    """
    Flatten a contiguous range of dims.

    Parameters
    ----------
    start_dim : int, optional
        First dim to flatten. Defaults to 1, keeping the batch dim.
    end_dim : int, optional
        Last dim to flatten. Defaults to -1.
    """

    def __init__(self, start_dim: int = 1, end_dim: int = -1) -> None:
        super().__init__()
        self.start_dim = start_dim
        self.end_dim = end_dim

    def forward(self, x: Tensor) -> Tensor:
        return x.flatten(self.start_dim, self.end_dim)

    def extra_repr(self) -> str:
        return f"start_dim={self.start_dim}, end_dim={self.end_dim}"


class Unflatten(Module):
    def __init__(self, dim: int, unflattened_size: Sequence[int]) -> None:
        super().__init__()
        self.dim = dim
        self.unflattened_size = tuple(unflattened_size)

    def forward(self, x: Tensor) -> Tensor:
        return x.unflatten(self.dim, self.unflattened_size)

    def extra_repr(self) -> str:
        return f"dim={self.dim}, unflattened_size={self.unflattened_size}"
