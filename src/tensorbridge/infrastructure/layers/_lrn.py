"""
Local response normalization across channels:

    b_c = a_c * (k + alpha / n * sum_{c' in window(c)} a_{c'}^2) ** -beta

The window covers `size` neighbouring channels centred on `c` (zero padded
at the channel edges).
"""

from __future__ import annotations

from ...domain._errors import ShapeError
from .._module import Module
from ..tensor._factories import zeros
from ..tensor._join import cat
from ..tensor._tensor import Tensor


def local_response_norm(
    input: Tensor, size: int, alpha: float = 1e-4, beta: float = 0.75, k: float = 1.0
) -> Tensor:
    if input.ndim < 3:
        raise ShapeError(
            "local_response_norm expects at least 3-D input", expected=">= 3", actual=input.ndim
        )
    if size <= 0:
        raise ValueError(f"size must be positive, got {size}")
    C = input.shape[1]
    sq = input.square()
    front, back = size // 2, (size - 1) // 2
    parts = []
    if front:
        parts.append(zeros(input.shape[:1] + (front,) + input.shape[2:], dtype=sq.dtype, device=input.device))
    parts.append(sq)
    if back:
        parts.append(zeros(input.shape[:1] + (back,) + input.shape[2:], dtype=sq.dtype, device=input.device))
    padded = cat(parts, dim=1) if len(parts) > 1 else sq
    acc = padded.narrow(1, 0, C)
    for i in range(1, size):
        acc = acc + padded.narrow(1, i, C)
    div = (acc * (alpha / size) + k).pow(beta)
    return input / div


class LocalResponseNorm(Module):
    def __init__(self, size: int, alpha: float = 1e-4, beta: float = 0.75, k: float = 1.0) -> None:
        super().__init__()
        self.size = size
        self.alpha = alpha
        self.beta = beta
        self.k = k

    def forward(self, x: Tensor) -> Tensor:
        return local_response_norm(x, self.size, self.alpha, self.beta, self.k)

    def extra_repr(self) -> str:
        return f"{self.size}, alpha={self.alpha}, beta={self.beta}, k={self.k}"
