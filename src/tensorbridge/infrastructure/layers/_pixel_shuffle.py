"""
Sub-pixel rearrangements between channels and spatial dims.

`pixel_shuffle` maps ``(*, C * r^2, H, W)`` to ``(*, C, H * r, W * r)`` and
`pixel_unshuffle` is its inverse. Both are reshapes and a permutation, so
gradients come from autograd.
"""

from __future__ import annotations

from ...domain._errors import ShapeError
from .._module import Module
from ..tensor._tensor import Tensor


def pixel_shuffle(input: Tensor, upscale_factor: int) -> Tensor:
    r = int(upscale_factor)
    if r <= 0:
        raise ValueError(f"upscale_factor must be positive, got {upscale_factor}")
    if input.ndim < 3:
        raise ShapeError("pixel_shuffle expects at least 3-D input", expected=">= 3", actual=input.ndim)
    *lead, c, h, w = input.shape
    if c % (r * r) != 0:
        raise ShapeError(
            "pixel_shuffle: channels must be divisible by upscale_factor ** 2",
            dim=input.ndim - 3,
            expected=r * r,
            actual=c,
        )
    lead = tuple(lead)
    n = len(lead)
    oc = c // (r * r)
    y = input.reshape(lead + (oc, r, r, h, w))
    y = y.permute(tuple(range(n)) + (n, n + 3, n + 1, n + 4, n + 2))
    return y.reshape(lead + (oc, h * r, w * r))


def pixel_unshuffle(input: Tensor, downscale_factor: int) -> Tensor:
    r = int(downscale_factor)
    if r <= 0:
        raise ValueError(f"downscale_factor must be positive, got {downscale_factor}")
    if input.ndim < 3:
        raise ShapeError("pixel_unshuffle expects at least 3-D input", expected=">= 3", actual=input.ndim)
    *lead, c, h, w = input.shape
    if h % r != 0 or w % r != 0:
        raise ShapeError(
            "pixel_unshuffle: spatial size must be divisible by downscale_factor",
            expected=r,
            actual=(h, w),
        )
    lead = tuple(lead)
    n = len(lead)
    oh, ow = h // r, w // r
    y = input.reshape(lead + (c, oh, r, ow, r))
    y = y.permute(tuple(range(n)) + (n, n + 2, n + 4, n + 1, n + 3))
    return y.reshape(lead + (c * r * r, oh, ow))


class PixelShuffle(Module):
    def __init__(self, upscale_factor: int) -> None:
        super().__init__()
        self.upscale_factor = upscale_factor

    def forward(self, x: Tensor) -> Tensor:
        return pixel_shuffle(x, self.upscale_factor)

    def extra_repr(self) -> str:
        return f"upscale_factor={self.upscale_factor}"


class PixelUnshuffle(Module):
    def __init__(self, downscale_factor: int) -> None:
        super().__init__()
        self.downscale_factor = downscale_factor

    def forward(self, x: Tensor) -> Tensor:
        return pixel_unshuffle(x, self.downscale_factor)

    def extra_repr(self) -> str:
        return f"downscale_factor={self.downscale_factor}"
