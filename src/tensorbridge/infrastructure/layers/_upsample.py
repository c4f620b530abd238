"""
Resampling of (N, C, *spatial) tensors.

Every mode is separable and expressed as one resampling matrix per spatial
axis (see `interpolation_matrix`); the forward kernel applies the matrices
and the backward kernel applies their transposes.

Modes and input ranks
---------------------
- ``nearest``, ``area``: 3-D, 4-D or 5-D input.
- ``linear``: 3-D; ``bilinear``, ``bicubic``: 4-D; ``trilinear``: 5-D.

`align_corners` is only meaningful for the interpolating modes (linear,
bilinear, bicubic, trilinear) and is rejected for nearest and area.
"""

from __future__ import annotations

import math
from typing import Any, Optional, Sequence, Tuple

import numpy as np

from ...domain._dtype import ScalarType
from ...domain._errors import ShapeError
from .._function import Function
from .._module import Module
from ..native._engine import get_engine
from ..ops.interpolate_cpu import interpolation_matrix
from ..tensor._tensor import Tensor

_MODES = {
    "nearest": (None, "nearest"),
    "area": (None, "area"),
    "linear": (1, "linear"),
    "bilinear": (2, "linear"),
    "bicubic": (2, "cubic"),
    "trilinear": (3, "linear"),
}
_INTERPOLATING = ("linear", "bilinear", "bicubic", "trilinear")


class InterpolateFn(Function):
    @staticmethod
    def forward(ctx, x: Tensor, *, mats: Sequence[np.ndarray]) -> Tensor:
        xa = x.to_numpy()
        if not x.dtype.is_floating_point or x.dtype in (ScalarType.Float16, ScalarType.BFloat16):
            xa = xa.astype(np.float32)
        mats = [m.astype(xa.dtype) for m in mats]
        y = get_engine().call("interpolate_forward", xa, mats)
        ctx.saved_meta.update(mats=mats)
        return Tensor._from_numpy(y, device=x.device, dtype=x.dtype)

    @staticmethod
    def backward(ctx, grad_out: Tensor):
        mats = ctx.saved_meta["mats"]
        g = grad_out.to_numpy().astype(mats[0].dtype, copy=False)
        return get_engine().call("interpolate_backward", g, mats)


def _output_size(
    in_size: Tuple[int, ...], size: Any, scale_factor: Any
) -> Tuple[Tuple[int, ...], Optional[Tuple[float, ...]]]:
    nd = len(in_size)
    if (size is None) == (scale_factor is None):
        raise ValueError("exactly one of size or scale_factor must be given")
    if size is not None:
        if isinstance(size, (list, tuple)):
            if len(size) != nd:
                raise ValueError(f"size must have {nd} elements, got {len(size)}")
            out = tuple(int(s) for s in size)
        else:
            out = (int(size),) * nd
        scales = None
    else:
        if isinstance(scale_factor, (list, tuple)):
            if len(scale_factor) != nd:
                raise ValueError(f"scale_factor must have {nd} elements, got {len(scale_factor)}")
            scales = tuple(float(s) for s in scale_factor)
        else:
            scales = (float(scale_factor),) * nd
        if any(s <= 0 for s in scales):
            raise ValueError(f"scale_factor must be positive, got {scale_factor}")
        out = tuple(int(math.floor(n * s)) for n, s in zip(in_size, scales))
    if any(s <= 0 for s in out):
        raise ShapeError("interpolate output size must be positive", expected="> 0", actual=out)
    return out, scales


def interpolate(
    input: Tensor,
    size: Any = None,
    scale_factor: Any = None,
    mode: str = "nearest",
    align_corners: Optional[bool] = None,
    recompute_scale_factor: Optional[bool] = None,
) -> Tensor:
    """
    Resize `input` to `size` or by `scale_factor`.

    Raises
    ------
    ValueError
        For an unknown mode, `align_corners` with nearest/area, or not exactly
        one of `size` and `scale_factor`.
    ShapeError
        If the input rank does not match the mode.
    """
    if mode not in _MODES:
        raise ValueError(f"unknown interpolation mode {mode!r}, expected one of {tuple(_MODES)}")
    nd_required, rule = _MODES[mode]
    if align_corners is not None and mode not in _INTERPOLATING:
        raise ValueError(
            "align_corners option can only be set with the interpolating modes: "
            "linear | bilinear | bicubic | trilinear"
        )
    align = bool(align_corners)
    if input.ndim not in (3, 4, 5):
        raise ShapeError("interpolate expects 3-D, 4-D or 5-D input", expected=(3, 4, 5), actual=input.ndim)
    nd = input.ndim - 2
    if nd_required is not None and nd != nd_required:
        raise ShapeError(
            f"{mode} interpolation expects {nd_required + 2}-D input",
            expected=nd_required + 2,
            actual=input.ndim,
        )

    in_size = input.shape[2:]
    out_size, scales = _output_size(in_size, size, scale_factor)
    use_scale = scales is not None and not recompute_scale_factor
    mats = [
        interpolation_matrix(n_in, n_out, rule, align, scales[i] if use_scale else None)
        for i, (n_in, n_out) in enumerate(zip(in_size, out_size))
    ]
    return InterpolateFn.apply(input, mats=mats)


class Upsample(Module):
    """
    Upsampling layer over `interpolate`.

    Parameters
    ----------
    size : int or tuple[int, ...], optional
        Output spatial size.
    scale_factor : float or tuple[float, ...], optional
        Multiplier for the spatial size.
    mode : str, optional
        One of nearest, linear, bilinear, bicubic, trilinear, area.
    align_corners : bool, optional
    """

    def __init__(
        self,
        size: Any = None,
        scale_factor: Any = None,
        mode: str = "nearest",
        align_corners: Optional[bool] = None,
        recompute_scale_factor: Optional[bool] = None,
    ) -> None:
        super().__init__()
        self.size = size
        self.scale_factor = scale_factor
        self.mode = mode
        self.align_corners = align_corners
        self.recompute_scale_factor = recompute_scale_factor

    def forward(self, x: Tensor) -> Tensor:
        return interpolate(
            x, self.size, self.scale_factor, self.mode, self.align_corners, self.recompute_scale_factor
        )

    def extra_repr(self) -> str:
        if self.scale_factor is not None:
            info = f"scale_factor={self.scale_factor}"
        else:
            info = f"size={self.size}"
        return f"{info}, mode={self.mode!r}"


class UpsamplingNearest2d(Upsample):
    def __init__(self, size: Any = None, scale_factor: Any = None) -> None:
        super().__init__(size, scale_factor, mode="nearest")


class UpsamplingBilinear2d(Upsample):
    def __init__(self, size: Any = None, scale_factor: Any = None) -> None:
        super().__init__(size, scale_factor, mode="bilinear", align_corners=True)
