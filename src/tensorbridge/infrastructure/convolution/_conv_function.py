"""
Autograd primitive for N-d convolution (1, 2 or 3 spatial dims).

`ConvNdFn` pads the input (any padding mode), calls the `conv_forward`
kernel and, on the way back, routes the padded-input gradient through
`pad_backward`. The functional entry points `conv1d`, `conv2d` and `conv3d`
validate shapes and hyperparameters before anything reaches the engine.

Padding may be given as an int, one int per spatial dim, or one of the
strings ``"valid"`` (no padding) and ``"same"`` (output size equals input
size; only with stride 1). For ``"same"`` with an odd total the extra element
goes to the right side.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple, Union

import numpy as np

from ...domain._errors import ShapeError
from .._function import Function
from .._spatial import (
    batched_array,
    check_spatial_input,
    non_negative,
    positive,
    require_floating,
    unbatch,
)
from ..native._engine import get_engine
from ..ops import conv_cpu  # noqa: F401  (registers kernels)
from ..ops._common import ntuple
from ..tensor._tensor import Tensor

PaddingLike = Union[int, Sequence[int], str]

PADDING_MODES = ("zeros", "reflect", "replicate", "circular")
_KERNEL_PAD_MODE = {
    "zeros": "constant",
    "reflect": "reflect",
    "replicate": "replicate",
    "circular": "circular",
}


def resolve_padding(
    padding: PaddingLike,
    kernel: Tuple[int, ...],
    stride: Tuple[int, ...],
    dilation: Tuple[int, ...],
) -> Tuple[Tuple[int, int], ...]:
    """
    Per-dim `(left, right)` padding amounts.

    Raises
    ------
    ValueError
        For an unknown padding string, negative padding, or ``"same"`` with a
        stride other than 1.
    """
    nd = len(kernel)
    if isinstance(padding, str):
        if padding == "valid":
            return ((0, 0),) * nd
        if padding == "same":
            if any(s != 1 for s in stride):
                raise ValueError("padding='same' is not supported for strided convolutions")
            pairs = []
            for k, d in zip(kernel, dilation):
                total = d * (k - 1)
                pairs.append((total // 2, total - total // 2))
            return tuple(pairs)
        raise ValueError(f"Invalid padding string {padding!r}, should be one of 'valid', 'same'")
    p = non_negative(ntuple(padding, nd, "padding"), "padding")
    return tuple((v, v) for v in p)


class ConvNdFn(Function):
    """
    Grouped, strided, dilated N-d convolution with arbitrary padding mode.
    """

    @staticmethod
    def forward(
        ctx,
        x: Tensor,
        weight: Tensor,
        bias: Optional[Tensor] = None,
        *,
        stride: Tuple[int, ...],
        pad_pairs: Tuple[Tuple[int, int], ...],
        dilation: Tuple[int, ...],
        groups: int,
        padding_mode: str = "zeros",
        unbatched: bool = False,
    ) -> Tensor:
        engine = get_engine()
        xa = batched_array(x, unbatched)
        w = weight.to_numpy().astype(xa.dtype, copy=False)
        b = None if bias is None else bias.to_numpy().astype(xa.dtype, copy=False)

        pairs = ((0, 0), (0, 0)) + tuple(pad_pairs)
        mode = _KERNEL_PAD_MODE[padding_mode]
        xp = engine.call("pad", xa, pairs, mode, 0.0) if any(sum(p) for p in pad_pairs) else xa
        y = engine.call("conv_forward", xp, w, b, stride, dilation, groups)

        ctx.saved_meta.update(
            xp=xp,
            w=w,
            in_shape=xa.shape,
            pairs=pairs,
            mode=mode,
            stride=stride,
            dilation=dilation,
            groups=groups,
            has_bias=bias is not None,
            unbatched=unbatched,
        )
        return Tensor._from_numpy(unbatch(y, unbatched), device=x.device, dtype=x.dtype)

    @staticmethod
    def backward(ctx, grad_out: Tensor):
        m = ctx.saved_meta
        engine = get_engine()
        g = grad_out.to_numpy().astype(m["xp"].dtype, copy=False)
        if m["unbatched"]:
            g = g[None]
        gxp, gw, gb = engine.call(
            "conv_backward",
            g,
            m["xp"],
            m["w"],
            m["stride"],
            m["dilation"],
            m["groups"],
            m["has_bias"],
        )
        if any(sum(p) for p in m["pairs"]):
            gx = engine.call("pad_backward", gxp, m["in_shape"], m["pairs"], m["mode"])
        else:
            gx = gxp
        gx = unbatch(gx, m["unbatched"])
        if m["has_bias"]:
            return gx, gw, gb
        return gx, gw


def conv_nd(
    x: Tensor,
    weight: Tensor,
    bias: Optional[Tensor],
    nd: int,
    stride: Any = 1,
    padding: PaddingLike = 0,
    dilation: Any = 1,
    groups: int = 1,
    padding_mode: str = "zeros",
) -> Tensor:
    """
    Validate arguments and apply `ConvNdFn`.

    Raises
    ------
    ShapeError
        For wrong input/weight rank, channel mismatch, bias shape, or an
        input smaller than the dilated kernel.
    ValueError
        For non-positive stride/dilation/groups, negative padding, bad
        padding strings or modes, or channels not divisible by `groups`.
    """
    name = f"conv{nd}d"
    if padding_mode not in PADDING_MODES:
        raise ValueError(f"padding_mode must be one of {PADDING_MODES}, got {padding_mode!r}")
    unbatched = check_spatial_input(x, nd, name)
    require_floating(x, name)
    if weight.ndim != nd + 2:
        raise ShapeError(f"{name} weight must be {nd + 2}-D", expected=nd + 2, actual=weight.ndim)
    Tensor._check_same_device(x, weight, bias)

    if groups <= 0:
        raise ValueError(f"groups must be a positive integer, got {groups}")
    stride_t = positive(ntuple(stride, nd, "stride"), "stride")
    dilation_t = positive(ntuple(dilation, nd, "dilation"), "dilation")
    kernel = tuple(weight.shape[2:])
    pad_pairs = resolve_padding(padding, kernel, stride_t, dilation_t)

    c_in = x.shape[0] if unbatched else x.shape[1]
    c_out = weight.shape[0]
    if c_out % groups != 0:
        raise ValueError(f"out_channels ({c_out}) must be divisible by groups ({groups})")
    if weight.shape[1] * groups != c_in:
        raise ShapeError(
            f"{name}: expected input with {weight.shape[1] * groups} channels",
            dim=0 if unbatched else 1,
            expected=weight.shape[1] * groups,
            actual=c_in,
        )
    if bias is not None and bias.shape != (c_out,):
        raise ShapeError(f"{name} bias must have shape (out_channels,)", expected=(c_out,), actual=bias.shape)

    spatial = x.shape[-nd:]
    for i, (n, (lo, hi), k, d) in enumerate(zip(spatial, pad_pairs, kernel, dilation_t)):
        if n + lo + hi < d * (k - 1) + 1:
            raise ShapeError(
                f"{name}: padded input size is smaller than the dilated kernel",
                dim=x.ndim - nd + i,
                expected=d * (k - 1) + 1,
                actual=n + lo + hi,
            )
        if padding_mode == "reflect" and max(lo, hi) >= n:
            raise ValueError(f"reflect padding ({max(lo, hi)}) must be smaller than the input size ({n})")
        if padding_mode == "circular" and max(lo, hi) > n:
            raise ValueError(f"circular padding ({max(lo, hi)}) must not exceed the input size ({n})")

    return ConvNdFn.apply(
        x,
        weight,
        bias,
        stride=stride_t,
        pad_pairs=pad_pairs,
        dilation=dilation_t,
        groups=groups,
        padding_mode=padding_mode,
        unbatched=unbatched,
    )


def conv1d(
    input: Tensor,
    weight: Tensor,
    bias: Optional[Tensor] = None,
    stride: Any = 1,
    padding: PaddingLike = 0,
    dilation: Any = 1,
    groups: int = 1,
) -> Tensor:
    """
    1-D convolution over (N, C_in, L) or (C_in, L) input.

    Output length is ``floor((L + 2p - d(k - 1) - 1) / s) + 1``.
    """
    return conv_nd(input, weight, bias, 1, stride, padding, dilation, groups)


def conv2d(
    input: Tensor,
    weight: Tensor,
    bias: Optional[Tensor] = None,
    stride: Any = 1,
    padding: PaddingLike = 0,
    dilation: Any = 1,
    groups: int = 1,
) -> Tensor:
    return conv_nd(input, weight, bias, 2, stride, padding, dilation, groups)


def conv3d(
    input: Tensor,
    weight: Tensor,
    bias: Optional[Tensor] = None,
    stride: Any = 1,
    padding: PaddingLike = 0,
    dilation: Any = 1,
    groups: int = 1,
) -> Tensor:
    return conv_nd(input, weight, bias, 3, stride, padding, dilation, groups)
