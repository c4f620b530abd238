"""
Autograd primitive for N-d transposed convolution.

A transposed convolution is the gradient of a forward convolution with
respect to its input, so for the same hyperparameters it maps the forward
output shape back to the forward input shape. Each output length is

    (L - 1) * stride - 2 * padding + dilation * (kernel - 1) + output_padding + 1

`output_padding` resolves the ambiguity strided convolutions leave in the
input length; it must be smaller than either the stride or the dilation.
"""

from __future__ import annotations

from typing import Any, Optional, Tuple

from ....domain._errors import ShapeError
from ..._function import Function
from ..._spatial import (
    batched_array,
    check_spatial_input,
    non_negative,
    positive,
    require_floating,
    unbatch,
)
from ...native._engine import get_engine
from ...ops import conv_cpu  # noqa: F401  (registers kernels)
from ...ops._common import ntuple, transposed_output_size
from ...tensor._tensor import Tensor


class ConvTransposeNdFn(Function):
    @staticmethod
    def forward(
        ctx,
        x: Tensor,
        weight: Tensor,
        bias: Optional[Tensor] = None,
        *,
        stride: Tuple[int, ...],
        padding: Tuple[int, ...],
        output_padding: Tuple[int, ...],
        dilation: Tuple[int, ...],
        groups: int,
        unbatched: bool = False,
    ) -> Tensor:
        xa = batched_array(x, unbatched)
        w = weight.to_numpy().astype(xa.dtype, copy=False)
        b = None if bias is None else bias.to_numpy().astype(xa.dtype, copy=False)
        y = get_engine().call(
            "conv_transpose_forward", xa, w, b, stride, padding, dilation, output_padding, groups
        )
        ctx.saved_meta.update(
            x=xa,
            w=w,
            stride=stride,
            padding=padding,
            dilation=dilation,
            groups=groups,
            has_bias=bias is not None,
            unbatched=unbatched,
        )
        return Tensor._from_numpy(unbatch(y, unbatched), device=x.device, dtype=x.dtype)

    @staticmethod
    def backward(ctx, grad_out: Tensor):
        m = ctx.saved_meta
        g = grad_out.to_numpy().astype(m["x"].dtype, copy=False)
        if m["unbatched"]:
            g = g[None]
        gx, gw, gb = get_engine().call(
            "conv_transpose_backward",
            g,
            m["x"],
            m["w"],
            m["stride"],
            m["padding"],
            m["dilation"],
            m["groups"],
            m["has_bias"],
        )
        gx = unbatch(gx, m["unbatched"])
        if m["has_bias"]:
            return gx, gw, gb
        return gx, gw


def conv_transpose_nd(
    x: Tensor,
    weight: Tensor,
    bias: Optional[Tensor],
    nd: int,
    stride: Any = 1,
    padding: Any = 0,
    output_padding: Any = 0,
    groups: int = 1,
    dilation: Any = 1,
) -> Tensor:
    """
    Validate arguments and apply `ConvTransposeNdFn`.

    Raises
    ------
    ShapeError
        For wrong ranks, a channel mismatch, a bad bias shape or a
        non-positive output size.
    ValueError
        For bad hyperparameters, including `output_padding` not smaller than
        stride or dilation.
    """
    name = f"conv_transpose{nd}d"
    unbatched = check_spatial_input(x, nd, name)
    require_floating(x, name)
    if weight.ndim != nd + 2:
        raise ShapeError(f"{name} weight must be {nd + 2}-D", expected=nd + 2, actual=weight.ndim)
    Tensor._check_same_device(x, weight, bias)
    if groups <= 0:
        raise ValueError(f"groups must be a positive integer, got {groups}")

    stride_t = positive(ntuple(stride, nd, "stride"), "stride")
    dilation_t = positive(ntuple(dilation, nd, "dilation"), "dilation")
    padding_t = non_negative(ntuple(padding, nd, "padding"), "padding")
    out_pad = non_negative(ntuple(output_padding, nd, "output_padding"), "output_padding")
    for op, s, d in zip(out_pad, stride_t, dilation_t):
        if op >= s and op >= d:
            raise ValueError("output padding must be smaller than either stride or dilation")

    c_in = x.shape[0] if unbatched else x.shape[1]
    if weight.shape[0] != c_in:
        raise ShapeError(
            f"{name}: expected input with {weight.shape[0]} channels",
            dim=0 if unbatched else 1,
            expected=weight.shape[0],
            actual=c_in,
        )
    if c_in % groups != 0:
        raise ValueError(f"in_channels ({c_in}) must be divisible by groups ({groups})")
    c_out = weight.shape[1] * groups
    if bias is not None and bias.shape != (c_out,):
        raise ShapeError(f"{name} bias must have shape (out_channels,)", expected=(c_out,), actual=bias.shape)

    kernel = tuple(weight.shape[2:])
    for i, (n, k, s, p, d, op) in enumerate(
        zip(x.shape[-nd:], kernel, stride_t, padding_t, dilation_t, out_pad)
    ):
        size = transposed_output_size(n, k, s, p, d, op)
        if size <= 0:
            raise ShapeError(
                f"{name}: computed output size is not positive",
                dim=x.ndim - nd + i,
                actual=size,
            )

    return ConvTransposeNdFn.apply(
        x,
        weight,
        bias,
        stride=stride_t,
        padding=padding_t,
        output_padding=out_pad,
        dilation=dilation_t,
        groups=groups,
        unbatched=unbatched,
    )


def conv_transpose1d(input, weight, bias=None, stride=1, padding=0, output_padding=0, groups=1, dilation=1):
    return conv_transpose_nd(input, weight, bias, 1, stride, padding, output_padding, groups, dilation)


def conv_transpose2d(input, weight, bias=None, stride=1, padding=0, output_padding=0, groups=1, dilation=1):
    return conv_transpose_nd(input, weight, bias, 2, stride, padding, output_padding, groups, dilation)


def conv_transpose3d(input, weight, bias=None, stride=1, padding=0, output_padding=0, groups=1, dilation=1):
    return conv_transpose_nd(input, weight, bias, 3, stride, padding, output_padding, groups, dilation)
