"""
Autograd `Function` adapters and functional forms for N-d pooling.

Each operator validates its hyperparameters, calls the pooling kernels
registered by `ops.pool_cpu` and saves what the backward pass needs in
`ctx.saved_meta`:

- `MaxPoolNdFn`: flat argmax indices from the forward pass route each output
  gradient back to the winning input element.
- `AvgPoolNdFn`: output gradients are spread evenly over each window, divided
  by the same divisor the forward pass used.
- `AdaptiveAvgPoolNdFn` / `AdaptiveMaxPoolNdFn`: bins of (almost) equal size
  cover the input so the output has the requested spatial size.
- `MaxUnpoolNdFn`: places values back at the argmax positions.

Inputs are channel-first with 1 to 3 spatial dims, batched `(N, C, *spatial)`
or unbatched `(C, *spatial)`.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple

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
from ..ops import pool_cpu  # noqa: F401  (registers kernels)
from ..ops._common import ntuple, pool_output_size
from ..tensor._tensor import Tensor


def _pool_args(
    nd: int,
    kernel_size: Any,
    stride: Any,
    padding: Any,
    dilation: Any = 1,
) -> Tuple[Tuple[int, ...], Tuple[int, ...], Tuple[int, ...], Tuple[int, ...]]:
    kernel = positive(ntuple(kernel_size, nd, "kernel_size"), "kernel_size")
    if stride is None or (isinstance(stride, (list, tuple)) and len(stride) == 0):
        stride_t = kernel
    else:
        stride_t = positive(ntuple(stride, nd, "stride"), "stride")
    pad = non_negative(ntuple(padding, nd, "padding"), "padding")
    dil = positive(ntuple(dilation, nd, "dilation"), "dilation")
    for p, k, d in zip(pad, kernel, dil):
        if p > (d * (k - 1) + 1) // 2:
            raise ValueError(
                f"pad should be at most half of effective kernel size, got padding={pad}, "
                f"kernel_size={kernel}"
            )
    return kernel, stride_t, pad, dil


def _check_output(x: Tensor, nd: int, kernel, stride, pad, dil, ceil_mode: bool, name: str) -> None:
    for i, (n, k, s, p, d) in enumerate(zip(x.shape[-nd:], kernel, stride, pad, dil)):
        size = pool_output_size(n, k, s, p, d, ceil_mode)
        if size < 1:
            raise ShapeError(
                f"{name}: output size is too small", dim=x.ndim - nd + i, actual=size
            )


# ----------------------------------------------------------------------
# max pooling
# ----------------------------------------------------------------------
class MaxPoolNdFn(Function):
    """
    Saved context
    -------------
    - `saved_meta`: "idx" (flat argmax per input plane), "in_shape",
      "unbatched"
    """

    @staticmethod
    def forward(ctx, x: Tensor, *, kernel, stride, padding, dilation, ceil_mode, unbatched):
        xa = batched_array(x, unbatched)
        y, idx = get_engine().call(
            "max_pool_forward", xa, kernel, stride, padding, dilation, ceil_mode
        )
        ctx.saved_meta.update(idx=idx, in_shape=xa.shape, unbatched=unbatched)
        out = Tensor._from_numpy(unbatch(y, unbatched), device=x.device, dtype=x.dtype)
        indices = Tensor._from_numpy(unbatch(idx, unbatched), device=x.device)
        return out, indices

    @staticmethod
    def backward(ctx, grad_out: Tensor):
        m = ctx.saved_meta
        g = grad_out.to_numpy()
        if m["unbatched"]:
            g = g[None]
        gx = get_engine().call("max_pool_backward", g, m["idx"], m["in_shape"])
        return unbatch(gx, m["unbatched"])


def max_pool_nd(
    x: Tensor,
    nd: int,
    kernel_size: Any,
    stride: Any = None,
    padding: Any = 0,
    dilation: Any = 1,
    ceil_mode: bool = False,
    return_indices: bool = False,
):
    name = f"max_pool{nd}d"
    unbatched = check_spatial_input(x, nd, name)
    kernel, stride_t, pad, dil = _pool_args(nd, kernel_size, stride, padding, dilation)
    _check_output(x, nd, kernel, stride_t, pad, dil, ceil_mode, name)
    out, indices = MaxPoolNdFn.apply(
        x,
        kernel=kernel,
        stride=stride_t,
        padding=pad,
        dilation=dil,
        ceil_mode=ceil_mode,
        unbatched=unbatched,
    )
    return (out, indices) if return_indices else out


def max_pool1d(input, kernel_size, stride=None, padding=0, dilation=1, ceil_mode=False, return_indices=False):
    return max_pool_nd(input, 1, kernel_size, stride, padding, dilation, ceil_mode, return_indices)


def max_pool2d(input, kernel_size, stride=None, padding=0, dilation=1, ceil_mode=False, return_indices=False):
    return max_pool_nd(input, 2, kernel_size, stride, padding, dilation, ceil_mode, return_indices)


def max_pool3d(input, kernel_size, stride=None, padding=0, dilation=1, ceil_mode=False, return_indices=False):
    return max_pool_nd(input, 3, kernel_size, stride, padding, dilation, ceil_mode, return_indices)


# ----------------------------------------------------------------------
# average pooling
# ----------------------------------------------------------------------
class AvgPoolNdFn(Function):
    @staticmethod
    def forward(
        ctx,
        x: Tensor,
        *,
        kernel,
        stride,
        padding,
        ceil_mode,
        count_include_pad,
        divisor_override,
        unbatched,
    ):
        xa = batched_array(x, unbatched)
        args = (kernel, stride, padding, ceil_mode, count_include_pad, divisor_override)
        y = get_engine().call("avg_pool_forward", xa, *args)
        ctx.saved_meta.update(in_shape=xa.shape, args=args, unbatched=unbatched)
        return Tensor._from_numpy(unbatch(y, unbatched), device=x.device, dtype=x.dtype)

    @staticmethod
    def backward(ctx, grad_out: Tensor):
        m = ctx.saved_meta
        g = grad_out.to_numpy()
        if m["unbatched"]:
            g = g[None]
        gx = get_engine().call("avg_pool_backward", g, m["in_shape"], *m["args"])
        return unbatch(gx, m["unbatched"])


def _avg_args(nd, kernel_size, stride, padding, divisor_override):
    if divisor_override is not None and divisor_override == 0:
        raise ValueError("divisor must be not zero")
    kernel, stride_t, pad, _ = _pool_args(nd, kernel_size, stride, padding)
    return kernel, stride_t, pad


def avg_pool_nd(
    x: Tensor,
    nd: int,
    kernel_size: Any,
    stride: Any = None,
    padding: Any = 0,
    ceil_mode: bool = False,
    count_include_pad: bool = True,
    divisor_override: Optional[int] = None,
) -> Tensor:
    name = f"avg_pool{nd}d"
    unbatched = check_spatial_input(x, nd, name)
    require_floating(x, name)
    kernel, stride_t, pad = _avg_args(nd, kernel_size, stride, padding, divisor_override)
    _check_output(x, nd, kernel, stride_t, pad, (1,) * nd, ceil_mode, name)
    return AvgPoolNdFn.apply(
        x,
        kernel=kernel,
        stride=stride_t,
        padding=pad,
        ceil_mode=ceil_mode,
        count_include_pad=count_include_pad,
        divisor_override=divisor_override,
        unbatched=unbatched,
    )


def avg_pool1d(input, kernel_size, stride=None, padding=0, ceil_mode=False, count_include_pad=True):
    return avg_pool_nd(input, 1, kernel_size, stride, padding, ceil_mode, count_include_pad)


def avg_pool2d(
    input, kernel_size, stride=None, padding=0, ceil_mode=False, count_include_pad=True, divisor_override=None
):
    return avg_pool_nd(input, 2, kernel_size, stride, padding, ceil_mode, count_include_pad, divisor_override)


def avg_pool3d(
    input, kernel_size, stride=None, padding=0, ceil_mode=False, count_include_pad=True, divisor_override=None
):
    return avg_pool_nd(input, 3, kernel_size, stride, padding, ceil_mode, count_include_pad, divisor_override)


def avg_pool_nd_backward(
    grad_output: Tensor,
    input: Tensor,
    nd: int,
    kernel_size: Any,
    stride: Any = None,
    padding: Any = 0,
    ceil_mode: bool = False,
    count_include_pad: bool = True,
    divisor_override: Optional[int] = None,
) -> Tensor:
    """
    Gradient of average pooling w.r.t. its input, computed directly.

    For a 2x2 window with stride 2 and no padding, a gradient of ones
    multiplied by 4 gives back ones of the input shape.

    Raises
    ------
    ShapeError
        If `grad_output` does not have the pooled output shape of `input`.
    """
    name = f"avg_pool{nd}d_backward"
    unbatched = check_spatial_input(input, nd, name)
    kernel, stride_t, pad = _avg_args(nd, kernel_size, stride, padding, divisor_override)
    _check_output(input, nd, kernel, stride_t, pad, (1,) * nd, ceil_mode, name)
    expected = input.shape[:-nd] + tuple(
        pool_output_size(n, k, s, p, 1, ceil_mode)
        for n, k, s, p in zip(input.shape[-nd:], kernel, stride_t, pad)
    )
    if grad_output.shape != expected:
        raise ShapeError(
            f"{name}: grad_output has the wrong shape", expected=expected, actual=grad_output.shape
        )
    g = batched_array(grad_output, unbatched)
    in_shape = (1,) + input.shape if unbatched else input.shape
    gx = get_engine().call(
        "avg_pool_backward",
        g,
        in_shape,
        kernel,
        stride_t,
        pad,
        ceil_mode,
        count_include_pad,
        divisor_override,
    )
    return Tensor._from_numpy(unbatch(gx, unbatched), device=input.device, dtype=input.dtype)


def avg_pool1d_backward(grad_output, input, kernel_size, stride=None, padding=0, ceil_mode=False,
                        count_include_pad=True, divisor_override=None):
    return avg_pool_nd_backward(grad_output, input, 1, kernel_size, stride, padding, ceil_mode,
                                count_include_pad, divisor_override)


def avg_pool2d_backward(grad_output, input, kernel_size, stride=None, padding=0, ceil_mode=False,
                        count_include_pad=True, divisor_override=None):
    return avg_pool_nd_backward(grad_output, input, 2, kernel_size, stride, padding, ceil_mode,
                                count_include_pad, divisor_override)


def avg_pool3d_backward(grad_output, input, kernel_size, stride=None, padding=0, ceil_mode=False,
                        count_include_pad=True, divisor_override=None):
    return avg_pool_nd_backward(grad_output, input, 3, kernel_size, stride, padding, ceil_mode,
                                count_include_pad, divisor_override)


def lp_pool_nd(
    x: Tensor,
    nd: int,
    norm_type: float,
    kernel_size: Any,
    stride: Any = None,
    ceil_mode: bool = False,
) -> Tensor:
    """
    Power-average pooling: ``(sum over window of x ** p) ** (1 / p)``.
    """
    if norm_type <= 0:
        raise ValueError(f"norm_type must be positive, got {norm_type}")
    kernel = ntuple(kernel_size, nd, "kernel_size")
    out = avg_pool_nd(x.pow(norm_type), nd, kernel, stride, 0, ceil_mode)
    numel = int(np.prod(kernel))
    return (out.sign() * out.abs().relu() * numel).pow(1.0 / norm_type)


def lp_pool1d(input, norm_type, kernel_size, stride=None, ceil_mode=False):
    return lp_pool_nd(input, 1, norm_type, kernel_size, stride, ceil_mode)


def lp_pool2d(input, norm_type, kernel_size, stride=None, ceil_mode=False):
    return lp_pool_nd(input, 2, norm_type, kernel_size, stride, ceil_mode)


# ----------------------------------------------------------------------
# adaptive pooling
# ----------------------------------------------------------------------
def _adaptive_size(x: Tensor, nd: int, output_size: Any) -> Tuple[int, ...]:
    if isinstance(output_size, (list, tuple)):
        if len(output_size) != nd:
            raise ValueError(f"output_size must have {nd} elements, got {len(output_size)}")
        size = tuple(
            x.shape[x.ndim - nd + i] if o is None else int(o) for i, o in enumerate(output_size)
        )
    else:
        size = (int(output_size),) * nd
    return positive(size, "output_size")


class AdaptiveAvgPoolNdFn(Function):
    @staticmethod
    def forward(ctx, x: Tensor, *, output_size, unbatched):
        xa = batched_array(x, unbatched)
        y = get_engine().call("adaptive_avg_pool_forward", xa, output_size)
        ctx.saved_meta.update(in_shape=xa.shape, unbatched=unbatched)
        return Tensor._from_numpy(unbatch(y, unbatched), device=x.device, dtype=x.dtype)

    @staticmethod
    def backward(ctx, grad_out: Tensor):
        m = ctx.saved_meta
        g = grad_out.to_numpy()
        if m["unbatched"]:
            g = g[None]
        gx = get_engine().call("adaptive_avg_pool_backward", g, m["in_shape"])
        return unbatch(gx, m["unbatched"])


class AdaptiveMaxPoolNdFn(Function):
    @staticmethod
    def forward(ctx, x: Tensor, *, output_size, unbatched):
        xa = batched_array(x, unbatched)
        y, idx = get_engine().call("adaptive_max_pool_forward", xa, output_size)
        ctx.saved_meta.update(idx=idx, in_shape=xa.shape, unbatched=unbatched)
        out = Tensor._from_numpy(unbatch(y, unbatched), device=x.device, dtype=x.dtype)
        return out, Tensor._from_numpy(unbatch(idx, unbatched), device=x.device)

    @staticmethod
    def backward(ctx, grad_out: Tensor):
        m = ctx.saved_meta
        g = grad_out.to_numpy()
        if m["unbatched"]:
            g = g[None]
        gx = get_engine().call("max_pool_backward", g, m["idx"], m["in_shape"])
        return unbatch(gx, m["unbatched"])


def adaptive_avg_pool_nd(x: Tensor, nd: int, output_size: Any) -> Tensor:
    name = f"adaptive_avg_pool{nd}d"
    unbatched = check_spatial_input(x, nd, name)
    require_floating(x, name)
    return AdaptiveAvgPoolNdFn.apply(
        x, output_size=_adaptive_size(x, nd, output_size), unbatched=unbatched
    )


def adaptive_max_pool_nd(x: Tensor, nd: int, output_size: Any, return_indices: bool = False):
    name = f"adaptive_max_pool{nd}d"
    unbatched = check_spatial_input(x, nd, name)
    if any(n == 0 for n in x.shape[-nd:]):
        raise ShapeError(f"{name}: input spatial dims must be non-empty", actual=x.shape)
    out, indices = AdaptiveMaxPoolNdFn.apply(
        x, output_size=_adaptive_size(x, nd, output_size), unbatched=unbatched
    )
    return (out, indices) if return_indices else out


def adaptive_avg_pool1d(input, output_size):
    return adaptive_avg_pool_nd(input, 1, output_size)


def adaptive_avg_pool2d(input, output_size):
    return adaptive_avg_pool_nd(input, 2, output_size)


def adaptive_avg_pool3d(input, output_size):
    return adaptive_avg_pool_nd(input, 3, output_size)


def adaptive_max_pool1d(input, output_size, return_indices=False):
    return adaptive_max_pool_nd(input, 1, output_size, return_indices)


def adaptive_max_pool2d(input, output_size, return_indices=False):
    return adaptive_max_pool_nd(input, 2, output_size, return_indices)


def adaptive_max_pool3d(input, output_size, return_indices=False):
    return adaptive_max_pool_nd(input, 3, output_size, return_indices)


# ----------------------------------------------------------------------
# unpooling
# ----------------------------------------------------------------------
class MaxUnpoolNdFn(Function):
    @staticmethod
    def forward(ctx, x: Tensor, indices: np.ndarray, *, out_spatial, unbatched):
        xa = batched_array(x, unbatched)
        idx = indices[None] if unbatched else indices
        y = get_engine().call("max_unpool_forward", xa, idx, out_spatial)
        ctx.saved_meta.update(idx=idx, in_shape=xa.shape, unbatched=unbatched)
        return Tensor._from_numpy(unbatch(y, unbatched), device=x.device, dtype=x.dtype)

    @staticmethod
    def backward(ctx, grad_out: Tensor):
        m = ctx.saved_meta
        g = grad_out.to_numpy()
        if m["unbatched"]:
            g = g[None]
        gx = get_engine().call("max_unpool_backward", g, m["idx"], m["in_shape"])
        return unbatch(gx, m["unbatched"])


def max_unpool_nd(
    x: Tensor,
    indices: Tensor,
    nd: int,
    kernel_size: Any,
    stride: Any = None,
    padding: Any = 0,
    output_size: Optional[Sequence[int]] = None,
) -> Tensor:
    """
    Partial inverse of max pooling: non-maximal positions are zero.

    Raises
    ------
    ShapeError
        If `indices` does not match `x` in shape or points outside the
        output plane.
    """
    name = f"max_unpool{nd}d"
    unbatched = check_spatial_input(x, nd, name)
    if indices.shape != x.shape:
        raise ShapeError(f"{name}: indices must have the input's shape", expected=x.shape, actual=indices.shape)
    kernel = positive(ntuple(kernel_size, nd, "kernel_size"), "kernel_size")
    stride_t = kernel if stride is None else positive(ntuple(stride, nd, "stride"), "stride")
    pad = non_negative(ntuple(padding, nd, "padding"), "padding")
    default = tuple(
        (n - 1) * s - 2 * p + k for n, s, p, k in zip(x.shape[-nd:], stride_t, pad, kernel)
    )
    if output_size is None:
        out_spatial = default
    else:
        out_spatial = tuple(int(v) for v in tuple(output_size)[-nd:])
        if len(out_spatial) != nd:
            raise ValueError(f"output_size must have at least {nd} elements")
    idx = indices.to_numpy()
    if idx.dtype.kind not in "iu":
        raise TypeError(f"{name}: indices must be an integer tensor, got {indices.dtype.name}")
    plane = int(np.prod(out_spatial, dtype=np.int64))
    if idx.size and (idx.min() < 0 or idx.max() >= plane):
        raise ShapeError(f"{name}: found an invalid max index", expected=f"[0, {plane})")
    return MaxUnpoolNdFn.apply(
        x, idx.astype(np.int64), out_spatial=out_spatial, unbatched=unbatched
    )


def max_unpool1d(input, indices, kernel_size, stride=None, padding=0, output_size=None):
    return max_unpool_nd(input, indices, 1, kernel_size, stride, padding, output_size)


def max_unpool2d(input, indices, kernel_size, stride=None, padding=0, output_size=None):
    return max_unpool_nd(input, indices, 2, kernel_size, stride, padding, output_size)


def max_unpool3d(input, indices, kernel_size, stride=None, padding=0, output_size=None):
    return max_unpool_nd(input, indices, 3, kernel_size, stride, padding, output_size)
