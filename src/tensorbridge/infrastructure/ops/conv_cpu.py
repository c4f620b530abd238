"""
CPU convolution kernels (N-d, NumPy backend).

Forward convolution gathers strided sliding windows of the padded input and
contracts them against the kernel with `einsum`; groups are handled by
splitting the channel axis. Transposed convolution is the adjoint of the
forward input-gradient: window contributions are scattered back with
`col2im`.

Tensor layout
-------------
x : (N, C_in, *spatial)
w : (C_out, C_in / groups, *kernel)             forward
w : (C_in, C_out / groups, *kernel)             transposed

Padding is applied by the caller (see `pad_cpu`), so the forward kernels
receive an already padded input.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import numpy as np

from ..native._engine import native_kernel
from ._common import col2im, spatial_letters, windows


def _out_sizes(xp_spatial, kernel, stride, dilation) -> Tuple[int, ...]:
    return tuple(
        (n - d * (k - 1) - 1) // s + 1
        for n, k, s, d in zip(xp_spatial, kernel, stride, dilation)
    )


@native_kernel("conv_forward")
def conv_forward_cpu(
    xp: np.ndarray,
    w: np.ndarray,
    b: Optional[np.ndarray],
    stride: Sequence[int],
    dilation: Sequence[int],
    groups: int,
) -> np.ndarray:
    """
    Grouped, dilated, strided convolution of a padded input.

    Returns
    -------
    np.ndarray
        Output of shape (N, C_out, *out) where each out size is
        floor((L_padded - d * (k - 1) - 1) / s) + 1.
    """
    nd = w.ndim - 2
    N, C = xp.shape[:2]
    C_out = w.shape[0]
    kernel = w.shape[2:]
    out = _out_sizes(xp.shape[2:], kernel, stride, dilation)
    G = groups
    o, k = spatial_letters(nd)

    win = windows(xp, kernel, stride, dilation, out).reshape((N, G, C // G) + out + kernel)
    wg = w.reshape((G, C_out // G, C // G) + kernel)
    y = np.einsum(f"ngc{o}{k},gdc{k}->ngd{o}", win, wg, optimize=True)
    y = y.reshape((N, C_out) + out)
    if b is not None:
        y = y + b.reshape((1, C_out) + (1,) * nd)
    return np.ascontiguousarray(y, dtype=xp.dtype)


@native_kernel("conv_backward")
def conv_backward_cpu(
    g: np.ndarray,
    xp: np.ndarray,
    w: np.ndarray,
    stride: Sequence[int],
    dilation: Sequence[int],
    groups: int,
    need_bias: bool,
):
    """
    Gradients of `conv_forward` w.r.t. the padded input, weight and bias.

    Returns
    -------
    tuple
        (grad_xp, grad_w, grad_b or None).
    """
    nd = w.ndim - 2
    N, C = xp.shape[:2]
    C_out = w.shape[0]
    kernel = w.shape[2:]
    out = g.shape[2:]
    G = groups
    o, k = spatial_letters(nd)

    win = windows(xp, kernel, stride, dilation, out).reshape((N, G, C // G) + out + kernel)
    gg = g.reshape((N, G, C_out // G) + out)
    wg = w.reshape((G, C_out // G, C // G) + kernel)

    gw = np.einsum(f"ngd{o},ngc{o}{k}->gdc{k}", gg, win, optimize=True).reshape(w.shape)
    cols = np.einsum(f"ngd{o},gdc{k}->ngc{o}{k}", gg, wg, optimize=True)
    gxp = col2im(cols.reshape((N, C) + out + kernel), xp.shape, kernel, stride, dilation)
    gb = g.sum(axis=(0,) + tuple(range(2, 2 + nd))) if need_bias else None
    return gxp.astype(xp.dtype, copy=False), gw.astype(w.dtype, copy=False), gb


@native_kernel("conv_transpose_forward")
def conv_transpose_forward_cpu(
    x: np.ndarray,
    w: np.ndarray,
    b: Optional[np.ndarray],
    stride: Sequence[int],
    padding: Sequence[int],
    dilation: Sequence[int],
    output_padding: Sequence[int],
    groups: int,
) -> np.ndarray:
    """
    Transposed convolution.

    Each output length is (L - 1) * s - 2p + d * (k - 1) + output_padding + 1.
    """
    nd = w.ndim - 2
    N, C = x.shape[:2]
    G = groups
    C_out = w.shape[1] * G
    kernel = w.shape[2:]
    inp = x.shape[2:]
    o, k = spatial_letters(nd)

    full = tuple(
        (n - 1) * s + d * (kk - 1) + op + 1
        for n, s, d, kk, op in zip(inp, stride, dilation, kernel, output_padding)
    )
    xg = x.reshape((N, G, C // G) + inp)
    wg = w.reshape((G, C // G, C_out // G) + kernel)
    cols = np.einsum(f"ngc{o},gcd{k}->ngd{o}{k}", xg, wg, optimize=True)
    y_full = col2im(cols.reshape((N, C_out) + inp + kernel), (N, C_out) + full, kernel, stride, dilation)
    crop = tuple(slice(p, n - p) for p, n in zip(padding, full))
    y = y_full[(slice(None), slice(None)) + crop]
    if b is not None:
        y = y + b.reshape((1, C_out) + (1,) * nd)
    return np.ascontiguousarray(y, dtype=x.dtype)


@native_kernel("conv_transpose_backward")
def conv_transpose_backward_cpu(
    g: np.ndarray,
    x: np.ndarray,
    w: np.ndarray,
    stride: Sequence[int],
    padding: Sequence[int],
    dilation: Sequence[int],
    groups: int,
    need_bias: bool,
):
    """
    Gradients of `conv_transpose_forward`: (grad_x, grad_w, grad_b or None).
    """
    nd = w.ndim - 2
    N, C = x.shape[:2]
    G = groups
    C_out = w.shape[1] * G
    kernel = w.shape[2:]
    inp = x.shape[2:]
    o, k = spatial_letters(nd)

    g_full = np.pad(g, ((0, 0), (0, 0)) + tuple((p, p) for p in padding))
    # output_padding may leave room for extra windows past the input length
    win = windows(g_full, kernel, stride, dilation, inp).reshape(
        (N, G, C_out // G) + inp + kernel
    )
    xg = x.reshape((N, G, C // G) + inp)
    wg = w.reshape((G, C // G, C_out // G) + kernel)
    gx = np.einsum(f"ngd{o}{k},gcd{k}->ngc{o}", win, wg, optimize=True).reshape(x.shape)
    gw = np.einsum(f"ngc{o},ngd{o}{k}->gcd{k}", xg, win, optimize=True).reshape(w.shape)
    gb = g.sum(axis=(0,) + tuple(range(2, 2 + nd))) if need_bias else None
    return gx.astype(x.dtype, copy=False), gw.astype(w.dtype, copy=False), gb
