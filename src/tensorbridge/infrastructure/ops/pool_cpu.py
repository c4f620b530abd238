"""
CPU reference implementations of N-d pooling (NumPy backend).

Implemented variants
--------------------
- max pooling with padding, dilation and ceil mode (forward + backward),
  returning flat spatial indices into the unpadded input
- average pooling with `count_include_pad`, ceil mode and
  `divisor_override` (forward + backward)
- adaptive average / max pooling (forward + backward)
- max unpooling (forward + backward)

Padding semantics
-----------------
- Max pooling pads with `-inf` so padded values never win.
- Average pooling pads with zeros; the divisor counts either the window
  area clipped to the padded input or only the real input elements
  (`count_include_pad=False`). Extra room added on the right by ceil mode is
  never counted.

All arrays are `(N, C, *spatial)`.
"""

from __future__ import annotations

from itertools import product
from typing import List, Sequence, Tuple

import numpy as np

from ..native._engine import native_kernel
from ._common import col2im, pool_output_size, windows


def _pool_geometry(
    spatial: Sequence[int],
    kernel: Sequence[int],
    stride: Sequence[int],
    padding: Sequence[int],
    dilation: Sequence[int],
    ceil_mode: bool,
):
    out = tuple(
        pool_output_size(n, k, s, p, d, ceil_mode)
        for n, k, s, p, d in zip(spatial, kernel, stride, padding, dilation)
    )
    # room on the right so that every window of a ceil-mode output exists
    extra = tuple(
        max(0, (o - 1) * s + d * (k - 1) + 1 - (n + 2 * p))
        for o, s, d, k, n, p in zip(out, stride, dilation, kernel, spatial, padding)
    )
    pairs = ((0, 0), (0, 0)) + tuple((p, p + e) for p, e in zip(padding, extra))
    return out, pairs


@native_kernel("max_pool_forward")
def max_pool_forward_cpu(x, kernel, stride, padding, dilation, ceil_mode):
    """
    Returns
    -------
    tuple[np.ndarray, np.ndarray]
        Pooled values and int64 flat indices into each input plane.
    """
    nd = len(kernel)
    N, C = x.shape[:2]
    spatial = x.shape[2:]
    out, pairs = _pool_geometry(spatial, kernel, stride, padding, dilation, ceil_mode)
    fill = -np.inf if x.dtype.kind in "fc" else np.iinfo(x.dtype).min
    xp = np.pad(x, pairs, mode="constant", constant_values=fill)
    win = windows(xp, kernel, stride, dilation, out)
    flat = win.reshape((N, C) + out + (-1,))
    arg = np.argmax(flat, axis=-1)
    y = np.take_along_axis(flat, arg[..., None], axis=-1)[..., 0]

    # padded-frame coordinates of each winner, shifted back to the input frame
    koff = np.unravel_index(arg, tuple(kernel))
    grid = np.indices(out)
    coords = []
    for i in range(nd):
        base = grid[i].reshape((1, 1) + out) * stride[i]
        c = base + koff[i] * dilation[i] - padding[i]
        coords.append(np.clip(c, 0, spatial[i] - 1))
    idx = np.ravel_multi_index(tuple(coords), tuple(spatial))
    return np.ascontiguousarray(y), idx.astype(np.int64)


@native_kernel("max_pool_backward")
def max_pool_backward_cpu(g, idx, in_shape):
    N, C = in_shape[:2]
    plane = int(np.prod(in_shape[2:], dtype=np.int64))
    gx = np.zeros((N * C, plane), dtype=g.dtype)
    rows = np.repeat(np.arange(N * C), int(np.prod(g.shape[2:], dtype=np.int64)))
    np.add.at(gx, (rows, idx.reshape(-1)), g.reshape(-1))
    return gx.reshape(tuple(in_shape))


def _avg_divisor(spatial, kernel, stride, padding, out, pairs, count_include_pad):
    """Per-output-position divisor, shaped (*out)."""
    padded = tuple(n + lo + hi for n, (lo, hi) in zip(spatial, pairs[2:]))
    mask = np.zeros(padded, dtype=np.float64)
    if count_include_pad:
        region = tuple(slice(0, n + 2 * p) for n, p in zip(spatial, padding))
    else:
        region = tuple(slice(p, p + n) for n, p in zip(spatial, padding))
    mask[region] = 1.0
    ones = (1,) * len(kernel)
    win = windows(mask[None, None], kernel, stride, ones, out)
    return win.sum(axis=tuple(range(-len(kernel), 0)))[0, 0]


@native_kernel("avg_pool_forward")
def avg_pool_forward_cpu(
    x, kernel, stride, padding, ceil_mode, count_include_pad, divisor_override
):
    nd = len(kernel)
    spatial = x.shape[2:]
    ones = (1,) * nd
    out, pairs = _pool_geometry(spatial, kernel, stride, padding, ones, ceil_mode)
    xp = np.pad(x, pairs, mode="constant")
    win = windows(xp, kernel, stride, ones, out)
    total = win.sum(axis=tuple(range(-nd, 0)))
    if divisor_override:
        div = float(divisor_override)
    else:
        div = _avg_divisor(spatial, kernel, stride, padding, out, pairs, count_include_pad)
    return np.ascontiguousarray(total / div).astype(x.dtype, copy=False)


@native_kernel("avg_pool_backward")
def avg_pool_backward_cpu(
    g, in_shape, kernel, stride, padding, ceil_mode, count_include_pad, divisor_override
):
    """
    Spread each output gradient evenly (by the forward divisor) over its
    window and crop the padding away.
    """
    nd = len(kernel)
    spatial = tuple(in_shape[2:])
    ones = (1,) * nd
    out, pairs = _pool_geometry(spatial, kernel, stride, padding, ones, ceil_mode)
    if divisor_override:
        div = float(divisor_override)
    else:
        div = _avg_divisor(spatial, kernel, stride, padding, out, pairs, count_include_pad)
    share = (g / div)[(Ellipsis,) + (None,) * nd]
    cols = np.broadcast_to(share, g.shape + tuple(kernel))
    padded = tuple(in_shape[:2]) + tuple(n + lo + hi for n, (lo, hi) in zip(spatial, pairs[2:]))
    gxp = col2im(np.ascontiguousarray(cols), padded, kernel, stride, ones)
    crop = tuple(slice(lo, lo + n) for n, (lo, _) in zip(spatial, pairs[2:]))
    return np.ascontiguousarray(gxp[(slice(None), slice(None)) + crop]).astype(g.dtype, copy=False)


def adaptive_ranges(size: int, out: int) -> List[Tuple[int, int]]:
    """[start, end) of each adaptive pooling bin."""
    return [((i * size) // out, -((-(i + 1) * size) // out)) for i in range(out)]


def _adaptive_regions(spatial, out):
    per_dim = [adaptive_ranges(n, o) for n, o in zip(spatial, out)]
    for pos in product(*(range(o) for o in out)):
        yield pos, tuple(slice(*per_dim[i][p]) for i, p in enumerate(pos))


@native_kernel("adaptive_avg_pool_forward")
def adaptive_avg_pool_forward_cpu(x, out):
    nd = len(out)
    y = np.empty(x.shape[:2] + tuple(out), dtype=x.dtype)
    axes = tuple(range(2, 2 + nd))
    for pos, region in _adaptive_regions(x.shape[2:], out):
        y[(Ellipsis,) + pos] = x[(slice(None), slice(None)) + region].mean(axis=axes)
    return y


@native_kernel("adaptive_avg_pool_backward")
def adaptive_avg_pool_backward_cpu(g, in_shape):
    out = g.shape[2:]
    gx = np.zeros(tuple(in_shape), dtype=g.dtype)
    for pos, region in _adaptive_regions(in_shape[2:], out):
        count = int(np.prod([r.stop - r.start for r in region]))
        gx[(slice(None), slice(None)) + region] += (g[(Ellipsis,) + pos] / count)[
            (Ellipsis,) + (None,) * len(out)
        ]
    return gx


@native_kernel("adaptive_max_pool_forward")
def adaptive_max_pool_forward_cpu(x, out):
    nd = len(out)
    N, C = x.shape[:2]
    spatial = x.shape[2:]
    y = np.empty((N, C) + tuple(out), dtype=x.dtype)
    idx = np.empty((N, C) + tuple(out), dtype=np.int64)
    for pos, region in _adaptive_regions(spatial, out):
        block = x[(slice(None), slice(None)) + region].reshape(N, C, -1)
        arg = np.argmax(block, axis=-1)
        y[(Ellipsis,) + pos] = np.take_along_axis(block, arg[..., None], axis=-1)[..., 0]
        local = np.unravel_index(arg, tuple(r.stop - r.start for r in region))
        coords = tuple(local[i] + region[i].start for i in range(nd))
        idx[(Ellipsis,) + pos] = np.ravel_multi_index(coords, tuple(spatial))
    return y, idx


@native_kernel("max_unpool_forward")
def max_unpool_forward_cpu(x, idx, out_spatial):
    N, C = x.shape[:2]
    plane = int(np.prod(out_spatial, dtype=np.int64))
    y = np.zeros((N * C, plane), dtype=x.dtype)
    rows = np.repeat(np.arange(N * C), int(np.prod(x.shape[2:], dtype=np.int64)))
    y[rows, idx.reshape(-1)] = x.reshape(-1)
    return y.reshape((N, C) + tuple(out_spatial))


@native_kernel("max_unpool_backward")
def max_unpool_backward_cpu(g, idx, in_shape):
    N, C = in_shape[:2]
    flat = g.reshape(N * C, -1)
    gx = np.take_along_axis(flat, idx.reshape(N * C, -1), axis=1)
    return gx.reshape(tuple(in_shape))
