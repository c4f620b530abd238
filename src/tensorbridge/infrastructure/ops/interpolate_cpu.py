"""
CPU resampling kernels.

Every supported mode is separable: resizing one spatial axis from `n_in` to
`n_out` samples is a linear map given by an `(n_out, n_in)` matrix, so the
N-d forward applies one matrix per axis and the backward applies their
transposes.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from ..native._engine import native_kernel
from .pool_cpu import adaptive_ranges

_CUBIC_A = -0.75


def _source_scale(n_in: int, n_out: int, scale: Optional[float], align_corners: bool) -> float:
    if align_corners:
        return (n_in - 1) / (n_out - 1) if n_out > 1 else 0.0
    if scale:
        return 1.0 / scale
    return n_in / n_out


def _cubic_weights(t: float):
    a = _CUBIC_A

    def near(x):
        return ((a + 2) * x - (a + 3)) * x * x + 1

    def far(x):
        return ((a * x - 5 * a) * x + 8 * a) * x - 4 * a

    return (far(t + 1), near(t), near(1 - t), far(2 - t))


def interpolation_matrix(
    n_in: int,
    n_out: int,
    mode: str,
    align_corners: bool = False,
    scale: Optional[float] = None,
) -> np.ndarray:
    """
    Resampling matrix for one axis.

    Parameters
    ----------
    mode : {"nearest", "linear", "cubic", "area"}
        Per-axis rule (bilinear/trilinear use "linear", bicubic "cubic").
    """
    m = np.zeros((n_out, n_in), dtype=np.float64)
    if mode == "area":
        for i, (lo, hi) in enumerate(adaptive_ranges(n_in, n_out)):
            m[i, lo:hi] = 1.0 / (hi - lo)
        return m

    r = _source_scale(n_in, n_out, scale, align_corners)
    for i in range(n_out):
        if mode == "nearest":
            m[i, min(int(math.floor(i * r)), n_in - 1)] = 1.0
            continue
        src = i * r if align_corners else (i + 0.5) * r - 0.5
        if mode == "linear":
            src = max(src, 0.0)
            i0 = min(int(math.floor(src)), n_in - 1)
            i1 = min(i0 + 1, n_in - 1)
            lam = src - i0
            m[i, i0] += 1.0 - lam
            m[i, i1] += lam
        elif mode == "cubic":
            i0 = int(math.floor(src))
            for off, wgt in zip(range(-1, 3), _cubic_weights(src - i0)):
                m[i, min(max(i0 + off, 0), n_in - 1)] += wgt
        else:
            raise ValueError(f"unknown interpolation rule {mode!r}")
    return m


def _apply(x: np.ndarray, mats: Sequence[np.ndarray]) -> np.ndarray:
    y = x
    for axis, m in enumerate(mats, start=2):
        y = np.moveaxis(np.tensordot(m, y, axes=([1], [axis])), 0, axis)
    return y


@native_kernel("interpolate_forward")
def interpolate_forward_cpu(x: np.ndarray, mats: Sequence[np.ndarray]) -> np.ndarray:
    return np.ascontiguousarray(_apply(x, mats)).astype(x.dtype, copy=False)


@native_kernel("interpolate_backward")
def interpolate_backward_cpu(g: np.ndarray, mats: Sequence[np.ndarray]) -> np.ndarray:
    return np.ascontiguousarray(_apply(g, [m.T for m in mats])).astype(g.dtype, copy=False)
