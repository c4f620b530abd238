"""
Helpers shared by the CPU kernels.

Spatial kernels work on channel-first arrays `(N, C, *spatial)` with one to
three spatial dims. Hyperparameters arrive already expanded to one value per
spatial dim.
"""

from __future__ import annotations

from itertools import product
from typing import Any, Iterator, Sequence, Tuple

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

_OUT_AXES = "xyz"
_KERNEL_AXES = "uvw"


def pool_output_size(size: int, k: int, s: int, p: int, d: int, ceil_mode: bool) -> int:
    span = size + 2 * p - d * (k - 1) - 1
    if ceil_mode:
        out = -(-span // s) + 1
        # the last window must start inside the input or left padding
        if (out - 1) * s >= size + p:
            out -= 1
        return out
    return span // s + 1


def transposed_output_size(size: int, k: int, s: int, p: int, d: int, output_padding: int) -> int:
    return (size - 1) * s - 2 * p + d * (k - 1) + output_padding + 1


def spatial_letters(nd: int) -> Tuple[str, str]:
    """Einsum subscripts for output positions and kernel offsets."""
    return _OUT_AXES[:nd], _KERNEL_AXES[:nd]


def windows(
    xp: np.ndarray,
    kernel: Sequence[int],
    stride: Sequence[int],
    dilation: Sequence[int],
    out: Sequence[int],
) -> np.ndarray:
    """
    Strided view `(N, C, *out, *kernel)` of the sliding windows of `xp`.

    `xp` must already be padded so that `out` windows fit.
    """
    nd = len(kernel)
    span = tuple(d * (k - 1) + 1 for k, d in zip(kernel, dilation))
    v = sliding_window_view(xp, span, axis=tuple(range(2, 2 + nd)))
    pos = tuple(slice(0, o * s, s) for o, s in zip(out, stride))
    offs = tuple(slice(None, None, d) for d in dilation)
    return v[(slice(None), slice(None)) + pos + offs]


def kernel_offsets(kernel: Sequence[int]) -> Iterator[Tuple[int, ...]]:
    return product(*(range(k) for k in kernel))


def col2im(
    cols: np.ndarray,
    padded_shape: Sequence[int],
    kernel: Sequence[int],
    stride: Sequence[int],
    dilation: Sequence[int],
) -> np.ndarray:
    """
    Scatter-add windows `(N, C, *out, *kernel)` back into an array of
    `padded_shape`. Inverse (adjoint) of `windows`.
    """
    nd = len(kernel)
    out = cols.shape[2 : 2 + nd]
    res = np.zeros(tuple(padded_shape), dtype=cols.dtype)
    if 0 in out:
        return res
    for off in kernel_offsets(kernel):
        sl = tuple(
            slice(o * d, o * d + s * (n - 1) + 1, s)
            for o, d, s, n in zip(off, dilation, stride, out)
        )
        res[(slice(None), slice(None)) + sl] += cols[(Ellipsis,) + off]
    return res


def ntuple(value: Any, n: int, name: str = "value") -> Tuple[int, ...]:
    """
    Expand an int hyperparameter to one value per spatial dim.

    Raises
    ------
    ValueError
        If a sequence of the wrong length is given.
    """
    if isinstance(value, (list, tuple)):
        if len(value) != n:
            raise ValueError(f"{name} must have {n} elements, got {len(value)}")
        return tuple(int(v) for v in value)
    return (int(value),) * n
