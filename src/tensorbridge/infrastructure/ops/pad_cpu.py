"""
CPU padding kernels.

`pad` takes per-axis `(before, after)` pairs for every axis of `x` (already
translated from the last-dim-first convention of the functional API).
Constant padding accepts negative amounts, which crop.
"""

from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np

from ..native._engine import native_kernel

_NUMPY_MODES = {
    "constant": "constant",
    "reflect": "reflect",
    "replicate": "edge",
    "circular": "wrap",
}

Pairs = Sequence[Tuple[int, int]]


def _crop(x: np.ndarray, pairs: Pairs) -> Tuple[np.ndarray, Pairs]:
    """Apply negative amounts as crops; return the rest as non-negative pairs."""
    key = tuple(
        slice(max(0, -lo), x.shape[i] - max(0, -hi)) for i, (lo, hi) in enumerate(pairs)
    )
    return x[key], tuple((max(0, lo), max(0, hi)) for lo, hi in pairs)


@native_kernel("pad")
def pad_cpu(x: np.ndarray, pairs: Pairs, mode: str, value: float) -> np.ndarray:
    if mode == "constant":
        x, pairs = _crop(x, pairs)
        return np.pad(x, pairs, mode="constant", constant_values=value)
    return np.pad(x, pairs, mode=_NUMPY_MODES[mode])


@native_kernel("pad_backward")
def pad_backward_cpu(g: np.ndarray, in_shape: Sequence[int], pairs: Pairs, mode: str) -> np.ndarray:
    """
    Adjoint of `pad`: route every output gradient back to the input element
    it was copied from.
    """
    if mode == "constant":
        gx = np.zeros(tuple(in_shape), dtype=g.dtype)
        src = tuple(
            slice(max(0, lo), g.shape[i] - max(0, hi)) for i, (lo, hi) in enumerate(pairs)
        )
        dst = tuple(
            slice(max(0, -lo), in_shape[i] - max(0, -hi)) for i, (lo, hi) in enumerate(pairs)
        )
        gx[dst] = g[src]
        return gx

    # pad an index map with the same mode, then scatter-add through it
    idx = np.arange(int(np.prod(in_shape, dtype=np.int64))).reshape(tuple(in_shape))
    padded_idx = np.pad(idx, pairs, mode=_NUMPY_MODES[mode])
    gx = np.zeros(int(idx.size), dtype=g.dtype)
    np.add.at(gx, padded_idx.reshape(-1), g.reshape(-1))
    return gx.reshape(tuple(in_shape))
