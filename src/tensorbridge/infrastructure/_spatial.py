"""
Input checks shared by the spatial layers (convolution, pooling, padding,
normalization, upsampling).

Spatial layers with `nd` spatial dims take channel-first input of rank
`nd + 2` (batched) or `nd + 1` (unbatched). Unbatched input is given a
leading batch dim for the computation and loses it again on output.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

from ..domain._dtype import ScalarType
from ..domain._errors import DTypeNotSupportedError, ShapeError
from .tensor._tensor import Tensor

_LOW_PRECISION = (ScalarType.Float16, ScalarType.BFloat16)


def check_spatial_input(x: Tensor, nd: int, name: str, *, allow_unbatched: bool = True) -> bool:
    """
    Validate the rank of a spatial input.

    Returns
    -------
    bool
        True when the input is unbatched.

    Raises
    ------
    ShapeError
        If the rank is neither `nd + 2` nor (when allowed) `nd + 1`.
    """
    if x.ndim == nd + 2:
        return False
    if allow_unbatched and x.ndim == nd + 1:
        return True
    expected = f"{nd + 1} or {nd + 2}" if allow_unbatched else nd + 2
    raise ShapeError(
        f"{name} expects {expected}-D input", expected=expected, actual=x.ndim
    )


def batched_array(x: Tensor, unbatched: bool) -> np.ndarray:
    """Host copy of `x` in its compute type, with a batch dim."""
    arr = x.to_numpy()
    if x.dtype in _LOW_PRECISION:
        arr = arr.astype(np.float32)
    return arr[None] if unbatched else arr


def unbatch(arr: np.ndarray, unbatched: bool) -> np.ndarray:
    return arr[0] if unbatched else arr


def require_floating(x: Tensor, name: str) -> None:
    if not x.dtype.is_floating_point:
        raise DTypeNotSupportedError(f"{name} requires a floating point input, got {x.dtype.name}")


def positive(values: Tuple[int, ...], what: str) -> Tuple[int, ...]:
    if any(v <= 0 for v in values):
        raise ValueError(f"{what} must be positive, got {values}")
    return values


def non_negative(values: Tuple[int, ...], what: str) -> Tuple[int, ...]:
    if any(v < 0 for v in values):
        raise ValueError(f"{what} must be non-negative, got {values}")
    return values
