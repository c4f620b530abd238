"""
Tensor factories.

Shapes may be given as varargs (`zeros(2, 3)`) or a single sequence
(`zeros((2, 3))`). Unless a `dtype` is passed, floating factories produce the
configured default floating type and integer factories produce Int64.

Random factories draw from NumPy's global generator; `manual_seed` seeds it.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional, Sequence, Tuple

import numpy as np

from ...domain._dtype import ScalarType
from ...domain._errors import DTypeNotSupportedError, ShapeError
from ...domain.device._device import Device, as_device
from .._config import get_config
from ..native._engine import get_engine
from ._scalar import Scalar
from ._tensor import Tensor

logger = logging.getLogger(__name__)


def _shape_of(shape: Sequence[Any]) -> Tuple[int, ...]:
    if len(shape) == 1 and isinstance(shape[0], (tuple, list)):
        shape = shape[0]
    out = tuple(int(s) for s in shape)
    for i, s in enumerate(out):
        if s < 0:
            raise ShapeError(
                "negative dimension in tensor shape", dim=i, expected=">= 0", actual=s
            )
    return out


def _resolve(dtype: Any, device: Any, fallback: Optional[ScalarType] = None):
    cfg = get_config()
    if dtype is not None:
        st = ScalarType.from_any(dtype)
    else:
        st = cfg.default_dtype if fallback is None else fallback
    dev = as_device(device, Device(cfg.default_device))
    return st, dev


def _allocated(
    shape: Tuple[int, ...], st: ScalarType, dev: Device, fill: Any, requires_grad: bool
) -> Tensor:
    handle = get_engine().allocate(shape, st, dev, fill=fill)
    t = Tensor._from_handle(handle)
    t.requires_grad = requires_grad
    return t


def _from_array(arr: np.ndarray, st: ScalarType, dev: Device, requires_grad: bool) -> Tensor:
    t = Tensor._from_numpy(arr, device=dev, dtype=st)
    t.requires_grad = requires_grad
    return t


def _require_floating(st: ScalarType, op: str) -> None:
    if not st.is_floating_point:
        raise DTypeNotSupportedError(f"{op} is not implemented for {st.name}")


# ----------------------------------------------------------------------
# constant fills
# ----------------------------------------------------------------------
def zeros(*shape: Any, dtype: Any = None, device: Any = None, requires_grad: bool = False) -> Tensor:
    st, dev = _resolve(dtype, device)
    return _allocated(_shape_of(shape), st, dev, 0, requires_grad)


def ones(*shape: Any, dtype: Any = None, device: Any = None, requires_grad: bool = False) -> Tensor:
    st, dev = _resolve(dtype, device)
    return _allocated(_shape_of(shape), st, dev, 1, requires_grad)


def empty(*shape: Any, dtype: Any = None, device: Any = None, requires_grad: bool = False) -> Tensor:
    """Tensor with unspecified contents."""
    st, dev = _resolve(dtype, device)
    return _allocated(_shape_of(shape), st, dev, None, requires_grad)


def full(
    shape: Sequence[int],
    fill_value: Any,
    *,
    dtype: Any = None,
    device: Any = None,
    requires_grad: bool = False,
) -> Tensor:
    """
    Tensor filled with `fill_value`.

    Without a `dtype`, the element type follows the value: bool -> Bool,
    int -> Int64, float -> the default floating type.
    """
    if isinstance(shape, (int, np.integer)):
        shape = (shape,)
    if dtype is None:
        scalar = Scalar(fill_value)
        if scalar.dtype.is_floating_point:
            dtype = get_config().default_dtype
        else:
            dtype = scalar.dtype
        fill_value = scalar.value
    st, dev = _resolve(dtype, device)
    value = Scalar(fill_value, st).value
    return _allocated(_shape_of(tuple(shape)), st, dev, value, requires_grad)


def eye(
    n: int,
    m: Optional[int] = None,
    *,
    dtype: Any = None,
    device: Any = None,
    requires_grad: bool = False,
) -> Tensor:
    st, dev = _resolve(dtype, device)
    arr = np.eye(n, n if m is None else m, dtype=st.numpy_dtype)
    return _from_array(arr, st, dev, requires_grad)


def zeros_like(t: Tensor, *, dtype: Any = None, device: Any = None, requires_grad: bool = False) -> Tensor:
    return zeros(
        t.shape,
        dtype=t.dtype if dtype is None else dtype,
        device=t.device if device is None else device,
        requires_grad=requires_grad,
    )


def ones_like(t: Tensor, *, dtype: Any = None, device: Any = None, requires_grad: bool = False) -> Tensor:
    return ones(
        t.shape,
        dtype=t.dtype if dtype is None else dtype,
        device=t.device if device is None else device,
        requires_grad=requires_grad,
    )


def empty_like(t: Tensor, *, dtype: Any = None, device: Any = None, requires_grad: bool = False) -> Tensor:
    return empty(
        t.shape,
        dtype=t.dtype if dtype is None else dtype,
        device=t.device if device is None else device,
        requires_grad=requires_grad,
    )


def full_like(
    t: Tensor, fill_value: Any, *, dtype: Any = None, device: Any = None, requires_grad: bool = False
) -> Tensor:
    return full(
        t.shape,
        fill_value,
        dtype=t.dtype if dtype is None else dtype,
        device=t.device if device is None else device,
        requires_grad=requires_grad,
    )


# ----------------------------------------------------------------------
# ranges
# ----------------------------------------------------------------------
def arange(
    start: Any,
    end: Any = None,
    step: Any = 1,
    *,
    dtype: Any = None,
    device: Any = None,
    requires_grad: bool = False,
) -> Tensor:
    """
    Values from `start` (inclusive) to `end` (exclusive) spaced by `step`.

    The result is Int64 when every argument is an integer.
    """
    if end is None:
        start, end = 0, start
    if step == 0:
        raise ValueError("arange step must be nonzero")
    integral = all(isinstance(v, (int, np.integer)) for v in (start, end, step))
    st, dev = _resolve(dtype, device, ScalarType.Int64 if integral else None)
    n = max(0, math.ceil((end - start) / step))
    arr = (start + step * np.arange(n, dtype=np.float64 if not integral else np.int64))
    return _from_array(arr.astype(st.numpy_dtype), st, dev, requires_grad)


def linspace(
    start: float,
    end: float,
    steps: int,
    *,
    dtype: Any = None,
    device: Any = None,
    requires_grad: bool = False,
) -> Tensor:
    if steps < 0:
        raise ValueError("number of steps must be non-negative")
    st, dev = _resolve(dtype, device)
    arr = np.linspace(start, end, steps, dtype=np.float64)
    return _from_array(arr.astype(st.numpy_dtype), st, dev, requires_grad)


def logspace(
    start: float,
    end: float,
    steps: int,
    base: float = 10.0,
    *,
    dtype: Any = None,
    device: Any = None,
    requires_grad: bool = False,
) -> Tensor:
    if steps < 0:
        raise ValueError("number of steps must be non-negative")
    st, dev = _resolve(dtype, device)
    arr = np.logspace(start, end, steps, base=base, dtype=np.float64)
    return _from_array(arr.astype(st.numpy_dtype), st, dev, requires_grad)


# ----------------------------------------------------------------------
# random
# ----------------------------------------------------------------------
def manual_seed(seed: int) -> None:
    """Seed the generator behind every random factory and random in-place op."""
    np.random.seed(int(seed) % (2**32))
    logger.debug("random generator seeded with %d", seed)


def rand(*shape: Any, dtype: Any = None, device: Any = None, requires_grad: bool = False) -> Tensor:
    """Uniform samples from [0, 1)."""
    st, dev = _resolve(dtype, device)
    _require_floating(st, "rand")
    arr = np.random.random_sample(_shape_of(shape))
    return _from_array(arr, st, dev, requires_grad)


def randn(*shape: Any, dtype: Any = None, device: Any = None, requires_grad: bool = False) -> Tensor:
    """Standard normal samples."""
    st, dev = _resolve(dtype, device)
    _require_floating(st, "randn")
    arr = np.random.standard_normal(_shape_of(shape))
    return _from_array(arr, st, dev, requires_grad)


def randint(
    low: int,
    high: Optional[int] = None,
    size: Sequence[int] = (),
    *,
    dtype: Any = None,
    device: Any = None,
) -> Tensor:
    """Integers uniformly drawn from [low, high)."""
    if high is None:
        low, high = 0, low
    if high <= low:
        raise ValueError(f"randint expects low < high, got low={low}, high={high}")
    st, dev = _resolve(dtype, device, ScalarType.Int64)
    if isinstance(size, (int, np.integer)):
        size = (size,)
    arr = np.random.randint(low, high, size=_shape_of((tuple(size),)), dtype=np.int64)
    return _from_array(arr, st, dev, False)


def randperm(n: int, *, dtype: Any = None, device: Any = None) -> Tensor:
    st, dev = _resolve(dtype, device, ScalarType.Int64)
    return _from_array(np.random.permutation(int(n)), st, dev, False)


def rand_like(t: Tensor, *, dtype: Any = None, requires_grad: bool = False) -> Tensor:
    st = t.dtype if dtype is None else dtype
    return rand(t.shape, dtype=st, device=t.device, requires_grad=requires_grad)


def randn_like(t: Tensor, *, dtype: Any = None, requires_grad: bool = False) -> Tensor:
    st = t.dtype if dtype is None else dtype
    return randn(t.shape, dtype=st, device=t.device, requires_grad=requires_grad)


# ----------------------------------------------------------------------
# from data
# ----------------------------------------------------------------------
def tensor(data: Any, *, dtype: Any = None, device: Any = None, requires_grad: bool = False) -> Tensor:
    """Copy `data` (nested sequences, NumPy arrays, numbers or a Tensor) into a new tensor."""
    return Tensor(data=data, dtype=dtype, device=device, requires_grad=requires_grad)


def from_array(arr: np.ndarray, *, device: Any = None, requires_grad: bool = False) -> Tensor:
    """New tensor holding a copy of `arr`, keeping its element type."""
    arr = np.asarray(arr)
    st = ScalarType.from_any(arr.dtype)
    return _from_array(np.array(arr, copy=True), st, as_device(device), requires_grad)


# ----------------------------------------------------------------------
# random in-place fills
# ----------------------------------------------------------------------
def _fill_random_(t: Tensor, arr: np.ndarray, name: str) -> Tensor:
    return t._apply_inplace(
        lambda a: Tensor._from_numpy(arr, device=a.device, dtype=a.dtype), name=name
    )


def uniform_(t: Tensor, low: float = 0.0, high: float = 1.0) -> Tensor:
    _require_floating(t.dtype, "uniform_")
    return _fill_random_(t, np.random.uniform(low, high, size=t.shape), "uniform_")


def normal_(t: Tensor, mean: float = 0.0, std: float = 1.0) -> Tensor:
    _require_floating(t.dtype, "normal_")
    return _fill_random_(t, np.random.normal(mean, std, size=t.shape), "normal_")


def bernoulli_(t: Tensor, p: float = 0.5) -> Tensor:
    if not 0.0 <= p <= 1.0:
        raise ValueError(f"bernoulli_ expects 0 <= p <= 1, got {p}")
    return _fill_random_(t, np.random.random_sample(t.shape) < p, "bernoulli_")


Tensor.uniform_ = uniform_
Tensor.normal_ = normal_
Tensor.bernoulli_ = bernoulli_
