"""
Tensor index descriptors.

An index expression is a sequence of per-dimension descriptors. Each
descriptor kind is its own small immutable class carrying only the fields it
needs:

- `Single(i)`           select one position and drop the dimension
- `Slice(start, stop, step)`  half-open range, all fields optional
- `Bool(flag)`          insert a size-1 (True) or size-0 (False) axis
- `TensorIndexer(t)`    integer gather or boolean mask given as a tensor
- `Ellipsis()`          expand to as many `All` as needed
- `NewAxis()`           insert a size-1 axis
- `All()`               keep the whole dimension

`to_index(obj)` converts the usual Python spellings (`int`, `slice`, `None`,
`...`, `bool`, tensors, arrays, lists) to descriptors.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union


@dataclass(frozen=True)
class Single:
    index: int

    consumes_dim = True


@dataclass(frozen=True)
class Slice:
    start: Optional[int] = None
    stop: Optional[int] = None
    step: Optional[int] = None

    consumes_dim = True

    def __post_init__(self) -> None:
        if self.step == 0:
            raise ValueError("slice step cannot be zero")

    def as_slice(self) -> slice:
        return slice(self.start, self.stop, self.step)


@dataclass(frozen=True)
class Bool:
    value: bool

    consumes_dim = False


@dataclass(frozen=True, eq=False)
class TensorIndexer:
    """Gather/mask index. `tensor` is a tensor or array-like of ints or bools."""

    tensor: Any

    @property
    def consumes_dim(self) -> int:  # type: ignore[override]
        arr = _as_array(self.tensor)
        if arr.dtype == bool:
            return arr.ndim
        return 1


@dataclass(frozen=True)
class Ellipsis:
    consumes_dim = False


@dataclass(frozen=True)
class NewAxis:
    consumes_dim = False


@dataclass(frozen=True)
class All:
    consumes_dim = True


TensorIndex = Union[Single, Slice, Bool, TensorIndexer, Ellipsis, NewAxis, All]


def _as_array(obj: Any):
    import numpy as np

    if hasattr(obj, "to_numpy"):
        return obj.to_numpy()
    return np.asarray(obj)


def to_index(obj: Any) -> TensorIndex:
    """Convert a Python index spelling to a descriptor."""
    if isinstance(obj, (Single, Slice, Bool, TensorIndexer, Ellipsis, NewAxis, All)):
        return obj
    if obj is None:
        return NewAxis()
    if obj is ...:
        return Ellipsis()
    # bool before int: bool is an int subclass
    if isinstance(obj, bool):
        return Bool(obj)
    if isinstance(obj, slice):
        if obj == slice(None):
            return All()
        return Slice(obj.start, obj.stop, obj.step)
    if hasattr(obj, "__index__") and not hasattr(obj, "shape"):
        return Single(int(obj.__index__()))
    if hasattr(obj, "shape") and getattr(obj, "shape") == () and not _is_bool(obj):
        return Single(int(_as_array(obj)))
    return TensorIndexer(obj)


def _is_bool(obj: Any) -> bool:
    return _as_array(obj).dtype == bool


def count_consumed(indices) -> int:
    """Number of tensor dimensions consumed by `indices` (ellipsis excluded)."""
    return sum(int(ix.consumes_dim) for ix in indices)
