"""
Multi-tensor operations: concatenation, stacking and elementwise selection.
"""

from __future__ import annotations

from functools import reduce
from typing import Any, Sequence

import numpy as np

from ...domain._dtype import ScalarType, promote_types
from ...domain._errors import ShapeError
from ._tensor import Tensor


def _validate_sequence(tensors: Sequence[Tensor], op: str) -> list:
    tensors = list(tensors)
    if not tensors:
        raise ValueError(f"{op}() expects a non-empty sequence of tensors")
    Tensor._check_same_device(*tensors)
    return tensors


def cat(tensors: Sequence[Tensor], dim: int = 0) -> Tensor:
    """
    Concatenate along an existing dimension.

    All inputs must have the same rank and agree on every dimension except
    `dim`. Element types are promoted.

    Raises
    ------
    ShapeError
        For rank or size mismatches.
    """
    tensors = _validate_sequence(tensors, "cat")
    first = tensors[0]
    if first.ndim == 0:
        raise ShapeError("zero-dimensional tensors cannot be concatenated")
    d = first._wrap_dim(dim)
    for i, t in enumerate(tensors[1:], start=1):
        if t.ndim != first.ndim:
            raise ShapeError(
                f"tensors must have the same number of dimensions (tensor {i})",
                expected=first.ndim,
                actual=t.ndim,
            )
        for k in range(first.ndim):
            if k != d and t.shape[k] != first.shape[k]:
                raise ShapeError(
                    f"sizes of tensors must match except in dimension {d} (tensor {i})",
                    dim=k,
                    expected=first.shape[k],
                    actual=t.shape[k],
                )
    st = reduce(promote_types, (t.dtype for t in tensors))
    out = np.concatenate([t._array.astype(st.numpy_dtype, copy=False) for t in tensors], axis=d)
    bounds = np.cumsum([t.shape[d] for t in tensors])[:-1]

    def backward_fn(g):
        return tuple(np.split(g.to_numpy(), bounds, axis=d))

    grad_ok = st.is_floating_point or st.is_complex
    return Tensor._wrap_result(
        out, tensors, backward_fn if grad_ok else None, name="cat", dtype=st
    )


concat = cat


def stack(tensors: Sequence[Tensor], dim: int = 0) -> Tensor:
    """
    Stack same-shaped tensors along a new dimension.

    Raises
    ------
    ShapeError
        If the shapes differ.
    """
    tensors = _validate_sequence(tensors, "stack")
    shape = tensors[0].shape
    for i, t in enumerate(tensors[1:], start=1):
        if t.shape != shape:
            raise ShapeError(
                f"stack expects each tensor to be equal size (tensor {i})",
                expected=shape,
                actual=t.shape,
            )
    d = tensors[0]._wrap_dim(dim, len(shape) + 1)
    return cat([t.unsqueeze(d) for t in tensors], d)


def where(condition: Any, x: Any, y: Any) -> Tensor:
    """
    Elementwise `x if condition else y`, broadcasting all three operands.
    """
    like = next((v for v in (x, y, condition) if isinstance(v, Tensor)), None)
    if like is None:
        raise TypeError("where() expects at least one tensor argument")
    cond = Tensor._as_tensor_like(condition, like)
    if cond.dtype is not ScalarType.Bool:
        raise TypeError(f"where() condition must be a Bool tensor, got {cond.dtype.name}")
    a = Tensor._as_tensor_like(x, like)
    b = Tensor._as_tensor_like(y, like)
    Tensor._check_same_device(cond, a, b)
    try:
        shape = np.broadcast_shapes(cond.shape, a.shape, b.shape)
    except ValueError:
        raise ShapeError(
            "where() operands could not be broadcast together",
            actual=(cond.shape, a.shape, b.shape),
        ) from None
    st = promote_types(a.dtype, b.dtype)
    c = cond._array
    out = np.where(c, a._array.astype(st.numpy_dtype), b._array.astype(st.numpy_dtype))

    def backward_fn(g):
        ga = np.broadcast_to(g.to_numpy(), shape)
        return (None, np.where(c, ga, 0), np.where(c, 0, ga))

    grad_ok = st.is_floating_point or st.is_complex
    return Tensor._wrap_result(
        out, (cond, a, b), backward_fn if grad_ok else None, name="where", dtype=st
    )


def broadcast_tensors(*tensors: Tensor) -> tuple:
    shape = np.broadcast_shapes(*(t.shape for t in tensors))
    return tuple(t.broadcast_to(shape) for t in tensors)
