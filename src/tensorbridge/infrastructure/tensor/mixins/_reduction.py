"""
Reductions and normalizing reductions (softmax family) for Tensor.

`dim` accepts None (all dimensions), an int or a tuple of ints; negative
values count from the end. `keepdim=True` keeps reduced axes with size 1.
"""

from __future__ import annotations

import warnings
from collections import namedtuple
from typing import TYPE_CHECKING, Any, Optional, Tuple, Union

import numpy as np

from ....domain._dtype import ScalarType
from ....domain._errors import ShapeError
from ..._config import get_config

if TYPE_CHECKING:
    from .._tensor import Tensor

Dim = Union[None, int, Tuple[int, ...]]

ValuesIndices = namedtuple("ValuesIndices", ["values", "indices"])
"""Result of `max(dim)` / `min(dim)`."""


def _expand_back(g: np.ndarray, shape: Tuple[int, ...], axes, keepdim: bool) -> np.ndarray:
    """Undo a reduction on the gradient so it broadcasts against the input."""
    if axes is None:
        return np.broadcast_to(g.reshape((1,) * len(shape)), shape)
    if not keepdim:
        g = np.expand_dims(g, axes)
    return np.broadcast_to(g, shape)


class TensorMixinReduction:
    """
    Reductions over one, several or all dimensions.
    """

    def _axes(self: "Tensor", dim: Dim) -> Optional[Tuple[int, ...]]:
        if dim is None:
            return None
        dims = (dim,) if isinstance(dim, (int, np.integer)) else tuple(dim)
        axes = tuple(sorted(self._wrap_dim(int(d)) for d in dims))
        if len(set(axes)) != len(axes):
            raise ShapeError("dimension repeated in reduction", actual=dims)
        if self.ndim == 0:
            return None
        return axes

    def _compute_type(self: "Tensor") -> ScalarType:
        st = self.dtype
        if st.is_floating_point or st.is_complex:
            return st
        return get_config().default_dtype

    def sum(self: "Tensor", dim: Dim = None, keepdim: bool = False, dtype: Any = None) -> "Tensor":
        axes = self._axes(dim)
        st = self.dtype
        if dtype is not None:
            st = ScalarType.from_any(dtype)
        elif st is ScalarType.Bool or (st.is_integral and st.itemsize < 8):
            st = ScalarType.Int64 if st.is_signed or st is ScalarType.Bool else ScalarType.UInt64
        x = self._array.astype(st.numpy_dtype, copy=False)
        out = np.sum(x, axis=axes, keepdims=keepdim)
        shape = self.shape

        def backward_fn(g):
            return (_expand_back(g.to_numpy(), shape, axes, keepdim),)

        grad_ok = st.is_floating_point or st.is_complex
        return self._wrap_result(out, (self,), backward_fn if grad_ok else None, name="sum", dtype=st)

    def mean(self: "Tensor", dim: Dim = None, keepdim: bool = False) -> "Tensor":
        axes = self._axes(dim)
        st = self.dtype
        if not (st.is_floating_point or st.is_complex):
            raise TypeError(
                f"mean() requires a floating point or complex input, got {st.name}"
            )
        x = self._array
        count = x.size if axes is None else int(np.prod([x.shape[a] for a in axes]))
        s = np.sum(x, axis=axes, keepdims=keepdim)
        if count == 0:
            warnings.warn("mean of an empty tensor is NaN", RuntimeWarning)
            out = np.full(np.shape(s), np.nan, dtype=x.dtype)
        else:
            out = s / count
        shape = self.shape

        def backward_fn(g):
            return (_expand_back(g.to_numpy(), shape, axes, keepdim) / max(count, 1),)

        return self._wrap_result(out, (self,), backward_fn, name="mean", dtype=st)

    def prod(self: "Tensor", dim: Optional[int] = None, keepdim: bool = False) -> "Tensor":
        axes = self._axes(dim)
        x = self._array
        out = np.prod(x, axis=axes, keepdims=keepdim)
        shape = self.shape

        def backward_fn(g):
            o = _expand_back(np.asarray(out), shape, axes, keepdim)
            ge = _expand_back(g.to_numpy(), shape, axes, keepdim)
            with np.errstate(divide="ignore", invalid="ignore"):
                return (np.where(x != 0, ge * o / np.where(x != 0, x, 1), 0),)

        grad_ok = self.dtype.is_floating_point or self.dtype.is_complex
        return self._wrap_result(out, (self,), backward_fn if grad_ok else None, name="prod", dtype=self.dtype)

    # ------------------------------------------------------------------
    # extrema
    # ------------------------------------------------------------------
    def _extremum(self: "Tensor", dim, keepdim: bool, largest: bool, name: str):
        x = self._array
        if x.size == 0:
            raise ShapeError(f"{name}() of an empty tensor has no identity")
        pick = np.max if largest else np.min
        arg = np.argmax if largest else np.argmin
        shape = self.shape
        grad_ok = self.dtype.is_floating_point

        if dim is None:
            out = pick(x)

            def backward_fn(g):
                mask = x == out
                return (mask * (g.to_numpy() / mask.sum()),)

            return self._wrap_result(out, (self,), backward_fn if grad_ok else None, name=name, dtype=self.dtype)

        axis = self._wrap_dim(dim) if self.ndim else None
        if axis is None:
            idx = np.zeros((), dtype=np.int64)
            vals = x.copy()
        else:
            idx = np.expand_dims(arg(x, axis=axis), axis)
            vals = np.take_along_axis(x, idx, axis=axis)
            if not keepdim:
                vals = np.squeeze(vals, axis)
                idx_out = np.squeeze(idx, axis)
            else:
                idx_out = idx

        def backward_fn(g):
            ga = np.zeros(shape, dtype=x.dtype)
            if axis is None:
                return (g.to_numpy().reshape(shape),)
            gv = g.to_numpy()
            if not keepdim:
                gv = np.expand_dims(gv, axis)
            np.put_along_axis(ga, idx, gv, axis=axis)
            return (ga,)

        values = self._wrap_result(vals, (self,), backward_fn if grad_ok else None, name=name, dtype=self.dtype)
        indices = self._from_numpy(
            (idx if axis is None else idx_out).astype(np.int64), device=self.device
        )
        return ValuesIndices(values, indices)

    def max(self: "Tensor", dim: Optional[int] = None, keepdim: bool = False):
        """
        Maximum over all elements (0-d tensor), or `(values, indices)` along
        `dim`.
        """
        return self._extremum(dim, keepdim, True, "max")

    def min(self: "Tensor", dim: Optional[int] = None, keepdim: bool = False):
        return self._extremum(dim, keepdim, False, "min")

    def argmax(self: "Tensor", dim: Optional[int] = None, keepdim: bool = False) -> "Tensor":
        x = self._array
        if dim is None:
            return self._from_numpy(np.asarray(np.argmax(x), dtype=np.int64), device=self.device)
        axis = self._wrap_dim(dim)
        out = np.argmax(x, axis=axis)
        if keepdim:
            out = np.expand_dims(out, axis)
        return self._from_numpy(out.astype(np.int64), device=self.device)

    def argmin(self: "Tensor", dim: Optional[int] = None, keepdim: bool = False) -> "Tensor":
        x = self._array
        if dim is None:
            return self._from_numpy(np.asarray(np.argmin(x), dtype=np.int64), device=self.device)
        axis = self._wrap_dim(dim)
        out = np.argmin(x, axis=axis)
        if keepdim:
            out = np.expand_dims(out, axis)
        return self._from_numpy(out.astype(np.int64), device=self.device)

    def amax(self: "Tensor", dim: Dim = None, keepdim: bool = False) -> "Tensor":
        axes = self._axes(dim)
        x = self._array
        out = np.max(x, axis=axes, keepdims=keepdim)
        shape = self.shape

        def backward_fn(g):
            o = _expand_back(np.asarray(out), shape, axes, keepdim)
            mask = (x == o).astype(x.dtype)
            count = _expand_back(
                np.sum(mask, axis=axes, keepdims=keepdim), shape, axes, keepdim
            )
            return (mask * _expand_back(g.to_numpy(), shape, axes, keepdim) / count,)

        return self._wrap_result(out, (self,), backward_fn, name="amax", dtype=self.dtype)

    # ------------------------------------------------------------------
    # moments
    # ------------------------------------------------------------------
    def var(
        self: "Tensor",
        dim: Dim = None,
        unbiased: bool = True,
        keepdim: bool = False,
        *,
        correction: Optional[int] = None,
    ) -> "Tensor":
        axes = self._axes(dim)
        c = (1 if unbiased else 0) if correction is None else int(correction)
        st = self._compute_type()
        x = self._array.astype(st.numpy_dtype, copy=False)
        n = x.size if axes is None else int(np.prod([x.shape[a] for a in axes]))
        mu = np.mean(x, axis=axes, keepdims=True)
        denom = max(n - c, 0)
        with np.errstate(divide="ignore", invalid="ignore"):
            out = np.sum((x - mu) ** 2, axis=axes, keepdims=keepdim) / denom
        shape = self.shape

        def backward_fn(g):
            ge = _expand_back(g.to_numpy(), shape, axes, keepdim)
            with np.errstate(divide="ignore", invalid="ignore"):
                return (ge * 2.0 * (x - mu) / denom,)

        return self._wrap_result(out, (self,), backward_fn, name="var", dtype=st)

    def std(
        self: "Tensor",
        dim: Dim = None,
        unbiased: bool = True,
        keepdim: bool = False,
        *,
        correction: Optional[int] = None,
    ) -> "Tensor":
        return self.var(dim, unbiased, keepdim, correction=correction).sqrt()

    def logsumexp(self: "Tensor", dim: Dim, keepdim: bool = False) -> "Tensor":
        axes = self._axes(dim)
        st = self._compute_type()
        x = self._array.astype(st.numpy_dtype, copy=False)
        m = np.max(x, axis=axes, keepdims=True)
        m = np.where(np.isfinite(m), m, 0)
        s = np.sum(np.exp(x - m), axis=axes, keepdims=True)
        out_k = np.log(s) + m
        out = out_k if keepdim else np.squeeze(out_k, axis=axes)
        shape = self.shape

        def backward_fn(g):
            ge = _expand_back(g.to_numpy(), shape, axes, keepdim)
            return (ge * np.exp(x - out_k),)

        return self._wrap_result(out, (self,), backward_fn, name="logsumexp", dtype=st)

    def softmax(self: "Tensor", dim: int) -> "Tensor":
        axis = self._wrap_dim(dim)
        st = self._compute_type()
        x = self._array.astype(st.numpy_dtype, copy=False)
        z = x - np.max(x, axis=axis, keepdims=True)
        e = np.exp(z)
        out = e / np.sum(e, axis=axis, keepdims=True)

        def backward_fn(g):
            ga = g.to_numpy()
            return (out * (ga - np.sum(ga * out, axis=axis, keepdims=True)),)

        return self._wrap_result(out, (self,), backward_fn, name="softmax", dtype=st)

    def log_softmax(self: "Tensor", dim: int) -> "Tensor":
        axis = self._wrap_dim(dim)
        st = self._compute_type()
        x = self._array.astype(st.numpy_dtype, copy=False)
        z = x - np.max(x, axis=axis, keepdims=True)
        out = z - np.log(np.sum(np.exp(z), axis=axis, keepdims=True))

        def backward_fn(g):
            ga = g.to_numpy()
            return (ga - np.exp(out) * np.sum(ga, axis=axis, keepdims=True),)

        return self._wrap_result(out, (self,), backward_fn, name="log_softmax", dtype=st)

    def norm(self: "Tensor", p: Any = 2, dim: Dim = None, keepdim: bool = False) -> "Tensor":
        """Vector p-norm (p may be a positive number or `inf`)."""
        if p in ("fro", 2, 2.0):
            return (self * self).sum(dim, keepdim).sqrt()
        if p in (float("inf"), "inf"):
            return self.abs().amax(dim, keepdim)
        if p == 1:
            return self.abs().sum(dim, keepdim)
        p = float(p)
        return (self.abs() ** p).sum(dim, keepdim) ** (1.0 / p)

    def cumsum(self: "Tensor", dim: int) -> "Tensor":
        axis = self._wrap_dim(dim)
        out = np.cumsum(self._array, axis=axis)

        def backward_fn(g):
            ga = g.to_numpy()
            return (np.flip(np.cumsum(np.flip(ga, axis), axis=axis), axis),)

        grad_ok = self.dtype.is_floating_point
        return self._wrap_result(
            out, (self,), backward_fn if grad_ok else None, name="cumsum"
        )

    def all(self: "Tensor", dim: Optional[int] = None, keepdim: bool = False) -> "Tensor":
        axes = self._axes(dim)
        return self._from_numpy(np.all(self._array, axis=axes, keepdims=keepdim), device=self.device)

    def any(self: "Tensor", dim: Optional[int] = None, keepdim: bool = False) -> "Tensor":
        axes = self._axes(dim)
        return self._from_numpy(np.any(self._array, axis=axes, keepdims=keepdim), device=self.device)
