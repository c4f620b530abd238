"""
Indexing for Tensor.

`tensor[...]` accepts the usual Python spellings or explicit descriptors from
`domain._index`. Basic indexing (integers, slices, `None`, `...`, bools)
returns a view; integer-tensor and mask indexing gathers into a new tensor.

Validation happens before any element is touched:

- more than one `Ellipsis` raises `ShapeError`;
- consuming more dimensions than the tensor has raises `ShapeError`;
- a `Single` index outside `[-size, size)` raises `ShapeError` naming the
  offending dimension.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Sequence, Tuple

import numpy as np

from ....domain._errors import ShapeError
from ....domain._index import (
    All,
    Bool,
    Ellipsis as EllipsisIndex,
    NewAxis,
    Single,
    Slice,
    TensorIndexer,
    count_consumed,
    to_index,
)
from ...autograd._engine import sum_to_shape

if TYPE_CHECKING:
    from .._tensor import Tensor


def _indexer_array(ix: TensorIndexer) -> np.ndarray:
    t = ix.tensor
    arr = t._array if hasattr(t, "_array") else np.asarray(t)
    if arr.dtype == np.bool_:
        return arr
    if arr.dtype.kind not in "iu":
        raise TypeError(
            f"tensors used as indices must be long, int or bool tensors, got {arr.dtype}"
        )
    return arr.astype(np.intp, copy=False)


class TensorMixinIndexing:
    def _numpy_key(self: "Tensor", key: Any) -> Tuple[Tuple[Any, ...], bool]:
        """
        Validate an index expression and translate it for NumPy.

        Returns the translated key and whether it requires advanced
        (gathering) indexing.
        """
        raw = key if isinstance(key, tuple) else (key,)
        indices = [to_index(k) for k in raw]
        n_ellipsis = sum(isinstance(ix, EllipsisIndex) for ix in indices)
        if n_ellipsis > 1:
            raise ShapeError("an index can only have a single ellipsis", actual=n_ellipsis)
        consumed = count_consumed(indices)
        if consumed > self.ndim:
            raise ShapeError(
                "too many indices for tensor",
                expected=f"<= {self.ndim}",
                actual=consumed,
            )

        shape = self.shape
        out: List[Any] = []
        advanced = False
        dim = 0
        for pos, ix in enumerate(indices):
            if isinstance(ix, Single):
                size = shape[dim]
                if not -size <= ix.index < size:
                    raise ShapeError(
                        f"index {ix.index} is out of bounds for dimension {dim} with size {size}",
                        dim=dim,
                        expected=f"[{-size}, {size - 1}]",
                        actual=ix.index,
                    )
                out.append(int(ix.index))
                dim += 1
            elif isinstance(ix, Slice):
                out.append(ix.as_slice())
                dim += 1
            elif isinstance(ix, All):
                out.append(slice(None))
                dim += 1
            elif isinstance(ix, NewAxis):
                out.append(None)
            elif isinstance(ix, Bool):
                out.append(bool(ix.value))
                advanced = True
            elif isinstance(ix, EllipsisIndex):
                out.append(Ellipsis)
                dim = self.ndim - count_consumed(indices[pos + 1 :])
            else:
                arr = _indexer_array(ix)
                if arr.dtype == np.bool_:
                    expect = shape[dim : dim + arr.ndim]
                    if arr.shape != expect:
                        raise ShapeError(
                            "mask shape does not match the indexed dimensions",
                            dim=dim,
                            expected=expect,
                            actual=arr.shape,
                        )
                else:
                    size = shape[dim]
                    if arr.size and (arr.max() >= size or arr.min() < -size):
                        raise ShapeError(
                            "index tensor has entries out of bounds",
                            dim=dim,
                            expected=f"[{-size}, {size - 1}]",
                            actual=(int(arr.min()), int(arr.max())),
                        )
                out.append(arr)
                advanced = True
                dim += ix.consumes_dim
        return tuple(out), advanced

    def __getitem__(self: "Tensor", key: Any) -> "Tensor":
        np_key, advanced = self._numpy_key(key)
        src_shape = self.shape

        if not advanced:
            if Ellipsis not in np_key:
                # keeps integer-only keys returning a 0-d view instead of a scalar
                np_key = np_key + (Ellipsis,)
            view = self._array[np_key]

            def backward_view(g):
                out = np.zeros(src_shape, dtype=g.to_numpy().dtype)
                out[np_key] = g.to_numpy()
                return (out,)

            return self._as_view(view, backward_view, "index")

        try:
            out = self._array[np_key]
        except IndexError as e:
            raise ShapeError(f"invalid index: {e}") from None

        def backward_gather(g):
            z = np.zeros(src_shape, dtype=g.to_numpy().dtype)
            np.add.at(z, np_key, g.to_numpy())
            return (z,)

        return self._wrap_result(np.array(out), (self,), backward_gather, name="index", dtype=self.dtype)

    def __setitem__(self: "Tensor", key: Any, value: Any) -> None:
        np_key, _ = self._numpy_key(key)
        v = self._as_tensor_like(value, self)

        def fn(a, b):
            arr = a._array.copy()
            target_shape = arr[np_key].shape
            try:
                np.broadcast_shapes(b.shape, target_shape)
                arr[np_key] = np.broadcast_to(b._array, target_shape)
            except ValueError:
                raise ShapeError(
                    "value does not broadcast to the indexed region",
                    expected=target_shape,
                    actual=b.shape,
                ) from None

            def backward_fn(g):
                ga = g.to_numpy().copy()
                gv = sum_to_shape(np.asarray(ga[np_key]), b.shape)
                ga[np_key] = 0
                return (ga, gv)

            return a._wrap_result(arr, (a, b), backward_fn, name="index_put", dtype=a.dtype)

        self._apply_inplace(fn, v, name="setitem")

    def index(self: "Tensor", *indices: Any) -> "Tensor":
        """Index with an explicit sequence of descriptors."""
        if len(indices) == 1 and isinstance(indices[0], (list, tuple)):
            indices = tuple(indices[0])
        return self[tuple(indices)]

    def index_put_(
        self: "Tensor", indices: Sequence[Any], values: Any, accumulate: bool = False
    ) -> "Tensor":
        np_key, _ = self._numpy_key(tuple(indices))
        if not accumulate:
            self[tuple(indices)] = values
            return self
        v = self._as_tensor_like(values, self)

        def fn(a, b):
            arr = a._array.copy()
            np.add.at(arr, np_key, b._array.astype(arr.dtype, copy=False))

            def backward_fn(g):
                ga = g.to_numpy()
                return (ga, sum_to_shape(np.asarray(ga[np_key]), b.shape))

            return a._wrap_result(arr, (a, b), backward_fn, name="index_put", dtype=a.dtype)

        return self._apply_inplace(fn, v, name="index_put_")

    def gather(self: "Tensor", dim: int, index: Any) -> "Tensor":
        """
        `out[i][j][k] = self[i][index[i][j][k]][k]` for `dim == 1`, and so on.
        """
        d = self._wrap_dim(dim)
        idx = _indexer_array(TensorIndexer(index))
        if idx.ndim != self.ndim:
            raise ShapeError(
                "gather index must have as many dimensions as the input",
                expected=self.ndim,
                actual=idx.ndim,
            )
        size = self.shape[d]
        if idx.size and (idx.max() >= size or idx.min() < -size):
            raise ShapeError("gather index out of range", dim=dim, expected=size)
        out = np.take_along_axis(self._array, idx, axis=d)
        src_shape = self.shape

        def backward_fn(g):
            z = np.zeros(src_shape, dtype=g.to_numpy().dtype)
            grid = list(np.indices(idx.shape, sparse=True))
            grid[d] = idx
            np.add.at(z, tuple(grid), g.to_numpy())
            return (z,)

        return self._wrap_result(out, (self,), backward_fn, name="gather", dtype=self.dtype)

    def index_select(self: "Tensor", dim: int, index: Any) -> "Tensor":
        d = self._wrap_dim(dim)
        idx = _indexer_array(TensorIndexer(index)).reshape(-1)
        size = self.shape[d]
        if idx.size and (idx.max() >= size or idx.min() < -size):
            raise ShapeError("index_select index out of range", dim=dim, expected=size)
        out = np.take(self._array, idx, axis=d)
        src_shape = self.shape

        def backward_fn(g):
            z = np.zeros(src_shape, dtype=g.to_numpy().dtype)
            np.add.at(z, (slice(None),) * d + (idx,), g.to_numpy())
            return (z,)

        return self._wrap_result(out, (self,), backward_fn, name="index_select", dtype=self.dtype)

    def masked_select(self: "Tensor", mask: Any) -> "Tensor":
        m = self._mask_of(mask)
        shape = np.broadcast_shapes(m.shape, self.shape)
        mb = np.broadcast_to(m, shape)
        x = np.broadcast_to(self._array, shape)
        src_shape = self.shape

        def backward_fn(g):
            z = np.zeros(shape, dtype=g.to_numpy().dtype)
            z[mb] = g.to_numpy()
            return (sum_to_shape(z, src_shape),)

        return self._wrap_result(x[mb], (self,), backward_fn, name="masked_select", dtype=self.dtype)
