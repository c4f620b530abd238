"""
Shape manipulation for Tensor.

Operations that can be expressed as a re-striding of the same buffer
(`view`, `transpose`, `permute`, `squeeze`, `unsqueeze`, `expand`, `narrow`,
`select`, `chunk`, `split`...) return views: new handles that share memory
with their base. `reshape` returns a view when possible and a copy
otherwise; `view` raises `ShapeError` when the requested shape is not
reachable without copying.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, List, Sequence, Tuple

import numpy as np

from ....domain._errors import ShapeError
from ...autograd._engine import sum_to_shape
from .._tensor_context import Context

if TYPE_CHECKING:
    from .._tensor import Tensor


def _sizes(args: Sequence[Any]) -> Tuple[int, ...]:
    if len(args) == 1 and isinstance(args[0], (tuple, list)):
        args = args[0]
    return tuple(int(a) for a in args)


class TensorMixinShape:
    """
    Views, reshapes, permutations and splits.
    """

    def _as_view(
        self: "Tensor", arr: np.ndarray, backward_fn: Callable, name: str
    ) -> "Tensor":
        out = self._view(arr)
        if self._result_requires_grad(self):
            out._requires_grad = True
            out._set_ctx(Context(parents=(self,), backward_fn=backward_fn, name=name))
        return out

    def _reshape_array(self: "Tensor", shape: Tuple[int, ...]) -> np.ndarray:
        try:
            return self._array.reshape(shape)
        except ValueError:
            raise ShapeError(
                f"shape {shape} is invalid for input of size {self.numel()}",
                expected=self.numel(),
                actual=shape,
            ) from None

    # ------------------------------------------------------------------
    # reshape family
    # ------------------------------------------------------------------
    def reshape(self: "Tensor", *shape: Any) -> "Tensor":
        """Reshape, sharing memory when the layout allows it."""
        src_shape = self.shape
        out = self._reshape_array(_sizes(shape))

        def backward_fn(g):
            return (g.to_numpy().reshape(src_shape),)

        if out.size == 0 or np.shares_memory(out, self._array):
            return self._as_view(out, backward_fn, "reshape")
        return self._wrap_result(out, (self,), backward_fn, name="reshape")

    def view(self: "Tensor", *shape: Any) -> "Tensor":
        """
        Reinterpret the buffer with a new shape.

        Raises
        ------
        ShapeError
            If the element counts differ or the layout would need a copy.
        """
        src_shape = self.shape
        out = self._reshape_array(_sizes(shape))
        if out.size and not np.shares_memory(out, self._array):
            raise ShapeError(
                "view size is not compatible with input tensor's size and stride; "
                "use reshape() instead",
                expected=self.stride(),
                actual=out.shape,
            )
        return self._as_view(
            out, lambda g: (g.to_numpy().reshape(src_shape),), "view"
        )

    def view_as(self: "Tensor", other: "Tensor") -> "Tensor":
        return self.view(other.shape)

    def reshape_as(self: "Tensor", other: "Tensor") -> "Tensor":
        return self.reshape(other.shape)

    def flatten(self: "Tensor", start_dim: int = 0, end_dim: int = -1) -> "Tensor":
        if self.ndim == 0:
            return self.reshape(1)
        s = self._wrap_dim(start_dim)
        e = self._wrap_dim(end_dim)
        if s > e:
            raise ShapeError("flatten() has invalid args: start_dim cannot come after end_dim")
        shape = self.shape
        merged = int(np.prod(shape[s : e + 1], dtype=np.int64))
        return self.reshape(shape[:s] + (merged,) + shape[e + 1 :])

    def unflatten(self: "Tensor", dim: int, sizes: Sequence[int]) -> "Tensor":
        d = self._wrap_dim(dim)
        sizes = tuple(int(s) for s in sizes)
        known = int(np.prod([s for s in sizes if s != -1], dtype=np.int64))
        if -1 in sizes:
            if sizes.count(-1) > 1 or known == 0 or self.shape[d] % known:
                raise ShapeError(
                    "unflatten sizes are incompatible with the dimension",
                    dim=dim,
                    expected=self.shape[d],
                    actual=sizes,
                )
        elif known != self.shape[d]:
            raise ShapeError(
                "unflatten sizes must multiply to the dimension size",
                dim=dim,
                expected=self.shape[d],
                actual=sizes,
            )
        return self.reshape(self.shape[:d] + sizes + self.shape[d + 1 :])

    # ------------------------------------------------------------------
    # permutations
    # ------------------------------------------------------------------
    def transpose(self: "Tensor", dim0: int, dim1: int) -> "Tensor":
        a = self._wrap_dim(dim0)
        b = self._wrap_dim(dim1)
        return self._as_view(
            np.swapaxes(self._array, a, b),
            lambda g: (np.swapaxes(g.to_numpy(), a, b),),
            "transpose",
        )

    def permute(self: "Tensor", *dims: Any) -> "Tensor":
        order = tuple(self._wrap_dim(d) for d in _sizes(dims))
        if sorted(order) != list(range(self.ndim)):
            raise ShapeError(
                "permute dims must be a permutation of the tensor's dimensions",
                expected=self.ndim,
                actual=order,
            )
        inverse = tuple(np.argsort(order))
        return self._as_view(
            np.transpose(self._array, order),
            lambda g: (np.transpose(g.to_numpy(), inverse),),
            "permute",
        )

    def t(self: "Tensor") -> "Tensor":
        if self.ndim > 2:
            raise ShapeError("t() expects a tensor with <= 2 dimensions", expected="<= 2", actual=self.ndim)
        if self.ndim < 2:
            return self
        return self.transpose(0, 1)

    @property
    def T(self: "Tensor") -> "Tensor":
        if self.ndim < 2:
            return self
        return self.permute(tuple(reversed(range(self.ndim))))

    @property
    def mT(self: "Tensor") -> "Tensor":
        if self.ndim < 2:
            raise ShapeError("mT requires at least 2 dimensions", expected=">= 2", actual=self.ndim)
        return self.transpose(-2, -1)

    def movedim(self: "Tensor", source: int, destination: int) -> "Tensor":
        src = self._wrap_dim(source)
        dst = self._wrap_dim(destination)
        order = [d for d in range(self.ndim) if d != src]
        order.insert(dst, src)
        return self.permute(order)

    def flip(self: "Tensor", dims: Any) -> "Tensor":
        axes = tuple(self._wrap_dim(d) for d in _sizes((dims,) if isinstance(dims, int) else dims))
        return self._as_view(
            np.flip(self._array, axes),
            lambda g: (np.flip(g.to_numpy(), axes),),
            "flip",
        )

    # ------------------------------------------------------------------
    # size-1 axes
    # ------------------------------------------------------------------
    def squeeze(self: "Tensor", dim: Any = None) -> "Tensor":
        src_shape = self.shape
        if dim is None:
            axes = tuple(i for i, s in enumerate(src_shape) if s == 1)
        else:
            dims = (dim,) if isinstance(dim, int) else tuple(dim)
            axes = tuple(
                d for d in (self._wrap_dim(x) for x in dims) if self.ndim and src_shape[d] == 1
            )
        return self._as_view(
            np.squeeze(self._array, axis=axes) if axes else self._array[...],
            lambda g: (g.to_numpy().reshape(src_shape),),
            "squeeze",
        )

    def unsqueeze(self: "Tensor", dim: int) -> "Tensor":
        d = self._wrap_dim(dim, self.ndim + 1)
        src_shape = self.shape
        return self._as_view(
            np.expand_dims(self._array, d),
            lambda g: (g.to_numpy().reshape(src_shape),),
            "unsqueeze",
        )

    # ------------------------------------------------------------------
    # broadcasting
    # ------------------------------------------------------------------
    def expand(self: "Tensor", *sizes: Any) -> "Tensor":
        """
        Broadcast to a larger shape without copying (-1 keeps a dimension).
        """
        sizes = _sizes(sizes)
        if len(sizes) < self.ndim:
            raise ShapeError(
                "the number of sizes provided must be at least the number of dimensions",
                expected=f">= {self.ndim}",
                actual=len(sizes),
            )
        lead = len(sizes) - self.ndim
        target = tuple(
            self.shape[i - lead] if (s == -1 and i >= lead) else s
            for i, s in enumerate(sizes)
        )
        return self.broadcast_to(target)

    def expand_as(self: "Tensor", other: "Tensor") -> "Tensor":
        return self.broadcast_to(other.shape)

    def broadcast_to(self: "Tensor", shape: Sequence[int]) -> "Tensor":
        src_shape = self.shape
        try:
            out = np.broadcast_to(self._array, tuple(shape))
        except ValueError:
            raise ShapeError(
                "tensor cannot be broadcast to the requested shape",
                expected=tuple(shape),
                actual=src_shape,
            ) from None
        return self._as_view(
            out, lambda g: (sum_to_shape(g.to_numpy(), src_shape),), "expand"
        )

    def repeat(self: "Tensor", *sizes: Any) -> "Tensor":
        reps = _sizes(sizes)
        if len(reps) < self.ndim:
            raise ShapeError(
                "number of repeat dims can not be smaller than number of tensor dims",
                expected=f">= {self.ndim}",
                actual=len(reps),
            )
        src_shape = (1,) * (len(reps) - self.ndim) + self.shape
        out = np.tile(self._array.reshape(src_shape), reps)

        def backward_fn(g):
            inter: List[int] = []
            for r, s in zip(reps, src_shape):
                inter.extend((r, s))
            ga = g.to_numpy().reshape(inter).sum(axis=tuple(range(0, 2 * len(reps), 2)))
            return (ga.reshape(self.shape),)

        return self._wrap_result(out, (self,), backward_fn, name="repeat")

    # ------------------------------------------------------------------
    # sub-ranges
    # ------------------------------------------------------------------
    def narrow(self: "Tensor", dim: int, start: int, length: int) -> "Tensor":
        d = self._wrap_dim(dim)
        size = self.shape[d]
        if start < 0:
            start += size
        if not (0 <= start <= size) or length < 0 or start + length > size:
            raise ShapeError(
                "narrow range is out of bounds",
                dim=dim,
                expected=f"start + length <= {size}",
                actual=(start, length),
            )
        key = (slice(None),) * d + (slice(start, start + length),)
        src_shape = self.shape

        def backward_fn(g):
            out = np.zeros(src_shape, dtype=g.to_numpy().dtype)
            out[key] = g.to_numpy()
            return (out,)

        return self._as_view(self._array[key], backward_fn, "narrow")

    def select(self: "Tensor", dim: int, index: int) -> "Tensor":
        d = self._wrap_dim(dim)
        size = self.shape[d]
        if not -size <= index < size:
            raise ShapeError(
                "index out of range for dimension",
                dim=dim,
                expected=f"[{-size}, {size - 1}]",
                actual=index,
            )
        key = (slice(None),) * d + (int(index) % size, Ellipsis)
        src_shape = self.shape

        def backward_fn(g):
            out = np.zeros(src_shape, dtype=g.to_numpy().dtype)
            out[key] = g.to_numpy()
            return (out,)

        return self._as_view(self._array[key], backward_fn, "select")

    def split(self: "Tensor", split_size_or_sections: Any, dim: int = 0) -> Tuple["Tensor", ...]:
        """
        Split into views along `dim`: equal chunks of a given size (the last
        may be smaller) or explicit section lengths.
        """
        d = self._wrap_dim(dim)
        size = self.shape[d]
        if isinstance(split_size_or_sections, int):
            step = split_size_or_sections
            if step <= 0:
                raise ValueError("split_size must be positive")
            lengths = [min(step, size - s) for s in range(0, size, step)] or [0]
        else:
            lengths = [int(x) for x in split_size_or_sections]
            if sum(lengths) != size:
                raise ShapeError(
                    "split sections must sum to the dimension size",
                    dim=dim,
                    expected=size,
                    actual=sum(lengths),
                )
        out = []
        start = 0
        for n in lengths:
            out.append(self.narrow(d, start, n))
            start += n
        return tuple(out)

    def chunk(self: "Tensor", chunks: int, dim: int = 0) -> Tuple["Tensor", ...]:
        if chunks <= 0:
            raise ValueError("chunk expects `chunks` to be greater than 0")
        size = self.shape[self._wrap_dim(dim)]
        step = max(1, -(-size // chunks))
        return self.split(step, dim)

    def unbind(self: "Tensor", dim: int = 0) -> Tuple["Tensor", ...]:
        d = self._wrap_dim(dim)
        return tuple(self.select(d, i) for i in range(self.shape[d]))
