"""
Concrete Tensor handle.

A `Tensor` owns exactly one `NativeTensor` record obtained from the engine.
It exposes shape/stride/dtype/device metadata, the autograd hooks
(`requires_grad`, `grad`, the attached `Context`) and the explicit lifecycle:

- `dispose()` releases the native handle exactly once and is idempotent;
- a `weakref.finalize` safety net releases handles whose tensor became
  unreachable without being disposed;
- `with tensor:` disposes on exit, including exception exits;
- any operation on a disposed tensor raises `InvalidHandleError`.

Views (`detach`, `view`, `transpose`, basic indexing...) are new handles that
share the buffer of their base: writes through one are visible through the
others.

Operator families live in the mixins under `tensor.mixins`; this module keeps
the handle, metadata, conversion and autograd plumbing they rely on.

Design notes
------------
- Storage is host memory managed through NumPy. Strides are reported in
  elements, not bytes.
- Autograd is expressed by attaching an optional `Context` to output tensors;
  the graph walk itself lives in `infrastructure.autograd._engine`.
- Binary operators broadcast with NumPy rules. Python numbers are "weak":
  they adopt the tensor's element type unless that would lose the value's
  kind (a float literal applied to an integer tensor yields the default
  floating type).
"""

from __future__ import annotations

import logging
import warnings
import weakref
from typing import Any, Callable, Iterator, Optional, Sequence, Tuple, Union

import numpy as np

from ...domain._dtype import ScalarType, check_cast, promote_types
from ...domain._errors import (
    DeviceMismatchError,
    DeviceNotSupportedError,
    GraphStateError,
    InvalidHandleError,
    ShapeError,
)
from ...domain.device._device import Device, as_device
from .._config import get_config
from ..autograd._grad_mode import is_grad_enabled, no_grad
from ..native._engine import NativeEngine, get_engine
from ..native._handle import NativeTensor
from ._scalar import Scalar
from ._tensor_context import Context
from .mixins import (
    TensorMixinArithmetic,
    TensorMixinComparison,
    TensorMixinIndexing,
    TensorMixinReduction,
    TensorMixinShape,
    TensorMixinUnary,
)

logger = logging.getLogger(__name__)

Number = Union[int, float, bool, complex]


def _finalize_handle(engine: NativeEngine, handle: NativeTensor) -> None:
    """Safety-net release for tensors that were never disposed."""
    if engine.release(handle):
        logger.debug("finalizer released tensor handle %d", handle.handle_id)
        if get_config().warn_on_finalize:
            warnings.warn(
                f"tensor handle {handle.handle_id} was released by the finalizer; "
                "call dispose() or use the tensor as a context manager",
                ResourceWarning,
            )


def _normalize_shape(shape: Any) -> Tuple[int, ...]:
    if isinstance(shape, (int, np.integer)):
        return (int(shape),)
    if len(shape) == 1 and isinstance(shape[0], (tuple, list)):
        shape = shape[0]
    return tuple(int(d) for d in shape)


def _infer_scalar_type(data: Any, arr: np.ndarray) -> ScalarType:
    # numpy inputs keep their dtype; Python literals follow the defaults
    if isinstance(data, (np.ndarray, np.generic)):
        return ScalarType.from_any(arr.dtype)
    if arr.dtype.kind == "b":
        return ScalarType.Bool
    if arr.dtype.kind in "iu":
        return ScalarType.Int64
    if arr.dtype.kind == "c":
        return ScalarType.ComplexFloat32
    return get_config().default_dtype


class Tensor(
    TensorMixinArithmetic,
    TensorMixinUnary,
    TensorMixinReduction,
    TensorMixinShape,
    TensorMixinComparison,
    TensorMixinIndexing,
):
    """
    Handle to an n-dimensional array placed on a device.

    Parameters
    ----------
    shape : tuple[int, ...], optional
        Shape of a new zero-initialised tensor. Mutually exclusive with `data`.
    device : Device | str, optional
        Placement. Defaults to the configured default device.
    requires_grad : bool, optional
        Whether autograd should track this tensor. Only floating point and
        complex tensors may require gradients.
    ctx : Context, optional
        Backward context to attach (normally set by differentiable ops).
    dtype : ScalarType-like, optional
        Element type. Defaults to the configured default floating type for
        `shape` construction and to an inferred type for `data`.
    data : array-like or Tensor, optional
        Values to copy into a new handle.

    Raises
    ------
    AllocationError
        If the device is unavailable.
    """

    __array_priority__ = 1000
    __array_ufunc__ = None
    __hash__ = object.__hash__

    def __init__(
        self,
        shape: Optional[Any] = None,
        device: Optional[Any] = None,
        *,
        requires_grad: bool = False,
        ctx: Optional[Context] = None,
        dtype: Any = None,
        data: Any = None,
    ) -> None:
        engine = get_engine()
        cfg = get_config()
        dev = as_device(device, Device(cfg.default_device))

        if data is not None:
            if shape is not None:
                raise TypeError("pass either `shape` or `data`, not both")
            src = data.to_numpy() if isinstance(data, Tensor) else data
            arr = np.asarray(src)
            st = (
                ScalarType.from_any(dtype)
                if dtype is not None
                else _infer_scalar_type(src, arr)
            )
            handle = engine.wrap(np.array(arr, dtype=st.numpy_dtype, copy=True), st, dev)
        else:
            if shape is None:
                raise TypeError("Tensor() requires a `shape` or `data`")
            st = ScalarType.from_any(dtype) if dtype is not None else cfg.default_dtype
            handle = engine.allocate(_normalize_shape(shape), st, dev, fill=0)

        self._attach_handle(engine, handle)
        self._requires_grad = False
        self._grad: Optional[Tensor] = None
        self._ctx: Optional[Context] = ctx
        self._retains_grad = False
        self.requires_grad = requires_grad

    # ------------------------------------------------------------------
    # handle lifecycle
    # ------------------------------------------------------------------
    def _attach_handle(self, engine: NativeEngine, handle: NativeTensor) -> None:
        self._engine = engine
        self._handle = handle
        self._finalizer = weakref.finalize(self, _finalize_handle, engine, handle)

    @staticmethod
    def _from_handle(handle: NativeTensor, *, requires_grad: bool = False) -> "Tensor":
        t = Tensor.__new__(Tensor)
        t._attach_handle(get_engine(), handle)
        t._requires_grad = bool(requires_grad)
        t._grad = None
        t._ctx = None
        t._retains_grad = False
        return t

    def dispose(self) -> None:
        """
        Release the native handle. Calling it again is a no-op.

        Gradient and graph references held by this tensor are dropped as well.
        """
        info = self._finalizer.detach()
        if info is not None:
            _, _, (engine, handle), _ = info
            engine.release(handle)
            logger.debug("disposed tensor handle %d", handle.handle_id)
        self._grad = None
        self._ctx = None

    def _adopt(self, source: "Tensor") -> "Tensor":
        """
        Take over the handle of `source`, releasing the one held so far.

        Object identity is preserved, so every reference to this tensor (tied
        module attributes, optimizer parameter groups) sees the new storage.
        `source` must not be used afterwards.
        """
        info = source._finalizer.detach()
        if info is None:
            raise InvalidHandleError(
                f"tensor handle {source._handle.handle_id} has been disposed"
            )
        old = self._finalizer.detach()
        if old is not None:
            _, _, (engine, handle), _ = old
            engine.release(handle)
        self._attach_handle(source._engine, source._handle)
        return self

    @property
    def is_disposed(self) -> bool:
        return self._handle.released

    def __enter__(self) -> "Tensor":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.dispose()
        return False

    @property
    def _array(self) -> np.ndarray:
        storage = self._handle.storage
        if storage is None:
            raise InvalidHandleError(
                f"tensor handle {self._handle.handle_id} has been disposed"
            )
        return storage

    @property
    def handle(self) -> NativeTensor:
        """The native ownership record (raises if disposed)."""
        self._array
        return self._handle

    # ------------------------------------------------------------------
    # construction helpers used by operators
    # ------------------------------------------------------------------
    @staticmethod
    def _from_numpy(
        arr: Any,
        *,
        device: Any = None,
        requires_grad: bool = False,
        dtype: Any = None,
    ) -> "Tensor":
        """
        Take ownership of a freshly computed array as a new tensor.

        Arrays that do not own their memory are copied so the result never
        aliases an unrelated buffer.
        """
        arr = np.asarray(arr)
        st = ScalarType.from_any(dtype) if dtype is not None else ScalarType.from_any(arr.dtype)
        if arr.dtype != st.numpy_dtype:
            arr = arr.astype(st.numpy_dtype)
        elif arr.base is not None or not arr.flags.owndata or not arr.flags.writeable:
            arr = arr.copy()
        handle = get_engine().wrap(arr, st, as_device(device))
        return Tensor._from_handle(handle, requires_grad=requires_grad)

    def _view(self, arr: np.ndarray) -> "Tensor":
        """New handle sharing this tensor's allocation."""
        handle = self._engine.wrap(arr, self.dtype, self.device, base=self._handle)
        return Tensor._from_handle(handle)

    @staticmethod
    def _result_requires_grad(*parents: Any) -> bool:
        """
        Whether an operation on `parents` should be recorded for autograd.
        """
        if not is_grad_enabled():
            return False
        return any(getattr(p, "requires_grad", False) for p in parents)

    @staticmethod
    def _wrap_result(
        arr: Any,
        parents: Sequence[Any],
        backward_fn: Optional[Callable],
        *,
        name: str,
        device: Any = None,
        dtype: Any = None,
    ) -> "Tensor":
        """
        Wrap an op result and attach a backward context when recording.
        """
        if device is None:
            device = next(
                (p.device for p in parents if isinstance(p, Tensor)), None
            )
        out = Tensor._from_numpy(arr, device=device, dtype=dtype)
        if backward_fn is not None and Tensor._result_requires_grad(*parents):
            out._requires_grad = True
            out._set_ctx(Context(parents=tuple(parents), backward_fn=backward_fn, name=name))
        return out

    def _raise_device_not_supported(self, op: str) -> None:
        raise DeviceNotSupportedError(op=op, device=str(self.device))

    @staticmethod
    def _check_same_device(*tensors: "Tensor") -> None:
        first = None
        for t in tensors:
            if not isinstance(t, Tensor):
                continue
            if first is None:
                first = t
            elif t.device != first.device:
                raise DeviceMismatchError(str(first.device), str(t.device))

    @staticmethod
    def _as_tensor_like(x: Any, like: "Tensor") -> "Tensor":
        """
        Convert an operand to a Tensor compatible with `like`.

        Python numbers are weakly typed (see module notes); `Scalar` operands
        keep their declared element type.
        """
        if isinstance(x, Tensor):
            return x
        if isinstance(x, Scalar):
            st = x.dtype
            value = x.value
        elif isinstance(x, (bool, int, float, complex, np.generic)):
            value = x.item() if isinstance(x, np.generic) else x
            st = like.dtype
            if isinstance(value, bool):
                pass
            elif isinstance(value, int):
                if st is ScalarType.Bool:
                    st = ScalarType.Int64
            elif isinstance(value, float):
                if not (st.is_floating_point or st.is_complex):
                    st = get_config().default_dtype
            else:
                if not st.is_complex:
                    st = (
                        ScalarType.ComplexFloat64
                        if st is ScalarType.Float64
                        else ScalarType.ComplexFloat32
                    )
        elif isinstance(x, (list, tuple, np.ndarray)):
            return Tensor(data=x, device=like.device)
        else:
            raise TypeError(f"Unsupported operand type: {type(x)!r}")
        return Tensor._from_numpy(
            np.asarray(value, dtype=st.numpy_dtype), device=like.device
        )

    @staticmethod
    def _binary_op_shape_check(a: "Tensor", b: "Tensor") -> Tuple[int, ...]:
        """
        Validate that two operands broadcast; return the result shape.

        Raises
        ------
        ShapeError
            If the shapes cannot be broadcast together.
        DeviceMismatchError
            If the operands live on different devices.
        """
        Tensor._check_same_device(a, b)
        try:
            return tuple(np.broadcast_shapes(a.shape, b.shape))
        except ValueError:
            raise ShapeError(
                "operands could not be broadcast together",
                expected=a.shape,
                actual=b.shape,
            ) from None

    # ------------------------------------------------------------------
    # metadata
    # ------------------------------------------------------------------
    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self._array.shape)

    def size(self, dim: Optional[int] = None) -> Union[int, tuple[int, ...]]:
        if dim is None:
            return self.shape
        return self.shape[self._wrap_dim(dim)]

    @property
    def ndim(self) -> int:
        return self._array.ndim

    def dim(self) -> int:
        return self._array.ndim

    def numel(self) -> int:
        """Number of elements (1 for a 0-d tensor)."""
        return int(self._array.size)

    def stride(self, dim: Optional[int] = None) -> Union[int, tuple[int, ...]]:
        """Per-dimension step, in elements."""
        arr = self._array
        st = tuple(s // arr.itemsize for s in arr.strides)
        return st if dim is None else st[self._wrap_dim(dim)]

    def is_contiguous(self) -> bool:
        return bool(self._array.flags.c_contiguous)

    def element_size(self) -> int:
        return int(self._array.itemsize)

    @property
    def dtype(self) -> ScalarType:
        self._array
        return self._handle.scalar_type

    @property
    def scalar_type(self) -> ScalarType:
        return self.dtype

    @property
    def device(self) -> Device:
        self._array
        return self._handle.device

    def is_floating_point(self) -> bool:
        return self.dtype.is_floating_point

    def is_complex(self) -> bool:
        return self.dtype.is_complex

    def storage_id(self) -> int:
        """Identifier of the allocation this handle views."""
        self._array
        return self._handle.base_id

    def shares_memory_with(self, other: "Tensor") -> bool:
        return bool(np.shares_memory(self._array, other._array))

    def data_ptr(self) -> int:
        return int(self._array.__array_interface__["data"][0])

    def _wrap_dim(self, dim: int, ndim: Optional[int] = None) -> int:
        n = self.ndim if ndim is None else ndim
        lo, hi = (-1, 0) if n == 0 else (-n, n - 1)
        if not lo <= dim <= hi:
            raise ShapeError(
                "dimension out of range",
                dim=dim,
                expected=f"[{lo}, {hi}]",
                actual=dim,
            )
        return dim % n if n else 0

    # ------------------------------------------------------------------
    # autograd state
    # ------------------------------------------------------------------
    @property
    def requires_grad(self) -> bool:
        return self._requires_grad

    @requires_grad.setter
    def requires_grad(self, value: bool) -> None:
        value = bool(value)
        if value and not (self.dtype.is_floating_point or self.dtype.is_complex):
            raise GraphStateError(
                "only tensors of floating point and complex dtype can require "
                f"gradients (got {self.dtype.name})"
            )
        if not value and self._ctx is not None and self._requires_grad:
            raise GraphStateError(
                "requires_grad can only be cleared on leaf tensors; use detach()"
            )
        self._requires_grad = value

    def requires_grad_(self, value: bool = True) -> "Tensor":
        self.requires_grad = value
        return self

    @property
    def is_leaf(self) -> bool:
        return self._ctx is None

    @property
    def grad(self) -> Optional["Tensor"]:
        """Accumulated gradient, or None if no backward pass produced one."""
        return self._grad

    @grad.setter
    def grad(self, value: Optional["Tensor"]) -> None:
        if value is not None:
            if value.shape != self.shape:
                raise ShapeError(
                    "assigned gradient has the wrong shape",
                    expected=self.shape,
                    actual=value.shape,
                )
            self._check_same_device(self, value)
        self._grad = value

    @property
    def grad_fn(self) -> Optional[Context]:
        return self._ctx

    def retain_grad(self) -> None:
        """Also populate `.grad` of this non-leaf tensor during backward."""
        if not self.requires_grad:
            raise GraphStateError("can't retain_grad on a tensor that has requires_grad=False")
        if self._ctx is not None:
            self._retains_grad = True

    def zero_grad(self) -> None:
        """Drop the stored gradient (back to the "no gradient" state)."""
        self._grad = None

    def _set_ctx(self, ctx: Optional[Context]) -> None:
        self._ctx = ctx

    def _get_ctx(self) -> Optional[Context]:
        return self._ctx

    def _accumulate_grad_(self, g: Any) -> None:
        """
        Add `g` into `self.grad` in place (allocating it on first use).
        """
        arr = g.to_numpy() if isinstance(g, Tensor) else np.asarray(g)
        if arr.shape != self.shape:
            raise ShapeError(
                "gradient shape mismatch", expected=self.shape, actual=arr.shape
            )
        if self.dtype.is_complex:
            arr = arr.astype(self.dtype.numpy_dtype, copy=False)
        else:
            arr = np.real(arr).astype(self.dtype.numpy_dtype, copy=False)
        if self._grad is None or self._grad.is_disposed:
            self._grad = Tensor._from_numpy(arr.copy(), device=self.device)
            return
        self._grad._array[...] += arr

    def backward(
        self, grad_out: Optional["Tensor"] = None, retain_graph: bool = False
    ) -> None:
        """
        Backpropagate from this tensor, accumulating into leaf gradients.

        Parameters
        ----------
        grad_out : Tensor, optional
            Seed gradient. Required unless this tensor is 0-d.
        retain_graph : bool
            Keep the graph so that it can be walked again.

        Raises
        ------
        GraphStateError
            If this tensor does not require grad, if no seed is given for a
            non-scalar output, or if the graph was already freed.
        ShapeError
            If the seed's shape differs from this tensor's shape.
        DeviceMismatchError
            If the seed lives on another device.
        """
        from ..autograd._engine import run_backward

        self._array
        run_backward([self], [grad_out], retain_graph=retain_graph)

    def detach(self) -> "Tensor":
        """New handle on the same buffer with no autograd history."""
        return self._view(self._array)

    def detach_(self) -> "Tensor":
        self._ctx = None
        self._requires_grad = False
        return self

    # ------------------------------------------------------------------
    # copies and conversions
    # ------------------------------------------------------------------
    def clone(self) -> "Tensor":
        return Tensor._wrap_result(
            self._array.copy(),
            (self,),
            lambda g: (g,),
            name="clone",
        )

    def __deepcopy__(self, memo: dict) -> "Tensor":
        """
        Independent copy of a leaf tensor (and its gradient), keeping the
        subclass, dtype, device and `requires_grad`.
        """
        if self._ctx is not None:
            raise GraphStateError("only leaf tensors support deepcopy")
        new = type(self)(
            data=self._array, requires_grad=self._requires_grad, dtype=self.dtype, device=self.device
        )
        memo[id(self)] = new
        if self._grad is not None:
            new._grad = self._grad.__deepcopy__(memo)
        return new

    def contiguous(self) -> "Tensor":
        if self.is_contiguous():
            return self
        return Tensor._wrap_result(
            np.ascontiguousarray(self._array), (self,), lambda g: (g,), name="contiguous"
        )

    def to(
        self,
        device: Any = None,
        dtype: Any = None,
        *,
        copy: bool = False,
        allow_complex_to_real: bool = False,
    ) -> "Tensor":
        """
        Transfer to another device and/or cast to another element type.

        Raises
        ------
        AllocationError
            If the target device is unavailable.
        DTypeNotSupportedError
            For casts involving ComplexFloat16, or complex to real without
            `allow_complex_to_real`.
        """
        if isinstance(device, (ScalarType, np.dtype, type)) and dtype is None:
            device, dtype = None, device
        target_dev = self.device if device is None else as_device(device)
        target_st = self.dtype if dtype is None else ScalarType.from_any(dtype)
        check_cast(self.dtype, target_st, allow_complex_to_real=allow_complex_to_real)
        self._engine.backend.require(target_dev, op="to")

        if target_dev == self.device and target_st == self.dtype and not copy:
            return self

        src_st = self.dtype
        arr = self._array
        if src_st.is_complex and not target_st.is_complex:
            arr = arr.real
        out_arr = arr.astype(target_st.numpy_dtype, copy=True)

        def backward_fn(g):
            ga = g.to_numpy()
            if not src_st.is_complex:
                ga = np.real(ga)
            return (ga.astype(src_st.numpy_dtype),)

        grad_ok = target_st.is_floating_point or target_st.is_complex
        return Tensor._wrap_result(
            out_arr,
            (self,),
            backward_fn if grad_ok else None,
            name="to",
            device=target_dev,
            dtype=target_st,
        )

    def type(self, dtype: Any = None) -> Union["Tensor", str]:
        if dtype is None:
            return self.dtype.name
        return self.to(dtype=dtype)

    def float(self) -> "Tensor":
        return self.to(dtype=ScalarType.Float32)

    def double(self) -> "Tensor":
        return self.to(dtype=ScalarType.Float64)

    def half(self) -> "Tensor":
        return self.to(dtype=ScalarType.Float16)

    def bfloat16(self) -> "Tensor":
        return self.to(dtype=ScalarType.BFloat16)

    def long(self) -> "Tensor":
        return self.to(dtype=ScalarType.Int64)

    def int(self) -> "Tensor":
        return self.to(dtype=ScalarType.Int32)

    def bool(self) -> "Tensor":
        return self.to(dtype=ScalarType.Bool)

    def cpu(self) -> "Tensor":
        return self.to(device=Device("cpu"))

    def cuda(self, index: int = 0) -> "Tensor":
        return self.to(device=Device("cuda", index))

    # ------------------------------------------------------------------
    # host access
    # ------------------------------------------------------------------
    def _require_host(self, op: str) -> None:
        if not self.device.is_cpu():
            self._raise_device_not_supported(op)

    def to_numpy(self) -> np.ndarray:
        """Copy of the contents as a NumPy array."""
        self._require_host("to_numpy")
        return self._array.copy()

    def numpy(self) -> np.ndarray:
        """NumPy array sharing this tensor's buffer."""
        self._require_host("numpy")
        if self.requires_grad:
            raise GraphStateError(
                "can't call numpy() on a tensor that requires grad; use detach().numpy()"
            )
        return self._array

    def __array__(self, dtype=None, copy=None) -> np.ndarray:
        arr = self.to_numpy()
        return arr if dtype is None else arr.astype(dtype)

    def data(self, dtype: Any = None) -> np.ndarray:
        """
        Flat read/write view of the elements.

        Parameters
        ----------
        dtype : ScalarType-like, optional
            Expected element type; must match the tensor's element type.

        Raises
        ------
        DeviceNotSupportedError
            If the tensor is not in host memory.
        ShapeError
            If the element count exceeds `max_data_elements` or the tensor is
            not contiguous.
        TypeError
            If `dtype` differs from the element type.
        """
        self._require_host("data")
        arr = self._array
        limit = get_config().max_data_elements
        if arr.size > limit:
            raise ShapeError(
                "tensor has too many elements for direct element access",
                expected=f"<= {limit}",
                actual=int(arr.size),
            )
        if dtype is not None and ScalarType.from_any(dtype) != self.dtype:
            raise TypeError(
                f"element type mismatch: tensor is {self.dtype.name}, "
                f"requested {ScalarType.from_any(dtype).name}"
            )
        if not arr.flags.c_contiguous:
            raise ShapeError("element access requires a contiguous tensor")
        return arr.reshape(-1)

    def item(self) -> Number:
        arr = self._array
        if arr.size != 1:
            raise ShapeError(
                "only one-element tensors can be converted to Python scalars",
                expected=1,
                actual=int(arr.size),
            )
        return arr.reshape(()).item()

    def tolist(self) -> Any:
        return self._array.tolist()

    def copy_from_numpy(self, arr: Any) -> None:
        """Overwrite the contents with `arr` (same shape, cast to this dtype)."""
        src = np.asarray(arr)
        dst = self._array
        if src.shape != dst.shape:
            raise ShapeError("copy_from_numpy shape mismatch", expected=dst.shape, actual=src.shape)
        dst[...] = src.astype(dst.dtype, copy=False)

    # ------------------------------------------------------------------
    # in-place support
    # ------------------------------------------------------------------
    def _apply_inplace(
        self,
        fn: Callable[..., "Tensor"],
        *others: Any,
        name: str,
    ) -> "Tensor":
        """
        Run `fn(self, *others)` out of place and write the result back.

        When autograd records the operation, this tensor's history is rebased
        onto the result so later backward passes see the mutation.

        Raises
        ------
        GraphStateError
            If this tensor is a leaf that requires grad while recording.
        ShapeError
            If the result does not have this tensor's shape.
        TypeError
            If the result type cannot be stored in this tensor's element type.
        """
        dst = self._array
        track = self._result_requires_grad(self, *others)
        if track and self.requires_grad and self._ctx is None:
            raise GraphStateError(
                f"a leaf tensor that requires grad is being used in an in-place "
                f"operation ({name})"
            )
        if not track:
            with no_grad():
                res = fn(self, *others)
            self._write_result(res, name)
            return self

        shadow = Tensor._from_numpy(dst.copy(), device=self.device)
        shadow._requires_grad = self._requires_grad
        shadow._ctx = self._ctx
        res = fn(shadow, *others)
        self._write_result(res, name)
        self._requires_grad = True
        self._ctx = Context(parents=(res,), backward_fn=lambda g: (g,), name=name)
        return self

    def _write_result(self, res: "Tensor", name: str) -> None:
        dst = self._array
        src = res._array
        if src.shape != dst.shape:
            try:
                src = np.broadcast_to(src, dst.shape)
            except ValueError:
                raise ShapeError(
                    f"{name}: result shape does not match the in-place target",
                    expected=dst.shape,
                    actual=res.shape,
                ) from None
        if not np.can_cast(src.dtype, dst.dtype, casting="same_kind") and not (
            self.dtype is ScalarType.BFloat16 and res.dtype.is_floating_point
        ):
            raise TypeError(
                f"{name}: result type {res.dtype.name} can't be cast to the "
                f"in-place target type {self.dtype.name}"
            )
        np.copyto(dst, src, casting="unsafe")

    def copy_(self, src: Any) -> "Tensor":
        """Copy (broadcasting) `src` into this tensor."""
        other = self._as_tensor_like(src, self)

        def fn(a, b):
            if self._binary_op_shape_check(a, b) != a.shape:
                raise ShapeError(
                    "copy_ source does not broadcast to the target",
                    expected=a.shape,
                    actual=b.shape,
                )
            src = b._array.real if b.is_complex() and not a.is_complex() else b._array
            return Tensor._wrap_result(
                np.broadcast_to(src, a.shape).astype(a.dtype.numpy_dtype),
                (a, b),
                lambda g: (None, g.to_numpy()),
                name="copy_",
                device=a.device,
                dtype=a.dtype,
            )

        return self._apply_inplace(fn, other, name="copy_")

    def fill_(self, value: Any) -> "Tensor":
        self._apply_inplace(
            lambda a: Tensor._from_numpy(
                np.full(a.shape, Scalar(value).value, dtype=a.dtype.numpy_dtype),
                device=a.device,
            ),
            name="fill_",
        )
        return self

    def zero_(self) -> "Tensor":
        return self.fill_(0)

    def fill(self, value: Any) -> None:
        self.fill_(value)

    # ------------------------------------------------------------------
    # python protocol
    # ------------------------------------------------------------------
    def __repr__(self) -> str:
        if self.is_disposed:
            return f"Tensor(<disposed handle {self._handle.handle_id}>)"
        extra = ", requires_grad=True" if self.requires_grad else ""
        return (
            f"Tensor(shape={self.shape}, dtype={self.dtype.name}, "
            f"device={self.device}{extra})"
        )

    def __len__(self) -> int:
        if self.ndim == 0:
            raise TypeError("len() of a 0-d tensor")
        return self.shape[0]

    def __iter__(self) -> Iterator["Tensor"]:
        if self.ndim == 0:
            raise TypeError("iteration over a 0-d tensor")
        for i in range(self.shape[0]):
            yield self.select(0, i)

    def __bool__(self) -> bool:
        return bool(self.item())

    def __float__(self) -> float:
        return float(self.item())

    def __int__(self) -> int:
        return int(self.item())

    def __index__(self) -> int:
        if self.dtype.is_integral and self.numel() == 1:
            return int(self.item())
        raise TypeError("only integer tensors of a single element can be converted to an index")

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------
    def save(self, file: Any) -> None:
        """Write this tensor in the persisted tensor format."""
        from ._serialization import save

        save(self, file)

    @staticmethod
    def load(file: Any) -> "Tensor":
        """Read a tensor written by `save`."""
        from ._serialization import load

        return load(file)

    def load_(self, file: Any) -> "Tensor":
        """Read a persisted tensor into this one (type and shape must match)."""
        from ._serialization import load_into

        return load_into(self, file)
