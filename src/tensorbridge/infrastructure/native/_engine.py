"""
Native engine boundary.

Every computing call into the engine goes through `NativeEngine.call`:

1. the kernel registered under a symbol name is invoked;
2. a failing kernel does not raise across the boundary. Its message is stored
   in the calling thread's last-error slot and the sentinel `None` is
   returned instead;
3. the caller checks the sentinel and, on failure, `check_for_errors()` reads
   the slot, clears it and raises `NativeEngineError` (or `AllocationError`
   for out-of-memory conditions) carrying the engine's message verbatim.

Kernels are plain functions over NumPy arrays registered with
`@native_kernel("symbol")` by the modules in `infrastructure.ops`. Errors that
are already classified (`TensorBridgeError`) pass through untouched.

The engine also owns handle allocation and release, and keeps a count of live
handles so leaks are observable.
"""

from __future__ import annotations

import importlib
import itertools
import logging
import threading
from functools import lru_cache
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import numpy as np

from ...domain._dtype import ScalarType
from ...domain._errors import AllocationError, NativeEngineError, TensorBridgeError
from ...domain.device._device import Device
from ._handle import NativeTensor
from ._loader import BackendInfo, load_backend

logger = logging.getLogger(__name__)

KernelFn = Callable[..., Any]

_KERNELS: Dict[str, KernelFn] = {}
"""Process-wide symbol table shared by every engine instance."""


def native_kernel(name: str) -> Callable[[KernelFn], KernelFn]:
    """
    Register a kernel under a symbol name.

    Raises
    ------
    ValueError
        If the symbol is already registered to a different function.
    """

    def decorator(fn: KernelFn) -> KernelFn:
        existing = _KERNELS.get(name)
        if existing is not None and existing is not fn:
            raise ValueError(f"kernel symbol {name!r} is already registered")
        _KERNELS[name] = fn
        return fn

    return decorator


class _LastError(threading.local):
    message: Optional[str] = None
    out_of_memory: bool = False
    op: Optional[str] = None


class NativeEngine:
    """
    Symbol-table dispatcher with a thread-local last-error slot.

    Parameters
    ----------
    backend : BackendInfo
        Result of backend initialisation; consulted for device availability.
    """

    def __init__(self, backend: BackendInfo) -> None:
        self.backend = backend
        self._last_error = _LastError()
        self._ids = itertools.count(1)
        self._live = 0
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # symbol table
    # ------------------------------------------------------------------
    @staticmethod
    def has_kernel(name: str) -> bool:
        if name not in _KERNELS:
            # kernels register themselves on import
            importlib.import_module("tensorbridge.infrastructure.ops")
        return name in _KERNELS

    def _resolve(self, name: str) -> KernelFn:
        if not self.has_kernel(name):
            raise NativeEngineError(f"undefined kernel symbol {name!r}")
        return _KERNELS[name]

    # ------------------------------------------------------------------
    # error slot
    # ------------------------------------------------------------------
    def last_error(self) -> Optional[str]:
        return self._last_error.message

    def set_last_error(
        self, message: str, *, op: Optional[str] = None, out_of_memory: bool = False
    ) -> None:
        self._last_error.message = message
        self._last_error.op = op
        self._last_error.out_of_memory = out_of_memory

    def clear_last_error(self) -> None:
        self._last_error.message = None
        self._last_error.op = None
        self._last_error.out_of_memory = False

    def check_for_errors(self) -> None:
        """
        Raise and clear the pending engine error of the calling thread, if any.
        """
        slot = self._last_error
        if slot.message is None:
            return
        message, op, oom = slot.message, slot.op, slot.out_of_memory
        self.clear_last_error()
        logger.debug("native error surfaced: op=%s message=%s", op, message)
        if oom:
            raise AllocationError(f"{op}: {message}" if op else message)
        raise NativeEngineError(message, op=op)

    # ------------------------------------------------------------------
    # invocation
    # ------------------------------------------------------------------
    def invoke(self, name: str, *args: Any, **kwargs: Any) -> Any:
        """
        Call kernel `name`. Returns `None` on failure and fills the error slot.
        """
        fn = self._resolve(name)
        try:
            return fn(*args, **kwargs)
        except TensorBridgeError:
            raise
        except MemoryError as e:
            self.set_last_error(str(e) or "out of memory", op=name, out_of_memory=True)
        except Exception as e:
            self.set_last_error(f"{type(e).__name__}: {e}", op=name)
        return None

    def call(self, name: str, *args: Any, **kwargs: Any) -> Any:
        """
        Call kernel `name` and convert the failure sentinel to an exception.

        Kernels must not return `None` on success.
        """
        result = self.invoke(name, *args, **kwargs)
        if result is None:
            self.check_for_errors()
            raise NativeEngineError(f"kernel {name!r} returned no result", op=name)
        return result

    # ------------------------------------------------------------------
    # handles
    # ------------------------------------------------------------------
    def _next_id(self) -> int:
        with self._lock:
            self._live += 1
            return next(self._ids)

    def allocate(
        self,
        shape: Sequence[int],
        scalar_type: ScalarType,
        device: Device,
        *,
        fill: Any = None,
    ) -> NativeTensor:
        """
        Allocate a new handle. `fill=None` leaves the contents uninitialised.

        Raises
        ------
        AllocationError
            If the device is unavailable or memory is exhausted.
        """
        self.backend.require(device)
        shape = tuple(int(d) for d in shape)
        for i, d in enumerate(shape):
            if d < 0:
                raise ValueError(f"negative dimension {d} at index {i} in {shape}")
        arr = self.call("allocate", shape, scalar_type.numpy_dtype, fill)
        return self._new_handle(arr, scalar_type, device, base_id=None)

    def wrap(
        self,
        array: np.ndarray,
        scalar_type: ScalarType,
        device: Device,
        *,
        base: Optional[NativeTensor] = None,
    ) -> NativeTensor:
        """
        Take ownership of `array` as a new handle.

        When `base` is given the new handle is a view sharing `base`'s
        allocation.
        """
        self.backend.require(device)
        if array.dtype != scalar_type.numpy_dtype:
            raise TypeError(
                f"storage dtype {array.dtype} does not match {scalar_type.name}"
            )
        return self._new_handle(
            array, scalar_type, device, base_id=None if base is None else base.base_id
        )

    def _new_handle(
        self,
        arr: np.ndarray,
        scalar_type: ScalarType,
        device: Device,
        base_id: Optional[int],
    ) -> NativeTensor:
        hid = self._next_id()
        return NativeTensor(
            storage=arr,
            scalar_type=scalar_type,
            device=device,
            handle_id=hid,
            base_id=hid if base_id is None else base_id,
        )

    def release(self, handle: NativeTensor) -> bool:
        """
        Release `handle`. Returns False if it was already released.
        """
        with self._lock:
            if handle.storage is None:
                return False
            handle.storage = None
            self._live -= 1
        return True

    def live_handles(self) -> int:
        with self._lock:
            return self._live


@native_kernel("allocate")
def _allocate_kernel(shape: Tuple[int, ...], dtype: np.dtype, fill: Any) -> np.ndarray:
    if fill is None:
        return np.empty(shape, dtype=dtype)
    return np.full(shape, fill, dtype=dtype)


@lru_cache(maxsize=1)
def get_engine() -> NativeEngine:
    """Process-wide engine bound to the loaded backend."""
    return NativeEngine(load_backend())
