"""
Tensor interface definitions.

This module defines the domain-level interface for tensor-like objects using
structural typing. It captures the properties modules, losses and optimizers
rely on: placement, element type, shape, autograd hooks and the explicit
disposal lifecycle.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, Union, runtime_checkable

from ._dtype import ScalarType
from .device._device_protocol import DeviceLike

Number = Union[int, float, bool, complex]


@runtime_checkable
class ITensor(Protocol):
    """
    Tensor interface.

    An `ITensor` is a handle to an n-dimensional array of a fixed element type
    placed on a device. It optionally participates in automatic
    differentiation and must be released with `dispose()` (or by the
    finalizer safety net).
    """

    @property
    def shape(self) -> tuple[int, ...]: ...

    @property
    def device(self) -> DeviceLike: ...

    @property
    def dtype(self) -> ScalarType: ...

    @property
    def requires_grad(self) -> bool: ...

    @requires_grad.setter
    def requires_grad(self, value: bool) -> None: ...

    @property
    def grad(self) -> Optional["ITensor"]: ...

    @property
    def is_disposed(self) -> bool: ...

    def numel(self) -> int: ...

    def stride(self) -> tuple[int, ...]: ...

    def backward(
        self, grad_out: Optional["ITensor"] = None, retain_graph: bool = False
    ) -> None: ...

    def zero_grad(self) -> None: ...

    def detach(self) -> "ITensor": ...

    def dispose(self) -> None: ...

    def to_numpy(self) -> Any: ...
