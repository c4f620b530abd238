"""
Parameter interface definitions.

A parameter is a tensor owned by a module whose gradient is consumed by
optimizers.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from ._tensor import ITensor


@runtime_checkable
class IParameter(ITensor, Protocol):
    """
    Trainable tensor contract.

    Notes
    -----
    `grad` is `None` until a backward pass produces a gradient for the
    parameter. Optimizers must skip parameters whose gradient is `None`.
    """

    def accumulate_grad(self, g: ITensor) -> None: ...

    def set_grad(self, g: Optional[ITensor]) -> None: ...
