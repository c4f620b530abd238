"""
Concrete trainable parameter implementation.

A `Parameter` is a `Tensor` that a module owns and an optimizer updates. It
reuses the tensor handle, metadata and autograd state; the differences are
that it requires grad by default and that `Module` registers it
automatically on attribute assignment.
"""

from __future__ import annotations

from typing import Any, Optional

from .tensor._tensor import Tensor


class Parameter(Tensor):
    """
    Trainable tensor.

    Parameters
    ----------
    data : Tensor | array-like, optional
        Initial values (copied). When omitted, `shape` is required.
    requires_grad : bool, optional
        Whether gradients are accumulated. Defaults to True.
    **kwargs
        `shape`, `device`, `dtype`, forwarded to `Tensor`.
    """

    def __init__(self, data: Any = None, requires_grad: bool = True, **kwargs: Any) -> None:
        super().__init__(data=data, **kwargs)
        self.requires_grad = requires_grad

    def set_grad(self, grad: Optional[Tensor]) -> None:
        """Overwrite the stored gradient (None clears it)."""
        self.grad = grad

    def accumulate_grad(self, grad: Any) -> None:
        """Add `grad` into the stored gradient."""
        self._accumulate_grad_(grad)

    def __repr__(self) -> str:
        if self.is_disposed:
            return "Parameter(<disposed>)"
        return (
            f"Parameter(shape={self.shape}, dtype={self.dtype.name}, "
            f"requires_grad={self.requires_grad})"
        )
