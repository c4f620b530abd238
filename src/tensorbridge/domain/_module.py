"""
Module (layer) interface definitions.

Modules are typed by *capability* instead of by inheritance depth. A layer
that maps one tensor to one tensor satisfies `SingleInputModule`; recurrent
and transformer-style layers that take a second input (an initial hidden
state, or a target sequence) plus optional masks satisfy `DualInputModule`.

Both protocols share the parameter-collection surface described by `IModule`.
"""

from __future__ import annotations

from typing import Any, Iterable, Iterator, Optional, Protocol, Tuple, runtime_checkable

from ._tensor import ITensor
from ._parameter import IParameter


@runtime_checkable
class IModule(Protocol):
    """
    Minimal module contract: enumerate parameters and toggle the mode flag.
    """

    training: bool

    def parameters(self, recurse: bool = True) -> Iterable[IParameter]: ...

    def named_parameters(
        self, prefix: str = "", recurse: bool = True
    ) -> Iterator[Tuple[str, IParameter]]: ...

    def train(self, mode: bool = True) -> "IModule": ...

    def eval(self) -> "IModule": ...

    def zero_grad(self, set_to_none: bool = True) -> None: ...


@runtime_checkable
class SingleInputModule(IModule, Protocol):
    """Capability: `forward(x) -> y`."""

    def forward(self, x: ITensor) -> ITensor: ...


@runtime_checkable
class DualInputModule(IModule, Protocol):
    """
    Capability: `forward(first, second=None, **masks) -> Any`.

    `second` is the initial hidden state for recurrent layers or the target
    sequence for encoder/decoder layers. Mask keyword arguments are optional.
    """

    def forward(
        self, first: ITensor, second: Optional[Any] = None, **masks: Any
    ) -> Any: ...
