"""
Optimizer and scheduler interface definitions.
"""

from __future__ import annotations

from typing import Any, Dict, List, Protocol, runtime_checkable


@runtime_checkable
class IOptimizer(Protocol):
    """
    Optimizer contract.

    `param_groups` is a list of dicts, each holding a `params` list and the
    group's hyperparameters (at least `lr`). Schedulers rely only on this
    attribute.
    """

    param_groups: List[Dict[str, Any]]

    def step(self) -> None: ...

    def zero_grad(self, set_to_none: bool = True) -> None: ...


@runtime_checkable
class ILRScheduler(Protocol):
    """Learning-rate scheduler contract."""

    last_epoch: int

    def step(self) -> None: ...

    def get_last_lr(self) -> List[float]: ...
