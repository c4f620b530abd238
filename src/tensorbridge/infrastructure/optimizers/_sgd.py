"""
Stochastic gradient descent with optional momentum.

Update rule
-----------
For each parameter ``p`` with gradient ``g``:

- ``g <- g + weight_decay * p`` (classical, coupled L2)
- with momentum: ``b <- momentum * b + (1 - dampening) * g`` (``b <- g`` on
  the first step); ``g <- g + momentum * b`` if `nesterov` else ``g <- b``
- ``p <- p - lr * g``
"""

from __future__ import annotations

from typing import Any, Dict, Iterable

from .._parameter import Parameter
from ..tensor._tensor import Tensor
from ._optimizer import Optimizer


class SGD(Optimizer):
    """
    Parameters
    ----------
    params : iterable of Parameter or dict
    lr : float, optional
        Learning rate. Defaults to 1e-3.
    momentum : float, optional
    dampening : float, optional
    weight_decay : float, optional
    nesterov : bool, optional
        Requires ``momentum > 0`` and ``dampening == 0``.
    maximize : bool, optional
        Ascend instead of descend.

    Raises
    ------
    ValueError
        If a hyperparameter is out of range.
    """

    def __init__(
        self,
        params: Iterable[Any],
        lr: float = 1e-3,
        momentum: float = 0.0,
        dampening: float = 0.0,
        weight_decay: float = 0.0,
        nesterov: bool = False,
        *,
        maximize: bool = False,
    ) -> None:
        if lr <= 0.0:
            raise ValueError(f"lr must be > 0, got {lr}")
        if momentum < 0.0:
            raise ValueError(f"Invalid momentum value: {momentum}")
        if weight_decay < 0.0:
            raise ValueError(f"weight_decay must be >= 0, got {weight_decay}")
        if nesterov and (momentum <= 0 or dampening != 0):
            raise ValueError("Nesterov momentum requires a momentum and zero dampening")
        defaults = dict(
            lr=lr,
            momentum=momentum,
            dampening=dampening,
            weight_decay=weight_decay,
            nesterov=nesterov,
            maximize=maximize,
        )
        super().__init__(params, defaults)

    def _update(self, p: Parameter, grad: Tensor, group: Dict[str, Any], state: Dict[str, Any]) -> None:
        d_p = -grad if group["maximize"] else grad
        if group["weight_decay"] != 0:
            d_p = d_p + group["weight_decay"] * p
        momentum = group["momentum"]
        if momentum != 0:
            buf = state.get("momentum_buffer")
            if buf is None:
                buf = d_p.clone()
                state["momentum_buffer"] = buf
            else:
                buf.mul_(momentum).add_(d_p, alpha=1 - group["dampening"])
            d_p = d_p + momentum * buf if group["nesterov"] else buf
        p.add_(d_p, alpha=-group["lr"])
