"""
Adam and AdamW.

Both keep exponential moving averages of the gradient (``exp_avg``) and its
square (``exp_avg_sq``) with bias correction:

    m <- b1 * m + (1 - b1) * g
    v <- b2 * v + (1 - b2) * g^2
    p <- p - lr * (m / (1 - b1^t)) / (sqrt(v / (1 - b2^t)) + eps)

`Adam` applies `weight_decay` as classical L2 (added to the gradient);
`AdamW` decouples it (``p <- p * (1 - lr * weight_decay)`` before the step).
With `amsgrad` the running maximum of ``v`` is used in the denominator.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, Tuple

from .._parameter import Parameter
from ..tensor._join import where
from ..tensor._tensor import Tensor
from ._optimizer import Optimizer


class Adam(Optimizer):
    """
    Parameters
    ----------
    params : iterable of Parameter or dict
    lr : float, optional
        Learning rate. Defaults to 1e-3.
    betas : tuple[float, float], optional
        Decay rates of the moment estimates, each in [0, 1).
    eps : float, optional
        Added to the denominator.
    weight_decay : float, optional
    amsgrad : bool, optional
    maximize : bool, optional
    """

    _decoupled = False

    def __init__(
        self,
        params: Iterable[Any],
        lr: float = 1e-3,
        betas: Tuple[float, float] = (0.9, 0.999),
        eps: float = 1e-8,
        weight_decay: float = 0.0,
        amsgrad: bool = False,
        *,
        maximize: bool = False,
    ) -> None:
        if lr <= 0.0:
            raise ValueError(f"lr must be > 0, got {lr}")
        if eps < 0.0:
            raise ValueError(f"Invalid epsilon value: {eps}")
        if not 0.0 <= betas[0] < 1.0:
            raise ValueError(f"Invalid beta parameter at index 0: {betas[0]}")
        if not 0.0 <= betas[1] < 1.0:
            raise ValueError(f"Invalid beta parameter at index 1: {betas[1]}")
        if weight_decay < 0.0:
            raise ValueError(f"weight_decay must be >= 0, got {weight_decay}")
        defaults = dict(
            lr=lr,
            betas=(float(betas[0]), float(betas[1])),
            eps=eps,
            weight_decay=weight_decay,
            amsgrad=amsgrad,
            maximize=maximize,
        )
        super().__init__(params, defaults)

    def _update(self, p: Parameter, grad: Tensor, group: Dict[str, Any], state: Dict[str, Any]) -> None:
        g = -grad if group["maximize"] else grad
        lr, wd = group["lr"], group["weight_decay"]
        b1, b2 = group["betas"]
        if not state:
            state["step"] = 0
            state["exp_avg"] = self._buffer(p)
            state["exp_avg_sq"] = self._buffer(p)
            if group["amsgrad"]:
                state["max_exp_avg_sq"] = self._buffer(p)
        state["step"] += 1
        t = state["step"]

        if wd != 0:
            if self._decoupled:
                p.mul_(1 - lr * wd)
            else:
                g = g + wd * p

        exp_avg, exp_avg_sq = state["exp_avg"], state["exp_avg_sq"]
        exp_avg.mul_(b1).add_(g, alpha=1 - b1)
        exp_avg_sq.mul_(b2).add_(g * g, alpha=1 - b2)
        bias_correction1 = 1 - b1**t
        bias_correction2 = 1 - b2**t

        second = exp_avg_sq
        if group["amsgrad"]:
            max_sq = state["max_exp_avg_sq"]
            max_sq.copy_(where(exp_avg_sq > max_sq, exp_avg_sq, max_sq))
            second = max_sq
        denom = second.sqrt() / math.sqrt(bias_correction2) + group["eps"]
        p.add_(exp_avg / denom, alpha=-lr / bias_correction1)


class AdamW(Adam):
    """
    Adam with decoupled weight decay (default ``weight_decay=1e-2``).
    """

    _decoupled = True

    def __init__(
        self,
        params: Iterable[Any],
        lr: float = 1e-3,
        betas: Tuple[float, float] = (0.9, 0.999),
        eps: float = 1e-8,
        weight_decay: float = 1e-2,
        amsgrad: bool = False,
        *,
        maximize: bool = False,
    ) -> None:
        super().__init__(params, lr, betas, eps, weight_decay, amsgrad, maximize=maximize)
