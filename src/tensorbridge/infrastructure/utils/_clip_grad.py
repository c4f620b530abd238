"""
Gradient clipping.

Both helpers rewrite the ``grad`` of the given parameters in place and skip
parameters whose gradient is None.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Union

import numpy as np

from ..autograd._grad_mode import no_grad
from ..tensor._tensor import Tensor

_TensorOrTensors = Union[Tensor, Iterable[Tensor]]


def _grads(parameters: _TensorOrTensors) -> List[Tensor]:
    if isinstance(parameters, Tensor):
        parameters = [parameters]
    return [p.grad for p in parameters if p.grad is not None]


def clip_grad_norm_(
    parameters: _TensorOrTensors,
    max_norm: float,
    norm_type: float = 2.0,
    error_if_nonfinite: bool = False,
) -> Tensor:
    """
    Rescale gradients so that their combined norm is at most `max_norm`.

    The norm is taken over all gradients together, as if they were
    concatenated into a single vector.

    Parameters
    ----------
    parameters : Tensor or iterable of Tensor
    max_norm : float
    norm_type : float, optional
        Order of the norm; ``float("inf")`` for the max-abs norm.
    error_if_nonfinite : bool, optional
        Raise instead of scaling when the total norm is nan or inf.

    Returns
    -------
    Tensor
        The total norm before clipping (0-d, float32).

    Raises
    ------
    RuntimeError
        If `error_if_nonfinite` is set and the total norm is not finite.
    """
    grads = _grads(parameters)
    max_norm = float(max_norm)
    norm_type = float(norm_type)
    if not grads:
        return Tensor._from_numpy(np.asarray(0.0, dtype=np.float32))

    arrays = [g.to_numpy().astype(np.float64).ravel() for g in grads]
    if math.isinf(norm_type):
        total = max(float(np.abs(a).max()) if a.size else 0.0 for a in arrays)
    else:
        total = float(sum(np.sum(np.abs(a) ** norm_type) for a in arrays)) ** (1.0 / norm_type)

    if error_if_nonfinite and not math.isfinite(total):
        raise RuntimeError(
            f"The total norm of order {norm_type} for gradients from `parameters` is non-finite, "
            "so it cannot be clipped."
        )
    clip_coef = max_norm / (total + 1e-6)
    if clip_coef < 1.0:
        with no_grad():
            for g in grads:
                g.mul_(clip_coef)
    return Tensor._from_numpy(np.asarray(total, dtype=np.float32))


def clip_grad_value_(parameters: _TensorOrTensors, clip_value: float) -> None:
    """
    Clamp every gradient element into ``[-clip_value, clip_value]``.
    """
    clip_value = float(clip_value)
    if clip_value < 0:
        raise ValueError(f"clip_value must be >= 0, got {clip_value}")
    with no_grad():
        for g in _grads(parameters):
            g.copy_from_numpy(np.clip(g.to_numpy(), -clip_value, clip_value))
