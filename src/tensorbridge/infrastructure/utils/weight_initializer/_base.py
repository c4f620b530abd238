"""
Weight initializer registry and the shared fan/gain helpers.

Initializers mutate a tensor in place and return it. Each one is a plain
function (`xavier_uniform_`, `kaiming_normal_`...) registered under a short
name so layers and user code can also pick one by string:

    @WeightInitializer.register_initializer("kaiming_uniform")
    def kaiming_uniform_(tensor, ...): ...

    WeightInitializer("kaiming_uniform")(weight)

Values are drawn from the global NumPy RNG (see `manual_seed`) and written
with autograd recording disabled.
"""

from __future__ import annotations

import math
from typing import Any, Callable, ClassVar, Dict, Optional, Tuple, TypeVar

import numpy as np

from ...autograd._grad_mode import no_grad
from ...tensor._tensor import Tensor

T = TypeVar("T", bound=Callable[..., Tensor])


class WeightInitializer:
    """
    Registry-backed initializer dispatcher.

    Raises
    ------
    ValueError
        If `initializer_name` is not registered.
    """

    INITIALIZERS: ClassVar[Dict[str, Callable[..., Tensor]]] = {}

    def __init__(self, initializer_name: str) -> None:
        try:
            self._initializer = self.INITIALIZERS[initializer_name]
        except KeyError as e:
            available = ", ".join(sorted(self.INITIALIZERS)) or "<none>"
            raise ValueError(
                f"Unsupported initializer name: {initializer_name!r}. "
                f"Available: {available}"
            ) from e

    @classmethod
    def register_initializer(cls, name: str, *, overwrite: bool = False) -> Callable[[T], T]:
        if not isinstance(name, str) or not name:
            raise ValueError("Initializer name must be a non-empty string")

        def decorator(func: T) -> T:
            if not overwrite and name in cls.INITIALIZERS:
                raise ValueError(f"Initializer already registered: {name!r}")
            cls.INITIALIZERS[name] = func
            return func

        return decorator

    @classmethod
    def available(cls) -> tuple[str, ...]:
        return tuple(sorted(cls.INITIALIZERS))

    def __call__(self, tensor: Tensor, *args: Any, **kwargs: Any) -> Tensor:
        return self._initializer(tensor, *args, **kwargs)


def calculate_fan_in_and_fan_out(tensor: Tensor) -> Tuple[int, int]:
    """
    Fan-in and fan-out of a weight of shape (out, in, *kernel).

    Raises
    ------
    ValueError
        For tensors with fewer than two dimensions.
    """
    shape = tensor.shape
    if len(shape) < 2:
        raise ValueError(
            "fan in and fan out can not be computed for tensor with fewer than 2 dimensions"
        )
    receptive = int(np.prod(shape[2:], dtype=np.int64)) if len(shape) > 2 else 1
    return shape[1] * receptive, shape[0] * receptive


def _fan(tensor: Tensor, mode: str) -> int:
    if mode not in ("fan_in", "fan_out"):
        raise ValueError(f"mode {mode!r} not supported, please use one of fan_in, fan_out")
    fan_in, fan_out = calculate_fan_in_and_fan_out(tensor)
    return fan_in if mode == "fan_in" else fan_out


def calculate_gain(nonlinearity: str, param: Optional[float] = None) -> float:
    """
    Recommended gain for a nonlinearity.

    ================= ====================================
    nonlinearity      gain
    ================= ====================================
    linear / conv*d   1
    sigmoid           1
    tanh              5/3
    relu              sqrt(2)
    leaky_relu        sqrt(2 / (1 + negative_slope ** 2))
    selu              3/4
    ================= ====================================
    """
    linear = (
        "linear",
        "conv1d",
        "conv2d",
        "conv3d",
        "conv_transpose1d",
        "conv_transpose2d",
        "conv_transpose3d",
    )
    if nonlinearity in linear or nonlinearity == "sigmoid":
        return 1.0
    if nonlinearity == "tanh":
        return 5.0 / 3
    if nonlinearity == "relu":
        return math.sqrt(2.0)
    if nonlinearity == "leaky_relu":
        if param is None:
            slope = 0.01
        elif isinstance(param, (int, float)) and not isinstance(param, bool):
            slope = float(param)
        else:
            raise ValueError(f"negative_slope {param} not a valid number")
        return math.sqrt(2.0 / (1 + slope**2))
    if nonlinearity == "selu":
        return 3.0 / 4
    raise ValueError(f"Unsupported nonlinearity {nonlinearity}")


def write_(tensor: Tensor, arr: np.ndarray) -> Tensor:
    """Overwrite `tensor` with `arr` without recording the write."""
    with no_grad():
        tensor.copy_from_numpy(arr)
    return tensor
