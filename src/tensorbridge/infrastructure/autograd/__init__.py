from ._engine import grad, run_backward, sum_to_shape
from ._grad_mode import (
    AutoGradMode,
    enable_grad,
    is_grad_enabled,
    no_grad,
    set_grad_enabled,
)

__all__ = [
    "AutoGradMode",
    "enable_grad",
    "grad",
    "is_grad_enabled",
    "no_grad",
    "run_backward",
    "set_grad_enabled",
    "sum_to_shape",
]
