"""
tensorbridge: tensors with reverse-mode autograd over a native engine.

Typical use::

    import tensorbridge as tb
    from tensorbridge import nn

    model = nn.Sequential(nn.Linear(4, 8), nn.ReLU(), nn.Linear(8, 1))
    opt = tb.optim.SGD(model.parameters(), lr=0.1)
    loss = nn.functional.mse_loss(model(tb.randn(16, 4)), tb.zeros(16, 1))
    opt.zero_grad()
    loss.backward()
    opt.step()
"""

import logging

from .domain import (
    AllocationError,
    Device,
    DeviceMismatchError,
    DeviceNotSupportedError,
    DeviceType,
    DTypeNotSupportedError,
    GraphStateError,
    InvalidHandleError,
    NativeEngineError,
    Reduction,
    ScalarType,
    ShapeError,
    TensorBridgeError,
    bfloat16,
    promote_types,
)
from .infrastructure import autograd
from .infrastructure._config import RuntimeConfig, get_config, override_config, set_config
from .infrastructure._function import Function
from .infrastructure.autograd import enable_grad, is_grad_enabled, no_grad, set_grad_enabled
from .infrastructure.native import is_available
from .infrastructure.tensor import (
    Scalar,
    Tensor,
    arange,
    broadcast_tensors,
    cat,
    concat,
    empty,
    empty_like,
    eye,
    from_array,
    full,
    full_like,
    linspace,
    load,
    logspace,
    manual_seed,
    ones,
    ones_like,
    rand,
    rand_like,
    randint,
    randn,
    randn_like,
    randperm,
    save,
    stack,
    tensor,
    where,
    zeros,
    zeros_like,
)

from . import nn, optim  # noqa: E402

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "AllocationError",
    "Device",
    "DeviceMismatchError",
    "DeviceNotSupportedError",
    "DeviceType",
    "DTypeNotSupportedError",
    "Function",
    "GraphStateError",
    "InvalidHandleError",
    "NativeEngineError",
    "Reduction",
    "RuntimeConfig",
    "Scalar",
    "ScalarType",
    "ShapeError",
    "Tensor",
    "TensorBridgeError",
    "arange",
    "autograd",
    "bfloat16",
    "broadcast_tensors",
    "cat",
    "concat",
    "empty",
    "empty_like",
    "enable_grad",
    "eye",
    "from_array",
    "full",
    "full_like",
    "get_config",
    "is_available",
    "is_grad_enabled",
    "linspace",
    "load",
    "logspace",
    "manual_seed",
    "nn",
    "no_grad",
    "ones",
    "ones_like",
    "optim",
    "override_config",
    "promote_types",
    "rand",
    "rand_like",
    "randint",
    "randn",
    "randn_like",
    "randperm",
    "save",
    "set_config",
    "set_grad_enabled",
    "stack",
    "tensor",
    "where",
    "zeros",
    "zeros_like",
]
