from ._tensor import Tensor
from ._tensor_context import Context
from ._scalar import Scalar, as_scalar
from ._factories import (
    arange,
    bernoulli_,
    empty,
    empty_like,
    eye,
    from_array,
    full,
    full_like,
    linspace,
    logspace,
    manual_seed,
    normal_,
    ones,
    ones_like,
    rand,
    rand_like,
    randint,
    randn,
    randn_like,
    randperm,
    tensor,
    uniform_,
    zeros,
    zeros_like,
)
from ._join import broadcast_tensors, cat, concat, stack, where
from ._serialization import load, save
from .mixins import ValuesIndices

__all__ = [
    "Context",
    "Scalar",
    "Tensor",
    "ValuesIndices",
    "arange",
    "as_scalar",
    "bernoulli_",
    "broadcast_tensors",
    "cat",
    "concat",
    "empty",
    "empty_like",
    "eye",
    "from_array",
    "full",
    "full_like",
    "linspace",
    "load",
    "logspace",
    "manual_seed",
    "normal_",
    "ones",
    "ones_like",
    "rand",
    "rand_like",
    "randint",
    "randn",
    "randn_like",
    "randperm",
    "save",
    "stack",
    "tensor",
    "uniform_",
    "where",
    "zeros",
    "zeros_like",
]
