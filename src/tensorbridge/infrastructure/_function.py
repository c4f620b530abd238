"""
Function-style autograd glue.

A differentiable operation is a `Function` subclass with static
`forward(ctx, ...)` and `backward(ctx, grad_out)` methods. `Function.apply`
does the wiring every layer needs:

- builds the `Context` (parents are the tensor arguments, in order),
- runs `forward` with graph recording disabled,
- attaches the context to the output when any parent requires grad.

`backward` returns one gradient per tensor argument (a Tensor, a NumPy array
or None); a single gradient may be returned bare.
"""

from __future__ import annotations

from typing import Any

from ..domain._function import Function as _FunctionBase
from .autograd._grad_mode import no_grad
from .tensor._tensor import Tensor
from .tensor._tensor_context import Context


class Function(_FunctionBase):
    """
    Base class for layer-level differentiable operations.
    """

    @classmethod
    def apply(cls, *inputs: Any, **kwargs: Any) -> Any:
        parents = tuple(t for t in inputs if isinstance(t, Tensor))
        ctx = Context(parents=parents, backward_fn=None, name=cls.__name__)
        with no_grad():
            out = cls.forward(ctx, *inputs, **kwargs)

        if Tensor._result_requires_grad(*parents):

            def backward_fn(grad_out: Tensor):
                grads = cls.backward(ctx, grad_out)
                return grads if isinstance(grads, tuple) else (grads,)

            ctx.backward_fn = backward_fn
            primary = out[0] if isinstance(out, tuple) else out
            primary._requires_grad = True
            primary._set_ctx(ctx)
        return out

