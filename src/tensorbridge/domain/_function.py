"""
Contract for user-defined differentiable operations.

A concrete operation supplies a pair of static methods: `forward` computes
the result from its inputs and `backward` maps the output gradient to input
gradients. The infrastructure layer adds `apply`, which records the graph
node; this module only fixes the method names and signatures.
"""

from abc import ABC, abstractmethod
from typing import Any, Union

from ._tensor import ITensor


class Function(ABC):
    """
    Differentiable operation with an explicit gradient formula.

    Both methods receive `ctx`, a fresh per-call record. State needed by the
    gradient formula (saved tensors, hyperparameters, masks) goes on `ctx`
    during `forward`, never on the class, so one subclass can appear many
    times in the same graph.
    """

    @staticmethod
    @abstractmethod
    def forward(ctx, *inputs: Union[ITensor, Any]) -> ITensor:
        """Return the result; runs with graph recording disabled."""
        ...

    @staticmethod
    @abstractmethod
    def backward(ctx, grad_out: ITensor) -> Any:
        """
        Map `grad_out` to input gradients.

        Returns
        -------
        Tensor | ndarray | None | tuple
            One entry per tensor argument of `forward`, in order. Use None
            for arguments that receive no gradient. A lone gradient may be
            returned without the tuple.
        """
        ...
