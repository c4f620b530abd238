from typing import Any, Callable, Optional, Sequence
from dataclasses import dataclass, field

from ...domain._errors import GraphStateError
from ...domain._tensor import ITensor


@dataclass(eq=False)
class Context:
    """
    Backward context attached to a Tensor produced by a differentiable
    operation (one node of the autograd graph).

    Attributes
    ----------
    parents : Sequence[Tensor]
        The input tensors used to compute the output tensor. Gradients are
        produced for these parents during the backward pass.
    backward_fn : Callable[[Tensor], Sequence[Optional[Tensor]]]
        Maps the gradient w.r.t. the output (`grad_out`) to gradients w.r.t.
        each `parents` entry, in the same order. Entries may be None.
    saved_tensors : list[ITensor]
        Tensors saved during the forward pass for use in backward.
    saved_meta : dict[str, Any]
        Non-tensor metadata required for backward (shapes, axes, indices).
    name : str
        Operation name, used in error messages.

    Notes
    -----
    After a backward pass that did not ask to retain the graph, the context is
    released: its closure and saved state are dropped and any further
    traversal raises `GraphStateError`.
    """

    parents: Sequence["ITensor"]
    backward_fn: Optional[Callable[["ITensor"], Sequence[Optional["ITensor"]]]]
    saved_tensors: list["ITensor"] = field(default_factory=list)
    saved_meta: dict[str, Any] = field(default_factory=dict)
    name: str = "op"
    released: bool = False

    def save_for_backward(self, *tensors: "ITensor") -> None:
        """Save tensors for use during the backward computation."""
        self.saved_tensors.extend(tensors)

    def release(self) -> None:
        """Drop the gradient formula and every saved value."""
        self.backward_fn = None
        self.saved_tensors = []
        self.saved_meta = {}
        self.released = True

    def apply_backward(self, grad_out: "ITensor") -> Sequence[Optional["ITensor"]]:
        if self.released or self.backward_fn is None:
            raise GraphStateError(
                f"Trying to backward through the graph a second time (node "
                f"'{self.name}'), but its saved intermediate values have already "
                "been freed. Pass retain_graph=True to the first backward call."
            )
        return self.backward_fn(grad_out)
