"""
Reverse-mode graph walk.

`run_backward` is the single implementation behind `Tensor.backward()` and
`autograd.grad()`:

1. seed each root (implicit ones only for 0-d roots);
2. collect every node reachable from the roots in topological order
   (iterative DFS, so long recurrent chains do not hit the recursion limit);
3. visit nodes from the outputs back to the leaves. Each node's incoming
   gradients have all been summed by the time it is visited; its gradient
   formula then produces one gradient per parent. Gradients of broadcast
   parents are reduced back to the parent's shape;
4. accumulate (add, never overwrite) into `.grad` of leaves that require
   grad and of non-leaves that asked to `retain_grad()`;
5. unless `retain_graph`, release every visited node.

Gradient formulas run with graph recording disabled. Concurrent walks over a
shared graph are not synchronised here; callers that backward from several
threads must serialise those calls themselves.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ...domain._errors import DeviceMismatchError, GraphStateError, ShapeError
from ._grad_mode import no_grad

if TYPE_CHECKING:
    from ..tensor._tensor import Tensor

logger = logging.getLogger(__name__)


def sum_to_shape(g: np.ndarray, shape: Tuple[int, ...]) -> np.ndarray:
    """
    Reduce a broadcast gradient back to `shape`.

    Raises
    ------
    ShapeError
        If `shape` does not broadcast to `g.shape`.
    """
    if g.shape == tuple(shape):
        return g
    try:
        np.broadcast_shapes(tuple(shape), g.shape)
    except ValueError:
        raise ShapeError(
            "gradient shape is not broadcast-compatible with its input",
            expected=tuple(shape),
            actual=g.shape,
        ) from None
    lead = g.ndim - len(shape)
    if lead < 0:
        raise ShapeError(
            "gradient has fewer dimensions than its input",
            expected=tuple(shape),
            actual=g.shape,
        )
    if lead:
        g = g.sum(axis=tuple(range(lead)))
    axes = tuple(i for i, d in enumerate(shape) if d == 1 and g.shape[i] != 1)
    if axes:
        g = g.sum(axis=axes, keepdims=True)
    return g.reshape(shape)


def _topological_order(roots: Sequence["Tensor"]) -> List["Tensor"]:
    order: List["Tensor"] = []
    visited: set[int] = set()
    for root in roots:
        stack: List[Tuple["Tensor", bool]] = [(root, False)]
        while stack:
            t, expanded = stack.pop()
            tid = id(t)
            if expanded:
                order.append(t)
                continue
            if tid in visited:
                continue
            visited.add(tid)
            stack.append((t, True))
            ctx = t._get_ctx()
            if ctx is not None:
                for p in reversed(tuple(ctx.parents)):
                    if id(p) not in visited:
                        stack.append((p, False))
    return order


def _seed(root: "Tensor", grad: Optional["Tensor"]) -> np.ndarray:
    if grad is None:
        if root.ndim != 0:
            raise GraphStateError(
                "grad can be implicitly created only for scalar outputs "
                f"(got a tensor of shape {root.shape}); pass an explicit "
                "gradient of the same shape"
            )
        return np.ones((), dtype=root.dtype.numpy_dtype)
    arr = grad.to_numpy() if hasattr(grad, "to_numpy") else np.asarray(grad)
    if arr.shape != root.shape:
        raise ShapeError(
            "seed gradient shape does not match the output",
            expected=root.shape,
            actual=arr.shape,
        )
    if hasattr(grad, "device") and grad.device != root.device:
        raise DeviceMismatchError(str(root.device), str(grad.device))
    return arr.astype(root.dtype.numpy_dtype, copy=False)


def run_backward(
    roots: Sequence["Tensor"],
    grads: Sequence[Optional["Tensor"]],
    *,
    retain_graph: bool = False,
    inputs: Optional[Sequence["Tensor"]] = None,
    accumulate: bool = True,
) -> Dict[int, np.ndarray]:
    """
    Walk the graph backward from `roots`.

    Parameters
    ----------
    roots : Sequence[Tensor]
        Output tensors to differentiate.
    grads : Sequence[Optional[Tensor]]
        Seed gradient per root (None means implicit ones for 0-d roots).
    retain_graph : bool
        Keep the visited nodes usable for another walk.
    inputs : Sequence[Tensor], optional
        Tensors whose total incoming gradient should be returned.
    accumulate : bool
        Whether to write gradients into `.grad` attributes.

    Returns
    -------
    dict[int, np.ndarray]
        Gradients of `inputs`, keyed by `id(tensor)`. Unused inputs are absent.
    """
    if len(roots) != len(grads):
        raise ValueError(f"got {len(roots)} outputs but {len(grads)} gradients")

    pending: Dict[int, np.ndarray] = {}
    for i, (root, g) in enumerate(zip(roots, grads)):
        if not root.requires_grad:
            raise GraphStateError(
                f"element {i} of tensors does not require grad and does not have "
                "a grad_fn"
            )
        seed = _seed(root, g)
        rid = id(root)
        pending[rid] = pending[rid] + seed if rid in pending else seed

    capture_ids = {id(t) for t in inputs} if inputs is not None else set()
    captured: Dict[int, np.ndarray] = {}

    order = _topological_order(roots)
    visited_ctx = []
    logger.debug("backward: %d roots, %d graph nodes", len(roots), len(order))

    try:
        with no_grad():
            for t in reversed(order):
                g = pending.pop(id(t), None)
                if g is None:
                    continue

                if id(t) in capture_ids:
                    captured[id(t)] = g

                ctx = t._get_ctx()
                if ctx is None:
                    if accumulate and t.requires_grad:
                        t._accumulate_grad_(g)
                    continue

                if accumulate and t._retains_grad:
                    t._accumulate_grad_(g)

                visited_ctx.append(ctx)
                grad_t = type(t)._from_numpy(g, device=t.device)
                parent_grads = ctx.apply_backward(grad_t)
                if not isinstance(parent_grads, (tuple, list)):
                    parent_grads = (parent_grads,)
                if len(parent_grads) != len(ctx.parents):
                    raise GraphStateError(
                        f"backward of '{ctx.name}' returned {len(parent_grads)} "
                        f"gradients for {len(ctx.parents)} inputs"
                    )

                for parent, pg in zip(ctx.parents, parent_grads):
                    if pg is None or not getattr(parent, "requires_grad", False):
                        continue
                    arr = pg.to_numpy() if hasattr(pg, "to_numpy") else np.asarray(pg)
                    arr = sum_to_shape(arr, parent.shape)
                    pid = id(parent)
                    if pid in pending:
                        pending[pid] = pending[pid] + arr
                    else:
                        pending[pid] = arr
    finally:
        if not retain_graph:
            for ctx in visited_ctx:
                ctx.release()

    return captured


def grad(
    outputs,
    inputs,
    grad_outputs=None,
    retain_graph: bool = False,
    allow_unused: bool = False,
) -> Tuple[Optional["Tensor"], ...]:
    """
    Compute and return the gradients of `outputs` w.r.t. `inputs`.

    `.grad` attributes are left untouched.

    Raises
    ------
    GraphStateError
        If an input is unused by the graph and `allow_unused` is False.
    """
    outputs = list(outputs) if isinstance(outputs, (list, tuple)) else [outputs]
    inputs = list(inputs) if isinstance(inputs, (list, tuple)) else [inputs]
    if grad_outputs is None:
        grad_outputs = [None] * len(outputs)
    elif not isinstance(grad_outputs, (list, tuple)):
        grad_outputs = [grad_outputs]

    captured = run_backward(
        outputs,
        grad_outputs,
        retain_graph=retain_graph,
        inputs=inputs,
        accumulate=False,
    )

    result: List[Optional["Tensor"]] = []
    for i, t in enumerate(inputs):
        g = captured.get(id(t))
        if g is None:
            if not allow_unused:
                raise GraphStateError(
                    f"input {i} appears to not have been used in the graph; "
                    "set allow_unused=True if this is the desired behavior"
                )
            result.append(None)
            continue
        result.append(type(t)._from_numpy(g, device=t.device, dtype=t.dtype))
    return tuple(result)
