"""
Optimizer base class.

An optimizer owns one or more *parameter groups*. Each group is a dict with
a ``params`` list and the group's hyperparameters (``lr``, ...); entries
missing from a group fall back to the optimizer defaults. Per-parameter state
(moment estimates, step counts) lives in `state`, keyed by parameter.

Subclasses implement `_update(p, grad, group, state)`; `step()` calls it
under `no_grad` for every parameter whose ``grad`` is not None.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

import numpy as np

from ...domain._errors import ShapeError
from .._parameter import Parameter
from ..autograd._grad_mode import no_grad
from ..tensor._tensor import Tensor

logger = logging.getLogger(__name__)


class Optimizer:
    """
    Base class for optimizers.

    Parameters
    ----------
    params : iterable of Parameter or iterable of dict
        Parameters to optimize, or parameter groups.
    defaults : dict
        Default hyperparameters for groups that do not set them.

    Raises
    ------
    ValueError
        If no parameters are given or a parameter appears in two groups.
    """

    def __init__(self, params: Iterable[Any], defaults: Dict[str, Any]) -> None:
        self.defaults = dict(defaults)
        self.state: Dict[Parameter, Dict[str, Any]] = {}
        self.param_groups: List[Dict[str, Any]] = []
        if isinstance(params, Tensor):
            raise TypeError("params argument given to the optimizer should be an iterable of Tensors or dicts")
        groups = list(params)
        if not groups:
            raise ValueError("optimizer got an empty parameter list")
        if not isinstance(groups[0], dict):
            groups = [{"params": groups}]
        for group in groups:
            self.add_param_group(group)

    def add_param_group(self, param_group: Dict[str, Any]) -> None:
        """
        Append a parameter group, filling in missing hyperparameters from
        the defaults.
        """
        group = dict(param_group)
        params = group["params"]
        params = [params] if isinstance(params, Tensor) else list(params)
        for p in params:
            if not isinstance(p, Tensor):
                raise TypeError(f"optimizer can only optimize Tensors, got {type(p).__name__}")
            if not p.is_leaf:
                raise ValueError("can't optimize a non-leaf Tensor")
        seen = {id(p) for g in self.param_groups for p in g["params"]}
        if any(id(p) in seen for p in params):
            raise ValueError("some parameters appear in more than one parameter group")
        if len({id(p) for p in params}) != len(params):
            raise ValueError("a parameter group contains duplicate parameters")
        group["params"] = params
        for name, default in self.defaults.items():
            group.setdefault(name, default)
        self.param_groups.append(group)

    def zero_grad(self, set_to_none: bool = True) -> None:
        """
        Clear the gradients of every managed parameter.

        With ``set_to_none=False`` existing gradients are zero-filled in place
        instead of dropped.
        """
        for group in self.param_groups:
            for p in group["params"]:
                if p.grad is None:
                    continue
                if set_to_none:
                    p.grad = None
                else:
                    with no_grad():
                        p.grad.zero_()

    def step(self, closure: Optional[Callable[[], Any]] = None) -> Any:
        """
        Apply one update to every parameter that has a gradient.

        Parameters
        ----------
        closure : callable, optional
            Re-evaluates the model and returns the loss; it runs with
            gradients enabled before the update.
        """
        loss = None
        if closure is not None:
            loss = closure()
        with no_grad():
            for group in self.param_groups:
                for p in group["params"]:
                    if p.grad is None:
                        continue
                    if p.grad.shape != p.shape:
                        raise ShapeError("gradient shape does not match parameter", expected=p.shape, actual=p.grad.shape)
                    state = self.state.setdefault(p, {})
                    self._update(p, p.grad, group, state)
        return loss

    def _update(self, p: Parameter, grad: Tensor, group: Dict[str, Any], state: Dict[str, Any]) -> None:
        raise NotImplementedError

    @staticmethod
    def _buffer(p: Tensor) -> Tensor:
        """Zero state tensor shaped like `p`."""
        return Tensor(shape=p.shape, device=p.device, dtype=p.dtype)

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------
    def state_dict(self) -> Dict[str, Any]:
        """
        Snapshot of the optimizer.

        Parameters are replaced by their position across all groups; state
        tensors are copied to NumPy arrays.
        """
        index: Dict[int, int] = {}
        groups = []
        for group in self.param_groups:
            packed = {k: copy.deepcopy(v) for k, v in group.items() if k != "params"}
            ids = []
            for p in group["params"]:
                index.setdefault(id(p), len(index))
                ids.append(index[id(p)])
            packed["params"] = ids
            groups.append(packed)
        state = {}
        for p, s in self.state.items():
            if id(p) in index:
                state[index[id(p)]] = {
                    k: (v.to_numpy() if isinstance(v, Tensor) else copy.deepcopy(v)) for k, v in s.items()
                }
        return {"state": state, "param_groups": groups}

    def load_state_dict(self, state_dict: Dict[str, Any]) -> None:
        """
        Restore a snapshot taken by `state_dict` from an optimizer over
        parameters of the same shapes and grouping.

        Raises
        ------
        ValueError
            If the number of groups or their sizes differ.
        """
        saved_groups = state_dict["param_groups"]
        if len(saved_groups) != len(self.param_groups):
            raise ValueError("loaded state dict has a different number of parameter groups")
        lookup: Dict[int, Parameter] = {}
        for group, saved in zip(self.param_groups, saved_groups):
            if len(group["params"]) != len(saved["params"]):
                raise ValueError(
                    "loaded state dict contains a parameter group that doesn't match the size of optimizer's group"
                )
            for idx, p in zip(saved["params"], group["params"]):
                lookup[int(idx)] = p
        self.state = {}
        for idx, s in state_dict["state"].items():
            p = lookup[int(idx)]
            restored = {}
            for k, v in s.items():
                if isinstance(v, np.ndarray):
                    restored[k] = Tensor._from_numpy(np.array(v), device=p.device)
                else:
                    restored[k] = copy.deepcopy(v)
            self.state[p] = restored
        for group, saved in zip(self.param_groups, saved_groups):
            for k, v in saved.items():
                if k != "params":
                    group[k] = copy.deepcopy(v)
        logger.debug("%s: loaded state for %d parameters", type(self).__name__, len(self.state))

    def __repr__(self) -> str:
        lines = [f"{type(self).__name__} ("]
        for i, group in enumerate(self.param_groups):
            lines.append(f"Parameter Group {i}")
            for k in sorted(group):
                if k != "params":
                    lines.append(f"    {k}: {group[k]}")
        lines.append(")")
        return "\n".join(lines)
