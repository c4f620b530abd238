"""
Loss functions and their module wrappers.

Every loss computes an element-wise value and then collapses it according to
its `Reduction`:

- `none`: the element-wise loss, shaped like the (broadcast) input
- `sum`:  a 0-d tensor holding the sum
- `mean`: a 0-d tensor holding the mean (weighted mean for class-weighted
  losses)

Most losses are compositions of differentiable tensor operations, so their
gradients come from the autograd engine. Binary cross entropy and its logits
variant are `Function` subclasses with explicit backward formulas because the
composed versions lose precision (or produce NaN) at the clamping boundaries.
"""

from __future__ import annotations

import math
import warnings
from typing import Any, Optional, Union

import numpy as np

from ..domain._errors import ShapeError
from ..domain._reduction import Reduction
from ._activations import log_softmax, softplus
from ._function import Function
from ._module import Module
from .tensor._join import where
from .tensor._tensor import Tensor

ReductionLike = Union[Reduction, str, None]

_LOG_CLAMP = -100.0


def _reduce(loss: Tensor, reduction: ReductionLike) -> Tensor:
    r = Reduction.from_any(reduction)
    if r is Reduction.None_:
        return loss
    if r is Reduction.Sum:
        return loss.sum()
    if loss.numel() == 0:
        warnings.warn("mean reduction of an empty loss is NaN", RuntimeWarning, stacklevel=3)
    return loss.mean()


def _check_same_shape(input: Tensor, target: Tensor, name: str) -> None:
    if input.shape != target.shape:
        raise ShapeError(
            f"{name}: target size must match input size",
            expected=input.shape,
            actual=target.shape,
        )


def _constant(arr: Any, like: Tensor) -> Tensor:
    return Tensor._from_numpy(
        np.asarray(arr, dtype=like.dtype.numpy_dtype), device=like.device
    )


# ----------------------------------------------------------------------
# regression
# ----------------------------------------------------------------------
def l1_loss(input: Tensor, target: Tensor, reduction: ReductionLike = "mean") -> Tensor:
    _check_same_shape(input, target, "l1_loss")
    return _reduce((input - target).abs(), reduction)


def mse_loss(input: Tensor, target: Tensor, reduction: ReductionLike = "mean") -> Tensor:
    _check_same_shape(input, target, "mse_loss")
    return _reduce((input - target).square(), reduction)


def smooth_l1_loss(
    input: Tensor, target: Tensor, reduction: ReductionLike = "mean", beta: float = 1.0
) -> Tensor:
    """
    Quadratic below `beta`, linear above. `beta == 0` is plain L1.
    """
    _check_same_shape(input, target, "smooth_l1_loss")
    if beta < 0:
        raise ValueError(f"smooth_l1_loss beta must be non-negative, got {beta}")
    d = (input - target).abs()
    if beta == 0:
        return _reduce(d, reduction)
    loss = where(d < beta, 0.5 * d.square() / beta, d - 0.5 * beta)
    return _reduce(loss, reduction)


def huber_loss(
    input: Tensor, target: Tensor, reduction: ReductionLike = "mean", delta: float = 1.0
) -> Tensor:
    _check_same_shape(input, target, "huber_loss")
    if delta <= 0:
        raise ValueError(f"huber_loss delta must be positive, got {delta}")
    d = (input - target).abs()
    loss = where(d < delta, 0.5 * d.square(), delta * (d - 0.5 * delta))
    return _reduce(loss, reduction)


# ----------------------------------------------------------------------
# binary classification
# ----------------------------------------------------------------------
class BinaryCrossEntropyFn(Function):
    """
    Element-wise binary cross entropy on probabilities.

    Log terms are clamped at -100 so a probability of exactly 0 or 1 gives a
    finite loss.
    """

    @staticmethod
    def forward(ctx, input: Tensor, target: Tensor) -> Tensor:
        x = input.to_numpy().astype(np.float64)
        t = target.to_numpy().astype(np.float64)
        if x.size and (x.min() < 0 or x.max() > 1):
            raise ValueError("binary_cross_entropy input values must be between 0 and 1")
        with np.errstate(divide="ignore"):
            log_x = np.maximum(np.log(x), _LOG_CLAMP)
            log_1mx = np.maximum(np.log1p(-x), _LOG_CLAMP)
        ctx.saved_meta.update(x=x, t=t, log_x=log_x, log_1mx=log_1mx)
        out = -(t * log_x + (1.0 - t) * log_1mx)
        return Tensor._from_numpy(out, device=input.device, dtype=input.dtype)

    @staticmethod
    def backward(ctx, grad_out: Tensor):
        m = ctx.saved_meta
        g = grad_out.to_numpy()
        x, t = m["x"], m["t"]
        gx = g * (x - t) / np.maximum((1.0 - x) * x, 1e-12)
        gt = g * (m["log_1mx"] - m["log_x"])
        return gx, gt


def binary_cross_entropy(
    input: Tensor,
    target: Tensor,
    weight: Optional[Tensor] = None,
    reduction: ReductionLike = "mean",
) -> Tensor:
    _check_same_shape(input, target, "binary_cross_entropy")
    loss = BinaryCrossEntropyFn.apply(input, target)
    if weight is not None:
        loss = loss * weight
    return _reduce(loss, reduction)


class BinaryCrossEntropyWithLogitsFn(Function):
    """
    `(1 - t) x + l * softplus(-x)` with `l = 1 + (pos_weight - 1) t`.
    """

    @staticmethod
    def forward(ctx, input: Tensor, target: Tensor, pos_weight: Optional[np.ndarray] = None) -> Tensor:
        x = input.to_numpy().astype(np.float64)
        t = target.to_numpy().astype(np.float64)
        pw = 1.0 if pos_weight is None else pos_weight
        lw = 1.0 + (pw - 1.0) * t
        sp_neg = np.logaddexp(0.0, -x)
        ctx.saved_meta.update(x=x, t=t, pw=pw, lw=lw, sp_neg=sp_neg)
        out = (1.0 - t) * x + lw * sp_neg
        return Tensor._from_numpy(out, device=input.device, dtype=input.dtype)

    @staticmethod
    def backward(ctx, grad_out: Tensor):
        m = ctx.saved_meta
        g = grad_out.to_numpy()
        x = m["x"]
        sig = 0.5 * (1.0 + np.tanh(0.5 * x))
        gx = g * ((1.0 - m["t"]) + m["lw"] * (sig - 1.0))
        gt = g * (-x + (m["pw"] - 1.0) * m["sp_neg"])
        return gx, gt


def binary_cross_entropy_with_logits(
    input: Tensor,
    target: Tensor,
    weight: Optional[Tensor] = None,
    reduction: ReductionLike = "mean",
    pos_weight: Optional[Tensor] = None,
) -> Tensor:
    _check_same_shape(input, target, "binary_cross_entropy_with_logits")
    pw = None if pos_weight is None else pos_weight.to_numpy().astype(np.float64)
    loss = BinaryCrossEntropyWithLogitsFn.apply(input, target, pw)
    if weight is not None:
        loss = loss * weight
    return _reduce(loss, reduction)


def soft_margin_loss(input: Tensor, target: Tensor, reduction: ReductionLike = "mean") -> Tensor:
    """`log(1 + exp(-y x))` for targets in {-1, 1}."""
    _check_same_shape(input, target, "soft_margin_loss")
    return _reduce(softplus(-(target * input)), reduction)


def hinge_embedding_loss(
    input: Tensor, target: Tensor, margin: float = 1.0, reduction: ReductionLike = "mean"
) -> Tensor:
    _check_same_shape(input, target, "hinge_embedding_loss")
    y = target.to_numpy()
    pos = _constant(y == 1, input)
    neg = _constant(y == -1, input)
    loss = input * pos + (margin - input).relu() * neg
    return _reduce(loss, reduction)


def margin_ranking_loss(
    input1: Tensor,
    input2: Tensor,
    target: Tensor,
    margin: float = 0.0,
    reduction: ReductionLike = "mean",
) -> Tensor:
    _check_same_shape(input1, input2, "margin_ranking_loss")
    _check_same_shape(input1, target, "margin_ranking_loss")
    return _reduce((-target * (input1 - input2) + margin).relu(), reduction)


def cosine_embedding_loss(
    input1: Tensor,
    input2: Tensor,
    target: Tensor,
    margin: float = 0.0,
    reduction: ReductionLike = "mean",
) -> Tensor:
    """
    `1 - cos(x1, x2)` for `y == 1`, `max(0, cos(x1, x2) - margin)` for `y == -1`.

    Inputs are (N, D) with targets (N,), or unbatched (D,) with a 0-d target.
    """
    _check_same_shape(input1, input2, "cosine_embedding_loss")
    if input1.ndim not in (1, 2):
        raise ShapeError(
            "cosine_embedding_loss expects 1-D or 2-D inputs", expected="1 or 2", actual=input1.ndim
        )
    if target.shape != input1.shape[:-1]:
        raise ShapeError(
            "cosine_embedding_loss target must match the batch shape",
            expected=input1.shape[:-1],
            actual=target.shape,
        )
    eps = 1e-12
    dot = (input1 * input2).sum(-1)
    mag = ((input1.square().sum(-1) + eps) * (input2.square().sum(-1) + eps)).sqrt()
    cos = dot / mag
    y = target.to_numpy()
    pos = _constant(y == 1, cos)
    neg = _constant(y == -1, cos)
    loss = (1.0 - cos) * pos + (cos - margin).relu() * neg
    return _reduce(loss, reduction)


# ----------------------------------------------------------------------
# multi-class
# ----------------------------------------------------------------------
def _class_dim(input: Tensor) -> int:
    if input.ndim == 0:
        raise ShapeError("expected an input with a class dimension", expected=">= 1", actual=0)
    return 1 if input.ndim >= 2 else 0


def _class_weights(weight: Optional[Tensor], n_classes: int, like: Tensor) -> Optional[np.ndarray]:
    if weight is None:
        return None
    w = weight.to_numpy()
    if w.shape != (n_classes,):
        raise ShapeError(
            "class weight must be a 1-D tensor with one entry per class",
            expected=(n_classes,),
            actual=w.shape,
        )
    return w.astype(like.dtype.numpy_dtype)


def _nll_from_log_probs(
    logp: Tensor,
    target: Tensor,
    weight: Optional[Tensor],
    ignore_index: int,
    reduction: ReductionLike,
    label_smoothing: float = 0.0,
) -> Tensor:
    cdim = _class_dim(logp)
    n_classes = logp.shape[cdim]
    expected = logp.shape[:cdim] + logp.shape[cdim + 1 :]
    if target.shape != expected:
        raise ShapeError(
            "target shape must equal the input shape without the class dimension",
            dim=cdim,
            expected=expected,
            actual=target.shape,
        )
    y = target.to_numpy()
    if y.dtype.kind not in "iu":
        raise TypeError(f"class-index targets must be integers, got {y.dtype}")
    valid = y != ignore_index
    if np.any((y[valid] < 0) | (y[valid] >= n_classes)):
        raise ShapeError("target class index out of range", expected=f"[0, {n_classes})")

    safe = np.where(valid, y, 0).astype(np.int64)
    w = _class_weights(weight, n_classes, logp)
    per_item_w = valid.astype(logp.dtype.numpy_dtype)
    if w is not None:
        per_item_w = per_item_w * w[safe]

    picked = logp.gather(cdim, np.expand_dims(safe, cdim)).squeeze(cdim)
    loss = -picked * _constant(per_item_w, logp)
    if label_smoothing > 0:
        if w is None:
            smooth = -logp.sum(cdim)
        else:
            shape = [1] * logp.ndim
            shape[cdim] = n_classes
            smooth = -(logp * _constant(w.reshape(shape), logp)).sum(cdim)
        smooth = smooth * _constant(valid, logp) / n_classes
        loss = (1.0 - label_smoothing) * loss + label_smoothing * smooth

    r = Reduction.from_any(reduction)
    if r is Reduction.Mean:
        total = float(per_item_w.sum())
        if total == 0:
            warnings.warn("mean reduction over no valid targets is NaN", RuntimeWarning, stacklevel=3)
            return loss.sum() * float("nan")
        return loss.sum() / total
    return _reduce(loss, r)


def nll_loss(
    input: Tensor,
    target: Tensor,
    weight: Optional[Tensor] = None,
    ignore_index: int = -100,
    reduction: ReductionLike = "mean",
) -> Tensor:
    """
    Negative log likelihood of class-index targets given log-probabilities.

    Parameters
    ----------
    input : Tensor
        Log-probabilities, (N, C), (N, C, d1, ...) or unbatched (C,).
    target : Tensor
        Integer class indices shaped like `input` without the class dim.
    weight : Tensor, optional
        Per-class weights of shape (C,).
    ignore_index : int
        Target value that contributes neither loss nor gradient.
    """
    return _nll_from_log_probs(input, target, weight, ignore_index, reduction)


def cross_entropy(
    input: Tensor,
    target: Tensor,
    weight: Optional[Tensor] = None,
    ignore_index: int = -100,
    reduction: ReductionLike = "mean",
    label_smoothing: float = 0.0,
) -> Tensor:
    """
    Cross entropy between logits and class indices or class probabilities.

    Integer targets select a class per item (see `nll_loss`); floating point
    targets of the same shape as `input` are treated as class probabilities.
    `label_smoothing` mixes the target with the uniform distribution.
    """
    if not 0.0 <= label_smoothing <= 1.0:
        raise ValueError(f"label_smoothing must be in [0, 1], got {label_smoothing}")
    cdim = _class_dim(input)
    logp = log_softmax(input, cdim)
    if target.is_floating_point():
        _check_same_shape(input, target, "cross_entropy")
        n_classes = input.shape[cdim]
        probs = target
        if label_smoothing > 0:
            probs = probs * (1.0 - label_smoothing) + label_smoothing / n_classes
        w = _class_weights(weight, n_classes, input)
        if w is not None:
            shape = [1] * input.ndim
            shape[cdim] = n_classes
            probs = probs * _constant(w.reshape(shape), input)
        return _reduce(-(probs * logp).sum(cdim), reduction)
    return _nll_from_log_probs(logp, target, weight, ignore_index, reduction, label_smoothing)


def _xlogx(t: Tensor) -> Tensor:
    return t._unary_op(
        "xlogx",
        lambda a: np.where(a > 0, a * np.log(np.where(a > 0, a, 1.0)), 0.0),
        lambda g, a, o: np.where(a > 0, g * (np.log(np.where(a > 0, a, 1.0)) + 1.0), 0.0),
    )


def kl_div(
    input: Tensor,
    target: Tensor,
    reduction: str = "mean",
    log_target: bool = False,
) -> Tensor:
    """
    Kullback-Leibler divergence with `input` given as log-probabilities.

    `reduction="batchmean"` divides the sum by the batch size, which is the
    mathematically correct KL value; `"mean"` averages over every element.
    """
    _check_same_shape(input, target, "kl_div")
    if log_target:
        loss = target.exp() * (target - input)
    else:
        loss = _xlogx(target) - target * input
    if reduction == "batchmean":
        batch = input.shape[0] if input.ndim else 1
        return loss.sum() / batch
    return _reduce(loss, reduction)


def poisson_nll_loss(
    input: Tensor,
    target: Tensor,
    log_input: bool = True,
    full: bool = False,
    eps: float = 1e-8,
    reduction: ReductionLike = "mean",
) -> Tensor:
    _check_same_shape(input, target, "poisson_nll_loss")
    if log_input:
        loss = input.exp() - target * input
    else:
        loss = input - target * (input + eps).log()
    if full:
        t = target.to_numpy().astype(np.float64)
        safe = np.where(t > 1, t, 1.0)
        stirling = np.where(t > 1, safe * np.log(safe) - safe + 0.5 * np.log(2 * math.pi * safe), 0.0)
        loss = loss + _constant(stirling, loss)
    return _reduce(loss, reduction)


# ----------------------------------------------------------------------
# modules
# ----------------------------------------------------------------------
class _Loss(Module):
    def __init__(self, reduction: ReductionLike = "mean") -> None:
        super().__init__()
        self.reduction = Reduction.from_any(reduction)

    def extra_repr(self) -> str:
        return f"reduction={self.reduction.value}"


class _WeightedLoss(_Loss):
    def __init__(self, weight: Optional[Tensor] = None, reduction: ReductionLike = "mean") -> None:
        super().__init__(reduction)
        self.register_buffer("weight", weight)


class L1Loss(_Loss):
    def forward(self, input: Tensor, target: Tensor) -> Tensor:
        return l1_loss(input, target, self.reduction)


class MSELoss(_Loss):
    """
    Mean squared error.

    With the default `mean` reduction this is `((input - target) ** 2).mean()`.
    """

    def forward(self, input: Tensor, target: Tensor) -> Tensor:
        return mse_loss(input, target, self.reduction)


class SmoothL1Loss(_Loss):
    def __init__(self, reduction: ReductionLike = "mean", beta: float = 1.0) -> None:
        super().__init__(reduction)
        if beta < 0:
            raise ValueError(f"beta must be non-negative, got {beta}")
        self.beta = beta

    def forward(self, input: Tensor, target: Tensor) -> Tensor:
        return smooth_l1_loss(input, target, self.reduction, self.beta)


class HuberLoss(_Loss):
    def __init__(self, reduction: ReductionLike = "mean", delta: float = 1.0) -> None:
        super().__init__(reduction)
        if delta <= 0:
            raise ValueError(f"delta must be positive, got {delta}")
        self.delta = delta

    def forward(self, input: Tensor, target: Tensor) -> Tensor:
        return huber_loss(input, target, self.reduction, self.delta)


class BCELoss(_WeightedLoss):
    def forward(self, input: Tensor, target: Tensor) -> Tensor:
        return binary_cross_entropy(input, target, self.weight, self.reduction)


class BCEWithLogitsLoss(_WeightedLoss):
    def __init__(
        self,
        weight: Optional[Tensor] = None,
        reduction: ReductionLike = "mean",
        pos_weight: Optional[Tensor] = None,
    ) -> None:
        super().__init__(weight, reduction)
        self.register_buffer("pos_weight", pos_weight)

    def forward(self, input: Tensor, target: Tensor) -> Tensor:
        return binary_cross_entropy_with_logits(
            input, target, self.weight, self.reduction, self.pos_weight
        )


class CrossEntropyLoss(_WeightedLoss):
    """
    Cross entropy over logits.

    Parameters
    ----------
    weight : Tensor, optional
        Per-class rescaling weights of shape (C,).
    ignore_index : int, optional
        Class-index target value to skip. Defaults to -100.
    reduction : Reduction | str, optional
        Defaults to `mean`.
    label_smoothing : float, optional
        Amount in [0, 1] of uniform mass mixed into the target.
    """

    def __init__(
        self,
        weight: Optional[Tensor] = None,
        ignore_index: int = -100,
        reduction: ReductionLike = "mean",
        label_smoothing: float = 0.0,
    ) -> None:
        super().__init__(weight, reduction)
        if not 0.0 <= label_smoothing <= 1.0:
            raise ValueError(f"label_smoothing must be in [0, 1], got {label_smoothing}")
        self.ignore_index = ignore_index
        self.label_smoothing = label_smoothing

    def forward(self, input: Tensor, target: Tensor) -> Tensor:
        return cross_entropy(
            input, target, self.weight, self.ignore_index, self.reduction, self.label_smoothing
        )


class NLLLoss(_WeightedLoss):
    def __init__(
        self,
        weight: Optional[Tensor] = None,
        ignore_index: int = -100,
        reduction: ReductionLike = "mean",
    ) -> None:
        super().__init__(weight, reduction)
        self.ignore_index = ignore_index

    def forward(self, input: Tensor, target: Tensor) -> Tensor:
        return nll_loss(input, target, self.weight, self.ignore_index, self.reduction)


class KLDivLoss(Module):
    def __init__(self, reduction: str = "mean", log_target: bool = False) -> None:
        super().__init__()
        if reduction != "batchmean":
            Reduction.from_any(reduction)
        self.reduction = reduction
        self.log_target = log_target

    def forward(self, input: Tensor, target: Tensor) -> Tensor:
        return kl_div(input, target, self.reduction, self.log_target)


class PoissonNLLLoss(_Loss):
    def __init__(
        self,
        log_input: bool = True,
        full: bool = False,
        eps: float = 1e-8,
        reduction: ReductionLike = "mean",
    ) -> None:
        super().__init__(reduction)
        self.log_input = log_input
        self.full = full
        self.eps = eps

    def forward(self, log_input: Tensor, target: Tensor) -> Tensor:
        return poisson_nll_loss(log_input, target, self.log_input, self.full, self.eps, self.reduction)


class SoftMarginLoss(_Loss):
    def forward(self, input: Tensor, target: Tensor) -> Tensor:
        return soft_margin_loss(input, target, self.reduction)


class HingeEmbeddingLoss(_Loss):
    def __init__(self, margin: float = 1.0, reduction: ReductionLike = "mean") -> None:
        super().__init__(reduction)
        self.margin = margin

    def forward(self, input: Tensor, target: Tensor) -> Tensor:
        return hinge_embedding_loss(input, target, self.margin, self.reduction)


class MarginRankingLoss(_Loss):
    def __init__(self, margin: float = 0.0, reduction: ReductionLike = "mean") -> None:
        super().__init__(reduction)
        self.margin = margin

    def forward(self, input1: Tensor, input2: Tensor, target: Tensor) -> Tensor:
        return margin_ranking_loss(input1, input2, target, self.margin, self.reduction)


class CosineEmbeddingLoss(_Loss):
    def __init__(self, margin: float = 0.0, reduction: ReductionLike = "mean") -> None:
        super().__init__(reduction)
        if not -1.0 <= margin <= 1.0:
            raise ValueError(f"margin should be in [-1, 1], got {margin}")
        self.margin = margin

    def forward(self, input1: Tensor, input2: Tensor, target: Tensor) -> Tensor:
        return cosine_embedding_loss(input1, input2, target, self.margin, self.reduction)
