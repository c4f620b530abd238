"""
Embedding lookups.

`embedding` gathers rows of a weight matrix by integer index; its gradient
scatters back into the gathered rows (skipping `padding_idx`).
`embedding_bag` reduces bags of embeddings with sum, mean or max without
materializing a padded batch. `one_hot` encodes class indices.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import numpy as np

from ...domain._dtype import ScalarType
from ...domain._errors import DTypeNotSupportedError, ShapeError
from .._function import Function
from .._module import Module
from .._parameter import Parameter
from ..autograd._grad_mode import no_grad
from ..tensor._factories import zeros
from ..tensor._join import stack
from ..tensor._tensor import Tensor
from ..utils.weight_initializer import normal_

logger = logging.getLogger(__name__)

_BAG_MODES = ("sum", "mean", "max")


def _index_array(indices: Tensor, num: int, name: str) -> np.ndarray:
    idx = indices.to_numpy()
    if idx.dtype.kind not in "iu":
        raise DTypeNotSupportedError(f"{name} expects integer indices, got {indices.dtype.name}")
    if idx.size and (idx.min() < 0 or idx.max() >= num):
        raise ShapeError(f"{name}: index out of range", expected=f"[0, {num})", actual=(int(idx.min()), int(idx.max())))
    return idx.astype(np.int64, copy=False)


def _normalize_padding_idx(padding_idx: Optional[int], num: int) -> Optional[int]:
    if padding_idx is None:
        return None
    if not -num <= padding_idx < num:
        raise ValueError("padding_idx must be within num_embeddings")
    return padding_idx + num if padding_idx < 0 else padding_idx


def _renorm_(weight: Tensor, idx: np.ndarray, max_norm: float, norm_type: float) -> None:
    """Rescale the referenced rows in place so their norm is at most `max_norm`."""
    rows = np.unique(idx)
    if rows.size == 0:
        return
    with no_grad():
        w = weight.to_numpy()
        sub = w[rows].astype(np.float64)
        norms = np.linalg.norm(sub, ord=norm_type, axis=1)
        over = norms > max_norm
        if np.any(over):
            sub[over] *= (max_norm / (norms[over] + 1e-7))[:, None]
            w[rows] = sub.astype(w.dtype)
            weight.copy_from_numpy(w)


class EmbeddingFn(Function):
    @staticmethod
    def forward(
        ctx,
        weight: Tensor,
        *,
        indices: np.ndarray,
        padding_idx: Optional[int],
        scale_grad_by_freq: bool,
    ) -> Tensor:
        out = weight.to_numpy()[indices]
        ctx.saved_meta.update(
            indices=indices,
            num=weight.shape[0],
            padding_idx=padding_idx,
            scale_grad_by_freq=scale_grad_by_freq,
        )
        return Tensor._from_numpy(out, device=weight.device, dtype=weight.dtype)

    @staticmethod
    def backward(ctx, grad_out: Tensor):
        m = ctx.saved_meta
        g = grad_out.to_numpy()
        dim = g.shape[-1]
        flat = m["indices"].reshape(-1)
        g = g.reshape(-1, dim)
        if m["scale_grad_by_freq"]:
            counts = np.bincount(flat, minlength=m["num"])
            g = g / counts[flat][:, None]
        gw = np.zeros((m["num"], dim), dtype=g.dtype)
        np.add.at(gw, flat, g)
        if m["padding_idx"] is not None:
            gw[m["padding_idx"]] = 0
        return gw


def embedding(
    input: Tensor,
    weight: Tensor,
    padding_idx: Optional[int] = None,
    max_norm: Optional[float] = None,
    norm_type: float = 2.0,
    scale_grad_by_freq: bool = False,
) -> Tensor:
    """
    Look up rows of `weight` (num_embeddings, embedding_dim).

    The result has shape ``input.shape + (embedding_dim,)``. With `max_norm`
    the referenced rows of `weight` are renormalized in place first.

    Raises
    ------
    DTypeNotSupportedError
        If `input` is not an integer tensor.
    ShapeError
        If `weight` is not 2-D or an index is out of range.
    """
    if weight.ndim != 2:
        raise ShapeError("embedding weight must be 2-D", expected=2, actual=weight.ndim)
    num = weight.shape[0]
    idx = _index_array(input, num, "embedding")
    padding_idx = _normalize_padding_idx(padding_idx, num)
    if max_norm is not None:
        _renorm_(weight, idx, max_norm, norm_type)
    return EmbeddingFn.apply(
        weight, indices=idx, padding_idx=padding_idx, scale_grad_by_freq=scale_grad_by_freq
    )


def _bag_bounds(input: Tensor, offsets: Optional[Tensor], include_last_offset: bool):
    if input.ndim == 2:
        if offsets is not None:
            raise ValueError("offsets must be None when input is 2-D")
        L = input.shape[1]
        return [(b * L, (b + 1) * L) for b in range(input.shape[0])]
    if input.ndim != 1:
        raise ShapeError("embedding_bag expects 1-D or 2-D input", expected=(1, 2), actual=input.ndim)
    if offsets is None:
        raise ValueError("offsets are required for 1-D input")
    if offsets.ndim != 1:
        raise ShapeError("offsets must be 1-D", expected=1, actual=offsets.ndim)
    off = offsets.to_numpy().astype(np.int64)
    n = input.shape[0]
    if off.size and (off[0] != 0 or np.any(np.diff(off) < 0) or off[-1] > n):
        raise ValueError("offsets must start at 0, be non-decreasing and not exceed the input length")
    ends = list(off[1:]) if include_last_offset else list(off[1:]) + [n]
    starts = list(off[:-1]) if include_last_offset else list(off)
    return [(int(s), int(e)) for s, e in zip(starts, ends)]


def embedding_bag(
    input: Tensor,
    weight: Tensor,
    offsets: Optional[Tensor] = None,
    max_norm: Optional[float] = None,
    norm_type: float = 2.0,
    mode: str = "mean",
    per_sample_weights: Optional[Tensor] = None,
    include_last_offset: bool = False,
    padding_idx: Optional[int] = None,
) -> Tensor:
    """
    Sum, average or max-reduce bags of embeddings.

    Bags are either the rows of a 2-D `input` or the segments of a 1-D
    `input` starting at each entry of `offsets`. Entries equal to
    `padding_idx` are left out of their bag; an empty bag gives zeros.

    Returns
    -------
    Tensor
        Shape ``(num_bags, embedding_dim)``.
    """
    if mode not in _BAG_MODES:
        raise ValueError(f"mode must be one of {_BAG_MODES}, got {mode!r}")
    if per_sample_weights is not None:
        if mode != "sum":
            raise ValueError("per_sample_weights are only supported for mode='sum'")
        if per_sample_weights.shape != input.shape:
            raise ShapeError(
                "per_sample_weights must have the shape of input",
                expected=input.shape,
                actual=per_sample_weights.shape,
            )
    bounds = _bag_bounds(input, offsets, include_last_offset)
    flat_input = input.reshape(-1)
    idx = _index_array(flat_input, weight.shape[0], "embedding_bag")
    pad = _normalize_padding_idx(padding_idx, weight.shape[0])
    rows = embedding(flat_input, weight, pad, max_norm, norm_type)
    if per_sample_weights is not None:
        rows = rows * per_sample_weights.reshape(-1, 1)

    bags = []
    dim = weight.shape[1]
    for start, end in bounds:
        pos = np.arange(start, end, dtype=np.int64)
        if pad is not None:
            pos = pos[idx[start:end] != pad]
        if pos.size == 0:
            bags.append(zeros(dim, dtype=weight.dtype, device=weight.device))
            continue
        chosen = rows.index_select(0, pos)
        if mode == "sum":
            bags.append(chosen.sum(0))
        elif mode == "mean":
            bags.append(chosen.mean(0))
        else:
            bags.append(chosen.amax(0))
    if not bags:
        return zeros(0, dim, dtype=weight.dtype, device=weight.device)
    return stack(bags, 0)


def one_hot(tensor: Tensor, num_classes: int = -1) -> Tensor:
    """
    Encode integer class indices as an Int64 tensor of shape
    ``tensor.shape + (num_classes,)``; ``-1`` infers ``max + 1``.
    """
    idx = tensor.to_numpy()
    if idx.dtype.kind not in "iu":
        raise DTypeNotSupportedError(f"one_hot is only applicable to index tensors, got {tensor.dtype.name}")
    if idx.size and idx.min() < 0:
        raise ValueError("Class values must be non-negative.")
    if num_classes == -1:
        num_classes = int(idx.max()) + 1 if idx.size else 0
    if idx.size and idx.max() >= num_classes:
        raise ValueError("Class values must be smaller than num_classes.")
    out = np.zeros(idx.shape + (num_classes,), dtype=np.int64)
    np.put_along_axis(out, idx[..., None].astype(np.int64), 1, axis=-1)
    return Tensor._from_numpy(out, device=tensor.device, dtype=ScalarType.Int64)


class Embedding(Module):
    """
    Lookup table of `num_embeddings` vectors of size `embedding_dim`.

    Parameters
    ----------
    num_embeddings, embedding_dim : int
    padding_idx : int, optional
        Row that is initialized to zeros and never receives gradient.
    max_norm : float, optional
        Renormalize looked-up rows whose `norm_type` norm exceeds this.
    norm_type : float, optional
    scale_grad_by_freq : bool, optional
        Divide gradients by the frequency of each index in the batch.
    """

    def __init__(
        self,
        num_embeddings: int,
        embedding_dim: int,
        padding_idx: Optional[int] = None,
        max_norm: Optional[float] = None,
        norm_type: float = 2.0,
        scale_grad_by_freq: bool = False,
        _weight: Optional[Tensor] = None,
        _freeze: bool = False,
        device: Any = None,
        dtype: Any = None,
    ) -> None:
        super().__init__()
        self.num_embeddings = int(num_embeddings)
        self.embedding_dim = int(embedding_dim)
        self.padding_idx = _normalize_padding_idx(padding_idx, self.num_embeddings)
        self.max_norm = max_norm
        self.norm_type = norm_type
        self.scale_grad_by_freq = scale_grad_by_freq
        if _weight is None:
            self.weight = Parameter(
                shape=(self.num_embeddings, self.embedding_dim),
                device=device,
                dtype=dtype,
                requires_grad=not _freeze,
            )
            self.reset_parameters()
        else:
            if _weight.shape != (self.num_embeddings, self.embedding_dim):
                raise ShapeError(
                    "Shape of weight does not match num_embeddings and embedding_dim",
                    expected=(self.num_embeddings, self.embedding_dim),
                    actual=_weight.shape,
                )
            self.weight = Parameter(_weight, requires_grad=not _freeze, dtype=_weight.dtype, device=_weight.device)

    def reset_parameters(self) -> None:
        normal_(self.weight)
        if self.padding_idx is not None:
            with no_grad():
                w = self.weight.to_numpy()
                w[self.padding_idx] = 0
                self.weight.copy_from_numpy(w)

    def forward(self, input: Tensor) -> Tensor:
        return embedding(
            input, self.weight, self.padding_idx, self.max_norm, self.norm_type, self.scale_grad_by_freq
        )

    @classmethod
    def from_pretrained(
        cls,
        embeddings: Tensor,
        freeze: bool = True,
        padding_idx: Optional[int] = None,
        max_norm: Optional[float] = None,
        norm_type: float = 2.0,
        scale_grad_by_freq: bool = False,
    ) -> "Embedding":
        """
        Build an `Embedding` from a 2-D weight tensor (copied); `freeze`
        turns off gradients for it.
        """
        if embeddings.ndim != 2:
            raise ShapeError("Embeddings parameter is expected to be 2-dimensional", expected=2, actual=embeddings.ndim)
        rows, cols = embeddings.shape
        logger.debug("Embedding.from_pretrained: %d x %d (freeze=%s)", rows, cols, freeze)
        return cls(
            rows,
            cols,
            padding_idx=padding_idx,
            max_norm=max_norm,
            norm_type=norm_type,
            scale_grad_by_freq=scale_grad_by_freq,
            _weight=embeddings,
            _freeze=freeze,
        )

    def extra_repr(self) -> str:
        s = f"{self.num_embeddings}, {self.embedding_dim}"
        if self.padding_idx is not None:
            s += f", padding_idx={self.padding_idx}"
        if self.max_norm is not None:
            s += f", max_norm={self.max_norm}"
        return s


class EmbeddingBag(Module):
    def __init__(
        self,
        num_embeddings: int,
        embedding_dim: int,
        max_norm: Optional[float] = None,
        norm_type: float = 2.0,
        mode: str = "mean",
        include_last_offset: bool = False,
        padding_idx: Optional[int] = None,
        _weight: Optional[Tensor] = None,
        _freeze: bool = False,
        device: Any = None,
        dtype: Any = None,
    ) -> None:
        super().__init__()
        if mode not in _BAG_MODES:
            raise ValueError(f"mode must be one of {_BAG_MODES}, got {mode!r}")
        self.num_embeddings = int(num_embeddings)
        self.embedding_dim = int(embedding_dim)
        self.max_norm = max_norm
        self.norm_type = norm_type
        self.mode = mode
        self.include_last_offset = include_last_offset
        self.padding_idx = _normalize_padding_idx(padding_idx, self.num_embeddings)
        if _weight is None:
            self.weight = Parameter(
                shape=(self.num_embeddings, self.embedding_dim),
                device=device,
                dtype=dtype,
                requires_grad=not _freeze,
            )
            normal_(self.weight)
            if self.padding_idx is not None:
                with no_grad():
                    w = self.weight.to_numpy()
                    w[self.padding_idx] = 0
                    self.weight.copy_from_numpy(w)
        else:
            self.weight = Parameter(_weight, requires_grad=not _freeze, dtype=_weight.dtype, device=_weight.device)

    def forward(
        self,
        input: Tensor,
        offsets: Optional[Tensor] = None,
        per_sample_weights: Optional[Tensor] = None,
    ) -> Tensor:
        return embedding_bag(
            input,
            self.weight,
            offsets,
            self.max_norm,
            self.norm_type,
            self.mode,
            per_sample_weights,
            self.include_last_offset,
            self.padding_idx,
        )

    @classmethod
    def from_pretrained(
        cls,
        embeddings: Tensor,
        freeze: bool = True,
        max_norm: Optional[float] = None,
        norm_type: float = 2.0,
        mode: str = "mean",
        include_last_offset: bool = False,
        padding_idx: Optional[int] = None,
    ) -> "EmbeddingBag":
        if embeddings.ndim != 2:
            raise ShapeError("Embeddings parameter is expected to be 2-dimensional", expected=2, actual=embeddings.ndim)
        rows, cols = embeddings.shape
        return cls(
            rows,
            cols,
            max_norm=max_norm,
            norm_type=norm_type,
            mode=mode,
            include_last_offset=include_last_offset,
            padding_idx=padding_idx,
            _weight=embeddings,
            _freeze=freeze,
        )

    def extra_repr(self) -> str:
        return f"{self.num_embeddings}, {self.embedding_dim}, mode={self.mode!r}"
