"""
Scaled dot-product and multi-head attention.

Mask conventions
----------------
- `scaled_dot_product_attention`: a boolean `attn_mask` marks the positions
  that *may* be attended (True = keep); a floating mask is added to the
  scores.
- `MultiheadAttention`: boolean `attn_mask` / `key_padding_mask` mark the
  positions that are *not* allowed to attend (True = masked out); floating
  masks are added to the scores.

A query row whose keys are all masked yields NaN weights.
"""

from __future__ import annotations

import math
from typing import Any, Optional, Tuple

import numpy as np

from ...domain._errors import ShapeError
from .._module import Module
from .._parameter import Parameter
from ..fully_connected._linear import Linear, linear
from ..layers._dropout import dropout
from ..tensor._tensor import Tensor
from ..utils.weight_initializer import constant_, xavier_uniform_


def _causal(L: int, S: int) -> np.ndarray:
    """Boolean (L, S) mask, True above the diagonal."""
    return np.triu(np.ones((L, S), dtype=bool), k=1)


def _additive(mask: Tensor, masked_when: bool) -> np.ndarray:
    m = mask.to_numpy()
    if m.dtype == np.bool_:
        hide = m if masked_when else ~m
        return np.where(hide, -np.inf, 0.0)
    if not mask.dtype.is_floating_point:
        raise TypeError(f"attention masks must be bool or floating point, got {mask.dtype.name}")
    return m.astype(np.float64)


def scaled_dot_product_attention(
    query: Tensor,
    key: Tensor,
    value: Tensor,
    attn_mask: Optional[Tensor] = None,
    dropout_p: float = 0.0,
    is_causal: bool = False,
    scale: Optional[float] = None,
) -> Tensor:
    """
    ``softmax(q k^T * scale + mask) v`` over the last two dims.

    Parameters
    ----------
    query : Tensor
        ``(..., L, E)``
    key : Tensor
        ``(..., S, E)``
    value : Tensor
        ``(..., S, Ev)``
    attn_mask : Tensor, optional
        Boolean (True = attend) or additive mask broadcastable to
        ``(..., L, S)``.
    is_causal : bool, optional
        Apply a causal mask; may not be combined with `attn_mask`.
    """
    if query.shape[-1] != key.shape[-1]:
        raise ShapeError("query and key embedding sizes differ", expected=query.shape[-1], actual=key.shape[-1])
    if key.shape[-2] != value.shape[-2]:
        raise ShapeError("key and value sequence lengths differ", expected=key.shape[-2], actual=value.shape[-2])
    if is_causal and attn_mask is not None:
        raise ValueError("attn_mask and is_causal cannot both be set")
    L, S = query.shape[-2], key.shape[-2]
    scale = 1.0 / math.sqrt(query.shape[-1]) if scale is None else scale
    scores = query.matmul(key.transpose(-2, -1)) * scale
    if is_causal:
        bias = np.where(_causal(L, S), -np.inf, 0.0)
        scores = scores + Tensor._from_numpy(bias, device=query.device, dtype=scores.dtype)
    elif attn_mask is not None:
        if attn_mask.dtype.is_floating_point:
            scores = scores + attn_mask
        else:
            bias = _additive(attn_mask, masked_when=False)
            scores = scores + Tensor._from_numpy(bias, device=query.device, dtype=scores.dtype)
    weights = scores.softmax(-1)
    if dropout_p > 0.0:
        weights = dropout(weights, dropout_p, True)
    return weights.matmul(value)


class MultiheadAttention(Module):
    """
    Multi-head attention.

    ``MultiHead(Q, K, V) = Concat(head_1, ..., head_h) W_O`` with
    ``head_i = Attention(Q W_Q_i, K W_K_i, V W_V_i)``.

    Parameters
    ----------
    embed_dim : int
        Model dimension E; must be divisible by `num_heads`.
    num_heads : int
    dropout : float, optional
        Dropout on the attention weights (training mode only).
    bias : bool, optional
        Add biases to the input and output projections.
    kdim, vdim : int, optional
        Feature sizes of key and value (default `embed_dim`).
    batch_first : bool, optional
        Inputs are ``(N, L, E)`` instead of ``(L, N, E)``.

    Notes
    -----
    When ``kdim == vdim == embed_dim`` the three input projections are
    packed in ``in_proj_weight`` (3E, E); otherwise they are separate
    ``q_proj_weight``, ``k_proj_weight`` and ``v_proj_weight`` parameters.
    """

    def __init__(
        self,
        embed_dim: int,
        num_heads: int,
        dropout: float = 0.0,
        bias: bool = True,
        kdim: Optional[int] = None,
        vdim: Optional[int] = None,
        batch_first: bool = False,
        device: Any = None,
        dtype: Any = None,
    ) -> None:
        super().__init__()
        if embed_dim <= 0 or num_heads <= 0:
            raise ValueError("embed_dim and num_heads must be positive")
        if embed_dim % num_heads != 0:
            raise ValueError("embed_dim must be divisible by num_heads")
        self.embed_dim = int(embed_dim)
        self.kdim = self.embed_dim if kdim is None else int(kdim)
        self.vdim = self.embed_dim if vdim is None else int(vdim)
        self._qkv_same_embed_dim = self.kdim == self.embed_dim and self.vdim == self.embed_dim
        self.num_heads = int(num_heads)
        self.dropout = float(dropout)
        self.batch_first = batch_first
        self.head_dim = self.embed_dim // self.num_heads
        E = self.embed_dim

        if self._qkv_same_embed_dim:
            self.in_proj_weight = Parameter(shape=(3 * E, E), device=device, dtype=dtype)
            self.register_parameter("q_proj_weight", None)
            self.register_parameter("k_proj_weight", None)
            self.register_parameter("v_proj_weight", None)
        else:
            self.q_proj_weight = Parameter(shape=(E, E), device=device, dtype=dtype)
            self.k_proj_weight = Parameter(shape=(E, self.kdim), device=device, dtype=dtype)
            self.v_proj_weight = Parameter(shape=(E, self.vdim), device=device, dtype=dtype)
            self.register_parameter("in_proj_weight", None)
        if bias:
            self.in_proj_bias = Parameter(shape=(3 * E,), device=device, dtype=dtype)
        else:
            self.register_parameter("in_proj_bias", None)
        self.out_proj = Linear(E, E, bias=bias, device=device, dtype=dtype)
        self._reset_parameters()

    def _reset_parameters(self) -> None:
        if self._qkv_same_embed_dim:
            xavier_uniform_(self.in_proj_weight)
        else:
            xavier_uniform_(self.q_proj_weight)
            xavier_uniform_(self.k_proj_weight)
            xavier_uniform_(self.v_proj_weight)
        if self.in_proj_bias is not None:
            constant_(self.in_proj_bias, 0.0)
            constant_(self.out_proj.bias, 0.0)

    def _projections(self):
        E = self.embed_dim
        if self._qkv_same_embed_dim:
            w_q, w_k, w_v = self.in_proj_weight.chunk(3)
        else:
            w_q, w_k, w_v = self.q_proj_weight, self.k_proj_weight, self.v_proj_weight
        if self.in_proj_bias is None:
            return (w_q, None), (w_k, None), (w_v, None)
        b = self.in_proj_bias
        return (w_q, b.narrow(0, 0, E)), (w_k, b.narrow(0, E, E)), (w_v, b.narrow(0, 2 * E, E))

    def _mask_bias(
        self,
        attn_mask: Optional[Tensor],
        key_padding_mask: Optional[Tensor],
        is_causal: bool,
        N: int,
        L: int,
        S: int,
    ) -> Optional[np.ndarray]:
        """Additive (N * H, L, S)-broadcastable mask, or None."""
        H = self.num_heads
        bias = None
        if attn_mask is not None:
            a = _additive(attn_mask, masked_when=True)
            if a.ndim == 2:
                if a.shape != (L, S):
                    raise ShapeError("2-D attn_mask must be (L, S)", expected=(L, S), actual=a.shape)
                a = a[None]
            elif a.ndim == 3:
                if a.shape != (N * H, L, S):
                    raise ShapeError(
                        "3-D attn_mask must be (N * num_heads, L, S)", expected=(N * H, L, S), actual=a.shape
                    )
            else:
                raise ShapeError("attn_mask must be 2-D or 3-D", expected=(2, 3), actual=a.ndim)
            bias = a
        elif is_causal:
            bias = np.where(_causal(L, S), -np.inf, 0.0)[None]
        if key_padding_mask is not None:
            k = _additive(key_padding_mask, masked_when=True)
            if k.shape != (N, S):
                raise ShapeError("key_padding_mask must be (N, S)", expected=(N, S), actual=k.shape)
            k = np.repeat(k[:, None, None, :], H, axis=1).reshape(N * H, 1, S)
            bias = k if bias is None else bias + k
        return bias

    def forward(
        self,
        query: Tensor,
        key: Tensor,
        value: Tensor,
        key_padding_mask: Optional[Tensor] = None,
        need_weights: bool = True,
        attn_mask: Optional[Tensor] = None,
        average_attn_weights: bool = True,
        is_causal: bool = False,
    ) -> Tuple[Tensor, Optional[Tensor]]:
        """
        Returns
        -------
        attn_output : Tensor
            ``(L, N, E)`` (``(N, L, E)`` with `batch_first`, ``(L, E)``
            unbatched).
        attn_weights : Tensor or None
            ``(N, L, S)`` averaged over heads, or ``(N, H, L, S)``; None
            unless `need_weights`.
        """
        if query.ndim not in (2, 3):
            raise ShapeError("query must be 2-D (unbatched) or 3-D", expected=(2, 3), actual=query.ndim)
        if key.ndim != query.ndim or value.ndim != query.ndim:
            raise ShapeError(
                "query, key and value must have the same rank",
                expected=query.ndim,
                actual=(key.ndim, value.ndim),
            )
        unbatched = query.ndim == 2
        if unbatched:
            query, key, value = query.unsqueeze(1), key.unsqueeze(1), value.unsqueeze(1)
            if key_padding_mask is not None:
                key_padding_mask = key_padding_mask.unsqueeze(0)
        elif self.batch_first:
            query, key, value = query.transpose(0, 1), key.transpose(0, 1), value.transpose(0, 1)

        L, N, E = query.shape
        S = key.shape[0]
        if E != self.embed_dim:
            raise ShapeError("query embedding size mismatch", dim=-1, expected=self.embed_dim, actual=E)
        if key.shape[-1] != self.kdim or value.shape[-1] != self.vdim:
            raise ShapeError(
                "key/value feature size mismatch", expected=(self.kdim, self.vdim), actual=(key.shape[-1], value.shape[-1])
            )
        if key.shape[:2] != value.shape[:2] or key.shape[1] != N:
            raise ShapeError("key and value must share (S, N) with the query batch", expected=(S, N), actual=value.shape[:2])

        (w_q, b_q), (w_k, b_k), (w_v, b_v) = self._projections()
        H, hd = self.num_heads, self.head_dim
        q = linear(query, w_q, b_q).reshape(L, N * H, hd).transpose(0, 1)
        k = linear(key, w_k, b_k).reshape(S, N * H, hd).transpose(0, 1)
        v = linear(value, w_v, b_v).reshape(S, N * H, hd).transpose(0, 1)

        scores = q.matmul(k.transpose(1, 2)) * (1.0 / math.sqrt(hd))
        bias = self._mask_bias(attn_mask, key_padding_mask, is_causal, N, L, S)
        if bias is not None:
            scores = scores + Tensor._from_numpy(bias, device=scores.device, dtype=scores.dtype)
        weights = scores.softmax(-1)
        if self.dropout > 0.0 and self.training:
            weights = dropout(weights, self.dropout, True)

        out = weights.matmul(v).transpose(0, 1).reshape(L, N, E)
        out = self.out_proj(out)
        if unbatched:
            out = out.squeeze(1)
        elif self.batch_first:
            out = out.transpose(0, 1)

        if not need_weights:
            return out, None
        w = weights.reshape(N, H, L, S)
        if average_attn_weights:
            w = w.mean(1)
        if unbatched:
            w = w.squeeze(0)
        return out, w

    def extra_repr(self) -> str:
        return f"embed_dim={self.embed_dim}, num_heads={self.num_heads}, dropout={self.dropout}"
