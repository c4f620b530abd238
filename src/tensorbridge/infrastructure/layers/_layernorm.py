"""
Layer and group normalization.

`LayerNorm` normalizes over the trailing `normalized_shape` dims of each
sample; `GroupNorm` splits the channels of (N, C, *) input into groups and
normalizes each group. Both use the biased variance and behave the same in
training and evaluation mode.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence, Union

from ...domain._errors import ShapeError
from .._module import Module
from .._parameter import Parameter
from ..tensor._tensor import Tensor
from ..utils.weight_initializer import ones_, zeros_


def layer_norm(
    input: Tensor,
    normalized_shape: Sequence[int],
    weight: Optional[Tensor] = None,
    bias: Optional[Tensor] = None,
    eps: float = 1e-5,
) -> Tensor:
    """
    Raises
    ------
    ShapeError
        If the trailing dims of `input` differ from `normalized_shape`.
    """
    ns = tuple(normalized_shape)
    k = len(ns)
    if k == 0 or input.ndim < k or input.shape[input.ndim - k :] != ns:
        raise ShapeError(
            "layer_norm: trailing input dims must equal normalized_shape",
            expected=ns,
            actual=input.shape,
        )
    axes = tuple(range(input.ndim - k, input.ndim))
    mean = input.mean(axes, keepdim=True)
    var = input.var(axes, unbiased=False, keepdim=True)
    y = (input - mean) / (var + eps).sqrt()
    if weight is not None:
        y = y * weight
    if bias is not None:
        y = y + bias
    return y


class LayerNorm(Module):
    """
    Layer normalization.

    Parameters
    ----------
    normalized_shape : int or tuple[int, ...]
        Trailing dims to normalize over.
    eps : float, optional
    elementwise_affine : bool, optional
        Learn `weight` (ones) and `bias` (zeros) of `normalized_shape`.
    bias : bool, optional
        Whether the affine transform has a shift.
    """

    def __init__(
        self,
        normalized_shape: Union[int, Sequence[int]],
        eps: float = 1e-5,
        elementwise_affine: bool = True,
        bias: bool = True,
        device: Any = None,
        dtype: Any = None,
    ) -> None:
        super().__init__()
        if isinstance(normalized_shape, int):
            normalized_shape = (normalized_shape,)
        self.normalized_shape = tuple(int(s) for s in normalized_shape)
        self.eps = float(eps)
        self.elementwise_affine = elementwise_affine
        if elementwise_affine:
            self.weight = Parameter(shape=self.normalized_shape, device=device, dtype=dtype)
            ones_(self.weight)
            if bias:
                self.bias = Parameter(shape=self.normalized_shape, device=device, dtype=dtype)
                zeros_(self.bias)
            else:
                self.register_parameter("bias", None)
        else:
            self.register_parameter("weight", None)
            self.register_parameter("bias", None)

    def forward(self, x: Tensor) -> Tensor:
        return layer_norm(x, self.normalized_shape, self.weight, self.bias, self.eps)

    def extra_repr(self) -> str:
        return f"{self.normalized_shape}, eps={self.eps}, elementwise_affine={self.elementwise_affine}"


def group_norm(
    input: Tensor,
    num_groups: int,
    weight: Optional[Tensor] = None,
    bias: Optional[Tensor] = None,
    eps: float = 1e-5,
) -> Tensor:
    if input.ndim < 2:
        raise ShapeError("group_norm expects at least 2-D input", expected=">= 2", actual=input.ndim)
    N, C = input.shape[:2]
    if C % num_groups != 0:
        raise ShapeError(
            "group_norm: channels must be divisible by num_groups", dim=1, expected=num_groups, actual=C
        )
    grouped = input.reshape(N, num_groups, -1)
    mean = grouped.mean(-1, keepdim=True)
    var = grouped.var(-1, unbiased=False, keepdim=True)
    y = ((grouped - mean) / (var + eps).sqrt()).reshape(input.shape)
    shape = (1, C) + (1,) * (input.ndim - 2)
    if weight is not None:
        y = y * weight.reshape(shape)
    if bias is not None:
        y = y + bias.reshape(shape)
    return y


class GroupNorm(Module):
    def __init__(
        self,
        num_groups: int,
        num_channels: int,
        eps: float = 1e-5,
        affine: bool = True,
        device: Any = None,
        dtype: Any = None,
    ) -> None:
        super().__init__()
        if num_groups <= 0 or num_channels % num_groups != 0:
            raise ValueError("num_channels must be divisible by num_groups")
        self.num_groups = int(num_groups)
        self.num_channels = int(num_channels)
        self.eps = float(eps)
        self.affine = affine
        if affine:
            self.weight = Parameter(shape=(num_channels,), device=device, dtype=dtype)
            self.bias = Parameter(shape=(num_channels,), device=device, dtype=dtype)
            ones_(self.weight)
            zeros_(self.bias)
        else:
            self.register_parameter("weight", None)
            self.register_parameter("bias", None)

    def forward(self, x: Tensor) -> Tensor:
        if x.ndim < 2 or x.shape[1] != self.num_channels:
            raise ShapeError(
                "GroupNorm: input channel count mismatch",
                dim=1,
                expected=self.num_channels,
                actual=x.shape[1] if x.ndim >= 2 else None,
            )
        return group_norm(x, self.num_groups, self.weight, self.bias, self.eps)

    def extra_repr(self) -> str:
        return f"{self.num_groups}, {self.num_channels}, eps={self.eps}, affine={self.affine}"
