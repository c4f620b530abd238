"""
Fully-connected layers.

`Linear` performs the affine projection

    y = x @ W^T + b

on inputs of shape ``(*, in_features)`` with ``W`` of shape
``(out_features, in_features)`` and ``b`` of shape ``(out_features,)``.
`Bilinear` computes ``y_k = x1^T A_k x2 + b_k``. Both are composed from
differentiable tensor ops, so autograd supplies the backward pass.

Parameters are initialized with Kaiming-uniform weights (``a = sqrt(5)``)
and a bias drawn from ``U(-1/sqrt(fan_in), 1/sqrt(fan_in))``.
"""

from __future__ import annotations

import math
from typing import Any, Optional

from ...domain._errors import ShapeError
from .._module import Module
from .._parameter import Parameter
from ..tensor._tensor import Tensor
from ..utils.weight_initializer import calculate_fan_in_and_fan_out, kaiming_uniform_, uniform_


def linear(input: Tensor, weight: Tensor, bias: Optional[Tensor] = None) -> Tensor:
    """
    Raises
    ------
    ShapeError
        If the last input dim does not match ``weight.shape[1]``.
    """
    if weight.ndim != 2:
        raise ShapeError("linear weight must be 2-D", expected=2, actual=weight.ndim)
    if input.ndim < 1 or input.shape[-1] != weight.shape[1]:
        raise ShapeError(
            "linear: input feature size does not match weight",
            dim=-1,
            expected=weight.shape[1],
            actual=input.shape[-1] if input.ndim else None,
        )
    out = input.matmul(weight.t())
    if bias is not None:
        out = out + bias
    return out


def bilinear(input1: Tensor, input2: Tensor, weight: Tensor, bias: Optional[Tensor] = None) -> Tensor:
    if weight.ndim != 3:
        raise ShapeError("bilinear weight must be 3-D", expected=3, actual=weight.ndim)
    out_f, in1, in2 = weight.shape
    if input1.shape[-1] != in1 or input2.shape[-1] != in2:
        raise ShapeError(
            "bilinear: input feature sizes do not match weight",
            expected=(in1, in2),
            actual=(input1.shape[-1], input2.shape[-1]),
        )
    if input1.shape[:-1] != input2.shape[:-1]:
        raise ShapeError(
            "bilinear: inputs must share their leading dims",
            expected=input1.shape[:-1],
            actual=input2.shape[:-1],
        )
    lead = input1.shape[:-1]
    w = weight.permute(1, 0, 2).reshape(in1, out_f * in2)
    tmp = input1.matmul(w).reshape(lead + (out_f, in2))
    out = (tmp * input2.unsqueeze(-2)).sum(-1)
    if bias is not None:
        out = out + bias
    return out


class Identity(Module):
    """Placeholder that returns its input; constructor arguments are ignored."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__()

    def forward(self, x: Tensor) -> Tensor:
        return x


class Linear(Module):
    """
    Affine projection ``y = x W^T + b``.

    Parameters
    ----------
    in_features : int
        Size of the last input dim.
    out_features : int
        Size of the last output dim.
    bias : bool, optional
        Whether to learn an additive bias. Defaults to True.
    device, dtype : optional
        Placement and element type of the parameters.
    """

    def __init__(
        self,
        in_features: int,
        out_features: int,
        bias: bool = True,
        device: Any = None,
        dtype: Any = None,
    ) -> None:
        super().__init__()
        if in_features < 0 or out_features < 0:
            raise ValueError("in_features and out_features must be non-negative")
        self.in_features = int(in_features)
        self.out_features = int(out_features)
        self.weight = Parameter(shape=(self.out_features, self.in_features), device=device, dtype=dtype)
        if bias:
            self.bias: Optional[Parameter] = Parameter(shape=(self.out_features,), device=device, dtype=dtype)
        else:
            self.register_parameter("bias", None)
        self.reset_parameters()

    def reset_parameters(self) -> None:
        kaiming_uniform_(self.weight, a=math.sqrt(5))
        if self.bias is not None:
            fan_in, _ = calculate_fan_in_and_fan_out(self.weight)
            bound = 1 / math.sqrt(fan_in) if fan_in > 0 else 0.0
            uniform_(self.bias, -bound, bound)

    def forward(self, x: Tensor) -> Tensor:
        return linear(x, self.weight, self.bias)

    def extra_repr(self) -> str:
        return f"in_features={self.in_features}, out_features={self.out_features}, bias={self.bias is not None}"


class Bilinear(Module):
    def __init__(
        self,
        in1_features: int,
        in2_features: int,
        out_features: int,
        bias: bool = True,
        device: Any = None,
        dtype: Any = None,
    ) -> None:
        super().__init__()
        self.in1_features = int(in1_features)
        self.in2_features = int(in2_features)
        self.out_features = int(out_features)
        self.weight = Parameter(
            shape=(self.out_features, self.in1_features, self.in2_features), device=device, dtype=dtype
        )
        if bias:
            self.bias: Optional[Parameter] = Parameter(shape=(self.out_features,), device=device, dtype=dtype)
        else:
            self.register_parameter("bias", None)
        self.reset_parameters()

    def reset_parameters(self) -> None:
        bound = 1 / math.sqrt(self.in1_features) if self.in1_features > 0 else 0.0
        uniform_(self.weight, -bound, bound)
        if self.bias is not None:
            uniform_(self.bias, -bound, bound)

    def forward(self, input1: Tensor, input2: Tensor) -> Tensor:
        return bilinear(input1, input2, self.weight, self.bias)

    def extra_repr(self) -> str:
        return (
            f"in1_features={self.in1_features}, in2_features={self.in2_features}, "
            f"out_features={self.out_features}, bias={self.bias is not None}"
        )
