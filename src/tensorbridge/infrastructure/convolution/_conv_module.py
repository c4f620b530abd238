"""
Trainable convolution layers: `Conv1d`, `Conv2d`, `Conv3d`.

The layers own the kernel (`weight`, shape ``(out, in / groups, *kernel)``)
and optional `bias`, and delegate the computation to `conv_nd`.

Parameters are initialized like the classic default for convolution layers:
Kaiming-uniform weights with ``a = sqrt(5)`` and a uniform bias in
``[-1/sqrt(fan_in), 1/sqrt(fan_in)]``.

Example
-------
>>> conv = Conv1d(3, 8, kernel_size=3)
>>> conv(tb.zeros(16, 3, 28)).shape
(16, 8, 26)
"""

from __future__ import annotations

import math
from typing import Any, Optional, Tuple, Union

from .._module import Module
from .._parameter import Parameter
from ..ops._common import ntuple
from ..tensor._tensor import Tensor
from ..utils.weight_initializer import calculate_fan_in_and_fan_out, kaiming_uniform_, uniform_
from ._conv_function import PADDING_MODES, conv_nd


class _ConvNd(Module):
    """
    Shared constructor and parameter handling for the N-d convolutions.

    Parameters
    ----------
    in_channels, out_channels : int
        Channel counts; both must be divisible by `groups`.
    kernel_size : int or tuple[int, ...]
    stride : int or tuple[int, ...], optional
    padding : int, tuple[int, ...], "same" or "valid", optional
    dilation : int or tuple[int, ...], optional
    groups : int, optional
    bias : bool, optional
    padding_mode : {"zeros", "reflect", "replicate", "circular"}, optional
    device, dtype : optional
        Placement and element type of the parameters.
    """

    _nd: int = 0
    _transposed: bool = False

    def __init__(
        self,
        in_channels: int,
        out_channels: int,
        kernel_size: Any,
        stride: Any = 1,
        padding: Any = 0,
        dilation: Any = 1,
        groups: int = 1,
        bias: bool = True,
        padding_mode: str = "zeros",
        device: Any = None,
        dtype: Any = None,
    ) -> None:
        super().__init__()
        nd = self._nd
        if groups <= 0:
            raise ValueError("groups must be a positive integer")
        if in_channels % groups != 0:
            raise ValueError("in_channels must be divisible by groups")
        if out_channels % groups != 0:
            raise ValueError("out_channels must be divisible by groups")
        if padding_mode not in PADDING_MODES:
            raise ValueError(f"padding_mode must be one of {PADDING_MODES}, got {padding_mode!r}")

        self.in_channels = int(in_channels)
        self.out_channels = int(out_channels)
        self.kernel_size = ntuple(kernel_size, nd, "kernel_size")
        self.stride = ntuple(stride, nd, "stride")
        self.dilation = ntuple(dilation, nd, "dilation")
        self.groups = int(groups)
        self.padding_mode = padding_mode
        if isinstance(padding, str):
            if padding not in ("same", "valid"):
                raise ValueError(f"Invalid padding string {padding!r}, should be one of 'valid', 'same'")
            if padding == "same" and any(s != 1 for s in self.stride):
                raise ValueError("padding='same' is not supported for strided convolutions")
            self.padding: Union[str, Tuple[int, ...]] = padding
        else:
            self.padding = ntuple(padding, nd, "padding")

        if self._transposed:
            shape = (self.in_channels, self.out_channels // self.groups) + self.kernel_size
        else:
            shape = (self.out_channels, self.in_channels // self.groups) + self.kernel_size
        self.weight = Parameter(shape=shape, device=device, dtype=dtype)
        if bias:
            self.bias: Optional[Parameter] = Parameter(shape=(self.out_channels,), device=device, dtype=dtype)
        else:
            self.register_parameter("bias", None)
        self.reset_parameters()

    def reset_parameters(self) -> None:
        kaiming_uniform_(self.weight, a=math.sqrt(5))
        if self.bias is not None:
            fan_in, _ = calculate_fan_in_and_fan_out(self.weight)
            bound = 1 / math.sqrt(fan_in) if fan_in > 0 else 0.0
            uniform_(self.bias, -bound, bound)

    def extra_repr(self) -> str:
        s = f"{self.in_channels}, {self.out_channels}, kernel_size={self.kernel_size}, stride={self.stride}"
        if self.padding != (0,) * self._nd:
            s += f", padding={self.padding}"
        if self.dilation != (1,) * self._nd:
            s += f", dilation={self.dilation}"
        if self.groups != 1:
            s += f", groups={self.groups}"
        if self.bias is None:
            s += ", bias=False"
        if self.padding_mode != "zeros":
            s += f", padding_mode={self.padding_mode}"
        return s


class _Conv(_ConvNd):
    def forward(self, x: Tensor) -> Tensor:
        return conv_nd(
            x,
            self.weight,
            self.bias,
            self._nd,
            self.stride,
            self.padding,
            self.dilation,
            self.groups,
            self.padding_mode,
        )


class Conv1d(_Conv):
    """
    1-D convolution over (N, C_in, L) or (C_in, L) input.
    """

    _nd = 1


class Conv2d(_Conv):
    """
    2-D convolution over (N, C_in, H, W) or (C_in, H, W) input.

    Output spatial sizes follow
    ``floor((H + 2p - d(k - 1) - 1) / s) + 1`` per dimension.
    """

    _nd = 2


class Conv3d(_Conv):
    _nd = 3
