"""
Trainable transposed convolution layers.

Weights have shape ``(in, out / groups, *kernel)``. `forward` accepts an
optional `output_size` that selects `output_padding` so the result has the
requested spatial size.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple

from ....domain._errors import ShapeError
from ...ops._common import ntuple, transposed_output_size
from ...tensor._tensor import Tensor
from .._conv_module import _ConvNd
from ._conv_transpose_function import conv_transpose_nd


class _ConvTransposeNd(_ConvNd):
    _transposed = True

    def __init__(
        self,
        in_channels: int,
        out_channels: int,
        kernel_size: Any,
        stride: Any = 1,
        padding: Any = 0,
        output_padding: Any = 0,
        groups: int = 1,
        bias: bool = True,
        dilation: Any = 1,
        padding_mode: str = "zeros",
        device: Any = None,
        dtype: Any = None,
    ) -> None:
        if padding_mode != "zeros":
            raise ValueError(f'Only "zeros" padding mode is supported for {type(self).__name__}')
        if isinstance(padding, str):
            raise ValueError(f"{type(self).__name__} does not support string padding")
        super().__init__(
            in_channels,
            out_channels,
            kernel_size,
            stride,
            padding,
            dilation,
            groups,
            bias,
            padding_mode,
            device,
            dtype,
        )
        self.output_padding = ntuple(output_padding, self._nd, "output_padding")

    def _output_padding(self, x: Tensor, output_size: Optional[Sequence[int]]) -> Tuple[int, ...]:
        if output_size is None:
            return self.output_padding
        nd = self._nd
        size = tuple(output_size)[-nd:]
        if len(size) != nd:
            raise ValueError(f"output_size must have {nd} or {nd + 2} elements, got {len(output_size)}")
        pads = []
        for i, (want, n) in enumerate(zip(size, x.shape[-nd:])):
            k, s, p, d = self.kernel_size[i], self.stride[i], self.padding[i], self.dilation[i]
            low = transposed_output_size(n, k, s, p, d, 0)
            if not low <= want < low + s:
                raise ShapeError(
                    "requested output size is not reachable",
                    dim=x.ndim - nd + i,
                    expected=f"[{low}, {low + s - 1}]",
                    actual=want,
                )
            pads.append(want - low)
        return tuple(pads)

    def forward(self, x: Tensor, output_size: Optional[Sequence[int]] = None) -> Tensor:
        return conv_transpose_nd(
            x,
            self.weight,
            self.bias,
            self._nd,
            self.stride,
            self.padding,
            self._output_padding(x, output_size),
            self.groups,
            self.dilation,
        )


class ConvTranspose1d(_ConvTransposeNd):
    _nd = 1


class ConvTranspose2d(_ConvTransposeNd):
    """
    2-D transposed convolution ("deconvolution") over (N, C_in, H, W) input.
    """

    _nd = 2


class ConvTranspose3d(_ConvTransposeNd):
    _nd = 3
