"""
Padding layers and the functional `pad`.

`pad` follows the last-dim-first convention: ``pad=(left, right, top,
bottom, ...)`` pads the last dim by ``(left, right)``, the one before it by
``(top, bottom)`` and so on.

Modes
-----
- ``"constant"``: fill with `value`; any number of dims, negative amounts
  crop.
- ``"reflect"``: mirror without repeating the edge; amounts must be smaller
  than the padded dim.
- ``"replicate"``: repeat the edge element.
- ``"circular"``: wrap around; amounts may not exceed the padded dim.

The non-constant modes pad the trailing 1, 2 or 3 spatial dims of a batched
or unbatched channel-first input (rank 2 to 5).
"""

from __future__ import annotations

from typing import Any, Sequence, Tuple

from ...domain._dtype import ScalarType
from ...domain._errors import ShapeError
from .._function import Function
from .._module import Module
from ..native._engine import get_engine
from ..ops._common import ntuple
from ..tensor._tensor import Tensor

PAD_MODES = ("constant", "reflect", "replicate", "circular")
_LOW_PRECISION = (ScalarType.Float16, ScalarType.BFloat16)


class PadFn(Function):
    @staticmethod
    def forward(ctx, x: Tensor, *, pairs: Tuple[Tuple[int, int], ...], mode: str, value: float) -> Tensor:
        xa = x.to_numpy()
        if x.dtype in _LOW_PRECISION:
            xa = xa.astype("float32")
        y = get_engine().call("pad", xa, pairs, mode, value)
        ctx.saved_meta.update(in_shape=xa.shape, pairs=pairs, mode=mode)
        return Tensor._from_numpy(y, device=x.device, dtype=x.dtype)

    @staticmethod
    def backward(ctx, grad_out: Tensor):
        m = ctx.saved_meta
        g = grad_out.to_numpy()
        return get_engine().call("pad_backward", g, m["in_shape"], m["pairs"], m["mode"])


def _pairs_for(x: Tensor, pad: Sequence[int]) -> Tuple[Tuple[int, int], ...]:
    if len(pad) % 2 != 0:
        raise ValueError("Padding length must be divisible by 2")
    k = len(pad) // 2
    if k > x.ndim:
        raise ValueError(f"Padding length {len(pad)} is too large for a {x.ndim}-D input")
    pairs = [(0, 0)] * x.ndim
    for i in range(k):
        pairs[x.ndim - 1 - i] = (int(pad[2 * i]), int(pad[2 * i + 1]))
    return tuple(pairs)


def pad(input: Tensor, pad: Sequence[int], mode: str = "constant", value: Any = None) -> Tensor:
    """
    Pad a tensor.

    Parameters
    ----------
    input : Tensor
    pad : sequence of int
        Even number of amounts, last dim first.
    mode : {"constant", "reflect", "replicate", "circular"}, optional
    value : scalar, optional
        Fill value for constant padding (default 0).

    Raises
    ------
    ValueError
        For an unknown mode, an odd-length `pad`, `value` with a non-constant
        mode, negative amounts with a non-constant mode, or amounts too large
        for reflect/circular padding.
    ShapeError
        If a non-constant mode is used with an unsupported input rank.
    """
    if mode not in PAD_MODES:
        raise ValueError(f"Unrecognised padding mode {mode!r}, expected one of {PAD_MODES}")
    pairs = _pairs_for(input, pad)
    if mode == "constant":
        for i, (lo, hi) in enumerate(pairs):
            if input.shape[i] + lo + hi < 0:
                raise ShapeError("constant padding crops below zero size", dim=i, actual=input.shape[i] + lo + hi)
        return PadFn.apply(input, pairs=pairs, mode=mode, value=0.0 if value is None else float(value))

    if value is not None and value != 0:
        raise ValueError(f"Padding mode {mode!r} doesn't take in value argument")
    k = len(pad) // 2
    if not 1 <= k <= 3 or input.ndim not in (k + 1, k + 2):
        raise ShapeError(
            f"{mode} padding of the last {k} dims supports {k + 1}-D or {k + 2}-D input",
            expected=(k + 1, k + 2),
            actual=input.ndim,
        )
    for i, (lo, hi) in enumerate(pairs):
        n = input.shape[i]
        if lo < 0 or hi < 0:
            raise ValueError(f"negative padding is only supported in constant mode, got {tuple(pad)}")
        if mode == "reflect" and (lo >= n or hi >= n):
            raise ValueError(
                f"Padding size should be less than the corresponding input dimension, "
                f"but got padding ({lo}, {hi}) at dimension {i} of size {n}"
            )
        if mode == "circular" and (lo > n or hi > n):
            raise ValueError(f"circular padding ({lo}, {hi}) exceeds dimension {i} of size {n}")
        if mode == "replicate" and n == 0 and (lo or hi):
            raise ValueError(f"cannot replicate-pad the empty dimension {i}")
    return PadFn.apply(input, pairs=pairs, mode=mode, value=0.0)


class _PadNd(Module):
    _nd = 0
    _mode = "constant"

    def __init__(self, padding: Any) -> None:
        super().__init__()
        self.padding = ntuple(padding, 2 * self._nd, "padding")

    def forward(self, x: Tensor) -> Tensor:
        return pad(x, self.padding, self._mode)

    def extra_repr(self) -> str:
        return f"{self.padding}"


class _ConstantPadNd(_PadNd):
    def __init__(self, padding: Any, value: float) -> None:
        super().__init__(padding)
        self.value = value

    def forward(self, x: Tensor) -> Tensor:
        return pad(x, self.padding, "constant", self.value)

    def extra_repr(self) -> str:
        return f"padding={self.padding}, value={self.value}"


class ConstantPad1d(_ConstantPadNd):
    _nd = 1


class ConstantPad2d(_ConstantPadNd):
    _nd = 2


class ConstantPad3d(_ConstantPadNd):
    _nd = 3


class _ZeroPadNd(_ConstantPadNd):
    def __init__(self, padding: Any) -> None:
        super().__init__(padding, 0.0)

    def extra_repr(self) -> str:
        return f"{self.padding}"


class ZeroPad1d(_ZeroPadNd):
    _nd = 1


class ZeroPad2d(_ZeroPadNd):
    """
    Pad the last two dims with zeros; `padding` is an int or
    ``(left, right, top, bottom)``.
    """

    _nd = 2


class ZeroPad3d(_ZeroPadNd):
    _nd = 3


class ReflectionPad1d(_PadNd):
    _nd = 1
    _mode = "reflect"


class ReflectionPad2d(_PadNd):
    _nd = 2
    _mode = "reflect"


class ReflectionPad3d(_PadNd):
    _nd = 3
    _mode = "reflect"


class ReplicationPad1d(_PadNd):
    _nd = 1
    _mode = "replicate"


class ReplicationPad2d(_PadNd):
    _nd = 2
    _mode = "replicate"


class ReplicationPad3d(_PadNd):
    _nd = 3
    _mode = "replicate"


class CircularPad1d(_PadNd):
    _nd = 1
    _mode = "circular"


class CircularPad2d(_PadNd):
    _nd = 2
    _mode = "circular"


class CircularPad3d(_PadNd):
    _nd = 3
    _mode = "circular"
