"""
Single-timestep recurrent cells: `RNNCell`, `LSTMCell`, `GRUCell`.

Each cell owns ``weight_ih`` (G*H, input_size), ``weight_hh`` (G*H, H) and,
with `bias`, ``bias_ih`` / ``bias_hh`` (G*H,), where G is the number of gates
(1 for RNN, 4 for LSTM, 3 for GRU). All parameters are drawn from
``U(-1/sqrt(H), 1/sqrt(H))``.

Step equations
--------------
RNN:
    h' = act(x W_ih^T + b_ih + h W_hh^T + b_hh)
LSTM (gate order i, f, g, o):
    c' = f * c + i * g
    h' = o * tanh(c')
GRU (gate order r, z, n):
    n  = tanh(x W_in^T + b_in + r * (h W_hn^T + b_hn))
    h' = (1 - z) * n + z * h

Backpropagation through time falls out of the autograd graph: every step is
built from differentiable tensor ops.
"""

from __future__ import annotations

import math
from typing import Any, Optional, Tuple

from ...domain._errors import ShapeError
from .._module import Module
from .._parameter import Parameter
from ..fully_connected._linear import linear
from ..tensor._factories import zeros
from ..tensor._tensor import Tensor
from ..utils.weight_initializer import uniform_

_NONLINEARITIES = ("tanh", "relu")


def rnn_step(
    x: Tensor,
    h: Tensor,
    w_ih: Tensor,
    w_hh: Tensor,
    b_ih: Optional[Tensor],
    b_hh: Optional[Tensor],
    nonlinearity: str = "tanh",
) -> Tensor:
    pre = linear(x, w_ih, b_ih) + linear(h, w_hh, b_hh)
    return pre.tanh() if nonlinearity == "tanh" else pre.relu()


def lstm_step(
    x: Tensor,
    state: Tuple[Tensor, Tensor],
    w_ih: Tensor,
    w_hh: Tensor,
    b_ih: Optional[Tensor],
    b_hh: Optional[Tensor],
) -> Tuple[Tensor, Tensor]:
    h, c = state
    gates = linear(x, w_ih, b_ih) + linear(h, w_hh, b_hh)
    i, f, g, o = gates.chunk(4, dim=-1)
    c_next = f.sigmoid() * c + i.sigmoid() * g.tanh()
    h_next = o.sigmoid() * c_next.tanh()
    return h_next, c_next


def gru_step(
    x: Tensor,
    h: Tensor,
    w_ih: Tensor,
    w_hh: Tensor,
    b_ih: Optional[Tensor],
    b_hh: Optional[Tensor],
) -> Tensor:
    gi = linear(x, w_ih, b_ih)
    gh = linear(h, w_hh, b_hh)
    i_r, i_z, i_n = gi.chunk(3, dim=-1)
    h_r, h_z, h_n = gh.chunk(3, dim=-1)
    r = (i_r + h_r).sigmoid()
    z = (i_z + h_z).sigmoid()
    n = (i_n + r * h_n).tanh()
    return (1 - z) * n + z * h


class _CellBase(Module):
    _gates = 1

    def __init__(
        self,
        input_size: int,
        hidden_size: int,
        bias: bool = True,
        device: Any = None,
        dtype: Any = None,
    ) -> None:
        super().__init__()
        if input_size <= 0 or hidden_size <= 0:
            raise ValueError("input_size and hidden_size must be positive integers")
        self.input_size = int(input_size)
        self.hidden_size = int(hidden_size)
        self.bias = bias
        gh = self._gates * self.hidden_size
        self.weight_ih = Parameter(shape=(gh, self.input_size), device=device, dtype=dtype)
        self.weight_hh = Parameter(shape=(gh, self.hidden_size), device=device, dtype=dtype)
        if bias:
            self.bias_ih = Parameter(shape=(gh,), device=device, dtype=dtype)
            self.bias_hh = Parameter(shape=(gh,), device=device, dtype=dtype)
        else:
            self.register_parameter("bias_ih", None)
            self.register_parameter("bias_hh", None)
        self.reset_parameters()

    def reset_parameters(self) -> None:
        stdv = 1.0 / math.sqrt(self.hidden_size)
        for p in self.parameters():
            uniform_(p, -stdv, stdv)

    def _check_input(self, x: Tensor) -> bool:
        """Validate `x` and return whether it is unbatched."""
        if x.ndim not in (1, 2):
            raise ShapeError(
                f"{type(self).__name__} expects 1-D or 2-D input", expected=(1, 2), actual=x.ndim
            )
        if x.shape[-1] != self.input_size:
            raise ShapeError(
                f"{type(self).__name__}: input has inconsistent input_size",
                dim=-1,
                expected=self.input_size,
                actual=x.shape[-1],
            )
        return x.ndim == 1

    def _state(self, x: Tensor, h: Optional[Tensor], unbatched: bool, name: str = "hx") -> Tensor:
        if h is None:
            return zeros(x.shape[0], self.hidden_size, dtype=x.dtype, device=x.device)
        if unbatched:
            h = h.unsqueeze(0)
        expected = (x.shape[0], self.hidden_size)
        if h.shape != expected:
            raise ShapeError(f"{type(self).__name__}: {name} has the wrong shape", expected=expected, actual=h.shape)
        return h

    def extra_repr(self) -> str:
        s = f"{self.input_size}, {self.hidden_size}"
        if not self.bias:
            s += ", bias=False"
        return s


class RNNCell(_CellBase):
    """
    Elman RNN cell with tanh or ReLU nonlinearity.

    Parameters
    ----------
    input_size : int
    hidden_size : int
    bias : bool, optional
    nonlinearity : {"tanh", "relu"}, optional
    """

    def __init__(
        self,
        input_size: int,
        hidden_size: int,
        bias: bool = True,
        nonlinearity: str = "tanh",
        device: Any = None,
        dtype: Any = None,
    ) -> None:
        if nonlinearity not in _NONLINEARITIES:
            raise ValueError(f"Unknown nonlinearity {nonlinearity!r}, expected 'tanh' or 'relu'")
        super().__init__(input_size, hidden_size, bias, device, dtype)
        self.nonlinearity = nonlinearity

    def forward(self, input: Tensor, hx: Optional[Tensor] = None) -> Tensor:
        unbatched = self._check_input(input)
        x = input.unsqueeze(0) if unbatched else input
        h = self._state(x, hx, unbatched)
        out = rnn_step(x, h, self.weight_ih, self.weight_hh, self.bias_ih, self.bias_hh, self.nonlinearity)
        return out.squeeze(0) if unbatched else out


class LSTMCell(_CellBase):
    """
    LSTM cell; `forward` takes and returns the ``(h, c)`` pair.
    """

    _gates = 4

    def forward(
        self, input: Tensor, hx: Optional[Tuple[Tensor, Tensor]] = None
    ) -> Tuple[Tensor, Tensor]:
        unbatched = self._check_input(input)
        x = input.unsqueeze(0) if unbatched else input
        if hx is None:
            h = c = self._state(x, None, unbatched)
        else:
            h = self._state(x, hx[0], unbatched, "h")
            c = self._state(x, hx[1], unbatched, "c")
        h, c = lstm_step(x, (h, c), self.weight_ih, self.weight_hh, self.bias_ih, self.bias_hh)
        if unbatched:
            return h.squeeze(0), c.squeeze(0)
        return h, c


class GRUCell(_CellBase):
    _gates = 3

    def forward(self, input: Tensor, hx: Optional[Tensor] = None) -> Tensor:
        unbatched = self._check_input(input)
        x = input.unsqueeze(0) if unbatched else input
        h = self._state(x, hx, unbatched)
        out = gru_step(x, h, self.weight_ih, self.weight_hh, self.bias_ih, self.bias_hh)
        return out.squeeze(0) if unbatched else out
