"""
Multi-layer recurrent networks: `RNN`, `LSTM`, `GRU`.

Input is time-major ``(L, N, input_size)`` or, with ``batch_first=True``,
``(N, L, input_size)``; unbatched input is ``(L, input_size)``. Initial
states have shape ``(num_layers * D, N, hidden_size)`` with ``D = 2`` for
bidirectional networks (``(num_layers * D, hidden_size)`` unbatched).

Layer ``k`` owns ``weight_ih_l{k}``, ``weight_hh_l{k}``, ``bias_ih_l{k}`` and
``bias_hh_l{k}``; the reverse direction adds a ``_reverse`` suffix. Outputs
of the two directions are concatenated on the feature dim, and with
`dropout` > 0 every layer output except the last is passed through dropout
in training mode.
"""

from __future__ import annotations

import logging
import math
import warnings
from typing import Any, List, Optional, Tuple, Union

from ...domain._errors import ShapeError
from .._module import Module
from .._parameter import Parameter
from ..layers._dropout import dropout
from ..tensor._factories import zeros
from ..tensor._join import cat, stack
from ..tensor._tensor import Tensor
from ..utils.weight_initializer import uniform_
from ._cells import gru_step, lstm_step, rnn_step

logger = logging.getLogger(__name__)

_GATES = {"RNN_TANH": 1, "RNN_RELU": 1, "LSTM": 4, "GRU": 3}

State = Union[Tensor, Tuple[Tensor, Tensor]]


class RNNBase(Module):
    """
    Shared parameter layout and sequence loop of the recurrent networks.

    Parameters
    ----------
    mode : {"RNN_TANH", "RNN_RELU", "LSTM", "GRU"}
    input_size : int
    hidden_size : int
    num_layers : int, optional
        Number of stacked layers.
    bias : bool, optional
    batch_first : bool, optional
        Whether input and output put the batch dim first.
    dropout : float, optional
        Dropout probability on the outputs of every layer but the last.
    bidirectional : bool, optional
    """

    def __init__(
        self,
        mode: str,
        input_size: int,
        hidden_size: int,
        num_layers: int = 1,
        bias: bool = True,
        batch_first: bool = False,
        dropout: float = 0.0,
        bidirectional: bool = False,
        device: Any = None,
        dtype: Any = None,
    ) -> None:
        super().__init__()
        if mode not in _GATES:
            raise ValueError(f"Unknown recurrent mode {mode!r}")
        if not 0.0 <= dropout <= 1.0:
            raise ValueError("dropout should be a number in range [0, 1] representing the probability of an element being zeroed")
        if hidden_size <= 0 or input_size <= 0:
            raise ValueError("input_size and hidden_size must be positive integers")
        if num_layers <= 0:
            raise ValueError("num_layers must be a positive integer")
        if dropout > 0 and num_layers == 1:
            warnings.warn(
                "dropout option adds dropout after all but last recurrent layer, so non-zero "
                f"dropout expects num_layers greater than 1, but got dropout={dropout} and num_layers={num_layers}",
                UserWarning,
                stacklevel=2,
            )
        self.mode = mode
        self.input_size = int(input_size)
        self.hidden_size = int(hidden_size)
        self.num_layers = int(num_layers)
        self.bias = bias
        self.batch_first = batch_first
        self.dropout = float(dropout)
        self.bidirectional = bidirectional
        num_directions = 2 if bidirectional else 1
        gh = _GATES[mode] * self.hidden_size

        for layer in range(self.num_layers):
            layer_input = self.input_size if layer == 0 else self.hidden_size * num_directions
            for direction in range(num_directions):
                suffix = f"_l{layer}" + ("_reverse" if direction == 1 else "")
                setattr(self, "weight_ih" + suffix, Parameter(shape=(gh, layer_input), device=device, dtype=dtype))
                setattr(self, "weight_hh" + suffix, Parameter(shape=(gh, self.hidden_size), device=device, dtype=dtype))
                if bias:
                    setattr(self, "bias_ih" + suffix, Parameter(shape=(gh,), device=device, dtype=dtype))
                    setattr(self, "bias_hh" + suffix, Parameter(shape=(gh,), device=device, dtype=dtype))
        self.reset_parameters()

    @property
    def num_directions(self) -> int:
        return 2 if self.bidirectional else 1

    def reset_parameters(self) -> None:
        stdv = 1.0 / math.sqrt(self.hidden_size)
        for p in self.parameters():
            uniform_(p, -stdv, stdv)

    def _weights(self, layer: int, direction: int):
        suffix = f"_l{layer}" + ("_reverse" if direction == 1 else "")
        return tuple(getattr(self, name + suffix, None) for name in ("weight_ih", "weight_hh", "bias_ih", "bias_hh"))

    def _check_input(self, input: Tensor) -> bool:
        if input.ndim not in (2, 3):
            raise ShapeError(
                f"{type(self).__name__} expects 2-D (unbatched) or 3-D input",
                expected=(2, 3),
                actual=input.ndim,
            )
        if input.shape[-1] != self.input_size:
            raise ShapeError(
                f"{type(self).__name__}: input.size(-1) must be equal to input_size",
                dim=-1,
                expected=self.input_size,
                actual=input.shape[-1],
            )
        return input.ndim == 2

    def _check_hidden(self, h: Tensor, batch: int, unbatched: bool, name: str) -> Tensor:
        if unbatched:
            h = h.unsqueeze(1)
        expected = (self.num_layers * self.num_directions, batch, self.hidden_size)
        if h.shape != expected:
            raise ShapeError(f"{type(self).__name__}: {name} has the wrong shape", expected=expected, actual=h.shape)
        return h

    def _step(self, x: Tensor, state: State, weights) -> State:
        w_ih, w_hh, b_ih, b_hh = weights
        if self.mode == "LSTM":
            return lstm_step(x, state, w_ih, w_hh, b_ih, b_hh)
        if self.mode == "GRU":
            return gru_step(x, state, w_ih, w_hh, b_ih, b_hh)
        nonlinearity = "tanh" if self.mode == "RNN_TANH" else "relu"
        return rnn_step(x, state, w_ih, w_hh, b_ih, b_hh, nonlinearity)

    def _run_direction(self, steps: List[Tensor], state: State, weights, reverse: bool):
        order = range(len(steps) - 1, -1, -1) if reverse else range(len(steps))
        outputs: List[Optional[Tensor]] = [None] * len(steps)
        for t in order:
            state = self._step(steps[t], state, weights)
            outputs[t] = state[0] if isinstance(state, tuple) else state
        return outputs, state

    def forward(self, input: Tensor, hx: Optional[State] = None):
        unbatched = self._check_input(input)
        x = input.unsqueeze(1) if unbatched else input
        if self.batch_first and not unbatched:
            x = x.transpose(0, 1)
        seq_len, batch = x.shape[0], x.shape[1]
        total = self.num_layers * self.num_directions
        is_lstm = self.mode == "LSTM"

        if hx is None:
            h0 = zeros(total, batch, self.hidden_size, dtype=x.dtype, device=x.device)
            c0 = h0 if is_lstm else None
        elif is_lstm:
            if not isinstance(hx, tuple) or len(hx) != 2:
                raise TypeError("LSTM expects hx to be a tuple (h_0, c_0)")
            h0 = self._check_hidden(hx[0], batch, unbatched, "h_0")
            c0 = self._check_hidden(hx[1], batch, unbatched, "c_0")
        else:
            h0 = self._check_hidden(hx, batch, unbatched, "hx")
            c0 = None

        layer_input = x
        h_n: List[Tensor] = []
        c_n: List[Tensor] = []
        for layer in range(self.num_layers):
            steps = list(layer_input.unbind(0))
            direction_outputs = []
            for direction in range(self.num_directions):
                idx = layer * self.num_directions + direction
                state: State = (h0[idx], c0[idx]) if is_lstm else h0[idx]
                outs, state = self._run_direction(steps, state, self._weights(layer, direction), direction == 1)
                direction_outputs.append(stack(outs, 0))
                if is_lstm:
                    h_n.append(state[0])
                    c_n.append(state[1])
                else:
                    h_n.append(state)
            layer_output = direction_outputs[0] if len(direction_outputs) == 1 else cat(direction_outputs, -1)
            if self.dropout > 0 and self.training and layer < self.num_layers - 1:
                layer_output = dropout(layer_output, self.dropout, True)
            layer_input = layer_output

        output = layer_input
        if self.batch_first and not unbatched:
            output = output.transpose(0, 1)
        h_out = stack(h_n, 0)
        c_out = stack(c_n, 0) if is_lstm else None
        if unbatched:
            output = output.squeeze(1)
            h_out = h_out.squeeze(1)
            c_out = c_out.squeeze(1) if c_out is not None else None
        logger.debug("%s: seq_len=%d batch=%d", type(self).__name__, seq_len, batch)
        if is_lstm:
            return output, (h_out, c_out)
        return output, h_out

    def extra_repr(self) -> str:
        s = f"{self.input_size}, {self.hidden_size}"
        if self.num_layers != 1:
            s += f", num_layers={self.num_layers}"
        if not self.bias:
            s += ", bias=False"
        if self.batch_first:
            s += ", batch_first=True"
        if self.dropout:
            s += f", dropout={self.dropout}"
        if self.bidirectional:
            s += ", bidirectional=True"
        return s


class RNN(RNNBase):
    """
    Multi-layer Elman RNN.

    ``h_t = act(x_t W_ih^T + b_ih + h_{t-1} W_hh^T + b_hh)`` with ``act``
    tanh (default) or ReLU.

    Returns
    -------
    output : Tensor
        Last-layer hidden state for every step, ``(L, N, D * H)``.
    h_n : Tensor
        Final hidden state of every layer and direction.
    """

    def __init__(
        self,
        input_size: int,
        hidden_size: int,
        num_layers: int = 1,
        nonlinearity: str = "tanh",
        bias: bool = True,
        batch_first: bool = False,
        dropout: float = 0.0,
        bidirectional: bool = False,
        device: Any = None,
        dtype: Any = None,
    ) -> None:
        if nonlinearity == "tanh":
            mode = "RNN_TANH"
        elif nonlinearity == "relu":
            mode = "RNN_RELU"
        else:
            raise ValueError(f"Unknown nonlinearity {nonlinearity!r}, expected 'tanh' or 'relu'")
        super().__init__(
            mode, input_size, hidden_size, num_layers, bias, batch_first, dropout, bidirectional, device, dtype
        )
        self.nonlinearity = nonlinearity


class LSTM(RNNBase):
    """
    Multi-layer LSTM. `forward` takes an optional ``(h_0, c_0)`` pair and
    returns ``output, (h_n, c_n)``.
    """

    def __init__(self, input_size: int, hidden_size: int, *args: Any, **kwargs: Any) -> None:
        super().__init__("LSTM", input_size, hidden_size, *args, **kwargs)


class GRU(RNNBase):
    def __init__(self, input_size: int, hidden_size: int, *args: Any, **kwargs: Any) -> None:
        super().__init__("GRU", input_size, hidden_size, *args, **kwargs)
