from ._cells import GRUCell, LSTMCell, RNNCell, gru_step, lstm_step, rnn_step
from ._rnn import GRU, LSTM, RNN, RNNBase

__all__ = [
    "GRU",
    "GRUCell",
    "LSTM",
    "LSTMCell",
    "RNN",
    "RNNBase",
    "RNNCell",
    "gru_step",
    "lstm_step",
    "rnn_step",
]
