import unittest

import numpy as np

import tensorbridge as tb
from tensorbridge import ShapeError, nn


def _sigmoid(x):
    return 1.0 / (1.0 + np.exp(-x))


class TestRNN(unittest.TestCase):
    def setUp(self):
        tb.manual_seed(0)

    def test_single_layer_matches_reference(self):
        rnn = nn.RNN(3, 4)
        x = np.random.randn(5, 2, 3).astype(np.float32)
        out, h_n = rnn(tb.from_array(x))
        self.assertEqual(out.shape, (5, 2, 4))
        self.assertEqual(h_n.shape, (1, 2, 4))

        w_ih = rnn.weight_ih_l0.to_numpy()
        w_hh = rnn.weight_hh_l0.to_numpy()
        b = rnn.bias_ih_l0.to_numpy() + rnn.bias_hh_l0.to_numpy()
        h = np.zeros((2, 4), dtype=np.float32)
        expected = []
        for t in range(5):
            h = np.tanh(x[t] @ w_ih.T + h @ w_hh.T + b)
            expected.append(h)
        np.testing.assert_allclose(out.to_numpy(), np.stack(expected), rtol=1e-5, atol=1e-5)
        np.testing.assert_allclose(h_n.to_numpy()[0], h, rtol=1e-5, atol=1e-5)

    def test_parameter_names(self):
        rnn = nn.RNN(3, 4, num_layers=2, bidirectional=True)
        names = [n for n, _ in rnn.named_parameters()]
        self.assertIn("weight_ih_l0", names)
        self.assertIn("bias_hh_l1_reverse", names)
        self.assertEqual(len(names), 16)
        self.assertEqual(rnn.weight_ih_l1.shape, (4, 8))

    def test_batch_first_bidirectional_shapes(self):
        rnn = nn.GRU(3, 5, num_layers=2, batch_first=True, bidirectional=True)
        out, h_n = rnn(tb.randn(2, 7, 3))
        self.assertEqual(out.shape, (2, 7, 10))
        self.assertEqual(h_n.shape, (4, 2, 5))

    def test_unbatched_input(self):
        out, h_n = nn.RNN(3, 4)(tb.randn(6, 3))
        self.assertEqual(out.shape, (6, 4))
        self.assertEqual(h_n.shape, (1, 4))

    def test_lstm_states(self):
        lstm = nn.LSTM(3, 4, num_layers=2)
        h0 = tb.zeros(2, 1, 4)
        out, (h_n, c_n) = lstm(tb.randn(5, 1, 3), (h0, h0))
        self.assertEqual(out.shape, (5, 1, 4))
        self.assertEqual(h_n.shape, (2, 1, 4))
        self.assertEqual(c_n.shape, (2, 1, 4))
        with self.assertRaises(TypeError):
            lstm(tb.randn(5, 1, 3), h0)

    def test_hidden_state_validation(self):
        rnn = nn.RNN(3, 4)
        with self.assertRaises(ShapeError):
            rnn(tb.randn(5, 2, 3), tb.zeros(1, 3, 4))
        with self.assertRaises(ShapeError):
            rnn(tb.randn(5, 2, 6))
        with self.assertRaises(ShapeError):
            rnn(tb.randn(3))

    def test_constructor_validation(self):
        with self.assertRaises(ValueError):
            nn.RNN(3, 4, nonlinearity="sigmoid")
        with self.assertRaises(ValueError):
            nn.LSTM(3, 4, num_layers=0)
        with self.assertRaises(ValueError):
            nn.GRU(3, 4, dropout=1.5)
        with self.assertWarns(UserWarning):
            nn.LSTM(3, 4, dropout=0.5)

    def test_backpropagates_through_time(self):
        lstm = nn.LSTM(2, 3)
        x = tb.randn(4, 1, 2, requires_grad=True)
        out, _ = lstm(x)
        out[-1].sum().backward()
        self.assertIsNotNone(x.grad)
        self.assertTrue(np.any(x.grad.to_numpy()[0] != 0))
        for p in lstm.parameters():
            self.assertIsNotNone(p.grad)


class TestCells(unittest.TestCase):
    def setUp(self):
        tb.manual_seed(1)

    def test_gru_cell_matches_reference(self):
        cell = nn.GRUCell(3, 2)
        x = np.random.randn(4, 3).astype(np.float32)
        h = np.random.randn(4, 2).astype(np.float32)
        out = cell(tb.from_array(x), tb.from_array(h)).to_numpy()

        gi = x @ cell.weight_ih.to_numpy().T + cell.bias_ih.to_numpy()
        gh = h @ cell.weight_hh.to_numpy().T + cell.bias_hh.to_numpy()
        r = _sigmoid(gi[:, 0:2] + gh[:, 0:2])
        z = _sigmoid(gi[:, 2:4] + gh[:, 2:4])
        n = np.tanh(gi[:, 4:6] + r * gh[:, 4:6])
        np.testing.assert_allclose(out, (1 - z) * n + z * h, rtol=1e-5, atol=1e-5)

    def test_lstm_cell_matches_reference(self):
        cell = nn.LSTMCell(3, 2, bias=False)
        x = np.random.randn(1, 3).astype(np.float32)
        h, c = cell(tb.from_array(x))
        gates = x @ cell.weight_ih.to_numpy().T
        i, f, g, o = np.split(gates, 4, axis=-1)
        c_ref = _sigmoid(i) * np.tanh(g)
        np.testing.assert_allclose(c.to_numpy(), c_ref, rtol=1e-5, atol=1e-5)
        np.testing.assert_allclose(h.to_numpy(), _sigmoid(o) * np.tanh(c_ref), rtol=1e-5, atol=1e-5)

    def test_unbatched_cell_and_bad_state(self):
        cell = nn.RNNCell(3, 2, nonlinearity="relu")
        self.assertEqual(cell(tb.randn(3)).shape, (2,))
        self.assertTrue(np.all(cell(tb.randn(5, 3)).to_numpy() >= 0))
        with self.assertRaises(ShapeError):
            cell(tb.randn(5, 3), tb.zeros(4, 2))


if __name__ == "__main__":
    unittest.main()
