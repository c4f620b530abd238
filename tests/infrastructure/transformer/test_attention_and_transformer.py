import unittest

import numpy as np

import tensorbridge as tb
from tensorbridge import ShapeError, nn
from tensorbridge.nn import functional as F


def _softmax(x):
    e = np.exp(x - x.max(axis=-1, keepdims=True))
    return e / e.sum(axis=-1, keepdims=True)


class TestScaledDotProductAttention(unittest.TestCase):
    def setUp(self):
        np.random.seed(0)
        self.q = np.random.randn(2, 3, 4).astype(np.float32)
        self.k = np.random.randn(2, 5, 4).astype(np.float32)
        self.v = np.random.randn(2, 5, 6).astype(np.float32)

    def test_matches_reference(self):
        out = F.scaled_dot_product_attention(tb.from_array(self.q), tb.from_array(self.k), tb.from_array(self.v))
        weights = _softmax(self.q @ self.k.transpose(0, 2, 1) / 2.0)
        np.testing.assert_allclose(out.to_numpy(), weights @ self.v, rtol=1e-5, atol=1e-5)

    def test_causal_first_row_sees_only_first_key(self):
        q = tb.from_array(self.q)
        k = tb.from_array(self.k[:, :3])
        v = tb.from_array(self.v[:, :3])
        out = F.scaled_dot_product_attention(q, k, v, is_causal=True).to_numpy()
        np.testing.assert_allclose(out[:, 0], self.v[:, 0], rtol=1e-5, atol=1e-6)

    def test_boolean_mask_keeps_true_positions(self):
        mask = np.zeros((3, 5), dtype=bool)
        mask[:, 2] = True
        out = F.scaled_dot_product_attention(
            tb.from_array(self.q), tb.from_array(self.k), tb.from_array(self.v), attn_mask=tb.from_array(mask)
        ).to_numpy()
        for row in range(3):
            np.testing.assert_allclose(out[:, row], self.v[:, 2], rtol=1e-5, atol=1e-6)

    def test_argument_errors(self):
        q, k, v = tb.from_array(self.q), tb.from_array(self.k), tb.from_array(self.v)
        with self.assertRaises(ValueError):
            F.scaled_dot_product_attention(q, k, v, attn_mask=tb.zeros(3, 5), is_causal=True)
        with self.assertRaises(ShapeError):
            F.scaled_dot_product_attention(q, tb.randn(2, 5, 3), v)
        with self.assertRaises(ShapeError):
            F.scaled_dot_product_attention(q, k, tb.randn(2, 4, 6))

    def test_gradients_reach_all_inputs(self):
        q = tb.from_array(self.q, requires_grad=True)
        k = tb.from_array(self.k, requires_grad=True)
        v = tb.from_array(self.v, requires_grad=True)
        F.scaled_dot_product_attention(q, k, v).sum().backward()
        for t in (q, k, v):
            self.assertEqual(t.grad.shape, t.shape)
        # the output sums the softmax-weighted rows of v, so each row's weight total is 1
        np.testing.assert_allclose(v.grad.to_numpy().sum(axis=1), np.full((2, 6), 3.0), rtol=1e-5)


class TestMultiheadAttention(unittest.TestCase):
    def setUp(self):
        tb.manual_seed(0)

    def test_matches_reference(self):
        mha = nn.MultiheadAttention(4, 2)
        x = np.random.randn(3, 1, 4).astype(np.float32)
        out, w = mha(tb.from_array(x), tb.from_array(x), tb.from_array(x))

        W = mha.in_proj_weight.to_numpy()
        b = mha.in_proj_bias.to_numpy()
        q = x[:, 0] @ W[:4].T + b[:4]
        k = x[:, 0] @ W[4:8].T + b[4:8]
        v = x[:, 0] @ W[8:].T + b[8:]
        heads, weights = [], []
        for h in range(2):
            s = slice(2 * h, 2 * h + 2)
            a = _softmax(q[:, s] @ k[:, s].T / np.sqrt(2.0))
            weights.append(a)
            heads.append(a @ v[:, s])
        ref = np.concatenate(heads, axis=-1) @ mha.out_proj.weight.to_numpy().T + mha.out_proj.bias.to_numpy()

        np.testing.assert_allclose(out.to_numpy()[:, 0], ref, rtol=1e-4, atol=1e-5)
        np.testing.assert_allclose(w.to_numpy()[0], np.mean(weights, axis=0), rtol=1e-4, atol=1e-6)

    def test_shapes(self):
        mha = nn.MultiheadAttention(8, 2, batch_first=True)
        q = tb.randn(2, 3, 8)
        kv = tb.randn(2, 5, 8)
        out, w = mha(q, kv, kv)
        self.assertEqual(out.shape, (2, 3, 8))
        self.assertEqual(w.shape, (2, 3, 5))
        _, w = mha(q, kv, kv, average_attn_weights=False)
        self.assertEqual(w.shape, (2, 2, 3, 5))
        _, w = mha(q, kv, kv, need_weights=False)
        self.assertIsNone(w)
        out, w = mha(tb.randn(3, 8), tb.randn(5, 8), tb.randn(5, 8))
        self.assertEqual(out.shape, (3, 8))
        self.assertEqual(w.shape, (3, 5))

    def test_key_padding_mask_true_means_ignored(self):
        mha = nn.MultiheadAttention(4, 1)
        x = tb.randn(4, 2, 4)
        pad = np.zeros((2, 4), dtype=bool)
        pad[:, 3] = True
        _, w = mha(x, x, x, key_padding_mask=tb.from_array(pad))
        w = w.to_numpy()
        np.testing.assert_array_equal(w[..., 3], np.zeros((2, 4)))
        np.testing.assert_allclose(w.sum(-1), np.ones((2, 4)), rtol=1e-5)

    def test_separate_key_value_sizes(self):
        mha = nn.MultiheadAttention(4, 2, kdim=3, vdim=5)
        self.assertIsNone(mha.in_proj_weight)
        self.assertEqual(mha.k_proj_weight.shape, (4, 3))
        out, _ = mha(tb.randn(2, 1, 4), tb.randn(6, 1, 3), tb.randn(6, 1, 5))
        self.assertEqual(out.shape, (2, 1, 4))

    def test_validation(self):
        with self.assertRaises(ValueError):
            nn.MultiheadAttention(5, 2)
        mha = nn.MultiheadAttention(4, 2)
        with self.assertRaises(ShapeError):
            mha(tb.randn(2, 1, 3), tb.randn(2, 1, 3), tb.randn(2, 1, 3))
        with self.assertRaises(ShapeError):
            mha(tb.randn(2, 1, 4), tb.randn(2, 1, 4), tb.randn(2, 1, 4), attn_mask=tb.zeros(3, 3))
        with self.assertRaises(TypeError):
            mha(tb.randn(2, 1, 4), tb.randn(2, 1, 4), tb.randn(2, 1, 4), attn_mask=tb.zeros(2, 2, dtype=tb.ScalarType.Int32))


class TestTransformer(unittest.TestCase):
    def setUp(self):
        tb.manual_seed(0)

    def test_square_subsequent_mask(self):
        m = nn.Transformer.generate_square_subsequent_mask(3).to_numpy()
        expected = np.array([[0, -np.inf, -np.inf], [0, 0, -np.inf], [0, 0, 0]], dtype=np.float32)
        np.testing.assert_array_equal(m, expected)

    def test_encoder_layers_are_independent_copies(self):
        layer = nn.TransformerEncoderLayer(8, 2, dim_feedforward=16, dropout=0.0)
        enc = nn.TransformerEncoder(layer, 2)
        self.assertIsNot(enc.layers[0].linear1.weight, enc.layers[1].linear1.weight)
        self.assertEqual(enc(tb.randn(5, 2, 8)).shape, (5, 2, 8))
        with self.assertRaises(ValueError):
            nn.TransformerEncoder(layer, 0)

    def test_layer_options(self):
        layer = nn.TransformerEncoderLayer(8, 2, dim_feedforward=16, activation="gelu", norm_first=True, batch_first=True)
        self.assertEqual(layer(tb.randn(2, 5, 8)).shape, (2, 5, 8))
        with self.assertRaises(ValueError):
            nn.TransformerEncoderLayer(8, 2, activation="swish")

    def test_full_model_shapes_and_errors(self):
        model = nn.Transformer(d_model=8, nhead=2, num_encoder_layers=1, num_decoder_layers=1, dim_feedforward=16)
        out = model(tb.randn(5, 2, 8), tb.randn(3, 2, 8))
        self.assertEqual(out.shape, (3, 2, 8))
        with self.assertRaises(ShapeError):
            model(tb.randn(5, 2, 8), tb.randn(3, 3, 8))
        with self.assertRaises(ShapeError):
            model(tb.randn(5, 2, 8), tb.randn(3, 2, 4))

    def test_causal_decoder_ignores_future_targets(self):
        model = nn.Transformer(
            d_model=8, nhead=2, num_encoder_layers=1, num_decoder_layers=1, dim_feedforward=16, dropout=0.0
        ).eval()
        src = tb.randn(4, 1, 8)
        tgt = np.random.randn(3, 1, 8).astype(np.float32)
        mask = nn.Transformer.generate_square_subsequent_mask(3)
        first = model(src, tb.from_array(tgt), tgt_mask=mask).to_numpy()
        tgt[2] += 10.0
        second = model(src, tb.from_array(tgt), tgt_mask=mask).to_numpy()
        np.testing.assert_allclose(first[:2], second[:2], rtol=1e-5, atol=1e-5)
        self.assertFalse(np.allclose(first[2], second[2]))


if __name__ == "__main__":
    unittest.main()
