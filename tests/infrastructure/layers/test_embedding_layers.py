import unittest

import numpy as np

import tensorbridge as tb
from tensorbridge import DTypeNotSupportedError, ScalarType, ShapeError, nn
from tensorbridge.nn import functional as F


class TestEmbedding(unittest.TestCase):
    def test_lookup_shape_and_rows(self):
        emb = nn.Embedding(10, 4)
        idx = tb.tensor([[1, 2], [3, 1]])
        out = emb(idx)
        self.assertEqual(out.shape, (2, 2, 4))
        np.testing.assert_array_equal(out.to_numpy()[0, 0], emb.weight.to_numpy()[1])

    def test_gradient_accumulates_repeated_rows(self):
        emb = nn.Embedding(5, 3)
        emb(tb.tensor([1, 1, 2])).sum().backward()
        g = emb.weight.grad.to_numpy()
        np.testing.assert_allclose(g[1], [2.0, 2.0, 2.0])
        np.testing.assert_allclose(g[2], [1.0, 1.0, 1.0])
        np.testing.assert_allclose(g[0], [0.0, 0.0, 0.0])

    def test_padding_idx_row_is_zero_and_gets_no_gradient(self):
        emb = nn.Embedding(5, 3, padding_idx=0)
        np.testing.assert_array_equal(emb.weight.to_numpy()[0], np.zeros(3, dtype=np.float32))
        emb(tb.tensor([0, 2])).sum().backward()
        np.testing.assert_array_equal(emb.weight.grad.to_numpy()[0], np.zeros(3, dtype=np.float32))

    def test_out_of_range_and_float_indices(self):
        emb = nn.Embedding(3, 2)
        with self.assertRaises(ShapeError):
            emb(tb.tensor([3]))
        with self.assertRaises(DTypeNotSupportedError):
            emb(tb.tensor([1.0]))

    def test_max_norm_renormalizes_weight(self):
        emb = nn.Embedding(4, 3, max_norm=1.0)
        with tb.no_grad():
            emb.weight.fill_(10.0)
        emb(tb.tensor([2]))
        w = emb.weight.to_numpy()
        self.assertLessEqual(float(np.linalg.norm(w[2])), 1.0 + 1e-4)
        np.testing.assert_allclose(w[0], [10.0, 10.0, 10.0])

    def test_from_pretrained_freeze(self):
        weights = tb.from_array(np.arange(6, dtype=np.float32).reshape(3, 2))
        emb = nn.Embedding.from_pretrained(weights)
        self.assertFalse(emb.weight.requires_grad)
        np.testing.assert_array_equal(emb(tb.tensor([2])).to_numpy(), [[4.0, 5.0]])
        self.assertTrue(nn.Embedding.from_pretrained(weights, freeze=False).weight.requires_grad)


class TestEmbeddingBag(unittest.TestCase):
    def test_mean_with_offsets(self):
        weights = tb.from_array(np.arange(8, dtype=np.float32).reshape(4, 2))
        bag = nn.EmbeddingBag.from_pretrained(weights, mode="mean")
        out = bag(tb.tensor([0, 1, 2, 3]), tb.tensor([0, 3]))
        np.testing.assert_allclose(out.to_numpy(), [[2.0, 3.0], [6.0, 7.0]])

    def test_sum_of_2d_input(self):
        weights = tb.from_array(np.ones((3, 2), dtype=np.float32))
        out = F.embedding_bag(tb.tensor([[0, 1], [1, 2]]), weights, mode="sum")
        np.testing.assert_allclose(out.to_numpy(), [[2.0, 2.0], [2.0, 2.0]])

    def test_offsets_with_2d_input_rejected(self):
        weights = tb.ones(3, 2)
        with self.assertRaises(ValueError):
            F.embedding_bag(tb.tensor([[0, 1]]), weights, tb.tensor([0]))


class TestOneHot(unittest.TestCase):
    def test_encoding(self):
        out = F.one_hot(tb.tensor([0, 2, 1]), 3)
        self.assertIs(out.dtype, ScalarType.Int64)
        np.testing.assert_array_equal(out.to_numpy(), np.eye(3, dtype=np.int64)[[0, 2, 1]])

    def test_inferred_classes_and_range_check(self):
        self.assertEqual(F.one_hot(tb.tensor([4])).shape, (1, 5))
        with self.assertRaises(ValueError):
            F.one_hot(tb.tensor([3]), 2)


if __name__ == "__main__":
    unittest.main()
