import unittest

import numpy as np

import tensorbridge as tb
from tensorbridge import ShapeError, nn
from tensorbridge.nn import functional as F


class TestLinear(unittest.TestCase):
    def test_forward_equals_affine_map(self):
        tb.manual_seed(0)
        lin = nn.Linear(4, 3)
        x = np.random.randn(5, 4).astype(np.float32)
        out = lin(tb.from_array(x)).to_numpy()
        expected = x @ lin.weight.to_numpy().T + lin.bias.to_numpy()
        np.testing.assert_allclose(out, expected, rtol=1e-5, atol=1e-6)

    def test_parameter_shapes_and_init_bounds(self):
        lin = nn.Linear(16, 8)
        self.assertEqual(lin.weight.shape, (8, 16))
        self.assertEqual(lin.bias.shape, (8,))
        bound = 1.0 / np.sqrt(16)
        self.assertTrue(np.all(np.abs(lin.weight.to_numpy()) <= bound + 1e-6))
        self.assertTrue(np.all(np.abs(lin.bias.to_numpy()) <= bound + 1e-6))

    def test_backward(self):
        lin = nn.Linear(3, 2)
        x = np.random.randn(4, 3).astype(np.float32)
        lin(tb.from_array(x)).sum().backward()
        np.testing.assert_allclose(lin.weight.grad.to_numpy(), np.tile(x.sum(0), (2, 1)), rtol=1e-5)
        np.testing.assert_allclose(lin.bias.grad.to_numpy(), [4.0, 4.0])

    def test_batched_leading_dims(self):
        lin = nn.Linear(3, 2)
        self.assertEqual(lin(tb.randn(2, 5, 3)).shape, (2, 5, 2))

    def test_feature_mismatch_raises(self):
        with self.assertRaises(ShapeError):
            nn.Linear(3, 2)(tb.randn(4, 5))

    def test_no_bias(self):
        lin = nn.Linear(2, 2, bias=False)
        x = np.eye(2, dtype=np.float32)
        np.testing.assert_allclose(lin(tb.from_array(x)).to_numpy(), lin.weight.to_numpy().T, rtol=1e-6)

    def test_bilinear(self):
        bl = nn.Bilinear(2, 3, 4)
        x1 = np.random.randn(5, 2).astype(np.float32)
        x2 = np.random.randn(5, 3).astype(np.float32)
        out = bl(tb.from_array(x1), tb.from_array(x2)).to_numpy()
        expected = np.einsum("bi,oij,bj->bo", x1, bl.weight.to_numpy(), x2) + bl.bias.to_numpy()
        np.testing.assert_allclose(out, expected, rtol=1e-4, atol=1e-5)

    def test_identity_and_flatten(self):
        x = tb.randn(2, 3, 4)
        self.assertIs(nn.Identity(7, foo=1)(x), x)
        self.assertEqual(nn.Flatten()(x).shape, (2, 12))
        self.assertEqual(nn.Unflatten(1, (2, 6))(nn.Flatten()(x)).shape, (2, 2, 6))

    def test_functional_linear(self):
        w = tb.ones(2, 3)
        out = F.linear(tb.ones(1, 3), w, tb.tensor([1.0, -1.0]))
        np.testing.assert_allclose(out.to_numpy(), [[4.0, 2.0]])


if __name__ == "__main__":
    unittest.main()
