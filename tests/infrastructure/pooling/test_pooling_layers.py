import unittest

import numpy as np

import tensorbridge as tb
from tensorbridge import ShapeError, nn
from tensorbridge.nn import functional as F


class TestAvgPool(unittest.TestCase):
    def test_backward_of_ones_times_window_recovers_ones(self):
        x = tb.ones(2, 3, 4, 4, requires_grad=True)
        out = nn.AvgPool2d(2)(x)
        self.assertEqual(out.shape, (2, 3, 2, 2))
        out.backward(tb.full(out.shape, 4.0))
        np.testing.assert_allclose(x.grad.to_numpy(), np.ones((2, 3, 4, 4), dtype=np.float32))

    def test_explicit_backward(self):
        x = tb.ones(2, 3, 4, 4)
        grad_in = F.avg_pool2d_backward(tb.full((2, 3, 2, 2), 4.0), x, 2)
        self.assertEqual(grad_in.shape, (2, 3, 4, 4))
        np.testing.assert_allclose(grad_in.to_numpy(), np.ones((2, 3, 4, 4)))
        g1 = F.avg_pool1d_backward(tb.ones(1, 1, 2), tb.ones(1, 1, 4), 2, divisor_override=1)
        np.testing.assert_allclose(g1.to_numpy(), np.ones((1, 1, 4)))
        with self.assertRaises(ShapeError):
            F.avg_pool2d_backward(tb.ones(2, 3, 3, 3), x, 2)

    def test_forward_values(self):
        x = tb.from_array(np.arange(16, dtype=np.float32).reshape(1, 1, 4, 4))
        np.testing.assert_allclose(F.avg_pool2d(x, 2).to_numpy()[0, 0], [[2.5, 4.5], [10.5, 12.5]])

    def test_count_include_pad(self):
        x = tb.ones(1, 1, 2, 2)
        with_pad = nn.AvgPool2d(2, stride=2, padding=1)(x).to_numpy()
        without = nn.AvgPool2d(2, stride=2, padding=1, count_include_pad=False)(x).to_numpy()
        np.testing.assert_allclose(with_pad, np.full((1, 1, 2, 2), 0.25))
        np.testing.assert_allclose(without, np.ones((1, 1, 2, 2)))

    def test_divisor_override_zero_rejected(self):
        with self.assertRaises(ValueError):
            nn.AvgPool2d(2, divisor_override=0)


class TestMaxPool(unittest.TestCase):
    def test_values_and_gradient_route_to_argmax(self):
        arr = np.array([[1.0, 3.0], [2.0, 0.0]], dtype=np.float32).reshape(1, 1, 2, 2)
        x = tb.tensor(arr, requires_grad=True)
        out = nn.MaxPool2d(2)(x)
        np.testing.assert_allclose(out.to_numpy().ravel(), [3.0])
        out.sum().backward()
        np.testing.assert_allclose(x.grad.to_numpy()[0, 0], [[0.0, 1.0], [0.0, 0.0]])

    def test_return_indices_and_unpool(self):
        arr = np.arange(16, dtype=np.float32).reshape(1, 1, 4, 4)
        out, idx = nn.MaxPool2d(2, return_indices=True)(tb.from_array(arr))
        np.testing.assert_array_equal(idx.to_numpy()[0, 0], [[5, 7], [13, 15]])
        restored = nn.MaxUnpool2d(2)(out, idx).to_numpy()[0, 0]
        expected = np.zeros((4, 4), dtype=np.float32)
        expected[1, 1], expected[1, 3], expected[3, 1], expected[3, 3] = 5, 7, 13, 15
        np.testing.assert_allclose(restored, expected)

    def test_ceil_mode(self):
        x = tb.randn(1, 1, 5)
        self.assertEqual(nn.MaxPool1d(2)(x).shape, (1, 1, 2))
        self.assertEqual(nn.MaxPool1d(2, ceil_mode=True)(x).shape, (1, 1, 3))

    def test_wrong_rank(self):
        with self.assertRaises(ShapeError):
            nn.MaxPool2d(2)(tb.randn(4, 4))


class TestAdaptivePool(unittest.TestCase):
    def test_global_average(self):
        x = np.random.randn(2, 3, 5, 7).astype(np.float32)
        out = nn.AdaptiveAvgPool2d(1)(tb.from_array(x)).to_numpy()
        np.testing.assert_allclose(out[..., 0, 0], x.mean(axis=(2, 3)), rtol=1e-5, atol=1e-6)

    def test_adaptive_max_output_size(self):
        self.assertEqual(nn.AdaptiveMaxPool2d((2, 3))(tb.randn(1, 2, 7, 9)).shape, (1, 2, 2, 3))


if __name__ == "__main__":
    unittest.main()
