import unittest

import numpy as np

import tensorbridge as tb
from tensorbridge import ShapeError, nn
from tensorbridge.nn import functional as F


class TestPad(unittest.TestCase):
    def test_constant_pad_last_dim_first(self):
        x = tb.ones(1, 2, 3)
        out = F.pad(x, (1, 2), value=5.0)
        self.assertEqual(out.shape, (1, 2, 6))
        np.testing.assert_array_equal(out.to_numpy()[0, 0], [5, 1, 1, 1, 5, 5])
        self.assertEqual(F.pad(x, (0, 0, 1, 1)).shape, (1, 4, 3))

    def test_negative_constant_pad_crops(self):
        x = tb.from_array(np.arange(5, dtype=np.float32))
        np.testing.assert_array_equal(F.pad(x, (-1, -2)).to_numpy(), [1.0, 2.0])
        with self.assertRaises(ShapeError):
            F.pad(x, (-3, -3))

    def test_reflect_replicate_circular_match_numpy(self):
        arr = np.arange(10, dtype=np.float32).reshape(1, 2, 5)
        x = tb.from_array(arr)
        np.testing.assert_array_equal(
            F.pad(x, (2, 1), mode="reflect").to_numpy(), np.pad(arr, ((0, 0), (0, 0), (2, 1)), mode="reflect")
        )
        np.testing.assert_array_equal(
            F.pad(x, (2, 1), mode="replicate").to_numpy(), np.pad(arr, ((0, 0), (0, 0), (2, 1)), mode="edge")
        )
        np.testing.assert_array_equal(
            F.pad(x, (2, 1), mode="circular").to_numpy(), np.pad(arr, ((0, 0), (0, 0), (2, 1)), mode="wrap")
        )

    def test_invalid_arguments(self):
        x = tb.ones(1, 1, 3)
        with self.assertRaises(ValueError):
            F.pad(x, (1,))
        with self.assertRaises(ValueError):
            F.pad(x, (1, 1), mode="mirror")
        with self.assertRaises(ValueError):
            F.pad(x, (3, 0), mode="reflect")
        with self.assertRaises(ValueError):
            F.pad(x, (1, 1), mode="reflect", value=2.0)
        with self.assertRaises(ShapeError):
            F.pad(tb.ones(3), (1, 1), mode="reflect")

    def test_backward_routes_reflected_gradient(self):
        x = tb.tensor(np.zeros((1, 1, 3), dtype=np.float32), requires_grad=True)
        F.pad(x, (1, 1), mode="reflect").sum().backward()
        # padded = [x1, x0, x1, x2, x1]
        np.testing.assert_allclose(x.grad.to_numpy()[0, 0], [1.0, 3.0, 1.0])

    def test_pad_modules(self):
        x = tb.ones(1, 1, 2, 2)
        self.assertEqual(nn.ZeroPad2d(1)(x).shape, (1, 1, 4, 4))
        self.assertEqual(nn.ReflectionPad2d((1, 0, 1, 0))(x).shape, (1, 1, 3, 3))
        self.assertEqual(nn.ConstantPad1d(2, 3.5)(tb.ones(1, 3)).shape, (1, 7))


class TestInterpolate(unittest.TestCase):
    def test_nearest_doubles(self):
        x = tb.from_array(np.array([[[1.0, 2.0]]], dtype=np.float32))
        out = F.interpolate(x, scale_factor=2, mode="nearest")
        np.testing.assert_array_equal(out.to_numpy(), [[[1.0, 1.0, 2.0, 2.0]]])

    def test_linear_align_corners(self):
        x = tb.from_array(np.array([[[0.0, 4.0]]], dtype=np.float32))
        out = F.interpolate(x, size=3, mode="linear", align_corners=True)
        np.testing.assert_allclose(out.to_numpy(), [[[0.0, 2.0, 4.0]]], atol=1e-6)

    def test_bilinear_module_shape(self):
        self.assertEqual(nn.UpsamplingBilinear2d(scale_factor=2)(tb.randn(1, 3, 4, 5)).shape, (1, 3, 8, 10))
        self.assertEqual(nn.Upsample(size=(2, 3))(tb.randn(1, 1, 4, 4)).shape, (1, 1, 2, 3))

    def test_gradient_sums_over_copies(self):
        x = tb.ones(1, 1, 2, requires_grad=True)
        F.interpolate(x, scale_factor=3).sum().backward()
        np.testing.assert_allclose(x.grad.to_numpy(), [[[3.0, 3.0]]])

    def test_argument_errors(self):
        x = tb.ones(1, 1, 4)
        with self.assertRaises(ValueError):
            F.interpolate(x)
        with self.assertRaises(ValueError):
            F.interpolate(x, size=2, scale_factor=2)
        with self.assertRaises(ValueError):
            F.interpolate(x, size=2, mode="nearest", align_corners=True)
        with self.assertRaises(ShapeError):
            F.interpolate(x, size=2, mode="bilinear")


class TestPixelShuffle(unittest.TestCase):
    def test_shuffle_then_unshuffle_is_identity(self):
        arr = np.random.randn(2, 8, 3, 3).astype(np.float32)
        up = nn.PixelShuffle(2)(tb.from_array(arr))
        self.assertEqual(up.shape, (2, 2, 6, 6))
        back = nn.PixelUnshuffle(2)(up)
        np.testing.assert_array_equal(back.to_numpy(), arr)

    def test_channel_divisibility(self):
        with self.assertRaises(ShapeError):
            F.pixel_shuffle(tb.ones(1, 3, 2, 2), 2)


if __name__ == "__main__":
    unittest.main()
