import unittest

import numpy as np

import tensorbridge as tb
from tensorbridge import ShapeError, nn
from tensorbridge.nn import functional as F


def _conv1d_reference(x, w, b, stride=1, padding=0):
    x = np.pad(x, ((0, 0), (0, 0), (padding, padding)))
    n, _, length = x.shape
    c_out, _, k = w.shape
    out_len = (length - k) // stride + 1
    out = np.zeros((n, c_out, out_len), dtype=np.float64)
    for i in range(out_len):
        window = x[:, :, i * stride : i * stride + k]
        out[:, :, i] = np.einsum("nck,ock->no", window, w)
    return out + b[None, :, None]


class TestConv1dShapes(unittest.TestCase):
    def test_output_lengths(self):
        x = tb.randn(16, 3, 28)
        self.assertEqual(nn.Conv1d(3, 8, 3)(x).shape, (16, 8, 26))
        self.assertEqual(nn.Conv1d(3, 8, 3, stride=2)(x).shape, (16, 8, 13))
        self.assertEqual(nn.Conv1d(3, 8, 3, padding=1)(x).shape, (16, 8, 28))

    def test_matches_reference(self):
        tb.manual_seed(0)
        conv = nn.Conv1d(3, 4, 3, stride=2, padding=1)
        x = np.random.randn(2, 3, 9).astype(np.float32)
        out = conv(tb.from_array(x)).to_numpy()
        ref = _conv1d_reference(x, conv.weight.to_numpy(), conv.bias.to_numpy(), stride=2, padding=1)
        np.testing.assert_allclose(out, ref, rtol=1e-4, atol=1e-5)

    def test_unbatched_input(self):
        self.assertEqual(nn.Conv1d(3, 2, 3)(tb.randn(3, 10)).shape, (2, 8))

    def test_channel_mismatch(self):
        with self.assertRaises(ShapeError):
            nn.Conv1d(3, 2, 3)(tb.randn(1, 4, 10))

    def test_kernel_larger_than_input(self):
        with self.assertRaises(ShapeError):
            nn.Conv1d(1, 1, 5)(tb.randn(1, 1, 3))

    def test_invalid_groups(self):
        with self.assertRaises(ValueError):
            nn.Conv1d(3, 4, 3, groups=2)


_NUMPY_PAD_MODES = {"zeros": "constant", "reflect": "reflect", "replicate": "edge", "circular": "wrap"}


class TestPaddingModes(unittest.TestCase):
    def test_conv1d_padding_modes_match_prepadded_input(self):
        x = np.random.randn(2, 3, 7).astype(np.float32)
        for mode, np_mode in _NUMPY_PAD_MODES.items():
            with self.subTest(mode=mode):
                conv = nn.Conv1d(3, 4, 3, padding=2, padding_mode=mode)
                out = conv(tb.from_array(x)).to_numpy()
                padded = np.pad(x, ((0, 0), (0, 0), (2, 2)), mode=np_mode)
                ref = F.conv1d(tb.from_array(padded), conv.weight, conv.bias).to_numpy()
                self.assertEqual(out.shape, (2, 4, 9))
                np.testing.assert_allclose(out, ref, rtol=1e-5, atol=1e-5)

    def test_conv2d_padding_modes_match_prepadded_input(self):
        x = np.random.randn(1, 2, 5, 6).astype(np.float32)
        for mode, np_mode in _NUMPY_PAD_MODES.items():
            with self.subTest(mode=mode):
                conv = nn.Conv2d(2, 3, 3, padding=(1, 2), padding_mode=mode)
                out = conv(tb.from_array(x)).to_numpy()
                padded = np.pad(x, ((0, 0), (0, 0), (1, 1), (2, 2)), mode=np_mode)
                ref = F.conv2d(tb.from_array(padded), conv.weight, conv.bias).to_numpy()
                self.assertEqual(out.shape, (1, 3, 5, 8))
                np.testing.assert_allclose(out, ref, rtol=1e-5, atol=1e-5)

    def test_reflect_padding_must_be_smaller_than_input(self):
        with self.assertRaises(ValueError):
            nn.Conv1d(1, 1, 3, padding=3, padding_mode="reflect")(tb.randn(1, 1, 3))

    def test_unknown_padding_mode(self):
        with self.assertRaises(ValueError):
            nn.Conv1d(1, 1, 3, padding_mode="mirror")


class TestConv2d(unittest.TestCase):
    def test_pointwise_conv_is_channel_matmul(self):
        conv = nn.Conv2d(3, 2, 1, bias=False)
        x = np.random.randn(1, 3, 4, 5).astype(np.float32)
        out = conv(tb.from_array(x)).to_numpy()
        w = conv.weight.to_numpy()[:, :, 0, 0]
        np.testing.assert_allclose(out, np.einsum("oc,nchw->nohw", w, x), rtol=1e-5, atol=1e-6)

    def test_same_padding_keeps_size(self):
        self.assertEqual(nn.Conv2d(2, 2, 3, padding="same")(tb.randn(1, 2, 7, 7)).shape, (1, 2, 7, 7))

    def test_backward_of_sum(self):
        conv = nn.Conv2d(1, 1, 2, bias=True)
        x = tb.randn(1, 1, 3, 3, requires_grad=True)
        conv(x).sum().backward()
        # every output position sees one bias term
        np.testing.assert_allclose(conv.bias.grad.to_numpy(), [4.0])
        w = conv.weight.to_numpy()[0, 0]
        expected = np.zeros((3, 3), dtype=np.float32)
        for i in range(2):
            for j in range(2):
                expected[i : i + 2, j : j + 2] += w
        np.testing.assert_allclose(x.grad.to_numpy()[0, 0], expected, rtol=1e-5, atol=1e-6)

    def test_transpose_inverts_output_size(self):
        x = tb.randn(1, 4, 5, 5)
        down = nn.Conv2d(4, 2, 3, stride=2, padding=1)
        up = nn.ConvTranspose2d(2, 4, 3, stride=2, padding=1, output_padding=0)
        self.assertEqual(up(down(x)).shape, (1, 4, 5, 5))

    def test_functional_conv2d(self):
        x = tb.ones(1, 1, 3, 3)
        w = tb.ones(1, 1, 2, 2)
        np.testing.assert_allclose(F.conv2d(x, w).to_numpy(), np.full((1, 1, 2, 2), 4.0))


if __name__ == "__main__":
    unittest.main()
