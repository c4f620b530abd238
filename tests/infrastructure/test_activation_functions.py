import math
import unittest

import numpy as np

import tensorbridge as tb
from tensorbridge import ShapeError, nn
from tensorbridge.nn import functional as F

_X = np.array([-4.0, -1.5, -0.5, 0.0, 0.5, 1.5, 4.0], dtype=np.float32)


def _numeric_grad(fn, x, h=1e-3):
    x = x.astype(np.float64)
    return np.array([(fn(x[i] + h) - fn(x[i] - h)) / (2 * h) for i in range(x.size)])


class TestActivationValues(unittest.TestCase):
    def _check(self, fn, ref, atol=1e-6):
        out = fn(tb.from_array(_X)).to_numpy()
        np.testing.assert_allclose(out, ref(_X.astype(np.float64)), rtol=1e-5, atol=atol)

    def test_rectifiers(self):
        self._check(F.relu, lambda a: np.maximum(a, 0))
        self._check(F.relu6, lambda a: np.clip(a, 0, 6))
        self._check(lambda t: F.leaky_relu(t, 0.2), lambda a: np.where(a > 0, a, 0.2 * a))
        self._check(F.elu, lambda a: np.where(a > 0, a, np.expm1(a)))
        self._check(
            F.selu,
            lambda a: 1.0507009873554805 * np.where(a > 0, a, 1.6732632423543772 * np.expm1(a)),
        )
        self._check(lambda t: F.threshold(t, 0.4, -1.0), lambda a: np.where(a > 0.4, a, -1.0))

    def test_smooth_gates(self):
        self._check(F.sigmoid, lambda a: 1 / (1 + np.exp(-a)))
        self._check(F.silu, lambda a: a / (1 + np.exp(-a)))
        self._check(F.softplus, lambda a: np.log1p(np.exp(a)))
        self._check(F.mish, lambda a: a * np.tanh(np.log1p(np.exp(a))))
        self._check(F.softsign, lambda a: a / (1 + np.abs(a)))
        self._check(F.hardsigmoid, lambda a: np.clip(a / 6 + 0.5, 0, 1))
        self._check(F.hardswish, lambda a: a * np.clip(a + 3, 0, 6) / 6)

    def test_gelu_exact_and_tanh(self):
        erf = np.vectorize(math.erf)
        self._check(F.gelu, lambda a: 0.5 * a * (1 + erf(a / math.sqrt(2))), atol=1e-5)
        self._check(
            lambda t: F.gelu(t, approximate="tanh"),
            lambda a: 0.5 * a * (1 + np.tanh(math.sqrt(2 / math.pi) * (a + 0.044715 * a**3))),
            atol=1e-5,
        )
        with self.assertRaises(ValueError):
            nn.GELU(approximate="fast")

    def test_rrelu_eval_uses_mean_slope(self):
        out = F.rrelu(tb.tensor([-2.0, 3.0]), lower=0.1, upper=0.3).to_numpy()
        np.testing.assert_allclose(out, [-0.4, 3.0], rtol=1e-6)
        x = tb.full((1000,), -1.0)
        out = nn.RReLU(0.1, 0.3)(x).to_numpy()
        self.assertTrue(np.all((out >= -0.3 - 1e-6) & (out <= -0.1 + 1e-6)))


class TestActivationGradients(unittest.TestCase):
    def _check_grad(self, fn, scalar_ref):
        x = tb.from_array(_X, requires_grad=True)
        fn(x).sum().backward()
        np.testing.assert_allclose(x.grad.to_numpy(), _numeric_grad(scalar_ref, _X), rtol=1e-3, atol=1e-3)

    def test_elementwise_gradients(self):
        self._check_grad(F.elu, lambda a: a if a > 0 else math.expm1(a))
        self._check_grad(F.silu, lambda a: a / (1 + math.exp(-a)))
        self._check_grad(F.gelu, lambda a: 0.5 * a * (1 + math.erf(a / math.sqrt(2))))
        self._check_grad(F.softplus, lambda a: math.log1p(math.exp(a)))
        self._check_grad(F.mish, lambda a: a * math.tanh(math.log1p(math.exp(a))))

    def test_relu_gradient_is_step(self):
        x = tb.tensor([-1.0, 2.0], requires_grad=True)
        F.relu(x).sum().backward()
        np.testing.assert_array_equal(x.grad.to_numpy(), [0.0, 1.0])


class TestActivationModules(unittest.TestCase):
    def test_inplace_returns_input(self):
        x = tb.tensor([-1.0, 1.0])
        out = nn.ReLU(inplace=True)(x)
        self.assertIs(out, x)
        np.testing.assert_array_equal(x.to_numpy(), [0.0, 1.0])
        y = tb.tensor([-1.0, 1.0])
        nn.LeakyReLU(0.5)(y)
        np.testing.assert_array_equal(y.to_numpy(), [-1.0, 1.0])

    def test_softmax_family(self):
        x = np.random.randn(2, 5).astype(np.float32)
        out = nn.Softmax(dim=-1)(tb.from_array(x)).to_numpy()
        np.testing.assert_allclose(out.sum(-1), [1.0, 1.0], rtol=1e-6)
        log_out = nn.LogSoftmax(dim=1)(tb.from_array(x)).to_numpy()
        np.testing.assert_allclose(np.exp(log_out), out, rtol=1e-5)
        np.testing.assert_allclose(
            nn.Softmin(dim=1)(tb.from_array(x)).to_numpy(), nn.Softmax(dim=1)(tb.from_array(-x)).to_numpy(), rtol=1e-6
        )

    def test_softmax_default_dim(self):
        x = np.random.randn(3, 4).astype(np.float32)
        np.testing.assert_allclose(F.softmax(tb.from_array(x)).to_numpy().sum(1), np.ones(3), rtol=1e-6)
        y = np.random.randn(3, 4, 2).astype(np.float32)
        np.testing.assert_allclose(F.softmax(tb.from_array(y)).to_numpy().sum(0), np.ones((4, 2)), rtol=1e-6)

    def test_softmax2d_rank(self):
        out = nn.Softmax2d()(tb.randn(2, 3, 4, 4)).to_numpy()
        np.testing.assert_allclose(out.sum(1), np.ones((2, 4, 4)), rtol=1e-6)
        with self.assertRaises(ShapeError):
            nn.Softmax2d()(tb.randn(3, 4))

    def test_hyperparameter_validation(self):
        with self.assertRaises(ValueError):
            nn.Hardtanh(1.0, -1.0)
        with self.assertRaises(ValueError):
            nn.CELU(alpha=0.0)
        with self.assertRaises(ValueError):
            nn.RReLU(0.5, 0.1)

    def test_hardtanh_clamps(self):
        out = nn.Hardtanh(-2.0, 2.0)(tb.from_array(_X)).to_numpy()
        np.testing.assert_array_equal(out, np.clip(_X, -2.0, 2.0))


if __name__ == "__main__":
    unittest.main()
