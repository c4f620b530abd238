import math
import unittest

import numpy as np

import tensorbridge as tb
from tensorbridge import nn, optim


def _param(values):
    return nn.Parameter(np.asarray(values, dtype=np.float32))


def _set_grad(p, values):
    p.grad = tb.from_array(np.asarray(values, dtype=np.float32))


class TestOptimizerBase(unittest.TestCase):
    def test_rejects_bad_parameter_lists(self):
        with self.assertRaises(ValueError):
            optim.SGD([], lr=0.1)
        p = _param([1.0])
        with self.assertRaises(ValueError):
            optim.SGD([{"params": [p]}, {"params": [p]}], lr=0.1)
        with self.assertRaises(TypeError):
            optim.SGD(p, lr=0.1)
        x = tb.ones(2, requires_grad=True)
        with self.assertRaises(ValueError):
            optim.SGD([x * 2], lr=0.1)

    def test_groups_inherit_defaults(self):
        a, b = _param([1.0]), _param([1.0])
        opt = optim.SGD([{"params": [a]}, {"params": [b], "lr": 0.5}], lr=0.1, momentum=0.9)
        self.assertEqual(opt.param_groups[0]["lr"], 0.1)
        self.assertEqual(opt.param_groups[1]["lr"], 0.5)
        self.assertEqual(opt.param_groups[1]["momentum"], 0.9)
        _set_grad(a, [1.0])
        _set_grad(b, [1.0])
        opt.step()
        np.testing.assert_allclose(a.to_numpy(), [0.9], rtol=1e-6)
        np.testing.assert_allclose(b.to_numpy(), [0.5], rtol=1e-6)

    def test_parameters_without_grad_are_skipped(self):
        a, b = _param([1.0, 2.0]), _param([3.0])
        opt = optim.Adam([a, b], lr=0.1)
        _set_grad(a, [1.0, 1.0])
        opt.step()
        np.testing.assert_array_equal(b.to_numpy(), [3.0])
        self.assertNotIn(b, opt.state)
        self.assertEqual(opt.state[a]["step"], 1)

    def test_zero_grad_modes(self):
        p = _param([1.0])
        opt = optim.SGD([p], lr=0.1)
        _set_grad(p, [2.0])
        opt.zero_grad(set_to_none=False)
        np.testing.assert_array_equal(p.grad.to_numpy(), [0.0])
        opt.zero_grad()
        self.assertIsNone(p.grad)

    def test_step_runs_closure(self):
        p = _param([1.0])
        opt = optim.SGD([p], lr=0.1)

        def closure():
            opt.zero_grad()
            loss = (p * p).sum()
            loss.backward()
            return loss

        loss = opt.step(closure)
        self.assertAlmostEqual(loss.item(), 1.0)
        np.testing.assert_allclose(p.to_numpy(), [0.8], rtol=1e-6)

    def test_state_dict_round_trip_continues_identically(self):
        a = _param([1.0, -2.0])
        b = _param([1.0, -2.0])
        opt_a = optim.Adam([a], lr=0.1, amsgrad=True)
        for g in ([0.5, 1.0], [-0.3, 2.0]):
            _set_grad(a, g)
            opt_a.step()
        b.copy_from_numpy(a.to_numpy())

        sd = opt_a.state_dict()
        self.assertEqual(sorted(sd["state"][0]), ["exp_avg", "exp_avg_sq", "max_exp_avg_sq", "step"])
        self.assertIsInstance(sd["state"][0]["exp_avg"], np.ndarray)
        self.assertEqual(sd["param_groups"][0]["params"], [0])

        opt_b = optim.Adam([b], lr=0.5)
        opt_b.load_state_dict(sd)
        self.assertEqual(opt_b.param_groups[0]["lr"], 0.1)
        _set_grad(a, [1.0, 1.0])
        _set_grad(b, [1.0, 1.0])
        opt_a.step()
        opt_b.step()
        np.testing.assert_allclose(a.to_numpy(), b.to_numpy(), rtol=1e-6)

    def test_load_state_dict_group_mismatch(self):
        opt = optim.SGD([_param([1.0])], lr=0.1)
        other = optim.SGD([_param([1.0]), _param([2.0])], lr=0.1)
        with self.assertRaises(ValueError):
            opt.load_state_dict(other.state_dict())


class TestSGD(unittest.TestCase):
    def test_plain_step(self):
        p = _param([1.0, 2.0])
        _set_grad(p, [0.5, -1.0])
        optim.SGD([p], lr=0.1).step()
        np.testing.assert_allclose(p.to_numpy(), [0.95, 2.1], rtol=1e-6)

    def test_momentum_and_nesterov(self):
        p = _param([0.0])
        opt = optim.SGD([p], lr=0.1, momentum=0.9)
        for _ in range(2):
            _set_grad(p, [1.0])
            opt.step()
        np.testing.assert_allclose(p.to_numpy(), [-0.1 * (1.0 + 1.9)], rtol=1e-6)

        q = _param([0.0])
        _set_grad(q, [1.0])
        optim.SGD([q], lr=0.1, momentum=0.9, nesterov=True).step()
        np.testing.assert_allclose(q.to_numpy(), [-0.19], rtol=1e-6)

    def test_weight_decay_and_maximize(self):
        p = _param([2.0])
        _set_grad(p, [1.0])
        optim.SGD([p], lr=0.1, weight_decay=0.5).step()
        np.testing.assert_allclose(p.to_numpy(), [2.0 - 0.1 * 2.0], rtol=1e-6)

        q = _param([2.0])
        _set_grad(q, [1.0])
        optim.SGD([q], lr=0.1, maximize=True).step()
        np.testing.assert_allclose(q.to_numpy(), [2.1], rtol=1e-6)

    def test_hyperparameter_validation(self):
        p = [_param([1.0])]
        with self.assertRaises(ValueError):
            optim.SGD(p, lr=0.0)
        with self.assertRaises(ValueError):
            optim.SGD(p, lr=0.1, momentum=-0.1)
        with self.assertRaises(ValueError):
            optim.SGD(p, lr=0.1, weight_decay=-1.0)
        with self.assertRaises(ValueError):
            optim.SGD(p, lr=0.1, nesterov=True)

    def test_fits_linear_regression(self):
        tb.manual_seed(0)
        x = np.linspace(-1, 1, 50, dtype=np.float32).reshape(-1, 1)
        y = 2.0 * x + 1.0
        model = nn.Linear(1, 1)
        opt = optim.SGD(model.parameters(), lr=0.1)
        xt, yt = tb.from_array(x), tb.from_array(y)
        first = None
        for _ in range(300):
            opt.zero_grad()
            loss = nn.functional.mse_loss(model(xt), yt)
            loss.backward()
            opt.step()
            if first is None:
                first = loss.item()
        self.assertLess(loss.item(), first)
        self.assertAlmostEqual(model.weight.to_numpy().item(), 2.0, places=2)
        self.assertAlmostEqual(model.bias.to_numpy().item(), 1.0, places=2)


def _adam_reference(p, grads, lr, b1, b2, eps, wd=0.0, decoupled=False, amsgrad=False):
    p = np.asarray(p, dtype=np.float64)
    m = np.zeros_like(p)
    v = np.zeros_like(p)
    vmax = np.zeros_like(p)
    for t, g in enumerate(grads, start=1):
        g = np.asarray(g, dtype=np.float64)
        if wd:
            if decoupled:
                p = p * (1 - lr * wd)
            else:
                g = g + wd * p
        m = b1 * m + (1 - b1) * g
        v = b2 * v + (1 - b2) * g * g
        second = v
        if amsgrad:
            vmax = np.maximum(vmax, v)
            second = vmax
        denom = np.sqrt(second) / math.sqrt(1 - b2**t) + eps
        p = p - lr / (1 - b1**t) * m / denom
    return p


class TestAdam(unittest.TestCase):
    GRADS = ([0.5, -1.0, 2.0], [0.1, -0.5, -2.0], [1.0, 0.0, 0.5])

    def _run(self, cls, **kwargs):
        p = _param([1.0, 2.0, -1.0])
        opt = cls([p], **kwargs)
        for g in self.GRADS:
            _set_grad(p, g)
            opt.step()
        return p.to_numpy()

    def test_first_step_moves_by_lr(self):
        p = _param([1.0, -1.0])
        _set_grad(p, [3.0, -0.01])
        optim.Adam([p], lr=0.1).step()
        np.testing.assert_allclose(p.to_numpy(), [0.9, -0.9], rtol=1e-5)

    def test_matches_reference(self):
        out = self._run(optim.Adam, lr=0.1, betas=(0.8, 0.9))
        ref = _adam_reference([1.0, 2.0, -1.0], self.GRADS, 0.1, 0.8, 0.9, 1e-8)
        np.testing.assert_allclose(out, ref, rtol=1e-5, atol=1e-6)

    def test_coupled_weight_decay_and_amsgrad(self):
        out = self._run(optim.Adam, lr=0.05, weight_decay=0.1, amsgrad=True)
        ref = _adam_reference([1.0, 2.0, -1.0], self.GRADS, 0.05, 0.9, 0.999, 1e-8, wd=0.1, amsgrad=True)
        np.testing.assert_allclose(out, ref, rtol=1e-5, atol=1e-6)

    def test_adamw_decouples_weight_decay(self):
        out = self._run(optim.AdamW, lr=0.05, weight_decay=0.5)
        ref = _adam_reference([1.0, 2.0, -1.0], self.GRADS, 0.05, 0.9, 0.999, 1e-8, wd=0.5, decoupled=True)
        np.testing.assert_allclose(out, ref, rtol=1e-5, atol=1e-6)
        self.assertEqual(optim.AdamW([_param([1.0])]).defaults["weight_decay"], 1e-2)

    def test_validation(self):
        p = [_param([1.0])]
        with self.assertRaises(ValueError):
            optim.Adam(p, lr=-1.0)
        with self.assertRaises(ValueError):
            optim.Adam(p, betas=(1.0, 0.999))
        with self.assertRaises(ValueError):
            optim.AdamW(p, eps=-1e-8)


class TestRMSpropAndAdagrad(unittest.TestCase):
    def test_rmsprop_first_step(self):
        p = _param([1.0, -1.0])
        _set_grad(p, [2.0, -0.5])
        optim.RMSprop([p], lr=0.01, alpha=0.99).step()
        np.testing.assert_allclose(p.to_numpy(), [1.0 - 0.1, -1.0 + 0.1], rtol=1e-5)

    def test_rmsprop_centered_momentum(self):
        p = _param([0.0])
        opt = optim.RMSprop([p], lr=0.01, alpha=0.5, momentum=0.9, centered=True)
        _set_grad(p, [1.0])
        opt.step()
        # square_avg = 0.5, grad_avg = 0.5, avg = sqrt(0.25)
        np.testing.assert_allclose(p.to_numpy(), [-0.02], rtol=1e-5)
        self.assertIn("momentum_buffer", opt.state[p])
        self.assertIn("grad_avg", opt.state[p])
        with self.assertRaises(ValueError):
            optim.RMSprop([_param([1.0])], alpha=-0.1)

    def test_adagrad_steps_with_decay(self):
        p = _param([0.0])
        opt = optim.Adagrad([p], lr=0.1, lr_decay=0.5, initial_accumulator_value=0.0)
        _set_grad(p, [2.0])
        opt.step()
        np.testing.assert_allclose(p.to_numpy(), [-0.1], rtol=1e-5)
        _set_grad(p, [2.0])
        opt.step()
        expected = -0.1 - (0.1 / 1.5) * 2.0 / math.sqrt(8.0)
        np.testing.assert_allclose(p.to_numpy(), [expected], rtol=1e-5)
        np.testing.assert_allclose(opt.state[p]["sum"].to_numpy(), [8.0])

    def test_adagrad_initial_accumulator(self):
        p = _param([0.0])
        opt = optim.Adagrad([p], lr=1.0, initial_accumulator_value=3.0)
        _set_grad(p, [1.0])
        opt.step()
        np.testing.assert_allclose(p.to_numpy(), [-0.5], rtol=1e-5)
        with self.assertRaises(ValueError):
            optim.Adagrad([_param([1.0])], lr_decay=-1.0)


if __name__ == "__main__":
    unittest.main()
