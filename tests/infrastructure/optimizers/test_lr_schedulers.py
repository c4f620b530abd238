import math
import unittest

import numpy as np

from tensorbridge import nn, optim
from tensorbridge.optim import lr_scheduler


def _optimizer(lr=1.0, groups=1):
    params = [{"params": [nn.Parameter(np.zeros(1, dtype=np.float32))]} for _ in range(groups)]
    return optim.SGD(params, lr=lr)


def _trace(scheduler, epochs):
    rates = [scheduler.get_last_lr()[0]]
    for _ in range(epochs):
        scheduler.optimizer.step()
        scheduler.step()
        rates.append(scheduler.get_last_lr()[0])
    return rates


class TestSchedules(unittest.TestCase):
    def test_step_lr(self):
        rates = _trace(lr_scheduler.StepLR(_optimizer(), step_size=2, gamma=0.1), 4)
        np.testing.assert_allclose(rates, [1.0, 1.0, 0.1, 0.1, 0.01])

    def test_multistep_lr(self):
        rates = _trace(lr_scheduler.MultiStepLR(_optimizer(), milestones=[3, 1], gamma=0.5), 4)
        np.testing.assert_allclose(rates, [1.0, 0.5, 0.5, 0.25, 0.25])

    def test_exponential_lr(self):
        rates = _trace(lr_scheduler.ExponentialLR(_optimizer(), gamma=0.5), 2)
        np.testing.assert_allclose(rates, [1.0, 0.5, 0.25])

    def test_cosine_annealing(self):
        rates = _trace(lr_scheduler.CosineAnnealingLR(_optimizer(), T_max=4, eta_min=0.1), 4)
        self.assertAlmostEqual(rates[2], 0.55)
        self.assertAlmostEqual(rates[4], 0.1)
        self.assertAlmostEqual(rates[1], 0.1 + 0.9 * (1 + math.cos(math.pi / 4)) / 2)

    def test_linear_lr_holds_after_total_iters(self):
        rates = _trace(lr_scheduler.LinearLR(_optimizer(), start_factor=0.5, total_iters=2), 3)
        np.testing.assert_allclose(rates, [0.5, 0.75, 1.0, 1.0])

    def test_lambda_lr_per_group(self):
        opt = _optimizer(lr=2.0, groups=2)
        sched = lr_scheduler.LambdaLR(opt, [lambda e: 1.0 / (e + 1), lambda e: 0.5**e])
        sched.step()
        self.assertEqual(sched.get_last_lr(), [1.0, 1.0])
        sched.step()
        np.testing.assert_allclose(sched.get_last_lr(), [2.0 / 3, 0.5])
        self.assertEqual([g["lr"] for g in opt.param_groups], sched.get_last_lr())
        with self.assertRaises(ValueError):
            lr_scheduler.LambdaLR(opt, [lambda e: 1.0])


class TestSchedulerProtocol(unittest.TestCase):
    def test_initial_lr_recorded(self):
        opt = _optimizer(lr=0.3)
        sched = lr_scheduler.ExponentialLR(opt, gamma=0.9)
        self.assertEqual(opt.param_groups[0]["initial_lr"], 0.3)
        self.assertEqual(sched.base_lrs, [0.3])
        self.assertEqual(sched.last_epoch, 0)

    def test_resume_requires_initial_lr(self):
        with self.assertRaises(KeyError):
            lr_scheduler.StepLR(_optimizer(), step_size=1, last_epoch=3)

    def test_resume_continues_schedule(self):
        opt = _optimizer()
        first = lr_scheduler.StepLR(opt, step_size=2, gamma=0.5)
        for _ in range(3):
            first.step()
        resumed = lr_scheduler.StepLR(opt, step_size=2, gamma=0.5, last_epoch=first.last_epoch)
        self.assertEqual(resumed.last_epoch, 4)
        self.assertEqual(resumed.get_last_lr(), [0.25])

    def test_rejects_non_optimizer(self):
        with self.assertRaises(TypeError):
            lr_scheduler.ExponentialLR(object(), gamma=0.5)

    def test_argument_validation(self):
        with self.assertRaises(ValueError):
            lr_scheduler.StepLR(_optimizer(), step_size=0)
        with self.assertRaises(ValueError):
            lr_scheduler.CosineAnnealingLR(_optimizer(), T_max=0)
        with self.assertRaises(ValueError):
            lr_scheduler.LinearLR(_optimizer(), start_factor=0.0)

    def test_state_dict_round_trip(self):
        sched = lr_scheduler.StepLR(_optimizer(), step_size=1, gamma=0.5)
        sched.step()
        state = sched.state_dict()
        self.assertNotIn("optimizer", state)
        other = lr_scheduler.StepLR(_optimizer(), step_size=3, gamma=0.9)
        other.load_state_dict(state)
        self.assertEqual(other.last_epoch, 1)
        self.assertEqual(other.step_size, 1)
        other.step()
        self.assertEqual(other.get_last_lr(), [0.25])

    def test_lambda_state_dict_keeps_functions(self):
        fn = lambda e: 0.1  # noqa: E731
        sched = lr_scheduler.LambdaLR(_optimizer(), fn)
        state = sched.state_dict()
        self.assertEqual(state["lr_lambdas"], [None])
        sched.load_state_dict(state)
        self.assertIs(sched.lr_lambdas[0], fn)


if __name__ == "__main__":
    unittest.main()
