import math
import unittest

import numpy as np

import tensorbridge as tb
from tensorbridge import nn


def _params_with_grads(*grads):
    params = []
    for g in grads:
        p = nn.Parameter(np.zeros(len(g), dtype=np.float32))
        p.grad = tb.from_array(np.asarray(g, dtype=np.float32))
        params.append(p)
    return params


class TestClipGradNorm(unittest.TestCase):
    def test_scales_to_max_norm(self):
        params = _params_with_grads([3.0], [4.0])
        total = nn.utils.clip_grad_norm_(params, max_norm=1.0)
        self.assertAlmostEqual(total.item(), 5.0, places=5)
        self.assertEqual(total.shape, ())
        combined = np.concatenate([p.grad.to_numpy() for p in params])
        self.assertAlmostEqual(float(np.linalg.norm(combined)), 1.0, places=4)

    def test_small_norm_untouched(self):
        params = _params_with_grads([0.3, 0.4])
        nn.utils.clip_grad_norm_(params, max_norm=1.0)
        np.testing.assert_array_equal(params[0].grad.to_numpy(), np.array([0.3, 0.4], dtype=np.float32))

    def test_inf_and_l1_norms(self):
        params = _params_with_grads([1.0, -6.0], [2.0])
        self.assertAlmostEqual(nn.utils.clip_grad_norm_(params, 100.0, norm_type=math.inf).item(), 6.0)
        self.assertAlmostEqual(nn.utils.clip_grad_norm_(params, 100.0, norm_type=1).item(), 9.0, places=5)

    def test_nonfinite(self):
        params = _params_with_grads([np.inf, 1.0])
        with self.assertRaises(RuntimeError):
            nn.utils.clip_grad_norm_(params, 1.0, error_if_nonfinite=True)

    def test_no_grads_gives_zero(self):
        p = nn.Parameter(np.zeros(2, dtype=np.float32))
        self.assertEqual(nn.utils.clip_grad_norm_([p], 1.0).item(), 0.0)


class TestClipGradValue(unittest.TestCase):
    def test_clamps_elements(self):
        params = _params_with_grads([-3.0, 0.5, 2.0])
        nn.utils.clip_grad_value_(params, 1.0)
        np.testing.assert_array_equal(params[0].grad.to_numpy(), [-1.0, 0.5, 1.0])
        with self.assertRaises(ValueError):
            nn.utils.clip_grad_value_(params, -1.0)

    def test_accepts_single_tensor(self):
        (p,) = _params_with_grads([5.0])
        nn.utils.clip_grad_value_(p, 2.0)
        np.testing.assert_array_equal(p.grad.to_numpy(), [2.0])


if __name__ == "__main__":
    unittest.main()
