import math
import unittest

import numpy as np

import tensorbridge as tb
from tensorbridge import ShapeError, nn
from tensorbridge.nn import functional as F


def _log_softmax(x, axis=-1):
    m = x.max(axis=axis, keepdims=True)
    return x - m - np.log(np.exp(x - m).sum(axis=axis, keepdims=True))


class TestRegressionLosses(unittest.TestCase):
    def test_mse_reductions(self):
        x = tb.tensor([1.0, 2.0, 3.0])
        t = tb.tensor([1.0, 1.0, 1.0])
        self.assertAlmostEqual(F.mse_loss(x, t).item(), 5.0 / 3.0, places=6)
        self.assertAlmostEqual(F.mse_loss(x, t, reduction="sum").item(), 5.0, places=6)
        np.testing.assert_allclose(F.mse_loss(x, t, reduction="none").to_numpy(), [0.0, 1.0, 4.0])
        self.assertEqual(F.mse_loss(x, t).shape, ())

    def test_mse_gradient(self):
        x = tb.tensor([1.0, 2.0, 3.0], requires_grad=True)
        nn.MSELoss()(x, tb.zeros(3)).backward()
        np.testing.assert_allclose(x.grad.to_numpy(), [2.0 / 3, 4.0 / 3, 2.0], rtol=1e-6)

    def test_shape_and_reduction_errors(self):
        with self.assertRaises(ShapeError):
            F.l1_loss(tb.ones(3), tb.ones(4))
        with self.assertRaises(ValueError):
            F.mse_loss(tb.ones(3), tb.ones(3), reduction="avg")

    def test_smooth_l1_and_huber(self):
        x = tb.tensor([0.5, 2.0])
        t = tb.zeros(2)
        np.testing.assert_allclose(F.smooth_l1_loss(x, t, reduction="none").to_numpy(), [0.125, 1.5])
        np.testing.assert_allclose(F.huber_loss(x, t, reduction="none", delta=1.0).to_numpy(), [0.125, 1.5])
        np.testing.assert_allclose(F.smooth_l1_loss(x, t, reduction="none", beta=0.0).to_numpy(), [0.5, 2.0])
        with self.assertRaises(ValueError):
            nn.HuberLoss(delta=0.0)

    def test_empty_mean_is_nan_with_warning(self):
        with self.assertWarns(RuntimeWarning):
            out = F.mse_loss(tb.zeros(0), tb.zeros(0))
        self.assertTrue(math.isnan(out.item()))


class TestBinaryLosses(unittest.TestCase):
    def test_bce_values_and_clamp(self):
        self.assertAlmostEqual(F.binary_cross_entropy(tb.tensor([0.5]), tb.tensor([1.0])).item(), math.log(2), places=6)
        self.assertAlmostEqual(F.binary_cross_entropy(tb.tensor([0.0]), tb.tensor([1.0])).item(), 100.0, places=4)
        with self.assertRaises(ValueError):
            F.binary_cross_entropy(tb.tensor([1.5]), tb.tensor([1.0]))

    def test_bce_with_logits_matches_reference(self):
        x = np.array([0.0, 2.0, -3.0], dtype=np.float32)
        t = np.array([1.0, 0.0, 1.0], dtype=np.float32)
        xt = tb.from_array(x, requires_grad=True)
        loss = F.binary_cross_entropy_with_logits(xt, tb.from_array(t))
        ref = np.mean((1 - t) * x + np.logaddexp(0.0, -x))
        self.assertAlmostEqual(loss.item(), ref, places=5)
        loss.backward()
        sig = 1.0 / (1.0 + np.exp(-x))
        np.testing.assert_allclose(xt.grad.to_numpy(), (sig - t) / 3, rtol=1e-5, atol=1e-7)

    def test_pos_weight_scales_positive_term(self):
        x = tb.tensor([0.3])
        t = tb.tensor([1.0])
        base = F.binary_cross_entropy_with_logits(x, t).item()
        weighted = nn.BCEWithLogitsLoss(pos_weight=tb.tensor([3.0]))(x, t).item()
        self.assertAlmostEqual(weighted, 3.0 * base, places=5)

    def test_margin_losses(self):
        self.assertAlmostEqual(
            F.margin_ranking_loss(tb.tensor([1.0, 2.0]), tb.tensor([2.0, 1.0]), tb.tensor([1.0, 1.0])).item(), 0.5
        )
        self.assertAlmostEqual(
            F.hinge_embedding_loss(tb.tensor([0.3, 2.0]), tb.tensor([1.0, -1.0])).item(), 0.15, places=6
        )
        self.assertAlmostEqual(F.soft_margin_loss(tb.zeros(2), tb.ones(2)).item(), math.log(2), places=6)

    def test_cosine_embedding(self):
        x1 = tb.tensor([[1.0, 0.0], [1.0, 0.0]])
        x2 = tb.tensor([[1.0, 1.0], [0.0, 1.0]])
        y = tb.tensor([1.0, -1.0])
        out = F.cosine_embedding_loss(x1, x2, y, reduction="none").to_numpy()
        np.testing.assert_allclose(out, [1.0 - 1.0 / math.sqrt(2.0), 0.0], atol=1e-6)
        with self.assertRaises(ShapeError):
            F.cosine_embedding_loss(x1, x2, tb.ones(3))
        with self.assertRaises(ValueError):
            nn.CosineEmbeddingLoss(margin=2.0)


class TestClassificationLosses(unittest.TestCase):
    def setUp(self):
        np.random.seed(3)
        self.logits = np.random.randn(4, 3).astype(np.float32)
        self.target = np.array([0, 2, 1, 2], dtype=np.int64)
        self.logp = _log_softmax(self.logits.astype(np.float64))
        self.nll = -self.logp[np.arange(4), self.target]

    def test_cross_entropy_mean_and_gradient(self):
        x = tb.from_array(self.logits, requires_grad=True)
        loss = F.cross_entropy(x, tb.from_array(self.target))
        self.assertAlmostEqual(loss.item(), self.nll.mean(), places=5)
        loss.backward()
        onehot = np.eye(3)[self.target]
        np.testing.assert_allclose(x.grad.to_numpy(), (np.exp(self.logp) - onehot) / 4, rtol=1e-5, atol=1e-6)

    def test_class_weights_divide_by_weight_total(self):
        w = np.array([1.0, 2.0, 0.5], dtype=np.float32)
        loss = nn.CrossEntropyLoss(weight=tb.from_array(w))(tb.from_array(self.logits), tb.from_array(self.target))
        picked = w[self.target]
        self.assertAlmostEqual(loss.item(), (picked * self.nll).sum() / picked.sum(), places=5)

    def test_ignore_index_skips_items(self):
        target = self.target.copy()
        target[0] = -100
        loss = F.cross_entropy(tb.from_array(self.logits), tb.from_array(target))
        self.assertAlmostEqual(loss.item(), self.nll[1:].mean(), places=5)
        x = tb.from_array(self.logits, requires_grad=True)
        F.cross_entropy(x, tb.from_array(target)).backward()
        np.testing.assert_array_equal(x.grad.to_numpy()[0], np.zeros(3, dtype=np.float32))

    def test_probability_targets_match_index_targets(self):
        probs = np.eye(3, dtype=np.float32)[self.target]
        a = F.cross_entropy(tb.from_array(self.logits), tb.from_array(probs)).item()
        b = F.cross_entropy(tb.from_array(self.logits), tb.from_array(self.target)).item()
        self.assertAlmostEqual(a, b, places=5)

    def test_label_smoothing(self):
        eps = 0.1
        loss = F.cross_entropy(tb.from_array(self.logits), tb.from_array(self.target), label_smoothing=eps)
        ref = (1 - eps) * self.nll + eps * (-self.logp.mean(axis=1))
        self.assertAlmostEqual(loss.item(), ref.mean(), places=5)
        with self.assertRaises(ValueError):
            nn.CrossEntropyLoss(label_smoothing=1.5)

    def test_spatial_and_unbatched_inputs(self):
        out = F.cross_entropy(tb.randn(2, 3, 4), tb.zeros(2, 4, dtype=tb.ScalarType.Int64))
        self.assertEqual(out.shape, ())
        logp = tb.from_array(self.logp[0].astype(np.float32))
        target = tb.tensor(1)
        self.assertAlmostEqual(F.nll_loss(logp, target).item(), -self.logp[0, 1], places=5)

    def test_target_validation(self):
        x = tb.from_array(self.logits)
        with self.assertRaises(ShapeError):
            F.cross_entropy(x, tb.tensor([0, 1, 3, 0]))
        with self.assertRaises(ShapeError):
            F.cross_entropy(x, tb.tensor([0, 1]))
        with self.assertRaises(ShapeError):
            F.nll_loss(x, tb.from_array(self.target), weight=tb.ones(4))

    def test_weight_is_a_buffer(self):
        loss = nn.CrossEntropyLoss(weight=tb.ones(3))
        self.assertIn("weight", loss.state_dict())
        self.assertEqual(list(loss.parameters()), [])


class TestDistributionLosses(unittest.TestCase):
    def test_kl_div_batchmean(self):
        p = np.array([[0.2, 0.8], [0.5, 0.5]], dtype=np.float32)
        q = np.array([[0.4, 0.6], [0.9, 0.1]], dtype=np.float32)
        ref = (p * (np.log(p) - np.log(q))).sum() / 2
        out = F.kl_div(tb.from_array(np.log(q)), tb.from_array(p), reduction="batchmean")
        self.assertAlmostEqual(out.item(), ref, places=5)
        out = nn.KLDivLoss(reduction="batchmean", log_target=True)(tb.from_array(np.log(q)), tb.from_array(np.log(p)))
        self.assertAlmostEqual(out.item(), ref, places=5)
        with self.assertRaises(ValueError):
            nn.KLDivLoss(reduction="average")

    def test_kl_div_zero_target_contributes_nothing(self):
        out = F.kl_div(tb.tensor([-1.0, -2.0]), tb.tensor([0.0, 1.0]), reduction="none").to_numpy()
        np.testing.assert_allclose(out, [0.0, 2.0])

    def test_poisson_nll(self):
        x = np.array([0.5, -1.0], dtype=np.float32)
        t = np.array([2.0, 0.0], dtype=np.float32)
        out = F.poisson_nll_loss(tb.from_array(x), tb.from_array(t), reduction="sum").item()
        self.assertAlmostEqual(out, float(np.sum(np.exp(x) - t * x)), places=5)


if __name__ == "__main__":
    unittest.main()
