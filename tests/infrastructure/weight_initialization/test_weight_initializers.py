import math
import unittest

import numpy as np

import tensorbridge as tb
from tensorbridge import nn
from tensorbridge.nn import init


class TestWeightInitializerRegistry(unittest.TestCase):
    def test_builtins_are_registered(self):
        names = init.WeightInitializer.available()
        for name in ("constant", "zeros", "ones", "uniform", "normal", "xavier_uniform", "kaiming_normal"):
            self.assertIn(name, names)

    def test_dispatch_by_name(self):
        w = tb.empty(3, 4)
        out = init.WeightInitializer("constant")(w, 2.5)
        self.assertIs(out, w)
        np.testing.assert_array_equal(w.to_numpy(), np.full((3, 4), 2.5, dtype=np.float32))

    def test_unknown_initializer(self):
        with self.assertRaises(ValueError) as ctx:
            init.WeightInitializer("___does_not_exist___")
        self.assertIn("Available:", str(ctx.exception))

    def test_register_without_overwrite_rejects_duplicates(self):
        name = "__test_initializer__"

        @init.WeightInitializer.register_initializer(name, overwrite=True)
        def first(tensor):
            return tensor

        with self.assertRaises(ValueError):

            @init.WeightInitializer.register_initializer(name)
            def second(tensor):
                return tensor

        with self.assertRaises(ValueError):
            init.WeightInitializer.register_initializer("")


class TestFanAndGain(unittest.TestCase):
    def test_fan_in_fan_out(self):
        self.assertEqual(init.calculate_fan_in_and_fan_out(tb.empty(8, 4)), (4, 8))
        self.assertEqual(init.calculate_fan_in_and_fan_out(tb.empty(16, 3, 5, 5)), (75, 400))
        with self.assertRaises(ValueError):
            init.calculate_fan_in_and_fan_out(tb.empty(5))

    def test_gains(self):
        self.assertEqual(init.calculate_gain("conv2d"), 1.0)
        self.assertAlmostEqual(init.calculate_gain("tanh"), 5.0 / 3)
        self.assertAlmostEqual(init.calculate_gain("relu"), math.sqrt(2.0))
        self.assertAlmostEqual(init.calculate_gain("leaky_relu", 0.2), math.sqrt(2.0 / 1.04))
        with self.assertRaises(ValueError):
            init.calculate_gain("swish")


class TestInitializerStatistics(unittest.TestCase):
    def setUp(self):
        tb.manual_seed(0)

    def test_uniform_bounds_and_validation(self):
        w = init.uniform_(tb.empty(1000), -0.5, 0.25).to_numpy()
        self.assertGreaterEqual(w.min(), -0.5)
        self.assertLessEqual(w.max(), 0.25)
        with self.assertRaises(ValueError):
            init.uniform_(tb.empty(3), 1.0, 0.0)
        with self.assertRaises(ValueError):
            init.normal_(tb.empty(3), std=-1.0)

    def test_xavier_uniform_bound(self):
        w = init.xavier_uniform_(tb.empty(200, 100)).to_numpy()
        bound = math.sqrt(6.0 / 300)
        self.assertLessEqual(np.abs(w).max(), bound + 1e-6)
        self.assertAlmostEqual(float(w.std()), bound / math.sqrt(3.0), delta=0.01)

    def test_kaiming_normal_std(self):
        w = init.kaiming_normal_(tb.empty(256, 128), nonlinearity="relu").to_numpy()
        self.assertAlmostEqual(float(w.std()), math.sqrt(2.0 / 128), delta=0.005)
        w = init.kaiming_normal_(tb.empty(256, 128), mode="fan_out", nonlinearity="relu").to_numpy()
        self.assertAlmostEqual(float(w.std()), math.sqrt(2.0 / 256), delta=0.005)
        with self.assertRaises(ValueError):
            init.kaiming_uniform_(tb.empty(4, 4), mode="fan_avg")

    def test_writes_are_not_recorded(self):
        p = nn.Parameter(np.zeros((3, 3), dtype=np.float32))
        init.xavier_normal_(p)
        self.assertTrue(p.is_leaf)
        self.assertIsNone(p.grad)
        self.assertTrue(np.any(p.to_numpy() != 0))
        init.zeros_(p)
        np.testing.assert_array_equal(p.to_numpy(), np.zeros((3, 3), dtype=np.float32))


if __name__ == "__main__":
    unittest.main()
