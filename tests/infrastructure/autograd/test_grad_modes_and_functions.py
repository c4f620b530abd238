import threading
import unittest

import numpy as np

import tensorbridge as tb
from tensorbridge import GraphStateError
from tensorbridge.infrastructure.autograd import AutoGradMode


def _leaf(values):
    return tb.tensor(values, requires_grad=True)


class _Cube(tb.Function):
    @staticmethod
    def forward(ctx, x):
        ctx.save_for_backward(x)
        return x * x * x

    @staticmethod
    def backward(ctx, grad_out):
        (x,) = ctx.saved_tensors
        return grad_out.to_numpy() * 3.0 * x.to_numpy() ** 2


class _ScaledSum(tb.Function):
    """a * factor + b, where only `a` receives a gradient."""

    @staticmethod
    def forward(ctx, a, b, factor=1.0):
        ctx.saved_meta["factor"] = factor
        return a * factor + b

    @staticmethod
    def backward(ctx, grad_out):
        return grad_out * ctx.saved_meta["factor"], None


class TestGradModeGuards(unittest.TestCase):
    def test_guards_nest_and_restore(self):
        x = _leaf([1.0])
        with tb.no_grad():
            self.assertFalse(tb.is_grad_enabled())
            with tb.enable_grad():
                self.assertTrue((x * 2).requires_grad)
            self.assertFalse((x * 2).requires_grad)
        self.assertTrue(tb.is_grad_enabled())

    def test_guard_instance_reentry(self):
        off = AutoGradMode(False)
        with off:
            with AutoGradMode(True):
                with off:
                    self.assertFalse(tb.is_grad_enabled())
                self.assertTrue(tb.is_grad_enabled())
            self.assertFalse(tb.is_grad_enabled())
        self.assertTrue(tb.is_grad_enabled())

    def test_shared_guard_across_threads(self):
        guard = AutoGradMode(True)
        a_in, b_in, a_out = threading.Event(), threading.Event(), threading.Event()
        after = {}

        def first():
            with guard:
                a_in.set()
                b_in.wait(5)
            after["first"] = tb.is_grad_enabled()
            a_out.set()

        def second():
            tb.set_grad_enabled(False)
            a_in.wait(5)
            with guard:
                b_in.set()
                a_out.wait(5)
            after["second"] = tb.is_grad_enabled()

        threads = [threading.Thread(target=first), threading.Thread(target=second)]
        for th in threads:
            th.start()
        for th in threads:
            th.join()
        self.assertEqual(after, {"first": True, "second": False})

    def test_guard_as_decorator(self):
        @tb.no_grad()
        def double(t):
            return t * 2

        y = double(_leaf([1.0, 2.0]))
        self.assertFalse(y.requires_grad)
        self.assertTrue(tb.is_grad_enabled())

    def test_guard_restores_on_exception(self):
        with self.assertRaises(RuntimeError):
            with tb.no_grad():
                raise RuntimeError("boom")
        self.assertTrue(tb.is_grad_enabled())

    def test_set_grad_enabled_as_call_and_context(self):
        try:
            tb.set_grad_enabled(False)
            self.assertFalse(tb.is_grad_enabled())
        finally:
            tb.set_grad_enabled(True)
        with tb.set_grad_enabled(False):
            self.assertFalse(tb.is_grad_enabled())
        self.assertTrue(tb.is_grad_enabled())


class TestGraphInspection(unittest.TestCase):
    def test_leaf_and_grad_fn(self):
        x = _leaf([1.0, 2.0])
        y = x * 2
        self.assertTrue(x.is_leaf)
        self.assertIsNone(x.grad_fn)
        self.assertFalse(y.is_leaf)
        self.assertIsNotNone(y.grad_fn)

    def test_retain_grad_on_intermediate(self):
        x = _leaf([1.0, 2.0])
        y = x * 2
        y.retain_grad()
        (y * y).sum().backward()
        np.testing.assert_allclose(y.grad.to_numpy(), [4.0, 8.0])
        np.testing.assert_allclose(x.grad.to_numpy(), [8.0, 16.0])

    def test_retain_grad_requires_grad(self):
        with self.assertRaises(GraphStateError):
            tb.ones(2).retain_grad()

    def test_intermediate_grad_not_kept_by_default(self):
        x = _leaf([3.0])
        y = x * x
        y.sum().backward()
        self.assertIsNone(y.grad)
        np.testing.assert_allclose(x.grad.to_numpy(), [6.0])

    def test_grad_with_unused_input(self):
        x = _leaf([1.0, 2.0])
        w = _leaf([5.0])
        with self.assertRaises(GraphStateError):
            tb.autograd.grad((x * 2).sum(), [x, w])
        gx, gw = tb.autograd.grad((x * 2).sum(), [x, w], allow_unused=True)
        np.testing.assert_allclose(gx.to_numpy(), [2.0, 2.0])
        self.assertIsNone(gw)

    def test_detach_cuts_the_graph(self):
        x = _leaf([2.0])
        y = (x * x).detach()
        self.assertFalse(y.requires_grad)
        z = (y * x).sum()
        z.backward()
        np.testing.assert_allclose(x.grad.to_numpy(), [4.0])


class TestCustomFunction(unittest.TestCase):
    def test_single_input_function(self):
        x = _leaf([1.0, 2.0])
        y = _Cube.apply(x)
        np.testing.assert_allclose(y.to_numpy(), [1.0, 8.0])
        y.sum().backward()
        np.testing.assert_allclose(x.grad.to_numpy(), [3.0, 12.0])

    def test_function_output_without_grad_inputs_is_constant(self):
        y = _Cube.apply(tb.tensor([2.0]))
        self.assertFalse(y.requires_grad)
        self.assertTrue(y.is_leaf)

    def test_none_gradient_for_an_input(self):
        a = _leaf([1.0, 2.0])
        b = _leaf([10.0, 20.0])
        out = _ScaledSum.apply(a, b, factor=3.0)
        np.testing.assert_allclose(out.to_numpy(), [13.0, 26.0])
        out.sum().backward()
        np.testing.assert_allclose(a.grad.to_numpy(), [3.0, 3.0])
        self.assertIsNone(b.grad)

    def test_function_composes_with_builtin_ops(self):
        x = _leaf([2.0])
        loss = (_Cube.apply(x * 1.5) + x).sum()
        loss.backward()
        # d/dx (1.5x)^3 + x = 3 * 1.5^3 * x^2 + 1
        np.testing.assert_allclose(x.grad.to_numpy(), [3 * 1.5**3 * 4 + 1], rtol=1e-6)

    def test_released_function_node(self):
        x = _leaf([1.0])
        y = _Cube.apply(x).sum()
        y.backward()
        with self.assertRaises(GraphStateError):
            y.backward()


if __name__ == "__main__":
    unittest.main()
