import unittest

import numpy as np

import tensorbridge as tb
from tensorbridge import AllocationError, GraphStateError, Scalar, ScalarType, ShapeError
from tensorbridge.domain._index import All, NewAxis, Single, Slice, TensorIndexer


def _cube():
    return tb.tensor(np.arange(24, dtype=np.int64).reshape(2, 3, 4))


class TestArithmetic(unittest.TestCase):
    def test_broadcasting_binary_ops(self):
        a = tb.tensor([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
        b = tb.tensor([10.0, 20.0, 30.0])
        np.testing.assert_allclose((a + b).to_numpy(), [[11, 22, 33], [14, 25, 36]])
        np.testing.assert_allclose((b - a).to_numpy(), [[9, 18, 27], [6, 15, 24]])
        np.testing.assert_allclose((2 * a - 1).to_numpy(), [[1, 3, 5], [7, 9, 11]])
        np.testing.assert_allclose((a ** 2).to_numpy()[1], [16, 25, 36])
        np.testing.assert_allclose((-a).abs().to_numpy(), a.to_numpy())

    def test_incompatible_shapes_raise(self):
        with self.assertRaises(ShapeError):
            tb.ones(2, 3) + tb.ones(4)

    def test_integer_division_and_remainder(self):
        x = tb.tensor([7, -7])
        np.testing.assert_array_equal((x // 2).to_numpy(), [3, -4])
        np.testing.assert_array_equal((x % 3).to_numpy(), [1, 2])
        q = x / 2
        self.assertIs(q.dtype, ScalarType.Float32)
        np.testing.assert_allclose(q.to_numpy(), [3.5, -3.5])

    def test_python_numbers_are_weakly_typed(self):
        x = tb.ones(2)
        self.assertIs((x + 1).dtype, ScalarType.Float32)
        self.assertIs((x * 2.5).dtype, ScalarType.Float32)
        self.assertIs((x + Scalar(1.0, dtype=ScalarType.Float64)).dtype, ScalarType.Float64)

    def test_comparisons_return_bool(self):
        a = tb.tensor([1.0, 2.0, 3.0])
        for res, expected in (
            (a == 2.0, [False, True, False]),
            (a != 2.0, [True, False, True]),
            (a < 2.0, [True, False, False]),
            (a <= 2.0, [True, True, False]),
            (a > 2.0, [False, False, True]),
            (a >= 2.0, [False, True, True]),
        ):
            self.assertIs(res.dtype, ScalarType.Bool)
            np.testing.assert_array_equal(res.to_numpy(), expected)

    def test_matmul_family(self):
        a = tb.tensor(np.arange(6, dtype=np.float32).reshape(2, 3))
        b = tb.tensor(np.arange(12, dtype=np.float32).reshape(3, 4))
        np.testing.assert_allclose((a @ b).to_numpy(), a.to_numpy() @ b.to_numpy())
        np.testing.assert_allclose(a.mm(b).to_numpy(), a.to_numpy() @ b.to_numpy())
        x = tb.randn(5, 2, 3)
        y = tb.randn(5, 3, 4)
        self.assertEqual(x.bmm(y).shape, (5, 2, 4))
        with self.assertRaises(ShapeError):
            a @ a
        with self.assertRaises(ShapeError):
            x.mm(y)

    def test_unary_math(self):
        x = tb.tensor([0.25, 1.0, 4.0])
        np.testing.assert_allclose(x.sqrt().to_numpy(), [0.5, 1.0, 2.0])
        np.testing.assert_allclose(x.rsqrt().to_numpy(), [2.0, 1.0, 0.5])
        np.testing.assert_allclose(x.reciprocal().to_numpy(), [4.0, 1.0, 0.25])
        np.testing.assert_allclose(x.log().exp().to_numpy(), x.to_numpy(), rtol=1e-6)
        np.testing.assert_allclose(
            tb.tensor([-2.0, 0.0, 3.0]).sign().to_numpy(), [-1.0, 0.0, 1.0]
        )
        np.testing.assert_allclose(
            tb.tensor([-2.0, 0.5, 3.0]).clamp(0.0, 1.0).to_numpy(), [0.0, 0.5, 1.0]
        )


class TestViews(unittest.TestCase):
    def test_select_view_shares_buffer(self):
        t = tb.zeros(2, 3)
        row = t.select(0, 1)
        self.assertEqual(row.storage_id(), t.storage_id())
        row.fill_(5.0)
        np.testing.assert_allclose(t.to_numpy(), [[0, 0, 0], [5, 5, 5]])

    def test_transpose_is_non_contiguous_view(self):
        t = tb.tensor(np.arange(6, dtype=np.float32).reshape(2, 3))
        tt = t.transpose(0, 1)
        self.assertEqual(tt.shape, (3, 2))
        self.assertEqual(tt.stride(), (1, 3))
        self.assertFalse(tt.is_contiguous())
        with self.assertRaises(ShapeError):
            tt.view(6)
        np.testing.assert_allclose(tt.reshape(6).to_numpy(), [0, 3, 1, 4, 2, 5])
        c = tt.contiguous()
        self.assertTrue(c.is_contiguous())
        self.assertNotEqual(c.storage_id(), t.storage_id())

    def test_metadata_invariants(self):
        t = tb.zeros(2, 3, 4)
        self.assertEqual(len(t.shape), len(t.stride()))
        self.assertEqual(t.ndim, 3)
        self.assertEqual(t.dim(), 3)
        self.assertEqual(t.numel(), 24)
        self.assertEqual(t.element_size(), 4)
        self.assertEqual(tb.zeros(()).numel(), 1)

    def test_shape_ops(self):
        t = tb.tensor(np.arange(6, dtype=np.float32).reshape(2, 3))
        self.assertEqual(t.unsqueeze(0).shape, (1, 2, 3))
        self.assertEqual(t.unsqueeze(0).squeeze().shape, (2, 3))
        self.assertEqual(t.flatten().shape, (6,))
        self.assertEqual(t.flatten().unflatten(0, (3, 2)).shape, (3, 2))
        self.assertEqual(t.permute(1, 0).shape, (3, 2))
        self.assertEqual(t.repeat(2, 1).shape, (4, 3))
        np.testing.assert_allclose(t.narrow(1, 1, 2).to_numpy(), [[1, 2], [4, 5]])
        self.assertEqual([p.shape for p in t.split(2, dim=1)], [(2, 2), (2, 1)])
        self.assertEqual(len(t.chunk(3, dim=1)), 3)
        e = tb.tensor([[1.0], [2.0]]).expand(2, 3)
        np.testing.assert_allclose(e.to_numpy(), [[1, 1, 1], [2, 2, 2]])

    def test_join_ops(self):
        a, b = tb.ones(2, 3), tb.zeros(2, 3)
        self.assertEqual(tb.cat([a, b], dim=0).shape, (4, 3))
        self.assertEqual(tb.stack([a, b], dim=1).shape, (2, 2, 3))
        w = tb.where(tb.tensor([True, False, True]), tb.ones(3), tb.zeros(3))
        np.testing.assert_allclose(w.to_numpy(), [1, 0, 1])
        with self.assertRaises(ShapeError):
            tb.cat([a, tb.ones(2, 4)], dim=0)


class TestIndexing(unittest.TestCase):
    def test_basic_indexing(self):
        x = _cube()
        ref = np.arange(24).reshape(2, 3, 4)
        np.testing.assert_array_equal(x[1, ..., 2].to_numpy(), ref[1, ..., 2])
        np.testing.assert_array_equal(x[:, 1:3, ::2].to_numpy(), ref[:, 1:3, ::2])
        self.assertEqual(x[None].shape, (1, 2, 3, 4))
        self.assertEqual(x[0, 0, 0].item(), 0)

    def test_explicit_descriptors(self):
        x = _cube()
        ref = np.arange(24).reshape(2, 3, 4)
        got = x.index(Single(1), All(), Slice(0, 2))
        np.testing.assert_array_equal(got.to_numpy(), ref[1, :, 0:2])
        self.assertEqual(x.index(NewAxis(), Single(0)).shape, (1, 3, 4))
        gathered = x.index(TensorIndexer(tb.tensor([1, 0])))
        np.testing.assert_array_equal(gathered.to_numpy(), ref[[1, 0]])

    def test_mask_and_gather(self):
        x = _cube()
        np.testing.assert_array_equal(x[x > 20].to_numpy(), [21, 22, 23])
        np.testing.assert_array_equal(
            x[tb.tensor([1, 1])].to_numpy(), np.arange(24).reshape(2, 3, 4)[[1, 1]]
        )

    def test_index_validation(self):
        x = _cube()
        with self.assertRaises(ShapeError):
            x[..., ...]
        with self.assertRaises(ShapeError):
            x[0, 0, 0, 0]
        with self.assertRaises(ShapeError) as cm:
            x[:, 3]
        self.assertEqual(cm.exception.dim, 1)
        with self.assertRaises(ShapeError):
            x[tb.tensor([0, 5])]

    def test_setitem_and_index_put(self):
        t = tb.zeros(3)
        t[1] = 4.0
        np.testing.assert_allclose(t.to_numpy(), [0, 4, 0])
        t.index_put_((tb.tensor([0, 0, 2]),), tb.tensor([1.0, 1.0, 1.0]), accumulate=True)
        np.testing.assert_allclose(t.to_numpy(), [2, 4, 1])
        with self.assertRaises(ShapeError):
            t[0:2] = tb.ones(3)


class TestInPlace(unittest.TestCase):
    def test_in_place_ops_return_self(self):
        t = tb.tensor([-1.0, 0.5, 3.0])
        self.assertIs(t.clamp_(0.0, 1.0), t)
        np.testing.assert_allclose(t.to_numpy(), [0.0, 0.5, 1.0])
        self.assertIs(t.mul_(2.0), t)
        self.assertIs(t.add_(1.0), t)
        np.testing.assert_allclose(t.to_numpy(), [1.0, 2.0, 3.0])
        t.masked_fill_(t > 1.5, 0.0)
        np.testing.assert_allclose(t.to_numpy(), [1.0, 0.0, 0.0])
        t.copy_(tb.tensor([7.0]))
        np.testing.assert_allclose(t.to_numpy(), [7.0, 7.0, 7.0])
        self.assertIs(t.zero_(), t)
        self.assertEqual(t.sum().item(), 0.0)

    def test_leaf_requiring_grad_rejects_in_place(self):
        w = tb.ones(2, requires_grad=True)
        with self.assertRaises(GraphStateError):
            w.add_(1.0)
        with tb.no_grad():
            w.add_(1.0)
        np.testing.assert_allclose(w.to_numpy(), [2.0, 2.0])

    def test_random_fills(self):
        tb.manual_seed(0)
        t = tb.empty(1000)
        t.uniform_(2.0, 3.0)
        arr = t.to_numpy()
        self.assertTrue(np.all((arr >= 2.0) & (arr < 3.0)))
        t.bernoulli_(0.0)
        self.assertEqual(t.sum().item(), 0.0)
        with self.assertRaises(ValueError):
            t.bernoulli_(1.5)
        t.normal_(0.0, 1.0)
        self.assertLess(abs(float(t.to_numpy().mean())), 0.2)

    def test_in_place_cannot_widen_type(self):
        t = tb.tensor([1, 2])
        with self.assertRaises(TypeError):
            t.add_(0.5)


class TestReductions(unittest.TestCase):
    def setUp(self):
        self.x = tb.tensor([[1.0, 5.0, 3.0], [4.0, 2.0, 6.0]])
        self.ref = self.x.to_numpy().astype(np.float64)

    def test_sum_mean_prod(self):
        self.assertAlmostEqual(self.x.sum().item(), 21.0)
        np.testing.assert_allclose(self.x.mean(dim=0).to_numpy(), [2.5, 3.5, 4.5])
        self.assertEqual(self.x.sum(dim=1, keepdim=True).shape, (2, 1))
        np.testing.assert_allclose(self.x.prod(dim=1).to_numpy(), [15.0, 48.0])

    def test_extrema(self):
        values, indices = self.x.max(dim=1)
        np.testing.assert_allclose(values.to_numpy(), [5.0, 6.0])
        np.testing.assert_array_equal(indices.to_numpy(), [1, 2])
        self.assertEqual(self.x.min().item(), 1.0)
        self.assertEqual(self.x.argmax().item(), 5)
        np.testing.assert_array_equal(self.x.argmin(dim=0).to_numpy(), [0, 1, 0])

    def test_statistics(self):
        np.testing.assert_allclose(self.x.var(dim=1).to_numpy(), self.ref.var(axis=1, ddof=1), rtol=1e-6)
        np.testing.assert_allclose(
            self.x.std(dim=1, unbiased=False).to_numpy(), self.ref.std(axis=1), rtol=1e-6
        )
        expected = np.log(np.exp(self.ref).sum(axis=1))
        np.testing.assert_allclose(self.x.logsumexp(dim=1).to_numpy(), expected, rtol=1e-6)

    def test_softmax_family(self):
        s = self.x.softmax(dim=1).to_numpy()
        np.testing.assert_allclose(s.sum(axis=1), [1.0, 1.0], rtol=1e-6)
        np.testing.assert_allclose(
            self.x.log_softmax(dim=1).to_numpy(), np.log(s), rtol=1e-5, atol=1e-6
        )


class TestConversions(unittest.TestCase):
    def test_dtype_conversions(self):
        t = tb.tensor([1.7, -2.2])
        self.assertIs(t.long().dtype, ScalarType.Int64)
        np.testing.assert_array_equal(t.long().to_numpy(), [1, -2])
        self.assertIs(t.double().dtype, ScalarType.Float64)
        self.assertIs(t.half().dtype, ScalarType.Float16)
        self.assertIs(t.bfloat16().dtype, ScalarType.BFloat16)
        self.assertIs(t.int().dtype, ScalarType.Int32)
        self.assertIs(t.bool().dtype, ScalarType.Bool)
        self.assertIs(t.to(dtype="float64").dtype, ScalarType.Float64)
        self.assertIs(t.to(ScalarType.Float32), t)
        self.assertEqual(t.type(), "Float32")

    def test_transfer_to_unavailable_device(self):
        with self.assertRaises(AllocationError):
            tb.ones(2).to("cuda")
        self.assertIs(tb.ones(2).cpu().device.type, tb.DeviceType.CPU)

    def test_host_views(self):
        t = tb.zeros(3)
        shared = t.numpy()
        shared[0] = 9.0
        self.assertEqual(t.tolist(), [9.0, 0.0, 0.0])
        copy = t.to_numpy()
        copy[1] = 1.0
        self.assertEqual(t.tolist()[1], 0.0)


class TestScalar(unittest.TestCase):
    def test_inferred_types(self):
        self.assertIs(Scalar(True).dtype, ScalarType.Bool)
        self.assertIs(Scalar(3).dtype, ScalarType.Int64)
        self.assertIs(Scalar(1.5).dtype, ScalarType.Float32)
        self.assertIs(Scalar(1 + 2j).dtype, ScalarType.ComplexFloat32)
        self.assertEqual(Scalar(2, dtype="int8").to_numpy().dtype, np.int8)

    def test_validation(self):
        with self.assertRaises(OverflowError):
            Scalar(300, dtype=ScalarType.Int8)
        with self.assertRaises(TypeError):
            Scalar(1.5, dtype=ScalarType.Int32)
        with self.assertRaises(TypeError):
            Scalar("1")

    def test_value_semantics(self):
        self.assertEqual(Scalar(2.0), Scalar(2.0))
        self.assertNotEqual(Scalar(2.0), Scalar(2.0, dtype=ScalarType.Float64))
        self.assertEqual(float(Scalar(3)), 3.0)
        np.testing.assert_allclose((tb.ones(2) * Scalar(3.0)).to_numpy(), [3.0, 3.0])


if __name__ == "__main__":
    unittest.main()
