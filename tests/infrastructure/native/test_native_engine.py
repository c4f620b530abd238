import threading
import unittest

import numpy as np

from tensorbridge import AllocationError, Device, NativeEngineError, ScalarType, ShapeError
from tensorbridge.domain import DeviceType
from tensorbridge.infrastructure.native import NativeEngine, native_kernel
from tensorbridge.infrastructure.native._loader import load_backend


@native_kernel("test_engine_divide")
def _divide(a, b):
    if b == 0:
        raise ZeroDivisionError("division by zero")
    return np.asarray(a / b)


@native_kernel("test_engine_exhausted")
def _exhausted():
    raise MemoryError("cannot allocate 1 TiB")


@native_kernel("test_engine_classified")
def _classified():
    raise ShapeError("already classified", dim=0)


class TestNativeEngine(unittest.TestCase):
    def setUp(self):
        self.engine = NativeEngine(load_backend())

    def test_invoke_returns_sentinel_and_fills_slot(self):
        self.assertIsNone(self.engine.invoke("test_engine_divide", 1.0, 0))
        self.assertEqual(self.engine.last_error(), "ZeroDivisionError: division by zero")
        with self.assertRaises(NativeEngineError) as cm:
            self.engine.check_for_errors()
        self.assertEqual(cm.exception.engine_message, "ZeroDivisionError: division by zero")
        self.assertEqual(cm.exception.op, "test_engine_divide")
        self.assertIsNone(self.engine.last_error())
        # slot is cleared after raising
        self.engine.check_for_errors()

    def test_call_raises_instead_of_returning_sentinel(self):
        np.testing.assert_allclose(self.engine.call("test_engine_divide", 3.0, 2), 1.5)
        with self.assertRaises(NativeEngineError):
            self.engine.call("test_engine_divide", 3.0, 0)

    def test_out_of_memory_maps_to_allocation_error(self):
        with self.assertRaises(AllocationError) as cm:
            self.engine.call("test_engine_exhausted")
        self.assertIn("cannot allocate 1 TiB", str(cm.exception))

    def test_classified_errors_pass_through(self):
        with self.assertRaises(ShapeError):
            self.engine.invoke("test_engine_classified")
        self.assertIsNone(self.engine.last_error())

    def test_unknown_symbol(self):
        with self.assertRaises(NativeEngineError):
            self.engine.call("no_such_kernel_symbol")

    def test_duplicate_registration_rejected(self):
        with self.assertRaises(ValueError):
            native_kernel("test_engine_divide")(lambda a, b: a)

    def test_error_slot_is_per_thread(self):
        self.engine.set_last_error("pending", op="x")
        seen = []
        worker = threading.Thread(target=lambda: seen.append(self.engine.last_error()))
        worker.start()
        worker.join()
        self.assertEqual(seen, [None])
        self.assertEqual(self.engine.last_error(), "pending")
        self.engine.clear_last_error()

    def test_allocate_release_counts_handles(self):
        cpu = Device("cpu")
        h = self.engine.allocate((2, 3), ScalarType.Int32, cpu, fill=7)
        self.assertEqual(self.engine.live_handles(), 1)
        np.testing.assert_array_equal(h.storage, np.full((2, 3), 7, dtype=np.int32))
        view = self.engine.wrap(h.storage[0], ScalarType.Int32, cpu, base=h)
        self.assertEqual(view.base_id, h.base_id)
        self.assertEqual(self.engine.live_handles(), 2)
        self.assertTrue(self.engine.release(h))
        self.assertFalse(self.engine.release(h))
        self.assertTrue(h.released)
        self.engine.release(view)
        self.assertEqual(self.engine.live_handles(), 0)

    def test_wrap_checks_storage_dtype(self):
        with self.assertRaises(TypeError):
            self.engine.wrap(np.zeros(2, dtype=np.float64), ScalarType.Float32, Device("cpu"))

    def test_allocate_on_unavailable_device(self):
        with self.assertRaises(AllocationError) as cm:
            self.engine.allocate((1,), ScalarType.Float32, Device("cuda:0"))
        self.assertIn("cuda:0", str(cm.exception))
        self.assertEqual(self.engine.live_handles(), 0)


class TestBackendInfo(unittest.TestCase):
    def test_host_backend_serves_cpu_only(self):
        info = load_backend()
        self.assertIs(info, load_backend())
        self.assertEqual(info.device_types, (DeviceType.CPU,))
        self.assertEqual(info.device_count(DeviceType.CPU), 1)
        self.assertTrue(info.is_available(Device("cpu")))
        self.assertFalse(info.is_available(Device("cuda")))
        self.assertTrue(info.version.startswith("numpy-"))


if __name__ == "__main__":
    unittest.main()
