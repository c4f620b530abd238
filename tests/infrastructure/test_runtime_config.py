import gc
import os
import unittest
from unittest import mock

import numpy as np

import tensorbridge as tb
from tensorbridge.infrastructure.native import get_engine
from tensorbridge import RuntimeConfig, ScalarType, ShapeError, get_config, override_config, set_config


class TestRuntimeConfig(unittest.TestCase):
    def test_defaults(self):
        cfg = RuntimeConfig()
        self.assertEqual(cfg.default_device, "cpu")
        self.assertEqual(cfg.default_dtype, ScalarType.Float32)
        self.assertEqual(cfg.max_data_elements, 2**31 - 1)
        self.assertFalse(cfg.warn_on_finalize)

    def test_validation(self):
        with self.assertRaises(ValueError):
            RuntimeConfig(max_data_elements=0)
        with self.assertRaises(ValueError):
            RuntimeConfig(default_dtype=ScalarType.Int32)

    def test_from_env(self):
        env = {
            "TENSORBRIDGE_DEFAULT_DTYPE": "float64",
            "TENSORBRIDGE_MAX_DATA_ELEMENTS": "10",
            "TENSORBRIDGE_WARN_ON_FINALIZE": "yes",
        }
        with mock.patch.dict(os.environ, env):
            cfg = RuntimeConfig.from_env()
        self.assertEqual(cfg.default_dtype, ScalarType.Float64)
        self.assertEqual(cfg.max_data_elements, 10)
        self.assertTrue(cfg.warn_on_finalize)

    def test_override_is_scoped(self):
        before = get_config()
        with override_config(default_dtype="float64") as cfg:
            self.assertIs(get_config(), cfg)
            self.assertEqual(tb.zeros(2).dtype, ScalarType.Float64)
            self.assertEqual(tb.full((2,), 1.5).dtype, ScalarType.Float64)
        self.assertEqual(get_config(), before)
        self.assertEqual(tb.zeros(2).dtype, ScalarType.Float32)

    def test_set_config_returns_previous(self):
        previous = set_config(max_data_elements=123)
        try:
            self.assertEqual(get_config().max_data_elements, 123)
        finally:
            set_config(max_data_elements=previous.max_data_elements)
        self.assertEqual(get_config().max_data_elements, previous.max_data_elements)

    def test_element_access_limit(self):
        with override_config(max_data_elements=4):
            t = tb.zeros(4)
            flat = t.data()
            flat[1] = 7.0
            np.testing.assert_array_equal(t.to_numpy(), [0.0, 7.0, 0.0, 0.0])
            with self.assertRaises(ShapeError):
                tb.zeros(5).data()
        with self.assertRaises(TypeError):
            tb.zeros(2).data(ScalarType.Int32)

    def test_finalizer_warning(self):
        with override_config(warn_on_finalize=True):
            t = tb.ones(3)
            with self.assertWarns(ResourceWarning):
                del t
                gc.collect()

    def test_dispose_releases_handle_once(self):
        engine = get_engine()
        t = tb.ones(3)
        live = engine.live_handles()
        t.dispose()
        self.assertEqual(engine.live_handles(), live - 1)
        with override_config(warn_on_finalize=True):
            del t
            gc.collect()
        self.assertEqual(engine.live_handles(), live - 1)


if __name__ == "__main__":
    unittest.main()
