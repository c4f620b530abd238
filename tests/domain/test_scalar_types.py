import unittest

import numpy as np

from tensorbridge.domain import DTypeNotSupportedError, ScalarType, bfloat16, check_cast, promote_types


class TestScalarTypeCodes(unittest.TestCase):
    def test_persisted_codes_are_stable(self):
        self.assertEqual(int(ScalarType.Byte), 0)
        self.assertEqual(int(ScalarType.Float32), 6)
        self.assertEqual(int(ScalarType.Bool), 11)
        self.assertEqual(int(ScalarType.BFloat16), 15)
        self.assertEqual(int(ScalarType.UInt64), 29)

    def test_from_code_rejects_unknown(self):
        self.assertIs(ScalarType.from_code(7), ScalarType.Float64)
        with self.assertRaises(DTypeNotSupportedError):
            ScalarType.from_code(99)

    def test_from_any_accepts_names_numpy_and_python_types(self):
        self.assertIs(ScalarType.from_any("float32"), ScalarType.Float32)
        self.assertIs(ScalarType.from_any("Int64"), ScalarType.Int64)
        self.assertIs(ScalarType.from_any(np.float64), ScalarType.Float64)
        self.assertIs(ScalarType.from_any(np.dtype(np.int16)), ScalarType.Int16)
        self.assertIs(ScalarType.from_any(bool), ScalarType.Bool)
        self.assertIs(ScalarType.from_any(bfloat16), ScalarType.BFloat16)

    def test_from_any_rejects_unknown_name(self):
        with self.assertRaises(DTypeNotSupportedError):
            ScalarType.from_any("float128x")

    def test_complex_half_has_no_storage(self):
        self.assertFalse(ScalarType.ComplexFloat16.is_supported)
        with self.assertRaises(DTypeNotSupportedError):
            _ = ScalarType.ComplexFloat16.numpy_dtype

    def test_classification(self):
        self.assertTrue(ScalarType.BFloat16.is_floating_point)
        self.assertTrue(ScalarType.ComplexFloat64.is_complex)
        self.assertTrue(ScalarType.UInt32.is_integral)
        self.assertFalse(ScalarType.Bool.is_integral)
        self.assertFalse(ScalarType.Byte.is_signed)
        self.assertEqual(ScalarType.Float16.itemsize, 2)


class TestPromotion(unittest.TestCase):
    def test_numpy_rules(self):
        self.assertIs(promote_types(ScalarType.Int32, ScalarType.Float32), ScalarType.Float64)
        self.assertIs(promote_types(ScalarType.Float32, ScalarType.Float64), ScalarType.Float64)

    def test_half_precision_pairs(self):
        self.assertIs(promote_types(ScalarType.Float16, ScalarType.BFloat16), ScalarType.Float32)
        self.assertIs(promote_types(ScalarType.BFloat16, ScalarType.Int64), ScalarType.BFloat16)

    def test_check_cast(self):
        check_cast(ScalarType.Float32, ScalarType.Int64)
        with self.assertRaises(DTypeNotSupportedError):
            check_cast(ScalarType.ComplexFloat32, ScalarType.Float32)
        check_cast(ScalarType.ComplexFloat32, ScalarType.Float32, allow_complex_to_real=True)


if __name__ == "__main__":
    unittest.main()
