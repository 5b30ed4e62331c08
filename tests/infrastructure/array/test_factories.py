from __future__ import annotations

import unittest

import numpy as np

from cuarrays.domain._errors import UnsupportedFillTypeError
from cuarrays.infrastructure.array import (
    GPUArray,
    asarray,
    cu,
    empty,
    empty_like,
    full,
    ones,
    to_gpu,
    zeros,
)
from cuarrays.infrastructure.drivers import get_driver

CPU = "cpu"


class TestAllocationFactories(unittest.TestCase):
    def test_empty_accepts_tuple_or_varargs(self) -> None:
        self.assertEqual(empty((2, 3), device=CPU).shape, (2, 3))
        self.assertEqual(empty(2, 3, device=CPU).shape, (2, 3))
        self.assertEqual(empty(4, device=CPU).shape, (4,))
        self.assertEqual(empty(device=CPU).shape, ())

    def test_default_dtype_is_float32(self) -> None:
        self.assertEqual(zeros(3, device=CPU).dtype, np.float32)

    def test_zeros_and_ones(self) -> None:
        np.testing.assert_array_equal(
            zeros(2, 2, dtype=np.int64, device=CPU).to_numpy(), np.zeros((2, 2), np.int64)
        )
        np.testing.assert_array_equal(
            ones((3,), dtype=np.float16, device=CPU).to_numpy(), np.ones(3, np.float16)
        )

    def test_full(self) -> None:
        a = full((2, 3), 2.5, np.float64, CPU)
        np.testing.assert_array_equal(a.to_numpy(), np.full((2, 3), 2.5))

    def test_full_unsupported_type_releases_allocation(self) -> None:
        drv = get_driver(CPU)
        live = drv.live_allocations
        with self.assertRaises(UnsupportedFillTypeError):
            full((4,), True, np.bool_, CPU)
        self.assertEqual(drv.live_allocations, live)

    def test_empty_like(self) -> None:
        a = zeros(2, 5, dtype=np.int8, device=CPU)
        b = empty_like(a)
        self.assertEqual((b.shape, b.dtype), ((2, 5), np.int8))
        self.assertIsNot(b.storage, a.storage)
        c = empty_like(a, dtype=np.float32, shape=(10,))
        self.assertEqual((c.shape, c.dtype), ((10,), np.float32))


class TestConversions(unittest.TestCase):
    def test_to_gpu_round_trip(self) -> None:
        host = np.arange(12, dtype=np.int16).reshape(3, 4)
        a = to_gpu(host, device=CPU)
        self.assertEqual((a.shape, a.dtype), (host.shape, host.dtype))
        np.testing.assert_array_equal(a.to_numpy(), host)

    def test_to_gpu_non_contiguous_host(self) -> None:
        host = np.arange(12, dtype=np.float32).reshape(3, 4).T
        np.testing.assert_array_equal(to_gpu(host, device=CPU).to_numpy(), host)

    def test_to_gpu_lists_and_dtype(self) -> None:
        a = to_gpu([[1, 2], [3, 4]], dtype=np.float64, device=CPU)
        self.assertEqual(a.dtype, np.float64)
        np.testing.assert_array_equal(a.to_numpy(), [[1.0, 2.0], [3.0, 4.0]])

    def test_asarray_is_idempotent(self) -> None:
        a = zeros(3, device=CPU)
        self.assertIs(asarray(a), a)
        self.assertIs(asarray(a, dtype=np.float32), a)
        self.assertIs(asarray(a, device=CPU), a)
        self.assertEqual(a.storage.refcount, 1)

    def test_asarray_converts_element_type(self) -> None:
        a = to_gpu(np.array([1.5, 2.5], dtype=np.float32), device=CPU)
        b = asarray(a, dtype=np.float64)
        self.assertIsNot(b, a)
        self.assertEqual(b.dtype, np.float64)
        np.testing.assert_array_equal(b.to_numpy(), [1.5, 2.5])

    def test_asarray_host_input(self) -> None:
        b = asarray(np.arange(3, dtype=np.uint32), device=CPU)
        self.assertIsInstance(b, GPUArray)
        self.assertEqual(b.dtype, np.uint32)


class TestCu(unittest.TestCase):
    def test_real_arrays_become_float32(self) -> None:
        cases = [
            (np.arange(4), [0, 1, 2, 3]),
            (np.arange(4, dtype=np.float64), [0, 1, 2, 3]),
            (np.array([True, False]), [1, 0]),
            ([1, 2, 3, 4], [1, 2, 3, 4]),
        ]
        for host, expected in cases:
            with self.subTest(host=host):
                a = cu(host, device=CPU)
                self.assertIsInstance(a, GPUArray)
                self.assertEqual(a.dtype, np.float32)
                np.testing.assert_array_equal(a.to_numpy(), expected)

    def test_complex_arrays_keep_type(self) -> None:
        a = cu(np.array([1 + 2j], dtype=np.complex128), device=CPU)
        self.assertEqual(a.dtype, np.complex128)

    def test_gpu_arrays(self) -> None:
        f32 = zeros(2, device=CPU)
        self.assertIs(cu(f32, device=CPU), f32)
        f64 = zeros(2, dtype=np.float64, device=CPU)
        self.assertEqual(cu(f64, device=CPU).dtype, np.float32)

    def test_non_arrays_pass_through(self) -> None:
        self.assertEqual(cu(3), 3)
        self.assertEqual(cu(2.5), 2.5)
        t = (1, 2)
        self.assertIs(cu(t), t)


if __name__ == "__main__":
    unittest.main()
