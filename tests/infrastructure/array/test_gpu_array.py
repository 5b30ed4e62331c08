from __future__ import annotations

import copy
import unittest
from unittest import mock

import numpy as np

from cuarrays.domain._errors import ShapeMismatchError, TransferError
from cuarrays.domain.device._device import Device
from cuarrays.infrastructure.array import GPUArray, to_gpu
from cuarrays.infrastructure.drivers import get_driver
from cuarrays.infrastructure.memory import DevicePointer

CPU = "cpu"


class TestConstruction(unittest.TestCase):
    def test_defaults(self) -> None:
        a = GPUArray((2, 3), device=CPU)
        self.assertEqual(a.shape, (2, 3))
        self.assertEqual(a.dtype, np.float32)
        self.assertEqual(a.ndim, 2)
        self.assertEqual(a.size, 6)
        self.assertEqual(a.itemsize, 4)
        self.assertEqual(a.elsize, 4)
        self.assertEqual(a.nbytes, 24)
        self.assertEqual(a.offset, 0)
        self.assertEqual(len(a), 2)
        self.assertEqual(a.device, Device("cpu"))
        self.assertEqual(a.storage.nbytes, 24)
        self.assertEqual(a.storage.refcount, 1)

    def test_int_shape_is_one_dimensional(self) -> None:
        a = GPUArray(5, np.int16, CPU)
        self.assertEqual(a.shape, (5,))
        self.assertEqual(a.nbytes, 10)

    def test_zero_dim(self) -> None:
        a = GPUArray((), np.float64, CPU)
        self.assertEqual(a.size, 1)
        self.assertEqual(a.nbytes, 8)
        with self.assertRaises(TypeError):
            len(a)

    def test_invalid_shapes(self) -> None:
        with self.assertRaises(ValueError):
            GPUArray((2, -1), device=CPU)
        with self.assertRaises(TypeError):
            GPUArray((2.5,), device=CPU)
        with self.assertRaises(TypeError):
            GPUArray((True,), device=CPU)

    def test_object_dtype_rejected(self) -> None:
        with self.assertRaises(TypeError):
            GPUArray((2,), object, CPU)

    def test_view_must_fit_in_buffer(self) -> None:
        a = GPUArray((4,), np.float32, CPU)
        with self.assertRaises(ValueError):
            GPUArray._from_buffer(a.storage, (4,), np.float32, offset=1)
        with self.assertRaises(ValueError):
            GPUArray._from_buffer(a.storage, (1,), np.float32, offset=-1)
        self.assertEqual(a.storage.refcount, 1)

    def test_repr(self) -> None:
        a = GPUArray((2,), np.int32, CPU)
        self.assertIn("shape=(2,)", repr(a))
        a.free_()
        self.assertIn("freed", repr(a))


class TestZeroSize(unittest.TestCase):
    def test_zero_length_array(self) -> None:
        a = GPUArray((0,), np.float32, CPU)
        self.assertEqual(a.nbytes, 0)
        self.assertEqual(a.storage.ptr, 0)
        self.assertEqual(a.to_numpy().shape, (0,))

    def test_reshape_zero_size(self) -> None:
        a = GPUArray((0,), np.float32, CPU)
        self.assertEqual(a.reshape(0, 0).shape, (0, 0))
        self.assertEqual(a.reshape(3, 0).shape, (3, 0))
        with self.assertRaises(ShapeMismatchError):
            a.reshape(1)


class TestReshape(unittest.TestCase):
    def test_round_trip_shares_storage(self) -> None:
        host = np.arange(6, dtype=np.float32)
        a = to_gpu(host, device=CPU)
        b = a.reshape(2, 3).reshape(6)
        self.assertIs(b.storage, a.storage)
        self.assertEqual(b.offset, a.offset)
        self.assertEqual(b.shape, a.shape)
        np.testing.assert_array_equal(b.to_numpy(), host)

    def test_writes_are_visible_through_all_views(self) -> None:
        a = to_gpu(np.zeros(6, dtype=np.int32), device=CPU)
        b = a.reshape((2, 3))
        b.fill(7)
        np.testing.assert_array_equal(a.to_numpy(), np.full(6, 7, dtype=np.int32))

    def test_each_view_holds_one_reference(self) -> None:
        a = GPUArray((2, 3), device=CPU)
        b = a.reshape(3, 2)
        c = a.reshape(6)
        self.assertEqual(a.storage.refcount, 3)
        b.free_()
        c.free_()
        self.assertEqual(a.storage.refcount, 1)

    def test_infers_one_extent(self) -> None:
        a = GPUArray((2, 3, 4), device=CPU)
        self.assertEqual(a.reshape(-1).shape, (24,))
        self.assertEqual(a.reshape(4, -1).shape, (4, 6))
        with self.assertRaises(ShapeMismatchError):
            a.reshape(-1, -1)
        with self.assertRaises(ShapeMismatchError):
            a.reshape(5, -1)

    def test_mismatch_raises_and_does_not_retain(self) -> None:
        a = GPUArray((2, 3), device=CPU)
        with self.assertRaises(ShapeMismatchError) as cm:
            a.reshape(4)
        self.assertIn("parent has 6 elements", str(cm.exception))
        self.assertEqual(a.storage.refcount, 1)


class TestSimilarAndCopies(unittest.TestCase):
    def test_similar_allocates_new_storage(self) -> None:
        a = GPUArray((2, 3), np.int16, CPU)
        b = a.similar()
        self.assertIsNot(b.storage, a.storage)
        self.assertEqual((b.shape, b.dtype, b.device), (a.shape, a.dtype, a.device))

        c = a.similar(dtype=np.float64, shape=(4,))
        self.assertEqual(c.shape, (4,))
        self.assertEqual(c.dtype, np.float64)

    def test_copy_and_deepcopy(self) -> None:
        host = np.arange(12, dtype=np.float64).reshape(3, 4)
        a = to_gpu(host, device=CPU)
        for b in (a.copy(), copy.deepcopy(a)):
            self.assertIsNot(b.storage, a.storage)
            np.testing.assert_array_equal(b.to_numpy(), host)
        b = a.copy()
        b.fill(0)
        np.testing.assert_array_equal(a.to_numpy(), host)

    def test_deepcopy_memo(self) -> None:
        a = to_gpu(np.ones(3, dtype=np.float32), device=CPU)
        pair = copy.deepcopy([a, a])
        self.assertIs(pair[0], pair[1])
        self.assertIsNot(pair[0], a)

    def test_failed_copy_releases_new_buffer(self) -> None:
        a = to_gpu(np.arange(4, dtype=np.float32), device=CPU)
        drv = get_driver(CPU)
        live = drv.live_allocations
        with mock.patch(
            "cuarrays.infrastructure.ops.transfer.unsafe_copyto",
            side_effect=TransferError("copy rejected"),
        ):
            with self.assertRaises(TransferError):
                a.copy()
        self.assertEqual(drv.live_allocations, live)
        self.assertEqual(a.storage.refcount, 1)

    def test_copy_from_shape_mismatch(self) -> None:
        a = GPUArray((2, 3), device=CPU)
        with self.assertRaises(ShapeMismatchError):
            a.copy_from(np.zeros(6, dtype=np.float32))

    def test_copy_from_converts_dtype(self) -> None:
        a = GPUArray((3,), np.int32, CPU)
        a.copy_from([1.0, 2.0, 3.0])
        np.testing.assert_array_equal(a.to_numpy(), np.array([1, 2, 3], dtype=np.int32))

    def test_copy_to_existing_host_array(self) -> None:
        host = np.arange(4, dtype=np.uint8)
        a = to_gpu(host, device=CPU)
        out = np.empty(4, dtype=np.uint8)
        self.assertIs(a.copy_to(out), out)
        np.testing.assert_array_equal(out, host)
        with self.assertRaises(ShapeMismatchError):
            a.copy_to(np.empty(5, dtype=np.uint8))
        with self.assertRaises(TypeError):
            a.copy_to([0, 0, 0, 0])

    def test_collect_alias(self) -> None:
        a = to_gpu(np.arange(3, dtype=np.int64), device=CPU)
        np.testing.assert_array_equal(a.collect(), np.arange(3))


class TestBufferAddress(unittest.TestCase):
    def test_addresses(self) -> None:
        a = GPUArray((10,), np.float64, CPU)
        base = a.storage.ptr
        p0 = a.buffer()
        self.assertIsInstance(p0, DevicePointer)
        self.assertEqual(int(p0), base)
        self.assertEqual(p0.nbytes, 80)
        p3 = a.buffer(3)
        self.assertEqual(p3.ptr, base + 24)
        self.assertEqual(p3.nbytes, 56)
        self.assertEqual(a.buffer(10).nbytes, 0)
        self.assertEqual(a.native_address(1).ptr, base + 8)

    def test_offset_view_address(self) -> None:
        a = GPUArray((10,), np.int32, CPU)
        v = GPUArray._from_buffer(a.storage, (4,), np.int32, offset=5)
        self.assertEqual(v.buffer().ptr, a.storage.ptr + 20)
        self.assertEqual(v.buffer().nbytes, 16)

    def test_out_of_range(self) -> None:
        a = GPUArray((4,), np.float32, CPU)
        with self.assertRaises(IndexError):
            a.buffer(5)
        with self.assertRaises(IndexError):
            a.buffer(-1)

    def test_buffer_does_not_retain(self) -> None:
        a = GPUArray((4,), np.float32, CPU)
        a.buffer(2)
        self.assertEqual(a.storage.refcount, 1)


class TestFreedArray(unittest.TestCase):
    def test_operations_raise_after_free(self) -> None:
        a = GPUArray((4,), np.float32, CPU)
        a.free_()
        self.assertTrue(a.is_freed)
        for op in (
            lambda: a.reshape(2, 2),
            lambda: a.buffer(),
            lambda: a.to_numpy(),
            lambda: a.fill(1),
            lambda: a.copy(),
            lambda: a.similar(),
            lambda: a.similar(dtype=np.int8, shape=(2,)),
        ):
            with self.assertRaises(RuntimeError):
                op()


if __name__ == "__main__":
    unittest.main()
