from __future__ import annotations

import gc
import threading
import unittest
from unittest import mock

import numpy as np

from cuarrays.domain._errors import AllocationError, DriverError, UnsupportedOperationError
from cuarrays.domain.device._device_protocol import DeviceLike
from cuarrays.infrastructure.array import GPUArray, to_gpu, unsafe_wrap
from cuarrays.infrastructure.drivers import HostDriver, get_driver
from cuarrays.infrastructure.memory import (
    DeviceBuffer,
    alloc,
    dealloc,
    release,
    retain,
    wrap_foreign,
)


def _buffer(driver: HostDriver, nbytes: int) -> DeviceBuffer:
    return DeviceBuffer(
        ptr=driver.alloc(nbytes),
        nbytes=nbytes,
        ctx=driver.current_context(),
        driver=driver,
    )


class TestRefCounting(unittest.TestCase):
    def test_retain_reports_previous_liveness(self) -> None:
        buf = _buffer(HostDriver(), 16)
        self.assertFalse(retain(buf))
        self.assertTrue(retain(buf))
        self.assertEqual(buf.refcount, 2)

    def test_release_reports_zero_crossing(self) -> None:
        buf = _buffer(HostDriver(), 16)
        retain(buf)
        retain(buf)
        self.assertFalse(release(buf))
        self.assertTrue(release(buf))
        self.assertEqual(buf.refcount, 0)

    def test_unbalanced_release_raises(self) -> None:
        buf = _buffer(HostDriver(), 16)
        with self.assertRaises(RuntimeError):
            release(buf)

    def test_retain_after_free_raises(self) -> None:
        drv = HostDriver()
        buf = _buffer(drv, 16)
        self.assertTrue(dealloc(buf))
        self.assertTrue(buf.freed)
        with self.assertRaises(RuntimeError):
            retain(buf)

    def test_dealloc_is_idempotent(self) -> None:
        drv = HostDriver()
        buf = _buffer(drv, 16)
        self.assertTrue(dealloc(buf))
        self.assertFalse(dealloc(buf))
        self.assertEqual(drv.free_calls, 1)

    def test_concurrent_views_keep_count_consistent(self) -> None:
        drv = HostDriver()
        a = GPUArray._from_buffer(_buffer(drv, 24), (6,), np.float32)
        errors = []

        def churn() -> None:
            try:
                for _ in range(200):
                    a.reshape(2, 3).free_()
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=churn) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(a.storage.refcount, 1)
        self.assertEqual(drv.free_calls, 0)
        a.free_()
        self.assertEqual(drv.free_calls, 1)

    def test_negative_size_rejected(self) -> None:
        with self.assertRaises(ValueError):
            DeviceBuffer(ptr=0, nbytes=-1, ctx=0, driver=HostDriver())


class TestViewsShareOneAllocation(unittest.TestCase):
    def test_dealloc_exactly_once_after_last_view(self) -> None:
        drv = HostDriver()
        buf = _buffer(drv, 96)
        a = GPUArray._from_buffer(buf, (24,), np.float32)
        b = a.reshape(4, 6)
        c = b.reshape(2, 3, 4)
        self.assertEqual(buf.refcount, 3)

        b.free_()
        a.free_()
        self.assertEqual(drv.free_calls, 0)
        self.assertEqual(buf.refcount, 1)

        c.free_()
        self.assertEqual(drv.free_calls, 1)
        self.assertEqual(drv.live_allocations, 0)
        self.assertTrue(buf.freed)

    def test_free_is_idempotent(self) -> None:
        drv = HostDriver()
        a = GPUArray._from_buffer(_buffer(drv, 8), (2,), np.float32)
        a.free_()
        a.free_()
        self.assertEqual(drv.free_calls, 1)

    def test_garbage_collection_frees_storage(self) -> None:
        drv = HostDriver()
        buf = _buffer(drv, 64)
        a = GPUArray._from_buffer(buf, (16,), np.float32)
        b = a.reshape(4, 4)
        del a
        gc.collect()
        self.assertEqual(drv.free_calls, 0)
        del b
        gc.collect()
        self.assertEqual(drv.free_calls, 1)

    def test_dealloc_uses_full_buffer_size(self) -> None:
        drv = HostDriver()
        buf = _buffer(drv, 64)
        # A view smaller than its buffer.
        a = GPUArray._from_buffer(buf, (3,), np.float32, offset=2)
        with mock.patch.object(drv, "free", wraps=drv.free) as free:
            a.free_()
        free.assert_called_once_with(buf.ptr, 64)

    def test_new_view_of_freed_buffer_raises(self) -> None:
        drv = HostDriver()
        buf = _buffer(drv, 16)
        GPUArray._from_buffer(buf, (4,), np.float32).free_()
        with self.assertRaises(RuntimeError):
            GPUArray._from_buffer(buf, (4,), np.float32)


class TestDeallocFailures(unittest.TestCase):
    def test_failure_is_logged_not_raised(self) -> None:
        drv = HostDriver()
        a = GPUArray._from_buffer(_buffer(drv, 16), (4,), np.float32)
        with mock.patch.object(drv, "free", side_effect=DriverError(700, "CUDA_ERROR_ILLEGAL_ADDRESS")):
            with self.assertLogs("cuarrays", level="WARNING") as cm:
                a.free_()
        self.assertTrue(any("failed to free 16 bytes" in m for m in cm.output))
        self.assertTrue(a.is_freed)


class TestAlloc(unittest.TestCase):
    def test_alloc_on_emulated_device(self) -> None:
        buf = alloc(32, "cpu")
        try:
            self.assertEqual(buf.nbytes, 32)
            self.assertNotEqual(buf.ptr, 0)
            self.assertEqual(buf.refcount, 0)
            self.assertEqual(buf.device, "cpu")
            self.assertIsInstance(buf.device, DeviceLike)
        finally:
            dealloc(buf)

    def test_zero_bytes_is_null_buffer_without_driver_call(self) -> None:
        drv = get_driver("cpu")
        before = drv.alloc_calls
        buf = alloc(0, "cpu")
        self.assertEqual(buf.ptr, 0)
        self.assertEqual(buf.nbytes, 0)
        self.assertEqual(drv.alloc_calls, before)
        self.assertFalse(dealloc(buf))

    def test_negative_size(self) -> None:
        with self.assertRaises(ValueError):
            alloc(-1, "cpu")

    def test_driver_failure_becomes_allocation_error(self) -> None:
        drv = get_driver("cpu")
        with mock.patch.object(drv, "alloc", side_effect=DriverError(2, "CUDA_ERROR_OUT_OF_MEMORY")):
            with self.assertRaises(AllocationError) as cm:
                GPUArray((1024,), np.float32, "cpu")
        self.assertEqual(cm.exception.nbytes, 4096)
        self.assertEqual(cm.exception.device, "cpu")


class TestForeignMemory(unittest.TestCase):
    def test_wrap_is_pre_retained(self) -> None:
        host = np.zeros(64, dtype=np.uint8)
        buf = wrap_foreign(host.ctypes.data, host.nbytes, device="cpu")
        self.assertTrue(buf.foreign)
        self.assertEqual(buf.refcount, 1)

    def test_foreign_memory_is_never_freed(self) -> None:
        host = np.arange(8, dtype=np.float32)
        owner = to_gpu(host, device="cpu")
        drv = owner.storage.driver

        with mock.patch.object(drv, "free", wraps=drv.free) as free:
            view = unsafe_wrap(owner.buffer().ptr, (2, 4), np.float32, device="cpu")
            np.testing.assert_array_equal(view.to_numpy(), host.reshape(2, 4))
            flat = view.reshape(8)
            buf = view.storage
            view.free_()
            flat.free_()
            free.assert_not_called()
        self.assertEqual(buf.refcount, 1)
        self.assertFalse(buf.freed)
        np.testing.assert_array_equal(owner.to_numpy(), host)

    def test_wrapped_host_memory_reads_and_writes(self) -> None:
        host = np.arange(12, dtype=np.float32)
        drv = get_driver("cpu")
        free_calls = drv.free_calls
        live = drv.live_allocations

        view = unsafe_wrap(host.ctypes.data, (12,), np.float32, device="cpu")
        np.testing.assert_array_equal(view.to_numpy(), host)

        view.fill(3)
        np.testing.assert_array_equal(host, np.full(12, 3, dtype=np.float32))

        square = unsafe_wrap(host.ctypes.data, (3, 3), np.float32, device="cpu")
        square.copy_from(np.arange(9, dtype=np.float32).reshape(3, 3))
        square.tril_()
        np.testing.assert_array_equal(
            host[:9].reshape(3, 3), np.tril(np.arange(9, dtype=np.float32).reshape(3, 3))
        )

        flat = square.reshape(9)
        for a in (view, square, flat):
            a.free_()
        gc.collect()
        self.assertEqual(drv.free_calls, free_calls)
        self.assertEqual(drv.live_allocations, live)
        self.assertEqual(host[9:].tolist(), [3, 3, 3])

    def test_unregistered_host_memory_is_rejected(self) -> None:
        host = np.zeros(4, dtype=np.float32)
        with self.assertRaises(DriverError):
            HostDriver().view(host.ctypes.data, host.nbytes)

    def test_dealloc_refuses_foreign(self) -> None:
        host = np.zeros(64, dtype=np.uint8)
        buf = wrap_foreign(host.ctypes.data, host.nbytes, device="cpu")
        with self.assertLogs("cuarrays", level="WARNING"):
            self.assertFalse(dealloc(buf))

    def test_own_true_is_unsupported(self) -> None:
        with self.assertRaises(UnsupportedOperationError):
            wrap_foreign(0x1000, 64, device="cpu", own=True)
        with self.assertRaises(UnsupportedOperationError):
            unsafe_wrap(0x1000, (16,), np.float32, device="cpu", own=True)


if __name__ == "__main__":
    unittest.main()
