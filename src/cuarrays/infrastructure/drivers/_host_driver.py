"""
Host-emulated implementation of `IDriver`.

`HostDriver` behaves like a GPU driver whose device memory is host RAM:

- every allocation is a NumPy byte array owned by the driver; its data
  address is handed out as the "device pointer", so pointer arithmetic on
  views works exactly as on a real device
- copies and memsets go through `ctypes.memmove` and typed NumPy views after
  validating that the touched range lies inside one live allocation or one
  range registered with `register_foreign`
- kernel launches run the kernel's NumPy emulation over the linear thread
  indices of the whole grid, including threads past the element count

It backs `Device("cpu")`, and lets the ownership, transfer and dispatch
layers be exercised on machines without a GPU. Counters (`alloc_calls`,
`free_calls`, `launches`) are kept for introspection.
"""

from __future__ import annotations

import bisect
import ctypes
import itertools
import logging
import threading
from typing import Dict, List, Optional, Tuple

import numpy as np

from ...domain._errors import DriverError
from ...domain.device._device import Device
from ..ops.kernels import VARIANT_WORDS, DeviceKernel

_logger = logging.getLogger(__name__)

CUDA_ERROR_INVALID_VALUE = 1

_context_ids = itertools.count(1)


class HostDriver:
    """
    Emulated device driver backed by host memory.

    Parameters
    ----------
    device : Device, optional
        Descriptor reported by `device`; defaults to `Device("cpu")`.
    """

    def __init__(self, device: Device | None = None) -> None:
        self._device = device if device is not None else Device("cpu")
        self._ctx = next(_context_ids)
        self._allocations: Dict[int, np.ndarray] = {}
        self._bases: List[int] = []
        self._foreign: Dict[int, int] = {}
        self._lock = threading.Lock()

        self.alloc_calls = 0
        self.free_calls = 0
        self.launches = 0

    def __repr__(self) -> str:
        return f"HostDriver(device={self._device}, ctx={self._ctx})"

    @property
    def device(self) -> Device:
        return self._device

    def current_context(self) -> int:
        return self._ctx

    @property
    def live_allocations(self) -> int:
        """Number of allocations not yet freed."""
        with self._lock:
            return len(self._allocations)

    # -----------------------------------------------------------------
    # Address validation
    # -----------------------------------------------------------------

    def view(self, ptr: int, nbytes: int) -> np.ndarray:
        """
        Return a writable uint8 view of `[ptr, ptr + nbytes)`.

        Raises
        ------
        DriverError
            If the range is not contained in a single live allocation or
            registered foreign range.
        """
        ptr = int(ptr)
        nbytes = int(nbytes)
        with self._lock:
            found = self._allocation_slice(ptr, nbytes)
            if found is not None:
                return found
            for base, size in self._foreign.items():
                if base <= ptr and ptr + nbytes <= base + size:
                    return _host_bytes(ptr, nbytes)
        raise DriverError(
            CUDA_ERROR_INVALID_VALUE,
            f"invalid device range 0x{ptr:x}+{nbytes} on {self._device}",
        )

    def _allocation_slice(self, ptr: int, nbytes: int) -> Optional[np.ndarray]:
        pos = bisect.bisect_right(self._bases, ptr) - 1
        if pos < 0:
            return None
        base = self._bases[pos]
        arr = self._allocations[base]
        start = ptr - base
        if start + nbytes > arr.nbytes:
            return None
        return arr[start : start + nbytes]

    # -----------------------------------------------------------------
    # Memory
    # -----------------------------------------------------------------

    def alloc(self, nbytes: int) -> int:
        arr = np.empty(int(nbytes), dtype=np.uint8)
        ptr = int(arr.ctypes.data)
        with self._lock:
            self._allocations[ptr] = arr
            bisect.insort(self._bases, ptr)
            self.alloc_calls += 1
        _logger.debug("alloc %d bytes at 0x%x on %s", nbytes, ptr, self._device)
        return ptr

    def free(self, ptr: int, nbytes: int) -> None:
        ptr = int(ptr)
        with self._lock:
            arr = self._allocations.get(ptr)
            if arr is None:
                raise DriverError(
                    CUDA_ERROR_INVALID_VALUE, f"free of unknown pointer 0x{ptr:x}"
                )
            if arr.nbytes != int(nbytes):
                raise DriverError(
                    CUDA_ERROR_INVALID_VALUE,
                    f"free size mismatch at 0x{ptr:x}: allocated {arr.nbytes}, "
                    f"freed {nbytes}",
                )
            del self._allocations[ptr]
            self._bases.remove(ptr)
            self.free_calls += 1
        _logger.debug("free %d bytes at 0x%x on %s", nbytes, ptr, self._device)

    def register_foreign(self, ptr: int, nbytes: int) -> None:
        """
        Make `[ptr, ptr + nbytes)` addressable without taking ownership.

        The range is host memory owned by the caller. It passes `view`
        validation from now on but is never counted as an allocation and is
        rejected by `free`. Ranges inside one of this driver's own
        allocations are already addressable and are not recorded.
        """
        ptr = int(ptr)
        nbytes = int(nbytes)
        if ptr == 0 or nbytes <= 0:
            return
        with self._lock:
            if self._allocation_slice(ptr, nbytes) is not None:
                return
            self._foreign[ptr] = max(nbytes, self._foreign.get(ptr, 0))
        _logger.debug("registered foreign range 0x%x+%d on %s", ptr, nbytes, self._device)

    def memcpy_htod(self, dst_dev: int, src_host: int, nbytes: int) -> None:
        self.view(dst_dev, nbytes)
        ctypes.memmove(int(dst_dev), int(src_host), int(nbytes))

    def memcpy_dtoh(self, dst_host: int, src_dev: int, nbytes: int) -> None:
        self.view(src_dev, nbytes)
        ctypes.memmove(int(dst_host), int(src_dev), int(nbytes))

    def memcpy_dtod(self, dst_dev: int, src_dev: int, nbytes: int) -> None:
        self.view(dst_dev, nbytes)
        self.view(src_dev, nbytes)
        ctypes.memmove(int(dst_dev), int(src_dev), int(nbytes))

    def _memset(self, ptr: int, value: int, count: int, word: np.dtype) -> None:
        data = self.view(ptr, int(count) * word.itemsize).view(word)
        data[...] = word.type(value)

    def memset_d8(self, ptr: int, value: int, count: int) -> None:
        self._memset(ptr, value, count, np.dtype(np.uint8))

    def memset_d16(self, ptr: int, value: int, count: int) -> None:
        self._memset(ptr, value, count, np.dtype(np.uint16))

    def memset_d32(self, ptr: int, value: int, count: int) -> None:
        self._memset(ptr, value, count, np.dtype(np.uint32))

    # -----------------------------------------------------------------
    # Kernels
    # -----------------------------------------------------------------

    def launch(
        self,
        kernel: DeviceKernel,
        variant: str,
        grid: Tuple[int, int, int],
        block: Tuple[int, int, int],
        params: ctypes.Structure,
    ) -> None:
        if not isinstance(params, kernel.params_type):
            raise TypeError(
                f"{kernel.name} expects {kernel.params_type.__name__}, "
                f"got {type(params).__name__}"
            )
        word = VARIANT_WORDS[variant]
        total = int(np.prod(grid)) * int(np.prod(block))
        li = np.arange(total, dtype=np.int64)
        _logger.debug(
            "launch %s grid=%s block=%s (emulated)", kernel.symbol(variant), grid, block
        )
        kernel.emulate(self.view, li, params, word)
        self.launches += 1

    def synchronize(self) -> None:
        pass


def _host_bytes(ptr: int, nbytes: int) -> np.ndarray:
    if nbytes == 0:
        return np.empty(0, dtype=np.uint8)
    return np.ctypeslib.as_array((ctypes.c_uint8 * nbytes).from_address(ptr))
