"""
Native driver contract.

This module defines `IDriver`, the structural interface of the native GPU
driver/runtime that every device buffer, transfer and kernel launch in
cuarrays is delegated to. Concrete drivers live in the infrastructure layer:

- `CudaDriver`: ctypes bindings to the CUDA driver API and NVRTC
- `HostDriver`: an emulated device backed by host RAM and NumPy kernels

Conventions
-----------
- Device and host pointers are plain Python ints (uintptr_t).
- All copy and memset entrypoints are blocking with respect to the calling
  thread once `synchronize()` has been called; drivers may enqueue work but
  callers in this package always synchronize before reading results.
- Byte counts and element counts are validated by the caller; drivers only
  report native failures (as `DriverError`).
"""

from __future__ import annotations

from typing import Any, Protocol, Tuple, runtime_checkable

from .device._device_protocol import DeviceLike


@runtime_checkable
class IDriver(Protocol):
    """
    Duck-typed native driver.

    Any object providing these members can back device buffers, regardless
    of its concrete class.
    """

    @property
    def device(self) -> DeviceLike:
        """Device this driver allocates on."""
        ...

    def current_context(self) -> int:
        """Return an identifier of the context that owns new allocations."""
        ...

    def alloc(self, nbytes: int) -> int:
        """Allocate `nbytes` (> 0) of device memory and return its address."""
        ...

    def free(self, ptr: int, nbytes: int) -> None:
        """Release an allocation previously returned by `alloc`."""
        ...

    def register_foreign(self, ptr: int, nbytes: int) -> None:
        """
        Make memory owned elsewhere addressable by copies, memsets and
        launches. Registered ranges are never passed to `free`.
        """
        ...

    def memcpy_htod(self, dst_dev: int, src_host: int, nbytes: int) -> None: ...

    def memcpy_dtoh(self, dst_host: int, src_dev: int, nbytes: int) -> None: ...

    def memcpy_dtod(self, dst_dev: int, src_dev: int, nbytes: int) -> None: ...

    def memset_d8(self, ptr: int, value: int, count: int) -> None: ...

    def memset_d16(self, ptr: int, value: int, count: int) -> None: ...

    def memset_d32(self, ptr: int, value: int, count: int) -> None: ...

    def launch(
        self,
        kernel: Any,
        variant: str,
        grid: Tuple[int, int, int],
        block: Tuple[int, int, int],
        params: Any,
    ) -> None:
        """
        Launch `kernel` specialised for `variant` with a by-value parameter
        struct `params`.
        """
        ...

    def synchronize(self) -> None:
        """Block until all previously issued work has completed."""
        ...
