"""
CUDA driver-API backed implementation of `IDriver`.

`CudaDriver` owns the primary context of one CUDA device and forwards every
allocation, copy, memset and kernel launch to the driver API through the
ctypes bindings in `native_cuda.python`. Kernels are compiled from source with
NVRTC on first use and cached per driver (i.e. per context).

Notes
-----
- The primary context is made current before every native call, so arrays on
  different devices can be used from the same host thread.
- Copies issued through the driver API on the default stream are
  synchronous with respect to the host for pageable memory; kernel launches
  are not, and callers synchronize explicitly.
"""

from __future__ import annotations

import ctypes
import logging
import threading
from typing import Dict, Tuple

from ...domain._errors import DriverError
from ...domain.device._device import Device
from ..native_cuda.python.driver_ctypes import CudaDriverLib, DevPtr, get_driver_lib
from ..native_cuda.python.nvrtc_ctypes import get_nvrtc_lib
from ..ops.kernels import DeviceKernel

_logger = logging.getLogger(__name__)


class CudaDriver:
    """
    Native driver for one CUDA device.

    Parameters
    ----------
    device : Device
        CUDA device descriptor (`device.is_cuda()` must be True).

    Raises
    ------
    DriverNotFoundError
        If `libcuda` cannot be loaded.
    DriverError
        If the driver cannot be initialized or the device index does not
        exist.
    """

    def __init__(self, device: Device) -> None:
        if not device.is_cuda():
            raise ValueError(f"CudaDriver requires a CUDA device; got {device!r}")

        self._device = device
        self._lib: CudaDriverLib = get_driver_lib()
        self._lib.init()

        count = self._lib.device_count()
        index = int(device.index or 0)
        if index >= count:
            raise DriverError(
                101, f"CUDA device index {index} out of range ({count} device(s) found)"
            )

        self._dev = self._lib.device_get(index)
        self._ctx = self._lib.primary_ctx_retain(self._dev)
        self._cc: Tuple[int, int] = self._lib.compute_capability(self._dev)
        self._functions: Dict[str, int] = {}
        self._modules: Dict[str, int] = {}
        self._lock = threading.Lock()

        _logger.info(
            "init %s (compute capability %d.%d, context 0x%x)",
            device,
            self._cc[0],
            self._cc[1],
            self._ctx,
        )

    def __repr__(self) -> str:
        return f"CudaDriver(device={self._device}, ctx=0x{self._ctx:x})"

    @property
    def device(self) -> Device:
        return self._device

    def _activate(self) -> None:
        self._lib.ctx_set_current(self._ctx)

    def current_context(self) -> int:
        return self._ctx

    # -----------------------------------------------------------------
    # Memory
    # -----------------------------------------------------------------

    def alloc(self, nbytes: int) -> DevPtr:
        self._activate()
        ptr = self._lib.mem_alloc(int(nbytes), str(self._device))
        _logger.debug("alloc %d bytes at 0x%x on %s", nbytes, ptr, self._device)
        return ptr

    def free(self, ptr: DevPtr, nbytes: int) -> None:
        self._activate()
        self._lib.mem_free(int(ptr))
        _logger.debug("free %d bytes at 0x%x on %s", nbytes, ptr, self._device)

    def register_foreign(self, ptr: DevPtr, nbytes: int) -> None:
        # Device pointers from other libraries are valid in the flat address space.
        pass

    def memcpy_htod(self, dst_dev: DevPtr, src_host: int, nbytes: int) -> None:
        self._activate()
        self._lib.memcpy_htod(dst_dev, src_host, nbytes)

    def memcpy_dtoh(self, dst_host: int, src_dev: DevPtr, nbytes: int) -> None:
        self._activate()
        self._lib.memcpy_dtoh(dst_host, src_dev, nbytes)

    def memcpy_dtod(self, dst_dev: DevPtr, src_dev: DevPtr, nbytes: int) -> None:
        self._activate()
        self._lib.memcpy_dtod(dst_dev, src_dev, nbytes)

    def memset_d8(self, ptr: DevPtr, value: int, count: int) -> None:
        self._activate()
        self._lib.memset_d8(ptr, value, count)

    def memset_d16(self, ptr: DevPtr, value: int, count: int) -> None:
        self._activate()
        self._lib.memset_d16(ptr, value, count)

    def memset_d32(self, ptr: DevPtr, value: int, count: int) -> None:
        self._activate()
        self._lib.memset_d32(ptr, value, count)

    # -----------------------------------------------------------------
    # Kernels
    # -----------------------------------------------------------------

    def _function(self, kernel: DeviceKernel, variant: str) -> int:
        symbol = kernel.symbol(variant)
        with self._lock:
            fn = self._functions.get(symbol)
            if fn is not None:
                return fn

            module = self._modules.get(kernel.name)
            if module is None:
                major, minor = self._cc
                ptx = get_nvrtc_lib().compile_to_ptx(
                    kernel.source,
                    f"{kernel.name}.cu",
                    [f"--gpu-architecture=compute_{major}{minor}"],
                )
                self._activate()
                module = self._lib.module_load_data(ptx)
                self._modules[kernel.name] = module
                _logger.debug("compiled module %s for %s", kernel.name, self._device)

            fn = self._lib.module_get_function(module, symbol)
            self._functions[symbol] = fn
            return fn

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
        fn = self._function(kernel, variant)
        self._activate()
        _logger.debug(
            "launch %s grid=%s block=%s", kernel.symbol(variant), grid, block
        )
        self._lib.launch_kernel(fn, grid, block, [params])

    def synchronize(self) -> None:
        self._activate()
        self._lib.ctx_synchronize()
